import uuid

from sqlalchemy import Column, DateTime, Index, String, Text

from sheetbot.database import Base


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Text, nullable=False)  # WhatsApp JID
    role = Column(Text, nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_chat_messages_user_created", "user_id", "created_at"),)
