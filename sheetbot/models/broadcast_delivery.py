import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from sheetbot.database import Base


class BroadcastDelivery(Base):
    __tablename__ = "broadcast_deliveries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    scheduled_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="FAILED")  # SENT, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("scheduled_id", "user_id", name="uq_broadcast_scheduled_user"),)
