from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class WebhookMetadata(BaseModel):
    sender: Optional[str] = None
    timestamp: Optional[int] = None
    messageId: Optional[str] = None
    remoteJid: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("remoteJid", "remote_jid", "from"),
    )


class WebhookBody(BaseModel):
    messageType: Optional[str] = "text"
    message: Optional[str] = None
    metadata: Optional[WebhookMetadata] = None
    mediaData: Optional[Any] = None


class WebhookRequest(BaseModel):
    body: WebhookBody


class WebhookResponse(BaseModel):
    success: bool
    message: str
    step: Optional[str] = None
    bot_responses: List[str] = []
