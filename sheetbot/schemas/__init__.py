from sheetbot.schemas.admin import (
    AckResponse,
    BlacklistRequest,
    BlacklistResponse,
    DirectMessageRequest,
    FlowTriggerRequest,
    ScheduledCheckResponse,
    ScheduledStatsResponse,
)
from sheetbot.schemas.webhook import WebhookBody, WebhookMetadata, WebhookRequest, WebhookResponse

__all__ = [
    "WebhookRequest",
    "WebhookResponse",
    "WebhookBody",
    "WebhookMetadata",
    "DirectMessageRequest",
    "FlowTriggerRequest",
    "BlacklistRequest",
    "BlacklistResponse",
    "AckResponse",
    "ScheduledStatsResponse",
    "ScheduledCheckResponse",
]
