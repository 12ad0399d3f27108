from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from sheetbot.config import settings
from sheetbot.dependencies import get_blacklist, get_dispatcher
from sheetbot.logging_config import get_logger
from sheetbot.schemas.webhook import WebhookRequest, WebhookResponse
from sheetbot.services.blacklist import Blacklist
from sheetbot.services.dispatcher import MessageDispatcher

logger = get_logger("webhook")

router = APIRouter()


def _check_webhook_secret(provided: Optional[str]) -> None:
    expected = settings.webhook_secret
    if expected and provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    payload: WebhookRequest,
    x_webhook_secret: Optional[str] = Header(default=None, alias="X-Webhook-Secret"),
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
    blacklist: Blacklist = Depends(get_blacklist),
):
    """Handle an inbound ChatFlow message."""
    _check_webhook_secret(x_webhook_secret)

    body = payload.body
    metadata = body.metadata
    if not metadata or not metadata.remoteJid:
        return WebhookResponse(success=False, message="Missing metadata.remoteJid")

    remote_jid = metadata.remoteJid
    message_text = (body.message or "").strip()
    if not message_text:
        return WebhookResponse(success=False, message="Empty message")

    if blacklist.contains(remote_jid):
        logger.info(f"Ignoring blacklisted user {remote_jid}")
        return WebhookResponse(success=True, message="Blacklisted")

    result = await dispatcher.handle(remote_jid, message_text)
    return WebhookResponse(
        success=True,
        message=f"Handled by {result.step}" if result.step else "No action",
        step=result.step,
        bot_responses=result.texts,
    )
