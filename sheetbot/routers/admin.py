"""Administrative endpoints. They bypass the dispatch pipeline entirely."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from sheetbot.config import settings
from sheetbot.dependencies import get_blacklist, get_broadcast_service, get_content_source, get_transport
from sheetbot.logging_config import get_logger
from sheetbot.schemas.admin import (
    AckResponse,
    BlacklistRequest,
    BlacklistResponse,
    DirectMessageRequest,
    FlowTriggerRequest,
    ScheduledCheckResponse,
    ScheduledStatsResponse,
)
from sheetbot.services.blacklist import Blacklist
from sheetbot.services.broadcast_service import BroadcastService
from sheetbot.services.chatflow_service import Transport, to_whatsapp_jid
from sheetbot.services.content_source import ContentSource
from sheetbot.services.errors import ServiceError, TransientDeliveryError
from sheetbot.services.flow_service import REGISTER_FLOW, SAMPLES_FLOW, find_named_flow, render_answer

logger = get_logger("admin")


def require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_token
    if not expected:
        return
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


router = APIRouter(prefix="/v1", tags=["admin"], dependencies=[Depends(require_admin_token)])


@router.post("/messages", response_model=AckResponse)
async def send_direct_message(request: DirectMessageRequest, transport: Transport = Depends(get_transport)):
    if not request.message.strip() and not request.urlMedia:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="message or urlMedia is required")

    jid = to_whatsapp_jid(request.number)
    try:
        await transport.send_text(jid, request.message, media=request.urlMedia)
    except TransientDeliveryError as e:
        logger.error(f"Direct send to {jid} failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return AckResponse(message="sended")


async def _trigger_named_flow(
    event_name: str,
    request: FlowTriggerRequest,
    content_source: ContentSource,
    transport: Transport,
) -> AckResponse:
    try:
        flows = await content_source.list_flows()
    except ServiceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    flow = find_named_flow(flows, event_name)
    if flow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Flow '{event_name}' not found")

    jid = to_whatsapp_jid(request.number)
    try:
        await transport.send_text(jid, render_answer(flow, request.name), media=flow.media)
    except TransientDeliveryError as e:
        logger.error(f"Flow {event_name} to {jid} failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    logger.info(f"Triggered flow {event_name} for {jid}")
    return AckResponse(message="trigger")


@router.post("/register", response_model=AckResponse)
async def trigger_register(
    request: FlowTriggerRequest,
    content_source: ContentSource = Depends(get_content_source),
    transport: Transport = Depends(get_transport),
):
    return await _trigger_named_flow(REGISTER_FLOW, request, content_source, transport)


@router.post("/samples", response_model=AckResponse)
async def trigger_samples(
    request: FlowTriggerRequest,
    content_source: ContentSource = Depends(get_content_source),
    transport: Transport = Depends(get_transport),
):
    return await _trigger_named_flow(SAMPLES_FLOW, request, content_source, transport)


@router.post("/blacklist", response_model=BlacklistResponse)
def update_blacklist(request: BlacklistRequest, blacklist: Blacklist = Depends(get_blacklist)):
    if request.intent == "add":
        jid = blacklist.add(request.number)
    else:
        jid = blacklist.remove(request.number)
    return BlacklistResponse(number=jid, intent=request.intent)


@router.get("/scheduled-stats", response_model=ScheduledStatsResponse)
async def scheduled_stats(broadcasts: BroadcastService = Depends(get_broadcast_service)):
    return ScheduledStatsResponse(stats=await broadcasts.get_stats())


@router.post("/scheduled-check", response_model=ScheduledCheckResponse)
async def scheduled_check(broadcasts: BroadcastService = Depends(get_broadcast_service)):
    try:
        summary = await broadcasts.force_check()
    except Exception as e:
        logger.error(f"Forced broadcast check failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return ScheduledCheckResponse(message="Verificación forzada completada", summary=summary)


@router.post("/scheduled-restart", response_model=ScheduledCheckResponse)
async def scheduled_restart(broadcasts: BroadcastService = Depends(get_broadcast_service)):
    await broadcasts.restart()
    return ScheduledCheckResponse(message="Servicio reiniciado")
