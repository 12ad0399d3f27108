"""Process-wide service instances, created lazily and injected into routers."""

from pathlib import Path
from typing import Optional

from sheetbot.config import settings
from sheetbot.database import SessionLocal
from sheetbot.logging_config import get_logger
from sheetbot.services.activity_tracker import ActivityTracker
from sheetbot.services.ai_service import AIResponder
from sheetbot.services.asset_catalog import AssetCatalog, default_catalog, load_catalog
from sheetbot.services.blacklist import Blacklist
from sheetbot.services.broadcast_service import BroadcastService
from sheetbot.services.chatflow_service import ChatFlowTransport, Transport
from sheetbot.services.content_source import ContentSource, GoogleSheetSource, YamlContentSource
from sheetbot.services.conversation_log import SqlConversationLog
from sheetbot.services.dispatcher import MessageDispatcher
from sheetbot.services.llm import GroqProvider
from sheetbot.services.session_store import SessionStore

logger = get_logger("dependencies")

_tracker: Optional[ActivityTracker] = None
_sessions: Optional[SessionStore] = None
_catalog: Optional[AssetCatalog] = None
_content_source: Optional[ContentSource] = None
_conversation_log: Optional[SqlConversationLog] = None
_transport: Optional[Transport] = None
_dispatcher: Optional[MessageDispatcher] = None
_blacklist: Optional[Blacklist] = None
_broadcasts: Optional[BroadcastService] = None


def get_tracker() -> ActivityTracker:
    global _tracker
    if _tracker is None:
        _tracker = ActivityTracker(
            session_timeout=settings.session_timeout_seconds,
            response_timeout=settings.response_timeout_seconds,
        )
    return _tracker


def get_session_store() -> SessionStore:
    global _sessions
    if _sessions is None:
        _sessions = SessionStore()
    return _sessions


def get_catalog() -> AssetCatalog:
    global _catalog
    if _catalog is None:
        if settings.assets_path:
            _catalog = load_catalog(Path(settings.assets_path))
        else:
            _catalog = default_catalog()
    return _catalog


def get_content_source() -> ContentSource:
    global _content_source
    if _content_source is None:
        if settings.google_sheet_id:
            _content_source = GoogleSheetSource(settings.google_sheet_id, cache_seconds=settings.sheet_cache_seconds)
        else:
            logger.info(f"GOOGLE_SHEET_ID not set, reading content from {settings.content_path}")
            _content_source = YamlContentSource(Path(settings.content_path))
    return _content_source


def get_conversation_log() -> SqlConversationLog:
    global _conversation_log
    if _conversation_log is None:
        _conversation_log = SqlConversationLog(SessionLocal)
    return _conversation_log


def get_transport() -> Transport:
    global _transport
    if _transport is None:
        _transport = ChatFlowTransport(
            token=settings.chatflow_token,
            instance_id=settings.chatflow_instance_id,
            base_url=settings.chatflow_base_url,
        )
    return _transport


def get_dispatcher() -> MessageDispatcher:
    global _dispatcher
    if _dispatcher is None:
        conversation_log = get_conversation_log()
        ai = AIResponder(
            provider=GroqProvider(
                api_key=settings.groq_api_key,
                default_model=settings.groq_model,
                base_url=settings.groq_base_url,
                timeout_seconds=settings.ai_timeout_seconds,
            ),
            conversation_log=conversation_log,
            content_source=get_content_source(),
            default_prompt=settings.ai_system_prompt,
            history_limit=settings.ai_history_limit,
        )
        _dispatcher = MessageDispatcher(
            tracker=get_tracker(),
            sessions=get_session_store(),
            catalog=get_catalog(),
            content_source=get_content_source(),
            ai=ai,
            conversation_log=conversation_log,
            transport=get_transport(),
            asset_marker=settings.asset_request_marker,
        )
    return _dispatcher


def get_blacklist() -> Blacklist:
    global _blacklist
    if _blacklist is None:
        _blacklist = Blacklist()
    return _blacklist


def get_broadcast_service() -> BroadcastService:
    global _broadcasts
    if _broadcasts is None:
        _broadcasts = BroadcastService(
            content_source=get_content_source(),
            transport=get_transport(),
            tracker=get_tracker(),
            session_factory=SessionLocal,
            interval_seconds=settings.broadcast_interval_seconds,
            max_attempts=settings.broadcast_max_attempts,
        )
    return _broadcasts
