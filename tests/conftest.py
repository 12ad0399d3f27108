from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sheetbot.database import init_db
from sheetbot.services.activity_tracker import ActivityTracker
from sheetbot.services.asset_catalog import AssetCatalog, AssetDescriptor
from sheetbot.services.chatflow_service import Transport
from sheetbot.services.content_source import ContentSource, Flow, ScheduledMessage
from sheetbot.services.conversation_log import ConversationLog
from sheetbot.services.dispatcher import MessageDispatcher
from sheetbot.services.errors import ServiceError, TransientDeliveryError
from sheetbot.services.session_store import SessionStore

LEGAL_ID = "1gXgh7ugCEC3l4JvbadhrPiwQMDZCuTvB"
CONTABLE_ID = "184wOk8NESI1YOMxHyq7kVO6_RA39xPgM"


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualScheduler:
    """Collects deferred calls; tests fire them explicitly."""

    def __init__(self):
        self.calls = []

    def schedule(self, delay_seconds, callback, *args):
        self.calls.append((delay_seconds, callback, args))

    def fire_all(self) -> None:
        calls, self.calls = self.calls, []
        for _delay, callback, args in calls:
            callback(*args)


class FakeTransport(Transport):
    def __init__(self, fail_texts: bool = False, fail_files: bool = False):
        self.fail_texts = fail_texts
        self.fail_files = fail_files
        self.sent = []

    async def send_text(self, user_id: str, text: str, media: Optional[str] = None) -> None:
        if self.fail_texts:
            raise TransientDeliveryError("transport down", status_code=503)
        self.sent.append(("text", user_id, text, media))

    async def send_file(self, user_id, url, filename, caption, mimetype=None) -> None:
        if self.fail_files:
            raise TransientDeliveryError("file upload failed", status_code=502)
        self.sent.append(("file", user_id, url, filename))

    def texts(self, user_id: Optional[str] = None) -> List[str]:
        return [item[2] for item in self.sent if item[0] == "text" and (user_id is None or item[1] == user_id)]

    def files(self) -> list:
        return [item for item in self.sent if item[0] == "file"]


class FakeContentSource(ContentSource):
    def __init__(self, flows=None, prompt=None, scheduled=None, fail: bool = False):
        self.flows = flows or []
        self.prompt = prompt
        self.scheduled = scheduled or []
        self.fail = fail

    async def list_flows(self) -> List[Flow]:
        if self.fail:
            raise ServiceError("content_source", "sheet unavailable")
        return list(self.flows)

    async def get_prompt(self) -> Optional[str]:
        if self.fail:
            raise ServiceError("content_source", "sheet unavailable")
        return self.prompt

    async def list_scheduled_messages(self) -> List[ScheduledMessage]:
        if self.fail:
            raise ServiceError("content_source", "sheet unavailable")
        return list(self.scheduled)


class FakeConversationLog(ConversationLog):
    def __init__(self, fail: bool = False):
        self.entries = {}
        self.cleared = []
        self.fail = fail

    async def append(self, user_id: str, role: str, text: str) -> None:
        if self.fail:
            raise ServiceError("conversation_log", "db down")
        self.entries.setdefault(user_id, []).append({"role": role, "content": text})

    async def clear(self, user_id: str) -> None:
        if self.fail:
            raise ServiceError("conversation_log", "db down")
        self.cleared.append(user_id)
        self.entries.pop(user_id, None)

    async def history(self, user_id: str, limit: int = 10) -> List[dict]:
        if self.fail:
            raise ServiceError("conversation_log", "db down")
        return self.entries.get(user_id, [])[-limit:]


class FakeAI:
    def __init__(self, answer: str = "Respuesta de IA", error: Optional[Exception] = None, on_call=None):
        self.answer = answer
        self.error = error
        self.on_call = on_call
        self.calls = []

    async def complete(self, text: str, user_id: str) -> str:
        self.calls.append((text, user_id))
        if self.on_call:
            self.on_call(user_id)
        if self.error:
            raise self.error
        return self.answer


def make_catalog() -> AssetCatalog:
    return AssetCatalog(
        [
            AssetDescriptor(key="contable", external_id=CONTABLE_ID, filename="contable.pdf", caption="Brochure contable"),
            AssetDescriptor(key="legal", external_id=LEGAL_ID, filename="legal.pdf", caption="Brochure legal"),
            AssetDescriptor(key="branding", external_id="TU_ID", filename="branding.pdf", caption="Brochure branding"),
        ]
    )


class DispatcherHarness:
    def __init__(self, flows=None, content_fail=False, ai=None, transport=None, log=None):
        self.clock = FakeClock()
        self.scheduler = ManualScheduler()
        self.tracker = ActivityTracker(scheduler=self.scheduler, session_timeout=300, response_timeout=60)
        self.sessions = SessionStore()
        self.catalog = make_catalog()
        self.content = FakeContentSource(flows=flows, fail=content_fail)
        self.ai = ai or FakeAI()
        self.log = log or FakeConversationLog()
        self.transport = transport or FakeTransport()
        self.dispatcher = MessageDispatcher(
            tracker=self.tracker,
            sessions=self.sessions,
            catalog=self.catalog,
            content_source=self.content,
            ai=self.ai,
            conversation_log=self.log,
            transport=self.transport,
            clock=self.clock,
        )


@pytest.fixture
def harness():
    return DispatcherHarness()


@pytest.fixture
def session_factory():
    """In-memory SQLite shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()
