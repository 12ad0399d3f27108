"""Per-user activity and liveness tracking.

Every inbound message touches the user's record. A message that arrives more
than ``session_timeout`` seconds after the previous one signals an expired
session. After each message a liveness check is scheduled; when it fires it
marks the user inactive unless a newer message has been seen since.
"""

from dataclasses import dataclass
from typing import Optional

from sheetbot.logging_config import get_logger
from sheetbot.services.deferred import DeferredScheduler
from sheetbot.services.state_store import InMemoryStateStore, StateStore

logger = get_logger("activity_tracker")

SESSION_TIMEOUT_SECONDS = 5 * 60
RESPONSE_TIMEOUT_SECONDS = 60


@dataclass
class ActivityRecord:
    last_seen_at: float
    active: bool = True


@dataclass(frozen=True)
class TouchResult:
    expired: bool
    previous_seen_at: Optional[float] = None


class ActivityTracker:
    def __init__(
        self,
        store: Optional[StateStore[ActivityRecord]] = None,
        scheduler: Optional[DeferredScheduler] = None,
        session_timeout: float = SESSION_TIMEOUT_SECONDS,
        response_timeout: float = RESPONSE_TIMEOUT_SECONDS,
    ):
        self.store = store if store is not None else InMemoryStateStore()
        self.scheduler = scheduler or DeferredScheduler()
        self.session_timeout = session_timeout
        self.response_timeout = response_timeout

    def touch(self, user_id: str, now: float) -> TouchResult:
        """Record an inbound message and report whether the session expired."""
        record = self.store.get(user_id)
        if record is None:
            self.store.set(user_id, ActivityRecord(last_seen_at=now, active=True))
            return TouchResult(expired=False)

        previous = record.last_seen_at
        expired = (now - previous) > self.session_timeout
        record.last_seen_at = now
        record.active = True
        self.store.set(user_id, record)
        return TouchResult(expired=expired, previous_seen_at=previous)

    def schedule_liveness_check(self, user_id: str, now: float) -> None:
        self.scheduler.schedule(self.response_timeout, self.check_liveness, user_id, now)

    def check_liveness(self, user_id: str, scheduled_at: float) -> bool:
        """Timer body. Returns True if the user was marked inactive."""
        # Read the current record, not a snapshot taken at scheduling time.
        record = self.store.get(user_id)
        if record is None or record.last_seen_at > scheduled_at:
            return False
        if record.active:
            self.mark_inactive(user_id)
        return True

    def mark_inactive(self, user_id: str) -> None:
        record = self.store.get(user_id)
        if record is None:
            return
        record.active = False
        self.store.set(user_id, record)
        logger.info(f"User {user_id} marked inactive after {self.response_timeout}s without reply")

    def is_active(self, user_id: str) -> bool:
        # Unknown users were never marked inactive.
        record = self.store.get(user_id)
        return True if record is None else record.active

    def last_seen_at(self, user_id: str) -> Optional[float]:
        record = self.store.get(user_id)
        return record.last_seen_at if record else None
