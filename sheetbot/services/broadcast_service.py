"""Scheduled broadcasts read from the content source.

A background worker periodically sends every due row that has not been
delivered yet. Deliveries are recorded in ``broadcast_deliveries`` so a row
reaches each user at most once; failed sends are retried until
``max_attempts``. Users whose liveness flag is off are skipped and retried
on a later round.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set, Tuple

from sqlalchemy.orm import Session

from sheetbot.logging_config import get_logger
from sheetbot.models import BroadcastDelivery
from sheetbot.services.activity_tracker import ActivityTracker
from sheetbot.services.chatflow_service import Transport, to_whatsapp_jid
from sheetbot.services.content_source import ContentSource
from sheetbot.services.errors import ServiceError, TransientDeliveryError

logger = get_logger("broadcast_service")

STATUS_SENT = "SENT"
STATUS_FAILED = "FAILED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BroadcastService:
    def __init__(
        self,
        content_source: ContentSource,
        transport: Transport,
        tracker: ActivityTracker,
        session_factory: Callable[[], Session],
        interval_seconds: float = 60.0,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.content_source = content_source
        self.transport = transport
        self.tracker = tracker
        self.session_factory = session_factory
        self.interval_seconds = max(interval_seconds, 1.0)
        self.max_attempts = max_attempts
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._check_lock = asyncio.Lock()
        # Sent rows whose ledger write failed; never re-sent by this process.
        self._unrecorded: Set[Tuple[str, str]] = set()
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.checks = 0
        self.sent = 0
        self.failed = 0
        self.skipped_inactive = 0
        self.last_check_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    # --- ledger ---

    def _load_ledger(self) -> Dict[Tuple[str, str], Tuple[str, int]]:
        db = self.session_factory()
        try:
            rows = db.query(BroadcastDelivery).all()
            return {(row.scheduled_id, row.user_id): (row.status, row.attempts) for row in rows}
        finally:
            db.close()

    def _record(self, scheduled_id: str, user_id: str, status: str, error: Optional[str]) -> None:
        now = _utcnow()
        db = self.session_factory()
        try:
            row = (
                db.query(BroadcastDelivery)
                .filter(BroadcastDelivery.scheduled_id == scheduled_id, BroadcastDelivery.user_id == user_id)
                .first()
            )
            if row is None:
                row = BroadcastDelivery(
                    scheduled_id=scheduled_id,
                    user_id=user_id,
                    attempts=0,
                    created_at=now,
                    updated_at=now,
                )
                db.add(row)
            row.status = status
            row.attempts = (row.attempts or 0) + 1
            row.last_error = error
            row.updated_at = now
            db.commit()
        finally:
            db.close()

    def _count_pending_failures(self) -> int:
        db = self.session_factory()
        try:
            return (
                db.query(BroadcastDelivery)
                .filter(
                    BroadcastDelivery.status == STATUS_FAILED,
                    BroadcastDelivery.attempts < self.max_attempts,
                )
                .count()
            )
        finally:
            db.close()

    # --- checks ---

    async def check_due(self) -> dict:
        """Send every due, undelivered scheduled message. Returns a round summary."""
        async with self._check_lock:
            now = self.clock()
            summary = {"due": 0, "sent": 0, "failed": 0, "skipped_inactive": 0, "upcoming": 0}
            self.checks += 1
            self.last_check_at = now

            try:
                items = await self.content_source.list_scheduled_messages()
            except ServiceError as e:
                self.last_error = str(e)
                logger.error(f"Scheduled messages unavailable: {e}")
                return summary

            ledger = await asyncio.to_thread(self._load_ledger)

            for item in items:
                user_id = to_whatsapp_jid(item.number)
                if item.send_at > now:
                    summary["upcoming"] += 1
                    continue

                key = (item.id, user_id)
                status, attempts = ledger.get(key, (None, 0))
                if status == STATUS_SENT or attempts >= self.max_attempts or key in self._unrecorded:
                    continue

                summary["due"] += 1
                if not self.tracker.is_active(user_id):
                    summary["skipped_inactive"] += 1
                    continue

                try:
                    await self.transport.send_text(user_id, item.message, media=item.media)
                except TransientDeliveryError as e:
                    summary["failed"] += 1
                    self.last_error = str(e)
                    logger.warning(f"Broadcast {item.id} to {user_id} failed (attempt {attempts + 1}): {e}")
                    await asyncio.to_thread(self._record, item.id, user_id, STATUS_FAILED, str(e))
                    continue

                summary["sent"] += 1
                try:
                    await asyncio.to_thread(self._record, item.id, user_id, STATUS_SENT, None)
                except Exception as e:
                    self._unrecorded.add(key)
                    self.last_error = str(e)
                    logger.error(
                        f"Broadcast {item.id} sent to {user_id} but not recorded: {e}",
                        extra={"context": {"scheduled_id": item.id, "user_id": user_id}},
                    )

            self.sent += summary["sent"]
            self.failed += summary["failed"]
            self.skipped_inactive += summary["skipped_inactive"]
            if summary["due"]:
                logger.info("Broadcast check completed", extra={"context": summary})
            return summary

    async def force_check(self) -> dict:
        return await self.check_due()

    # --- worker ---

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.check_due()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self.last_error = str(exc)
                logger.error(
                    "Broadcast worker loop failed",
                    extra={"context": {"error": str(exc)}},
                )

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run_loop())
            logger.info(f"Broadcast worker started, interval={self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Broadcast worker stopped")

    async def restart(self) -> None:
        await self.stop()
        self._reset_counters()
        self.start()

    async def get_stats(self) -> dict:
        try:
            retrying = await asyncio.to_thread(self._count_pending_failures)
        except Exception as e:
            logger.warning(f"Could not count pending broadcast retries: {e}")
            retrying = None
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "checks": self.checks,
            "sent": self.sent,
            "failed": self.failed,
            "skipped_inactive": self.skipped_inactive,
            "retrying": retrying,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "last_error": self.last_error,
        }
