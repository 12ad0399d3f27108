import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from sheetbot.logging_config import get_logger
from sheetbot.models import ChatMessage
from sheetbot.services.errors import ServiceError

logger = get_logger("conversation_log")


class ConversationLog(ABC):
    @abstractmethod
    async def append(self, user_id: str, role: str, text: str) -> None:
        pass

    @abstractmethod
    async def clear(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def history(self, user_id: str, limit: int = 10) -> List[dict]:
        pass


class SqlConversationLog(ConversationLog):
    """Conversation history stored in the ``chat_messages`` table.

    Queries run in a worker thread so the event loop never waits on the database.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def _run(self, operation: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except Exception as e:
            logger.error(f"Conversation log {operation} failed: {e}")
            raise ServiceError("conversation_log", f"{operation} failed: {e}") from e

    def _append_sync(self, user_id: str, role: str, text: str) -> None:
        db = self.session_factory()
        try:
            db.add(
                ChatMessage(
                    user_id=user_id,
                    role=role,
                    content=text,
                    created_at=datetime.now(timezone.utc),
                )
            )
            db.commit()
        finally:
            db.close()

    def _clear_sync(self, user_id: str) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(ChatMessage).filter(ChatMessage.user_id == user_id).delete()
            db.commit()
            return deleted
        finally:
            db.close()

    def _history_sync(self, user_id: str, limit: int) -> List[dict]:
        db = self.session_factory()
        try:
            rows = (
                db.query(ChatMessage)
                .filter(ChatMessage.user_id == user_id)
                .order_by(ChatMessage.created_at.desc())
                .limit(limit)
                .all()
            )
            return [{"role": row.role, "content": row.content} for row in reversed(rows)]
        finally:
            db.close()

    def _cleanup_sync(self, max_age_days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        db = self.session_factory()
        try:
            deleted = db.query(ChatMessage).filter(ChatMessage.created_at < cutoff).delete()
            db.commit()
            return deleted
        finally:
            db.close()

    def _stats_sync(self) -> dict:
        db = self.session_factory()
        try:
            total, users, oldest, newest = db.query(
                func.count(ChatMessage.id),
                func.count(func.distinct(ChatMessage.user_id)),
                func.min(ChatMessage.created_at),
                func.max(ChatMessage.created_at),
            ).one()
            return {
                "messages": total or 0,
                "users": users or 0,
                "oldest": oldest.isoformat() if oldest else None,
                "newest": newest.isoformat() if newest else None,
            }
        finally:
            db.close()

    async def append(self, user_id: str, role: str, text: str) -> None:
        await self._run("append", self._append_sync, user_id, role, text)

    async def clear(self, user_id: str) -> None:
        deleted = await self._run("clear", self._clear_sync, user_id)
        logger.info(f"Cleared {deleted} log entries for {user_id}")

    async def history(self, user_id: str, limit: int = 10) -> List[dict]:
        return await self._run("history", self._history_sync, user_id, limit)

    async def cleanup_old(self, max_age_days: int) -> int:
        return await self._run("cleanup", self._cleanup_sync, max_age_days)

    async def get_stats(self) -> dict:
        return await self._run("stats", self._stats_sync)
