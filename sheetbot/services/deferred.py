import asyncio
from typing import Any, Callable

from sheetbot.logging_config import get_logger

logger = get_logger("deferred")


class DeferredScheduler:
    """Fire-and-forget one-shot timers on the running event loop."""

    def schedule(self, delay_seconds: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay_seconds, 0), self._run, callback, args)

    @staticmethod
    def _run(callback: Callable[..., Any], args: tuple) -> None:
        # Timer failures stay inside the timer.
        try:
            callback(*args)
        except Exception as exc:
            logger.error(
                "Deferred task failed",
                extra={"context": {"callback": getattr(callback, "__name__", repr(callback)), "error": str(exc)}},
            )
