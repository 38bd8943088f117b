from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Update

from tutorbot.core.logging import bind_log_context, reset_log_context

log = logging.getLogger(__name__)


class CorrelationIdMiddleware(BaseMiddleware):
    """Adds corr_id / update_id / tg_id to every log record of the update."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        update: Update | None = data.get("event_update")
        from_user = getattr(event, "from_user", None)
        fields: dict[str, Any] = {"tg_id": from_user.id if from_user else None}
        if update:
            data["corr_id"] = f"u{update.update_id}"
            data["update_id"] = update.update_id
            fields.update(corr_id=data["corr_id"], update_id=update.update_id)
        token = bind_log_context(**fields)
        try:
            return await handler(event, data)
        finally:
            reset_log_context(token)


class RateLimitMiddleware(BaseMiddleware):
    """Drops repeated presses of the same button within ``min_interval_sec``.

    Throttled presses are still answered so the button spinner stops.
    """

    def __init__(self, min_interval_sec: float = 0.4, sweep_interval_sec: float = 60.0):
        self.min_interval_sec = min_interval_sec
        self.sweep_interval_sec = sweep_interval_sec
        self._last: dict[tuple[int, str], float] = {}
        self._last_sweep = time.monotonic()

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.sweep_interval_sec:
            return
        self._last_sweep = now
        cutoff = now - self.min_interval_sec
        for key in [k for k, seen in self._last.items() if seen <= cutoff]:
            del self._last[key]

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        # only for callback queries
        cb = getattr(event, "data", None)
        from_user = getattr(event, "from_user", None)
        if cb and from_user:
            key = (from_user.id, cb)
            now = time.monotonic()
            self._sweep(now)
            last = self._last.get(key)
            if last and (now - last) < self.min_interval_sec:
                log.info("callback_throttled tg_id=%s", from_user.id)
                try:
                    await event.answer()
                except Exception:
                    log.warning("callback_answer_failed tg_id=%s", from_user.id, exc_info=True)
                return None
            self._last[key] = now
        return await handler(event, data)


class UserLockMiddleware(BaseMiddleware):
    """Serializes events of the same user inside this process.

    Events of different users run concurrently. Cross-process safety comes
    from the guarded UPDATEs in the services.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, tg_id: int) -> asyncio.Lock:
        lock = self._locks.get(tg_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tg_id] = lock
        return lock

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        if from_user is None:
            return await handler(event, data)
        lock = self.lock_for(from_user.id)
        async with lock:
            return await handler(event, data)
