from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Iterable, Iterator, Protocol

from aiogram import Bot
from aiogram.enums import ParseMode

log = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_text(self, chat_id: int, text: str, *, reply_markup: Any = None) -> None: ...

    async def send_photo(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None: ...

    async def send_document(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None: ...


class BotNotifier:
    """Notifier backed by aiogram's Bot. Every call is bounded by a timeout."""

    def __init__(self, bot: Bot, *, timeout_seconds: float = 10):
        self.bot = bot
        self.timeout_seconds = timeout_seconds

    async def send_text(self, chat_id: int, text: str, *, reply_markup: Any = None) -> None:
        await asyncio.wait_for(
            self.bot.send_message(chat_id, text, parse_mode=ParseMode.HTML, reply_markup=reply_markup),
            timeout=self.timeout_seconds,
        )

    async def send_photo(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None:
        await asyncio.wait_for(
            self.bot.send_photo(
                chat_id, file_id, caption=caption, parse_mode=ParseMode.HTML, reply_markup=reply_markup
            ),
            timeout=self.timeout_seconds,
        )

    async def send_document(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None:
        await asyncio.wait_for(
            self.bot.send_document(
                chat_id, file_id, caption=caption, parse_mode=ParseMode.HTML, reply_markup=reply_markup
            ),
            timeout=self.timeout_seconds,
        )


async def notify_safe(notifier: Notifier, chat_id: int, text: str, *, reply_markup: Any = None) -> bool:
    """Best-effort text send. Failures are logged and never raised."""
    try:
        await notifier.send_text(chat_id, text, reply_markup=reply_markup)
        return True
    except Exception:
        log.warning("notify_failed chat_id=%s", chat_id, exc_info=True)
        return False


async def _send_to_admin(
    notifier: Notifier,
    admin_id: int,
    text: str,
    reply_markup: Any,
    file_id: str | None,
    file_kind: str,
) -> None:
    if file_id and file_kind == "document":
        await notifier.send_document(admin_id, file_id, caption=text, reply_markup=reply_markup)
    elif file_id:
        await notifier.send_photo(admin_id, file_id, caption=text, reply_markup=reply_markup)
    else:
        await notifier.send_text(admin_id, text, reply_markup=reply_markup)


async def notify_admins(
    notifier: Notifier,
    admin_ids: Iterable[int],
    text: str,
    *,
    reply_markup: Any = None,
    file_id: str | None = None,
    file_kind: str = "photo",
) -> int:
    """Deliver to all admins concurrently. Returns how many sends succeeded.

    A slow or failing admin never delays or blocks the others.
    """
    admin_ids = list(admin_ids)
    results = await asyncio.gather(
        *(_send_to_admin(notifier, admin_id, text, reply_markup, file_id, file_kind) for admin_id in admin_ids),
        return_exceptions=True,
    )
    delivered = 0
    for admin_id, result in zip(admin_ids, results):
        if isinstance(result, BaseException):
            log.warning("notify_admin_failed admin_id=%s", admin_id, exc_info=result)
        else:
            delivered += 1
    return delivered


# Work queued here runs once the current event has been answered, outside its timeout.
_after_event: ContextVar[list[Awaitable[Any]] | None] = ContextVar("after_event", default=None)


@contextmanager
def collect_after_event() -> Iterator[list[Awaitable[Any]]]:
    pending: list[Awaitable[Any]] = []
    token = _after_event.set(pending)
    try:
        yield pending
    finally:
        _after_event.reset(token)


async def run_after_event(aw: Awaitable[Any]) -> None:
    """Queue post-commit notifications for the current event, or run them now outside of one."""
    pending = _after_event.get()
    if pending is None:
        await aw
    else:
        pending.append(aw)


async def drain_after_event(pending: list[Awaitable[Any]]) -> None:
    while pending:
        batch = list(pending)
        pending.clear()
        for result in await asyncio.gather(*batch, return_exceptions=True):
            if isinstance(result, BaseException):
                log.warning("after_event_failed", exc_info=result)
