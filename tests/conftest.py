from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from tutorbot import repo
from tutorbot.bot.dispatch import DispatchRouter
from tutorbot.bot.events import EventKind, InboundEvent
from tutorbot.core.config import Settings
from tutorbot.db.session import create_schema, dispose_engine, init_engine, session_scope

ADMIN_ID = 900
OTHER_ADMIN_ID = 901


@dataclass
class Sent:
    chat_id: int
    kind: str
    text: str
    reply_markup: Any = None
    file_id: str | None = None


class FakeNotifier:
    """Records every send. Chats listed in ``failing`` raise like a blocked bot would."""

    def __init__(self) -> None:
        self.sent: list[Sent] = []
        self.failing: set[int] = set()

    def _record(self, item: Sent) -> None:
        if item.chat_id in self.failing:
            raise RuntimeError("Forbidden: bot was blocked by the user")
        self.sent.append(item)

    async def send_text(self, chat_id: int, text: str, *, reply_markup: Any = None) -> None:
        self._record(Sent(chat_id, "text", text, reply_markup))

    async def send_photo(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None:
        self._record(Sent(chat_id, "photo", caption, reply_markup, file_id))

    async def send_document(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None:
        self._record(Sent(chat_id, "document", caption, reply_markup, file_id))

    def to(self, chat_id: int) -> list[Sent]:
        return [s for s in self.sent if s.chat_id == chat_id]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        bot_token="123456:TEST",
        bot_username="TutorTestBot",
        admin_ids=(ADMIN_ID, OTHER_ADMIN_ID),
        event_timeout_seconds=5,
    )


@pytest.fixture
async def db():
    init_engine("sqlite+aiosqlite://")
    await create_schema()
    yield
    await dispose_engine()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def router(settings, notifier, db) -> DispatchRouter:
    return DispatchRouter(settings, notifier)


async def load_user(tg_id: int):
    async with session_scope() as session:
        return await repo.get_user(session, tg_id)


async def send_text(router: DispatchRouter, tg_id: int, text: str, first_name: str = "Abebe"):
    return await router.handle(InboundEvent.from_text(text, tg_id=tg_id, chat_id=tg_id, first_name=first_name))


async def click(router: DispatchRouter, tg_id: int, data: str):
    return await router.handle(
        InboundEvent(kind=EventKind.CALLBACK, tg_id=tg_id, chat_id=tg_id, callback_data=data)
    )


async def send_photo(router: DispatchRouter, tg_id: int, file_id: str = "photo-large"):
    return await router.handle(InboundEvent(kind=EventKind.PHOTO, tg_id=tg_id, chat_id=tg_id, file_id=file_id))


async def register_until_screenshot(router: DispatchRouter, tg_id: int) -> None:
    """Walk a fresh user through every step up to the screenshot."""
    await send_text(router, tg_id, "/start")
    await send_text(router, tg_id, "📚 Register for Tutorial")
    await click(router, tg_id, "reg_type_natural")
    await send_text(router, tg_id, "Abebe Kebede")
    await send_text(router, tg_id, "+251912345678")
    await click(router, tg_id, "reg_method_telebirr")
