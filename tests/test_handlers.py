import asyncio
import logging
from types import SimpleNamespace

from tutorbot.bot.events import EventKind
from tutorbot.bot.handlers.updates import event_from_callback, event_from_message
from tutorbot.bot.middlewares import RateLimitMiddleware, UserLockMiddleware
from tutorbot.core.logging import ContextFilter, bind_log_context, reset_log_context


def _message(**kwargs):
    base = dict(
        from_user=SimpleNamespace(id=10, first_name="Abebe", username="abebe"),
        chat=SimpleNamespace(id=10),
        photo=None,
        document=None,
        contact=None,
        text=None,
    )
    base.update(kwargs)
    return SimpleNamespace(**base)


def test_photo_uses_largest_variant():
    photo = [SimpleNamespace(file_id="small"), SimpleNamespace(file_id="medium"), SimpleNamespace(file_id="large")]
    event = event_from_message(_message(photo=photo), update_id=7)
    assert event.kind is EventKind.PHOTO
    assert event.file_id == "large"
    assert event.update_id == 7


def test_document_contact_and_text():
    doc = event_from_message(_message(document=SimpleNamespace(file_id="doc")))
    assert (doc.kind, doc.file_id) == (EventKind.DOCUMENT, "doc")

    contact = event_from_message(_message(contact=SimpleNamespace(phone_number="2519", user_id=10)))
    assert (contact.kind, contact.contact_phone, contact.contact_user_id) == (EventKind.CONTACT, "2519", 10)

    cmd = event_from_message(_message(text="/start ref_3"))
    assert (cmd.kind, cmd.command, cmd.command_args) == (EventKind.COMMAND, "start", "ref_3")


def test_unsupported_message_is_ignored():
    assert event_from_message(_message()) is None
    assert event_from_message(_message(from_user=None, text="hi")) is None


def test_callback_event():
    cb = SimpleNamespace(
        from_user=SimpleNamespace(id=5, first_name="A", username=None),
        message=SimpleNamespace(chat=SimpleNamespace(id=77)),
        data="admin_approve_1",
    )
    event = event_from_callback(cb)
    assert (event.kind, event.tg_id, event.chat_id, event.callback_data) == (EventKind.CALLBACK, 5, 77, "admin_approve_1")

    cb.message = None
    assert event_from_callback(cb).chat_id == 5


async def test_user_lock_serializes_same_user_only():
    middleware = UserLockMiddleware()
    running: dict[int, int] = {1: 0, 2: 0}
    peak: dict[int, int] = {1: 0, 2: 0}

    async def handler(event, data):
        uid = event.from_user.id
        running[uid] += 1
        peak[uid] = max(peak[uid], running[uid])
        await asyncio.sleep(0.01)
        running[uid] -= 1

    def ev(uid):
        return SimpleNamespace(from_user=SimpleNamespace(id=uid))

    await asyncio.gather(*(middleware(handler, ev(uid), {}) for uid in (1, 1, 1, 2, 2)))

    assert peak == {1: 1, 2: 1}


async def test_user_lock_lets_different_users_overlap():
    middleware = UserLockMiddleware()
    inside = asyncio.Event()
    release = asyncio.Event()

    async def slow(event, data):
        inside.set()
        await release.wait()

    async def fast(event, data):
        release.set()
        return "done"

    first = asyncio.create_task(middleware(slow, SimpleNamespace(from_user=SimpleNamespace(id=1)), {}))
    await inside.wait()
    result = await asyncio.wait_for(middleware(fast, SimpleNamespace(from_user=SimpleNamespace(id=2)), {}), 1)
    await first
    assert result == "done"


def test_log_context_is_attached_to_records():
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "payment_submitted", None, None)
    token = bind_log_context(corr_id="u5", tg_id=10, update_id=None)
    try:
        ContextFilter().filter(record)
    finally:
        reset_log_context(token)
    assert record.corr_id == "u5"
    assert record.tg_id == 10
    assert not hasattr(record, "update_id")


class _Callback(SimpleNamespace):
    answered = 0

    async def answer(self):
        self.answered += 1


async def test_repeated_button_press_is_throttled_and_answered():
    middleware = RateLimitMiddleware(min_interval_sec=10)
    calls = []

    async def handler(event, data):
        calls.append(event.data)

    first = _Callback(data="reg_cancel", from_user=SimpleNamespace(id=1))
    second = _Callback(data="reg_cancel", from_user=SimpleNamespace(id=1))
    await middleware(handler, first, {})
    await middleware(handler, second, {})

    assert calls == ["reg_cancel"]
    assert second.answered == 1


async def test_rate_limit_forgets_old_presses():
    middleware = RateLimitMiddleware(min_interval_sec=0, sweep_interval_sec=0)

    async def handler(event, data):
        return None

    for uid in range(50):
        await middleware(handler, _Callback(data=f"admin_details_{uid}", from_user=SimpleNamespace(id=uid)), {})

    assert len(middleware._last) == 1
