import asyncio
from dataclasses import replace
from typing import Any

import pytest
from sqlalchemy import select

from conftest import (ADMIN_ID, OTHER_ADMIN_ID, FakeNotifier, click, load_user, register_until_screenshot, send_photo,
                      send_text)
from tutorbot.bot.dispatch import DispatchRouter
from tutorbot.bot.notifier import notify_admins
from tutorbot.core.errors import AlreadyDecided, NotAuthorized, NotFound
from tutorbot.db.models import DecisionStatus, Payment, PaymentStatus, RegistrationStep
from tutorbot.db.session import session_scope
from tutorbot.services.approvals.service import ApprovalService, parse_target_id

USER = 5001
STRANGER = 5002


async def _payments(tg_id: int) -> list[Payment]:
    async with session_scope() as session:
        res = await session.execute(select(Payment).where(Payment.tg_id == tg_id).order_by(Payment.id))
        return list(res.scalars().all())


async def _submitted(router) -> None:
    await register_until_screenshot(router, USER)
    await send_photo(router, USER)


async def test_admin_approves_pending_payment(router, notifier):
    await _submitted(router)
    notifier.clear()

    await click(router, ADMIN_ID, f"admin_approve_{USER}")

    user = await load_user(USER)
    assert user.is_verified is True
    assert user.payment_status == PaymentStatus.APPROVED.value
    [payment] = await _payments(USER)
    assert payment.status == DecisionStatus.APPROVED.value
    assert payment.decided_by == ADMIN_ID
    assert payment.decided_at is not None
    [user_msg] = notifier.to(USER)
    assert "APPROVED" in user_msg.text
    assert f"Payment approved for user {USER}" in notifier.to(ADMIN_ID)[-1].text


async def test_second_approval_does_not_notify_user_again(router, notifier):
    await _submitted(router)
    await click(router, ADMIN_ID, f"admin_approve_{USER}")
    notifier.clear()

    await click(router, OTHER_ADMIN_ID, f"admin_approve_{USER}")

    assert notifier.to(USER) == []
    assert "already decided" in notifier.to(OTHER_ADMIN_ID)[-1].text
    user = await load_user(USER)
    assert user.is_verified is True
    [payment] = await _payments(USER)
    assert payment.decided_by == ADMIN_ID


async def test_reject_after_approve_is_refused(router, notifier):
    await _submitted(router)
    await click(router, ADMIN_ID, f"admin_approve_{USER}")
    notifier.clear()

    await click(router, OTHER_ADMIN_ID, f"admin_reject_{USER}")

    user = await load_user(USER)
    assert user.is_verified is True
    assert user.payment_status == PaymentStatus.APPROVED.value
    assert notifier.to(USER) == []


async def test_admin_rejects_pending_payment(router, notifier):
    await _submitted(router)
    notifier.clear()

    await click(router, ADMIN_ID, f"admin_reject_{USER}")

    user = await load_user(USER)
    assert user.is_verified is False
    assert user.payment_status == PaymentStatus.REJECTED.value
    [payment] = await _payments(USER)
    assert payment.status == DecisionStatus.REJECTED.value
    assert "REJECTED" in notifier.to(USER)[-1].text
    assert f"Payment rejected for user {USER}" in notifier.to(ADMIN_ID)[-1].text


async def test_non_admin_cannot_approve(router, notifier):
    await _submitted(router)
    await send_text(router, STRANGER, "/start")
    notifier.clear()

    await click(router, STRANGER, f"admin_approve_{USER}")

    user = await load_user(USER)
    assert user.is_verified is False
    assert user.payment_status == PaymentStatus.PENDING.value
    assert [s.text for s in notifier.to(STRANGER)] == ["❌ You are not authorized to use admin commands."]
    assert notifier.to(USER) == []


async def test_non_admin_cannot_inspect(router, notifier):
    await _submitted(router)
    await send_text(router, STRANGER, "/start")
    notifier.clear()

    await click(router, STRANGER, f"admin_details_{USER}")

    [reply] = notifier.to(STRANGER)
    assert "+251912345678" not in reply.text
    assert "not authorized" in reply.text


async def test_service_checks_allow_list_itself(settings, notifier, router):
    await _submitted(router)
    service = ApprovalService(settings, notifier)
    async with session_scope() as session:
        with pytest.raises(NotAuthorized):
            await service.approve(session, admin_id=STRANGER, target_id=USER)
        with pytest.raises(NotAuthorized):
            await service.panel(session, admin_id=STRANGER)
    assert (await load_user(USER)).is_verified is False


async def test_details_is_read_only(router, notifier):
    await _submitted(router)
    before = await load_user(USER)
    notifier.clear()

    await click(router, ADMIN_ID, f"admin_details_{USER}")

    text = notifier.to(ADMIN_ID)[-1].text
    assert "USER DETAILS" in text
    assert "Abebe Kebede" in text
    assert "+251912345678" in text
    assert "Natural Science" in text
    assert str(USER) in text
    after = await load_user(USER)
    assert (after.is_verified, after.payment_status) == (before.is_verified, before.payment_status)


async def test_decision_on_missing_user_is_reported_to_admin(settings, notifier, router):
    await click(router, ADMIN_ID, "admin_approve_123456")
    assert "not found" in notifier.to(ADMIN_ID)[-1].text

    service = ApprovalService(settings, notifier)
    async with session_scope() as session:
        with pytest.raises(NotFound):
            await service.reject(session, admin_id=ADMIN_ID, target_id=123456)


async def test_decision_without_pending_payment(settings, notifier, router):
    await send_text(router, USER, "/start")
    service = ApprovalService(settings, notifier)
    async with session_scope() as session:
        with pytest.raises(AlreadyDecided):
            await service.approve(session, admin_id=ADMIN_ID, target_id=USER)
    assert (await load_user(USER)).is_verified is False


async def test_failed_admin_broadcast_keeps_state_and_reaches_others(router, notifier):
    await register_until_screenshot(router, USER)
    notifier.failing.add(ADMIN_ID)

    await send_photo(router, USER)

    assert (await load_user(USER)).payment_status == PaymentStatus.PENDING.value
    assert len(await _payments(USER)) == 1
    assert [s.kind for s in notifier.to(OTHER_ADMIN_ID)] == ["photo"]


async def test_user_notification_failure_keeps_decision(router, notifier):
    await _submitted(router)
    notifier.failing.add(USER)

    await click(router, ADMIN_ID, f"admin_approve_{USER}")

    assert (await load_user(USER)).is_verified is True
    assert "approved" in notifier.to(ADMIN_ID)[-1].text


async def test_admin_panel_and_lists(router, notifier):
    await _submitted(router)
    notifier.clear()

    await send_text(router, ADMIN_ID, "/admin")
    panel = notifier.to(ADMIN_ID)[-1]
    assert "ADMIN PANEL" in panel.text
    assert "Pending Payments: 1" in panel.text

    await send_text(router, ADMIN_ID, "💰 Review Payments")
    payments_msg = notifier.to(ADMIN_ID)[-1]
    buttons = [b.callback_data for row in payments_msg.reply_markup.inline_keyboard for b in row]
    assert f"admin_approve_{USER}" in buttons

    await send_text(router, ADMIN_ID, "/users")
    assert str(USER) in notifier.to(ADMIN_ID)[-1].text

    await send_text(router, ADMIN_ID, "/withdrawals")
    assert "No pending withdrawals" in notifier.to(ADMIN_ID)[-1].text

    await send_text(router, ADMIN_ID, "/stats")
    assert "Total Users: 2" in notifier.to(ADMIN_ID)[-1].text


async def test_block_and_unblock(router, notifier):
    await send_text(router, USER, "/start")

    await send_text(router, ADMIN_ID, f"/block {USER}")
    assert (await load_user(USER)).blocked is True

    await send_text(router, ADMIN_ID, f"/unblock {USER}")
    assert (await load_user(USER)).blocked is False

    await send_text(router, ADMIN_ID, "/block abc")
    assert "Usage: /block" in notifier.to(ADMIN_ID)[-1].text


@pytest.mark.parametrize("args, expected", [("42", 42), (" 42 ", 42), ("x", None), (None, None), ("-1", None)])
def test_parse_target_id(args, expected):
    assert parse_target_id(args) == expected


class _HangingAdmins(FakeNotifier):
    """Admins in ``hanging`` stall for a while and then time out."""

    def __init__(self, hanging: set[int], delay: float) -> None:
        super().__init__()
        self.hanging = hanging
        self.delay = delay

    async def send_photo(self, chat_id: int, file_id: str, *, caption: str, reply_markup: Any = None) -> None:
        if chat_id in self.hanging:
            await asyncio.sleep(self.delay)
            raise asyncio.TimeoutError
        await super().send_photo(chat_id, file_id, caption=caption, reply_markup=reply_markup)


async def test_hung_admins_do_not_block_the_others_or_the_user(settings, db):
    slow_settings = replace(settings, admin_ids=(1, 2, 3, 4), event_timeout_seconds=1)
    notifier = _HangingAdmins(hanging={1, 2, 3}, delay=0.6)
    router = DispatchRouter(slow_settings, notifier)
    await register_until_screenshot(router, USER)

    [reply] = await send_photo(router, USER)

    assert "Payment received" in reply.text
    assert "Payment received" in notifier.to(USER)[-1].text
    assert [s.kind for s in notifier.to(4)] == ["photo"]
    user = await load_user(USER)
    assert user.registration_step == RegistrationStep.COMPLETED.value
    assert user.payment_status == PaymentStatus.PENDING.value


async def test_admin_broadcast_runs_concurrently():
    notifier = _HangingAdmins(hanging={1, 2, 3}, delay=0.3)
    loop = asyncio.get_running_loop()
    started = loop.time()

    delivered = await notify_admins(notifier, (1, 2, 3, 4), "new payment", file_id="photo-1")

    assert delivered == 1
    assert loop.time() - started < 0.6
    assert [s.chat_id for s in notifier.sent] == [4]
