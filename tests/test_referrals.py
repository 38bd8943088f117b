import pytest
from sqlalchemy import select

from conftest import ADMIN_ID, click, load_user, send_text
from tutorbot import repo
from tutorbot.core.errors import NotAuthorized, NotFound, ValidationFailed
from tutorbot.db.models import AccountStep, User, Withdrawal, WithdrawalStatus
from tutorbot.db.session import session_scope
from tutorbot.services.referrals.service import ReferralService, parse_referral_payload

A = 2001
B = 2002
C = 2003


async def _set_user(tg_id: int, **values) -> None:
    async with session_scope() as session:
        user = await repo.get_user(session, tg_id)
        await repo.update_user(session, user, **values)
        await session.commit()


async def _withdrawals(tg_id: int) -> list[Withdrawal]:
    async with session_scope() as session:
        res = await session.execute(select(Withdrawal).where(Withdrawal.tg_id == tg_id).order_by(Withdrawal.id))
        return list(res.scalars().all())


def test_referral_link_is_deterministic(settings, notifier):
    service = ReferralService(settings, notifier)
    assert service.referral_link(A) == f"https://t.me/TutorTestBot?start=ref_{A}"
    assert service.referral_link(A) == service.referral_link(A)


@pytest.mark.parametrize(
    "payload, expected",
    [("ref_123", 123), ("ref_", None), ("ref_12a", None), ("123", None), (None, None), ("ref_-5", None)],
)
def test_parse_referral_payload(payload, expected):
    assert parse_referral_payload(payload) == expected


async def test_new_user_with_referral_credits_referrer(router, notifier, settings):
    await send_text(router, A, "/start")
    notifier.clear()

    await send_text(router, B, f"/start ref_{A}", first_name="Bekele")

    a = await load_user(A)
    b = await load_user(B)
    assert a.referral_count == 1
    assert a.rewards == settings.referral_reward == 30
    assert a.total_rewards == 30
    assert a.rewards <= a.total_rewards
    assert b.referrer_id == A
    assert "Bekele" in notifier.to(A)[-1].text


async def test_existing_user_resending_link_changes_nothing(router):
    await send_text(router, A, "/start")
    await send_text(router, C, "/start")
    await send_text(router, B, f"/start ref_{A}")

    await send_text(router, B, f"/start ref_{C}")
    await send_text(router, B, f"/start ref_{A}")

    assert (await load_user(B)).referrer_id == A
    assert (await load_user(A)).referral_count == 1
    assert (await load_user(C)).referral_count == 0


async def test_link_after_first_contact_is_not_retroactive(router):
    await send_text(router, A, "/start")
    await send_text(router, B, "hello")

    await send_text(router, B, f"/start ref_{A}")

    assert (await load_user(B)).referrer_id is None
    assert (await load_user(A)).referral_count == 0


async def test_self_referral_is_ignored(router):
    await send_text(router, A, f"/start ref_{A}")

    a = await load_user(A)
    assert a.referrer_id is None
    assert a.referral_count == 0
    assert a.rewards == 0


async def test_unknown_referrer_is_ignored(router):
    await send_text(router, B, "/start ref_777777")

    b = await load_user(B)
    assert b is not None
    assert b.referrer_id is None


async def test_referrer_id_cannot_be_reassigned_on_the_model():
    user = User(tg_id=B, referrer_id=A)
    with pytest.raises(ValueError, match="referrer_id_immutable"):
        user.referrer_id = C
    with pytest.raises(ValueError, match="self_referral"):
        User(tg_id=A, referrer_id=A)


async def test_rewards_never_exceed_total_across_many_referrals(router):
    await send_text(router, A, "/start")
    for i in range(5):
        await send_text(router, 3000 + i, f"/start ref_{A}")

    a = await load_user(A)
    assert a.referral_count == 5
    assert a.rewards == a.total_rewards == 150


async def test_referral_notification_failure_does_not_undo_credit(router, notifier):
    await send_text(router, A, "/start")
    notifier.failing.add(A)

    await send_text(router, B, f"/start ref_{A}")

    assert (await load_user(A)).referral_count == 1


@pytest.mark.parametrize("rewards, eligible", [(119, False), (120, True), (150, True)])
async def test_withdrawal_eligibility_boundary(settings, notifier, rewards, eligible):
    service = ReferralService(settings, notifier)
    user = User(tg_id=A, rewards=rewards, total_rewards=rewards, account_number="+251911111111", account_name="Abebe")
    assert service.min_withdrawal() == 120
    assert service.has_withdrawable_balance(user) is eligible
    assert service.can_withdraw(user) is eligible


def test_eligibility_requires_account_details(settings, notifier):
    service = ReferralService(settings, notifier)
    user = User(tg_id=A, rewards=500, total_rewards=500, account_number="+251911111111", account_name=None)
    assert service.has_withdrawable_balance(user) is True
    assert service.can_withdraw(user) is False


async def test_withdrawal_request_creates_record_for_full_balance(router, notifier):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=120, total_rewards=120, account_number="+251911111111", account_name="Abebe K",
                    payment_method_preference="TeleBirr")
    notifier.clear()

    await send_text(router, A, "💰 Withdraw Rewards")

    [w] = await _withdrawals(A)
    assert w.amount == 120
    assert w.status == WithdrawalStatus.PENDING.value
    assert (w.account_number, w.account_name, w.payment_method) == ("+251911111111", "Abebe K", "TeleBirr")
    # balance is only debited when an admin marks it paid
    assert (await load_user(A)).rewards == 120
    [admin_msg] = notifier.to(ADMIN_ID)
    buttons = [b.callback_data for row in admin_msg.reply_markup.inline_keyboard for b in row]
    assert buttons == [f"admin_wpaid_{w.id}", f"admin_wreject_{w.id}"]


async def test_withdrawal_without_account_is_rejected(router, notifier):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=120, total_rewards=120)

    await send_text(router, A, "💰 Withdraw Rewards")

    assert await _withdrawals(A) == []
    assert "account not set" in notifier.to(A)[-1].text


async def test_withdrawal_below_minimum_is_rejected(router, notifier):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=90, total_rewards=90, account_number="+251911111111", account_name="Abebe")

    await send_text(router, A, "💰 Withdraw Rewards")

    assert await _withdrawals(A) == []
    assert "Insufficient funds" in notifier.to(A)[-1].text


async def test_second_withdrawal_while_pending_is_rejected(router):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=120, total_rewards=120, account_number="+251911111111", account_name="Abebe")

    await send_text(router, A, "💰 Withdraw Rewards")
    await send_text(router, A, "💰 Withdraw Rewards")

    assert len(await _withdrawals(A)) == 1


async def test_mark_paid_debits_balance_once(router, notifier):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=150, total_rewards=150, account_number="+251911111111", account_name="Abebe")
    await send_text(router, A, "💰 Withdraw Rewards")
    [w] = await _withdrawals(A)

    await click(router, ADMIN_ID, f"admin_wpaid_{w.id}")
    await click(router, ADMIN_ID, f"admin_wpaid_{w.id}")

    a = await load_user(A)
    assert a.rewards == 0
    assert a.total_rewards == 150
    [w] = await _withdrawals(A)
    assert w.status == WithdrawalStatus.PAID.value
    assert w.processed_by == ADMIN_ID
    assert len([s for s in notifier.to(A) if "Withdrawal paid" in s.text]) == 1
    assert "already processed" in notifier.to(ADMIN_ID)[-1].text


async def test_reject_withdrawal_keeps_balance(router, notifier):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=120, total_rewards=120, account_number="+251911111111", account_name="Abebe")
    await send_text(router, A, "💰 Withdraw Rewards")
    [w] = await _withdrawals(A)

    await click(router, ADMIN_ID, f"admin_wreject_{w.id}")

    assert (await load_user(A)).rewards == 120
    [w] = await _withdrawals(A)
    assert w.status == WithdrawalStatus.REJECTED.value
    assert "Withdrawal rejected" in notifier.to(A)[-1].text


async def test_mark_paid_refuses_when_balance_dropped(settings, notifier, router):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=150, total_rewards=150, account_number="+251911111111", account_name="Abebe")
    await send_text(router, A, "💰 Withdraw Rewards")
    [w] = await _withdrawals(A)
    await _set_user(A, rewards=10)

    service = ReferralService(settings, notifier)
    async with session_scope() as session:
        with pytest.raises(ValidationFailed):
            await service.mark_withdrawal_paid(session, admin_id=ADMIN_ID, withdrawal_id=w.id)

    [w] = await _withdrawals(A)
    assert w.status == WithdrawalStatus.PENDING.value
    assert (await load_user(A)).rewards == 10


async def test_withdrawal_decisions_are_admin_only(settings, notifier, router):
    await send_text(router, A, "/start")
    await _set_user(A, rewards=120, total_rewards=120, account_number="+251911111111", account_name="Abebe")
    await send_text(router, A, "💰 Withdraw Rewards")
    [w] = await _withdrawals(A)

    await click(router, A, f"admin_wpaid_{w.id}")
    assert "not authorized" in notifier.to(A)[-1].text

    service = ReferralService(settings, notifier)
    async with session_scope() as session:
        with pytest.raises(NotAuthorized):
            await service.reject_withdrawal(session, admin_id=A, withdrawal_id=w.id)

    [w] = await _withdrawals(A)
    assert w.status == WithdrawalStatus.PENDING.value
    assert (await load_user(A)).rewards == 120


async def test_unknown_withdrawal_is_reported(settings, notifier, db):
    service = ReferralService(settings, notifier)
    async with session_scope() as session:
        with pytest.raises(NotFound):
            await service.mark_withdrawal_paid(session, admin_id=ADMIN_ID, withdrawal_id=404)


async def test_leaderboard_orders_by_referral_count(router, notifier, settings):
    for tg_id in (A, B, C):
        await send_text(router, tg_id, "/start")
    for i in range(3):
        await send_text(router, 4000 + i, f"/start ref_{B}")
    await send_text(router, 4100, f"/start ref_{C}")

    service = ReferralService(settings, notifier)
    async with session_scope() as session:
        top = await service.leaderboard(session, limit=2)
    assert [u.tg_id for u in top] == [B, C]

    await send_text(router, A, "📈 Leaderboard")
    text = notifier.to(A)[-1].text
    assert text.index("3 referrals") < text.index("1 referrals")


async def test_my_referrals_lists_referred_users(router, notifier):
    await send_text(router, A, "/start")
    await send_text(router, B, f"/start ref_{A}", first_name="Bekele")
    await send_text(router, C, f"/start ref_{A}", first_name="Chaltu")

    await send_text(router, A, "📊 My Referrals")

    text = notifier.to(A)[-1].text
    assert "MY REFERRALS (2)" in text
    assert "Bekele" in text and "Chaltu" in text


async def test_payout_account_sub_flow(router, notifier):
    await send_text(router, A, "/start")

    await send_text(router, A, "💳 Change Payment Method")
    await click(router, A, "pref_method_cbebirr")
    a = await load_user(A)
    assert a.payment_method_preference == "CBE Birr"
    assert a.account_step == AccountStep.WAITING_ACCOUNT_NUMBER.value

    await send_text(router, A, "0911")
    assert (await load_user(A)).account_step == AccountStep.WAITING_ACCOUNT_NUMBER.value
    assert "Invalid account number" in notifier.to(A)[-1].text

    await send_text(router, A, "+251911223344")
    await send_text(router, A, "Abebe Kebede")

    a = await load_user(A)
    assert a.account_number == "+251911223344"
    assert a.account_name == "Abebe Kebede"
    assert a.account_step is None


async def test_menu_text_wins_over_account_step(router):
    await send_text(router, A, "/start")
    await send_text(router, A, "💳 Change Payment Method")
    await click(router, A, "pref_method_telebirr")

    await send_text(router, A, "📌 Rules")

    a = await load_user(A)
    assert a.account_step == AccountStep.WAITING_ACCOUNT_NUMBER.value
    assert a.account_number is None
