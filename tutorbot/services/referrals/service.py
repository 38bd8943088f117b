from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbot import repo
from tutorbot.bot import ui
from tutorbot.bot.auth import require_admin
from tutorbot.bot.events import Reply
from tutorbot.bot.keyboards import kb_preference_method, kb_profile, kb_withdrawal_decision
from tutorbot.bot.notifier import Notifier, notify_admins, notify_safe, run_after_event
from tutorbot.core.config import Settings
from tutorbot.core.errors import AlreadyDecided, ConcurrentUpdate, NotFound, ValidationFailed
from tutorbot.core.time import utcnow
from tutorbot.db.models import AccountStep, PaymentMethod, User, Withdrawal, WithdrawalStatus
from tutorbot.services.registration.service import is_valid_phone

log = logging.getLogger(__name__)

REF_PREFIX = "ref_"


def parse_referral_payload(payload: str | None) -> int | None:
    """'ref_123' -> 123. Anything else -> None."""
    payload = (payload or "").strip()
    if not payload.startswith(REF_PREFIX):
        return None
    raw = payload[len(REF_PREFIX):]
    if not raw.isdigit() or len(raw) > 19:
        return None
    return int(raw)


class ReferralService:
    def __init__(self, settings: Settings, notifier: Notifier):
        self.settings = settings
        self.notifier = notifier

    # ==========================
    # Links and capture
    # ==========================

    def referral_link(self, tg_id: int) -> str:
        return f"https://t.me/{self.settings.bot_username}?start={REF_PREFIX}{int(tg_id)}"

    async def ensure_user(
        self,
        session: AsyncSession,
        *,
        tg_id: int,
        first_name: str | None = None,
        username: str | None = None,
        start_payload: str | None = None,
    ) -> tuple[User, bool]:
        """Load the user, creating it on first contact.

        Referral capture happens only here, in the same transaction as the
        insert, so an existing user re-sending a link never changes anything.
        Returns ``(user, created)``.
        """
        user = await repo.get_user(session, tg_id)
        if user is not None:
            if (first_name and user.first_name != first_name) or (username and user.username != username):
                user.first_name = first_name or user.first_name
                user.username = username or user.username
                await session.commit()
            return user, False

        referrer_id = parse_referral_payload(start_payload)
        if referrer_id is not None and referrer_id == int(tg_id):
            log.info("referral_self_ignored tg_id=%s", tg_id)
            referrer_id = None
        if referrer_id is not None and await repo.get_user(session, referrer_id) is None:
            log.info("referral_unknown_referrer tg_id=%s referrer_id=%s", tg_id, referrer_id)
            referrer_id = None

        user = User(tg_id=int(tg_id), first_name=first_name, username=username, referrer_id=referrer_id)
        session.add(user)
        try:
            await session.flush()
            if referrer_id is not None:
                credited = await repo.credit_referral(session, referrer_id, self.settings.referral_reward)
                if not credited:
                    # referrer vanished between the read and the update
                    raise ConcurrentUpdate(code="referrer_missing")
            await session.commit()
        except IntegrityError:
            # another event for the same user inserted first
            await session.rollback()
            user = await repo.get_user(session, tg_id)
            if user is None:
                raise
            log.info("user_insert_race_resolved tg_id=%s", tg_id)
            return user, False

        log.info("user_created tg_id=%s referrer_id=%s", tg_id, referrer_id)
        if referrer_id is not None:
            log.info("referral_captured referrer_id=%s referred_id=%s reward=%s",
                     referrer_id, tg_id, self.settings.referral_reward)
            await notify_safe(self.notifier, referrer_id, ui.new_referral(self.settings, user.display_name))
        return user, True

    # ==========================
    # Eligibility
    # ==========================

    def min_withdrawal(self) -> int:
        return self.settings.min_withdrawal

    def has_withdrawable_balance(self, user: User) -> bool:
        return int(user.rewards or 0) >= self.min_withdrawal()

    def can_withdraw(self, user: User) -> bool:
        return self.has_withdrawable_balance(user) and bool(user.account_number) and bool(user.account_name)

    # ==========================
    # Views
    # ==========================

    def profile(self, user: User) -> Reply:
        return Reply(ui.profile(self.settings, user, self.can_withdraw(user)), kb_profile())

    def invite(self, user: User) -> Reply:
        return Reply(ui.invite(self.settings, user, self.referral_link(user.tg_id), self.can_withdraw(user)))

    async def leaderboard(self, session: AsyncSession, limit: int | None = None) -> list[User]:
        return await repo.top_referrers(session, limit or self.settings.leaderboard_size)

    async def list_referrals(self, session: AsyncSession, tg_id: int) -> list[User]:
        return await repo.list_referrals(session, tg_id)

    # ==========================
    # Withdrawals
    # ==========================

    async def request_withdrawal(self, session: AsyncSession, *, user: User) -> Reply:
        """Create a pending withdrawal for the full balance.

        The balance is left untouched here; it is debited when an admin marks
        the withdrawal as paid.
        """
        if user.blocked:
            raise ValidationFailed(ui.blocked(), code="blocked")
        if not self.has_withdrawable_balance(user):
            raise ValidationFailed(ui.insufficient_rewards(self.settings, user), code="insufficient_rewards")
        if not (user.account_number and user.account_name):
            raise ValidationFailed(ui.account_not_set(), code="account_not_set")
        pending = await repo.get_pending_withdrawal(session, user.tg_id)
        if pending is not None:
            raise ValidationFailed(ui.withdrawal_already_pending(self.settings, pending), code="withdrawal_pending")

        withdrawal = Withdrawal(
            tg_id=user.tg_id,
            amount=int(user.rewards),
            account_number=user.account_number,
            account_name=user.account_name,
            payment_method=user.payment_method_preference,
        )
        session.add(withdrawal)
        await session.flush()
        await session.commit()
        log.info("withdrawal_requested tg_id=%s withdrawal_id=%s amount=%s", user.tg_id, withdrawal.id, withdrawal.amount)

        await run_after_event(
            notify_admins(
                self.notifier,
                self.settings.admin_ids,
                ui.admin_new_withdrawal(self.settings, user, withdrawal),
                reply_markup=kb_withdrawal_decision(withdrawal.id),
            )
        )
        return Reply(ui.withdrawal_submitted(self.settings, withdrawal), kb_profile())

    async def _load_pending_withdrawal(self, session: AsyncSession, withdrawal_id: int) -> Withdrawal:
        withdrawal = await session.get(Withdrawal, int(withdrawal_id))
        if withdrawal is None:
            log.warning("withdrawal_not_found withdrawal_id=%s", withdrawal_id)
            raise NotFound(ui.withdrawal_not_found(withdrawal_id))
        if withdrawal.status != WithdrawalStatus.PENDING.value:
            raise AlreadyDecided(ui.withdrawal_already_processed(withdrawal))
        return withdrawal

    async def mark_withdrawal_paid(self, session: AsyncSession, *, admin_id: int, withdrawal_id: int) -> Reply:
        require_admin(self.settings, admin_id)
        withdrawal = await self._load_pending_withdrawal(session, withdrawal_id)

        done = await repo.set_withdrawal_status(
            session, withdrawal.id, status=WithdrawalStatus.PAID.value, admin_id=admin_id, now=utcnow()
        )
        if not done:
            await session.refresh(withdrawal)
            raise AlreadyDecided(ui.withdrawal_already_processed(withdrawal))
        if not await repo.debit_rewards(session, withdrawal.tg_id, withdrawal.amount):
            text = ui.withdrawal_balance_changed(withdrawal)
            await session.rollback()
            log.warning("withdrawal_debit_failed withdrawal_id=%s", withdrawal_id)
            raise ValidationFailed(text, code="insufficient_rewards")
        await session.commit()
        await session.refresh(withdrawal)
        log.info("withdrawal_paid withdrawal_id=%s tg_id=%s amount=%s admin_id=%s",
                 withdrawal.id, withdrawal.tg_id, withdrawal.amount, admin_id)

        await notify_safe(self.notifier, withdrawal.tg_id, ui.withdrawal_paid_user(self.settings, withdrawal))
        return Reply(ui.admin_withdrawal_done(withdrawal, WithdrawalStatus.PAID.value))

    async def reject_withdrawal(self, session: AsyncSession, *, admin_id: int, withdrawal_id: int) -> Reply:
        require_admin(self.settings, admin_id)
        withdrawal = await self._load_pending_withdrawal(session, withdrawal_id)

        done = await repo.set_withdrawal_status(
            session, withdrawal.id, status=WithdrawalStatus.REJECTED.value, admin_id=admin_id, now=utcnow()
        )
        if not done:
            await session.refresh(withdrawal)
            raise AlreadyDecided(ui.withdrawal_already_processed(withdrawal))
        await session.commit()
        await session.refresh(withdrawal)
        log.info("withdrawal_rejected withdrawal_id=%s tg_id=%s admin_id=%s", withdrawal.id, withdrawal.tg_id, admin_id)

        await notify_safe(self.notifier, withdrawal.tg_id, ui.withdrawal_rejected_user(self.settings, withdrawal))
        return Reply(ui.admin_withdrawal_done(withdrawal, WithdrawalStatus.REJECTED.value))

    # ==========================
    # Payout details
    # ==========================

    def start_account_setup(self) -> Reply:
        return Reply(ui.choose_preference_method(), kb_preference_method())

    async def choose_preference(self, session: AsyncSession, *, user: User, method: PaymentMethod) -> Reply:
        await repo.update_user(
            session,
            user,
            payment_method_preference=method.value,
            account_step=AccountStep.WAITING_ACCOUNT_NUMBER.value,
        )
        await session.commit()
        return Reply(ui.preference_set(method.value))

    async def submit_account_text(self, session: AsyncSession, *, user: User, text: str) -> Reply:
        value = (text or "").strip()
        step = AccountStep(user.account_step)
        if step is AccountStep.WAITING_ACCOUNT_NUMBER:
            if not is_valid_phone(value):
                raise ValidationFailed(ui.invalid_account_number(), code="invalid_account_number")
            await repo.update_user(
                session,
                user,
                User.account_step == step.value,
                account_number=value,
                account_step=AccountStep.WAITING_ACCOUNT_NAME.value,
            )
            await session.commit()
            return Reply(ui.account_number_set(value))

        if not value:
            raise ValidationFailed(ui.empty_account_name(), code="empty_account_name")
        await repo.update_user(session, user, User.account_step == step.value, account_name=value, account_step=None)
        await session.commit()
        log.info("payout_account_updated tg_id=%s method=%s", user.tg_id, user.payment_method_preference)
        return Reply(ui.account_name_set(value), kb_profile())
