from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tutorbot import repo
from tutorbot.bot import ui
from tutorbot.bot.auth import require_admin
from tutorbot.bot.events import Reply
from tutorbot.bot.keyboards import kb_admin, kb_main, kb_payment_decision, kb_withdrawal_decision
from tutorbot.bot.notifier import Notifier, notify_safe
from tutorbot.core.config import Settings
from tutorbot.core.errors import AlreadyDecided, NotFound, ValidationFailed
from tutorbot.core.time import utcnow
from tutorbot.db.models import DecisionStatus, PaymentStatus, User

log = logging.getLogger(__name__)


def parse_target_id(args: str | None) -> int | None:
    raw = (args or "").strip()
    if not raw.isdigit() or len(raw) > 19:
        return None
    return int(raw)


class ApprovalService:
    """Admin side: payment decisions, inspection and the admin panel views.

    Every public method checks the allow-list first, so a non-admin caller
    gets NotAuthorized before anything is read.
    """

    def __init__(self, settings: Settings, notifier: Notifier):
        self.settings = settings
        self.notifier = notifier

    async def _get_target(self, session: AsyncSession, admin_id: int, target_id: int) -> User:
        user = await repo.get_user(session, target_id)
        if user is None:
            log.warning("admin_target_missing admin_id=%s target_id=%s", admin_id, target_id)
            raise NotFound(ui.user_not_found(target_id))
        return user

    async def _decide(self, session: AsyncSession, *, admin_id: int, target_id: int, approve: bool) -> Reply:
        require_admin(self.settings, admin_id)
        user = await self._get_target(session, admin_id, target_id)

        payment = await repo.latest_pending_payment(session, target_id)
        if payment is None:
            log.info("payment_already_decided admin_id=%s target_id=%s", admin_id, target_id)
            raise AlreadyDecided(ui.no_pending_payment(target_id))

        status = DecisionStatus.APPROVED if approve else DecisionStatus.REJECTED
        decided = await repo.set_payment_decision(
            session, payment.id, status=status.value, admin_id=admin_id, now=utcnow()
        )
        if not decided:
            log.info("payment_decision_lost admin_id=%s payment_id=%s", admin_id, payment.id)
            raise AlreadyDecided(ui.no_pending_payment(target_id))

        await repo.update_user(
            session,
            user,
            is_verified=approve,
            payment_status=(PaymentStatus.APPROVED if approve else PaymentStatus.REJECTED).value,
        )
        await session.commit()
        log.info(
            "payment_decided payment_id=%s tg_id=%s status=%s admin_id=%s",
            payment.id,
            target_id,
            status.value,
            admin_id,
        )

        text = ui.user_approved(self.settings) if approve else ui.user_rejected()
        await notify_safe(self.notifier, target_id, text, reply_markup=kb_main())
        return Reply(ui.admin_decided(target_id, status.value))

    async def approve(self, session: AsyncSession, *, admin_id: int, target_id: int) -> Reply:
        return await self._decide(session, admin_id=admin_id, target_id=target_id, approve=True)

    async def reject(self, session: AsyncSession, *, admin_id: int, target_id: int) -> Reply:
        return await self._decide(session, admin_id=admin_id, target_id=target_id, approve=False)

    async def details(self, session: AsyncSession, *, admin_id: int, target_id: int) -> Reply:
        require_admin(self.settings, admin_id)
        user = await self._get_target(session, admin_id, target_id)
        return Reply(ui.user_details(self.settings, user))

    # ==========================
    # Admin panel views
    # ==========================

    async def panel(self, session: AsyncSession, *, admin_id: int) -> Reply:
        require_admin(self.settings, admin_id)
        stats = await repo.collect_stats(session)
        return Reply(ui.admin_panel(stats), kb_admin())

    async def stats(self, session: AsyncSession, *, admin_id: int) -> Reply:
        require_admin(self.settings, admin_id)
        stats = await repo.collect_stats(session)
        return Reply(ui.admin_stats(self.settings, stats))

    async def students(self, session: AsyncSession, *, admin_id: int) -> Reply:
        require_admin(self.settings, admin_id)
        users = await repo.list_users(session, limit=10)
        return Reply(ui.admin_students(users))

    async def pending_payments(self, session: AsyncSession, *, admin_id: int) -> list[Reply]:
        require_admin(self.settings, admin_id)
        payments = await repo.list_pending_payments(session, limit=5)
        if not payments:
            return [Reply(ui.no_pending_payments())]
        replies = []
        for payment in payments:
            user = await repo.get_user(session, payment.tg_id)
            replies.append(
                Reply(ui.admin_payment_line(self.settings, payment, user), kb_payment_decision(payment.tg_id))
            )
        return replies

    async def pending_withdrawals(self, session: AsyncSession, *, admin_id: int) -> list[Reply]:
        require_admin(self.settings, admin_id)
        withdrawals = await repo.list_pending_withdrawals(session, limit=10)
        if not withdrawals:
            return [Reply(ui.no_pending_withdrawals())]
        replies = []
        for withdrawal in withdrawals:
            user = await repo.get_user(session, withdrawal.tg_id)
            replies.append(
                Reply(ui.admin_withdrawal_line(self.settings, withdrawal, user), kb_withdrawal_decision(withdrawal.id))
            )
        return replies

    async def set_blocked(
        self,
        session: AsyncSession,
        *,
        admin_id: int,
        args: str | None,
        blocked: bool,
    ) -> Reply:
        require_admin(self.settings, admin_id)
        command = "block" if blocked else "unblock"
        target_id = parse_target_id(args)
        if target_id is None:
            raise ValidationFailed(ui.block_usage(command), code="bad_target")
        user = await self._get_target(session, admin_id, target_id)
        await repo.update_user(session, user, blocked=blocked)
        await session.commit()
        log.info("user_%sed tg_id=%s admin_id=%s", command, target_id, admin_id)
        return Reply(ui.block_done(target_id, blocked))
