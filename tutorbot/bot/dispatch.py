"""Routing of inbound events.

Precedence: structural kind first; for commands the command itself; for free
text the menu vocabulary, then the field the current registration step is
waiting for, then the payout-details sub-flow, then the main menu.
"""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbot.bot import ui
from tutorbot.bot.auth import is_admin, require_admin
from tutorbot.bot.events import (ADMIN_CALLBACKS, ADMIN_COMMANDS, ADMIN_MENU_ACTIONS, CallbackKind, Command,
                                 EventKind, InboundEvent, MenuAction, Reply, parse_callback)
from tutorbot.bot.keyboards import action_for_text, kb_in_registration, kb_main
from tutorbot.bot.notifier import Notifier, collect_after_event, drain_after_event, notify_safe
from tutorbot.core.config import Settings
from tutorbot.core.errors import BotError, NotAuthorized, StoreUnavailable, ValidationFailed
from tutorbot.db.models import RegistrationStep, User
from tutorbot.db.session import session_scope
from tutorbot.services.approvals.service import ApprovalService
from tutorbot.services.referrals.service import ReferralService
from tutorbot.services.registration.service import IN_PROGRESS_STEPS, RegistrationService

log = logging.getLogger(__name__)


class DispatchRouter:
    def __init__(
        self,
        settings: Settings,
        notifier: Notifier,
        *,
        registration: RegistrationService | None = None,
        referrals: ReferralService | None = None,
        approvals: ApprovalService | None = None,
    ):
        self.settings = settings
        self.notifier = notifier
        self.registration = registration or RegistrationService(settings, notifier)
        self.referrals = referrals or ReferralService(settings, notifier)
        self.approvals = approvals or ApprovalService(settings, notifier)

    async def handle(self, event: InboundEvent) -> list[Reply]:
        """Process one event and send the replies to its chat.

        Never raises: every failure is turned into a reply. Notifications
        queued after a commit are delivered once the sender has been answered.
        """
        with collect_after_event() as after_event:
            replies = await self._answer(event)
            for reply in replies:
                await notify_safe(self.notifier, event.chat_id, reply.text, reply_markup=reply.reply_markup)
            await drain_after_event(after_event)
        return replies

    async def _answer(self, event: InboundEvent) -> list[Reply]:
        try:
            replies = await asyncio.wait_for(self._handle(event), timeout=self.settings.event_timeout_seconds)
        except NotAuthorized as e:
            log.info("admin_denied tg_id=%s kind=%s", event.tg_id, event.kind.value)
            replies = [Reply(e.message or ui.not_authorized())]
        except BotError as e:
            if e.retryable:
                log.warning("event_retryable_failure tg_id=%s code=%s", event.tg_id, e.code)
                replies = [Reply(ui.try_again_later())]
            else:
                if not isinstance(e, ValidationFailed):
                    log.info("event_rejected tg_id=%s code=%s", event.tg_id, e.code)
                replies = [Reply(e.message or ui.generic_error())]
        except asyncio.TimeoutError:
            log.warning("event_timeout tg_id=%s kind=%s", event.tg_id, event.kind.value)
            replies = [Reply(ui.try_again_later())]
        except Exception:
            log.exception("event_failed tg_id=%s kind=%s", event.tg_id, event.kind.value)
            replies = [Reply(ui.generic_error())]
        return replies

    async def _handle(self, event: InboundEvent) -> list[Reply]:
        try:
            async with session_scope() as session:
                result = await self._route(session, event)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(code="store_unavailable") from e
        if isinstance(result, Reply):
            return [result]
        return list(result)

    async def _route(self, session: AsyncSession, event: InboundEvent) -> Reply | list[Reply]:
        payload = event.command_args if event.command == Command.START.value else None
        user, _created = await self.referrals.ensure_user(
            session,
            tg_id=event.tg_id,
            first_name=event.first_name,
            username=event.username,
            start_payload=payload,
        )

        if event.kind is EventKind.COMMAND:
            return await self._on_command(session, event, user)
        if event.kind is EventKind.CALLBACK:
            return await self._on_callback(session, event, user)
        if event.kind in (EventKind.PHOTO, EventKind.DOCUMENT):
            if user.registration_step != RegistrationStep.WAITING_SCREENSHOT.value:
                return Reply(ui.photo_outside_flow(), self._menu_keyboard(user))
            return await self.registration.submit_screenshot(
                session, user=user, file_id=event.file_id, file_kind=event.kind.value
            )
        if event.kind is EventKind.CONTACT:
            if user.registration_step != RegistrationStep.WAITING_PHONE.value:
                return self.main_menu(user)
            if event.contact_user_id is not None and event.contact_user_id != event.tg_id:
                raise ValidationFailed(ui.foreign_contact(), code="foreign_contact")
            return await self.registration.submit_phone(
                session, user=user, text=event.contact_phone or "", from_contact=True
            )
        return await self._on_text(session, event, user)

    # ==========================
    # Helpers
    # ==========================

    def _menu_keyboard(self, user: User):
        if RegistrationStep(user.registration_step) in IN_PROGRESS_STEPS:
            return kb_in_registration()
        return kb_main()

    def main_menu(self, user: User) -> Reply:
        return Reply(ui.main_menu(self.settings), self._menu_keyboard(user))

    # ==========================
    # Commands
    # ==========================

    async def _on_command(self, session: AsyncSession, event: InboundEvent, user: User) -> Reply | list[Reply]:
        try:
            command = Command(event.command or "")
        except ValueError:
            return self.main_menu(user)

        if command in ADMIN_COMMANDS:
            require_admin(self.settings, event.tg_id)

        if command is Command.START:
            return Reply(ui.welcome(self.settings), self._menu_keyboard(user))
        if command is Command.HELP:
            return Reply(ui.help_text(is_admin(self.settings, event.tg_id)))
        if command is Command.CANCEL:
            return await self.registration.cancel(session, user=user)
        if command is Command.ADMIN:
            return await self.approvals.panel(session, admin_id=event.tg_id)
        if command is Command.STATS:
            return await self.approvals.stats(session, admin_id=event.tg_id)
        if command is Command.USERS:
            return await self.approvals.students(session, admin_id=event.tg_id)
        if command is Command.PAYMENTS:
            return await self.approvals.pending_payments(session, admin_id=event.tg_id)
        if command is Command.WITHDRAWALS:
            return await self.approvals.pending_withdrawals(session, admin_id=event.tg_id)
        if command is Command.BLOCK:
            return await self.approvals.set_blocked(session, admin_id=event.tg_id, args=event.command_args, blocked=True)
        if command is Command.UNBLOCK:
            return await self.approvals.set_blocked(session, admin_id=event.tg_id, args=event.command_args, blocked=False)
        return self.main_menu(user)

    # ==========================
    # Callbacks
    # ==========================

    async def _on_callback(self, session: AsyncSession, event: InboundEvent, user: User) -> Reply | list[Reply]:
        action = parse_callback(event.callback_data)
        if action is None:
            log.info("callback_unparsed tg_id=%s data=%r", event.tg_id, event.callback_data)
            return Reply(ui.unknown_action())

        kind = action.kind
        if kind in ADMIN_CALLBACKS:
            require_admin(self.settings, event.tg_id)
            if kind is CallbackKind.APPROVE:
                return await self.approvals.approve(session, admin_id=event.tg_id, target_id=action.target_id)
            if kind is CallbackKind.REJECT:
                return await self.approvals.reject(session, admin_id=event.tg_id, target_id=action.target_id)
            if kind is CallbackKind.DETAILS:
                return await self.approvals.details(session, admin_id=event.tg_id, target_id=action.target_id)
            if kind is CallbackKind.WITHDRAWAL_PAID:
                return await self.referrals.mark_withdrawal_paid(
                    session, admin_id=event.tg_id, withdrawal_id=action.target_id
                )
            return await self.referrals.reject_withdrawal(
                session, admin_id=event.tg_id, withdrawal_id=action.target_id
            )

        if kind is CallbackKind.STUDENT_TYPE:
            return await self.registration.choose_student_type(session, user=user, student_type=action.choice)
        if kind is CallbackKind.REGISTRATION_METHOD:
            return await self.registration.choose_payment_method(session, user=user, method=action.choice)
        if kind is CallbackKind.PREFERENCE_METHOD:
            return await self.referrals.choose_preference(session, user=user, method=action.choice)
        return await self.registration.cancel(session, user=user)

    # ==========================
    # Free text
    # ==========================

    async def _on_text(self, session: AsyncSession, event: InboundEvent, user: User) -> Reply | list[Reply]:
        action = action_for_text(event.text)
        if action is not None:
            return await self._on_menu(session, event, user, action)

        if RegistrationStep(user.registration_step) in IN_PROGRESS_STEPS:
            return await self.registration.submit_text(session, user=user, text=event.text or "")
        if user.account_step:
            return await self.referrals.submit_account_text(session, user=user, text=event.text or "")
        return self.main_menu(user)

    async def _on_menu(
        self,
        session: AsyncSession,
        event: InboundEvent,
        user: User,
        action: MenuAction,
    ) -> Reply | list[Reply]:
        if action in ADMIN_MENU_ACTIONS:
            require_admin(self.settings, event.tg_id)

        if action is MenuAction.REGISTER:
            return await self.registration.start_registration(session, user=user)
        if action is MenuAction.PAY_FEE:
            return Reply(ui.pay_fee(self.settings))
        if action is MenuAction.UPLOAD_SCREENSHOT:
            return self.registration.upload_prompt(user)
        if action is MenuAction.INVITE:
            return self.referrals.invite(user)
        if action is MenuAction.LEADERBOARD:
            return Reply(ui.leaderboard(await self.referrals.leaderboard(session)))
        if action is MenuAction.HELP:
            return Reply(ui.help_text(is_admin(self.settings, event.tg_id)))
        if action is MenuAction.RULES:
            return Reply(ui.rules())
        if action is MenuAction.PROFILE:
            return self.referrals.profile(user)
        if action is MenuAction.WITHDRAW:
            return await self.referrals.request_withdrawal(session, user=user)
        if action is MenuAction.CHANGE_PAYMENT_METHOD:
            return self.referrals.start_account_setup()
        if action is MenuAction.MY_REFERRALS:
            return Reply(ui.my_referrals(await self.referrals.list_referrals(session, user.tg_id)))
        if action is MenuAction.CANCEL_REGISTRATION:
            return await self.registration.cancel(session, user=user)
        if action is MenuAction.BACK_TO_MENU:
            return self.main_menu(user)
        if action is MenuAction.ADMIN_STUDENTS:
            return await self.approvals.students(session, admin_id=event.tg_id)
        if action is MenuAction.ADMIN_PAYMENTS:
            return await self.approvals.pending_payments(session, admin_id=event.tg_id)
        if action is MenuAction.ADMIN_WITHDRAWALS:
            return await self.approvals.pending_withdrawals(session, admin_id=event.tg_id)
        if action is MenuAction.ADMIN_STATS:
            return await self.approvals.stats(session, admin_id=event.tg_id)
        return await self.approvals.panel(session, admin_id=event.tg_id)
