from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tutorbot import repo
from tutorbot.bot import ui
from tutorbot.bot.events import Reply
from tutorbot.bot.keyboards import (kb_in_registration, kb_main, kb_payment_decision,
                                    kb_registration_method, kb_student_type)
from tutorbot.bot.notifier import Notifier, notify_admins, run_after_event
from tutorbot.core.config import Settings
from tutorbot.core.errors import ValidationFailed
from tutorbot.db.models import (Payment, PaymentMethod, PaymentStatus, RegistrationStep, StudentType,
                                User)

log = logging.getLogger(__name__)

S = RegistrationStep

# Steps a user can be in while a registration is running.
IN_PROGRESS_STEPS = frozenset(
    {
        S.WAITING_STUDENT_TYPE,
        S.WAITING_NAME,
        S.WAITING_PHONE,
        S.WAITING_PAYMENT_METHOD,
        S.WAITING_SCREENSHOT,
    }
)

_CLEARED_FIELDS = {
    "name": None,
    "phone": None,
    "student_type": None,
    "payment_method": None,
}


def is_valid_phone(value: str) -> bool:
    return value.startswith("+") and len(value) >= 10


def _step(user: User) -> RegistrationStep:
    return RegistrationStep(user.registration_step)


def _match_choice(text: str, enum_cls):
    wanted = (text or "").strip().lower()
    for item in enum_cls:
        if item.value.lower() == wanted:
            return item
    return None


class RegistrationService:
    """Linear registration: one field per step, guarded on the step we read.

    Every transition is a conditional UPDATE on ``registration_step`` (and on
    ``blocked``), so two events racing for the same user cannot both advance.
    """

    def __init__(self, settings: Settings, notifier: Notifier):
        self.settings = settings
        self.notifier = notifier

    def _ensure_active(self, user: User) -> None:
        if user.blocked:
            raise ValidationFailed(ui.blocked(), code="blocked")

    def _expect(self, user: User, step: RegistrationStep) -> None:
        self._ensure_active(user)
        if _step(user) is not step:
            raise ValidationFailed(ui.stale_action(), code="wrong_step")

    async def _advance(self, session: AsyncSession, user: User, expected: RegistrationStep, **values) -> User:
        return await repo.update_user(
            session,
            user,
            User.registration_step == expected.value,
            User.blocked.is_(False),
            **values,
        )

    def current_prompt(self, user: User) -> Reply:
        step = _step(user)
        if step is S.WAITING_STUDENT_TYPE:
            return Reply(ui.prompt_student_type(), kb_student_type())
        if step is S.WAITING_NAME:
            return Reply(ui.prompt_name(), kb_in_registration())
        if step is S.WAITING_PHONE:
            return Reply(ui.prompt_phone(), kb_in_registration())
        if step is S.WAITING_PAYMENT_METHOD:
            return Reply(ui.prompt_payment_method(self.settings), kb_registration_method())
        if step is S.WAITING_SCREENSHOT:
            return Reply(ui.prompt_screenshot(self.settings, user.payment_method), kb_in_registration())
        if user.is_verified:
            return Reply(ui.already_registered(), kb_main())
        if step is S.COMPLETED and user.payment_status == PaymentStatus.PENDING.value:
            return Reply(ui.awaiting_approval(self.settings, user), kb_main())
        return Reply(ui.main_menu(self.settings), kb_main())

    async def start_registration(self, session: AsyncSession, *, user: User) -> Reply:
        if user.blocked:
            return Reply(ui.blocked())
        if user.is_verified:
            return Reply(ui.already_registered(), kb_main())

        step = _step(user)
        if step in IN_PROGRESS_STEPS:
            return self.current_prompt(user)

        if step is S.COMPLETED:
            if user.payment_status != PaymentStatus.REJECTED.value:
                return Reply(ui.awaiting_approval(self.settings, user), kb_main())
            # retry after a rejected payment starts from a clean form
            await repo.update_user(
                session,
                user,
                User.registration_step == S.COMPLETED.value,
                User.payment_status == PaymentStatus.REJECTED.value,
                User.blocked.is_(False),
                registration_step=S.WAITING_STUDENT_TYPE.value,
                payment_status=PaymentStatus.IN_PROGRESS.value,
                **_CLEARED_FIELDS,
            )
        else:
            await self._advance(
                session,
                user,
                S.NOT_STARTED,
                registration_step=S.WAITING_STUDENT_TYPE.value,
                payment_status=PaymentStatus.IN_PROGRESS.value,
            )
        await session.commit()
        log.info("registration_started tg_id=%s", user.tg_id)
        return Reply(ui.prompt_student_type(), kb_student_type())

    async def choose_student_type(self, session: AsyncSession, *, user: User, student_type: StudentType) -> Reply:
        self._expect(user, S.WAITING_STUDENT_TYPE)
        await self._advance(
            session,
            user,
            S.WAITING_STUDENT_TYPE,
            student_type=student_type.value,
            registration_step=S.WAITING_NAME.value,
        )
        await session.commit()
        return Reply(ui.prompt_name(), kb_in_registration())

    async def submit_name(self, session: AsyncSession, *, user: User, text: str) -> Reply:
        self._expect(user, S.WAITING_NAME)
        name = (text or "").strip()
        if not name:
            raise ValidationFailed(ui.empty_name(), code="empty_name")
        await self._advance(session, user, S.WAITING_NAME, name=name, registration_step=S.WAITING_PHONE.value)
        await session.commit()
        return Reply(ui.prompt_phone(), kb_in_registration())

    async def submit_phone(
        self,
        session: AsyncSession,
        *,
        user: User,
        text: str,
        from_contact: bool = False,
    ) -> Reply:
        self._expect(user, S.WAITING_PHONE)
        phone = (text or "").strip()
        if from_contact and phone and not phone.startswith("+"):
            phone = "+" + phone
        if not is_valid_phone(phone):
            raise ValidationFailed(ui.invalid_phone(), code="invalid_phone")
        await self._advance(
            session, user, S.WAITING_PHONE, phone=phone, registration_step=S.WAITING_PAYMENT_METHOD.value
        )
        await session.commit()
        return Reply(ui.prompt_payment_method(self.settings), kb_registration_method())

    async def choose_payment_method(self, session: AsyncSession, *, user: User, method: PaymentMethod) -> Reply:
        self._expect(user, S.WAITING_PAYMENT_METHOD)
        await self._advance(
            session,
            user,
            S.WAITING_PAYMENT_METHOD,
            payment_method=method.value,
            registration_step=S.WAITING_SCREENSHOT.value,
        )
        await session.commit()
        return Reply(ui.prompt_screenshot(self.settings, user.payment_method), kb_in_registration())

    async def submit_text(self, session: AsyncSession, *, user: User, text: str) -> Reply:
        """Free text typed while a step is waiting for input."""
        step = _step(user)
        if step is S.WAITING_NAME:
            return await self.submit_name(session, user=user, text=text)
        if step is S.WAITING_PHONE:
            return await self.submit_phone(session, user=user, text=text)
        if step is S.WAITING_STUDENT_TYPE:
            choice = _match_choice(text, StudentType)
            if choice is None:
                raise ValidationFailed(ui.choose_with_buttons(), code="unknown_choice")
            return await self.choose_student_type(session, user=user, student_type=choice)
        if step is S.WAITING_PAYMENT_METHOD:
            choice = _match_choice(text, PaymentMethod)
            if choice is None:
                raise ValidationFailed(ui.choose_with_buttons(), code="unknown_choice")
            return await self.choose_payment_method(session, user=user, method=choice)
        if step is S.WAITING_SCREENSHOT:
            raise ValidationFailed(ui.invalid_screenshot(), code="missing_attachment")
        return self.current_prompt(user)

    async def submit_screenshot(
        self,
        session: AsyncSession,
        *,
        user: User,
        file_id: str | None,
        file_kind: str = "photo",
    ) -> Reply:
        self._expect(user, S.WAITING_SCREENSHOT)
        if not file_id:
            raise ValidationFailed(ui.invalid_screenshot(), code="missing_attachment")
        missing = [
            label
            for label, value in (("student type", user.student_type), ("name", user.name), ("phone", user.phone))
            if not value
        ]
        if missing:
            raise ValidationFailed(ui.missing_fields(missing), code="incomplete_registration")

        await self._advance(
            session,
            user,
            S.WAITING_SCREENSHOT,
            registration_step=S.COMPLETED.value,
            payment_status=PaymentStatus.PENDING.value,
        )
        payment = Payment(
            tg_id=user.tg_id,
            file_id=file_id,
            file_kind=file_kind,
            payment_method=user.payment_method,
            amount=self.settings.registration_fee,
        )
        session.add(payment)
        await session.flush()
        await session.commit()
        log.info("payment_submitted tg_id=%s payment_id=%s kind=%s", user.tg_id, payment.id, file_kind)

        await run_after_event(
            self._announce_payment(
                ui.admin_new_payment(self.settings, user, payment), user.tg_id, payment.id, file_id, file_kind
            )
        )
        return Reply(ui.payment_received(self.settings, user), kb_main())

    async def _announce_payment(self, text: str, tg_id: int, payment_id: int, file_id: str, file_kind: str) -> None:
        delivered = await notify_admins(
            self.notifier,
            self.settings.admin_ids,
            text,
            reply_markup=kb_payment_decision(tg_id),
            file_id=file_id,
            file_kind=file_kind,
        )
        if self.settings.admin_ids and not delivered:
            log.error("payment_admin_notify_failed tg_id=%s payment_id=%s", tg_id, payment_id)

    async def cancel(self, session: AsyncSession, *, user: User) -> Reply:
        step = _step(user)
        if step not in IN_PROGRESS_STEPS:
            return Reply(ui.nothing_to_cancel(), kb_main())
        await repo.update_user(
            session,
            user,
            User.registration_step == step.value,
            registration_step=S.NOT_STARTED.value,
            payment_status=PaymentStatus.NOT_STARTED.value,
            **_CLEARED_FIELDS,
        )
        await session.commit()
        log.info("registration_cancelled tg_id=%s from_step=%s", user.tg_id, step.value)
        return Reply(ui.cancelled(), kb_main())

    def upload_prompt(self, user: User) -> Reply:
        if user.is_verified:
            return Reply(ui.already_registered(), kb_main())
        if _step(user) is S.WAITING_SCREENSHOT:
            return self.current_prompt(user)
        return Reply(ui.upload_screenshot(self.settings, user), kb_main())
