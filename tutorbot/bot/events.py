"""Typed inbound events.

The aiogram handlers translate every update into an ``InboundEvent``; the
dispatcher never looks at raw Telegram objects. Button texts are mapped to a
closed ``MenuAction`` set and callback payloads are parsed into
``CallbackAction`` values here, so routing works on enums only.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from tutorbot.db.models import PaymentMethod, StudentType


class EventKind(str, Enum):
    COMMAND = "command"
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    CONTACT = "contact"
    CALLBACK = "callback"


class Command(str, Enum):
    START = "start"
    HELP = "help"
    ADMIN = "admin"
    STATS = "stats"
    USERS = "users"
    PAYMENTS = "payments"
    WITHDRAWALS = "withdrawals"
    CANCEL = "cancel"
    BLOCK = "block"
    UNBLOCK = "unblock"


ADMIN_COMMANDS = frozenset(
    {Command.ADMIN, Command.STATS, Command.USERS, Command.PAYMENTS, Command.WITHDRAWALS, Command.BLOCK, Command.UNBLOCK}
)


class MenuAction(str, Enum):
    REGISTER = "register"
    PAY_FEE = "pay_fee"
    UPLOAD_SCREENSHOT = "upload_screenshot"
    INVITE = "invite"
    LEADERBOARD = "leaderboard"
    HELP = "help"
    RULES = "rules"
    PROFILE = "profile"
    WITHDRAW = "withdraw"
    CHANGE_PAYMENT_METHOD = "change_payment_method"
    MY_REFERRALS = "my_referrals"
    CANCEL_REGISTRATION = "cancel_registration"
    BACK_TO_MENU = "back_to_menu"
    # admin panel
    ADMIN_STUDENTS = "admin_students"
    ADMIN_PAYMENTS = "admin_payments"
    ADMIN_WITHDRAWALS = "admin_withdrawals"
    ADMIN_STATS = "admin_stats"
    ADMIN_BACK = "admin_back"


ADMIN_MENU_ACTIONS = frozenset(
    {
        MenuAction.ADMIN_STUDENTS,
        MenuAction.ADMIN_PAYMENTS,
        MenuAction.ADMIN_WITHDRAWALS,
        MenuAction.ADMIN_STATS,
        MenuAction.ADMIN_BACK,
    }
)


class CallbackKind(str, Enum):
    APPROVE = "admin_approve"
    REJECT = "admin_reject"
    DETAILS = "admin_details"
    WITHDRAWAL_PAID = "admin_wpaid"
    WITHDRAWAL_REJECT = "admin_wreject"
    STUDENT_TYPE = "reg_type"
    REGISTRATION_METHOD = "reg_method"
    PREFERENCE_METHOD = "pref_method"
    CANCEL = "reg_cancel"


ADMIN_CALLBACKS = frozenset(
    {
        CallbackKind.APPROVE,
        CallbackKind.REJECT,
        CallbackKind.DETAILS,
        CallbackKind.WITHDRAWAL_PAID,
        CallbackKind.WITHDRAWAL_REJECT,
    }
)

STUDENT_TYPE_TOKENS: dict[str, StudentType] = {
    "social": StudentType.SOCIAL,
    "natural": StudentType.NATURAL,
}

PAYMENT_METHOD_TOKENS: dict[str, PaymentMethod] = {
    "telebirr": PaymentMethod.TELEBIRR,
    "cbebirr": PaymentMethod.CBE_BIRR,
}

_CHOICE_TOKENS: dict[CallbackKind, dict] = {
    CallbackKind.STUDENT_TYPE: STUDENT_TYPE_TOKENS,
    CallbackKind.REGISTRATION_METHOD: PAYMENT_METHOD_TOKENS,
    CallbackKind.PREFERENCE_METHOD: PAYMENT_METHOD_TOKENS,
}

# longest first: "admin_wpaid" must not be shadowed by a shorter prefix
_KINDS_BY_LENGTH = sorted(CallbackKind, key=lambda k: len(k.value), reverse=True)


@dataclass(frozen=True)
class CallbackAction:
    kind: CallbackKind
    target_id: int | None = None
    choice: StudentType | PaymentMethod | None = None


def build_callback(kind: CallbackKind, arg: int | str | None = None) -> str:
    if arg is None:
        return kind.value
    return f"{kind.value}_{arg}"


def parse_callback(data: str | None) -> CallbackAction | None:
    """Parse an inline-button payload. Returns None for anything malformed."""
    data = (data or "").strip()
    if not data:
        return None

    for kind in _KINDS_BY_LENGTH:
        if data == kind.value:
            if kind is CallbackKind.CANCEL:
                return CallbackAction(kind)
            return None
        prefix = kind.value + "_"
        if not data.startswith(prefix):
            continue

        rest = data[len(prefix):]
        if kind in ADMIN_CALLBACKS:
            if not rest.isdigit() or len(rest) > 19:
                return None
            return CallbackAction(kind, target_id=int(rest))
        tokens = _CHOICE_TOKENS.get(kind)
        if tokens is None or rest not in tokens:
            return None
        return CallbackAction(kind, choice=tokens[rest])

    return None


def parse_command(text: str) -> tuple[str, str | None]:
    """'/start@SomeBot ref_1' -> ('start', 'ref_1')."""
    parts = (text or "").strip().split(maxsplit=1)
    if not parts or not parts[0].startswith("/"):
        return "", None
    name = parts[0][1:].split("@", 1)[0].lower()
    args = parts[1].strip() if len(parts) == 2 else None
    return name, (args or None)


@dataclass(frozen=True)
class InboundEvent:
    kind: EventKind
    tg_id: int
    chat_id: int
    first_name: str | None = None
    username: str | None = None
    text: str | None = None
    command: str | None = None
    command_args: str | None = None
    file_id: str | None = None
    contact_phone: str | None = None
    contact_user_id: int | None = None
    callback_data: str | None = None
    update_id: int | None = None

    @classmethod
    def from_text(cls, text: str, **kwargs) -> "InboundEvent":
        text = text or ""
        if text.startswith("/"):
            command, args = parse_command(text)
            return cls(kind=EventKind.COMMAND, text=text, command=command, command_args=args, **kwargs)
        return cls(kind=EventKind.TEXT, text=text, **kwargs)


@dataclass(frozen=True)
class Reply:
    """One outbound message to the chat that produced the event."""

    text: str
    reply_markup: Any = None
