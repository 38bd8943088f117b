from aiogram.types import InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder, ReplyKeyboardBuilder

from tutorbot.bot.events import CallbackKind, MenuAction, build_callback

# Reply-keyboard vocabulary. Incoming free text is matched against these labels
# once, in action_for_text(); everything downstream works on MenuAction.
MENU_LABELS: dict[MenuAction, str] = {
    MenuAction.REGISTER: "📚 Register for Tutorial",
    MenuAction.PAY_FEE: "💰 Pay Tutorial Fee",
    MenuAction.UPLOAD_SCREENSHOT: "📤 Upload Payment Screenshot",
    MenuAction.INVITE: "🎁 Invite & Earn",
    MenuAction.LEADERBOARD: "📈 Leaderboard",
    MenuAction.HELP: "❓ Help",
    MenuAction.RULES: "📌 Rules",
    MenuAction.PROFILE: "👤 My Profile",
    MenuAction.WITHDRAW: "💰 Withdraw Rewards",
    MenuAction.CHANGE_PAYMENT_METHOD: "💳 Change Payment Method",
    MenuAction.MY_REFERRALS: "📊 My Referrals",
    MenuAction.CANCEL_REGISTRATION: "❌ Cancel Registration",
    MenuAction.BACK_TO_MENU: "🔙 Back to Menu",
    MenuAction.ADMIN_STUDENTS: "👥 Manage Students",
    MenuAction.ADMIN_PAYMENTS: "💰 Review Payments",
    MenuAction.ADMIN_WITHDRAWALS: "💸 Review Withdrawals",
    MenuAction.ADMIN_STATS: "📊 Student Stats",
    MenuAction.ADMIN_BACK: "🔙 Back to Admin",
}

_ACTION_BY_LABEL: dict[str, MenuAction] = {label: action for action, label in MENU_LABELS.items()}


def action_for_text(text: str | None) -> MenuAction | None:
    return _ACTION_BY_LABEL.get((text or "").strip())


def _reply_kb(*rows: tuple[MenuAction, ...]) -> ReplyKeyboardMarkup:
    b = ReplyKeyboardBuilder()
    for row in rows:
        b.row(*(KeyboardButton(text=MENU_LABELS[a]) for a in row))
    return b.as_markup(resize_keyboard=True)


def kb_main() -> ReplyKeyboardMarkup:
    return _reply_kb(
        (MenuAction.REGISTER, MenuAction.PAY_FEE),
        (MenuAction.UPLOAD_SCREENSHOT, MenuAction.INVITE),
        (MenuAction.LEADERBOARD, MenuAction.HELP),
        (MenuAction.RULES, MenuAction.PROFILE),
    )


def kb_in_registration() -> ReplyKeyboardMarkup:
    return _reply_kb(
        (MenuAction.INVITE, MenuAction.HELP),
        (MenuAction.RULES, MenuAction.PROFILE),
        (MenuAction.CANCEL_REGISTRATION,),
    )


def kb_profile() -> ReplyKeyboardMarkup:
    return _reply_kb(
        (MenuAction.WITHDRAW, MenuAction.CHANGE_PAYMENT_METHOD),
        (MenuAction.MY_REFERRALS, MenuAction.BACK_TO_MENU),
    )


def kb_admin() -> ReplyKeyboardMarkup:
    return _reply_kb(
        (MenuAction.ADMIN_STUDENTS, MenuAction.ADMIN_PAYMENTS),
        (MenuAction.ADMIN_WITHDRAWALS, MenuAction.ADMIN_STATS),
        (MenuAction.BACK_TO_MENU,),
    )


def kb_student_type() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="📚 Social Science", callback_data=build_callback(CallbackKind.STUDENT_TYPE, "social"))
    b.button(text="🔬 Natural Science", callback_data=build_callback(CallbackKind.STUDENT_TYPE, "natural"))
    b.button(text="❌ Cancel Registration", callback_data=build_callback(CallbackKind.CANCEL))
    b.adjust(2, 1)
    return b.as_markup()


def kb_registration_method() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="📱 TeleBirr", callback_data=build_callback(CallbackKind.REGISTRATION_METHOD, "telebirr"))
    b.button(text="🏦 CBE Birr", callback_data=build_callback(CallbackKind.REGISTRATION_METHOD, "cbebirr"))
    b.button(text="❌ Cancel Registration", callback_data=build_callback(CallbackKind.CANCEL))
    b.adjust(2, 1)
    return b.as_markup()


def kb_preference_method() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="📱 TeleBirr", callback_data=build_callback(CallbackKind.PREFERENCE_METHOD, "telebirr"))
    b.button(text="🏦 CBE Birr", callback_data=build_callback(CallbackKind.PREFERENCE_METHOD, "cbebirr"))
    b.adjust(2)
    return b.as_markup()


def kb_payment_decision(tg_id: int) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="✅ Approve", callback_data=build_callback(CallbackKind.APPROVE, tg_id))
    b.button(text="❌ Reject", callback_data=build_callback(CallbackKind.REJECT, tg_id))
    b.button(text="🔍 View Details", callback_data=build_callback(CallbackKind.DETAILS, tg_id))
    b.adjust(2, 1)
    return b.as_markup()


def kb_withdrawal_decision(withdrawal_id: int) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="✅ Mark paid", callback_data=build_callback(CallbackKind.WITHDRAWAL_PAID, withdrawal_id))
    b.button(text="❌ Reject", callback_data=build_callback(CallbackKind.WITHDRAWAL_REJECT, withdrawal_id))
    b.adjust(2)
    return b.as_markup()
