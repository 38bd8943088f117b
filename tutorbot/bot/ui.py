from __future__ import annotations

from typing import Iterable

from aiogram.utils.text_decorations import html_decoration

from tutorbot.core.config import Settings
from tutorbot.core.time import fmt_date, fmt_dt_eat, utcnow
from tutorbot.db.models import Payment, User, Withdrawal


def q(value: object | None, default: str = "Not set") -> str:
    """HTML-escape a user supplied value for ParseMode.HTML messages."""
    if value is None or value == "":
        return default
    return html_decoration.quote(str(value))


def money(settings: Settings, amount: int) -> str:
    return f"{amount} {settings.currency}"


# ==========================
# General
# ==========================

def welcome(settings: Settings) -> str:
    return (
        "🎯 <b>Welcome to Tutorial Registration Bot!</b>\n\n"
        "📚 Register for our comprehensive tutorials\n"
        f"💰 Registration fee: {money(settings, settings.registration_fee)}\n"
        f"🎁 Earn {money(settings, settings.referral_reward)} per referral\n\n"
        "Start your registration journey!"
    )


def main_menu(settings: Settings) -> str:
    return (
        "🎯 <b>TUTORIAL REGISTRATION</b>\n\n"
        f"💰 Registration fee: {money(settings, settings.registration_fee)}\n"
        f"🎁 Earn {money(settings, settings.referral_reward)} per referral\n\n"
        "Choose an option below:"
    )


def not_authorized() -> str:
    return "❌ You are not authorized to use admin commands."


def generic_error() -> str:
    return "❌ An error occurred. Please try again."


def try_again_later() -> str:
    return "⏳ The service is busy right now. Please try again in a moment."


def unknown_action() -> str:
    return "Unknown action"


def photo_outside_flow() -> str:
    return "📸 <b>Photo received</b>\n\nUse the main menu to continue."


def help_text(is_admin: bool) -> str:
    text = (
        "❓ <b>HELP &amp; SUPPORT</b>\n\n"
        "📚 <b>Registration Process:</b>\n"
        "1. Click 'Register for Tutorial'\n"
        "2. Choose your student type\n"
        "3. Enter your details\n"
        "4. Select payment method\n"
        "5. Upload payment screenshot\n"
        "6. Wait for admin approval\n\n"
        "🎁 <b>Referral System:</b>\n"
        "• Share your referral link\n"
        "• Earn rewards for each successful referral\n"
        "• Withdraw rewards when you reach minimum threshold\n\n"
        "Need more help? Contact support!"
    )
    if is_admin:
        text += (
            "\n\n⚡ <b>ADMIN COMMANDS:</b>\n"
            "/admin - Admin panel\n"
            "/stats - Student statistics\n"
            "/users - All users\n"
            "/payments - Pending payments\n"
            "/withdrawals - Pending withdrawals\n"
            "/block &lt;id&gt; - Block a student\n"
            "/unblock &lt;id&gt; - Unblock a student"
        )
    return text


def rules() -> str:
    return (
        "📌 <b>RULES &amp; GUIDELINES</b>\n\n"
        "✅ <b>Registration:</b>\n"
        "• Provide accurate information\n"
        "• Upload valid payment screenshot\n"
        "• Follow payment instructions\n\n"
        "🎁 <b>Referral System:</b>\n"
        "• Referrals must be legitimate users\n"
        "• No fake accounts allowed\n"
        "• Rewards are paid after verification\n\n"
        "⚠️ <b>Prohibited:</b>\n"
        "• Spam or fake registrations\n"
        "• Multiple accounts\n\n"
        "By using this bot, you agree to these rules."
    )


def pay_fee(settings: Settings) -> str:
    fee = money(settings, settings.registration_fee)
    return (
        "💰 <b>PAYMENT INFORMATION</b>\n\n"
        f"Registration Fee: {fee}\n\n"
        "📱 <b>Payment Methods:</b> TeleBirr, CBE Birr\n\n"
        "📋 <b>Payment Instructions:</b>\n"
        f"1. Send {fee} to our account\n"
        "2. Take a screenshot of the transaction\n"
        "3. Upload it using the bot\n"
        "4. Wait for admin approval"
    )


# ==========================
# Registration flow
# ==========================

def blocked() -> str:
    return "❌ You are blocked from using this bot."


def already_registered() -> str:
    return "✅ <b>You are already registered!</b>\n\nYour account is verified and active."


def awaiting_approval(settings: Settings, user: User) -> str:
    return (
        "⏳ <b>Your payment is awaiting admin approval.</b>\n\n"
        f"💰 Fee: {money(settings, settings.registration_fee)}\n"
        f"💳 Method: {q(user.payment_method)}"
    )


def in_progress() -> str:
    return "🎯 <b>REGISTRATION IN PROGRESS</b>\n\nContinue where you left off, or cancel to start over."


def prompt_student_type() -> str:
    return "🎯 <b>REGISTRATION STEP 1/6</b>\n\nAre you Social Science or Natural Science student?"


def prompt_name() -> str:
    return "🎯 <b>REGISTRATION STEP 2/6</b>\n\nEnter your full name:"


def prompt_phone() -> str:
    return "🎯 <b>REGISTRATION STEP 3/6</b>\n\nEnter your phone number (with country code) or share your contact:"


def prompt_payment_method(settings: Settings) -> str:
    return (
        "🎯 <b>REGISTRATION STEP 4/6</b>\n\n"
        f"💰 <b>Registration fee:</b> {money(settings, settings.registration_fee)}\n\n"
        "Choose payment method:"
    )


def prompt_screenshot(settings: Settings, method: str | None) -> str:
    return (
        "🎯 <b>REGISTRATION STEP 5/6</b>\n\n"
        "Send your payment screenshot for verification:\n\n"
        f"💰 Amount: {money(settings, settings.registration_fee)}\n"
        f"💳 Method: {q(method)}"
    )


def choose_with_buttons() -> str:
    return "❌ <b>Please choose one of the options using the buttons above.</b>"


def empty_name() -> str:
    return "❌ <b>Name cannot be empty.</b>\n\nEnter your full name:"


def invalid_phone() -> str:
    return (
        "❌ <b>Invalid phone number format</b>\n\n"
        "Please enter a valid phone number with country code (e.g., +251912345678)"
    )


def invalid_screenshot() -> str:
    return "❌ <b>Please send a valid image or document.</b>\n\nSend a clear screenshot of your payment."


def missing_fields(fields: Iterable[str]) -> str:
    return "❌ <b>Registration incomplete.</b>\n\nMissing: " + ", ".join(fields) + "\nPlease register again."


def cancelled() -> str:
    return "❌ <b>Registration cancelled.</b>\n\nYou can start again anytime."


def nothing_to_cancel() -> str:
    return "ℹ️ You have no registration in progress."


def payment_received(settings: Settings, user: User) -> str:
    return (
        "✅ <b>Payment received!</b>\n\n"
        "🎯 <b>Registration pending admin approval</b>\n\n"
        f"💰 Fee: {money(settings, settings.registration_fee)}\n"
        f"💳 Method: {q(user.payment_method)}\n"
        "📱 Status: ⏳ Pending Approval"
    )


def upload_screenshot(settings: Settings, user: User) -> str:
    return (
        "📤 <b>UPLOAD PAYMENT SCREENSHOT</b>\n\n"
        "Send your payment screenshot for verification:\n\n"
        f"💰 Fee: {money(settings, settings.registration_fee)}\n"
        f"💳 Method: {q(user.payment_method, 'Not selected')}\n\n"
        "Note: Complete registration first if not started."
    )


# ==========================
# Approval workflow
# ==========================

def admin_new_payment(settings: Settings, user: User, payment: Payment) -> str:
    return (
        "🔔 <b>NEW PAYMENT RECEIVED</b>\n\n"
        "👤 <b>User Information:</b>\n"
        f"• Name: {q(user.name)}\n"
        f"• Phone: {q(user.phone)}\n"
        f"• Student Type: {q(user.student_type)}\n"
        f"• User ID: <code>{user.tg_id}</code>\n\n"
        "💳 <b>Payment Details:</b>\n"
        f"• Method: {q(payment.payment_method)}\n"
        f"• Amount: {money(settings, payment.amount)}\n"
        "• Status: Pending Approval\n"
        f"• Submitted: {fmt_dt_eat(payment.created_at or utcnow())}\n\n"
        "⚡ <b>QUICK ACTIONS:</b>"
    )


def user_approved(settings: Settings) -> str:
    return (
        "🎉 <b>REGISTRATION APPROVED!</b>\n\n"
        "✅ Your registration has been approved!\n\n"
        "📚 You can now access tutorials.\n"
        f"💰 Registration fee: {money(settings, settings.registration_fee)}"
    )


def user_rejected() -> str:
    return (
        "❌ <b>PAYMENT REJECTED</b>\n\n"
        "Your payment has been rejected.\n\n"
        "Please contact admin for more information or register again."
    )


def admin_decided(tg_id: int, status: str) -> str:
    icon = "✅" if status == "approved" else "❌"
    return f"{icon} <b>Payment {status} for user {tg_id}</b>"


def no_pending_payment(tg_id: int) -> str:
    return f"ℹ️ No pending payment for user <code>{tg_id}</code>: it was already decided."


def user_not_found(tg_id: int) -> str:
    return f"❌ User <code>{tg_id}</code> not found."


def user_details(settings: Settings, user: User) -> str:
    return (
        "🔍 <b>USER DETAILS</b>\n\n"
        f"👤 Name: {q(user.name)}\n"
        f"📱 Phone: {q(user.phone)}\n"
        f"🎓 Type: {q(user.student_type)}\n"
        f"✅ Verified: {'Yes' if user.is_verified else 'No'}\n"
        f"💳 Payment: {q(user.payment_status)}\n"
        f"👥 Referrals: {user.referral_count}\n"
        f"💰 Rewards: {money(settings, user.rewards)} (total {money(settings, user.total_rewards)})\n"
        f"📊 Joined: {fmt_date(user.joined_at)}\n"
        f"💳 Account: {q(user.payment_method_preference, '')} {q(user.account_number)}\n"
        f"👤 Account Name: {q(user.account_name)}\n"
        f"🚫 Blocked: {'Yes' if user.blocked else 'No'}\n"
        f"🆔 User ID: <code>{user.tg_id}</code>"
    )


def admin_panel(stats: dict[str, int]) -> str:
    return (
        "🛡️ <b>ADMIN PANEL</b>\n\n"
        "📊 <b>Quick Stats:</b>\n"
        f"• Total Users: {stats['users']}\n"
        f"• Verified Users: {stats['verified']}\n"
        f"• Pending Payments: {stats['pending']}\n"
        f"• Pending Withdrawals: {stats['withdrawals']}\n"
        f"• Total Referrals: {stats['referrals']}\n\n"
        "Choose an admin function:"
    )


def admin_stats(settings: Settings, stats: dict[str, int]) -> str:
    return (
        "📊 <b>STUDENT STATISTICS</b>\n\n"
        f"👥 Total Users: {stats['users']}\n"
        f"✅ Verified Users: {stats['verified']}\n"
        f"⏳ Pending Approvals: {stats['pending']}\n"
        f"💳 Pending Withdrawals: {stats['withdrawals']}\n"
        f"💰 Total Referrals: {stats['referrals']}\n"
        f"🎁 Total Rewards: {money(settings, stats['total_rewards'])}\n\n"
        f"⚙️ Fee {money(settings, settings.registration_fee)} | "
        f"reward {money(settings, settings.referral_reward)} | "
        f"min referrals {settings.min_referrals_for_withdraw}"
    )


def admin_students(users: list[User]) -> str:
    if not users:
        return "📊 No students found."
    lines = [
        f"• {q(u.display_name)} (<code>{u.tg_id}</code>, {q(u.phone, 'No phone')}) - "
        f"{q(u.student_type)} - {'✅' if u.is_verified else '⏳'}{' 🚫' if u.blocked else ''}"
        for u in users
    ]
    return "👥 <b>MANAGE STUDENTS</b>\n\n" + "\n".join(lines)


def admin_payment_line(settings: Settings, payment: Payment, user: User | None) -> str:
    who = q(user.display_name) if user else "Unknown"
    return (
        f"💰 <b>Payment #{payment.id}</b>\n"
        f"👤 {who} (<code>{payment.tg_id}</code>)\n"
        f"💳 {q(payment.payment_method)} - {money(settings, payment.amount)}\n"
        f"🕒 {fmt_dt_eat(payment.created_at)}"
    )


def no_pending_payments() -> str:
    return "💰 No pending payments."


def admin_withdrawal_line(settings: Settings, withdrawal: Withdrawal, user: User | None) -> str:
    who = q(user.display_name) if user else "Unknown"
    return (
        f"💸 <b>Withdrawal #{withdrawal.id}</b>\n"
        f"👤 {who} (<code>{withdrawal.tg_id}</code>)\n"
        f"💰 {money(settings, withdrawal.amount)}\n"
        f"💳 {q(withdrawal.payment_method)} {q(withdrawal.account_number)} ({q(withdrawal.account_name)})"
    )


def no_pending_withdrawals() -> str:
    return "💸 No pending withdrawals."


def block_usage(command: str) -> str:
    return f"Usage: /{command} &lt;user id&gt;"


def block_done(tg_id: int, blocked_now: bool) -> str:
    return f"{'🚫 Blocked' if blocked_now else '✅ Unblocked'} user <code>{tg_id}</code>."


# ==========================
# Referrals
# ==========================

def profile(settings: Settings, user: User, can_withdraw: bool) -> str:
    return (
        "👤 <b>MY PROFILE</b>\n\n"
        f"📋 Name: {q(user.name)}\n"
        f"📱 Phone: {q(user.phone)}\n"
        f"🎓 Student Type: {q(user.student_type)}\n"
        f"✅ Status: {'✅ Verified' if user.is_verified else '⏳ Not verified'}\n"
        f"👥 Referrals: {user.referral_count}\n"
        f"💰 Rewards: {money(settings, user.rewards)}\n"
        f"📊 Joined: {fmt_date(user.joined_at)}\n"
        f"💳 Account: {q(user.payment_method_preference, '')} {q(user.account_number)}\n"
        f"👤 Account Name: {q(user.account_name)}\n\n"
        f"Can Withdraw: {'✅ Yes' if can_withdraw else '❌ No'}\n"
        f"Minimum for withdrawal: {money(settings, settings.min_withdrawal)}"
    )


def invite(settings: Settings, user: User, link: str, can_withdraw: bool) -> str:
    return (
        "🎁 <b>INVITE &amp; EARN</b>\n\n"
        "🔗 <b>Your Referral Link:</b>\n"
        f"{link}\n\n"
        "📊 <b>Stats:</b>\n"
        f"• Referrals: {user.referral_count}\n"
        f"• Rewards: {money(settings, user.rewards)}\n"
        f"• Can Withdraw: {'✅ Yes' if can_withdraw else '❌ No'}\n\n"
        f"💰 <b>Earn {money(settings, settings.referral_reward)} for each successful referral!</b>"
    )


def new_referral(settings: Settings, referred_name: str | None) -> str:
    return (
        "🎉 <b>New referral!</b>\n\n"
        f"{q(referred_name, 'Someone')} joined with your link.\n"
        f"💰 +{money(settings, settings.referral_reward)}"
    )


def leaderboard(users: list[User]) -> str:
    if not users:
        return "📈 <b>LEADERBOARD</b>\n\n📊 No referrals yet. Start inviting friends!"
    lines = [f"{i}. {q(u.display_name)} ({u.referral_count} referrals)" for i, u in enumerate(users, 1)]
    return "📈 <b>TOP REFERRERS</b>\n\n" + "\n".join(lines)


def my_referrals(users: list[User]) -> str:
    lines = [f"{i}. {q(u.display_name)}" for i, u in enumerate(users, 1)]
    body = "\n".join(lines) if lines else "No referrals yet."
    return f"📊 <b>MY REFERRALS ({len(users)})</b>\n\n{body}"


def insufficient_rewards(settings: Settings, user: User) -> str:
    return (
        "❌ <b>Insufficient funds for withdrawal</b>\n\n"
        f"💰 Available: {money(settings, user.rewards)}\n"
        f"Minimum required: {money(settings, settings.min_withdrawal)}\n\n"
        "Continue earning referrals to reach the minimum!"
    )


def account_not_set() -> str:
    return (
        "💳 <b>Payment account not set</b>\n\n"
        "Please set your payment account first using the 'Change Payment Method' button."
    )


def withdrawal_already_pending(settings: Settings, withdrawal: Withdrawal) -> str:
    return (
        "⏳ <b>You already have a pending withdrawal</b>\n\n"
        f"💰 Amount: {money(settings, withdrawal.amount)}\n"
        "Wait until an admin processes it."
    )


def withdrawal_submitted(settings: Settings, withdrawal: Withdrawal) -> str:
    return (
        "✅ <b>Withdrawal request submitted!</b>\n\n"
        f"💰 Amount: {money(settings, withdrawal.amount)}\n"
        f"💳 To: {q(withdrawal.payment_method, '')} {q(withdrawal.account_number)}\n"
        "Status: ⏳ Pending admin approval\n\n"
        "You will be notified when approved."
    )


def admin_new_withdrawal(settings: Settings, user: User, withdrawal: Withdrawal) -> str:
    return (
        "🔔 <b>NEW WITHDRAWAL REQUEST</b>\n\n"
        f"👤 User: {q(user.display_name)}\n"
        f"💰 Amount: {money(settings, withdrawal.amount)}\n"
        f"💳 Method: {q(withdrawal.payment_method)}\n"
        f"📱 Account: {q(withdrawal.account_number)}\n"
        f"👤 Account Name: {q(withdrawal.account_name)}\n"
        f"🆔 User ID: <code>{user.tg_id}</code>"
    )


def withdrawal_paid_user(settings: Settings, withdrawal: Withdrawal) -> str:
    return f"✅ <b>Withdrawal paid!</b>\n\n💰 {money(settings, withdrawal.amount)} was sent to {q(withdrawal.account_number)}."


def withdrawal_rejected_user(settings: Settings, withdrawal: Withdrawal) -> str:
    return (
        "❌ <b>Withdrawal rejected</b>\n\n"
        f"Your request for {money(settings, withdrawal.amount)} was rejected. Your balance is unchanged."
    )


def admin_withdrawal_done(withdrawal: Withdrawal, status: str) -> str:
    return f"{'✅' if status == 'paid' else '❌'} <b>Withdrawal #{withdrawal.id} {status}</b> (user {withdrawal.tg_id})"


def withdrawal_already_processed(withdrawal: Withdrawal) -> str:
    return f"ℹ️ Withdrawal #{withdrawal.id} was already processed ({q(withdrawal.status)})."


def withdrawal_not_found(withdrawal_id: int) -> str:
    return f"❌ Withdrawal #{withdrawal_id} not found."


def withdrawal_balance_changed(withdrawal: Withdrawal) -> str:
    return f"❌ Withdrawal #{withdrawal.id}: the user's balance is lower than the requested amount. Reject it instead."


def choose_preference_method() -> str:
    return "💳 <b>CHANGE PAYMENT METHOD</b>\n\nPlease select your preferred payment method:"


def preference_set(method: str) -> str:
    return f"✅ <b>Payment method set to {q(method)}</b>\n\nNow enter your {q(method)} account number:"


def invalid_account_number() -> str:
    return (
        "❌ <b>Invalid account number format</b>\n\n"
        "Please enter a valid phone number with country code (e.g., +251912345678)"
    )


def account_number_set(number: str) -> str:
    return f"✅ <b>Account number set: {q(number)}</b>\n\nNow enter the account name as it appears on the account:"


def empty_account_name() -> str:
    return "❌ <b>Account name cannot be empty.</b>"


def account_name_set(name: str) -> str:
    return f"✅ <b>Account name set: {q(name)}</b>\n\nYour payment method has been updated successfully!"


def stale_action() -> str:
    return "ℹ️ This button is no longer active. Use the menu to continue."


def foreign_contact() -> str:
    return "❌ <b>Please share your own contact</b> or type your phone number."
