from __future__ import annotations

from enum import Enum


class RegistrationStep(str, Enum):
    NOT_STARTED = "not_started"
    WAITING_STUDENT_TYPE = "waiting_student_type"
    WAITING_NAME = "waiting_name"
    WAITING_PHONE = "waiting_phone"
    WAITING_PAYMENT_METHOD = "waiting_payment_method"
    WAITING_SCREENSHOT = "waiting_screenshot"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    """User-level payment progress."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StudentType(str, Enum):
    SOCIAL = "Social Science"
    NATURAL = "Natural Science"


class PaymentMethod(str, Enum):
    TELEBIRR = "TeleBirr"
    CBE_BIRR = "CBE Birr"


class AccountStep(str, Enum):
    """Position inside the payout-details sub-flow of the profile."""

    WAITING_ACCOUNT_NUMBER = "waiting_account_number"
    WAITING_ACCOUNT_NAME = "waiting_account_name"


class DecisionStatus(str, Enum):
    """Payment record status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"
