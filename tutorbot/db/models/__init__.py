from .enums import (AccountStep, DecisionStatus, PaymentMethod, PaymentStatus,
                    RegistrationStep, StudentType, WithdrawalStatus)
from .user import User
from .payment import Payment
from .withdrawal import Withdrawal

__all__ = [
    "User",
    "Payment",
    "Withdrawal",
    "AccountStep",
    "DecisionStatus",
    "PaymentMethod",
    "PaymentStatus",
    "RegistrationStep",
    "StudentType",
    "WithdrawalStatus",
]
