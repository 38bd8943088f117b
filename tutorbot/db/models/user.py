from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Integer, String, Text, false, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from tutorbot.core.time import utcnow
from tutorbot.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("referral_count >= 0", name="ck_users_referral_count_non_negative"),
        CheckConstraint("rewards >= 0", name="ck_users_rewards_non_negative"),
        CheckConstraint("rewards <= total_rewards", name="ck_users_rewards_le_total"),
    )

    tg_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    # Telegram profile snapshot
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # ==========================
    # Registration
    # ==========================
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    registration_step: Mapped[str] = mapped_column(
        String(32), default="not_started", server_default="not_started", nullable=False
    )
    payment_status: Mapped[str] = mapped_column(
        String(16), default="not_started", server_default="not_started", nullable=False
    )
    student_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    # chosen when paying the registration fee
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)

    # ==========================
    # Payout details (withdrawals)
    # ==========================
    payment_method_preference: Mapped[str | None] = mapped_column(String(32), nullable=True)
    account_step: Mapped[str | None] = mapped_column(String(32), nullable=True)
    account_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ==========================
    # Referrals
    # ==========================
    # Who invited this user. Written once on insert, never changed.
    referrer_id: Mapped[int | None] = mapped_column(BigInteger, index=True, nullable=True)
    referral_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    # withdrawable balance
    rewards: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    # lifetime accrued, never decreases
    total_rewards: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    @validates("referrer_id")
    def _validate_referrer_id(self, key: str, value: int | None) -> int | None:
        current = self.__dict__.get("referrer_id")
        if current is not None and value != current:
            raise ValueError("referrer_id_immutable")
        if value is not None and self.tg_id is not None and int(value) == int(self.tg_id):
            raise ValueError("self_referral")
        return value

    @property
    def display_name(self) -> str:
        return self.first_name or self.name or (f"@{self.username}" if self.username else f"ID {self.tg_id}")
