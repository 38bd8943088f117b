from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from tutorbot.core.time import utcnow
from tutorbot.db.base import Base


class Payment(Base):
    """Registration fee screenshot submitted by a user.

    Append-only: only ``status`` and the decision columns change, and only
    through the admin approval workflow.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tg_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # Telegram file_id of the screenshot
    file_id: Mapped[str] = mapped_column(String(256), nullable=False)
    # photo | document
    file_kind: Mapped[str] = mapped_column(String(16), server_default="photo", nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    # pending -> approved | rejected
    status: Mapped[str] = mapped_column(String(16), default="pending", server_default="pending", nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
