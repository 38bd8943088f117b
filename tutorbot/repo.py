from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbot.core.errors import ConcurrentUpdate
from tutorbot.db.models import DecisionStatus, Payment, User, Withdrawal, WithdrawalStatus

log = logging.getLogger(__name__)


async def get_user(session: AsyncSession, tg_id: int) -> User | None:
    return await session.get(User, int(tg_id))


async def update_user(session: AsyncSession, user: User, *conditions: Any, **values: Any) -> User:
    """Guarded read-modify-write for a user row.

    ``conditions`` are extra WHERE clauses describing the state the caller read
    (usually ``User.registration_step == <step>``). If another event changed the
    row in between, nothing is written and ``ConcurrentUpdate`` is raised.
    The in-session object is refreshed afterwards.
    """
    stmt = (
        update(User)
        .where(User.tg_id == user.tg_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        log.warning("user_update_conflict tg_id=%s fields=%s", user.tg_id, ",".join(sorted(values)))
        raise ConcurrentUpdate(code="user_changed")
    await session.refresh(user)
    return user


async def credit_referral(session: AsyncSession, referrer_id: int, reward: int) -> bool:
    """Atomic +1 referral and +reward on both balances. Returns False if the referrer is gone."""
    stmt = (
        update(User)
        .where(User.tg_id == referrer_id)
        .values(
            referral_count=User.referral_count + 1,
            rewards=User.rewards + reward,
            total_rewards=User.total_rewards + reward,
        )
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def debit_rewards(session: AsyncSession, tg_id: int, amount: int) -> bool:
    stmt = (
        update(User)
        .where(User.tg_id == tg_id, User.rewards >= amount)
        .values(rewards=User.rewards - amount)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def set_payment_decision(session: AsyncSession, payment_id: int, *, status: str, admin_id: int, now) -> bool:
    """pending -> approved | rejected. False when the payment was already decided."""
    stmt = (
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == DecisionStatus.PENDING.value)
        .values(status=status, decided_by=admin_id, decided_at=now)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def set_withdrawal_status(session: AsyncSession, withdrawal_id: int, *, status: str, admin_id: int, now) -> bool:
    stmt = (
        update(Withdrawal)
        .where(Withdrawal.id == withdrawal_id, Withdrawal.status == WithdrawalStatus.PENDING.value)
        .values(status=status, processed_by=admin_id, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def latest_pending_payment(session: AsyncSession, tg_id: int) -> Payment | None:
    q = (
        select(Payment)
        .where(Payment.tg_id == tg_id, Payment.status == DecisionStatus.PENDING.value)
        .order_by(Payment.id.desc())
        .limit(1)
    )
    res = await session.execute(q)
    return res.scalar_one_or_none()


async def list_pending_payments(session: AsyncSession, limit: int | None = None) -> list[Payment]:
    q = select(Payment).where(Payment.status == DecisionStatus.PENDING.value).order_by(Payment.id.asc())
    if limit:
        q = q.limit(limit)
    res = await session.execute(q)
    return list(res.scalars().all())


async def get_pending_withdrawal(session: AsyncSession, tg_id: int) -> Withdrawal | None:
    q = (
        select(Withdrawal)
        .where(Withdrawal.tg_id == tg_id, Withdrawal.status == WithdrawalStatus.PENDING.value)
        .order_by(Withdrawal.id.desc())
        .limit(1)
    )
    res = await session.execute(q)
    return res.scalar_one_or_none()


async def list_pending_withdrawals(session: AsyncSession, limit: int | None = None) -> list[Withdrawal]:
    q = select(Withdrawal).where(Withdrawal.status == WithdrawalStatus.PENDING.value).order_by(Withdrawal.id.asc())
    if limit:
        q = q.limit(limit)
    res = await session.execute(q)
    return list(res.scalars().all())


async def list_users(session: AsyncSession, limit: int = 10) -> list[User]:
    q = select(User).order_by(User.joined_at.asc(), User.tg_id.asc()).limit(limit)
    res = await session.execute(q)
    return list(res.scalars().all())


async def top_referrers(session: AsyncSession, limit: int = 10) -> list[User]:
    q = (
        select(User)
        .order_by(User.referral_count.desc(), User.joined_at.asc(), User.tg_id.asc())
        .limit(limit)
    )
    res = await session.execute(q)
    return list(res.scalars().all())


async def list_referrals(session: AsyncSession, referrer_id: int) -> list[User]:
    q = select(User).where(User.referrer_id == referrer_id).order_by(User.joined_at.asc(), User.tg_id.asc())
    res = await session.execute(q)
    return list(res.scalars().all())


async def collect_stats(session: AsyncSession) -> dict[str, int]:
    """Aggregate counters for the health endpoint and the admin panel."""
    users = await session.scalar(select(func.count()).select_from(User))
    verified = await session.scalar(select(func.count()).select_from(User).where(User.is_verified.is_(True)))
    pending = await session.scalar(
        select(func.count()).select_from(Payment).where(Payment.status == DecisionStatus.PENDING.value)
    )
    withdrawals = await session.scalar(
        select(func.count()).select_from(Withdrawal).where(Withdrawal.status == WithdrawalStatus.PENDING.value)
    )
    referrals = await session.scalar(select(func.coalesce(func.sum(User.referral_count), 0)))
    total_rewards = await session.scalar(select(func.coalesce(func.sum(User.total_rewards), 0)))
    return {
        "users": int(users or 0),
        "verified": int(verified or 0),
        "pending": int(pending or 0),
        "withdrawals": int(withdrawals or 0),
        "referrals": int(referrals or 0),
        "total_rewards": int(total_rewards or 0),
    }
