"""
Fair, priority-aware claiming of the next notification to deliver.

Selection runs in two stages inside a single UPDATE statement:

1. Tenant fairness: the tenant owning the oldest eligible notification wins,
   so a tenant with a large backlog cannot starve a tenant that has been
   waiting longer.
2. Within that tenant, the notification with the highest
   ``priority weight + 0.5 * minutes waiting`` wins, oldest first on ties.

Both sub-selects read with ``FOR UPDATE SKIP LOCKED`` and the outer UPDATE
re-checks ``status = 'ACCEPTED'``, so concurrent claimants in any number of
processes never block on each other and never receive the same row.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, case, extract, literal, or_, select, update, Float
from sqlalchemy.ext.asyncio import AsyncSession

from notification_dispatch.core.logging import logger
from notification_dispatch.models.notification import Notification, NotificationPriority, NotificationStatus, utcnow

PRIORITY_WEIGHTS = {
    NotificationPriority.P0.value: 100,
    NotificationPriority.P1.value: 50,
    NotificationPriority.P2.value: 10,
}

AGING_BONUS_PER_MINUTE = 0.5


def eligible_criteria(now: datetime):
    """ACCEPTED, due for (re)delivery and not expired at ``now``."""
    return and_(
        Notification.status == NotificationStatus.ACCEPTED.value,
        or_(Notification.next_attempt_at.is_(None), Notification.next_attempt_at <= now),
        or_(Notification.expires_at.is_(None), Notification.expires_at > now),
    )


def priority_weight():
    return case(PRIORITY_WEIGHTS, value=Notification.priority, else_=0)


def claim_score(now: datetime):
    # now is bound as epoch seconds so every candidate ages against the same instant
    now_epoch = now.replace(tzinfo=timezone.utc).timestamp()
    minutes_waiting = (literal(now_epoch, Float) - extract("epoch", Notification.created_at)) / 60.0
    return priority_weight() + minutes_waiting * AGING_BONUS_PER_MINUTE


def build_claim_statement(now: datetime):
    eligible = eligible_criteria(now)

    oldest_waiting_tenant = (
        select(Notification.tenant_id)
        .where(eligible)
        .order_by(Notification.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
        .correlate(None)
        .scalar_subquery()
    )

    winner = (
        select(Notification.id)
        .where(eligible, Notification.tenant_id == oldest_waiting_tenant)
        .order_by(claim_score(now).desc(), Notification.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
        .correlate(None)
        .scalar_subquery()
    )

    return (
        update(Notification)
        .where(
            Notification.id == winner,
            Notification.status == NotificationStatus.ACCEPTED.value,
        )
        .values(
            status=NotificationStatus.SENDING.value,
            attempts=Notification.attempts + 1,
            locked_at=now,
            updated_at=now,
        )
        .returning(Notification)
        .execution_options(synchronize_session=False, populate_existing=True)
    )


async def claim_next(db: AsyncSession, now: Optional[datetime] = None) -> Optional[Notification]:
    """Atomically move the best eligible notification to SENDING and return it.

    Returns None when nothing is eligible. The transaction is committed before
    returning, so no row lock is held while the caller talks to the provider.
    """
    now = now or utcnow()
    result = await db.execute(build_claim_statement(now))
    notification = result.scalar_one_or_none()
    await db.commit()

    if notification is not None:
        logger.info(
            "Notification claimed",
            notification_id=str(notification.id),
            tenant_id=notification.tenant_id,
            priority=notification.priority,
            attempts=notification.attempts,
        )
    return notification
