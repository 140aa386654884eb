"""
Recovery sweeps over abandoned and expired work.

A claim is a lease: if the worker holding a SENDING row dies or hangs, the row
is handed back to the eligible pool once ``locked_at`` is older than
STALE_LOCK_THRESHOLD. Requeued rows wait REQUEUE_DELAY before they can be
claimed again so a burst of recovered rows does not stampede the workers.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from notification_dispatch.core.logging import logger
from notification_dispatch.models.notification import Notification, NotificationStatus, utcnow
from notification_dispatch.services.dispatch import EXPIRED_ERROR

STALE_LOCK_THRESHOLD = timedelta(minutes=2)
REQUEUE_DELAY = timedelta(seconds=30)


async def recover_stuck(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Return stale, unexpired SENDING rows to ACCEPTED. Returns the number requeued."""
    now = now or utcnow()
    stmt = (
        update(Notification)
        .where(
            Notification.status == NotificationStatus.SENDING.value,
            Notification.locked_at < now - STALE_LOCK_THRESHOLD,
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        )
        .values(
            status=NotificationStatus.ACCEPTED.value,
            locked_at=None,
            next_attempt_at=now + REQUEUE_DELAY,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()

    recovered = result.rowcount or 0
    if recovered:
        logger.warning("Recovered stuck notifications", count=recovered, stale_before=(now - STALE_LOCK_THRESHOLD).isoformat())
    return recovered


async def drop_expired(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Move expired ACCEPTED rows, and expired SENDING rows whose lease went stale, to DROPPED."""
    now = now or utcnow()
    stmt = (
        update(Notification)
        .where(
            Notification.expires_at.is_not(None),
            Notification.expires_at <= now,
            or_(
                Notification.status == NotificationStatus.ACCEPTED.value,
                and_(
                    Notification.status == NotificationStatus.SENDING.value,
                    Notification.locked_at < now - STALE_LOCK_THRESHOLD,
                ),
            ),
        )
        .values(
            status=NotificationStatus.DROPPED.value,
            locked_at=None,
            next_attempt_at=None,
            last_error=EXPIRED_ERROR,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()

    dropped = result.rowcount or 0
    if dropped:
        logger.info("Dropped expired notifications", count=dropped)
    return dropped
