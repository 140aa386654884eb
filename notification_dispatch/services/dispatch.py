from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from notification_dispatch.core.logging import logger
from notification_dispatch.models.notification import Notification, NotificationStatus, utcnow
from notification_dispatch.providers.email import EmailProvider
from notification_dispatch.services.scheduler import claim_next
from notification_dispatch.utils.retry import backoff, is_terminal

EXPIRED_ERROR = "expired before send"

# last_error is TEXT, but provider bodies can be arbitrarily large
MAX_ERROR_LENGTH = 2000


async def _finish_attempt(db: AsyncSession, notification: Notification, now: datetime, **values) -> Optional[Notification]:
    """Move a claimed notification out of SENDING. Always releases the lock.

    Returns None when the row is no longer SENDING, i.e. the sweeper already
    took the lease back; nothing is written in that case.
    """
    stmt = (
        update(Notification)
        .where(
            Notification.id == notification.id,
            Notification.status == NotificationStatus.SENDING.value,
        )
        .values(locked_at=None, updated_at=now, **values)
        .returning(Notification)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    result = await db.execute(stmt)
    updated = result.scalar_one_or_none()
    await db.commit()

    if updated is None:
        logger.warning(
            "Notification lease lost before attempt finished",
            notification_id=str(notification.id),
            attempted_status=values.get("status"),
        )
    return updated


async def deliver(db: AsyncSession, notification: Notification, provider: EmailProvider, now: Optional[datetime] = None) -> Optional[Notification]:
    """Run one delivery attempt for a notification already claimed as SENDING.

    ``now`` pins the clock for every timestamp written; when omitted the
    current time is read again after the provider call returns.
    """
    checked_at = now or utcnow()

    if notification.expires_at is not None and notification.expires_at <= checked_at:
        logger.info("Notification expired before send, dropping", notification_id=str(notification.id), expires_at=notification.expires_at.isoformat())
        return await _finish_attempt(
            db,
            notification,
            checked_at,
            status=NotificationStatus.DROPPED.value,
            next_attempt_at=None,
            last_error=EXPIRED_ERROR,
        )

    try:
        result = await provider.send_template_email(
            to_email=notification.to_email,
            template_id=notification.template_id,
            variables=notification.variables,
        )
    except Exception as e:
        error = (str(e) or type(e).__name__)[:MAX_ERROR_LENGTH]
        finished_at = now or utcnow()

        if is_terminal(notification.attempts):
            logger.error(
                "Notification permanently failed",
                notification_id=str(notification.id),
                tenant_id=notification.tenant_id,
                attempts=notification.attempts,
                error=error,
            )
            return await _finish_attempt(
                db,
                notification,
                finished_at,
                status=NotificationStatus.FAILED.value,
                next_attempt_at=None,
                last_error=error,
            )

        next_attempt_at = finished_at + backoff(notification.attempts)
        logger.warning(
            "Notification delivery failed, retry scheduled",
            notification_id=str(notification.id),
            tenant_id=notification.tenant_id,
            attempts=notification.attempts,
            next_attempt_at=next_attempt_at.isoformat(),
            error=error,
        )
        return await _finish_attempt(
            db,
            notification,
            finished_at,
            status=NotificationStatus.ACCEPTED.value,
            next_attempt_at=next_attempt_at,
            last_error=error,
        )

    finished_at = now or utcnow()
    logger.info(
        "Notification sent",
        notification_id=str(notification.id),
        tenant_id=notification.tenant_id,
        provider=result.provider,
        provider_message_id=result.provider_message_id,
        attempts=notification.attempts,
    )
    return await _finish_attempt(
        db,
        notification,
        finished_at,
        status=NotificationStatus.SENT.value,
        provider=result.provider,
        provider_message_id=result.provider_message_id,
        sent_at=finished_at,
        next_attempt_at=None,
        last_error=None,
    )


async def send_next(db: AsyncSession, provider: EmailProvider, now: Optional[datetime] = None) -> Optional[Notification]:
    """Claim the next eligible notification and attempt delivery.

    Returns the notification in its post-attempt state, or None when there was
    nothing to claim (the caller should stop for this cycle).
    """
    notification = await claim_next(db, now=now)
    if notification is None:
        return None
    outcome = await deliver(db, notification, provider, now=now)
    # Lease lost still counts as work done for this cycle
    return outcome if outcome is not None else notification
