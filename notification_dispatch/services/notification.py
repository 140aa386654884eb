from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Dict
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notification_dispatch.core.exceptions import IdempotencyConflict
from notification_dispatch.core.logging import logger
from notification_dispatch.models.notification import Notification, NotificationStatus, utcnow
from notification_dispatch.schemas.notification import NotificationCreate
from notification_dispatch.services.fingerprint import fingerprint_submission, normalize_email


@dataclass
class SubmissionResult:
    notification: Notification
    reused: bool


async def get_notification_by_key(db: AsyncSession, tenant_id: str, idempotency_key: str) -> Optional[Notification]:
    result = await db.execute(
        select(Notification).filter(
            Notification.tenant_id == tenant_id,
            Notification.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


async def submit_notification(db: AsyncSession, payload: NotificationCreate, now: Optional[datetime] = None) -> SubmissionResult:
    """Create a notification, or return the existing one for an idempotent replay.

    The unique constraint on (tenant_id, idempotency_key) decides which of two
    concurrent submissions wins; the loser reads the winner back and compares
    fingerprints. Raises IdempotencyConflict when the key was used for a
    different request.
    """
    now = now or utcnow()
    request_hash = fingerprint_submission(payload)
    expires_at = now + timedelta(seconds=payload.ttl_seconds) if payload.ttl_seconds else None

    notification = Notification(
        tenant_id=payload.tenant_id,
        idempotency_key=payload.idempotency_key,
        request_hash=request_hash,
        event_type=payload.event_type,
        priority=payload.priority.value,
        template_id=payload.template_id,
        to_email=normalize_email(payload.to.email),
        to_name=payload.to.name,
        variables=payload.variables,
        status=NotificationStatus.ACCEPTED.value,
        attempts=0,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
    db.add(notification)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_notification_by_key(db, payload.tenant_id, payload.idempotency_key)
        if existing is None:
            # Not the idempotency constraint after all
            raise
        if existing.request_hash != request_hash:
            logger.warning(
                "Idempotency key reused with a different payload",
                tenant_id=payload.tenant_id,
                idempotency_key=payload.idempotency_key,
                existing_notification_id=str(existing.id),
            )
            raise IdempotencyConflict(existing.id)
        logger.info("Idempotent replay of notification", notification_id=str(existing.id), tenant_id=existing.tenant_id)
        return SubmissionResult(notification=existing, reused=True)

    await db.refresh(notification)
    logger.info(
        "Notification accepted",
        notification_id=str(notification.id),
        tenant_id=notification.tenant_id,
        event_type=notification.event_type,
        priority=notification.priority,
    )
    return SubmissionResult(notification=notification, reused=False)


async def get_notification_by_id(db: AsyncSession, notification_id: UUID) -> Optional[Notification]:
    result = await db.execute(select(Notification).filter(Notification.id == notification_id))
    return result.scalar_one_or_none()


async def get_notifications_filtered(
    db: AsyncSession,
    tenant_id: Optional[str] = None,
    status: Optional[NotificationStatus] = None,
    limit: int = 50,
) -> List[Notification]:
    query = select(Notification)
    if tenant_id:
        query = query.filter(Notification.tenant_id == tenant_id)
    if status:
        query = query.filter(Notification.status == status.value)
    query = query.order_by(Notification.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_notification_stats(db: AsyncSession) -> dict:
    """
    Retrieves aggregated counts of notifications by status and by tenant.
    """
    logger.info("Fetching notification stats")

    by_tenant_query = (
        select(Notification.tenant_id, Notification.status, func.count().label("total"))
        .group_by(Notification.tenant_id, Notification.status)
    )
    result = await db.execute(by_tenant_query)

    by_status: Dict[str, int] = {status.value: 0 for status in NotificationStatus}
    by_tenant: Dict[str, Dict[str, int]] = {}
    for row in result:
        if row.tenant_id not in by_tenant:
            by_tenant[row.tenant_id] = {status.value: 0 for status in NotificationStatus}
        by_tenant[row.tenant_id][row.status] = row.total
        by_status[row.status] = by_status.get(row.status, 0) + row.total

    stats = {
        "total_notifications": sum(by_status.values()),
        "by_status": by_status,
        "by_tenant": by_tenant,
    }

    logger.info("Notification stats retrieved", total_notifications=stats["total_notifications"])
    return stats
