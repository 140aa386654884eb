from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from uuid import UUID
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi_limiter.depends import RateLimiter

from notification_dispatch.config import settings
from notification_dispatch.core.exceptions import IdempotencyConflict
from notification_dispatch.core.logging import logger
from notification_dispatch.database import get_db
from notification_dispatch.dependencies.auth import get_admin_or_internal_user, get_admin_user
from notification_dispatch.models.notification import NotificationStatus
from notification_dispatch.schemas.notification import (
    NotificationAccepted,
    NotificationCreate,
    NotificationResponse,
    NotificationStatsResponse,
    RecoveryResponse,
)
from notification_dispatch.services.notification import (
    get_notification_by_id,
    get_notification_stats,
    get_notifications_filtered,
    submit_notification,
)
from notification_dispatch.services.recovery import drop_expired, recover_stuck

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])

async def rate_limit_callback(request: Request, response, pexpire: int):
    """Custom callback for rate limit exceeded."""
    client_ip = request.client.host if request.client else "unknown"
    logger.warning("Rate limit exceeded", ip=client_ip, path=request.url.path, retry_after_ms=pexpire)
    raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too Many Requests")

submit_rate_limiter = RateLimiter(
    times=settings.SUBMIT_RATE_LIMIT_TIMES,
    seconds=settings.SUBMIT_RATE_LIMIT_SECONDS,
    callback=rate_limit_callback,
)

@router.post("", response_model=NotificationAccepted, status_code=status.HTTP_202_ACCEPTED,
             dependencies=[Depends(submit_rate_limiter)])
async def submit_notification_endpoint(
    notification: NotificationCreate,
    current_user: dict = Depends(get_admin_or_internal_user),
    db: AsyncSession = Depends(get_db)
):
    """Accept a notification for delivery. Replays with the same idempotency key return the original."""
    try:
        result = await submit_notification(db, notification)
    except IdempotencyConflict as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
                "existingNotificationId": str(e.existing_id),
            },
        )
    record = result.notification
    return NotificationAccepted(
        notification_id=record.id,
        status=record.status,
        expires_at=record.expires_at,
        created_at=record.created_at,
        idempotency_reused=result.reused,
    )

@router.get("/stats", response_model=NotificationStatsResponse)
async def get_notifications_stats(
    current_user: dict = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Retrieve aggregated counts of notifications by status and tenant."""
    stats = await get_notification_stats(db)
    return NotificationStatsResponse.model_validate(stats)

@router.post("/recover", response_model=RecoveryResponse)
async def recover_notifications_endpoint(
    current_user: dict = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Manually run the stuck-lock and expiry sweeps. (Typically run by scheduler)."""
    recovered = await recover_stuck(db)
    dropped = await drop_expired(db)
    return RecoveryResponse(recovered=recovered, dropped=dropped)

@router.get("/{id}", response_model=NotificationResponse)
async def get_notification(id: UUID, current_user: dict = Depends(get_admin_user), db: AsyncSession = Depends(get_db)):
    """Retrieve details of a specific notification by ID."""
    notification = await get_notification_by_id(db, id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return NotificationResponse.model_validate(notification)

@router.get("", response_model=List[NotificationResponse])
async def get_notifications(
    current_user: dict = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
    tenant_id: Optional[str] = Query(None),
    status: Optional[NotificationStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
):
    """Retrieve the newest notifications, optionally filtered by tenant and status."""
    notifications = await get_notifications_filtered(db, tenant_id=tenant_id, status=status, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]
