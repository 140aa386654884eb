from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime
from typing import Dict, Any, Optional

from notification_dispatch.models.notification import NotificationPriority, NotificationStatus

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

class Recipient(CamelModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=200)

class NotificationCreate(CamelModel):
    tenant_id: str = Field(min_length=1, max_length=100)
    event_type: str = Field(min_length=1, max_length=100)
    priority: NotificationPriority
    to: Recipient
    template_id: str = Field(min_length=1, max_length=200)
    variables: Dict[str, Any]
    idempotency_key: str = Field(min_length=1, max_length=200)
    ttl_seconds: Optional[int] = Field(default=None, ge=1, le=60 * 60 * 24 * 7)

class NotificationAccepted(CamelModel):
    notification_id: UUID
    status: NotificationStatus
    expires_at: Optional[datetime]
    created_at: datetime
    idempotency_reused: bool

class NotificationResponse(CamelModel):
    id: UUID
    tenant_id: str
    idempotency_key: str
    event_type: str
    priority: NotificationPriority
    template_id: str
    to_email: str
    to_name: Optional[str]
    variables: Dict[str, Any]
    status: NotificationStatus
    attempts: int
    locked_at: Optional[datetime]
    next_attempt_at: Optional[datetime]
    expires_at: Optional[datetime]
    last_error: Optional[str]
    provider: Optional[str]
    provider_message_id: Optional[str]
    sent_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

class NotificationStatsResponse(CamelModel):
    total_notifications: int
    by_status: Dict[str, int]
    by_tenant: Dict[str, Dict[str, int]] # {tenant_id: {status: count}}

class RecoveryResponse(CamelModel):
    recovered: int
    dropped: int
