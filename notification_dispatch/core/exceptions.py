from typing import Optional
from uuid import UUID


class IdempotencyConflict(Exception):
    """Same (tenant_id, idempotency_key) submitted with a different request fingerprint."""

    def __init__(self, existing_id: UUID):
        self.existing_id = existing_id
        super().__init__(f"Idempotency key already used for notification {existing_id} with a different payload")


class DeliveryError(Exception):
    """The email provider did not accept the message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
