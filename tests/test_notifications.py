import uuid
from datetime import datetime, timedelta

import pytest
from jose import jwt

from notification_dispatch.config import settings
from notification_dispatch.models.notification import NotificationStatus


def _body(**overrides):
    body = {
        "tenantId": "tenant-a",
        "eventType": "otp",
        "priority": "P0",
        "to": {"email": "ada@example.com", "name": "Ada"},
        "templateId": "tpl-otp",
        "variables": {"code": "123456"},
        "idempotencyKey": "key-1",
    }
    body.update(overrides)
    return body


def _token(role):
    return jwt.encode({"sub": "svc-billing", "role": role}, settings.JWT_SECRET, algorithm=settings.ALGORITHM)


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_submit_returns_202(client):
    response = await client.post("/v1/notifications", json=_body(ttlSeconds=300))

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "ACCEPTED"
    assert data["idempotencyReused"] is False
    uuid.UUID(data["notificationId"])
    created_at = datetime.fromisoformat(data["createdAt"])
    assert datetime.fromisoformat(data["expiresAt"]) == created_at + timedelta(seconds=300)


@pytest.mark.asyncio
async def test_replay_returns_same_id(client):
    first = (await client.post("/v1/notifications", json=_body())).json()
    replay = await client.post(
        "/v1/notifications",
        json=_body(to={"email": "ada@example.com", "name": "Someone Else"}),
    )

    assert replay.status_code == 202
    assert replay.json()["notificationId"] == first["notificationId"]
    assert replay.json()["idempotencyReused"] is True
    assert replay.json()["expiresAt"] is None


@pytest.mark.asyncio
async def test_conflicting_replay_returns_409(client):
    first = (await client.post("/v1/notifications", json=_body())).json()
    response = await client.post("/v1/notifications", json=_body(priority="P2"))

    assert response.status_code == 409
    assert response.json()["detail"] == {
        "error": "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "existingNotificationId": first["notificationId"],
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"priority": "P3"},
        {"to": {"email": "not-an-email"}},
        {"ttlSeconds": 0},
        {"ttlSeconds": 60 * 60 * 24 * 7 + 1},
        {"tenantId": ""},
        {"idempotencyKey": "k" * 201},
        {"variables": ["not", "a", "mapping"]},
    ],
)
async def test_invalid_submission_is_rejected(client, overrides):
    response = await client.post("/v1/notifications", json=_body(**overrides))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_notification_and_404(client):
    created = (await client.post("/v1/notifications", json=_body())).json()

    response = await client.get(f"/v1/notifications/{created['notificationId']}")
    assert response.status_code == 200
    data = response.json()
    assert data["tenantId"] == "tenant-a"
    assert data["toEmail"] == "ada@example.com"
    assert data["toName"] == "Ada"
    assert data["attempts"] == 0
    assert data["lockedAt"] is None

    missing = await client.get(f"/v1/notifications/{uuid.uuid4()}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_list_and_stats(client):
    await client.post("/v1/notifications", json=_body(idempotencyKey="a-1"))
    await client.post("/v1/notifications", json=_body(idempotencyKey="a-2"))
    await client.post("/v1/notifications", json=_body(tenantId="tenant-b"))

    listed = await client.get("/v1/notifications", params={"tenant_id": "tenant-a", "status": "ACCEPTED"})
    assert listed.status_code == 200
    assert len(listed.json()) == 2

    stats = (await client.get("/v1/notifications/stats")).json()
    assert stats["totalNotifications"] == 3
    assert stats["byStatus"]["ACCEPTED"] == 3
    assert stats["byTenant"]["tenant-b"]["ACCEPTED"] == 1


@pytest.mark.asyncio
async def test_recover_endpoint(client, make_notification):
    await make_notification(
        status=NotificationStatus.SENDING.value,
        locked_at=datetime(2020, 1, 1),
    )
    response = await client.post("/v1/notifications/recover")
    assert response.status_code == 200
    assert response.json() == {"recovered": 1, "dropped": 0}


@pytest.mark.asyncio
async def test_submit_requires_token(unauthenticated_client):
    response = await unauthenticated_client.post("/v1/notifications", json=_body())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(unauthenticated_client):
    response = await unauthenticated_client.post(
        "/v1/notifications", json=_body(), headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_internal_role_can_submit_but_not_read(unauthenticated_client):
    headers = {"Authorization": f"Bearer {_token('Internal')}"}

    submitted = await unauthenticated_client.post("/v1/notifications", json=_body(), headers=headers)
    assert submitted.status_code == 202

    read = await unauthenticated_client.get(f"/v1/notifications/{submitted.json()['notificationId']}", headers=headers)
    assert read.status_code == 403


@pytest.mark.asyncio
async def test_unknown_role_cannot_submit(unauthenticated_client):
    headers = {"Authorization": f"Bearer {_token('Tenant')}"}
    response = await unauthenticated_client.post("/v1/notifications", json=_body(), headers=headers)
    assert response.status_code == 403
