"""API key authentication, scopes and the legacy dev key."""
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.models.audit import AuditLog
from trustdesk.utils.ids import new_object_id
from trustdesk.utils.time import utcnow


@pytest.mark.anyio("asyncio")
async def test_invalid_key_rejected(client):
    response = await client.get("/escrows", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.anyio("asyncio")
async def test_x_api_key_header_and_usage_audit(client, db_session, make_api_key):
    token = f"user-{uuid4().hex}"
    api_key = make_api_key(name=f"user-{uuid4().hex}", key=token, user_id=new_object_id())

    response = await client.get("/escrows", headers={"X-API-Key": token})
    assert response.status_code == 200
    assert response.json() == []

    db_session.refresh(api_key)
    assert api_key.last_used_at is not None
    entry = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "API_KEY_USED", AuditLog.entity_id == api_key.id)
    ).first()
    assert entry is not None
    assert entry.actor == api_key.user_id


@pytest.mark.anyio("asyncio")
async def test_inactive_and_expired_keys_rejected(client, db_session, make_api_key):
    inactive = f"inactive-{uuid4().hex}"
    make_api_key(name=f"inactive-{uuid4().hex}", key=inactive, user_id=new_object_id(), is_active=False)
    response = await client.get("/escrows", headers={"Authorization": f"Bearer {inactive}"})
    assert response.status_code == 401

    expired = f"expired-{uuid4().hex}"
    api_key = make_api_key(name=f"expired-{uuid4().hex}", key=expired, user_id=new_object_id())
    api_key.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()
    response = await client.get("/escrows", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401


@pytest.mark.anyio("asyncio")
async def test_unbound_key_cannot_act_as_user(client, make_api_key):
    token = f"unbound-{uuid4().hex}"
    make_api_key(name=f"unbound-{uuid4().hex}", key=token)

    response = await client.get("/escrows", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "USER_BINDING_REQUIRED"


@pytest.mark.anyio("asyncio")
async def test_user_cannot_manage_apikeys(client, make_caller):
    _, headers = make_caller()
    response = await client.get(f"/apikeys/{new_object_id()}", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_SCOPE"


@pytest.mark.anyio("asyncio")
async def test_support_is_read_only_staff(client, support_caller):
    _, headers = support_caller
    response = await client.get("/transactions/stats", headers=headers)
    assert response.status_code == 200

    response = await client.post(
        f"/disputes/{new_object_id()}/status", json={"status": "under_review"}, headers=headers
    )
    assert response.status_code == 403


@pytest.mark.anyio("asyncio")
async def test_admin_key_lifecycle(client, db_session, admin_caller):
    admin_id, admin_headers = admin_caller
    user_id = new_object_id()
    name = f"marketplace-{uuid4().hex}"

    response = await client.post(
        "/apikeys", json={"name": name, "scope": "user", "user_id": user_id}, headers=admin_headers
    )
    assert response.status_code == 201
    created = response.json()
    assert created["user_id"] == user_id
    assert created["key"].startswith("td_")
    assert created["expires_at"] is not None
    new_headers = {"Authorization": f"Bearer {created['key']}"}

    response = await client.get("/escrows", headers=new_headers)
    assert response.status_code == 200

    response = await client.post("/apikeys", json={"name": name, "scope": "user"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "APIKEY_EXISTS"

    response = await client.get(f"/apikeys/{created['id']}", headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["prefix"] == created["key"].split(".", 1)[0]
    assert body["is_active"] is True
    assert "key_hash" not in body

    response = await client.delete(f"/apikeys/{created['id']}", headers=admin_headers)
    assert response.status_code == 204
    response = await client.delete(f"/apikeys/{created['id']}", headers=admin_headers)
    assert response.status_code == 204

    response = await client.get("/escrows", headers=new_headers)
    assert response.status_code == 401

    actions = db_session.scalars(
        select(AuditLog.action).where(AuditLog.entity == "ApiKey", AuditLog.entity_id == created["id"])
    ).all()
    assert {"CREATE_API_KEY", "REVOKE_API_KEY", "REVOKE_API_KEY_NOOP"} <= set(actions)
    creation = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "CREATE_API_KEY", AuditLog.entity_id == created["id"])
    ).one()
    assert creation.actor == admin_id

    response = await client.get(f"/apikeys/{new_object_id()}", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "APIKEY_NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_legacy_key_rejected_outside_dev(monkeypatch, client, legacy_headers):
    monkeypatch.setattr("trustdesk.security.DEV_API_KEY_ALLOWED", False)

    response = await client.get("/transactions/TXN-1", headers=legacy_headers)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "LEGACY_KEY_FORBIDDEN"


@pytest.mark.anyio("asyncio")
async def test_legacy_key_usage_is_audited(monkeypatch, client, db_session, legacy_headers):
    monkeypatch.setattr("trustdesk.security.DEV_API_KEY_ALLOWED", True)

    response = await client.get("/transactions/TXN-1", headers=legacy_headers)
    assert response.status_code == 404

    audit_entry = db_session.execute(
        select(AuditLog).where(AuditLog.action == "LEGACY_API_KEY_USED").order_by(AuditLog.at.desc())
    ).scalars().first()
    assert audit_entry is not None
    assert audit_entry.actor == "system"
    assert audit_entry.data_json.get("env") == "test"

    # the legacy key is an admin without a bound user
    response = await client.get("/escrows", headers=legacy_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "USER_BINDING_REQUIRED"
    assert db_session.scalars(select(ApiKey).where(ApiKey.name == "__legacy__")).first() is None
