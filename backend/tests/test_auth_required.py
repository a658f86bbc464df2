import asyncio
import uuid

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from jose import jwt

from api import auth_middleware
from api.main import app


client = TestClient(app)


def test_jira_routes_require_authentication() -> None:
    assert client.get("/api/jira/connection").status_code == 401
    assert client.get("/api/jira/connect").status_code == 401
    assert client.post("/api/jira/sync").status_code == 401


def test_malformed_authorization_header_is_rejected() -> None:
    response = client.get("/api/jira/mappings", headers={"Authorization": "Token abc"})
    assert response.status_code == 401


def test_hs256_token_yields_auth_context(monkeypatch) -> None:
    monkeypatch.setattr(auth_middleware.settings, "SUPABASE_JWT_SECRET", "test-secret")
    user_id = uuid.uuid4()
    token = jwt.encode({"sub": str(user_id), "email": "me@example.com"}, "test-secret", algorithm="HS256")

    auth = asyncio.run(auth_middleware.get_current_auth(f"Bearer {token}"))

    assert auth.user_id == user_id
    assert auth.email == "me@example.com"


def test_token_signed_with_other_secret_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr(auth_middleware.settings, "SUPABASE_JWT_SECRET", "test-secret")
    token = jwt.encode({"sub": str(uuid.uuid4())}, "wrong-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(auth_middleware.get_current_auth(f"Bearer {token}"))

    assert exc_info.value.status_code == 401
