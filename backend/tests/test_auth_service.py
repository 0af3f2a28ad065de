"""
backend/tests/test_auth_service.py

Purpose:
    Token extraction (bearer header and cookie), secret rotation and the
    optional-account dependency used by the generation endpoint.
"""

from __future__ import annotations

from types import SimpleNamespace

import jwt
import pytest
from bson import ObjectId
from pydantic import ValidationError
from starlette.requests import Request

import app.database as _db
from app.config import Settings, settings
from app.services import auth_service
from app.services.auth_service import ALGORITHM, create_access_token, decode_jwt, extract_token, get_optional_account

SECRET = "test-secret-that-is-long-enough-for-hs256-0123456789"
USER_ID = ObjectId()


class _FakeUsers:
    def __init__(self, docs):
        self.docs = docs
        self.queries = []

    async def find_one(self, query, projection=None):
        self.queries.append(query)
        for doc in self.docs:
            if doc["_id"] == query["_id"] and not doc.get("is_deleted"):
                return doc
        return None


def _request(headers: dict | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "POST", "path": "/", "headers": raw})


@pytest.fixture(autouse=True)
def _secrets(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", SECRET)
    monkeypatch.setattr(settings, "JWT_SECRET_OLD", "")


@pytest.fixture
def users(monkeypatch):
    fake = _FakeUsers([{"_id": USER_ID, "credits": 250, "is_admin": False}])
    monkeypatch.setattr(_db, "db", SimpleNamespace(users=fake))
    return fake


def test_extract_token_prefers_bearer_header():
    request = _request({"Authorization": "Bearer abc.def", "Cookie": "access_token=cookie-token"})
    assert extract_token(request) == "abc.def"


def test_extract_token_falls_back_to_cookie():
    assert extract_token(_request({"Cookie": "access_token=cookie-token"})) == "cookie-token"
    assert extract_token(_request({"Authorization": "Basic Zm9vOmJhcg=="})) is None
    assert extract_token(_request()) is None


def test_decode_jwt_accepts_previous_secret(monkeypatch):
    old_secret = "previous-secret-that-is-also-long-enough-0123456789"
    token = jwt.encode({"sub": "u1"}, old_secret, algorithm=ALGORITHM)

    with pytest.raises(jwt.InvalidTokenError):
        decode_jwt(token)

    monkeypatch.setattr(settings, "JWT_SECRET_OLD", old_secret)
    assert decode_jwt(token)["sub"] == "u1"


@pytest.mark.asyncio
async def test_optional_account_resolves_bearer_token(users):
    token = create_access_token(str(USER_ID))
    account = await get_optional_account(_request({"Authorization": f"Bearer {token}"}))

    assert account is not None
    assert account.id == str(USER_ID)
    assert account.credits == 250
    assert users.queries[0]["is_deleted"] == {"$ne": True}


@pytest.mark.asyncio
async def test_optional_account_accepts_legacy_user_id_claim(users):
    token = jwt.encode({"userId": str(USER_ID)}, SECRET, algorithm=ALGORITHM)
    account = await get_optional_account(_request({"Cookie": f"access_token={token}"}))
    assert account is not None and account.credits == 250


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        jwt.encode({"sub": "x"}, "some-other-secret-of-sufficient-length-012345", algorithm=ALGORITHM),
        jwt.encode({"sub": str(USER_ID), "type": "refresh"}, SECRET, algorithm=ALGORITHM),
        jwt.encode({"foo": "bar"}, SECRET, algorithm=ALGORITHM),
    ],
    ids=["garbage", "wrong-secret", "refresh-token", "no-subject"],
)
async def test_optional_account_returns_none_for_unusable_tokens(users, token):
    assert await get_optional_account(_request({"Authorization": f"Bearer {token}"})) is None
    assert users.queries == []


@pytest.mark.asyncio
async def test_optional_account_without_token_skips_lookup(users):
    assert await auth_service.get_optional_account(_request()) is None
    assert users.queries == []


def test_settings_refuse_to_load_without_jwt_secret(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError) as exc:
        Settings(_env_file=None)
    assert "JWT_SECRET" in str(exc.value)
