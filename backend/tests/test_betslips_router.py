"""
backend/tests/test_betslips_router.py

Purpose:
    HTTP contract of /api/betslips: status codes and structured bodies for
    every outcome category.
"""

from __future__ import annotations

import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.models.account import Account
from app.providers.generation_client import GenerationConfig
from app.routers.betslips import get_generation_service, router as betslips_router
from app.services.auth_service import get_optional_account
from app.services.betslip_generation_service import BetslipGenerationService
from app.services.credit_meter import CreditMeter
from fakes import (
    NOW,
    FakeGenerator,
    InMemoryAccountStore,
    InMemoryChargeLedger,
    StaticFixtureStore,
    make_fixture,
)

_BETSLIP = {
    "combinedOdd": 4.0,
    "legs": [
        {"match": "PSG vs Lille", "market": "Over 1.5 goals", "odds": 1.25, "confidence": "85%"},
        {"match": "Lyon vs Nice", "market": "Double chance 1X", "odds": 1.6, "confidence": "70%"},
    ],
}


def _build_test_client(account: Account | None, *, credits: int = 150, text: str | None = None):
    store = InMemoryAccountStore({"u1": {"credits": credits}})
    meter = CreditMeter(store, InMemoryChargeLedger(), admin_exempt=True)
    generator = FakeGenerator(text=text if text is not None else json.dumps({"betslips": [_BETSLIP]}))
    service = BetslipGenerationService(
        meter,
        StaticFixtureStore([make_fixture("PSG", "Lille", 2), make_fixture("Lyon", "Nice", 4)]),
        generator,
        config=GenerationConfig(model="test", max_output_tokens=100, temperature=0.2),
        cost=100,
        clock=lambda: NOW,
    )

    app = FastAPI()
    app.include_router(betslips_router)

    async def _fake_account():
        return account

    app.dependency_overrides[get_optional_account] = _fake_account
    app.dependency_overrides[get_generation_service] = lambda: service
    return TestClient(app), store


def test_generate_requires_authentication():
    client, _ = _build_test_client(None)
    response = client.post("/api/betslips/generate", json={"targetOdd": 5})

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["betslips"] == []
    assert body["errorKind"] == "AuthenticationRequired"


def test_generate_rejects_missing_or_non_numeric_target():
    client, store = _build_test_client(Account(id="u1", credits=150))

    for payload in ({}, {"targetOdd": "abc"}, {"targetOdd": None}):
        response = client.post("/api/betslips/generate", json=payload)
        assert response.status_code == 400
        assert response.json()["errorKind"] == "InvalidInput"

    assert client.post("/api/betslips/generate").status_code == 400
    assert store.balance("u1") == 150


def test_generate_insufficient_credits_returns_403_with_balance():
    client, store = _build_test_client(Account(id="u1", credits=50), credits=50)
    response = client.post("/api/betslips/generate", json={"targetOdd": 5})

    assert response.status_code == 403
    body = response.json()
    assert body["credits"] == 50
    assert body["required"] == 100
    assert store.balance("u1") == 50


def test_generate_success_shape():
    client, store = _build_test_client(Account(id="u1", credits=150))
    response = client.post("/api/betslips/generate", json={"targetOdd": "2.0"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["credits"] == 50
    assert body["cost"] == 100
    assert body["isAdmin"] is False
    assert body["metadata"]["fixturesCount"] == 2
    [betslip] = body["betslips"]
    assert betslip["combinedOdd"] == 2.0
    assert betslip["aiConfidence"] == 78
    assert betslip["potentialReturn"] == 20.0
    assert store.balance("u1") == 50


def test_generate_parse_failure_returns_500_and_refunds():
    client, store = _build_test_client(Account(id="u1", credits=150), text="not json at all")
    response = client.post("/api/betslips/generate", json={"targetOdd": 5})

    assert response.status_code == 500
    body = response.json()
    assert body["errorKind"] == "InvalidGenerationOutput"
    assert body["credits"] == 150
    assert store.balance("u1") == 150


def test_cost_endpoint():
    client, _ = _build_test_client(Account(id="u1", credits=150))
    body = client.get("/api/betslips/cost").json()
    assert body == {"cost": 100, "credits": 150, "isAdmin": False, "canGenerate": True}

    admin_client, _ = _build_test_client(Account(id="u1", credits=0, is_admin=True))
    body = admin_client.get("/api/betslips/cost").json()
    assert body["isAdmin"] is True and body["canGenerate"] is True

    anon_client, _ = _build_test_client(None)
    assert anon_client.get("/api/betslips/cost").status_code == 401
