"""
backend/tests/test_logging_middleware.py

Purpose:
    Request-id propagation and one structured log line per request.
"""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from app.middleware.logging import StructuredLoggingMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(StructuredLoggingMiddleware)

    @app.get("/ok")
    async def ok():
        return {"ok": True}

    @app.get("/missing")
    async def missing():
        raise HTTPException(status_code=404, detail="nope")

    @app.post("/generate")
    async def generate(request: Request):
        request.state.error_kind = "GenerationServiceUnavailable"
        return JSONResponse(status_code=500, content={"success": False})

    return app


def test_request_id_is_echoed_from_header():
    client = TestClient(_app())
    response = client.get("/ok", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_is_generated_when_absent():
    client = TestClient(_app())
    assert len(client.get("/ok").headers["X-Request-ID"]) == 8


def test_error_responses_log_at_warning(caplog):
    client = TestClient(_app())
    with caplog.at_level(logging.INFO, logger="betai.http"):
        client.get("/missing", headers={"X-Request-ID": "abc"})

    [record] = [r for r in caplog.records if r.name == "betai.http"]
    assert record.levelno == logging.WARNING
    payload = json.loads(record.getMessage())
    assert payload["status"] == 404
    assert payload["path"] == "/missing"
    assert payload["request_id"] == "abc"


def test_server_errors_log_at_error_with_generation_outcome(caplog):
    client = TestClient(_app())
    with caplog.at_level(logging.INFO, logger="betai.http"):
        client.post("/generate")

    [record] = [r for r in caplog.records if r.name == "betai.http"]
    assert record.levelno == logging.ERROR
    payload = json.loads(record.getMessage())
    assert payload["error_kind"] == "GenerationServiceUnavailable"
    assert "generation_id" not in payload
