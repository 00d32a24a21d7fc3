"""Unit tests for request validation (api.validation).

Covers size limits, content type, JSON parsing, honeypot detection and
request model errors, both through validate_request directly and through
the ValidatedBody dependency mounted on a throwaway app.
"""

import json
import time
from typing import Any

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel
from starlette.requests import Request

from api.exceptions import register_exception_handlers
from api.validation import ValidatedBody, check_request_size, validate_request
from marketplace.models.errors import ErrorCode

MAX_SIZE = 100


class Item(BaseModel):
    name: str


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.post("/items")
    async def create_item(body: Item = Depends(ValidatedBody(Item, max_size=MAX_SIZE))):
        return {"name": body.name}

    @app.post("/forms")
    async def submit_form(body: Item = Depends(ValidatedBody(Item, check_honeypot=True))):
        return {"name": body.name}

    @app.post("/actions")
    async def run_action(_: None = Depends(check_request_size)):
        return {"ok": True}

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_build_app())


def _request(body: bytes, headers: dict[str, str], method: str = "POST") -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": "/",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


def _body_of_size(size: int) -> bytes:
    # {"name":"..."} has 11 bytes of framing
    return json.dumps({"name": "x" * (size - 11)}, separators=(",", ":")).encode()


# === validate_request ===


class TestValidateRequest:
    """Tests for the ordered validation checks."""

    @pytest.mark.asyncio
    async def test_valid_json_body(self) -> None:
        request = _request(b'{"name": "a"}', {"content-type": "application/json"})

        result = await validate_request(request)

        assert result.valid is True
        assert result.body == {"name": "a"}

    @pytest.mark.asyncio
    async def test_declared_length_over_limit(self) -> None:
        request = _request(
            b"{}", {"content-type": "application/json", "content-length": str(2 * 1024 * 1024)}
        )

        result = await validate_request(request, max_size=1024 * 1024)

        assert result.valid is False
        assert result.status == 413
        assert result.error == "Request too large (2.0MB). Maximum: 1.0MB"

    @pytest.mark.asyncio
    async def test_non_numeric_content_length(self) -> None:
        request = _request(b"{}", {"content-type": "application/json", "content-length": "abc"})

        result = await validate_request(request)

        assert result.status == 400
        assert result.error == "Invalid content-length header"

    @pytest.mark.asyncio
    async def test_size_is_measured_on_compact_serialization(self) -> None:
        # Whitespace does not count against the limit
        padded = json.dumps({"name": "x" * 80}, indent=8).encode()
        assert len(padded) > MAX_SIZE
        request = _request(padded, {"content-type": "application/json"})

        result = await validate_request(request, max_size=MAX_SIZE)

        assert result.valid is True

    @pytest.mark.asyncio
    async def test_serialized_payload_over_limit(self) -> None:
        request = _request(_body_of_size(MAX_SIZE + 1), {"content-type": "application/json"})

        result = await validate_request(request, max_size=MAX_SIZE)

        assert result.status == 413
        assert result.error.startswith("Request payload too large")

    @pytest.mark.asyncio
    async def test_get_skips_json_checks(self) -> None:
        request = _request(b"", {}, method="GET")

        result = await validate_request(request)

        assert result.valid is True
        assert result.body is None

    @pytest.mark.asyncio
    async def test_require_json_disabled(self) -> None:
        request = _request(b"plain", {"content-type": "text/plain"})

        result = await validate_request(request, require_json=False)

        assert result.valid is True


# === ValidatedBody dependency ===


class TestValidatedBody:
    """Tests for the dependency as seen by a client."""

    def test_valid_request(self, client: TestClient) -> None:
        response = client.post("/items", json={"name": "lamp"})

        assert response.status_code == 200
        assert response.json() == {"name": "lamp"}

    def test_body_of_exactly_max_size_is_accepted(self, client: TestClient) -> None:
        response = client.post(
            "/items",
            content=_body_of_size(MAX_SIZE),
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 200

    def test_body_one_byte_over_max_size_is_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/items",
            content=_body_of_size(MAX_SIZE + 1),
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 413
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == ErrorCode.PAYLOAD_TOO_LARGE.value
        assert body["error"].startswith("Request too large")

    def test_wrong_content_type(self, client: TestClient) -> None:
        response = client.post(
            "/items", content=b'{"name": "lamp"}', headers={"content-type": "text/plain"}
        )

        assert response.status_code == 415
        assert response.json()["error"] == "Content-Type must be application/json"

    def test_invalid_json(self, client: TestClient) -> None:
        response = client.post(
            "/items", content=b'{"name": ', headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == ErrorCode.INVALID_JSON.value

    def test_model_errors_are_listed(self, client: TestClient) -> None:
        response = client.post("/items", json={"title": "lamp"})

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == ErrorCode.INVALID_REQUEST.value
        assert body["details"]["errors"][0]["loc"] == ["name"]
        assert body["details"]["errors"][0]["type"] == "missing"

    def test_honeypot_field_rejected(self, client: TestClient) -> None:
        response = client.post("/forms", json={"name": "lamp", "_honeypot": "http://spam"})

        assert response.status_code == 400
        assert response.json()["error_code"] == ErrorCode.BOT_DETECTED.value
        assert response.json()["error"] == "Invalid request"

    def test_form_filled_too_fast_rejected(self, client: TestClient) -> None:
        loaded = int(time.time() * 1000) - 1000

        response = client.post("/forms", json={"name": "lamp", "_timestamp": loaded})

        assert response.status_code == 400
        assert response.json()["error_code"] == ErrorCode.BOT_DETECTED.value

    def test_human_paced_form_accepted(self, client: TestClient) -> None:
        loaded = int(time.time() * 1000) - 10_000

        response = client.post(
            "/forms", json={"name": "lamp", "_honeypot": "", "_timestamp": loaded}
        )

        assert response.status_code == 200


# === check_request_size ===


class TestCheckRequestSize:
    def test_small_request_passes(self, client: TestClient) -> None:
        assert client.post("/actions").status_code == 200

    def test_oversized_request_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/actions",
            content=b"x" * (1024 * 1024 + 1),
            headers={"content-type": "application/octet-stream"},
        )

        assert response.status_code == 413
