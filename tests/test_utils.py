"""Tests for shared helpers and the error body format."""

import logging
from datetime import datetime, UTC

import httpx
import pytest

from coachlatam.config import get_settings
from coachlatam.db.session import async_url
from coachlatam.errors import CriticalInconsistency, ExternalError, NotFound, ValidationError
from coachlatam.http_client import build_http_client, close_http_client, get_http_client, init_http_client
from coachlatam.services.coupon_service import normalize_code
from coachlatam.utils import add_months


def test_add_months_clamps_day():
    assert add_months(datetime(2026, 1, 31, tzinfo=UTC), 1) == datetime(2026, 2, 28, tzinfo=UTC)
    assert add_months(datetime(2026, 12, 15, tzinfo=UTC), 1) == datetime(2027, 1, 15, tzinfo=UTC)


def test_error_bodies():
    assert NotFound("No active subscription found").to_dict() == {"error": "No active subscription found"}
    assert ExternalError("Failed", details="boom").to_dict() == {"error": "Failed", "details": "boom"}
    assert CriticalInconsistency("Failed to cancel subscription", details="x").to_dict() == {
        "error": "Failed to cancel subscription",
        "details": "x",
        "critical": True,
    }
    assert CriticalInconsistency("x").status_code == 500


def test_normalize_code():
    assert normalize_code("  save20 ") == "SAVE20"
    with pytest.raises(ValidationError):
        normalize_code(None)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("sqlite:///./data/coachlatam.db", "sqlite+aiosqlite:///./data/coachlatam.db"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ("sqlite+aiosqlite:///./data/coachlatam.db", "sqlite+aiosqlite:///./data/coachlatam.db"),
        ("postgresql+asyncpg://u:p@db:5432/coachlatam", "postgresql+asyncpg://u:p@db:5432/coachlatam"),
    ],
)
def test_async_url(url, expected):
    assert async_url(url) == expected


class TestSharedHttpClient:
    @pytest.mark.asyncio
    async def test_identifies_the_app(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["user_agent"] = request.headers["user-agent"]
            return httpx.Response(200, json={})

        client = build_http_client(httpx.MockTransport(handler))
        try:
            await client.get("https://api-m.sandbox.paypal.com/v1/billing/subscriptions/I-1")
        finally:
            await client.aclose()

        assert seen["user_agent"] == f"{get_settings().app_name}-billing"

    @pytest.mark.asyncio
    async def test_logs_provider_server_errors(self, caplog):
        client = build_http_client(httpx.MockTransport(lambda request: httpx.Response(503)))
        try:
            with caplog.at_level(logging.WARNING, logger="coachlatam.http_client"):
                resp = await client.post("https://api-m.sandbox.paypal.com/v1/oauth2/token")
        finally:
            await client.aclose()

        assert resp.status_code == 503
        assert "/v1/oauth2/token answered 503" in caplog.text

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        await init_http_client()
        shared = get_http_client()
        await init_http_client()
        assert get_http_client() is shared

        await close_http_client()
        assert shared.is_closed
        reopened = get_http_client()
        assert reopened is not shared
        await close_http_client()
