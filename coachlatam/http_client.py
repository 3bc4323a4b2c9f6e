"""Process-wide httpx.AsyncClient used for every outbound PayPal call.

Opened in the app lifespan and closed on shutdown; the CLI and tests that run
outside the lifespan get a lazily created one.
"""

import logging

import httpx

from coachlatam.config import get_settings
from coachlatam.constants import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_MAX_CONNECTIONS,
    HTTP_MAX_KEEPALIVE_CONNECTIONS,
    HTTP_TOTAL_TIMEOUT,
)

logger = logging.getLogger(__name__)

_client: httpx.AsyncClient | None = None


async def _log_provider_failure(response: httpx.Response) -> None:
    # 4xx bodies are turned into PayPalError by the caller; 5xx are worth a trace here
    if response.status_code >= 500:
        logger.warning(
            "%s %s answered %s", response.request.method, response.request.url.path, response.status_code
        )


def build_http_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(HTTP_TOTAL_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        limits=httpx.Limits(
            max_connections=HTTP_MAX_CONNECTIONS,
            max_keepalive_connections=HTTP_MAX_KEEPALIVE_CONNECTIONS,
        ),
        headers={"User-Agent": f"{settings.app_name}-billing"},
        event_hooks={"response": [_log_provider_failure]},
        transport=transport,
    )


def get_http_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = build_http_client()
    return _client


async def init_http_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        return
    _client = build_http_client()
    logger.debug("Shared HTTP client opened")


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.debug("Shared HTTP client closed")
