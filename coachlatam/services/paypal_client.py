"""PayPal REST API client — OAuth2 client credentials, subscriptions, webhook verification."""

import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from coachlatam.config import Settings, get_settings
from coachlatam.constants import (
    PAYPAL_ACTIVATE_PATH,
    PAYPAL_CANCEL_PATH,
    PAYPAL_CERT_URL_PREFIXES,
    PAYPAL_SUBSCRIPTION_PATH,
    PAYPAL_TOKEN_PATH,
    PAYPAL_VERIFY_WEBHOOK_PATH,
    PAYPAL_WEBHOOK_HEADERS,
)
from coachlatam.http_client import get_http_client

logger = logging.getLogger(__name__)


class PayPalError(Exception):
    """PayPal answered with a non-success status or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PayPalClient:
    """Thin async wrapper over the PayPal REST endpoints used for billing.

    One instance per request: the access token is cached on the instance and
    never shared across requests.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self._http = http
        self._settings = settings
        self._access_token: str | None = None

    def _url(self, path: str) -> str:
        return f"{self._settings.paypal_api_base.rstrip('/')}{path}"

    async def get_access_token(self) -> str:
        """Exchange client id/secret for a bearer token (client-credentials grant)."""
        if self._access_token:
            return self._access_token

        try:
            resp = await self._http.post(
                self._url(PAYPAL_TOKEN_PATH),
                data={"grant_type": "client_credentials"},
                auth=(self._settings.paypal_client_id, self._settings.paypal_client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise PayPalError(f"PayPal token request failed: {e}") from e

        if resp.is_error:
            raise PayPalError("PayPal token request rejected", resp.status_code, resp.text)

        token = resp.json().get("access_token")
        if not token:
            raise PayPalError("PayPal token response had no access_token", resp.status_code, resp.text)
        self._access_token = token
        return token

    async def _request(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        token = await self.get_access_token()
        try:
            resp = await self._http.request(
                method,
                self._url(path),
                json=json,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise PayPalError(f"PayPal request {method} {path} failed: {e}") from e

        if resp.is_error:
            raise PayPalError(f"PayPal API error: {resp.text}", resp.status_code, resp.text)
        return resp

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch subscription details (status, plan_id, subscriber...)."""
        resp = await self._request("GET", PAYPAL_SUBSCRIPTION_PATH.format(subscription_id=subscription_id))
        return resp.json()

    async def cancel_subscription(self, subscription_id: str, reason: str) -> None:
        """Cancel a subscription. PayPal answers 204 No Content on success."""
        await self._request(
            "POST",
            PAYPAL_CANCEL_PATH.format(subscription_id=subscription_id),
            json={"reason": reason or "Customer request"},
        )
        logger.info("PayPal subscription %s cancelled", subscription_id)

    async def activate_subscription(self, subscription_id: str, reason: str) -> None:
        """Reactivate a suspended or cancelled subscription."""
        await self._request(
            "POST",
            PAYPAL_ACTIVATE_PATH.format(subscription_id=subscription_id),
            json={"reason": reason},
        )
        logger.info("PayPal subscription %s reactivated", subscription_id)

    async def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        """Ask PayPal whether a webhook delivery is authentic.

        Returns False (never raises) for missing headers, foreign certificate
        hosts, provider errors, or a verification status other than SUCCESS.
        """
        values = {name: headers.get(name) for name in PAYPAL_WEBHOOK_HEADERS}
        if not all(values.values()):
            logger.error("Missing PayPal webhook headers")
            return False

        cert_url = values["paypal-cert-url"]
        if not cert_url.startswith(PAYPAL_CERT_URL_PREFIXES):
            logger.error("Invalid PayPal certificate URL: %s", cert_url)
            return False

        try:
            webhook_event = json.loads(body)
        except ValueError:
            logger.error("PayPal webhook body is not valid JSON")
            return False

        payload = {
            "transmission_id": values["paypal-transmission-id"],
            "transmission_time": values["paypal-transmission-time"],
            "cert_url": cert_url,
            "auth_algo": values["paypal-auth-algo"],
            "transmission_sig": values["paypal-transmission-sig"],
            "webhook_id": self._settings.paypal_webhook_id,
            "webhook_event": webhook_event,
        }
        try:
            resp = await self._request("POST", PAYPAL_VERIFY_WEBHOOK_PATH, json=payload)
        except PayPalError as e:
            logger.error("Error verifying PayPal webhook: %s", e)
            return False

        status = resp.json().get("verification_status")
        if status != "SUCCESS":
            logger.error("PayPal webhook signature verification failed: %s", status)
            return False
        return True


def get_paypal_client() -> PayPalClient:
    """FastAPI dependency: a fresh client per request over the shared connection pool."""
    return PayPalClient(get_http_client(), get_settings())
