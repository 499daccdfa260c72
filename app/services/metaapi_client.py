"""HTTP client for the MetaApi cloud REST API.

Two APIs are involved:

* the provisioning API (list / create / deploy / undeploy accounts)
* the regional client API (RPC-style account information and history)

One ``MetaApiClient`` is created per process and shared by every
request; it owns a single ``httpx.AsyncClient`` connection pool.

Usage::

    client = MetaApiClient(token)
    accounts = await client.list_accounts()
    info = await client.get_account_information(account_id, region="new-york")
    await client.aclose()
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from app.services.broker_connectors.base import RemoteCallError, RemoteNotFoundError

logger = logging.getLogger(__name__)

PROVISIONING_URL = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
CLIENT_URL_TEMPLATE = "https://mt-client-api-v1.{region}.agiliumtrade.ai"
DEFAULT_REGION = "new-york"
DEFAULT_TIMEOUT = 60.0


def format_timestamp(value: datetime) -> str:
    """MetaApi path timestamps: UTC ISO-8601 with milliseconds and ``Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class MetaApiClient:
    """Async HTTP client that talks to MetaApi."""

    def __init__(
        self,
        token: str,
        *,
        provisioning_url: str = PROVISIONING_URL,
        client_url_template: str = CLIENT_URL_TEMPLATE,
        default_region: str = DEFAULT_REGION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provisioning_url = provisioning_url.rstrip("/")
        self._client_url_template = client_url_template
        self._default_region = default_region
        self._http = httpx.AsyncClient(
            headers={"auth-token": token},
            timeout=timeout,
            transport=transport,
        )

    def _client_url(self, region: str | None) -> str:
        return self._client_url_template.format(region=region or self._default_region).rstrip("/")

    # ── Low-level helpers ─────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        timeout: float | None = None,
    ) -> Any:
        kwargs: dict[str, Any] = {"params": params, "json": json}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteCallError(f"{method} {url} failed: {e}") from e

        if resp.status_code == 404:
            raise RemoteNotFoundError(_error_message(resp), status_code=404)
        if resp.is_error:
            raise RemoteCallError(_error_message(resp), status_code=resp.status_code)

        if not resp.content:
            return None
        return resp.json()

    # ── Provisioning API ──────────────────────────────────────────────────

    async def list_accounts(self) -> list[dict]:
        """List provisioned MetaTrader accounts."""
        resp = await self._request("GET", f"{self._provisioning_url}/users/current/accounts")
        if isinstance(resp, dict):
            return resp.get("items", [])
        return resp or []

    async def get_account(self, account_id: str, timeout: float | None = None) -> dict:
        """Fetch one account record (state, connectionStatus, region …)."""
        return await self._request(
            "GET",
            f"{self._provisioning_url}/users/current/accounts/{account_id}",
            timeout=timeout,
        )

    async def create_account(self, payload: dict[str, Any]) -> dict:
        """Provision a new account; returns ``{"id": ..., "state": ...}``."""
        return await self._request(
            "POST", f"{self._provisioning_url}/users/current/accounts", json=payload
        )

    async def deploy(self, account_id: str) -> None:
        await self._request(
            "POST", f"{self._provisioning_url}/users/current/accounts/{account_id}/deploy"
        )

    async def undeploy(self, account_id: str) -> None:
        await self._request(
            "POST", f"{self._provisioning_url}/users/current/accounts/{account_id}/undeploy"
        )

    # ── Client (RPC) API ──────────────────────────────────────────────────

    async def get_account_information(self, account_id: str, *, region: str | None = None) -> dict:
        """Balance, equity, margin … of a connected account."""
        return await self._request(
            "GET",
            f"{self._client_url(region)}/users/current/accounts/{account_id}/account-information",
        )

    async def get_history_orders_by_time_range(
        self,
        account_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        offset: int = 0,
        limit: int = 1000,
        region: str | None = None,
    ) -> list[dict]:
        """History orders placed in ``[start_time, end_time]``."""
        url = (
            f"{self._client_url(region)}/users/current/accounts/{account_id}"
            f"/history-orders/time/{format_timestamp(start_time)}/{format_timestamp(end_time)}"
        )
        resp = await self._request("GET", url, params={"offset": offset, "limit": limit})
        if isinstance(resp, dict):
            return resp.get("historyOrders", [])
        return resp or []

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        await self._http.aclose()


def _error_message(resp: httpx.Response) -> str:
    """Best-effort extraction of MetaApi's ``{"error", "message"}`` body."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return f"{body.get('error', 'Error')}: {body['message']}"
    return f"HTTP {resp.status_code}"
