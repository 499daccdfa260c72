"""
MetaApi Connector – RemoteAccountService implementation backed by the
MetaApi cloud REST API.

Translates MetaApi account records into ``TradingAccount`` and its
state strings into our deployment / connection enums.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from app.models.account import (
    ConnectionState,
    DeploymentState,
    HistoryRecord,
    TradingAccount,
)
from app.services.broker_connectors.base import RemoteAccountService, RpcConnection
from app.services.metaapi_client import MetaApiClient

logger = logging.getLogger(__name__)

# MetaApi account ``state`` → deployment state (anything else is undeployed)
_DEPLOYMENT_STATE_MAP: dict[str, DeploymentState] = {
    "DEPLOYED": DeploymentState.DEPLOYED,
    "DEPLOYING": DeploymentState.DEPLOYING,
}


def deployment_state_from(state: str | None) -> DeploymentState:
    return _DEPLOYMENT_STATE_MAP.get((state or "").upper(), DeploymentState.UNDEPLOYED)


def connection_state_from(connection_status: str | None, deployment: DeploymentState) -> ConnectionState:
    """MetaApi only reports CONNECTED / DISCONNECTED[_FROM_BROKER]; a
    deployed-but-not-connected account is treated as connecting."""
    if (connection_status or "").upper() == "CONNECTED":
        return ConnectionState.CONNECTED
    if deployment in (DeploymentState.DEPLOYING, DeploymentState.DEPLOYED):
        return ConnectionState.CONNECTING
    return ConnectionState.DISCONNECTED


def account_from_record(record: dict[str, Any]) -> TradingAccount:
    deployment = deployment_state_from(record.get("state"))
    return TradingAccount(
        id=str(record.get("_id") or record.get("id")),
        server=str(record.get("server", "")),
        login=str(record.get("login", "")),
        name=record.get("name"),
        deployment_state=deployment,
        connection_state=connection_state_from(record.get("connectionStatus"), deployment),
        region=record.get("region"),
        raw=record,
    )


class MetaApiRpcConnection(RpcConnection):
    """RPC handle bound to one account and its region."""

    def __init__(self, client: MetaApiClient, account_id: str, region: str | None) -> None:
        self._client = client
        self._account_id = account_id
        self._region = region

    async def get_account_information(self) -> dict[str, Any]:
        return await self._client.get_account_information(self._account_id, region=self._region)

    async def get_history_orders_by_time_range(
        self,
        start_time: datetime,
        end_time: datetime,
        offset: int = 0,
        limit: int = 1000,
    ) -> list[HistoryRecord]:
        return await self._client.get_history_orders_by_time_range(
            self._account_id,
            start_time,
            end_time,
            offset=offset,
            limit=limit,
            region=self._region,
        )


class MetaApiConnector(RemoteAccountService):
    """MetaApi cloud connector."""

    def __init__(self, client: MetaApiClient) -> None:
        self._client = client

    @property
    def platform(self) -> str:
        return "metaapi"

    async def list_accounts(self) -> list[TradingAccount]:
        records = await self._client.list_accounts()
        return [account_from_record(r) for r in records]

    async def get_account(self, account_id: str) -> TradingAccount:
        return account_from_record(await self._client.get_account(account_id))

    async def create_account(self, payload: dict[str, Any]) -> TradingAccount:
        created = await self._client.create_account(payload)
        # Creation only echoes id + state; the rest comes from the request
        record = {k: v for k, v in payload.items() if k != "password"}
        record.update(created or {})
        account = account_from_record(record)
        logger.info("MetaApi account %s created (state=%s)", account.id, record.get("state"))
        return account

    async def deploy(self, account_id: str) -> None:
        await self._client.deploy(account_id)

    async def undeploy(self, account_id: str) -> None:
        await self._client.undeploy(account_id)

    async def get_connection_state(self, account_id: str) -> ConnectionState:
        return (await self.get_account(account_id)).connection_state

    def get_rpc_connection(self, account: TradingAccount) -> RpcConnection:
        return MetaApiRpcConnection(self._client, account.id, account.region)

    async def close(self) -> None:
        await self._client.aclose()
