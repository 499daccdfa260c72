"""
Pytest configuration and shared fixtures for MT5 bridge tests.

``FakeRemoteService`` is an in-memory stand-in for the remote account
service: it keeps account records, counts every call and lets tests
inject latency, failures and connection delays.
"""
import asyncio
from collections import Counter
from datetime import datetime
from typing import Any

import pytest

from app.models.account import (
    ConnectionState,
    DeploymentState,
    TradingAccount,
)
from app.services.broker_connectors.base import (
    RemoteAccountService,
    RemoteCallError,
    RemoteNotFoundError,
    RpcConnection,
)
from app.services.connection_manager import ConnectionManager
from app.utils.keyed_lock import KeyedLock

DEFAULT_SNAPSHOT = {
    "balance": 10000.0,
    "equity": 10250.5,
    "currency": "USD",
    "leverage": 100,
    "margin": 120.0,
    "freeMargin": 10130.5,
    "marginLevel": 8542.08,
    "broker": "Acme Markets Ltd",
    "platform": "mt5",
}


class FakeRpcConnection(RpcConnection):
    def __init__(self, remote: "FakeRemoteService", account_id: str) -> None:
        self._remote = remote
        self._account_id = account_id

    async def get_account_information(self) -> dict[str, Any]:
        self._remote.calls["account_information"] += 1
        await self._remote.delay()
        if self._remote.fail_info:
            raise RemoteCallError("account information unavailable")
        return dict(self._remote.snapshot)

    async def get_history_orders_by_time_range(
        self,
        start_time: datetime,
        end_time: datetime,
        offset: int = 0,
        limit: int = 1000,
    ) -> list[dict]:
        self._remote.calls["history"] += 1
        self._remote.history_requests.append((start_time, end_time, offset, limit))
        await self._remote.delay()
        if self._remote.fail_info:
            raise RemoteCallError("history unavailable")
        if start_time > end_time:
            return []
        return list(self._remote.history.get(self._account_id, []))


class FakeRemoteService(RemoteAccountService):
    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.calls: Counter = Counter()
        self.history: dict[str, list[dict]] = {}
        self.history_requests: list[tuple] = []
        self.created_payloads: list[dict] = []
        self.snapshot = dict(DEFAULT_SNAPSHOT)
        self.latency = 0.0
        # Polls a deployed account needs before it reports CONNECTED
        self.connect_after_polls = 0
        self.never_connect = False
        self.hang_state_polls = False
        self.fail_list = False
        self.fail_create = False
        self.fail_deploy = False
        self.fail_undeploy = False
        self.fail_state = False
        self.fail_info = False
        self.closed = False

    @property
    def platform(self) -> str:
        return "fake"

    async def delay(self) -> None:
        await asyncio.sleep(self.latency)

    def add_account(
        self,
        server: str,
        login: str,
        *,
        deployed: bool = False,
        connected: bool = False,
    ) -> str:
        account_id = f"acc-{len(self.records) + 1}"
        self.records[account_id] = {
            "id": account_id,
            "server": server,
            "login": login,
            "name": f"MT5 Account {login}",
            "deployed": deployed,
            "connected": connected,
            "polls": 0,
        }
        return account_id

    def _account(self, record: dict[str, Any]) -> TradingAccount:
        deployed = record["deployed"]
        if record["connected"]:
            connection = ConnectionState.CONNECTED
        elif deployed:
            connection = ConnectionState.CONNECTING
        else:
            connection = ConnectionState.DISCONNECTED
        return TradingAccount(
            id=record["id"],
            server=record["server"],
            login=record["login"],
            name=record["name"],
            deployment_state=DeploymentState.DEPLOYED if deployed else DeploymentState.UNDEPLOYED,
            connection_state=connection,
            raw=dict(record),
        )

    async def list_accounts(self) -> list[TradingAccount]:
        self.calls["list"] += 1
        await self.delay()
        if self.fail_list:
            raise RemoteCallError("listing unavailable")
        return [self._account(r) for r in self.records.values()]

    async def get_account(self, account_id: str) -> TradingAccount:
        self.calls["get"] += 1
        await self.delay()
        if account_id not in self.records:
            raise RemoteNotFoundError("Account not found", status_code=404)
        return self._account(self.records[account_id])

    async def create_account(self, payload: dict[str, Any]) -> TradingAccount:
        self.calls["create"] += 1
        self.created_payloads.append(payload)
        await self.delay()
        if self.fail_create:
            raise RemoteCallError(f"invalid credentials for {payload['login']} / {payload['password']}")
        account_id = self.add_account(payload["server"], payload["login"])
        self.records[account_id]["name"] = payload["name"]
        return self._account(self.records[account_id])

    async def deploy(self, account_id: str) -> None:
        self.calls["deploy"] += 1
        await self.delay()
        if self.fail_deploy:
            raise RemoteCallError("deploy rejected")
        record = self.records[account_id]
        record["deployed"] = True
        record["polls"] = 0

    async def undeploy(self, account_id: str) -> None:
        self.calls["undeploy"] += 1
        await self.delay()
        if self.fail_undeploy:
            raise RemoteCallError("undeploy rejected")
        record = self.records[account_id]
        record["deployed"] = False
        record["connected"] = False

    async def get_connection_state(self, account_id: str) -> ConnectionState:
        self.calls["state"] += 1
        if self.hang_state_polls:
            await asyncio.sleep(3600)
        await self.delay()
        if self.fail_state:
            raise RemoteCallError("status endpoint unavailable")
        record = self.records[account_id]
        if record["deployed"] and not record["connected"]:
            record["polls"] += 1
            if not self.never_connect and record["polls"] > self.connect_after_polls:
                record["connected"] = True
        return self._account(record).connection_state

    def get_rpc_connection(self, account: TradingAccount) -> RpcConnection:
        self.calls["rpc"] += 1
        return FakeRpcConnection(self, account.id)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def remote():
    """In-memory remote account service."""
    return FakeRemoteService()


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def manager(remote):
    """ConnectionManager over the fake remote with fast polling."""
    return ConnectionManager(
        remote,
        poll_interval=0.01,
        cold_timeout=0.5,
        warm_timeout=0.3,
    )
