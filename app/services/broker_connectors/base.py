"""
Base Remote Account Service – abstract interface of the remote
account-management platform.

The lifecycle core only talks to this contract; the MetaApi
implementation lives in ``metaapi.py`` and tests plug in an in-memory
fake.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from app.models.account import ConnectionState, HistoryRecord, TradingAccount


class RemoteCallError(Exception):
    """A call to the remote service failed or was rejected."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteNotFoundError(RemoteCallError):
    """The remote service does not know the referenced resource."""


class RpcConnection(ABC):
    """Ephemeral handle for information queries against a ready account.

    Obtained per logical operation and never cached; becomes invalid as
    soon as the account disconnects.
    """

    @abstractmethod
    async def get_account_information(self) -> dict[str, Any]:
        """Return the raw account-information record."""

    @abstractmethod
    async def get_history_orders_by_time_range(
        self,
        start_time: datetime,
        end_time: datetime,
        offset: int = 0,
        limit: int = 1000,
    ) -> list[HistoryRecord]:
        """Return history orders in ``[start_time, end_time]``."""


class RemoteAccountService(ABC):
    """Abstract remote account-management service.

    All methods are coroutines: every one of them is a network round
    trip and a suspension point for the calling flow.
    """

    @property
    @abstractmethod
    def platform(self) -> str:
        """Return the platform identifier (e.g. ``'metaapi'``)."""

    @abstractmethod
    async def list_accounts(self) -> list[TradingAccount]:
        """List every account provisioned for this token."""

    @abstractmethod
    async def get_account(self, account_id: str) -> TradingAccount:
        """Fetch one account.

        Raises:
            RemoteNotFoundError: the id is unknown to the remote.
        """

    @abstractmethod
    async def create_account(self, payload: dict[str, Any]) -> TradingAccount:
        """Provision a new account from ``payload`` and return it."""

    @abstractmethod
    async def deploy(self, account_id: str) -> None:
        """Start the remote infrastructure for an account."""

    @abstractmethod
    async def undeploy(self, account_id: str) -> None:
        """Stop the remote infrastructure for an account."""

    @abstractmethod
    async def get_connection_state(self, account_id: str) -> ConnectionState:
        """Observe the current connection state of an account."""

    @abstractmethod
    def get_rpc_connection(self, account: TradingAccount) -> RpcConnection:
        """Return a fresh RPC handle for an account."""

    async def close(self) -> None:
        """Release transport resources.  Default: nothing to release."""
