"""
Trading account domain models.

A TradingAccount is a MetaTrader account provisioned on the remote
account-management service.  Its identity is the opaque ``id`` the
remote assigns; (server, login) is the natural key used to find it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

# Opaque order/deal record, passed through unchanged
HistoryRecord = dict[str, Any]

DEFAULT_HISTORY_LOOKBACK_DAYS = 30
DEFAULT_HISTORY_LIMIT = 1000


class DeploymentState(str, Enum):
    """Whether the remote infrastructure for an account is allocated."""
    UNDEPLOYED = "undeployed"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"


class ConnectionState(str, Enum):
    """Liveness of the account's broker connection (owned remotely)."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def account_key(server: str, login: str) -> tuple[str, str]:
    """Normalized natural key: server is case-insensitive, login is exact."""
    return (server.lower(), login)


@dataclass
class TradingAccount:
    """A provisioned MetaTrader account."""
    id: str
    server: str
    login: str
    name: str | None = None
    deployment_state: DeploymentState = DeploymentState.UNDEPLOYED
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    region: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return account_key(self.server, self.login)

    def matches(self, server: str, login: str) -> bool:
        return self.login == login and self.server.lower() == server.lower()


_SNAPSHOT_FIELDS = (
    "balance",
    "equity",
    "currency",
    "leverage",
    "margin",
    "freeMargin",
    "marginLevel",
)


@dataclass
class AccountSnapshot:
    """Point-in-time read of an account's financial state.

    Fields the remote returns beyond the well-known ones are kept in
    ``extra`` and re-emitted by ``to_dict()``.
    """
    balance: float | None = None
    equity: float | None = None
    currency: str | None = None
    leverage: float | None = None
    margin: float | None = None
    free_margin: float | None = None
    margin_level: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccountSnapshot":
        extra = {k: v for k, v in payload.items() if k not in _SNAPSHOT_FIELDS}
        return cls(
            balance=payload.get("balance"),
            equity=payload.get("equity"),
            currency=payload.get("currency"),
            leverage=payload.get("leverage"),
            margin=payload.get("margin"),
            free_margin=payload.get("freeMargin"),
            margin_level=payload.get("marginLevel"),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Remote payload as returned; well-known fields the remote omitted stay absent."""
        known = {
            "balance": self.balance,
            "equity": self.equity,
            "currency": self.currency,
            "leverage": self.leverage,
            "margin": self.margin,
            "freeMargin": self.free_margin,
            "marginLevel": self.margin_level,
        }
        return {**self.extra, **{k: v for k, v in known.items() if v is not None}}


@dataclass
class HistoryQuery:
    """Trade-history window.  Unset fields are filled by ``resolve()``."""
    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int | None = None
    offset: int = 0

    def resolve(
        self,
        now: datetime | None = None,
        *,
        lookback_days: int = DEFAULT_HISTORY_LOOKBACK_DAYS,
        default_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> "HistoryQuery":
        """Return a copy with defaults applied.

        The range is not validated: an inverted window is passed through
        and the remote decides what it means.
        """
        now = now or datetime.now(timezone.utc)
        end_time = self.end_time if self.end_time is not None else now
        start_time = (
            self.start_time
            if self.start_time is not None
            else now - timedelta(days=lookback_days)
        )
        limit = self.limit if self.limit is not None else default_limit
        return HistoryQuery(
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=self.offset,
        )
