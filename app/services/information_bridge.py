"""
Information Bridge – account snapshot and trade history through a
ready account's RPC handle.

If the account is not Connected the bridge runs one remediation pass
(deploy if needed, then a warm readiness wait) before querying.  That
pass is the only retry in the lifecycle core and is never repeated
within a call.
"""
from __future__ import annotations

import logging

from app.models.account import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_HISTORY_LOOKBACK_DAYS,
    AccountSnapshot,
    ConnectionState,
    HistoryQuery,
    HistoryRecord,
    TradingAccount,
)
from app.services.broker_connectors.base import RemoteAccountService, RemoteCallError
from app.services.deployment_controller import DeploymentController
from app.services.errors import RemoteServiceError, Stage
from app.services.readiness_waiter import ReadinessWaiter

logger = logging.getLogger(__name__)


class InformationBridge:
    def __init__(
        self,
        service: RemoteAccountService,
        controller: DeploymentController,
        waiter: ReadinessWaiter,
        *,
        history_lookback_days: int = DEFAULT_HISTORY_LOOKBACK_DAYS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._service = service
        self._controller = controller
        self._waiter = waiter
        self._history_lookback_days = history_lookback_days
        self._history_limit = history_limit

    async def _ensure_ready(self, account: TradingAccount) -> None:
        if account.connection_state == ConnectionState.CONNECTED:
            return
        logger.info("Account %s not connected, attempting to connect...", account.id)
        await self._controller.ensure_deployed(account)
        await self._waiter.wait_connected(account, self._waiter.warm_timeout)

    async def get_snapshot(self, account: TradingAccount) -> AccountSnapshot:
        await self._ensure_ready(account)

        connection = self._service.get_rpc_connection(account)
        try:
            info = await connection.get_account_information()
        except RemoteCallError as e:
            logger.error("Account info retrieval error for %s: %s", account.id, e)
            raise RemoteServiceError(
                f"Failed to get account information: {e}",
                stage=Stage.INFORMATION, account_id=account.id, cause=e,
            ) from e
        return AccountSnapshot.from_payload(info or {})

    async def get_history(
        self,
        account: TradingAccount,
        query: HistoryQuery | None = None,
    ) -> list[HistoryRecord]:
        query = (query or HistoryQuery()).resolve(
            lookback_days=self._history_lookback_days,
            default_limit=self._history_limit,
        )
        await self._ensure_ready(account)

        connection = self._service.get_rpc_connection(account)
        try:
            history = await connection.get_history_orders_by_time_range(
                query.start_time, query.end_time, offset=query.offset, limit=query.limit,
            )
        except RemoteCallError as e:
            logger.error("History retrieval error for %s: %s", account.id, e)
            raise RemoteServiceError(
                f"Failed to get trading history: {e}",
                stage=Stage.INFORMATION, account_id=account.id, cause=e,
            ) from e
        return list(history or [])
