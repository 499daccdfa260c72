"""
Connection Manager – runs the MT5 account lifecycle for each request.

Every operation is an explicit pipeline of stages:

    registry  →  deployment  →  readiness  →  information

Each stage either yields a value or a classified ``BridgeError``; the
first failure ends the pipeline and becomes the ``OperationResult``
returned to the route.  Nothing is raised past this layer.

The manager is constructed once per process (see ``app.main``) around a
single remote service client and injected into the routes; there is no
module-level instance.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Generic, Iterable, TypeVar

from app.core.config import Settings
from app.models.account import HistoryQuery
from app.services.account_registry import AccountRegistry
from app.services.broker_connectors.base import RemoteAccountService
from app.services.broker_connectors.metaapi import MetaApiConnector
from app.services.deployment_controller import DeploymentController
from app.services.errors import BridgeError, Stage, classify
from app.services.information_bridge import InformationBridge
from app.services.metaapi_client import MetaApiClient
from app.services.readiness_waiter import ReadinessWaiter
from app.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StageOutcome(Generic[T]):
    """Value or classified error of one pipeline stage."""
    stage: Stage
    value: T | None = None
    error: BridgeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class OperationResult:
    """Result of a connect / account-info / history / disconnect operation."""
    success: bool
    message: str | None = None
    error: BridgeError | None = None
    account_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, outcome: StageOutcome) -> "OperationResult":
        return cls(
            success=False,
            message=outcome.error.message,
            error=outcome.error,
            account_id=outcome.error.account_id,
        )


class ConnectionManager:
    """Owns the lifecycle components and the remote service they share.

    Components:
    1. ``AccountRegistry``       – find-or-create / resolve by id
    2. ``DeploymentController``  – idempotent deploy, undeploy
    3. ``ReadinessWaiter``       – bounded wait for Connected
    4. ``InformationBridge``     – snapshot / history with one remediation
    """

    def __init__(
        self,
        service: RemoteAccountService,
        *,
        account_type: str = "cloud",
        platform: str = "mt5",
        poll_interval: float = 1.0,
        cold_timeout: float = 60.0,
        warm_timeout: float = 30.0,
        history_lookback_days: int = 30,
        history_limit: int = 1000,
    ) -> None:
        self.service = service
        self.locks = KeyedLock()
        self.registry = AccountRegistry(
            service, self.locks, account_type=account_type, platform=platform
        )
        self.controller = DeploymentController(service, self.locks)
        self.waiter = ReadinessWaiter(
            service,
            poll_interval=poll_interval,
            cold_timeout=cold_timeout,
            warm_timeout=warm_timeout,
        )
        self.bridge = InformationBridge(
            service,
            self.controller,
            self.waiter,
            history_lookback_days=history_lookback_days,
            history_limit=history_limit,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConnectionManager":
        """Build the MetaApi-backed manager.  Requires ``META_API_TOKEN``."""
        if not settings.META_API_TOKEN:
            raise RuntimeError("META_API_TOKEN environment variable is not set")
        client = MetaApiClient(
            settings.META_API_TOKEN,
            provisioning_url=settings.METAAPI_PROVISIONING_URL,
            client_url_template=settings.METAAPI_CLIENT_URL_TEMPLATE,
            default_region=settings.METAAPI_DEFAULT_REGION,
            timeout=settings.METAAPI_REQUEST_TIMEOUT_SECONDS,
        )
        return cls(
            MetaApiConnector(client),
            account_type=settings.ACCOUNT_TYPE,
            platform=settings.ACCOUNT_PLATFORM,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            cold_timeout=settings.COLD_CONNECT_TIMEOUT_SECONDS,
            warm_timeout=settings.WARM_CONNECT_TIMEOUT_SECONDS,
            history_lookback_days=settings.HISTORY_LOOKBACK_DAYS,
            history_limit=settings.HISTORY_LIMIT,
        )

    # ── Stage runner ─────────────────────────────────────────────────

    async def _run(
        self,
        stage: Stage,
        call: Awaitable[T],
        *,
        account_id: str | None = None,
        secrets: Iterable[str] = (),
    ) -> StageOutcome[T]:
        try:
            value = await call
        except Exception as e:
            error = classify(e, stage, account_id).scrub(secrets)
            logger.warning(
                "%s stage failed with %s (account=%s): %s",
                error.stage.value,
                error.kind, error.account_id, error.message,
            )
            return StageOutcome(stage=stage, error=error)
        return StageOutcome(stage=stage, value=value)

    # ── Connect ──────────────────────────────────────────────────────

    async def connect(self, server: Any, login: Any, password: Any) -> OperationResult:
        """Provision (or reuse), deploy, wait for, and read an account.

        Steps:
        1. Find the account for (server, login) or create it
        2. Deploy it unless already deployed
        3. Wait up to the cold timeout for Connected
        4. Read the account snapshot
        """
        logger.info("Connecting to MT5 account: %s@%s", login, server)
        secrets = [password] if isinstance(password, str) and password else []

        found = await self._run(
            Stage.PROVISIONING,
            self.registry.find_or_create(server, login, password),
            secrets=secrets,
        )
        if not found.ok:
            return OperationResult.failed(found)
        account = found.value

        deployed = await self._run(
            Stage.DEPLOYMENT,
            self.controller.ensure_deployed(account),
            account_id=account.id, secrets=secrets,
        )
        if not deployed.ok:
            return OperationResult.failed(deployed)

        ready = await self._run(
            Stage.READINESS,
            self.waiter.wait_connected(account, self.waiter.cold_timeout),
            account_id=account.id, secrets=secrets,
        )
        if not ready.ok:
            return OperationResult.failed(ready)

        snapshot = await self._run(
            Stage.INFORMATION,
            self.bridge.get_snapshot(account),
            account_id=account.id, secrets=secrets,
        )
        if not snapshot.ok:
            return OperationResult.failed(snapshot)

        return OperationResult(
            success=True,
            message="Connected to MT5 account successfully",
            account_id=account.id,
            data=snapshot.value.to_dict(),
        )

    # ── Account information ──────────────────────────────────────────

    async def account_info(self, account_id: Any) -> OperationResult:
        logger.info("Getting account info for: %s", account_id)
        found = await self._run(Stage.LOOKUP, self.registry.get(account_id))
        if not found.ok:
            return OperationResult.failed(found)
        account = found.value

        snapshot = await self._run(
            Stage.INFORMATION, self.bridge.get_snapshot(account), account_id=account.id
        )
        if not snapshot.ok:
            return OperationResult.failed(snapshot)

        return OperationResult(
            success=True,
            message="Account information retrieved successfully",
            account_id=account.id,
            data=snapshot.value.to_dict(),
        )

    # ── Trade history ────────────────────────────────────────────────

    async def history(self, account_id: Any, query: HistoryQuery | None = None) -> OperationResult:
        logger.info("Getting trading history for: %s", account_id)
        found = await self._run(Stage.LOOKUP, self.registry.get(account_id))
        if not found.ok:
            return OperationResult.failed(found)
        account = found.value

        history = await self._run(
            Stage.INFORMATION, self.bridge.get_history(account, query), account_id=account.id
        )
        if not history.ok:
            return OperationResult.failed(history)

        return OperationResult(
            success=True,
            message="Trading history retrieved successfully",
            account_id=account.id,
            data={"history": history.value},
        )

    # ── Disconnect ───────────────────────────────────────────────────

    async def disconnect(self, account_id: Any) -> OperationResult:
        """Undeploy the account.  The account itself is never deleted."""
        logger.info("Disconnecting account: %s", account_id)
        found = await self._run(Stage.LOOKUP, self.registry.get(account_id))
        if not found.ok:
            return OperationResult.failed(found)
        account = found.value

        undeployed = await self._run(
            Stage.UNDEPLOYMENT, self.controller.undeploy(account), account_id=account.id
        )
        if not undeployed.ok:
            return OperationResult.failed(undeployed)

        return OperationResult(
            success=True,
            message="Disconnected from MT5 account successfully",
            account_id=account.id,
        )

    # ── Health check ─────────────────────────────────────────────────

    async def check_remote(self) -> dict[str, Any]:
        """Check connectivity to the remote account service."""
        try:
            accounts = await self.service.list_accounts()
        except Exception as e:
            logger.error("%s health check failed: %s", self.service.platform, e)
            return {"status": "error", "message": str(e)}
        return {"status": "connected", "accountCount": len(accounts)}

    # ── Lifecycle ────────────────────────────────────────────────────

    async def close(self) -> None:
        """Release the remote client (called from lifespan)."""
        await self.service.close()
        logger.info("Connection manager stopped")
