"""
Deployment Controller – drives an account through deploy / undeploy.
"""
from __future__ import annotations

import logging

from app.models.account import ConnectionState, DeploymentState, TradingAccount
from app.services.broker_connectors.base import RemoteAccountService, RemoteCallError
from app.services.errors import RemoteServiceError, Stage
from app.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class DeploymentController:
    """Idempotent deploy, unconditional undeploy.

    Deploys are recorded optimistically on the account object and in a
    per-controller set of account ids.  A flow holding a stale copy of
    an account this controller already deployed re-reads the remote
    state once instead of deploying again.

    The set holds one id per account this process has deployed and not
    since undeployed, so it never grows past the number of accounts.
    Undeploy and a failed deploy remove the id.
    """

    def __init__(self, service: RemoteAccountService, locks: KeyedLock) -> None:
        self._service = service
        self._locks = locks
        self._deployed: set[str] = set()

    async def ensure_deployed(self, account: TradingAccount) -> None:
        async with self._locks.hold(account.key):
            if account.deployment_state == DeploymentState.DEPLOYED:
                logger.info("Account %s already deployed", account.id)
                return

            if account.id in self._deployed and await self._refresh_shows_deployed(account):
                logger.info("Account %s deployed by an earlier request", account.id)
                return

            logger.info("Deploying account %s", account.id)
            account.deployment_state = DeploymentState.DEPLOYING
            try:
                await self._service.deploy(account.id)
            except RemoteCallError as e:
                account.deployment_state = DeploymentState.UNDEPLOYED
                self._deployed.discard(account.id)
                logger.error("Deploy of account %s failed: %s", account.id, e)
                raise RemoteServiceError(
                    f"Failed to deploy account: {e}",
                    stage=Stage.DEPLOYMENT, account_id=account.id, cause=e,
                ) from e

            account.deployment_state = DeploymentState.DEPLOYED
            self._deployed.add(account.id)

    async def _refresh_shows_deployed(self, account: TradingAccount) -> bool:
        try:
            current = await self._service.get_account(account.id)
        except RemoteCallError as e:
            logger.warning("Could not refresh account %s: %s", account.id, e)
            return False
        if current.deployment_state == DeploymentState.UNDEPLOYED:
            return False
        account.deployment_state = DeploymentState.DEPLOYED
        account.connection_state = current.connection_state
        return True

    async def undeploy(self, account: TradingAccount) -> None:
        """Undeploy regardless of the recorded state; rejections surface."""
        async with self._locks.hold(account.key):
            logger.info("Undeploying account %s", account.id)
            try:
                await self._service.undeploy(account.id)
            except RemoteCallError as e:
                logger.error("Undeploy of account %s failed: %s", account.id, e)
                raise RemoteServiceError(
                    f"Failed to disconnect: {e}",
                    stage=Stage.UNDEPLOYMENT, account_id=account.id, cause=e,
                ) from e

            self._deployed.discard(account.id)
            account.deployment_state = DeploymentState.UNDEPLOYED
            account.connection_state = ConnectionState.DISCONNECTED
