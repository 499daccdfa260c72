"""
Account Registry – resolves a (server, login) pair to exactly one
provisioned account, creating it on first use.
"""
from __future__ import annotations

import logging
from typing import Any

from app.models.account import TradingAccount, account_key
from app.services.broker_connectors.base import (
    RemoteAccountService,
    RemoteCallError,
    RemoteNotFoundError,
)
from app.services.errors import (
    NotFoundError,
    RemoteServiceError,
    Stage,
    ValidationError,
)
from app.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


def _require(value: Any, field: str) -> str:
    """Return ``value`` as a non-empty string or raise ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required", stage=Stage.VALIDATION)
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", stage=Stage.VALIDATION)
    return value.strip()


class AccountRegistry:
    """Find-or-create for trading accounts.

    ``find_or_create`` is serialized per normalized (server, login) key,
    so two concurrent requests for the same account issue at most one
    creation call.
    """

    def __init__(
        self,
        service: RemoteAccountService,
        locks: KeyedLock,
        *,
        account_type: str = "cloud",
        platform: str = "mt5",
    ) -> None:
        self._service = service
        self._locks = locks
        self._account_type = account_type
        self._platform = platform

    async def find_or_create(self, server: Any, login: Any, password: Any) -> TradingAccount:
        server = _require(server, "server")
        login = _require(login, "login")
        # Passwords are taken verbatim; only emptiness is checked
        if not isinstance(password, str) or not password:
            raise ValidationError("password is required", stage=Stage.VALIDATION)

        async with self._locks.hold(account_key(server, login)):
            account = await self._find(server, login)
            if account is not None:
                logger.info("Found existing account with id: %s", account.id)
                return account
            return await self._create(server, login, password)

    async def _find(self, server: str, login: str) -> TradingAccount | None:
        try:
            accounts = await self._service.list_accounts()
        except Exception as e:
            # A failed listing must not block provisioning
            logger.error("Error finding existing account for %s@%s: %s", login, server, e)
            return None
        return next((a for a in accounts if a.matches(server, login)), None)

    async def _create(self, server: str, login: str, password: str) -> TradingAccount:
        logger.info("Creating new MT5 account connection for %s@%s", login, server)
        payload = {
            "name": f"MT5 Account {login}",
            "type": self._account_type,
            "login": login,
            "password": password,
            "server": server,
            "platform": self._platform,
        }
        try:
            account = await self._service.create_account(payload)
        except RemoteCallError as e:
            logger.error("Error creating account for %s@%s: %s", login, server, e)
            raise RemoteServiceError(
                f"Failed to create account: {e}",
                stage=Stage.PROVISIONING, cause=e,
            ).scrub([password]) from e
        logger.info("Created new account with id: %s", account.id)
        return account

    async def get(self, account_id: Any) -> TradingAccount:
        """Resolve an account id; unknown ids raise NotFoundError."""
        account_id = _require(account_id, "accountId")
        try:
            return await self._service.get_account(account_id)
        except RemoteNotFoundError as e:
            raise NotFoundError(
                "Account not found", stage=Stage.LOOKUP, account_id=account_id, cause=e,
            ) from e
        except RemoteCallError as e:
            logger.error("Remote getAccount error for %s: %s", account_id, e)
            raise RemoteServiceError(
                f"Failed to retrieve account: {e}",
                stage=Stage.LOOKUP, account_id=account_id, cause=e,
            ) from e
