"""
Error taxonomy for the connection lifecycle.

Every failure surfaced to a caller is one of five kinds.  Components
raise the typed errors directly; ``classify()`` is the single place that
turns anything else into one of them, based on the stage that raised
it (never on the wording of a remote message).
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Iterable

import httpx

from app.models.account import ConnectionState
from app.services.broker_connectors.base import RemoteCallError

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stage a failure originated from."""
    VALIDATION = "validation"
    LOOKUP = "lookup"
    PROVISIONING = "provisioning"
    DEPLOYMENT = "deployment"
    READINESS = "readiness"
    INFORMATION = "information"
    UNDEPLOYMENT = "undeployment"


# Stages whose work is a call against the remote account service
REMOTE_STAGES = frozenset({
    Stage.LOOKUP,
    Stage.PROVISIONING,
    Stage.DEPLOYMENT,
    Stage.INFORMATION,
    Stage.UNDEPLOYMENT,
})


class BridgeError(Exception):
    """Base class for every classified failure."""

    kind = "UnexpectedError"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        stage: Stage | None = None,
        account_id: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.account_id = account_id
        self.cause = cause

    def with_context(self, stage: Stage | None, account_id: str | None) -> "BridgeError":
        """Fill in stage / account when the raiser did not know them."""
        if self.stage is None:
            self.stage = stage
        if self.account_id is None:
            self.account_id = account_id
        return self

    def scrub(self, secrets: Iterable[str | None]) -> "BridgeError":
        """Withhold the remote detail embedded in the message if it echoes a secret.

        Only the text of ``cause`` is inspected; wording authored by this
        service is never rewritten, and a matching detail is dropped whole.
        """
        if self.cause is None:
            return self
        detail = str(self.cause)
        if detail and any(secret and secret in detail for secret in secrets):
            self.message = self.message.replace(detail, "remote error details withheld")
        return self

    def __str__(self) -> str:
        return self.message


class ValidationError(BridgeError):
    """Caller input missing or malformed.  Never retried."""
    kind = "ValidationError"
    status_code = 400


class NotFoundError(BridgeError):
    """Account identity unknown to the remote service."""
    kind = "NotFoundError"
    status_code = 404


class ConnectionTimeoutError(BridgeError):
    """Account did not reach Connected within the bound."""
    kind = "ConnectionTimeoutError"

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float,
        elapsed_seconds: float | None = None,
        last_state: ConnectionState | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        self.last_state = last_state


class RemoteServiceError(BridgeError):
    """The remote dependency rejected or failed a call."""
    kind = "RemoteServiceError"


class UnexpectedError(BridgeError):
    """Anything not matching a known cause."""
    kind = "UnexpectedError"


def classify(
    exc: BaseException,
    stage: Stage,
    account_id: str | None = None,
) -> BridgeError:
    """Map any failure raised during ``stage`` to exactly one error kind."""
    if isinstance(exc, BridgeError):
        return exc.with_context(stage, account_id)

    if stage in REMOTE_STAGES and isinstance(exc, (RemoteCallError, httpx.HTTPError)):
        return RemoteServiceError(
            f"Remote {stage.value} call failed: {exc}",
            stage=stage, account_id=account_id, cause=exc,
        )

    if stage == Stage.READINESS and isinstance(exc, asyncio.TimeoutError):
        return ConnectionTimeoutError(
            "Timed out waiting for the account to connect",
            timeout_seconds=0.0,
            stage=stage, account_id=account_id, cause=exc,
        )

    if stage == Stage.VALIDATION and isinstance(exc, (ValueError, TypeError)):
        return ValidationError(str(exc), stage=stage, account_id=account_id, cause=exc)

    logger.error("Unexpected %s error (account=%s): %r", stage.value, account_id, exc)
    return UnexpectedError(
        "An unexpected error occurred",
        stage=stage, account_id=account_id, cause=exc,
    )
