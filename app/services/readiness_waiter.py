"""
Readiness Waiter – bounded wait until an account reports Connected.

This is the only stage allowed to block for a while, and it never
blocks longer than the timeout it was given: each poll is itself
bounded by the time left, and the sleep between polls is clipped to the
deadline.  A zero timeout still makes one poll, bounded by
``ZERO_TIMEOUT_POLL_BOUND``.
"""
from __future__ import annotations

import asyncio
import logging
import math

from app.models.account import ConnectionState, TradingAccount
from app.services.broker_connectors.base import RemoteAccountService
from app.services.errors import ConnectionTimeoutError, Stage

logger = logging.getLogger(__name__)

COLD_CONNECT_TIMEOUT = 60.0
WARM_CONNECT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0
ZERO_TIMEOUT_POLL_BOUND = 1.0


def _clamp_timeout(timeout_seconds: float) -> float:
    try:
        timeout = float(timeout_seconds)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(timeout) or timeout < 0:
        return 0.0
    return timeout


class ReadinessWaiter:
    def __init__(
        self,
        service: RemoteAccountService,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cold_timeout: float = COLD_CONNECT_TIMEOUT,
        warm_timeout: float = WARM_CONNECT_TIMEOUT,
    ) -> None:
        self._service = service
        self._poll_interval = max(poll_interval, 0.0)
        self.cold_timeout = cold_timeout
        self.warm_timeout = warm_timeout

    async def wait_connected(self, account: TradingAccount, timeout_seconds: float) -> None:
        """Return once Connected is observed; raise ConnectionTimeoutError otherwise.

        Connected is not guaranteed to hold after return; the following
        RPC call is authoritative.
        """
        timeout = _clamp_timeout(timeout_seconds)
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout
        last_state = account.connection_state
        last_error: Exception | None = None
        polls = 0

        logger.info("Waiting up to %.1fs for account %s to connect", timeout, account.id)
        while True:
            polls += 1
            remaining = max(deadline - loop.time(), 0.0)
            if polls == 1 and remaining == 0:
                remaining = ZERO_TIMEOUT_POLL_BOUND
            try:
                state = await asyncio.wait_for(
                    self._service.get_connection_state(account.id), timeout=remaining
                )
            except asyncio.TimeoutError:
                break
            except Exception as e:
                last_error = e
                logger.warning("Connection state poll %d for %s failed: %s", polls, account.id, e)
            else:
                last_state = state
                account.connection_state = state
                if state == ConnectionState.CONNECTED:
                    logger.info(
                        "Account %s connected after %.1fs", account.id, loop.time() - started
                    )
                    return

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._poll_interval, remaining))

        elapsed = loop.time() - started
        detail = f"; last error: {last_error}" if last_error is not None else ""
        raise ConnectionTimeoutError(
            f"Account did not connect within {timeout:g}s "
            f"(last state: {last_state.value}){detail}",
            timeout_seconds=timeout,
            elapsed_seconds=elapsed,
            last_state=last_state,
            stage=Stage.READINESS,
            account_id=account.id,
        )
