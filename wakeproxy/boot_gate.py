"""Debounced server boot requests, at most one per down-period."""

import logging
from enum import Enum

from .gateway_state import GatewayState


logger = logging.getLogger(__name__)


class BootResult(Enum):
    """Outcome of a boot request."""
    ALREADY_REQUESTED = "already_requested"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class BootGate:
    """Calls the wake API once per down-period and suppresses repeats."""

    def __init__(self, state: GatewayState, wake_client):
        self.state = state
        self.wake_client = wake_client

    async def request_boot(self, reason: str = "") -> BootResult:
        down_period = self.state.claim_boot_request()
        if down_period is None:
            logger.debug(f"Boot already requested for this down-period ({reason})")
            return BootResult.ALREADY_REQUESTED

        logger.info(f"Sending server boot request: {reason}")

        # The claim stays in place even if the call fails; the next attempt
        # waits for the following down-period.
        try:
            success = await self.wake_client.start_server()
        except Exception as e:
            logger.error(f"Server boot request raised: {e}")
            success = False

        if self.state.down_period != down_period or self.state.reachable:
            logger.info(f"Boot request for down-period {down_period} finished after the server recovered")

        if success:
            logger.info("Server boot request succeeded")
            return BootResult.DISPATCHED

        logger.error("Server boot request failed, not retrying until the server recovers")
        return BootResult.FAILED
