"""Shared backend health and boot-request state."""

import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class HealthSnapshot:
    """Consistent copy of the gateway state at one instant."""
    reachable: bool
    last_changed_at: float
    boot_requested: bool
    down_period: int


class GatewayState:
    """
    Owns the backend health bit and the per-down-period boot flag.

    Mutators never await, so on the event loop each one runs to completion
    before any reader or other mutator gets to run.
    """

    def __init__(self, reachable: bool = False, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._reachable = reachable
        self._last_changed_at = clock()
        self._boot_requested = False
        self._down_period = 0 if reachable else 1

    @property
    def reachable(self) -> bool:
        return self._reachable

    @property
    def down_period(self) -> int:
        return self._down_period

    def snapshot(self) -> HealthSnapshot:
        """Get a consistent copy of the current state."""
        return HealthSnapshot(
            reachable=self._reachable,
            last_changed_at=self._last_changed_at,
            boot_requested=self._boot_requested,
            down_period=self._down_period
        )

    def record_probe(self, reachable: bool) -> Optional[float]:
        """
        Record the result of a health probe.

        Returns:
            Seconds spent in the previous state if the health bit flipped,
            None if the probe agreed with the current state.
        """
        if reachable == self._reachable:
            return None

        now = self._clock()
        previous_duration = now - self._last_changed_at

        self._reachable = reachable
        self._last_changed_at = now

        if reachable:
            self._boot_requested = False
        else:
            self._down_period += 1

        return previous_duration

    def claim_boot_request(self) -> Optional[int]:
        """
        Claim the single boot request of the current down-period.

        Returns:
            The down-period number if the caller won the claim, None if a
            boot was already requested.
        """
        if self._boot_requested:
            return None

        self._boot_requested = True
        return self._down_period
