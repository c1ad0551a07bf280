"""Cross-chain completion tracking.

Status is pulled from the aggregator. Each transaction hash may be checked at
most once per cooldown window; a check inside the window is answered locally
with the remaining wait and never reaches the network.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from swapbridge.config import Settings, get_settings
from swapbridge.errors import NetworkUnavailableError, StatusTimeoutError
from swapbridge.routing.base import BridgeAggregator

logger = logging.getLogger(__name__)


class TransferPhase(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def map_phase(raw: str) -> TransferPhase:
    """Map an aggregator status to a transfer phase."""
    raw = (raw or "").upper()
    if raw == "DONE":
        return TransferPhase.COMPLETED
    if raw in ("FAILED", "INVALID"):
        return TransferPhase.FAILED
    # PENDING, NOT_FOUND and anything unknown
    return TransferPhase.PENDING


@dataclass
class StatusOutcome:
    """Result of a status check."""
    tx_hash: str
    phase: TransferPhase
    rate_limited: bool = False
    retry_after: int = 0
    destination_tx_hash: Optional[str] = None
    substatus: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.phase in (TransferPhase.COMPLETED, TransferPhase.FAILED)


class StatusTracker:
    """Rate-limited status polling per transaction hash."""

    def __init__(
        self,
        aggregator: BridgeAggregator,
        cooldown_seconds: float = 30.0,
        max_attempts: int = 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.aggregator = aggregator
        self.cooldown_seconds = cooldown_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._sleep = sleep
        self._last_check: dict[str, float] = {}
        self._last_phase: dict[str, TransferPhase] = {}

    def remaining_seconds(self, tx_hash: str) -> float:
        last = self._last_check.get(tx_hash)
        if last is None:
            return 0.0
        return max(0.0, last + self.cooldown_seconds - self._clock())

    def retry_after(self, tx_hash: str) -> int:
        """Whole seconds until ``tx_hash`` may be checked again."""
        return math.ceil(self.remaining_seconds(tx_hash))

    def can_check(self, tx_hash: str) -> bool:
        return self.remaining_seconds(tx_hash) <= 0

    def clear(self, tx_hash: str) -> None:
        self._last_check.pop(tx_hash, None)
        self._last_phase.pop(tx_hash, None)

    async def check(
        self,
        tx_hash: str,
        from_chain_id: Optional[int] = None,
        to_chain_id: Optional[int] = None,
    ) -> StatusOutcome:
        """Check status once, respecting the cooldown.

        Raises:
            NetworkUnavailableError: Aggregator unreachable
        """
        if not self.can_check(tx_hash):
            retry_after = self.retry_after(tx_hash)
            logger.debug(f"Status check for {tx_hash} rate limited ({retry_after}s left)")
            return StatusOutcome(
                tx_hash=tx_hash,
                phase=self._last_phase.get(tx_hash, TransferPhase.PENDING),
                rate_limited=True,
                retry_after=retry_after,
            )

        status = await self.aggregator.get_status(tx_hash, from_chain_id, to_chain_id)
        self._last_check[tx_hash] = self._clock()

        outcome = StatusOutcome(
            tx_hash=tx_hash,
            phase=map_phase(status.phase),
            destination_tx_hash=status.destination_tx_hash,
            substatus=status.substatus,
            message=status.message,
        )

        if outcome.is_final:
            self.clear(tx_hash)
            logger.info(f"Bridge {tx_hash} {outcome.phase.value}")
        else:
            self._last_phase[tx_hash] = outcome.phase
        return outcome

    async def track(
        self,
        tx_hash: str,
        from_chain_id: Optional[int] = None,
        to_chain_id: Optional[int] = None,
        on_update: Optional[Callable[[StatusOutcome], None]] = None,
    ) -> StatusOutcome:
        """Poll until the transfer completes or fails.

        Network errors count as an attempt and are retried after one
        cooldown.

        Raises:
            StatusTimeoutError: ``max_attempts`` checks without a final phase
        """
        attempts = 0
        while attempts < self.max_attempts:
            wait = self.remaining_seconds(tx_hash)
            if wait > 0:
                await self._sleep(wait)

            try:
                outcome = await self.check(tx_hash, from_chain_id, to_chain_id)
            except NetworkUnavailableError as e:
                attempts += 1
                logger.warning(f"Status check {attempts}/{self.max_attempts} for {tx_hash} failed: {e}")
                await self._sleep(self.cooldown_seconds)
                continue

            if outcome.rate_limited:
                continue

            attempts += 1
            if on_update is not None:
                on_update(outcome)
            if outcome.is_final:
                return outcome

        self.clear(tx_hash)
        raise StatusTimeoutError(tx_hash, attempts)


def create_status_tracker(
    aggregator: BridgeAggregator,
    settings: Optional[Settings] = None,
) -> StatusTracker:
    """Create a status tracker with the cooldown and attempt limit from settings."""
    settings = settings or get_settings()
    return StatusTracker(
        aggregator,
        cooldown_seconds=settings.status_cooldown_seconds,
        max_attempts=settings.status_max_attempts,
    )
