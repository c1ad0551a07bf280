"""Periodic background tasks with an explicit owner.

Tasks publish their own fields (gas price, balance); they never touch the
execution flags of an engine.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from swapbridge.config import get_settings
from swapbridge.signing.base import SignerBackend

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a coroutine function every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval = interval
        self.func = func
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        logger.info(f"Starting {self.name} (interval: {self.interval}s)")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Stopped {self.name}")

    async def _run(self) -> None:
        while True:
            try:
                await self.func()
            except Exception as e:
                logger.warning(f"{self.name} error: {e}")

            await asyncio.sleep(self.interval)


class GasPriceMonitor:
    """Publishes the signer's gas price (gwei) on an interval."""

    def __init__(self, signer: SignerBackend, interval: Optional[float] = None):
        if interval is None:
            interval = get_settings().gas_price_poll_seconds
        self.signer = signer
        self.gas_price: Optional[Decimal] = None
        self._task = PeriodicTask("gas price monitor", interval, self.refresh)

    async def refresh(self) -> Decimal:
        # get_gas_price never raises; it falls back to the last known value
        self.gas_price = await self.signer.get_gas_price()
        return self.gas_price

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()


class BalanceMonitor:
    """Refreshes an engine's published balance on an interval."""

    def __init__(self, engine, interval: float = 15.0):
        self.engine = engine
        self._task = PeriodicTask("balance monitor", interval, self.refresh)

    async def refresh(self) -> Optional[int]:
        return await self.engine.refresh_balance()

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
