"""Debounced, latest-only async fetching.

Every submission bumps a generation counter. A fetch commits its result only
if no newer submission happened meanwhile; superseded fetches are abandoned by
ignoring their result, the underlying network call is never cancelled.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LatestOnlyFetcher(Generic[T]):
    """Runs fetches so only the most recent submission can commit."""

    def __init__(
        self,
        on_result: Callable[[T], None],
        on_error: Callable[[Exception], None],
        delay: float = 0.5,
        name: str = "fetch",
    ):
        """Initialize the fetcher.

        Args:
            on_result: Called with the result of the latest fetch
            on_error: Called with the exception of the latest fetch
            delay: Debounce delay in seconds before the fetch starts
            name: Label for log messages
        """
        self.on_result = on_result
        self.on_error = on_error
        self.delay = delay
        self.name = name
        self._generation = 0
        self._fetching_generation: Optional[int] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_fetching(self) -> bool:
        """True while the latest submission's fetch is in flight."""
        return self._fetching_generation is not None and self._fetching_generation == self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def submit(self, fetch: Callable[[], Awaitable[T]]) -> int:
        """Schedule ``fetch`` after the debounce delay, superseding earlier ones."""
        self._generation += 1
        generation = self._generation

        task = asyncio.create_task(self._run(generation, fetch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return generation

    def abandon(self) -> None:
        """Ignore any in-flight or scheduled fetch."""
        self._generation += 1
        self._fetching_generation = None

    async def wait(self) -> None:
        """Wait until every scheduled fetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _run(self, generation: int, fetch: Callable[[], Awaitable[T]]) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)

        if not self.is_current(generation):
            logger.debug(f"{self.name} #{generation} superseded before start")
            return

        self._fetching_generation = generation
        try:
            result = await fetch()
        except Exception as e:
            if not self.is_current(generation):
                logger.debug(f"{self.name} #{generation} failed after being superseded: {e}")
                return
            self._fetching_generation = None
            self.on_error(e)
            return

        if not self.is_current(generation):
            logger.debug(f"Discarding stale {self.name} #{generation}")
            return

        self._fetching_generation = None
        self.on_result(result)
