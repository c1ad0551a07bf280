"""Concurrency control for in-flight approvals and executions.

Only one approval and one execution may be in flight per (signer, token pair).
A second request for a held key is rejected immediately instead of queued.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Hashable, Optional

from swapbridge.errors import IllegalTransitionError

logger = logging.getLogger(__name__)


def operation_key(signer_address: str, token_in: str, token_out: str) -> tuple[str, str, str]:
    """Build the lock key for a signer and token pair."""
    return (signer_address.lower(), token_in.lower(), token_out.lower())


class OperationLock:
    """Non-blocking per-key lock registry.

    Example:
        async with locks.hold(key, operation="swap"):
            # broadcast and confirm
            ...
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def _get_lock(self, key: Hashable) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable, operation: str = "operation"):
        """Hold ``key`` for the duration of the block.

        Raises:
            IllegalTransitionError: If the key is already held
        """
        lock = self._get_lock(key)
        if lock.locked():
            logger.warning(f"Rejected {operation} for {key}: another operation is in flight")
            raise IllegalTransitionError(f"{operation} already in progress")

        await lock.acquire()
        logger.debug(f"Lock acquired for {key}: {operation}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Lock released for {key}: {operation}")

    def clear(self) -> None:
        """Forget all idle locks (useful for testing)."""
        self._locks = {k: v for k, v in self._locks.items() if v.locked()}


_default_lock: Optional[OperationLock] = None


def get_operation_lock() -> OperationLock:
    """Process-wide lock registry shared by all engines."""
    global _default_lock
    if _default_lock is None:
        _default_lock = OperationLock()
    return _default_lock
