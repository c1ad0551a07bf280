"""Shared execution engine behaviour for the swap and bridge paths.

An engine owns the flags that feed ``derive_state``: the in-flight approval
and execution flags, the sticky success flag and the last error. Quote,
allowance and balance are published fields refreshed by their own tasks.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from swapbridge.chain.client import TxReceipt
from swapbridge.config import Settings, get_settings
from swapbridge.errors import (
    ExchangeError,
    IllegalTransitionError,
    InsufficientBalanceError,
    NetworkUnavailableError,
    as_exchange_error,
    retry_delay,
)
from swapbridge.engine.state import EngineInputs, EngineState, derive_state
from swapbridge.history.recorder import HistoryRecorder
from swapbridge.routing.debounce import LatestOnlyFetcher
from swapbridge.signing.base import SignerBackend, TxHandle
from swapbridge.tokens import TokenInfo, format_token_amount
from swapbridge.utils.locks import OperationLock, get_operation_lock, operation_key

logger = logging.getLogger(__name__)


class ExecutionEngine(ABC):
    """Base class for the swap and bridge state machines."""

    def __init__(
        self,
        signer: Optional[SignerBackend],
        recorder: HistoryRecorder,
        token_in: TokenInfo,
        token_out: TokenInfo,
        slippage: float = 0.5,
        locks: Optional[OperationLock] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.signer = signer
        self.recorder = recorder
        self.token_in = token_in
        self.token_out = token_out
        self.slippage = slippage
        self.locks = locks or get_operation_lock()
        self._clock = clock
        self._sleep = sleep

        # Published by refresh tasks
        self.amount = 0
        self.allowance: Optional[int] = None
        self.balance: Optional[int] = None

        # Owned by the state machine
        self.approving = False
        self.executing = False
        self.confirming = False
        self.success = False
        self.error: Optional[ExchangeError] = None
        self.last_tx_hash: Optional[str] = None

        self._token_generation = 0
        self._quotes: LatestOnlyFetcher = LatestOnlyFetcher(
            self._on_quote,
            self._on_quote_error,
            delay=self.settings.quote_debounce_ms / 1000,
            name=f"{self.name} quote",
        )

    # ======================
    # Subclass hooks
    # ======================

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def current_quote(self) -> Any:
        """Quote or route the engine would execute now."""
        pass

    @property
    def has_quote(self) -> bool:
        return self.current_quote is not None

    @abstractmethod
    def _set_quote(self, quote: Any) -> None:
        pass

    @abstractmethod
    def _quote_fetcher(self) -> Callable[[], Awaitable[Any]]:
        """Fetch bound to the current inputs."""
        pass

    def _reset_allowance(self) -> None:
        self.allowance = None

    # ======================
    # State
    # ======================

    @property
    def chain_id(self) -> int:
        return self.token_in.chain_id

    @property
    def wallet_ready(self) -> bool:
        return self.signer is not None and self.signer.is_ready(self.chain_id)

    @property
    def fetching_quote(self) -> bool:
        return self._quotes.is_fetching

    def inputs(self) -> EngineInputs:
        return EngineInputs(
            wallet_ready=self.wallet_ready,
            amount=self.amount,
            allowance=self.allowance,
            has_quote=self.has_quote,
            fetching_quote=self.fetching_quote,
            approving=self.approving,
            executing=self.executing,
            confirming=self.confirming,
            error=self.error,
            success=self.success,
        )

    @property
    def state(self) -> EngineState:
        return derive_state(self.inputs())

    # ======================
    # Inputs
    # ======================

    def set_amount(self, amount: int) -> None:
        """Set the input amount in the smallest unit (negative treated as 0)."""
        amount = max(int(amount), 0)
        if amount == self.amount:
            return
        self.amount = amount
        self.success = False
        self._inputs_changed()

    def set_slippage(self, slippage: float) -> None:
        if slippage == self.slippage:
            return
        self.slippage = slippage
        self._inputs_changed()

    def set_tokens(self, token_in: TokenInfo, token_out: TokenInfo) -> None:
        if token_in == self.token_in and token_out == self.token_out:
            return
        self.token_in = token_in
        self.token_out = token_out
        self._token_generation += 1
        self.balance = None
        self._reset_allowance()
        self._inputs_changed()

    def set_signer(self, signer: Optional[SignerBackend]) -> None:
        self.signer = signer
        self._token_generation += 1
        self.balance = None
        self._reset_allowance()
        self._inputs_changed()

    def reset(self) -> None:
        """Clear the amount, the quote and the sticky success and error."""
        self._quotes.abandon()
        self._set_quote(None)
        self.amount = 0
        self.success = False
        self.error = None

    def _inputs_changed(self) -> None:
        # A quote for the old inputs must never be shown
        self._set_quote(None)
        if self.amount > 0 and self.signer is not None:
            self._quotes.submit(self._quote_fetcher())
        else:
            self._quotes.abandon()

    def _on_quote(self, quote: Any) -> None:
        self._set_quote(quote)
        if quote is not None and self.error is not None:
            logger.debug(f"{self.name}: error superseded by a new quote")
            self.error = None

    def _on_quote_error(self, error: Exception) -> None:
        self._set_quote(None)
        self.error = as_exchange_error(error)
        logger.warning(f"{self.name} quote failed: {self.error.message}")

    async def wait_for_quote(self) -> None:
        """Wait for scheduled quote fetches to settle."""
        await self._quotes.wait()

    # ======================
    # Refresh
    # ======================

    async def refresh_balance(self) -> Optional[int]:
        """Re-read the input token balance; stale reads are discarded."""
        if self.signer is None:
            return None
        generation = self._token_generation
        balance = await self.signer.get_balance(self.token_in)
        if generation != self._token_generation:
            logger.debug(f"{self.name}: discarding stale balance read")
            return self.balance
        self.balance = balance
        return balance

    # ======================
    # Execution helpers
    # ======================

    def _operation_key(self, operation: str) -> tuple:
        return (operation,) + operation_key(
            self.signer.address or "",
            self.token_in.contract_address,
            self.token_out.contract_address,
        )

    def _require_state(self, allowed: EngineState, operation: str) -> None:
        state = self.state
        if state != allowed:
            raise IllegalTransitionError(f"{operation}() not allowed in state {state.value}")

    def _check_balance(self, amount: int) -> bool:
        """Pre-flight balance check against the published balance."""
        if self.balance is not None and self.balance < amount:
            self.error = InsufficientBalanceError(self.balance, amount)
            logger.info(f"{self.name}: {self.error.message}")
            return False
        return True

    def _inputs_moved(self, amount: int, quote: Any) -> bool:
        """Check the amount or quote changed since ``execute()`` was called."""
        if self.amount != amount or self.current_quote is not quote:
            logger.info(f"{self.name}: inputs changed before signing, not executing")
            return True
        return False

    async def _confirm(self, handle: TxHandle) -> TxReceipt:
        """Wait for the receipt of ``handle``, retrying unreachable RPC.

        Raises:
            ReceiptTimeoutError: No receipt before the timeout
            NetworkUnavailableError: Still unreachable after the retries
        """
        attempt = 0
        while True:
            try:
                return await self.signer.wait_for_receipt(
                    handle, timeout=self.settings.receipt_timeout_seconds
                )
            except NetworkUnavailableError as e:
                attempt += 1
                if attempt > self.settings.receipt_retry_attempts:
                    raise
                delay = retry_delay(attempt)
                logger.warning(
                    f"{self.name}: receipt for {handle.tx_hash} unavailable ({e}), "
                    f"retry {attempt} in {delay}s"
                )
                await self._sleep(delay)

    def _fail(self, error: Exception) -> ExchangeError:
        self.error = as_exchange_error(error)
        if self.error.fatal:
            logger.error(f"{self.name} failed: {self.error.message}")
        else:
            logger.info(f"{self.name} not completed: {self.error.message}")
        return self.error

    def _format_amount(self, amount: Optional[int] = None) -> str:
        return format_token_amount(self.amount if amount is None else amount, self.token_in.decimals)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
