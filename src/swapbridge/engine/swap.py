"""Same-chain swap execution through the MultiHopSwapper router."""

import logging
from typing import Any, Awaitable, Callable, Optional

from swapbridge.config import Settings
from swapbridge.engine.allowance import AllowanceManager
from swapbridge.engine.base import ExecutionEngine
from swapbridge.engine.state import EngineState, needs_approval
from swapbridge.chain.client import TxReceipt
from swapbridge.errors import NetworkUnavailableError, ReceiptTimeoutError, TransactionFailedError
from swapbridge.history.models import ExecutionKind, ExecutionRecord, ExecutionStatus
from swapbridge.history.recorder import HistoryRecorder
from swapbridge.routing.base import Quote
from swapbridge.routing.swap_router import SwapQuoteResolver
from swapbridge.signing.base import SignerBackend, SwapParams, TxHandle
from swapbridge.tokens import TokenInfo
from swapbridge.utils.locks import OperationLock

logger = logging.getLogger(__name__)


class SwapEngine(ExecutionEngine):
    """Approval and execution state machine for router swaps.

    Flow:
    1. set_amount() schedules a debounced quote
    2. approve() when the state is NEEDS_APPROVAL
    3. execute() when the state is READY; finality is one receipt
    """

    def __init__(
        self,
        signer: Optional[SignerBackend],
        resolver: SwapQuoteResolver,
        recorder: HistoryRecorder,
        token_in: TokenInfo,
        token_out: TokenInfo,
        slippage: float = 0.5,
        locks: Optional[OperationLock] = None,
        settings: Optional[Settings] = None,
        **kwargs,
    ):
        self.resolver = resolver
        self.quote: Optional[Quote] = None
        super().__init__(
            signer, recorder, token_in, token_out, slippage,
            locks=locks, settings=settings, **kwargs,
        )
        self._reset_allowance()

    @property
    def name(self) -> str:
        return "swap"

    @property
    def current_quote(self) -> Optional[Quote]:
        return self.quote

    @property
    def fee_bps(self) -> int:
        """Router fee mirrored for display."""
        return self.resolver.fee_bps

    @property
    def allowance_manager(self) -> Optional[AllowanceManager]:
        if self.signer is None:
            return None
        return AllowanceManager(
            self.signer,
            self.resolver.router_address,
            receipt_timeout=self.settings.receipt_timeout_seconds,
        )

    def _set_quote(self, quote: Any) -> None:
        self.quote = quote

    def _reset_allowance(self) -> None:
        # Unknown allowance counts as zero until read
        self.allowance = 0 if AllowanceManager.requires_approval(self.token_in) else None

    def _quote_fetcher(self) -> Callable[[], Awaitable[Optional[Quote]]]:
        token_in, token_out = self.token_in, self.token_out
        amount, slippage = self.amount, self.slippage

        async def fetch() -> Optional[Quote]:
            return await self.resolver.get_quote(token_in, token_out, amount, slippage)

        return fetch

    # ======================
    # Refresh
    # ======================

    async def refresh_allowance(self) -> Optional[int]:
        """Re-read the router allowance; stale reads are discarded."""
        manager = self.allowance_manager
        if manager is None:
            return self.allowance
        generation = self._token_generation
        allowance = await manager.read(self.token_in)
        if generation != self._token_generation:
            logger.debug("swap: discarding stale allowance read")
            return self.allowance
        self.allowance = allowance
        return allowance

    async def refresh(self) -> None:
        await self.refresh_allowance()
        await self.refresh_balance()

    # ======================
    # Transitions
    # ======================

    async def approve(self) -> EngineState:
        """Approve the router for the input token (max amount).

        Raises:
            IllegalTransitionError: State is not NEEDS_APPROVAL, or an
                approval for this pair is already in flight
        """
        self._require_state(EngineState.NEEDS_APPROVAL, "approve")
        manager = self.allowance_manager
        generation = self._token_generation

        async with self.locks.hold(self._operation_key("approve"), operation="approve"):
            self.approving = True
            self.error = None
            try:
                await self.resolver.ensure_router_deployed()
                allowance = await manager.approve_max(self.token_in)
                if generation == self._token_generation:
                    self.allowance = allowance
            except Exception as e:
                self._fail(e)
            finally:
                self.approving = False

        return self.state

    async def execute(self) -> EngineState:
        """Sign and broadcast the swap, then wait for one confirmation.

        The amount and quote are fixed when this is called; if they change
        while the allowance and balance are re-read, nothing is signed. A zero
        amount is a no-op and insufficient balance is rejected before any
        signing request.

        Raises:
            IllegalTransitionError: State is not READY, or a swap for this
                pair is already in flight
        """
        if self.amount == 0:
            return self.state
        self._require_state(EngineState.READY, "execute")
        amount, quote = self.amount, self.quote

        async with self.locks.hold(self._operation_key("execute"), operation="swap"):
            self.executing = True
            self.error = None
            try:
                if await self._preflight(amount, quote):
                    await self._swap(amount, quote)
            finally:
                self.executing = False
                self.confirming = False

        return self.state

    async def _preflight(self, amount: int, quote: Quote) -> bool:
        try:
            await self.refresh_allowance()
            if self.balance is None:
                await self.refresh_balance()
        except Exception as e:
            self._fail(e)
            return False

        if self._inputs_moved(amount, quote):
            return False
        if needs_approval(amount, self.allowance):
            logger.info("swap: allowance below amount, approval required")
            return False
        return self._check_balance(amount)

    async def _swap(self, amount: int, quote: Quote) -> None:
        amount_text = self._format_amount(amount)
        record: Optional[ExecutionRecord] = None
        try:
            params = SwapParams(
                router=self.resolver.router_address,
                token_in=self.token_in,
                token_out=self.token_out,
                amount_in=amount,
                min_amount_out=quote.minimum_output,
                recipient=self.signer.address,
                deadline=int(self._clock()) + self.settings.swap_deadline_seconds,
            )
            handle = await self.signer.execute_swap(params)
            self.last_tx_hash = handle.tx_hash

            record = self.recorder.record(ExecutionRecord(
                kind=ExecutionKind.SWAP,
                status=ExecutionStatus.PENDING,
                description=f"Swap {amount_text} {self.token_in.symbol} -> {self.token_out.symbol}",
                timestamp_ms=self._now_ms(),
                hash=handle.tx_hash,
                from_chain=self.token_in.chain_name,
                to_chain=self.token_out.chain_name,
                from_chain_id=self.token_in.chain_id,
                to_chain_id=self.token_out.chain_id,
                amount=amount_text,
                token=self.token_in.symbol,
            ))

            self.executing = False
            self.confirming = True
            receipt = await self._confirm(handle)
            if not receipt.succeeded:
                raise TransactionFailedError("Swap transaction reverted", tx_hash=handle.tx_hash)

            self.recorder.update(record.id, status=ExecutionStatus.COMPLETED)
            self.success = True
            self.balance = None
            logger.info(f"Swap {handle.tx_hash} confirmed in block {receipt.block_number}")

        except (ReceiptTimeoutError, NetworkUnavailableError) as e:
            # Outcome unknown: the record stays PENDING for refresh_receipt()
            self._fail(e)
        except Exception as e:
            self._fail(e)
            if record is not None:
                self.recorder.update(record.id, status=ExecutionStatus.FAILED)

    async def refresh_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        """Check once for the receipt of a swap left PENDING.

        Returns None while the transaction is still unconfirmed.

        Raises:
            NetworkUnavailableError: RPC unreachable
        """
        record = self.recorder.get(tx_hash)
        chain_id = record.from_chain_id if record and record.from_chain_id else self.chain_id
        handle = TxHandle(tx_hash=tx_hash, chain_id=chain_id, signer_type=self.signer.signer_type)

        try:
            receipt = await self.signer.wait_for_receipt(handle, timeout=0)
        except ReceiptTimeoutError:
            return None

        if record is not None:
            status = ExecutionStatus.COMPLETED if receipt.succeeded else ExecutionStatus.FAILED
            self.recorder.update(record.id, status=status)
        return receipt
