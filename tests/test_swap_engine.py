"""Tests for the swap execution engine."""

import asyncio

import pytest

from conftest import ETH, ROUTER_ADDRESS, USDC, WETH, FakeClock
from swapbridge.chain.abi import MAX_UINT256
from swapbridge.engine.state import EngineState
from swapbridge.engine.swap import SwapEngine
from swapbridge.errors import (
    IllegalTransitionError,
    InsufficientBalanceError,
    NetworkUnavailableError,
    ReceiptTimeoutError,
    RouteInvalidError,
    TransactionFailedError,
    UserRejectedError,
)
from swapbridge.history.models import ExecutionKind, ExecutionStatus
from swapbridge.history.recorder import HistoryRecorder
from swapbridge.routing.swap_router import SwapQuoteResolver
from swapbridge.utils.locks import OperationLock


@pytest.fixture
def recorder() -> HistoryRecorder:
    return HistoryRecorder()


@pytest.fixture
def make_engine(signer, chain_client, recorder, settings):
    def factory(token_in=USDC, token_out=WETH, **kwargs) -> SwapEngine:
        return SwapEngine(
            signer,
            SwapQuoteResolver(chain_client, ROUTER_ADDRESS),
            recorder,
            token_in,
            token_out,
            settings=settings,
            locks=OperationLock(),
            clock=lambda: 1_700_000_000.0,
            **kwargs,
        )
    return factory


class GatedResolver(SwapQuoteResolver):
    """Resolver whose quotes wait for a per-amount event."""

    def __init__(self, client):
        super().__init__(client, ROUTER_ADDRESS)
        self._gates: dict[int, asyncio.Event] = {}
        self._finished: dict[int, asyncio.Event] = {}

    def gate(self, amount: int) -> asyncio.Event:
        return self._gates.setdefault(amount, asyncio.Event())

    def finished(self, amount: int) -> asyncio.Event:
        return self._finished.setdefault(amount, asyncio.Event())

    async def get_quote(self, token_in, token_out, amount_in, slippage):
        await self.gate(amount_in).wait()
        quote = await super().get_quote(token_in, token_out, amount_in, slippage)
        self.finished(amount_in).set()
        return quote


async def quoted(engine: SwapEngine, amount: int) -> SwapEngine:
    engine.set_amount(amount)
    await engine.wait_for_quote()
    return engine


class TestSwapQuoting:
    """Tests for quote scheduling and state."""

    @pytest.mark.asyncio
    async def test_zero_amount_is_idle(self, make_engine):
        engine = make_engine()
        assert engine.state == EngineState.IDLE
        assert engine.quote is None

    @pytest.mark.asyncio
    async def test_erc20_input_needs_approval(self, make_engine, chain_client):
        engine = await quoted(make_engine(), 1_000_000)

        assert engine.quote.expected_output == chain_client.expected_output
        assert engine.quote.minimum_output == chain_client.expected_output * 9950 // 10000
        assert engine.fee_bps == 4
        assert engine.state == EngineState.NEEDS_APPROVAL

    @pytest.mark.asyncio
    async def test_native_input_is_ready(self, make_engine):
        engine = await quoted(make_engine(token_in=ETH), 10**17)

        assert engine.allowance is None
        assert engine.state == EngineState.READY

    @pytest.mark.asyncio
    async def test_disconnected_wallet_is_idle(self, make_engine, signer):
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        signer.chain_id = 137
        assert engine.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_quote_failure_then_recovery(self, make_engine, chain_client):
        """Test that a new successful quote clears the previous error."""
        chain_client.route = []
        engine = await quoted(make_engine(token_in=ETH), 10**17)

        assert isinstance(engine.error, RouteInvalidError)
        assert engine.state == EngineState.ERROR

        chain_client.route = [ETH.contract_address, WETH.contract_address]
        await quoted(engine, 2 * 10**17)

        assert engine.error is None
        assert engine.state == EngineState.READY

    @pytest.mark.asyncio
    async def test_token_change_drops_quote(self, make_engine):
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        engine.set_tokens(USDC, WETH)

        assert engine.quote is None
        assert engine.allowance == 0
        await engine.wait_for_quote()
        assert engine.quote is not None

    @pytest.mark.asyncio
    async def test_slow_quote_for_old_amount_is_discarded(self, signer, chain_client, recorder, settings):
        """Test that a late quote for a superseded amount is never shown."""
        resolver = GatedResolver(chain_client)
        engine = SwapEngine(
            signer, resolver, recorder, ETH, WETH, settings=settings, locks=OperationLock()
        )

        engine.set_amount(10**17)
        await asyncio.sleep(0)
        engine.set_amount(2 * 10**17)

        resolver.gate(10**17).set()
        await resolver.finished(10**17).wait()
        assert engine.quote is None
        assert engine.state == EngineState.FETCHING_QUOTE

        resolver.gate(2 * 10**17).set()
        await engine.wait_for_quote()
        assert engine.quote.amount_in == 2 * 10**17
        assert engine.state == EngineState.READY

    @pytest.mark.asyncio
    async def test_slippage_change_requotes(self, make_engine, chain_client):
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        engine.set_slippage(1.0)
        await engine.wait_for_quote()

        assert engine.quote.minimum_output == chain_client.expected_output * 9900 // 10000


class TestSwapApproval:
    """Tests for the approval transition."""

    @pytest.mark.asyncio
    async def test_approve_then_ready(self, make_engine, signer):
        engine = await quoted(make_engine(), 1_000_000)

        state = await engine.approve()

        assert state == EngineState.READY
        assert engine.allowance == MAX_UINT256
        assert signer.sent[0].to == USDC.contract_address

    @pytest.mark.asyncio
    async def test_approve_outside_needs_approval_raises(self, make_engine):
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        with pytest.raises(IllegalTransitionError):
            await engine.approve()

    @pytest.mark.asyncio
    async def test_rejected_approval(self, make_engine, signer):
        engine = await quoted(make_engine(), 1_000_000)
        signer.reject = True

        state = await engine.approve()

        assert state == EngineState.NEEDS_APPROVAL
        assert isinstance(engine.error, UserRejectedError)
        assert engine.approving is False

    @pytest.mark.asyncio
    async def test_reverted_approval(self, make_engine, signer):
        engine = await quoted(make_engine(), 1_000_000)
        signer.receipt_status = 0

        await engine.approve()

        assert isinstance(engine.error, TransactionFailedError)
        assert engine.allowance == 0


class TestSwapExecution:
    """Tests for the execute transition."""

    @pytest.mark.asyncio
    async def test_full_swap(self, make_engine, signer, recorder):
        """Test quote, approve, execute and the recorded history."""
        signer.balances[USDC.contract_address.lower()] = 5_000_000
        engine = await quoted(make_engine(), 1_000_000)
        await engine.approve()

        state = await engine.execute()

        assert state == EngineState.SUCCESS
        assert engine.success is True
        assert engine.balance is None
        swap_tx = signer.sent[-1]
        assert swap_tx.to == ROUTER_ADDRESS
        assert swap_tx.value == 0

        record = recorder.records[0]
        assert record.kind == ExecutionKind.SWAP
        assert record.status == ExecutionStatus.COMPLETED
        assert record.hash == engine.last_tx_hash
        assert record.description == "Swap 1 USDC -> WETH"
        assert record.amount == "1"

    @pytest.mark.asyncio
    async def test_success_is_cleared_by_new_amount(self, make_engine, signer):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        await engine.execute()

        engine.set_amount(2 * 10**17)
        await engine.wait_for_quote()
        assert engine.state == EngineState.READY

    @pytest.mark.asyncio
    async def test_zero_amount_is_noop(self, make_engine, signer):
        engine = make_engine(token_in=ETH)
        assert await engine.execute() == EngineState.IDLE
        assert signer.sent == []

    @pytest.mark.asyncio
    async def test_execute_before_approval_raises(self, make_engine):
        engine = await quoted(make_engine(), 1_000_000)
        with pytest.raises(IllegalTransitionError):
            await engine.execute()

    @pytest.mark.asyncio
    async def test_allowance_is_reread_before_execute(self, make_engine, signer):
        """Test that a revoked approval is caught before signing."""
        signer.balances[USDC.contract_address.lower()] = 5_000_000
        engine = await quoted(make_engine(), 1_000_000)
        await engine.approve()
        sent_before = len(signer.sent)
        signer.allowances.clear()

        state = await engine.execute()

        assert state == EngineState.NEEDS_APPROVAL
        assert len(signer.sent) == sent_before

    @pytest.mark.asyncio
    async def test_insufficient_balance_never_signs(self, make_engine, signer, recorder):
        signer.native_balance = 10
        engine = await quoted(make_engine(token_in=ETH), 10**17)

        state = await engine.execute()

        assert state == EngineState.READY
        assert isinstance(engine.error, InsufficientBalanceError)
        assert signer.sent == []
        assert recorder.records == []

    @pytest.mark.asyncio
    async def test_user_rejection_returns_to_ready(self, make_engine, signer, recorder):
        signer.native_balance = 10**18
        signer.reject = True
        engine = await quoted(make_engine(token_in=ETH), 10**17)

        state = await engine.execute()

        assert state == EngineState.READY
        assert isinstance(engine.error, UserRejectedError)
        assert recorder.records == []

    @pytest.mark.asyncio
    async def test_reverted_swap_is_recorded_as_failed(self, make_engine, signer, recorder):
        signer.native_balance = 10**18
        signer.receipt_status = 0
        engine = await quoted(make_engine(token_in=ETH), 10**17)

        state = await engine.execute()

        assert state == EngineState.ERROR
        assert isinstance(engine.error, TransactionFailedError)
        assert recorder.records[0].status == ExecutionStatus.FAILED
        assert engine.executing is False
        assert engine.confirming is False

    @pytest.mark.asyncio
    async def test_concurrent_execute_is_rejected(self, make_engine, signer):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)

        async with engine.locks.hold(engine._operation_key("execute"), operation="swap"):
            with pytest.raises(IllegalTransitionError):
                await engine.execute()

        assert signer.sent == []

    @pytest.mark.asyncio
    async def test_reset_clears_success(self, make_engine, signer):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        await engine.execute()

        engine.reset()

        assert engine.state == EngineState.IDLE
        assert engine.amount == 0
        assert engine.quote is None


class TestSwapInputsDuringExecute:
    """Tests for input changes while execute() re-reads chain state."""

    @pytest.mark.asyncio
    async def test_amount_change_during_balance_read_never_signs(self, make_engine, signer, recorder):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        signer.read_gate = asyncio.Event()

        task = asyncio.create_task(engine.execute())
        await signer.read_started.wait()
        assert engine.state == EngineState.EXECUTING

        engine.set_amount(2 * 10**17)
        signer.read_gate.set()
        await task

        assert signer.sent == []
        assert recorder.records == []
        assert engine.executing is False
        assert engine.error is None

    @pytest.mark.asyncio
    async def test_slippage_change_during_allowance_read_never_signs(self, make_engine, signer):
        signer.balances[USDC.contract_address.lower()] = 5_000_000
        engine = await quoted(make_engine(), 1_000_000)
        await engine.approve()
        sent_before = len(signer.sent)
        signer.read_gate = asyncio.Event()

        task = asyncio.create_task(engine.execute())
        await signer.read_started.wait()
        engine.set_slippage(1.0)
        signer.read_gate.set()
        await task

        assert len(signer.sent) == sent_before

    @pytest.mark.asyncio
    async def test_second_execute_during_preflight_is_rejected(self, make_engine, signer):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        signer.read_gate = asyncio.Event()

        task = asyncio.create_task(engine.execute())
        await signer.read_started.wait()
        with pytest.raises(IllegalTransitionError):
            await engine.execute()

        signer.read_gate.set()
        assert await task == EngineState.SUCCESS
        assert len(signer.sent) == 1


class TestSwapConfirmation:
    """Tests for receipt retries and unknown outcomes."""

    @pytest.mark.asyncio
    async def test_unreachable_receipt_is_retried(self, make_engine, signer, recorder):
        clock = FakeClock()
        signer.native_balance = 10**18
        signer.receipt_errors = [NetworkUnavailableError("RPC unavailable")]
        engine = await quoted(make_engine(token_in=ETH, sleep=clock.sleep), 10**17)

        state = await engine.execute()

        assert state == EngineState.SUCCESS
        assert clock.sleeps == [1]
        assert recorder.records[0].status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_receipt_unreachable_after_retries_stays_pending(self, make_engine, signer, recorder, settings):
        clock = FakeClock()
        signer.native_balance = 10**18
        signer.receipt_errors = [
            NetworkUnavailableError("RPC unavailable")
            for _ in range(settings.receipt_retry_attempts + 1)
        ]
        engine = await quoted(make_engine(token_in=ETH, sleep=clock.sleep), 10**17)

        state = await engine.execute()

        assert state == EngineState.ERROR
        assert isinstance(engine.error, NetworkUnavailableError)
        assert clock.sleeps == [1, 2, 4]
        assert recorder.records[0].status == ExecutionStatus.PENDING

    @pytest.mark.asyncio
    async def test_receipt_timeout_stays_pending(self, make_engine, signer, recorder):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        signer.receipt_errors = [ReceiptTimeoutError("0xabc", 5.0)]

        state = await engine.execute()

        assert state == EngineState.ERROR
        assert isinstance(engine.error, ReceiptTimeoutError)
        assert recorder.records[0].status == ExecutionStatus.PENDING
        assert engine.confirming is False

    @pytest.mark.asyncio
    async def test_refresh_receipt_settles_pending_record(self, make_engine, signer, recorder):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        signer.receipt_errors = [ReceiptTimeoutError("0xabc", 5.0)]
        await engine.execute()
        tx_hash = engine.last_tx_hash

        signer.receipt_errors = [ReceiptTimeoutError(tx_hash, 0)]
        assert await engine.refresh_receipt(tx_hash) is None
        assert recorder.records[0].status == ExecutionStatus.PENDING

        receipt = await engine.refresh_receipt(tx_hash)
        assert receipt.succeeded is True
        assert recorder.records[0].status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_refresh_receipt_marks_revert_failed(self, make_engine, signer, recorder):
        signer.native_balance = 10**18
        engine = await quoted(make_engine(token_in=ETH), 10**17)
        signer.receipt_errors = [ReceiptTimeoutError("0xabc", 5.0)]
        await engine.execute()

        signer.receipt_status = 0
        await engine.refresh_receipt(engine.last_tx_hash)

        assert recorder.records[0].status == ExecutionStatus.FAILED
