"""Cross-chain bridge execution through a route aggregator."""

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from swapbridge.config import Settings
from swapbridge.engine.base import ExecutionEngine
from swapbridge.engine.state import EngineState
from swapbridge.engine.status import StatusOutcome, StatusTracker, TransferPhase
from swapbridge.errors import (
    NetworkUnavailableError,
    RateLimitedError,
    ReceiptTimeoutError,
    RouteInvalidError,
    StatusTimeoutError,
    TransactionFailedError,
)
from swapbridge.history.models import ExecutionKind, ExecutionRecord, ExecutionStatus
from swapbridge.history.recorder import HistoryRecorder
from swapbridge.routing.base import BridgePriority, BridgeRoute, BridgeRouteRequest
from swapbridge.routing.bridge import (
    BridgeCost,
    BridgeRouteResolver,
    RiskAssessment,
    assess_risk,
    calculate_cost,
)
from swapbridge.signing.base import SignerBackend
from swapbridge.tokens import TokenInfo
from swapbridge.utils.locks import OperationLock

logger = logging.getLogger(__name__)


class BridgeEngine(ExecutionEngine):
    """Execution state machine for aggregator bridge transfers.

    Flow:
    1. set_amount() schedules a debounced route search (routes[0] is used)
    2. execute() revalidates the route, signs every step, records the
       transfer as PENDING, then tracks the destination leg until it settles

    Bridge transfers need no approval; ``allowance`` is always None.
    """

    def __init__(
        self,
        signer: Optional[SignerBackend],
        resolver: BridgeRouteResolver,
        tracker: StatusTracker,
        recorder: HistoryRecorder,
        token_in: TokenInfo,
        token_out: TokenInfo,
        slippage: Optional[float] = None,
        to_address: Optional[str] = None,
        priority: Optional[BridgePriority] = None,
        locks: Optional[OperationLock] = None,
        settings: Optional[Settings] = None,
        **kwargs,
    ):
        self.resolver = resolver
        self.tracker = tracker
        self.to_address = to_address
        self.route: Optional[BridgeRoute] = None
        self.status: Optional[StatusOutcome] = None
        super().__init__(
            signer, recorder, token_in, token_out,
            slippage if slippage is not None else 0.5,
            locks=locks, settings=settings, **kwargs,
        )
        if slippage is None:
            self.slippage = self.settings.bridge_default_slippage
        self.priority = BridgePriority(priority or self.settings.bridge_default_priority)

    @property
    def name(self) -> str:
        return "bridge"

    @property
    def current_quote(self) -> Optional[BridgeRoute]:
        return self.route

    @property
    def cost(self) -> Optional[BridgeCost]:
        return calculate_cost(self.route) if self.route else None

    @property
    def risk(self) -> Optional[RiskAssessment]:
        return assess_risk(self.route) if self.route else None

    def _set_quote(self, quote: Any) -> None:
        self.route = quote

    def build_request(self) -> BridgeRouteRequest:
        from_address = self.signer.address if self.signer else ""
        return BridgeRouteRequest(
            from_chain_id=self.token_in.chain_id,
            to_chain_id=self.token_out.chain_id,
            from_token=self.token_in.contract_address,
            to_token=self.token_out.contract_address,
            from_amount=self.amount,
            from_address=from_address,
            to_address=self.to_address or from_address,
            slippage=self.slippage,
            priority=self.priority,
            max_price_impact=self.settings.bridge_max_price_impact,
        )

    def set_priority(self, priority: BridgePriority) -> None:
        priority = BridgePriority(priority)
        if priority == self.priority:
            return
        self.priority = priority
        self._inputs_changed()

    def _quote_fetcher(self) -> Callable[[], Awaitable[BridgeRoute]]:
        request = self.build_request()

        async def fetch() -> BridgeRoute:
            return await self.resolver.get_route(request)

        return fetch

    # ======================
    # Execution
    # ======================

    def _check_price_impact(self, route: BridgeRoute) -> None:
        impact = calculate_cost(route).price_impact
        tolerance = Decimal(str(self.slippage))
        if impact > tolerance:
            raise RouteInvalidError(
                f"Price impact {impact:.2f}% exceeds slippage tolerance {tolerance}%"
            )

    async def execute(self) -> EngineState:
        """Revalidate, sign every step and track the transfer to completion.

        The amount and route are fixed when this is called; if they change
        while the balance is read, nothing is signed. A zero amount is a
        no-op. An invalid route, or a first step that fails simulation,
        fails before any signing request.

        Raises:
            IllegalTransitionError: State is not READY, or a transfer for this
                pair is already in flight
        """
        if self.amount == 0:
            return self.state
        self._require_state(EngineState.READY, "execute")
        amount, route = self.amount, self.route

        async with self.locks.hold(self._operation_key("execute"), operation="bridge"):
            self.executing = True
            self.error = None
            self.status = None
            try:
                if await self._preflight(amount, route):
                    await self._bridge(amount, route)
            finally:
                self.executing = False
                self.confirming = False

        return self.state

    async def _preflight(self, amount: int, route: BridgeRoute) -> bool:
        if self.balance is None:
            try:
                await self.refresh_balance()
            except Exception as e:
                self._fail(e)
                return False

        if self._inputs_moved(amount, route):
            return False
        return self._check_balance(amount)

    async def _bridge(self, amount: int, route: BridgeRoute) -> None:
        amount_text = self._format_amount(amount)
        aggregator = self.resolver.aggregator
        record: Optional[ExecutionRecord] = None
        try:
            validation = await aggregator.validate_route(route.id)
            if not validation.valid:
                raise RouteInvalidError(errors=validation.errors)
            self._check_price_impact(route)

            steps = await aggregator.get_executable_steps(route.id)
            if not steps:
                raise RouteInvalidError("Route has no executable steps")
            if self.settings.bridge_simulate_steps:
                await self.signer.simulate(steps[0])

            for index, tx in enumerate(steps, start=1):
                handle = await self.signer.send_transaction(tx)
                logger.info(f"Bridge step {index}/{len(steps)} broadcast: {handle.tx_hash}")

                if record is None:
                    self.last_tx_hash = handle.tx_hash
                    record = self.recorder.record(ExecutionRecord(
                        kind=ExecutionKind.BRIDGE,
                        status=ExecutionStatus.PENDING,
                        description=(
                            f"Bridge {amount_text} {self.token_in.symbol} "
                            f"{self.token_in.chain_name} -> {self.token_out.chain_name}"
                        ),
                        timestamp_ms=self._now_ms(),
                        hash=handle.tx_hash,
                        from_chain=self.token_in.chain_name,
                        to_chain=self.token_out.chain_name,
                        from_chain_id=self.token_in.chain_id,
                        to_chain_id=self.token_out.chain_id,
                        amount=amount_text,
                        token=self.token_in.symbol,
                    ))

                receipt = await self._confirm(handle)
                if not receipt.succeeded:
                    raise TransactionFailedError(
                        f"Bridge step {index} reverted", tx_hash=handle.tx_hash
                    )

            self.executing = False
            self.confirming = True

            source_hash = record.hash
            outcome = await self.tracker.track(
                source_hash,
                self.token_in.chain_id,
                self.token_out.chain_id,
                on_update=lambda o: self._on_status(record.id, o),
            )
            self._apply_outcome(record.id, source_hash, outcome)
            if outcome.phase == TransferPhase.FAILED:
                raise TransactionFailedError(
                    outcome.message or "Bridge transfer failed", tx_hash=source_hash
                )
            self.success = True
            self.balance = None

        except (StatusTimeoutError, ReceiptTimeoutError, NetworkUnavailableError) as e:
            # Outcome unknown: the record stays PENDING for a manual refresh
            self._fail(e)
        except Exception as e:
            self._fail(e)
            if record is not None and self.recorder.get(record.id).status == ExecutionStatus.PENDING:
                self.recorder.update(record.id, status=ExecutionStatus.FAILED)

    def _on_status(self, record_id: str, outcome: StatusOutcome) -> None:
        self.status = outcome
        if not outcome.is_final:
            self.recorder.update(record_id)

    def _apply_outcome(self, key: str, source_hash: str, outcome: StatusOutcome) -> None:
        """Mirror a status outcome into the history record."""
        self.status = outcome
        if outcome.phase == TransferPhase.COMPLETED:
            changes = {"status": ExecutionStatus.COMPLETED}
            destination = outcome.destination_tx_hash
            if destination and destination != source_hash:
                changes["hash"] = destination
                logger.info(f"Bridge {source_hash} settled as {destination}")
            self.recorder.update(key, **changes)
        elif outcome.phase == TransferPhase.FAILED:
            self.recorder.update(key, status=ExecutionStatus.FAILED)
        else:
            self.recorder.update(key)

    async def refresh_status(self, tx_hash: str) -> StatusOutcome:
        """Manually check a recorded transfer, respecting the rate limit.

        Inside the cooldown no request is made; ``error`` is set to a
        RateLimitedError carrying the remaining wait.

        Raises:
            NetworkUnavailableError: Aggregator unreachable
        """
        record = self.recorder.get(tx_hash)
        from_chain_id = record.from_chain_id if record else self.token_in.chain_id
        to_chain_id = record.to_chain_id if record else self.token_out.chain_id

        outcome = await self.tracker.check(tx_hash, from_chain_id, to_chain_id)
        if outcome.rate_limited:
            self.error = RateLimitedError(outcome.retry_after)
            return outcome

        if record is not None:
            self._apply_outcome(record.id, tx_hash, outcome)
        return outcome
