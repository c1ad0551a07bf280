"""Route and quote models shared by the swap and bridge resolvers."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from swapbridge.signing.base import TxRequest

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000


def slippage_to_bps(percentage: float) -> int:
    """Convert a slippage percentage (1.0 = 1%) to basis points, floored.

    Clamped to [0, 10000].
    """
    bps = int((Decimal(str(percentage)) * 100).to_integral_value(rounding=ROUND_FLOOR))
    return max(0, min(bps, BPS_DENOMINATOR))


def compute_minimum_output(expected_output: int, slippage_bps: int) -> int:
    """Minimum acceptable output after slippage (integer floor)."""
    return expected_output * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


@dataclass
class Quote:
    """A same-chain swap quote from the router."""

    route: list[str]
    expected_output: int
    fee_bps: int
    minimum_output: int
    amount_in: int = 0
    slippage_bps: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def hops(self) -> int:
        return max(len(self.route) - 1, 0)


# ======================
# Bridge models
# ======================

class _AggregatorModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RouteToken(_AggregatorModel):
    address: str
    symbol: str = ""
    decimals: int = 18
    chain_id: Optional[int] = Field(default=None, alias="chainId")


class CostItem(_AggregatorModel):
    name: str = ""
    amount: int = 0
    amount_usd: Decimal = Field(default=Decimal("0"), alias="amountUSD")


class StepAction(_AggregatorModel):
    slippage: Optional[float] = None


class StepEstimate(_AggregatorModel):
    from_amount: int = Field(default=0, alias="fromAmount")
    to_amount: int = Field(default=0, alias="toAmount")
    to_amount_min: int = Field(default=0, alias="toAmountMin")
    approval_address: Optional[str] = Field(default=None, alias="approvalAddress")
    execution_duration: float = Field(default=0, alias="executionDuration")
    gas_costs: list[CostItem] = Field(default_factory=list, alias="gasCosts")
    fee_costs: list[CostItem] = Field(default_factory=list, alias="feeCosts")


class BridgeStep(_AggregatorModel):
    id: str = ""
    type: str = ""
    tool: str = ""
    action: StepAction = Field(default_factory=StepAction)
    estimate: StepEstimate = Field(default_factory=StepEstimate)

    @property
    def from_amount(self) -> int:
        return self.estimate.from_amount

    @property
    def to_amount(self) -> int:
        return self.estimate.to_amount


@dataclass
class RouteEstimate:
    duration_seconds: int
    slippage: float


@dataclass
class RouteFees:
    total_percentage: Decimal
    breakdown: dict[str, Decimal]


class BridgeRoute(_AggregatorModel):
    """A cross-chain route returned by the aggregator.

    ``id`` is opaque and expires server side; revalidate before executing.
    """

    id: str
    from_chain_id: int = Field(alias="fromChainId")
    to_chain_id: int = Field(alias="toChainId")
    from_token: RouteToken = Field(alias="fromToken")
    to_token: RouteToken = Field(alias="toToken")
    from_amount: int = Field(alias="fromAmount")
    to_amount: int = Field(alias="toAmount")
    to_amount_min: int = Field(default=0, alias="toAmountMin")
    from_amount_usd: Decimal = Field(default=Decimal("0"), alias="fromAmountUSD")
    to_amount_usd: Decimal = Field(default=Decimal("0"), alias="toAmountUSD")
    steps: list[BridgeStep] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @property
    def estimate(self) -> RouteEstimate:
        slippages = [s.action.slippage for s in self.steps if s.action.slippage is not None]
        return RouteEstimate(
            duration_seconds=int(sum(s.estimate.execution_duration for s in self.steps)),
            slippage=max(slippages) if slippages else 0.0,
        )

    @property
    def fees(self) -> RouteFees:
        breakdown: dict[str, Decimal] = {}
        for step in self.steps:
            for cost in step.estimate.fee_costs:
                key = cost.name or step.tool
                breakdown[key] = breakdown.get(key, Decimal("0")) + cost.amount_usd

        total_usd = sum(breakdown.values(), Decimal("0"))
        percentage = (
            total_usd / self.from_amount_usd * 100 if self.from_amount_usd > 0 else Decimal("0")
        )
        return RouteFees(total_percentage=percentage, breakdown=breakdown)


class BridgePriority(str, Enum):
    """Route preference offered to the user."""
    FASTEST = "fastest"
    BALANCED = "balanced"
    CHEAPEST = "cheapest"

    @property
    def order(self) -> str:
        """Aggregator ordering for this priority."""
        return _ROUTE_ORDER[self]


_ROUTE_ORDER = {
    BridgePriority.FASTEST: "FASTEST",
    BridgePriority.BALANCED: "RECOMMENDED",
    BridgePriority.CHEAPEST: "CHEAPEST",
}


@dataclass
class BridgeRouteRequest:
    """Route search parameters (amounts in the smallest unit).

    ``max_price_impact`` is a fraction (0.05 = 5%); None leaves it to the
    aggregator.
    """

    from_chain_id: int
    to_chain_id: int
    from_token: str
    to_token: str
    from_amount: int
    from_address: str
    to_address: Optional[str] = None
    slippage: float = 0.5  # percent
    priority: BridgePriority = BridgePriority.BALANCED
    max_price_impact: Optional[float] = None

    @property
    def order(self) -> str:
        return self.priority.order


@dataclass
class RouteValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class BridgeStatus:
    """Raw status report for a bridge transfer."""

    phase: str  # NOT_FOUND, INVALID, PENDING, DONE, FAILED
    substatus: Optional[str] = None
    message: Optional[str] = None
    source_tx_hash: Optional[str] = None
    destination_tx_hash: Optional[str] = None


class BridgeAggregator(ABC):
    """Remote cross-chain route aggregator."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def search_routes(self, request: BridgeRouteRequest) -> list[BridgeRoute]:
        """Ranked routes, best first. Empty when none exist."""
        pass

    @abstractmethod
    async def get_executable_steps(self, route_id: str) -> list[TxRequest]:
        """Transactions to sign, in order."""
        pass

    @abstractmethod
    async def get_status(
        self,
        tx_hash: str,
        from_chain_id: Optional[int] = None,
        to_chain_id: Optional[int] = None,
    ) -> BridgeStatus:
        pass

    @abstractmethod
    async def validate_route(self, route_id: str) -> RouteValidation:
        pass
