"""Bridge route resolution, cost breakdown and risk assessment."""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Optional

from swapbridge.errors import RouteInvalidError
from swapbridge.routing.base import BridgeAggregator, BridgeRoute, BridgeRouteRequest

logger = logging.getLogger(__name__)

# USD thresholds
RISK_THRESHOLD_LOW = Decimal("1000")
RISK_THRESHOLD_MEDIUM = Decimal("10000")


class RiskLevel(str, Enum):
    LOW = "LOW"          # < $1K: no warning
    MEDIUM = "MEDIUM"    # $1K-10K: suggest batching
    HIGH = "HIGH"        # >= $10K: strongly suggest batching


@dataclass
class RiskAssessment:
    level: RiskLevel
    amount_usd: Decimal
    warning: Optional[str] = None
    suggest_batch: bool = False


@dataclass
class BridgeCost:
    """Cost breakdown of a route (USD unless noted)."""
    gas_cost: Decimal
    protocol_fees: Decimal
    price_impact: Decimal  # percent
    total: Decimal
    estimated_seconds: int


def calculate_cost(route: BridgeRoute) -> BridgeCost:
    """Sum gas and protocol fees over all steps and derive price impact."""
    gas_cost = Decimal("0")
    protocol_fees = Decimal("0")
    estimated_seconds = 0

    for step in route.steps:
        gas_cost += sum((c.amount_usd for c in step.estimate.gas_costs), Decimal("0"))
        protocol_fees += sum((c.amount_usd for c in step.estimate.fee_costs), Decimal("0"))
        estimated_seconds += int(step.estimate.execution_duration)

    price_impact = Decimal("0")
    if route.from_amount_usd > 0:
        lost = route.from_amount_usd - route.to_amount_usd - gas_cost - protocol_fees
        price_impact = max(Decimal("0"), lost / route.from_amount_usd * 100)

    return BridgeCost(
        gas_cost=gas_cost,
        protocol_fees=protocol_fees,
        price_impact=price_impact,
        total=gas_cost + protocol_fees,
        estimated_seconds=estimated_seconds,
    )


def assess_risk(route: BridgeRoute) -> RiskAssessment:
    """Classify the transfer by its USD value."""
    amount_usd = route.from_amount_usd

    if amount_usd < RISK_THRESHOLD_LOW:
        return RiskAssessment(level=RiskLevel.LOW, amount_usd=amount_usd)

    if amount_usd < RISK_THRESHOLD_MEDIUM:
        return RiskAssessment(
            level=RiskLevel.MEDIUM,
            amount_usd=amount_usd,
            warning="Consider splitting into smaller transactions for added security.",
            suggest_batch=True,
        )

    return RiskAssessment(
        level=RiskLevel.HIGH,
        amount_usd=amount_usd,
        warning="Large amount detected. Strongly recommend splitting or using a centralized exchange.",
        suggest_batch=True,
    )


def split_into_batches(request: BridgeRouteRequest, count: int = 3) -> list[BridgeRouteRequest]:
    """Split a request into ``count`` equal batches; the last takes the remainder."""
    if count < 1:
        raise ValueError("Batch count must be at least 1")

    per_batch, remainder = divmod(request.from_amount, count)
    return [
        replace(request, from_amount=per_batch + (remainder if i == count - 1 else 0))
        for i in range(count)
    ]


class BridgeRouteResolver:
    """Selects the best aggregator route for a cross-chain transfer."""

    def __init__(self, aggregator: BridgeAggregator):
        self.aggregator = aggregator

    async def get_route_options(self, request: BridgeRouteRequest) -> list[BridgeRoute]:
        return await self.aggregator.search_routes(request)

    async def get_route(self, request: BridgeRouteRequest) -> BridgeRoute:
        """Best route (the aggregator's first).

        Raises:
            RouteInvalidError: No route exists for the request
        """
        routes = await self.aggregator.search_routes(request)
        if not routes:
            raise RouteInvalidError("No routes found for this bridge transaction")

        route = routes[0]
        logger.info(
            f"Selected {self.aggregator.name} route {route.id} "
            f"({len(route.steps)} step(s), out {route.to_amount}) of {len(routes)}"
        )
        return route
