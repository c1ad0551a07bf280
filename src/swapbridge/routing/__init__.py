"""Quote and route resolution.

- SwapQuoteResolver: same-chain quotes from the on-chain router
- BridgeRouteResolver: cross-chain routes from a remote aggregator (LI.FI)
- LatestOnlyFetcher: debounced fetching that discards stale results
"""

from swapbridge.routing.base import (
    BridgeAggregator,
    BridgePriority,
    BridgeRoute,
    BridgeRouteRequest,
    BridgeStatus,
    BridgeStep,
    Quote,
    RouteValidation,
    compute_minimum_output,
    slippage_to_bps,
)
from swapbridge.routing.bridge import (
    BridgeCost,
    BridgeRouteResolver,
    RiskAssessment,
    RiskLevel,
    assess_risk,
    calculate_cost,
    split_into_batches,
)
from swapbridge.routing.debounce import LatestOnlyFetcher
from swapbridge.routing.lifi import LiFiClient, create_lifi_client
from swapbridge.routing.swap_router import SwapQuoteResolver, create_swap_resolver

__all__ = [
    # Models
    "BridgePriority",
    "BridgeRoute",
    "BridgeRouteRequest",
    "BridgeStatus",
    "BridgeStep",
    "Quote",
    "RouteValidation",
    # Resolvers
    "BridgeAggregator",
    "BridgeRouteResolver",
    "LiFiClient",
    "SwapQuoteResolver",
    "create_lifi_client",
    "create_swap_resolver",
    # Helpers
    "BridgeCost",
    "LatestOnlyFetcher",
    "RiskAssessment",
    "RiskLevel",
    "assess_risk",
    "calculate_cost",
    "compute_minimum_output",
    "slippage_to_bps",
    "split_into_batches",
]
