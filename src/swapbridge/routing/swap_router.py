"""Same-chain quotes from the on-chain MultiHopSwapper router."""

import logging
from typing import Optional

from swapbridge.chain.abi import ROUTER_GET_OPTIMAL_ROUTE, ContractCall
from swapbridge.chain.client import ChainClient
from swapbridge.config import ZERO_ADDRESS, Settings, get_settings
from swapbridge.errors import RouteInvalidError, RouterNotDeployedError
from swapbridge.routing.base import Quote, compute_minimum_output, slippage_to_bps
from swapbridge.tokens import TokenInfo

logger = logging.getLogger(__name__)


class SwapQuoteResolver:
    """Queries the router for the optimal route and expected output.

    The router's fee is applied on chain; ``fee_bps`` is only mirrored for
    display.
    """

    def __init__(self, client: ChainClient, router_address: str, fee_bps: int = 4):
        self.client = client
        self.router_address = router_address
        self.fee_bps = fee_bps
        self._deployed = False

    @property
    def is_configured(self) -> bool:
        return bool(self.router_address) and self.router_address.lower() != ZERO_ADDRESS

    async def ensure_router_deployed(self) -> None:
        """Check the router address is set and has code on this network.

        Raises:
            RouterNotDeployedError: Address unset or no contract code
        """
        if self._deployed:
            return
        if not self.is_configured:
            raise RouterNotDeployedError("Swap router is not configured for this network")

        code = await self.client.get_code(self.router_address)
        if not code:
            raise RouterNotDeployedError(
                f"Swap router {self.router_address} is not deployed on this network"
            )

        self._deployed = True
        logger.debug(f"Swap router {self.router_address} verified")

    async def get_quote(
        self,
        token_in: TokenInfo,
        token_out: TokenInfo,
        amount_in: int,
        slippage: float,
    ) -> Optional[Quote]:
        """Get a quote; None for a zero amount.

        Args:
            token_in: Input token
            token_out: Output token (same chain)
            amount_in: Amount in the input token's smallest unit
            slippage: Slippage tolerance in percent (1.0 = 1%)

        Raises:
            RouteInvalidError: No route between the tokens
            RouterNotDeployedError: Router unavailable
            NetworkUnavailableError: RPC unreachable
        """
        if amount_in <= 0:
            return None
        if token_in.chain_id != token_out.chain_id:
            raise RouteInvalidError(
                f"{token_in.symbol} and {token_out.symbol} are on different chains"
            )

        await self.ensure_router_deployed()

        route, expected_output = await self.client.read_contract(ContractCall(
            self.router_address,
            ROUTER_GET_OPTIMAL_ROUTE,
            (token_in.contract_address, token_out.contract_address, amount_in),
            ("address[]", "uint256"),
        ))

        if not route or expected_output == 0:
            raise RouteInvalidError(
                f"No route found for {token_in.symbol} -> {token_out.symbol}"
            )

        slippage_bps = slippage_to_bps(slippage)
        quote = Quote(
            route=list(route),
            expected_output=expected_output,
            fee_bps=self.fee_bps,
            minimum_output=compute_minimum_output(expected_output, slippage_bps),
            amount_in=amount_in,
            slippage_bps=slippage_bps,
        )
        logger.debug(
            f"Quote {amount_in} {token_in.symbol} -> {expected_output} {token_out.symbol} "
            f"via {quote.hops} hop(s)"
        )
        return quote


def create_swap_resolver(client: ChainClient, settings: Optional[Settings] = None) -> SwapQuoteResolver:
    """Create a resolver for the router and fee configured in settings."""
    settings = settings or get_settings()
    return SwapQuoteResolver(
        client,
        router_address=settings.swap_router_address,
        fee_bps=settings.swap_fee_bps,
    )
