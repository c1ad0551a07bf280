"""Token registry and amount helpers.

Static mapping of (symbol, chain id) to token metadata. Lookups return None
for tokens not configured on a chain; callers treat that as "feature
unavailable for this chain", not as an error.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"

# Chain IDs
ETHEREUM = 1
OPTIMISM = 10
POLYGON = 137
BASE = 8453
ARBITRUM = 42161

CHAIN_NAMES = {
    ETHEREUM: "Ethereum",
    OPTIMISM: "Optimism",
    POLYGON: "Polygon",
    BASE: "Base",
    ARBITRUM: "Arbitrum",
}


@dataclass(frozen=True)
class TokenInfo:
    """Immutable token metadata."""

    symbol: str
    contract_address: str
    decimals: int
    chain_id: int
    name: str = ""

    @property
    def is_native(self) -> bool:
        """Native gas asset (no ERC20 contract, no approval)."""
        return self.contract_address.lower() == NATIVE_TOKEN_ADDRESS

    @property
    def chain_name(self) -> str:
        return CHAIN_NAMES.get(self.chain_id, str(self.chain_id))


DEFAULT_TOKENS: tuple[TokenInfo, ...] = (
    # Ethereum mainnet - must match the tokens configured in the swap router
    TokenInfo("ETH", NATIVE_TOKEN_ADDRESS, 18, ETHEREUM, "Ether"),
    TokenInfo("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6, ETHEREUM, "Tether USD"),
    TokenInfo("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, ETHEREUM, "USD Coin"),
    TokenInfo("WBTC", "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", 8, ETHEREUM, "Wrapped Bitcoin"),
    TokenInfo("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18, ETHEREUM, "Wrapped Ether"),
    TokenInfo("SOL", "0xD31a59c85aE9D8edEFeC411D448f90d4b0d81299", 18, ETHEREUM, "Wrapped SOL"),
    TokenInfo("AR", "0x4fadc7a98f2dc96510e42dd1a74141eeae0c1543", 18, ETHEREUM, "Arweave"),
    TokenInfo("SUI", "0x0b275cfB78b7F8Ffc9D1e66fBa5e7F61Db2c3F20", 18, ETHEREUM, "Sui"),
    # Arbitrum One
    TokenInfo("ETH", NATIVE_TOKEN_ADDRESS, 18, ARBITRUM, "Ether"),
    TokenInfo("USDC", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6, ARBITRUM, "USD Coin"),
    TokenInfo("USDT", "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6, ARBITRUM, "Tether USD"),
    TokenInfo("WETH", "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", 18, ARBITRUM, "Wrapped Ether"),
    # Optimism
    TokenInfo("ETH", NATIVE_TOKEN_ADDRESS, 18, OPTIMISM, "Ether"),
    TokenInfo("USDC", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6, OPTIMISM, "USD Coin"),
    # Polygon
    TokenInfo("POL", NATIVE_TOKEN_ADDRESS, 18, POLYGON, "Polygon"),
    TokenInfo("USDC", "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", 6, POLYGON, "USD Coin"),
    # Base
    TokenInfo("ETH", NATIVE_TOKEN_ADDRESS, 18, BASE, "Ether"),
    TokenInfo("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, BASE, "USD Coin"),
)


class TokenRegistry:
    """Read-only lookup of configured tokens."""

    def __init__(self, tokens: Optional[Iterable[TokenInfo]] = None):
        self._by_symbol: dict[tuple[str, int], TokenInfo] = {}
        self._by_address: dict[tuple[str, int], TokenInfo] = {}

        for token in tokens if tokens is not None else DEFAULT_TOKENS:
            self._by_symbol[(token.symbol.upper(), token.chain_id)] = token
            # Native entries share the zero address; only ERC20s are reverse-indexed
            if not token.is_native:
                self._by_address[(token.contract_address.lower(), token.chain_id)] = token

    def get(self, symbol: str, chain_id: int) -> Optional[TokenInfo]:
        """Look up a token by symbol on a chain."""
        return self._by_symbol.get((symbol.upper(), chain_id))

    def get_by_address(self, address: str, chain_id: int) -> Optional[TokenInfo]:
        """Reverse lookup by contract address on a chain."""
        return self._by_address.get((address.lower(), chain_id))

    def tokens_for_chain(self, chain_id: int) -> list[TokenInfo]:
        """All tokens configured on a chain."""
        return [t for (_, cid), t in self._by_symbol.items() if cid == chain_id]

    def supports(self, symbol: str, chain_id: int) -> bool:
        return self.get(symbol, chain_id) is not None


_registry: Optional[TokenRegistry] = None


def get_token_registry() -> TokenRegistry:
    """Get the default registry (loaded once)."""
    global _registry
    if _registry is None:
        _registry = TokenRegistry()
        logger.debug(f"Token registry loaded with {len(DEFAULT_TOKENS)} entries")
    return _registry


def parse_token_amount(text: Optional[str], decimals: int) -> int:
    """Parse user input into the token's smallest unit.

    Returns 0 for empty, unparsable or negative input. Extra fractional
    digits beyond ``decimals`` are truncated, never rounded.
    """
    if text is None:
        return 0
    text = text.strip()
    if not text:
        return 0

    try:
        value = Decimal(text)
    except InvalidOperation:
        return 0

    if not value.is_finite() or value < 0:
        return 0

    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def format_token_amount(amount: int, decimals: int, display_decimals: int = 6) -> str:
    """Format a smallest-unit amount for display, trimming trailing zeros."""
    if amount == 0:
        return "0"

    sign = "-" if amount < 0 else ""
    amount = abs(amount)
    whole, fraction = divmod(amount, 10 ** decimals)

    if fraction == 0:
        return f"{sign}{whole}"

    fraction_str = str(fraction).rjust(decimals, "0")[:display_decimals].rstrip("0")
    return f"{sign}{whole}.{fraction_str}" if fraction_str else f"{sign}{whole}"
