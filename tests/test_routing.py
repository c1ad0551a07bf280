"""Tests for swap quotes, bridge route helpers and latest-only fetching."""

import asyncio
from decimal import Decimal

import pytest

from conftest import ROUTER_ADDRESS, USDC, USDC_ARB, WETH, FakeAggregator, make_route
from swapbridge.config import ZERO_ADDRESS, Settings
from swapbridge.errors import RouteInvalidError, RouterNotDeployedError
from swapbridge.routing.base import (
    BridgePriority,
    BridgeRouteRequest,
    compute_minimum_output,
    slippage_to_bps,
)
from swapbridge.routing.bridge import (
    BridgeRouteResolver,
    RiskLevel,
    assess_risk,
    calculate_cost,
    split_into_batches,
)
from swapbridge.routing.debounce import LatestOnlyFetcher
from swapbridge.routing.swap_router import SwapQuoteResolver, create_swap_resolver


class TestSlippage:
    """Tests for minimum output arithmetic."""

    def test_slippage_to_bps(self):
        assert slippage_to_bps(0.5) == 50
        assert slippage_to_bps(1) == 100
        assert slippage_to_bps(0.123) == 12

    def test_slippage_is_clamped(self):
        assert slippage_to_bps(-1) == 0
        assert slippage_to_bps(150) == 10_000

    def test_minimum_output_floors(self):
        assert compute_minimum_output(999, 50) == 994
        assert compute_minimum_output(10**18, 0) == 10**18
        assert compute_minimum_output(10**18, 10_000) == 0

    def test_minimum_output_never_exceeds_expected(self):
        for expected in (1, 7, 10**6 + 3, 2**200):
            for bps in (0, 1, 50, 9999):
                assert compute_minimum_output(expected, bps) <= expected


class TestSwapQuoteResolver:
    """Tests for router quotes."""

    @pytest.mark.asyncio
    async def test_get_quote(self, chain_client):
        """Test quote fields and the slippage-adjusted minimum."""
        resolver = SwapQuoteResolver(chain_client, ROUTER_ADDRESS, fee_bps=4)
        quote = await resolver.get_quote(USDC, WETH, 1_000_000, 0.5)

        assert quote.expected_output == chain_client.expected_output
        assert quote.minimum_output == chain_client.expected_output * 9950 // 10000
        assert quote.fee_bps == 4
        assert quote.slippage_bps == 50
        assert quote.hops == 1

    def test_create_from_settings(self, chain_client):
        settings = Settings(swap_router_address=ROUTER_ADDRESS, swap_fee_bps=7)

        resolver = create_swap_resolver(chain_client, settings)

        assert resolver.client is chain_client
        assert resolver.router_address == ROUTER_ADDRESS
        assert resolver.fee_bps == 7

    @pytest.mark.asyncio
    async def test_zero_amount_returns_none(self, chain_client):
        resolver = SwapQuoteResolver(chain_client, ROUTER_ADDRESS)
        assert await resolver.get_quote(USDC, WETH, 0, 0.5) is None

    @pytest.mark.asyncio
    async def test_router_not_configured(self, chain_client):
        resolver = SwapQuoteResolver(chain_client, ZERO_ADDRESS)
        with pytest.raises(RouterNotDeployedError):
            await resolver.get_quote(USDC, WETH, 1_000_000, 0.5)

    @pytest.mark.asyncio
    async def test_router_without_code(self, chain_client):
        chain_client.code = b""
        resolver = SwapQuoteResolver(chain_client, ROUTER_ADDRESS)
        with pytest.raises(RouterNotDeployedError):
            await resolver.ensure_router_deployed()

    @pytest.mark.asyncio
    async def test_empty_route_is_invalid(self, chain_client):
        chain_client.route = []
        resolver = SwapQuoteResolver(chain_client, ROUTER_ADDRESS)
        with pytest.raises(RouteInvalidError):
            await resolver.get_quote(USDC, WETH, 1_000_000, 0.5)

    @pytest.mark.asyncio
    async def test_cross_chain_pair_is_invalid(self, chain_client):
        resolver = SwapQuoteResolver(chain_client, ROUTER_ADDRESS)
        with pytest.raises(RouteInvalidError):
            await resolver.get_quote(USDC, USDC_ARB, 1_000_000, 0.5)


class TestBridgeHelpers:
    """Tests for cost, risk and batching."""

    def test_calculate_cost(self):
        cost = calculate_cost(make_route())

        assert cost.gas_cost == Decimal("0.3")
        assert cost.protocol_fees == Decimal("0.06")
        assert cost.total == Decimal("0.36")
        assert cost.estimated_seconds == 120
        # 100 - 99.5 - 0.3 - 0.06 = 0.14 USD lost to price impact
        assert cost.price_impact == Decimal("0.14")

    def test_route_estimate_and_fees(self):
        route = make_route()
        assert route.estimate.duration_seconds == 120
        assert route.estimate.slippage == 0.005
        assert route.fees.breakdown == {"LP fee": Decimal("0.06")}

    def test_assess_risk_thresholds(self):
        assert assess_risk(make_route(fromAmountUSD="999")).level == RiskLevel.LOW
        medium = assess_risk(make_route(fromAmountUSD="1000"))
        assert medium.level == RiskLevel.MEDIUM
        assert medium.suggest_batch is True
        assert assess_risk(make_route(fromAmountUSD="10000")).level == RiskLevel.HIGH

    def test_split_into_batches_remainder_on_last(self):
        request = BridgeRouteRequest(1, 42161, USDC.contract_address, USDC_ARB.contract_address, 100, "0xabc")
        batches = split_into_batches(request, 3)

        assert [b.from_amount for b in batches] == [33, 33, 34]
        assert sum(b.from_amount for b in batches) == 100
        assert all(b.to_chain_id == 42161 for b in batches)

    def test_split_rejects_zero_batches(self):
        request = BridgeRouteRequest(1, 42161, "a", "b", 100, "0xabc")
        with pytest.raises(ValueError):
            split_into_batches(request, 0)

    @pytest.mark.asyncio
    async def test_resolver_picks_first_route(self):
        aggregator = FakeAggregator()
        aggregator.routes = [make_route("best"), make_route("second")]
        resolver = BridgeRouteResolver(aggregator)

        request = BridgeRouteRequest(1, 42161, "a", "b", 100, "0xabc")
        assert (await resolver.get_route(request)).id == "best"

    @pytest.mark.asyncio
    async def test_resolver_without_routes(self):
        aggregator = FakeAggregator()
        aggregator.routes = []
        resolver = BridgeRouteResolver(aggregator)

        with pytest.raises(RouteInvalidError, match="No routes found"):
            await resolver.get_route(BridgeRouteRequest(1, 42161, "a", "b", 100, "0xabc"))


class TestBridgePriority:
    """Tests for route priority ordering."""

    def test_order_mapping(self):
        assert BridgePriority.FASTEST.order == "FASTEST"
        assert BridgePriority.BALANCED.order == "RECOMMENDED"
        assert BridgePriority.CHEAPEST.order == "CHEAPEST"

    def test_request_defaults_to_balanced(self):
        request = BridgeRouteRequest(1, 42161, USDC.contract_address, USDC_ARB.contract_address, 1, "0x")
        assert request.order == "RECOMMENDED"
        assert request.max_price_impact is None


class TestLatestOnlyFetcher:
    """Tests for debounced, latest-only fetching."""

    @pytest.mark.asyncio
    async def test_stale_result_is_discarded(self):
        """Test that a slow early fetch never overwrites a newer result."""
        results, errors = [], []
        fetcher = LatestOnlyFetcher(results.append, errors.append, delay=0)
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "old"

        async def fast():
            return "new"

        fetcher.submit(slow)
        await asyncio.sleep(0)
        fetcher.submit(fast)
        await asyncio.sleep(0)
        release.set()
        await fetcher.wait()

        assert results == ["new"]
        assert errors == []
        assert fetcher.is_fetching is False

    @pytest.mark.asyncio
    async def test_debounce_coalesces_rapid_submissions(self):
        results = []
        calls = []
        fetcher = LatestOnlyFetcher(results.append, lambda e: None, delay=0.01)

        def make(n):
            async def fetch():
                calls.append(n)
                return n
            return fetch

        for n in range(5):
            fetcher.submit(make(n))
        await fetcher.wait()

        assert calls == [4]
        assert results == [4]

    @pytest.mark.asyncio
    async def test_stale_error_is_ignored(self):
        results, errors = [], []
        fetcher = LatestOnlyFetcher(results.append, errors.append, delay=0)
        release = asyncio.Event()

        async def failing():
            await release.wait()
            raise RuntimeError("late failure")

        fetcher.submit(failing)
        await asyncio.sleep(0)
        fetcher.abandon()
        release.set()
        await fetcher.wait()

        assert results == []
        assert errors == []

    @pytest.mark.asyncio
    async def test_current_error_is_reported(self):
        errors = []
        fetcher = LatestOnlyFetcher(lambda r: None, errors.append, delay=0)

        async def failing():
            raise RuntimeError("boom")

        fetcher.submit(failing)
        await fetcher.wait()

        assert len(errors) == 1
        assert str(errors[0]) == "boom"
