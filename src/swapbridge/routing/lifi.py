"""LI.FI bridge aggregator integration.

Routes come from ``POST /advanced/routes`` and are cached by id; executable
transactions for a route's steps come from ``POST /advanced/stepTransaction``.
API docs: https://docs.li.fi/li.fi-api/li.fi-api
"""

import logging
import time
from typing import Any, Optional

import httpx

from swapbridge.errors import NetworkUnavailableError, RouteInvalidError, map_bridge_error
from swapbridge.routing.base import (
    BridgeAggregator,
    BridgeRoute,
    BridgeRouteRequest,
    BridgeStatus,
    RouteValidation,
)
from swapbridge.signing.base import TxRequest

logger = logging.getLogger(__name__)

LIFI_API_URL = "https://li.quest/v1"

# LI.FI quotes are short lived; treat older cached routes as expired
ROUTE_TTL_SECONDS = 600


def _parse_quantity(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class LiFiClient(BridgeAggregator):
    """LI.FI REST API client."""

    def __init__(
        self,
        api_url: str = LIFI_API_URL,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        preferred_bridges: Optional[list[str]] = None,
        route_ttl_seconds: float = ROUTE_TTL_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize LI.FI client.

        Args:
            api_url: API base URL
            api_key: Optional API key (higher rate limits)
            timeout: Request timeout in seconds
            preferred_bridges: Bridges to prefer when ranking routes
            route_ttl_seconds: Age after which a cached route is treated as expired
            transport: Optional httpx transport (used by tests)
        """
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.preferred_bridges = preferred_bridges or []
        self.route_ttl_seconds = route_ttl_seconds
        self._transport = transport

        # route id -> (raw route json, fetched at)
        self._routes: dict[str, tuple[dict, float]] = {}

    @property
    def name(self) -> str:
        return "LI.FI"

    def _get_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            headers=self._get_headers(),
            transport=self._transport,
        )

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"LI.FI {method} {path} failed: {e}")
            raise NetworkUnavailableError(f"LI.FI unreachable: {e}") from e

    def _raise_for_status(self, response: httpx.Response, what: str) -> None:
        if response.status_code < 400:
            return
        error_text = f"LI.FI API error: {response.status_code} - {response.text}"
        logger.error(f"{what}: {error_text}")
        if response.status_code >= 500:
            raise NetworkUnavailableError(error_text)
        _, message = map_bridge_error(response.text or error_text)
        raise RouteInvalidError(message, errors=[error_text])

    # ======================
    # Routes
    # ======================

    async def search_routes(self, request: BridgeRouteRequest) -> list[BridgeRoute]:
        """Search ranked routes, best first."""
        options: dict[str, Any] = {
            "slippage": request.slippage / 100,
            "order": request.order,
        }
        if request.max_price_impact is not None:
            options["maxPriceImpact"] = request.max_price_impact
        if self.preferred_bridges:
            options["bridges"] = {"prefer": self.preferred_bridges}

        body = {
            "fromChainId": request.from_chain_id,
            "toChainId": request.to_chain_id,
            "fromTokenAddress": request.from_token,
            "toTokenAddress": request.to_token,
            "fromAmount": str(request.from_amount),
            "fromAddress": request.from_address,
            "toAddress": request.to_address or request.from_address,
            "options": options,
        }

        response = await self._send("POST", "/advanced/routes", json=body)
        self._raise_for_status(response, "Route search failed")

        raw_routes = response.json().get("routes") or []
        now = time.monotonic()
        self._prune_expired(now)
        routes = []
        for raw in raw_routes:
            route = BridgeRoute.model_validate(raw)
            self._routes[route.id] = (raw, now)
            routes.append(route)

        logger.info(
            f"LI.FI returned {len(routes)} route(s) for "
            f"{request.from_chain_id}->{request.to_chain_id}"
        )
        return routes

    def _prune_expired(self, now: float) -> None:
        expired = [
            route_id for route_id, (_, fetched_at) in self._routes.items()
            if now - fetched_at > self.route_ttl_seconds
        ]
        for route_id in expired:
            del self._routes[route_id]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired route(s)")

    def _cached_route(self, route_id: str) -> Optional[dict]:
        cached = self._routes.get(route_id)
        if cached is None:
            return None
        raw, fetched_at = cached
        if time.monotonic() - fetched_at > self.route_ttl_seconds:
            logger.debug(f"Route {route_id} expired")
            self._routes.pop(route_id, None)
            return None
        return raw

    async def _step_transaction(self, step: dict) -> httpx.Response:
        return await self._send("POST", "/advanced/stepTransaction", json=step)

    @staticmethod
    def _to_tx_request(tx: dict, default_chain_id: int) -> TxRequest:
        gas_limit = tx.get("gasLimit")
        return TxRequest(
            to=tx["to"],
            data=tx.get("data") or "0x",
            value=_parse_quantity(tx.get("value")),
            chain_id=int(tx.get("chainId") or default_chain_id),
            gas_limit=_parse_quantity(gas_limit) if gas_limit else None,
        )

    async def get_executable_steps(self, route_id: str) -> list[TxRequest]:
        """Fetch the signed-ready transaction of every step of a cached route.

        Raises:
            RouteInvalidError: Route unknown, expired, or a step is not executable
        """
        raw = self._cached_route(route_id)
        if raw is None:
            raise RouteInvalidError("Route not found or expired")

        transactions = []
        for step in raw.get("steps", []):
            response = await self._step_transaction(step)
            self._raise_for_status(response, f"Step transaction for {route_id}")

            tx = response.json().get("transactionRequest")
            if not tx:
                raise RouteInvalidError("Route is not executable: missing transaction request")

            chain_id = step.get("action", {}).get("fromChainId") or raw.get("fromChainId") or 1
            transactions.append(self._to_tx_request(tx, chain_id))

        return transactions

    async def validate_route(self, route_id: str) -> RouteValidation:
        """Check a route can still execute. Never raises."""
        if not route_id or not route_id.strip():
            return RouteValidation(valid=False, errors=["Missing route id"])

        raw = self._cached_route(route_id)
        if raw is None or not raw.get("steps"):
            return RouteValidation(valid=False, errors=["Route not found or expired"])

        errors: list[str] = []
        try:
            response = await self._step_transaction(raw["steps"][0])
        except NetworkUnavailableError as e:
            _, message = map_bridge_error(e)
            return RouteValidation(valid=False, errors=[message])

        if response.status_code == 404:
            return RouteValidation(valid=False, errors=["Route not found or expired"])
        if response.status_code >= 400:
            return RouteValidation(
                valid=False, errors=[f"Route validation failed: {response.status_code}"]
            )

        data = response.json()
        if not data.get("transactionRequest"):
            errors.append("Route is not executable: missing transaction request")
        if str((data.get("execution") or {}).get("status", "")).upper() == "FAILED":
            errors.append("Route execution status is failed")

        return RouteValidation(valid=not errors, errors=errors)

    # ======================
    # Status
    # ======================

    async def get_status(
        self,
        tx_hash: str,
        from_chain_id: Optional[int] = None,
        to_chain_id: Optional[int] = None,
    ) -> BridgeStatus:
        params: dict[str, Any] = {"txHash": tx_hash}
        if from_chain_id is not None:
            params["fromChain"] = from_chain_id
        if to_chain_id is not None:
            params["toChain"] = to_chain_id

        response = await self._send("GET", "/status", params=params)
        if response.status_code == 404:
            return BridgeStatus(phase="NOT_FOUND", source_tx_hash=tx_hash)
        if response.status_code >= 400:
            raise NetworkUnavailableError(
                f"Status check failed: {response.status_code} - {response.text}"
            )

        data = response.json()
        return BridgeStatus(
            phase=str(data.get("status", "PENDING")).upper(),
            substatus=data.get("substatus"),
            message=data.get("substatusMessage"),
            source_tx_hash=(data.get("sending") or {}).get("txHash") or tx_hash,
            destination_tx_hash=(data.get("receiving") or {}).get("txHash"),
        )


def create_lifi_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> LiFiClient:
    """Create a LI.FI client from settings."""
    from swapbridge.config import get_settings

    settings = get_settings()
    return LiFiClient(
        api_url=settings.lifi_api_url,
        api_key=settings.lifi_api_key,
        timeout=settings.lifi_timeout_seconds,
        preferred_bridges=settings.preferred_bridges,
        transport=transport,
    )
