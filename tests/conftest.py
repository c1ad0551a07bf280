"""Pytest configuration and fixtures."""

import asyncio
import os
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"

from swapbridge.chain.abi import ERC20_ALLOWANCE, ERC20_BALANCE_OF, ContractCall
from swapbridge.chain.client import ChainClient, FeeData, TxReceipt
from swapbridge.config import Settings
from swapbridge.errors import UserRejectedError
from swapbridge.history.database import build_engine, init_db
from swapbridge.routing.base import (
    BridgeAggregator,
    BridgeRoute,
    BridgeRouteRequest,
    BridgeStatus,
    RouteValidation,
)
from swapbridge.signing.base import (
    KeyCustody,
    SignerBackend,
    SignerType,
    TxHandle,
    TxRequest,
    WalletProvider,
)
from swapbridge.tokens import ARBITRUM, ETHEREUM, NATIVE_TOKEN_ADDRESS, TokenInfo

SIGNER_ADDRESS = "0x" + "11" * 20
ROUTER_ADDRESS = "0x" + "22" * 20
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

ETH = TokenInfo("ETH", NATIVE_TOKEN_ADDRESS, 18, ETHEREUM, "Ether")
USDC = TokenInfo("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, ETHEREUM, "USD Coin")
WETH = TokenInfo("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18, ETHEREUM, "Wrapped Ether")
USDC_ARB = TokenInfo("USDC", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6, ARBITRUM, "USD Coin")


# ======================
# Fakes
# ======================

class FakeSigner(SignerBackend):
    """In-memory signer: balances and allowances are plain dicts."""

    def __init__(self, address: str = SIGNER_ADDRESS, chain_id: int = ETHEREUM):
        super().__init__(SignerType.EXTERNAL)
        self._address = address
        self.chain_id = chain_id
        self.native_balance = 0
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.sent: list[TxRequest] = []
        self.receipt_status = 1
        self.receipt_errors: list[Exception] = []
        self.reject = False
        self.simulate_error: Optional[Exception] = None
        self.simulated: list[TxRequest] = []
        self.gas_price_wei: Optional[int] = 20 * 10**9
        # Reads block on this event when set
        self.read_gate: Optional[asyncio.Event] = None
        self.read_started = asyncio.Event()

    async def _wait_for_gate(self) -> None:
        if self.read_gate is not None:
            self.read_started.set()
            await self.read_gate.wait()

    @property
    def address(self) -> Optional[str]:
        return self._address

    def is_ready(self, chain_id: int) -> bool:
        return self._address is not None and chain_id == self.chain_id

    async def read_contract(self, call: ContractCall) -> tuple:
        await self._wait_for_gate()
        token = call.address.lower()
        if call.signature == ERC20_BALANCE_OF:
            return (self.balances.get(token, 0),)
        if call.signature == ERC20_ALLOWANCE:
            return (self.allowances.get((token, call.args[1].lower()), 0),)
        raise AssertionError(f"unexpected call {call.signature}")

    async def get_native_balance(self) -> int:
        await self._wait_for_gate()
        return self.native_balance

    async def approve(self, token: TokenInfo, spender: str, amount: int) -> TxHandle:
        handle = await super().approve(token, spender, amount)
        if self.receipt_status == 1:
            self.allowances[(token.contract_address.lower(), spender.lower())] = amount
        return handle

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        if self.reject:
            raise UserRejectedError("User denied transaction signature")
        self.sent.append(tx)
        tx_hash = "0x" + f"{len(self.sent):064x}"
        return TxHandle(tx_hash=tx_hash, chain_id=tx.chain_id, signer_type=self.signer_type)

    async def wait_for_receipt(self, handle: TxHandle, timeout: float = 300.0) -> TxReceipt:
        if self.receipt_errors:
            raise self.receipt_errors.pop(0)
        return TxReceipt(tx_hash=handle.tx_hash, status=self.receipt_status, block_number=100)

    async def _call(self, tx: TxRequest) -> Any:
        self.simulated.append(tx)
        if self.simulate_error is not None:
            raise self.simulate_error
        return b""

    async def _estimate_gas(self, tx: TxRequest) -> int:
        return 150_000

    async def _fetch_gas_price_wei(self) -> int:
        if self.gas_price_wei is None:
            raise OSError("rpc down")
        return self.gas_price_wei


class FakeChainClient(ChainClient):
    """Chain client answering router quotes and recording broadcasts."""

    def __init__(self, chain: int = ETHEREUM):
        self._chain = chain
        self.code = b"\x60\x80"
        self.route: list[str] = [USDC.contract_address, WETH.contract_address]
        self.expected_output = 500_000_000_000_000
        self.pending_nonce = 0
        self.raw_sent: list[bytes] = []
        self.fail_broadcast = False
        self.native_balance = 10**18
        self.calls: list[dict] = []

    async def chain_id(self) -> int:
        return self._chain

    async def get_balance(self, address: str, token: Optional[str] = None) -> int:
        return self.native_balance

    async def read_contract(self, call: ContractCall) -> tuple:
        return (self.route, self.expected_output)

    async def call(self, tx: dict) -> bytes:
        self.calls.append(tx)
        return b""

    async def estimate_gas(self, tx: dict) -> int:
        return 120_000

    async def get_fee_data(self) -> FeeData:
        return FeeData(
            gas_price=30 * 10**9,
            max_fee_per_gas=40 * 10**9,
            max_priority_fee_per_gas=2 * 10**9,
        )

    async def get_code(self, address: str) -> bytes:
        return self.code

    async def get_transaction_count(self, address: str) -> int:
        return self.pending_nonce

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        if self.fail_broadcast:
            raise OSError("connection reset")
        self.raw_sent.append(raw_tx)
        return "0x" + f"{len(self.raw_sent):064x}"

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 300.0) -> TxReceipt:
        return TxReceipt(tx_hash=tx_hash, status=1, block_number=1)


class FakeWallet(WalletProvider):
    """Injected wallet answering from a method -> result map.

    A result that is an exception instance is raised instead.
    """

    def __init__(self, address: Optional[str] = SIGNER_ADDRESS, chain_id: Optional[int] = ETHEREUM):
        self._address = address
        self._chain_id = chain_id
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, Optional[list]]] = []

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def chain_id(self) -> Optional[int]:
        return self._chain_id

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        self.calls.append((method, params))
        response = self.responses.get(method)
        if isinstance(response, list) and response and method == "eth_getTransactionReceipt":
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeCustody(KeyCustody):
    def __init__(self, private_key: Optional[str] = TEST_PRIVATE_KEY, chain_id: Optional[int] = ETHEREUM):
        from eth_account import Account

        self.private_key = private_key
        self.unlocked = True
        self.chain_id = chain_id
        self.address = Account.from_key(private_key).address if private_key else None

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked

    @property
    def active_address(self) -> Optional[str]:
        return self.address

    @property
    def active_chain_id(self) -> Optional[int]:
        return self.chain_id

    def export_private_key(self) -> Optional[str]:
        return self.private_key if self.unlocked else None


def make_route(route_id: str = "route-1", to_amount_usd: str = "99.5", **overrides) -> BridgeRoute:
    """Build a LI.FI style route for 100 USDC Ethereum -> Arbitrum."""
    raw = {
        "id": route_id,
        "fromChainId": ETHEREUM,
        "toChainId": ARBITRUM,
        "fromToken": {"address": USDC.contract_address, "symbol": "USDC", "decimals": 6, "chainId": ETHEREUM},
        "toToken": {"address": USDC_ARB.contract_address, "symbol": "USDC", "decimals": 6, "chainId": ARBITRUM},
        "fromAmount": "100000000",
        "toAmount": "99500000",
        "toAmountMin": "99000000",
        "fromAmountUSD": "100",
        "toAmountUSD": to_amount_usd,
        "steps": [
            {
                "id": "step-1",
                "type": "cross",
                "tool": "stargate",
                "action": {"slippage": 0.005},
                "estimate": {
                    "fromAmount": "100000000",
                    "toAmount": "99500000",
                    "executionDuration": 120,
                    "gasCosts": [{"name": "gas", "amount": "100", "amountUSD": "0.3"}],
                    "feeCosts": [{"name": "LP fee", "amount": "60000", "amountUSD": "0.06"}],
                },
            }
        ],
    }
    raw.update(overrides)
    return BridgeRoute.model_validate(raw)


class FakeAggregator(BridgeAggregator):
    """Scripted bridge aggregator.

    ``statuses`` is consumed one per call; the last entry repeats.
    """

    def __init__(self):
        self.routes: list[BridgeRoute] = [make_route()]
        self.validation = RouteValidation(valid=True)
        self.steps: list[TxRequest] = [TxRequest(to="0x" + "33" * 20, data="0xabcdef", chain_id=ETHEREUM)]
        self.statuses: list[Any] = [BridgeStatus(phase="DONE", destination_tx_hash="0x" + "dd" * 32)]
        self.requests: list[BridgeRouteRequest] = []
        self.status_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    async def search_routes(self, request: BridgeRouteRequest) -> list[BridgeRoute]:
        self.requests.append(request)
        return list(self.routes)

    async def get_executable_steps(self, route_id: str) -> list[TxRequest]:
        return list(self.steps)

    async def get_status(self, tx_hash, from_chain_id=None, to_chain_id=None) -> BridgeStatus:
        self.status_calls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    async def validate_route(self, route_id: str) -> RouteValidation:
        return self.validation


class FakeClock:
    """Monotonic clock advanced only by its own sleep."""

    def __init__(self, now: float = 1000.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ======================
# Fixtures
# ======================

@pytest.fixture
def settings() -> Settings:
    """Settings with no debounce and short timeouts."""
    return Settings(quote_debounce_ms=0, receipt_timeout_seconds=5.0)


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = build_engine("sqlite:///:memory:")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
