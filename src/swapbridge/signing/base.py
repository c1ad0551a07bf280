"""Base interfaces for signer backends.

A signer backend is the only component that knows where the key lives.
Engines and resolvers depend on ``SignerBackend`` and never branch on the
concrete variant.

Signing flow:
1. Engine builds a ``TxRequest`` (approve, swap or bridge step)
2. Backend signs (locally or via the injected wallet) and broadcasts
3. Backend returns a ``TxHandle``
4. Engine waits for the receipt through the same backend
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from swapbridge.chain.abi import (
    ERC20_ALLOWANCE,
    ERC20_APPROVE,
    ERC20_BALANCE_OF,
    MAX_UINT256,
    ROUTER_SWAP,
    ContractCall,
    encode_call,
)
from swapbridge.chain.client import TxReceipt
from swapbridge.errors import NetworkUnavailableError, RouteInvalidError, UserRejectedError
from swapbridge.tokens import TokenInfo

logger = logging.getLogger(__name__)

WEI_PER_GWEI = Decimal(10**9)


class SignerType(str, Enum):
    """Type of signing backend."""
    EXTERNAL = "external"     # Injected wallet, signing is opaque to us
    INTERNAL = "internal"     # Session key from the custody module


class ProtectionLevel(IntEnum):
    """MEV protection level accepted by the swap router."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2


@dataclass
class TxRequest:
    """Unsigned transaction to broadcast.

    Attributes:
        to: Destination contract or account
        data: Calldata as 0x-prefixed hex
        value: Native value in wei
        chain_id: Chain the transaction must be sent on
        gas_limit: Optional explicit gas limit (estimated when None)
    """
    to: str
    data: str = "0x"
    value: int = 0
    chain_id: int = 1
    gas_limit: Optional[int] = None

    def to_rpc_dict(self, sender: str) -> dict:
        """JSON-RPC transaction object (hex quantities)."""
        tx = {
            "from": sender,
            "to": self.to,
            "data": self.data,
            "value": hex(self.value),
            "chainId": hex(self.chain_id),
        }
        if self.gas_limit is not None:
            tx["gas"] = hex(self.gas_limit)
        return tx


@dataclass
class SwapParams:
    """Parameters of a router swap call."""
    router: str
    token_in: TokenInfo
    token_out: TokenInfo
    amount_in: int
    min_amount_out: int
    recipient: str
    deadline: int
    protection: ProtectionLevel = ProtectionLevel.MEDIUM

    @property
    def chain_id(self) -> int:
        return self.token_in.chain_id

    def to_tx_request(self) -> TxRequest:
        """Encode the router ``swap`` call."""
        data = encode_call(ROUTER_SWAP, [(
            self.token_in.contract_address,
            self.token_out.contract_address,
            self.amount_in,
            self.min_amount_out,
            self.recipient,
            self.deadline,
            int(self.protection),
        )])
        return TxRequest(
            to=self.router,
            data=data,
            value=self.amount_in if self.token_in.is_native else 0,
            chain_id=self.chain_id,
        )


@dataclass
class TxHandle:
    """A broadcast transaction."""
    tx_hash: str
    chain_id: int
    signer_type: SignerType


class SignerBackend(ABC):
    """Abstract base class for signer backends.

    Subclasses provide the transport (``read_contract``, ``send_transaction``,
    ``wait_for_receipt`` and the raw gas queries); token reads, approvals and
    swaps are built on top of those here so both variants share one contract.
    """

    def __init__(
        self,
        signer_type: SignerType,
        fallback_gas_limit: int = 200_000,
        fallback_gas_price_gwei: Decimal = Decimal("50"),
    ):
        self.signer_type = signer_type
        self.fallback_gas_limit = fallback_gas_limit
        self.fallback_gas_price_gwei = fallback_gas_price_gwei
        self._last_gas_price: Optional[Decimal] = None

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        """Account that signs, or None when not connected."""
        pass

    @abstractmethod
    def is_ready(self, chain_id: int) -> bool:
        """Check the backend can sign for ``chain_id`` right now."""
        pass

    @abstractmethod
    async def read_contract(self, call: ContractCall) -> tuple:
        pass

    @abstractmethod
    async def get_native_balance(self) -> int:
        pass

    @abstractmethod
    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        """Sign and broadcast a transaction.

        Raises:
            UserRejectedError: The signer declined
            SignerUnavailableError: Backend not usable for ``tx.chain_id``
        """
        pass

    @abstractmethod
    async def wait_for_receipt(self, handle: TxHandle, timeout: float = 300.0) -> TxReceipt:
        pass

    @abstractmethod
    async def _call(self, tx: TxRequest) -> Any:
        """eth_call of ``tx`` from the signer's account."""
        pass

    @abstractmethod
    async def _estimate_gas(self, tx: TxRequest) -> int:
        pass

    @abstractmethod
    async def _fetch_gas_price_wei(self) -> int:
        pass

    async def get_balance(self, token: TokenInfo) -> int:
        """Balance of ``token`` in its smallest unit."""
        if token.is_native:
            return await self.get_native_balance()
        (balance,) = await self.read_contract(
            ContractCall(token.contract_address, ERC20_BALANCE_OF, (self.address,))
        )
        return balance

    async def get_allowance(self, token: TokenInfo, spender: str) -> int:
        """Allowance granted by the signer to ``spender``."""
        if token.is_native:
            return MAX_UINT256
        (allowance,) = await self.read_contract(
            ContractCall(token.contract_address, ERC20_ALLOWANCE, (self.address, spender))
        )
        return allowance

    async def approve(self, token: TokenInfo, spender: str, amount: int) -> TxHandle:
        logger.info(f"Approving {token.symbol} for {spender} via {self.signer_type.value} signer")
        return await self.send_transaction(TxRequest(
            to=token.contract_address,
            data=encode_call(ERC20_APPROVE, (spender, amount)),
            chain_id=token.chain_id,
        ))

    async def execute_swap(self, params: SwapParams) -> TxHandle:
        logger.info(
            f"Swapping {params.amount_in} {params.token_in.symbol} -> {params.token_out.symbol} "
            f"(min out {params.min_amount_out})"
        )
        return await self.send_transaction(params.to_tx_request())

    async def simulate(self, tx: TxRequest) -> None:
        """Dry-run ``tx`` without signing.

        Raises:
            RouteInvalidError: The call reverts
            NetworkUnavailableError: Node or wallet unreachable
        """
        try:
            await self._call(tx)
        except (NetworkUnavailableError, UserRejectedError):
            raise
        except Exception as e:
            logger.warning(f"Simulation of call to {tx.to} failed: {e}")
            raise RouteInvalidError(f"Transaction simulation failed: {e}") from e

    async def estimate_gas(self, params: Union[SwapParams, TxRequest]) -> int:
        """Best-effort gas estimate; returns the fallback limit on failure."""
        tx = params.to_tx_request() if isinstance(params, SwapParams) else params
        try:
            return await self._estimate_gas(tx)
        except Exception as e:
            logger.warning(f"Gas estimation failed, using fallback {self.fallback_gas_limit}: {e}")
            return self.fallback_gas_limit

    async def get_gas_price(self) -> Decimal:
        """Gas price in gwei; last known value or the fallback on failure."""
        try:
            wei = await self._fetch_gas_price_wei()
        except Exception as e:
            fallback = self._last_gas_price or self.fallback_gas_price_gwei
            logger.debug(f"Gas price unavailable, using {fallback} gwei: {e}")
            return fallback

        self._last_gas_price = Decimal(wei) / WEI_PER_GWEI
        return self._last_gas_price

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value}, address={self.address})"


# ======================
# Collaborators
# ======================

USER_REJECTED_CODE = 4001


class WalletRequestError(Exception):
    """Error returned by an injected wallet (EIP-1193 provider error)."""

    def __init__(self, code: int, message: str = ""):
        super().__init__(message or f"Wallet error {code}")
        self.code = code
        self.message = message or f"Wallet error {code}"


class WalletProvider(ABC):
    """Injected wallet request/response channel (EIP-1193 style)."""

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        pass

    @property
    @abstractmethod
    def chain_id(self) -> Optional[int]:
        pass

    @abstractmethod
    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send a JSON-RPC request through the wallet.

        Raises:
            WalletRequestError: With code 4001 when the user rejects
        """
        pass


class KeyCustody(ABC):
    """Session key custody module."""

    @property
    @abstractmethod
    def is_unlocked(self) -> bool:
        pass

    @property
    @abstractmethod
    def active_address(self) -> Optional[str]:
        pass

    @property
    @abstractmethod
    def active_chain_id(self) -> Optional[int]:
        pass

    @abstractmethod
    def export_private_key(self) -> Optional[str]:
        """Raw key of the active account while unlocked, else None."""
        pass
