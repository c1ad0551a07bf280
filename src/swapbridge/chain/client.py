"""Chain RPC client interface and a web3.py implementation.

The engine only depends on ``ChainClient``; ``Web3ChainClient`` talks to an
EVM JSON-RPC endpoint through ``AsyncWeb3``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from swapbridge.chain.abi import ERC20_BALANCE_OF, ContractCall, decode_output, encode_call
from swapbridge.errors import NetworkUnavailableError, ReceiptTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class TxReceipt:
    """Minimal view of a transaction receipt."""

    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass
class FeeData:
    """Current fee market data in wei."""

    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


class ChainClient(ABC):
    """Read and broadcast access to one EVM chain."""

    @abstractmethod
    async def chain_id(self) -> int:
        pass

    @abstractmethod
    async def get_balance(self, address: str, token: Optional[str] = None) -> int:
        """Native balance when ``token`` is None, ERC20 balance otherwise."""
        pass

    @abstractmethod
    async def read_contract(self, call: ContractCall) -> tuple:
        pass

    @abstractmethod
    async def call(self, tx: dict) -> bytes:
        """Execute ``tx`` with eth_call against the latest block."""
        pass

    @abstractmethod
    async def estimate_gas(self, tx: dict) -> int:
        pass

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        pass

    @abstractmethod
    async def get_code(self, address: str) -> bytes:
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str) -> int:
        """Pending nonce for an address."""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Broadcast a signed transaction, returning its 0x-prefixed hash."""
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float = 300.0) -> TxReceipt:
        pass


class Web3ChainClient(ChainClient):
    """ChainClient backed by web3.py's AsyncWeb3 over HTTP."""

    def __init__(self, rpc_url: str, request_timeout: float = 30.0, receipt_poll_interval: float = 2.0):
        self.rpc_url = rpc_url
        self.request_timeout = request_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self._web3 = None
        self._chain_id: Optional[int] = None

    @property
    def web3(self):
        """Lazy load AsyncWeb3 instance."""
        if self._web3 is None:
            from web3 import AsyncWeb3
            self._web3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(
                    self.rpc_url,
                    request_kwargs={"timeout": self.request_timeout},
                )
            )
        return self._web3

    def _checksum(self, address: str) -> str:
        from web3 import Web3
        return Web3.to_checksum_address(address)

    async def _rpc(self, coro, what: str):
        try:
            return await coro
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"RPC {what} failed on {self.rpc_url}: {e}")
            raise NetworkUnavailableError(f"RPC unavailable: {e}") from e

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._rpc(self.web3.eth.chain_id, "chain_id")
        return self._chain_id

    async def get_balance(self, address: str, token: Optional[str] = None) -> int:
        if token is None:
            return await self._rpc(
                self.web3.eth.get_balance(self._checksum(address)), "get_balance"
            )
        (balance,) = await self.read_contract(
            ContractCall(token, ERC20_BALANCE_OF, (address,), ("uint256",))
        )
        return balance

    async def read_contract(self, call: ContractCall) -> tuple:
        data = encode_call(call.signature, call.args)
        raw = await self._rpc(
            self.web3.eth.call({"to": self._checksum(call.address), "data": data}),
            call.signature,
        )
        return decode_output(call.output_types, bytes(raw))

    async def call(self, tx: dict) -> bytes:
        tx = dict(tx, to=self._checksum(tx["to"]))
        return bytes(await self._rpc(self.web3.eth.call(tx), "call"))

    async def estimate_gas(self, tx: dict) -> int:
        return await self._rpc(self.web3.eth.estimate_gas(tx), "estimate_gas")

    async def get_fee_data(self) -> FeeData:
        gas_price = await self._rpc(self.web3.eth.gas_price, "gas_price")
        try:
            priority = await self.web3.eth.max_priority_fee
        except Exception as e:
            # Pre-London chains do not support eth_maxPriorityFeePerGas
            logger.debug(f"max_priority_fee unavailable: {e}")
            priority = None
        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=gas_price + priority if priority is not None else None,
            max_priority_fee_per_gas=priority,
        )

    async def get_code(self, address: str) -> bytes:
        code = await self._rpc(self.web3.eth.get_code(self._checksum(address)), "get_code")
        return bytes(code)

    async def get_transaction_count(self, address: str) -> int:
        return await self._rpc(
            self.web3.eth.get_transaction_count(self._checksum(address), "pending"),
            "get_transaction_count",
        )

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        from web3 import Web3
        tx_hash = await self._rpc(
            self.web3.eth.send_raw_transaction(raw_tx), "send_raw_transaction"
        )
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 300.0) -> TxReceipt:
        """Poll for the receipt until ``timeout``.

        Failed polls are retried until the deadline.

        Raises:
            ReceiptTimeoutError: No receipt before the deadline
        """
        from web3.exceptions import TransactionNotFound

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self._rpc(
                    self.web3.eth.get_transaction_receipt(tx_hash), "get_transaction_receipt"
                )
            except TransactionNotFound:
                receipt = None
            except NetworkUnavailableError as e:
                logger.warning(f"Receipt poll for {tx_hash} failed, retrying: {e}")
                receipt = None

            if receipt is not None:
                break
            if loop.time() >= deadline:
                raise ReceiptTimeoutError(tx_hash, timeout)
            await asyncio.sleep(self.receipt_poll_interval)

        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )


_clients: dict[str, Web3ChainClient] = {}


def get_chain_client(rpc_url: str) -> Web3ChainClient:
    """Get a cached client for an RPC URL."""
    if rpc_url not in _clients:
        _clients[rpc_url] = Web3ChainClient(rpc_url)
    return _clients[rpc_url]
