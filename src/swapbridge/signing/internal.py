"""Internal signing backend.

Signs with the session key held by the custody module and broadcasts through
a chain RPC client. Usable only while custody is unlocked and its active
account is on the chain being signed for.

WARNING: The private key lives in memory for the whole session.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from eth_account import Account

from swapbridge.chain.abi import ContractCall
from swapbridge.chain.client import ChainClient, TxReceipt
from swapbridge.errors import SignerUnavailableError
from swapbridge.signing.base import (
    KeyCustody,
    SignerBackend,
    SignerType,
    TxHandle,
    TxRequest,
)

logger = logging.getLogger(__name__)


class InternalSigner(SignerBackend):
    """Local signer using the custody module's key."""

    def __init__(
        self,
        custody: KeyCustody,
        client: ChainClient,
        chain_id: int,
        private_key: str,
        fallback_gas_limit: int = 200_000,
        fallback_gas_price_gwei: Decimal = Decimal("50"),
    ):
        super().__init__(SignerType.INTERNAL, fallback_gas_limit, fallback_gas_price_gwei)
        self.custody = custody
        self.client = client
        self.chain_id = chain_id
        self._account = Account.from_key(private_key)

        # Nonce tracking per address
        self._nonce_locks: dict[str, asyncio.Lock] = {}
        self._next_nonce: dict[str, int] = {}

    @property
    def address(self) -> Optional[str]:
        return self._account.address

    def is_ready(self, chain_id: int) -> bool:
        active = self.custody.active_address
        return (
            self.custody.is_unlocked
            and chain_id == self.chain_id
            and self.custody.active_chain_id == chain_id
            and active is not None
            and active.lower() == self._account.address.lower()
        )

    async def read_contract(self, call: ContractCall) -> tuple:
        return await self.client.read_contract(call)

    async def get_native_balance(self) -> int:
        return await self.client.get_balance(self._account.address)

    def _get_nonce_lock(self, address: str) -> asyncio.Lock:
        if address not in self._nonce_locks:
            self._nonce_locks[address] = asyncio.Lock()
        return self._nonce_locks[address]

    async def _reserve_nonce(self, address: str) -> int:
        """Next nonce: max of the chain's pending count and our own counter."""
        pending = await self.client.get_transaction_count(address)
        nonce = max(pending, self._next_nonce.get(address, 0))
        self._next_nonce[address] = nonce + 1
        return nonce

    async def _build_tx(self, tx: TxRequest, nonce: int) -> dict:
        from web3 import Web3

        gas = tx.gas_limit or await self.estimate_gas(tx)
        fees = await self.client.get_fee_data()

        built = {
            "from": self._account.address,
            "to": Web3.to_checksum_address(tx.to),
            "data": tx.data,
            "value": tx.value,
            "chainId": tx.chain_id,
            "nonce": nonce,
            "gas": gas,
        }
        if fees.max_fee_per_gas is not None:
            built["maxFeePerGas"] = fees.max_fee_per_gas
            built["maxPriorityFeePerGas"] = fees.max_priority_fee_per_gas
        else:
            built["gasPrice"] = fees.gas_price
        return built

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        if not self.is_ready(tx.chain_id):
            raise SignerUnavailableError(
                f"Session signer unavailable for chain {tx.chain_id} (locked or wrong network)"
            )

        address = self._account.address
        async with self._get_nonce_lock(address):
            nonce = await self._reserve_nonce(address)
            try:
                built = await self._build_tx(tx, nonce)
                signed = self._account.sign_transaction(built)
                tx_hash = await self.client.send_raw_transaction(signed.raw_transaction)
            except Exception:
                # Resync from the chain on the next send
                self._next_nonce.pop(address, None)
                raise

        logger.info(f"Broadcast {tx_hash} on chain {tx.chain_id}: nonce={nonce}, gas={built['gas']}")
        return TxHandle(tx_hash=tx_hash, chain_id=tx.chain_id, signer_type=self.signer_type)

    async def wait_for_receipt(self, handle: TxHandle, timeout: float = 300.0) -> TxReceipt:
        return await self.client.wait_for_receipt(handle.tx_hash, timeout=timeout)

    async def _call(self, tx: TxRequest) -> bytes:
        return await self.client.call({
            "from": self._account.address,
            "to": tx.to,
            "data": tx.data,
            "value": tx.value,
        })

    async def _estimate_gas(self, tx: TxRequest) -> int:
        return await self.client.estimate_gas({
            "from": self._account.address,
            "to": tx.to,
            "data": tx.data,
            "value": tx.value,
        })

    async def _fetch_gas_price_wei(self) -> int:
        fees = await self.client.get_fee_data()
        return fees.gas_price
