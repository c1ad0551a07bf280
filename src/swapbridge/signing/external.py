"""External signing backend.

Delegates every call to an injected wallet provider. The wallet holds the
key; we only see request results, and the user may reject any signature
request.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Optional

from swapbridge.chain.abi import ContractCall, decode_output, encode_call
from swapbridge.chain.client import TxReceipt
from swapbridge.errors import (
    NetworkUnavailableError,
    ReceiptTimeoutError,
    SignerUnavailableError,
    TransactionFailedError,
    UserRejectedError,
)
from swapbridge.signing.base import (
    USER_REJECTED_CODE,
    SignerBackend,
    SignerType,
    TxHandle,
    TxRequest,
    WalletProvider,
    WalletRequestError,
)

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string, decimal string or int)."""
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class ExternalSigner(SignerBackend):
    """Signer backed by an injected wallet."""

    def __init__(
        self,
        provider: WalletProvider,
        fallback_gas_limit: int = 200_000,
        fallback_gas_price_gwei: Decimal = Decimal("50"),
        receipt_poll_interval: float = 2.0,
    ):
        super().__init__(SignerType.EXTERNAL, fallback_gas_limit, fallback_gas_price_gwei)
        self.provider = provider
        self.receipt_poll_interval = receipt_poll_interval

    @property
    def address(self) -> Optional[str]:
        return self.provider.address

    def is_ready(self, chain_id: int) -> bool:
        return self.provider.address is not None and self.provider.chain_id == chain_id

    async def _request(self, method: str, params: Optional[list] = None) -> Any:
        try:
            return await self.provider.request(method, params)
        except WalletRequestError as e:
            if e.code == USER_REJECTED_CODE:
                logger.info(f"User rejected {method}")
                raise UserRejectedError(e.message) from e
            raise TransactionFailedError(e.message) from e
        except (OSError, asyncio.TimeoutError) as e:
            raise NetworkUnavailableError(f"Wallet provider unreachable: {e}") from e

    async def read_contract(self, call: ContractCall) -> tuple:
        data = encode_call(call.signature, call.args)
        result = await self._request("eth_call", [{"to": call.address, "data": data}, "latest"])
        return decode_output(call.output_types, result)

    async def get_native_balance(self) -> int:
        return _to_int(await self._request("eth_getBalance", [self.address, "latest"]))

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        if not self.is_ready(tx.chain_id):
            raise SignerUnavailableError(
                f"Wallet not connected to chain {tx.chain_id}"
            )

        tx_hash = await self._request("eth_sendTransaction", [tx.to_rpc_dict(self.address)])
        logger.info(f"Wallet broadcast {tx_hash} on chain {tx.chain_id}")
        return TxHandle(tx_hash=tx_hash, chain_id=tx.chain_id, signer_type=self.signer_type)

    async def wait_for_receipt(self, handle: TxHandle, timeout: float = 300.0) -> TxReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self._request("eth_getTransactionReceipt", [handle.tx_hash])
            except NetworkUnavailableError as e:
                logger.warning(f"Receipt poll for {handle.tx_hash} failed, retrying: {e}")
                receipt = None

            if receipt:
                return TxReceipt(
                    tx_hash=handle.tx_hash,
                    status=_to_int(receipt.get("status", "0x0")),
                    block_number=_to_int(receipt["blockNumber"]) if receipt.get("blockNumber") else None,
                    gas_used=_to_int(receipt["gasUsed"]) if receipt.get("gasUsed") else None,
                )

            if loop.time() >= deadline:
                raise ReceiptTimeoutError(handle.tx_hash, timeout)
            await asyncio.sleep(self.receipt_poll_interval)

    async def _call(self, tx: TxRequest) -> Any:
        return await self._request("eth_call", [tx.to_rpc_dict(self.address), "latest"])

    async def _estimate_gas(self, tx: TxRequest) -> int:
        return _to_int(await self._request("eth_estimateGas", [tx.to_rpc_dict(self.address)]))

    async def _fetch_gas_price_wei(self) -> int:
        return _to_int(await self._request("eth_gasPrice"))
