"""Spending approval for same-chain swaps."""

import logging
from typing import Optional

from swapbridge.chain.abi import MAX_UINT256
from swapbridge.errors import TransactionFailedError
from swapbridge.signing.base import SignerBackend
from swapbridge.tokens import TokenInfo

logger = logging.getLogger(__name__)


class AllowanceManager:
    """Reads and sets the router's allowance over the input token.

    Approvals are for the maximum amount, so a pair is approved once.
    """

    def __init__(self, signer: SignerBackend, spender: str, receipt_timeout: float = 300.0):
        self.signer = signer
        self.spender = spender
        self.receipt_timeout = receipt_timeout

    @staticmethod
    def requires_approval(token: TokenInfo) -> bool:
        return not token.is_native

    async def read(self, token: TokenInfo) -> Optional[int]:
        """Current allowance; None for tokens that need no approval."""
        if not self.requires_approval(token):
            return None
        return await self.signer.get_allowance(token, self.spender)

    async def approve_max(self, token: TokenInfo) -> Optional[int]:
        """Approve the maximum amount, wait for the receipt, then re-read.

        Raises:
            UserRejectedError: Signer declined
            TransactionFailedError: Approval reverted
        """
        handle = await self.signer.approve(token, self.spender, MAX_UINT256)
        receipt = await self.signer.wait_for_receipt(handle, timeout=self.receipt_timeout)
        if not receipt.succeeded:
            raise TransactionFailedError(
                f"Approval of {token.symbol} reverted", tx_hash=handle.tx_hash
            )

        allowance = await self.read(token)
        logger.info(f"Approved {token.symbol} for {self.spender}: allowance now {allowance}")
        return allowance
