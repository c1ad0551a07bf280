"""Chain access: contract call encoding and the RPC client interface."""

from swapbridge.chain.abi import ContractCall, decode_output, encode_call
from swapbridge.chain.client import (
    ChainClient,
    FeeData,
    TxReceipt,
    Web3ChainClient,
    get_chain_client,
)

__all__ = [
    "ChainClient",
    "ContractCall",
    "FeeData",
    "TxReceipt",
    "Web3ChainClient",
    "decode_output",
    "encode_call",
    "get_chain_client",
]
