"""Contract call encoding for the swap router and ERC20 tokens.

Calls are described by their canonical signature, e.g.
``allowance(address,address)``, and encoded with eth-abi so the same
description works for a local RPC client and for an injected wallet.
"""

from dataclasses import dataclass, field
from typing import Any, Sequence, Union

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

MAX_UINT256 = 2**256 - 1

# ERC20
ERC20_BALANCE_OF = "balanceOf(address)"
ERC20_ALLOWANCE = "allowance(address,address)"
ERC20_APPROVE = "approve(address,uint256)"

# MultiHopSwapper
SWAP_PARAMS_TUPLE = "(address,address,uint256,uint256,address,uint256,uint8)"
ROUTER_GET_OPTIMAL_ROUTE = "getOptimalRoute(address,address,uint256)"
ROUTER_SWAP = f"swap({SWAP_PARAMS_TUPLE})"


@dataclass(frozen=True)
class ContractCall:
    """A read-only contract call."""

    address: str
    signature: str
    args: tuple = ()
    output_types: tuple[str, ...] = field(default_factory=lambda: ("uint256",))


def split_types(type_list: str) -> list[str]:
    """Split a comma separated ABI type list, respecting tuple parentheses."""
    types: list[str] = []
    depth = 0
    current = ""
    for char in type_list:
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        types.append(current)
    return types


def input_types(signature: str) -> list[str]:
    """Extract argument types from ``name(type,...)``."""
    start = signature.index("(")
    return split_types(signature[start + 1:-1])


def _normalize(abi_type: str, value: Any) -> Any:
    # eth-abi rejects mixed-case addresses with a bad checksum
    if abi_type == "address":
        return value.lower() if isinstance(value, str) else value
    if abi_type.endswith("[]"):
        return [_normalize(abi_type[:-2], v) for v in value]
    if abi_type.startswith("("):
        inner = split_types(abi_type[1:-1])
        return tuple(_normalize(t, v) for t, v in zip(inner, value))
    return value


def encode_call(signature: str, args: Sequence[Any]) -> str:
    """Encode calldata as a 0x-prefixed hex string."""
    types = input_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} arguments, got {len(args)}")

    selector = function_signature_to_4byte_selector(signature)
    values = [_normalize(t, a) for t, a in zip(types, args)]
    return "0x" + (selector + encode(types, values)).hex()


def decode_output(output_types: Sequence[str], data: Union[bytes, str]) -> tuple:
    """Decode return data."""
    if isinstance(data, str):
        data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    return tuple(decode(list(output_types), data))
