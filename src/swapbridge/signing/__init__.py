"""Signer backends.

Two variants share the ``SignerBackend`` contract:
- ExternalSigner: delegates to an injected wallet provider
- InternalSigner: signs locally with the custody module's session key
"""

from swapbridge.signing.base import (
    KeyCustody,
    ProtectionLevel,
    SignerBackend,
    SignerType,
    SwapParams,
    TxHandle,
    TxRequest,
    WalletProvider,
    WalletRequestError,
)
from swapbridge.signing.external import ExternalSigner
from swapbridge.signing.factory import select_signer
from swapbridge.signing.internal import InternalSigner

__all__ = [
    "KeyCustody",
    "ProtectionLevel",
    "SignerBackend",
    "SignerType",
    "SwapParams",
    "TxHandle",
    "TxRequest",
    "WalletProvider",
    "WalletRequestError",
    "ExternalSigner",
    "InternalSigner",
    "select_signer",
]
