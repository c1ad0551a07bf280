"""Signer backend selection.

The custody module's session key takes precedence over an injected wallet:
when custody is unlocked the user is operating the embedded account.
"""

import logging
from decimal import Decimal
from typing import Callable, Optional

from swapbridge.chain.client import ChainClient, get_chain_client
from swapbridge.config import get_settings
from swapbridge.signing.base import KeyCustody, SignerBackend, WalletProvider
from swapbridge.signing.external import ExternalSigner
from swapbridge.signing.internal import InternalSigner

logger = logging.getLogger(__name__)


def _default_client_factory(chain_id: int) -> Optional[ChainClient]:
    rpc_url = get_settings().get_rpc_url(chain_id)
    if not rpc_url:
        return None
    return get_chain_client(rpc_url)


def select_signer(
    custody: Optional[KeyCustody] = None,
    wallet: Optional[WalletProvider] = None,
    client_factory: Optional[Callable[[int], Optional[ChainClient]]] = None,
) -> Optional[SignerBackend]:
    """Pick the signer backend for the current session.

    Args:
        custody: Embedded key custody module, if any
        wallet: Injected wallet provider, if any
        client_factory: Maps a chain id to an RPC client for the internal signer

    Returns:
        InternalSigner when custody is unlocked with a key on a known chain,
        otherwise ExternalSigner when a wallet is connected, otherwise None.
    """
    settings = get_settings()
    fallback_gas_price = Decimal(settings.fallback_gas_price_gwei)
    client_factory = client_factory or _default_client_factory

    if custody is not None and custody.is_unlocked:
        private_key = custody.export_private_key()
        chain_id = custody.active_chain_id
        client = client_factory(chain_id) if chain_id is not None else None

        if private_key and client is not None:
            logger.debug(f"Using internal signer on chain {chain_id}")
            return InternalSigner(
                custody,
                client,
                chain_id,
                private_key,
                fallback_gas_limit=settings.fallback_gas_limit,
                fallback_gas_price_gwei=fallback_gas_price,
            )
        logger.warning(f"Custody unlocked but no key or RPC for chain {chain_id}")

    if wallet is not None and wallet.address:
        logger.debug(f"Using external signer for {wallet.address}")
        return ExternalSigner(
            wallet,
            fallback_gas_limit=settings.fallback_gas_limit,
            fallback_gas_price_gwei=fallback_gas_price,
        )

    return None
