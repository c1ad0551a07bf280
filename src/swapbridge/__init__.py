"""Exchange execution engine for same-chain swaps and cross-chain bridges.

Subpackages:
- signing: external wallet and internal custody signer backends
- routing: on-chain router quotes and LI.FI bridge routes
- engine: state derivation and the swap/bridge state machines
- history: persisted execution records
"""

__version__ = "0.1.0"
