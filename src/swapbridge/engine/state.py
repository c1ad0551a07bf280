"""Execution state derivation.

The state is never stored. ``derive_state`` is a pure function of the
engine's current inputs, evaluated as an ordered list of guards (highest
precedence first).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from swapbridge.errors import ExchangeError


class EngineState(str, Enum):
    """State of a swap or bridge engine."""
    IDLE = "idle"
    FETCHING_QUOTE = "fetching_quote"
    NEEDS_APPROVAL = "needs_approval"
    APPROVING = "approving"
    READY = "ready"
    EXECUTING = "executing"
    CONFIRMING = "confirming"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class EngineInputs:
    """Snapshot of everything the state depends on.

    ``allowance`` is None when the operation needs no approval (native
    input token, bridge transfers).
    """
    wallet_ready: bool = False
    amount: int = 0
    allowance: Optional[int] = None
    has_quote: bool = False
    fetching_quote: bool = False
    approving: bool = False
    executing: bool = False
    confirming: bool = False
    error: Optional[ExchangeError] = None
    success: bool = False


def needs_approval(amount: int, allowance: Optional[int]) -> bool:
    return allowance is not None and amount > 0 and allowance < amount


def derive_state(inputs: EngineInputs) -> EngineState:
    """Compute the engine state from its inputs. Has no side effects."""
    if not inputs.wallet_ready:
        return EngineState.IDLE
    if inputs.success:
        return EngineState.SUCCESS
    if inputs.fetching_quote:
        return EngineState.FETCHING_QUOTE
    if inputs.approving:
        return EngineState.APPROVING
    if needs_approval(inputs.amount, inputs.allowance):
        return EngineState.NEEDS_APPROVAL
    if inputs.executing:
        return EngineState.EXECUTING
    if inputs.confirming:
        return EngineState.CONFIRMING
    if inputs.error is not None and inputs.error.fatal:
        return EngineState.ERROR
    if inputs.has_quote and inputs.amount > 0:
        return EngineState.READY
    return EngineState.IDLE
