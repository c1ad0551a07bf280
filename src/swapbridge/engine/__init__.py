"""Execution engine: state derivation, swap and bridge state machines,
allowance management, status tracking and periodic tasks."""

from swapbridge.engine.allowance import AllowanceManager
from swapbridge.engine.base import ExecutionEngine
from swapbridge.engine.bridge import BridgeEngine
from swapbridge.engine.state import EngineInputs, EngineState, derive_state
from swapbridge.engine.status import (
    StatusOutcome,
    StatusTracker,
    TransferPhase,
    create_status_tracker,
    map_phase,
)
from swapbridge.engine.swap import SwapEngine
from swapbridge.engine.tasks import BalanceMonitor, GasPriceMonitor, PeriodicTask

__all__ = [
    # State
    "EngineInputs",
    "EngineState",
    "derive_state",
    # Engines
    "ExecutionEngine",
    "SwapEngine",
    "BridgeEngine",
    "AllowanceManager",
    # Status
    "StatusOutcome",
    "StatusTracker",
    "TransferPhase",
    "create_status_tracker",
    "map_phase",
    # Tasks
    "BalanceMonitor",
    "GasPriceMonitor",
    "PeriodicTask",
]
