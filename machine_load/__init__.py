"""Machine load distribution and roll allocation reconciliation.

This package distributes a knitting lot's roll quantity across machines,
derives weights and production time estimates, and validates every edit
against the lot quantity and the stickers that were already printed before
an allocation set is committed.
"""

from .allocation import AllocationSet, CommandResult, apply_command
from .domain import Lot, Machine, MachineAllocation, ReconciliationState, RollAssignment
from .errors import (
    AllocationError,
    DuplicateMachineError,
    FloorViolationError,
    GaugeMismatchError,
    PersistenceFailureError,
    QuantityMismatchError,
    ZeroAllocationError,
)
from .services import AllocationService, AllocationSession, SaveOutcome, SaveStatus
from .validation import ReconciliationValidator, ValidationReport

__all__ = [
    "AllocationSet",
    "CommandResult",
    "apply_command",
    "Lot",
    "Machine",
    "MachineAllocation",
    "ReconciliationState",
    "RollAssignment",
    "AllocationError",
    "DuplicateMachineError",
    "FloorViolationError",
    "GaugeMismatchError",
    "PersistenceFailureError",
    "QuantityMismatchError",
    "ZeroAllocationError",
    "AllocationService",
    "AllocationSession",
    "SaveOutcome",
    "SaveStatus",
    "ReconciliationValidator",
    "ValidationReport",
]
