"""Validate-before-commit protocol for machine allocation sets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .allocation import AllocationSet
from .calculations import DEFAULT_ROLL_TOLERANCE
from .collaborators import AllocationPersister
from .domain import Lot, MachineAllocation, ReconciliationState
from .errors import (
    AllocationError,
    FloorViolationError,
    InvalidStateTransitionError,
    PersistenceFailureError,
    QuantityMismatchError,
    ZeroAllocationError,
)
from .logging_config import get_logger

logger = get_logger("validation")


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Every rule failure found in one validation pass."""

    errors: Tuple[AllocationError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def messages(self) -> List[str]:
        return [str(error) for error in self.errors]


def check_allocations(
    allocation_set: AllocationSet, lot: Lot, *, tolerance: float = DEFAULT_ROLL_TOLERANCE
) -> ValidationReport:
    errors: List[AllocationError] = []
    total = allocation_set.total_allocated_rolls()
    expected = lot.actual_roll_quantity
    diff = abs(total - expected)
    # NaN compares False, so the checks below are written to fail on it
    if not diff <= tolerance:
        errors.append(QuantityMismatchError(total, expected, diff))
    for allocation in allocation_set:
        floor = allocation_set.floor.for_allocation(allocation)
        if floor > 0 and not allocation.rolls >= floor:
            errors.append(FloorViolationError(allocation.machine_id, floor))
    for allocation in allocation_set:
        if not allocation.rolls > 0:
            errors.append(ZeroAllocationError(allocation.machine_id))
    return ValidationReport(tuple(errors))


class ReconciliationValidator:
    """Tracks one session through Draft, Validated/Rejected and Committed."""

    def __init__(
        self,
        persister: AllocationPersister,
        *,
        tolerance: float = DEFAULT_ROLL_TOLERANCE,
    ) -> None:
        self.persister = persister
        self.tolerance = tolerance
        self.state = ReconciliationState.DRAFT

    def mark_dirty(self) -> None:
        """Any edit sends a validated or rejected set back to Draft."""

        if self.state == ReconciliationState.COMMITTED:
            raise InvalidStateTransitionError(
                self.state.value, ReconciliationState.DRAFT.value
            )
        self.state = ReconciliationState.DRAFT

    def validate(self, allocation_set: AllocationSet, lot: Lot) -> ValidationReport:
        if self.state == ReconciliationState.COMMITTED:
            raise InvalidStateTransitionError(
                self.state.value, ReconciliationState.VALIDATED.value
            )
        report = check_allocations(allocation_set, lot, tolerance=self.tolerance)
        if report.ok:
            self.state = ReconciliationState.VALIDATED
        else:
            self.state = ReconciliationState.REJECTED
            logger.warning(
                "Machine allocation rejected",
                extra={"lot_id": lot.id, "codes": [error.code for error in report.errors]},
            )
        return report

    def commit(self, allocation_set: AllocationSet) -> Sequence[MachineAllocation]:
        if self.state != ReconciliationState.VALIDATED:
            raise InvalidStateTransitionError(
                self.state.value, ReconciliationState.COMMITTED.value
            )
        lot_id = allocation_set.lot.id
        try:
            stored = self.persister.commit(lot_id, allocation_set.allocations())
        except PersistenceFailureError:
            self.state = ReconciliationState.DRAFT
            logger.warning("Commit failed", extra={"lot_id": lot_id}, exc_info=True)
            raise
        except Exception as exc:
            self.state = ReconciliationState.DRAFT
            logger.warning("Commit refused", extra={"lot_id": lot_id}, exc_info=True)
            raise PersistenceFailureError(exc) from exc
        self.state = ReconciliationState.COMMITTED
        logger.info(
            "Machine allocation committed",
            extra={"lot_id": lot_id, "machines": len(stored)},
        )
        return stored


__all__ = ["ValidationReport", "check_allocations", "ReconciliationValidator"]
