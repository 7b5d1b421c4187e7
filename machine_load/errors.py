"""Typed errors raised while editing and committing machine allocations."""

from __future__ import annotations

from typing import Any, Dict


class AllocationError(RuntimeError):
    """Base exception for allocation rule violations."""

    code = "ALLOCATION_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                payload[key] = value
        return payload


class AllocationNotFoundError(AllocationError):
    """Raised when a machine has no allocation in the current set."""

    code = "ALLOCATION_NOT_FOUND"

    def __init__(self, machine_id: str) -> None:
        self.machine_id = machine_id
        super().__init__(f"Machine {machine_id!r} is not part of this allocation")


class DuplicateMachineError(AllocationError):
    """Raised when a machine is added to a lot twice."""

    code = "DUPLICATE_MACHINE"

    def __init__(self, machine_id: str) -> None:
        self.machine_id = machine_id
        super().__init__(f"Machine {machine_id!r} is already allocated to this lot")


class GaugeMismatchError(AllocationError):
    """Raised when a machine's diameter or gauge differs from the lot."""

    code = "GAUGE_MISMATCH"

    def __init__(
        self,
        machine_id: str,
        machine_dia: float,
        machine_gg: float,
        lot_diameter: float,
        lot_gauge: float,
    ) -> None:
        self.machine_id = machine_id
        self.machine_dia = machine_dia
        self.machine_gg = machine_gg
        self.lot_diameter = lot_diameter
        self.lot_gauge = lot_gauge
        super().__init__(
            f"Machine {machine_id!r} is {machine_dia:g}\" / {machine_gg:g}GG "
            f"but the lot requires {lot_diameter:g}\" / {lot_gauge:g}GG"
        )


class FloorViolationError(AllocationError):
    """Raised when rolls would drop below the already printed stickers."""

    code = "FLOOR_VIOLATION"

    def __init__(self, machine_id: str, required_minimum: int) -> None:
        self.machine_id = machine_id
        self.required_minimum = required_minimum
        super().__init__(
            f"Machine {machine_id!r} already has {required_minimum} generated "
            f"stickers; its rolls cannot go below {required_minimum}"
        )


class ZeroAllocationError(AllocationError):
    """Raised when an allocation holds no rolls."""

    code = "ZERO_ALLOCATION"

    def __init__(self, machine_id: str) -> None:
        self.machine_id = machine_id
        super().__init__(
            f"Machine {machine_id!r} has no rolls allocated; remove it instead"
        )


class InvalidQuantityError(AllocationError):
    """Raised when a roll count or weight is not a finite number."""

    code = "INVALID_QUANTITY"

    def __init__(self, machine_id: str, field: str) -> None:
        self.machine_id = machine_id
        self.field = field
        super().__init__(
            f"{field.capitalize()} for machine {machine_id!r} must be a finite number"
        )


class QuantityMismatchError(AllocationError):
    """Raised when allocated rolls do not add up to the lot quantity."""

    code = "QUANTITY_MISMATCH"

    def __init__(self, total: float, expected: float, diff: float) -> None:
        self.total = total
        self.expected = expected
        self.diff = diff
        super().__init__(
            f"Total allocated rolls ({total:.2f}) must match the actual roll "
            f"quantity ({expected:.2f}); difference {diff:.2f}"
        )


class PersistenceFailureError(AllocationError):
    """Raised when the persister refuses or fails to commit an allocation set."""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Failed to commit machine allocations: {cause}")

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": str(self)}
        if isinstance(self.cause, AllocationError):
            payload["cause"] = self.cause.to_dict()
        else:
            payload["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return payload


class InvalidStateTransitionError(AllocationError):
    """Raised when the reconciliation lifecycle is driven out of order."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move from {current} to {target}")


__all__ = [
    "AllocationError",
    "AllocationNotFoundError",
    "DuplicateMachineError",
    "GaugeMismatchError",
    "FloorViolationError",
    "ZeroAllocationError",
    "InvalidQuantityError",
    "QuantityMismatchError",
    "PersistenceFailureError",
    "InvalidStateTransitionError",
]
