"""The editable set of machine allocations for one lot."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .calculations import (
    DEFAULT_PRODUCTION_CONSTANT,
    estimate_production_days,
    rolls_for_weight,
)
from .domain import Lot, Machine, MachineAllocation
from .errors import (
    AllocationError,
    AllocationNotFoundError,
    DuplicateMachineError,
    FloorViolationError,
    GaugeMismatchError,
    InvalidQuantityError,
)
from .logging_config import get_logger
from .stickers import StickerFloor

logger = get_logger("allocation")


class AllocationSet:
    """Per-machine roll allocations of a lot, keyed by machine id.

    Every operation either applies completely or raises and leaves the set
    untouched. Weight is derived from rolls on the allocation itself and the
    production estimate is recomputed whenever rolls change.
    """

    def __init__(
        self,
        lot: Lot,
        allocations: Optional[List[MachineAllocation]] = None,
        *,
        floor: Optional[StickerFloor] = None,
        default_constant: float = DEFAULT_PRODUCTION_CONSTANT,
    ) -> None:
        self.lot = lot
        self.floor = floor if floor is not None else StickerFloor()
        self.default_constant = default_constant
        self._allocations: Dict[str, MachineAllocation] = {}
        for allocation in allocations or []:
            if allocation.machine_id in self._allocations:
                raise DuplicateMachineError(allocation.machine_id)
            allocation = copy.copy(allocation)
            self._refresh_estimate(allocation)
            self._allocations[allocation.machine_id] = allocation

    def __contains__(self, machine_id: object) -> bool:
        return machine_id in self._allocations

    def __iter__(self) -> Iterator[MachineAllocation]:
        return iter(self._allocations.values())

    def __len__(self) -> int:
        return len(self._allocations)

    def copy(self) -> "AllocationSet":
        return AllocationSet(
            self.lot,
            [copy.copy(allocation) for allocation in self._allocations.values()],
            floor=self.floor,
            default_constant=self.default_constant,
        )

    def get(self, machine_id: str) -> MachineAllocation:
        try:
            return self._allocations[machine_id]
        except KeyError as exc:
            raise AllocationNotFoundError(machine_id) from exc

    def allocations(self) -> List[MachineAllocation]:
        return list(self._allocations.values())

    def floor_for(self, machine_id: str) -> int:
        return self.floor.for_allocation(self.get(machine_id))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_machine(self, machine: Machine, initial_rolls: float = 0) -> MachineAllocation:
        if machine.id in self._allocations:
            raise DuplicateMachineError(machine.id)
        if not machine.matches(self.lot.diameter, self.lot.gauge):
            raise GaugeMismatchError(
                machine.id, machine.dia, machine.gg, self.lot.diameter, self.lot.gauge
            )
        initial_rolls = _finite(machine.id, "rolls", initial_rolls)
        allocation = MachineAllocation(
            machine_id=machine.id,
            machine_name=machine.name,
            needle=machine.needle,
            feeder=machine.feeder,
            rpm=machine.rpm,
            efficiency=machine.efficiency,
            constant=machine.constant or self.default_constant,
            roll_per_kg=machine.roll_per_kg,
            rolls=max(initial_rolls, 0),
        )
        self._refresh_estimate(allocation)
        self._allocations[machine.id] = allocation
        logger.debug(
            "Machine added",
            extra={"lot_id": self.lot.id, "machine_id": machine.id, "rolls": allocation.rolls},
        )
        return allocation

    def remove_machine(self, machine_id: str) -> MachineAllocation:
        allocation = self.get(machine_id)
        floor = self.floor.for_allocation(allocation)
        if floor > 0:
            raise FloorViolationError(machine_id, floor)
        del self._allocations[machine_id]
        logger.debug("Machine removed", extra={"lot_id": self.lot.id, "machine_id": machine_id})
        return allocation

    def set_roll_count(self, machine_id: str, rolls: float) -> MachineAllocation:
        allocation = self.get(machine_id)
        rolls = max(_finite(machine_id, "rolls", rolls), 0)
        floor = self.floor.for_allocation(allocation)
        if rolls < floor:
            raise FloorViolationError(machine_id, floor)
        allocation.rolls = rolls
        self._refresh_estimate(allocation)
        logger.debug(
            "Roll count changed",
            extra={"lot_id": self.lot.id, "machine_id": machine_id, "rolls": rolls},
        )
        return allocation

    def set_weight(self, machine_id: str, weight: float) -> MachineAllocation:
        allocation = self.get(machine_id)
        weight = max(_finite(machine_id, "weight", weight), 0)
        return self.set_roll_count(machine_id, rolls_for_weight(weight, allocation.roll_per_kg))

    def increment_rolls(self, machine_id: str, step: float = 1) -> MachineAllocation:
        return self.set_roll_count(machine_id, self.get(machine_id).rolls + step)

    def decrement_rolls(self, machine_id: str, step: float = 1) -> MachineAllocation:
        return self.set_roll_count(machine_id, self.get(machine_id).rolls - step)

    def with_floor(self, floor: StickerFloor) -> "AllocationSet":
        updated = self.copy()
        updated.floor = floor
        return updated

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------
    def total_allocated_rolls(self) -> float:
        return sum(allocation.rolls for allocation in self._allocations.values())

    def total_allocated_weight(self) -> float:
        return sum(allocation.weight for allocation in self._allocations.values())

    def roll_difference(self) -> float:
        """Rolls still missing (positive) or over-allocated (negative)."""

        return self.lot.actual_roll_quantity - self.total_allocated_rolls()

    def _refresh_estimate(self, allocation: MachineAllocation) -> None:
        allocation.estimated_production_days = estimate_production_days(
            allocation.weight,
            needle=allocation.needle,
            feeder=allocation.feeder,
            rpm=allocation.rpm,
            efficiency=allocation.efficiency,
            constant=allocation.constant,
            stitch_length=self.lot.stitch_length,
            yarn_count=self.lot.yarn_count,
        )


def _finite(machine_id: str, field: str, value: float) -> float:
    if not math.isfinite(value):
        raise InvalidQuantityError(machine_id, field)
    return value


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AddMachine:
    machine: Machine
    initial_rolls: float = 0


@dataclass(frozen=True, slots=True)
class RemoveMachine:
    machine_id: str


@dataclass(frozen=True, slots=True)
class SetRollCount:
    machine_id: str
    rolls: float


@dataclass(frozen=True, slots=True)
class SetWeight:
    machine_id: str
    weight: float


Command = Union[AddMachine, RemoveMachine, SetRollCount, SetWeight]


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of one command: the touched allocation or the typed error."""

    allocation: Optional[MachineAllocation] = None
    error: Optional[AllocationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def apply_command(
    allocation_set: AllocationSet, command: Command
) -> Tuple[AllocationSet, CommandResult]:
    """Apply ``command`` to a copy of ``allocation_set``.

    The input set is never modified. On failure the returned set equals the
    input and the result carries the error.
    """

    updated = allocation_set.copy()
    try:
        if isinstance(command, AddMachine):
            allocation = updated.add_machine(command.machine, command.initial_rolls)
        elif isinstance(command, RemoveMachine):
            allocation = updated.remove_machine(command.machine_id)
        elif isinstance(command, SetRollCount):
            allocation = updated.set_roll_count(command.machine_id, command.rolls)
        elif isinstance(command, SetWeight):
            allocation = updated.set_weight(command.machine_id, command.weight)
        else:
            raise TypeError(f"Unsupported command {command!r}")
    except AllocationError as exc:
        logger.info(
            "Allocation command rejected",
            extra={"lot_id": allocation_set.lot.id, "code": exc.code},
        )
        return allocation_set, CommandResult(error=exc)
    return updated, CommandResult(allocation=copy.copy(allocation))


__all__ = [
    "AllocationSet",
    "AddMachine",
    "RemoveMachine",
    "SetRollCount",
    "SetWeight",
    "Command",
    "CommandResult",
    "apply_command",
]
