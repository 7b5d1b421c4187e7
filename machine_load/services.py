"""Service layer that implements machine load distribution use-cases."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from .allocation import (
    AddMachine,
    AllocationSet,
    Command,
    CommandResult,
    RemoveMachine,
    SetRollCount,
    SetWeight,
    apply_command,
)
from .calculations import (
    DEFAULT_COUNTER_COEFFICIENT,
    DEFAULT_PRODUCTION_CONSTANT,
    DEFAULT_ROLL_TOLERANCE,
    knitting_counter,
)
from .collaborators import AllocationPersister, LotService, MachineCatalog, StickerLedger
from .domain import Lot, Machine, MachineAllocation, ReconciliationState, RollAssignment
from .errors import (
    AllocationError,
    AllocationNotFoundError,
    DuplicateMachineError,
    FloorViolationError,
    GaugeMismatchError,
    InvalidStateTransitionError,
    PersistenceFailureError,
)
from .logging_config import get_logger
from .repository import InMemoryRepository, RecordNotFoundError
from .stickers import StickerFloor, aggregate_generated_stickers, load_sticker_floor
from .validation import ReconciliationValidator, ValidationReport

logger = get_logger("services")


@dataclass(slots=True)
class AllocationOptions:
    """Named numeric defaults shared by every allocation screen."""

    roll_tolerance: float = DEFAULT_ROLL_TOLERANCE
    production_constant: float = DEFAULT_PRODUCTION_CONSTANT
    counter_coefficient: float = DEFAULT_COUNTER_COEFFICIENT


class SaveStatus(str, Enum):
    COMMITTED = "Committed"
    REJECTED = "Rejected"
    FAILED = "PersistenceFailure"


@dataclass(frozen=True, slots=True)
class SaveOutcome:
    """Result of :meth:`AllocationSession.save`."""

    status: SaveStatus
    errors: Tuple[AllocationError, ...] = ()
    cause: Optional[PersistenceFailureError] = None
    allocations: Tuple[MachineAllocation, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == SaveStatus.COMMITTED


@dataclass(frozen=True, slots=True)
class AllocationView:
    """Read-only row of an allocation snapshot."""

    machine_id: str
    machine_name: str
    rolls: float
    weight: float
    roll_per_kg: float
    estimated_production_days: float
    generated_stickers: int
    allocation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AllocationSnapshot:
    """Everything a screen needs to render one editing session."""

    lot_id: str
    allotment_code: str
    state: ReconciliationState
    actual_roll_quantity: float
    total_rolls: float
    total_weight: float
    roll_difference: float
    allocations: Tuple[AllocationView, ...] = field(default_factory=tuple)


class RepositoryAllocationPersister:
    """Commits allocation sets into a lot repository.

    The sticker floor is re-read inside the write transaction, so a commit
    based on a stale session floor is refused rather than stored.
    """

    def __init__(
        self, lot_repo: InMemoryRepository[Lot], ledger: StickerLedger
    ) -> None:
        self.lots = lot_repo
        self.ledger = ledger

    def commit(
        self, lot_id: str, allocations: Sequence[MachineAllocation]
    ) -> Sequence[MachineAllocation]:
        with self.lots.transaction():
            lot = self.lots.get(lot_id)
            existing = {
                allocation.id: allocation
                for allocation in lot.machine_allocations
                if allocation.id is not None
            }
            seen_machines = set()
            stored: List[MachineAllocation] = []
            for allocation in allocations:
                if allocation.machine_id in seen_machines:
                    raise DuplicateMachineError(allocation.machine_id)
                seen_machines.add(allocation.machine_id)
                record = copy.copy(allocation)
                if record.id is None:
                    record.id = str(uuid4())
                elif record.id not in existing:
                    raise RecordNotFoundError(
                        f"Machine allocation {record.id!r} does not belong to lot {lot_id!r}"
                    )
                else:
                    floor = self.ledger.get_generated_stickers(record.id)
                    if record.rolls < floor:
                        raise FloorViolationError(record.machine_id, floor)
                stored.append(record)
            kept_ids = {record.id for record in stored}
            for allocation_id, allocation in existing.items():
                if allocation_id in kept_ids:
                    continue
                floor = self.ledger.get_generated_stickers(allocation_id)
                if floor > 0:
                    raise FloorViolationError(allocation.machine_id, floor)
            lot.machine_allocations = stored
            self.lots.upsert(lot.id, lot)
        return [copy.copy(record) for record in stored]


class AllocationSession:
    """One operator's editing session over a lot's machine allocations.

    Mutation handlers return a :class:`CommandResult` instead of raising so a
    screen can show the typed error next to the offending machine.
    """

    def __init__(
        self,
        lot: Lot,
        machines: Sequence[Machine],
        floor: StickerFloor,
        *,
        persister: AllocationPersister,
        ledger: StickerLedger,
        options: Optional[AllocationOptions] = None,
    ) -> None:
        self.options = options or AllocationOptions()
        self.lot = lot
        self.machines: Dict[str, Machine] = {machine.id: machine for machine in machines}
        self.ledger = ledger
        self.allocation_set = AllocationSet(
            lot,
            lot.machine_allocations,
            floor=floor,
            default_constant=self.options.production_constant,
        )
        self.validator = ReconciliationValidator(
            persister, tolerance=self.options.roll_tolerance
        )

    @property
    def state(self) -> ReconciliationState:
        return self.validator.state

    @property
    def floor(self) -> StickerFloor:
        return self.allocation_set.floor

    def snapshot(self) -> AllocationSnapshot:
        views = tuple(
            AllocationView(
                machine_id=allocation.machine_id,
                machine_name=allocation.machine_name,
                rolls=allocation.rolls,
                weight=allocation.weight,
                roll_per_kg=allocation.roll_per_kg,
                estimated_production_days=allocation.estimated_production_days,
                generated_stickers=self.floor.for_allocation(allocation),
                allocation_id=allocation.id,
            )
            for allocation in self.allocation_set
        )
        return AllocationSnapshot(
            lot_id=self.lot.id,
            allotment_code=self.lot.allotment_code,
            state=self.state,
            actual_roll_quantity=self.lot.actual_roll_quantity,
            total_rolls=self.allocation_set.total_allocated_rolls(),
            total_weight=self.allocation_set.total_allocated_weight(),
            roll_difference=self.allocation_set.roll_difference(),
            allocations=views,
        )

    def available_machines(self) -> List[Machine]:
        """Catalog machines matching the lot that are not allocated yet."""

        return [
            machine
            for machine in self.machines.values()
            if machine.id not in self.allocation_set
            and machine.matches(self.lot.diameter, self.lot.gauge)
        ]

    # ------------------------------------------------------------------
    # Mutation handlers
    # ------------------------------------------------------------------
    def dispatch(self, command: Command) -> CommandResult:
        if self.state == ReconciliationState.COMMITTED:
            raise InvalidStateTransitionError(
                self.state.value, ReconciliationState.DRAFT.value
            )
        self.allocation_set, result = apply_command(self.allocation_set, command)
        if result.ok:
            self.validator.mark_dirty()
        return result

    def add_machine(self, machine_id: str, initial_rolls: float = 0) -> CommandResult:
        try:
            machine = self.machines[machine_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Machine {machine_id!r} not found") from exc
        return self.dispatch(AddMachine(machine, initial_rolls))

    def remove_machine(self, machine_id: str) -> CommandResult:
        return self.dispatch(RemoveMachine(machine_id))

    def set_roll_count(self, machine_id: str, rolls: float) -> CommandResult:
        return self.dispatch(SetRollCount(machine_id, rolls))

    def set_weight(self, machine_id: str, weight: float) -> CommandResult:
        return self.dispatch(SetWeight(machine_id, weight))

    def increment_rolls(self, machine_id: str, step: float = 1) -> CommandResult:
        current = self._current_rolls(machine_id)
        if current is None:
            return CommandResult(error=AllocationNotFoundError(machine_id))
        return self.set_roll_count(machine_id, current + step)

    def decrement_rolls(self, machine_id: str, step: float = 1) -> CommandResult:
        current = self._current_rolls(machine_id)
        if current is None:
            return CommandResult(error=AllocationNotFoundError(machine_id))
        return self.set_roll_count(machine_id, current - step)

    def _current_rolls(self, machine_id: str) -> Optional[float]:
        if machine_id not in self.allocation_set:
            return None
        return self.allocation_set.get(machine_id).rolls

    def refresh_floor(self) -> StickerFloor:
        """Re-read the sticker ledger for every saved allocation."""

        ids = [allocation.id for allocation in self.allocation_set if allocation.id]
        fresh = load_sticker_floor(self.ledger, ids)
        self.allocation_set = self.allocation_set.with_floor(self.floor.refreshed(fresh))
        if self.state != ReconciliationState.COMMITTED:
            self.validator.mark_dirty()
        return self.floor

    # ------------------------------------------------------------------
    # Validation and save
    # ------------------------------------------------------------------
    def validate(self) -> ValidationReport:
        return self.validator.validate(self.allocation_set, self.lot)

    def save(self) -> SaveOutcome:
        """Validate and commit; never raises for rule or persistence failures.

        A session that is already committed is terminal, so saving it again
        returns a ``REJECTED`` outcome carrying the state error.
        """

        if self.state == ReconciliationState.COMMITTED:
            error = InvalidStateTransitionError(
                self.state.value, ReconciliationState.COMMITTED.value
            )
            return SaveOutcome(status=SaveStatus.REJECTED, errors=(error,))
        report = self.validate()
        if not report.ok:
            return SaveOutcome(status=SaveStatus.REJECTED, errors=report.errors)
        try:
            stored = self.validator.commit(self.allocation_set)
        except PersistenceFailureError as exc:
            return SaveOutcome(status=SaveStatus.FAILED, cause=exc)
        self.lot.machine_allocations = [copy.copy(record) for record in stored]
        self.allocation_set = AllocationSet(
            self.lot,
            self.lot.machine_allocations,
            floor=self.floor,
            default_constant=self.options.production_constant,
        )
        return SaveOutcome(status=SaveStatus.COMMITTED, allocations=tuple(stored))


class AllocationService:
    """Facade that exposes lot planning and allocation editing to clients."""

    def __init__(
        self,
        lot_repo: Optional[InMemoryRepository[Lot]] = None,
        machine_repo: Optional[InMemoryRepository[Machine]] = None,
        roll_assignment_repo: Optional[InMemoryRepository[RollAssignment]] = None,
        *,
        persister: Optional[AllocationPersister] = None,
    ) -> None:
        self.lots = lot_repo or InMemoryRepository()
        self.machines = machine_repo or InMemoryRepository()
        self.roll_assignments = roll_assignment_repo or InMemoryRepository()
        self.persister = persister or RepositoryAllocationPersister(self.lots, self)
        self.options = AllocationOptions()

    def update_allocation_options(
        self,
        *,
        roll_tolerance: float,
        production_constant: float,
        counter_coefficient: Optional[float] = None,
    ) -> AllocationOptions:
        """Apply new numeric defaults; open sessions keep their own copy."""

        self.options = AllocationOptions(
            roll_tolerance=max(roll_tolerance, 0.0),
            production_constant=production_constant
            if production_constant > 0
            else DEFAULT_PRODUCTION_CONSTANT,
            counter_coefficient=self.options.counter_coefficient
            if counter_coefficient is None
            else max(counter_coefficient, 0.0),
        )
        return self.options

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def register_machine(
        self,
        name: str,
        *,
        dia: float,
        gg: float,
        needle: int,
        feeder: int,
        rpm: float,
        efficiency: float,
        roll_per_kg: float,
        constant: Optional[float] = None,
        notes: str = "",
    ) -> Machine:
        if roll_per_kg < 0:
            raise ValueError("Rolls per kilogram cannot be negative")
        machine = Machine(
            id=str(uuid4()),
            name=name,
            dia=dia,
            gg=gg,
            needle=needle,
            feeder=feeder,
            rpm=rpm,
            efficiency=efficiency,
            roll_per_kg=roll_per_kg,
            constant=constant,
            notes=notes,
        )
        self.machines.add(machine.id, machine)
        return machine

    def create_lot(
        self,
        allotment_code: str,
        *,
        actual_roll_quantity: float,
        diameter: float,
        gauge: float,
        yarn_count: float,
        stitch_length: float,
        fabric: str = "",
        sales_order_item: str = "",
    ) -> Lot:
        if actual_roll_quantity <= 0:
            raise ValueError("A lot must require at least one roll")
        lot = Lot(
            id=str(uuid4()),
            allotment_code=allotment_code,
            actual_roll_quantity=actual_roll_quantity,
            diameter=diameter,
            gauge=gauge,
            yarn_count=yarn_count,
            stitch_length=stitch_length,
            fabric=fabric,
            sales_order_item=sales_order_item,
        )
        self.lots.add(lot.id, lot)
        return lot

    def plan_lot(self, lot_id: str, machine_id: str) -> Lot:
        """First planning of a lot: one machine carries the full quantity."""

        lot = self.get_lot(lot_id)
        if lot.machine_allocations:
            raise ValueError(f"Lot {lot.allotment_code!r} is already planned")
        session = self.open_session(lot_id)
        result = session.add_machine(machine_id, lot.actual_roll_quantity)
        if result.error is not None:
            raise result.error
        outcome = session.save()
        if outcome.status == SaveStatus.REJECTED:
            raise outcome.errors[0]
        if outcome.cause is not None:
            raise outcome.cause
        logger.info(
            "Lot planned",
            extra={"lot_id": lot_id, "machine_id": machine_id},
        )
        return self.lots.get(lot_id)

    # ------------------------------------------------------------------
    # Collaborator interfaces
    # ------------------------------------------------------------------
    def get_lot(self, lot_id: str) -> Lot:
        return copy.deepcopy(self.lots.get(lot_id))

    def get_machines(self) -> List[Machine]:
        return self.machines.list()

    def get_generated_stickers(self, machine_allocation_id: str) -> int:
        totals = aggregate_generated_stickers(
            assignment
            for assignment in self.roll_assignments
            if assignment.machine_allocation_id == machine_allocation_id
        )
        return totals.get(machine_allocation_id, 0)

    # ------------------------------------------------------------------
    # Editing sessions
    # ------------------------------------------------------------------
    def open_session(
        self,
        lot_id: str,
        *,
        lots: Optional[LotService] = None,
        catalog: Optional[MachineCatalog] = None,
        ledger: Optional[StickerLedger] = None,
    ) -> AllocationSession:
        lots = lots or self
        catalog = catalog or self
        ledger = ledger or self
        lot = lots.get_lot(lot_id)
        machines = catalog.get_machines()
        floor = load_sticker_floor(
            ledger, (allocation.id for allocation in lot.machine_allocations)
        )
        logger.debug("Session opened", extra={"lot_id": lot_id})
        return AllocationSession(
            lot,
            machines,
            floor,
            persister=self.persister,
            ledger=ledger,
            options=copy.copy(self.options),
        )

    def available_machines(self, lot_id: str) -> List[Machine]:
        lot = self.lots.get(lot_id)
        allocated = {allocation.machine_id for allocation in lot.machine_allocations}
        return [
            machine
            for machine in self.machines
            if machine.id not in allocated and machine.matches(lot.diameter, lot.gauge)
        ]

    def knitting_counter(self, lot_id: str, machine_id: str) -> float:
        lot = self.lots.get(lot_id)
        machine = self.machines.get(machine_id)
        if not machine.matches(lot.diameter, lot.gauge):
            raise GaugeMismatchError(
                machine.id, machine.dia, machine.gg, lot.diameter, lot.gauge
            )
        return knitting_counter(
            lot.yarn_count,
            machine.roll_per_kg,
            machine.needle,
            machine.feeder,
            lot.stitch_length,
            coefficient=self.options.counter_coefficient,
        )

    # ------------------------------------------------------------------
    # Shift roll assignments (sticker ledger)
    # ------------------------------------------------------------------
    def _find_allocation(self, machine_allocation_id: str) -> MachineAllocation:
        for lot in self.lots:
            for allocation in lot.machine_allocations:
                if allocation.id == machine_allocation_id:
                    return allocation
        raise RecordNotFoundError(
            f"Machine allocation {machine_allocation_id!r} not found"
        )

    def record_roll_assignment(
        self,
        machine_allocation_id: str,
        shift_name: str,
        assigned_rolls: int,
        operator_name: str,
        *,
        timestamp: Optional[datetime] = None,
    ) -> RollAssignment:
        if assigned_rolls <= 0 or not operator_name:
            raise ValueError("A roll assignment needs rolls and an operator")
        allocation = self._find_allocation(machine_allocation_id)
        already_assigned = sum(
            assignment.assigned_rolls
            for assignment in self.roll_assignments
            if assignment.machine_allocation_id == machine_allocation_id
        )
        remaining = allocation.rolls - already_assigned
        if assigned_rolls > remaining:
            raise ValueError(f"Cannot assign more than {remaining:g} remaining rolls")
        assignment = RollAssignment(
            id=str(uuid4()),
            machine_allocation_id=machine_allocation_id,
            shift_name=shift_name,
            assigned_rolls=assigned_rolls,
            operator_name=operator_name,
            timestamp=timestamp or datetime.utcnow(),
        )
        self.roll_assignments.add(assignment.id, assignment)
        return assignment

    def record_generated_stickers(self, assignment_id: str, count: int) -> RollAssignment:
        """Book stickers printed for a shift; counts only ever go up."""

        assignment = self.roll_assignments.get(assignment_id)
        if count <= 0:
            raise ValueError("Enter a positive number of stickers")
        if count > assignment.remaining_rolls:
            raise ValueError(
                f"Cannot generate more than {assignment.remaining_rolls} stickers"
            )
        assignment.generated_stickers += count
        self.roll_assignments.upsert(assignment.id, assignment)
        logger.info(
            "Stickers generated",
            extra={
                "machine_allocation_id": assignment.machine_allocation_id,
                "count": count,
            },
        )
        return assignment


__all__ = [
    "AllocationOptions",
    "AllocationService",
    "AllocationSession",
    "AllocationSnapshot",
    "AllocationView",
    "RepositoryAllocationPersister",
    "SaveOutcome",
    "SaveStatus",
]
