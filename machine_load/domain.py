"""Core data structures for knitting-machine load distribution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class ReconciliationState(str, Enum):
    """Lifecycle stages for an edited allocation set."""

    DRAFT = "Draft"
    VALIDATED = "Validated"
    REJECTED = "Rejected"
    COMMITTED = "Committed"


@dataclass(slots=True)
class Machine:
    """A knitting machine from the machine catalog."""

    id: str
    name: str
    dia: float
    gg: float
    needle: int
    feeder: int
    rpm: float
    efficiency: float
    roll_per_kg: float
    constant: Optional[float] = None
    notes: str = ""

    def matches(self, diameter: float, gauge: float) -> bool:
        return self.dia == diameter and self.gg == gauge


@dataclass(slots=True)
class MachineAllocation:
    """The share of a lot's rolls assigned to one machine."""

    machine_id: str
    machine_name: str
    needle: int
    feeder: int
    rpm: float
    efficiency: float
    constant: float
    roll_per_kg: float
    rolls: float = 0.0
    estimated_production_days: float = 0.0
    id: Optional[str] = None

    @property
    def weight(self) -> float:
        return self.rolls * self.roll_per_kg


@dataclass(slots=True)
class Lot:
    """A production allotment that must yield an exact number of rolls."""

    id: str
    allotment_code: str
    actual_roll_quantity: float
    diameter: float
    gauge: float
    yarn_count: float
    stitch_length: float
    fabric: str = ""
    sales_order_item: str = ""
    machine_allocations: List[MachineAllocation] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class RollAssignment:
    """Rolls handed to a shift on one machine allocation.

    ``generated_stickers`` only ever grows; it is maintained by the sticker
    printing workflow.
    """

    id: str
    machine_allocation_id: str
    shift_name: str
    assigned_rolls: int
    operator_name: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    generated_stickers: int = 0

    @property
    def remaining_rolls(self) -> int:
        return max(self.assigned_rolls - self.generated_stickers, 0)


__all__ = [
    "ReconciliationState",
    "Machine",
    "MachineAllocation",
    "Lot",
    "RollAssignment",
]
