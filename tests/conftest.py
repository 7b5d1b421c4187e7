"""
Pytest fixtures for the machine load test suite.

Provides:
- Plain domain objects (a 100-roll lot and three catalog machines)
- A factory for saved machine allocations with ids
- An in-memory AllocationService with the same catalog
"""

from typing import Callable, Optional

import pytest

from machine_load.domain import Lot, Machine, MachineAllocation
from machine_load.logging_config import reset_logging
from machine_load.services import AllocationService


@pytest.fixture(autouse=True)
def clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def lot() -> Lot:
    return Lot(
        id="lot-1",
        allotment_code="AL-0001",
        actual_roll_quantity=100,
        diameter=30,
        gauge=24,
        yarn_count=30,
        stitch_length=2.8,
    )


def _machine(machine_id: str, *, dia: float = 30, gg: float = 24, **overrides) -> Machine:
    values = dict(
        id=machine_id,
        name=f"Machine {machine_id}",
        dia=dia,
        gg=gg,
        needle=2256,
        feeder=96,
        rpm=28,
        efficiency=85,
        roll_per_kg=0.5,
        constant=0.00085,
    )
    values.update(overrides)
    return Machine(**values)


@pytest.fixture
def machine_a() -> Machine:
    return _machine("A")


@pytest.fixture
def machine_b() -> Machine:
    return _machine("B", roll_per_kg=0.25)


@pytest.fixture
def machine_c() -> Machine:
    """A machine that does not fit the lot's 30\" / 24GG diameter and gauge."""
    return _machine("C", dia=34, gg=28)


@pytest.fixture
def allocation_for() -> Callable[..., MachineAllocation]:
    """Build a MachineAllocation for a machine, as if loaded from storage."""

    def build(
        machine: Machine, rolls: float, allocation_id: Optional[str] = None
    ) -> MachineAllocation:
        return MachineAllocation(
            machine_id=machine.id,
            machine_name=machine.name,
            needle=machine.needle,
            feeder=machine.feeder,
            rpm=machine.rpm,
            efficiency=machine.efficiency,
            constant=machine.constant,
            roll_per_kg=machine.roll_per_kg,
            rolls=rolls,
            id=allocation_id,
        )

    return build


@pytest.fixture
def service() -> AllocationService:
    return AllocationService()


@pytest.fixture
def catalog(service):
    """Register two compatible machines and one incompatible machine."""
    common = dict(needle=2256, feeder=96, rpm=28, efficiency=85)
    return {
        "A": service.register_machine("Relanit", dia=30, gg=24, roll_per_kg=0.5, **common),
        "B": service.register_machine("Pailung", dia=30, gg=24, roll_per_kg=0.5, **common),
        "C": service.register_machine("Fukuhara", dia=34, gg=28, roll_per_kg=0.5, **common),
    }


@pytest.fixture
def planned_lot(service, catalog) -> Lot:
    """A 100-roll lot planned entirely on machine A."""
    lot = service.create_lot(
        "AL-0100",
        actual_roll_quantity=100,
        diameter=30,
        gauge=24,
        yarn_count=30,
        stitch_length=2.8,
    )
    return service.plan_lot(lot.id, catalog["A"].id)
