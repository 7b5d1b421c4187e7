"""
Service-level tests: lot planning, editing sessions, the sticker ledger and
the repository persister's floor re-check.
"""

import pytest

from machine_load.domain import ReconciliationState
from machine_load.errors import (
    AllocationNotFoundError,
    DuplicateMachineError,
    FloorViolationError,
    GaugeMismatchError,
    InvalidStateTransitionError,
    ZeroAllocationError,
)
from machine_load.repository import RecordNotFoundError
from machine_load.services import SaveStatus


def _print_stickers(service, lot, count, rolls=20):
    allocation = lot.machine_allocations[0]
    assignment = service.record_roll_assignment(allocation.id, "Day", rolls, "operator")
    return service.record_generated_stickers(assignment.id, count)


class UnreachablePersister:
    def commit(self, lot_id, allocations):
        raise ConnectionError("allocation store unreachable")


class TestPlanning:
    def test_plan_puts_full_quantity_on_one_machine(self, planned_lot, catalog):
        (allocation,) = planned_lot.machine_allocations
        assert allocation.machine_id == catalog["A"].id
        assert allocation.rolls == 100
        assert allocation.weight == 50.0
        assert allocation.id is not None
        assert allocation.estimated_production_days > 0

    def test_lot_cannot_be_planned_twice(self, service, planned_lot, catalog):
        with pytest.raises(ValueError):
            service.plan_lot(planned_lot.id, catalog["B"].id)

    def test_incompatible_machine_cannot_plan(self, service, catalog):
        lot = service.create_lot(
            "AL-0200", actual_roll_quantity=10, diameter=30, gauge=24, yarn_count=30, stitch_length=2.8
        )
        with pytest.raises(GaugeMismatchError):
            service.plan_lot(lot.id, catalog["C"].id)
        assert service.lots.get(lot.id).machine_allocations == []

    def test_lot_requires_rolls(self, service):
        with pytest.raises(ValueError):
            service.create_lot(
                "AL-0300", actual_roll_quantity=0, diameter=30, gauge=24, yarn_count=30, stitch_length=2.8
            )

    def test_available_machines(self, service, planned_lot, catalog):
        available = service.available_machines(planned_lot.id)
        assert [machine.id for machine in available] == [catalog["B"].id]

    def test_knitting_counter(self, service, planned_lot, catalog):
        expected = round(1696300 * 30 * 0.5 / 2256 / 96 / 2.8, 2)
        assert service.knitting_counter(planned_lot.id, catalog["A"].id) == expected
        with pytest.raises(GaugeMismatchError):
            service.knitting_counter(planned_lot.id, catalog["C"].id)


class TestSession:
    def test_snapshot(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        snapshot = session.snapshot()
        assert snapshot.state == ReconciliationState.DRAFT
        assert snapshot.total_rolls == 100
        assert snapshot.roll_difference == 0
        assert snapshot.total_weight == 50.0
        (row,) = snapshot.allocations
        assert row.machine_name == "Relanit"
        assert row.generated_stickers == 0

    def test_split_and_save(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        assert session.add_machine(catalog["B"].id).ok
        assert session.set_roll_count(catalog["A"].id, 50).ok
        assert session.set_roll_count(catalog["B"].id, 50).ok
        outcome = session.save()
        assert outcome.status == SaveStatus.COMMITTED
        assert session.state == ReconciliationState.COMMITTED
        stored = service.lots.get(planned_lot.id).machine_allocations
        assert sorted(allocation.rolls for allocation in stored) == [50, 50]
        assert all(allocation.id for allocation in stored)
        planned_id = planned_lot.machine_allocations[0].id
        assert planned_id in {allocation.id for allocation in stored}

    def test_rejected_save_sends_nothing(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        session.add_machine(catalog["B"].id)
        session.set_roll_count(catalog["A"].id, 60)
        outcome = session.save()
        assert outcome.status == SaveStatus.REJECTED
        assert [error.code for error in outcome.errors] == ["QUANTITY_MISMATCH", "ZERO_ALLOCATION"]
        assert session.state == ReconciliationState.REJECTED
        stored = service.lots.get(planned_lot.id).machine_allocations
        assert [allocation.rolls for allocation in stored] == [100]

        session.set_roll_count(catalog["B"].id, 40)
        assert session.state == ReconciliationState.DRAFT
        assert session.save().ok

    def test_command_errors_are_returned(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        result = session.add_machine(catalog["A"].id)
        assert isinstance(result.error, DuplicateMachineError)
        result = session.add_machine(catalog["C"].id)
        assert isinstance(result.error, GaugeMismatchError)
        result = session.increment_rolls("missing")
        assert isinstance(result.error, AllocationNotFoundError)
        assert session.snapshot().total_rolls == 100

    def test_unknown_catalog_machine(self, service, planned_lot):
        session = service.open_session(planned_lot.id)
        with pytest.raises(RecordNotFoundError):
            session.add_machine("missing")

    def test_validation_passes_then_edit_returns_to_draft(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        assert session.validate().ok
        assert session.state == ReconciliationState.VALIDATED
        session.decrement_rolls(catalog["A"].id)
        assert session.state == ReconciliationState.DRAFT
        assert session.snapshot().roll_difference == 1

    def test_no_edits_after_commit(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        assert session.save().ok
        with pytest.raises(InvalidStateTransitionError):
            session.add_machine(catalog["B"].id)

    def test_saving_a_committed_session_is_rejected(self, service, planned_lot):
        session = service.open_session(planned_lot.id)
        assert session.save().ok
        outcome = session.save()
        assert outcome.status == SaveStatus.REJECTED
        assert isinstance(outcome.errors[0], InvalidStateTransitionError)
        assert session.state == ReconciliationState.COMMITTED

    def test_persister_outage_is_a_failed_save(self, service, planned_lot, catalog):
        service.persister = UnreachablePersister()
        session = service.open_session(planned_lot.id)
        session.set_roll_count(catalog["A"].id, 100)
        outcome = session.save()
        assert outcome.status == SaveStatus.FAILED
        assert isinstance(outcome.cause.cause, ConnectionError)
        assert session.state == ReconciliationState.DRAFT
        stored = service.lots.get(planned_lot.id).machine_allocations
        assert [allocation.rolls for allocation in stored] == [100]

    def test_available_machines_follow_session_edits(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        assert [m.id for m in session.available_machines()] == [catalog["B"].id]
        session.add_machine(catalog["B"].id)
        assert session.available_machines() == []

    def test_configured_tolerance_applies(self, service, planned_lot, catalog):
        service.update_allocation_options(roll_tolerance=0.5, production_constant=0.00085)
        session = service.open_session(planned_lot.id)
        session.set_roll_count(catalog["A"].id, 99.7)
        assert session.validate().ok

    def test_options_are_clamped(self, service):
        options = service.update_allocation_options(roll_tolerance=-1, production_constant=0)
        assert options.roll_tolerance == 0.0
        assert options.production_constant == 0.00085


class TestStickerFloor:
    def test_session_uses_printed_stickers_as_floor(self, service, planned_lot, catalog):
        _print_stickers(service, planned_lot, 12)
        session = service.open_session(planned_lot.id)
        assert session.snapshot().allocations[0].generated_stickers == 12

        result = session.set_roll_count(catalog["A"].id, 11)
        assert isinstance(result.error, FloorViolationError)
        assert result.error.required_minimum == 12
        assert session.snapshot().total_rolls == 100

        result = session.remove_machine(catalog["A"].id)
        assert isinstance(result.error, FloorViolationError)
        assert len(session.snapshot().allocations) == 1

    def test_stale_floor_fails_at_commit(self, service, planned_lot, catalog):
        assignment = _print_stickers(service, planned_lot, 5)
        session = service.open_session(planned_lot.id)
        session.add_machine(catalog["B"].id)
        session.set_roll_count(catalog["A"].id, 10)
        session.set_roll_count(catalog["B"].id, 90)

        # another operator prints more stickers meanwhile
        service.record_generated_stickers(assignment.id, 10)

        outcome = session.save()
        assert outcome.status == SaveStatus.FAILED
        assert isinstance(outcome.cause.cause, FloorViolationError)
        assert outcome.cause.cause.required_minimum == 15
        assert session.state == ReconciliationState.DRAFT
        stored = service.lots.get(planned_lot.id).machine_allocations
        assert [allocation.rolls for allocation in stored] == [100]

        session.refresh_floor()
        report = session.validate()
        assert [error.code for error in report.errors] == ["FLOOR_VIOLATION"]
        session.set_roll_count(catalog["A"].id, 15)
        session.set_roll_count(catalog["B"].id, 85)
        assert session.save().ok

    def test_removed_allocation_with_new_stickers_fails_at_commit(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        session.add_machine(catalog["B"].id, 100)
        assert session.remove_machine(catalog["A"].id).ok
        _print_stickers(service, planned_lot, 1)
        outcome = session.save()
        assert outcome.status == SaveStatus.FAILED
        assert isinstance(outcome.cause.cause, FloorViolationError)

    def test_zero_allocation_cannot_be_saved(self, service, planned_lot, catalog):
        session = service.open_session(planned_lot.id)
        session.add_machine(catalog["B"].id, 0)
        report = session.validate()
        assert isinstance(report.errors[0], ZeroAllocationError)


class TestRollAssignments:
    def test_cannot_assign_more_than_allocated(self, service, planned_lot):
        allocation = planned_lot.machine_allocations[0]
        service.record_roll_assignment(allocation.id, "Day", 80, "operator")
        with pytest.raises(ValueError):
            service.record_roll_assignment(allocation.id, "Night", 30, "operator")

    def test_assignment_needs_operator(self, service, planned_lot):
        with pytest.raises(ValueError):
            service.record_roll_assignment(planned_lot.machine_allocations[0].id, "Day", 5, "")

    def test_unknown_allocation(self, service):
        with pytest.raises(RecordNotFoundError):
            service.record_roll_assignment("missing", "Day", 5, "operator")

    def test_stickers_limited_to_remaining_rolls(self, service, planned_lot):
        assignment = _print_stickers(service, planned_lot, 15, rolls=20)
        assert assignment.remaining_rolls == 5
        with pytest.raises(ValueError):
            service.record_generated_stickers(assignment.id, 6)
        with pytest.raises(ValueError):
            service.record_generated_stickers(assignment.id, 0)
        assert service.get_generated_stickers(assignment.machine_allocation_id) == 15
