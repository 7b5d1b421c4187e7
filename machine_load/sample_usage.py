"""Demonstration script for machine load distribution."""

from __future__ import annotations

from pprint import pprint

from . import AllocationService


def main() -> None:
    service = AllocationService()

    # Machine catalog
    relanit = service.register_machine(
        "Mayer & Cie Relanit 3.2",
        dia=30,
        gg=24,
        needle=2256,
        feeder=96,
        rpm=28,
        efficiency=85,
        roll_per_kg=25,
    )
    pailung = service.register_machine(
        "Pailung PL-XS3B",
        dia=30,
        gg=24,
        needle=2256,
        feeder=90,
        rpm=25,
        efficiency=80,
        roll_per_kg=25,
    )
    fukuhara = service.register_machine(
        "Fukuhara V-LEC",
        dia=34,
        gg=28,
        needle=2988,
        feeder=102,
        rpm=22,
        efficiency=82,
        roll_per_kg=22.5,
    )

    lot = service.create_lot(
        "AL-0042",
        actual_roll_quantity=100,
        diameter=30,
        gauge=24,
        yarn_count=30,
        stitch_length=2.8,
        fabric="Single Jersey 30s",
    )
    lot = service.plan_lot(lot.id, relanit.id)
    first_allocation = lot.machine_allocations[0]
    print(f"Lot {lot.allotment_code} planned on {first_allocation.machine_name}")
    print(f"   Counter per roll: {service.knitting_counter(lot.id, relanit.id):.2f}")

    # Day shift prints 12 stickers on the first machine
    assignment = service.record_roll_assignment(
        first_allocation.id, "Day", 20, operator_name="R. Kumar"
    )
    service.record_generated_stickers(assignment.id, 12)

    session = service.open_session(lot.id)
    print("\nCompatible machines:", [machine.name for machine in session.available_machines()])
    print("Fukuhara compatible:", fukuhara in session.available_machines())

    session.add_machine(pailung.id)
    result = session.set_roll_count(relanit.id, 10)
    print(f"\nReducing {relanit.name} to 10 rolls: {result.error}")

    session.set_roll_count(relanit.id, 60)
    rejected = session.save()
    print(f"\nFirst save: {rejected.status.value}")
    for error in rejected.errors:
        print(f" - {error}")

    session.set_roll_count(pailung.id, 40)
    outcome = session.save()
    print(f"\nSecond save: {outcome.status.value}")
    pprint(session.snapshot())


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
