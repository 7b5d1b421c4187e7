"""Interfaces of the services the allocation core depends on."""

from __future__ import annotations

from typing import Protocol, Sequence

from .domain import Lot, Machine, MachineAllocation


class LotService(Protocol):
    def get_lot(self, lot_id: str) -> Lot:
        """Return the lot together with its committed machine allocations."""


class MachineCatalog(Protocol):
    def get_machines(self) -> Sequence[Machine]:
        ...


class StickerLedger(Protocol):
    def get_generated_stickers(self, machine_allocation_id: str) -> int:
        """Return the non-negative number of stickers printed so far."""


class AllocationPersister(Protocol):
    def commit(
        self, lot_id: str, allocations: Sequence[MachineAllocation]
    ) -> Sequence[MachineAllocation]:
        """Replace the lot's allocations atomically.

        Implementations re-check the sticker floor and raise
        ``FloorViolationError`` if it moved since the session was opened.
        Any ``AllocationError`` or ``RepositoryError`` counts as a refused
        commit. Returns the stored allocations with ids assigned.
        """


__all__ = ["LotService", "MachineCatalog", "StickerLedger", "AllocationPersister"]
