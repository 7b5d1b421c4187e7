"""Generated-sticker floor: rolls that are already physically realised."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, Optional

from .collaborators import StickerLedger
from .domain import MachineAllocation, RollAssignment
from .logging_config import get_logger

logger = get_logger("stickers")


def aggregate_generated_stickers(
    assignments: Iterable[RollAssignment],
) -> Dict[str, int]:
    """Sum generated stickers of every shift assignment per machine allocation."""

    totals: Dict[str, int] = {}
    for assignment in assignments:
        totals[assignment.machine_allocation_id] = (
            totals.get(assignment.machine_allocation_id, 0)
            + assignment.generated_stickers
        )
    return totals


class StickerFloor(Mapping[str, int]):
    """Frozen per-session map of machine allocation id to printed stickers."""

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, int]] = None) -> None:
        self._values: Dict[str, int] = {}
        for allocation_id, count in (values or {}).items():
            if count < 0:
                raise ValueError(
                    f"Generated sticker count for {allocation_id!r} cannot be negative"
                )
            self._values[allocation_id] = int(count)

    def __getitem__(self, allocation_id: str) -> int:
        return self._values[allocation_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"StickerFloor({self._values!r})"

    def for_allocation(self, allocation: MachineAllocation) -> int:
        # Unsaved allocations cannot have printed stickers yet.
        if allocation.id is None:
            return 0
        return self._values.get(allocation.id, 0)

    def refreshed(self, values: Mapping[str, int]) -> "StickerFloor":
        """Return a new floor with ``values`` applied; counts never go down."""

        merged = dict(self._values)
        for allocation_id, count in values.items():
            previous = merged.get(allocation_id, 0)
            if count < previous:
                logger.warning(
                    "Sticker ledger reported a lower count than before; keeping the previous floor",
                    extra={
                        "machine_allocation_id": allocation_id,
                        "previous": previous,
                        "reported": count,
                    },
                )
                continue
            merged[allocation_id] = count
        return StickerFloor(merged)


def load_sticker_floor(
    ledger: StickerLedger, allocation_ids: Iterable[Optional[str]]
) -> StickerFloor:
    """Fetch the floor for every saved allocation in one pass."""

    values: Dict[str, int] = {}
    for allocation_id in allocation_ids:
        if allocation_id is None or allocation_id in values:
            continue
        values[allocation_id] = ledger.get_generated_stickers(allocation_id)
    floor = StickerFloor(values)
    logger.debug("Loaded sticker floor", extra={"allocations": len(floor)})
    return floor


__all__ = ["StickerFloor", "aggregate_generated_stickers", "load_sticker_floor"]
