"""Pure roll, weight and production-time formulas used by the allocation core."""

from __future__ import annotations

import math
from typing import Optional, Union

Number = Union[int, float, str, None]

DEFAULT_ROLL_TOLERANCE = 0.01
DEFAULT_PRODUCTION_CONSTANT = 0.00085
DEFAULT_COUNTER_COEFFICIENT = 1696300.0


def _positive(value: Number) -> Optional[float]:
    """Return ``value`` as a finite positive float, or None."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def weight_for_rolls(rolls: float, roll_per_kg: float) -> float:
    return rolls * roll_per_kg


def rolls_for_weight(weight: float, roll_per_kg: float) -> float:
    if roll_per_kg == 0:
        return 0.0
    return weight / roll_per_kg


def production_kg_per_hour(
    needle: Number,
    feeder: Number,
    rpm: Number,
    efficiency: Number,
    constant: Number,
    stitch_length: Number,
    yarn_count: Number,
) -> float:
    """Hourly output of one machine in kilograms.

    Returns 0.0 if any parameter is missing or not positive.
    """

    values = [
        _positive(item)
        for item in (needle, feeder, rpm, efficiency, constant, stitch_length, yarn_count)
    ]
    if any(item is None for item in values):
        return 0.0
    needle_v, feeder_v, rpm_v, efficiency_v, constant_v, stitch_v, count_v = values
    grams_per_minute = (
        needle_v * feeder_v * rpm_v * stitch_v * constant_v * (efficiency_v / 100)
    ) / count_v
    kg_per_hour = grams_per_minute / 1000 * 60
    return kg_per_hour if math.isfinite(kg_per_hour) else 0.0


def estimate_production_days(
    allocated_weight: Number,
    *,
    needle: Number,
    feeder: Number,
    rpm: Number,
    efficiency: Number,
    constant: Number = DEFAULT_PRODUCTION_CONSTANT,
    stitch_length: Number,
    yarn_count: Number,
) -> float:
    """Estimate how many days a machine needs to knit ``allocated_weight`` kg.

    Machine parameters are often unset while an operator is still picking
    machines, so every missing, zero, negative or non-numeric input yields
    exactly ``0.0``. The result is never NaN or infinite.
    """

    weight = _positive(allocated_weight)
    if weight is None:
        return 0.0
    kg_per_hour = production_kg_per_hour(
        needle, feeder, rpm, efficiency, constant, stitch_length, yarn_count
    )
    if kg_per_hour <= 0:
        return 0.0
    days = (weight / kg_per_hour) / 24
    return days if math.isfinite(days) else 0.0


def knitting_counter(
    yarn_count: Number,
    roll_per_kg: Number,
    needle: Number,
    feeder: Number,
    stitch_length: Number,
    *,
    coefficient: float = DEFAULT_COUNTER_COEFFICIENT,
) -> float:
    """Revolution counter setting that knits one roll on a machine."""

    needle_v = _positive(needle)
    feeder_v = _positive(feeder)
    stitch_v = _positive(stitch_length)
    if needle_v is None or feeder_v is None or stitch_v is None:
        return 0.0
    count_v = _positive(yarn_count) or 0.0
    per_kg = _positive(roll_per_kg) or 0.0
    counter = coefficient * count_v * per_kg / needle_v / feeder_v / stitch_v
    return round(counter, 2) if math.isfinite(counter) else 0.0


__all__ = [
    "DEFAULT_ROLL_TOLERANCE",
    "DEFAULT_PRODUCTION_CONSTANT",
    "DEFAULT_COUNTER_COEFFICIENT",
    "weight_for_rolls",
    "rolls_for_weight",
    "production_kg_per_hour",
    "estimate_production_days",
    "knitting_counter",
]
