"""
datasphere/metrics/statistics.py: Relative-size and percentile-rank scaling.

Every visual encoding in the diagram (bubble radius, line thickness) is driven
by one of two statistics:

    relative size percent   (value - min) / (max - min) * 100
    percentile rank         count(values strictly below) / (n - 1) * 100

Both are pure functions over a snapshot of values. Neither mutates its input;
the item-level helpers return new dicts carrying an extra derived field.

Degenerate collections are well defined rather than errors:
    - empty input returns an empty list,
    - a single item, or a collection where every value is equal, gets a
      relative size of 100,
    - a single item gets a percentile rank of 100.
"""

import logging
import math
from typing import Any, Mapping, Sequence

import numpy as np

logger = logging.getLogger(__name__)

SIZE_PERCENT_FIELD = "size_percent"
PERCENTILE_RANK_FIELD = "percentile_rank"


def _as_finite_array(values: Sequence[float]) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.size and not np.all(np.isfinite(arr)):
        raise ValueError("statistics require finite values; got NaN or infinity")
    return arr


def relative_size_values(values: Sequence[float]) -> list[float]:
    """
    Min-max scale values to [0, 100].

    Args:
        values: Numeric values in any order.

    Returns:
        One relative size per input value, in input order. All 100.0 when
        max == min (this covers the single-value case).

    Raises:
        ValueError: If any value is NaN or infinite.
    """
    arr = _as_finite_array(values)
    if arr.size == 0:
        return []

    lo = float(arr.min())
    hi = float(arr.max())
    span = hi - lo
    if span <= 0:
        return [100.0] * int(arr.size)

    return [float(v) for v in (arr - lo) / span * 100.0]


def percentile_rank_values(values: Sequence[float]) -> list[float]:
    """
    Exclusive percentile rank of every value within its own collection.

    Uses numpy searchsorted (side='left') on the sorted array, which returns
    the number of values strictly below each value. Ties therefore share a
    rank. The count is scaled by (n - 1) so that the maximum of a collection
    of distinct values reaches exactly 100.

    Args:
        values: Numeric values in any order.

    Returns:
        One rank in [0, 100] per input value, in input order. A single value
        gets 100.0; an empty input gets [].

    Raises:
        ValueError: If any value is NaN or infinite.
    """
    arr = _as_finite_array(values)
    n = int(arr.size)
    if n == 0:
        return []
    if n == 1:
        return [100.0]

    sorted_values = np.sort(arr)
    below = np.searchsorted(sorted_values, arr, side="left")
    return [float(count) / (n - 1) * 100.0 for count in below]


def relative_size_percent(
    items: Sequence[Mapping[str, Any]],
    key: str,
    field: str = SIZE_PERCENT_FIELD,
) -> list[dict[str, Any]]:
    """
    Attach a relative-size percentage to copies of the given items.

    Args:
        items: Mappings that each carry a numeric ``key``.
        key:   Name of the value to scale.
        field: Name of the derived field added to each copy.

    Returns:
        New dicts (input order) with ``field`` set. Inputs are not mutated.
    """
    sizes = relative_size_values([float(item[key]) for item in items])
    return [{**item, field: size} for item, size in zip(items, sizes)]


def percentile_rank(
    items: Sequence[Mapping[str, Any]],
    key: str = SIZE_PERCENT_FIELD,
    field: str = PERCENTILE_RANK_FIELD,
) -> list[dict[str, Any]]:
    """
    Attach a percentile rank to copies of items that already carry ``key``.

    Normally chained after relative_size_percent(); ranking the relative size
    and ranking the raw value give the same order.
    """
    ranks = percentile_rank_values([float(item[key]) for item in items])
    return [{**item, field: rank} for item, rank in zip(items, ranks)]


def scale_linear(
    value: float,
    domain: tuple[float, float],
    output: tuple[float, float],
) -> float:
    """Clamped linear interpolation of value from domain onto output."""
    d0, d1 = domain
    r0, r1 = output
    if d1 == d0:
        return r1
    t = (value - d0) / (d1 - d0)
    t = min(max(t, 0.0), 1.0)
    return r0 + (r1 - r0) * t


def scale_sqrt(percentile: float, low: float, high: float) -> float:
    """
    Interpolate between low and high on sqrt(percentile / 100).

    Square-root rather than linear so that the drawn area of a circle tracks
    the rank more evenly. The percentile is clamped to [0, 100].
    """
    p = min(max(percentile, 0.0), 100.0)
    return low + (high - low) * math.sqrt(p / 100.0)
