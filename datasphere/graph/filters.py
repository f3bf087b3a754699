"""
datasphere/graph/filters.py: Focus, threshold and duplicate-collapse stages.

The filter stages run in a fixed order, each a no-op when its parameter is
absent:

    1. focus_filter         keep flows touching the focus entity
    2. threshold_filter     keep flows whose magnitude is at least
                            threshold% of the largest magnitude in the set
                            that survived stage 1
    3. collapse_duplicates  (pair source only) one flow per unordered pair

Order matters: the threshold baseline is the maximum over the *visible* set,
so thresholding before focusing would measure against flows the user cannot
see.

A flow's magnitude throughout is max(in, out, net) (Flow.magnitude).

Every stage returns a new list and leaves its input untouched.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd

from datasphere.metrics.normalizer import Flow

logger = logging.getLogger(__name__)


# ── Stage 1: focus ────────────────────────────────────────────────────────────

def focus_filter(flows: Sequence[Flow], focus_id: Optional[int]) -> list[Flow]:
    """Flows with from_id or to_id equal to focus_id; all flows when None."""
    if focus_id is None:
        return list(flows)
    kept = [f for f in flows if f.touches(focus_id)]
    logger.debug("Focus filter (entity %d): %d → %d flows.", focus_id, len(flows), len(kept))
    return kept


# ── Stage 2: threshold ────────────────────────────────────────────────────────

def max_magnitude(flows: Sequence[Flow]) -> float:
    """Largest Flow.magnitude in the set; 0.0 for an empty set."""
    return max((f.magnitude for f in flows), default=0.0)


def threshold_filter(flows: Sequence[Flow], threshold: float = 0.0) -> list[Flow]:
    """
    Drop flows whose magnitude is below threshold% of the set maximum.

    Args:
        flows:     Current flow set (after focus filtering).
        threshold: Percentage in [0, 100]. 0 keeps everything.

    Returns:
        Flows with magnitude * 100 >= threshold * max_magnitude, input order.
        When the set maximum is 0 nothing is dropped.

    Raises:
        ValueError: If threshold is outside [0, 100] or not finite.
    """
    if not 0.0 <= threshold <= 100.0:
        raise ValueError(f"threshold must be within [0, 100], got {threshold!r}")

    peak = max_magnitude(flows)
    if threshold == 0 or peak <= 0:
        return list(flows)

    # Compared without dividing so a flow at exactly threshold% is kept.
    kept = [f for f in flows if f.magnitude * 100.0 >= threshold * peak]
    logger.debug(
        "Threshold filter (%.1f%% of %.4g): %d → %d flows.",
        threshold,
        peak,
        len(flows),
        len(kept),
    )
    return kept


# ── Stage 3: duplicate collapse ───────────────────────────────────────────────

def collapse_duplicates(flows: Sequence[Flow]) -> list[Flow]:
    """
    Keep one flow per unordered entity pair: the one with the largest
    magnitude, the first encountered on ties.

    The output follows the order in which each pair first appears, so
    running the stage on its own output changes nothing.
    """
    best: dict[tuple[int, int], Flow] = {}
    for flow in flows:
        key = flow.pair_key
        current = best.get(key)
        if current is None or flow.magnitude > current.magnitude:
            best[key] = flow

    collapsed = list(best.values())
    if len(collapsed) != len(flows):
        logger.debug("Duplicate collapse: %d → %d flows.", len(flows), len(collapsed))
    return collapsed


def sort_by_magnitude(flows: Sequence[Flow]) -> list[Flow]:
    """Magnitude descending; equal magnitudes keep their relative order."""
    return sorted(flows, key=lambda f: -f.magnitude)


# ── Summary statistics ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FlowStatistics:
    total_flows: int = 0
    average_in: float = 0.0
    average_out: float = 0.0
    average_net: float = 0.0
    max_magnitude: float = 0.0
    min_magnitude: float = 0.0


def flows_to_frame(flows: Sequence[Flow]) -> pd.DataFrame:
    """
    One row per flow with columns from_id, to_id, in_magnitude,
    out_magnitude, net_magnitude, net_direction, magnitude.
    """
    return pd.DataFrame(
        [
            {
                "from_id": f.from_id,
                "to_id": f.to_id,
                "in_magnitude": f.in_magnitude,
                "out_magnitude": f.out_magnitude,
                "net_magnitude": f.net_magnitude,
                "net_direction": f.net_direction,
                "magnitude": f.magnitude,
            }
            for f in flows
        ],
        columns=[
            "from_id",
            "to_id",
            "in_magnitude",
            "out_magnitude",
            "net_magnitude",
            "net_direction",
            "magnitude",
        ],
    )


def summarize_flows(flows: Sequence[Flow]) -> FlowStatistics:
    """
    Count, mean in / out / net magnitude, and min / max Flow.magnitude.

    All fields are zero for an empty set.
    """
    if not flows:
        return FlowStatistics()

    df = flows_to_frame(flows)
    return FlowStatistics(
        total_flows=len(df),
        average_in=float(df["in_magnitude"].mean()),
        average_out=float(df["out_magnitude"].mean()),
        average_net=float(df["net_magnitude"].mean()),
        max_magnitude=float(df["magnitude"].max()),
        min_magnitude=float(df["magnitude"].min()),
    )
