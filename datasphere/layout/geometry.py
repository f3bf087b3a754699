"""
datasphere/layout/geometry.py: Flow line endpoints, offsets and split points.

For a flow between entity A (from) and entity B (to):

    angle  = atan2(B.y − A.y, B.x − A.x)
    start  = A.center + A.outer_ring_radius · (cos angle, sin angle)
    end    = B.center − B.outer_ring_radius · (cos angle, sin angle)

Lines end on each bubble's outer ring, never on its center.

Unidirectional flows are one segment. It runs start → end for display
direction 'from-to' and end → start for 'to-from'.

Bidirectional flows are two half-segments split at

    split = start + (end − start) · in% / (in% + out%)     (midpoint if both 0)

and pushed apart perpendicular to the line (angle + π/2). The 'in' half
(start → split) is offset by +sign·d and the 'out' half (split → end) by
−sign·d, where

    d     = parallel_offset at min thickness … 2 × parallel_offset at max
    sign  = +1 if from_id < to_id else −1

The sign depends only on the id order, so a pair always separates the same
way however often it is redrawn.

Degenerate inputs (non-finite coordinates, non-positive radii, coincident
centers, unknown entity ids) raise DegenerateGeometryError from the helpers.
layout_flows() catches it per flow, records a DroppedFlow and continues.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from datasphere.config import DEFAULT_CONFIG, DatasphereConfig
from datasphere.errors import DegenerateGeometryError
from datasphere.graph.flow_values import FROM_TO, TO_FROM, flow_thickness
from datasphere.layout.bubbles import Entity
from datasphere.metrics.normalizer import IN, OUT, Flow
from datasphere.metrics.statistics import scale_linear

logger = logging.getLogger(__name__)

Point = tuple[float, float]

SINGLE = "single"


# ── Output records ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FlowSegment:
    """
    One drawable line.

    role is 'single' for a unidirectional flow, 'in' or 'out' for the two
    halves of a bidirectional flow. value / percent / index are the label
    values of the direction the segment stands for.
    """

    role: str
    start: Point
    end: Point
    value: float
    percent: Optional[float] = None
    index: Optional[float] = None


@dataclass(frozen=True)
class FlowGeometry:
    from_id: int
    to_id: int
    display_direction: Optional[str]
    is_bidirectional: bool
    angle: float
    thickness: float
    offset: float
    segments: tuple[FlowSegment, ...] = field(default_factory=tuple)
    split_point: Optional[Point] = None
    percentile_rank: Optional[float] = None


@dataclass(frozen=True)
class DroppedFlow:
    from_id: int
    to_id: int
    reason: str


# ── Primitives ────────────────────────────────────────────────────────────────

def _require_finite(*values: float) -> None:
    for v in values:
        if not math.isfinite(v):
            raise DegenerateGeometryError(f"non-finite coordinate: {v!r}")


def _require_point(p: Point) -> None:
    _require_finite(p[0], p[1])


def line_angle(source: Point, target: Point) -> float:
    """
    Angle of the line source → target.

    Raises:
        DegenerateGeometryError: Non-finite input or coincident points.
    """
    _require_point(source)
    _require_point(target)
    dx = target[0] - source[0]
    dy = target[1] - source[1]
    if dx == 0 and dy == 0:
        raise DegenerateGeometryError(f"coincident points at {source}")
    return math.atan2(dy, dx)


def boundary_point(center: Point, radius: float, angle: float) -> Point:
    """Point at ``radius`` from ``center`` along ``angle``."""
    _require_point(center)
    _require_finite(radius, angle)
    if radius <= 0:
        raise DegenerateGeometryError(f"non-positive radius: {radius!r}")
    return (center[0] + radius * math.cos(angle), center[1] + radius * math.sin(angle))


def flow_endpoints(source: Entity, target: Entity) -> tuple[Point, Point, float]:
    """
    (start, end, angle) of the centerline between two bubbles, clipped to
    their outer rings.
    """
    angle = line_angle((source.x, source.y), (target.x, target.y))
    start = boundary_point((source.x, source.y), source.outer_ring_radius, angle)
    end = boundary_point((target.x, target.y), target.outer_ring_radius, angle + math.pi)
    return start, end, angle


def offset_distance(thickness: float, config: DatasphereConfig = DEFAULT_CONFIG) -> float:
    """Perpendicular separation for a line of this thickness (clamped)."""
    return scale_linear(
        thickness,
        (config.min_line_thickness, config.max_line_thickness),
        (config.parallel_offset, config.parallel_offset * 2.0),
    )


def offset_sign(from_id: int, to_id: int) -> int:
    return 1 if from_id < to_id else -1


def perpendicular_offset(angle: float, distance: float, sign: int = 1) -> Point:
    """(dx, dy) moving a point ``sign · distance`` along angle + π/2."""
    perp = angle + math.pi / 2.0
    return (sign * distance * math.cos(perp), sign * distance * math.sin(perp))


def translate(p: Point, delta: Point) -> Point:
    return (p[0] + delta[0], p[1] + delta[1])


def split_fraction(in_share: Optional[float], out_share: Optional[float]) -> float:
    """in / (in + out), 0.5 when both are zero or missing."""
    in_share = in_share or 0.0
    out_share = out_share or 0.0
    total = in_share + out_share
    if total <= 0:
        return 0.5
    return in_share / total


def split_point(
    start: Point,
    end: Point,
    in_share: Optional[float],
    out_share: Optional[float],
) -> Point:
    """
    Point dividing start → end in the ratio in_share : out_share, e.g.
    70 / 30 on (0, 0) → (100, 0) gives (70, 0).
    """
    _require_point(start)
    _require_point(end)
    t = split_fraction(in_share, out_share)
    return (start[0] + (end[0] - start[0]) * t, start[1] + (end[1] - start[1]) * t)


# ── Per-flow geometry ─────────────────────────────────────────────────────────

def _single_segment(flow: Flow, start: Point, end: Point) -> FlowSegment:
    if flow.display_direction == TO_FROM:
        start, end = end, start
    label = flow.display_label
    value = flow.display_value if flow.display_value is not None else flow.magnitude
    return FlowSegment(
        role=SINGLE,
        start=start,
        end=end,
        value=value,
        percent=label.percent if label is not None else None,
        index=label.index if label is not None else None,
    )


def flow_geometry(
    flow: Flow,
    source: Entity,
    target: Entity,
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> FlowGeometry:
    """
    Geometry of one flow between its two laid-out entities.

    Raises:
        DegenerateGeometryError: If the segment cannot be computed.
    """
    start, end, angle = flow_endpoints(source, target)
    thickness = flow_thickness(flow.percentile_rank, config)

    if not flow.is_bidirectional:
        return FlowGeometry(
            from_id=flow.from_id,
            to_id=flow.to_id,
            display_direction=flow.display_direction or FROM_TO,
            is_bidirectional=False,
            angle=angle,
            thickness=thickness,
            offset=0.0,
            segments=(_single_segment(flow, start, end),),
            percentile_rank=flow.percentile_rank,
        )

    distance = offset_distance(thickness, config)
    sign = offset_sign(flow.from_id, flow.to_id)
    split = split_point(start, end, flow.in_share_percent, flow.out_share_percent)
    in_shift = perpendicular_offset(angle, distance, sign)
    out_shift = perpendicular_offset(angle, distance, -sign)

    segments = (
        FlowSegment(
            role=IN,
            start=translate(start, in_shift),
            end=translate(split, in_shift),
            value=flow.in_magnitude,
            percent=flow.in_share_percent,
            index=flow.in_share_index,
        ),
        FlowSegment(
            role=OUT,
            start=translate(split, out_shift),
            end=translate(end, out_shift),
            value=flow.out_magnitude,
            percent=flow.out_share_percent,
            index=flow.out_share_index,
        ),
    )
    for segment in segments:
        _require_point(segment.start)
        _require_point(segment.end)

    return FlowGeometry(
        from_id=flow.from_id,
        to_id=flow.to_id,
        display_direction=flow.display_direction,
        is_bidirectional=True,
        angle=angle,
        thickness=thickness,
        offset=distance,
        segments=segments,
        split_point=split,
        percentile_rank=flow.percentile_rank,
    )


def layout_flows(
    flows: Sequence[Flow],
    entities: Mapping[int, Entity],
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> tuple[list[FlowGeometry], list[DroppedFlow]]:
    """
    Compute geometry for every flow, skipping the ones that cannot be drawn.

    Args:
        flows:    Final, annotated flows (display values and ranks set).
        entities: Laid-out entities keyed by id.
        config:   DatasphereConfig instance.

    Returns:
        (geometries, dropped): geometries in flow order; one DroppedFlow per
        flow whose geometry was degenerate or whose endpoint is unknown.
    """
    geometries: list[FlowGeometry] = []
    dropped: list[DroppedFlow] = []

    for flow in flows:
        try:
            source = entities.get(flow.from_id)
            target = entities.get(flow.to_id)
            if source is None or target is None:
                missing = flow.from_id if source is None else flow.to_id
                raise DegenerateGeometryError(f"unknown entity {missing}")
            geometries.append(flow_geometry(flow, source, target, config))
        except DegenerateGeometryError as exc:
            logger.warning("Dropping flow %d → %d: %s", flow.from_id, flow.to_id, exc)
            dropped.append(DroppedFlow(flow.from_id, flow.to_id, str(exc)))

    logger.debug("Flow geometry: %d drawn, %d dropped.", len(geometries), len(dropped))
    return geometries, dropped
