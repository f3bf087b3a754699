"""
datasphere/layout/bubbles.py: Bubble sizing and circular placement.

Entities are placed evenly on a placement circle around the canvas center,
starting at 12 o'clock and going clockwise:

    angle(i) = 2π·i/n − π/2

Sizing runs in two passes:

    1. Radius range. The arc length the preferred placement circle offers per
       entity (after reserving min_ring_gap between neighbours) fixes an
       outer-ring radius, capped at max_outer_ring_radius. Bubble radii range
       from min_bubble_radius_fraction × max up to outer ring − ring_padding,
       never below min_bubble_radius.
    2. Per-entity radius. relative size % → percentile rank → radius on
       sqrt(rank / 100) between the min and max radius.

The placement circle is then grown, if needed, so that n bubbles each
needing (2 × largest outer ring + min_ring_gap) of arc length fit without
overlapping.

An optional synthetic center entity sits at the canvas center, sized as a
fraction of the preferred placement radius. It never takes part in ranking.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from datasphere.config import DEFAULT_CONFIG, DatasphereConfig
from datasphere.graph.builder import EntityRecord
from datasphere.metrics.statistics import percentile_rank_values, relative_size_values, scale_sqrt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entity:
    """
    A laid-out bubble.

    Fields:
        id, label, magnitude: From the input EntityRecord.
        size_percent:         Relative size (min-max scaled magnitude, 0..100).
        percentile_rank:      Rank of size_percent among all entities, 0..100.
        radius:               Bubble radius (> 0).
        outer_ring_radius:    radius + ring_padding. Flow lines end here.
        x, y:                 Bubble center in canvas coordinates.
        angle:                Placement angle in radians (0 for the center).
        label_x, label_y:     Label anchor, pushed outward past the bubble.
        is_center:            True only for the synthetic aggregation entity.
        is_focus:             True for the focused entity.
        is_related:           True for entities sharing a flow with the focus.
    """

    id: int
    label: str
    magnitude: float
    size_percent: float
    percentile_rank: float
    radius: float
    outer_ring_radius: float
    x: float
    y: float
    angle: float
    label_x: float
    label_y: float
    is_center: bool = False
    is_focus: bool = False
    is_related: bool = False


@dataclass(frozen=True)
class RadiusRange:
    outer_ring_radius: float
    max_radius: float
    min_radius: float


@dataclass
class BubbleLayout:
    """Output of layout_entities(): bubbles plus the circle they sit on."""

    entities: list[Entity] = field(default_factory=list)
    center_x: float = 0.0
    center_y: float = 0.0
    placement_radius: float = 0.0
    radius_range: Optional[RadiusRange] = None

    def by_id(self) -> dict[int, Entity]:
        return {e.id: e for e in self.entities}


def preferred_placement_radius(
    width: float,
    height: float,
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> float:
    """Placement radius before any growth: a fraction of the half-extent."""
    return config.placement_circle_fraction * min(width, height) / 2.0


def radius_range(
    n: int,
    placement_radius: float,
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> RadiusRange:
    """
    Bubble radius bounds for n entities on a circle of placement_radius.

    available  = max(2πR − (n − 1)·min_ring_gap, 0)
    outer ring = min(max(available / 2n, 2·min_bubble_radius), max_outer_ring_radius)
    max radius = max(outer ring − ring_padding, min_bubble_radius)
    min radius = max(min_bubble_radius_fraction · max radius, min_bubble_radius)
    """
    n = max(n, 1)
    available = max(2.0 * math.pi * placement_radius - (n - 1) * config.min_ring_gap, 0.0)
    outer_ring = min(
        max(available / (2.0 * n), config.min_bubble_radius * 2.0),
        config.max_outer_ring_radius,
    )
    max_radius = max(outer_ring - config.ring_padding, config.min_bubble_radius)
    min_radius = max(config.min_bubble_radius_fraction * max_radius, config.min_bubble_radius)
    return RadiusRange(outer_ring_radius=outer_ring, max_radius=max_radius, min_radius=min_radius)


def required_placement_radius(
    n: int,
    max_outer_ring: float,
    preferred: float,
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> float:
    """Smallest radius ≥ preferred that keeps min_ring_gap between n rings."""
    if n <= 0:
        return preferred
    needed = n * (2.0 * max_outer_ring + config.min_ring_gap) / (2.0 * math.pi)
    return max(needed, preferred)


def placement_angle(index: int, n: int) -> float:
    return 2.0 * math.pi * index / n - math.pi / 2.0


def layout_entities(
    records: Sequence[EntityRecord],
    width: Optional[float] = None,
    height: Optional[float] = None,
    center_id: Optional[int] = None,
    focus_id: Optional[int] = None,
    related: Iterable[int] = (),
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> BubbleLayout:
    """
    Size and place every entity.

    Args:
        records:   Input entities, in placement order.
        width:     Canvas width (defaults to config.canvas_width).
        height:    Canvas height (defaults to config.canvas_height).
        center_id: When given, a synthetic center entity with this id is
                   appended at the canvas center.
        focus_id:  Entity flagged is_focus.
        related:   Entity ids flagged is_related.
        config:    DatasphereConfig instance.

    Returns:
        BubbleLayout whose entities list holds the input entities in order,
        followed by the center entity when requested.

    Raises:
        ValueError: If the canvas size is not a finite positive number.
    """
    width = config.canvas_width if width is None else float(width)
    height = config.canvas_height if height is None else float(height)
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        raise ValueError(f"canvas size must be finite and positive, got {width} x {height}")

    cx = width / 2.0
    cy = height / 2.0
    n = len(records)
    related_ids = set(related)

    preferred = preferred_placement_radius(width, height, config)
    bounds = radius_range(n, preferred, config)

    sizes = relative_size_values([r.magnitude for r in records])
    ranks = percentile_rank_values(sizes)
    radii = [
        max(scale_sqrt(rank, bounds.min_radius, bounds.max_radius), config.min_bubble_radius)
        for rank in ranks
    ]

    largest_ring = max((r + config.ring_padding for r in radii), default=0.0)
    placement = required_placement_radius(n, largest_ring, preferred, config)
    if placement > preferred:
        logger.debug(
            "Placement circle grown from %.1f to %.1f to keep ring gaps.", preferred, placement
        )

    entities: list[Entity] = []
    for i, (record, size, rank, radius) in enumerate(zip(records, sizes, ranks, radii)):
        angle = placement_angle(i, n)
        x = cx + placement * math.cos(angle)
        y = cy + placement * math.sin(angle)
        label_distance = radius + config.label_offset
        entities.append(
            Entity(
                id=record.id,
                label=record.label,
                magnitude=record.magnitude,
                size_percent=size,
                percentile_rank=rank,
                radius=radius,
                outer_ring_radius=radius + config.ring_padding,
                x=x,
                y=y,
                angle=angle,
                label_x=x + label_distance * math.cos(angle),
                label_y=y + label_distance * math.sin(angle),
                is_focus=record.id == focus_id,
                is_related=record.id in related_ids,
            )
        )

    if center_id is not None:
        center_radius = config.center_radius_fraction * preferred
        entities.append(
            Entity(
                id=center_id,
                label=config.center_label,
                magnitude=0.0,
                size_percent=0.0,
                percentile_rank=0.0,
                radius=center_radius,
                outer_ring_radius=center_radius + config.ring_padding,
                x=cx,
                y=cy,
                angle=0.0,
                label_x=cx,
                label_y=cy,
                is_center=True,
                is_focus=center_id == focus_id,
                is_related=center_id in related_ids,
            )
        )

    logger.debug(
        "Laid out %d entities on radius %.1f (bubble radius %.1f..%.1f).",
        n,
        placement,
        bounds.min_radius,
        bounds.max_radius,
    )
    return BubbleLayout(
        entities=entities,
        center_x=cx,
        center_y=cy,
        placement_radius=placement,
        radius_range=bounds,
    )
