"""
datasphere/config.py: All tunable parameters for the Datasphere engine.

No layout constant should ever be hardcoded in an engine module. Every radius,
gap, thickness range and canvas default lives here so that visual calibration
changes are a single-file diff.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DatasphereConfig:
    """
    Immutable configuration for the flow processing and layout engine.

    Override by constructing a new DatasphereConfig with the desired values
    and passing it explicitly to the pipeline. Nothing in the engine reads a
    global "current" configuration.
    """

    # ── Bubble sizing ─────────────────────────────────────────────────────────
    min_bubble_radius: float = 6.0
    # Absolute floor for any bubble radius, whatever the canvas size.

    min_bubble_radius_fraction: float = 0.2
    # Smallest bubble radius as a fraction of the largest one.
    # A 0th-percentile entity is drawn at 20% of the top entity's radius.

    max_outer_ring_radius: float = 100.0
    # Cap on the outer ring radius derived from the available arc length.

    ring_padding: float = 20.0
    # Distance between a bubble's edge and its outer ring. Flow lines end on
    # the outer ring, never on the bubble center.

    # ── Circular placement ────────────────────────────────────────────────────
    min_ring_gap: float = 30.0
    # Minimum arc length between the outer rings of two neighbouring bubbles.

    placement_circle_fraction: float = 0.8
    # Preferred placement-circle radius as a fraction of min(width, height) / 2.
    # The circle grows beyond this when min_ring_gap cannot otherwise be met.

    label_offset: float = 20.0
    # Label anchor distance beyond the bubble edge, along the bubble's angle.

    # ── Center (aggregation) bubble ───────────────────────────────────────────
    center_radius_fraction: float = 0.15
    # Center bubble radius as a fraction of the preferred placement radius.

    center_label: str = "Market"

    # ── Flow lines ────────────────────────────────────────────────────────────
    min_line_thickness: float = 2.0
    max_line_thickness: float = 9.0
    # Line thickness is interpolated linearly on the flow's percentile rank.

    parallel_offset: float = 5.0
    # Perpendicular separation of bidirectional sub-segments at minimum
    # thickness. Scales linearly up to 2x at maximum thickness.

    # ── Canvas ────────────────────────────────────────────────────────────────
    canvas_width: float = 800.0
    canvas_height: float = 800.0


# Default instance. Pass a custom DatasphereConfig to override.
DEFAULT_CONFIG = DatasphereConfig()
