"""
datasphere/tests/test_geometry.py: Tests for flow endpoints, offsets and split points.

Tests verify:
- Segments start and end on the outer rings, never at bubble centers.
- Split point at in% / (in% + out%) along the line: 70/30 on
  (0, 0) → (100, 0) gives x = 70; zero shares give the midpoint.
- Offset distance scales from 1x to 2x with thickness, clamped.
- Offset sign depends only on id order, so a pair separates the same way
  whichever direction it is drawn in.
- to-from flows are drawn end → start.
- Degenerate flows are dropped one by one; the rest are still drawn.
"""

import math

import pytest

from datasphere.errors import DegenerateGeometryError
from datasphere.graph.flow_values import FROM_TO, TO_FROM
from datasphere.layout.bubbles import Entity
from datasphere.layout.geometry import (
    boundary_point,
    flow_endpoints,
    flow_geometry,
    layout_flows,
    line_angle,
    offset_distance,
    offset_sign,
    split_point,
)
from datasphere.metrics.normalizer import Flow, MetricValue


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_entity(entity_id, x, y, outer=10.0) -> Entity:
    return Entity(
        id=entity_id,
        label=str(entity_id),
        magnitude=1.0,
        size_percent=100.0,
        percentile_rank=100.0,
        radius=max(outer - 5.0, 1.0),
        outer_ring_radius=outer,
        x=x,
        y=y,
        angle=0.0,
        label_x=x,
        label_y=y,
    )


def make_flow(from_id=0, to_id=1, bidirectional=False, rank=0.0, direction=FROM_TO, **kwargs) -> Flow:
    fields = dict(
        from_id=from_id,
        to_id=to_id,
        in_magnitude=7.0,
        out_magnitude=3.0,
        net_magnitude=4.0,
        net_direction="in",
        metric="churn",
        display_value=7.0,
        display_direction=direction,
        display_label=MetricValue(7.0, 0.7, 105.0),
        percentile_rank=rank,
    )
    if bidirectional:
        fields.update(
            is_bidirectional=True,
            in_share_percent=70.0,
            out_share_percent=30.0,
            in_share_index=120.0,
            out_share_index=80.0,
            display_direction="bidirectional",
        )
    fields.update(kwargs)
    return Flow(**fields)


# ── Primitives ────────────────────────────────────────────────────────────────

def test_split_point_seventy_thirty():
    assert split_point((0.0, 0.0), (100.0, 0.0), 70.0, 30.0) == pytest.approx((70.0, 0.0))


def test_split_point_zero_shares_is_midpoint():
    assert split_point((0.0, 0.0), (100.0, 40.0), 0.0, 0.0) == pytest.approx((50.0, 20.0))
    assert split_point((0.0, 0.0), (100.0, 40.0), None, None) == pytest.approx((50.0, 20.0))


def test_endpoints_on_outer_rings():
    a = make_entity(0, 0.0, 0.0, outer=10.0)
    b = make_entity(1, 100.0, 0.0, outer=20.0)
    start, end, angle = flow_endpoints(a, b)
    assert angle == pytest.approx(0.0)
    assert start == pytest.approx((10.0, 0.0))
    assert end == pytest.approx((80.0, 0.0))


def test_endpoints_diagonal_distance_from_centers():
    a = make_entity(0, 10.0, 10.0, outer=15.0)
    b = make_entity(1, 200.0, 300.0, outer=25.0)
    start, end, _ = flow_endpoints(a, b)
    assert math.dist(start, (a.x, a.y)) == pytest.approx(15.0)
    assert math.dist(end, (b.x, b.y)) == pytest.approx(25.0)


def test_offset_distance_scales_with_thickness():
    assert offset_distance(2.0) == pytest.approx(5.0)
    assert offset_distance(9.0) == pytest.approx(10.0)
    assert offset_distance(5.5) == pytest.approx(7.5)
    assert offset_distance(50.0) == pytest.approx(10.0)


def test_offset_sign():
    assert offset_sign(0, 1) == 1
    assert offset_sign(5, 2) == -1


def test_degenerate_primitives():
    with pytest.raises(DegenerateGeometryError):
        line_angle((1.0, 1.0), (1.0, 1.0))
    with pytest.raises(DegenerateGeometryError):
        line_angle((float("nan"), 0.0), (1.0, 1.0))
    with pytest.raises(DegenerateGeometryError):
        boundary_point((0.0, 0.0), 0.0, 0.0)


# ── Per-flow geometry ─────────────────────────────────────────────────────────

def test_unidirectional_single_segment():
    a, b = make_entity(0, 0.0, 0.0), make_entity(1, 100.0, 0.0)
    geometry = flow_geometry(make_flow(), a, b)

    assert not geometry.is_bidirectional
    assert geometry.offset == 0.0
    [segment] = geometry.segments
    assert segment.role == "single"
    assert segment.start == pytest.approx((10.0, 0.0))
    assert segment.end == pytest.approx((90.0, 0.0))
    assert (segment.value, segment.percent, segment.index) == (7.0, 0.7, 105.0)


def test_to_from_segment_is_reversed():
    a, b = make_entity(0, 0.0, 0.0), make_entity(1, 100.0, 0.0)
    [segment] = flow_geometry(make_flow(direction=TO_FROM), a, b).segments
    assert segment.start == pytest.approx((90.0, 0.0))
    assert segment.end == pytest.approx((10.0, 0.0))


def test_thickness_from_percentile():
    a, b = make_entity(0, 0.0, 0.0), make_entity(1, 100.0, 0.0)
    assert flow_geometry(make_flow(rank=100.0), a, b).thickness == pytest.approx(9.0)
    assert flow_geometry(make_flow(rank=0.0), a, b).thickness == pytest.approx(2.0)


def test_bidirectional_split_and_offsets():
    a, b = make_entity(0, 0.0, 0.0), make_entity(1, 100.0, 0.0)
    geometry = flow_geometry(make_flow(bidirectional=True, rank=0.0), a, b)

    assert geometry.is_bidirectional
    assert geometry.display_direction == "bidirectional"
    assert geometry.offset == pytest.approx(5.0)
    # Centerline runs 10 → 90; 70% of 80 past the start is x = 66.
    assert geometry.split_point == pytest.approx((66.0, 0.0))

    inbound, outbound = geometry.segments
    assert inbound.role == "in"
    assert inbound.start == pytest.approx((10.0, 5.0))
    assert inbound.end == pytest.approx((66.0, 5.0))
    assert (inbound.value, inbound.percent, inbound.index) == (7.0, 70.0, 120.0)

    assert outbound.role == "out"
    assert outbound.start == pytest.approx((66.0, -5.0))
    assert outbound.end == pytest.approx((90.0, -5.0))
    assert (outbound.value, outbound.percent, outbound.index) == (3.0, 30.0, 80.0)


def test_offset_side_is_stable_for_a_pair():
    a, b = make_entity(0, 0.0, 0.0), make_entity(1, 100.0, 0.0)
    forward = flow_geometry(make_flow(0, 1, bidirectional=True), a, b)
    backward = flow_geometry(make_flow(1, 0, bidirectional=True), b, a)

    # Same pair, opposite drawing order: the 'in' half lands on the same side.
    assert forward.segments[0].start[1] == pytest.approx(backward.segments[0].start[1])


def test_offset_grows_with_thickness():
    a, b = make_entity(0, 0.0, 0.0), make_entity(1, 100.0, 0.0)
    thin = flow_geometry(make_flow(bidirectional=True, rank=0.0), a, b)
    thick = flow_geometry(make_flow(bidirectional=True, rank=100.0), a, b)
    assert thick.offset == pytest.approx(2 * thin.offset)


# ── Batch layout ──────────────────────────────────────────────────────────────

def test_layout_flows_drops_only_degenerate_flows():
    entities = {
        0: make_entity(0, 0.0, 0.0),
        1: make_entity(1, 100.0, 0.0),
        2: make_entity(2, 0.0, 0.0),
        3: make_entity(3, float("nan"), 5.0),
        4: make_entity(4, 50.0, 50.0, outer=0.0),
    }
    flows = [
        make_flow(0, 1),
        make_flow(0, 2),   # coincident centers
        make_flow(1, 3),   # NaN coordinate
        make_flow(1, 4),   # zero outer ring
        make_flow(1, 99),  # unknown entity
        make_flow(1, 0, bidirectional=True),
    ]
    geometries, dropped = layout_flows(flows, entities)

    assert [(g.from_id, g.to_id) for g in geometries] == [(0, 1), (1, 0)]
    assert [(d.from_id, d.to_id) for d in dropped] == [(0, 2), (1, 3), (1, 4), (1, 99)]
    assert "unknown entity 99" in dropped[-1].reason
    for g in geometries:
        for s in g.segments:
            assert all(math.isfinite(v) for v in (*s.start, *s.end))
