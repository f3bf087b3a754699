"""
datasphere/tests/test_aggregation.py: Tests for center aggregation.

Tests verify:
- Each entity gets one flow to the center with contraction totals (the
  'to' endpoint sees in and out swapped).
- Net direction and magnitude follow the totals; ties count as 'in'.
- Totals balance: Σ in == Σ out == Σ over flows of (in + out).
- The center never gets an aggregated flow of its own.
- Output is sorted by entity id and empty input gives empty output.
"""

import pytest

from datasphere.graph.aggregation import aggregate_to_center, entity_totals
from datasphere.graph.builder import build_flow_graph
from datasphere.metrics.normalizer import IN, OUT, Flow


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_flow(from_id, to_id, in_mag, out_mag) -> Flow:
    return Flow(
        from_id=from_id,
        to_id=to_id,
        in_magnitude=in_mag,
        out_magnitude=out_mag,
        net_magnitude=abs(in_mag - out_mag),
        net_direction=IN if in_mag >= out_mag else OUT,
        metric="churn",
    )


CENTER = 3


def chain_flows() -> list[Flow]:
    """A(0) → B(1): in 20 / out 12, B(1) → C(2): in 10 / out 4."""
    return [make_flow(0, 1, 20.0, 12.0), make_flow(1, 2, 10.0, 4.0)]


# ── Tests ─────────────────────────────────────────────────────────────────────

def test_contraction_totals():
    aggregated = {f.from_id: f for f in aggregate_to_center(chain_flows(), CENTER)}

    assert set(aggregated) == {0, 1, 2}
    assert all(f.to_id == CENTER for f in aggregated.values())

    a, b, c = aggregated[0], aggregated[1], aggregated[2]
    assert (a.in_magnitude, a.out_magnitude, a.net_magnitude, a.net_direction) == (20.0, 12.0, 8.0, IN)
    assert (b.in_magnitude, b.out_magnitude, b.net_magnitude, b.net_direction) == (22.0, 24.0, 2.0, OUT)
    assert (c.in_magnitude, c.out_magnitude, c.net_magnitude, c.net_direction) == (4.0, 10.0, 6.0, OUT)


def test_conservation_per_entity():
    flows = chain_flows() + [make_flow(2, 0, 7.0, 3.0), make_flow(0, 1, 1.0, 9.0)]
    aggregated = aggregate_to_center(flows, CENTER)

    for agg in aggregated:
        e = agg.from_id
        expected_in = sum(f.in_magnitude for f in flows if f.from_id == e) + sum(
            f.out_magnitude for f in flows if f.to_id == e
        )
        expected_out = sum(f.out_magnitude for f in flows if f.from_id == e) + sum(
            f.in_magnitude for f in flows if f.to_id == e
        )
        assert agg.in_magnitude == pytest.approx(expected_in)
        assert agg.out_magnitude == pytest.approx(expected_out)

    total_in = sum(f.in_magnitude for f in aggregated)
    total_out = sum(f.out_magnitude for f in aggregated)
    assert total_in == pytest.approx(total_out)
    assert total_in == pytest.approx(sum(f.in_magnitude + f.out_magnitude for f in flows))


def test_equal_totals_count_as_inbound():
    aggregated = aggregate_to_center([make_flow(0, 1, 5.0, 5.0)], CENTER)
    assert all(f.net_direction == IN and f.net_magnitude == 0.0 for f in aggregated)


def test_center_is_excluded():
    flows = [make_flow(0, CENTER, 30.0, 10.0), make_flow(1, CENTER, 5.0, 15.0)]
    aggregated = aggregate_to_center(flows, CENTER)
    assert [f.from_id for f in aggregated] == [0, 1]
    assert aggregated[0].in_magnitude == 30.0
    assert aggregated[0].out_magnitude == 10.0


def test_sorted_by_entity_id():
    flows = [make_flow(5, 2, 1.0, 1.0), make_flow(4, 0, 1.0, 1.0)]
    assert [f.from_id for f in aggregate_to_center(flows, 9)] == [0, 2, 4, 5]


def test_empty_input():
    assert aggregate_to_center([], CENTER) == []


def test_entity_totals_on_graph():
    G = build_flow_graph(chain_flows())
    assert entity_totals(G, 1) == (22.0, 24.0)
