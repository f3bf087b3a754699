"""
datasphere/tests/test_normalizer.py: Tests for raw payload → canonical Flow normalization.

Tests verify:
- Pair, hub and absolute record shapes all produce the same Flow type.
- churn / switching trust the explicit net field for magnitude and direction.
- spend reads more / less and takes its direction from the larger one.
- absolute derives net from |in - out|.
- 'both' shares are renormalised so in + out == 100, whatever their scale;
  a missing side reads as 0.
- A malformed record yields a zero flow (readable endpoints) or is omitted,
  is reported once, and never fails the batch.
- The reversed key of an absolute pair is skipped.
- Unknown metrics raise UnknownMetricError.
"""

import pytest

from datasphere.errors import MalformedMetricRecordError, UnknownMetricError
from datasphere.metrics.normalizer import (
    IN,
    OUT,
    SOURCE_ABSOLUTE,
    SOURCE_HUB,
    SOURCE_PAIR,
    MetricValue,
    normalise_shares,
    normalize_flows,
    parse_metric_value,
    parse_pair_key,
    parse_share_block,
)


# ── Field parsing ─────────────────────────────────────────────────────────────

def test_bare_number_fills_all_three_fields():
    assert parse_metric_value(12.5, "in") == MetricValue(12.5, 12.5, 12.5)


def test_mapping_defaults_perc_and_index():
    assert parse_metric_value({"abs": 4}, "in") == MetricValue(4.0, 0.0, 0.0)


@pytest.mark.parametrize("raw", [None, {"perc": 1.0}, "12", True, float("nan"), [1.0]])
def test_unparseable_field_raises(raw):
    with pytest.raises(MalformedMetricRecordError):
        parse_metric_value(raw, "in")


@pytest.mark.parametrize(
    "in_raw, out_raw, expected_in",
    [(0.7, 0.3, 70.0), (70.0, 30.0, 70.0), (0.625, 0.375, 62.5), (1.0, 3.0, 25.0)],
)
def test_share_renormalisation(in_raw, out_raw, expected_in):
    split = parse_share_block({"in_perc": in_raw, "out_perc": out_raw})
    assert split.in_percent == pytest.approx(expected_in)
    assert split.in_percent + split.out_percent == pytest.approx(100.0)


def test_zero_shares_split_evenly():
    assert normalise_shares(0.0, 0.0) == (50.0, 50.0)


def test_absent_share_block():
    assert parse_share_block(None) is None
    assert parse_share_block({}) is None


def test_one_sided_share_block_reads_missing_side_as_zero():
    split = parse_share_block({"out_perc": 0.4})
    assert (split.in_percent, split.out_percent) == (0.0, 100.0)

    record = {"from": 0, "to": 1, "churn": {"in": 6.0, "out": 4.0, "net": 2.0, "both": {"out_perc": 0.4}}}
    result = normalize_flows([record], "churn", SOURCE_PAIR)
    assert result.malformed == []
    [flow] = result.flows
    assert (flow.in_magnitude, flow.out_magnitude, flow.net_magnitude) == (6.0, 4.0, 2.0)
    assert flow.is_bidirectional


def test_pair_key_strips_quotes():
    assert parse_pair_key("'3','7'") == (3, 7)
    assert parse_pair_key(' "1" , "2" ') == (1, 2)
    with pytest.raises(MalformedMetricRecordError):
        parse_pair_key("1,2,3")


# ── Pair source ───────────────────────────────────────────────────────────────

def test_pair_churn_explicit_net(brands_payload):
    result = normalize_flows(brands_payload["flows_brands"], "churn", SOURCE_PAIR)
    assert len(result.flows) == 4
    assert result.malformed == []

    first = result.flows[0]
    assert (first.from_id, first.to_id) == (0, 1)
    assert first.in_magnitude == 20.0
    assert first.out_magnitude == 12.0
    assert first.net_magnitude == 8.0
    assert first.net_direction == IN
    assert first.in_value == MetricValue(20.0, 0.40, 110.0)


def test_negative_net_means_outbound(brands_payload):
    result = normalize_flows(brands_payload["flows_brands"], "churn", SOURCE_PAIR)
    flow = result.flows[2]
    assert (flow.from_id, flow.to_id) == (1, 2)
    assert flow.net_magnitude == 6.0
    assert flow.net_direction == OUT


def test_explicit_net_beats_derived_difference():
    records = [{"from": 0, "to": 1, "churn": [{"in": 10, "out": 4, "net": 1}]}]
    flow = normalize_flows(records, "churn", SOURCE_PAIR).flows[0]
    assert flow.net_magnitude == 1.0


def test_both_block_marks_flow_bidirectional(brands_payload):
    flows = normalize_flows(brands_payload["flows_brands"], "churn", SOURCE_PAIR).flows
    assert flows[0].is_bidirectional
    assert flows[0].in_share_percent == pytest.approx(62.5)
    assert flows[0].out_share_percent == pytest.approx(37.5)
    assert flows[0].in_share_index == 120.0
    assert not flows[2].is_bidirectional
    assert flows[2].in_share_percent is None


def test_bidirectional_share_invariant(brands_payload, markets_payload):
    flows = normalize_flows(brands_payload["flows_brands"], "churn", SOURCE_PAIR).flows
    flows += normalize_flows(markets_payload["flows_markets"], "churn", SOURCE_HUB, center_id=3).flows
    for flow in flows:
        if flow.is_bidirectional:
            assert flow.in_share_percent + flow.out_share_percent == pytest.approx(100.0)
        else:
            assert flow.in_share_percent is None and flow.out_share_percent is None


def test_block_given_without_list():
    records = [{"from": 0, "to": 1, "switching": {"in": 3, "out": 1, "net": 2}}]
    flow = normalize_flows(records, "switching", SOURCE_PAIR).flows[0]
    assert flow.metric == "switching"
    assert flow.in_magnitude == 3.0


# ── Hub source ────────────────────────────────────────────────────────────────

def test_hub_records_point_at_center(markets_payload):
    result = normalize_flows(markets_payload["flows_markets"], "churn", SOURCE_HUB, center_id=3)
    assert [(f.from_id, f.to_id) for f in result.flows] == [(0, 3), (1, 3), (2, 3)]
    assert result.flows[0].in_share_percent == pytest.approx(75.0)
    assert result.flows[1].net_direction == OUT


def test_hub_accepts_bubble_id():
    records = [{"bubbleID": 4, "churn": {"in": 1, "out": 2, "net": -1}}]
    flow = normalize_flows(records, "churn", SOURCE_HUB, center_id=9).flows[0]
    assert (flow.from_id, flow.to_id) == (4, 9)


def test_spend_direction_follows_larger_side(markets_payload):
    flows = normalize_flows(markets_payload["flows_markets"], "spend", SOURCE_HUB, center_id=3).flows

    assert flows[0].in_magnitude == 5.0
    assert flows[0].out_magnitude == 2.0
    assert flows[0].net_magnitude == 3.0
    assert flows[0].net_direction == IN

    assert flows[1].net_magnitude == 3.0
    assert flows[1].net_direction == OUT

    # more == less
    assert flows[2].net_magnitude == 0.0
    assert flows[2].net_direction == IN


def test_hub_requires_center_id(markets_payload):
    with pytest.raises(ValueError):
        normalize_flows(markets_payload["flows_markets"], "churn", SOURCE_HUB)


# ── Absolute source ───────────────────────────────────────────────────────────

def test_absolute_source_derives_net(legacy_payload):
    result = normalize_flows(legacy_payload["flows_absolute"], "absolute", SOURCE_ABSOLUTE)
    assert [(f.from_id, f.to_id) for f in result.flows] == [(0, 1), (1, 2)]
    assert result.skipped == 1

    first, second = result.flows
    assert first.net_magnitude == 5.0
    assert first.net_direction == IN
    assert second.net_magnitude == 6.0
    assert second.net_direction == OUT


def test_absolute_source_only_reads_absolute_metric(legacy_payload):
    with pytest.raises(UnknownMetricError):
        normalize_flows(legacy_payload["flows_absolute"], "churn", SOURCE_ABSOLUTE)


# ── Malformed records ─────────────────────────────────────────────────────────

def test_malformed_pair_record_becomes_zero_flow():
    records = [
        {"from": 0, "to": 1, "churn": [{"in": 1.0}]},
        {"from": 1, "to": 2, "churn": [{"in": 4.0, "out": 2.0, "net": 2.0}]},
    ]
    result = normalize_flows(records, "churn", SOURCE_PAIR)

    assert len(result.flows) == 2
    zero = result.flows[0]
    assert (zero.from_id, zero.to_id) == (0, 1)
    assert zero.magnitude == 0.0
    assert len(result.malformed) == 1
    assert result.malformed[0].index == 0
    assert "out" in result.malformed[0].reason


def test_unreadable_endpoints_are_omitted():
    records = [
        {"from": "x", "to": 1, "churn": [{"in": 1, "out": 1, "net": 0}]},
        "not a record",
        {"from": 0, "to": 1, "churn": [{"in": 1, "out": 1, "net": 0}]},
    ]
    result = normalize_flows(records, "churn", SOURCE_PAIR)
    assert len(result.flows) == 1
    assert [m.index for m in result.malformed] == [0, 1]


def test_hub_record_without_metric_becomes_zero_flow():
    records = [{"itemID": 2}, {"churn": {"in": 1, "out": 1, "net": 0}}]
    result = normalize_flows(records, "churn", SOURCE_HUB, center_id=5)
    assert [(f.from_id, f.to_id, f.magnitude) for f in result.flows] == [(2, 5, 0.0)]
    assert len(result.malformed) == 2


@pytest.mark.parametrize(
    "block",
    [
        {"in": -1.0, "out": 1.0, "net": 0.0},
        {"in": True, "out": 1.0, "net": 0.0},
        {"in": float("inf"), "out": 1.0, "net": 0.0},
        {"in": 1.0, "out": 1.0, "net": 0.0, "both": {"in_perc": -1, "out_perc": 2}},
    ],
)
def test_invalid_values_are_malformed(block):
    result = normalize_flows([{"from": 0, "to": 1, "churn": [block]}], "churn", SOURCE_PAIR)
    assert len(result.malformed) == 1
    assert result.flows[0].magnitude == 0.0


def test_empty_and_missing_batches():
    assert normalize_flows(None, "churn", SOURCE_PAIR).flows == []
    assert normalize_flows([], "churn", SOURCE_PAIR).flows == []


def test_unknown_metric_raises(brands_payload):
    with pytest.raises(UnknownMetricError):
        normalize_flows(brands_payload["flows_brands"], "affinity", SOURCE_PAIR)
