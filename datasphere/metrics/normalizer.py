"""
datasphere/metrics/normalizer.py: Raw metric payloads → canonical Flow records.

The raw data source delivers relationship records in several shapes. Each
known shape has one explicit parser; every parser produces the same frozen
Flow record, so nothing downstream ever has to guess which field holds the
value it wants.

Record shapes (selected by the view's data source kind):
    pair      {"from": 0, "to": 1, "churn": [{"in": ..., "out": ..., "net": ..., "both": ...}]}
    hub       {"itemID": 3, "churn": {...}}  (the other endpoint is the center entity)
    absolute  {"0,1": {"inFlow": 12, "outFlow": 7}, ...}

Metric block shapes (selected by the metric name):
    directional  churn, switching   in / out / net, optional both
    spend        spend              more / less replace in / out
    absolute     absolute           bare inFlow / outFlow scalars on the record

A directional field is either a bare number (abs = perc = index = value) or a
mapping {"abs": ..., "perc": ..., "index": ...} where abs is required.

Net direction rule:
    - churn / switching: the explicit net field is authoritative. Direction is
      'in' when net >= 0, else 'out'; net magnitude is |net|.
    - spend: direction follows whichever of more / less is larger.
    - absolute: net is derived, |in - out|, direction 'in' when in >= out.

A record that lacks the fields its metric needs raises
MalformedMetricRecordError inside the parser. normalize_flows() catches it per
record, logs a warning, records a MalformedRecord diagnostic and keeps going:
one corrupt relationship never fails the batch.
"""

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Mapping, Optional

from datasphere.errors import MalformedMetricRecordError, UnknownMetricError

logger = logging.getLogger(__name__)

# ── Vocabulary ────────────────────────────────────────────────────────────────

IN = "in"
OUT = "out"
NET = "net"
BOTH = "both"

DIRECTIONAL_METRICS = ("churn", "switching")
SPEND_METRIC = "spend"
ABSOLUTE_METRIC = "absolute"
SUPPORTED_METRICS = DIRECTIONAL_METRICS + (SPEND_METRIC, ABSOLUTE_METRIC)

SOURCE_PAIR = "pair"
SOURCE_HUB = "hub"
SOURCE_ABSOLUTE = "absolute"
SOURCE_KINDS = (SOURCE_PAIR, SOURCE_HUB, SOURCE_ABSOLUTE)

_HUB_ID_FIELDS = ("itemID", "bubbleID")


# ── Canonical records ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MetricValue:
    """
    One directional reading of a metric.

    Fields:
        absolute: Raw magnitude ('abs' in the payload).
        percent:  Share or percentage reported alongside it ('perc').
        index:    Index value against the market baseline ('index').
    """

    absolute: float = 0.0
    percent: float = 0.0
    index: float = 0.0


ZERO_VALUE = MetricValue()


@dataclass(frozen=True)
class Flow:
    """
    Canonical directed relationship between two entity ids.

    Invariants:
        - in_magnitude, out_magnitude, net_magnitude >= 0.
        - in_share_percent + out_share_percent == 100 when is_bidirectional;
          both are None otherwise.

    The display_* and percentile_rank fields are filled in by the filter
    pipeline once the flow direction and focus are known; the normalizer
    leaves them unset.
    """

    from_id: int
    to_id: int
    in_magnitude: float
    out_magnitude: float
    net_magnitude: float
    net_direction: str
    metric: str
    is_bidirectional: bool = False
    in_share_percent: Optional[float] = None
    out_share_percent: Optional[float] = None
    in_share_index: Optional[float] = None
    out_share_index: Optional[float] = None
    in_value: MetricValue = ZERO_VALUE
    out_value: MetricValue = ZERO_VALUE
    net_value: MetricValue = ZERO_VALUE
    display_value: Optional[float] = None
    display_direction: Optional[str] = None
    display_label: Optional[MetricValue] = None
    percentile_rank: Optional[float] = None

    @property
    def magnitude(self) -> float:
        """Largest of the in / out / net magnitudes."""
        return max(self.in_magnitude, self.out_magnitude, self.net_magnitude)

    @property
    def pair_key(self) -> tuple[int, int]:
        """Unordered entity-pair key: (a, b) and (b, a) map to the same key."""
        return (min(self.from_id, self.to_id), max(self.from_id, self.to_id))

    def touches(self, entity_id: int) -> bool:
        return self.from_id == entity_id or self.to_id == entity_id


def zero_flow(from_id: int, to_id: int, metric: str) -> Flow:
    """All-zero flow used in place of a record whose metric data is malformed."""
    return Flow(
        from_id=from_id,
        to_id=to_id,
        in_magnitude=0.0,
        out_magnitude=0.0,
        net_magnitude=0.0,
        net_direction=IN,
        metric=metric,
    )


@dataclass(frozen=True)
class MalformedRecord:
    """Diagnostic for one record that could not be normalized."""

    index: Any
    reason: str


@dataclass
class NormalizationResult:
    """
    Output of normalize_flows().

    Fields:
        flows:     Canonical flows, in record order.
        malformed: One diagnostic per record that failed to parse. Records
                   with readable endpoints still contribute a zero flow.
        skipped:   Count of records dropped without being malformed
                   (reversed duplicates in the absolute source).
    """

    flows: list[Flow] = field(default_factory=list)
    malformed: list[MalformedRecord] = field(default_factory=list)
    skipped: int = 0


# ── Scalar parsers ────────────────────────────────────────────────────────────

def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _finite(value: Any, what: str) -> float:
    if not _is_number(value):
        raise MalformedMetricRecordError(f"{what} is not a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise MalformedMetricRecordError(f"{what} is not finite: {value!r}")
    return number


def parse_entity_id(value: Any, what: str = "id") -> int:
    """
    Parse an entity id: an int, an integral float or a decimal string.

    Raises:
        MalformedMetricRecordError: For anything else.
    """
    if isinstance(value, bool):
        raise MalformedMetricRecordError(f"{what} is not an integer id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip().strip("'\"")
        try:
            return int(text)
        except ValueError:
            pass
    raise MalformedMetricRecordError(f"{what} is not an integer id: {value!r}")


def parse_metric_value(raw: Any, what: str) -> MetricValue:
    """
    Parse one directional field.

    Accepted shapes:
        12.5                                 → MetricValue(12.5, 12.5, 12.5)
        {"abs": 12.5, "perc": 0.3, "index": 104}
                                             → MetricValue(12.5, 0.3, 104)

    'perc' and 'index' default to 0 when absent; 'abs' is required.
    """
    if _is_number(raw):
        number = _finite(raw, what)
        return MetricValue(number, number, number)

    if isinstance(raw, Mapping):
        if "abs" not in raw:
            raise MalformedMetricRecordError(f"{what} has no 'abs' value")
        return MetricValue(
            absolute=_finite(raw["abs"], f"{what}.abs"),
            percent=_finite(raw.get("perc", 0), f"{what}.perc"),
            index=_finite(raw.get("index", 0), f"{what}.index"),
        )

    if raw is None:
        raise MalformedMetricRecordError(f"{what} is missing")
    raise MalformedMetricRecordError(f"{what} has unsupported shape {type(raw).__name__}")


def _non_negative(value: MetricValue, what: str) -> float:
    if value.absolute < 0:
        raise MalformedMetricRecordError(f"{what} magnitude is negative: {value.absolute}")
    return value.absolute


@dataclass(frozen=True)
class ShareSplit:
    """Bidirectional split, renormalised so in_percent + out_percent == 100."""

    in_percent: float
    out_percent: float
    in_index: float = 0.0
    out_index: float = 0.0


def normalise_shares(in_raw: float, out_raw: float) -> tuple[float, float]:
    """
    Rescale two non-negative shares so they sum to 100.

    Works for fractions (0.7 / 0.3) and percentages (70 / 30) alike. When both
    are zero the split is even.
    """
    total = in_raw + out_raw
    if total <= 0:
        return 50.0, 50.0
    in_percent = in_raw / total * 100.0
    return in_percent, 100.0 - in_percent


def parse_share_block(raw: Any) -> Optional[ShareSplit]:
    """
    Parse the optional 'both' block of a directional metric.

    Shape: {"in_perc": .., "out_perc": .., "in_index": .., "out_index": ..}.
    Returns None when the block is absent or carries no share fields. A block
    with only one side reads the missing side as 0.
    """
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise MalformedMetricRecordError(f"both has unsupported shape {type(raw).__name__}")
    if "in_perc" not in raw and "out_perc" not in raw:
        return None

    in_raw = _finite(raw.get("in_perc", 0), "both.in_perc")
    out_raw = _finite(raw.get("out_perc", 0), "both.out_perc")
    if in_raw < 0 or out_raw < 0:
        raise MalformedMetricRecordError("both shares must be non-negative")

    in_percent, out_percent = normalise_shares(in_raw, out_raw)
    return ShareSplit(
        in_percent=in_percent,
        out_percent=out_percent,
        in_index=_finite(raw.get("in_index", 0), "both.in_index"),
        out_index=_finite(raw.get("out_index", 0), "both.out_index"),
    )


# ── Metric block parsers ──────────────────────────────────────────────────────

def metric_block(record: Mapping[str, Any], metric: str) -> Mapping[str, Any]:
    """
    Extract the block for ``metric`` from a record.

    The payload delivers a block either directly or as a one-element list;
    only the first element of a list is read.
    """
    raw = record.get(metric)
    if isinstance(raw, list):
        if not raw:
            raise MalformedMetricRecordError(f"no {metric} data (empty list)")
        raw = raw[0]
    if not isinstance(raw, Mapping):
        raise MalformedMetricRecordError(f"no {metric} data")
    return raw


def parse_directional_block(
    from_id: int,
    to_id: int,
    block: Mapping[str, Any],
    metric: str,
) -> Flow:
    """churn / switching: explicit in, out, net fields plus optional both."""
    in_value = parse_metric_value(block.get(IN), f"{metric}.in")
    out_value = parse_metric_value(block.get(OUT), f"{metric}.out")
    net_value = parse_metric_value(block.get(NET), f"{metric}.net")
    split = parse_share_block(block.get(BOTH))

    return Flow(
        from_id=from_id,
        to_id=to_id,
        in_magnitude=_non_negative(in_value, f"{metric}.in"),
        out_magnitude=_non_negative(out_value, f"{metric}.out"),
        net_magnitude=abs(net_value.absolute),
        net_direction=IN if net_value.absolute >= 0 else OUT,
        metric=metric,
        is_bidirectional=split is not None,
        in_share_percent=split.in_percent if split else None,
        out_share_percent=split.out_percent if split else None,
        in_share_index=split.in_index if split else None,
        out_share_index=split.out_index if split else None,
        in_value=in_value,
        out_value=out_value,
        net_value=net_value,
    )


def parse_spend_block(from_id: int, to_id: int, block: Mapping[str, Any]) -> Flow:
    """spend: 'more' plays the inbound role, 'less' the outbound one."""
    more = parse_metric_value(block.get("more"), "spend.more")
    less = parse_metric_value(block.get("less"), "spend.less")
    more_abs = _non_negative(more, "spend.more")
    less_abs = _non_negative(less, "spend.less")

    net_abs = abs(more_abs - less_abs)
    return Flow(
        from_id=from_id,
        to_id=to_id,
        in_magnitude=more_abs,
        out_magnitude=less_abs,
        net_magnitude=net_abs,
        net_direction=IN if more_abs >= less_abs else OUT,
        metric=SPEND_METRIC,
        in_value=more,
        out_value=less,
        net_value=MetricValue(net_abs, abs(more.percent - less.percent), 0.0),
    )


def parse_absolute_block(from_id: int, to_id: int, block: Mapping[str, Any]) -> Flow:
    """absolute: bare inFlow / outFlow scalars, net derived from their difference."""
    in_abs = _finite(block.get("inFlow"), "inFlow")
    out_abs = _finite(block.get("outFlow"), "outFlow")
    if in_abs < 0 or out_abs < 0:
        raise MalformedMetricRecordError("inFlow / outFlow must be non-negative")

    net_abs = abs(in_abs - out_abs)
    return Flow(
        from_id=from_id,
        to_id=to_id,
        in_magnitude=in_abs,
        out_magnitude=out_abs,
        net_magnitude=net_abs,
        net_direction=IN if in_abs >= out_abs else OUT,
        metric=ABSOLUTE_METRIC,
        in_value=MetricValue(in_abs, in_abs, in_abs),
        out_value=MetricValue(out_abs, out_abs, out_abs),
        net_value=MetricValue(net_abs, net_abs, net_abs),
    )


def _flow_from_record(
    from_id: int,
    to_id: int,
    record: Mapping[str, Any],
    metric: str,
) -> Flow:
    if metric == ABSOLUTE_METRIC:
        return parse_absolute_block(from_id, to_id, record)
    block = metric_block(record, metric)
    if metric == SPEND_METRIC:
        return parse_spend_block(from_id, to_id, block)
    return parse_directional_block(from_id, to_id, block, metric)


# ── Record parsers ────────────────────────────────────────────────────────────

def parse_pair_record(record: Any, metric: str) -> Flow:
    """Entity-pair record: explicit 'from' and 'to' ids."""
    if not isinstance(record, Mapping):
        raise MalformedMetricRecordError(f"record is not a mapping: {type(record).__name__}")
    from_id = parse_entity_id(record.get("from"), "from")
    to_id = parse_entity_id(record.get("to"), "to")
    return _flow_from_record(from_id, to_id, record, metric)


def hub_record_id(record: Any) -> int:
    """Spoke id of a hub record ('itemID', or the older 'bubbleID')."""
    if not isinstance(record, Mapping):
        raise MalformedMetricRecordError(f"record is not a mapping: {type(record).__name__}")
    for key in _HUB_ID_FIELDS:
        if record.get(key) is not None:
            return parse_entity_id(record[key], key)
    raise MalformedMetricRecordError("hub record has no itemID")


def parse_hub_record(record: Any, metric: str, center_id: int) -> Flow:
    """Hub/spoke record: the spoke entity flows against the center entity."""
    return _flow_from_record(hub_record_id(record), center_id, record, metric)


def parse_pair_key(key: str) -> tuple[int, int]:
    """Parse an absolute-source key such as "0,1" or "'0','1'"."""
    parts = str(key).replace("'", "").replace('"', "").split(",")
    if len(parts) != 2:
        raise MalformedMetricRecordError(f"flow key is not a 'from,to' pair: {key!r}")
    return parse_entity_id(parts[0], "from"), parse_entity_id(parts[1], "to")


# ── Batch normalization ───────────────────────────────────────────────────────

def _check_metric(metric: str, source_kind: str) -> None:
    if source_kind not in SOURCE_KINDS:
        raise ValueError(f"Unknown data source kind: {source_kind!r}")
    if metric not in SUPPORTED_METRICS:
        raise UnknownMetricError(metric, source_kind, SUPPORTED_METRICS)
    if source_kind == SOURCE_ABSOLUTE and metric != ABSOLUTE_METRIC:
        raise UnknownMetricError(metric, source_kind, (ABSOLUTE_METRIC,))


def _pair_endpoints(record: Any) -> Optional[tuple[int, int]]:
    if not isinstance(record, Mapping):
        return None
    try:
        return parse_entity_id(record.get("from"), "from"), parse_entity_id(record.get("to"), "to")
    except MalformedMetricRecordError:
        return None


def _report(result: NormalizationResult, index: Any, exc: MalformedMetricRecordError) -> None:
    logger.warning("Malformed flow record %s: %s", index, exc)
    result.malformed.append(MalformedRecord(index=index, reason=str(exc)))


def normalize_flows(
    records: Any,
    metric: str,
    source_kind: str,
    center_id: Optional[int] = None,
) -> NormalizationResult:
    """
    Normalize a batch of raw relationship records into canonical flows.

    Args:
        records:     List of records (pair / hub) or a key → record mapping
                     (absolute). None is treated as an empty batch.
        metric:      Metric name, one of SUPPORTED_METRICS.
        source_kind: 'pair', 'hub' or 'absolute'.
        center_id:   Id of the synthetic center entity. Required for hub.

    Returns:
        NormalizationResult with flows in record order and one diagnostic per
        malformed record.

    Raises:
        UnknownMetricError: If the metric is unknown, or not readable from an
                            absolute source.
        ValueError:         If source_kind is unknown, or hub records are
                            given without a center_id.

    Notes:
        - A record whose metric data fails to parse but whose endpoints are
          readable yields a zero flow, so the pair keeps its place in the
          diagram. Records with unreadable endpoints are omitted.
        - In the absolute source a key whose reverse was already read is
          skipped (counted in result.skipped), so each pair appears once.
    """
    _check_metric(metric, source_kind)
    result = NormalizationResult()
    if records is None:
        return result

    if source_kind == SOURCE_HUB:
        if center_id is None:
            raise ValueError("center_id is required to normalize hub records")
        for index, record in enumerate(records):
            try:
                result.flows.append(parse_hub_record(record, metric, center_id))
            except MalformedMetricRecordError as exc:
                _report(result, index, exc)
                try:
                    spoke = hub_record_id(record)
                except MalformedMetricRecordError:
                    continue
                result.flows.append(zero_flow(spoke, center_id, metric))

    elif source_kind == SOURCE_PAIR:
        for index, record in enumerate(records):
            try:
                result.flows.append(parse_pair_record(record, metric))
            except MalformedMetricRecordError as exc:
                _report(result, index, exc)
                endpoints = _pair_endpoints(record)
                if endpoints is not None:
                    result.flows.append(zero_flow(*endpoints, metric))

    else:
        if not isinstance(records, Mapping):
            raise ValueError("absolute flow data must be a mapping of 'from,to' keys")
        seen: set[tuple[int, int]] = set()
        for key, record in records.items():
            try:
                from_id, to_id = parse_pair_key(key)
            except MalformedMetricRecordError as exc:
                _report(result, key, exc)
                continue
            if (to_id, from_id) in seen:
                result.skipped += 1
                continue
            seen.add((from_id, to_id))
            try:
                if not isinstance(record, Mapping):
                    raise MalformedMetricRecordError("record is not a mapping")
                result.flows.append(parse_absolute_block(from_id, to_id, record))
            except MalformedMetricRecordError as exc:
                _report(result, key, exc)
                result.flows.append(zero_flow(from_id, to_id, metric))

    logger.debug(
        "Normalized %d %s flows (%s source): %d malformed, %d skipped.",
        len(result.flows),
        metric,
        source_kind,
        len(result.malformed),
        result.skipped,
    )
    return result
