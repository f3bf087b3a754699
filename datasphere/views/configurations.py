"""
datasphere/views/configurations.py: Immutable view configuration table.

A view names a data source, the metrics and flow directions it supports,
their defaults, whether center aggregation makes sense for it, and a list of
rendering rules consumed by datasphere.views.rules.

Built-in views:
    markets  Hub/spoke source 'flows_markets'. Every market flows against a
             synthetic center entity; center aggregation supported.
    brands   Entity-pair source 'flows_brands'. Duplicate pairs are collapsed;
             center aggregation not supported.
    legacy   Generic pair source 'flows_absolute' (bare inFlow / outFlow
             scalars); center aggregation supported.

Views are frozen dataclasses and DEFAULT_VIEWS is a read-only mapping. Rules
are sorted once, when a ViewConfiguration is constructed: priority
descending, declaration order for ties. Nothing re-sorts them per lookup.

Extra views can be loaded from plain dicts (e.g. a JSON file) with
views_from_mapping(). Keys follow the payload's camelCase convention:

    {
      "regions": {
        "name": "Regions",
        "dataSource": "flows_regions",
        "sourceKind": "pair",
        "supportsCenterFlow": false,
        "defaultFlowType": "net",
        "supportedFlowTypes": ["in", "out", "net"],
        "defaultMetric": "churn",
        "supportedMetrics": ["churn"],
        "flowRenderingRules": [
          {"condition": {"metric": "churn", "flowType": ["in", "out"]},
           "renderType": "bidirectional", "priority": 10}
        ]
      }
    }
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from datasphere.errors import ConfigurationError, UnknownViewError
from datasphere.metrics.normalizer import (
    ABSOLUTE_METRIC,
    BOTH,
    IN,
    NET,
    OUT,
    SOURCE_ABSOLUTE,
    SOURCE_HUB,
    SOURCE_KINDS,
    SOURCE_PAIR,
    SPEND_METRIC,
)

logger = logging.getLogger(__name__)

UNIDIRECTIONAL = "unidirectional"
BIDIRECTIONAL = "bidirectional"
RENDER_TYPES = (UNIDIRECTIONAL, BIDIRECTIONAL)

FLOW_DIRECTIONS = (OUT, IN, NET, BOTH)

_METRIC_DESCRIPTIONS = {
    "churn": "Customer churn",
    "switching": "Customer switching",
    SPEND_METRIC: "Share of wallet",
    ABSOLUTE_METRIC: "Absolute flow",
}


# ── Rule and view records ─────────────────────────────────────────────────────

def _as_frozenset(value: Any) -> Optional[frozenset[str]]:
    """Scalar-or-collection condition field → frozenset, None when absent."""
    if value is None:
        return None
    if isinstance(value, str):
        return frozenset((value,))
    return frozenset(value)


@dataclass(frozen=True)
class RuleCondition:
    """
    Conjunction of optional membership tests. A field left as None is not
    tested; an empty set never matches.
    """

    metrics: Optional[frozenset[str]] = None
    flow_directions: Optional[frozenset[str]] = None
    views: Optional[frozenset[str]] = None

    def matches(self, view_id: str, flow_direction: str, metric: str) -> bool:
        if self.metrics is not None and metric not in self.metrics:
            return False
        if self.flow_directions is not None and flow_direction not in self.flow_directions:
            return False
        if self.views is not None and view_id not in self.views:
            return False
        return True


@dataclass(frozen=True)
class RenderingRule:
    condition: RuleCondition
    render_type: str
    priority: int = 0

    def __post_init__(self):
        if self.render_type not in RENDER_TYPES:
            raise ConfigurationError(
                f"Unknown render type {self.render_type!r} (expected one of {RENDER_TYPES})"
            )


def rule(
    render_type: str,
    priority: int = 0,
    metric: Union[str, Iterable[str], None] = None,
    flow_direction: Union[str, Iterable[str], None] = None,
    view: Union[str, Iterable[str], None] = None,
) -> RenderingRule:
    """Shorthand constructor accepting scalar-or-list condition fields."""
    return RenderingRule(
        condition=RuleCondition(
            metrics=_as_frozenset(metric),
            flow_directions=_as_frozenset(flow_direction),
            views=_as_frozenset(view),
        ),
        render_type=render_type,
        priority=priority,
    )


@dataclass(frozen=True)
class ViewConfiguration:
    """
    Immutable description of one view.

    Fields:
        id:                        View id, e.g. 'markets'.
        name:                      Human-readable name.
        data_source_key:           Payload key of the view's relationship list.
        source_kind:               'pair', 'hub' or 'absolute'; selects the
                                   record parser and whether duplicate pairs
                                   are collapsed.
        supported_flow_directions: Flow directions the view accepts, in
                                   display order.
        supported_metrics:         Metric names the view accepts, in display
                                   order.
        default_flow_direction:    Used when no flow direction is requested.
        default_metric:            Used when no metric is requested.
        supports_center_flow:      Whether center aggregation applies.
        rules:                     Rendering rules, sorted by priority
                                   descending (stable) at construction.
    """

    id: str
    name: str
    data_source_key: str
    source_kind: str
    supported_flow_directions: tuple[str, ...]
    supported_metrics: tuple[str, ...]
    default_flow_direction: str
    default_metric: str
    supports_center_flow: bool = False
    rules: tuple[RenderingRule, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.source_kind not in SOURCE_KINDS:
            raise ConfigurationError(
                f"View {self.id!r}: unknown source kind {self.source_kind!r}"
            )
        if self.default_metric not in self.supported_metrics:
            raise ConfigurationError(
                f"View {self.id!r}: default metric {self.default_metric!r} is not supported"
            )
        if self.default_flow_direction not in self.supported_flow_directions:
            raise ConfigurationError(
                f"View {self.id!r}: default flow direction "
                f"{self.default_flow_direction!r} is not supported"
            )
        # sorted() is stable, so equal priorities keep declaration order.
        ordered = tuple(sorted(self.rules, key=lambda r: -r.priority))
        object.__setattr__(self, "supported_flow_directions", tuple(self.supported_flow_directions))
        object.__setattr__(self, "supported_metrics", tuple(self.supported_metrics))
        object.__setattr__(self, "rules", ordered)

    def supports_metric(self, metric: str) -> bool:
        return metric in self.supported_metrics

    def supports_flow_direction(self, flow_direction: str) -> bool:
        return flow_direction in self.supported_flow_directions


# ── Built-in views ────────────────────────────────────────────────────────────

MARKETS_VIEW = ViewConfiguration(
    id="markets",
    name="Markets",
    data_source_key="flows_markets",
    source_kind=SOURCE_HUB,
    supported_flow_directions=FLOW_DIRECTIONS,
    supported_metrics=("churn", "switching", SPEND_METRIC),
    default_flow_direction=NET,
    default_metric="churn",
    supports_center_flow=True,
    rules=(
        rule(BIDIRECTIONAL, 10, metric="churn", flow_direction=BOTH),
        rule(BIDIRECTIONAL, 10, metric="switching", flow_direction=BOTH),
        rule(UNIDIRECTIONAL, 5, flow_direction=(OUT, IN, NET)),
    ),
)

BRANDS_VIEW = ViewConfiguration(
    id="brands",
    name="Brands",
    data_source_key="flows_brands",
    source_kind=SOURCE_PAIR,
    supported_flow_directions=FLOW_DIRECTIONS,
    supported_metrics=("churn", "switching"),
    default_flow_direction=NET,
    default_metric="churn",
    supports_center_flow=False,
    rules=(
        rule(BIDIRECTIONAL, 15, metric="churn", flow_direction=(IN, OUT)),
        rule(BIDIRECTIONAL, 15, metric="switching", flow_direction=(IN, OUT)),
        rule(BIDIRECTIONAL, 10, flow_direction=BOTH),
        rule(UNIDIRECTIONAL, 5, flow_direction=NET),
    ),
)

LEGACY_VIEW = ViewConfiguration(
    id="legacy",
    name="Legacy",
    data_source_key="flows_absolute",
    source_kind=SOURCE_ABSOLUTE,
    supported_flow_directions=FLOW_DIRECTIONS,
    supported_metrics=(ABSOLUTE_METRIC,),
    default_flow_direction=NET,
    default_metric=ABSOLUTE_METRIC,
    supports_center_flow=True,
    rules=(rule(BIDIRECTIONAL, 10, flow_direction=BOTH),),
)

DEFAULT_VIEWS: Mapping[str, ViewConfiguration] = MappingProxyType(
    {view.id: view for view in (MARKETS_VIEW, BRANDS_VIEW, LEGACY_VIEW)}
)


# ── Lookup ────────────────────────────────────────────────────────────────────

def get_view(view_id: str, views: Mapping[str, ViewConfiguration] = DEFAULT_VIEWS) -> ViewConfiguration:
    """
    Return the configuration for view_id.

    Raises:
        UnknownViewError: If the id is not in ``views``.
    """
    try:
        return views[view_id]
    except KeyError:
        raise UnknownViewError(view_id, views.keys()) from None


def available_flow_options(view: ViewConfiguration) -> list[dict[str, str]]:
    """Metric options for a metric picker: id, label and a short description."""
    return [
        {
            "id": metric,
            "label": metric.capitalize(),
            "description": f"{_METRIC_DESCRIPTIONS.get(metric, metric.capitalize())} data",
        }
        for metric in view.supported_metrics
    ]


# ── Loading from plain mappings ───────────────────────────────────────────────

def _as_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _require(raw: Mapping[str, Any], key: str, view_id: str) -> Any:
    if key not in raw:
        raise ConfigurationError(f"View {view_id!r}: missing required field {key!r}")
    return raw[key]


def _rule_from_mapping(raw: Mapping[str, Any], view_id: str) -> RenderingRule:
    condition = raw.get("condition") or {}
    if not isinstance(condition, Mapping):
        raise ConfigurationError(f"View {view_id!r}: rule condition must be a mapping")
    return rule(
        render_type=_require(raw, "renderType", view_id),
        priority=int(raw.get("priority", 0)),
        metric=condition.get("metric"),
        flow_direction=condition.get("flowType"),
        view=condition.get("view"),
    )


def view_from_mapping(view_id: str, raw: Mapping[str, Any]) -> ViewConfiguration:
    """Build one ViewConfiguration from its camelCase dict form."""
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"View {view_id!r}: configuration must be a mapping")

    supported_metrics = _as_tuple(_require(raw, "supportedMetrics", view_id))
    supported_directions = _as_tuple(raw.get("supportedFlowTypes", FLOW_DIRECTIONS))
    if not supported_metrics or not supported_directions:
        raise ConfigurationError(f"View {view_id!r}: needs at least one metric and flow direction")
    return ViewConfiguration(
        id=str(raw.get("id", view_id)),
        name=str(raw.get("name", view_id.capitalize())),
        data_source_key=str(_require(raw, "dataSource", view_id)),
        source_kind=str(raw.get("sourceKind", SOURCE_PAIR)),
        supported_flow_directions=supported_directions,
        supported_metrics=supported_metrics,
        default_flow_direction=str(raw.get("defaultFlowType", supported_directions[0])),
        default_metric=str(raw.get("defaultMetric", supported_metrics[0])),
        supports_center_flow=bool(raw.get("supportsCenterFlow", False)),
        rules=tuple(_rule_from_mapping(r, view_id) for r in raw.get("flowRenderingRules", ())),
    )


def views_from_mapping(
    raw: Mapping[str, Any],
    base: Mapping[str, ViewConfiguration] = DEFAULT_VIEWS,
) -> Mapping[str, ViewConfiguration]:
    """
    Load view configurations from a plain mapping of view id → view dict.

    Args:
        raw:  Parsed JSON object, keyed by view id.
        base: Views to start from. Loaded views with the same id replace them.

    Returns:
        A new read-only mapping; ``base`` is not modified.

    Raises:
        ConfigurationError: If a view or rule entry is malformed.
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError("View configuration file must hold a JSON object")

    views = dict(base)
    for view_id, entry in raw.items():
        view = view_from_mapping(str(view_id), entry)
        if view.id in views:
            logger.info("View %r overrides an existing configuration.", view.id)
        views[view.id] = view

    logger.debug("Loaded %d view configuration(s).", len(raw))
    return MappingProxyType(views)
