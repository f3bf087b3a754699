"""
datasphere/pipeline.py: Single-call flow processing and layout.

run_pipeline() takes one raw payload snapshot plus the current parameters
and returns everything the rendering layer needs. It holds no state between
calls: every parameter change means a full re-run from the raw payload.

Usage:
    from datasphere.pipeline import PipelineParams, run_pipeline
    result = run_pipeline(payload, PipelineParams(view_id="brands", threshold=20))
    for geometry in result.geometries:
        ...
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

from datasphere.config import DEFAULT_CONFIG, DatasphereConfig
from datasphere.graph.aggregation import aggregate_to_center
from datasphere.graph.builder import (
    build_flow_graph,
    center_entity_id,
    parse_entities,
    related_entities,
)
from datasphere.graph.filters import (
    FlowStatistics,
    collapse_duplicates,
    focus_filter,
    sort_by_magnitude,
    summarize_flows,
    threshold_filter,
)
from datasphere.graph.flow_values import apply_display_values, apply_render_mode, rank_flows
from datasphere.layout.bubbles import Entity, layout_entities
from datasphere.layout.geometry import DroppedFlow, FlowGeometry, layout_flows
from datasphere.metrics.normalizer import (
    SOURCE_HUB,
    SOURCE_PAIR,
    Flow,
    MalformedRecord,
    normalize_flows,
)
from datasphere.views.configurations import DEFAULT_VIEWS, ViewConfiguration, get_view
from datasphere.views.rules import resolve_for_view

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineParams:
    """
    Per-render parameters.

    Fields:
        view_id:            View to render.
        metric:             Metric name; the view's default when None.
        flow_direction:     'in', 'out', 'net' or 'both'; the view's default
                            when None.
        threshold:          Minimum magnitude, as a percentage (0..100) of the
                            largest magnitude in the focused set.
        focus_id:           Entity to isolate, or None.
        center_aggregation: Collapse flows onto the center entity. Ignored by
                            views that do not support it.
        width, height:      Canvas size; config defaults when None.
    """

    view_id: str
    metric: Optional[str] = None
    flow_direction: Optional[str] = None
    threshold: float = 0.0
    focus_id: Optional[int] = None
    center_aggregation: bool = False
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass
class PipelineResult:
    """
    Complete output of one pipeline run.

    entities and geometries are what the renderer draws; flows keeps the
    annotated flow records in drawing order, including any whose geometry was
    dropped. malformed and dropped carry the per-record and per-flow
    diagnostics.
    """

    view_id: str
    metric: str
    flow_direction: str
    render_type: str
    center_aggregation: bool
    center_id: Optional[int]
    placement_radius: float
    entities: list[Entity] = field(default_factory=list)
    flows: list[Flow] = field(default_factory=list)
    geometries: list[FlowGeometry] = field(default_factory=list)
    malformed: list[MalformedRecord] = field(default_factory=list)
    dropped: list[DroppedFlow] = field(default_factory=list)
    statistics: FlowStatistics = field(default_factory=FlowStatistics)

    def to_dict(self) -> dict[str, Any]:
        """Plain, JSON-serialisable form."""
        return asdict(self)


def _check_threshold(threshold: float) -> float:
    threshold = float(threshold)
    if not math.isfinite(threshold) or not 0.0 <= threshold <= 100.0:
        raise ValueError(f"threshold must be within [0, 100], got {threshold!r}")
    return threshold


def run_pipeline(
    payload: Mapping[str, Any],
    params: PipelineParams,
    views: Mapping[str, ViewConfiguration] = DEFAULT_VIEWS,
    config: DatasphereConfig = DEFAULT_CONFIG,
) -> PipelineResult:
    """
    Run the full flow processing and layout sequence.

    Order:
        1. Resolve view, metric, flow direction and render type
        2. Parse entities, pick the center id
        3. Normalize the view's relationship records
        4. Focus filter
        5. Threshold filter (relative to the focused set)
        6. Duplicate collapse (pair source only)
        7. Center aggregation (optional, supersedes the flow set)
        8. Render mode, display values, percentile ranks, magnitude order
        9. Bubble layout
        10. Flow geometry

    Args:
        payload: Parsed raw payload (entity list plus relationship lists).
        params:  PipelineParams for this render.
        views:   View table. Defaults to DEFAULT_VIEWS.
        config:  DatasphereConfig with all layout constants.

    Returns:
        PipelineResult.

    Raises:
        UnknownViewError, UnknownMetricError, UnknownFlowDirectionError:
            The requested selection is not configured.
        ValueError: threshold outside [0, 100] or invalid canvas size.
    """
    # ── 1. Selection ──────────────────────────────────────────────────────────
    view = get_view(params.view_id, views)
    metric = params.metric or view.default_metric
    flow_direction = params.flow_direction or view.default_flow_direction
    render_type = resolve_for_view(view, flow_direction, metric)
    threshold = _check_threshold(params.threshold)

    aggregate = params.center_aggregation and view.supports_center_flow
    if params.center_aggregation and not aggregate:
        logger.debug("View %r does not support center aggregation; ignoring.", view.id)

    logger.info(
        "Phase 1/10: view=%s metric=%s direction=%s render=%s",
        view.id,
        metric,
        flow_direction,
        render_type,
    )

    # ── 2. Entities ───────────────────────────────────────────────────────────
    records = parse_entities(payload)
    needs_center = view.source_kind == SOURCE_HUB or aggregate
    center_id = center_entity_id(records) if needs_center else None
    logger.info("Phase 2/10: %d entities (center id %s).", len(records), center_id)

    # ── 3. Normalization ──────────────────────────────────────────────────────
    normalized = normalize_flows(
        payload.get(view.data_source_key),
        metric,
        view.source_kind,
        center_id=center_id,
    )
    flows = normalized.flows
    logger.info(
        "Phase 3/10: %d flows normalized, %d malformed.", len(flows), len(normalized.malformed)
    )

    # ── 4-6. Filters ──────────────────────────────────────────────────────────
    flows = focus_filter(flows, params.focus_id)
    flows = threshold_filter(flows, threshold)
    if view.source_kind == SOURCE_PAIR:
        flows = collapse_duplicates(flows)
    logger.info("Phase 6/10: %d flows after filtering.", len(flows))

    # ── 7. Center aggregation ─────────────────────────────────────────────────
    if aggregate:
        flows = aggregate_to_center(flows, center_id)
        logger.info("Phase 7/10: aggregated to %d center flows.", len(flows))

    # ── 8. Annotation ─────────────────────────────────────────────────────────
    flows = apply_render_mode(flows, render_type)
    flows = apply_display_values(flows, flow_direction, params.focus_id)
    flows = rank_flows(flows)
    flows = sort_by_magnitude(flows)

    # ── 9. Bubble layout ──────────────────────────────────────────────────────
    related = related_entities(build_flow_graph(flows), params.focus_id)
    layout = layout_entities(
        records,
        width=params.width,
        height=params.height,
        center_id=center_id,
        focus_id=params.focus_id,
        related=related,
        config=config,
    )

    # ── 10. Flow geometry ─────────────────────────────────────────────────────
    geometries, dropped = layout_flows(flows, layout.by_id(), config)
    logger.info(
        "Phase 10/10: %d flow geometries, %d dropped.", len(geometries), len(dropped)
    )

    return PipelineResult(
        view_id=view.id,
        metric=metric,
        flow_direction=flow_direction,
        render_type=render_type,
        center_aggregation=aggregate,
        center_id=center_id,
        placement_radius=layout.placement_radius,
        entities=layout.entities,
        flows=flows,
        geometries=geometries,
        malformed=list(normalized.malformed),
        dropped=dropped,
        statistics=summarize_flows(flows),
    )
