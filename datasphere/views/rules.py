"""
datasphere/views/rules.py: Table-driven render-type resolution.

resolve() answers one question: for a (view, flow direction, metric) triple,
is each flow drawn as one line (unidirectional) or as two offset half-lines
(bidirectional)?

Algorithm:
    1. Validate the triple against the view: an unknown view, metric or flow
       direction is a caller bug and raises a ConfigurationError subclass.
    2. Walk the view's rules in their stored order (priority descending,
       declaration order for ties; sorted once when the view was built).
    3. The first rule whose condition matches wins.
    4. No match → 'unidirectional'.

Adding a behaviour means adding a rule entry to a view; no caller changes.
"""

import logging
from typing import Mapping, Optional

from datasphere.errors import UnknownFlowDirectionError, UnknownMetricError
from datasphere.views.configurations import (
    DEFAULT_VIEWS,
    UNIDIRECTIONAL,
    RenderingRule,
    ViewConfiguration,
    get_view,
)

logger = logging.getLogger(__name__)


def validate_selection(view: ViewConfiguration, flow_direction: str, metric: str) -> None:
    """
    Raise if the view does not support the flow direction or metric.

    Raises:
        UnknownMetricError:        Metric not in view.supported_metrics.
        UnknownFlowDirectionError: Flow direction not in
                                   view.supported_flow_directions.
    """
    if not view.supports_metric(metric):
        raise UnknownMetricError(metric, view.id, view.supported_metrics)
    if not view.supports_flow_direction(flow_direction):
        raise UnknownFlowDirectionError(flow_direction, view.id, view.supported_flow_directions)


def matching_rule(
    view: ViewConfiguration,
    flow_direction: str,
    metric: str,
) -> Optional[RenderingRule]:
    """Highest-priority rule of the view that matches, or None."""
    for candidate in view.rules:
        if candidate.condition.matches(view.id, flow_direction, metric):
            return candidate
    return None


def resolve_for_view(view: ViewConfiguration, flow_direction: str, metric: str) -> str:
    """resolve() for an already looked-up ViewConfiguration."""
    validate_selection(view, flow_direction, metric)
    winner = matching_rule(view, flow_direction, metric)
    render_type = winner.render_type if winner is not None else UNIDIRECTIONAL
    logger.debug(
        "Render type for view=%s direction=%s metric=%s: %s (%s)",
        view.id,
        flow_direction,
        metric,
        render_type,
        f"priority {winner.priority}" if winner is not None else "default",
    )
    return render_type


def resolve(
    view_id: str,
    flow_direction: str,
    metric: str,
    views: Mapping[str, ViewConfiguration] = DEFAULT_VIEWS,
) -> str:
    """
    Resolve the render type for a (view, flow direction, metric) triple.

    Args:
        view_id:        View id, looked up in ``views``.
        flow_direction: 'in', 'out', 'net' or 'both'.
        metric:         Metric name.
        views:          View table. Defaults to the built-in DEFAULT_VIEWS.

    Returns:
        'unidirectional' or 'bidirectional'.

    Raises:
        UnknownViewError:          Unknown view id.
        UnknownMetricError:        Metric not supported by the view.
        UnknownFlowDirectionError: Flow direction not supported by the view.
    """
    return resolve_for_view(get_view(view_id, views), flow_direction, metric)


def render_table(view: ViewConfiguration) -> list[dict[str, str]]:
    """
    Resolved render type for every supported (metric, flow direction) pair.

    Rows are ordered by the view's metric order, then flow direction order.
    """
    return [
        {
            "view": view.id,
            "metric": metric,
            "flow_direction": flow_direction,
            "render_type": resolve_for_view(view, flow_direction, metric),
        }
        for metric in view.supported_metrics
        for flow_direction in view.supported_flow_directions
    ]
