"""
datasphere/graph/flow_values.py: Render mode, display values and line weight.

Once the flow set is final (filtered, optionally aggregated) each flow is
annotated with what the renderer needs to draw it:

    apply_render_mode     puts every flow into the resolved render type
    apply_display_values  picks the value and drawing direction for the
                          selected flow direction (and focus entity)
    rank_flows            percentile rank of each display value, which
                          flow_thickness() maps onto the line-width range

Display rules without a focus entity:
    in    in_magnitude,   drawn to → from
    out   out_magnitude,  drawn from → to
    net   net_magnitude,  to → from when net_direction is 'in', else from → to
    both  max(in, out),   to → from when in >= out, else from → to

With a focus entity the in / out value is read from the focus entity's side
of the flow:
    in    focus is 'to' → out_magnitude, focus is 'from' → in_magnitude
    out   focus is 'from' → out_magnitude, focus is 'to' → in_magnitude

Bidirectional flows always report the display direction 'bidirectional'.
"""

import logging
from dataclasses import replace
from typing import Optional, Sequence

from datasphere.config import DEFAULT_CONFIG, DatasphereConfig
from datasphere.metrics.normalizer import BOTH, IN, NET, OUT, Flow, MetricValue, normalise_shares
from datasphere.metrics.statistics import percentile_rank_values, scale_linear
from datasphere.views.configurations import BIDIRECTIONAL, UNIDIRECTIONAL

logger = logging.getLogger(__name__)

FROM_TO = "from-to"
TO_FROM = "to-from"
DISPLAY_BIDIRECTIONAL = "bidirectional"


# ── Render mode ───────────────────────────────────────────────────────────────

def _as_bidirectional(flow: Flow) -> Flow:
    if flow.in_share_percent is not None and flow.out_share_percent is not None:
        return replace(flow, is_bidirectional=True)

    in_percent, out_percent = normalise_shares(flow.in_magnitude, flow.out_magnitude)
    return replace(
        flow,
        is_bidirectional=True,
        in_share_percent=in_percent,
        out_share_percent=out_percent,
        in_share_index=flow.in_value.index,
        out_share_index=flow.out_value.index,
    )


def apply_render_mode(flows: Sequence[Flow], render_type: str) -> list[Flow]:
    """
    Put every flow into the given render type.

    Bidirectional keeps the share split the payload supplied, or derives it
    from in / (in + out) when there was none (50/50 when both are zero).
    Unidirectional clears the flag and the share fields.
    """
    if render_type == BIDIRECTIONAL:
        return [_as_bidirectional(f) for f in flows]
    if render_type == UNIDIRECTIONAL:
        return [
            replace(
                f,
                is_bidirectional=False,
                in_share_percent=None,
                out_share_percent=None,
                in_share_index=None,
                out_share_index=None,
            )
            for f in flows
        ]
    raise ValueError(f"Unknown render type: {render_type!r}")


# ── Display values ────────────────────────────────────────────────────────────

def _inbound(flow: Flow) -> tuple[float, MetricValue]:
    return flow.in_magnitude, flow.in_value


def _outbound(flow: Flow) -> tuple[float, MetricValue]:
    return flow.out_magnitude, flow.out_value


def display_selection(
    flow: Flow,
    flow_direction: str,
    focus_id: Optional[int] = None,
) -> tuple[float, str, MetricValue]:
    """
    Value, drawing direction and label triple for one flow.

    Args:
        flow:           The flow to display.
        flow_direction: 'in', 'out', 'net' or 'both'.
        focus_id:       Focused entity id, or None.

    Returns:
        (display_value, display_direction, label). display_direction is
        'from-to', 'to-from' or 'bidirectional'.
    """
    if flow_direction == NET:
        value, label = flow.net_magnitude, flow.net_value
        direction = TO_FROM if flow.net_direction == IN else FROM_TO
    elif flow_direction == BOTH:
        if flow.in_magnitude >= flow.out_magnitude:
            (value, label), direction = _inbound(flow), TO_FROM
        else:
            (value, label), direction = _outbound(flow), FROM_TO
    elif flow_direction == IN:
        direction = TO_FROM
        if focus_id is not None and flow.to_id == focus_id:
            value, label = _outbound(flow)
        else:
            value, label = _inbound(flow)
    elif flow_direction == OUT:
        direction = FROM_TO
        if focus_id is not None and flow.to_id == focus_id and flow.from_id != focus_id:
            value, label = _inbound(flow)
        else:
            value, label = _outbound(flow)
    else:
        raise ValueError(f"Unknown flow direction: {flow_direction!r}")

    if flow.is_bidirectional:
        direction = DISPLAY_BIDIRECTIONAL
    return value, direction, label


def apply_display_values(
    flows: Sequence[Flow],
    flow_direction: str,
    focus_id: Optional[int] = None,
) -> list[Flow]:
    """Copies of the flows with display_value / direction / label set."""
    annotated = []
    for flow in flows:
        value, direction, label = display_selection(flow, flow_direction, focus_id)
        annotated.append(
            replace(flow, display_value=value, display_direction=direction, display_label=label)
        )
    return annotated


# ── Percentile and thickness ──────────────────────────────────────────────────

def rank_flows(flows: Sequence[Flow]) -> list[Flow]:
    """
    Copies of the flows with percentile_rank set.

    Ranks are computed over display_value (falling back to Flow.magnitude for
    flows that have none), with the same strictly-below rule as entity ranks.
    """
    values = [f.display_value if f.display_value is not None else f.magnitude for f in flows]
    ranks = percentile_rank_values(values)
    return [replace(f, percentile_rank=rank) for f, rank in zip(flows, ranks)]


def flow_thickness(percentile: Optional[float], config: DatasphereConfig = DEFAULT_CONFIG) -> float:
    """
    Line width for a percentile rank: linear from min_line_thickness at 0 to
    max_line_thickness at 100, clamped. An unranked flow gets the minimum.
    """
    if percentile is None:
        return config.min_line_thickness
    return scale_linear(
        percentile,
        (0.0, 100.0),
        (config.min_line_thickness, config.max_line_thickness),
    )
