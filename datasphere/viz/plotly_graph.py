"""
datasphere/viz/plotly_graph.py: Interactive Plotly rendering of a pipeline result.

A thin consumer of PipelineResult: it draws what the engine computed and
computes nothing itself.

Visual encoding:
    - Bubble:     Circle shape at the entity position with the engine radius;
                  dashed outer ring where flow lines end.
    - Fill:       Focus entity dark purple, related entities medium purple,
                  others light purple; the center entity is unfilled.
    - Flow line:  One line trace per segment, width = engine thickness.
    - Line color: Orange for 'out' segments and from → to lines, blue for
                  'in' segments and to → from lines.
    - Hover:      Entity label and magnitude; segment value, percent, index.

The canvas uses screen coordinates (y grows downwards), so the y axis is
reversed to keep 12 o'clock at the top.
"""

import logging
from typing import Optional

from datasphere.graph.flow_values import TO_FROM
from datasphere.layout.geometry import FlowGeometry, FlowSegment
from datasphere.metrics.normalizer import IN
from datasphere.pipeline import PipelineResult

logger = logging.getLogger(__name__)

# ── Optional Plotly dependency ────────────────────────────────────────────────
try:
    import plotly.graph_objects as go
    HAS_PLOTLY = True
except ImportError:
    go = None
    HAS_PLOTLY = False

_FILL_DEFAULT = "rgba(190, 170, 230, 0.8)"
_FILL_FOCUS = "rgba(90, 40, 160, 0.9)"
_FILL_RELATED = "rgba(140, 100, 200, 0.85)"
_RING_COLOR = "rgba(120, 120, 120, 0.35)"
_LINE_INBOUND = "rgba(31, 119, 180, 0.75)"
_LINE_OUTBOUND = "rgba(255, 127, 14, 0.75)"


def _segment_color(geometry: FlowGeometry, segment: FlowSegment) -> str:
    if geometry.is_bidirectional:
        return _LINE_INBOUND if segment.role == IN else _LINE_OUTBOUND
    return _LINE_INBOUND if geometry.display_direction == TO_FROM else _LINE_OUTBOUND


def _fmt(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:,.2f}"


def build_plotly_figure(result: PipelineResult, title: Optional[str] = None) -> "go.Figure":
    """
    Build an interactive bubble-and-flow figure.

    Args:
        result: PipelineResult from run_pipeline().
        title:  Figure title; defaults to view, metric and flow direction.

    Returns:
        Plotly Figure object (no IO, no files written).

    Raises:
        ImportError: If plotly is not installed.
    """
    if not HAS_PLOTLY:
        raise ImportError("plotly is required: pip install plotly")

    labels = {e.id: e.label for e in result.entities}

    # ── Bubbles as layout shapes ──────────────────────────────────────────────
    shapes = []
    for entity in result.entities:
        if entity.is_center:
            fill = "rgba(0, 0, 0, 0)"
        elif entity.is_focus:
            fill = _FILL_FOCUS
        elif entity.is_related:
            fill = _FILL_RELATED
        else:
            fill = _FILL_DEFAULT
        shapes.append(
            {
                "type": "circle",
                "xref": "x",
                "yref": "y",
                "x0": entity.x - entity.outer_ring_radius,
                "y0": entity.y - entity.outer_ring_radius,
                "x1": entity.x + entity.outer_ring_radius,
                "y1": entity.y + entity.outer_ring_radius,
                "line": {"color": _RING_COLOR, "width": 1, "dash": "dot"},
                "layer": "below",
            }
        )
        shapes.append(
            {
                "type": "circle",
                "xref": "x",
                "yref": "y",
                "x0": entity.x - entity.radius,
                "y0": entity.y - entity.radius,
                "x1": entity.x + entity.radius,
                "y1": entity.y + entity.radius,
                "fillcolor": fill,
                "line": {"color": "white", "width": 1},
                "layer": "below",
            }
        )

    # ── Flow segments as line traces ──────────────────────────────────────────
    traces = []
    for geometry in result.geometries:
        name = f"{labels.get(geometry.from_id, geometry.from_id)} → {labels.get(geometry.to_id, geometry.to_id)}"
        for segment in geometry.segments:
            hover = (
                f"<b>{name}</b><br>"
                f"Segment: {segment.role}<br>"
                f"Value: {_fmt(segment.value)}<br>"
                f"Percent: {_fmt(segment.percent)}<br>"
                f"Index: {_fmt(segment.index)}"
            )
            traces.append(
                go.Scatter(
                    x=[segment.start[0], segment.end[0]],
                    y=[segment.start[1], segment.end[1]],
                    mode="lines",
                    line={"width": geometry.thickness, "color": _segment_color(geometry, segment)},
                    text=[hover, hover],
                    hovertemplate="%{text}<extra></extra>",
                    showlegend=False,
                )
            )

    # ── Entity markers and labels (hover targets) ─────────────────────────────
    traces.append(
        go.Scatter(
            x=[e.x for e in result.entities],
            y=[e.y for e in result.entities],
            mode="markers",
            marker={"size": 1, "color": "rgba(0, 0, 0, 0)"},
            text=[
                f"<b>{e.label}</b><br>Magnitude: {_fmt(e.magnitude)}<br>"
                f"Percentile: {_fmt(e.percentile_rank)}"
                for e in result.entities
            ],
            hovertemplate="%{text}<extra></extra>",
            showlegend=False,
        )
    )
    traces.append(
        go.Scatter(
            x=[e.label_x for e in result.entities],
            y=[e.label_y for e in result.entities],
            mode="text",
            text=[e.label for e in result.entities],
            hoverinfo="none",
            showlegend=False,
        )
    )

    fig = go.Figure(
        data=traces,
        layout=go.Layout(
            title=title or f"Datasphere: {result.view_id} / {result.metric} / {result.flow_direction}",
            shapes=shapes,
            showlegend=False,
            hovermode="closest",
            xaxis={"showgrid": False, "zeroline": False, "showticklabels": False},
            yaxis={
                "showgrid": False,
                "zeroline": False,
                "showticklabels": False,
                "autorange": "reversed",
                "scaleanchor": "x",
            },
            margin={"l": 20, "r": 20, "t": 60, "b": 20},
            paper_bgcolor="white",
            plot_bgcolor="white",
        ),
    )

    logger.info(
        "Plotly figure built: %d entities, %d flows, %d traces.",
        len(result.entities),
        len(result.geometries),
        len(traces),
    )
    return fig


def save_figure_html(fig: "go.Figure", output_path: str) -> None:
    """
    Write a Plotly figure to an HTML file (plotly.js from CDN).

    Raises:
        ImportError: If plotly is not installed.
    """
    if not HAS_PLOTLY:
        raise ImportError("plotly is required: pip install plotly")

    fig.write_html(output_path, include_plotlyjs="cdn")
    logger.info("Plotly figure saved to: %s", output_path)
