"""
datasphere/cli.py: Command-line interface for the flow processing engine.

Usage:
    python -m datasphere layout PAYLOAD.json --view brands --threshold 20
    python -m datasphere rules --view markets
    python -m datasphere figure PAYLOAD.json --view markets --output flows.html

Exit codes:
    0  success
    1  payload (or view file) unreadable, or an optional dependency missing
    2  configuration error: unknown view, metric or flow direction, or an
       invalid numeric parameter
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import pandas as pd

from datasphere.errors import ConfigurationError
from datasphere.views.configurations import DEFAULT_VIEWS, get_view, views_from_mapping
from datasphere.views.rules import render_table

EXIT_OK = 0
EXIT_UNREADABLE = 1
EXIT_CONFIGURATION = 2


# ── Logging setup ─────────────────────────────────────────────────────────────

def _setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with timestamps and padded level names."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    fmt = "%(asctime)s  %(levelname)-8s  %(name)s: %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=numeric, format=fmt, datefmt=datefmt, stream=sys.stderr)


logger = logging.getLogger("datasphere.cli")


# ── Input helpers ─────────────────────────────────────────────────────────────

def _read_json(path: str) -> Any:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def _load_views(path: str | None):
    if not path:
        return DEFAULT_VIEWS
    return views_from_mapping(_read_json(path))


def _load_payload(path: str) -> dict:
    payload = _read_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"{path}: payload must be a JSON object")
    return payload


def _params_from_args(args: argparse.Namespace):
    from datasphere.pipeline import PipelineParams

    return PipelineParams(
        view_id=args.view,
        metric=args.metric,
        flow_direction=args.flow_direction,
        threshold=args.threshold,
        focus_id=args.focus,
        center_aggregation=args.center,
        width=args.width,
        height=args.height,
    )


def _run(args: argparse.Namespace):
    """Load views and payload, run the pipeline. Returns (result, exit_code)."""
    from datasphere.pipeline import run_pipeline

    try:
        views = _load_views(args.views)
    except ConfigurationError as exc:
        logger.error("Invalid view configuration: %s", exc)
        return None, EXIT_CONFIGURATION
    except (OSError, ValueError) as exc:
        logger.error("Cannot read view file %s: %s", args.views, exc)
        return None, EXIT_UNREADABLE

    try:
        payload = _load_payload(args.payload)
    except (OSError, ValueError) as exc:
        logger.error("Cannot read payload %s: %s", args.payload, exc)
        return None, EXIT_UNREADABLE

    try:
        result = run_pipeline(payload, _params_from_args(args), views=views)
    except ValueError as exc:
        logger.error("%s", exc)
        return None, EXIT_CONFIGURATION
    return result, EXIT_OK


def _print_summary(result) -> None:
    stats = result.statistics
    print()
    print("=" * 60)
    print(f"  DATASPHERE: {result.view_id} / {result.metric} / {result.flow_direction}")
    print("=" * 60)
    print(f"  Render type : {result.render_type}")
    print(f"  Entities    : {len(result.entities)}")
    print(f"  Flows       : {stats.total_flows} (max {stats.max_magnitude:,.2f})")
    print(f"  Geometries  : {len(result.geometries)}")
    if result.malformed:
        print(f"  Malformed   : {len(result.malformed)} record(s)")
    if result.dropped:
        print(f"  Dropped     : {len(result.dropped)} flow(s)")
    print("=" * 60)


# ── Subcommand: layout ────────────────────────────────────────────────────────

def cmd_layout(args: argparse.Namespace) -> int:
    """Run the pipeline and write the result as JSON."""
    result, code = _run(args)
    if result is None:
        return code

    text = json.dumps(result.to_dict(), indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as fh:
            fh.write(text)
        logger.info("Layout written to: %s", args.output)
        _print_summary(result)
    else:
        print(text)
    return EXIT_OK


# ── Subcommand: rules ─────────────────────────────────────────────────────────

def cmd_rules(args: argparse.Namespace) -> int:
    """Print the resolved render type for every (metric, flow direction)."""
    try:
        views = _load_views(args.views)
        selected = [get_view(args.view, views)] if args.view else list(views.values())
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return EXIT_CONFIGURATION
    except (OSError, ValueError) as exc:
        logger.error("Cannot read view file %s: %s", args.views, exc)
        return EXIT_UNREADABLE

    rows = [row for view in selected for row in render_table(view)]
    print(pd.DataFrame(rows, columns=["view", "metric", "flow_direction", "render_type"]).to_string(index=False))
    return EXIT_OK


# ── Subcommand: figure ────────────────────────────────────────────────────────

def cmd_figure(args: argparse.Namespace) -> int:
    """Run the pipeline and write an interactive Plotly HTML figure."""
    from datasphere.viz.plotly_graph import build_plotly_figure, save_figure_html

    result, code = _run(args)
    if result is None:
        return code

    try:
        fig = build_plotly_figure(result)
        save_figure_html(fig, args.output)
    except ImportError as exc:
        logger.error("%s", exc)
        return EXIT_UNREADABLE

    _print_summary(result)
    return EXIT_OK


# ── Argument parser ───────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="datasphere",
        description="Datasphere: flow processing and layout for bubble-and-flow diagrams.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Brand switching, two-line flows, hide flows under 20% of the largest
  python -m datasphere layout data.json --view brands --metric switching \\
      --flow-direction in --threshold 20 --output layout.json

  # Markets collapsed onto the center bubble
  python -m datasphere layout data.json --view markets --center

  # Render table of every built-in view
  python -m datasphere rules
        """,
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--views",
        default=None,
        metavar="PATH",
        help="JSON file with extra view configurations",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    def add_pipeline_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("payload", metavar="PAYLOAD", help="Path to the raw JSON payload")
        p.add_argument("--view", required=True, help="View id (e.g. markets, brands)")
        p.add_argument("--metric", default=None, help="Metric (default: view default)")
        p.add_argument(
            "--flow-direction",
            default=None,
            choices=["in", "out", "net", "both"],
            help="Flow direction (default: view default)",
        )
        p.add_argument(
            "--threshold", type=float, default=0.0,
            help="Hide flows below this %% of the largest flow (0-100)",
        )
        p.add_argument("--focus", type=int, default=None, metavar="ID", help="Focus entity id")
        p.add_argument("--center", action="store_true", help="Aggregate flows onto the center")
        p.add_argument("--width", type=float, default=None, help="Canvas width")
        p.add_argument("--height", type=float, default=None, help="Canvas height")

    p_layout = subparsers.add_parser("layout", help="Run the pipeline and emit JSON")
    add_pipeline_flags(p_layout)
    p_layout.add_argument(
        "--output", default=None, metavar="PATH",
        help="Write JSON here instead of stdout",
    )
    p_layout.set_defaults(func=cmd_layout)

    p_rules = subparsers.add_parser("rules", help="Print the render table")
    p_rules.add_argument("--view", default=None, help="Only this view")
    p_rules.set_defaults(func=cmd_rules)

    p_figure = subparsers.add_parser("figure", help="Write an interactive Plotly HTML figure")
    add_pipeline_flags(p_figure)
    p_figure.add_argument("--output", required=True, metavar="PATH", help="Output .html path")
    p_figure.set_defaults(func=cmd_figure)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
