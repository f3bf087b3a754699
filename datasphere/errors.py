"""
datasphere/errors.py: Error taxonomy for the flow processing engine.

Two families:
    - Structural faults (ConfigurationError and subclasses) propagate to the
      caller. They mean a view id, metric or flow direction has no matching
      configuration entry.
    - Local faults (MalformedMetricRecordError, DegenerateGeometryError) are
      raised by low-level parsers and geometry helpers and caught per record
      or per flow by the batch functions, which log them and carry on.
"""

from typing import Iterable


class DatasphereError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(DatasphereError, ValueError):
    """A requested configuration entry does not exist or is not supported."""


def _known(values: Iterable[str]) -> str:
    return ", ".join(sorted(values)) or "<none>"


class UnknownViewError(ConfigurationError):
    def __init__(self, view_id: str, known: Iterable[str] = ()):
        self.view_id = view_id
        super().__init__(f"Unknown view configuration: {view_id!r} (known: {_known(known)})")


class UnknownMetricError(ConfigurationError):
    def __init__(self, metric: str, view_id: str, known: Iterable[str] = ()):
        self.metric = metric
        self.view_id = view_id
        super().__init__(
            f"Metric {metric!r} is not supported by view {view_id!r} (supported: {_known(known)})"
        )


class UnknownFlowDirectionError(ConfigurationError):
    def __init__(self, flow_direction: str, view_id: str, known: Iterable[str] = ()):
        self.flow_direction = flow_direction
        self.view_id = view_id
        super().__init__(
            f"Flow direction {flow_direction!r} is not supported by view {view_id!r} "
            f"(supported: {_known(known)})"
        )


class MalformedMetricRecordError(DatasphereError):
    """A relationship record lacks the fields the selected metric needs."""


class DegenerateGeometryError(DatasphereError):
    """Flow geometry cannot be computed (non-finite input, coincident centers)."""
