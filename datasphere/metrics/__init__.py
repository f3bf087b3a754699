"""
datasphere.metrics: Value extraction and scaling statistics.

Modules:
    statistics: Relative-size percent and percentile-rank scaling (leaf).
    normalizer: Raw per-metric payloads → canonical Flow records.

The statistics module has no dependency on the rest of the package; every
other layer builds on it.
"""
