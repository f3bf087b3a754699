"""
datasphere.graph: Flow graph construction, filtering and aggregation.

Modules:
    builder:     Entity parsing and NetworkX MultiDiGraph construction.
    filters:     Focus, threshold and duplicate-collapse stages; summaries.
    aggregation: Center aggregation as a graph contraction.
    flow_values: Render mode, display values, percentile rank, thickness.
"""
