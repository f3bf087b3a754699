"""
datasphere.viz: Optional rendering of pipeline results.

Modules:
    plotly_graph: Interactive Plotly bubble-and-flow figure (needs plotly).
"""
