"""
datasphere: Flow processing and layout engine for bubble-and-flow diagrams.

Turns a raw payload of entities and their pairwise relationships (churn,
switching, spend) into laid-out bubbles and geometrically resolved flow
lines, ready for any rendering layer.

Entry point:
    datasphere.pipeline.run_pipeline(payload, PipelineParams(view_id=...))
"""

__version__ = "0.1.0"
