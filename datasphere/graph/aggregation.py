"""
datasphere/graph/aggregation.py: Center aggregation as a graph contraction.

Center mode throws away the pairwise flows and replaces them with one flow
per entity against the synthetic center entity. The totals are read off a
MultiDiGraph built from the filtered flows:

    for every entity e (other than the center):
        total_out(e) = Σ out_magnitude over flows leaving e
                     + Σ in_magnitude  over flows entering e
        total_in(e)  = Σ in_magnitude  over flows leaving e
                     + Σ out_magnitude over flows entering e

A flow's inbound reading at its 'from' endpoint is an outbound reading at its
'to' endpoint and vice versa, which is why the roles swap on incoming edges.
Summing both roles over all entities therefore balances:

    Σ_e total_in(e) == Σ_e total_out(e)  (over flows not touching the center)

Each aggregated flow:
    from_id       = e
    to_id         = center_id
    in/out        = total_in(e) / total_out(e)
    net_magnitude = |total_in(e) - total_out(e)|
    net_direction = 'in' if total_in(e) >= total_out(e) else 'out'

The result supersedes the input set; it is never merged with it.
"""

import logging
from typing import Sequence

import networkx as nx

from datasphere.graph.builder import build_flow_graph
from datasphere.metrics.normalizer import IN, OUT, Flow, MetricValue

logger = logging.getLogger(__name__)


def entity_totals(G: nx.MultiDiGraph, entity_id: int) -> tuple[float, float]:
    """
    (total_in, total_out) of one entity in a flow graph built by
    build_flow_graph(). A self-loop counts in both roles.
    """
    total_in = 0.0
    total_out = 0.0
    for _, _, data in G.out_edges(entity_id, data=True):
        total_out += data["out_magnitude"]
        total_in += data["in_magnitude"]
    for _, _, data in G.in_edges(entity_id, data=True):
        total_out += data["in_magnitude"]
        total_in += data["out_magnitude"]
    return total_in, total_out


def aggregate_to_center(flows: Sequence[Flow], center_id: int) -> list[Flow]:
    """
    Contract a flow set into one flow per entity against the center.

    Args:
        flows:     Filtered flows.
        center_id: Id of the synthetic center entity. Flows touching it
                   contribute to their other endpoint; the center gets no
                   aggregated flow of its own.

    Returns:
        One Flow per entity touched by ``flows`` (center excluded), sorted by
        entity id. Empty for an empty input. The metric of the first input
        flow is carried over.
    """
    if not flows:
        return []

    G = build_flow_graph(flows)
    metric = flows[0].metric
    aggregated: list[Flow] = []

    for entity_id in sorted(n for n in G.nodes if n != center_id):
        total_in, total_out = entity_totals(G, entity_id)
        net = abs(total_in - total_out)
        aggregated.append(
            Flow(
                from_id=entity_id,
                to_id=center_id,
                in_magnitude=total_in,
                out_magnitude=total_out,
                net_magnitude=net,
                net_direction=IN if total_in >= total_out else OUT,
                metric=metric,
                in_value=MetricValue(total_in, total_in, total_in),
                out_value=MetricValue(total_out, total_out, total_out),
                net_value=MetricValue(net, net, net),
            )
        )

    logger.debug(
        "Center aggregation: %d flows → %d entity totals (center %d).",
        len(flows),
        len(aggregated),
        center_id,
    )
    return aggregated
