"""
datasphere/graph/builder.py: Entity parsing and NetworkX flow-graph construction.

Two jobs:
    1. Read the entity list of a raw payload into EntityRecord rows
       (id, label, magnitude), skipping rows that cannot be drawn.
    2. Load a list of canonical Flow records into an nx.MultiDiGraph so that
       graph-shaped questions (who neighbours the focus entity, what does an
       entity exchange with everyone else) are answered with NetworkX rather
       than ad hoc loops.

Graph model:
    Node  = entity id (int). Attributes: label, magnitude, is_center.
    Edge  = one Flow, keyed by its position in the input list, from from_id to
            to_id. Attribute 'flow' holds the Flow record itself, plus the
            in / out / net magnitudes copied out for quick aggregation.

A MultiDiGraph is used because the pair source may carry both A→B and B→A
(and, before duplicate collapse, several records for the same pair).
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

import networkx as nx

from datasphere.metrics.normalizer import Flow

logger = logging.getLogger(__name__)

ENTITY_LIST_KEY = "itemIDs"
ENTITY_ID_FIELD = "itemID"
ENTITY_LABEL_FIELD = "itemLabel"
ENTITY_SIZE_FIELD = "itemSize_absolute"


@dataclass(frozen=True)
class EntityRecord:
    """One input entity as read from the payload, before any layout."""

    id: int
    label: str
    magnitude: float


def _entity_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _entity_size(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    size = float(value)
    if not math.isfinite(size) or size < 0:
        return None
    return size


def parse_entities(payload: Mapping[str, Any]) -> list[EntityRecord]:
    """
    Read the entity list of a raw payload.

    Expected shape:
        {"itemIDs": [{"itemID": 0, "itemLabel": "Brand A", "itemSize_absolute": 120.0}, ...]}

    Args:
        payload: Parsed raw payload.

    Returns:
        EntityRecord list in payload order. Empty when the payload carries no
        entity list (not an error).

    Notes:
        - Rows without an integer id, or whose size is missing, negative or
          non-finite, are skipped with a warning.
        - A repeated id keeps its first row; later rows are skipped.
        - Labels default to str(id).
    """
    rows = payload.get(ENTITY_LIST_KEY) or []
    entities: list[EntityRecord] = []
    seen: set[int] = set()

    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            logger.warning("Skipping entity row %d: not a mapping.", index)
            continue

        entity_id = _entity_id(row.get(ENTITY_ID_FIELD))
        if entity_id is None:
            logger.warning("Skipping entity row %d: invalid id %r.", index, row.get(ENTITY_ID_FIELD))
            continue
        if entity_id in seen:
            logger.warning("Skipping entity row %d: duplicate id %d.", index, entity_id)
            continue

        size = _entity_size(row.get(ENTITY_SIZE_FIELD))
        if size is None:
            logger.warning(
                "Skipping entity %d: invalid size %r.", entity_id, row.get(ENTITY_SIZE_FIELD)
            )
            continue

        label = row.get(ENTITY_LABEL_FIELD)
        seen.add(entity_id)
        entities.append(
            EntityRecord(
                id=entity_id,
                label=str(label) if label not in (None, "") else str(entity_id),
                magnitude=size,
            )
        )

    logger.debug("Parsed %d entities (%d rows).", len(entities), len(rows))
    return entities


def center_entity_id(entities: Sequence[EntityRecord]) -> int:
    """
    Id of the synthetic center entity: the entity count.

    When an input entity already uses that id (ids are not 0..n-1), the next
    id above the largest one is used instead, so the center never collides
    with a real entity.
    """
    candidate = len(entities)
    ids = {e.id for e in entities}
    if candidate in ids:
        fallback = max(ids) + 1
        logger.warning(
            "Center id %d is already used by an entity; using %d instead.", candidate, fallback
        )
        return fallback
    return candidate


def build_flow_graph(
    flows: Iterable[Flow],
    entities: Iterable[EntityRecord] = (),
    center_id: Optional[int] = None,
) -> nx.MultiDiGraph:
    """
    Build a MultiDiGraph with one edge per flow.

    Args:
        flows:     Canonical flows.
        entities:  Optional entity records; added as nodes with attributes so
                   isolated entities are still present in the graph.
        center_id: Optional synthetic center id, flagged is_center=True.

    Returns:
        G: nx.MultiDiGraph. Flow endpoints that are not known entities are
        added as bare nodes.
    """
    G = nx.MultiDiGraph()

    for entity in entities:
        G.add_node(entity.id, label=entity.label, magnitude=entity.magnitude, is_center=False)
    if center_id is not None:
        G.add_node(center_id, label=None, magnitude=0.0, is_center=True)

    for key, flow in enumerate(flows):
        G.add_edge(
            flow.from_id,
            flow.to_id,
            key=key,
            flow=flow,
            in_magnitude=flow.in_magnitude,
            out_magnitude=flow.out_magnitude,
            net_magnitude=flow.net_magnitude,
        )

    logger.debug(
        "Flow graph built: %d nodes, %d edges.", G.number_of_nodes(), G.number_of_edges()
    )
    return G


def related_entities(G: nx.MultiDiGraph, focus_id: Optional[int]) -> set[int]:
    """
    Entities joined to the focus entity by at least one flow, in either
    direction. The focus itself is not included. Empty when focus_id is None
    or not in the graph.
    """
    if focus_id is None or focus_id not in G:
        return set()
    neighbours = set(G.successors(focus_id)) | set(G.predecessors(focus_id))
    neighbours.discard(focus_id)
    return neighbours
