"""
Ingredient hierarchy service for building and walking the parent/child tree.

The record store hands out a flat list; each record may name its parent
through parent_id. build_hierarchy() turns that list into a forest of
HierarchyNode objects. Nodes hold copies of the records, so consumers can
never mutate the store's data through the tree.

Placement rules:
- A record whose parent exists is nested under it, in input order
- A record without a parent reference is a root, in input order
- An orphan (parent id not present) is placed at the root
- A self reference, a reference that would close a cycle, or a repeated id
  is placed at the root and reported as an anomaly

Every input record appears in the output exactly once.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Set

from ..models.ingredient import Ingredient
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

ANOMALY_ORPHAN = "orphan"
ANOMALY_SELF_REFERENCE = "self_reference"
ANOMALY_CYCLE = "cycle"
ANOMALY_DUPLICATE_ID = "duplicate_id"


@dataclass
class HierarchyNode:
    """
    A record plus its ordered child nodes.

    Attributes:
        record: Copy of the flat record
        children: Child nodes in input order
        depth: 0 for roots, parent depth + 1 otherwise
    """

    record: Ingredient
    children: List["HierarchyNode"] = field(default_factory=list)
    depth: int = 0

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def is_expandable(self) -> bool:
        return len(self.children) > 0


@dataclass(frozen=True)
class HierarchyAnomaly:
    """A record that could not be placed under its declared parent."""

    record_id: str
    kind: str
    parent_id: Optional[str] = None


def _report(anomalies: Optional[List[HierarchyAnomaly]], anomaly: HierarchyAnomaly) -> None:
    # Orphans are an accepted placement policy, the rest indicate bad data
    level = logging.DEBUG if anomaly.kind == ANOMALY_ORPHAN else logging.WARNING
    log_operation(
        logger,
        operation="build_hierarchy",
        outcome=anomaly.kind,
        level=level,
        record_id=anomaly.record_id,
        parent_id=anomaly.parent_id,
    )
    if anomalies is not None:
        anomalies.append(anomaly)


def _closes_cycle(position: int, parent_position: int, parent_of: List[Optional[int]]) -> bool:
    """Check whether attaching position under parent_position makes it its own ancestor."""
    current: Optional[int] = parent_position
    visited: Set[int] = set()
    while current is not None:
        if current == position:
            return True
        if current in visited:
            return True
        visited.add(current)
        current = parent_of[current]
    return False


def build_hierarchy(
    records: Sequence[Ingredient],
    anomalies: Optional[List[HierarchyAnomaly]] = None,
) -> List[HierarchyNode]:
    """
    Build a forest of nodes from a flat record list.

    Nodes are tracked by input position, so repeated ids and cyclic parent
    chains never cause infinite recursion. The build never fails; records
    that cannot be nested are placed at the root.

    Args:
        records: Flat records in arbitrary order
        anomalies: Optional list that receives a HierarchyAnomaly for every
            record placed at the root against its parent reference

    Returns:
        Root nodes in first-seen input order

    Example:
        >>> roots = build_hierarchy([
        ...     Ingredient(id="1", name="A"),
        ...     Ingredient(id="2", name="B", parent_id="1"),
        ... ])
        >>> [(n.id, [c.id for c in n.children]) for n in roots]
        [('1', ['2'])]
    """
    nodes = [HierarchyNode(record=record.copy()) for record in records]

    first_position: Dict[str, int] = {}
    for position, node in enumerate(nodes):
        first_position.setdefault(node.id, position)

    parent_of: List[Optional[int]] = [None] * len(nodes)

    for position, node in enumerate(nodes):
        parent_id = node.record.parent_id

        if first_position[node.id] != position:
            _report(anomalies, HierarchyAnomaly(node.id, ANOMALY_DUPLICATE_ID, parent_id))
            continue
        if not parent_id:
            continue
        if parent_id == node.id:
            _report(anomalies, HierarchyAnomaly(node.id, ANOMALY_SELF_REFERENCE, parent_id))
            continue
        if parent_id not in first_position:
            _report(anomalies, HierarchyAnomaly(node.id, ANOMALY_ORPHAN, parent_id))
            continue

        parent_position = first_position[parent_id]
        if _closes_cycle(position, parent_position, parent_of):
            _report(anomalies, HierarchyAnomaly(node.id, ANOMALY_CYCLE, parent_id))
            continue
        parent_of[position] = parent_position

    roots: List[HierarchyNode] = []
    for position, node in enumerate(nodes):
        parent_position = parent_of[position]
        if parent_position is None:
            roots.append(node)
        else:
            nodes[parent_position].children.append(node)

    for node in iter_nodes(roots):
        for child in node.children:
            child.depth = node.depth + 1

    return roots


def iter_nodes(roots: Sequence[HierarchyNode]) -> Iterator[HierarchyNode]:
    """Yield every node depth-first, parents before their children."""
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def flatten_hierarchy(roots: Sequence[HierarchyNode]) -> List[Ingredient]:
    """Flatten a forest back into records, parents before their children."""
    return [node.record for node in iter_nodes(roots)]


def find_node(roots: Sequence[HierarchyNode], record_id: str) -> Optional[HierarchyNode]:
    for node in iter_nodes(roots):
        if node.id == record_id:
            return node
    return None


def get_child_ids(records: Sequence[Ingredient]) -> Set[str]:
    """
    Get the ids of records that end up nested under a parent.

    Orphans and records rejected by the anomaly rules count as roots.
    """
    return {node.id for node in iter_nodes(build_hierarchy(records)) if node.depth > 0}


def get_root_ids(records: Sequence[Ingredient]) -> List[str]:
    """Get root record ids in input order."""
    return [node.id for node in build_hierarchy(records)]
