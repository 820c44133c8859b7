"""
Flow Graph - Adjacency view over a flow's nodes and edges.

Shared by the validator and the runner. Edges whose endpoints do not
exist are kept in ``edges`` (the validator reports them) but are left
out of the adjacency lists.

SYNC-CELERY SAFE: No async operations.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from flow_engine.node_sdk.basenode import NodeCategory

from .models import FlowEdge, FlowNode


logger = logging.getLogger(__name__)

# Pass-through nodes whose incoming edge implies a branch label
BRANCH_NODE_LABELS = {"YES": "yes", "NO": "no"}


class FlowGraph:
    """
    Directed graph of one flow.

    Node and edge order follow declaration order, which makes every
    traversal below deterministic.
    """

    def __init__(self, nodes: List[FlowNode], edges: List[FlowEdge]):
        self.node_list = list(nodes)
        self.edges = list(edges)

        # First declaration wins on duplicate IDs
        self.nodes: Dict[str, FlowNode] = {}
        for node in self.node_list:
            self.nodes.setdefault(node.id, node)

        self._outgoing: Dict[str, List[FlowEdge]] = {node_id: [] for node_id in self.nodes}
        self._incoming: Dict[str, List[FlowEdge]] = {node_id: [] for node_id in self.nodes}
        for edge in self.edges:
            if edge.source in self.nodes and edge.target in self.nodes:
                self._outgoing[edge.source].append(edge)
                self._incoming[edge.target].append(edge)

    # ==== Lookups ====

    def get(self, node_id: str) -> Optional[FlowNode]:
        return self.nodes.get(node_id)

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return self._outgoing.get(node_id, [])

    def incoming(self, node_id: str) -> List[FlowEdge]:
        return self._incoming.get(node_id, [])

    def dangling_edges(self) -> List[FlowEdge]:
        """Edges with a source or target that is not a node."""
        return [
            e for e in self.edges
            if e.source not in self.nodes or e.target not in self.nodes
        ]

    def triggers(self) -> List[FlowNode]:
        """Trigger nodes in declaration order."""
        return [n for n in self.nodes.values() if n.is_trigger]

    def find_trigger(self, trigger_type: str) -> Optional[FlowNode]:
        """First trigger node (declaration order) matching the event kind."""
        wanted = str(trigger_type).upper()
        for node in self.triggers():
            if node.sub_type == wanted:
                return node
        return None

    def effective_branch(self, edge: FlowEdge) -> Optional[str]:
        """
        Routing label of an edge, lower-cased.

        An edge into a YES/NO node is implicitly labelled "yes"/"no". Any
        other unlabelled edge out of a condition is implicitly "yes": plain
        children of a condition run only when it passed.
        """
        if edge.branch:
            return edge.branch.strip().lower()
        target = self.nodes.get(edge.target)
        if target is not None and target.sub_type in BRANCH_NODE_LABELS:
            return BRANCH_NODE_LABELS[target.sub_type]
        source = self.nodes.get(edge.source)
        if (
            source is not None
            and source.category == NodeCategory.CONDITION
            and source.sub_type not in BRANCH_NODE_LABELS
        ):
            return "yes"
        return None

    # ==== Traversals ====

    def reachable_from(self, starts: Iterable[str]) -> Set[str]:
        """IDs of every node reachable from ``starts`` (inclusive)."""
        seen: Set[str] = set()
        queue = deque(s for s in starts if s in self.nodes)
        while queue:
            node_id = queue.popleft()
            if node_id in seen:
                continue
            seen.add(node_id)
            for edge in self.outgoing(node_id):
                if edge.target not in seen:
                    queue.append(edge.target)
        return seen

    def ancestors(self, node_id: str) -> Set[str]:
        """IDs of every node with a path to ``node_id`` (exclusive)."""
        seen: Set[str] = set()
        queue = deque(e.source for e in self.incoming(node_id))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(e.source for e in self.incoming(current))
        seen.discard(node_id)
        return seen

    def back_edges(self, starts: Iterable[str]) -> List[FlowEdge]:
        """
        Edges closing a cycle, found by depth-first search from ``starts``.

        Each cycle is reported through the edge that re-enters a node
        still on the DFS stack.
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color: Dict[str, int] = {node_id: WHITE for node_id in self.nodes}
        found: List[FlowEdge] = []

        for start in starts:
            if color.get(start, BLACK) != WHITE:
                continue
            color[start] = GRAY
            stack = [(start, iter(self.outgoing(start)))]
            while stack:
                node_id, edges = stack[-1]
                edge = next(edges, None)
                if edge is None:
                    color[node_id] = BLACK
                    stack.pop()
                    continue
                state = color[edge.target]
                if state == GRAY:
                    found.append(edge)
                elif state == WHITE:
                    color[edge.target] = GRAY
                    stack.append((edge.target, iter(self.outgoing(edge.target))))

        return found

    def topological_order(self, starts: Iterable[str]) -> List[str]:
        """
        Kahn's algorithm over the part of the graph reachable from
        ``starts``, ignoring back edges.
        """
        starts = list(starts)
        reachable = self.reachable_from(starts)
        skip = {id(e) for e in self.back_edges(starts)}

        in_degree: Dict[str, int] = {node_id: 0 for node_id in reachable}
        for node_id in reachable:
            for edge in self.outgoing(node_id):
                if id(edge) not in skip:
                    in_degree[edge.target] += 1

        # Declaration order keeps the result stable
        queue = deque(n.id for n in self.nodes.values() if n.id in reachable and in_degree[n.id] == 0)
        order: List[str] = []
        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for edge in self.outgoing(node_id):
                if id(edge) in skip:
                    continue
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    queue.append(edge.target)
        return order

    def longest_path_depth(self, starts: Iterable[str]) -> int:
        """
        Number of nodes on the longest path from any of ``starts``.

        A lone start node has depth 1.
        """
        starts = list(starts)
        skip = {id(e) for e in self.back_edges(starts)}
        depth: Dict[str, int] = {}
        for node_id in self.topological_order(starts):
            current = depth.setdefault(node_id, 1)
            for edge in self.outgoing(node_id):
                if id(edge) in skip:
                    continue
                depth[edge.target] = max(depth.get(edge.target, 1), current + 1)
        return max(depth.values(), default=0)
