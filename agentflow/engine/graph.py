"""
Graph Definition and Structural Validation.

A workflow graph is the snapshot of nodes and edges drawn in the visual editor.
The engine only reads it: the validator checks that the graph can be executed
as a single sequential run before any plan is built.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union
from collections import defaultdict
from pydantic import BaseModel, Field


# Node kinds with structural meaning
START_NODE_TYPES = frozenset({"startNode", "start-node"})
END_NODE_TYPES = frozenset({"endNode", "end-node"})
TERMINAL_NODE_TYPES = END_NODE_TYPES | frozenset({"responseNode", "response-node"})
MULTI_OUTPUT_NODE_TYPES = frozenset({"conditionNode", "decisionNode", "switchNode", "condition"})


class GraphNode(BaseModel):
    """A node as supplied by the editor."""

    id: str
    type: str = "unknown"
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None

    @property
    def label(self) -> Optional[str]:
        label = self.data.get("label")
        return label if isinstance(label, str) else None


class GraphEdge(BaseModel):
    """A directed connection between two nodes."""

    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target_handle: Optional[str] = Field(None, alias="targetHandle")

    class Config:
        populate_by_name = True


NodeLike = Union[GraphNode, Dict[str, Any]]
EdgeLike = Union[GraphEdge, Dict[str, Any]]


def coerce_graph(
    nodes: Iterable[NodeLike],
    edges: Iterable[EdgeLike],
) -> Tuple[List[GraphNode], List[GraphEdge]]:
    """Accept editor dicts or models and return model lists."""
    return (
        [n if isinstance(n, GraphNode) else GraphNode.model_validate(n) for n in nodes],
        [e if isinstance(e, GraphEdge) else GraphEdge.model_validate(e) for e in edges],
    )


def is_start_type(node_type: str) -> bool:
    return node_type in START_NODE_TYPES


def is_terminal_type(node_type: str) -> bool:
    return node_type in TERMINAL_NODE_TYPES


class GraphValidator:
    """
    Structural validation of a workflow graph.

    Checks performed (semantic node configuration is never inspected):
    - the graph is non-empty, node ids are unique, edges reference known nodes
    - exactly one start node and at least one terminal node
    - fan-in: only terminal kinds may have more than one incoming edge
    - fan-out: only multi-output kinds may have more than one outgoing edge
    - the start node leads somewhere and every terminal is fed
    - every terminal is reachable from the start node
    - every other node lies on some start -> terminal path
    - the graph is acyclic

    All violations are collected and returned together.
    """

    def __init__(
        self,
        start_types: Iterable[str] = START_NODE_TYPES,
        terminal_types: Iterable[str] = TERMINAL_NODE_TYPES,
        multi_output_types: Iterable[str] = MULTI_OUTPUT_NODE_TYPES,
    ):
        self.start_types = frozenset(start_types)
        self.terminal_types = frozenset(terminal_types)
        self.multi_output_types = frozenset(multi_output_types)

    def validate(
        self,
        nodes: Sequence[NodeLike],
        edges: Sequence[EdgeLike],
    ) -> List[str]:
        """
        Validate the graph structure.

        Returns:
            List of validation errors (empty if valid)
        """
        nodes, edges = coerce_graph(nodes, edges)
        errors: List[str] = []

        if not nodes:
            errors.append("Graph must have at least one node")
            return errors

        seen: Set[str] = set()
        for node in nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        # Edges pointing at unknown nodes are reported and left out of the topology
        known_edges: List[GraphEdge] = []
        for edge in edges:
            missing = [end for end in (edge.source, edge.target) if end not in seen]
            if missing:
                errors.append(
                    f"Edge '{edge.source}' -> '{edge.target}' references unknown node "
                    f"'{missing[0]}'"
                )
                continue
            known_edges.append(edge)

        start_nodes = [n for n in nodes if n.type in self.start_types]
        terminal_nodes = [n for n in nodes if n.type in self.terminal_types]

        if not start_nodes:
            errors.append("Graph must have exactly one start node (found none)")
        elif len(start_nodes) > 1:
            ids = ", ".join(n.id for n in start_nodes)
            errors.append(
                f"Graph must have exactly one start node (found {len(start_nodes)}: {ids})"
            )

        if not terminal_nodes:
            errors.append("Graph must have at least one end node (end or response node)")

        incoming: Dict[str, int] = defaultdict(int)
        outgoing: Dict[str, int] = defaultdict(int)
        for edge in known_edges:
            outgoing[edge.source] += 1
            incoming[edge.target] += 1

        for node in nodes:
            is_start = node.type in self.start_types
            is_terminal = node.type in self.terminal_types

            if is_start and incoming[node.id]:
                errors.append(f"Start node '{node.id}' cannot have incoming edges")
            if is_terminal and outgoing[node.id]:
                errors.append(f"Terminal node '{node.id}' cannot have outgoing edges")

            if not is_terminal and incoming[node.id] > 1:
                errors.append(
                    f"Node '{node.id}' has {incoming[node.id]} incoming edges: "
                    f"ambiguous execution order"
                )
            if node.type not in self.multi_output_types and outgoing[node.id] > 1:
                errors.append(
                    f"Node '{node.id}' has {outgoing[node.id]} outgoing edges: "
                    f"parallel branches are not supported"
                )

        for node in start_nodes:
            if not outgoing[node.id]:
                errors.append(f"Start node '{node.id}' has no outgoing edges")
        for node in terminal_nodes:
            if not incoming[node.id]:
                errors.append(f"Terminal node '{node.id}' has no incoming edges")

        if len(start_nodes) == 1:
            errors.extend(self._check_paths(nodes, known_edges, start_nodes[0], terminal_nodes))

        cycle = self._find_cycle(nodes, known_edges)
        if cycle:
            errors.append(f"Graph contains a cycle: {' -> '.join(cycle)}")

        return errors

    def _check_paths(
        self,
        nodes: List[GraphNode],
        edges: List[GraphEdge],
        start: GraphNode,
        terminals: List[GraphNode],
    ) -> List[str]:
        errors = []
        successors = _adjacency(edges)
        predecessors = _adjacency(edges, reverse=True)

        forward = _reachable([start.id], successors)
        for node in terminals:
            if node.id not in forward:
                errors.append(f"Terminal node '{node.id}' is not reachable from the start node")

        backward = _reachable([n.id for n in terminals], predecessors)
        isolated = [
            n.id for n in nodes
            if n.type not in self.start_types
            and n.type not in self.terminal_types
            and (n.id not in forward or n.id not in backward)
        ]
        if isolated:
            errors.append(
                f"Isolated nodes (not on a path from start to an end node): {', '.join(isolated)}"
            )
        return errors

    def _find_cycle(self, nodes: List[GraphNode], edges: List[GraphEdge]) -> Optional[List[str]]:
        """Depth-first search; a back edge to a node still on the path is a cycle."""
        successors = _adjacency(edges)
        visited: Set[str] = set()

        for node in nodes:
            if node.id in visited:
                continue
            path = [node.id]
            on_path = {node.id}
            pending = [iter(successors.get(node.id, []))]
            while pending:
                target = next(pending[-1], None)
                if target is None:
                    done = path.pop()
                    on_path.discard(done)
                    visited.add(done)
                    pending.pop()
                elif target in on_path:
                    return path[path.index(target):] + [target]
                elif target not in visited:
                    path.append(target)
                    on_path.add(target)
                    pending.append(iter(successors.get(target, [])))
        return None


def _adjacency(edges: List[GraphEdge], reverse: bool = False) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        if reverse:
            adjacency[edge.target].append(edge.source)
        else:
            adjacency[edge.source].append(edge.target)
    return adjacency


def _reachable(roots: List[str], adjacency: Dict[str, List[str]]) -> Set[str]:
    reachable: Set[str] = set()
    to_visit = list(roots)

    while to_visit:
        node = to_visit.pop()
        if node in reachable:
            continue
        reachable.add(node)
        to_visit.extend(adjacency.get(node, []))

    return reachable
