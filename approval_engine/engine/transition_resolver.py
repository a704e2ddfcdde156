"""Transition Resolver - Determine the next node of a running instance"""
from typing import List, Optional, Tuple

from ..config.settings import settings
from ..domain.errors import CorruptGraphError
from ..domain.models import (
    ConditionNode, Edge, EndNode, Node, ResourceAttrs, StartNode, WorkflowGraph
)
from ..utils.logger import get_logger
from .condition_evaluator import ConditionEvaluator

logger = get_logger(__name__)

# (condition node id, branch taken)
BranchDecision = Tuple[str, bool]


class TransitionResolver:
    """
    Resolve transitions through the workflow graph

    Given a completed node N:
    1. Start/approval nodes follow their single outgoing edge
    2. Condition nodes are evaluated against the business item snapshot
       and follow the `true` or `false` edge
    3. Step 2 repeats until an approval or end node is reached
    4. Any structural gap -> raise CorruptGraphError
    """

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    def advance(
        self,
        graph: WorkflowGraph,
        from_node: Node,
        snapshot: ResourceAttrs
    ) -> Tuple[Node, List[BranchDecision]]:
        """
        Walk from a completed node to the next node that needs attention

        Args:
            graph: Template graph
            from_node: Start node or a satisfied approval node
            snapshot: Business item attributes for condition nodes

        Returns:
            The landing approval/end node and the branches taken on the way

        Raises:
            CorruptGraphError: If an edge or target is missing, or conditions loop
        """
        branches: List[BranchDecision] = []
        node = self._target(graph, self.resolve_next_edge(graph, from_node).target, from_node.id)

        hops = 0
        while isinstance(node, ConditionNode):
            hops += 1
            if hops > settings.max_condition_hops:
                raise CorruptGraphError(
                    f"Condition chain from {from_node.id} exceeds {settings.max_condition_hops} hops",
                    details={"node_id": node.id}
                )
            taken = self.condition_evaluator.evaluate_branch(node, snapshot)
            branches.append((node.id, taken))
            edge = self._branch_edge(graph, node, taken)
            node = self._target(graph, edge.target, node.id)

        if isinstance(node, StartNode):
            raise CorruptGraphError(
                f"Transition leads back to start node {node.id}",
                details={"node_id": node.id}
            )

        logger.info(
            f"Resolved transition: {from_node.id} -> {node.id}",
            extra={"node_id": node.id, "action": "advance"}
        )
        return node, branches

    def resolve_next_edge(self, graph: WorkflowGraph, node: Node) -> Edge:
        """Single outgoing edge of a start or approval node"""
        if isinstance(node, EndNode):
            raise CorruptGraphError(
                f"End node {node.id} has no successor",
                details={"node_id": node.id}
            )
        if isinstance(node, ConditionNode):
            raise CorruptGraphError(
                f"Condition node {node.id} cannot be completed directly",
                details={"node_id": node.id}
            )

        edges = graph.outgoing_edges(node.id)
        if len(edges) != 1:
            raise CorruptGraphError(
                f"Node {node.id} must have exactly one outgoing edge, found {len(edges)}",
                details={"node_id": node.id, "edge_count": len(edges)}
            )
        return edges[0]

    def _branch_edge(self, graph: WorkflowGraph, node: ConditionNode, taken: bool) -> Edge:
        label = "true" if taken else "false"
        matches = [e for e in graph.outgoing_edges(node.id) if e.label == label]
        if len(matches) != 1:
            raise CorruptGraphError(
                f"Condition node {node.id} has {len(matches)} '{label}' edges",
                details={"node_id": node.id, "label": label}
            )
        return matches[0]

    @staticmethod
    def _target(graph: WorkflowGraph, node_id: str, source_id: str) -> Node:
        node = graph.node_by_id(node_id)
        if node is None:
            raise CorruptGraphError(
                f"Edge from {source_id} points to unknown node {node_id}",
                details={"node_id": source_id, "target": node_id}
            )
        return node
