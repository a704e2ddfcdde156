"""Graph Validator - Structural checks and compilation of workflow templates"""
from collections import Counter
from typing import Dict, List, Optional, Set, Union

from ..domain.enums import IssueSeverity, NodeType, ValidationErrorKind
from ..domain.errors import ValidationFailedError
from ..domain.models import (
    ApprovalNode, CompiledStep, CompiledWorkflow, ConditionNode, EndNode,
    StartNode, ValidationIssue, ValidationResult, WorkflowGraph, WorkflowTemplate
)
from ..utils.logger import get_logger
from .attributes import parse_attribute_path, reference_path

logger = get_logger(__name__)

BRANCH_LABELS = ("true", "false")


class GraphValidator:
    """
    Validate workflow templates before publishing

    Errors block publishing; warnings (orphan nodes, escalation without a
    role) are advisory and left to the caller.
    """

    def validate(self, template: Union[WorkflowTemplate, WorkflowGraph]) -> ValidationResult:
        """
        Run every structural check

        Args:
            template: Template or bare graph

        Returns:
            ValidationResult with errors and warnings
        """
        graph = template.graph if isinstance(template, WorkflowTemplate) else template
        result = ValidationResult()

        node_ids = self._check_node_ids(graph, result)
        self._check_edges(graph, node_ids, result)
        starts = self._check_start(graph, result)

        for node in graph.nodes:
            if isinstance(node, ApprovalNode):
                self._check_approval_node(graph, node, result)
            elif isinstance(node, ConditionNode):
                self._check_condition_node(graph, node, result)
            elif isinstance(node, EndNode):
                if graph.outgoing_edges(node.id):
                    self._error(
                        result, ValidationErrorKind.END_HAS_OUTGOING,
                        f"End node {node.id} must not have outgoing edges", node.id
                    )

        if len(starts) == 1:
            self._check_reachability(graph, starts[0], node_ids, result)

        logger.info(
            f"Validated graph: {len(result.errors)} errors, {len(result.warnings)} warnings",
            extra={
                "template_id": getattr(template, "template_id", None),
                "status": "valid" if result.ok else "invalid",
            }
        )
        return result

    def compile(self, template: WorkflowTemplate) -> CompiledWorkflow:
        """
        Flatten a valid template into a successor map

        Raises:
            ValidationFailedError: If the template does not validate
        """
        validation = self.validate(template)
        if not validation.ok:
            raise ValidationFailedError(
                "Workflow validation failed",
                details={"errors": [e.model_dump(mode="json") for e in validation.errors]}
            )

        graph = template.graph
        start = graph.start_node()
        steps: Dict[str, CompiledStep] = {}

        for node in graph.nodes:
            step = CompiledStep(node_id=node.id, node_type=NodeType(node.type))
            edges = graph.outgoing_edges(node.id)
            if isinstance(node, ConditionNode):
                for edge in edges:
                    if edge.label == "true":
                        step.true_node_id = edge.target
                    elif edge.label == "false":
                        step.false_node_id = edge.target
            elif edges:
                step.next_node_id = edges[0].target
            steps[node.id] = step

        return CompiledWorkflow(
            template_id=template.template_id,
            template_version=template.version,
            start_node_id=start.id,
            steps=steps,
            approval_order=self._approval_order(steps, start.id)
        )

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_node_ids(self, graph: WorkflowGraph, result: ValidationResult) -> Set[str]:
        counts = Counter(node.id for node in graph.nodes)
        for node_id, count in counts.items():
            if count > 1:
                self._error(
                    result, ValidationErrorKind.DUPLICATE_NODE_ID,
                    f"Duplicate node id: {node_id} ({count} nodes)", node_id
                )
        return set(counts)

    def _check_edges(self, graph: WorkflowGraph, node_ids: Set[str], result: ValidationResult) -> None:
        for edge in graph.edges:
            for end, node_id in (("source", edge.source), ("target", edge.target)):
                if node_id not in node_ids:
                    self._error(
                        result, ValidationErrorKind.DANGLING_EDGE,
                        f"Edge {edge.id or '?'} references non-existent {end} node: {node_id}",
                        node_id
                    )

    def _check_start(self, graph: WorkflowGraph, result: ValidationResult) -> List[StartNode]:
        starts = graph.nodes_of_type(NodeType.START)
        if not starts:
            self._error(result, ValidationErrorKind.MISSING_START, "Workflow must have a start node")
        elif len(starts) > 1:
            self._error(
                result, ValidationErrorKind.MULTIPLE_START,
                f"Workflow has {len(starts)} start nodes: {', '.join(s.id for s in starts)}"
            )

        for start in starts:
            if graph.incoming_edges(start.id):
                self._error(
                    result, ValidationErrorKind.START_HAS_INCOMING,
                    f"Start node {start.id} must not have incoming edges", start.id
                )
            if len(graph.outgoing_edges(start.id)) != 1:
                self._error(
                    result, ValidationErrorKind.MALFORMED_APPROVAL,
                    f"Start node {start.id} must have exactly one outgoing edge", start.id
                )
        return starts

    def _check_approval_node(self, graph: WorkflowGraph, node: ApprovalNode, result: ValidationResult) -> None:
        name = node.label or node.id

        if not node.has_role_requirement:
            self._error(
                result, ValidationErrorKind.UNAUTHORIZED_APPROVAL_NODE,
                f"Approval node '{name}' must define required_role or required_roles", node.id
            )

        if len(graph.outgoing_edges(node.id)) != 1:
            self._error(
                result, ValidationErrorKind.MALFORMED_APPROVAL,
                f"Approval node '{name}' must have exactly one outgoing edge", node.id
            )

        if node.required_approvals_count is not None and node.required_approvals_count < 1:
            self._error(
                result, ValidationErrorKind.INVALID_APPROVAL_COUNT,
                f"Approval node '{name}' requires at least one approval", node.id
            )

        if node.auto_escalate and not node.escalation_role:
            self._warning(
                result, ValidationErrorKind.MISSING_ESCALATION_ROLE,
                f"Approval node '{name}' auto-escalates but has no escalation_role", node.id
            )

        for condition in node.abac_conditions:
            if parse_attribute_path(condition.attribute) is None:
                self._error(
                    result, ValidationErrorKind.UNKNOWN_ATTRIBUTE,
                    f"Approval node '{name}' uses unknown attribute: {condition.attribute}", node.id
                )
            ref = reference_path(condition.value)
            if ref is not None and parse_attribute_path(ref) is None:
                self._error(
                    result, ValidationErrorKind.UNKNOWN_ATTRIBUTE,
                    f"Approval node '{name}' references unknown attribute: {ref}", node.id
                )

    def _check_condition_node(self, graph: WorkflowGraph, node: ConditionNode, result: ValidationResult) -> None:
        labels = sorted(e.label or "" for e in graph.outgoing_edges(node.id))
        if labels != sorted(BRANCH_LABELS):
            self._error(
                result, ValidationErrorKind.MALFORMED_CONDITION,
                f"Condition node '{node.label or node.id}' needs exactly one 'true' and one "
                f"'false' edge, found {labels or 'none'}",
                node.id
            )

    def _check_reachability(
        self,
        graph: WorkflowGraph,
        start: StartNode,
        node_ids: Set[str],
        result: ValidationResult
    ) -> None:
        reachable = self._find_reachable_nodes(graph, start.id, node_ids)

        if not any(isinstance(graph.node_by_id(n), EndNode) for n in reachable):
            self._error(
                result, ValidationErrorKind.NO_REACHABLE_END,
                "No end node is reachable from the start node", start.id
            )

        for node in graph.nodes:
            if node.id not in reachable:
                self._warning(
                    result, ValidationErrorKind.ORPHAN_NODE,
                    f"Node {node.id} is not reachable from start", node.id
                )

    @staticmethod
    def _find_reachable_nodes(graph: WorkflowGraph, start_id: str, node_ids: Set[str]) -> Set[str]:
        """Depth-first traversal over edges with existing targets"""
        reachable = {start_id}
        to_visit = [start_id]

        while to_visit:
            current = to_visit.pop()
            for edge in graph.outgoing_edges(current):
                if edge.target in node_ids and edge.target not in reachable:
                    reachable.add(edge.target)
                    to_visit.append(edge.target)

        return reachable

    @staticmethod
    def _approval_order(steps: Dict[str, CompiledStep], start_id: str) -> List[str]:
        """Approval nodes in DFS preorder, `true` branches first"""
        order: List[str] = []
        seen: Set[str] = set()
        to_visit = [start_id]

        while to_visit:
            current = to_visit.pop()
            if current in seen or current not in steps:
                continue
            seen.add(current)
            step = steps[current]
            if step.node_type == NodeType.APPROVAL:
                order.append(current)
            # Pushed in reverse so the true branch is explored first
            for successor in (step.false_node_id, step.true_node_id, step.next_node_id):
                if successor:
                    to_visit.append(successor)

        return order

    @staticmethod
    def _error(
        result: ValidationResult,
        kind: ValidationErrorKind,
        message: str,
        node_id: Optional[str] = None
    ) -> None:
        result.errors.append(ValidationIssue(kind=kind, message=message, node_id=node_id))

    @staticmethod
    def _warning(
        result: ValidationResult,
        kind: ValidationErrorKind,
        message: str,
        node_id: Optional[str] = None
    ) -> None:
        result.warnings.append(
            ValidationIssue(kind=kind, severity=IssueSeverity.WARNING, message=message, node_id=node_id)
        )
