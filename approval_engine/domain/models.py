"""Domain Models - Pydantic schemas for templates, graphs and instances"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union
from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator,
    model_validator
)

from .enums import (
    AbacOperator, ApprovalAction, ApprovalType, AttributePath, AuditEventType,
    BranchOperator, InstanceStatus, IssueSeverity, NodeType, TemplateStatus,
    ValidationErrorKind
)
from .errors import DomainError


# ============================================================================
# Actor & Resource Attributes
# ============================================================================

class UserAttrs(BaseModel):
    """Attributes of the acting user, supplied by the caller"""
    model_config = ConfigDict(extra="allow")

    user_id: str = Field(..., description="Stable user identifier")
    roles: List[str] = Field(default_factory=list, description="Assigned roles")
    display_name: Optional[str] = None
    department_id: Optional[Any] = None
    division_id: Optional[Any] = None
    job_level: Optional[Any] = None
    approval_limit_amount: Optional[float] = None

    def has_role(self, role: Optional[str]) -> bool:
        return bool(role) and role in self.roles

    def get_attribute(self, name: str) -> Any:
        """Declared field or extra attribute, None if absent"""
        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)


class ResourceAttrs(BaseModel):
    """Snapshot of the business item under approval"""
    model_config = ConfigDict(extra="allow")

    department_id: Optional[Any] = None
    amount: Optional[Any] = None
    status: Optional[str] = None
    created_by: Optional[str] = None

    def get_attribute(self, name: str) -> Any:
        """Declared field or extra attribute, None if absent"""
        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)


class EvaluationContext(BaseModel):
    """Context for ABAC evaluation - both sides are passed explicitly"""
    user: UserAttrs
    resource: ResourceAttrs = Field(default_factory=ResourceAttrs)


# ============================================================================
# ABAC Conditions
# ============================================================================

class ABACCondition(BaseModel):
    """Attribute predicate attached to an approval node"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    attribute: str = Field(..., description="Dotted path, e.g. user.department_id")
    operator: AbacOperator = Field(AbacOperator.EQ, description="Comparison operator")
    value: Any = Field(None, description="Literal, list, or {{user.x}} / {{resource.x}} reference")

    @property
    def attribute_path(self) -> Optional[AttributePath]:
        """Known attribute path, or None for an unrecognised one"""
        try:
            return AttributePath(self.attribute)
        except ValueError:
            return None


# ============================================================================
# Graph Nodes (tagged union on `type`)
# ============================================================================

class NodePosition(BaseModel):
    """Editor canvas position, carried but not interpreted"""
    x: float = 0
    y: float = 0


class BaseNode(BaseModel):
    """Fields shared by every node type"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., description="Unique node ID within the template")
    label: str = Field(default="", description="Display label")
    position: Optional[NodePosition] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_editor_data(cls, values: Any) -> Any:
        """Editor graphs keep node config under `data`; lift it to the top level"""
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            merged = {k: v for k, v in values.items() if k != "data"}
            for key, value in values["data"].items():
                merged.setdefault(key, value)
            return merged
        return values


class StartNode(BaseNode):
    """Entry point - exactly one per template"""
    type: Literal["start"] = "start"


class EndNode(BaseNode):
    """Terminal node - reaching it approves the instance"""
    type: Literal["end"] = "end"


class ApprovalNode(BaseNode):
    """Approval step with RBAC/ABAC requirements and SLA settings"""
    type: Literal["approval"] = "approval"
    required_role: Optional[str] = None
    required_roles: List[str] = Field(default_factory=list)
    approval_type: ApprovalType = ApprovalType.SEQUENTIAL
    required_approvals_count: Optional[int] = None
    abac_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("abac_enabled", "enable_abac")
    )
    abac_conditions: List[ABACCondition] = Field(default_factory=list)
    sla_hours: Optional[float] = Field(None, description="Hours before the step is breached")
    auto_escalate: bool = False
    escalation_role: Optional[str] = None

    @property
    def roles(self) -> List[str]:
        """All roles that may act on this step"""
        roles = [r for r in self.required_roles if r]
        if self.required_role and self.required_role not in roles:
            roles.insert(0, self.required_role)
        return roles

    @property
    def has_role_requirement(self) -> bool:
        return bool(self.roles)


# Editor symbols for condition operators
_BRANCH_OPERATOR_SYMBOLS = {
    ">": BranchOperator.GT,
    "<": BranchOperator.LT,
    "==": BranchOperator.EQ,
    "=": BranchOperator.EQ,
    "!=": BranchOperator.NEQ,
}


class ConditionNode(BaseNode):
    """Branch node - routes to its `true` or `false` edge"""
    type: Literal["condition"] = "condition"
    field: str = Field(
        ...,
        validation_alias=AliasChoices("field", "condition_field"),
        description="Field of the business item snapshot"
    )
    operator: BranchOperator = Field(
        ...,
        validation_alias=AliasChoices("operator", "condition_operator")
    )
    value: Any = Field(None, validation_alias=AliasChoices("value", "condition_value"))

    @field_validator("operator", mode="before")
    @classmethod
    def _map_operator_symbols(cls, value: Any) -> Any:
        if isinstance(value, str) and value in _BRANCH_OPERATOR_SYMBOLS:
            return _BRANCH_OPERATOR_SYMBOLS[value]
        return value


Node = Annotated[
    Union[StartNode, ApprovalNode, ConditionNode, EndNode],
    Field(discriminator="type")
]


class Edge(BaseModel):
    """Directed edge between two nodes"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    label: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("label", "sourceHandle"),
        description="'true' / 'false' on condition out-edges"
    )


# ============================================================================
# Graph & Template
# ============================================================================

class WorkflowGraph(BaseModel):
    """Nodes and edges of a workflow template, with structural lookups only"""
    model_config = ConfigDict(extra="ignore")

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def node_by_id(self, node_id: Optional[str]) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def nodes_of_type(self, node_type: NodeType) -> List[Node]:
        return [n for n in self.nodes if n.type == node_type.value]

    def start_node(self) -> Optional[StartNode]:
        starts = self.nodes_of_type(NodeType.START)
        return starts[0] if starts else None


class WorkflowTemplate(BaseModel):
    """Versioned workflow template; immutable once published"""
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    template_id: str = Field(..., description="Unique template ID")
    name: str = Field(..., description="Workflow name")
    model_name: str = Field(..., description="Target entity type, e.g. purchase_order")
    description: Optional[str] = None
    graph: WorkflowGraph = Field(default_factory=WorkflowGraph)
    status: TemplateStatus = Field(default=TemplateStatus.DRAFT)
    version: int = Field(default=1, description="Template version number")
    parent_template_id: Optional[str] = Field(None, description="Template this draft was copied from")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == TemplateStatus.PUBLISHED


# ============================================================================
# Instance Records
# ============================================================================

class Approval(BaseModel):
    """Append-only decision record"""
    model_config = ConfigDict(frozen=True)

    approval_id: str
    user_id: str
    node_id: str
    action: ApprovalAction
    comment: Optional[str] = None
    timestamp: datetime
    step_visit: int = Field(..., description="Node entry the decision belongs to")
    escalated: bool = Field(default=False, description="Authorized via escalation role")


class Comment(BaseModel):
    """Append-only comment record"""
    model_config = ConfigDict(frozen=True)

    comment_id: str
    user_id: str
    node_id: Optional[str] = None
    text: str
    timestamp: datetime


class WorkflowInstance(BaseModel):
    """One running execution of a template bound to a business item"""
    model_config = ConfigDict(extra="ignore")

    instance_id: str = Field(..., description="Unique instance ID")
    template_id: str
    template_version: int = 1
    module: str = Field(..., description="Business module of the related item")
    item_id: str = Field(..., description="Related business item ID")
    resource: ResourceAttrs = Field(default_factory=ResourceAttrs)
    current_node_id: Optional[str] = None
    status: InstanceStatus = Field(default=InstanceStatus.PENDING)
    approvals: List[Approval] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    eligible_approvers: Set[str] = Field(default_factory=set)
    node_entered_at: Optional[datetime] = None
    step_visit: int = 0
    version: int = Field(default=1, description="Optimistic concurrency version")
    corrupt: bool = False
    corruption_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != InstanceStatus.PENDING

    @property
    def last_action_at(self) -> Optional[datetime]:
        """Timestamp of the latest Approval or Comment record"""
        stamps = [a.timestamp for a in self.approvals] + [c.timestamp for c in self.comments]
        return max(stamps) if stamps else None

    def approvals_for_current_step(self) -> List[Approval]:
        return [
            a for a in self.approvals
            if a.node_id == self.current_node_id and a.step_visit == self.step_visit
        ]


# ============================================================================
# Evaluation, Validation & Results
# ============================================================================

class ConditionResult(BaseModel):
    """Outcome of one condition, kept for policy explainability"""
    attribute: str
    operator: str
    expected: Any = None
    actual: Any = None
    passed: bool


class ConditionTrace(BaseModel):
    """Per-condition results of an ABAC evaluation"""
    results: List[ConditionResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failed(self) -> List[ConditionResult]:
        return [r for r in self.results if not r.passed]


class AuthorizationDecision(BaseModel):
    """Why an actor may or may not act on a step"""
    allowed: bool
    rbac_passed: bool
    abac_passed: bool
    escalated: bool = False
    trace: ConditionTrace = Field(default_factory=ConditionTrace)


class ValidationIssue(BaseModel):
    """One template validation finding"""
    kind: ValidationErrorKind
    severity: IssueSeverity = IssueSeverity.ERROR
    message: str
    node_id: Optional[str] = None


class ValidationResult(BaseModel):
    """Result of validating a template; only errors block publishing"""
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def ok(self) -> bool:
        return not self.errors

    def kinds(self) -> Set[ValidationErrorKind]:
        return {i.kind for i in self.errors + self.warnings}


class CompiledStep(BaseModel):
    """Successors of one node after compilation"""
    node_id: str
    node_type: NodeType
    next_node_id: Optional[str] = None
    true_node_id: Optional[str] = None
    false_node_id: Optional[str] = None


class CompiledWorkflow(BaseModel):
    """Validated template flattened into a successor map"""
    template_id: str
    template_version: int
    start_node_id: str
    steps: Dict[str, CompiledStep] = Field(default_factory=dict)
    approval_order: List[str] = Field(default_factory=list, description="Approval nodes in DFS order")


class ActionResult(BaseModel):
    """Typed outcome of an engine operation - errors are carried, not raised"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    instance: Optional[WorkflowInstance] = None
    template: Optional[WorkflowTemplate] = None
    validation: Optional[ValidationResult] = None
    error: Optional[DomainError] = None
    advanced: bool = Field(default=False, description="Instance moved to another node")
    duplicate: bool = Field(default=False, description="Repeated decision ignored")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: DomainError, **kwargs: Any) -> "ActionResult":
        return cls(error=error, **kwargs)

    def unwrap(self) -> Union[WorkflowInstance, WorkflowTemplate, None]:
        """Return the payload or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.instance if self.instance is not None else self.template


class AuditEvent(BaseModel):
    """Append-only audit event"""
    model_config = ConfigDict(frozen=True)

    audit_event_id: str
    instance_id: Optional[str] = None
    template_id: Optional[str] = None
    event_type: AuditEventType
    user_id: Optional[str] = None
    node_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    correlation_id: Optional[str] = None


class WorkflowStats(BaseModel):
    """Dashboard counters over a set of instances"""
    pending_approvals: int = 0
    sla_breaches: int = 0
    approved: int = 0
    rejected: int = 0
    cancelled: int = 0
    by_resource_type: Dict[str, int] = Field(default_factory=dict)
