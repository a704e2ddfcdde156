"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class NodeType(str, Enum):
    """Types of workflow graph nodes"""
    START = "start"
    APPROVAL = "approval"
    CONDITION = "condition"
    END = "end"


class ApprovalType(str, Enum):
    """How many approvals complete an approval step"""
    SEQUENTIAL = "sequential"                # One approval completes the step
    PARALLEL_ALL = "parallel_all"            # Every eligible approver must approve
    PARALLEL_ANY = "parallel_any"            # First approval completes the step
    PARALLEL_MAJORITY = "parallel_majority"  # required_approvals_count approvals


class AbacOperator(str, Enum):
    """Operators for ABAC conditions"""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"


class BranchOperator(str, Enum):
    """Operators for condition (branch) nodes"""
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    NEQ = "neq"
    IN = "in"


class AttributePath(str, Enum):
    """Known ABAC attribute paths"""
    USER_DEPARTMENT_ID = "user.department_id"
    USER_DIVISION_ID = "user.division_id"
    USER_JOB_LEVEL = "user.job_level"
    USER_APPROVAL_LIMIT_AMOUNT = "user.approval_limit_amount"
    RESOURCE_DEPARTMENT_ID = "resource.department_id"
    RESOURCE_AMOUNT = "resource.amount"
    RESOURCE_STATUS = "resource.status"
    RESOURCE_CREATED_BY = "resource.created_by"


class TemplateStatus(str, Enum):
    """Workflow template status"""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class InstanceStatus(str, Enum):
    """Workflow instance status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.PENDING


class ActionType(str, Enum):
    """Actions an actor can submit against an instance"""
    APPROVE = "approve"
    REJECT = "reject"
    COMMENT = "comment"


class ApprovalAction(str, Enum):
    """Action recorded on an Approval record"""
    APPROVED = "approved"
    REJECTED = "rejected"
    COMMENTED = "commented"


class StepOutcome(str, Enum):
    """Result of evaluating an approval step's completion criteria"""
    PENDING = "pending"
    SATISFIED = "satisfied"
    REJECTED = "rejected"


class IssueSeverity(str, Enum):
    """Severity of a template validation issue"""
    ERROR = "error"
    WARNING = "warning"


class ValidationErrorKind(str, Enum):
    """Kinds of template validation issues"""
    MISSING_START = "MissingStart"
    MULTIPLE_START = "MultipleStart"
    NO_REACHABLE_END = "NoReachableEnd"
    MALFORMED_CONDITION = "MalformedCondition"
    UNAUTHORIZED_APPROVAL_NODE = "UnauthorizedApprovalNode"
    ORPHAN_NODE = "OrphanNode"
    DUPLICATE_NODE_ID = "DuplicateNodeId"
    DANGLING_EDGE = "DanglingEdge"
    UNKNOWN_ATTRIBUTE = "UnknownAttribute"
    MALFORMED_APPROVAL = "MalformedApproval"
    START_HAS_INCOMING = "StartHasIncoming"
    END_HAS_OUTGOING = "EndHasOutgoing"
    INVALID_APPROVAL_COUNT = "InvalidApprovalCount"
    MISSING_ESCALATION_ROLE = "MissingEscalationRole"


class AuditEventType(str, Enum):
    """Types of audit events"""
    INSTANCE_STARTED = "INSTANCE_STARTED"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    COMMENT = "COMMENT"
    CANCEL = "CANCEL"
    STEP_ENTERED = "STEP_ENTERED"
    STEP_COMPLETED = "STEP_COMPLETED"
    BRANCH_TAKEN = "BRANCH_TAKEN"
    INSTANCE_APPROVED = "INSTANCE_APPROVED"
    INSTANCE_REJECTED = "INSTANCE_REJECTED"
    ESCALATED_ACTION = "ESCALATED_ACTION"
    ENGINE_ERROR = "ENGINE_ERROR"
    TEMPLATE_PUBLISHED = "TEMPLATE_PUBLISHED"
