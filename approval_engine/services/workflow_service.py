"""Workflow Service - Template lifecycle from draft to publish"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..domain.enums import TemplateStatus
from ..domain.errors import InvalidActionError, ValidationFailedError
from ..domain.models import (
    ActionResult, CompiledWorkflow, ValidationResult, WorkflowGraph, WorkflowTemplate
)
from ..engine.audit_writer import AuditWriter
from ..engine.graph_validator import GraphValidator
from ..repositories.workflow_repo import WorkflowRepository
from ..utils.idgen import generate_template_id
from ..utils.logger import correlation_scope, get_logger
from ..utils.time import coerce_datetime, utc_now

logger = get_logger(__name__)

GraphInput = Union[WorkflowGraph, Dict[str, Any], None]


class WorkflowService:
    """
    Service for workflow template operations

    Published templates are immutable: editing one creates a new draft
    (version + 1) that points back at it through parent_template_id.
    """

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        validator: Optional[GraphValidator] = None,
        audit_writer: Optional[AuditWriter] = None
    ):
        self.repo = repo or WorkflowRepository()
        self.validator = validator or GraphValidator()
        self.audit_writer = audit_writer or AuditWriter()

    def create_template(
        self,
        name: str,
        model_name: str,
        graph: GraphInput = None,
        description: Optional[str] = None
    ) -> WorkflowTemplate:
        """Create a new workflow template (draft)"""
        now = utc_now()

        template = WorkflowTemplate(
            template_id=generate_template_id(),
            name=name,
            model_name=model_name,
            description=description,
            graph=self._coerce_graph(graph),
            status=TemplateStatus.DRAFT,
            version=1,
            created_at=now,
            updated_at=now
        )

        return self.repo.create_template(template)

    def get_template(self, template_id: str) -> WorkflowTemplate:
        """Get template by ID"""
        return self.repo.get_template_or_raise(template_id)

    def list_templates(
        self,
        status: Optional[TemplateStatus] = None,
        model_name: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        """List templates with optional filters"""
        return self.repo.list_templates(status=status, model_name=model_name)

    def save_draft(
        self,
        template_id: str,
        graph: GraphInput,
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> WorkflowTemplate:
        """
        Save a graph edit

        Drafts are updated in place. Editing a published or archived template
        creates a new draft copy with the next version number.

        Returns:
            The draft that holds the edit
        """
        template = self.repo.get_template_or_raise(template_id)
        now = utc_now()

        if template.status == TemplateStatus.DRAFT:
            template.graph = self._coerce_graph(graph)
            if name is not None:
                template.name = name
            if description is not None:
                template.description = description
            template.updated_at = now
            return self.repo.update_template(template)

        next_version = max(t.version for t in self.repo.list_versions(template_id)) + 1
        draft = WorkflowTemplate(
            template_id=generate_template_id(),
            name=name if name is not None else template.name,
            model_name=template.model_name,
            description=description if description is not None else template.description,
            graph=self._coerce_graph(graph),
            status=TemplateStatus.DRAFT,
            version=next_version,
            parent_template_id=template.template_id,
            created_at=now,
            updated_at=now
        )

        logger.info(
            f"Created draft v{next_version} from {template.status.value} template {template_id}",
            extra={"template_id": draft.template_id}
        )
        return self.repo.create_template(draft)

    def validate_template(self, template_id: str) -> ValidationResult:
        """Validate a template without publishing it"""
        template = self.repo.get_template_or_raise(template_id)
        return self.validator.validate(template)

    def publish(
        self,
        template_id: str,
        published_by: Optional[str] = None,
        now: Union[datetime, str, None] = None
    ) -> ActionResult:
        """
        Publish a draft template

        Publishing is gated on validation errors only; warnings are returned
        in the result. The previously published version of the same lineage
        is archived.

        Returns:
            ActionResult with the published template, or ValidationFailedError
        """
        template = self.repo.get_template_or_raise(template_id)

        if template.status != TemplateStatus.DRAFT:
            return ActionResult.failure(
                InvalidActionError(
                    f"Only draft templates can be published, template is {template.status.value}",
                    details={"template_id": template_id, "status": template.status.value}
                ),
                template=template
            )

        validation = self.validator.validate(template)
        if not validation.ok:
            logger.warning(
                f"Publish rejected for template {template_id}: {len(validation.errors)} errors",
                extra={"template_id": template_id, "status": "invalid"}
            )
            return ActionResult.failure(
                ValidationFailedError(
                    "Workflow validation failed",
                    details={"errors": [e.model_dump(mode="json") for e in validation.errors]}
                ),
                template=template,
                validation=validation
            )

        now = coerce_datetime(now)
        for previous in self.repo.list_versions(template_id):
            if previous.status == TemplateStatus.PUBLISHED:
                previous.status = TemplateStatus.ARCHIVED
                previous.updated_at = now
                self.repo.update_template(previous)

        template.status = TemplateStatus.PUBLISHED
        template.published_at = now
        template.updated_at = now
        self.repo.update_template(template)
        with correlation_scope():
            self.audit_writer.write_template_published(template, user_id=published_by)

        logger.info(
            f"Published template {template_id} v{template.version}",
            extra={"template_id": template_id, "status": "published"}
        )
        return ActionResult(template=template, validation=validation)

    def archive(self, template_id: str) -> WorkflowTemplate:
        """Retire a template; running instances keep using it"""
        template = self.repo.get_template_or_raise(template_id)
        template.status = TemplateStatus.ARCHIVED
        template.updated_at = utc_now()
        return self.repo.update_template(template)

    def list_versions(self, template_id: str) -> List[WorkflowTemplate]:
        """All versions of a workflow, oldest first"""
        return self.repo.list_versions(template_id)

    def get_latest_published(self, model_name: str) -> Optional[WorkflowTemplate]:
        """Template new instances of model_name should start from"""
        return self.repo.get_latest_published(model_name)

    def get_compiled(self, template_id: str) -> CompiledWorkflow:
        """
        Compiled successor map of a template

        Raises:
            ValidationFailedError: If the template does not validate
        """
        return self.validator.compile(self.repo.get_template_or_raise(template_id))

    @staticmethod
    def _coerce_graph(graph: GraphInput) -> WorkflowGraph:
        if graph is None:
            return WorkflowGraph()
        if isinstance(graph, WorkflowGraph):
            return graph
        return WorkflowGraph.model_validate(graph)
