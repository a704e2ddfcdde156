"""Workflow Repository - Data access for workflow templates"""
import threading
from typing import Dict, List, Optional

from ..domain.enums import TemplateStatus
from ..domain.errors import AlreadyExistsError, TemplateNotFoundError
from ..domain.models import WorkflowTemplate
from ..utils.logger import get_logger

logger = get_logger(__name__)


class WorkflowRepository:
    """
    Repository for workflow templates (in memory)

    Templates are stored as copies so callers never share state with the store.
    Versions of one workflow form a lineage linked by parent_template_id.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._templates: Dict[str, WorkflowTemplate] = {}

    # =========================================================================
    # Template CRUD
    # =========================================================================

    def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        """Create a new workflow template"""
        with self._lock:
            if template.template_id in self._templates:
                raise AlreadyExistsError(f"Template {template.template_id} already exists")
            self._templates[template.template_id] = template.model_copy(deep=True)

        logger.info(f"Created template: {template.template_id}", extra={"template_id": template.template_id})
        return template

    def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        """Get template by ID"""
        with self._lock:
            stored = self._templates.get(template_id)
            return stored.model_copy(deep=True) if stored else None

    def get_template_or_raise(self, template_id: str) -> WorkflowTemplate:
        """Get template by ID or raise error"""
        template = self.get_template(template_id)
        if not template:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    def update_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        """Replace a stored template"""
        with self._lock:
            if template.template_id not in self._templates:
                raise TemplateNotFoundError(f"Template {template.template_id} not found")
            self._templates[template.template_id] = template.model_copy(deep=True)

        logger.info(
            f"Updated template: {template.template_id}",
            extra={"template_id": template.template_id, "status": template.status.value}
        )
        return template

    def list_templates(
        self,
        status: Optional[TemplateStatus] = None,
        model_name: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        """List templates with optional filters"""
        with self._lock:
            templates = [t.model_copy(deep=True) for t in self._templates.values()]

        if status is not None:
            templates = [t for t in templates if t.status == status]
        if model_name is not None:
            templates = [t for t in templates if t.model_name == model_name]
        return templates

    # =========================================================================
    # Lineage
    # =========================================================================

    def get_lineage_root(self, template_id: str) -> str:
        """ID of the first version in a template's lineage"""
        with self._lock:
            current = self._templates.get(template_id)
            if current is None:
                raise TemplateNotFoundError(f"Template {template_id} not found")
            seen = {current.template_id}
            while current.parent_template_id and current.parent_template_id in self._templates:
                if current.parent_template_id in seen:
                    break
                current = self._templates[current.parent_template_id]
                seen.add(current.template_id)
            return current.template_id

    def list_versions(self, template_id: str) -> List[WorkflowTemplate]:
        """All versions in the lineage of template_id, oldest first"""
        root = self.get_lineage_root(template_id)
        with self._lock:
            ids = list(self._templates)
        versions = [
            t for t in (self.get_template(i) for i in ids)
            if t is not None and self.get_lineage_root(t.template_id) == root
        ]
        return sorted(versions, key=lambda t: t.version)

    def get_latest_published(self, model_name: str) -> Optional[WorkflowTemplate]:
        """Most recently published template for an entity type"""
        published = self.list_templates(status=TemplateStatus.PUBLISHED, model_name=model_name)
        if not published:
            return None
        return max(published, key=lambda t: (t.published_at is not None, t.published_at, t.version))
