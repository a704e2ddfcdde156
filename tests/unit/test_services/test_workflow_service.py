"""Tests for WorkflowService"""
import pytest

from approval_engine.domain.enums import TemplateStatus, ValidationErrorKind
from approval_engine.domain.errors import (
    InvalidActionError, TemplateNotFoundError, ValidationFailedError
)
from approval_engine.repositories.audit_repo import AuditRepository
from approval_engine.engine.audit_writer import AuditWriter
from approval_engine.services.workflow_service import WorkflowService
from tests.conftest import approval_node, chain

VALID_GRAPH = {
    "nodes": [
        {"id": "start", "type": "start"},
        approval_node("manager_review"),
        {"id": "end", "type": "end"},
    ],
    "edges": chain("start", "manager_review", "end"),
}

INVALID_GRAPH = {
    "nodes": [approval_node("manager_review"), {"id": "end", "type": "end"}],
    "edges": chain("manager_review", "end"),
}


@pytest.fixture
def audit_repo() -> AuditRepository:
    return AuditRepository()


@pytest.fixture
def service(audit_repo) -> WorkflowService:
    return WorkflowService(audit_writer=AuditWriter(audit_repo))


class TestDrafts:

    def test_create_template(self, service):
        template = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)

        assert template.status == TemplateStatus.DRAFT
        assert template.version == 1
        assert template.template_id.startswith("WFT-")
        assert service.get_template(template.template_id).graph.node_by_id("manager_review")

    def test_draft_is_edited_in_place(self, service):
        template = service.create_template("PO Approval", "purchase_order")
        saved = service.save_draft(template.template_id, VALID_GRAPH, name="Renamed")

        assert saved.template_id == template.template_id
        assert saved.version == 1
        assert service.get_template(template.template_id).name == "Renamed"

    def test_editing_published_template_creates_new_version(self, service):
        template = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)
        service.publish(template.template_id).unwrap()

        draft = service.save_draft(template.template_id, VALID_GRAPH)

        assert draft.template_id != template.template_id
        assert draft.version == 2
        assert draft.parent_template_id == template.template_id
        assert draft.status == TemplateStatus.DRAFT
        # The published version is untouched
        assert service.get_template(template.template_id).status == TemplateStatus.PUBLISHED

    def test_missing_template(self, service):
        with pytest.raises(TemplateNotFoundError):
            service.get_template("WFT-missing")


class TestPublish:

    def test_publish_valid_template(self, service, audit_repo):
        template = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)

        result = service.publish(template.template_id, published_by="u-admin")

        assert result.ok is True
        assert result.template.status == TemplateStatus.PUBLISHED
        assert result.template.published_at is not None
        assert result.validation.ok is True
        assert len(audit_repo.list_events()) == 1

    def test_publish_is_gated_by_validation(self, service):
        template = service.create_template("Broken", "purchase_order", INVALID_GRAPH)

        result = service.publish(template.template_id)

        assert result.ok is False
        assert isinstance(result.error, ValidationFailedError)
        assert ValidationErrorKind.MISSING_START in result.validation.kinds()
        assert service.get_template(template.template_id).status == TemplateStatus.DRAFT

    def test_only_drafts_can_be_published(self, service):
        template = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)
        service.publish(template.template_id)

        result = service.publish(template.template_id)

        assert isinstance(result.error, InvalidActionError)

    def test_new_version_archives_previous(self, service):
        v1 = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)
        service.publish(v1.template_id)
        v2 = service.save_draft(v1.template_id, VALID_GRAPH)

        service.publish(v2.template_id).unwrap()

        versions = service.list_versions(v2.template_id)
        assert [(t.version, t.status) for t in versions] == [
            (1, TemplateStatus.ARCHIVED),
            (2, TemplateStatus.PUBLISHED),
        ]
        assert service.get_latest_published("purchase_order").template_id == v2.template_id

    def test_third_version_numbering(self, service):
        v1 = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)
        service.publish(v1.template_id)
        v2 = service.save_draft(v1.template_id, VALID_GRAPH)
        service.publish(v2.template_id)

        v3 = service.save_draft(v1.template_id, VALID_GRAPH)

        assert v3.version == 3


class TestValidationAndCompile:

    def test_validate_template(self, service):
        template = service.create_template("Broken", "purchase_order", INVALID_GRAPH)
        assert service.validate_template(template.template_id).ok is False

    def test_get_compiled(self, service):
        template = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)
        compiled = service.get_compiled(template.template_id)
        assert compiled.approval_order == ["manager_review"]

    def test_archive(self, service):
        template = service.create_template("PO Approval", "purchase_order", VALID_GRAPH)
        service.publish(template.template_id)
        assert service.archive(template.template_id).status == TemplateStatus.ARCHIVED
        assert service.get_latest_published("purchase_order") is None
