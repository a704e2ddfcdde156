"""Tests for InstanceService"""
from datetime import timedelta

import pytest

from approval_engine.domain.enums import AuditEventType, InstanceStatus
from approval_engine.domain.errors import InstanceNotFoundError, StaleActionError
from approval_engine.repositories.instance_repo import InstanceRepository
from approval_engine.repositories.workflow_repo import WorkflowRepository
from approval_engine.services.instance_service import InstanceService
from tests.conftest import NOW


@pytest.fixture
def workflow_repo(linear_template, two_step_template) -> WorkflowRepository:
    repo = WorkflowRepository()
    repo.create_template(linear_template)
    repo.create_template(two_step_template.model_copy(update={"template_id": "WFT-two-step"}))
    return repo


@pytest.fixture
def service(workflow_repo, engine) -> InstanceService:
    return InstanceService(workflow_repo=workflow_repo, instance_repo=InstanceRepository(), engine=engine)


def start(service, template_id="WFT-test", module="purchase_order", item_id="PO-1"):
    result = service.start(template_id, module, item_id, resource={"amount": 100}, now=NOW)
    assert result.ok, result.error
    return result.instance


class TestCommands:

    def test_start_stores_instance(self, service):
        instance = start(service)
        stored = service.get_instance(instance.instance_id)
        assert stored.current_node_id == "manager_review"
        assert stored.resource.amount == 100

    def test_act_saves_result(self, service, manager):
        instance = start(service)

        result = service.act(instance.instance_id, manager, "approve", now=NOW + timedelta(hours=1))

        assert result.ok is True
        stored = service.get_instance(instance.instance_id)
        assert stored.status == InstanceStatus.APPROVED
        assert stored.version == instance.version + 1

    def test_action_events_share_correlation_id(self, service, manager, audit_repo):
        instance = start(service)
        service.act(instance.instance_id, manager, "approve", now=NOW + timedelta(hours=1))

        events = audit_repo.get_events_for_instance(
            instance.instance_id,
            event_types=[AuditEventType.APPROVE, AuditEventType.INSTANCE_APPROVED]
        )
        assert len(events) == 2
        assert events[0].correlation_id is not None
        assert events[0].correlation_id == events[1].correlation_id
        assert len(audit_repo.get_events_by_correlation_id(events[0].correlation_id)) >= 2

    def test_failed_action_is_not_saved(self, service, outsider):
        instance = start(service)
        result = service.act(instance.instance_id, outsider, "approve", now=NOW)
        assert result.ok is False
        assert service.get_instance(instance.instance_id).version == instance.version

    def test_expected_version_mismatch(self, service, manager):
        instance = start(service)
        result = service.act(
            instance.instance_id, manager, "approve", now=NOW, expected_version=instance.version + 5
        )
        assert isinstance(result.error, StaleActionError)

    def test_concurrent_save_is_reported_stale(self, service, manager):
        instance = start(service)
        # Another writer bumps the stored copy between load and save
        original_get = service.instance_repo.get_instance_or_raise

        def load_then_race(instance_id):
            loaded = original_get(instance_id)
            racer = original_get(instance_id)
            racer.version += 1
            service.instance_repo.save_instance(racer)
            return loaded

        service.instance_repo.get_instance_or_raise = load_then_race
        result = service.act(instance.instance_id, manager, "approve", now=NOW)

        assert isinstance(result.error, StaleActionError)

    def test_cancel(self, service, manager):
        instance = start(service)
        result = service.cancel(instance.instance_id, manager, reason="Withdrawn", now=NOW)
        assert result.ok is True
        assert service.get_instance(instance.instance_id).status == InstanceStatus.CANCELLED

    def test_unknown_instance(self, service, manager):
        with pytest.raises(InstanceNotFoundError):
            service.act("WFI-missing", manager, "approve")


class TestQueries:

    def test_breached_instances(self, service):
        breached = start(service)
        start(service, template_id="WFT-two-step")

        assert service.breached_instances(NOW + timedelta(hours=1)) == []
        assert [i.instance_id for i in service.breached_instances(NOW + timedelta(hours=25))] == [
            breached.instance_id
        ]

    def test_pending_by_role(self, service):
        instance = start(service)

        assert [i.instance_id for i in service.pending_by_role("manager", NOW)] == [instance.instance_id]
        assert service.pending_by_role("director", NOW) == []
        # Escalation role sees the step once the SLA is breached
        assert len(service.pending_by_role("director", NOW + timedelta(hours=25))) == 1

    def test_pending_for_actor(self, service, manager, cfo):
        instance = start(service, template_id="WFT-two-step")
        service.act(instance.instance_id, manager, "approve", now=NOW)

        assert service.pending_for_actor(manager, NOW) == []
        assert [i.instance_id for i in service.pending_for_actor(cfo, NOW)] == [instance.instance_id]

    def test_describe_progress(self, service, manager):
        instance = start(service, template_id="WFT-two-step")
        service.act(instance.instance_id, manager, "approve", now=NOW)

        progress = service.describe_progress(instance.instance_id)

        assert [(p["node_id"], p["state"]) for p in progress] == [
            ("manager_review", "completed"),
            ("cfo_review", "current"),
        ]

    def test_describe_progress_marks_rejecting_step(self, service, manager, cfo):
        instance = start(service, template_id="WFT-two-step")
        service.act(instance.instance_id, manager, "approve", now=NOW)
        service.act(instance.instance_id, cfo, "reject", now=NOW)

        progress = service.describe_progress(instance.instance_id)

        assert [(p["node_id"], p["state"]) for p in progress] == [
            ("manager_review", "completed"),
            ("cfo_review", "rejected"),
        ]

    def test_describe_progress_after_cancel(self, service, manager):
        instance = start(service, template_id="WFT-two-step")
        service.cancel(instance.instance_id, manager, now=NOW)

        assert [p["state"] for p in service.describe_progress(instance.instance_id)] == [
            "cancelled", "upcoming"
        ]

    def test_instances_for_item(self, service, manager):
        first = start(service, item_id="PO-7")
        service.cancel(first.instance_id, manager, now=NOW)
        second = start(service, item_id="PO-7")
        start(service, item_id="PO-8")

        history = service.instances_for_item("purchase_order", "PO-7")

        assert [i.instance_id for i in history] == [first.instance_id, second.instance_id]
        assert [i.status for i in history] == [InstanceStatus.CANCELLED, InstanceStatus.PENDING]

    def test_describe_progress_reports_sla(self, service):
        instance = start(service)

        current = service.describe_progress(instance.instance_id, NOW + timedelta(hours=20))[0]
        assert current["state"] == "current"
        assert current["due_at"] == "2026-03-03T09:00:00Z"
        assert current["time_left"] == "4h"

        overdue = service.describe_progress(instance.instance_id, NOW + timedelta(hours=26))[0]
        assert overdue["time_left"] == "-2h"

    def test_get_stats(self, service, manager, outsider):
        approved = start(service, item_id="PO-1")
        cancelled = start(service, item_id="PO-2")
        start(service, module="invoice", item_id="INV-1")
        service.act(approved.instance_id, manager, "approve", now=NOW)
        service.cancel(cancelled.instance_id, outsider, now=NOW)

        stats = service.get_stats(NOW + timedelta(hours=25))

        assert stats.pending_approvals == 1
        assert stats.sla_breaches == 1
        assert stats.approved == 1
        assert stats.rejected == 0
        assert stats.cancelled == 1
        assert stats.by_resource_type == {"purchase_order": 2, "invoice": 1}
