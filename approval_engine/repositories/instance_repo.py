"""Instance Repository - Data access for workflow instances"""
import threading
from typing import Dict, List, Optional

from ..domain.enums import InstanceStatus
from ..domain.errors import AlreadyExistsError, ConcurrencyError, InstanceNotFoundError
from ..domain.models import WorkflowInstance
from ..utils.logger import get_logger

logger = get_logger(__name__)


class InstanceRepository:
    """Repository for workflow instances (in memory, optimistic concurrency on save)"""

    def __init__(self):
        self._lock = threading.RLock()
        self._instances: Dict[str, WorkflowInstance] = {}

    def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Store a new instance"""
        with self._lock:
            if instance.instance_id in self._instances:
                raise AlreadyExistsError(f"Instance {instance.instance_id} already exists")
            self._instances[instance.instance_id] = instance.model_copy(deep=True)

        logger.info(
            f"Created instance: {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "template_id": instance.template_id}
        )
        return instance

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Get instance by ID"""
        with self._lock:
            stored = self._instances.get(instance_id)
            return stored.model_copy(deep=True) if stored else None

    def get_instance_or_raise(self, instance_id: str) -> WorkflowInstance:
        """Get instance by ID or raise error"""
        instance = self.get_instance(instance_id)
        if not instance:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")
        return instance

    def save_instance(
        self,
        instance: WorkflowInstance,
        expected_version: Optional[int] = None
    ) -> WorkflowInstance:
        """
        Replace a stored instance with optimistic concurrency

        Args:
            instance: Mutated instance
            expected_version: Version the caller loaded before mutating
        """
        with self._lock:
            stored = self._instances.get(instance.instance_id)
            if stored is None:
                raise InstanceNotFoundError(f"Instance {instance.instance_id} not found")
            if expected_version is not None and stored.version != expected_version:
                raise ConcurrencyError(
                    f"Instance {instance.instance_id} was modified. Please refresh and try again.",
                    details={"expected_version": expected_version, "actual_version": stored.version}
                )
            self._instances[instance.instance_id] = instance.model_copy(deep=True)

        logger.info(
            f"Saved instance: {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "status": instance.status.value}
        )
        return instance

    def list_instances(
        self,
        status: Optional[InstanceStatus] = None,
        module: Optional[str] = None,
        template_id: Optional[str] = None
    ) -> List[WorkflowInstance]:
        """List instances with optional filters, oldest first"""
        with self._lock:
            instances = [i.model_copy(deep=True) for i in self._instances.values()]

        if status is not None:
            instances = [i for i in instances if i.status == status]
        if module is not None:
            instances = [i for i in instances if i.module == module]
        if template_id is not None:
            instances = [i for i in instances if i.template_id == template_id]
        return sorted(instances, key=lambda i: i.created_at)

    def find_by_item(self, module: str, item_id: str) -> List[WorkflowInstance]:
        """Instances attached to one business item"""
        return [i for i in self.list_instances(module=module) if i.item_id == item_id]

    def count_instances(self, status: Optional[InstanceStatus] = None) -> int:
        return len(self.list_instances(status=status))
