"""Audit Repository - Data access for audit events"""
import threading
from typing import Dict, List, Optional

from ..domain.enums import AuditEventType
from ..domain.models import AuditEvent
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AuditRepository:
    """Repository for audit event operations (append-only, in memory)"""

    def __init__(self):
        self._lock = threading.RLock()
        self._events: List[AuditEvent] = []
        self._by_instance: Dict[str, List[AuditEvent]] = {}

    def create_event(self, event: AuditEvent) -> AuditEvent:
        """Create an audit event (append-only)"""
        with self._lock:
            self._events.append(event)
            if event.instance_id:
                self._by_instance.setdefault(event.instance_id, []).append(event)

        logger.debug(
            f"Created audit event: {event.event_type.value}",
            extra={
                "instance_id": event.instance_id,
                "template_id": event.template_id,
                "node_id": event.node_id,
                "user_id": event.user_id,
            }
        )
        return event

    def get_events_for_instance(
        self,
        instance_id: str,
        event_types: Optional[List[AuditEventType]] = None
    ) -> List[AuditEvent]:
        """Audit events for an instance in write order"""
        with self._lock:
            events = list(self._by_instance.get(instance_id, []))

        if event_types:
            events = [e for e in events if e.event_type in event_types]
        return events

    def get_events_by_correlation_id(self, correlation_id: str) -> List[AuditEvent]:
        """Get audit events by correlation ID"""
        with self._lock:
            return [e for e in self._events if e.correlation_id == correlation_id]

    def list_events(
        self,
        event_types: Optional[List[AuditEventType]] = None,
        limit: int = 100
    ) -> List[AuditEvent]:
        """Most recent events first"""
        with self._lock:
            events = list(reversed(self._events))

        if event_types:
            events = [e for e in events if e.event_type in event_types]
        return events[:limit]

    def count_events_for_instance(self, instance_id: str) -> int:
        """Count audit events for an instance"""
        with self._lock:
            return len(self._by_instance.get(instance_id, []))
