"""Audit trail recording and emission."""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

from subca.models.audit import AuditAction, AuditLog
from subca.models.auth import Capability, Identity
from subca.services.auth_service import require_capability

logger = logging.getLogger("subca")


class AuditSink(Protocol):
    """Receives every committed audit row."""

    def emit(self, entry: AuditLog) -> None: ...


class LoggingAuditSink:
    """Writes one JSON line per audit row to the ``subca.audit`` logger."""

    def __init__(self, logger_name: str = "subca.audit"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, entry: AuditLog) -> None:
        self._logger.info(json.dumps(entry.model_dump(mode="json"), sort_keys=True))


class AuditService:
    """Builds audit rows inside a unit of work and emits them after commit."""

    def __init__(self, store, sink: Optional[AuditSink] = None):
        """
        Initialize audit service.

        Args:
            store: Store holding committed audit rows
            sink: Destination for committed rows (logging by default)
        """
        self.store = store
        self.sink = sink or LoggingAuditSink()

    def record(
        self,
        uow,
        action: AuditAction,
        actor: Identity,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Stage an audit row in ``uow``.

        The row commits or rolls back together with the operation; the sink
        only sees it once the unit has committed.

        Args:
            uow: Open unit of work
            action: Audited action
            actor: Caller identity
            description: Human-readable summary
            metadata: Structured details

        Returns:
            The staged audit row
        """
        entry = AuditLog(
            id=str(uuid.uuid4()),
            action=action,
            user_id=actor.user_id,
            username=actor.username,
            description=description,
            metadata=metadata or {},
        )
        uow.add(entry)
        uow.after_commit(lambda: self.sink.emit(entry))
        return entry

    def list_logs(
        self,
        actor: Identity,
        action: Optional[AuditAction] = None,
        limit: Optional[int] = 100,
    ) -> List[AuditLog]:
        """List audit rows, newest first."""
        require_capability(actor.permissions, Capability.AUDIT_READ)
        return self.store.list_audit_logs(action=action, limit=limit)
