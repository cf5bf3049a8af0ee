"""
Audit Trail
============
Compliance-relevant events (restriction changes, KYC transitions, AML
reports) are written through the background job queue so the caller never
waits on the store, and a failed write is retried and finally
dead-lettered instead of disappearing.
"""
import logging
from typing import Any, Callable, Optional
from datetime import datetime

from db.models import AuditLogEntry, utcnow
from db.store import ComplianceStore
from jobs.queue import JobQueue

logger = logging.getLogger(__name__)

WRITE_AUDIT_LOG = "write_audit_log"


class AuditTrail:

    def __init__(self, store: ComplianceStore, queue: JobQueue,
                 clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._queue = queue
        self._clock = clock
        queue.register(WRITE_AUDIT_LOG, self._write)

    def record(self, actor_id: str, action: str, target_type: str, target_id: str,
               diff: Optional[dict[str, Any]] = None) -> str:
        """Queue an audit entry. Returns the entry id (also the job id, so retries never duplicate it)."""
        entry = AuditLogEntry(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            diff=diff or {},
            created_at=self._clock(),
        )
        self._queue.enqueue(WRITE_AUDIT_LOG, entry.model_dump(mode="json"), job_id=entry.id)
        logger.info("audit %s %s/%s by %s", action, target_type, target_id, actor_id)
        return entry.id

    def _write(self, payload: dict) -> None:
        self._store.create_audit_log(AuditLogEntry.model_validate(payload))
