"""
Decision Logger
================
Persists every fraud score and every blocked access decision as a
DecisionLog entry. These logs are the raw material for:
  - Threshold tuning (how often each band fires)
  - Reviewer work-queues
  - Regulator audit requests

Writes go through the job queue; the decision path never waits on them.
"""
import logging
from datetime import datetime
from typing import Callable

from pydantic import BaseModel

from db.models import new_id, utcnow
from db.store import ComplianceStore
from jobs.queue import JobQueue

WRITE_DECISION_LOG = "write_decision_log"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


class DecisionLogger:

    def __init__(self, store: ComplianceStore, queue: JobQueue,
                 clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._queue = queue
        self._clock = clock
        queue.register(WRITE_DECISION_LOG, self._write)

    def log_decision(self, kind: str, subject_id: str, decision: BaseModel) -> str:
        """Queue a decision snapshot. Returns the log ID."""
        log_id = new_id()
        self._queue.enqueue(
            WRITE_DECISION_LOG,
            {
                "id": log_id,
                "kind": kind,
                "subject_id": subject_id,
                "payload": decision.model_dump(mode="json"),
                "logged_at": self._clock().isoformat(),
            },
            job_id=f"decision_{log_id}",
        )
        return log_id

    def _write(self, payload: dict) -> None:
        self._store.save_decision_log(
            log_id=payload["id"],
            kind=payload["kind"],
            subject_id=payload["subject_id"],
            payload=payload["payload"],
            logged_at=datetime.fromisoformat(payload["logged_at"]),
        )
