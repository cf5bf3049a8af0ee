"""
Background Job Queue
=====================
Durable, at-least-once execution for everything that must not block a
decision: KYC processing, AML reports, audit writes, notifications and
analytics snapshots.

  1. enqueue() persists the job through the store, then hands it to the
     in-memory schedule (a job is never lost because a worker is busy)
  2. a worker (or run_pending() when driven synchronously) executes the
     registered handler for the job's kind
  3. failures are retried with exponential backoff:
        delay = base * 2 ** (attempt - 1), capped at backoff_max
  4. after max_attempts the job is moved to the dead-letter set and
     logged at ERROR level

Handlers receive the JSON payload and must be idempotent.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from db.models import Job, JobStatus, new_id, utcnow
from db.store import ComplianceStore

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Any]


class JobQueue:

    def __init__(
        self,
        store: ComplianceStore,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 300.0,
        workers: int = 2,
        poll_interval: float = 0.5,
    ):
        self._store = store
        self._clock = clock
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._worker_count = workers
        self._poll_interval = poll_interval

        self._handlers: dict[str, tuple[Handler, int]] = {}
        self._pending: dict[str, Job] = {}
        self._dead: list[Job] = []
        self._cond = threading.Condition()
        self._threads: list[threading.Thread] = []
        self._stopping = False

    # ── Registration & submission ───────────────────────────────
    def register(self, kind: str, handler: Handler, max_attempts: Optional[int] = None) -> None:
        self._handlers[kind] = (handler, max_attempts or self._max_attempts)

    def enqueue(self, kind: str, payload: dict, job_id: Optional[str] = None) -> str:
        """Schedule a job. Re-enqueueing a pending job id is a no-op."""
        _, max_attempts = self._handlers.get(kind, (None, self._max_attempts))
        job = Job(
            id=job_id or new_id(),
            kind=kind,
            payload=payload,
            max_attempts=max_attempts,
            run_at=self._clock(),
        )
        with self._cond:
            if job.id in self._pending:
                return job.id
            self._pending[job.id] = job
            self._cond.notify()
        self._persist(job)
        return job.id

    def recover(self) -> int:
        """Reload jobs left pending by a previous process."""
        restored = 0
        with self._cond:
            for job in self._store.list_jobs(JobStatus.PENDING):
                if job.id not in self._pending:
                    self._pending[job.id] = job
                    restored += 1
            self._cond.notify_all()
        if restored:
            logger.info("Recovered %d pending background jobs", restored)
        return restored

    # ── Introspection ───────────────────────────────────────────
    @property
    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    @property
    def dead_letters(self) -> list[Job]:
        with self._cond:
            return list(self._dead)

    # ── Execution ───────────────────────────────────────────────
    def run_pending(self) -> int:
        """Run every job that is due now on the calling thread. Returns jobs executed."""
        executed = 0
        while True:
            job = self._take_due()
            if job is None:
                return executed
            self._execute(job)
            executed += 1

    def start(self) -> None:
        with self._cond:
            if self._threads:
                return
            self._stopping = False
        for i in range(self._worker_count):
            t = threading.Thread(target=self._worker_loop, name=f"job-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self, timeout: float = 5.0) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
            job = self._take_due()
            if job is None:
                with self._cond:
                    if not self._stopping:
                        self._cond.wait(self._poll_interval)
                continue
            self._execute(job)

    def _take_due(self) -> Optional[Job]:
        now = self._clock()
        with self._cond:
            due = [j for j in self._pending.values() if j.run_at <= now]
            if not due:
                return None
            job = min(due, key=lambda j: j.run_at)
            del self._pending[job.id]
            return job

    def _backoff(self, attempt: int) -> float:
        return min(self._backoff_base * (2 ** (attempt - 1)), self._backoff_max)

    def _execute(self, job: Job) -> None:
        registered = self._handlers.get(job.kind)
        if registered is None:
            job.attempts += 1
            job.last_error = f"No handler registered for job kind '{job.kind}'"
            self._dead_letter(job)
            return

        handler, _ = registered
        try:
            handler(job.payload)
        except Exception as e:
            job.attempts += 1
            job.last_error = f"{type(e).__name__}: {e}"
            if job.attempts >= job.max_attempts:
                self._dead_letter(job)
                return
            delay = self._backoff(job.attempts)
            job.run_at = self._clock() + timedelta(seconds=delay)
            logger.warning(
                "Job %s (%s) failed on attempt %d/%d, retrying in %.1fs: %s",
                job.id, job.kind, job.attempts, job.max_attempts, delay, job.last_error,
            )
            with self._cond:
                self._pending[job.id] = job
                self._cond.notify()
            self._persist(job)
            return

        job.attempts += 1
        job.status = JobStatus.COMPLETED
        job.last_error = None
        self._persist(job)

    def _dead_letter(self, job: Job) -> None:
        job.status = JobStatus.DEAD
        with self._cond:
            self._dead.append(job)
        logger.error(
            "Job %s (%s) moved to dead-letter after %d attempts: %s",
            job.id, job.kind, job.attempts, job.last_error,
        )
        self._persist(job)

    def _persist(self, job: Job) -> None:
        try:
            self._store.save_job(job)
        except Exception:
            # the in-memory schedule still holds the job; durability resumes with the next save
            logger.exception("Could not persist job %s (%s)", job.id, job.kind)
