"""Background execution of large commits with a pollable status."""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict

from .exceptions import JobNotFound
from .models import CommitSummary, JobState, JobStatus

logger = logging.getLogger(__name__)

FINISHED_STATES = (JobState.COMPLETED, JobState.FAILED)


class ImportJobQueue:
    """
    Bounded worker pool for import commits.

    Constructed explicitly and handed to the coordinator; job state lives
    only in this process. Finished jobs stay pollable for ``finished_ttl``
    seconds, and at most ``max_finished`` of them are kept.
    """

    def __init__(
        self, max_workers: int = 2, max_finished: int = 500, finished_ttl: float = 3600.0
    ):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="import-job"
        )
        self.max_finished = max_finished
        self.finished_ttl = finished_ttl
        self._jobs: Dict[str, JobStatus] = {}
        self._owners: Dict[str, str] = {}
        # job id -> monotonic finish time, oldest first
        self._finished: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def submit(self, task: Callable[[], CommitSummary], owner: str = "") -> str:
        job_id = uuid.uuid4().hex
        with self._lock:
            self._owners[job_id] = owner
            self._jobs[job_id] = JobStatus(job_id=job_id, state=JobState.QUEUED)
        self._executor.submit(self._run, job_id, task)
        logger.info("Queued import job %s", job_id)
        return job_id

    def _run(self, job_id: str, task: Callable[[], CommitSummary]):
        self._set(job_id, state=JobState.RUNNING)
        try:
            summary = task()
        except Exception as e:
            logger.exception("Import job %s failed", job_id)
            self._set(job_id, state=JobState.FAILED, error=str(e))
            return
        self._set(job_id, state=JobState.COMPLETED, result=summary)
        logger.info(
            "Import job %s completed: inserted=%d updated=%d",
            job_id,
            summary.inserted,
            summary.updated,
        )

    def _set(self, job_id: str, **changes):
        with self._lock:
            status = self._jobs[job_id].model_copy(update=changes)
            self._jobs[job_id] = status
            if status.state in FINISHED_STATES:
                self._finished[job_id] = time.monotonic()
            self._evict_locked()

    def _evict_locked(self):
        now = time.monotonic()
        while self._finished:
            job_id, finished_at = next(iter(self._finished.items()))
            if len(self._finished) <= self.max_finished and now - finished_at < self.finished_ttl:
                break
            self._finished.popitem(last=False)
            self._jobs.pop(job_id, None)
            self._owners.pop(job_id, None)
            logger.debug("Evicted finished import job %s", job_id)

    def status(self, job_id: str, owner: str = "") -> JobStatus:
        """Current state of a job; jobs of other owners are reported as missing."""
        with self._lock:
            self._evict_locked()
            status = self._jobs.get(job_id)
            job_owner = self._owners.get(job_id)
        if status is None or job_owner != owner:
            raise JobNotFound(f"Import job {job_id} not found")
        return status

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
