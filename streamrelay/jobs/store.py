"""Job store interface and in-memory implementation."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from streamrelay.jobs.models import Job

DEFAULT_RETENTION = 100


class JobStore(ABC):
    """Keyed table of jobs (in-memory now, persistent backend later).

    Writers hand over whole job snapshots; readers get snapshots back, so a
    reader never observes a job mid-update.
    """

    @abstractmethod
    async def add(self, job: Job) -> None:
        """Insert a newly accepted job."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Return a snapshot of the job, or None if unknown or evicted."""
        ...

    @abstractmethod
    async def update(self, job: Job) -> bool:
        """Replace the stored job. Returns False if it was already evicted."""
        ...

    @abstractmethod
    async def evict_overflow(self) -> List[str]:
        """Drop oldest jobs beyond the retention cap. Returns evicted ids."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...


class InMemoryJobStore(JobStore):
    """Process-local store with oldest-first eviction past `max_jobs`."""

    def __init__(self, max_jobs: int = DEFAULT_RETENTION):
        if max_jobs < 1:
            raise ValueError("max_jobs must be at least 1")
        self._jobs: Dict[str, Job] = {}
        self._max_jobs = max_jobs

    @property
    def max_jobs(self) -> int:
        return self._max_jobs

    async def add(self, job: Job) -> None:
        if job.id in self._jobs:
            raise KeyError(f"Job {job.id} already exists")
        self._jobs[job.id] = job.snapshot()

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.snapshot() if job is not None else None

    async def update(self, job: Job) -> bool:
        if job.id not in self._jobs:
            return False
        # Swap the entry, never mutate the stored object in place
        self._jobs[job.id] = job.snapshot()
        return True

    async def evict_overflow(self) -> List[str]:
        overflow = len(self._jobs) - self._max_jobs
        if overflow <= 0:
            return []
        # sorted() is stable, so equal timestamps keep insertion order
        oldest_first = sorted(self._jobs.values(), key=lambda j: j.created_at)
        evicted = [job.id for job in oldest_first[:overflow]]
        for job_id in evicted:
            del self._jobs[job_id]
        return evicted

    async def count(self) -> int:
        return len(self._jobs)
