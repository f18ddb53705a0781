import asyncio
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from common.job_schema import RemoteJob, RemoteJobType, utcnow

logger = logging.getLogger(__name__)


class JobStore:
    """
    In-memory registry of remote jobs seen by the proxy, keyed by hash.

    One instance is created per process (see the API lifespan) and handed to
    request handlers as a dependency. Entries are evicted by `cleanup` once
    they have not been updated for `max_age_hours`.
    """

    def __init__(self, max_age_hours: float = 24):
        self.max_age_hours = max_age_hours
        self._jobs: Dict[str, RemoteJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def add_job(
        self,
        hash: str,
        prompt: str,
        type: RemoteJobType,
        parent_hash: Optional[str] = None,
    ) -> RemoteJob:
        logger.info("Adding job %s (%s) to store", hash, type.value)
        job = RemoteJob(hash=hash, prompt=prompt, type=type, parent_hash=parent_hash)
        self._jobs[hash] = job
        return job

    def get_job(self, hash: str) -> Optional[RemoteJob]:
        job = self._jobs.get(hash)
        if job is None:
            logger.warning("Job %s not found in store", hash)
        return job

    def update_job(self, hash: str, **updates) -> RemoteJob:
        """Applies `updates` to the job, creating the record if it is unknown."""
        job = self._jobs.get(hash)
        if job is None:
            logger.warning("Creating job %s during update", hash)
            job = self.add_job(
                hash,
                updates.pop("prompt", ""),
                updates.pop("type", RemoteJobType.IMAGINE),
            )

        updated = job.model_copy(update={**updates, "updated_at": utcnow()})
        self._jobs[hash] = updated
        logger.debug(
            "Updated job %s: status=%s progress=%s",
            hash,
            updated.status.value,
            updated.progress,
        )
        return updated

    def jobs(self) -> List[RemoteJob]:
        return list(self._jobs.values())

    def cleanup(self, max_age_hours: Optional[float] = None) -> int:
        """Evicts jobs not updated within the age limit; returns how many."""
        max_age = timedelta(hours=self.max_age_hours if max_age_hours is None else max_age_hours)
        cutoff = utcnow() - max_age
        stale = [hash for hash, job in self._jobs.items() if job.updated_at < cutoff]
        for hash in stale:
            del self._jobs[hash]
            logger.info("Cleaned up old job %s", hash)
        return len(stale)


async def sweep_periodically(store: JobStore, interval_seconds: float) -> None:
    """Runs `store.cleanup` forever; cancel the task to stop it."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = store.cleanup()
        if removed:
            logger.info("Sweep evicted %d job(s), %d remaining", removed, len(store))
