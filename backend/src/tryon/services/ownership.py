"""In-memory tracking of which client owns which outstanding try-on job."""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

import structlog

from tryon.services.exceptions import QueueLimitExceeded

logger = structlog.get_logger()


@dataclass
class JobOwnership:
    owner: str
    expires_at: float


class JobOwnershipTracker:
    """Bounds how many try-on jobs a single client may have outstanding.

    Two structures are kept in sync on every insert, release and sweep:
    - jobs: job id -> JobOwnership
    - active: client key -> set of job ids

    Jobs are released when a status poll observes completion. Entries also
    expire after `ttl_seconds` so abandoned jobs eventually free their slot.

    A submission holds a reservation while it awaits the provider, so two
    back-to-back submissions from one client cannot both pass the capacity
    check for the last free slot.
    """

    def __init__(
        self,
        max_active_jobs: int = 5,
        ttl_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.max_active_jobs = max_active_jobs
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, JobOwnership] = {}
        self._active: dict[str, set[str]] = {}
        self._reserved: defaultdict[str, int] = defaultdict(int)

    def ensure_capacity(self, client_key: str) -> None:
        """Raise QueueLimitExceeded if client_key has no free slot."""
        in_use = len(self._active.get(client_key, ())) + self._reserved.get(client_key, 0)
        if in_use >= self.max_active_jobs:
            logger.warning(
                "ownership.queue_limit_reached",
                client_key=client_key,
                active_jobs=in_use,
                max_active_jobs=self.max_active_jobs,
            )
            raise QueueLimitExceeded()

    @contextmanager
    def reservation(self, client_key: str) -> Iterator[None]:
        """Hold one slot for client_key for the duration of the block.

        Capacity is checked on entry. The slot is given back on exit; callers
        register the job inside the block once the provider has accepted it.
        """
        self.ensure_capacity(client_key)
        self._reserved[client_key] += 1
        try:
            yield
        finally:
            self._reserved[client_key] -= 1
            if self._reserved[client_key] <= 0:
                del self._reserved[client_key]

    def register(self, client_key: str, job_id: str) -> None:
        previous = self._jobs.get(job_id)
        if previous is not None and previous.owner != client_key:
            self._discard(job_id, previous.owner)

        self._active.setdefault(client_key, set()).add(job_id)
        self._jobs[job_id] = JobOwnership(
            owner=client_key, expires_at=self._clock() + self.ttl_seconds
        )

    def release(self, job_id: str) -> bool:
        """Forget job_id. Returns False when it was not tracked."""
        ownership = self._jobs.pop(job_id, None)
        if ownership is None:
            return False

        self._discard(job_id, ownership.owner)
        logger.debug("ownership.released", job_id=job_id, client_key=ownership.owner)
        return True

    def sweep_expired(self) -> int:
        """Remove ownership entries past their TTL. Returns the number removed."""
        now = self._clock()
        expired = [job_id for job_id, entry in self._jobs.items() if entry.expires_at <= now]

        for job_id in expired:
            ownership = self._jobs.pop(job_id)
            self._discard(job_id, ownership.owner)

        if expired:
            logger.info("ownership.expired_swept", count=len(expired))
        return len(expired)

    def active_jobs(self, client_key: str) -> frozenset[str]:
        return frozenset(self._active.get(client_key, ()))

    def owner_of(self, job_id: str) -> str | None:
        ownership = self._jobs.get(job_id)
        return ownership.owner if ownership else None

    def _discard(self, job_id: str, owner: str) -> None:
        jobs = self._active.get(owner)
        if jobs is None:
            return
        jobs.discard(job_id)
        if not jobs:
            del self._active[owner]
