"""Work queue for pipeline stage jobs.

At-least-once delivery: a fetched job stays unprocessed until the worker
marks it processed, and a job whose run failed is offered again until it
has used up its attempts. Redelivery is safe because every stage begins
with a guard check.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from motorwise.models.pipeline_job import StageJob
from motorwise.models.vehicle import StageName
from motorwise.services.supabase_client import SupabaseClient, is_unique_violation
from motorwise.utils.errors import QueueError
from motorwise.utils.ids import generate_id
import logging

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def new_job(stage: StageName, vehicle_id: str, listing_id: Optional[str] = None) -> StageJob:
    return StageJob(
        job_id=generate_id(),
        stage=stage,
        vehicle_id=vehicle_id,
        listing_id=listing_id,
        enqueued_at=datetime.now(timezone.utc).isoformat(),
    )


class StageQueue(ABC):
    """Async interface for the stage work queue."""

    @abstractmethod
    async def enqueue(self, job: StageJob) -> StageJob:
        """Add a job. A pending job with the same idempotency key is returned instead."""

    @abstractmethod
    async def fetch_batch(self, batch_size: int) -> list[StageJob]:
        """Lease up to ``batch_size`` pending jobs, oldest first."""

    @abstractmethod
    async def mark_processed(self, job_id: str, error_message: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def record_failure(self, job_id: str, error_message: str) -> None:
        """Leave a job unprocessed with its error recorded, for redelivery."""


class InMemoryStageQueue(StageQueue):
    """Process-local queue for tests and offline runs."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.max_attempts = max_attempts
        self.jobs: dict[str, StageJob] = {}
        self._leased: set[str] = set()

    def _pending(self) -> list[StageJob]:
        return [
            job for job in self.jobs.values()
            if job.processed_at is None and job.attempts < self.max_attempts
        ]

    async def enqueue(self, job: StageJob) -> StageJob:
        for pending in self._pending():
            if pending.job_id not in self._leased and pending.idempotency_key == job.idempotency_key:
                logger.debug("Stage job already pending", extra={"job_id": pending.job_id, "stage": job.stage.value})
                return pending
        queued = job if job.enqueued_at else job.model_copy(
            update={"enqueued_at": datetime.now(timezone.utc).isoformat()}
        )
        self.jobs[queued.job_id] = queued
        return queued

    async def fetch_batch(self, batch_size: int) -> list[StageJob]:
        batch = []
        for job in self._pending():
            if len(batch) >= batch_size:
                break
            if job.job_id in self._leased:
                continue
            leased = job.model_copy(update={"attempts": job.attempts + 1})
            self.jobs[job.job_id] = leased
            self._leased.add(job.job_id)
            batch.append(leased)
        return batch

    async def mark_processed(self, job_id: str, error_message: Optional[str] = None) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise QueueError(f"Failed to mark job processed: {job_id} not found")
        self.jobs[job_id] = job.model_copy(update={
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "error_message": error_message,
        })
        self._leased.discard(job_id)

    async def record_failure(self, job_id: str, error_message: str) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise QueueError(f"Failed to record job failure: {job_id} not found")
        self.jobs[job_id] = job.model_copy(update={"error_message": error_message})
        self._leased.discard(job_id)

    def pending_jobs(self, stage: Optional[StageName] = None) -> list[StageJob]:
        return [job for job in self._pending() if stage is None or job.stage == stage]


class SupabaseStageQueue(StageQueue):
    """Queue backed by the ``pipeline_jobs`` table.

    A partial unique index on ``(vehicle_id, stage) WHERE processed_at IS NULL``
    makes enqueueing idempotent.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.max_attempts = max_attempts

    async def enqueue(self, job: StageJob) -> StageJob:
        async with SupabaseClient("enqueue") as client:
            try:
                result = client.table("pipeline_jobs").insert(job.model_dump(mode="json")).execute()
                if result.data:
                    return StageJob.model_validate(result.data[0])
                raise QueueError("Failed to enqueue stage job: no data returned")
            except QueueError:
                raise
            except Exception as e:
                # Already pending
                if is_unique_violation(e):
                    logger.debug("Stage job already pending", extra={"vehicle_id": job.vehicle_id, "stage": job.stage.value})
                    return job
                raise QueueError(f"Failed to enqueue stage job: {e}")

    async def fetch_batch(self, batch_size: int) -> list[StageJob]:
        async with SupabaseClient("fetch_batch") as client:
            try:
                # Database function leases rows atomically (FOR UPDATE SKIP LOCKED)
                result = client.rpc("get_pipeline_jobs_batch", {
                    "batch_size": batch_size,
                    "max_attempts": self.max_attempts,
                }).execute()
                rows = result.data or []
            except Exception as e:
                try:
                    result = (
                        client.table("pipeline_jobs").select("*")
                        .is_("processed_at", "null")
                        .lt("attempts", self.max_attempts)
                        .order("enqueued_at")
                        .limit(batch_size)
                        .execute()
                    )
                    rows = result.data or []
                except Exception as fallback_error:
                    raise QueueError(f"Failed to fetch stage jobs: {e}, fallback: {fallback_error}")
            return [StageJob.model_validate(row) for row in rows]

    async def mark_processed(self, job_id: str, error_message: Optional[str] = None) -> None:
        async with SupabaseClient("mark_processed") as client:
            try:
                client.table("pipeline_jobs").update({
                    "processed_at": datetime.now(timezone.utc).isoformat(),
                    "error_message": error_message,
                }).eq("job_id", job_id).execute()
            except Exception as e:
                raise QueueError(f"Failed to mark stage job processed: {e}")

    async def record_failure(self, job_id: str, error_message: str) -> None:
        async with SupabaseClient("record_failure") as client:
            try:
                client.rpc("record_pipeline_job_failure", {
                    "job_id": job_id,
                    "error_msg": error_message,
                }).execute()
            except Exception as e:
                raise QueueError(f"Failed to record stage job failure: {e}")
