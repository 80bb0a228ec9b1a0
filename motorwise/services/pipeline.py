"""Listing enrichment pipeline.

A saved listing is extracted and merged synchronously, then four queued
stages enrich its vehicle one after another:

    plate_recognition -> register_lookup -> mot_history -> purchase_advisory

Every stage starts with a guard check and exits without external calls
when its work is already done, so redelivered jobs are harmless. Success,
an empty result, a guard hit and a caught failure all enqueue the next
stage; a missing precondition (vehicle gone or retired, no registration)
ends the chain for that vehicle.
"""

import asyncio
from datetime import date
from typing import Any, Awaitable, Callable, Optional

from motorwise.models.listing import Listing
from motorwise.models.pipeline_job import StageJob
from motorwise.models.vehicle import (
    RegistrationSource,
    StageName,
    StageStatus,
    Vehicle,
    next_stage,
)
from motorwise.services.mot_history import MotHistoryClient
from motorwise.services.plate_recognizer import VisionPlateRecognizer
from motorwise.services.purchase_advisor import PurchaseAdvisorySynthesizer
from motorwise.services.register_lookup import RegisterLookupClient
from motorwise.services.registry_merge import (
    LISTING_TEXT_CONFIDENCE,
    MergeAction,
    RegistrationEvidence,
    RegistryMergeEngine,
)
from motorwise.services.stage_queue import StageQueue, SupabaseStageQueue, new_job
from motorwise.services.text_extraction import extract_from_listing
from motorwise.services.vehicle_store import SupabaseVehicleStore, VehicleStore
from motorwise.utils.config import PipelineConfig
from motorwise.utils.errors import DuplicateRegistrationError
from motorwise.utils.logging import (
    correlation_context,
    get_structured_logger,
    log_timing,
)
from motorwise.utils.registration import is_partial_registration

logger = get_structured_logger(__name__)


class StageAborted(Exception):
    """A stage's input precondition does not hold; the chain stops here."""


StageBody = Callable[[Vehicle], Awaitable[tuple[Vehicle, StageStatus]]]


class PipelineOrchestrator:
    """Runs the listing trigger, the four stages and the queue worker."""

    def __init__(
        self,
        store: VehicleStore,
        queue: StageQueue,
        config: PipelineConfig,
        recognizer: Optional[VisionPlateRecognizer] = None,
        register_client: Optional[RegisterLookupClient] = None,
        history_client: Optional[MotHistoryClient] = None,
        advisor: Optional[PurchaseAdvisorySynthesizer] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.store = store
        self.queue = queue
        self.config = config
        self.merge_engine = RegistryMergeEngine(store)
        self.recognizer = recognizer or VisionPlateRecognizer(config)
        self.register_client = register_client or RegisterLookupClient(config)
        self.history_client = history_client or MotHistoryClient(config)
        self.advisor = advisor or PurchaseAdvisorySynthesizer(config)
        self._today = today or date.today

        self._stages: dict[StageName, StageBody] = {
            StageName.PLATE_RECOGNITION: self._recognize_plate,
            StageName.REGISTER_LOOKUP: self._lookup_register,
            StageName.MOT_HISTORY: self._retrieve_history,
            StageName.PURCHASE_ADVISORY: self._synthesize_advice,
        }

    # ------------------------------------------------------------------
    # Listing trigger
    # ------------------------------------------------------------------

    async def on_listing_saved(
        self,
        listing: Listing,
        previous: Optional[Listing] = None,
    ) -> Optional[Vehicle]:
        """Extract and merge a created or updated listing, then start the chain.

        Returns the listing's vehicle, or None for inactive listings.
        DuplicateRegistrationError from the store propagates.
        """
        if not listing.is_active:
            logger.info(
                "Listing inactive, not enriching",
                listing_id=listing.listing_id,
                status=listing.status,
            )
            return None

        with log_timing("extract_and_merge", logger=logger, listing_id=listing.listing_id):
            attributes = extract_from_listing(listing, today=self._today())
            text_registration = attributes.pop("registration", None)
            evidence = None
            if text_registration:
                evidence = RegistrationEvidence(
                    registration=text_registration,
                    source=RegistrationSource.LISTING_TEXT,
                    confidence=LISTING_TEXT_CONFIDENCE,
                )
            outcome = await self.merge_engine.merge(listing, attributes, evidence)

        vehicle = outcome.vehicle
        images_changed = previous is not None and previous.image_urls != listing.image_urls
        if images_changed and StageName.PLATE_RECOGNITION in vehicle.stage_status:
            stage_status = dict(vehicle.stage_status)
            stage_status.pop(StageName.PLATE_RECOGNITION)
            vehicle = await self.store.update_vehicle(vehicle.vehicle_id, {"stage_status": stage_status})
            logger.info("Listing images changed, plate recognition reset", vehicle_id=vehicle.vehicle_id)

        should_enqueue = (
            previous is None
            or images_changed
            or previous.status != listing.status
            or outcome.action != MergeAction.ATTACH
            or outcome.registration_changed
        )
        logger.info(
            "Listing merged",
            listing_id=listing.listing_id,
            vehicle_id=vehicle.vehicle_id,
            action=outcome.action.value,
            extracted_fields=sorted(attributes),
            enqueue=should_enqueue,
        )
        if should_enqueue:
            await self.enqueue(StageName.PLATE_RECOGNITION, vehicle)
        return vehicle

    async def enqueue(self, stage: StageName, vehicle: Vehicle) -> StageJob:
        job = await self.queue.enqueue(new_job(stage, vehicle.vehicle_id, vehicle.listing_id))
        logger.debug("Stage enqueued", stage=stage.value, vehicle_id=vehicle.vehicle_id, job_id=job.job_id)
        return job

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _is_satisfied(self, stage: StageName, vehicle: Vehicle, listing: Optional[Listing]) -> bool:
        """Guard check: has this stage's work already been done?"""
        if vehicle.stage_settled(stage):
            return True
        if stage == StageName.PLATE_RECOGNITION:
            return (
                vehicle.registration_source == RegistrationSource.AI_VISION
                and listing is not None
                and vehicle.registration_image_url in listing.image_urls
            )
        if stage == StageName.REGISTER_LOOKUP:
            return bool(vehicle.register_data)
        if stage == StageName.MOT_HISTORY:
            return await self.store.count_mot_tests(vehicle.vehicle_id) > 0
        if stage == StageName.PURCHASE_ADVISORY:
            return bool(vehicle.purchase_summary)
        return False

    async def _set_status(self, vehicle: Vehicle, stage: StageName, status: StageStatus, **updates: Any) -> Vehicle:
        stage_status = dict(vehicle.stage_status)
        stage_status[stage] = status
        return await self.store.update_vehicle(vehicle.vehicle_id, {**updates, "stage_status": stage_status})

    async def run_stage(self, stage: StageName, vehicle_id: str) -> Optional[Vehicle]:
        """Run one stage for one vehicle and enqueue its successor.

        Never raises except DuplicateRegistrationError, which signals a
        broken store invariant and must reach the worker.
        """
        vehicle = await self.store.get_vehicle(vehicle_id)
        if vehicle is None or not vehicle.is_active:
            logger.info(
                "Vehicle missing or retired, stage not run",
                stage=stage.value,
                vehicle_id=vehicle_id,
            )
            return None

        listing = await self.store.get_listing(vehicle.listing_id) if vehicle.listing_id else None

        if await self._is_satisfied(stage, vehicle, listing):
            logger.info("Stage already satisfied", stage=stage.value, vehicle_id=vehicle_id)
            await self._enqueue_next(stage, vehicle)
            return vehicle

        logger.info("Stage started", stage=stage.value, vehicle_id=vehicle_id)
        try:
            with log_timing(f"stage_{stage.value}", logger=logger, vehicle_id=vehicle_id):
                vehicle, status = await self._stages[stage](vehicle)
            logger.info("Stage finished", stage=stage.value, vehicle_id=vehicle.vehicle_id, status=status.value)
        except StageAborted as e:
            logger.info("Stage precondition missing", stage=stage.value, vehicle_id=vehicle_id, reason=str(e))
            return vehicle
        except DuplicateRegistrationError:
            raise
        except Exception as e:
            logger.error(
                "Stage failed",
                exc_info=True,
                stage=stage.value,
                vehicle_id=vehicle_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            vehicle = await self._mark_failed(vehicle, stage)

        await self._enqueue_next(stage, vehicle)
        return vehicle

    async def _mark_failed(self, vehicle: Vehicle, stage: StageName) -> Vehicle:
        try:
            return await self._set_status(vehicle, stage, StageStatus.FAILED)
        except DuplicateRegistrationError:
            raise
        except Exception as e:
            logger.error(
                "Could not record stage failure",
                stage=stage.value,
                vehicle_id=vehicle.vehicle_id,
                error=str(e),
            )
            return vehicle

    async def _enqueue_next(self, stage: StageName, vehicle: Vehicle) -> None:
        following = next_stage(stage)
        if following is not None and vehicle.is_active:
            await self.enqueue(following, vehicle)

    async def _recognize_plate(self, vehicle: Vehicle) -> tuple[Vehicle, StageStatus]:
        listing = await self.store.get_listing(vehicle.listing_id) if vehicle.listing_id else None
        if listing is None:
            raise StageAborted("listing not found")

        if not self.recognizer.enabled:
            logger.info("Plate recognition skipped, vision not configured", vehicle_id=vehicle.vehicle_id)
            return await self._set_status(vehicle, StageName.PLATE_RECOGNITION, StageStatus.SKIPPED), StageStatus.SKIPPED
        if not listing.image_urls:
            logger.info("Plate recognition skipped, listing has no images", vehicle_id=vehicle.vehicle_id)
            return await self._set_status(vehicle, StageName.PLATE_RECOGNITION, StageStatus.SKIPPED), StageStatus.SKIPPED

        reading = await self.recognizer.recognize(listing.image_urls)
        if reading is not None:
            evidence = RegistrationEvidence(
                registration=reading.registration,
                source=RegistrationSource.AI_VISION,
                confidence=reading.confidence,
                image_url=reading.image_url,
            )
            # A fork starts a fresh vehicle, so it needs the listing's text attributes too
            attributes = extract_from_listing(listing, today=self._today())
            attributes.pop("registration", None)
            outcome = await self.merge_engine.merge(listing, attributes, evidence)
            vehicle = outcome.vehicle

        return await self._set_status(vehicle, StageName.PLATE_RECOGNITION, StageStatus.DONE), StageStatus.DONE

    async def _lookup_register(self, vehicle: Vehicle) -> tuple[Vehicle, StageStatus]:
        if not vehicle.registration:
            raise StageAborted("no registration")
        if is_partial_registration(vehicle.registration):
            logger.info("Register lookup skipped, registration only partially read", vehicle_id=vehicle.vehicle_id)
            return await self._set_status(vehicle, StageName.REGISTER_LOOKUP, StageStatus.SKIPPED), StageStatus.SKIPPED

        data = await self.register_client.lookup(vehicle.registration, today=self._today())
        if not data:
            logger.info(
                "No register data",
                vehicle_id=vehicle.vehicle_id,
                registration=vehicle.registration,
            )
            return await self._set_status(vehicle, StageName.REGISTER_LOOKUP, StageStatus.SKIPPED), StageStatus.SKIPPED

        updated = await self._set_status(vehicle, StageName.REGISTER_LOOKUP, StageStatus.DONE, **data)
        return updated, StageStatus.DONE

    async def _retrieve_history(self, vehicle: Vehicle) -> tuple[Vehicle, StageStatus]:
        if not vehicle.registration:
            raise StageAborted("no registration")
        if is_partial_registration(vehicle.registration):
            logger.info("MOT history skipped, registration only partially read", vehicle_id=vehicle.vehicle_id)
            return await self._set_status(vehicle, StageName.MOT_HISTORY, StageStatus.SKIPPED), StageStatus.SKIPPED

        tests = await self.history_client.fetch_history(
            vehicle.registration,
            vehicle.vehicle_id,
            today=self._today(),
        )
        if not tests:
            return await self._set_status(vehicle, StageName.MOT_HISTORY, StageStatus.SKIPPED), StageStatus.SKIPPED

        # Another delivery may have stored the history meanwhile
        if await self.store.count_mot_tests(vehicle.vehicle_id) > 0:
            logger.info("MOT history already stored", vehicle_id=vehicle.vehicle_id)
            return await self._set_status(vehicle, StageName.MOT_HISTORY, StageStatus.DONE), StageStatus.DONE

        inserted = await self.store.add_mot_tests(vehicle.vehicle_id, tests)
        updates: dict[str, Any] = {}
        latest = tests[0]
        if vehicle.mileage is None and latest.odometer is not None:
            updates["mileage"] = latest.odometer

        logger.info("MOT history stored", vehicle_id=vehicle.vehicle_id, test_count=inserted)
        updated = await self._set_status(vehicle, StageName.MOT_HISTORY, StageStatus.DONE, **updates)
        return updated, StageStatus.DONE

    async def _synthesize_advice(self, vehicle: Vehicle) -> tuple[Vehicle, StageStatus]:
        tests = await self.store.list_mot_tests(vehicle.vehicle_id)
        advice = await self.advisor.advise(vehicle, tests, today=self._today())

        updates = advice.model_dump(exclude_none=True)
        status = StageStatus.DONE if advice.purchase_summary else StageStatus.SKIPPED
        updated = await self._set_status(vehicle, StageName.PURCHASE_ADVISORY, status, **updates)
        return updated, status

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def process_job(self, job: StageJob) -> bool:
        """Run one queued job. Returns True when the job was marked processed."""
        with correlation_context(job.job_id):
            try:
                await self.run_stage(job.stage, job.vehicle_id)
            except DuplicateRegistrationError as e:
                logger.error(
                    "Store rejected duplicate registration, job left unprocessed",
                    stage=job.stage.value,
                    vehicle_id=job.vehicle_id,
                    error=str(e),
                )
                await self.queue.record_failure(job.job_id, str(e))
                return False
            except Exception as e:
                logger.error(
                    "Stage job failed",
                    exc_info=True,
                    stage=job.stage.value,
                    vehicle_id=job.vehicle_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self.queue.record_failure(job.job_id, str(e))
                return False

            await self.queue.mark_processed(job.job_id)
            return True

    async def _poll(self, max_jobs: Optional[int] = None) -> tuple[int, int]:
        jobs = await self.queue.fetch_batch(max_jobs or self.config.worker_batch_size)
        if not jobs:
            return 0, 0

        unique: list[StageJob] = []
        seen: set[str] = set()
        for job in jobs:
            if job.idempotency_key in seen:
                logger.info("Duplicate stage job in batch", job_id=job.job_id, stage=job.stage.value)
                await self.queue.mark_processed(job.job_id, "duplicate in batch")
                continue
            seen.add(job.idempotency_key)
            unique.append(job)

        results = await asyncio.gather(
            *(self.process_job(job) for job in unique),
            return_exceptions=True,
        )
        succeeded = 0
        for job, result in zip(unique, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Stage job could not be settled",
                    job_id=job.job_id,
                    stage=job.stage.value,
                    vehicle_id=job.vehicle_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            elif result:
                succeeded += 1
        processed = succeeded + (len(jobs) - len(unique))
        failed = len(unique) - succeeded
        logger.info("Stage batch complete", fetched=len(jobs), processed=processed, failed=failed)
        return len(jobs), processed

    async def poll_and_run_once(self, max_jobs: Optional[int] = None) -> int:
        """Fetch one batch of stage jobs and run them concurrently; returns jobs processed."""
        _, processed = await self._poll(max_jobs)
        return processed

    async def run_until_idle(self, max_rounds: int = 100, max_jobs: Optional[int] = None) -> int:
        """Drain the queue batch by batch until it is empty or ``max_rounds`` is reached."""
        total = 0
        for _ in range(max_rounds):
            fetched, processed = await self._poll(max_jobs)
            total += processed
            if fetched == 0:
                break
        return total


def build_orchestrator(config: Optional[PipelineConfig] = None, **overrides: Any) -> PipelineOrchestrator:
    """Orchestrator over the Supabase store and queue, configured from the environment."""
    config = config or PipelineConfig.from_env()
    store = overrides.pop("store", None) or SupabaseVehicleStore()
    queue = overrides.pop("queue", None) or SupabaseStageQueue()
    return PipelineOrchestrator(store, queue, config, **overrides)
