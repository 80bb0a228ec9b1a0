"""Vehicle model and pipeline stage bookkeeping."""

from enum import Enum
from typing import Any, Optional
from datetime import date
from pydantic import BaseModel, Field, field_validator

EARLIEST_YEAR = 1900


def latest_model_year(today: Optional[date] = None) -> int:
    """Newest accepted model year, the one after today's."""
    return (today or date.today()).year + 1


class RegistrationSource(str, Enum):
    """Where a vehicle's registration came from."""
    AI_VISION = "ai_vision"
    LISTING_TEXT = "listing_text"


class StageName(str, Enum):
    """Asynchronous enrichment stages, in chain order."""
    PLATE_RECOGNITION = "plate_recognition"
    REGISTER_LOOKUP = "register_lookup"
    MOT_HISTORY = "mot_history"
    PURCHASE_ADVISORY = "purchase_advisory"


STAGE_ORDER: tuple[StageName, ...] = (
    StageName.PLATE_RECOGNITION,
    StageName.REGISTER_LOOKUP,
    StageName.MOT_HISTORY,
    StageName.PURCHASE_ADVISORY,
)


def next_stage(stage: StageName) -> Optional[StageName]:
    """Return the stage that follows ``stage``, or None at the end of the chain."""
    index = STAGE_ORDER.index(stage)
    if index + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[index + 1]
    return None


class StageStatus(str, Enum):
    """Recorded outcome of a stage run."""
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class PipelineState(str, Enum):
    """Per-vehicle enrichment state, derived from stored data."""
    NO_REGISTRATION = "NoRegistration"
    REGISTRATION_KNOWN = "RegistrationKnown"
    REGISTER_LOOKUP_DONE = "RegisterLookupDone"
    REGISTER_LOOKUP_SKIPPED = "RegisterLookupSkipped"
    MOT_HISTORY_DONE = "MotHistoryDone"
    MOT_HISTORY_SKIPPED = "MotHistorySkipped"
    SUMMARY_DONE = "SummaryDone"
    SUMMARY_SKIPPED = "SummarySkipped"


class Vehicle(BaseModel):
    """Normalized, enrichable vehicle owned by exactly one listing."""
    vehicle_id: str = Field(..., description="Vehicle ID (text)")
    listing_id: Optional[str] = Field(None, description="Owning listing ID (text FK)")

    # Heuristic / authoritative attributes
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = Field(None, ge=EARLIEST_YEAR)
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    engine_size: Optional[int] = Field(None, ge=0, description="Engine capacity in cc")
    color: Optional[str] = None
    body_type: Optional[str] = None
    doors: Optional[int] = Field(None, gt=0)
    mileage: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    previous_owners: Optional[int] = Field(None, ge=0)
    service_history: Optional[str] = None
    vin: Optional[str] = None

    # Registration and its provenance
    registration: Optional[str] = Field(None, description="Plate text, unique per listing once set")
    registration_source: Optional[RegistrationSource] = None
    registration_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    registration_image_url: Optional[str] = None

    # Authoritative register data
    tax_status: Optional[str] = None
    tax_due_date: Optional[date] = None
    mot_status: Optional[str] = None
    mot_expiry_date: Optional[date] = None
    co2_emissions: Optional[int] = None
    first_registration_date: Optional[date] = None
    register_data: Optional[dict[str, Any]] = Field(None, description="Raw register payload")

    # Generated text
    purchase_summary: Optional[str] = None
    mot_repair_estimate: Optional[str] = None
    expected_lifetime: Optional[str] = None
    original_purchase_price: Optional[float] = Field(None, ge=0, description="Estimated new price in GBP")

    stage_status: dict[StageName, StageStatus] = Field(default_factory=dict)
    retired_at: Optional[str] = Field(None, description="Set when the vehicle was replaced by a fork")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("year")
    @classmethod
    def year_not_in_future(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value > latest_model_year():
            raise ValueError(f"year {value} is after {latest_model_year()}")
        return value

    @property
    def full_name(self) -> str:
        return " ".join(str(part) for part in (self.year, self.make, self.model) if part)

    @property
    def is_active(self) -> bool:
        return self.retired_at is None

    def stage_settled(self, stage: StageName) -> bool:
        """True when the stage already finished (done or deliberately skipped)."""
        return self.stage_status.get(stage) in (StageStatus.DONE, StageStatus.SKIPPED)


def pipeline_state(vehicle: Vehicle, has_history: bool) -> PipelineState:
    """Derive the enrichment state of ``vehicle`` from what it already holds."""
    status = vehicle.stage_status

    if vehicle.purchase_summary or status.get(StageName.PURCHASE_ADVISORY) == StageStatus.DONE:
        return PipelineState.SUMMARY_DONE
    if status.get(StageName.PURCHASE_ADVISORY) == StageStatus.SKIPPED:
        return PipelineState.SUMMARY_SKIPPED

    if not vehicle.registration:
        return PipelineState.NO_REGISTRATION

    if has_history or status.get(StageName.MOT_HISTORY) == StageStatus.DONE:
        return PipelineState.MOT_HISTORY_DONE
    if status.get(StageName.MOT_HISTORY) == StageStatus.SKIPPED:
        return PipelineState.MOT_HISTORY_SKIPPED

    if vehicle.register_data or status.get(StageName.REGISTER_LOOKUP) == StageStatus.DONE:
        return PipelineState.REGISTER_LOOKUP_DONE
    if status.get(StageName.REGISTER_LOOKUP) == StageStatus.SKIPPED:
        return PipelineState.REGISTER_LOOKUP_SKIPPED

    return PipelineState.REGISTRATION_KNOWN
