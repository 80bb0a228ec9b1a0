"""Work queue envelope for pipeline stages."""

from typing import Optional
from pydantic import BaseModel, Field

from motorwise.models.vehicle import StageName


class StageJob(BaseModel):
    """One queued stage run for one vehicle."""
    job_id: str = Field(..., description="Job ID (text)")
    stage: StageName = Field(..., description="Stage to run")
    vehicle_id: str = Field(..., description="Target vehicle ID")
    listing_id: Optional[str] = Field(None, description="Listing the vehicle belonged to when enqueued")
    attempts: int = Field(default=0, ge=0)
    enqueued_at: Optional[str] = None
    processed_at: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def idempotency_key(self) -> str:
        return f"{self.vehicle_id}:{self.stage.value}"
