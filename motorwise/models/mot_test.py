"""MOT test record model."""

from typing import Literal, Optional
from datetime import date
from pydantic import BaseModel, ConfigDict, Field


TestResult = Literal["PASS", "FAIL"]


class MotTestRecord(BaseModel):
    """One roadworthiness inspection result. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    test_id: str = Field(..., description="Record ID (text)")
    vehicle_id: str = Field(..., description="Vehicle ID (text FK)")
    test_date: date = Field(..., description="Date the test was completed")
    expiry_date: Optional[date] = Field(None, description="Certificate expiry, null for failed tests")
    odometer: Optional[int] = Field(None, ge=0, description="Odometer reading in miles")
    result: TestResult = Field(..., description="PASS or FAIL")
    advisory_notes: tuple[str, ...] = Field(default=(), description="Advisories in emission order")
    failure_reasons: tuple[str, ...] = Field(default=(), description="Failure reasons in emission order")
    created_at: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.result == "PASS"

    @property
    def failed(self) -> bool:
        return self.result == "FAIL"

    def days_until_expiry(self, today: Optional[date] = None) -> Optional[int]:
        if self.expiry_date is None:
            return None
        return (self.expiry_date - (today or date.today())).days

    def is_expired(self, today: Optional[date] = None) -> bool:
        return self.expiry_date is not None and self.expiry_date < (today or date.today())
