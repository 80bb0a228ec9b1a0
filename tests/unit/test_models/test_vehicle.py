"""Tests for Vehicle model and stage bookkeeping."""

import pytest
from pydantic import ValidationError
from motorwise.models.vehicle import (
    PipelineState,
    RegistrationSource,
    StageName,
    StageStatus,
    Vehicle,
    latest_model_year,
    next_stage,
    pipeline_state,
)


@pytest.mark.unit
def test_vehicle_minimal():
    """Only the ID is required."""
    vehicle = Vehicle(vehicle_id="01HVZ8K3M4N5P6Q7R8S9T0V1W2")

    assert vehicle.listing_id is None
    assert vehicle.registration is None
    assert vehicle.stage_status == {}
    assert vehicle.is_active


@pytest.mark.unit
def test_vehicle_full_name():
    assert Vehicle(vehicle_id="V1", year=2019, make="Ford", model="Fiesta").full_name == "2019 Ford Fiesta"
    assert Vehicle(vehicle_id="V1", make="Ford").full_name == "Ford"
    assert Vehicle(vehicle_id="V1").full_name == ""


@pytest.mark.unit
def test_vehicle_field_validation():
    with pytest.raises(ValidationError):
        Vehicle(vehicle_id="V1", registration_confidence=1.5)
    with pytest.raises(ValidationError):
        Vehicle(vehicle_id="V1", mileage=-10)
    with pytest.raises(ValidationError):
        Vehicle(vehicle_id="V1", registration_source="guess")


@pytest.mark.unit
def test_vehicle_year_bounds(freeze_time_fixture):
    """Next year's model is accepted; anything later or before 1900 is not."""
    assert latest_model_year() == 2027
    assert Vehicle(vehicle_id="V1", year=2027).year == 2027
    assert Vehicle(vehicle_id="V1", year=1900).year == 1900

    with pytest.raises(ValidationError, match="after 2027"):
        Vehicle(vehicle_id="V1", year=2028)
    with pytest.raises(ValidationError):
        Vehicle(vehicle_id="V1", year=1899)
    with pytest.raises(ValidationError):
        Vehicle.model_validate({"vehicle_id": "V1", "year": 3019})


@pytest.mark.unit
def test_vehicle_registration_source_from_string():
    vehicle = Vehicle(vehicle_id="V1", registration="AB12 CDE", registration_source="ai_vision")
    assert vehicle.registration_source == RegistrationSource.AI_VISION


@pytest.mark.unit
def test_vehicle_retired():
    assert not Vehicle(vehicle_id="V1", retired_at="2026-03-15T12:00:00+00:00").is_active


@pytest.mark.unit
def test_stage_settled():
    vehicle = Vehicle(
        vehicle_id="V1",
        stage_status={
            StageName.PLATE_RECOGNITION: StageStatus.DONE,
            StageName.REGISTER_LOOKUP: StageStatus.SKIPPED,
            StageName.MOT_HISTORY: StageStatus.FAILED,
        },
    )
    assert vehicle.stage_settled(StageName.PLATE_RECOGNITION)
    assert vehicle.stage_settled(StageName.REGISTER_LOOKUP)
    assert not vehicle.stage_settled(StageName.MOT_HISTORY)
    assert not vehicle.stage_settled(StageName.PURCHASE_ADVISORY)


@pytest.mark.unit
def test_stage_status_round_trips_through_json():
    vehicle = Vehicle(vehicle_id="V1", stage_status={StageName.MOT_HISTORY: StageStatus.DONE})
    restored = Vehicle.model_validate(vehicle.model_dump(mode="json"))
    assert restored.stage_status == {StageName.MOT_HISTORY: StageStatus.DONE}


@pytest.mark.unit
def test_next_stage_chain():
    assert next_stage(StageName.PLATE_RECOGNITION) == StageName.REGISTER_LOOKUP
    assert next_stage(StageName.REGISTER_LOOKUP) == StageName.MOT_HISTORY
    assert next_stage(StageName.MOT_HISTORY) == StageName.PURCHASE_ADVISORY
    assert next_stage(StageName.PURCHASE_ADVISORY) is None


@pytest.mark.unit
def test_pipeline_state_progression():
    vehicle = Vehicle(vehicle_id="V1")
    assert pipeline_state(vehicle, has_history=False) == PipelineState.NO_REGISTRATION

    vehicle = vehicle.model_copy(update={"registration": "AB12 CDE"})
    assert pipeline_state(vehicle, has_history=False) == PipelineState.REGISTRATION_KNOWN

    vehicle = vehicle.model_copy(update={"register_data": {"make": "FORD"}})
    assert pipeline_state(vehicle, has_history=False) == PipelineState.REGISTER_LOOKUP_DONE

    assert pipeline_state(vehicle, has_history=True) == PipelineState.MOT_HISTORY_DONE

    vehicle = vehicle.model_copy(update={"purchase_summary": "Worth a look."})
    assert pipeline_state(vehicle, has_history=True) == PipelineState.SUMMARY_DONE


@pytest.mark.unit
def test_pipeline_state_skipped_stages():
    vehicle = Vehicle(
        vehicle_id="V1",
        registration="AB1? C?E",
        stage_status={StageName.REGISTER_LOOKUP: StageStatus.SKIPPED},
    )
    assert pipeline_state(vehicle, has_history=False) == PipelineState.REGISTER_LOOKUP_SKIPPED

    vehicle.stage_status[StageName.MOT_HISTORY] = StageStatus.SKIPPED
    assert pipeline_state(vehicle, has_history=False) == PipelineState.MOT_HISTORY_SKIPPED

    vehicle.stage_status[StageName.PURCHASE_ADVISORY] = StageStatus.SKIPPED
    assert pipeline_state(vehicle, has_history=False) == PipelineState.SUMMARY_SKIPPED
