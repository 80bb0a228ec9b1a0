"""Tests for purchase advice generation."""

import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock
from langchain_core.messages import AIMessage, SystemMessage
from motorwise.services.purchase_advisor import (
    SYSTEM_PROMPT,
    PurchaseAdvisorySynthesizer,
    build_lifetime_prompt,
    build_original_price_prompt,
    build_repair_prompt,
    build_summary_prompt,
    default_lifetime,
    default_original_price,
    default_repair_estimate,
    default_summary,
    latest_failure_reasons,
    parse_price,
    truncate_text,
)
from motorwise.utils.config import PipelineConfig
from tests.utils.factories import create_mot_test, create_vehicle

TODAY = date(2026, 3, 15)


def _history(vehicle_id, latest_result="PASS"):
    return [
        create_mot_test(
            vehicle_id,
            date(2025, 6, 1),
            latest_result,
            odometer=41250,
            advisory_notes=("Brake pads wearing thin",),
        ),
        create_mot_test(
            vehicle_id,
            date(2024, 5, 28),
            "FAIL",
            odometer=33010,
            failure_reasons=("Tyre tread depth below legal limit",),
        ),
    ]


def _routing_model(
    summary="Solid buy.",
    repairs="Cost: £150-£250",
    lifetime="About 8 more years.",
    price="£18,995",
):
    """Chat model mock answering by prompt kind, independent of call order."""
    async def answer(messages):
        prompt = messages[1].content
        if "original purchase price" in prompt:
            return AIMessage(content=price)
        if "repair cost" in prompt:
            return AIMessage(content=repairs)
        if "expected lifetime" in prompt:
            return AIMessage(content=lifetime)
        return AIMessage(content=summary)

    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=answer)
    return model


@pytest.mark.unit
def test_default_summary():
    vehicle = create_vehicle("L1", year=2019, make="Ford", model="Fiesta")
    assert default_summary(vehicle).startswith("This 2019 Ford Fiesta may be worth considering")

    unnamed = create_vehicle("L1", year=None, make=None, model=None)
    assert default_summary(unnamed).startswith("This vehicle may be worth considering")


@pytest.mark.unit
def test_default_repair_estimate_bands():
    assert default_repair_estimate(["a", "b"]).startswith("Cost: £100-£300")
    assert default_repair_estimate(["a", "b", "c"]).startswith("Cost: £300-£800+")


@pytest.mark.unit
def test_default_lifetime_by_age():
    assert default_lifetime(create_vehicle(year=2019), TODAY).startswith("7-10 more years")
    assert default_lifetime(create_vehicle(year=2014), TODAY).startswith("3-5 more years")
    assert default_lifetime(create_vehicle(year=2008), TODAY).startswith("1-3 more years")
    assert default_lifetime(create_vehicle(year=None), TODAY).startswith("7-10 more years")


@pytest.mark.unit
def test_latest_failure_reasons():
    vehicle = create_vehicle()
    assert latest_failure_reasons(_history(vehicle.vehicle_id)) == []
    assert latest_failure_reasons(_history(vehicle.vehicle_id, latest_result="FAIL")) == [
        "Headlight aim out of alignment"
    ]
    assert latest_failure_reasons([]) == []


@pytest.mark.unit
def test_build_summary_prompt_includes_history():
    vehicle = create_vehicle(mileage=45000, mot_status="Valid", tax_status="Taxed")

    prompt = build_summary_prompt(vehicle, _history(vehicle.vehicle_id), TODAY)

    assert "2019 Ford Fiesta" in prompt
    assert "Age: 7 years" in prompt
    assert "Mileage: 45,000 miles" in prompt
    assert "MOT Status: Valid" in prompt
    assert "- Tyre tread depth below legal limit" in prompt
    assert "- Brake pads wearing thin" in prompt
    assert "4. What should a buyer check before purchase?" in prompt


@pytest.mark.unit
def test_build_repair_and_lifetime_prompts():
    vehicle = create_vehicle(mileage=45000, fuel_type="Petrol")

    repair_prompt = build_repair_prompt(vehicle, ["Fuel leak present"])
    assert "- Fuel leak present" in repair_prompt
    assert "Cost: [estimated range in GBP]" in repair_prompt

    lifetime_prompt = build_lifetime_prompt(vehicle, _history(vehicle.vehicle_id), TODAY)
    assert "2019 Ford Fiesta (Petrol)" in lifetime_prompt
    assert "45,000 miles" in lifetime_prompt
    assert "failure rate of 50%" in lifetime_prompt


@pytest.mark.unit
def test_truncate_text():
    assert truncate_text("short", 100) == "short"

    text = " ".join(["word"] * 60)
    truncated = truncate_text(text, 100)
    assert len(truncated) <= 100
    assert truncated.endswith("...")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_advise_offline_uses_templates(offline_config):
    """Test that without a generation credential every field falls back to its template."""
    advisor = PurchaseAdvisorySynthesizer(offline_config)
    vehicle = create_vehicle()

    advice = await advisor.advise(vehicle, _history(vehicle.vehicle_id, latest_result="FAIL"), TODAY)

    assert not advisor.enabled
    assert advice.purchase_summary == default_summary(vehicle)
    assert advice.mot_repair_estimate == default_repair_estimate(["Headlight aim out of alignment"])
    assert advice.expected_lifetime == default_lifetime(vehicle, TODAY)
    assert advice.original_purchase_price == 17200.0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_advise_no_repair_estimate_when_latest_passed(offline_config):
    advisor = PurchaseAdvisorySynthesizer(offline_config)
    vehicle = create_vehicle()

    advice = await advisor.advise(vehicle, _history(vehicle.vehicle_id), TODAY)

    assert advice.purchase_summary
    assert advice.mot_repair_estimate is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_advise_with_model(vision_config):
    model = _routing_model()
    advisor = PurchaseAdvisorySynthesizer(vision_config, model=model)
    vehicle = create_vehicle()

    advice = await advisor.advise(vehicle, _history(vehicle.vehicle_id, latest_result="FAIL"), TODAY)

    assert advice.purchase_summary == "Solid buy."
    assert advice.mot_repair_estimate == "Cost: £150-£250"
    assert advice.expected_lifetime == "About 8 more years."
    assert advice.original_purchase_price == 18995.0
    assert model.ainvoke.call_count == 4
    messages = model.ainvoke.call_args[0][0]
    assert isinstance(messages[0], SystemMessage)
    assert messages[0].content == SYSTEM_PROMPT


@pytest.mark.unit
@pytest.mark.asyncio
async def test_advise_falls_back_when_generation_fails(vision_config):
    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))
    advisor = PurchaseAdvisorySynthesizer(vision_config, model=model)
    vehicle = create_vehicle()

    advice = await advisor.advise(vehicle, [], TODAY)

    assert advice.purchase_summary == default_summary(vehicle)
    assert advice.mot_repair_estimate is None
    assert advice.expected_lifetime == default_lifetime(vehicle, TODAY)
    assert advice.original_purchase_price == default_original_price(vehicle, TODAY)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_advise_falls_back_on_empty_output(vision_config):
    advisor = PurchaseAdvisorySynthesizer(vision_config, model=_routing_model(summary="   "))
    vehicle = create_vehicle()

    advice = await advisor.advise(vehicle, [], TODAY)

    assert advice.purchase_summary == default_summary(vehicle)
    assert advice.expected_lifetime == "About 8 more years."


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generated_text_is_truncated():
    config = PipelineConfig(environment="test", openai_api_key="sk-test-key", summary_max_chars=100)
    advisor = PurchaseAdvisorySynthesizer(config, model=_routing_model(summary="Reliable engine. " * 40))

    summary = await advisor.summarize(create_vehicle(), [], TODAY)

    assert len(summary) <= 100
    assert summary.endswith("...")


@pytest.mark.unit
def test_parse_price():
    assert parse_price("£25,995") == 25995.0
    assert parse_price("About £18,500 for the 2019 model") == 18500.0
    assert parse_price("£24999.99") == 24999.99
    assert parse_price("21995") == 21995.0
    assert parse_price("No idea") is None
    assert parse_price("£0") is None
    assert parse_price(None) is None


@pytest.mark.unit
def test_default_original_price_by_make_and_age():
    assert default_original_price(create_vehicle(make="Ford", year=2019), TODAY) == 17200.0
    assert default_original_price(create_vehicle(make="BMW", year=2024), TODAY) == 33600.0
    assert default_original_price(create_vehicle(make="Mercedes-Benz", year=2016), TODAY) == 28000.0
    # Age discount stops at 70%
    assert default_original_price(create_vehicle(make="Dacia", year=2000), TODAY) == 10500.0
    assert default_original_price(create_vehicle(make="Skoda", year=None), TODAY) == 22500.0


@pytest.mark.unit
def test_build_original_price_prompt():
    vehicle = create_vehicle(make="Ford", model="Fiesta", year=2019, fuel_type="Petrol", engine_size=1242)

    prompt = build_original_price_prompt(vehicle)

    assert "original purchase price (MSRP) of a new 2019 Ford Fiesta in the UK market" in prompt
    assert "- Fuel type: Petrol" in prompt
    assert "- Engine size: 1242cc" in prompt
    assert "Transmission" not in prompt


@pytest.mark.unit
@pytest.mark.asyncio
async def test_original_price_falls_back_when_answer_has_no_figure(vision_config):
    advisor = PurchaseAdvisorySynthesizer(vision_config, model=_routing_model(price="Hard to say."))
    vehicle = create_vehicle(make="Kia", year=2021)

    price = await advisor.estimate_original_price(vehicle, TODAY)

    assert price == default_original_price(vehicle, TODAY)
    assert price == 13500.0
