"""Purchase advice generation: summary, MOT repair estimate, expected lifetime
and original purchase price.

Each piece is generated by the configured chat model and falls back to a
fixed template when generation is unconfigured, fails or comes back empty.
"""

import asyncio
import re
from datetime import date
from typing import Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel

from motorwise.models.mot_test import MotTestRecord
from motorwise.models.vehicle import Vehicle
from motorwise.services.llm_client import get_llm_model, message_text
from motorwise.utils.config import PipelineConfig
from motorwise.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)

SYSTEM_PROMPT = "You are a vehicle expert providing purchase advice based on vehicle history and common issues."


class PurchaseAdvice(BaseModel):
    """Generated text for one vehicle."""
    purchase_summary: Optional[str] = None
    mot_repair_estimate: Optional[str] = None
    expected_lifetime: Optional[str] = None
    original_purchase_price: Optional[float] = None


def vehicle_age(vehicle: Vehicle, today: Optional[date] = None) -> Optional[int]:
    if not vehicle.year:
        return None
    return max(0, (today or date.today()).year - vehicle.year)


def _describe(vehicle: Vehicle) -> str:
    return vehicle.full_name or "vehicle"


def build_summary_prompt(
    vehicle: Vehicle,
    tests: Sequence[MotTestRecord],
    today: Optional[date] = None,
) -> str:
    """Compose the purchase-assessment prompt from the vehicle and its whole history."""
    failures = [reason for test in tests for reason in test.failure_reasons]
    advisories = [note for test in tests for note in test.advisory_notes]
    age = vehicle_age(vehicle, today)

    lines = [
        f"Based on the following information about a {_describe(vehicle)}, provide a VERY CONCISE "
        "assessment (maximum 4-5 sentences) of whether this vehicle would be a good purchase:",
        "",
        f"Make: {vehicle.make or 'unknown'}",
        f"Model: {vehicle.model or 'unknown'}",
        f"Year: {vehicle.year or 'unknown'}",
    ]
    if age is not None:
        lines.append(f"Age: {age} years")
    if vehicle.mileage is not None:
        lines.append(f"Mileage: {vehicle.mileage:,} miles")
    if vehicle.mot_status:
        lines.append(f"MOT Status: {vehicle.mot_status}")
    if vehicle.mot_expiry_date:
        lines.append(f"MOT Expiry: {vehicle.mot_expiry_date.isoformat()}")
    if vehicle.tax_status:
        lines.append(f"Tax Status: {vehicle.tax_status}")

    if failures:
        lines += ["", "MOT Failures:"] + [f"- {reason}" for reason in failures]
    if advisories:
        lines += ["", "MOT Advisories:"] + [f"- {note}" for note in advisories]

    lines += [
        "",
        "Using your knowledge of this make and model, answer briefly:",
        "1. What common issues are known for this make, model and age?",
        "2. Are there any red flags in this vehicle's specific MOT history?",
        "3. Given its age and mileage, is it worth buying?",
        "4. What should a buyer check before purchase?",
        "",
        "IMPORTANT: Keep the whole response short and direct, focusing only on the most critical purchase factors.",
    ]
    return "\n".join(lines)


def default_summary(vehicle: Vehicle) -> str:
    return (
        f"This {_describe(vehicle)} may be worth considering but requires inspection before purchase. "
        "Check MOT history and have it reviewed by a mechanic."
    )


def latest_failure_reasons(tests: Sequence[MotTestRecord]) -> list[str]:
    """Failure reasons of the most recent test when it failed, else []."""
    if not tests:
        return []
    latest = max(tests, key=lambda test: test.test_date)
    if not latest.failed:
        return []
    return list(latest.failure_reasons)


def build_repair_prompt(vehicle: Vehicle, failure_reasons: Sequence[str]) -> str:
    lines = [
        "You are a vehicle mechanic estimating MOT repair costs. Based on the following MOT failure "
        f"reasons for a {_describe(vehicle)}, provide a BRIEF repair cost estimate with a range "
        "(e.g., £200-£300), and a short explanation of what repairs would be needed:",
        "",
        "MOT Failure Reasons:",
    ]
    lines += [f"- {reason}" for reason in failure_reasons]
    lines += [
        "",
        "Consider current UK parts and labor costs, as well as common problems for this make/model.",
        "Format your response as follows:",
        "Cost: [estimated range in GBP]",
        "Needed Repairs: [concise explanation]",
        "Recommendation: [brief advice]",
    ]
    return "\n".join(lines)


def default_repair_estimate(failure_reasons: Sequence[str]) -> str:
    if len(failure_reasons) <= 2:
        return (
            "Cost: £100-£300\n"
            "Needed Repairs: Minor MOT failures that likely require standard parts replacement.\n"
            "Recommendation: Worth repairing as issues appear relatively minor."
        )
    return (
        "Cost: £300-£800+\n"
        "Needed Repairs: Multiple MOT failures that will require significant parts and labor.\n"
        "Recommendation: Get a detailed inspection before committing to repairs."
    )


def failure_rate(tests: Sequence[MotTestRecord]) -> Optional[float]:
    if not tests:
        return None
    return sum(1 for test in tests if test.failed) / len(tests)


def build_lifetime_prompt(
    vehicle: Vehicle,
    tests: Sequence[MotTestRecord],
    today: Optional[date] = None,
) -> str:
    age = vehicle_age(vehicle, today)
    mileage = f"{vehicle.mileage:,}" if vehicle.mileage is not None else "unknown"
    fuel = f" ({vehicle.fuel_type})" if vehicle.fuel_type else ""

    lines = [
        f"You are an automotive expert estimating the expected lifetime of a {_describe(vehicle)}{fuel} "
        f"with current mileage of {mileage} miles and age of {age if age is not None else 'unknown'} years.",
        "",
        "Consider:",
        "1. The typical reliability and longevity of this make, model, and engine type",
        "2. Current age and mileage compared to typical lifespan",
        "3. Common major failures that end a vehicle's useful life",
    ]
    rate = failure_rate(tests)
    if rate is not None:
        lines.append(f"4. This specific vehicle has a MOT test failure rate of {round(rate * 100)}%")
    lines += [
        "",
        "Provide ONLY a concise estimate of the expected remaining life in both years and miles, "
        "in a single short sentence.",
    ]
    return "\n".join(lines)


def default_lifetime(vehicle: Vehicle, today: Optional[date] = None) -> str:
    age = vehicle_age(vehicle, today)
    if age is not None and age > 15:
        return "1-3 more years or 10,000-30,000 additional miles with careful maintenance"
    if age is not None and age > 10:
        return "3-5 more years or 30,000-50,000 additional miles with proper maintenance"
    return "7-10 more years or 70,000-100,000 additional miles with regular maintenance"


PREMIUM_MAKES = {"bmw", "mercedes", "mercedes-benz", "audi", "lexus"}
MAINSTREAM_MAKES = {"ford", "vauxhall", "volkswagen", "toyota", "honda"}
BUDGET_MAKES = {"dacia", "suzuki", "kia", "hyundai"}

POUND_PRICE_PATTERN = re.compile(r"£\s?((?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?)")
BARE_PRICE_PATTERN = re.compile(r"\b((?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?)\b")


def build_original_price_prompt(vehicle: Vehicle) -> str:
    lines = [
        "You are a car pricing expert. What was the original purchase price (MSRP) of a new "
        f"{_describe(vehicle)} in the UK market?",
        "",
        "Additional vehicle details:",
    ]
    if vehicle.fuel_type:
        lines.append(f"- Fuel type: {vehicle.fuel_type}")
    if vehicle.transmission:
        lines.append(f"- Transmission: {vehicle.transmission}")
    if vehicle.engine_size:
        lines.append(f"- Engine size: {vehicle.engine_size}cc")
    lines += [
        "",
        "IMPORTANT: In your response, provide ONLY a single figure representing the original base price "
        "in GBP, formatted like this: £25,995 or similar.",
        "Do not include any explanations, ranges, or additional information - just the original price figure.",
    ]
    return "\n".join(lines)


def parse_price(text: Optional[str]) -> Optional[float]:
    """First GBP figure in ``text``; a £-prefixed figure wins over a bare number."""
    if not text:
        return None
    match = POUND_PRICE_PATTERN.search(text) or BARE_PRICE_PATTERN.search(text)
    if not match:
        return None
    price = float(match.group(1).replace(",", ""))
    return price if price > 0 else None


def default_original_price(vehicle: Vehicle, today: Optional[date] = None) -> float:
    """Base price by make class, reduced 2% per year of age down to 70%."""
    make = (vehicle.make or "").lower()
    if make in PREMIUM_MAKES:
        base_price = 35000
    elif make in MAINSTREAM_MAKES:
        base_price = 20000
    elif make in BUDGET_MAKES:
        base_price = 15000
    else:
        base_price = 25000

    age = vehicle_age(vehicle, today)
    age_factor = max(1.0 - age * 0.02, 0.7) if age is not None else 0.9
    return float(round(base_price * age_factor))


def truncate_text(text: str, max_chars: int) -> str:
    """Cut ``text`` to at most ``max_chars`` on a word boundary."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars - 3].rsplit(" ", 1)[0].rstrip(" ,;:")
    return f"{cut}..."


class PurchaseAdvisorySynthesizer:
    """Turns a vehicle and its MOT history into purchase advice."""

    def __init__(self, config: PipelineConfig, model: Optional[BaseChatModel] = None):
        self.config = config
        self._model = model

    @property
    def enabled(self) -> bool:
        return self._model is not None or self.config.text_generation_enabled

    def _get_model(self) -> BaseChatModel:
        if self._model is None:
            self._model = get_llm_model(self.config)
        return self._model

    async def generate_text(self, prompt: str, purpose: str) -> Optional[str]:
        """One generation call. Returns None when disabled, failing or empty."""
        if not self.enabled:
            return None

        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]
        try:
            with log_timing("generate_text", logger=logger, purpose=purpose, prompt_chars=len(prompt)):
                response = await asyncio.wait_for(
                    self._get_model().ainvoke(messages),
                    timeout=self.config.llm_timeout_seconds,
                )
        except Exception as e:
            logger.warning(
                "Text generation failed",
                purpose=purpose,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        text = message_text(response)
        return text or None

    async def summarize(
        self,
        vehicle: Vehicle,
        tests: Sequence[MotTestRecord],
        today: Optional[date] = None,
    ) -> str:
        generated = await self.generate_text(build_summary_prompt(vehicle, tests, today), "purchase_summary")
        return truncate_text(generated or default_summary(vehicle), self.config.summary_max_chars)

    async def estimate_repairs(self, vehicle: Vehicle, tests: Sequence[MotTestRecord]) -> Optional[str]:
        """Repair estimate for the latest test's failures; None when the latest test passed."""
        reasons = latest_failure_reasons(tests)
        if not reasons:
            return None
        generated = await self.generate_text(build_repair_prompt(vehicle, reasons), "mot_repair_estimate")
        return truncate_text(generated or default_repair_estimate(reasons), self.config.summary_max_chars)

    async def estimate_lifetime(
        self,
        vehicle: Vehicle,
        tests: Sequence[MotTestRecord],
        today: Optional[date] = None,
    ) -> str:
        generated = await self.generate_text(build_lifetime_prompt(vehicle, tests, today), "expected_lifetime")
        return truncate_text(generated or default_lifetime(vehicle, today), self.config.summary_max_chars)

    async def estimate_original_price(self, vehicle: Vehicle, today: Optional[date] = None) -> float:
        generated = await self.generate_text(build_original_price_prompt(vehicle), "original_purchase_price")
        price = parse_price(generated)
        if price is None:
            if generated:
                logger.info("No price in generated answer, using default", vehicle_id=vehicle.vehicle_id)
            return default_original_price(vehicle, today)
        return price

    async def advise(
        self,
        vehicle: Vehicle,
        tests: Sequence[MotTestRecord],
        today: Optional[date] = None,
    ) -> PurchaseAdvice:
        """Generate all purchase advice for ``vehicle``."""
        summary, repairs, lifetime, original_price = await asyncio.gather(
            self.summarize(vehicle, tests, today),
            self.estimate_repairs(vehicle, tests),
            self.estimate_lifetime(vehicle, tests, today),
            self.estimate_original_price(vehicle, today),
        )
        logger.info(
            "Purchase advice generated",
            vehicle_id=vehicle.vehicle_id,
            generated=self.enabled,
            has_repair_estimate=repairs is not None,
        )
        return PurchaseAdvice(
            purchase_summary=summary,
            mot_repair_estimate=repairs,
            expected_lifetime=lifetime,
            original_purchase_price=original_price,
        )
