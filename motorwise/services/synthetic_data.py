"""Deterministic offline stand-ins for the register and MOT history services.

Both generators produce payloads shaped exactly like the real services'
responses, so the same mapping code runs online and offline. Everything is
drawn from one ``random.Random`` seeded from the registration, in a fixed
order: the vehicle profile first, then its test history. The same
registration (and the same ``today``) therefore always yields the same
vehicle and the same history, and the history agrees with the profile's
year of manufacture.
"""

import random
from datetime import date, timedelta
from typing import Any, Optional

from motorwise.utils.registration import registration_seed, sanitize_registration


MANUFACTURERS = ["Ford", "BMW", "Audi", "Mercedes", "Toyota", "Honda", "Volkswagen", "Nissan"]
MODELS = {
    "Ford": ["Fiesta", "Focus", "Mondeo", "Kuga", "Puma"],
    "BMW": ["1 Series", "3 Series", "5 Series", "X3", "X5"],
    "Audi": ["A1", "A3", "A4", "Q3", "Q5"],
    "Mercedes": ["A Class", "C Class", "E Class", "GLC", "GLE"],
    "Toyota": ["Yaris", "Corolla", "RAV4", "Prius", "Auris"],
    "Honda": ["Jazz", "Civic", "CR-V", "HR-V", "Accord"],
    "Volkswagen": ["Polo", "Golf", "Passat", "Tiguan", "T-Roc"],
    "Nissan": ["Micra", "Juke", "Qashqai", "X-Trail", "Leaf"],
}
COLOURS = ["Black", "White", "Silver", "Blue", "Red", "Grey", "Green"]
FUEL_TYPES = ["Petrol", "Diesel", "Hybrid", "Electric"]

ADVISORIES = [
    "Tyre worn close to legal limit",
    "Brake pads wearing thin",
    "Slight oil leak",
    "Windscreen has minor chips",
    "Suspension component has slight play",
    "Slight exhaust smoke visible during acceleration",
    "Minor corrosion on brake pipes",
    "Registration plate slightly damaged",
    "Wiper blades wearing but still effective",
]
FAILURES = [
    "Brake efficiency below minimum requirement",
    "Tyre tread depth below legal limit",
    "Headlight aim out of alignment",
    "Excessive exhaust emissions",
    "Steering component has excessive play",
    "Brake pipe corroded to the extent that failure is imminent",
    "Suspension component fractured or excessively worn",
    "Fuel leak present",
    "Seatbelt damaged or not functioning correctly",
]

MAX_TESTS = 5
FIRST_TEST_AGE_YEARS = 3
MAX_FAILURES = 3
MAX_ADVISORIES = 4


def _draw_profile(rng: random.Random, today: date) -> dict[str, Any]:
    make = rng.choice(MANUFACTURERS)
    model = rng.choice(MODELS[make])
    year = rng.randint(2008, 2023)
    colour = rng.choice(COLOURS)
    fuel_type = rng.choice(FUEL_TYPES)
    engine_capacity = rng.randint(10, 60) * 100
    co2 = rng.randint(90, 250)
    tax_status = "Taxed" if rng.randint(1, 10) > 2 else "SORN"
    tax_due_days = rng.randint(1, 360)
    mot_status = "Valid" if rng.randint(1, 10) > 2 else "No MOT"
    mot_expiry_days = rng.randint(1, 360)
    first_registration_month = rng.randint(1, 12)

    return {
        "make": make,
        "model": model,
        "year": year,
        "colour": colour,
        "fuel_type": fuel_type,
        "engine_capacity": engine_capacity,
        "co2": co2,
        "tax_status": tax_status,
        "tax_due_date": today + timedelta(days=tax_due_days) if tax_status == "Taxed" else None,
        "mot_status": mot_status,
        "mot_expiry_date": today + timedelta(days=mot_expiry_days) if mot_status == "Valid" else None,
        "first_registration": date(year, first_registration_month, 1),
    }


def _seeded(registration: str, today: date) -> tuple[random.Random, dict[str, Any]]:
    rng = random.Random(registration_seed(registration))
    return rng, _draw_profile(rng, today)


def synthetic_register_payload(registration: str, today: Optional[date] = None) -> dict[str, Any]:
    """Register-service-shaped response body for ``registration``."""
    today = today or date.today()
    _, profile = _seeded(registration, today)

    payload = {
        "registrationNumber": sanitize_registration(registration),
        "make": profile["make"].upper(),
        "model": profile["model"],
        "colour": profile["colour"].upper(),
        "fuelType": profile["fuel_type"].upper(),
        "yearOfManufacture": profile["year"],
        "engineCapacity": profile["engine_capacity"],
        "co2Emissions": profile["co2"],
        "taxStatus": profile["tax_status"],
        "motStatus": profile["mot_status"],
        "monthOfFirstRegistration": profile["first_registration"].strftime("%Y-%m"),
    }
    if profile["tax_due_date"]:
        payload["taxDueDate"] = profile["tax_due_date"].isoformat()
    if profile["mot_expiry_date"]:
        payload["motExpiryDate"] = profile["mot_expiry_date"].isoformat()
    return payload


def _comments(rng: random.Random, failures: int, advisories: int) -> list[dict[str, str]]:
    comments = [{"text": text, "type": "FAIL"} for text in rng.sample(FAILURES, failures)]
    comments += [{"text": text, "type": "ADVISORY"} for text in rng.sample(ADVISORIES, advisories)]
    return comments


def synthetic_history_payload(registration: str, today: Optional[date] = None) -> list[dict[str, Any]]:
    """History-service-shaped response body for ``registration``.

    Tests run newest first, roughly a year apart, none before the vehicle's
    first MOT at three years old. Going back in time, odometer readings
    strictly fall while failure and advisory counts never shrink.
    """
    today = today or date.today()
    rng, profile = _seeded(registration, today)

    age = today.year - profile["year"]
    max_tests = max(0, min(MAX_TESTS, age - FIRST_TEST_AGE_YEARS + 1))
    num_tests = rng.randint(1, max_tests) if max_tests else 0

    latest_date = today - timedelta(days=rng.randint(15, 180))
    mileage = rng.randint(max(age, 1) * 6000, max(age, 1) * 12000)
    failures = 1 if rng.random() < 0.2 else 0
    advisories = rng.randint(0, 2)

    tests = []
    for index in range(num_tests):
        if index > 0:
            mileage -= rng.randint(4000, 9000)
            if failures < MAX_FAILURES and rng.random() < 0.35:
                failures += 1
            advisories = min(MAX_ADVISORIES, advisories + rng.randint(0, 1))

        completed = latest_date - timedelta(days=365 * index + rng.randint(0, 20))
        passed = failures == 0
        test = {
            "completedDate": completed.strftime("%Y.%m.%d") + f" {rng.randint(8, 17):02d}:{rng.randint(0, 59):02d}:00",
            "testResult": "PASSED" if passed else "FAILED",
            "odometerValue": str(mileage),
            "odometerUnit": "mi",
            "motTestNumber": str(rng.randint(10 ** 11, 10 ** 12 - 1)),
            "rfrAndComments": _comments(rng, failures, advisories),
        }
        if passed:
            test["expiryDate"] = (completed + timedelta(days=364)).strftime("%Y.%m.%d")
        tests.append(test)

    return [{
        "registration": sanitize_registration(registration),
        "make": profile["make"].upper(),
        "model": profile["model"].upper(),
        "primaryColour": profile["colour"],
        "fuelType": profile["fuel_type"],
        "motTests": tests,
    }]
