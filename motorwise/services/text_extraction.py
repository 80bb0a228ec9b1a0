"""Heuristic attribute extraction from raw listing text.

Pure functions: given the advert title, spec tokens and description, return
whatever vehicle attributes can be recognised. Nothing here does I/O or
raises; a field with no signal is simply left out of the result.

Sources are scanned in precedence order (title, then each spec token, then
the description) and an attribute found in a higher-precedence source is
never overwritten by a lower one. The listing's post date is the last
resort for the year.
"""

import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

from motorwise.models.listing import Listing
from motorwise.models.vehicle import EARLIEST_YEAR, latest_model_year


# Alias (lower case) -> canonical make. Multi-word aliases must come before
# their single-word prefixes so the longer spelling wins at the same position.
MAKE_ALIASES: dict[str, str] = {
    "alfa romeo": "Alfa Romeo",
    "land rover": "Land Rover",
    "mercedes-benz": "Mercedes-Benz",
    "mercedes benz": "Mercedes-Benz",
    "mercedes": "Mercedes-Benz",
    "merc": "Mercedes-Benz",
    "volkswagen": "Volkswagen",
    "vw": "Volkswagen",
    "ford": "Ford",
    "toyota": "Toyota",
    "honda": "Honda",
    "audi": "Audi",
    "bmw": "BMW",
    "vauxhall": "Vauxhall",
    "nissan": "Nissan",
    "hyundai": "Hyundai",
    "kia": "Kia",
    "mazda": "Mazda",
    "peugeot": "Peugeot",
    "renault": "Renault",
    "seat": "SEAT",
    "skoda": "Skoda",
    "volvo": "Volvo",
    "fiat": "Fiat",
    "citroen": "Citroen",
    "mini": "MINI",
    "lexus": "Lexus",
    "jaguar": "Jaguar",
    "mitsubishi": "Mitsubishi",
    "suzuki": "Suzuki",
    "tesla": "Tesla",
    "dacia": "Dacia",
    "jeep": "Jeep",
    "porsche": "Porsche",
    "subaru": "Subaru",
}

# Canonical make -> model display names.
MAKE_MODELS: dict[str, list[str]] = {
    "Ford": ["Fiesta", "Focus", "Mondeo", "Kuga", "Mustang", "EcoSport", "Edge", "Ka", "Galaxy",
             "S-Max", "C-Max", "B-Max", "Puma", "Ranger", "Transit"],
    "Toyota": ["Corolla", "Yaris", "Prius", "RAV4", "Aygo", "Camry", "C-HR", "Land Cruiser",
               "Hilux", "GT86", "Auris", "Avensis"],
    "Honda": ["Civic", "Accord", "Jazz", "CR-V", "HR-V", "NSX"],
    "Audi": ["A1", "A3", "A4", "A5", "A6", "A7", "A8", "Q2", "Q3", "Q5", "Q7", "Q8", "TT", "R8", "e-tron"],
    "BMW": ["1 Series", "2 Series", "3 Series", "4 Series", "5 Series", "6 Series", "7 Series",
            "8 Series", "X1", "X2", "X3", "X4", "X5", "X6", "X7", "Z4", "i3", "i8", "M3", "M4"],
    "Mercedes-Benz": ["A-Class", "B-Class", "C-Class", "E-Class", "S-Class", "CLA", "CLS", "GLA",
                      "GLB", "GLC", "GLE", "GLS", "SLK", "SL", "AMG GT", "Sprinter", "Vito"],
    "Vauxhall": ["Corsa", "Astra", "Insignia", "Mokka", "Crossland", "Grandland", "Adam", "Viva",
                 "Zafira", "Meriva"],
    "Volkswagen": ["Golf", "Polo", "Passat", "Tiguan", "T-Roc", "T-Cross", "Touareg", "ID.3",
                   "ID.4", "Arteon", "Scirocco", "Up", "Touran", "Sharan", "Transporter"],
    "Nissan": ["Micra", "Juke", "Qashqai", "Leaf", "X-Trail", "GT-R", "370Z", "Note", "Navara"],
    "Hyundai": ["i10", "i20", "i30", "Tucson", "Kona", "Ioniq", "Santa Fe"],
    "Kia": ["Picanto", "Rio", "Ceed", "Stonic", "Sportage", "Niro", "Sorento"],
    "Mazda": ["CX-30", "CX-3", "CX-5", "MX-5", "2", "3", "6"],
}

FUEL_PATTERNS: list[tuple[str, str]] = [
    (r"\bdiesel\b", "Diesel"),
    (r"\belectric\b|\bev\b", "Electric"),
    (r"\bhybrid\b", "Hybrid"),
    (r"\bpetrol\b|\bgasoline\b", "Petrol"),
    (r"\blpg\b", "LPG"),
]

TRANSMISSION_PATTERNS: list[tuple[str, str]] = [
    (r"\bsemi[\s\-]?auto(?:matic)?\b", "Semi-Automatic"),
    (r"\bautomatic\b|\bauto\b", "Automatic"),
    (r"\bmanual\b", "Manual"),
]

BODY_TYPES: dict[str, list[str]] = {
    "Hatchback": ["hatchback", "hatch"],
    "Saloon": ["saloon", "sedan"],
    "Estate": ["estate", "station wagon", "wagon", "touring", "avant"],
    "SUV": ["suv", "crossover", "4x4", "off-road"],
    "Coupe": ["coupe"],
    "Convertible": ["convertible", "cabriolet", "roadster"],
    "MPV": ["mpv", "minivan", "people carrier"],
    "Van": ["van", "panel van"],
    "Pickup": ["pickup", "pick-up"],
}

COLOURS: dict[str, str] = {
    "black": "Black", "white": "White", "silver": "Silver", "grey": "Grey", "gray": "Grey",
    "blue": "Blue", "red": "Red", "green": "Green", "yellow": "Yellow", "orange": "Orange",
    "purple": "Purple", "brown": "Brown", "beige": "Beige", "gold": "Gold", "bronze": "Bronze",
}

NUMBER_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}

YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")
MILEAGE_RE = re.compile(r"\b(\d{1,3}(?:,\d{3})+|\d+)\s*(?:miles|mi)\b", re.IGNORECASE)
MILEAGE_K_RE = re.compile(r"\b(\d+(?:\.\d+)?)\s*k\s*miles\b", re.IGNORECASE)
ENGINE_LITRE_RE = re.compile(r"\b(\d{1,2}\.\d)\s*(?:l|litre|liter|ltr)\b", re.IGNORECASE)
ENGINE_CC_RE = re.compile(r"\b(\d{3,4})\s*cc\b", re.IGNORECASE)
DOORS_RE = re.compile(r"\b([2-5])[\s\-]?(?:doors?|dr)\b", re.IGNORECASE)
OWNERS_RE = re.compile(r"\b(\d{1,2}|one|two|three|four|five|six)\s+(?:previous\s+)?owners?\b", re.IGNORECASE)
SERVICE_HISTORY_RE = re.compile(
    r"\b(full|partial|part|comprehensive)\s+(?:\w+\s+)?service\s+history\b|\b(fsh)\b",
    re.IGNORECASE
)
# Current-format UK plates only (two letters, two digits, three letters).
REGISTRATION_RE = re.compile(r"\b([A-Z]{2}[0-9]{2})\s?([A-Z]{3})\b")
MODEL_TOKEN_RE = re.compile(r"[A-Za-z0-9]+(?:[\-.][A-Za-z0-9]+)*")

BMW_SERIES_RE = re.compile(r"\b([1-8])[\s\-]?series\b", re.IGNORECASE)
BMW_X_RE = re.compile(r"\bx([1-7])\b", re.IGNORECASE)
MERCEDES_CLASS_RE = re.compile(r"\b([abcegsv])[\s\-]?class\b", re.IGNORECASE)

_STOP_TOKENS = {
    "petrol", "diesel", "hybrid", "electric", "lpg", "manual", "automatic", "auto", "miles",
    "for", "sale", "with", "and", "the", "car", "new", "used",
}


def _model_pattern(display_name: str) -> re.Pattern:
    parts = [re.escape(part) for part in re.split(r"[\s\-]+", display_name)]
    return re.compile(r"\b" + r"[\s\-]?".join(parts) + r"(?![\w.])", re.IGNORECASE)


_MODEL_PATTERNS: dict[str, list[tuple[str, re.Pattern]]] = {
    make: [(model, _model_pattern(model)) for model in models]
    for make, models in MAKE_MODELS.items()
}

_MAKE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b" + r"[\s\-]".join(re.escape(part) for part in alias.split()) + r"\b", re.IGNORECASE), make)
    for alias, make in MAKE_ALIASES.items()
]


def find_make(text: str) -> Optional[tuple[str, int]]:
    """Return (canonical make, end offset) for the earliest make mentioned in ``text``."""
    best: Optional[tuple[int, int, str]] = None
    for pattern, make in _MAKE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        candidate = (match.start(), -(match.end() - match.start()), make)
        if best is None or candidate < best:
            best = candidate
    if best is None:
        return None
    start, negative_length, make = best
    return make, start - negative_length


def _special_model(make: str, text: str) -> Optional[str]:
    if make == "BMW":
        series = BMW_SERIES_RE.search(text)
        if series:
            return f"{series.group(1)} Series"
        x_model = BMW_X_RE.search(text)
        if x_model:
            return f"X{x_model.group(1)}"
    if make == "Mercedes-Benz":
        mercedes_class = MERCEDES_CLASS_RE.search(text)
        if mercedes_class:
            return f"{mercedes_class.group(1).upper()}-Class"
    return None


def find_model(make: str, text: str, allow_guess: bool = True) -> Optional[str]:
    """Find a model of ``make`` in ``text`` (the text following the make, when anchored).

    Dictionary models win; the earliest match is taken and the longer name
    breaks ties. Makes without a dictionary fall back to the first plausible
    token when ``allow_guess`` is set.
    """
    patterns = _MODEL_PATTERNS.get(make)
    if patterns:
        best: Optional[tuple[int, int, str]] = None
        for model, pattern in patterns:
            match = pattern.search(text)
            if match:
                candidate = (match.start(), -len(model), model)
                if best is None or candidate < best:
                    best = candidate
        if best:
            return best[2]
        return _special_model(make, text)

    special = _special_model(make, text)
    if special or not allow_guess:
        return special

    for token in MODEL_TOKEN_RE.findall(text):
        lowered = token.lower()
        if lowered in _STOP_TOKENS or YEAR_RE.fullmatch(token) or re.fullmatch(r"[\d.,]+", token):
            continue
        return token if any(ch.isdigit() for ch in token) or token.isupper() and len(token) <= 3 else token.title()
    return None


def find_year(text: str, today: Optional[date] = None) -> Optional[int]:
    upper = latest_model_year(today)
    for match in YEAR_RE.finditer(text):
        year = int(match.group(1))
        if EARLIEST_YEAR <= year <= upper:
            return year
    return None


def _first_keyword(text: str, patterns: list[tuple[str, str]]) -> Optional[str]:
    for pattern, value in patterns:
        if re.search(pattern, text, re.IGNORECASE):
            return value
    return None


def find_mileage(text: str) -> Optional[int]:
    thousands = MILEAGE_K_RE.search(text)
    if thousands:
        return int(float(thousands.group(1)) * 1000)
    match = MILEAGE_RE.search(text)
    if match:
        return int(match.group(1).replace(",", ""))
    return None


def find_engine_size(text: str) -> Optional[int]:
    """Engine capacity in cc from '1.6L' / '2.0 litre' / '1598cc' style mentions."""
    litres = ENGINE_LITRE_RE.search(text)
    if litres:
        return int(round(float(litres.group(1)) * 1000))
    cc = ENGINE_CC_RE.search(text)
    if cc:
        return int(cc.group(1))
    return None


def find_body_type(text: str) -> Optional[str]:
    for body_type, keywords in BODY_TYPES.items():
        for keyword in keywords:
            if re.search(r"\b" + re.escape(keyword) + r"\b", text, re.IGNORECASE):
                return body_type
    return None


def find_colour(text: str) -> Optional[str]:
    for word, colour in COLOURS.items():
        if re.search(r"\b" + word + r"\b", text, re.IGNORECASE):
            return colour
    return None


def find_doors(text: str) -> Optional[int]:
    match = DOORS_RE.search(text)
    return int(match.group(1)) if match else None


def find_previous_owners(text: str) -> Optional[int]:
    match = OWNERS_RE.search(text)
    if not match:
        return None
    value = match.group(1).lower()
    return NUMBER_WORDS[value] if value in NUMBER_WORDS else int(value)


def find_service_history(text: str) -> Optional[str]:
    match = SERVICE_HISTORY_RE.search(text)
    if not match:
        return None
    if match.group(2) or match.group(1).lower() in ("full", "comprehensive"):
        return "Full"
    return "Partial"


def find_registration(text: str) -> Optional[str]:
    """Current-format UK registration, normalised to 'AB12 CDE'."""
    match = REGISTRATION_RE.search(text)
    if not match:
        return None
    return f"{match.group(1)} {match.group(2)}"


def scan_text(text: str, known_make: Optional[str] = None, today: Optional[date] = None) -> dict[str, Any]:
    """Run every pattern over one source and return the attributes it yields."""
    found: dict[str, Any] = {}
    if not text or not text.strip():
        return found

    year = find_year(text, today)
    if year is not None:
        found["year"] = year

    make_hit = find_make(text)
    make = known_make or (make_hit[0] if make_hit else None)
    if make_hit:
        found["make"] = make_hit[0]
    if make:
        if make_hit and make_hit[0] == make:
            model = find_model(make, text[make_hit[1]:], allow_guess=True)
        else:
            model = find_model(make, text, allow_guess=False)
        if model:
            found["model"] = model

    scanners = (
        ("fuel_type", lambda t: _first_keyword(t, FUEL_PATTERNS)),
        ("transmission", lambda t: _first_keyword(t, TRANSMISSION_PATTERNS)),
        ("mileage", find_mileage),
        ("engine_size", find_engine_size),
        ("doors", find_doors),
        ("body_type", find_body_type),
        ("color", find_colour),
        ("previous_owners", find_previous_owners),
        ("service_history", find_service_history),
        ("registration", find_registration),
    )
    for field, scanner in scanners:
        value = scanner(text)
        if value is not None:
            found[field] = value

    return found


def _merge_lower_precedence(result: dict[str, Any], found: dict[str, Any]) -> None:
    for field, value in found.items():
        result.setdefault(field, value)


def extract_attributes(
    title: Optional[str],
    description: Optional[str] = None,
    specs: Optional[Iterable[str]] = None,
    post_date: Optional[datetime] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Extract a partial attribute set with precedence title > specs > description > post date."""
    result: dict[str, Any] = {}

    _merge_lower_precedence(result, scan_text(title or "", today=today))

    for spec in specs or []:
        _merge_lower_precedence(result, scan_text(str(spec), known_make=result.get("make"), today=today))

    _merge_lower_precedence(result, scan_text(description or "", known_make=result.get("make"), today=today))

    if "year" not in result and post_date is not None:
        result["year"] = post_date.year

    return result


def extract_from_listing(listing: Listing, today: Optional[date] = None) -> dict[str, Any]:
    """Extract attributes from a listing's title, spec tokens, description and post date."""
    return extract_attributes(
        title=listing.title,
        description=listing.description,
        specs=listing.specs,
        post_date=listing.post_date,
        today=today,
    )
