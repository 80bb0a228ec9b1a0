"""Vehicle store: listings, vehicles and MOT tests.

``VehicleStore`` is the async interface the pipeline writes through. Two
implementations: ``InMemoryVehicleStore`` for tests and offline runs, and
``SupabaseVehicleStore`` over the ``listings``, ``vehicles`` and
``mot_tests`` tables.

Invariants enforced by every implementation:
- a listing has at most one active (non-retired) vehicle;
- a registration is held by at most one active vehicle per listing.
Distinct listings may share a registration (forked vehicles).
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

from motorwise.models.listing import Listing
from motorwise.models.mot_test import MotTestRecord
from motorwise.models.vehicle import Vehicle
from motorwise.services.supabase_client import SupabaseClient, is_unique_violation
from motorwise.utils.errors import DuplicateRegistrationError, RecordNotFoundError, StoreError
from motorwise.utils.ids import generate_id
from motorwise.utils.registration import sanitize_registration
import logging

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_row(values: dict[str, Any]) -> dict[str, Any]:
    """JSON-safe copy of a field dict (dates, enums and enum-keyed dicts)."""
    def convert(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        if isinstance(value, dict):
            return {convert(key): convert(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [convert(item) for item in value]
        return value

    return {key: convert(value) for key, value in values.items()}


class VehicleStore(ABC):
    """Async persistence interface used by the pipeline."""

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        ...

    @abstractmethod
    async def save_listing(self, listing: Listing) -> Listing:
        """Insert or update a listing by ID."""

    @abstractmethod
    async def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        ...

    @abstractmethod
    async def get_active_vehicle_for_listing(self, listing_id: str) -> Optional[Vehicle]:
        ...

    @abstractmethod
    async def find_vehicles_by_registration(self, registration: str) -> list[Vehicle]:
        """Active vehicles whose sanitized registration matches."""

    @abstractmethod
    async def create_vehicle(self, vehicle: Vehicle) -> Vehicle:
        ...

    @abstractmethod
    async def update_vehicle(self, vehicle_id: str, updates: dict[str, Any]) -> Vehicle:
        """Attribute-level upsert of the given fields only."""

    @abstractmethod
    async def retire_vehicle(self, vehicle_id: str) -> Vehicle:
        ...

    @abstractmethod
    async def list_mot_tests(self, vehicle_id: str) -> list[MotTestRecord]:
        """MOT tests for a vehicle, newest first."""

    @abstractmethod
    async def count_mot_tests(self, vehicle_id: str) -> int:
        ...

    @abstractmethod
    async def add_mot_tests(self, vehicle_id: str, tests: Sequence[MotTestRecord]) -> int:
        """Insert tests for a vehicle; returns the number inserted."""


class InMemoryVehicleStore(VehicleStore):
    """Process-local store. Each method completes without yielding, so calls are atomic under asyncio."""

    def __init__(self):
        self.listings: dict[str, Listing] = {}
        self.vehicles: dict[str, Vehicle] = {}
        self.mot_tests: dict[str, list[MotTestRecord]] = {}

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return self.listings.get(listing_id)

    async def save_listing(self, listing: Listing) -> Listing:
        for existing in self.listings.values():
            if existing.source_id == listing.source_id and existing.listing_id != listing.listing_id:
                raise StoreError(f"Failed to save listing: source_id {listing.source_id} already exists")

        now = utc_now()
        previous = self.listings.get(listing.listing_id)
        saved = listing.model_copy(update={
            "created_at": (previous.created_at if previous else None) or listing.created_at or now,
            "updated_at": now,
        })
        self.listings[listing.listing_id] = saved
        return saved

    async def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.vehicles.get(vehicle_id)

    async def get_active_vehicle_for_listing(self, listing_id: str) -> Optional[Vehicle]:
        for vehicle in self.vehicles.values():
            if vehicle.listing_id == listing_id and vehicle.is_active:
                return vehicle
        return None

    async def find_vehicles_by_registration(self, registration: str) -> list[Vehicle]:
        key = sanitize_registration(registration)
        if not key:
            return []
        return [
            vehicle for vehicle in self.vehicles.values()
            if vehicle.is_active and sanitize_registration(vehicle.registration) == key
        ]

    def _check_invariants(self, candidate: Vehicle) -> None:
        if not candidate.is_active or candidate.listing_id is None:
            return
        key = sanitize_registration(candidate.registration)
        for other in self.vehicles.values():
            if other.vehicle_id == candidate.vehicle_id or not other.is_active:
                continue
            if other.listing_id != candidate.listing_id:
                continue
            if key and sanitize_registration(other.registration) == key:
                raise DuplicateRegistrationError(
                    f"Registration already held by vehicle {other.vehicle_id} on listing {candidate.listing_id}"
                )
            raise StoreError(
                f"Listing {candidate.listing_id} already has active vehicle {other.vehicle_id}"
            )

    async def create_vehicle(self, vehicle: Vehicle) -> Vehicle:
        if vehicle.vehicle_id in self.vehicles:
            raise StoreError(f"Failed to create vehicle: {vehicle.vehicle_id} already exists")
        self._check_invariants(vehicle)

        now = utc_now()
        created = vehicle.model_copy(update={"created_at": vehicle.created_at or now, "updated_at": now})
        self.vehicles[created.vehicle_id] = created
        return created

    async def update_vehicle(self, vehicle_id: str, updates: dict[str, Any]) -> Vehicle:
        current = self.vehicles.get(vehicle_id)
        if current is None:
            raise RecordNotFoundError(f"Vehicle not found: {vehicle_id}")

        data = current.model_dump()
        data.update(updates)
        data["updated_at"] = utc_now()
        updated = Vehicle.model_validate(data)
        self._check_invariants(updated)

        self.vehicles[vehicle_id] = updated
        return updated

    async def retire_vehicle(self, vehicle_id: str) -> Vehicle:
        current = self.vehicles.get(vehicle_id)
        if current is None:
            raise RecordNotFoundError(f"Vehicle not found: {vehicle_id}")
        if not current.is_active:
            return current
        now = utc_now()
        retired = current.model_copy(update={"retired_at": now, "updated_at": now})
        self.vehicles[vehicle_id] = retired
        return retired

    async def list_mot_tests(self, vehicle_id: str) -> list[MotTestRecord]:
        return sorted(self.mot_tests.get(vehicle_id, []), key=lambda test: test.test_date, reverse=True)

    async def count_mot_tests(self, vehicle_id: str) -> int:
        return len(self.mot_tests.get(vehicle_id, []))

    async def add_mot_tests(self, vehicle_id: str, tests: Sequence[MotTestRecord]) -> int:
        if vehicle_id not in self.vehicles:
            raise RecordNotFoundError(f"Vehicle not found: {vehicle_id}")
        now = utc_now()
        stored = self.mot_tests.setdefault(vehicle_id, [])
        for test in tests:
            stored.append(test.model_copy(update={"vehicle_id": vehicle_id, "created_at": test.created_at or now}))
        return len(tests)


def _raise_store_error(action: str, error: Exception) -> None:
    if isinstance(error, StoreError):
        raise error
    if is_unique_violation(error, "registration"):
        raise DuplicateRegistrationError(f"Failed to {action}: {error}")
    raise StoreError(f"Failed to {action}: {error}")


def _vehicle_row(vehicle: Vehicle) -> dict[str, Any]:
    row = vehicle.model_dump(mode="json")
    row["registration_key"] = sanitize_registration(vehicle.registration) or None
    return row


class SupabaseVehicleStore(VehicleStore):
    """Store backed by Supabase tables.

    Uniqueness is enforced by a partial unique index on
    ``vehicles (listing_id, registration_key) WHERE retired_at IS NULL``;
    violations surface as ``DuplicateRegistrationError``.
    """

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        async with SupabaseClient("get_listing") as client:
            try:
                result = client.table("listings").select("*").eq("listing_id", listing_id).execute()
                return Listing.model_validate(result.data[0]) if result.data else None
            except Exception as e:
                _raise_store_error("get listing", e)

    async def save_listing(self, listing: Listing) -> Listing:
        async with SupabaseClient("save_listing") as client:
            try:
                row = listing.model_dump(mode="json", exclude={"created_at"})
                row["updated_at"] = utc_now()
                result = client.table("listings").upsert(row, on_conflict="listing_id").execute()
                if result.data:
                    return Listing.model_validate(result.data[0])
                raise StoreError("Failed to save listing: no data returned")
            except Exception as e:
                _raise_store_error("save listing", e)

    async def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        async with SupabaseClient("get_vehicle") as client:
            try:
                result = client.table("vehicles").select("*").eq("vehicle_id", vehicle_id).execute()
                return Vehicle.model_validate(result.data[0]) if result.data else None
            except Exception as e:
                _raise_store_error("get vehicle", e)

    async def get_active_vehicle_for_listing(self, listing_id: str) -> Optional[Vehicle]:
        async with SupabaseClient("get_active_vehicle_for_listing") as client:
            try:
                result = (
                    client.table("vehicles").select("*")
                    .eq("listing_id", listing_id)
                    .is_("retired_at", "null")
                    .limit(1)
                    .execute()
                )
                return Vehicle.model_validate(result.data[0]) if result.data else None
            except Exception as e:
                _raise_store_error("get vehicle for listing", e)

    async def find_vehicles_by_registration(self, registration: str) -> list[Vehicle]:
        key = sanitize_registration(registration)
        if not key:
            return []
        async with SupabaseClient("find_vehicles_by_registration") as client:
            try:
                result = (
                    client.table("vehicles").select("*")
                    .eq("registration_key", key)
                    .is_("retired_at", "null")
                    .order("created_at")
                    .execute()
                )
                return [Vehicle.model_validate(row) for row in result.data or []]
            except Exception as e:
                _raise_store_error("find vehicles by registration", e)

    async def create_vehicle(self, vehicle: Vehicle) -> Vehicle:
        async with SupabaseClient("create_vehicle") as client:
            try:
                now = utc_now()
                row = _vehicle_row(vehicle.model_copy(update={"created_at": now, "updated_at": now}))
                result = client.table("vehicles").insert(row).execute()
                if result.data:
                    return Vehicle.model_validate(result.data[0])
                raise StoreError("Failed to create vehicle: no data returned")
            except Exception as e:
                _raise_store_error("create vehicle", e)

    async def update_vehicle(self, vehicle_id: str, updates: dict[str, Any]) -> Vehicle:
        async with SupabaseClient("update_vehicle") as client:
            try:
                row = to_row(updates)
                if "registration" in updates:
                    row["registration_key"] = sanitize_registration(updates["registration"]) or None
                row["updated_at"] = utc_now()
                result = client.table("vehicles").update(row).eq("vehicle_id", vehicle_id).execute()
                if result.data:
                    return Vehicle.model_validate(result.data[0])
                raise RecordNotFoundError(f"Vehicle not found: {vehicle_id}")
            except Exception as e:
                _raise_store_error("update vehicle", e)

    async def retire_vehicle(self, vehicle_id: str) -> Vehicle:
        async with SupabaseClient("retire_vehicle") as client:
            try:
                now = utc_now()
                result = (
                    client.table("vehicles")
                    .update({"retired_at": now, "updated_at": now})
                    .eq("vehicle_id", vehicle_id)
                    .execute()
                )
                if result.data:
                    return Vehicle.model_validate(result.data[0])
                raise RecordNotFoundError(f"Vehicle not found: {vehicle_id}")
            except Exception as e:
                _raise_store_error("retire vehicle", e)

    async def list_mot_tests(self, vehicle_id: str) -> list[MotTestRecord]:
        async with SupabaseClient("list_mot_tests") as client:
            try:
                result = (
                    client.table("mot_tests").select("*")
                    .eq("vehicle_id", vehicle_id)
                    .order("test_date", desc=True)
                    .execute()
                )
                return [MotTestRecord.model_validate(row) for row in result.data or []]
            except Exception as e:
                _raise_store_error("list MOT tests", e)

    async def count_mot_tests(self, vehicle_id: str) -> int:
        async with SupabaseClient("count_mot_tests") as client:
            try:
                result = (
                    client.table("mot_tests").select("test_id", count="exact")
                    .eq("vehicle_id", vehicle_id)
                    .execute()
                )
                return result.count if result.count is not None else len(result.data or [])
            except Exception as e:
                _raise_store_error("count MOT tests", e)

    async def add_mot_tests(self, vehicle_id: str, tests: Sequence[MotTestRecord]) -> int:
        if not tests:
            return 0
        async with SupabaseClient("add_mot_tests") as client:
            try:
                rows = []
                for test in tests:
                    row = test.model_dump(mode="json")
                    row["vehicle_id"] = vehicle_id
                    row["test_id"] = row.get("test_id") or generate_id()
                    row["created_at"] = utc_now()
                    rows.append(row)
                result = client.table("mot_tests").insert(rows).execute()
                return len(result.data or [])
            except Exception as e:
                _raise_store_error("add MOT tests", e)
