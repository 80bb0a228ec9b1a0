"""Decides which vehicle a listing's attributes and registration belong to.

``decide_merge`` is a pure function returning one of three actions:

- ATTACH: update an existing vehicle in place (the listing's own vehicle,
  or an unattached vehicle with this registration);
- CREATE: make a new vehicle for the listing;
- FORK: make a new vehicle for the listing carrying the registration,
  leaving any other listing's vehicle untouched. If the listing's current
  vehicle was matched to a different registration it is retired, not merged.

``RegistryMergeEngine.merge`` executes the decision through the store.
"""

from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from motorwise.models.listing import Listing
from motorwise.models.vehicle import RegistrationSource, Vehicle
from motorwise.services.vehicle_store import VehicleStore
from motorwise.utils.ids import generate_id
from motorwise.utils.logging import get_structured_logger
from motorwise.utils.registration import format_registration, is_partial_registration, sanitize_registration

logger = get_structured_logger(__name__)

LISTING_TEXT_CONFIDENCE = 0.6

# Fields the merge may fill from heuristic extraction
HEURISTIC_FIELDS = (
    "make", "model", "year", "fuel_type", "transmission", "engine_size", "color",
    "body_type", "doors", "mileage", "previous_owners", "service_history", "vin",
)


class MergeAction(str, Enum):
    ATTACH = "attach"
    CREATE = "create"
    FORK = "fork"


class RegistrationEvidence(BaseModel):
    """A registration and where it was read from."""
    registration: str
    source: RegistrationSource
    confidence: float = Field(..., ge=0.0, le=1.0)
    image_url: Optional[str] = None

    @property
    def key(self) -> str:
        return sanitize_registration(self.registration)

    @property
    def is_partial(self) -> bool:
        return is_partial_registration(self.registration)


class MergeDecision(BaseModel):
    action: MergeAction
    vehicle: Optional[Vehicle] = Field(None, description="Vehicle to update (ATTACH)")
    retire: Optional[Vehicle] = Field(None, description="Listing's current vehicle to retire (FORK)")
    shared_with: Optional[Vehicle] = Field(None, description="Other listing's vehicle holding the registration (FORK)")
    use_evidence: bool = True


class MergeOutcome(BaseModel):
    action: MergeAction
    vehicle: Vehicle
    retired_vehicle_id: Optional[str] = None
    registration_changed: bool = False


def evidence_rank(registration: Optional[str], source: Optional[RegistrationSource]) -> int:
    """Trust order for registrations: clean vision read > listing text > partial read."""
    if not registration:
        return -1
    if is_partial_registration(registration):
        return 0
    if source == RegistrationSource.AI_VISION:
        return 2
    return 1


def decide_merge(
    listing_id: str,
    evidence: Optional[RegistrationEvidence],
    current: Optional[Vehicle],
    registered: Sequence[Vehicle],
) -> MergeDecision:
    """Pick ATTACH, CREATE or FORK.

    ``current`` is the listing's active vehicle, ``registered`` the active
    vehicles already holding the evidence's registration.
    """
    if evidence is not None and not evidence.key:
        evidence = None

    others = [vehicle for vehicle in registered if vehicle.listing_id not in (None, listing_id)]

    if current is not None:
        if evidence is None or not current.registration:
            return MergeDecision(action=MergeAction.ATTACH, vehicle=current)
        if sanitize_registration(current.registration) == evidence.key:
            return MergeDecision(action=MergeAction.ATTACH, vehicle=current)
        if evidence_rank(evidence.registration, evidence.source) < evidence_rank(
            current.registration, current.registration_source
        ):
            # Weaker reading than what the vehicle already holds
            return MergeDecision(action=MergeAction.ATTACH, vehicle=current, use_evidence=False)
        return MergeDecision(
            action=MergeAction.FORK,
            retire=current,
            shared_with=others[0] if others else None,
        )

    if evidence is not None:
        for vehicle in registered:
            if vehicle.listing_id is None or vehicle.listing_id == listing_id:
                return MergeDecision(action=MergeAction.ATTACH, vehicle=vehicle)
        if others:
            return MergeDecision(action=MergeAction.FORK, shared_with=others[0])

    return MergeDecision(action=MergeAction.CREATE)


def fill_updates(vehicle: Vehicle, attributes: dict[str, Any]) -> dict[str, Any]:
    """Updates that fill empty heuristic fields; filled fields are never replaced."""
    updates = {}
    for field in HEURISTIC_FIELDS:
        value = attributes.get(field)
        if value is None or value == "":
            continue
        if getattr(vehicle, field) in (None, ""):
            updates[field] = value
    return updates


def evidence_updates(vehicle: Optional[Vehicle], evidence: RegistrationEvidence) -> dict[str, Any]:
    """Registration and provenance fields to write for ``evidence``."""
    if vehicle is not None and vehicle.registration:
        same = sanitize_registration(vehicle.registration) == evidence.key
        stronger = evidence_rank(evidence.registration, evidence.source) > evidence_rank(
            vehicle.registration, vehicle.registration_source
        )
        if not same or not stronger:
            if same and evidence.source == vehicle.registration_source and evidence.image_url:
                return {"registration_image_url": evidence.image_url}
            return {}

    registration = evidence.registration if evidence.is_partial else format_registration(evidence.registration)
    return {
        "registration": registration,
        "registration_source": evidence.source,
        "registration_confidence": evidence.confidence,
        "registration_image_url": evidence.image_url,
    }


class RegistryMergeEngine:
    """Executes merge decisions against a ``VehicleStore``."""

    def __init__(self, store: VehicleStore):
        self.store = store

    async def merge(
        self,
        listing: Listing,
        attributes: Optional[dict[str, Any]] = None,
        evidence: Optional[RegistrationEvidence] = None,
    ) -> MergeOutcome:
        """Attach, create or fork the vehicle for ``listing``.

        Raises DuplicateRegistrationError if the store rejects the write.
        """
        attributes = attributes or {}
        current = await self.store.get_active_vehicle_for_listing(listing.listing_id)
        registered = await self.store.find_vehicles_by_registration(evidence.registration) if evidence else []

        decision = decide_merge(listing.listing_id, evidence, current, registered)
        logger.info(
            "Merge decision",
            listing_id=listing.listing_id,
            action=decision.action.value,
            registration=evidence.registration if evidence else None,
            registration_source=evidence.source.value if evidence else None,
        )

        if decision.action == MergeAction.ATTACH:
            return await self._attach(listing, decision, attributes, evidence)

        retired_id = None
        if decision.action == MergeAction.FORK and decision.retire is not None:
            retired = await self.store.retire_vehicle(decision.retire.vehicle_id)
            retired_id = retired.vehicle_id
            logger.info(
                "Retired vehicle replaced by fork",
                listing_id=listing.listing_id,
                vehicle_id=retired_id,
            )

        fields: dict[str, Any] = {field: attributes[field] for field in HEURISTIC_FIELDS if attributes.get(field) not in (None, "")}
        if evidence is not None:
            fields.update(evidence_updates(None, evidence))
        if listing.price is not None:
            fields["price"] = listing.price

        vehicle = await self.store.create_vehicle(Vehicle(
            vehicle_id=generate_id(),
            listing_id=listing.listing_id,
            **fields,
        ))

        if decision.action == MergeAction.FORK:
            logger.info(
                "Forked vehicle for listing",
                listing_id=listing.listing_id,
                vehicle_id=vehicle.vehicle_id,
                shared_with_vehicle_id=decision.shared_with.vehicle_id if decision.shared_with else None,
            )
        return MergeOutcome(
            action=decision.action,
            vehicle=vehicle,
            retired_vehicle_id=retired_id,
            registration_changed=bool(vehicle.registration),
        )

    async def _attach(
        self,
        listing: Listing,
        decision: MergeDecision,
        attributes: dict[str, Any],
        evidence: Optional[RegistrationEvidence],
    ) -> MergeOutcome:
        vehicle = decision.vehicle
        updates = fill_updates(vehicle, attributes)

        if evidence is not None and decision.use_evidence:
            updates.update(evidence_updates(vehicle, evidence))
        if vehicle.listing_id is None:
            updates["listing_id"] = listing.listing_id
        if vehicle.price is None and listing.price is not None:
            updates["price"] = listing.price

        registration_changed = (
            "registration" in updates
            and sanitize_registration(updates["registration"]) != sanitize_registration(vehicle.registration)
        )
        if updates:
            vehicle = await self.store.update_vehicle(vehicle.vehicle_id, updates)

        return MergeOutcome(
            action=MergeAction.ATTACH,
            vehicle=vehicle,
            registration_changed=registration_changed,
        )
