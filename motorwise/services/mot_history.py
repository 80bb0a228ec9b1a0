"""MOT history client."""

from datetime import date
from typing import Any, Callable, Optional

import httpx

from motorwise.models.mot_test import MotTestRecord
from motorwise.services.synthetic_data import synthetic_history_payload
from motorwise.utils.config import PipelineConfig
from motorwise.utils.errors import EnrichmentError
from motorwise.utils.ids import generate_id
from motorwise.utils.logging import get_structured_logger, timed
from motorwise.utils.parsing import parse_date, to_int
from motorwise.utils.registration import sanitize_registration

logger = get_structured_logger(__name__)

ADVISORY_TYPES = {"ADVISORY", "MINOR"}
FAILURE_TYPES = {"FAIL", "MAJOR", "DANGEROUS", "PRS"}


def _partition_comments(comments: Any) -> tuple[tuple[str, ...], tuple[str, ...]]:
    advisories: list[str] = []
    failures: list[str] = []
    for comment in comments or []:
        if not isinstance(comment, dict):
            continue
        text = (comment.get("text") or "").strip()
        kind = (comment.get("type") or "").upper()
        if not text:
            continue
        if kind in ADVISORY_TYPES:
            advisories.append(text)
        elif kind in FAILURE_TYPES:
            failures.append(text)
    return tuple(advisories), tuple(failures)


def map_mot_test(raw: dict[str, Any], vehicle_id: str, id_factory: Callable[[], str] = generate_id) -> Optional[MotTestRecord]:
    """Map one history-service test onto a MotTestRecord; None if it has no usable date."""
    test_date = parse_date(raw.get("completedDate"))
    if test_date is None:
        return None

    comments = raw.get("rfrAndComments")
    if comments is None:
        comments = raw.get("defects")
    advisories, failures = _partition_comments(comments)

    odometer = to_int(raw.get("odometerValue"))
    if odometer is not None and odometer < 0:
        odometer = None

    return MotTestRecord(
        test_id=id_factory(),
        vehicle_id=vehicle_id,
        test_date=test_date,
        expiry_date=parse_date(raw.get("expiryDate")),
        odometer=odometer,
        result="PASS" if raw.get("testResult") == "PASSED" else "FAIL",
        advisory_notes=advisories,
        failure_reasons=failures,
    )


def map_history_payload(
    payload: Any,
    vehicle_id: str,
    id_factory: Callable[[], str] = generate_id,
) -> list[MotTestRecord]:
    """Map a history response (one vehicle object or a list of them), newest test first."""
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        return []

    records = []
    for vehicle in payload:
        if not isinstance(vehicle, dict):
            continue
        for raw_test in vehicle.get("motTests") or []:
            if not isinstance(raw_test, dict):
                continue
            record = map_mot_test(raw_test, vehicle_id, id_factory)
            if record is not None:
                records.append(record)

    records.sort(key=lambda record: record.test_date, reverse=True)
    return records


class MotHistoryClient:
    """Retrieves MOT test history by registration.

    Same contract as the register client: never raises, returns [] when
    there is no data, and serves deterministic synthetic history offline.
    """

    def __init__(self, config: PipelineConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    @property
    def offline(self) -> bool:
        return self.config.mot_history_offline

    async def fetch_history(
        self,
        registration: Optional[str],
        vehicle_id: str,
        today: Optional[date] = None,
    ) -> list[MotTestRecord]:
        """Return the vehicle's MOT tests, newest first."""
        clean = sanitize_registration(registration)
        if not clean:
            return []

        if self.offline:
            logger.info("Using synthetic MOT history", registration=clean)
            return map_history_payload(synthetic_history_payload(clean, today=today), vehicle_id)

        payload = await self._fetch(clean)
        if payload is None:
            return []
        return map_history_payload(payload, vehicle_id)

    @timed("mot_history_request", logger=logger)
    async def _fetch(self, clean_registration: str) -> Optional[Any]:
        logger.info("Fetching MOT history", registration=clean_registration)

        try:
            async with httpx.AsyncClient(
                timeout=self.config.mot_history_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    self.config.mot_history_api_url,
                    params={"registration": clean_registration},
                    headers={
                        "Accept": "application/json+v6",
                        "x-api-key": self.config.mot_history_api_key or "",
                    },
                )
                if response.status_code == 404:
                    logger.info("No MOT history on record", registration=clean_registration)
                    return None
                response.raise_for_status()
                payload = response.json()
                if not isinstance(payload, (list, dict)):
                    raise EnrichmentError(f"MOT history response is a JSON {type(payload).__name__}")
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.warning(
                "MOT history service unavailable",
                registration=clean_registration,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        except httpx.HTTPStatusError as e:
            logger.error(
                "MOT history service returned an error",
                registration=clean_registration,
                status_code=e.response.status_code,
            )
            return None
        except EnrichmentError as e:
            logger.warning("Unusable MOT history response", registration=clean_registration, error=str(e))
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Malformed MOT history response", registration=clean_registration, error=str(e))
            return None
        except Exception as e:
            logger.error(
                "Unexpected MOT history failure",
                exc_info=True,
                registration=clean_registration,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.info("MOT history retrieved", registration=clean_registration)
        return payload
