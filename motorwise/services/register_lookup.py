"""Vehicle register (DVLA Vehicle Enquiry) client."""

from datetime import date
from typing import Any, Optional

import httpx

from motorwise.models.vehicle import EARLIEST_YEAR, latest_model_year
from motorwise.services.synthetic_data import synthetic_register_payload
from motorwise.utils.config import PipelineConfig
from motorwise.utils.errors import EnrichmentError
from motorwise.utils.logging import get_structured_logger, timed
from motorwise.utils.parsing import parse_date, titleize, to_int
from motorwise.utils.registration import sanitize_registration

logger = get_structured_logger(__name__)


def map_register_payload(data: dict[str, Any], today: Optional[date] = None) -> dict[str, Any]:
    """Map a register response onto Vehicle fields.

    Transmission is deliberately absent: the register does not expose it
    reliably. The untouched payload is kept under ``register_data``.
    """
    if not data:
        return {}

    mapped = {
        "make": titleize(data.get("make")),
        "model": titleize(data.get("model")),
        "color": titleize(data.get("colour")),
        "fuel_type": titleize(data.get("fuelType")),
        "year": to_int(data.get("yearOfManufacture")),
        "engine_size": to_int(data.get("engineCapacity")),
        "co2_emissions": to_int(data.get("co2Emissions")),
        "tax_status": data.get("taxStatus"),
        "tax_due_date": parse_date(data.get("taxDueDate")),
        "mot_status": data.get("motStatus"),
        "mot_expiry_date": parse_date(data.get("motExpiryDate")),
        "first_registration_date": parse_date(data.get("monthOfFirstRegistration")),
    }
    result = {key: value for key, value in mapped.items() if value is not None}
    year = result.get("year")
    if year is not None and not EARLIEST_YEAR <= year <= latest_model_year(today):
        logger.warning("Register year out of range, dropped", year=year)
        del result["year"]
    result["register_data"] = data
    return result


class RegisterLookupClient:
    """Looks up authoritative vehicle details by registration.

    Never raises: transport errors, non-200 responses and malformed bodies
    all come back as an empty dict. Offline (no credential, or outside
    production unless overridden) it serves deterministic synthetic data.
    """

    def __init__(self, config: PipelineConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    @property
    def offline(self) -> bool:
        return self.config.register_offline

    async def lookup(self, registration: Optional[str], today: Optional[date] = None) -> dict[str, Any]:
        """Return mapped register fields for ``registration``, or {} when there is no data."""
        clean = sanitize_registration(registration)
        if not clean:
            return {}

        if self.offline:
            logger.info(
                "Using synthetic register data",
                registration=clean,
            )
            return map_register_payload(synthetic_register_payload(clean, today=today), today)

        data = await self._fetch(clean)
        if not isinstance(data, dict) or not data:
            return {}
        return map_register_payload(data, today)

    @timed("register_lookup_request", logger=logger)
    async def _fetch(self, clean_registration: str) -> Optional[Any]:
        logger.info("Fetching register data", registration=clean_registration)

        try:
            async with httpx.AsyncClient(
                timeout=self.config.register_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.config.register_api_url,
                    headers={
                        "Content-Type": "application/json",
                        "x-api-key": self.config.register_api_key or "",
                    },
                    json={"registrationNumber": clean_registration},
                )
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise EnrichmentError(f"register response is a JSON {type(data).__name__}, expected an object")
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.warning(
                "Register service unavailable",
                registration=clean_registration,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        except httpx.HTTPStatusError as e:
            logger.error(
                "Register service returned an error",
                registration=clean_registration,
                status_code=e.response.status_code,
                error=_error_message(e.response),
            )
            return None
        except EnrichmentError as e:
            logger.warning("Unusable register response", registration=clean_registration, error=str(e))
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Malformed register response",
                registration=clean_registration,
                error=str(e),
            )
            return None
        except Exception as e:
            logger.error(
                "Unexpected register lookup failure",
                exc_info=True,
                registration=clean_registration,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.info("Register data retrieved", registration=clean_registration)
        return data


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP Error: {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list) and isinstance(errors[0], dict):
        return str(errors[0].get("detail") or errors[0].get("title") or errors[0])
    return f"HTTP Error: {response.status_code}"
