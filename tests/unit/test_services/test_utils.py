"""Tests for registration, parsing, ID and logging helpers."""

import json
import logging
import pytest
from datetime import date, datetime
from motorwise.utils.ids import generate_id
from motorwise.utils.logging import (
    correlation_context,
    get_correlation_id,
    get_structured_logger,
    log_timing,
    mask_registration,
    mask_sensitive_data,
    timed,
)
from motorwise.utils.logging_config import CorrelationIdFilter, LoggingConfig
from motorwise.utils.parsing import parse_date, titleize, to_int
from motorwise.utils.registration import (
    format_registration,
    is_partial_registration,
    registration_seed,
    sanitize_registration,
)


@pytest.mark.unit
def test_sanitize_registration():
    assert sanitize_registration(" ab12-cde ") == "AB12CDE"
    assert sanitize_registration(None) == ""
    assert sanitize_registration("AB1? C?E") == "AB1CE"


@pytest.mark.unit
def test_format_registration():
    assert format_registration("ab12cde") == "AB12 CDE"
    assert format_registration("AB12  CDE") == "AB12 CDE"
    assert format_registration("a123 bcd") == "A123 BCD"
    assert format_registration("  ") is None


@pytest.mark.unit
def test_registration_seed_ignores_formatting():
    assert registration_seed("AB12CDE") == registration_seed("ab12 cde")
    assert registration_seed("AB") == ord("A") + ord("B")


@pytest.mark.unit
def test_is_partial_registration():
    assert is_partial_registration("AB1? C?E")
    assert not is_partial_registration("AB12 CDE")
    assert not is_partial_registration(None)


@pytest.mark.unit
def test_parse_date_formats():
    assert parse_date("2026-06-30") == date(2026, 6, 30)
    assert parse_date("2025.06.01 10:15:00") == date(2025, 6, 1)
    assert parse_date("2026.05.31") == date(2026, 5, 31)
    assert parse_date("2023-05-01T10:00:00.000Z") == date(2023, 5, 1)
    assert parse_date("30/06/2026") == date(2026, 6, 30)
    assert parse_date("2019-07") == date(2019, 7, 1)
    assert parse_date(datetime(2024, 1, 2, 3, 4)) == date(2024, 1, 2)
    assert parse_date("soon") is None
    assert parse_date("") is None


@pytest.mark.unit
def test_to_int():
    assert to_int("45,000") == 45000
    assert to_int(" 1598 ") == 1598
    assert to_int(1598.7) == 1598
    assert to_int("1598.0") == 1598
    assert to_int("unknown") is None
    assert to_int(True) is None


@pytest.mark.unit
def test_titleize():
    assert titleize("FORD") == "Ford"
    assert titleize("HEAVY OIL") == "Heavy Oil"
    assert titleize("BMW") == "BMW"
    assert titleize("CR-V") == "CR-V"
    assert titleize("3 SERIES") == "3 Series"
    assert titleize("MERCEDES-BENZ") == "Mercedes-Benz"
    assert titleize("x-trail") == "X-Trail"
    assert titleize("") is None


@pytest.mark.unit
def test_generate_id_is_ulid():
    first, second = generate_id(), generate_id()

    assert len(first) == 26
    assert first != second


@pytest.mark.unit
def test_mask_registration():
    assert mask_registration("AB12CDE") == "AB1****"
    assert mask_registration("AB12 CDE") == "AB1****"
    assert mask_registration("AB") == "***"
    assert mask_registration(None) is None


@pytest.mark.unit
def test_mask_sensitive_data():
    masked = mask_sensitive_data("key sk-abcdefghijklmnopqrstuvwx for owner@example.com")

    assert "sk-abcdefghijklmnopqrstuvwx" not in masked
    assert "owner@example.com" not in masked


@pytest.mark.unit
def test_correlation_context():
    assert get_correlation_id() is None

    with correlation_context("job_123") as correlation_id:
        assert correlation_id == "job_123"
        assert get_correlation_id() == "job_123"

    assert get_correlation_id() is None


@pytest.mark.unit
def test_structured_logger_adds_fields(caplog):
    logger = get_structured_logger("motorwise.tests")

    with caplog.at_level(logging.INFO, logger="motorwise.tests"):
        with correlation_context("job_456"):
            logger.info("Stage finished", stage="mot_history", vehicle_id="V1")

    record = caplog.records[-1]
    assert record.getMessage() == "Stage finished"
    assert record.stage == "mot_history"
    assert record.vehicle_id == "V1"
    assert record.correlation_id == "job_456"


@pytest.mark.unit
def test_log_timing(caplog):
    logger = get_structured_logger("motorwise.tests")

    with caplog.at_level(logging.INFO, logger="motorwise.tests"):
        with log_timing("extract_and_merge", logger=logger, listing_id="L1"):
            pass

    completed = [record for record in caplog.records if record.getMessage() == "Completed extract_and_merge"]
    assert completed
    assert completed[0].listing_id == "L1"
    assert completed[0].processing_time_ms >= 0


@pytest.mark.unit
def test_structured_logger_masks_registration_fields(caplog):
    logger = get_structured_logger("motorwise.tests")

    with caplog.at_level(logging.INFO, logger="motorwise.tests"):
        logger.info("Plate recognised", registration="AB12 CDE", confidence=0.9)

    record = caplog.records[-1]
    assert record.registration == "AB1****"
    assert record.confidence == 0.9


@pytest.mark.unit
def test_correlation_filter_stamps_plain_loggers():
    record = logging.LogRecord("motorwise.api", logging.INFO, __file__, 1, "Stage job failed", None, None)

    with correlation_context("job_789"):
        assert CorrelationIdFilter().filter(record)

    assert record.correlation_id == "job_789"


@pytest.mark.unit
def test_json_formatter_carries_service_and_correlation(monkeypatch):
    monkeypatch.setattr(LoggingConfig, "LOG_FORMAT", "json")
    record = logging.LogRecord("motorwise.api", logging.WARNING, __file__, 1, "Invalid listing record", None, None)
    record.correlation_id = "evt_1"

    payload = json.loads(LoggingConfig.build_formatter().format(record))

    assert payload["message"] == "Invalid listing record"
    assert payload["levelname"] == "WARNING"
    assert payload["service"] == "motorwise-backend"
    assert payload["correlation_id"] == "evt_1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timed_wraps_sync_and_async(caplog):
    logger = get_structured_logger("motorwise.tests")

    @timed("parse_listing", logger=logger)
    def parse(value):
        return value * 2

    @timed(logger=logger)
    async def fetch_register(registration):
        return registration.upper()

    with caplog.at_level(logging.INFO, logger="motorwise.tests"):
        assert parse(21) == 42
        assert await fetch_register("ab12cde") == "AB12CDE"

    operations = [record.operation for record in caplog.records if record.getMessage().startswith("Completed")]
    assert operations == ["parse_listing", "fetch_register"]
    assert fetch_register.__name__ == "fetch_register"
