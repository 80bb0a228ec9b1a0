"""Tests for Listing model."""

import pytest
from pydantic import ValidationError
from motorwise.models.listing import Listing


@pytest.mark.unit
def test_listing_valid():
    """Test valid listing creation with defaults."""
    listing = Listing(
        listing_id="01HVZ8K3M4N5P6Q7R8S9T0V1W2",
        source_id="AT-202403150001",
        source_url="https://www.autotrader.co.uk/car-details/202403150001",
        title="2019 Ford Fiesta",
    )

    assert listing.status == "active"
    assert listing.is_active
    assert listing.image_urls == []
    assert listing.raw_data == {}
    assert listing.specs == []


@pytest.mark.unit
def test_listing_missing_required_fields():
    """Test that source fields are enforced."""
    with pytest.raises(ValidationError):
        Listing(listing_id="01HVZ8K3M4N5P6Q7R8S9T0V1W2")


@pytest.mark.unit
def test_listing_status_validation():
    """Test status only accepts known values."""
    for status in ["active", "sold", "expired"]:
        listing = Listing(listing_id="L1", source_id="S1", source_url="https://x.test", status=status)
        assert listing.is_active == (status == "active")

    with pytest.raises(ValidationError):
        Listing(listing_id="L1", source_id="S1", source_url="https://x.test", status="withdrawn")


@pytest.mark.unit
def test_listing_negative_price_rejected():
    with pytest.raises(ValidationError):
        Listing(listing_id="L1", source_id="S1", source_url="https://x.test", price=-1)


@pytest.mark.unit
def test_listing_specs_from_raw_data():
    """Spec tokens come from raw_data and tolerate a bare string."""
    listing = Listing(
        listing_id="L1",
        source_id="S1",
        source_url="https://x.test",
        raw_data={"specs": ["Diesel", None, "Automatic"]},
    )
    assert listing.specs == ["Diesel", "Automatic"]

    single = listing.model_copy(update={"raw_data": {"specs": "5 doors"}})
    assert single.specs == ["5 doors"]


@pytest.mark.unit
def test_listing_source_name():
    base = {"listing_id": "L1", "source_id": "S1"}
    assert Listing(source_url="https://www.autotrader.co.uk/car-details/1", **base).source_name == "Autotrader"
    assert Listing(source_url="https://www.gumtree.com/p/cars/1", **base).source_name == "Gumtree"
    assert Listing(source_url="https://www.motors.co.uk/car-1", **base).source_name == "Motors"
    assert Listing(source_url="https://example.com/car", **base).source_name == "Unknown"
