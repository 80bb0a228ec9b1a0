"""Listing models."""

from typing import Any, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field


ListingStatus = Literal["active", "sold", "expired"]


class Listing(BaseModel):
    """Scraped vehicle-for-sale advertisement (owned by the scraper)."""
    listing_id: str = Field(..., description="Listing ID (text)")
    source_id: str = Field(..., description="Source-site advert ID, globally unique")
    source_url: str = Field(..., description="Advert URL")
    title: Optional[str] = Field(None, description="Advert title")
    description: Optional[str] = Field(None, description="Free-text description")
    price: Optional[float] = Field(None, ge=0, description="Asking price")
    location: Optional[str] = Field(None, description="Town/city of the advert")
    image_urls: list[str] = Field(default_factory=list, description="Image URLs in advert order")
    post_date: Optional[datetime] = Field(None, description="When the advert was posted")
    status: ListingStatus = Field(default="active", description="Status: active, sold, expired")
    raw_data: dict[str, Any] = Field(default_factory=dict, description="Source-specific raw fields")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def specs(self) -> list[str]:
        """Free-text spec tokens scraped from the advert, if any."""
        specs = self.raw_data.get("specs") or []
        if isinstance(specs, str):
            return [specs]
        return [str(spec) for spec in specs if spec is not None]

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def source_name(self) -> str:
        if "autotrader.co.uk" in self.source_url:
            return "Autotrader"
        if "gumtree.com" in self.source_url:
            return "Gumtree"
        if "motors.co.uk" in self.source_url:
            return "Motors"
        return "Unknown"
