# catalog_tracker/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import ChangeType, RunStatus, TriggerType


class _CamelModel(BaseModel):
    # the scraper dump uses camelCase keys
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        protected_namespaces=(),
    )


class RawListing(_CamelModel):
    id: Optional[str] = None
    seller_phone: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price_raw: Any = None
    price_formatted: Optional[str] = None
    currency: Optional[str] = None
    availability: Any = None
    product_url: Optional[str] = None
    seller_name: Optional[str] = None
    seller_city: Optional[str] = None
    seller_catalogue_url: Optional[str] = None


class EnrichmentResult(_CamelModel):
    id: Optional[str] = None
    model_name: Optional[str] = None
    storage_gb: Optional[str] = None
    color: Optional[str] = None
    warranty: Optional[str] = None
    battery_health: Optional[str] = None


class EnrichedListing(RawListing):
    model_name: Optional[str] = None
    storage_gb: Optional[str] = None
    color: Optional[str] = None
    warranty: Optional[str] = None
    battery_health: Optional[str] = None


class SellerConfig(BaseModel):
    phone: str
    name: Optional[str] = None
    city: Optional[str] = None
    catalogue_url: Optional[str] = None


class SkippedListing(BaseModel):
    listing_id: Optional[str]
    reason: str


class ScanSummary(BaseModel):
    seller_phone: str
    scan_time: datetime
    products_found: int = 0
    products_new: int = 0
    products_updated: int = 0
    products_deactivated: int = 0
    skipped: List[SkippedListing] = Field(default_factory=list)


class ListingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    seller_phone: str
    raw_name: Optional[str] = None
    raw_description: Optional[str] = None
    price_raw: Optional[Decimal] = None
    currency: Optional[str] = None
    availability: Optional[str] = None
    model_name: Optional[str] = None
    storage_gb: Optional[str] = None
    color: Optional[str] = None
    warranty: Optional[str] = None
    is_active: bool
    first_seen_at: datetime
    last_seen_at: datetime
    last_modified_at: Optional[datetime] = None


class ListingHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    listing_id: str
    change_type: ChangeType
    snapshot: dict
    recorded_at: datetime


class SellerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    phone_number: str
    name: Optional[str] = None
    city: Optional[str] = None
    catalogue_url: Optional[str] = None
    is_active: bool


class ScanLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    seller_phone: str
    scan_time: datetime
    products_found: int
    products_new: int
    products_updated: int


class ScraperRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: RunStatus
    trigger_type: TriggerType
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    sellers_processed: int = 0
    products_scraped: int = 0


class SchedulerConfigIn(BaseModel):
    enabled: bool
    cron_expr: str = Field(..., min_length=1)


class SchedulerConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    cron_expr: str
