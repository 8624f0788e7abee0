# catalog_tracker/snapshot.py
"""Content hashing, price normalization and history snapshots.

The content hash covers only the fields a seller edits in the storefront
(id, name, description, price, availability, currency). Enrichment output is
not part of it.
"""
import hashlib
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from .errors import InvariantViolation

SNAPSHOT_SCHEMA_VERSION = 1
PRICE_SCALE = Decimal(1000)


def _hash_part(value):
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # the scraper emits integer micro-units; 150000.0 and 150000 are the same price
        return str(int(value))
    return str(value)


def compute_data_hash(listing):
    """SHA-256 hex digest over the mutable identifying fields of ``listing``."""
    if not listing.id:
        raise InvariantViolation("cannot hash a listing without an id")
    base = "|".join([
        listing.id,
        listing.name or "",
        listing.description or "",
        _hash_part(listing.price_raw),
        _hash_part(listing.availability),
        listing.currency or "",
    ])
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def normalize_price(raw, listing_id=None):
    """Convert the platform's micro-currency price to the stored unit.

    ``150000`` becomes ``Decimal("150")``. ``None`` stays ``None``.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise InvariantViolation(f"price {raw!r} is not a number", listing_id)
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise InvariantViolation(f"price {raw!r} is not a number", listing_id) from None
    if not value.is_finite():
        raise InvariantViolation(f"price {raw!r} is not a number", listing_id)
    return value / PRICE_SCALE


class ListingSnapshot(BaseModel):
    """State of a listing at the moment a history row was written."""

    model_config = ConfigDict(protected_namespaces=())

    schema_version: Literal[1] = SNAPSHOT_SCHEMA_VERSION
    id: str
    seller_phone: str
    seller_name: Optional[str] = None
    seller_city: Optional[str] = None
    seller_catalogue_url: Optional[str] = None
    raw_name: Optional[str] = None
    raw_description: Optional[str] = None
    price_raw: Optional[float] = None
    currency: Optional[str] = None
    availability: Optional[str] = None
    product_url: Optional[str] = None
    model_name: Optional[str] = None
    storage_gb: Optional[str] = None
    color: Optional[str] = None
    warranty: Optional[str] = None
    data_hash: Optional[str] = None
    is_active: bool
    first_seen_at: datetime
    last_seen_at: datetime
    last_modified_at: Optional[datetime] = None


def build_snapshot(row, product_url=None, seller_name=None, seller_city=None, seller_catalogue_url=None):
    """Return the JSON-ready snapshot of a ``Listing`` row."""
    snapshot = ListingSnapshot(
        id=row.id,
        seller_phone=row.seller_phone,
        seller_name=seller_name,
        seller_city=seller_city,
        seller_catalogue_url=seller_catalogue_url,
        raw_name=row.raw_name,
        raw_description=row.raw_description,
        price_raw=float(row.price_raw) if row.price_raw is not None else None,
        currency=row.currency,
        availability=row.availability,
        product_url=product_url,
        model_name=row.model_name,
        storage_gb=row.storage_gb,
        color=row.color,
        warranty=row.warranty,
        data_hash=row.data_hash,
        is_active=row.is_active,
        first_seen_at=row.first_seen_at,
        last_seen_at=row.last_seen_at,
        last_modified_at=row.last_modified_at,
    )
    return snapshot.model_dump(mode="json")


def parse_snapshot(payload):
    return ListingSnapshot.model_validate(payload)
