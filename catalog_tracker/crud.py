# catalog_tracker/crud.py
"""Query and persistence helpers shared by the reconciler, coordinator and API.

Helpers that write do not commit unless noted; the caller owns the
transaction boundary.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import and_

from .classifier import StoredListing
from .config import DEFAULT_CRON_EXPR
from .models import Listing, ListingHistory, ScanLog, SchedulerConfig, ScraperRun, Seller, RunStatus


def upsert_seller(db, phone_number: str, name=None, city=None, catalogue_url=None) -> Seller:
    """Create the seller or overwrite the fields for which a value is given.

    A seller that yields listings is active, so ``is_active`` is forced on.
    """
    seller = db.get(Seller, phone_number)
    if seller is None:
        seller = Seller(
            phone_number=phone_number,
            name=name,
            city=city,
            catalogue_url=catalogue_url,
            is_active=True,
        )
        db.add(seller)
        return seller
    if name is not None:
        seller.name = name
    if city is not None:
        seller.city = city
    if catalogue_url is not None:
        seller.catalogue_url = catalogue_url
    seller.is_active = True
    return seller


def load_listings_by_ids(db, ids: Iterable[str]) -> Dict[str, StoredListing]:
    ids = list(ids)
    if not ids:
        return {}
    rows = db.query(Listing).filter(Listing.id.in_(ids)).all()
    return {row.id: StoredListing.from_row(row) for row in rows}


def get_listing(db, listing_id: str):
    return db.get(Listing, listing_id)


def list_listings(db, skip: int = 0, limit: int = 50, filters: Dict = None):
    q = db.query(Listing)
    if filters:
        conds = []
        if filters.get("seller_phone"):
            conds.append(Listing.seller_phone == filters["seller_phone"])
        if filters.get("is_active") is not None:
            conds.append(Listing.is_active == filters["is_active"])
        if filters.get("model_name"):
            conds.append(Listing.model_name.ilike(f"%{filters['model_name']}%"))
        if filters.get("min_price") is not None:
            conds.append(Listing.price_raw >= filters["min_price"])
        if filters.get("max_price") is not None:
            conds.append(Listing.price_raw <= filters["max_price"])
        if conds:
            q = q.filter(and_(*conds))
    total = q.count()
    items = q.order_by(Listing.last_seen_at.desc(), Listing.id).offset(skip).limit(limit).all()
    return {"total": total, "items": items}


def list_listing_history(db, listing_id: str):
    return (
        db.query(ListingHistory)
        .filter(ListingHistory.listing_id == listing_id)
        .order_by(ListingHistory.recorded_at, ListingHistory.id)
        .all()
    )


def list_sellers(db):
    return db.query(Seller).order_by(Seller.phone_number).all()


def list_scan_logs(db, seller_phone: Optional[str] = None, skip: int = 0, limit: int = 50):
    q = db.query(ScanLog)
    if seller_phone:
        q = q.filter(ScanLog.seller_phone == seller_phone)
    return q.order_by(ScanLog.scan_time.desc(), ScanLog.id.desc()).offset(skip).limit(limit).all()


def create_run(db, trigger_type) -> ScraperRun:
    run = ScraperRun(status=RunStatus.RUNNING, trigger_type=trigger_type, started_at=datetime.now(timezone.utc))
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def finish_run(db, run_id: int, updates: Dict[str, Any]):
    run = db.get(ScraperRun, run_id)
    if run is None:
        return None
    for k, v in updates.items():
        setattr(run, k, v)
    run.completed_at = datetime.now(timezone.utc)
    db.commit()
    return run


def list_runs(db, limit: int = 50):
    return db.query(ScraperRun).order_by(ScraperRun.id.desc()).limit(limit).all()


def get_scheduler_config(db, create=False):
    config = db.get(SchedulerConfig, 1)
    if config is None and create:
        config = SchedulerConfig(id=1, enabled=False, cron_expr=DEFAULT_CRON_EXPR)
        db.add(config)
        db.commit()
    return config


def update_scheduler_config(db, enabled: bool, cron_expr: str):
    config = get_scheduler_config(db)
    if config is None:
        config = SchedulerConfig(id=1)
        db.add(config)
    config.enabled = enabled
    config.cron_expr = cron_expr
    db.commit()
    db.refresh(config)
    return config
