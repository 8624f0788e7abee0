# catalog_tracker/reconciler.py
"""Apply one seller's scan to the catalog store.

The run is atomic per batch, not as a whole: a failed batch rolls back on its
own while earlier batches stay committed. Re-running with the same input
converges because classification always starts from the stored state.
"""
import time
from typing import Callable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import crud
from .classifier import classify_changes
from .config import DB_BATCH_SIZE
from .errors import InvariantViolation, RunCancelled, StoreTransactionFailure
from .models import ChangeType, Listing, ListingHistory, ScanLog
from .schemas import EnrichedListing, ScanSummary, SellerConfig, SkippedListing
from .snapshot import build_snapshot, normalize_price
from .utils import chunk, get_logger

logger = get_logger(__name__)

BATCH_TIMEOUT_S = 60
DEACTIVATION_TIMEOUT_S = 30


def _present(value):
    if value and value.strip():
        return value.strip()
    return None


def _first_present(values):
    return next(filter(None, map(_present, values)), None)


def _seller_details(seller_config, listings):
    config = seller_config or SellerConfig(phone="")
    return (
        config.name or _first_present(l.seller_name for l in listings),
        config.city or _first_present(l.seller_city for l in listings),
        config.catalogue_url or _first_present(l.seller_catalogue_url for l in listings),
    )


def _apply_timeouts(db, seconds):
    # SET LOCAL only lasts until the end of the current transaction
    if db.get_bind().dialect.name != "postgresql":
        return
    ms = int(seconds * 1000)
    db.execute(text(f"SET LOCAL statement_timeout = {ms}"))
    db.execute(text(f"SET LOCAL idle_in_transaction_session_timeout = {ms}"))


def _check_deadline(deadline, stage):
    if time.monotonic() >= deadline:
        raise TimeoutError(f"{stage} ran past its time budget")


def _prepare(seller_phone, listings, summary):
    """Drop malformed and duplicate listings, normalizing prices on the way.

    Returns the listings to classify, their normalized prices, every id
    observed in the scan (skipped ones included, so they are not deactivated)
    and the ids skipped only because of their price.
    """
    valid, prices, seen, price_skipped = [], {}, set(), []
    for listing in listings:
        if not listing.id:
            summary.skipped.append(SkippedListing(listing_id=None, reason="missing listing id"))
            logger.warning("Skipping listing without id for seller %s", seller_phone)
            continue
        if listing.id in seen:
            logger.warning("Duplicate listing %s in scan for seller %s; keeping first", listing.id, seller_phone)
            continue
        seen.add(listing.id)
        if listing.seller_phone and listing.seller_phone != seller_phone:
            summary.skipped.append(SkippedListing(
                listing_id=listing.id, reason=f"belongs to seller {listing.seller_phone}"))
            logger.warning("Skipping listing %s: seller %s != %s", listing.id, listing.seller_phone, seller_phone)
            continue
        try:
            prices[listing.id] = normalize_price(listing.price_raw, listing.id)
        except InvariantViolation as e:
            # the stored content is kept; _touch_price_skipped still marks it seen
            summary.skipped.append(SkippedListing(listing_id=listing.id, reason=str(e)))
            price_skipped.append(listing.id)
            logger.warning("Skipping listing %s: %s", listing.id, e)
            continue
        valid.append(listing)
    return valid, prices, seen, price_skipped


def _history(row, change_type, scan_time, seller_details, product_url=None):
    seller_name, seller_city, seller_catalogue_url = seller_details
    snapshot = build_snapshot(
        row,
        product_url=product_url,
        seller_name=seller_name,
        seller_city=seller_city,
        seller_catalogue_url=seller_catalogue_url,
    )
    return ListingHistory(listing=row, change_type=change_type, snapshot=snapshot, recorded_at=scan_time)


def _apply_batch(db, batch, seller_phone, scan_time, prices, seller_details, deadline, stage):
    seller_name, seller_city, seller_catalogue_url = seller_details
    ids = [c.listing.id for c in batch]
    rows = {row.id: row for row in db.query(Listing).filter(Listing.id.in_(ids)).all()}
    for change in batch:
        _check_deadline(deadline, stage)
        listing = change.listing
        row = rows.get(listing.id)

        if change.change_type == ChangeType.UNCHANGED:
            if row is None:
                logger.warning("Listing %s disappeared between read and write; skipping", listing.id)
                continue
            row.last_seen_at = scan_time
            row.is_active = True
            continue

        if row is None:
            row = Listing(id=listing.id, first_seen_at=scan_time, last_modified_at=scan_time)
            db.add(row)
            rows[listing.id] = row
        elif change.hash_changed:
            row.last_modified_at = scan_time

        row.seller_phone = seller_phone
        row.raw_name = listing.name
        row.raw_description = listing.description
        row.price_raw = prices[listing.id]
        row.currency = listing.currency
        row.availability = str(listing.availability) if listing.availability is not None else None
        row.model_name = listing.model_name
        row.storage_gb = listing.storage_gb
        row.color = listing.color
        row.warranty = listing.warranty
        row.data_hash = change.data_hash
        row.is_active = True
        row.last_seen_at = scan_time

        listing_details = (
            _present(listing.seller_name) or seller_name,
            _present(listing.seller_city) or seller_city,
            _present(listing.seller_catalogue_url) or seller_catalogue_url,
        )
        db.add(_history(row, change.change_type, scan_time, listing_details, product_url=listing.product_url))


def _touch_price_skipped(db, seller_phone, ids, scan_time, seller_details):
    """Mark stored listings skipped for their price as seen; returns how many came back."""
    if not ids:
        return 0
    rows = db.query(Listing).filter(Listing.id.in_(ids), Listing.seller_phone == seller_phone).all()
    reactivated = 0
    for row in rows:
        row.last_seen_at = scan_time
        if row.is_active:
            continue
        row.is_active = True
        db.add(_history(row, ChangeType.REACTIVATED, scan_time, seller_details))
        reactivated += 1
    return reactivated


def _deactivate_missing(db, seller_phone, seen_ids, scan_time, seller_details, deadline):
    q = db.query(Listing).filter(Listing.seller_phone == seller_phone, Listing.is_active.is_(True))
    if seen_ids:
        q = q.filter(Listing.id.notin_(seen_ids))
    stale = q.order_by(Listing.id).all()
    for row in stale:
        _check_deadline(deadline, "deactivation")
        row.is_active = False
        row.last_modified_at = scan_time
        db.add(_history(row, ChangeType.DEACTIVATED, scan_time, seller_details))
    return len(stale)


def reconcile_seller(
    session_factory,
    seller_phone: str,
    listings: List[EnrichedListing],
    scan_time,
    seller_config: Optional[SellerConfig] = None,
    batch_size: int = DB_BATCH_SIZE,
    should_stop: Optional[Callable[[], bool]] = None,
    batch_timeout: float = BATCH_TIMEOUT_S,
) -> ScanSummary:
    """Merge one seller's freshly scanned listings into the store.

    Each step commits on its own: the seller upsert (with the lookup of
    existing listings), every batch of ``batch_size`` classified listings, and
    finally the deactivation of listings absent from the scan together with
    the scan log row. A batch still being applied after ``batch_timeout``
    seconds is rolled back.

    Raises ``StoreTransactionFailure`` when a phase is rolled back and
    ``RunCancelled`` when ``should_stop`` returns true between batches.
    """
    summary = ScanSummary(seller_phone=seller_phone, scan_time=scan_time, products_found=len(listings))
    valid, prices, seen_ids, price_skipped = _prepare(seller_phone, listings, summary)
    seller_details = _seller_details(seller_config, valid)

    try:
        with session_factory() as db, db.begin():
            crud.upsert_seller(db, seller_phone, *seller_details)
            existing = crud.load_listings_by_ids(db, [l.id for l in valid])
    except SQLAlchemyError as e:
        logger.error("Seller upsert failed for %s: %s", seller_phone, e)
        raise StoreTransactionFailure(seller_phone, "seller upsert", e) from e

    result = classify_changes(valid, existing)
    summary.products_new = result.products_new
    summary.products_updated = result.products_updated

    batches = chunk(result.changes, batch_size)
    for index, batch in enumerate(batches, start=1):
        if should_stop and should_stop():
            raise RunCancelled(f"stopped before batch {index}/{len(batches)} of seller {seller_phone}")
        stage = f"batch {index}/{len(batches)}"
        try:
            with session_factory() as db, db.begin():
                deadline = time.monotonic() + batch_timeout
                _apply_timeouts(db, batch_timeout)
                _apply_batch(db, batch, seller_phone, scan_time, prices, seller_details, deadline, stage)
        except (SQLAlchemyError, TimeoutError) as e:
            logger.error("Batch %d/%d failed for seller %s: %s", index, len(batches), seller_phone, e)
            raise StoreTransactionFailure(seller_phone, stage, e) from e
        logger.debug("Committed batch %d/%d (%d listings) for seller %s", index, len(batches), len(batch), seller_phone)

    if should_stop and should_stop():
        raise RunCancelled(f"stopped before deactivation pass of seller {seller_phone}")

    try:
        with session_factory() as db, db.begin():
            deadline = time.monotonic() + DEACTIVATION_TIMEOUT_S
            _apply_timeouts(db, DEACTIVATION_TIMEOUT_S)
            summary.products_updated += _touch_price_skipped(db, seller_phone, price_skipped, scan_time, seller_details)
            summary.products_deactivated = _deactivate_missing(
                db, seller_phone, seen_ids, scan_time, seller_details, deadline)
            db.add(ScanLog(
                seller_phone=seller_phone,
                scan_time=scan_time,
                products_found=summary.products_found,
                products_new=summary.products_new,
                products_updated=summary.products_updated,
            ))
    except (SQLAlchemyError, TimeoutError) as e:
        logger.error("Deactivation pass failed for seller %s: %s", seller_phone, e)
        raise StoreTransactionFailure(seller_phone, "deactivation", e) from e

    logger.info(
        "Seller %s: found=%d new=%d updated=%d deactivated=%d skipped=%d",
        seller_phone, summary.products_found, summary.products_new,
        summary.products_updated, summary.products_deactivated, len(summary.skipped),
    )
    return summary
