# catalog_tracker/services.py
from dataclasses import dataclass, field
from typing import Dict, List

from .errors import RunCancelled, StoreTransactionFailure
from .reconciler import reconcile_seller
from .schemas import ScanSummary, SkippedListing
from .utils import logger


@dataclass
class IngestResult:
    summaries: List[ScanSummary] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    skipped: List[SkippedListing] = field(default_factory=list)

    @property
    def ok(self):
        return not self.failures

    @property
    def products_found(self):
        return sum(s.products_found for s in self.summaries)


def group_by_seller(listings, skipped=None):
    """Group listings per seller phone, keeping first-seen order for both."""
    grouped = {}
    for listing in listings:
        if not listing.id or not listing.seller_phone:
            if skipped is not None:
                skipped.append(SkippedListing(listing_id=listing.id, reason="missing listing id or seller phone"))
            logger.warning("Skipping listing %r without id or seller phone", listing.id)
            continue
        grouped.setdefault(listing.seller_phone, []).append(listing)
    return grouped


def ingest_listings(session_factory, listings, scan_time, seller_configs=None, should_stop=None, batch_size=None):
    """Reconcile every seller present in ``listings``, one seller at a time.

    A seller whose transaction fails is recorded in ``failures`` and the run
    moves on to the next seller.
    """
    result = IngestResult()
    grouped = group_by_seller(listings, result.skipped)
    configs = {c.phone: c for c in (seller_configs or [])}
    logger.info("Ingesting %d listings for %d seller(s)", len(listings), len(grouped))

    options = {"batch_size": batch_size} if batch_size else {}
    for seller_phone, items in grouped.items():
        if should_stop and should_stop():
            raise RunCancelled("stopped between sellers")
        logger.info("Processing seller %s with %d listings", seller_phone, len(items))
        try:
            summary = reconcile_seller(
                session_factory, seller_phone, items, scan_time,
                seller_config=configs.get(seller_phone), should_stop=should_stop, **options,
            )
        except StoreTransactionFailure as e:
            logger.error("Seller %s failed: %s", seller_phone, e)
            result.failures[seller_phone] = str(e)
            continue
        result.summaries.append(summary)
        result.skipped.extend(summary.skipped)
    return result
