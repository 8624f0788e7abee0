# catalog_tracker/pipeline.py
"""One reconciliation run: source -> enrich -> reconcile.

Run from the command line with ``python -m catalog_tracker.pipeline``.
"""
import argparse
import sys
from datetime import datetime, timezone

from . import config, crud
from .classifier import classify_changes
from .enrich import Enricher, make_provider
from .errors import CatalogTrackerError
from .services import group_by_seller, ingest_listings
from .sources import JsonFileSource, ScraperCommandSource, resolve_seller_configs
from .utils import logger


def build_source(input_path=None, on_line=None):
    if input_path:
        return JsonFileSource(input_path)
    if config.SCRAPER_COMMAND:
        return ScraperCommandSource(config.SCRAPER_COMMAND, config.PRODUCTS_PATH, cwd=config.SCRAPER_CWD, on_line=on_line)
    return JsonFileSource(config.PRODUCTS_PATH)


def run_pipeline(session_factory, source, enricher=None, seller_configs=None, scan_time=None, should_stop=None):
    """Fetch, enrich and reconcile one batch of listings.

    ``SourceUnavailable`` and ``AuthRequired`` from the source propagate
    before anything is written.
    """
    scan_time = scan_time or datetime.now(timezone.utc)
    listings = source.get_raw_listings(seller_configs)
    if enricher is not None:
        listings = enricher.enrich(listings)
    result = ingest_listings(session_factory, listings, scan_time, seller_configs, should_stop=should_stop)
    logger.info(
        "Run complete: %d seller(s), %d products found, %d failed seller(s)",
        len(result.summaries), result.products_found, len(result.failures),
    )
    return result


def preview(session_factory, listings):
    """Classify without writing; returns per-seller counts."""
    counts = {}
    with session_factory() as db:
        for seller_phone, items in group_by_seller(listings).items():
            existing = crud.load_listings_by_ids(db, [l.id for l in items])
            result = classify_changes(items, existing)
            counts[seller_phone] = {
                "found": result.products_found,
                "new": result.products_new,
                "updated": result.products_updated,
            }
    return counts


def main(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile scraped storefront listings into the catalog.")
    parser.add_argument("--input", help="Read listings from this JSON dump instead of running the scraper.")
    parser.add_argument("--skip-enrich", action="store_true", help="Do not call the LLM provider.")
    parser.add_argument("--dry-run", action="store_true", help="Classify only, don't write to DB.")
    args = parser.parse_args(argv)

    from .db import SessionLocal

    try:
        seller_configs = resolve_seller_configs()
        source = build_source(args.input)
        enricher = None if args.skip_enrich else Enricher(make_provider())
        if args.dry_run:
            listings = source.get_raw_listings(seller_configs)
            if enricher is not None:
                listings = enricher.enrich(listings)
            for seller_phone, counts in preview(SessionLocal, listings).items():
                print(f"{seller_phone}: {counts}")
            return 0
        result = run_pipeline(SessionLocal, source, enricher, seller_configs)
    except CatalogTrackerError as e:
        logger.error("Run failed: %s", e)
        return 1
    print(f"Saved {result.products_found} products from {len(result.summaries)} seller(s)")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
