# tests/test_services.py
import pytest
from sqlalchemy.exc import OperationalError

from catalog_tracker import services
from catalog_tracker.errors import RunCancelled, StoreTransactionFailure
from catalog_tracker.models import Listing, ScanLog, Seller
from catalog_tracker.schemas import SellerConfig
from conftest import SELLER, make_listing, scan_at

OTHER = "919900000002"


def test_group_by_seller_keeps_order_and_reports_orphans():
    skipped = []
    listings = [
        make_listing("a"),
        make_listing("b", seller_phone=OTHER),
        make_listing("c"),
        make_listing("d", seller_phone=None),
    ]
    grouped = services.group_by_seller(listings, skipped)
    assert list(grouped) == [SELLER, OTHER]
    assert [l.id for l in grouped[SELLER]] == ["a", "c"]
    assert [s.listing_id for s in skipped] == ["d"]


def test_ingest_reconciles_each_seller(session_factory, db):
    listings = [make_listing("a"), make_listing("b", seller_phone=OTHER), make_listing("c")]
    configs = [SellerConfig(phone=OTHER, name="Other Shop", city="Pune")]
    result = services.ingest_listings(session_factory, listings, scan_at(9), configs)

    assert result.ok
    assert [s.seller_phone for s in result.summaries] == [SELLER, OTHER]
    assert result.products_found == 3
    assert db.get(Seller, OTHER).name == "Other Shop"
    assert db.query(ScanLog).count() == 2


def test_failed_seller_does_not_stop_the_others(session_factory, db, monkeypatch):
    real = services.reconcile_seller

    def flaky(session_factory, seller_phone, *args, **kwargs):
        if seller_phone == SELLER:
            cause = OperationalError("INSERT", {}, Exception("disk full"))
            raise StoreTransactionFailure(seller_phone, "batch 1/1", cause)
        return real(session_factory, seller_phone, *args, **kwargs)

    monkeypatch.setattr(services, "reconcile_seller", flaky)
    listings = [make_listing("a"), make_listing("b", seller_phone=OTHER)]
    result = services.ingest_listings(session_factory, listings, scan_at(9))

    assert not result.ok
    assert list(result.failures) == [SELLER]
    assert "batch 1/1" in result.failures[SELLER]
    assert [s.seller_phone for s in result.summaries] == [OTHER]
    assert db.get(Listing, "b") is not None
    assert db.get(Listing, "a") is None


def test_stop_between_sellers(session_factory, db):
    calls = []

    def should_stop():
        calls.append(1)
        # first seller runs to completion, then the run is cancelled
        return len(calls) > 3

    listings = [make_listing("a"), make_listing("b", seller_phone=OTHER)]
    with pytest.raises(RunCancelled):
        services.ingest_listings(session_factory, listings, scan_at(9), should_stop=should_stop)
    assert db.get(Listing, "a") is not None
    assert db.get(Seller, OTHER) is None
