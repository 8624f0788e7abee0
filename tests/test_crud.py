# tests/test_crud.py
from decimal import Decimal

from catalog_tracker import crud
from catalog_tracker.models import Listing, TriggerType, RunStatus
from conftest import SELLER, scan_at


def add_listing(db, listing_id, **overrides):
    data = dict(
        id=listing_id, seller_phone=SELLER, raw_name="Test Phone", price_raw=Decimal("100"),
        data_hash="h", is_active=True, first_seen_at=scan_at(9), last_seen_at=scan_at(9),
    )
    data.update(overrides)
    db.add(Listing(**data))


def test_upsert_seller_and_get(db):
    crud.upsert_seller(db, SELLER, name="Test Shop")
    db.commit()
    crud.upsert_seller(db, SELLER, city="Delhi")
    db.commit()
    sellers = crud.list_sellers(db)
    assert len(sellers) == 1
    assert sellers[0].name == "Test Shop"
    assert sellers[0].city == "Delhi"


def test_load_listings_by_ids(db):
    crud.upsert_seller(db, SELLER)
    add_listing(db, "a")
    add_listing(db, "b", is_active=False)
    db.commit()
    loaded = crud.load_listings_by_ids(db, ["a", "b", "missing"])
    assert set(loaded) == {"a", "b"}
    assert loaded["b"].is_active is False
    assert crud.load_listings_by_ids(db, []) == {}


def test_list_listings_filters(db):
    crud.upsert_seller(db, SELLER)
    add_listing(db, "cheap", price_raw=Decimal("50"), model_name="iPhone 12")
    add_listing(db, "pricey", price_raw=Decimal("900"), model_name="iPhone 15 Pro")
    add_listing(db, "gone", price_raw=Decimal("300"), is_active=False)
    db.commit()

    res = crud.list_listings(db, filters={"min_price": 100, "is_active": True})
    assert [l.id for l in res["items"]] == ["pricey"]
    res = crud.list_listings(db, filters={"model_name": "iphone 1"})
    assert {l.id for l in res["items"]} == {"cheap", "pricey"}
    assert crud.list_listings(db)["total"] == 3


def test_runs_and_scheduler_config(db):
    run = crud.create_run(db, TriggerType.MANUAL)
    assert run.status == RunStatus.RUNNING
    crud.finish_run(db, run.id, {"status": RunStatus.COMPLETED, "products_scraped": 4})
    runs = crud.list_runs(db)
    assert runs[0].status == RunStatus.COMPLETED
    assert runs[0].completed_at is not None

    config = crud.get_scheduler_config(db, create=True)
    assert (config.enabled, config.cron_expr) == (False, "0 9,21 * * *")
    config = crud.update_scheduler_config(db, True, "*/30 * * * *")
    assert crud.get_scheduler_config(db).cron_expr == "*/30 * * * *"
