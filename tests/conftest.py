# tests/conftest.py
import os

# must be set before catalog_tracker.db is imported
os.environ["POSTGRES_URL"] = "sqlite://"
os.environ["LLM_PROVIDER"] = "none"

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_tracker import models  # noqa: F401
from catalog_tracker.db import Base
from catalog_tracker.schemas import EnrichedListing

SELLER = "919900000001"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def make_listing(listing_id, seller_phone=SELLER, **overrides):
    data = {
        "id": listing_id,
        "seller_phone": seller_phone,
        "name": f"iPhone 13 ({listing_id})",
        "description": "128GB, blue, 90% battery",
        "price_raw": 45000000,
        "currency": "INR",
        "availability": "in stock",
        "product_url": f"https://web.whatsapp.com/product/{listing_id}/{seller_phone}",
    }
    data.update(overrides)
    return EnrichedListing(**data)


def scan_at(hour):
    return datetime(2024, 5, 1, hour, 0, 0)
