# catalog_tracker/models.py
"""SQLAlchemy ORM models for persisted entities.

``Seller``, ``Listing``, ``ListingHistory`` and ``ScanLog`` are written by the
reconciler only. ``ScraperRun`` and ``SchedulerConfig`` belong to the run
coordinator and scheduler.
"""
import enum

from sqlalchemy import (
    Boolean, Column, Enum, ForeignKey, Index, Integer, JSON, Numeric, Text, TIMESTAMP, func
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ChangeType(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    REACTIVATED = "REACTIVATED"
    UNCHANGED = "UNCHANGED"
    DEACTIVATED = "DEACTIVATED"


class RunStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    AUTH_REQUIRED = "AUTH_REQUIRED"


class TriggerType(str, enum.Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"


class Seller(Base):
    __tablename__ = "sellers"
    phone_number = Column(Text, primary_key=True)
    name = Column(Text)
    city = Column(Text)
    catalogue_url = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Text, primary_key=True)
    seller_phone = Column(Text, ForeignKey("sellers.phone_number"), nullable=False, index=True)
    raw_name = Column(Text)
    raw_description = Column(Text)
    price_raw = Column(Numeric(14, 3))
    currency = Column(Text)
    availability = Column(Text)
    model_name = Column(Text)
    storage_gb = Column(Text)
    color = Column(Text)
    warranty = Column(Text)
    data_hash = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    first_seen_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_seen_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_modified_at = Column(TIMESTAMP(timezone=True))


class ListingHistory(Base):
    __tablename__ = "listing_history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    listing_id = Column(Text, ForeignKey("listings.id"), nullable=False, index=True)
    change_type = Column(Enum(ChangeType, name="change_type"), nullable=False)
    snapshot = Column(JSONType, nullable=False)
    recorded_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    listing = relationship("Listing")


class ScanLog(Base):
    __tablename__ = "scan_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    seller_phone = Column(Text, ForeignKey("sellers.phone_number"), nullable=False, index=True)
    scan_time = Column(TIMESTAMP(timezone=True), nullable=False)
    products_found = Column(Integer, nullable=False, default=0)
    products_new = Column(Integer, nullable=False, default=0)
    products_updated = Column(Integer, nullable=False, default=0)


class ScraperRun(Base):
    __tablename__ = "scraper_runs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(Enum(RunStatus, name="run_status"), nullable=False, default=RunStatus.RUNNING)
    trigger_type = Column(Enum(TriggerType, name="trigger_type"), nullable=False)
    started_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    completed_at = Column(TIMESTAMP(timezone=True))
    output = Column(Text)
    error_message = Column(Text)
    sellers_processed = Column(Integer, nullable=False, default=0)
    products_scraped = Column(Integer, nullable=False, default=0)


class SchedulerConfig(Base):
    __tablename__ = "scheduler_config"
    id = Column(Integer, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=False)
    cron_expr = Column(Text, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())


Index("idx_listings_seller_active", Listing.seller_phone, Listing.is_active)
Index("idx_listing_history_recorded", ListingHistory.recorded_at)
Index("idx_scan_logs_scan_time", ScanLog.scan_time)
