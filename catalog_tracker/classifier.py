# catalog_tracker/classifier.py
"""Change classification for one seller's scan.

Pure functions only: nothing here touches the database.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .models import ChangeType
from .schemas import EnrichedListing
from .snapshot import compute_data_hash


@dataclass(frozen=True)
class StoredListing:
    """The slice of a persisted listing the classifier and reconciler need."""

    id: str
    data_hash: Optional[str]
    is_active: bool
    first_seen_at: datetime
    last_modified_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row.id,
            data_hash=row.data_hash,
            is_active=row.is_active,
            first_seen_at=row.first_seen_at,
            last_modified_at=row.last_modified_at,
        )


@dataclass(frozen=True)
class ClassifiedChange:
    listing: EnrichedListing
    existing: Optional[StoredListing]
    change_type: ChangeType
    data_hash: str

    @property
    def hash_changed(self):
        # a stored row without a hash predates hashing and never counts as modified
        return bool(self.existing and self.existing.data_hash and self.existing.data_hash != self.data_hash)


@dataclass
class ClassificationResult:
    changes: List[ClassifiedChange] = field(default_factory=list)
    products_found: int = 0
    products_new: int = 0
    products_updated: int = 0

    def of_type(self, change_type):
        return [c for c in self.changes if c.change_type == change_type]


def classify_listing(listing, existing):
    data_hash = compute_data_hash(listing)
    if existing is None:
        change_type = ChangeType.CREATED
    elif existing.data_hash == data_hash and existing.is_active:
        change_type = ChangeType.UNCHANGED
    elif not existing.is_active:
        # coming back is always recorded, even with identical content
        change_type = ChangeType.REACTIVATED
    else:
        change_type = ChangeType.UPDATED
    return ClassifiedChange(listing=listing, existing=existing, change_type=change_type, data_hash=data_hash)


def classify_changes(incoming: List[EnrichedListing], existing_by_id: Dict[str, StoredListing]) -> ClassificationResult:
    """Classify every incoming listing against the stored state.

    ``products_updated`` counts both Updated and Reactivated listings.
    """
    result = ClassificationResult(products_found=len(incoming))
    for listing in incoming:
        change = classify_listing(listing, existing_by_id.get(listing.id))
        if change.change_type == ChangeType.CREATED:
            result.products_new += 1
        elif change.change_type in (ChangeType.UPDATED, ChangeType.REACTIVATED):
            result.products_updated += 1
        result.changes.append(change)
    return result
