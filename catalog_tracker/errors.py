# catalog_tracker/errors.py
"""Error taxonomy for the ingestion and reconciliation pipeline."""


class CatalogTrackerError(RuntimeError):
    """Base class for errors raised by catalog_tracker."""


class ConfigurationError(CatalogTrackerError):
    """Raised when a required setting is missing or invalid."""


class SourceUnavailable(CatalogTrackerError):
    """The listing source could not produce listings. Nothing was written."""


class AuthRequired(CatalogTrackerError):
    """The listing source needs an interactive login before it can scrape."""


class EnrichmentFailure(CatalogTrackerError):
    """A provider call or its output parsing failed for one enrichment batch."""


class InvariantViolation(CatalogTrackerError):
    """A listing is malformed and cannot be reconciled."""

    def __init__(self, message, listing_id=None):
        super().__init__(message)
        self.listing_id = listing_id


class StoreTransactionFailure(CatalogTrackerError):
    """A reconciliation transaction was rolled back.

    Batches committed before the failing one stay committed; the next run
    reconciles whatever is left.
    """

    def __init__(self, seller_phone, stage, cause):
        super().__init__(f"{stage} failed for seller {seller_phone}: {cause}")
        self.seller_phone = seller_phone
        self.stage = stage
        self.cause = cause


class RunAlreadyActive(CatalogTrackerError):
    """A run was requested while another one is still in progress."""


class RunCancelled(CatalogTrackerError):
    """The run was stopped between batches or sellers."""
