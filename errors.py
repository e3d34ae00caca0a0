"""Exception hierarchy for the ingest pipeline."""

from typing import Optional


class IngestError(Exception):
    """Base class. ``stage`` names the pipeline step that failed."""
    stage = "ingest"

    def __init__(self, message: str, listing_id: Optional[str] = None):
        super().__init__(message)
        self.listing_id = listing_id


class ExtractionError(IngestError):
    stage = "extract"


class FetchError(ExtractionError):
    """Transport failure or timeout while fetching the vendor page."""


class BadStatusError(ExtractionError):
    def __init__(self, url: str, status_code: int):
        super().__init__(f"Got {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class ParseError(ExtractionError):
    """The response body is not a usable HTML document."""


class StorageError(IngestError):
    stage = "storage"


class MediaAcquisitionError(IngestError):
    stage = "media"

    def __init__(self, message: str, index: int, source_url: str,
                 listing_id: Optional[str] = None):
        super().__init__(message, listing_id=listing_id)
        self.index = index
        self.source_url = source_url


class PersistenceError(IngestError):
    stage = "persist"


class NotFoundError(PersistenceError):
    pass


class InvalidTransitionError(PersistenceError):
    def __init__(self, current: str, target: str, listing_id: Optional[str] = None,
                 reason: Optional[str] = None):
        message = f"Cannot change status from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, listing_id=listing_id)
        self.current = current
        self.target = target
        self.reason = reason


class ValidationError(ValueError):
    """Operator input that failed validation. Always recoverable in place."""


class TransportError(Exception):
    """Telegram Bot API call failed after retries."""
