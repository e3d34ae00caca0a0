"""Copies vendor-hosted photos into durable storage."""

import logging
from typing import Optional

import requests

from config import IMAGE_TIMEOUT
from db import ListingRepo
from errors import IngestError, MediaAcquisitionError
from storage import ImageStorage, download_image

logger = logging.getLogger(__name__)


def photo_key(listing_id: str, index: int) -> str:
    return f"motorcycles/{listing_id}/{index}"


class MediaAcquirer:
    """Stores photos under keys derived from the listing id and the photo index.

    By default the storage backend fetches each source URL itself. With
    ``fetch_locally`` the acquirer downloads the bytes and hands them over instead.
    """

    def __init__(self, storage: ImageStorage, repo: Optional[ListingRepo] = None,
                 session: Optional[requests.Session] = None,
                 fetch_locally: bool = False,
                 timeout: float = IMAGE_TIMEOUT):
        self.storage = storage
        self.repo = repo
        self.session = session or requests.Session()
        self.fetch_locally = fetch_locally
        self.timeout = timeout

    def _store_one(self, source_url: str, key: str) -> str:
        if self.fetch_locally:
            data = download_image(self.session, source_url, timeout=self.timeout)
            return self.storage.store_by_bytes(data, key)
        return self.storage.store_by_url(source_url, key)

    def acquire(self, listing_id: str, source_urls: list[str], start: int = 0) -> list[str]:
        """Store every photo or none. Returned URLs follow the input order."""
        durable_urls = []
        for i, source_url in enumerate(source_urls):
            index = start + i
            try:
                durable_urls.append(self._store_one(source_url, photo_key(listing_id, index)))
            except IngestError as e:
                raise MediaAcquisitionError(
                    f"Failed to save photo {index}: {e}", index=index,
                    source_url=source_url, listing_id=listing_id,
                ) from e
        logger.info(f"Stored {len(durable_urls)} photos for listing {listing_id}")
        return durable_urls

    def append(self, listing_id: str, source_urls: list[str]) -> list[str]:
        """Store and attach photos to an existing listing after its current last photo."""
        if self.repo is None:
            raise RuntimeError("append needs a ListingRepo")
        if not source_urls:
            return []
        start = self.repo.reserve_photos(listing_id, len(source_urls))
        try:
            durable_urls = self.acquire(listing_id, source_urls, start=start)
        except IngestError:
            self.repo.release_photos(listing_id, start, len(source_urls))
            raise
        self.repo.fill_photos(listing_id, start, durable_urls)
        return durable_urls
