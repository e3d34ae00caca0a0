"""Listing use cases: draft creation from a vendor URL plus basic admin operations."""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from config import DEFAULT_CURRENCY
from db import ListingRepo
from errors import IngestError, MediaAcquisitionError
from media import MediaAcquirer
from models import Listing, ListingAttributes, NewListing, RawExtraction, STATUS_DRAFT
from scraper import MotorcycleScraper

logger = logging.getLogger(__name__)


def build_title(data: RawExtraction) -> str:
    title = data.name
    if data.year:
        title = f"{title} {data.year}"
    return title.strip()


def build_description(data: RawExtraction) -> Optional[str]:
    parts = []
    if data.mileage:
        parts.append(f"Пробег: {data.mileage} км.")
    if data.volume:
        parts.append(f"Объем: {data.volume} сс.")
    if data.frame_number:
        parts.append(f"Номер рамы: {data.frame_number}.")
    return " ".join(parts) or None


class ListingAssembler:
    def __init__(self, repo: ListingRepo, scraper: MotorcycleScraper,
                 media: MediaAcquirer, currency: str = DEFAULT_CURRENCY):
        self.repo = repo
        self.scraper = scraper
        self.media = media
        self.currency = currency

    def create(self, listing: NewListing) -> Listing:
        """Insert the row first, then store photos under keys built from its new id."""
        listing_id = self.repo.create(replace(listing, photo_urls=[]))

        try:
            durable_urls = self.media.acquire(listing_id, listing.photo_urls)
        except MediaAcquisitionError:
            logger.error(f"Photo upload failed; draft {listing_id} left without photos")
            raise

        if durable_urls:
            try:
                self.repo.add_photos(listing_id, durable_urls)
            except IngestError as e:
                e.listing_id = listing_id
                raise

        return self.get(listing_id)

    def create_from_url(self, operator, url: str) -> Listing:
        """Scrape ``url`` and turn it into a draft listing with photos attached."""
        logger.info(f"Operator {operator} is importing {url}")
        data = self.scraper.extract(url)

        draft = NewListing(
            title=build_title(data),
            source_url=url,
            price=Decimal("0"),
            currency=self.currency,
            status=STATUS_DRAFT,
            description=build_description(data),
            attributes=ListingAttributes.from_extraction(data),
            photo_urls=list(data.image_urls),
        )
        listing = self.create(draft)
        logger.info(f"Draft {listing.id} created: {listing.title!r} with {len(listing.photos)} photos")
        return listing

    def get(self, listing_id: str) -> Listing:
        return self.repo.get(listing_id, include_photos=True)

    def list(self, criteria: Optional[dict] = None) -> list[Listing]:
        return self.repo.filter(criteria, include_photos=True)

    def patch(self, listing_id: str, fields: dict) -> Listing:
        self.repo.patch(listing_id, fields)
        return self.get(listing_id)

    def set_status(self, listing_id: str, status: str) -> Listing:
        return self.patch(listing_id, {"status": status})

    def delete(self, listing_id: str) -> bool:
        return self.repo.delete(listing_id)

    def stale_drafts(self, older_than: str) -> list[Listing]:
        """Drafts created before ``older_than`` (ISO timestamp)."""
        return self.repo.filter({"status": STATUS_DRAFT, "created_before": older_than})
