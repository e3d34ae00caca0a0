"""Vendor page scraping: pulls motorcycle attributes and photos out of jmmoto.ru HTML."""

import logging
import random
import re
import time
from typing import Callable, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from config import (
    BRANDS,
    IMAGE_ATTRS,
    IMAGE_BLOCKLIST,
    NAME_SELECTORS,
    PAGE_TIMEOUT,
    RETRY_DELAYS,
    USER_AGENTS,
    VENDOR_ORIGIN,
)
from errors import BadStatusError, FetchError, ParseError
from models import RawExtraction

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 5
NAME_MAX_LENGTH = 100

# React splits text nodes with empty comments: "Honda<!-- --> <!-- -->CB500X"
MARKUP_NAME_RE = re.compile(
    r"(Suzuki|Yamaha|Honda|Kawasaki|Ducati|BMW|Triumph|Harley-Davidson|Harley)"
    r"(?:<!--\s*-->)?\s*(?:<!--\s*-->)?\s*([A-Z0-9]+)"
)
YEAR_RE = re.compile(r"Год:\s*(\d{4})")
MILEAGE_RE = re.compile(r"Пробег:\s*(\d+)\s*км")
VOLUME_RE = re.compile(r"Объем:\s*(\d+)\s*(?:сс|cc|см3|см³)")
FRAME_RE = re.compile(r"Номер рамы:\s*([A-Z0-9-]+)")

_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_image_url(src: str, origin: str = VENDOR_ORIGIN) -> str:
    """Make an image source absolute against the vendor origin."""
    if src.startswith("//"):
        return "https:" + src
    if src.startswith("/"):
        return origin + src
    if src.startswith("http://") or src.startswith("https://"):
        return src
    return f"{origin}/{src}"


def is_noise_image(url: str, blocklist: list[str] = IMAGE_BLOCKLIST) -> bool:
    """Logos, icons and other chrome, judged by the URL path only."""
    path = urlparse(url).path.lower()
    return any(term in path for term in blocklist)


def _first(strategies: list[Callable], *args):
    """Run strategies in order and return the first non-empty result."""
    for strategy in strategies:
        result = strategy(*args)
        if result:
            return result
    return None


class MotorcycleScraper:
    """Fetches a single vendor listing page and parses it into a RawExtraction."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = PAGE_TIMEOUT,
                 retry_delays: Optional[list[float]] = None,
                 origin: str = VENDOR_ORIGIN,
                 brands: Optional[list[str]] = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry_delays = RETRY_DELAYS if retry_delays is None else retry_delays
        self.origin = origin
        self.brands = [b.lower() for b in (brands or BRANDS)]
        self._rotate_ua()

    def _rotate_ua(self):
        self.session.headers.update({"User-Agent": random.choice(USER_AGENTS)})

    def _get(self, url: str) -> requests.Response:
        self._rotate_ua()
        attempts = len(self.retry_delays) + 1
        for idx in range(attempts):
            try:
                return self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                if idx >= len(self.retry_delays):
                    raise FetchError(f"Request failed for {url}: {e}") from e
                delay = self.retry_delays[idx]
                logger.warning(f"Request failed for {url}: {e}; retrying in {delay}s")
                time.sleep(delay)
        raise FetchError(f"Request failed for {url}")

    def fetch_html(self, url: str) -> bytes:
        """Return the raw page bytes; BeautifulSoup sniffs the charset from the markup."""
        resp = self._get(url)
        if not 200 <= resp.status_code < 300:
            raise BadStatusError(url, resp.status_code)
        content_type = resp.headers.get("Content-Type", "")
        if content_type and "html" not in content_type and "xml" not in content_type:
            raise ParseError(f"Unexpected content type {content_type!r} for {url}")
        return resp.content

    def extract(self, url: str) -> RawExtraction:
        """Fetch ``url`` and extract whatever attributes the page carries."""
        html = self.fetch_html(url)
        data = self.parse(html)
        if data.is_empty():
            logger.warning(f"No attributes recognized on {url}")
        else:
            logger.info(
                f"Extracted {data.name or '<no name>'} from {url}: year={data.year} "
                f"mileage={data.mileage} volume={data.volume} images={len(data.image_urls)}"
            )
        return data

    def parse(self, html) -> RawExtraction:
        if not html or not html.strip():
            raise ParseError("Empty document")
        try:
            soup = BeautifulSoup(html, "lxml")
        except (ParserRejectedMarkup, ValueError) as e:
            raise ParseError(f"Failed to parse HTML: {e}") from e

        body = soup.body
        if body is None:
            raise ParseError("Document has no body")

        body_text = body.get_text()

        data = RawExtraction()
        data.name = _first(
            [self._name_from_styled_blocks, self._name_from_headings, self._name_from_markup],
            soup,
        ) or ""

        match = YEAR_RE.search(body_text)
        if match:
            data.year = int(match.group(1))

        match = MILEAGE_RE.search(body_text)
        if match:
            data.mileage = int(match.group(1))
            data.mileage_unit = "km"

        match = VOLUME_RE.search(body_text)
        if match:
            data.volume = int(match.group(1))
            data.volume_unit = "cc"

        match = FRAME_RE.search(body_text)
        if match:
            data.frame_number = match.group(1).strip()

        data.image_urls = self._extract_images(soup)
        return data

    # ── Name strategies ──────────────────────────────────────────

    def _looks_like_name(self, text: str) -> bool:
        if not NAME_MIN_LENGTH < len(text) < NAME_MAX_LENGTH:
            return False
        lowered = text.lower()
        return any(brand in lowered for brand in self.brands)

    def _name_from_elements(self, elements) -> Optional[str]:
        for el in elements:
            text = collapse_whitespace(el.get_text())
            if self._looks_like_name(text):
                return text
        return None

    def _name_from_styled_blocks(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in NAME_SELECTORS:
            name = self._name_from_elements(soup.select(selector))
            if name:
                return name
        return None

    def _name_from_headings(self, soup: BeautifulSoup) -> Optional[str]:
        return self._name_from_elements(soup.find_all(["h1", "h2"]))

    def _name_from_markup(self, soup: BeautifulSoup) -> Optional[str]:
        match = MARKUP_NAME_RE.search(str(soup.body))
        if not match:
            return None
        return f"{match.group(1)} {match.group(2)}".strip()

    # ── Images ───────────────────────────────────────────────────

    def _extract_images(self, soup: BeautifulSoup) -> list[str]:
        images = []
        seen = set()
        for img in soup.find_all("img"):
            for attr in IMAGE_ATTRS:
                src = (img.get(attr) or "").strip()
                if not src or src.startswith("data:"):
                    continue
                url = normalize_image_url(src, self.origin)
                if is_noise_image(url):
                    continue
                if url not in seen:
                    seen.add(url)
                    images.append(url)
        return images
