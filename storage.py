"""Object storage for listing photos."""

import logging
import os
import random
from typing import Optional, Protocol

import requests

from config import IMAGE_TIMEOUT, MEDIA_BASE_URL, MEDIA_ROOT, USER_AGENTS
from errors import StorageError

logger = logging.getLogger(__name__)


class ImageStorage(Protocol):
    def store_by_url(self, source_url: str, key: str) -> str: ...

    def store_by_bytes(self, data: bytes, key: str) -> str: ...


def download_image(session: requests.Session, url: str, timeout: float = IMAGE_TIMEOUT) -> bytes:
    """GET an image with a browser user agent. Non-2xx is a failure."""
    headers = {"User-Agent": random.choice(USER_AGENTS)}
    try:
        resp = session.get(url, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise StorageError(f"Request failed for {url}: {e}") from e
    if not 200 <= resp.status_code < 300:
        raise StorageError(f"Got {resp.status_code} for {url}")
    return resp.content


class LocalImageStorage:
    """Stores images on the local filesystem and serves them from ``base_url``."""

    def __init__(self, root: str = MEDIA_ROOT, base_url: str = MEDIA_BASE_URL,
                 session: Optional[requests.Session] = None,
                 timeout: float = IMAGE_TIMEOUT):
        self.root = root
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _path_for(self, key: str) -> str:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError(f"Invalid storage key: {key!r}")
        return os.path.join(self.root, *parts)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key.strip('/')}"

    def store_by_bytes(self, data: bytes, key: str) -> str:
        path = self._path_for(key)
        tmp_path = f"{path}.tmp"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp_path, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at {key}")
        return self.url_for(key)

    def store_by_url(self, source_url: str, key: str) -> str:
        data = download_image(self.session, source_url, timeout=self.timeout)
        return self.store_by_bytes(data, key)
