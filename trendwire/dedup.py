"""
Content fingerprinting and duplicate checks ahead of store writes.

The store's unique constraints on url and content_hash are the final word;
this module only saves a round-trip per item that is already known.
"""

import hashlib
import logging
from typing import Optional, Set

logger = logging.getLogger(__name__)


def fingerprint(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 content"""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class Deduplicator:
    """
    In-memory URL and content-hash sets, loaded once per crawl run.

    The URL set is restricted to `source_type` when one is given; the hash
    set always spans every source.
    """

    def __init__(self, store, source_type: Optional[str] = None):
        self.store = store
        self.source_type = source_type
        self._urls: Set[str] = set()
        self._hashes: Set[str] = set()
        self._loaded = False

    def preload(self) -> "Deduplicator":
        self._urls = set(self.store.list_existing_urls(self.source_type))
        self._hashes = set(self.store.list_existing_hashes())
        self._loaded = True
        logger.info(f"Dedup preload: {len(self._urls)} urls, {len(self._hashes)} hashes")
        return self

    def _ensure_loaded(self):
        if not self._loaded:
            self.preload()

    def is_new_url(self, url: str) -> bool:
        self._ensure_loaded()
        return url not in self._urls

    def is_new_content(self, content_hash: str) -> bool:
        self._ensure_loaded()
        return content_hash not in self._hashes

    def remember(self, url: str, content_hash: str):
        """Record an item saved during this run"""
        self._urls.add(url)
        self._hashes.add(content_hash)
