"""
Buffer Pool Module - In-memory cache for store pages
Implements an LRU eviction policy over immutable, already validated pages.
"""

import threading
from collections import OrderedDict
from typing import Callable, Optional
from .page import Page


class BufferPool:
    """LRU cache for read-only pages"""

    def __init__(self, capacity: int = 100):
        """
        Initialize buffer pool

        Args:
            capacity: Maximum number of pages to cache (0 disables caching)
        """
        self.capacity = capacity
        self.pool: "OrderedDict[int, Page]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._lock = threading.Lock()

    def get_page(self, page_number: int, loader: Callable[[int], Page]) -> Page:
        """
        Get page from cache, loading it on a miss

        Args:
            page_number: Page identifier
            loader: Callable that reads and validates the page from disk

        Returns:
            Page object (from cache or disk)
        """
        with self._lock:
            page = self.pool.get(page_number)
            if page is not None:
                self.pool.move_to_end(page_number)
                self.hits += 1
                return page
            self.misses += 1

        # Load outside the lock; a concurrent duplicate load is harmless
        page = loader(page_number)

        if self.capacity > 0:
            with self._lock:
                self.pool[page_number] = page
                self.pool.move_to_end(page_number)
                self._evict_if_needed()
        return page

    def peek(self, page_number: int) -> Optional[Page]:
        """Return cached page without touching LRU order"""
        with self._lock:
            return self.pool.get(page_number)

    def _evict_if_needed(self) -> None:
        """Evict least recently used pages until within capacity"""
        while len(self.pool) > self.capacity:
            self.pool.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        """Drop all cached pages"""
        with self._lock:
            self.pool.clear()

    def get_stats(self) -> dict:
        """Get cache statistics"""
        total = self.hits + self.misses
        return {
            "capacity": self.capacity,
            "size": len(self.pool),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_ratio": self.hits / total if total else 0.0,
        }
