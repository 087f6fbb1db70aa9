"""In-process model of a B-tree's leaf level, used as a self-contained system under test.

Leaf pages hold a bounded number of keys and are allocated in increasing
physical order. Inserting into a full page splits it: an append past the end
of the rightmost page starts a fresh page and leaves the old one full (the
ascending-key fast path real B-trees take), any other insert moves the upper
half of the keys to a newly allocated page. Random keys therefore cause many
more splits, half-empty pages and pages whose logical successor lives at a
lower physical position, which is what ``fragmentation_percent`` reports.

Page accesses go through a small LRU buffer so that key locality also shows
up as a buffer hit ratio.
"""

from __future__ import annotations

import bisect
import collections
import itertools
import logging
import random
import threading
from dataclasses import dataclass, field

LOGGER = logging.getLogger("keybench.sut")

DEFAULT_PAGE_CAPACITY = 200
DEFAULT_BUFFER_PAGES = 256


@dataclass
class LeafPage:
    page_id: int
    keys: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class IndexMetrics:
    keys: int
    leaf_pages: int
    page_splits: int
    avg_leaf_density: float
    fragmentation_percent: float
    buffer_hit_ratio: float

    def as_dict(self) -> dict[str, float]:
        return {
            "page_splits": float(self.page_splits),
            "leaf_pages": float(self.leaf_pages),
            "avg_leaf_density": self.avg_leaf_density,
            "fragmentation_percent": self.fragmentation_percent,
            "buffer_hit_ratio": self.buffer_hit_ratio,
        }


class PagedIndex:
    def __init__(
        self,
        page_capacity: int = DEFAULT_PAGE_CAPACITY,
        buffer_pages: int = DEFAULT_BUFFER_PAGES,
        seed: int | None = None,
    ) -> None:
        if page_capacity < 2:
            raise ValueError("page_capacity must be >= 2")
        if buffer_pages < 1:
            raise ValueError("buffer_pages must be >= 1")
        self._capacity = page_capacity
        self._buffer_pages = buffer_pages
        self._lock = threading.RLock()
        self._page_ids = itertools.count()
        self._pages: list[LeafPage] = [LeafPage(next(self._page_ids))]
        # Lowest key of every page but the first, for bisecting.
        self._separators: list[int] = []
        self._inserted: list[int] = []
        self._values: dict[int, int] = {}
        self._buffer: collections.OrderedDict[int, None] = collections.OrderedDict()
        self._rng = random.Random(seed)
        self._page_splits = 0
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._inserted)

    def insert(self, key: int) -> None:
        with self._lock:
            if key in self._values:
                raise KeyError(f"duplicate key {key}")
            idx = bisect.bisect_right(self._separators, key)
            page = self._pages[idx]
            self._touch(page)
            if len(page.keys) < self._capacity:
                bisect.insort(page.keys, key)
            elif idx == len(self._pages) - 1 and key > page.keys[-1]:
                self._allocate_after(idx, [key])
            else:
                bisect.insort(page.keys, key)
                mid = len(page.keys) // 2
                upper = page.keys[mid:]
                del page.keys[mid:]
                self._allocate_after(idx, upper)
            self._values[key] = 0
            self._inserted.append(key)

    def lookup(self, key: int) -> bool:
        with self._lock:
            page = self._pages[bisect.bisect_right(self._separators, key)]
            self._touch(page)
            pos = bisect.bisect_left(page.keys, key)
            return pos < len(page.keys) and page.keys[pos] == key

    def update(self, key: int) -> None:
        with self._lock:
            if not self.lookup(key):
                raise KeyError(f"key {key} not found")
            self._values[key] += 1

    def random_key(self) -> int:
        with self._lock:
            if not self._inserted:
                raise LookupError("index is empty")
            return self._rng.choice(self._inserted)

    def reset_stats(self) -> None:
        with self._lock:
            self._page_splits = 0
            self._hits = 0
            self._misses = 0

    def metrics(self) -> IndexMetrics:
        with self._lock:
            leaf_pages = len(self._pages)
            keys = len(self._inserted)
            density = keys / (leaf_pages * self._capacity) * 100 if leaf_pages else 0.0
            out_of_order = sum(
                1
                for current, following in zip(self._pages, self._pages[1:])
                if following.page_id < current.page_id
            )
            fragmentation = out_of_order / leaf_pages * 100 if leaf_pages > 1 else 0.0
            accesses = self._hits + self._misses
            return IndexMetrics(
                keys=keys,
                leaf_pages=leaf_pages,
                page_splits=self._page_splits,
                avg_leaf_density=density,
                fragmentation_percent=fragmentation,
                buffer_hit_ratio=self._hits / accesses if accesses else 0.0,
            )

    def _allocate_after(self, idx: int, keys: list[int]) -> None:
        page = LeafPage(next(self._page_ids), keys)
        self._pages.insert(idx + 1, page)
        self._separators.insert(idx, keys[0])
        self._page_splits += 1
        self._touch(page)

    def _touch(self, page: LeafPage) -> None:
        if page.page_id in self._buffer:
            self._hits += 1
            self._buffer.move_to_end(page.page_id)
            return
        self._misses += 1
        self._buffer[page.page_id] = None
        if len(self._buffer) > self._buffer_pages:
            self._buffer.popitem(last=False)
