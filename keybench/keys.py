"""Primary-key encodings compared by the benchmark."""

from __future__ import annotations

import itertools
import os
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from .workload import ConfigurationError

VARIANTS: tuple[str, ...] = ("bigserial", "uuidv4", "uuidv7", "ulid", "uuidv1")
DEFAULT_BASELINE = "bigserial"


@dataclass(frozen=True)
class Key:
    sort_key: int
    # Bound as a query parameter: int for bigserial, canonical text for UUIDs.
    value: int | str


class KeyGenerator:
    """Thread-safe source of keys for one variant."""

    def __init__(self, variant: str, factory: Callable[[], Key]) -> None:
        self.variant = variant
        self._factory = factory
        self._lock = threading.Lock()

    def __call__(self) -> Key:
        with self._lock:
            return self._factory()


def _unix_ms() -> int:
    return time.time_ns() // 1_000_000


def uuid7(timestamp_ms: int | None = None) -> uuid.UUID:
    ts = _unix_ms() if timestamp_ms is None else timestamp_ms
    rand = int.from_bytes(os.urandom(10), "big")
    value = (ts & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & ((1 << 62) - 1)
    return uuid.UUID(int=value)


def ulid(timestamp_ms: int | None = None) -> uuid.UUID:
    """ULID as a 128-bit UUID: 48-bit ms timestamp followed by 80 random bits."""
    ts = _unix_ms() if timestamp_ms is None else timestamp_ms
    rand = int.from_bytes(os.urandom(10), "big")
    return uuid.UUID(int=((ts & ((1 << 48) - 1)) << 80) | rand)


def _uuid_key(value: uuid.UUID) -> Key:
    # UUID columns compare bytewise, which is the big-endian integer order.
    return Key(sort_key=value.int, value=str(value))


def make_generator(variant: str, start: int = 1) -> KeyGenerator:
    if variant == "bigserial":
        counter = itertools.count(start)

        def factory() -> Key:
            value = next(counter)
            return Key(sort_key=value, value=value)

    elif variant == "uuidv4":
        def factory() -> Key:
            return _uuid_key(uuid.uuid4())

    elif variant == "uuidv7":
        def factory() -> Key:
            return _uuid_key(uuid7())

    elif variant == "ulid":
        def factory() -> Key:
            return _uuid_key(ulid())

    elif variant == "uuidv1":
        def factory() -> Key:
            return _uuid_key(uuid.uuid1())

    else:
        raise ConfigurationError(
            f"unknown variant {variant!r}; expected one of {', '.join(VARIANTS)}"
        )
    return KeyGenerator(variant, factory)
