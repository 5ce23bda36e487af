"""Time-ordered identifiers for simulation records, children and jobs."""

from __future__ import annotations

import os
import threading
import time
import uuid

_lock = threading.Lock()
_last_ms = 0
_counter = 0


def next_id() -> str:
    """Return a UUIDv7 string.

    The first 48 bits carry the Unix time in milliseconds and the next 12 bits a
    per-process counter, so identifiers minted by one process sort lexically in
    creation order.
    """

    global _last_ms, _counter
    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            _counter = int.from_bytes(os.urandom(2), "big") & 0x3FF
        else:
            _counter += 1
            if _counter > 0xFFF:
                _last_ms += 1
                _counter = 0
        timestamp_ms = _last_ms
        counter = _counter

    rand_b = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)
    value = (timestamp_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= counter << 64
    value |= 0b10 << 62
    value |= rand_b
    return str(uuid.UUID(int=value))


def id_timestamp_ms(identifier: str) -> int:
    """Extract the embedded millisecond timestamp from a UUIDv7 string."""

    return uuid.UUID(identifier).int >> 80


def is_newer(candidate: str, reference: str | None) -> bool:
    """Return True when ``candidate`` was minted after ``reference``."""

    if reference is None:
        return True
    return candidate > reference


__all__ = ["id_timestamp_ms", "is_newer", "next_id"]
