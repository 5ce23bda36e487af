from __future__ import annotations

import time
import uuid

from procsim.domain.ids import id_timestamp_ms, is_newer, next_id


def test_next_id_is_a_version_7_uuid() -> None:
    value = uuid.UUID(next_id())

    assert value.version == 7
    assert value.variant == uuid.RFC_4122


def test_ids_sort_in_creation_order() -> None:
    ids = [next_id() for _ in range(2000)]

    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_timestamp_is_embedded() -> None:
    before = time.time_ns() // 1_000_000
    identifier = next_id()
    after = time.time_ns() // 1_000_000

    # The counter may roll the timestamp forward by a millisecond under load.
    assert before <= id_timestamp_ms(identifier) <= after + 1


def test_is_newer() -> None:
    older = next_id()
    newer = next_id()

    assert is_newer(newer, older)
    assert not is_newer(older, newer)
    assert not is_newer(older, older)
    assert is_newer(older, None)
