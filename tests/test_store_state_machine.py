"""条目状态机与批次计时测试。"""

from __future__ import annotations

import pytest

from image_transcoder.core.exceptions import ImageTranscoderError, InvalidTransitionError, ItemNotFound
from image_transcoder.core.formats import ImageFormat
from image_transcoder.core.models import ItemStatus
from image_transcoder.core.store import STARTED_PROGRESS, ItemStore


def make_store_with_item(data: bytes = b"source") -> tuple[ItemStore, str]:
    store = ItemStore()
    item = store.create("photo.png", data, ImageFormat.PNG, ImageFormat.WEBP)
    return store, item.id


def test_created_item_is_pending_with_original_size() -> None:
    store, item_id = make_store_with_item(b"12345")

    item = store.require(item_id)
    assert item.status is ItemStatus.PENDING
    assert item.progress == 0
    assert item.original_size == 5
    assert item.result_artifact is None and item.last_error is None


def test_pending_cannot_jump_to_completed() -> None:
    store, item_id = make_store_with_item()

    with pytest.raises(InvalidTransitionError):
        store.patch(item_id, status=ItemStatus.COMPLETED, result_artifact=b"x", result_size=1)

    assert store.require(item_id).status is ItemStatus.PENDING


def test_entering_processing_marks_started_progress() -> None:
    store, item_id = make_store_with_item()

    item = store.patch(item_id, status=ItemStatus.PROCESSING)

    assert item.status is ItemStatus.PROCESSING
    assert item.progress == STARTED_PROGRESS


def test_completed_requires_artifact_and_forces_full_progress() -> None:
    store, item_id = make_store_with_item()
    store.patch(item_id, status=ItemStatus.PROCESSING)

    with pytest.raises(InvalidTransitionError):
        store.patch(item_id, status=ItemStatus.COMPLETED)

    item = store.patch(item_id, status=ItemStatus.COMPLETED, result_artifact=b"out", result_size=3, progress=42)
    assert item.status is ItemStatus.COMPLETED
    assert item.progress == 100
    assert item.result_artifact == b"out"
    assert item.last_error is None


def test_error_keeps_progress_and_clears_results() -> None:
    store, item_id = make_store_with_item()
    store.patch(item_id, status=ItemStatus.PROCESSING)
    store.patch(item_id, progress=55)

    with pytest.raises(InvalidTransitionError):
        store.patch(item_id, status=ItemStatus.ERROR)

    item = store.patch(item_id, status=ItemStatus.ERROR, last_error="坏数据", progress=0)
    assert item.status is ItemStatus.ERROR
    assert item.progress == 55
    assert item.last_error == "坏数据"
    assert item.result_artifact is None


def test_progress_is_monotonic_and_below_100_while_processing() -> None:
    store, item_id = make_store_with_item()
    store.patch(item_id, status=ItemStatus.PROCESSING)

    store.patch(item_id, progress=60)
    store.patch(item_id, progress=30)
    assert store.require(item_id).progress == 60

    store.patch(item_id, progress=100)
    assert store.require(item_id).progress == 99


def test_progress_ignored_outside_processing() -> None:
    store, item_id = make_store_with_item()

    store.patch(item_id, progress=70)

    assert store.require(item_id).progress == 0


def test_terminal_states_only_leave_through_reset() -> None:
    store, item_id = make_store_with_item()
    store.patch(item_id, status=ItemStatus.PROCESSING)
    store.patch(item_id, status=ItemStatus.ERROR, last_error="失败")

    with pytest.raises(InvalidTransitionError):
        store.patch(item_id, status=ItemStatus.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        store.patch(item_id, status=ItemStatus.PENDING)

    item = store.reset(item_id)
    assert item.status is ItemStatus.PENDING
    assert item.progress == 0
    assert item.last_error is None


def test_reset_clears_previous_result_fields() -> None:
    store, item_id = make_store_with_item()
    store.patch(item_id, status=ItemStatus.PROCESSING)
    store.patch(
        item_id,
        status=ItemStatus.COMPLETED,
        result_artifact=b"out",
        result_size=3,
        complexity_flag=10,
    )

    item = store.reset(item_id)

    assert item.result_artifact is None
    assert item.result_size is None
    assert item.complexity_flag is None
    assert item.scaled_artifacts is None


def test_reset_rejects_processing_item() -> None:
    store, item_id = make_store_with_item()
    store.patch(item_id, status=ItemStatus.PROCESSING)

    with pytest.raises(InvalidTransitionError):
        store.reset(item_id)


def test_unknown_fields_are_rejected() -> None:
    store, item_id = make_store_with_item()

    with pytest.raises(InvalidTransitionError):
        store.patch(item_id, source_bytes=b"other")


def test_discard_releases_buffers() -> None:
    store, item_id = make_store_with_item()
    item = store.require(item_id)

    assert store.discard(item_id) is True
    assert store.discard(item_id) is False
    assert item.source_bytes is None
    assert store.get(item_id) is None
    with pytest.raises(ItemNotFound):
        store.patch(item_id, progress=20)


def test_listeners_receive_changes() -> None:
    store = ItemStore()
    seen: list[tuple[str, frozenset]] = []
    unsubscribe = store.subscribe(lambda item, changes: seen.append((item.status.value, changes)))

    item = store.create("a.png", b"x", ImageFormat.PNG, ImageFormat.PNG)
    store.patch(item.id, status=ItemStatus.PROCESSING)
    unsubscribe()
    store.patch(item.id, progress=50)

    assert seen[0][1] == frozenset({"created"})
    assert seen[1][0] == "processing"
    assert "status" in seen[1][1]
    assert len(seen) == 2


def test_duplicate_ids_are_rejected() -> None:
    store = ItemStore(id_factory=lambda: "img_fixed")
    store.create("a.png", b"x", ImageFormat.PNG, ImageFormat.PNG)

    with pytest.raises(ImageTranscoderError):
        store.create("b.png", b"y", ImageFormat.PNG, ImageFormat.PNG)


def test_batch_growth_keeps_start_and_retracts_end() -> None:
    store = ItemStore()

    batch = store.open_batch(2)
    start = batch.start_time
    store.close_batch()
    assert store.batch.end_time is not None

    store.grow_batch(3)
    assert store.batch.total_count == 5
    assert store.batch.start_time == start
    assert store.batch.end_time is None
    assert store.batch.is_open


def test_reset_restores_probed_source_dimensions() -> None:
    store = ItemStore()
    item_id = store.create("wide.jpg", b"source", ImageFormat.JPEG, ImageFormat.JPEG, dimensions=(400, 200)).id
    store.patch(item_id, status=ItemStatus.PROCESSING)
    store.patch(item_id, status=ItemStatus.COMPLETED, result_artifact=b"out", result_size=3, dimensions=(100, 50))

    item = store.reset(item_id)

    assert item.status is ItemStatus.PENDING
    assert item.dimensions == (400, 200)


def test_reset_clears_dimensions_when_none_were_probed() -> None:
    store = ItemStore()
    item_id = store.create("icon.svg", b"<svg/>", ImageFormat.SVG, ImageFormat.PNG).id
    store.patch(item_id, status=ItemStatus.PROCESSING)
    store.patch(item_id, status=ItemStatus.COMPLETED, result_artifact=b"png", result_size=3, dimensions=(16, 16))

    assert store.reset(item_id).dimensions is None
