"""条目存储与状态机。

所有修改都在控制线程（事件循环）上执行，两次挂起之间不会被抢占，因此不需要加锁。
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Iterator, Optional

from image_transcoder.core.exceptions import ImageTranscoderError, InvalidTransitionError, ItemNotFound
from image_transcoder.core.formats import ImageFormat
from image_transcoder.core.models import RESULT_FIELDS, BatchStats, ImageItem, ItemStatus

LOGGER = logging.getLogger(__name__)

# 进入 processing 时写入的“已开始”进度。
STARTED_PROGRESS = 10

_ALLOWED_TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.COMPLETED, ItemStatus.ERROR},
    ItemStatus.COMPLETED: set(),
    ItemStatus.ERROR: set(),
}

_PATCHABLE_FIELDS = frozenset(
    {
        "status",
        "progress",
        "output_format",
        "result_size",
        "result_artifact",
        "result_mime_type",
        "dimensions",
        "complexity_flag",
        "scaled_artifacts",
        "last_error",
    }
)

ChangeListener = Callable[[ImageItem, frozenset], None]


def generate_item_id() -> str:
    return f"img_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


class ItemStore:
    """保存当前工作集中的条目，并负责状态迁移校验与批次计时。"""

    def __init__(self, id_factory: Optional[Callable[[], str]] = None) -> None:
        self._items: dict[str, ImageItem] = {}
        self._id_factory = id_factory or generate_item_id
        self._listeners: list[ChangeListener] = []
        self.batch = BatchStats()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __iter__(self) -> Iterator[ImageItem]:
        return iter(list(self._items.values()))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """注册变更监听器，返回取消注册的函数。"""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def create(
        self,
        name: str,
        data: bytes,
        source_format: ImageFormat,
        output_format: ImageFormat,
        dimensions: Optional[tuple[int, int]] = None,
    ) -> ImageItem:
        """以 pending 状态登记新条目。"""

        item_id = self._id_factory()
        if item_id in self._items:
            raise ImageTranscoderError(f"条目 ID 冲突: {item_id}")

        item = ImageItem(
            id=item_id,
            name=name,
            source_bytes=data,
            source_format=source_format,
            output_format=output_format,
            original_size=len(data),
            dimensions=dimensions,
            source_dimensions=dimensions,
        )
        self._items[item_id] = item
        self._notify(item, frozenset({"created"}))
        return item

    def get(self, item_id: str) -> Optional[ImageItem]:
        return self._items.get(item_id)

    def require(self, item_id: str) -> ImageItem:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFound(f"条目不存在或已被移除: {item_id}")
        return item

    def list_by_status(self, status: ItemStatus) -> list[ImageItem]:
        return [item for item in self._items.values() if item.status is status]

    def patch(self, item_id: str, **fields: object) -> ImageItem:
        """更新条目字段，状态变化时校验迁移是否合法。"""

        item = self.require(item_id)

        unknown = set(fields) - _PATCHABLE_FIELDS
        if unknown:
            raise InvalidTransitionError(f"不可修改的字段: {', '.join(sorted(unknown))}")

        new_status = fields.pop("status", None)
        if new_status is not None and new_status is not item.status:
            self._prepare_transition(item, new_status, fields)
            fields["status"] = new_status
        elif "progress" in fields:
            fields["progress"] = self._clamp_progress(item, fields["progress"])
            if fields["progress"] is None:
                del fields["progress"]

        for key, value in fields.items():
            setattr(item, key, value)

        if fields:
            self._notify(item, frozenset(fields))
        return item

    def reset(self, item_id: str) -> ImageItem:
        """显式重新处理：终态回到 pending 并清空上次的结果。"""

        item = self.require(item_id)
        if item.status is ItemStatus.PENDING:
            return item
        if item.status is ItemStatus.PROCESSING:
            raise InvalidTransitionError(f"条目正在处理中，无法重置: {item_id}")

        for key in RESULT_FIELDS:
            setattr(item, key, None)
        item.dimensions = item.source_dimensions
        item.status = ItemStatus.PENDING
        item.progress = 0
        self._notify(item, frozenset({"status", "progress", "dimensions", *RESULT_FIELDS}))
        return item

    def discard(self, item_id: str) -> bool:
        """移除条目并释放其持有的缓冲区。"""

        item = self._items.pop(item_id, None)
        if item is None:
            return False

        item.source_bytes = None
        item.result_artifact = None
        item.scaled_artifacts = None
        LOGGER.debug("已移除条目 %s (%s)", item_id, item.name)
        self._notify(item, frozenset({"discarded"}))
        return True

    def clear(self) -> None:
        for item_id in list(self._items):
            self.discard(item_id)

    def open_batch(self, count: int) -> BatchStats:
        self.batch = BatchStats(start_time=time.time(), total_count=count)
        LOGGER.info("开始新批次，共 %d 个条目", count)
        return self.batch

    def grow_batch(self, count: int) -> BatchStats:
        self.batch.total_count += count
        self.batch.end_time = None
        LOGGER.debug("批次追加 %d 个条目，当前总数 %d", count, self.batch.total_count)
        return self.batch

    def close_batch(self) -> BatchStats:
        self.batch.end_time = time.time()
        LOGGER.info(
            "批次结束：成功 %d，失败 %d，共 %d，耗时 %.2fs",
            self.batch.completed_count,
            self.batch.failed_count,
            self.batch.total_count,
            self.batch.duration or 0.0,
        )
        return self.batch

    def _prepare_transition(self, item: ImageItem, new_status: ItemStatus, fields: dict) -> None:
        if new_status not in _ALLOWED_TRANSITIONS[item.status]:
            raise InvalidTransitionError(
                f"非法状态迁移 {item.status.value} -> {new_status.value}: {item.id}"
            )

        if new_status is ItemStatus.PROCESSING:
            fields["progress"] = STARTED_PROGRESS
        elif new_status is ItemStatus.COMPLETED:
            artifact = fields.get("result_artifact", item.result_artifact)
            if artifact is None:
                raise InvalidTransitionError(f"完成状态必须带有结果数据: {item.id}")
            fields["progress"] = 100
            fields["last_error"] = None
        elif new_status is ItemStatus.ERROR:
            if not fields.get("last_error"):
                raise InvalidTransitionError(f"失败状态必须带有错误原因: {item.id}")
            # 保留失败时的进度，方便界面显示停在哪一步。
            fields.pop("progress", None)
            for key in RESULT_FIELDS:
                if key != "last_error":
                    fields[key] = None

    def _clamp_progress(self, item: ImageItem, value: object) -> Optional[int]:
        if item.status is not ItemStatus.PROCESSING:
            return None
        # 100 只能随 completed 一起写入。
        return max(item.progress, min(int(value), 99))

    def _notify(self, item: ImageItem, changes: frozenset) -> None:
        for listener in list(self._listeners):
            listener(item, changes)
