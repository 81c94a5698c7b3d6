"""批量队列与调度器。

调度器持有一个 FIFO 队列和一个 draining 标志。每一轮排空把当前队列中的条目全部并发
启动并等待其结束，处理期间新加入的条目由下一轮接手。队列为空且没有进行中的工作时结束
批次计时。
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable, Iterable, Optional

from image_transcoder.core.config import PipelineConfig
from image_transcoder.core.models import ItemStatus
from image_transcoder.core.progress import ProgressUpdate
from image_transcoder.core.store import ItemStore
from image_transcoder.processing.codecs import CodecSet
from image_transcoder.processing.executor_pool import ExecutorPool
from image_transcoder.processing.processor import ItemProcessor, SettingsProvider

LOGGER = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


class Scheduler:
    """接收条目 ID、分发到执行池并汇总完成情况。

    所有方法都必须在同一个事件循环中调用。
    """

    def __init__(
        self,
        store: ItemStore,
        pool: ExecutorPool,
        settings_provider: SettingsProvider,
        config: Optional[PipelineConfig] = None,
        codecs: Optional[CodecSet] = None,
        progress_callback: ProgressCallback = None,
    ) -> None:
        self._store = store
        self._pool = pool
        self._processor = ItemProcessor(store, pool, settings_provider, config, codecs)
        self._progress_callback = progress_callback
        self._queue: deque[str] = deque()
        self._in_flight: set[str] = set()
        self._draining = False
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def queued_ids(self) -> list[str]:
        return list(self._queue)

    @property
    def in_flight_ids(self) -> set[str]:
        return set(self._in_flight)

    def admit(self, ids: Iterable[str]) -> None:
        """加入队列；空闲时开启新批次，排空中则扩充当前批次。"""

        new_ids = list(ids)
        if not new_ids:
            return

        if self._draining:
            self._store.grow_batch(len(new_ids))
        else:
            self._store.open_batch(len(new_ids))

        self._queue.extend(new_ids)
        self._start_drain()

    def reprocess(self, ids: Iterable[str]) -> None:
        """显式重新处理：终态条目回到 pending 后重新加入队列。"""

        ready: list[str] = []
        for item_id in ids:
            if self._store.get(item_id) is None:
                LOGGER.debug("忽略不存在的条目 %s", item_id)
                continue
            self._store.reset(item_id)
            ready.append(item_id)
        self.admit(ready)

    def discard(self, item_id: str) -> bool:
        """移除条目；进行中的执行器任务不会被中止，其结果会被丢弃。"""

        if item_id in self._queue:
            self._queue.remove(item_id)
        return self._store.discard(item_id)

    async def drain(self) -> None:
        """启动排空（若尚未开始）并等待其结束。"""

        if self._queue:
            self._start_drain()
        await self.join()

    def _start_drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while True:
                while self._queue:
                    await self._run_pass()

                # 检查队列与结束批次之间没有挂起点，新的 admit 不会插入其中。
                batch = self._store.close_batch()
                self._emit(ProgressUpdate(total=batch.total_count, completed=batch.finished_count, status="done"))

                # 回调中加入的条目已扩充本批次（end_time 被撤回），继续排空。
                if not self._queue:
                    break
        finally:
            self._draining = False

    async def _run_pass(self) -> None:
        units: list[str] = []
        while self._queue:
            item_id = self._queue.popleft()
            item = self._store.get(item_id)
            if item is None or item.status is not ItemStatus.PENDING:
                LOGGER.debug("跳过条目 %s：不存在或不处于 pending 状态", item_id)
                continue
            units.append(item_id)

        await asyncio.gather(*(self._run_unit(item_id) for item_id in units))

    async def join(self) -> None:
        """等待当前（及期间新启动的）排空结束。"""

        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def _run_unit(self, item_id: str) -> None:
        self._in_flight.add(item_id)
        try:
            status = await self._processor.process(item_id)
        finally:
            self._in_flight.discard(item_id)

        batch = self._store.batch
        if status is ItemStatus.COMPLETED:
            batch.completed_count += 1
        elif status is ItemStatus.ERROR:
            batch.failed_count += 1
        else:
            return

        item = self._store.get(item_id)
        name = item.name if item is not None else item_id
        self._emit(
            ProgressUpdate(
                total=batch.total_count,
                completed=batch.finished_count,
                message=f"{name}: {status.value}",
                item_id=item_id,
            )
        )

    def _emit(self, update: ProgressUpdate) -> None:
        if self._progress_callback is not None:
            self._progress_callback(update)
