"""有界执行池：隔离的工作进程通过消息传递完成解码、缩放与编码。

执行池在首次使用前显式初始化，重复或并发调用 ``start`` 只会创建一组执行器。
"""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from functools import lru_cache
from typing import Any, Callable, Optional

from image_transcoder.core.exceptions import DecodeFailure, EncodeFailure, ImageTranscoderError
from image_transcoder.processing.worker import TranscodeJob, TranscodeResult, run_job, warm_up

LOGGER = logging.getLogger(__name__)

# 进度由控制端在分派与取回结果时发出，工作进程本身不上报；数值仅供参考。
DISPATCHED_PROGRESS = 20
RETURNED_PROGRESS = 90

ProgressCallback = Optional[Callable[[int], None]]
ExecutorFactory = Callable[[int], Executor]

_FAILURES = {
    "error-decode": DecodeFailure,
    "error-encode": EncodeFailure,
}


def default_executor_factory(max_workers: int) -> Executor:
    if max_workers <= 1:
        # 单并发时在线程中执行，便于调试与测试。
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="transcoder")
    return ProcessPoolExecutor(max_workers=max_workers)


class ExecutorPool:
    """转码执行池。"""

    def __init__(
        self,
        max_workers: Optional[int] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ) -> None:
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor_factory = executor_factory or default_executor_factory
        self._executor: Optional[Executor] = None
        self._init_task: Optional[asyncio.Future] = None

    @property
    def is_ready(self) -> bool:
        return self._executor is not None

    async def start(self) -> "ExecutorPool":
        """幂等初始化；并发调用者等待同一个初始化任务。"""

        if self._executor is not None:
            return self

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task

        try:
            await asyncio.shield(task)
        except Exception:
            # 初始化失败后允许下一次调用重试。
            if self._init_task is task and task.done():
                self._init_task = None
            raise
        return self

    async def submit(self, job: TranscodeJob, on_progress: ProgressCallback = None) -> TranscodeResult:
        """提交一次转码任务，失败时抛出 DecodeFailure / EncodeFailure。

        ``on_progress`` 只在分派前与结果返回后各调用一次。
        """

        executor = await self._ready_executor()
        _emit(on_progress, DISPATCHED_PROGRESS)

        loop = asyncio.get_running_loop()
        outcome = await loop.run_in_executor(executor, run_job, job)
        _emit(on_progress, RETURNED_PROGRESS)

        if outcome.status != "ok" or outcome.result is None:
            failure = _FAILURES.get(outcome.status, ImageTranscoderError)
            raise failure(outcome.message or "转码失败")
        return outcome.result

    async def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """在执行池中运行模块级函数（栅格化、格式归一化等）。"""

        executor = await self._ready_executor()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            LOGGER.info("关闭执行池")
            self._executor.shutdown(wait=wait)
        self._executor = None
        self._init_task = None

    async def _ready_executor(self) -> Executor:
        await self.start()
        assert self._executor is not None
        return self._executor

    async def _initialize(self) -> None:
        LOGGER.info("初始化执行池，并发数 %d", self.max_workers)
        executor = self._executor_factory(self.max_workers)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(executor, warm_up)
        except Exception:
            executor.shutdown(wait=False)
            raise
        self._executor = executor


@lru_cache(maxsize=1)
def get_executor_pool() -> ExecutorPool:
    """进程级共享执行池，首次调用时创建。"""

    return ExecutorPool()


def _emit(callback: ProgressCallback, value: int) -> None:
    if callback is not None:
        callback(value)
