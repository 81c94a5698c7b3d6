"""执行池初始化与任务提交测试。"""

from __future__ import annotations

import asyncio
import io
from concurrent.futures import Executor, ThreadPoolExecutor

import pytest
from PIL import Image

from image_transcoder.core.exceptions import DecodeFailure
from image_transcoder.core.formats import ImageFormat
from image_transcoder.processing.executor_pool import (
    DISPATCHED_PROGRESS,
    RETURNED_PROGRESS,
    ExecutorPool,
    get_executor_pool,
)
from image_transcoder.processing.worker import TranscodeJob


class CountingFactory:
    def __init__(self, failures: int = 0) -> None:
        self.created = 0
        self.failures = failures

    def __call__(self, max_workers: int) -> Executor:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("执行器创建失败")
        self.created += 1
        return ThreadPoolExecutor(max_workers=max_workers)


def png_bytes(size: tuple[int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, "red").save(buffer, format="PNG")
    return buffer.getvalue()


def test_concurrent_start_creates_single_executor() -> None:
    factory = CountingFactory()
    pool = ExecutorPool(max_workers=2, executor_factory=factory)

    async def scenario() -> None:
        results = await asyncio.gather(*(pool.start() for _ in range(5)))
        assert all(result is pool for result in results)
        await pool.start()

    try:
        asyncio.run(scenario())
        assert factory.created == 1
        assert pool.is_ready
    finally:
        pool.shutdown()
    assert not pool.is_ready


def test_failed_initialization_can_be_retried() -> None:
    factory = CountingFactory(failures=1)
    pool = ExecutorPool(max_workers=1, executor_factory=factory)

    async def scenario() -> None:
        with pytest.raises(RuntimeError):
            await pool.start()
        assert not pool.is_ready
        await pool.start()

    try:
        asyncio.run(scenario())
        assert pool.is_ready
        assert factory.created == 1
    finally:
        pool.shutdown()


def test_submit_returns_encoded_result_and_progress() -> None:
    pool = ExecutorPool(max_workers=1)
    progress: list[int] = []
    job = TranscodeJob(
        source=png_bytes((40, 20)),
        source_format=ImageFormat.PNG,
        target_format=ImageFormat.JPEG,
        quality=70,
    )

    try:
        result = asyncio.run(pool.submit(job, on_progress=progress.append))
    finally:
        pool.shutdown()

    assert result.mime_type == "image/jpeg"
    assert (result.width, result.height) == (40, 20)
    assert result.data[:2] == b"\xff\xd8"
    assert progress == [DISPATCHED_PROGRESS, RETURNED_PROGRESS]


def test_submit_raises_decode_failure_for_corrupt_source() -> None:
    pool = ExecutorPool(max_workers=1)
    job = TranscodeJob(
        source=b"\x89PNG broken",
        source_format=ImageFormat.PNG,
        target_format=ImageFormat.WEBP,
        quality=70,
    )

    try:
        with pytest.raises(DecodeFailure):
            asyncio.run(pool.submit(job))
    finally:
        pool.shutdown()


def test_call_runs_function_in_executor() -> None:
    pool = ExecutorPool(max_workers=1)

    try:
        assert asyncio.run(pool.call(max, 3, 7)) == 7
    finally:
        pool.shutdown()


def test_shared_pool_is_created_once() -> None:
    get_executor_pool.cache_clear()
    try:
        first = get_executor_pool()
        assert get_executor_pool() is first
        assert not first.is_ready
    finally:
        get_executor_pool.cache_clear()
