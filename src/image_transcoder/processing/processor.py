"""单个条目的处理：选择策略、调用编解码能力并驱动状态机。"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from image_transcoder.core.config import CompressionSettings, PipelineConfig
from image_transcoder.core.exceptions import ImageTranscoderError, ItemNotFound, UnsupportedRoute
from image_transcoder.core.formats import INTERMEDIATE_FORMAT, ImageFormat
from image_transcoder.core.models import ImageItem, ItemStatus, ScaledArtifact
from image_transcoder.core.store import ItemStore
from image_transcoder.processing.codecs import CodecSet, load_svg_text
from image_transcoder.processing.complexity import evaluate_complexity
from image_transcoder.processing.executor_pool import ExecutorPool
from image_transcoder.processing.multiscale import export_scales
from image_transcoder.processing.routing import Strategy, resolve_output_format, select_strategy
from image_transcoder.processing.worker import TranscodeJob, TranscodeResult

LOGGER = logging.getLogger(__name__)

SettingsProvider = Callable[[], CompressionSettings]

VECTOR_OPTIMIZED_PROGRESS = 60
NORMALIZED_PROGRESS = 40
SCALE_PROGRESS_START = 20
SCALE_PROGRESS_SPAN = 70


class ItemProcessor:
    """执行一次处理尝试，把结果或错误写回条目。

    单个条目内的任何失败都在这里被捕获并记录为 error 状态，不会影响同批次的其他条目。
    """

    def __init__(
        self,
        store: ItemStore,
        pool: ExecutorPool,
        settings_provider: SettingsProvider,
        config: Optional[PipelineConfig] = None,
        codecs: Optional[CodecSet] = None,
    ) -> None:
        self._store = store
        self._pool = pool
        self._settings_provider = settings_provider
        self._config = config or PipelineConfig()
        self._codecs = codecs or CodecSet()

    async def process(self, item_id: str) -> Optional[ItemStatus]:
        """处理一个 pending 条目，返回最终状态；条目不存在或被移除时返回 None。"""

        item = self._store.get(item_id)
        if item is None or item.status is not ItemStatus.PENDING:
            LOGGER.debug("跳过条目 %s：不存在或不处于 pending 状态", item_id)
            return None

        source = item.source_bytes
        self._store.patch(item_id, status=ItemStatus.PROCESSING)

        try:
            # 设置在开始处理时读取，而不是在提交时。
            settings = self._settings_provider()
            output_format = resolve_output_format(item.source_format, settings.output_format)
            self._update(item, output_format=output_format)
            strategy = select_strategy(item.source_format, output_format)
            LOGGER.debug("条目 %s 使用策略 %s -> %s", item.name, strategy.value, output_format.value)
            fields = await self._run_strategy(strategy, item, source, output_format, settings)
        except ItemNotFound:
            LOGGER.debug("条目 %s 已在处理中被移除，丢弃结果", item_id)
            return None
        except ImageTranscoderError as exc:
            return self._fail(item, str(exc))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("处理 %s 时发生未预期的异常", item.name)
            return self._fail(item, str(exc) or exc.__class__.__name__)

        if not self._is_current(item):
            LOGGER.debug("条目 %s 已被移除，丢弃迟到的结果", item_id)
            return None

        self._store.patch(item_id, status=ItemStatus.COMPLETED, **fields)
        LOGGER.info(
            "完成 %s：%d -> %d 字节 (%s)",
            item.name,
            item.original_size,
            fields["result_size"],
            output_format.value,
        )
        return ItemStatus.COMPLETED

    async def _run_strategy(
        self,
        strategy: Strategy,
        item: ImageItem,
        source: bytes,
        output_format: ImageFormat,
        settings: CompressionSettings,
    ) -> dict[str, Any]:
        if strategy is Strategy.VECTOR_OPTIMIZE:
            return await self._optimize_vector(item, source, settings)
        if strategy is Strategy.VECTOR_RASTERIZE:
            return await self._rasterize_vector(item, source, output_format, settings)
        if strategy is Strategy.NORMALIZE_PROPRIETARY:
            return await self._normalize_proprietary(item, source, output_format, settings)
        if strategy is Strategy.RASTER_TRANSCODE:
            result = await self._transcode(item, source, item.source_format, output_format, settings)
            return _result_fields(result)
        raise UnsupportedRoute(f"未实现的处理策略: {strategy}")

    async def _optimize_vector(
        self, item: ImageItem, source: bytes, settings: CompressionSettings
    ) -> dict[str, Any]:
        text = load_svg_text(source)
        data = self._codecs.optimize_vector(text).encode("utf-8")
        self._update(item, progress=VECTOR_OPTIMIZED_PROGRESS)

        flag = await evaluate_complexity(
            self._pool, self._codecs, text, len(data), settings.quality, self._config
        )
        if flag is not None:
            LOGGER.info("%s 的 SVG 输出比栅格对比结果更大（%d 字节）", item.name, flag)

        return {
            "result_artifact": data,
            "result_size": len(data),
            "result_mime_type": ImageFormat.SVG.mime_type,
            "complexity_flag": flag,
        }

    async def _rasterize_vector(
        self,
        item: ImageItem,
        source: bytes,
        output_format: ImageFormat,
        settings: CompressionSettings,
    ) -> dict[str, Any]:
        text = load_svg_text(source)
        scales = settings.export_scales
        finished = 0

        def on_scale_done(artifact: ScaledArtifact) -> None:
            nonlocal finished
            finished += 1
            progress = SCALE_PROGRESS_START + SCALE_PROGRESS_SPAN * finished // len(scales)
            self._update(item, progress=progress)

        artifacts = await export_scales(
            self._pool,
            self._codecs,
            text,
            output_format,
            settings,
            self._config,
            scales=scales,
            on_scale_done=on_scale_done,
        )
        primary = artifacts[0]
        return {
            "result_artifact": primary.data,
            "result_size": sum(artifact.size for artifact in artifacts),
            "result_mime_type": output_format.mime_type,
            "dimensions": (primary.width, primary.height),
            "scaled_artifacts": artifacts,
        }

    async def _normalize_proprietary(
        self,
        item: ImageItem,
        source: bytes,
        output_format: ImageFormat,
        settings: CompressionSettings,
    ) -> dict[str, Any]:
        normalized = await self._pool.call(self._codecs.normalize_proprietary, source)
        self._update(
            item,
            dimensions=(normalized.width, normalized.height),
            progress=NORMALIZED_PROGRESS,
        )
        result = await self._transcode(item, normalized.data, INTERMEDIATE_FORMAT, output_format, settings)
        return _result_fields(result)

    async def _transcode(
        self,
        item: ImageItem,
        source: bytes,
        source_format: ImageFormat,
        output_format: ImageFormat,
        settings: CompressionSettings,
    ) -> TranscodeResult:
        job = TranscodeJob(
            source=source,
            source_format=source_format,
            target_format=output_format,
            quality=settings.quality,
            lossless=settings.lossless,
            max_dimension=settings.max_dimension,
            keep_metadata=not settings.strip_metadata,
        )
        return await self._pool.submit(job, on_progress=lambda value: self._update(item, progress=value))

    def _update(self, item: ImageItem, **fields: Any) -> None:
        if not self._is_current(item):
            raise ItemNotFound(f"条目已被移除: {item.id}")
        self._store.patch(item.id, **fields)

    def _is_current(self, item: ImageItem) -> bool:
        # 按对象身份比较，避免 ID 被新条目复用时串写结果。
        return self._store.get(item.id) is item

    def _fail(self, item: ImageItem, message: str) -> Optional[ItemStatus]:
        if not self._is_current(item):
            LOGGER.debug("条目 %s 已被移除，忽略错误: %s", item.id, message)
            return None
        LOGGER.error("处理 %s 失败：%s", item.name, message)
        self._store.patch(item.id, status=ItemStatus.ERROR, last_error=message)
        return ItemStatus.ERROR


def _result_fields(result: TranscodeResult) -> dict[str, Any]:
    return {
        "result_artifact": result.data,
        "result_size": len(result.data),
        "result_mime_type": result.mime_type,
        "dimensions": (result.width, result.height),
    }
