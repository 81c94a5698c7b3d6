"""日志初始化。"""

from __future__ import annotations

import logging


def setup_logging(level: int = logging.INFO) -> None:
    """初始化项目日志配置。"""

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(processName)s] %(levelname)s %(name)s: %(message)s",
    )
    # 第三方编解码库的调试输出过于冗长。
    for noisy in ("PIL", "cairosvg"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
