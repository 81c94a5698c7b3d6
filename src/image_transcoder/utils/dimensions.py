"""尺寸计算工具函数。"""

from __future__ import annotations

from typing import Optional, Tuple


def fit_within(width: int, height: int, limit: Optional[int]) -> Tuple[int, int]:
    """等比缩放使最长边不超过 limit，未超出时原样返回。"""

    if width <= 0 or height <= 0:
        raise ValueError(f"尺寸必须为正数: {width}x{height}")
    if not limit or (width <= limit and height <= limit):
        return width, height

    if width >= height:
        new_width = limit
        new_height = max(1, round(height / width * limit))
    else:
        new_height = limit
        new_width = max(1, round(width / height * limit))
    return new_width, new_height
