"""项目内使用的自定义异常定义。"""


class ImageTranscoderError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageTranscoderError):
    """配置不合法时抛出。"""


class DecodeFailure(ImageTranscoderError):
    """源数据损坏或格式不受支持，无法解码。"""


class EncodeFailure(ImageTranscoderError):
    """编码器拒绝像素数据或编码参数。"""


class ConversionFailure(ImageTranscoderError):
    """专有格式归一化或矢量栅格化失败。"""


class ItemNotFound(ImageTranscoderError):
    """引用了已被丢弃的条目。"""


class UnsupportedRoute(ImageTranscoderError):
    """格式决策矩阵没有对应的处理策略。"""


class InvalidTransitionError(ImageTranscoderError):
    """条目状态机收到非法的状态迁移。"""


class ImageWriteError(ImageTranscoderError):
    """输出写入失败。"""
