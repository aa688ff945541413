import logging
from typing import Dict, List, Optional, Tuple

import tinify
from tinify.errors import Error as TinifyError

from .config import Settings, get_settings


logger = logging.getLogger(__name__)


def is_enabled(settings: Optional[Settings] = None) -> bool:
    settings = settings or get_settings()
    return bool(settings.TINIFY_API_KEY)


def _normalize_format(fmt: Optional[str]) -> Optional[str]:
    if not fmt:
        return None
    fmt = fmt.lower()
    if fmt == "jpeg":
        fmt = "jpg"
    if fmt not in {"png", "jpg", "webp"}:
        return None
    return fmt


def compress_and_resize(
    data: bytes,
    *,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
    target_format: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Tuple[bytes, Optional[int], Optional[int], Optional[str]]:
    """用 TinyPNG 压缩，支持可选缩放与格式转换。
    返回 (输出字节, 宽, 高, 格式)。宽高在未能获取时返回 None。
    非图片或 TinyPNG 报错时返回原始数据。
    """
    settings = settings or get_settings()
    if not is_enabled(settings):
        return data, None, None, None

    tinify.key = settings.TINIFY_API_KEY
    try:
        source = tinify.from_buffer(data)

        # 尺寸调整
        if target_width and target_height:
            source = source.resize(method="fit", width=target_width, height=target_height)
        elif target_width and not target_height:
            source = source.resize(method="scale", width=target_width)
        elif target_height and not target_width:
            source = source.resize(method="scale", height=target_height)

        # 格式转换（支持 png/jpg/webp）
        fmt = _normalize_format(target_format)
        if fmt:
            source = source.convert(type=f"image/{'jpeg' if fmt == 'jpg' else fmt}")

        result = source.result()
        out_data = result.to_buffer()
    except TinifyError as e:
        logger.warning(f"TinyPNG 处理失败，使用原图: {e}")
        return data, None, None, None

    width = result.width if hasattr(result, "width") else None
    height = result.height if hasattr(result, "height") else None

    return out_data, width, height, fmt


def derive_variants(
    data: bytes,
    widths: Dict[str, int],
    *,
    target_format: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> List[Tuple[str, bytes, Optional[int], Optional[int]]]:
    """按宽度等比缩放生成各尺寸变体，返回 [(variant, 字节, 宽, 高)]。
    未启用 TinyPNG 时不生成任何变体。单个变体失败时跳过。
    """
    settings = settings or get_settings()
    if not is_enabled(settings):
        return []

    variants = []
    for variant, width in widths.items():
        out_data, out_width, out_height, _ = compress_and_resize(
            data, target_width=width, target_format=target_format, settings=settings
        )
        # 压缩失败时拿到的是原图，不作为变体保存
        if out_data is data:
            logger.warning(f"跳过尺寸变体: {variant}")
            continue
        variants.append((variant, out_data, out_width, out_height))
    return variants
