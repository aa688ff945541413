from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class SizeVariant(str, Enum):
    ORIGINAL = "original"
    THUMB = "thumb"
    MEDIUM = "medium"
    LARGE = "large"


SIZE_VARIANTS = tuple(v.value for v in SizeVariant)

PRIMARY_POSITION = 0


@dataclass(frozen=True)
class ImageRecord:
    """图片记录的只读快照，与 ORM 会话解耦。派生字段只在读取时计算，不入库。"""

    id: Optional[int]
    product_id: int
    storage_key: str
    url: str
    alt: Optional[str] = None
    position: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    size_variant: str = SizeVariant.ORIGINAL.value
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    content_hash: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, obj) -> "ImageRecord":
        variant = obj.size_variant
        if isinstance(variant, Enum):
            variant = variant.value
        return cls(
            id=obj.id,
            product_id=obj.product_id,
            storage_key=obj.storage_key,
            url=obj.url,
            alt=obj.alt,
            position=obj.position,
            width=obj.width,
            height=obj.height,
            size_variant=variant,
            file_size=obj.file_size,
            content_type=obj.content_type,
            content_hash=obj.content_hash,
            created_at=obj.created_at,
        )

    def with_url(self, url: str) -> "ImageRecord":
        return replace(self, url=url)

    def is_primary(self) -> bool:
        return self.position == PRIMARY_POSITION

    def is_size_variant(self, variant: str) -> bool:
        return self.size_variant == variant

    def has_valid_dimensions(self) -> bool:
        return bool(self.width and self.height and self.width > 0 and self.height > 0)

    @property
    def dimensions(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None

    @property
    def aspect_ratio(self) -> Optional[float]:
        if self.width and self.height and self.height > 0:
            return round(self.width / self.height, 2)
        return None

    def has_valid_file_size(self) -> bool:
        return bool(self.file_size and self.file_size > 0)

    @property
    def file_size_formatted(self) -> Optional[str]:
        return format_file_size(self.file_size)


def format_file_size(size: Optional[int]) -> Optional[str]:
    """1536 -> '1.5 KB'"""
    if size is None:
        return None
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    while i < len(units) - 1 and size >= 1024 ** (i + 1):
        i += 1
    value = round(size / 1024 ** i, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"
