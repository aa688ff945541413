from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from .config import Settings
from .records import ImageRecord, format_file_size
from .resolver import resolve_with_settings


class ImageOut(BaseModel):
    id: int
    product_id: int
    storage_key: str
    url: str
    alt: Optional[str] = None
    position: int
    width: Optional[int] = None
    height: Optional[int] = None
    size_variant: str
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    content_hash: Optional[str] = None
    created_at: datetime
    # 按存储客户端的配置解析，见 from_record
    cdn_url: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_record(cls, record, settings: Settings) -> "ImageOut":
        out = cls.model_validate(record)
        out.cdn_url = resolve_with_settings(record, settings)
        return out

    # 以下字段均在读取时计算，不入库
    @computed_field
    @property
    def is_primary(self) -> bool:
        return self._snapshot().is_primary()

    @computed_field
    @property
    def dimensions(self) -> Optional[str]:
        return self._snapshot().dimensions

    @computed_field
    @property
    def aspect_ratio(self) -> Optional[float]:
        return self._snapshot().aspect_ratio

    @computed_field
    @property
    def file_size_formatted(self) -> Optional[str]:
        return format_file_size(self.file_size)

    def _snapshot(self) -> ImageRecord:
        return ImageRecord.from_model(self)


class ImageListResponse(BaseModel):
    total: int
    page: int
    size: int
    items: List[ImageOut]


class IngestResponse(BaseModel):
    deduplicated: bool = False
    items: List[ImageOut]


class ImageTransferRequest(BaseModel):
    url: str = Field(..., description="在线图片URL")
    product_id: int = Field(..., description="所属商品ID")
    alt: Optional[str] = Field(None, max_length=160, description="替代文本，不填则按商品标题生成")


class StatsResponse(BaseModel):
    total_images: int
    total_size_bytes: int
    products_with_images: int
    by_size_variant: dict
    uploads_by_day: List[dict]


class CdnTestResponse(BaseModel):
    success: bool
    configured: bool
    connection: Dict[str, Any]
    environment: Dict[str, Any]
