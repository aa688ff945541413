"""CDN 对象存储客户端（PUT / DELETE / GET 根目录）。

所有请求只发一次，失败直接抛出 StorageTransportError，不做任何重试：
删除等操作的幂等假设依赖于此。
"""
import logging
import random
import re
import string
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, get_settings
from .exceptions import ConfigurationError, StorageTransportError
from .resolver import join_url


logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"  # 1 年

_SANITIZE_RE = re.compile(r"[^A-Za-z0-9\-_]")
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class UploadResult:
    key: str
    url: str
    size: int
    content_type: str


@dataclass
class DeleteManyResult:
    successful: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class ProbeResult:
    success: bool
    status: Optional[int] = None
    error: Optional[str] = None
    message: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


def generate_key(product_id: int, size_variant: str, extension: str, filename: Optional[str] = None) -> str:
    """products/{id}/images/{variant}/{name}_{毫秒时间戳}_{6位随机}.{ext}

    唯一性依赖时间戳+随机后缀，只是“极不可能冲突”，调用方不应假设绝对唯一。
    """
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(_RANDOM_ALPHABET, k=6))
    base = "image"
    if filename:
        stem = filename.rsplit(".", 1)[0] if "." in filename else filename
        base = _SANITIZE_RE.sub("_", stem) or "image"
    ext = extension.lower().lstrip(".")
    return f"products/{product_id}/images/{size_variant}/{base}_{timestamp}_{suffix}.{ext}"


class CdnStorage:
    """无状态客户端：只持有只读配置，可被多个调用方共享。"""

    def __init__(self, settings: Optional[Settings] = None, *, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def storage_url(self) -> str:
        return (self.settings.STORAGE_URL or "").rstrip("/")

    @property
    def public_base_url(self) -> str:
        return (self.settings.STORAGE_SERVER_BASE_URL or "").rstrip("/")

    def is_configured(self) -> bool:
        return bool(
            self.settings.STORAGE_URL
            and self.settings.STORAGE_SERVER_BASE_URL
            and self.settings.STORAGE_SERVER_ACCESS_KEY
        )

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(
                "CDN 存储未正确配置，请设置 STORAGE_URL、STORAGE_SERVER_BASE_URL、STORAGE_SERVER_ACCESS_KEY"
            )

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self._transport)

    def public_url(self, key: str) -> str:
        return join_url(self.public_base_url, key)

    def generate_key(self, product_id: int, size_variant: str, extension: str, filename: Optional[str] = None) -> str:
        return generate_key(product_id, size_variant, extension, filename)

    def upload(self, data: bytes, key: str, content_type: str) -> UploadResult:
        """上传字节，返回 key / 公网URL / 大小 / 类型。"""
        self._require_configured()
        headers = {
            "AccessKey": self.settings.STORAGE_SERVER_ACCESS_KEY,
            "Content-Type": content_type,
            "Cache-Control": CACHE_CONTROL,
        }
        target = join_url(self.storage_url, key)
        try:
            with self._client(self.settings.STORAGE_TIMEOUT) as client:
                response = client.put(target, content=data, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"CDN上传失败: key={key} status={e.response.status_code}")
            raise StorageTransportError(
                f"CDN上传失败: {e.response.reason_phrase or e.response.text}",
                status_code=e.response.status_code,
                operation="put",
                key=key,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"CDN上传失败: key={key} error={e}")
            raise StorageTransportError(f"CDN上传失败: {e}", operation="put", key=key) from e

        logger.info(f"CDN上传成功: key={key} size={len(data)} status={response.status_code}")
        return UploadResult(key=key, url=self.public_url(key), size=len(data), content_type=content_type)

    def delete(self, key: str) -> bool:
        self._require_configured()
        target = join_url(self.storage_url, key)
        try:
            with self._client(self.settings.STORAGE_TIMEOUT) as client:
                response = client.delete(target, headers={"AccessKey": self.settings.STORAGE_SERVER_ACCESS_KEY})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"CDN删除失败: key={key} status={e.response.status_code}")
            raise StorageTransportError(
                f"CDN删除失败: {e.response.reason_phrase or e.response.text}",
                status_code=e.response.status_code,
                operation="delete",
                key=key,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"CDN删除失败: key={key} error={e}")
            raise StorageTransportError(f"CDN删除失败: {e}", operation="delete", key=key) from e

        logger.info(f"CDN删除成功: key={key} status={response.status_code}")
        return True

    def delete_many(self, keys: List[str]) -> DeleteManyResult:
        """逐个删除，单个失败不影响其余 key；每个 key 只尝试一次。"""
        result = DeleteManyResult()
        for key in keys:
            try:
                self.delete(key)
                result.successful.append(key)
            except Exception as e:
                logger.warning(f"批量删除中单个对象失败，继续处理: key={key!r} error={e}")
                result.failed.append({"key": key, "error": str(e)})
        return result

    def probe(self) -> ProbeResult:
        """列根目录探测连通性，从不抛异常。"""
        if not self.is_configured():
            return ProbeResult(success=False, error="CDN 存储未正确配置")
        try:
            with self._client(self.settings.STORAGE_PROBE_TIMEOUT) as client:
                response = client.get(
                    f"{self.storage_url}/",
                    headers={"AccessKey": self.settings.STORAGE_SERVER_ACCESS_KEY},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"CDN连通性检测失败: status={e.response.status_code}")
            return ProbeResult(
                success=False,
                status=e.response.status_code,
                error=e.response.reason_phrase or f"HTTP {e.response.status_code}",
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"CDN连通性检测失败: {e}")
            return ProbeResult(success=False, error=str(e) or e.__class__.__name__)
        return ProbeResult(success=True, status=response.status_code, message="CDN 连接正常")


_storage: Optional[CdnStorage] = None


def get_storage() -> CdnStorage:
    global _storage
    if _storage is None:
        _storage = CdnStorage(get_settings())
    return _storage
