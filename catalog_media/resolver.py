"""图片展示地址解析。

历史上图片分别存放在旧对象存储（S3）与新 CDN 上，记录里的 url / storage_key
有三种形态。这里把任意一条记录映射为唯一的对外展示地址，纯函数，无 I/O。
"""
import re
from typing import Iterable, Optional, Protocol
from urllib.parse import urlparse


DEFAULT_PASSTHROUGH_HOSTS = ("placeholder.com", "picsum.photos", "unsplash.com", "loremflickr.com")
DEFAULT_CDN_HOSTS = ("b-cdn.net", "bunnycdn.com")
DEFAULT_LEGACY_HOST = "amazonaws.com"

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


class HasImageLocation(Protocol):
    url: Optional[str]
    storage_key: Optional[str]


def join_url(base: str, key: str) -> str:
    """用单个 / 拼接根地址与 key。"""
    return f"{base.rstrip('/')}/{key.lstrip('/')}"


def _host_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return parsed.hostname.lower()


def _host_matches(host: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.lower().strip(".")
        if host == pattern or host.endswith("." + pattern):
            return True
    return False


def storage_path_from_key(storage_key: str, legacy_host: str = DEFAULT_LEGACY_HOST) -> str:
    """从历史 storage_key 中取出对象路径。

    - 含旧存储域名片段（``<host>/``）：取片段之后的部分
    - ``scheme://bucket/path``：去掉 scheme 与 bucket
    - 其他：原样作为路径
    """
    fragment = f"{legacy_host}/"
    if fragment in storage_key:
        return storage_key.split(fragment, 1)[1]
    if _SCHEME_RE.match(storage_key):
        rest = _SCHEME_RE.sub("", storage_key, count=1)
        return "/".join(rest.split("/")[1:])
    return storage_key


def resolve_url(
    record: HasImageLocation,
    cdn_base: str,
    *,
    passthrough_hosts: Iterable[str] = DEFAULT_PASSTHROUGH_HOSTS,
    cdn_hosts: Iterable[str] = DEFAULT_CDN_HOSTS,
    legacy_host: str = DEFAULT_LEGACY_HOST,
) -> Optional[str]:
    """返回记录的规范展示地址，按优先级匹配，先命中者生效。"""
    url = record.url
    host = _host_of(url)
    if host is not None:
        # 占位图/演示图床直接放行
        if _host_matches(host, passthrough_hosts):
            return url
        # 已经是 CDN 地址
        base_host = _host_of(cdn_base)
        if _host_matches(host, cdn_hosts) or (base_host and host == base_host):
            return url

    if not record.storage_key:
        return url
    return join_url(cdn_base, storage_path_from_key(record.storage_key, legacy_host))


def resolve_with_settings(record: HasImageLocation, settings) -> Optional[str]:
    """按当前配置解析，供展示层使用。"""
    return resolve_url(
        record,
        settings.cdn_base_url,
        passthrough_hosts=settings.PASSTHROUGH_HOSTS,
        cdn_hosts=settings.CDN_HOSTS,
        legacy_host=settings.LEGACY_STORAGE_HOST,
    )
