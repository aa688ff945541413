from typing import Dict, List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """项目配置，支持从环境变量与.env文件加载。
    进程启动时构造一次，显式传入存储客户端与迁移任务。
    """

    # MySQL
    MYSQL_HOST: str = "localhost"
    MYSQL_PORT: int = 3306
    MYSQL_DB: str = "catalog_media"
    MYSQL_USER: str = "root"
    MYSQL_PASSWORD: str = "password"
    # 可选：直接指定完整连接串（如本地调试用 sqlite://），优先于 MySQL 配置
    DATABASE_URL: Optional[str] = None

    # CDN 存储（写入端与公网读取端分开配置）
    STORAGE_URL: str = ""
    STORAGE_SERVER_BASE_URL: str = ""
    STORAGE_SERVER_ACCESS_KEY: str = ""
    STORAGE_TIMEOUT: float = 60.0
    STORAGE_PROBE_TIMEOUT: float = 10.0

    # URL 解析
    CDN_FALLBACK_BASE_URL: str = "https://prestious.b-cdn.net"
    CDN_HOSTS: List[str] = ["b-cdn.net", "bunnycdn.com"]
    PASSTHROUGH_HOSTS: List[str] = [
        "placeholder.com",
        "picsum.photos",
        "unsplash.com",
        "loremflickr.com",
    ]
    LEGACY_STORAGE_HOST: str = "amazonaws.com"

    # TinyPNG
    TINIFY_API_KEY: Optional[str] = None
    IMAGE_VARIANT_WIDTHS: Dict[str, int] = {"thumb": 150, "medium": 600, "large": 1200}

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def database_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = quote_plus(self.MYSQL_PASSWORD)
        return (
            f"mysql+pymysql://{self.MYSQL_USER}:{password}@{self.MYSQL_HOST}:{self.MYSQL_PORT}/"
            f"{self.MYSQL_DB}?charset=utf8mb4"
        )

    @property
    def cdn_base_url(self) -> str:
        """对外展示用的 CDN 根地址，未配置公网地址时回退到默认 CDN。"""
        return (self.STORAGE_SERVER_BASE_URL or self.CDN_FALLBACK_BASE_URL).rstrip("/")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
