import os
import sys

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# 测试统一使用内存 SQLite，并清掉可能存在的 CDN 环境变量
os.environ["DATABASE_URL"] = "sqlite://"
for _name in ("STORAGE_URL", "STORAGE_SERVER_BASE_URL", "STORAGE_SERVER_ACCESS_KEY", "TINIFY_API_KEY"):
    os.environ.pop(_name, None)

from typing import Dict, List, Tuple

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_media.cdn import CdnStorage
from catalog_media.config import Settings
from catalog_media.database import Base
from catalog_media.models import Product


STORAGE_URL = "https://storage.bunnycdn.com/shop-zone"
PUBLIC_URL = "https://shop-zone.b-cdn.net"
ACCESS_KEY = "test-access-key"


class FakeCdn:
    """记录所有请求的假 CDN，按 (method, key) 配置失败状态码。"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.objects: Dict[str, bytes] = {}
        self.failures: Dict[Tuple[str, str], int] = {}
        self.probe_status = 200
        self.raise_network_error = False

    def key_of(self, request: httpx.Request) -> str:
        prefix = httpx.URL(STORAGE_URL).path.rstrip("/") + "/"
        return request.url.path[len(prefix):]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_network_error:
            raise httpx.ConnectError("connection refused", request=request)
        key = self.key_of(request)
        status = self.failures.get((request.method, key))
        if status is not None:
            return httpx.Response(status, text="boom")
        if request.method == "GET" and key == "":
            return httpx.Response(self.probe_status, json=[])
        if request.method == "PUT":
            self.objects[key] = request.content
            return httpx.Response(201, json={"HttpCode": 201, "Message": "File uploaded."})
        if request.method == "DELETE":
            if key not in self.objects:
                return httpx.Response(404, text="Object Not Found")
            del self.objects[key]
            return httpx.Response(200, json={"HttpCode": 200, "Message": "File deleted successfuly."})
        return httpx.Response(405)

    def calls(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method]


def make_settings(**overrides) -> Settings:
    values = dict(
        STORAGE_URL=STORAGE_URL,
        STORAGE_SERVER_BASE_URL=PUBLIC_URL,
        STORAGE_SERVER_ACCESS_KEY=ACCESS_KEY,
        TINIFY_API_KEY=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_cdn() -> FakeCdn:
    return FakeCdn()


@pytest.fixture
def storage(settings, fake_cdn) -> CdnStorage:
    return CdnStorage(settings, transport=httpx.MockTransport(fake_cdn.handler))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(title: str = None) -> Product:
        counter["n"] += 1
        n = counter["n"]
        product = Product(title=title or f"Product {n}", slug=f"product-{n}")
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make
