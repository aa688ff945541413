import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .database import Base, engine
from .exceptions import ConfigurationError, MediaError, NotFoundError, StorageTransportError, ValidationError


logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConfigurationError, 503),
    (StorageTransportError, 502),
)


async def media_error_handler(request: Request, exc: MediaError) -> JSONResponse:
    status_code = 500
    for error_cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 失败: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(title="商品图片资源 API", version="0.1.0")

    # 路由
    from .routers import images, stats, test  # 延迟导入以避免循环

    app.include_router(images.router, prefix="/images", tags=["images"])
    app.include_router(stats.router, prefix="/stats", tags=["stats"])
    app.include_router(test.router, prefix="/test", tags=["test"])

    app.add_exception_handler(MediaError, media_error_handler)

    @app.on_event("startup")
    def on_startup() -> None:
        # 初始化数据库表
        Base.metadata.create_all(bind=engine)

    return app


app = create_app()
