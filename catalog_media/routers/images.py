import logging
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import aiohttp
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..cdn import CdnStorage, get_storage
from ..database import get_db
from ..images import delete_image, get_image, ingest_image
from ..models import ProductImage
from ..records import SIZE_VARIANTS
from ..schemas import ImageListResponse, ImageOut, ImageTransferRequest, IngestResponse


logger = logging.getLogger(__name__)

router = APIRouter()

DOWNLOAD_TIMEOUT = 30


def get_cdn_storage() -> CdnStorage:
    return get_storage()


def _get_filename_from_url(url: str) -> str:
    """从URL中提取文件名"""
    path = unquote(urlparse(url).path)
    filename = path.split("/")[-1]
    return filename or "image"


async def fetch_remote_image(url: str) -> Tuple[bytes, str, Optional[str]]:
    """下载在线图片，返回 (字节, 文件名, Content-Type)。"""
    parsed_url = urlparse(url)
    if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
        raise HTTPException(status_code=400, detail="无效的URL格式")

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=DOWNLOAD_TIMEOUT) as response:
                if response.status != 200:
                    raise HTTPException(
                        status_code=400,
                        detail=f"无法下载文件，HTTP状态码: {response.status}",
                    )
                content_type = response.headers.get("Content-Type", "")
                if content_type and not content_type.startswith("image/"):
                    raise HTTPException(status_code=400, detail="文件内容不是图片格式")
                data = await response.read()
    except aiohttp.ClientError as e:
        raise HTTPException(status_code=400, detail=f"下载文件失败: {str(e)}")

    if not data:
        raise HTTPException(status_code=400, detail="下载的文件为空")
    return data, _get_filename_from_url(url), (content_type.split(";")[0].strip() or None)


@router.post("/upload", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    *,
    db: Session = Depends(get_db),
    storage: CdnStorage = Depends(get_cdn_storage),
    file: UploadFile = File(...),
    product_id: int = Form(..., description="所属商品ID"),
    alt: Optional[str] = Form(None, description="替代文本，不填则按商品标题生成"),
    position: Optional[int] = Form(None, description="排序位置，不填则追加到末尾"),
):
    data = await file.read()
    # 存储上传与写库均为同步调用，放到线程池执行
    records, deduplicated = await run_in_threadpool(
        ingest_image,
        db,
        storage,
        product_id=product_id,
        data=data,
        filename=file.filename,
        content_type=file.content_type,
        alt=alt,
        position=position,
    )
    items = [ImageOut.from_record(r, storage.settings) for r in records]
    return IngestResponse(deduplicated=deduplicated, items=items)


@router.post("/transfer", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
async def transfer_image(
    *,
    request: ImageTransferRequest,
    db: Session = Depends(get_db),
    storage: CdnStorage = Depends(get_cdn_storage),
):
    """转存在线图片到 CDN（旧存储图片重新上传用）。"""
    data, filename, content_type = await fetch_remote_image(request.url)
    records, deduplicated = await run_in_threadpool(
        ingest_image,
        db,
        storage,
        product_id=request.product_id,
        data=data,
        filename=filename,
        content_type=content_type,
        alt=request.alt,
    )
    items = [ImageOut.from_record(r, storage.settings) for r in records]
    return IngestResponse(deduplicated=deduplicated, items=items)


@router.get("", response_model=ImageListResponse)
def list_images(
    *,
    db: Session = Depends(get_db),
    storage: CdnStorage = Depends(get_cdn_storage),
    product_id: Optional[int] = Query(None),
    size_variant: Optional[str] = Query(None, description="尺寸变体过滤：original/thumb/medium/large"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
):
    if size_variant and size_variant not in SIZE_VARIANTS:
        raise HTTPException(status_code=400, detail=f"不支持的尺寸变体: {size_variant}")

    q = db.query(ProductImage)
    if product_id is not None:
        q = q.filter(ProductImage.product_id == product_id)
    if size_variant:
        q = q.filter(ProductImage.size_variant == size_variant)

    total = q.count()
    items = (
        q.order_by(ProductImage.product_id, ProductImage.position, ProductImage.id)
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return ImageListResponse(
        total=total, page=page, size=size, items=[ImageOut.from_record(i, storage.settings) for i in items]
    )


@router.get("/{image_id}", response_model=ImageOut)
def get_image_detail(
    image_id: int,
    db: Session = Depends(get_db),
    storage: CdnStorage = Depends(get_cdn_storage),
) -> ImageOut:
    return ImageOut.from_record(get_image(db, image_id), storage.settings)


@router.delete("/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_image(
    image_id: int,
    db: Session = Depends(get_db),
    storage: CdnStorage = Depends(get_cdn_storage),
) -> None:
    record = delete_image(db, storage, image_id)
    logger.info(f"图片已删除: id={record.id} key={record.storage_key}")
