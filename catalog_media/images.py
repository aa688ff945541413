"""商品图片元数据：字段校验、默认值计算、增删查与上传入库。

默认值（alt 文本、排序位置）在构造记录前显式计算，不依赖 ORM 钩子。
"""
import hashlib
import logging
import mimetypes
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session, joinedload

from .cdn import CdnStorage
from .exceptions import NotFoundError, StorageTransportError, ValidationError
from .models import Product, ProductImage
from .records import SIZE_VARIANTS, SizeVariant
from .tinify_client import derive_variants


logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 512
MAX_URL_LENGTH = 512
MAX_ALT_LENGTH = 160
MAX_CONTENT_TYPE_LENGTH = 100
CONTENT_HASH_LENGTH = 64

ALT_TEXT_SUFFIX = " - Product Image"


def normalize_format(fmt: Optional[str]) -> Optional[str]:
    if not fmt:
        return None
    fmt = fmt.lower().lstrip(".")
    if fmt == "jpeg":
        fmt = "jpg"
    if fmt not in {"png", "jpg", "webp", "gif"}:
        return None
    return fmt


def infer_format(filename: Optional[str], content_type: Optional[str] = None) -> Optional[str]:
    if filename and "." in filename:
        fmt = normalize_format(filename.rsplit(".", 1)[-1])
        if fmt:
            return fmt
    if content_type and content_type.startswith("image/"):
        return normalize_format(content_type.split("/", 1)[1].split(";")[0])
    return None


def content_type_for(fmt: Optional[str], filename: Optional[str] = None) -> str:
    if fmt == "jpg":
        return "image/jpeg"
    if fmt in {"png", "webp", "gif"}:
        return f"image/{fmt}"
    return (mimetypes.guess_type(filename)[0] if filename else None) or "application/octet-stream"


def compute_content_hash(data: bytes) -> str:
    """SHA-256 十六进制摘要，固定 64 位，用于跨上传去重。"""
    return hashlib.sha256(data).hexdigest()


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and not any(c.isspace() for c in url)


def _check_positive(name: str, value: Optional[int]) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} 必须为正整数", field=name)


def validate_image_fields(
    *,
    storage_key: Optional[str],
    url: Optional[str],
    alt: Optional[str] = None,
    position: Optional[int] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    size_variant: Optional[str] = SizeVariant.ORIGINAL.value,
    file_size: Optional[int] = None,
    content_type: Optional[str] = None,
    content_hash: Optional[str] = None,
) -> None:
    """不满足约束时抛出 ValidationError，写库前调用。"""
    if not storage_key or len(storage_key) > MAX_KEY_LENGTH:
        raise ValidationError(f"storage_key 长度须在 1-{MAX_KEY_LENGTH} 之间", field="storage_key")
    if not url or len(url) > MAX_URL_LENGTH:
        raise ValidationError(f"url 长度须在 1-{MAX_URL_LENGTH} 之间", field="url")
    if not is_valid_url(url):
        raise ValidationError(f"url 格式无效: {url}", field="url")
    if alt is not None and len(alt) > MAX_ALT_LENGTH:
        raise ValidationError(f"alt 不能超过 {MAX_ALT_LENGTH} 个字符", field="alt")
    if position is not None and (isinstance(position, bool) or not isinstance(position, int) or position < 0):
        raise ValidationError("position 必须为非负整数", field="position")
    _check_positive("width", width)
    _check_positive("height", height)
    _check_positive("file_size", file_size)
    if size_variant not in SIZE_VARIANTS:
        raise ValidationError(f"不支持的尺寸变体: {size_variant}", field="size_variant")
    if content_type is not None and not (1 <= len(content_type) <= MAX_CONTENT_TYPE_LENGTH):
        raise ValidationError(f"content_type 长度须在 1-{MAX_CONTENT_TYPE_LENGTH} 之间", field="content_type")
    if content_hash is not None and len(content_hash) != CONTENT_HASH_LENGTH:
        raise ValidationError(f"content_hash 必须为 {CONTENT_HASH_LENGTH} 位", field="content_hash")


def default_alt_text(title: str) -> str:
    alt = f"{title}{ALT_TEXT_SUFFIX}"
    return alt[:MAX_ALT_LENGTH]


def get_product(db: Session, product_id: int, *, lock: bool = False) -> Product:
    stmt = select(Product).where(Product.id == product_id)
    if lock:
        # 对商品行加锁，串行化同一商品的位置分配
        stmt = stmt.with_for_update()
    product = db.execute(stmt).scalar_one_or_none()
    if product is None:
        raise NotFoundError(f"未找到商品: {product_id}")
    return product


def next_position(db: Session, product_id: int) -> int:
    """当前最大位置 + 1，商品的第一张图为 0。调用方需在同一事务内持有商品行锁。"""
    current = (
        db.query(func.max(ProductImage.position))
        .filter(ProductImage.product_id == product_id)
        .scalar()
    )
    return 0 if current is None else current + 1


def create_image(
    db: Session,
    *,
    product_id: int,
    storage_key: str,
    url: str,
    alt: Optional[str] = None,
    position: Optional[int] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    size_variant: str = SizeVariant.ORIGINAL.value,
    file_size: Optional[int] = None,
    content_type: Optional[str] = None,
    content_hash: Optional[str] = None,
    commit: bool = True,
) -> ProductImage:
    product = get_product(db, product_id, lock=position is None)
    if alt is None:
        alt = default_alt_text(product.title)
    if position is None:
        position = next_position(db, product_id)

    validate_image_fields(
        storage_key=storage_key,
        url=url,
        alt=alt,
        position=position,
        width=width,
        height=height,
        size_variant=size_variant,
        file_size=file_size,
        content_type=content_type,
        content_hash=content_hash,
    )

    record = ProductImage(
        product_id=product_id,
        storage_key=storage_key,
        url=url,
        alt=alt,
        position=position,
        width=width,
        height=height,
        size_variant=size_variant,
        file_size=file_size,
        content_type=content_type,
        content_hash=content_hash,
    )
    db.add(record)
    if commit:
        db.commit()
        db.refresh(record)
    else:
        db.flush()
    return record


def get_image(db: Session, image_id: int) -> ProductImage:
    record = db.get(ProductImage, image_id)
    if record is None:
        raise NotFoundError(f"未找到图片: {image_id}")
    return record


def list_product_images(db: Session, product_id: int, size_variant: Optional[str] = None) -> List[ProductImage]:
    q = db.query(ProductImage).filter(ProductImage.product_id == product_id)
    if size_variant:
        q = q.filter(ProductImage.size_variant == size_variant)
    return q.order_by(ProductImage.position, ProductImage.id).all()


def find_by_hash(db: Session, product_id: int, content_hash: str) -> Optional[ProductImage]:
    return (
        db.query(ProductImage)
        .filter(
            ProductImage.product_id == product_id,
            ProductImage.content_hash == content_hash,
            ProductImage.size_variant == SizeVariant.ORIGINAL.value,
        )
        .order_by(ProductImage.id)
        .first()
    )


def count_images(db: Session) -> int:
    return int(db.query(func.count(ProductImage.id)).scalar() or 0)


def count_products_with_images(db: Session) -> int:
    return int(
        db.query(func.count(distinct(Product.id))).select_from(Product).join(Product.images).scalar() or 0
    )


def count_by_size_variant(db: Session) -> Dict[str, int]:
    rows = db.query(ProductImage.size_variant, func.count(ProductImage.id)).group_by(ProductImage.size_variant).all()
    return {variant or "unknown": int(cnt) for variant, cnt in rows}


def daily_upload_counts(db: Session, days: int = 30, *, today: Optional[date] = None) -> List[Dict[str, object]]:
    """最近 days 天（含今天）每天新增的记录数，没有上传的日期补 0。"""
    today = today or datetime.utcnow().date()
    start_day = today - timedelta(days=days - 1)
    day_col = func.date(ProductImage.created_at)
    rows = (
        db.query(day_col, func.count(ProductImage.id))
        .filter(ProductImage.created_at >= start_day)
        .group_by(day_col)
        .all()
    )
    counts = {str(day): int(cnt) for day, cnt in rows}
    return [
        {"date": str(day), "count": counts.get(str(day), 0)}
        for day in (start_day + timedelta(days=i) for i in range(days))
    ]


def sample_images(db: Session, limit: int = 5) -> List[ProductImage]:
    return (
        db.query(ProductImage)
        .options(joinedload(ProductImage.product))
        .order_by(ProductImage.id)
        .limit(limit)
        .all()
    )


def purge_images(db: Session, *, product_id: Optional[int] = None) -> int:
    """无条件物理删除匹配的图片记录，不传过滤条件即删除全部。不可恢复。"""
    q = db.query(ProductImage)
    if product_id is not None:
        q = q.filter(ProductImage.product_id == product_id)
    deleted = q.delete(synchronize_session=False)
    db.commit()
    db.expire_all()
    logger.warning(f"已删除图片记录: {deleted} 条 (product_id={product_id})")
    return int(deleted)


def delete_image(db: Session, storage: CdnStorage, image_id: int) -> ProductImage:
    """先删存储对象再删记录；对象已不存在（404）视为成功。"""
    record = get_image(db, image_id)
    try:
        storage.delete(record.storage_key)
    except StorageTransportError as e:
        if e.status_code != 404:
            raise
        logger.info(f"存储对象已不存在，仅删除记录: key={record.storage_key}")
    db.delete(record)
    db.commit()
    return record


def ingest_image(
    db: Session,
    storage: CdnStorage,
    *,
    product_id: int,
    data: bytes,
    filename: Optional[str],
    content_type: Optional[str] = None,
    alt: Optional[str] = None,
    position: Optional[int] = None,
) -> Tuple[List[ProductImage], bool]:
    """上传原图及派生尺寸变体，每个存储对象一条记录。

    返回 (记录列表, 是否命中去重)。同一商品已存在相同内容的原图时，
    直接返回已有原图记录，不写存储也不写库。
    """
    if not data:
        raise ValidationError("上传文件为空", field="file")

    product = get_product(db, product_id, lock=position is None)
    digest = compute_content_hash(data)
    existing = find_by_hash(db, product_id, digest)
    if existing is not None:
        logger.info(f"命中去重: product_id={product_id} image_id={existing.id}")
        db.rollback()
        return [existing], True

    fmt = infer_format(filename, content_type)
    content_type = content_type_for(fmt, filename) if fmt or not content_type else content_type
    extension = fmt or "bin"
    if alt is None:
        alt = default_alt_text(product.title)
    if position is None:
        position = next_position(db, product_id)

    uploaded_keys: List[str] = []
    records: List[ProductImage] = []
    try:
        key = storage.generate_key(product_id, SizeVariant.ORIGINAL.value, extension, filename)
        result = storage.upload(data, key, content_type)
        uploaded_keys.append(result.key)
        records.append(
            create_image(
                db,
                product_id=product_id,
                storage_key=result.key,
                url=result.url,
                alt=alt,
                position=position,
                size_variant=SizeVariant.ORIGINAL.value,
                file_size=result.size,
                content_type=content_type,
                content_hash=digest,
                commit=False,
            )
        )

        for variant, variant_data, width, height in derive_variants(
            data, storage.settings.IMAGE_VARIANT_WIDTHS, target_format=fmt, settings=storage.settings
        ):
            key = storage.generate_key(product_id, variant, extension, filename)
            result = storage.upload(variant_data, key, content_type)
            uploaded_keys.append(result.key)
            records.append(
                create_image(
                    db,
                    product_id=product_id,
                    storage_key=result.key,
                    url=result.url,
                    alt=alt,
                    position=position,
                    width=width,
                    height=height,
                    size_variant=variant,
                    file_size=result.size,
                    content_type=content_type,
                    content_hash=compute_content_hash(variant_data),
                    commit=False,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        if uploaded_keys:
            cleanup = storage.delete_many(uploaded_keys)
            if cleanup.failed:
                logger.error(f"入库失败后清理存储对象未完成: {cleanup.failed}")
        raise

    for record in records:
        db.refresh(record)
    logger.info(f"图片入库完成: product_id={product_id} variants={[r.size_variant for r in records]}")
    return records, False
