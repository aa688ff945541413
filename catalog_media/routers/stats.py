from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database import get_db
from ..images import count_by_size_variant, count_images, count_products_with_images, daily_upload_counts
from ..models import ProductImage
from ..schemas import StatsResponse


router = APIRouter()


@router.get("", response_model=StatsResponse)
def stats(db: Session = Depends(get_db)) -> StatsResponse:
    total_size = db.query(func.coalesce(func.sum(ProductImage.file_size), 0)).scalar() or 0
    return StatsResponse(
        total_images=count_images(db),
        total_size_bytes=int(total_size),
        products_with_images=count_products_with_images(db),
        by_size_variant=count_by_size_variant(db),
        # 最近30天每日上传量
        uploads_by_day=daily_upload_counts(db, 30),
    )
