from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from .database import Base
from .records import SIZE_VARIANTS, SizeVariant


class Product(Base):
    """商品主表由目录服务维护，这里只映射图片需要的字段。"""

    __tablename__ = "products"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProductImage.position",
    )


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    product_id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("products.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    storage_key = Column(String(512), nullable=False)
    url = Column(String(512), nullable=False)
    alt = Column(String(160), nullable=True)
    # 不做唯一约束，同一商品允许并列位置
    position = Column(Integer, nullable=False, default=0)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    size_variant = Column(
        Enum(*SIZE_VARIANTS, name="image_size_variant"),
        nullable=False,
        default=SizeVariant.ORIGINAL.value,
    )
    file_size = Column(Integer, nullable=True)
    content_type = Column(String(100), nullable=True)
    content_hash = Column(String(64), nullable=True)

    # 只记录创建时间，更新不追踪修改时间
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    product = relationship("Product", back_populates="images")

    __table_args__ = (
        Index("ix_product_images_product_position", "product_id", "position"),
        Index("ix_product_images_product_id", "product_id"),
        Index("ix_product_images_storage_key", "storage_key"),
        Index("ix_product_images_product_variant", "product_id", "size_variant"),
        Index("ix_product_images_content_hash", "content_hash"),
        Index("ix_product_images_size_variant", "size_variant"),
    )
