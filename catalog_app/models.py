from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class Category(SQLModel, table=True):
    category_id: Optional[int] = Field(default=None, primary_key=True)
    category_name: str = Field(max_length=100)


class Material(SQLModel, table=True):
    material_id: Optional[int] = Field(default=None, primary_key=True)
    material_name: str = Field(max_length=100)


class Product(SQLModel, table=True):
    product_id: Optional[int] = Field(default=None, primary_key=True)
    # Codec output only; see catalog_app.services for the read/write edge.
    sku: str = Field(sa_column=Column("SKU", Text, nullable=False))
    product_name: str = Field(max_length=255, index=True)
    category_id: Optional[int] = Field(default=None, foreign_key="category.category_id")
    price: Decimal = Field(max_digits=10, decimal_places=2)
    status: ProductStatus = Field(default=ProductStatus.active)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ProductMaterial(SQLModel, table=True):
    __tablename__ = "product_material"

    product_id: int = Field(foreign_key="product.product_id", primary_key=True)
    material_id: int = Field(foreign_key="material.material_id", primary_key=True)


class ProductMedia(SQLModel, table=True):
    __tablename__ = "product_media"

    media_id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.product_id", index=True)
    url: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=_utcnow)
