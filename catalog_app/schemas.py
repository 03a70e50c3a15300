"""Request and response payloads. Field aliases follow the admin UI contract."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from catalog_app.models import ProductStatus

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class ErrorDetail(BaseModel):
    field: str
    message: str


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: int
    category_name: str


class MaterialRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    material_id: int
    material_name: str


class MediaRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    media_id: int
    product_id: int
    url: str
    created_at: datetime


def _strip_required(value: str, label: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{label} is required")
    return value


def _sku_required(value: str) -> str:
    # SKUs are stored and compared exactly as sent.
    if not value.strip():
        raise ValueError("SKU is required")
    return value


class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sku: str = Field(alias="SKU", max_length=255)
    product_name: str = Field(max_length=255)
    category_id: int
    material_ids: list[int] = Field(min_length=1)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    status: ProductStatus = ProductStatus.active
    media: list[str] = Field(default_factory=list)

    @field_validator("sku")
    @classmethod
    def _check_sku(cls, value: str) -> str:
        return _sku_required(value)

    @field_validator("product_name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        return _strip_required(value, "Product name")


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sku: Optional[str] = Field(default=None, alias="SKU", max_length=255)
    product_name: Optional[str] = Field(default=None, max_length=255)
    category_id: Optional[int] = None
    material_ids: Optional[list[int]] = Field(default=None, min_length=1)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    status: Optional[ProductStatus] = None
    media: Optional[list[str]] = None

    @field_validator("sku")
    @classmethod
    def _check_sku(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _sku_required(value)

    @field_validator("product_name")
    @classmethod
    def _name_required(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value, "Product name")


class ProductRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int
    sku: str = Field(alias="SKU")
    product_name: str
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    material_ids: list[int] = Field(default_factory=list)
    price: float
    status: ProductStatus
    media: list[MediaRead] = Field(default_factory=list)
    media_count: int = 0
    created_at: datetime
    updated_at: datetime


class ProductCreated(BaseModel):
    product_id: int


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_items: int = Field(alias="totalItems")
    total_pages: int = Field(alias="totalPages")
    current_page: int = Field(alias="currentPage")
    items_per_page: int = Field(alias="itemsPerPage")


class ProductPage(BaseModel):
    products: list[ProductRead]
    pagination: Pagination


class ProductFilters(BaseModel):
    sku: Optional[str] = None
    product_name: Optional[str] = None
    category_id: Optional[int] = None
    material_id: Optional[int] = None
    status: Optional[ProductStatus] = None


class CategoryHighestPrice(BaseModel):
    category_name: str
    highest_price: float


class PriceRangeCount(BaseModel):
    price_range: str
    product_count: int


class Statistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_highest_price: list[CategoryHighestPrice] = Field(alias="categoryHighestPrice")
    price_range_count: list[PriceRangeCount] = Field(alias="priceRangeCount")
    products_with_no_media: list[ProductRead] = Field(alias="productsWithNoMedia")
