"""Catalog operations.

SKUs are encrypted with a probabilistic codec, so the database can neither
index nor compare them. Every SKU lookup (duplicate check, substring filter)
decrypts all candidate rows here and compares plaintext in Python. That is
O(n) in the number of products per request, and a concurrent insert between
the scan and the write can let a duplicate SKU through. Comparing ciphertext
in SQL (``WHERE SKU = ?``) never matches and must not be used.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import logging
import math
from typing import Iterable, Iterator, Optional, Sequence

from sqlalchemy import case, exists, func
from sqlmodel import Session, col, select

from catalog_app.models import Category, Material, Product, ProductMaterial, ProductMedia
from catalog_app.schemas import (
    CategoryHighestPrice,
    MediaRead,
    Pagination,
    PriceRangeCount,
    ProductCreate,
    ProductFilters,
    ProductPage,
    ProductRead,
    ProductUpdate,
    Statistics,
)
from sku_vault import DecryptionError, SKUCodec

logger = logging.getLogger(__name__)

PRICE_RANGES = ("0-500", "501-1000", "1000+")


class CatalogError(Exception):
    """Base class for catalog rule violations."""


class ProductNotFoundError(CatalogError):
    def __init__(self, product_id: int) -> None:
        super().__init__("Product not found")
        self.product_id = product_id


class DuplicateSKUError(CatalogError):
    def __init__(self) -> None:
        super().__init__("Duplicate SKU is not allowed")


class ReferenceNotFoundError(CatalogError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


def list_categories(session: Session) -> Sequence[Category]:
    return session.exec(select(Category).order_by(Category.category_name)).all()


def list_materials(session: Session) -> Sequence[Material]:
    return session.exec(select(Material).order_by(Material.material_name)).all()


def decode_sku(codec: SKUCodec, product_id: Optional[int], ciphertext: str) -> str:
    try:
        return codec.decode(ciphertext)
    except DecryptionError:
        logger.error("SKU decryption failed for product_id=%s", product_id)
        raise


def scan_skus(session: Session, codec: SKUCodec, *, exclude_id: Optional[int] = None) -> Iterator[tuple[int, str]]:
    """Yield ``(product_id, plaintext_sku)`` for every stored product."""
    statement = select(Product.product_id, Product.sku)
    if exclude_id is not None:
        statement = statement.where(Product.product_id != exclude_id)
    for product_id, ciphertext in session.exec(statement).all():
        yield product_id, decode_sku(codec, product_id, ciphertext)


def sku_exists(session: Session, codec: SKUCodec, sku: str, *, exclude_id: Optional[int] = None) -> bool:
    """Case-sensitive exact match against every decrypted SKU."""
    return any(existing == sku for _, existing in scan_skus(session, codec, exclude_id=exclude_id))


def matching_sku_ids(session: Session, codec: SKUCodec, needle: str) -> list[int]:
    """Ids of products whose SKU contains ``needle``, ignoring case."""
    needle = needle.lower()
    return [product_id for product_id, sku in scan_skus(session, codec) if needle in sku.lower()]


def _check_references(
    session: Session, category_id: Optional[int], material_ids: Optional[Iterable[int]]
) -> None:
    if category_id is not None and session.get(Category, category_id) is None:
        raise ReferenceNotFoundError("category_id", "Category not found")
    if material_ids is not None:
        wanted = set(material_ids)
        found = set(session.exec(select(Material.material_id).where(col(Material.material_id).in_(sorted(wanted)))).all())
        if wanted - found:
            raise ReferenceNotFoundError("material_ids", "Material not found")


def _replace_materials(session: Session, product_id: int, material_ids: Iterable[int]) -> None:
    for link in session.exec(select(ProductMaterial).where(ProductMaterial.product_id == product_id)).all():
        session.delete(link)
    for material_id in dict.fromkeys(material_ids):
        session.add(ProductMaterial(product_id=product_id, material_id=material_id))


def _replace_media(session: Session, product_id: int, urls: Iterable[str]) -> None:
    for media in session.exec(select(ProductMedia).where(ProductMedia.product_id == product_id)).all():
        session.delete(media)
    for url in urls:
        session.add(ProductMedia(product_id=product_id, url=url))


def _get_or_404(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def to_read(session: Session, codec: SKUCodec, products: Sequence[Product]) -> list[ProductRead]:
    """Decrypt SKUs and attach category, materials and media."""
    if not products:
        return []
    ids = [product.product_id for product in products]

    category_ids = {product.category_id for product in products if product.category_id is not None}
    category_names = {
        category.category_id: category.category_name
        for category in session.exec(select(Category).where(col(Category.category_id).in_(sorted(category_ids)))).all()
    }

    materials: dict[int, list[int]] = defaultdict(list)
    links = session.exec(
        select(ProductMaterial)
        .where(col(ProductMaterial.product_id).in_(ids))
        .order_by(ProductMaterial.product_id, ProductMaterial.material_id)
    ).all()
    for link in links:
        materials[link.product_id].append(link.material_id)

    media: dict[int, list[MediaRead]] = defaultdict(list)
    rows = session.exec(
        select(ProductMedia).where(col(ProductMedia.product_id).in_(ids)).order_by(ProductMedia.media_id)
    ).all()
    for row in rows:
        media[row.product_id].append(MediaRead.model_validate(row))

    return [
        ProductRead(
            product_id=product.product_id,
            sku=decode_sku(codec, product.product_id, product.sku),
            product_name=product.product_name,
            category_id=product.category_id,
            category_name=category_names.get(product.category_id),
            material_ids=materials[product.product_id],
            price=product.price,
            status=product.status,
            media=media[product.product_id],
            media_count=len(media[product.product_id]),
            created_at=product.created_at,
            updated_at=product.updated_at,
        )
        for product in products
    ]


def get_product(session: Session, codec: SKUCodec, product_id: int) -> ProductRead:
    return to_read(session, codec, [_get_or_404(session, product_id)])[0]


def list_products(
    session: Session, codec: SKUCodec, filters: ProductFilters, *, page: int = 1, limit: int = 10
) -> ProductPage:
    conditions = []
    if filters.sku:
        conditions.append(col(Product.product_id).in_(matching_sku_ids(session, codec, filters.sku)))
    if filters.product_name:
        conditions.append(func.lower(Product.product_name).contains(filters.product_name.lower(), autoescape=True))
    if filters.category_id is not None:
        conditions.append(Product.category_id == filters.category_id)
    if filters.material_id is not None:
        linked = select(ProductMaterial.product_id).where(ProductMaterial.material_id == filters.material_id)
        conditions.append(col(Product.product_id).in_(linked))
    if filters.status is not None:
        conditions.append(Product.status == filters.status)

    count_statement = select(func.count()).select_from(Product)
    statement = select(Product).order_by(col(Product.product_id).desc())
    if conditions:
        count_statement = count_statement.where(*conditions)
        statement = statement.where(*conditions)

    total = session.exec(count_statement).one()
    products = session.exec(statement.offset((page - 1) * limit).limit(limit)).all()

    return ProductPage(
        products=to_read(session, codec, products),
        pagination=Pagination(
            total_items=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
            items_per_page=limit,
        ),
    )


def create_product(session: Session, codec: SKUCodec, payload: ProductCreate) -> Product:
    _check_references(session, payload.category_id, payload.material_ids)
    if sku_exists(session, codec, payload.sku):
        raise DuplicateSKUError()

    product = Product(
        sku=codec.encode(payload.sku),
        product_name=payload.product_name,
        category_id=payload.category_id,
        price=payload.price,
        status=payload.status,
    )
    session.add(product)
    session.flush()
    _replace_materials(session, product.product_id, payload.material_ids)
    _replace_media(session, product.product_id, payload.media)
    session.commit()
    session.refresh(product)
    logger.info("Created product product_id=%s", product.product_id)
    return product


def update_product(session: Session, codec: SKUCodec, product_id: int, payload: ProductUpdate) -> Product:
    product = _get_or_404(session, product_id)
    changes = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    _check_references(session, changes.get("category_id"), changes.get("material_ids"))

    sku = changes.pop("sku", None)
    if sku is not None and sku != decode_sku(codec, product_id, product.sku):
        if sku_exists(session, codec, sku, exclude_id=product_id):
            raise DuplicateSKUError()
        product.sku = codec.encode(sku)

    material_ids = changes.pop("material_ids", None)
    if material_ids is not None:
        _replace_materials(session, product_id, material_ids)
    media = changes.pop("media", None)
    if media is not None:
        _replace_media(session, product_id, media)

    for key, value in changes.items():
        setattr(product, key, value)
    product.updated_at = datetime.now(timezone.utc)

    session.add(product)
    session.commit()
    session.refresh(product)
    logger.info("Updated product product_id=%s", product_id)
    return product


def delete_product(session: Session, product_id: int) -> None:
    product = _get_or_404(session, product_id)
    _replace_media(session, product_id, [])
    _replace_materials(session, product_id, [])
    session.flush()
    session.delete(product)
    session.commit()
    logger.info("Deleted product product_id=%s", product_id)


def statistics(session: Session, codec: SKUCodec) -> Statistics:
    highest = session.exec(
        select(Category.category_name, func.max(Product.price))
        .select_from(Product)
        .join(Category, Product.category_id == Category.category_id)
        .group_by(Product.category_id, Category.category_name)
        .order_by(Category.category_name)
    ).all()

    bucket = case(
        (Product.price <= 500, PRICE_RANGES[0]),
        (Product.price <= 1000, PRICE_RANGES[1]),
        else_=PRICE_RANGES[2],
    ).label("price_range")
    counts = dict(session.exec(select(bucket, func.count()).group_by(bucket)).all())

    no_media = session.exec(
        select(Product)
        .where(~exists().where(ProductMedia.product_id == Product.product_id))
        .order_by(Product.product_id)
    ).all()

    return Statistics(
        category_highest_price=[
            CategoryHighestPrice(category_name=name, highest_price=price) for name, price in highest
        ],
        price_range_count=[
            PriceRangeCount(price_range=label, product_count=counts[label]) for label in PRICE_RANGES if label in counts
        ],
        products_with_no_media=to_read(session, codec, no_media),
    )
