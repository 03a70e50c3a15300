from __future__ import annotations

from decimal import Decimal
import logging

from sqlmodel import Session, select

from catalog_app.models import Category, Material, Product, ProductMaterial, ProductMedia
from sku_vault import SKUCodec

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    # (sku, name, category index, material indexes, price)
    ("f2821c0c88c19a99918d443", "Product1", 0, (0, 1), 1000),
    ("f2821c0c88c19a99918d444", "Product2", 1, (0,), 2000),
    ("f2821c0c88c19a99918d445", "Product3", 2, (1,), 3000),
    ("f2821c0c88c19a99918d446", "Product4", 0, (1,), 4000),
    ("f2821c0c88c19a99918d447", "Product5", 0, (2,), 5000),
]
SAMPLE_MEDIA = [(0, "https://xyz/a.png"), (1, "https://xyz/a.png"), (1, "https://xyz/a.png"), (2, "https://xyz/a.png")]


def seed_sample_data(session: Session, codec: SKUCodec) -> bool:
    """Insert demo rows into an empty catalog. Returns False if data exists."""
    if session.exec(select(Category).limit(1)).first() is not None:
        return False

    categories = [Category(category_name=f"category{i}") for i in range(1, 4)]
    materials = [Material(material_name=f"Material{i}") for i in range(1, 4)]
    session.add_all(categories + materials)
    session.flush()

    products = []
    for sku, name, category, material_indexes, price in SAMPLE_PRODUCTS:
        product = Product(
            sku=codec.encode(sku),
            product_name=name,
            category_id=categories[category].category_id,
            price=Decimal(price),
        )
        session.add(product)
        session.flush()
        for index in material_indexes:
            session.add(ProductMaterial(product_id=product.product_id, material_id=materials[index].material_id))
        products.append(product)

    for index, url in SAMPLE_MEDIA:
        session.add(ProductMedia(product_id=products[index].product_id, url=url))

    session.commit()
    logger.info("Sample data inserted")
    return True
