from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

from fastapi import FastAPI
from fastapi.testclient import TestClient
import pytest
from sqlmodel import Session

from catalog_app.config import Settings
from catalog_app.main import create_app
from catalog_app.models import Category, Material
from sku_vault import SCHEME, ConfigurationError, generate_keyset


@pytest.fixture(scope="module")
def keyset_json() -> str:
    return generate_keyset()


def _settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {"database_url": f"sqlite:///{tmp_path / 'test.db'}"}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def app(tmp_path: Path, keyset_json: str) -> FastAPI:
    return create_app(_settings(tmp_path, sku_keyset=keyset_json))


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as client:
        yield client


@pytest.fixture
def refs(app: FastAPI, client: TestClient) -> dict[str, int]:
    with Session(app.state.engine) as session:
        chairs = Category(category_name="Chairs")
        tables = Category(category_name="Tables")
        oak = Material(material_name="Oak")
        steel = Material(material_name="Steel")
        session.add_all([chairs, tables, oak, steel])
        session.commit()
        return {
            "chairs": chairs.category_id,
            "tables": tables.category_id,
            "oak": oak.material_id,
            "steel": steel.material_id,
        }


def _create(client: TestClient, refs: dict[str, int], sku: str, **overrides: Any):
    payload = {
        "SKU": sku,
        "product_name": f"Product {sku}",
        "category_id": refs["chairs"],
        "material_ids": [refs["oak"]],
        "price": 100,
    }
    payload.update(overrides)
    return client.post("/api/products", json=payload)


def _create_id(client: TestClient, refs: dict[str, int], sku: str, **overrides: Any) -> int:
    response = _create(client, refs, sku, **overrides)
    assert response.status_code == 201, response.text
    return response.json()["data"]["product_id"]


def _stored_sku(app: FastAPI, product_id: int) -> str:
    with app.state.engine.connect() as connection:
        return connection.exec_driver_sql(
            'select "SKU" from product where product_id = ?',
            (product_id,),
        ).fetchone()[0]


def _skus(response) -> list[str]:
    return [product["SKU"] for product in response.json()["data"]["products"]]


def test_product_sku_is_encrypted_at_rest(app: FastAPI, client: TestClient, refs: dict[str, int]) -> None:
    first_id = _create_id(client, refs, "ABC-100")
    first_stored = _stored_sku(app, first_id)
    assert first_stored != "ABC-100"
    assert "ABC-100" not in first_stored
    assert first_stored.startswith(f"{SCHEME}:")

    response = client.get(f"/api/products/{first_id}")
    assert response.status_code == 200
    assert response.json()["data"]["SKU"] == "ABC-100"
    assert SCHEME not in response.text

    assert client.delete(f"/api/products/{first_id}").status_code == 200
    second_id = _create_id(client, refs, "ABC-100")
    assert _stored_sku(app, second_id) != first_stored
    assert client.get(f"/api/products/{second_id}").json()["data"]["SKU"] == "ABC-100"


def test_duplicate_sku_is_case_sensitive(client: TestClient, refs: dict[str, int]) -> None:
    assert _create(client, refs, "X1").status_code == 201

    response = _create(client, refs, "X1")
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "duplicate_sku"
    assert body["message"] == "Duplicate SKU is not allowed"
    assert "X1" not in response.text

    assert _create(client, refs, "x1").status_code == 201


def test_sku_filter_is_case_insensitive_substring(client: TestClient, refs: dict[str, int]) -> None:
    for sku in ("AB-1", "AB-2", "CD-1"):
        _create_id(client, refs, sku)

    response = client.get("/api/products", params={"sku": "ab"})
    assert response.status_code == 200
    assert sorted(_skus(response)) == ["AB-1", "AB-2"]
    assert response.json()["data"]["pagination"]["totalItems"] == 2

    response = client.get("/api/products", params={"sku": "zz"})
    assert _skus(response) == []
    assert response.json()["data"]["pagination"] == {
        "totalItems": 0,
        "totalPages": 0,
        "currentPage": 1,
        "itemsPerPage": 10,
    }


def test_filters_combine(client: TestClient, refs: dict[str, int]) -> None:
    _create_id(client, refs, "AB-1", product_name="Oak chair")
    _create_id(client, refs, "AB-2", product_name="Steel table", category_id=refs["tables"], material_ids=[refs["steel"]])
    _create_id(client, refs, "AB-3", product_name="Old chair", status="inactive", material_ids=[refs["oak"], refs["steel"]])

    assert sorted(_skus(client.get("/api/products", params={"sku": "ab", "status": "active"}))) == ["AB-1", "AB-2"]
    assert _skus(client.get("/api/products", params={"category_id": refs["tables"]})) == ["AB-2"]
    assert sorted(_skus(client.get("/api/products", params={"material_id": refs["steel"]}))) == ["AB-2", "AB-3"]
    assert sorted(_skus(client.get("/api/products", params={"product_name": "CHAIR"}))) == ["AB-1", "AB-3"]
    assert _skus(client.get("/api/products", params={"product_name": "chair", "sku": "3"})) == ["AB-3"]


def test_pagination(client: TestClient, refs: dict[str, int]) -> None:
    ids = [_create_id(client, refs, f"P-{index}") for index in range(3)]

    response = client.get("/api/products", params={"page": 1, "limit": 2})
    data = response.json()["data"]
    assert [p["product_id"] for p in data["products"]] == [ids[2], ids[1]]
    assert data["pagination"] == {"totalItems": 3, "totalPages": 2, "currentPage": 1, "itemsPerPage": 2}

    response = client.get("/api/products", params={"page": 2, "limit": 2})
    assert [p["product_id"] for p in response.json()["data"]["products"]] == [ids[0]]

    assert client.get("/api/products", params={"page": 0}).status_code == 400
    assert client.get("/api/products", params={"limit": 101}).status_code == 400


def test_product_read_shape(client: TestClient, refs: dict[str, int]) -> None:
    product_id = _create_id(
        client,
        refs,
        "SHAPE-1",
        material_ids=[refs["steel"], refs["oak"], refs["oak"]],
        price=19.99,
        media=["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"],
    )
    product = client.get(f"/api/products/{product_id}").json()["data"]
    assert product["category_name"] == "Chairs"
    assert product["material_ids"] == sorted([refs["steel"], refs["oak"]])
    assert product["price"] == 19.99
    assert product["status"] == "active"
    assert product["media_count"] == 2
    assert [media["url"] for media in product["media"]] == [
        "https://cdn.example.com/a.png",
        "https://cdn.example.com/b.png",
    ]


def test_update_product(app: FastAPI, client: TestClient, refs: dict[str, int]) -> None:
    _create_id(client, refs, "KEEP-1")
    product_id = _create_id(client, refs, "UPD-1", media=["https://cdn.example.com/a.png"])
    stored = _stored_sku(app, product_id)

    response = client.put(f"/api/products/{product_id}", json={"price": 250, "SKU": "UPD-1"})
    assert response.status_code == 200
    assert response.json()["data"]["price"] == 250
    assert _stored_sku(app, product_id) == stored

    response = client.put(f"/api/products/{product_id}", json={"SKU": "KEEP-1"})
    assert response.status_code == 400
    assert response.json()["error"] == "duplicate_sku"

    response = client.put(
        f"/api/products/{product_id}",
        json={"SKU": "UPD-2", "status": "inactive", "media": [], "material_ids": [refs["steel"]]},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["SKU"] == "UPD-2"
    assert data["status"] == "inactive"
    assert data["media_count"] == 0
    assert data["material_ids"] == [refs["steel"]]
    assert _stored_sku(app, product_id) != stored

    response = client.put(f"/api/products/{product_id}", json={"SKU": "keep-1"})
    assert response.status_code == 200
    assert response.json()["data"]["SKU"] == "keep-1"

    response = client.put(f"/api/products/{product_id}", json={"SKU": "KEEP-1"})
    assert response.status_code == 400

    response = client.put(f"/api/products/{product_id}", json={"SKU": "Keep-1"})
    assert response.status_code == 200
    assert response.json()["data"]["SKU"] == "Keep-1"


def test_sku_whitespace_is_preserved(client: TestClient, refs: dict[str, int]) -> None:
    padded_id = _create_id(client, refs, " AB-1 ")
    assert client.get(f"/api/products/{padded_id}").json()["data"]["SKU"] == " AB-1 "

    trimmed_id = _create_id(client, refs, "AB-1")
    assert client.get(f"/api/products/{trimmed_id}").json()["data"]["SKU"] == "AB-1"

    assert _create(client, refs, " AB-1 ").json()["error"] == "duplicate_sku"
    assert sorted(_skus(client.get("/api/products", params={"sku": "ab-1"}))) == [" AB-1 ", "AB-1"]

    response = client.put(f"/api/products/{trimmed_id}", json={"SKU": "\t"})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "SKU"


def test_missing_product_is_not_found(client: TestClient, refs: dict[str, int]) -> None:
    assert client.get("/api/products/999").status_code == 404
    assert client.put("/api/products/999", json={"price": 1}).json()["error"] == "not_found"
    assert client.delete("/api/products/999").status_code == 404


def test_delete_product_removes_media(client: TestClient, refs: dict[str, int]) -> None:
    product_id = _create_id(client, refs, "DEL-1", media=["https://cdn.example.com/a.png"])
    response = client.delete(f"/api/products/{product_id}")
    assert response.status_code == 200
    assert response.json()["message"] == "Product deleted successfully"
    assert client.get(f"/api/products/{product_id}").status_code == 404
    assert _create(client, refs, "DEL-1").status_code == 201


def test_validation_errors(client: TestClient, refs: dict[str, int]) -> None:
    response = client.post("/api/products", json={"product_name": "No SKU", "category_id": refs["chairs"]})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    fields = {error["field"] for error in body["errors"]}
    assert {"SKU", "material_ids", "price"} <= fields

    assert _create(client, refs, "   ").status_code == 400
    assert _create(client, refs, "NEG-1", price=-1).status_code == 400
    assert _create(client, refs, "EMPTY-1", material_ids=[]).status_code == 400


def test_unknown_references_are_rejected(client: TestClient, refs: dict[str, int]) -> None:
    response = _create(client, refs, "REF-1", category_id=999)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_reference"
    assert response.json()["errors"] == [{"field": "category_id", "message": "Category not found"}]

    response = _create(client, refs, "REF-2", material_ids=[refs["oak"], 999])
    assert response.json()["errors"][0]["field"] == "material_ids"


def test_statistics(client: TestClient, refs: dict[str, int]) -> None:
    _create_id(client, refs, "S-1", price=100, media=["https://cdn.example.com/a.png"])
    _create_id(client, refs, "S-2", price=1500)
    _create_id(client, refs, "S-3", price=600, category_id=refs["tables"])
    _create_id(client, refs, "S-4", price=1000, category_id=refs["tables"])

    response = client.get("/api/products/stats/all")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["categoryHighestPrice"] == [
        {"category_name": "Chairs", "highest_price": 1500},
        {"category_name": "Tables", "highest_price": 1000},
    ]
    assert data["priceRangeCount"] == [
        {"price_range": "0-500", "product_count": 1},
        {"price_range": "501-1000", "product_count": 2},
        {"price_range": "1000+", "product_count": 1},
    ]
    assert sorted(product["SKU"] for product in data["productsWithNoMedia"]) == ["S-2", "S-3", "S-4"]


def test_categories_and_materials(client: TestClient, refs: dict[str, int]) -> None:
    categories = client.get("/api/categories").json()["data"]
    assert [c["category_name"] for c in categories] == ["Chairs", "Tables"]
    materials = client.get("/api/materials").json()["data"]
    assert materials == [
        {"material_id": refs["oak"], "material_name": "Oak"},
        {"material_id": refs["steel"], "material_name": "Steel"},
    ]


def test_corrupted_sku_is_not_reported_as_missing(
    app: FastAPI, client: TestClient, refs: dict[str, int], caplog: pytest.LogCaptureFixture
) -> None:
    _create_id(client, refs, "OK-1")
    product_id = _create_id(client, refs, "BROKEN-1")
    stored = _stored_sku(app, product_id)
    with app.state.engine.begin() as connection:
        connection.exec_driver_sql(
            'update product set "SKU" = ? where product_id = ?',
            (stored[:-8], product_id),
        )

    with caplog.at_level(logging.ERROR):
        response = client.get(f"/api/products/{product_id}")
    assert response.status_code == 500
    assert response.json()["error"] == "sku_decryption_failed"
    assert f"product_id={product_id}" in caplog.text
    assert "BROKEN-1" not in caplog.text

    assert client.get("/api/products").json()["error"] == "sku_decryption_failed"
    assert client.get("/api/products", params={"sku": "ok"}).status_code == 500
    assert _create(client, refs, "NEW-1").json()["error"] == "sku_decryption_failed"


def test_wrong_key_fails_decryption(tmp_path: Path, keyset_json: str) -> None:
    first = create_app(_settings(tmp_path, sku_keyset=keyset_json))
    with TestClient(first) as client:
        with Session(first.state.engine) as session:
            category = Category(category_name="Chairs")
            material = Material(material_name="Oak")
            session.add_all([category, material])
            session.commit()
            refs = {"chairs": category.category_id, "oak": material.material_id}
        product_id = _create_id(client, refs, "ABC-100")

    second = create_app(_settings(tmp_path, sku_keyset=generate_keyset()))
    with TestClient(second) as client:
        response = client.get(f"/api/products/{product_id}")
    assert response.status_code == 500
    assert response.json()["error"] == "sku_decryption_failed"


def test_missing_key_fails_closed(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path, require_key_at_startup=False))
    with TestClient(app) as client:
        with Session(app.state.engine) as session:
            category = Category(category_name="Chairs")
            material = Material(material_name="Oak")
            session.add_all([category, material])
            session.commit()
            refs = {"chairs": category.category_id, "oak": material.material_id}

        assert client.get("/api/categories").status_code == 200
        response = _create(client, refs, "ABC-100")
        assert response.status_code == 500
        assert response.json()["error"] == "configuration_error"
        assert client.get("/api/products").json()["data"]["products"] == []


def test_missing_key_fails_startup(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path))
    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


def test_sample_data_is_seeded(tmp_path: Path, keyset_json: str) -> None:
    app = create_app(_settings(tmp_path, sku_keyset=keyset_json, seed_sample_data=True))
    with TestClient(app) as client:
        data = client.get("/api/products").json()["data"]
        assert data["pagination"]["totalItems"] == 5
        assert _stored_sku(app, 1) != "f2821c0c88c19a99918d443"

        response = client.get("/api/products", params={"sku": "D443"})
        [product] = response.json()["data"]["products"]
        assert product["product_name"] == "Product1"
        assert product["material_ids"] == [1, 2]
        assert product["media_count"] == 1

        stats = client.get("/api/products/stats/all").json()["data"]
        assert sorted(p["product_name"] for p in stats["productsWithNoMedia"]) == ["Product4", "Product5"]

    # A second startup leaves existing rows alone.
    with TestClient(create_app(_settings(tmp_path, sku_keyset=keyset_json, seed_sample_data=True))) as client:
        assert client.get("/api/products").json()["data"]["pagination"]["totalItems"] == 5


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "healthy"}
