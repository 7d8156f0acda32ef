"""
Master data tests: suppliers, categories, products, variants, images,
barcode lookup, customers and store units.
"""

import base64

import httpx
import pytest

from erp.extensions import db
from erp.models import ProductImage, StockMovement, StoreUnit, Supplier
from erp.services import catalog_service, unit_service
from erp.validation import ConflictError


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _image_body(**overrides):
    body = {
        "file_name": "front view.png",
        "content_type": "image/png",
        "data": base64.b64encode(PNG_BYTES).decode(),
    }
    body.update(overrides)
    return body


@pytest.fixture
def storage(app, monkeypatch):
    """Object storage answering 200 and recording every upload."""
    monkeypatch.setitem(app.config, "STORAGE_BASE_URL", "https://storage.example.test/bucket")
    uploads = []

    def fake_put(url, content=None, headers=None, timeout=None):
        uploads.append({"url": url, "content": content, "headers": headers})
        return httpx.Response(200)

    monkeypatch.setattr("erp.services.storage_service.httpx.put", fake_put)
    return uploads


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:

    def test_create_with_initial_stock(self, client, admin_headers):
        resp = client.post("/api/products", headers=admin_headers, json={
            "code": "DRESS-01",
            "name": "Summer Dress",
            "cost_price_cents": 4000,
            "sale_price_cents": 12000,
            "current_stock": 12,
            "min_stock": 2,
        })
        assert resp.status_code == 201
        assert resp.json["current_stock"] == 12

        movement = db.session.query(StockMovement).filter_by(product_id=resp.json["id"]).one()
        assert (movement.type, movement.reason, movement.quantity) == ("ADJUSTMENT", "INVENTORY", 12)

    def test_current_stock_not_writable_on_update(self, client, admin_headers, product):
        resp = client.put(f"/api/products/{product.id}", headers=admin_headers, json={"current_stock": 99})
        assert resp.status_code == 400

    def test_update_fields(self, client, admin_headers, product):
        resp = client.put(f"/api/products/{product.id}", headers=admin_headers, json={"sale_price_cents": 2990})
        assert resp.status_code == 200
        assert resp.json["sale_price_cents"] == 2990

    def test_min_above_max_rejected(self, client, admin_headers, product):
        resp = client.put(f"/api/products/{product.id}", headers=admin_headers, json={"min_stock": 500})
        assert resp.status_code == 400

    def test_duplicate_code_conflicts(self, client, admin_headers, product):
        resp = client.post("/api/products", headers=admin_headers, json={"code": product.code, "name": "Copy"})
        assert resp.status_code == 409

    def test_get_missing_product(self, client, user_headers):
        resp = client.get("/api/products/999999", headers=user_headers)
        assert resp.status_code == 404
        assert resp.json["code"] == "NOT_FOUND"

    def test_detail_includes_variants_and_images(self, client, user_headers, product):
        catalog_service.add_variant(product_id=product.id, patch={"sku": "SHIRT-01-S", "size": "S"})
        db.session.commit()

        resp = client.get(f"/api/products/{product.id}", headers=user_headers)
        assert resp.status_code == 200
        assert [v["sku"] for v in resp.json["variants"]] == ["SHIRT-01-S"]
        assert resp.json["images"] == []

    def test_search(self, client, user_headers, product):
        resp = client.get("/api/products?search=shirt", headers=user_headers)
        assert [p["id"] for p in resp.json] == [product.id]

    def test_soft_delete(self, client, admin_headers, product):
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert catalog_service.get_product(product.id).is_active is False
        assert client.get("/api/products", headers=admin_headers).json == []


class TestVariants:

    def test_duplicate_sku_conflicts(self, product):
        catalog_service.add_variant(product_id=product.id, patch={"sku": "SKU-1"})
        db.session.commit()
        with pytest.raises(ConflictError) as exc:
            catalog_service.add_variant(product_id=product.id, patch={"sku": "SKU-1"})
        db.session.rollback()
        assert "SKU-1" in str(exc.value)

    def test_stock_not_writable_on_update(self, client, admin_headers, product):
        variant = catalog_service.add_variant(product_id=product.id, patch={"sku": "SKU-2"})
        db.session.commit()
        resp = client.put(f"/api/products/variants/{variant.id}", headers=admin_headers, json={"stock": 5})
        assert resp.status_code == 400


# =============================================================================
# BARCODE
# =============================================================================


class TestBarcodeLookup:

    def test_product_barcode(self, client, user_headers, product):
        catalog_service.update_product(product_id=product.id, patch={"barcode": "7891000100103"})
        db.session.commit()

        resp = client.get("/api/barcode/7891000100103", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json["type"] == "product"
        assert resp.json["product"]["id"] == product.id
        assert resp.json["variant"] is None

    def test_variant_barcode(self, client, user_headers, product):
        variant = catalog_service.add_variant(
            product_id=product.id, patch={"sku": "SHIRT-01-L", "barcode": "7891000100110"}
        )
        db.session.commit()

        resp = client.get("/api/barcode/7891000100110", headers=user_headers)
        assert resp.json["type"] == "variant"
        assert resp.json["variant"]["id"] == variant.id
        assert resp.json["product"]["id"] == product.id

    def test_unknown_barcode(self, client, user_headers):
        resp = client.get("/api/barcode/0000", headers=user_headers)
        assert resp.status_code == 404


# =============================================================================
# IMAGES
# =============================================================================


class TestProductImages:

    def test_upload_stores_and_attaches(self, client, admin_headers, product, storage):
        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())

        assert resp.status_code == 201
        assert resp.json["is_primary"] is True
        assert len(storage) == 1
        assert storage[0]["content"] == PNG_BYTES
        assert storage[0]["headers"]["Content-Type"] == "image/png"
        assert storage[0]["url"].startswith(f"https://storage.example.test/bucket/products/{product.id}/")
        assert storage[0]["url"].endswith("-front_view.png")
        assert resp.json["url"] == storage[0]["url"]

    def test_second_image_is_not_primary(self, client, admin_headers, product, storage):
        client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())
        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())
        assert resp.json["is_primary"] is False

    def test_set_primary_and_delete(self, client, admin_headers, product, storage):
        first = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body()).json
        second = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body()).json

        resp = client.post(f"/api/products/images/{second['id']}/primary", headers=admin_headers)
        assert resp.status_code == 200
        assert db.session.get(ProductImage, first["id"]).is_primary is False

        resp = client.delete(f"/api/products/images/{second['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert db.session.get(ProductImage, first["id"]).is_primary is True

    def test_storage_failure_returns_502(self, app, monkeypatch, client, admin_headers, product):
        monkeypatch.setitem(app.config, "STORAGE_BASE_URL", "https://storage.example.test/bucket")
        monkeypatch.setattr(
            "erp.services.storage_service.httpx.put",
            lambda url, content=None, headers=None, timeout=None: httpx.Response(503),
        )

        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())

        assert resp.status_code == 502
        assert resp.json["code"] == "BAD_GATEWAY"
        assert db.session.query(ProductImage).count() == 0

    @pytest.mark.parametrize("body", [["not", "an", "object"], {"url": 42}, {}])
    def test_unusable_json_reply_falls_back_to_object_url(self, app, monkeypatch, client, admin_headers, product, body):
        monkeypatch.setitem(app.config, "STORAGE_BASE_URL", "https://storage.example.test/bucket")
        monkeypatch.setattr(
            "erp.services.storage_service.httpx.put",
            lambda url, content=None, headers=None, timeout=None: httpx.Response(200, json=body),
        )

        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())

        assert resp.status_code == 201
        assert resp.json["url"].startswith(f"https://storage.example.test/bucket/products/{product.id}/")

    def test_json_reply_url_is_used(self, app, monkeypatch, client, admin_headers, product):
        monkeypatch.setitem(app.config, "STORAGE_BASE_URL", "https://storage.example.test/bucket")
        monkeypatch.setattr(
            "erp.services.storage_service.httpx.put",
            lambda url, content=None, headers=None, timeout=None: httpx.Response(
                200, json={"url": "https://cdn.example.test/front.png"}
            ),
        )

        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())

        assert resp.json["url"] == "https://cdn.example.test/front.png"

    def test_unconfigured_storage_returns_502(self, client, admin_headers, product):
        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body())
        assert resp.status_code == 502

    @pytest.mark.parametrize("overrides", [
        {"content_type": "application/pdf"},
        {"data": "***not base64***"},
        {"data": ""},
    ])
    def test_invalid_upload(self, client, admin_headers, product, storage, overrides):
        resp = client.post(f"/api/products/{product.id}/images", headers=admin_headers, json=_image_body(**overrides))
        assert resp.status_code == 400
        assert storage == []


# =============================================================================
# SUPPLIERS / CATEGORIES / CUSTOMERS
# =============================================================================


class TestSuppliers:

    def test_soft_delete_hides_from_list(self, client, admin_headers, supplier):
        resp = client.delete(f"/api/suppliers/{supplier.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json == {"success": True}
        assert db.session.get(Supplier, supplier.id).is_active is False
        assert client.get("/api/suppliers", headers=admin_headers).json == []


class TestCategories:

    def test_parent_must_exist(self, client, admin_headers):
        resp = client.post("/api/categories", headers=admin_headers, json={"name": "Shirts", "parent_id": 999999})
        assert resp.status_code == 404

    def test_child_category(self, client, admin_headers):
        parent = client.post("/api/categories", headers=admin_headers, json={"name": "Tops"}).json
        resp = client.post("/api/categories", headers=admin_headers, json={"name": "Shirts", "parent_id": parent["id"]})
        assert resp.status_code == 201
        assert resp.json["parent_id"] == parent["id"]


class TestCustomers:

    def test_customer_gets_generated_code(self, client, admin_headers):
        resp = client.post("/api/customers", headers=admin_headers, json={"name": "Bruno Lima"})
        assert resp.status_code == 201
        assert resp.json["code"].startswith("CLI")
        assert resp.json["segment"] == "NEW"


# =============================================================================
# STORE UNITS
# =============================================================================


class TestStoreUnits:

    def test_single_default_unit(self, main_unit):
        other = unit_service.create_unit(patch={"code": "WH01", "name": "Warehouse", "type": "WAREHOUSE", "is_default": True})
        db.session.commit()

        defaults = db.session.query(StoreUnit).filter_by(is_default=True).all()
        assert [u.id for u in defaults] == [other.id]

    def test_unit_stock_thresholds(self, client, admin_headers, main_unit, product):
        resp = client.put("/api/unit-stock", headers=admin_headers, json={
            "unit_id": main_unit.id,
            "product_id": product.id,
            "quantity": 4,
            "min_stock": 5,
            "location": "A-01",
        })
        assert resp.status_code == 200

        rows = client.get(f"/api/unit-stock/by-unit/{main_unit.id}", headers=admin_headers).json
        assert rows[0]["quantity"] == 4
        assert rows[0]["is_low"] is True


# =============================================================================
# UTILITIES
# =============================================================================


class TestUtilities:

    def test_generate_code(self, client, user_headers):
        resp = client.get("/api/utils/generate-code?prefix=prd", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json["code"].startswith("PRD")

    def test_generate_code_rejects_bad_prefix(self, client, user_headers):
        resp = client.get("/api/utils/generate-code?prefix=a-b", headers=user_headers)
        assert resp.status_code == 400

    def test_current_period(self, client, user_headers):
        resp = client.get("/api/utils/current-period", headers=user_headers)
        assert len(resp.json["period"]) == 7
