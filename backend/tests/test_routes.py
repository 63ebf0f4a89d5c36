"""
Route tests: REST endpoints and the /api/rpc operation channel must both
answer with the success/failure envelope.
"""
import pytest

from stockbook.models import Product

from conftest import envelope


def _create_product(client, **fields):
    payload = {"sku": "SKU-R1", "name": "Route Product", "price_cents": 1500, "stock_qty": 10}
    payload.update(fields)
    response = client.post("/api/products", json=payload)
    assert response.status_code == 201, response.get_json()
    return envelope(response)["data"]


def _rpc(client, operation, **params):
    response = client.post("/api/rpc", json={"operation": operation, "params": params})
    assert response.status_code == 200
    return envelope(response)


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get("/api/health")
        body = envelope(response)
        assert response.status_code == 200
        assert body["success"] is True


class TestProductRoutes:
    def test_create_and_get(self, client, db_session):
        product = _create_product(client)
        assert product["stock_qty"] == 10
        assert product["is_low_stock"] is True

        response = client.get(f"/api/products/{product['id']}")
        assert envelope(response)["data"]["sku"] == "SKU-R1"

    def test_validation_envelope(self, client, db_session):
        response = client.post("/api/products", json={"sku": "X"})
        body = envelope(response)
        assert response.status_code == 400
        assert body == {
            "success": False,
            "error": "Missing required fields: name",
            "error_type": "validation",
            "fields": {"name": "required"},
        }

    def test_duplicate_sku(self, client, db_session):
        _create_product(client)
        response = client.post("/api/products", json={"sku": "SKU-R1", "name": "Copy"})
        assert response.status_code == 400
        assert envelope(response)["fields"] == {"sku": "duplicate"}

    def test_list_with_query_filters(self, client, db_session):
        _create_product(client, sku="A-1", name="Apple Juice")
        _create_product(client, sku="B-1", name="Banana")

        response = client.get("/api/products?search=apple")
        assert [p["sku"] for p in envelope(response)["data"]] == ["A-1"]

        response = client.get("/api/products?colour=red")
        assert response.status_code == 400

    def test_update_cannot_touch_stock(self, client, db_session):
        product = _create_product(client)
        response = client.put(f"/api/products/{product['id']}", json={"stock_qty": 99})
        assert response.status_code == 400

        response = client.patch(f"/api/products/{product['id']}", json={"price_cents": 1800})
        assert envelope(response)["data"]["price_cents"] == 1800

    def test_delete_then_get_and_resolve(self, client, db_session):
        product = _create_product(client)

        first = envelope(client.delete(f"/api/products/{product['id']}"))["data"]
        second = envelope(client.delete(f"/api/products/{product['id']}"))["data"]
        assert first["deleted_at"] == second["deleted_at"]

        response = client.get(f"/api/products/{product['id']}")
        assert response.status_code == 404
        assert envelope(response)["error_type"] == "not_found"

        resolved = envelope(client.get(f"/api/products/{product['id']}/resolve"))["data"]
        assert resolved["is_deleted"] is True

    def test_reference_routes(self, client, db_session):
        response = client.post("/api/categories", json={"name": "Dairy"})
        assert response.status_code == 201
        category = envelope(response)["data"]

        _create_product(client, category_id=category["id"])
        response = client.get(f"/api/products?category_id={category['id']}")
        assert len(envelope(response)["data"]) == 1

        response = client.get("/api/suppliers/missing")
        assert response.status_code == 404


class TestStockRoutes:
    def test_record_and_history(self, client, db_session):
        product = _create_product(client)

        response = client.post("/api/stock/movements", json={
            "product_id": product["id"], "kind": "purchase", "quantity": 5,
        })
        assert response.status_code == 201
        client.post("/api/stock/movements", json={
            "product_id": product["id"], "kind": "sale", "quantity": -3,
        })

        history = envelope(client.get(f"/api/stock/{product['id']}/history"))["data"]
        assert [(m["kind"], m["quantity_before"], m["quantity_after"]) for m in history] == [
            ("sale", 15, 12),
            ("purchase", 10, 15),
        ]

        limited = envelope(client.get(f"/api/stock/{product['id']}/history?limit=1"))["data"]
        assert len(limited) == 1

        report = envelope(client.get(f"/api/stock/{product['id']}/verify"))["data"]
        assert report["consistent"] is True

    @pytest.mark.parametrize("payload,field", [
        ({"kind": "sale", "quantity": -1}, "product_id"),
        ({"product_id": "x", "quantity": -1}, "kind"),
        ({"product_id": "x", "kind": "sale"}, "quantity"),
    ])
    def test_missing_fields(self, client, db_session, payload, field):
        response = client.post("/api/stock/movements", json=payload)
        assert response.status_code == 400
        assert envelope(response)["fields"] == {field: "required"}

    def test_unknown_product(self, client, db_session):
        response = client.post("/api/stock/movements", json={
            "product_id": "missing", "kind": "purchase", "quantity": 1,
        })
        assert response.status_code == 404

    def test_batch(self, client, db_session):
        product = _create_product(client)
        response = client.post("/api/stock/movements/batch", json={"entries": [
            {"product_id": product["id"], "kind": "sale", "quantity": -1},
            {"product_id": "missing", "kind": "sale", "quantity": -1},
        ]})
        body = envelope(response)
        assert response.status_code == 201
        assert body["data"]["recorded"] == 1
        assert body["data"]["failed"] == 1
        assert body["data"]["results"][1]["error_type"] == "not_found"


class TestInvoiceRoutes:
    def test_create_and_pay(self, client, db_session):
        product = _create_product(client)
        response = client.post("/api/invoices", json={
            "kind": "sale",
            "items": [{"product_id": product["id"], "quantity": 2}],
        })
        assert response.status_code == 201
        invoice = envelope(response)["data"]
        assert invoice["total_cents"] == 3000
        assert len(invoice["items"]) == 1

        response = client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount_cents": 3000})
        assert response.status_code == 201

        invoice = envelope(client.get(f"/api/invoices/{invoice['id']}"))["data"]
        assert invoice["status"] == "paid"
        assert invoice["balance_cents"] == 0


class TestRpc:
    def test_products_roundtrip(self, client, db_session):
        created = _rpc(client, "products.create", fields={"sku": "RPC-1", "name": "Rpc", "stock_qty": 4})
        assert created["success"] is True
        product_id = created["data"]["id"]

        moved = _rpc(client, "stock.recordMovement", productId=product_id, kind="sale", signedQuantity=-1)
        assert moved["data"]["quantity_after"] == 3

        listed = _rpc(client, "products.list", filter={"search": "rpc"})
        assert [p["id"] for p in listed["data"]] == [product_id]

        history = _rpc(client, "stock.getHistory", productId=product_id)
        assert len(history["data"]) == 1

    def test_get_missing_is_success_with_null(self, client, db_session):
        body = _rpc(client, "products.get", id="missing")
        assert body == {"success": True, "data": None}

    def test_failures_use_envelope(self, client, db_session):
        body = _rpc(client, "stock.recordMovement", productId="missing", kind="purchase", quantity=1)
        assert body["success"] is False
        assert body["error_type"] == "not_found"

        body = _rpc(client, "products.create", fields={"name": "no sku"})
        assert body["error_type"] == "validation"

    def test_unknown_operation(self, client, db_session):
        body = _rpc(client, "products.explode")
        assert body["success"] is False
        assert body["error_type"] == "not_found"

    def test_bad_params(self, client, db_session):
        body = _rpc(client, "products.get", identifier="x")
        assert body["error_type"] == "validation"

    def test_caller_cannot_forge_user_id(self, client, db_session):
        product = _create_product(client)
        body = _rpc(
            client, "stock.recordMovement",
            productId=product["id"], kind="purchase", quantity=1, user_id="someone-else",
        )
        assert body["data"]["user_id"] is None

    def test_missing_operation(self, client, db_session):
        response = client.post("/api/rpc", json={})
        assert envelope(response)["error_type"] == "validation"

    def test_rpc_sees_rest_writes(self, client, db_session):
        product = _create_product(client)
        body = _rpc(client, "stock.verify", productId=product["id"])
        assert body["data"]["stock_qty"] == db_session.get(Product, product["id"]).stock_qty


class TestMalformedRequests:
    @pytest.mark.parametrize("url", [
        "/api/products",
        "/api/categories",
        "/api/stock/movements",
        "/api/stock/movements/batch",
        "/api/invoices",
    ])
    def test_list_body_is_rejected(self, client, db_session, url):
        response = client.post(url, json=["not", "an", "object"])
        body = envelope(response)
        assert response.status_code == 400
        assert body["error_type"] == "validation"

    def test_list_body_on_update(self, client, db_session):
        product = _create_product(client)
        response = client.put(f"/api/products/{product['id']}", json=[1, 2])
        assert response.status_code == 400

    @pytest.mark.parametrize("body", [["products.list"], "products.list", 42])
    def test_rpc_non_object_body_answers_envelope(self, client, db_session, body):
        response = client.post("/api/rpc", json=body)
        assert response.status_code == 200
        payload = envelope(response)
        assert payload["success"] is False
        assert payload["error_type"] == "validation"

    @pytest.mark.parametrize("operation", ["products.list", "customers.list", "invoices.list"])
    def test_rpc_filter_must_be_object(self, client, db_session, operation):
        body = _rpc(client, operation, filter="pen")
        assert body["success"] is False
        assert body["fields"] == {"filter": "invalid"}

    def test_rpc_product_id_must_be_string(self, client, db_session):
        body = _rpc(client, "stock.recordMovement", productId={"id": 1}, kind="purchase", quantity=1)
        assert body["error_type"] == "validation"

    def test_rpc_payments_must_be_list(self, client, db_session):
        product = _create_product(client)
        body = _rpc(
            client, "invoices.create",
            kind="sale", items=[{"product_id": product["id"], "quantity": 1}], payments=5,
        )
        assert body["fields"] == {"payments": "invalid"}

    @pytest.mark.parametrize("limit", ["abc", "0", "-2", ""])
    def test_bad_history_limit(self, client, db_session, limit):
        product = _create_product(client)
        response = client.get(f"/api/stock/{product['id']}/history?limit={limit}")
        assert response.status_code == 400
        assert envelope(response)["fields"] == {"limit": "invalid"}

    def test_history_limit_same_on_both_paths(self, client, db_session):
        product = _create_product(client)
        for _ in range(3):
            client.post("/api/stock/movements", json={
                "product_id": product["id"], "kind": "purchase", "quantity": 1,
            })

        rest = envelope(client.get(f"/api/stock/{product['id']}/history?limit=2"))["data"]
        rpc = _rpc(client, "stock.getHistory", productId=product["id"], limit=2)["data"]
        assert [m["id"] for m in rest] == [m["id"] for m in rpc]
        assert len(rest) == 2

        assert _rpc(client, "stock.getHistory", productId=product["id"], limit="abc")["error_type"] == "validation"
