"""SKU catalog and manual stock adjustment."""

import pytest

from stockdesk.models import SKU, AuditLog


@pytest.fixture
def refs(factory):
    return {"warehouse": factory.warehouse(), "supplier": factory.supplier()}


def _create(client, headers, refs, **fields):
    payload = {
        "sku": "tsh-001",
        "name": "T-Shirt",
        "category": "Apparel",
        "costPrice": 80,
        "sellingPrice": 100,
        "initialStock": 12,
        **refs,
        **fields,
    }
    return client.post("/api/skus", json=payload, headers=headers)


class TestCatalog:
    def test_create(self, client, staff, refs):
        resp = _create(client, staff["headers"], refs)
        assert resp.status_code == 201
        sku = resp.get_json()
        assert sku["sku"] == "TSH-001"
        assert sku["profitMargin"] == 20.0
        assert sku["currentStock"] == 12
        assert sku["reservedStock"] == 0
        assert sku["availableStock"] == 12
        assert sku["warehouse"]["id"] == refs["warehouse"]

    def test_margin_recomputed_on_update(self, client, staff, refs):
        sku = _create(client, staff["headers"], refs).get_json()
        resp = client.put(f"/api/skus/{sku['id']}", json={"costPrice": 50}, headers=staff["headers"])
        assert resp.get_json()["profitMargin"] == 50.0

    def test_duplicate_code(self, client, staff, refs):
        _create(client, staff["headers"], refs)
        resp = _create(client, staff["headers"], refs, sku="TSH-001", name="Other")
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "SKU with this code already exists"

    def test_warehouse_required(self, client, staff, refs):
        resp = _create(client, staff["headers"], {"supplier": refs["supplier"]})
        assert resp.status_code == 400

    def test_unknown_supplier(self, client, staff, refs):
        resp = _create(client, staff["headers"], {"warehouse": refs["warehouse"], "supplier": 999})
        assert resp.status_code == 404

    def test_current_stock_not_editable(self, client, staff, refs):
        sku = _create(client, staff["headers"], refs).get_json()
        resp = client.put(f"/api/skus/{sku['id']}", json={"currentStock": 99}, headers=staff["headers"])
        assert resp.status_code == 400

    def test_search_and_soft_delete(self, client, staff, manager, refs):
        sku = _create(client, staff["headers"], refs).get_json()
        _create(client, staff["headers"], refs, sku="MUG-1", name="Mug", category="Kitchen")

        found = client.get("/api/skus?search=shirt", headers=staff["headers"]).get_json()
        assert [s["id"] for s in found["skus"]] == [sku["id"]]

        assert client.delete(f"/api/skus/{sku['id']}", headers=staff["headers"]).status_code == 403
        assert client.delete(f"/api/skus/{sku['id']}", headers=manager["headers"]).status_code == 200

        active = client.get("/api/skus", headers=staff["headers"]).get_json()
        assert [s["sku"] for s in active["skus"]] == ["MUG-1"]
        everything = client.get("/api/skus?includeInactive=true", headers=staff["headers"]).get_json()
        assert everything["total"] == 2

    def test_low_stock(self, client, staff, factory):
        low = factory.sku(stock=2, min_stock_level=5)
        factory.sku(stock=20, min_stock_level=5)
        resp = client.get("/api/skus/low-stock", headers=staff["headers"])
        assert [s["id"] for s in resp.get_json()] == [low]


class TestAdjustStock:
    def test_increase_and_decrease(self, client, manager, factory, get):
        sku_id = factory.sku(stock=10)

        up = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": 5, "reason": "recount"}, headers=manager["headers"])
        assert up.status_code == 200
        assert up.get_json()["adjustment"] == {"quantity": 5, "stockBefore": 10, "stockAfter": 15, "reason": "recount"}

        down = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": -3, "reason": "damaged"}, headers=manager["headers"])
        assert down.get_json()["currentStock"] == 12
        assert get(SKU, sku_id, lambda s: s.current_stock) == 12

    def test_cannot_go_below_reserved(self, client, manager, staff, factory, get):
        sku_id = factory.sku(stock=10)
        order = client.post(
            "/api/sales-orders",
            json={"customer": factory.customer(), "items": [{"sku": sku_id, "quantity": 4}]},
            headers=staff["headers"],
        ).get_json()
        client.put(f"/api/sales-orders/{order['id']}/status", json={"status": "confirmed"}, headers=staff["headers"])

        resp = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": -7, "reason": "loss"}, headers=manager["headers"])
        assert resp.status_code == 400
        assert get(SKU, sku_id, lambda s: s.current_stock) == 10

        ok = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": -6, "reason": "loss"}, headers=manager["headers"])
        assert ok.status_code == 200
        assert ok.get_json()["availableStock"] == 0

    def test_cannot_go_negative(self, client, admin, factory):
        sku_id = factory.sku(stock=2)
        resp = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": -3, "reason": "x"}, headers=admin["headers"])
        assert resp.status_code == 400

    def test_zero_and_missing_reason(self, client, manager, factory):
        sku_id = factory.sku(stock=2)
        zero = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": 0, "reason": "x"}, headers=manager["headers"])
        assert zero.status_code == 400
        no_reason = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": 1}, headers=manager["headers"])
        assert no_reason.status_code == 400

    def test_staff_forbidden(self, client, staff, factory):
        sku_id = factory.sku(stock=2)
        resp = client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": 1, "reason": "x"}, headers=staff["headers"])
        assert resp.status_code == 403

    def test_adjustment_is_audited(self, app, client, manager, factory):
        sku_id = factory.sku(stock=2)
        client.post(f"/api/skus/{sku_id}/adjust-stock", json={"quantity": 4, "reason": "delivery"}, headers=manager["headers"])
        with app.app_context():
            entry = AuditLog.query.filter_by(entity_type="SKU", entity_id=sku_id, action="ADJUST").one()
            assert entry.remarks == "delivery"
            assert entry.to_dict()["after"] == {"current_stock": 6}
