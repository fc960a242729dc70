"""Sales order entry, totals, reservation and status lifecycle."""

from stockdesk.models import SKU, SalesOrder


def _order_payload(customer_id, sku_id, quantity=2, **line):
    return {"customer": customer_id, "items": [{"sku": sku_id, "quantity": quantity, **line}]}


def _status(client, headers, order_id, status):
    return client.put(f"/api/sales-orders/{order_id}/status", json={"status": status}, headers=headers)


class TestCreate:
    def test_totals(self, client, staff, factory):
        sku_id = factory.sku(stock=10)
        customer_id = factory.customer()

        resp = client.post(
            "/api/sales-orders",
            json=_order_payload(customer_id, sku_id, quantity=2, unitPrice=100, discount=10, tax=5),
            headers=staff["headers"],
        )
        assert resp.status_code == 201
        order = resp.get_json()
        assert order["orderNumber"] == "SO-0001"
        assert order["status"] == "draft"
        assert order["dispatchStatus"] == "pending"
        assert order["subtotal"] == 200.0
        assert order["totalDiscount"] == 10.0
        assert order["totalTax"] == 5.0
        assert order["totalAmount"] == 195.0
        assert order["items"][0]["totalAmount"] == 195.0
        assert order["createdBy"]["id"] == staff["id"]

    def test_unit_price_defaults_to_selling_price(self, client, staff, factory):
        sku_id = factory.sku(stock=10, selling_price="42.50")
        resp = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id), headers=staff["headers"])
        assert resp.get_json()["items"][0]["unitPrice"] == 42.5
        assert resp.get_json()["subtotal"] == 85.0

    def test_numbers_are_sequential(self, client, staff, factory):
        sku_id = factory.sku(stock=10)
        customer_id = factory.customer()
        numbers = [
            client.post("/api/sales-orders", json=_order_payload(customer_id, sku_id, 1), headers=staff["headers"])
            .get_json()["orderNumber"]
            for _ in range(3)
        ]
        assert numbers == ["SO-0001", "SO-0002", "SO-0003"]

    def test_insufficient_stock_creates_nothing(self, client, staff, factory, get):
        sku_id = factory.sku(stock=1)
        resp = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id, 5), headers=staff["headers"])
        assert resp.status_code == 400
        assert "Available: 1, Required: 5" in resp.get_json()["message"]

        listing = client.get("/api/sales-orders", headers=staff["headers"]).get_json()
        assert listing["total"] == 0
        assert get(SKU, sku_id, lambda s: s.current_stock) == 1

    def test_unknown_customer(self, client, staff, factory):
        resp = client.post("/api/sales-orders", json=_order_payload(424242, factory.sku()), headers=staff["headers"])
        assert resp.status_code == 404

    def test_unknown_sku(self, client, staff, factory):
        resp = client.post("/api/sales-orders", json=_order_payload(factory.customer(), 9999), headers=staff["headers"])
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "SKU 9999 not found"

    def test_no_items(self, client, staff, factory):
        resp = client.post("/api/sales-orders", json={"customer": factory.customer(), "items": []}, headers=staff["headers"])
        assert resp.status_code == 400

    def test_addresses_default_from_customer(self, client, staff, factory):
        address = {"street": "1 Main Rd", "city": "Pune", "country": "India"}
        customer_id = factory.customer(billing_address=address, shipping_address=address)
        resp = client.post("/api/sales-orders", json=_order_payload(customer_id, factory.sku()), headers=staff["headers"])
        assert resp.get_json()["billingAddress"] == address
        assert resp.get_json()["shippingAddress"] == address

    def test_requires_login(self, client, factory):
        resp = client.post("/api/sales-orders", json=_order_payload(factory.customer(), factory.sku()))
        assert resp.status_code == 401


class TestUpdate:
    def test_draft_can_be_edited(self, client, staff, factory):
        sku_id = factory.sku(stock=10)
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id), headers=staff["headers"]).get_json()

        resp = client.put(
            f"/api/sales-orders/{order['id']}",
            json={"items": [{"sku": sku_id, "quantity": 3, "unitPrice": 10}], "notes": "rush"},
            headers=staff["headers"],
        )
        assert resp.status_code == 200
        assert resp.get_json()["totalAmount"] == 30.0
        assert resp.get_json()["notes"] == "rush"

    def test_confirmed_cannot_be_edited(self, client, staff, factory):
        sku_id = factory.sku(stock=10)
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id), headers=staff["headers"]).get_json()
        _status(client, staff["headers"], order["id"], "confirmed")

        resp = client.put(f"/api/sales-orders/{order['id']}", json={"notes": "late"}, headers=staff["headers"])
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Cannot update confirmed sales order"

    def test_update_with_confirm_status_reserves(self, client, staff, factory, get):
        sku_id = factory.sku(stock=10)
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id), headers=staff["headers"]).get_json()

        resp = client.put(f"/api/sales-orders/{order['id']}", json={"status": "confirmed"}, headers=staff["headers"])
        assert resp.get_json()["status"] == "confirmed"
        assert get(SKU, sku_id, lambda s: s.reserved_stock) == 2


class TestConfirmation:
    def test_confirm_reserves(self, client, staff, factory, get):
        sku_id = factory.sku(stock=10)
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id, 4), headers=staff["headers"]).get_json()

        resp = _status(client, staff["headers"], order["id"], "confirmed")
        assert resp.status_code == 200
        assert resp.get_json()["allocatedStock"] == [
            {"sku": {"id": sku_id, "name": resp.get_json()["items"][0]["sku"]["name"], "sku": resp.get_json()["items"][0]["sku"]["sku"]}, "quantity": 4}
        ]
        assert get(SKU, sku_id, lambda s: (s.reserved_stock, s.available_stock)) == (4, 6)

    def test_confirm_fails_without_available_stock(self, client, manager, staff, factory, get):
        sku_id = factory.sku(stock=10)
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id, 4), headers=staff["headers"]).get_json()

        adjust = client.post(
            f"/api/skus/{sku_id}/adjust-stock",
            json={"quantity": -7, "reason": "damaged"},
            headers=manager["headers"],
        )
        assert adjust.status_code == 200

        resp = _status(client, staff["headers"], order["id"], "confirmed")
        assert resp.status_code == 400
        assert "Available: 3, Required: 4" in resp.get_json()["message"]
        assert get(SalesOrder, order["id"], lambda o: (o.status, len(o.allocations))) == ("draft", 0)
        assert get(SKU, sku_id, lambda s: s.reserved_stock) == 0

    def test_competing_orders_cannot_overbook(self, client, staff, factory, get):
        sku_id = factory.sku(stock=5)
        first = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id, 3), headers=staff["headers"]).get_json()
        second = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id, 3), headers=staff["headers"]).get_json()

        assert _status(client, staff["headers"], first["id"], "confirmed").status_code == 200
        assert _status(client, staff["headers"], second["id"], "confirmed").status_code == 400
        assert get(SKU, sku_id, lambda s: s.reserved_stock) == 3

    def test_cancel_releases(self, client, staff, factory, get):
        sku_id = factory.sku(stock=10)
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id, 4), headers=staff["headers"]).get_json()
        _status(client, staff["headers"], order["id"], "confirmed")

        resp = _status(client, staff["headers"], order["id"], "cancelled")
        assert resp.status_code == 200
        assert resp.get_json()["allocatedStock"] == []
        assert get(SKU, sku_id, lambda s: (s.current_stock, s.reserved_stock)) == (10, 0)


class TestTransitions:
    def test_invalid_transition(self, client, staff, factory):
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), factory.sku()), headers=staff["headers"]).get_json()
        resp = _status(client, staff["headers"], order["id"], "shipped")
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Cannot change order status from draft to shipped"

    def test_unknown_status(self, client, staff, factory):
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), factory.sku()), headers=staff["headers"]).get_json()
        resp = _status(client, staff["headers"], order["id"], "teleported")
        assert resp.status_code == 400

    def test_dispatched_only_through_dispatch(self, client, staff, factory):
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), factory.sku()), headers=staff["headers"]).get_json()
        _status(client, staff["headers"], order["id"], "confirmed")
        _status(client, staff["headers"], order["id"], "pending_dispatch")
        resp = _status(client, staff["headers"], order["id"], "dispatched")
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Use the dispatch endpoint to dispatch an order"

    def test_status_change_is_audited_with_tracking(self, client, staff, factory):
        sku_id = factory.sku()
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), sku_id), headers=staff["headers"]).get_json()
        for status in ("confirmed", "pending_dispatch"):
            _status(client, staff["headers"], order["id"], status)
        client.put(
            f"/api/sales-orders/{order['id']}/dispatch",
            json={"dispatchedItems": [{"sku": sku_id, "quantity": 2}]},
            headers=staff["headers"],
        )

        resp = client.put(
            f"/api/sales-orders/{order['id']}/status",
            json={"status": "shipped", "trackingNumber": "TRK-1"},
            headers=staff["headers"],
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "shipped"
        assert resp.get_json()["trackingNumber"] == "TRK-1"


class TestDelete:
    def test_manager_deletes_draft(self, client, manager, staff, factory):
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), factory.sku()), headers=staff["headers"]).get_json()

        assert client.delete(f"/api/sales-orders/{order['id']}", headers=staff["headers"]).status_code == 403
        assert client.delete(f"/api/sales-orders/{order['id']}", headers=manager["headers"]).status_code == 200
        assert client.get(f"/api/sales-orders/{order['id']}", headers=staff["headers"]).status_code == 404

    def test_confirmed_cannot_be_deleted(self, client, admin, factory):
        order = client.post("/api/sales-orders", json=_order_payload(factory.customer(), factory.sku()), headers=admin["headers"]).get_json()
        _status(client, admin["headers"], order["id"], "confirmed")
        assert client.delete(f"/api/sales-orders/{order['id']}", headers=admin["headers"]).status_code == 400


class TestListing:
    def test_filter_and_stats(self, client, staff, factory):
        sku_id = factory.sku(stock=100)
        customer_id = factory.customer()
        other_customer = factory.customer()
        first = client.post(
            "/api/sales-orders", json=_order_payload(customer_id, sku_id, 1, unitPrice=50), headers=staff["headers"]
        ).get_json()
        client.post("/api/sales-orders", json=_order_payload(other_customer, sku_id, 1, unitPrice=70), headers=staff["headers"])
        _status(client, staff["headers"], first["id"], "confirmed")

        by_customer = client.get(f"/api/sales-orders?customer={customer_id}", headers=staff["headers"]).get_json()
        assert [o["id"] for o in by_customer["salesOrders"]] == [first["id"]]

        drafts = client.get("/api/sales-orders?status=draft", headers=staff["headers"]).get_json()
        assert drafts["total"] == 1

        stats = client.get("/api/sales-orders/stats", headers=staff["headers"]).get_json()
        assert stats["totalOrders"] == 2
        assert stats["totalRevenue"] == 0
        assert {row["status"]: row["totalAmount"] for row in stats["statusBreakdown"]} == {
            "confirmed": 50.0,
            "draft": 70.0,
        }

    def test_pagination(self, client, staff, factory):
        sku_id = factory.sku(stock=100)
        customer_id = factory.customer()
        for _ in range(3):
            client.post("/api/sales-orders", json=_order_payload(customer_id, sku_id, 1), headers=staff["headers"])

        page = client.get("/api/sales-orders?page=2&limit=2", headers=staff["headers"]).get_json()
        assert page["currentPage"] == 2
        assert page["totalPages"] == 2
        assert page["total"] == 3
        assert len(page["salesOrders"]) == 1
