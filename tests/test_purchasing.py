"""Purchase indents, their approval workflow and purchase orders."""

import pytest

from stockdesk.models import PurchaseIndent


@pytest.fixture
def approver(make_user, admin, client, factory):
    """A plain user holding the indent approval permission."""
    user = make_user("Approver", "approver@example.com")
    permission_id = factory.permission("Indent Approval", "/purchase/indent-approval")
    resp = client.post(
        f"/api/users/{user['id']}/permissions",
        json={"permissionId": permission_id},
        headers=admin["headers"],
    )
    assert resp.status_code == 201
    return user


def _raise_indent(client, headers, sku_id, vendor_id=None, quantity=5):
    line = {"sku": sku_id, "quantity": quantity, "department": "Stores"}
    if vendor_id is not None:
        line["vendor"] = vendor_id
    resp = client.post("/api/purchase-indents", json={"items": [line]}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def _approve(client, headers, indent_id, remarks=None):
    return client.put(
        f"/api/purchase-indents/approval/{indent_id}/approve",
        json={"remarks": remarks} if remarks else {},
        headers=headers,
    )


@pytest.fixture
def approved_indent(client, staff, admin, factory):
    vendor_id = factory.supplier()
    sku_id = factory.sku()
    indent = _raise_indent(client, staff["headers"], sku_id, vendor_id)
    assert _approve(client, admin["headers"], indent["id"]).status_code == 200
    return {"indent": indent["id"], "sku": sku_id, "vendor": vendor_id}


def _po_payload(refs, **extra):
    return {
        "indent": refs["indent"],
        "vendor": refs["vendor"],
        "items": [{"sku": refs["sku"], "quantity": 3, "unitPrice": 10, "tax": 2}],
        **extra,
    }


class TestIndents:
    def test_create(self, client, staff, factory):
        indent = _raise_indent(client, staff["headers"], factory.sku())
        assert indent["indentId"] == "IND-001"
        assert indent["status"] == "Pending"
        assert indent["createdBy"]["id"] == staff["id"]
        assert indent["items"][0]["department"] == "Stores"

    def test_update_and_history(self, client, staff, approver, factory):
        sku_id = factory.sku()
        indent = _raise_indent(client, staff["headers"], sku_id)

        resp = client.put(
            f"/api/purchase-indents/{indent['id']}",
            json={"items": [{"sku": sku_id, "quantity": 9, "department": "Stores"}]},
            headers=staff["headers"],
        )
        assert resp.status_code == 200
        assert resp.get_json()["items"][0]["quantity"] == 9

        assert _approve(client, approver["headers"], indent["id"], "ok").status_code == 200

        history = client.get(f"/api/purchase-indents/approval/{indent['id']}/history", headers=staff["headers"]).get_json()
        assert [event["action"] for event in history] == ["APPROVE", "UPDATE", "CREATE"]
        assert history[0]["remarks"] == "ok"
        assert history[0]["user"]["id"] == approver["id"]
        assert "items" in history[1]["changes"]

    def test_delete_marks_deleted(self, client, staff, factory):
        indent = _raise_indent(client, staff["headers"], factory.sku())
        assert client.delete(f"/api/purchase-indents/{indent['id']}", headers=staff["headers"]).status_code == 200

        listing = client.get("/api/purchase-indents", headers=staff["headers"]).get_json()
        assert listing["indents"] == []
        deleted = client.get("/api/purchase-indents?status=Deleted", headers=staff["headers"]).get_json()
        assert deleted["indents"][0]["status"] == "Deleted"

    def test_requires_department(self, client, staff, factory):
        resp = client.post(
            "/api/purchase-indents",
            json={"items": [{"sku": factory.sku(), "quantity": 1}]},
            headers=staff["headers"],
        )
        assert resp.status_code == 400


class TestApproval:
    def test_approve(self, client, staff, approver, factory):
        indent = _raise_indent(client, staff["headers"], factory.sku())
        resp = _approve(client, approver["headers"], indent["id"], "within budget")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "Approved"
        assert body["approvedBy"]["id"] == approver["id"]
        assert body["approvalRemarks"] == "within budget"
        assert body["approvedAt"] is not None

    def test_double_decision_is_refused(self, client, staff, approver, factory, get):
        indent = _raise_indent(client, staff["headers"], factory.sku())
        _approve(client, approver["headers"], indent["id"])

        resp = client.put(
            f"/api/purchase-indents/approval/{indent['id']}/reject",
            json={"remarks": "changed my mind"},
            headers=approver["headers"],
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Indent IND-001 is already Approved"
        assert get(PurchaseIndent, indent["id"], lambda i: (i.status, i.approval_remarks)) == ("Approved", None)

    def test_reject(self, client, staff, approver, factory):
        indent = _raise_indent(client, staff["headers"], factory.sku())
        resp = client.put(
            f"/api/purchase-indents/approval/{indent['id']}/reject",
            json={"remarks": "no budget"},
            headers=approver["headers"],
        )
        assert resp.get_json()["status"] == "Rejected"

        decided = client.get("/api/purchase-indents/approval/approved", headers=approver["headers"]).get_json()
        assert [i["id"] for i in decided["indents"]] == [indent["id"]]

    def test_rejected_indent_cannot_be_edited(self, client, staff, approver, factory):
        sku_id = factory.sku()
        indent = _raise_indent(client, staff["headers"], sku_id)
        client.put(f"/api/purchase-indents/approval/{indent['id']}/reject", json={}, headers=approver["headers"])
        resp = client.put(
            f"/api/purchase-indents/{indent['id']}",
            json={"items": [{"sku": sku_id, "quantity": 1, "department": "Stores"}]},
            headers=staff["headers"],
        )
        assert resp.status_code == 400

    def test_pending_queue_is_oldest_first(self, client, staff, approver, factory):
        sku_id = factory.sku()
        first = _raise_indent(client, staff["headers"], sku_id)
        second = _raise_indent(client, staff["headers"], sku_id)
        queue = client.get("/api/purchase-indents/approval/pending", headers=approver["headers"]).get_json()
        assert [i["id"] for i in queue["indents"]] == [first["id"], second["id"]]

    def test_plain_user_cannot_approve(self, client, staff, factory):
        indent = _raise_indent(client, staff["headers"], factory.sku())
        assert _approve(client, staff["headers"], indent["id"]).status_code == 403


class TestPurchaseOrders:
    def test_create_computes_totals(self, client, staff, approved_indent, get):
        resp = client.post("/api/purchase-orders", json=_po_payload(approved_indent), headers=staff["headers"])
        assert resp.status_code == 201
        po = resp.get_json()
        assert po["poNumber"] == "PO-0001"
        assert po["status"] == "pending"
        assert po["items"][0]["totalAmount"] == 32.0
        assert po["subtotal"] == 30.0
        assert po["totalTax"] == 2.0
        assert po["totalAmount"] == 32.0
        assert po["indent"]["status"] == "PO Pending"

    def test_indent_must_be_approved(self, client, staff, factory):
        vendor_id = factory.supplier()
        sku_id = factory.sku()
        indent = _raise_indent(client, staff["headers"], sku_id, vendor_id)
        resp = client.post(
            "/api/purchase-orders",
            json=_po_payload({"indent": indent["id"], "vendor": vendor_id, "sku": sku_id}),
            headers=staff["headers"],
        )
        assert resp.status_code == 400
        assert client.get("/api/purchase-orders", headers=staff["headers"]).get_json()["total"] == 0

    def test_status_moves_indent_forward(self, client, staff, approved_indent, get):
        po = client.post("/api/purchase-orders", json=_po_payload(approved_indent), headers=staff["headers"]).get_json()

        resp = client.put(f"/api/purchase-orders/{po['id']}", json={"status": "ordered"}, headers=staff["headers"])
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ordered"
        assert get(PurchaseIndent, approved_indent["indent"], lambda i: i.status) == "PO Created"

        locked = client.put(f"/api/purchase-orders/{po['id']}", json={"notes": "late"}, headers=staff["headers"])
        assert locked.status_code == 400
        assert locked.get_json()["message"] == "Cannot update confirmed purchase order"

    def test_invalid_status_transition(self, client, staff, approved_indent):
        po = client.post("/api/purchase-orders", json=_po_payload(approved_indent), headers=staff["headers"]).get_json()
        resp = client.put(f"/api/purchase-orders/{po['id']}", json={"status": "received"}, headers=staff["headers"])
        assert resp.status_code == 400

    def test_cancel_returns_indent(self, client, staff, approved_indent, get):
        po = client.post("/api/purchase-orders", json=_po_payload(approved_indent), headers=staff["headers"]).get_json()
        client.put(f"/api/purchase-orders/{po['id']}", json={"status": "cancelled"}, headers=staff["headers"])
        assert get(PurchaseIndent, approved_indent["indent"], lambda i: i.status) == "Approved"

    def test_delete_pending_returns_indent(self, client, staff, manager, approved_indent, get):
        po = client.post("/api/purchase-orders", json=_po_payload(approved_indent), headers=staff["headers"]).get_json()

        assert client.delete(f"/api/purchase-orders/{po['id']}", headers=staff["headers"]).status_code == 403
        assert client.delete(f"/api/purchase-orders/{po['id']}", headers=manager["headers"]).status_code == 200
        assert get(PurchaseIndent, approved_indent["indent"], lambda i: i.status) == "Approved"

        history = client.get(
            f"/api/purchase-indents/approval/{approved_indent['indent']}/history", headers=staff["headers"]
        ).get_json()
        assert [event["action"] for event in history[:2]] == ["STATUS", "STATUS"]

    def test_next_number_preview(self, client, staff, approved_indent):
        assert client.get("/api/purchase-orders/next-po-number", headers=staff["headers"]).get_json() == {
            "nextPoNumber": "PO-0001"
        }
        client.post("/api/purchase-orders", json=_po_payload(approved_indent), headers=staff["headers"])
        assert client.get("/api/purchase-orders/next-po-number", headers=staff["headers"]).get_json() == {
            "nextPoNumber": "PO-0002"
        }

    def test_approved_items_for_vendor(self, client, staff, approved_indent, factory):
        rows = client.get(
            f"/api/purchase-orders/approved-items/{approved_indent['vendor']}", headers=staff["headers"]
        ).get_json()
        assert len(rows) == 1
        assert rows[0]["sku"]["id"] == approved_indent["sku"]
        assert rows[0]["indentId"] == "IND-001"

        other_vendor = factory.supplier()
        assert client.get(f"/api/purchase-orders/approved-items/{other_vendor}", headers=staff["headers"]).get_json() == []


class TestVendorsForSku:
    def test_primary_first_then_alternates(self, client, staff, factory):
        primary = factory.supplier(name="Zeta Traders")
        beta = factory.supplier(name="Beta Supply")
        alpha = factory.supplier(name="Alpha Metals")
        retired = factory.supplier(name="Old Vendor", is_active=False)
        sku_id = factory.sku(supplier_id=primary)
        resp = client.put(
            f"/api/skus/{sku_id}",
            json={"alternateSuppliers": [beta, alpha, retired, primary]},
            headers=staff["headers"],
        )
        assert resp.status_code == 200, resp.get_json()

        vendors = client.get(f"/api/purchase-indents/sku/{sku_id}/vendors", headers=staff["headers"]).get_json()
        assert [v["name"] for v in vendors] == ["Zeta Traders", "Alpha Metals", "Beta Supply"]
        assert [v["isPrimary"] for v in vendors] == [True, False, False]

    def test_no_active_vendor(self, client, staff, factory):
        sku_id = factory.sku(supplier_id=factory.supplier(is_active=False))
        resp = client.get(f"/api/purchase-indents/sku/{sku_id}/vendors", headers=staff["headers"])
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "No vendors found for this SKU"

    def test_unknown_sku(self, client, staff):
        resp = client.get("/api/purchase-indents/sku/999/vendors", headers=staff["headers"])
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "SKU not found"
