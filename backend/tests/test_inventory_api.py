"""Tests for the inventory HTTP API."""

from decimal import Decimal

import pytest

from lotstock.core.exceptions import StorageUnavailable
from lotstock.services.allocation_engine import AllocationEngine

BASE = "/api/v1/inventory"


def _receive(client, headers, variant_id, qty, cost, received_at=None, note=None):
    body = {"variant_id": variant_id, "qty": qty, "unit_cost": cost}
    if received_at:
        body["received_at"] = received_at
    if note:
        body["note"] = note
    response = client.post(f"{BASE}/receive", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def two_lots(client, staff_headers, catalog):
    """ROSE-RED with lot A 10 @ 5.00 and lot B 5 @ 6.00."""
    variant_id = catalog["rose_red"].id
    lot_a = _receive(client, staff_headers, variant_id, 10, "5.00", "2024-03-01T09:00:00Z")["lot"]
    lot_b = _receive(client, staff_headers, variant_id, 5, "6.00", "2024-03-02T09:00:00Z")["lot"]
    return {"variant_id": variant_id, "lot_a": lot_a, "lot_b": lot_b}


class TestAuth:
    def test_requires_token(self, client):
        response = client.get(f"{BASE}/stock/variants/1")
        assert response.status_code == 401

    def test_customer_forbidden(self, client, customer_headers):
        response = client.get(f"{BASE}/stock/variants/1", headers=customer_headers)
        assert response.status_code == 403

    def test_admin_allowed(self, client, admin_headers):
        response = client.get(f"{BASE}/stock/variants/1", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"variant_id": 1, "stock": 0}

    def test_invalid_token(self, client):
        response = client.get(
            f"{BASE}/stock/variants/1", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401


class TestReceive:
    def test_receive(self, client, staff_headers, catalog):
        data = _receive(client, staff_headers, catalog["rose_red"].id, 10, "5.00", note="PO-17")
        assert data["lot"]["qty_received"] == 10
        assert data["lot"]["qty_remaining"] == 10
        assert data["lot"]["state"] == "OPEN"
        assert Decimal(str(data["lot"]["unit_cost"])) == Decimal("5.00")
        assert data["move"]["move_type"] == "IN"
        assert data["move"]["change_qty"] == 10
        assert data["move"]["lot_id"] == data["lot"]["id"]
        assert data["move"]["created_by"] == "alice"
        assert data["move"]["note"] == "PO-17"

    @pytest.mark.parametrize(
        "body",
        [
            {"variant_id": 1, "qty": 0, "unit_cost": "1.00"},
            {"variant_id": 1, "qty": 5, "unit_cost": "-1.00"},
            {"variant_id": 1, "qty": 5},
        ],
    )
    def test_invalid_body(self, client, staff_headers, body):
        response = client.post(f"{BASE}/receive", json=body, headers=staff_headers)
        assert response.status_code == 422

    def test_sub_cent_cost_is_400(self, client, staff_headers, catalog):
        response = client.post(
            f"{BASE}/receive",
            json={"variant_id": catalog["rose_red"].id, "qty": 3, "unit_cost": "1.005"},
            headers=staff_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_argument"

    def test_lots_listed_in_fifo_order_across_offsets(self, client, staff_headers, catalog):
        variant_id = catalog["rose_red"].id
        earlier = _receive(client, staff_headers, variant_id, 5, "5.00", "2024-03-01T10:00:00+02:00")
        later = _receive(client, staff_headers, variant_id, 5, "6.00", "2024-03-01T09:00:00Z")
        response = client.get(f"{BASE}/lots", params={"variant_id": variant_id}, headers=staff_headers)
        assert [lot["id"] for lot in response.json()] == [earlier["lot"]["id"], later["lot"]["id"]]


class TestIssue:
    def test_fifo_issue(self, client, staff_headers, two_lots):
        response = client.post(
            f"{BASE}/issue",
            json={
                "variant_id": two_lots["variant_id"],
                "qty": 12,
                "reason_code": "SALE",
                "ref_order_detail_id": 900,
            },
            headers=staff_headers,
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["total_allocated"] == 12
        assert Decimal(str(data["total_cost"])) == Decimal("62.00")
        assert [(a["lot_id"], a["allocated_qty"]) for a in data["allocations"]] == [
            (two_lots["lot_a"]["id"], 10),
            (two_lots["lot_b"]["id"], 2),
        ]
        assert [Decimal(str(a["unit_cost"])) for a in data["allocations"]] == [
            Decimal("5.00"),
            Decimal("6.00"),
        ]

    def test_insufficient_stock_is_409(self, client, staff_headers, two_lots):
        response = client.post(
            f"{BASE}/issue",
            json={"variant_id": two_lots["variant_id"], "qty": 16, "reason_code": "WASTE"},
            headers=staff_headers,
        )
        assert response.status_code == 409
        data = response.json()
        assert data["code"] == "insufficient_stock"
        assert data["available"] == 15
        assert data["requested"] == 16

        stock = client.get(f"{BASE}/stock/variants/{two_lots['variant_id']}", headers=staff_headers)
        assert stock.json()["stock"] == 15

    def test_sale_without_order_line_is_400(self, client, staff_headers, two_lots):
        response = client.post(
            f"{BASE}/issue",
            json={"variant_id": two_lots["variant_id"], "qty": 1, "reason_code": "SALE"},
            headers=staff_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_argument"

    @pytest.mark.parametrize(
        "body",
        [
            {"variant_id": 1, "qty": 0, "reason_code": "WASTE"},
            {"variant_id": 1, "qty": 1, "reason_code": "GIFT"},
            {"variant_id": 1, "qty": 1},
        ],
    )
    def test_invalid_body(self, client, staff_headers, body):
        response = client.post(f"{BASE}/issue", json=body, headers=staff_headers)
        assert response.status_code == 422

    def test_storage_failure_is_503(self, client, staff_headers, monkeypatch):
        def unavailable(self, *args, **kwargs):
            raise StorageUnavailable("Inventory storage is unavailable, retry the request")

        monkeypatch.setattr(AllocationEngine, "issue", unavailable)
        response = client.post(
            f"{BASE}/issue",
            json={"variant_id": 1, "qty": 1, "reason_code": "WASTE"},
            headers=staff_headers,
        )
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["code"] == "storage_unavailable"


class TestSale:
    def test_sale_issues_all_lines(self, client, staff_headers, catalog, two_lots):
        tulip = catalog["tulip_yellow"].id
        _receive(client, staff_headers, tulip, 20, "0.20")
        response = client.post(
            f"{BASE}/sale",
            json={
                "order_id": 55,
                "items": [
                    {"variant_id": two_lots["variant_id"], "qty": 3, "ref_order_detail_id": 1},
                    {"variant_id": tulip, "qty": 6, "ref_order_detail_id": 2},
                ],
            },
            headers=staff_headers,
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["order_id"] == 55
        assert [r["total_allocated"] for r in data["results"]] == [3, 6]
        assert all(r["reason_code"] == "SALE" for r in data["results"])

    def test_sale_is_all_or_nothing(self, client, staff_headers, catalog, two_lots):
        tulip = catalog["tulip_yellow"].id
        response = client.post(
            f"{BASE}/sale",
            json={
                "items": [
                    {"variant_id": two_lots["variant_id"], "qty": 3, "ref_order_detail_id": 1},
                    {"variant_id": tulip, "qty": 1, "ref_order_detail_id": 2},
                ],
            },
            headers=staff_headers,
        )
        assert response.status_code == 409
        assert response.json()["variant_id"] == tulip
        stock = client.get(f"{BASE}/stock/variants/{two_lots['variant_id']}", headers=staff_headers)
        assert stock.json()["stock"] == 15

    def test_empty_sale_rejected(self, client, staff_headers):
        response = client.post(f"{BASE}/sale", json={"items": []}, headers=staff_headers)
        assert response.status_code == 422


class TestAdjustAndSetStock:
    def test_adjust(self, client, staff_headers, two_lots):
        response = client.post(
            f"{BASE}/adjust",
            json={"variant_id": two_lots["variant_id"], "delta": -2, "note": "count"},
            headers=staff_headers,
        )
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["move"]["move_type"] == "ADJ"
        assert data["move"]["lot_id"] is None
        assert data["stock"] == 13

    def test_zero_adjust_is_400(self, client, staff_headers):
        response = client.post(
            f"{BASE}/adjust", json={"variant_id": 1, "delta": 0}, headers=staff_headers
        )
        assert response.status_code == 400

    def test_set_stock(self, client, staff_headers, two_lots):
        variant_id = two_lots["variant_id"]
        response = client.put(
            f"{BASE}/variants/{variant_id}/stock", json={"stock": 4}, headers=staff_headers
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["stock"] == 4
        assert data["move"]["change_qty"] == -11

        again = client.put(
            f"{BASE}/variants/{variant_id}/stock", json={"stock": 4}, headers=staff_headers
        )
        assert again.json()["move"] is None

    def test_negative_target_rejected(self, client, staff_headers):
        response = client.put(f"{BASE}/variants/1/stock", json={"stock": -1}, headers=staff_headers)
        assert response.status_code == 422


class TestReads:
    def test_product_stock(self, client, staff_headers, catalog, two_lots):
        _receive(client, staff_headers, catalog["rose_white"].id, 2, "4.00")
        response = client.get(f"{BASE}/stock/products/{catalog['rose'].id}", headers=staff_headers)
        assert response.json() == {"product_id": catalog["rose"].id, "stock": 17}

    def test_non_positive_id_rejected(self, client, staff_headers):
        response = client.get(f"{BASE}/stock/variants/0", headers=staff_headers)
        assert response.status_code == 422

    def test_list_inventory(self, client, staff_headers, two_lots):
        response = client.get(
            f"{BASE}/", params={"order": "low_stock", "limit": 2}, headers=staff_headers
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["total"] == 3
        assert data["limit"] == 2
        assert data["has_more"] is True
        assert [row["stock"] for row in data["items"]] == [0, 0]

    def test_list_inventory_money_as_strings(self, client, staff_headers, two_lots):
        response = client.get(f"{BASE}/", params={"search": "ROSE-RED"}, headers=staff_headers)
        [row] = response.json()["items"]
        assert row["selling_price"] == "27.00"
        assert isinstance(row["avg_cost"], str)
        assert Decimal(row["avg_cost"]) == Decimal("5.33")

    def test_list_inventory_bad_order_is_400(self, client, staff_headers):
        response = client.get(f"{BASE}/", params={"order": "random"}, headers=staff_headers)
        assert response.status_code == 400

    def test_list_inventory_product_scope(self, client, staff_headers, two_lots):
        response = client.get(
            f"{BASE}/", params={"scope": "product", "search": "rose"}, headers=staff_headers
        )
        assert [(r["product_name"], r["stock"]) for r in response.json()["items"]] == [
            ("Rose Bush", 15)
        ]

    def test_moves(self, client, staff_headers, two_lots):
        client.post(
            f"{BASE}/issue",
            json={"variant_id": two_lots["variant_id"], "qty": 1, "reason_code": "DAMAGE"},
            headers=staff_headers,
        )
        response = client.get(
            f"{BASE}/moves",
            params={"variant_id": two_lots["variant_id"], "type": "OUT"},
            headers=staff_headers,
        )
        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 1
        assert rows[0]["reason_code"] == "DAMAGE"
        assert rows[0]["sku"] == "ROSE-RED"
        assert rows[0]["created_by"] == "alice"

        by_text = client.get(f"{BASE}/moves", params={"q": "rose bush"}, headers=staff_headers)
        assert len(by_text.json()) == 3

    def test_moves_bad_type(self, client, staff_headers):
        response = client.get(f"{BASE}/moves", params={"type": "XFER"}, headers=staff_headers)
        assert response.status_code == 422

    def test_lots_and_audit(self, client, staff_headers, two_lots):
        client.post(
            f"{BASE}/issue",
            json={"variant_id": two_lots["variant_id"], "qty": 10, "reason_code": "WASTE"},
            headers=staff_headers,
        )
        lots = client.get(
            f"{BASE}/lots", params={"variant_id": two_lots["variant_id"]}, headers=staff_headers
        ).json()
        assert [lot["state"] for lot in lots] == ["DEPLETED", "OPEN"]

        open_only = client.get(
            f"{BASE}/lots",
            params={"variant_id": two_lots["variant_id"], "include_depleted": "false"},
            headers=staff_headers,
        ).json()
        assert [lot["id"] for lot in open_only] == [two_lots["lot_b"]["id"]]

        audit = client.get(
            f"{BASE}/lots/audit", params={"variant_id": two_lots["variant_id"]}, headers=staff_headers
        ).json()
        assert all(row["balanced"] for row in audit)

    def test_search_items(self, client, staff_headers, two_lots):
        response = client.get(
            f"{BASE}/search/items", params={"q": "rose", "mode": "out"}, headers=staff_headers
        )
        assert response.status_code == 200
        items = response.json()
        assert [i["sku"] for i in items] == ["ROSE-RED"]
        assert items[0]["stock_qty"] == 15


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
