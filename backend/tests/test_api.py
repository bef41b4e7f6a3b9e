"""HTTP API tests."""

from decimal import Decimal

from orderflow.models.inventory import InventoryItem

API = "/api/v1"
HEADERS = {"X-User-Id": "11"}


def _create_order(client, product, quantity=1, **extra):
    payload = {"table_id": 4, "items": [{"product_id": product.id, "quantity": quantity}], **extra}
    response = client.post(f"{API}/orders", json=payload, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


def _set_status(client, order_id, status, **extra):
    return client.put(
        f"{API}/orders/{order_id}/status", json={"status": status, **extra}, headers=HEADERS
    )


def _to_ready(client, order_id, force=False):
    for status in ("sent_to_kitchen", "preparing"):
        assert _set_status(client, order_id, status).status_code == 200
    return _set_status(client, order_id, "ready", force=force)


class TestOrderEndpoints:
    def test_create_and_get(self, client, scenario_a):
        created = _create_order(client, scenario_a["product"], quantity=2)

        assert created["status"] == "created"
        assert created["folio"] == f"ORD-{created['id']:06d}"
        assert created["is_takeout"] is False
        assert Decimal(created["total"]) == Decimal("25.00")
        assert created["created_by_user_id"] == 11

        fetched = client.get(f"{API}/orders/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["items"][0]["product_name"] == "Combo Plate"

    def test_unknown_order(self, client):
        response = client.get(f"{API}/orders/9999")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "unknown_order"

    def test_unknown_product(self, client):
        response = client.post(
            f"{API}/orders", json={"items": [{"product_id": 777, "quantity": 1}]}, headers=HEADERS
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "unknown_product"

    def test_empty_order_rejected(self, client):
        response = client.post(f"{API}/orders", json={"items": []}, headers=HEADERS)
        assert response.status_code == 422

    def test_ready_deducts_inventory(self, client, db_session, scenario_a):
        order = _create_order(client, scenario_a["product"], quantity=2)

        response = _to_ready(client, order["id"])

        assert response.status_code == 200
        body = response.json()
        assert body["order"]["status"] == "ready"
        assert body["previous_status"] == "preparing"
        assert body["inventory_deducted"] is True
        assert body["ticket_queued"] is True
        db_session.expire_all()
        assert db_session.get(InventoryItem, scenario_a["x"].id).current_quantity == Decimal("4")

    def test_invalid_transition(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])

        response = _set_status(client, order["id"], "paid")

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "invalid_transition"
        assert error["current"] == "created"
        assert error["retryable"] is False

    def test_unknown_status_value(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])
        assert _set_status(client, order["id"], "teleported").status_code == 422

    def test_insufficient_stock_then_force(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"], quantity=4)

        response = _to_ready(client, order["id"])
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "insufficient_stock"
        assert error["shortfalls"][0]["name"] == "Ingredient X"
        assert error["shortfalls"][0]["missing"] == "2.0000"

        forced = _set_status(client, order["id"], "ready", force=True, reason="Chef approved")
        assert forced.status_code == 200
        assert forced.json()["inventory_deducted"] is True

    def test_paid_endpoint(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])
        _to_ready(client, order["id"])

        response = client.post(f"{API}/orders/{order['id']}/paid", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["order"]["status"] == "paid"
        assert response.json()["order"]["closed_by_user_id"] == 11

    def test_add_items_and_prep_time(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])

        added = client.post(
            f"{API}/orders/{order['id']}/items",
            json={"items": [{"product_id": scenario_a["product"].id, "quantity": 1, "note": "no salt"}]},
            headers=HEADERS,
        )
        assert added.status_code == 200
        assert len(added.json()["items"]) == 2

        prep = client.put(f"{API}/orders/{order['id']}/prep-time", json={"minutes": 20}, headers=HEADERS)
        assert prep.status_code == 200
        assert prep.json()["estimated_prep_minutes"] == 20

        too_long = client.put(f"{API}/orders/{order['id']}/prep-time", json={"minutes": 500}, headers=HEADERS)
        assert too_long.status_code == 422
        assert too_long.json()["error"]["code"] == "invalid_order_data"

    def test_reprint_and_audit_trail(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])
        _to_ready(client, order["id"])

        response = client.post(f"{API}/orders/{order['id']}/reprint", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["marker"]["is_repeat"] is True
        assert body["marker"]["kind"] == "print-ticket"
        assert body["rendered_path"].endswith("-reprint.txt")

        trail = client.get(f"{API}/orders/{order['id']}/side-effects").json()
        assert [(m["kind"], m["is_repeat"]) for m in trail] == [
            ("inventory-deduct", False),
            ("print-ticket", False),
            ("print-ticket", True),
        ]

    def test_rededuct(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])
        _to_ready(client, order["id"])

        response = client.post(f"{API}/orders/{order['id']}/rededuct", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["marker"]["details"]["manual"] is True

    def test_rededuct_before_ready_is_rejected(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])

        response = client.post(f"{API}/orders/{order['id']}/rededuct", headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "invalid_order_data"

    def test_kitchen_queue(self, client, scenario_a):
        order = _create_order(client, scenario_a["product"])
        assert client.get(f"{API}/kitchen/orders").json() == []

        _set_status(client, order["id"], "sent_to_kitchen")

        [queued] = client.get(f"{API}/kitchen/orders").json()
        assert queued["id"] == order["id"]


class TestInventoryEndpoints:
    def test_item_lifecycle(self, client):
        created = client.post(
            f"{API}/inventory/items",
            json={"name": "Avocado", "unit": "pcs", "opening_quantity": "12", "min_stock": "5"},
            headers=HEADERS,
        )
        assert created.status_code == 201
        item_id = created.json()["id"]
        assert Decimal(created.json()["current_quantity"]) == Decimal("12")

        count = client.post(
            f"{API}/inventory/movements",
            json={"inventory_item_id": item_id, "movement_type": "adjustment", "quantity": "4", "origin": "adjustment"},
            headers=HEADERS,
        )
        assert count.status_code == 201
        assert Decimal(count.json()["quantity"]) == Decimal("-8")
        assert count.json()["created_by_user_id"] == 11

        low = client.get(f"{API}/inventory/items/low-stock").json()
        assert [i["name"] for i in low] == ["Avocado"]

        movements = client.get(f"{API}/inventory/movements", params={"inventory_item_id": item_id}).json()
        assert [m["movement_type"] for m in movements] == ["adjustment", "entry"]

    def test_exit_beyond_stock(self, client, make_item):
        item = make_item(name="Lime", unit="pcs", quantity=1)

        response = client.post(
            f"{API}/inventory/movements",
            json={"inventory_item_id": item.id, "movement_type": "exit", "quantity": "3"},
            headers=HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "insufficient_stock"

    def test_unknown_item(self, client):
        assert client.get(f"{API}/inventory/items/4040").status_code == 404

    def test_integrity(self, client, make_item):
        make_item(name="Lime", unit="pcs", quantity=3)

        report = client.get(f"{API}/inventory/integrity").json()

        assert report["checked"] == 1
        assert report["mismatches"] == []


class TestReconciliationEndpoint:
    def test_backfill(self, client, db_session, scenario_a, place_order):
        from orderflow.models.order import Order, OrderStatus

        order = place_order((scenario_a["product"], 1))
        db_session.get(Order, order.id).status = OrderStatus.READY
        db_session.commit()

        response = client.post(f"{API}/reconciliation/backfill-deductions", json={}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert (body["processed"], body["skipped"], body["errored"]) == (1, 0, 0)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "healthy"
