"""
End-to-end order flow through the HTTP API: owner setup, customer ordering by
QR token, and the kitchen, bar and wait views driving the order to completion.
"""
import pytest

from tabletop.table_tokens import decode_table_token, encode_table_token

INVALID_TOKEN = "Invalid or expired QR code. Please scan a new QR code."


@pytest.fixture
def cafe(client, api, owner):
    category = client.post("/categories", headers=owner.headers, json={"name": "Mains"}).json()
    burger = api.add_menu_item(owner, category["id"], "Burger", 1250)
    fries = api.add_menu_item(owner, category["id"], "Fries", 400)
    table = client.post("/tables", headers=owner.headers, json={"name": "T1"}).json()

    owner.category = category
    owner.burger = burger
    owner.fries = fries
    owner.table = table
    owner.kitchen = api.add_staff(owner, "cook@cafe.test", "KITCHEN")
    owner.wait = api.add_staff(owner, "wait@cafe.test", "WAITSTAFF")
    owner.bar = api.add_staff(owner, "bar@cafe.test", "BARTENDER")
    return owner


def _place_order(client, cafe, **extra):
    response = client.post(f"/order/{cafe.table['token']}", json={
        "items": [
            {"menu_item_id": cafe.burger["id"], "quantity": 2},
            {"menu_item_id": cafe.fries["id"], "quantity": 1, "special_instructions": "extra crispy"},
        ],
        **extra,
    })
    assert response.status_code == 200, response.text
    return response.json()["order"]


def _set_status(client, headers, order_id, status, **extra):
    return client.put(f"/orders/{order_id}/status", headers=headers, json={"status": status, **extra})


def test_qr_order_to_completion(client, cafe):
    payload = decode_table_token(cafe.table["token"])
    assert (payload.table_id, payload.restaurant_id, payload.table_name) == (
        cafe.table["id"], cafe.restaurant_id, "T1"
    )
    assert cafe.table["order_url"] == f"http://testserver/order/{cafe.table['token']}"

    menu = client.get(f"/order/{cafe.table['token']}").json()
    assert menu["restaurant"]["slug"] == "cafe-test"
    assert menu["table"] == {"id": cafe.table["id"], "name": "T1"}
    assert [i["name"] for i in menu["categories"][0]["items"]] == ["Burger", "Fries"]

    order = _place_order(client, cafe, customer_name="Sam")
    assert order["status"] == "PENDING"
    assert order["total_cents"] == 2 * 1250 + 400
    assert order["table_name"] == "T1"

    kitchen = client.get("/kitchen/orders", headers=cafe.kitchen).json()
    assert [(o["id"], o["status"]) for o in kitchen] == [(order["id"], "PENDING")]
    assert set(kitchen[0]["next_statuses"]) == {"PREPARING", "CANCELLED"}

    assert _set_status(client, cafe.kitchen, order["id"], "PREPARING").status_code == 200
    response = _set_status(client, cafe.kitchen, order["id"], "READY")
    assert response.json()["new_status"] == "READY"

    board = client.get("/wait/orders", headers=cafe.wait).json()
    assert board["tables"] == [{"id": cafe.table["id"], "name": "T1", "status": "ready", "order_count": 1}]

    response = _set_status(client, cafe.wait, order["id"], "COMPLETED")
    assert response.status_code == 200
    assert response.json()["version"] == 4

    assert client.get("/kitchen/orders", headers=cafe.kitchen).json() == []
    board = client.get("/wait/orders", headers=cafe.wait).json()
    assert board["tables"][0]["status"] == "empty"

    history = client.get(f"/orders/{order['id']}/history", headers=cafe.headers).json()
    assert [h["new_status"] for h in history] == ["PENDING", "PREPARING", "READY", "COMPLETED"]


def test_price_change_does_not_alter_placed_order(client, cafe):
    order = _place_order(client, cafe)
    client.put(f"/menu-items/{cafe.burger['id']}", headers=cafe.headers, json={"price_cents": 5000})

    stored = client.get(f"/orders/{order['id']}", headers=cafe.headers).json()
    assert stored["total_cents"] == 2900
    assert {i["menu_item_name"]: i["price_cents"] for i in stored["items"]} == {"Burger": 1250, "Fries": 400}


@pytest.mark.parametrize("token", ["garbage", "eyJ0YWJsZV9pZCI6"])
def test_invalid_token_is_rejected(client, cafe, token):
    for response in (
        client.get(f"/order/{token}"),
        client.post(f"/order/{token}", json={"items": []}),
        client.get(f"/order/{token}/orders"),
        client.get(f"/internal/validate-table/{token}"),
    ):
        assert response.status_code == 404
        assert response.json()["detail"] == INVALID_TOKEN


def test_token_for_unknown_table_is_rejected(client, cafe):
    token = encode_table_token("no-such-table", cafe.restaurant_id, "T99")

    assert client.get(f"/internal/validate-table/{token}").status_code == 200
    assert client.get(f"/order/{token}").json()["detail"] == INVALID_TOKEN


def test_customer_refetches_table_orders(client, cafe):
    token = cafe.table["token"]
    first = _place_order(client, cafe, customer_session="customer_sam")
    second = _place_order(client, cafe, customer_session="customer_alex")
    _set_status(client, cafe.kitchen, first["id"], "CANCELLED")

    active = client.get(f"/order/{token}/orders").json()
    assert [(o["id"], o["status"]) for o in active] == [(second["id"], "PENDING")]
    assert active[0]["total_cents"] == 2900
    assert "customer_session" not in active[0]

    mine = client.get(f"/order/{token}/orders", params={"customer_session": "customer_sam"}).json()
    assert [(o["id"], o["status"]) for o in mine] == [(first["id"], "CANCELLED")]


def test_unavailable_items_are_hidden_and_rejected(client, cafe):
    client.put(f"/menu-items/{cafe.fries['id']}", headers=cafe.headers, json={"available": False})

    menu = client.get(f"/order/{cafe.table['token']}").json()
    assert [i["name"] for i in menu["categories"][0]["items"]] == ["Burger"]

    response = client.post(f"/order/{cafe.table['token']}", json={
        "items": [{"menu_item_id": cafe.fries["id"], "quantity": 1}],
    })
    assert response.status_code == 400


def test_transition_errors_map_to_http(client, cafe):
    order = _place_order(client, cafe)

    assert _set_status(client, cafe.kitchen, order["id"], "COMPLETED").status_code == 409
    assert _set_status(client, cafe.wait, order["id"], "PREPARING").status_code == 403
    assert _set_status(client, cafe.kitchen, "missing", "PREPARING").status_code == 404

    assert _set_status(client, cafe.kitchen, order["id"], "PREPARING", expected_version=1).status_code == 200
    stale = _set_status(client, cafe.kitchen, order["id"], "READY", expected_version=1)
    assert stale.status_code == 409
    assert "version" in stale.json()["detail"]


def test_orders_are_isolated_between_restaurants(client, api, cafe):
    order = _place_order(client, cafe)
    other = api.register_owner("Other Place", "other-place", "owner@other.test")

    assert client.get(f"/orders/{order['id']}", headers=other.headers).status_code == 404
    assert _set_status(client, other.headers, order["id"], "PREPARING").status_code == 404
    assert client.get("/kitchen/orders", headers=other.headers).json() == []


def test_waitstaff_edits_items(client, cafe, redis_stub):
    order = _place_order(client, cafe)
    burger_line = next(i for i in order["items"] if i["menu_item_name"] == "Burger")
    fries_line = next(i for i in order["items"] if i["menu_item_name"] == "Fries")

    response = client.put(
        f"/orders/{order['id']}/items/{burger_line['id']}",
        headers=cafe.wait,
        json={"quantity": 1, "expected_version": 1},
    )
    assert response.status_code == 200
    assert response.json()["total_cents"] == 1250 + 400
    assert response.json()["version"] == 2

    stale = client.put(
        f"/orders/{order['id']}/items/{burger_line['id']}",
        headers=cafe.wait,
        json={"quantity": 3, "expected_version": 1},
    )
    assert stale.status_code == 409

    response = client.delete(f"/orders/{order['id']}/items/{fries_line['id']}", headers=cafe.wait)
    assert response.json()["total_cents"] == 1250
    assert [i["menu_item_name"] for i in response.json()["items"]] == ["Burger"]

    assert client.delete(
        f"/orders/{order['id']}/items/{fries_line['id']}", headers=cafe.kitchen
    ).status_code == 403

    types = [e["type"] for e in redis_stub.events(f"orders:restaurant:{cafe.restaurant_id}")]
    assert types[-2:] == ["item_updated", "item_removed"]


def test_completed_order_items_are_locked(client, cafe):
    order = _place_order(client, cafe)
    for status in ("PREPARING", "READY", "COMPLETED"):
        _set_status(client, cafe.headers, order["id"], status)

    line = order["items"][0]
    response = client.put(f"/orders/{order['id']}/items/{line['id']}", headers=cafe.wait, json={"quantity": 5})
    assert response.status_code == 409


def test_bar_tab_and_manual_table_order(client, cafe):
    tab = client.post("/orders", headers=cafe.bar, json={
        "items": [{"menu_item_id": cafe.fries["id"], "quantity": 2}],
        "customer_name": "Alex",
    })
    assert tab.status_code == 200
    tab_order = tab.json()["order"]
    assert tab_order["table_id"] is None
    assert tab_order["customer_session"].startswith("bar_tab_")
    assert tab_order["special_instructions"] == "Bar tab for Alex"

    manual = client.post("/orders", headers=cafe.wait, json={
        "table_id": cafe.table["id"],
        "items": [{"menu_item_id": cafe.burger["id"], "quantity": 1}],
    })
    assert manual.status_code == 200
    _place_order(client, cafe)

    bar = client.get("/bar/orders", headers=cafe.bar).json()
    assert len(bar["orders"]) == 3
    tabs = {t["name"]: t for t in bar["tabs"]}
    assert set(tabs) == {"Alex", "T1"}
    assert tabs["Alex"]["total_cents"] == 800
    assert tabs["T1"]["total_cents"] == 1250 + 2900
    assert len(tabs["T1"]["order_ids"]) == 2

    assert _set_status(client, cafe.bar, tab_order["id"], "PREPARING").status_code == 200


def test_manual_order_rules(client, cafe, api):
    items = [{"menu_item_id": cafe.burger["id"], "quantity": 1}]

    assert client.post("/orders", headers=cafe.kitchen, json={"items": items}).status_code == 403
    assert client.post(
        "/orders", headers=cafe.wait, json={"table_id": "nope", "items": items}
    ).status_code == 404
    assert client.post("/orders", headers=cafe.wait, json={"items": []}).status_code == 400


def test_wait_board_shows_most_advanced_order(client, cafe):
    first = _place_order(client, cafe)
    _place_order(client, cafe)
    _set_status(client, cafe.kitchen, first["id"], "PREPARING")

    board = client.get("/wait/orders", headers=cafe.wait).json()
    assert board["tables"][0]["status"] == "preparing"
    assert board["tables"][0]["order_count"] == 2


def test_public_menu_by_slug(client, cafe):
    menu = client.get("/menu/cafe-test").json()
    assert menu["restaurant"]["name"] == "Cafe Test"
    assert client.get("/menu/nope").status_code == 404
