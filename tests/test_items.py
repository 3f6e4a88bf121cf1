from io import BytesIO

from openpyxl import load_workbook

from lab_ledger.models import HistoryEntry


def test_create_item_and_list(client, admin, login):
    h = login("admin")

    r = client.post("/items", json={"name": "Drill bit", "cabinet": "A1", "quantity": 5}, headers=h)
    assert r.status_code == 201
    item = r.json()
    assert item["name"] == "Drill bit"
    assert item["quantity"] == 5

    r2 = client.get("/items?limit=50&offset=0&sort=id_desc", headers=h)
    assert r2.status_code == 200
    data = r2.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == item["id"]


def test_list_search_and_bad_sort(client, admin, member, make_item, login):
    make_item("Soldering iron", 2, cabinet="B2")
    make_item("Multimeter", 4, cabinet="C3")
    h = login("member")

    r = client.get("/items?q=Solder", headers=h)
    assert r.status_code == 200
    assert [i["name"] for i in r.json()["items"]] == ["Soldering iron"]

    r2 = client.get("/items?sort=qty_desc", headers=h)
    assert [i["name"] for i in r2.json()["items"]] == ["Multimeter", "Soldering iron"]

    r3 = client.get("/items?sort=nonsense", headers=h)
    assert r3.status_code == 400
    assert r3.json()["detail"]["code"] == "INVALID_INPUT"


def test_update_item_fields_and_quantity(client, admin, make_item, login, count_rows):
    item_id = make_item("Tap", 0, cabinet="B2")
    h = login("admin")

    r = client.put(f"/items/{item_id}", json={"quantity": 10, "cabinet": "B3"}, headers=h)
    assert r.status_code == 200
    assert r.json()["quantity"] == 10
    assert r.json()["cabinet"] == "B3"

    r2 = client.put(f"/items/{item_id}", json={"quantity": 7}, headers=h)
    assert r2.json()["quantity"] == 7
    assert count_rows(HistoryEntry, HistoryEntry.action == "ITEM_UPDATED") == 2


def test_update_rejects_negative_quantity(client, admin, make_item, login):
    item_id = make_item("Cutter", 2)
    h = login("admin")

    r = client.put(f"/items/{item_id}", json={"quantity": -1}, headers=h)
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_get_missing_item(client, member, login):
    r = client.get("/items/999", headers=login("member"))
    assert r.status_code == 404
    assert r.json() == {"detail": {"code": "NOT_FOUND", "message": "Item 999 not found"}}


def test_delete_item_with_history_is_refused(client, admin, make_item, login):
    item_id = make_item("Oscilloscope", 5)
    spare_id = make_item("Spare", 1)
    h = login("admin")

    client.post("/issue", json={"item_id": item_id, "quantity": 1}, headers=h)
    r = client.delete(f"/items/{item_id}", headers=h)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "INVALID_STATE"

    r2 = client.delete(f"/items/{spare_id}", headers=h)
    assert r2.status_code == 200
    assert r2.json() == {"ok": True}
    assert client.get(f"/items/{spare_id}", headers=h).status_code == 404


def test_export_xlsx(client, member, make_item, login):
    make_item("Oscilloscope", 5)
    make_item("Multimeter", 3)

    r = client.get("/items/export.xlsx", headers=login("member"))
    assert r.status_code == 200
    assert "spreadsheetml" in r.headers["content-type"]

    ws = load_workbook(BytesIO(r.content)).active
    assert ws.title == "Inventory"
    assert ws["A1"].value == "ID"
    assert ws["B2"].value == "Oscilloscope"
    assert ws["D3"].value == 3


def test_stock_changes_through_items_are_listed_as_adjustments(client, admin, login):
    h = login("admin")
    item_id = client.post("/items", json={"name": "Scope", "cabinet": "A1", "quantity": 5}, headers=h).json()["id"]
    client.put(f"/items/{item_id}", json={"quantity": 1}, headers=h)

    r = client.get(f"/transactions?direction=adjust&item_id={item_id}&sort=id_asc", headers=h)
    assert r.status_code == 200
    assert [(t["quantity"], t["delta"]) for t in r.json()["items"]] == [(5, 5), (4, -4)]
