import json

import pytest

from posbridge.core.errors import UpstreamError
from posbridge.core.http_api import create_app
from posbridge.erp.demo.demo_erp import DemoErp


def test_state_requires_session(client):
    resp = client.get("/pos/state")
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "unauthorized"}


def test_forged_token_rejected(client):
    resp = client.get("/pos/state", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_login_sets_cookie_and_returns_user(client):
    resp = client.post("/auth/login", json={"username": "Anne", "password": "1234"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["user"] == {"id": "u2", "name": "Anne (Waiter)", "role": "waiter", "username": "anne"}
    assert body["token"]
    assert "sid" in resp.cookies

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["id"] == "u2"


def test_login_missing_fields(client):
    resp = client.post("/auth/login", json={"username": "admin"})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "Username and password are required"}


def test_login_wrong_password(client):
    resp = client.post("/auth/login", json={"username": "admin", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "Invalid username or password"}


def test_logout_clears_cookie(client, token):
    resp = client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert "sid=" in resp.headers["set-cookie"]


def test_get_state_shape(client, auth_headers):
    resp = client.get("/pos/state", headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"tables", "tickets"}
    assert len(body["tables"]) == 16
    assert body["tickets"] == []


def test_create_ticket_on_default_state(client, auth_headers, store):
    ticket = {"table": "T2", "items": [{"name": "Margherita", "quantity": 2, "modifiers": []}], "note": ""}
    resp = client.post("/pos/ticket", json=ticket, headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["id"]

    tickets = client.get("/pos/state", headers=auth_headers).json()["tickets"]
    assert len(tickets) == 1
    assert tickets[0]["id"] == body["id"]
    assert tickets[0]["status"] == "NEW"
    assert tickets[0]["items"] == ticket["items"]

    with open(store.state_file, encoding="utf-8") as handle:
        persisted = json.load(handle)
    assert persisted["tickets"][0]["id"] == body["id"]
    assert persisted["updatedAt"]


def test_patch_table_three(client, auth_headers):
    resp = client.post("/pos/table/3", json={"status": "occupied", "waiter": "u2", "total": 19.5},
                       headers=auth_headers)
    assert resp.status_code == 200
    table = resp.json()["table"]
    assert table["id"] == 3
    assert table["name"] == "T3"
    assert table["seats"] == 4
    assert table["status"] == "occupied"
    assert table["total"] == 19.5

    tables = client.get("/pos/state", headers=auth_headers).json()["tables"]
    assert tables[2] == table


def test_patch_unknown_table(client, auth_headers):
    resp = client.post("/pos/table/999", json={"status": "occupied"}, headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "table not found"}


def test_patch_non_numeric_table(client, auth_headers):
    resp = client.post("/pos/table/abc", json={"status": "occupied"}, headers=auth_headers)
    assert resp.status_code == 404


def test_ticket_status_update_and_not_found(client, auth_headers):
    ticket_id = client.post("/pos/ticket", json={"table": "T1"}, headers=auth_headers).json()["id"]

    resp = client.post(f"/pos/ticket/{ticket_id}/status", json={"status": "IN_PROGRESS"}, headers=auth_headers)
    assert resp.json() == {"ok": True}
    assert client.get("/pos/state", headers=auth_headers).json()["tickets"][0]["status"] == "IN_PROGRESS"

    resp = client.post("/pos/ticket/missing/status", json={"status": "READY"}, headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "not found"}


def test_delete_ticket_twice(client, auth_headers):
    ticket_id = client.post("/pos/ticket", json={"table": "T1"}, headers=auth_headers).json()["id"]

    first = client.delete(f"/pos/ticket/{ticket_id}", headers=auth_headers)
    second = client.delete(f"/pos/ticket/{ticket_id}", headers=auth_headers)
    assert first.json() == {"ok": True}
    assert second.json() == {"ok": True}
    assert client.get("/pos/state", headers=auth_headers).json()["tickets"] == []


def test_snapshot_over_http(client, auth_headers):
    tables = [{"id": 1, "name": "T1", "seats": 2, "status": "reserved"}]
    resp = client.post("/pos/snapshot", json={"tables": tables, "tickets": "bad"}, headers=auth_headers)
    assert resp.json() == {"ok": True}
    state = client.get("/pos/state", headers=auth_headers).json()
    assert state["tables"] == tables
    assert state["tickets"] == []


def test_non_object_body_treated_as_empty(client, auth_headers):
    resp = client.post("/pos/snapshot", content="[1, 2]", headers={**auth_headers, "Content-Type": "application/json"})
    assert resp.json() == {"ok": True}
    assert len(client.get("/pos/state", headers=auth_headers).json()["tables"]) == 16


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["service"] == "bc-bridge-pos"
    assert body["printerConnected"] is False
    assert body["tables"] == 16
    assert body["env"] == "Production"
    assert body["time"].endswith("Z")


# =============================================================================
# ERP facade
# =============================================================================

def test_demo_menu_stock_items(client):
    menu = client.get("/bc/menu").json()
    assert menu["ok"] is True
    assert [c["id"] for c in menu["categories"]] == ["PIZZA", "DRINKS"]
    assert {i["id"]: i["price"] for i in menu["items"]} == {"PIZZA01": 800, "DRINK01": 200}

    assert client.get("/bc/stock").json() == {"PIZZA01": 99, "DRINK01": 999}
    assert client.get("/bc/items").json()["value"][0]["number"] == "PIZZA01"


def test_demo_invoice_and_duplicate_sale(client):
    body = {"externalDocumentNumber": "12345678", "lines": [{"number": "PIZZA01", "quantity": 1}]}
    first = client.post("/bc/invoice", json=body)
    assert first.status_code == 200
    assert first.json() == {"ok": True, "invoiceId": "DEMO-INVOICE", "posted": True}

    second = client.post("/bc/invoice", json=body)
    assert second.status_code == 409
    assert second.json() == {"ok": False, "error": "duplicate sale"}


def test_invoice_without_sale_number_is_never_deduplicated(client):
    for _ in range(2):
        assert client.post("/bc/invoice", json={"lines": []}).status_code == 200


class FailingErp(DemoErp):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def post_invoice(self, body):
        self.calls += 1
        if self.calls == 1:
            raise UpstreamError("Customer CASH does not exist", step="create", status=400)
        return super().post_invoice(body)


@pytest.fixture()
def failing_client(config, store, relay):
    from fastapi.testclient import TestClient

    app = create_app(config, store=store, relay=relay, erp=FailingErp())
    with TestClient(app) as c:
        yield c


def test_failed_invoice_reports_step_and_can_be_retried(failing_client):
    body = {"externalDocumentNumber": "55550001", "lines": []}
    resp = failing_client.post("/bc/invoice", json=body)
    assert resp.status_code == 502
    assert resp.json() == {"ok": False, "error": "Customer CASH does not exist", "step": "create", "status": 400}

    retry = failing_client.post("/bc/invoice", json=body)
    assert retry.status_code == 200
    assert retry.json()["invoiceId"] == "DEMO-INVOICE"


def test_login_non_ascii_password_rejected(client):
    resp = client.post("/auth/login", json={"username": "admin", "password": "pässword"})
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "Invalid username or password"}


def test_login_non_ascii_password_accepted(config, store, relay):
    from fastapi.testclient import TestClient

    config["auth"]["users"].append(
        {"id": "u3", "name": "Zoë", "username": "zoe", "role": "waiter", "password": "crème-brûlée"}
    )
    with TestClient(create_app(config, store=store, relay=relay, erp=DemoErp())) as c:
        resp = c.post("/auth/login", json={"username": "zoe", "password": "crème-brûlée"})
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == "u3"
