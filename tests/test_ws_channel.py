import threading

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from posbridge.core.http_api import create_app
from posbridge.core.ipc import IpcServer
from posbridge.core.printer_relay import PrinterRelay
from posbridge.erp.demo.demo_erp import DemoErp
from posbridge.printer_server import PrinterCommandHandler
from posbridge.printers.file.file_driver import FileDriver

from .conftest import PRINTER_KEY, wait_for


def _receive_event(ws, event):
    """Read frames until one with the given event arrives."""
    for _ in range(10):
        frame = ws.receive_json()
        if frame.get("event") == event:
            return frame
    raise AssertionError(f"no {event!r} frame received")


def test_socket_without_session_is_closed(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
    assert exc.value.code == 1008


def test_socket_receives_initial_state(client, token):
    with client.websocket_connect(f"/ws?token={token}") as ws:
        frame = ws.receive_json()
        assert frame["event"] == "state"
        assert len(frame["data"]["tables"]) == 16
        assert frame["data"]["tickets"] == []
        assert "updatedAt" in frame["data"]


def test_mutation_reaches_every_subscriber(client, token, auth_headers):
    with client.websocket_connect(f"/ws?token={token}") as ws1, \
            client.websocket_connect(f"/ws?token={token}") as ws2:
        ws1.receive_json()
        ws2.receive_json()

        ticket_id = client.post("/pos/ticket", json={"table": "T4"}, headers=auth_headers).json()["id"]

        for ws in (ws1, ws2):
            frame = ws.receive_json()
            assert frame["event"] == "state"
            assert frame["data"]["tickets"][0]["id"] == ticket_id


def test_failed_mutation_is_not_broadcast(client, token, auth_headers):
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.receive_json()
        assert client.post("/pos/table/999", json={}, headers=auth_headers).status_code == 404
        client.post("/pos/table/1", json={"status": "reserved"}, headers=auth_headers)

        # The first broadcast after the 404 is the table 1 patch
        frame = ws.receive_json()
        assert frame["data"]["tables"][0]["status"] == "reserved"


def test_snapshot_from_one_subscriber_reaches_the_other(client, token, auth_headers):
    tables = [{"id": 1, "name": "T1", "seats": 6, "status": "occupied", "total": 42}]
    with client.websocket_connect(f"/ws?token={token}") as ws_a, \
            client.websocket_connect(f"/ws?token={token}") as ws_b:
        ws_a.receive_json()
        ws_b.receive_json()

        ws_a.send_json({"event": "snapshot", "data": {"tables": tables}, "ack": 1})

        state_b = _receive_event(ws_b, "state")
        assert state_b["data"]["tables"] == tables

        ack = _receive_event(ws_a, "ack")
        assert ack == {"event": "ack", "ack": 1, "data": {"ok": True}}

    assert client.get("/pos/state", headers=auth_headers).json()["tables"] == tables


def test_print_receipt_without_printer_fails_fast(client, token, store):
    before = store.get_state()
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.receive_json()
        ws.send_json({"event": "print-receipt", "data": {"saleNo": "00001234"}, "ack": 7})
        ack = _receive_event(ws, "ack")
        assert ack["ack"] == 7
        assert ack["data"] == {"ok": False, "error": "printer server not connected"}
    assert store.get_state() == before


def test_bad_frames_keep_socket_open(client, token):
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"event": "dance", "ack": 3})
        ack = _receive_event(ws, "ack")
        assert ack["data"]["ok"] is False


# =============================================================================
# With a live printer server
# =============================================================================

@pytest.fixture()
def printer_server(tmp_path):
    driver = FileDriver({"output_dir": str(tmp_path / "prints")})
    handler = PrinterCommandHandler(driver)
    server = IpcServer(("127.0.0.1", 0), PRINTER_KEY, handler.handle)
    server.start()
    yield server, driver
    server.stop()


@pytest.fixture()
def printing_client(config, store, printer_server):
    server, _ = printer_server
    relay = PrinterRelay(server.address, PRINTER_KEY, reconnect_interval=0.05, ack_timeout=5.0)
    app = create_app(config, store=store, relay=relay, erp=DemoErp())
    with TestClient(app) as c:
        assert wait_for(lambda: relay.connected)
        yield c


def test_print_receipt_acks_and_reports_status(printing_client, printer_server):
    _, driver = printer_server
    token = printing_client.post("/auth/login", json={"username": "admin", "password": "1234"}).json()["token"]
    receipt = {
        "saleNo": "87654321",
        "method": "CASH",
        "tableName": "T5",
        "restaurantLines": [{"name": "Margherita", "qty": 2, "price": 800}],
        "rTotals": {"sub": 1600, "service": 80, "catering": 32, "vat": 256, "total": 1968},
        "grand": 1968,
    }

    assert printing_client.get("/health").json()["printerConnected"] is True

    with printing_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.receive_json()

        ws.send_json({"event": "print-receipt", "data": receipt, "ack": 1})
        ack = _receive_event(ws, "ack")
        assert ack["data"] == {"ok": True}
        status = _receive_event(ws, "print-status")
        assert status["data"] == {"type": "receipt", "ok": True, "saleNo": "87654321"}
        assert driver.last_file and driver.last_file.endswith(".pdf")

        # Same sale number again is not forwarded
        ws.send_json({"event": "print-receipt", "data": receipt, "ack": 2})
        dup = _receive_event(ws, "ack")
        assert dup == {"event": "ack", "ack": 2, "data": {"ok": False, "error": "duplicate sale"}}


def test_print_order_reports_ticket_id(printing_client):
    token = printing_client.post("/auth/login", json={"username": "admin", "password": "1234"}).json()["token"]
    ticket = {"id": "1700000000123", "table": "T2", "items": [{"name": "Soda", "qty": 3}]}

    with printing_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.receive_json()
        ws.send_json({"event": "print-order", "data": ticket, "ack": 5})
        assert _receive_event(ws, "ack")["data"] == {"ok": True}
        status = _receive_event(ws, "print-status")
        assert status["data"] == {"type": "order", "ok": True, "id": "1700000000123"}


def test_invoiced_sale_still_prints_its_receipt(printing_client):
    token = printing_client.post("/auth/login", json={"username": "admin", "password": "1234"}).json()["token"]

    invoice = printing_client.post("/bc/invoice", json={"externalDocumentNumber": "12345678", "lines": []})
    assert invoice.status_code == 200

    with printing_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.receive_json()
        ws.send_json({"event": "print-receipt", "data": {"saleNo": "12345678"}, "ack": 1})
        assert _receive_event(ws, "ack")["data"] == {"ok": True}

    again = printing_client.post("/bc/invoice", json={"externalDocumentNumber": "12345678", "lines": []})
    assert again.status_code == 409


class BlockingRelay:
    """Relay whose printer answers only when released."""

    connected = True

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def start(self):
        pass

    def stop(self):
        self.release.set()

    def forward(self, kind, payload):
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        return {"ok": True}


def test_closing_socket_cancels_pending_prints(config, store):
    relay = BlockingRelay()
    app = create_app(config, store=store, relay=relay, erp=DemoErp())

    with TestClient(app) as c:
        token = c.post("/auth/login", json={"username": "admin", "password": "1234"}).json()["token"]
        with c.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"event": "print-receipt", "data": {"saleNo": "55550002"}, "ack": 1})
            assert relay.started.wait(2)
            assert app.state.receipt_guard.in_progress("55550002")
            threading.Timer(0.3, relay.release.set).start()

        assert wait_for(lambda: not app.state.receipt_guard.in_progress("55550002"))
        assert app.state.channel.subscriber_count == 0
        assert relay.calls == 1
