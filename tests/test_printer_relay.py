import time

import pytest

from posbridge.core.ipc import IpcServer
from posbridge.core.printer_relay import (
    ACK_TIMEOUT_ERROR,
    NOT_CONNECTED_ERROR,
    PrinterRelay,
    is_relay_failure,
)

from .conftest import PRINTER_KEY, wait_for


class RecordingHandler:
    def __init__(self, reply=None, delay=0.0):
        self.calls = []
        self.reply = reply or {"ok": True}
        self.delay = delay

    def __call__(self, action, payload):
        self.calls.append((action, payload))
        if action == "ping":
            return {"ok": True, "message": "pong"}
        if self.delay:
            time.sleep(self.delay)
        return self.reply


@pytest.fixture()
def make_server():
    servers = []

    def _make(handler):
        server = IpcServer(("127.0.0.1", 0), PRINTER_KEY, handler)
        server.start()
        servers.append(server)
        return server

    yield _make
    for server in servers:
        server.stop()


def test_forward_fails_fast_when_disconnected(relay):
    started = time.time()
    assert relay.forward("print-receipt", {"saleNo": "1"}) == {"ok": False, "error": NOT_CONNECTED_ERROR}
    assert time.time() - started < 0.5
    assert relay.state == "disconnected"


def test_connect_to_missing_server_fails(relay):
    assert relay.connect() is False
    assert relay.connected is False


def test_forward_passes_payload_and_ack_through(make_server):
    handler = RecordingHandler(reply={"ok": False, "error": "paper out"})
    server = make_server(handler)
    relay = PrinterRelay(server.address, PRINTER_KEY, ack_timeout=2.0)
    try:
        assert relay.connect() is True
        payload = {"saleNo": "00000042", "restaurantLines": []}
        assert relay.forward("print-receipt", payload) == {"ok": False, "error": "paper out"}
        assert handler.calls == [("print-receipt", payload)]
    finally:
        relay.stop()


def test_ack_timeout_drops_connection(make_server):
    server = make_server(RecordingHandler(delay=1.0))
    relay = PrinterRelay(server.address, PRINTER_KEY, ack_timeout=0.2)
    try:
        assert relay.connect() is True
        assert relay.forward("print-order", {"id": "1"}) == {"ok": False, "error": ACK_TIMEOUT_ERROR}
        assert relay.connected is False
        assert relay.forward("print-order", {"id": "1"})["error"] == NOT_CONNECTED_ERROR
    finally:
        relay.stop()


def test_wrong_auth_key_is_refused(make_server):
    server = make_server(RecordingHandler())
    relay = PrinterRelay(server.address, b"wrong-key")
    assert relay.connect() is False

    # The server keeps accepting after a failed handshake
    good = PrinterRelay(server.address, PRINTER_KEY)
    try:
        assert good.connect() is True
    finally:
        good.stop()


def test_background_thread_reconnects(make_server):
    handler = RecordingHandler()
    server = make_server(handler)
    relay = PrinterRelay(server.address, PRINTER_KEY, reconnect_interval=0.05)
    relay.start()
    try:
        assert wait_for(lambda: relay.connected)
        assert wait_for(lambda: ("ping", {}) in handler.calls)
        assert relay.get_status()["state"] == "connected"
    finally:
        relay.stop()
    assert relay.connected is False


def test_server_rejects_malformed_messages():
    server = IpcServer(("127.0.0.1", 0), PRINTER_KEY, RecordingHandler())
    assert server._dispatch("print") == {"ok": False, "error": "Invalid IPC message"}
    assert server._dispatch({"payload": {}}) == {"ok": False, "error": "Missing action"}


def test_handler_exception_becomes_error_ack():
    def boom(action, payload):
        raise RuntimeError("driver exploded")

    server = IpcServer(("127.0.0.1", 0), PRINTER_KEY, boom)
    assert server._dispatch({"action": "print-receipt"}) == {"ok": False, "error": "driver exploded"}


@pytest.mark.parametrize("ack, expected", [
    ({"ok": False, "error": NOT_CONNECTED_ERROR}, True),
    ({"ok": False, "error": ACK_TIMEOUT_ERROR}, True),
    ({"ok": False, "error": "printer request failed: EOF"}, True),
    ({"ok": False, "error": "paper out"}, False),
    ({"ok": True}, False),
])
def test_is_relay_failure(ack, expected):
    assert is_relay_failure(ack) is expected
