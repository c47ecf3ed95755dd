import copy
import socket
import time

import pytest
from fastapi.testclient import TestClient

from posbridge.core.config_manager import DEFAULT_CONFIG
from posbridge.core.http_api import create_app
from posbridge.core.printer_relay import PrinterRelay
from posbridge.core.state_store import PosStateStore
from posbridge.erp.demo.demo_erp import DemoErp

PRINTER_KEY = b"test-printer-key"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture()
def config(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["system"]["data_dir"] = str(tmp_path / "data")
    cfg["printer"]["file"]["output_dir"] = str(tmp_path / "prints")
    cfg["printer_server"]["port"] = free_port()
    cfg["printer_server"]["auth_key"] = PRINTER_KEY.decode()
    return cfg


@pytest.fixture()
def store(tmp_path):
    s = PosStateStore(str(tmp_path / "data"))
    s.load()
    return s


@pytest.fixture()
def relay(config):
    """Relay pointed at a port nobody listens on."""
    return PrinterRelay(
        ("127.0.0.1", config["printer_server"]["port"]),
        PRINTER_KEY,
        reconnect_interval=0.05,
        ack_timeout=1.0,
    )


@pytest.fixture()
def app(config, store, relay):
    return create_app(config, store=store, relay=relay, erp=DemoErp())


@pytest.fixture()
def client(app):
    """
    TestClient with the lifespan running, so HTTP requests and WebSocket
    sessions share one event loop.
    """
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def token(client):
    resp = client.post("/auth/login", json={"username": "admin", "password": "1234"})
    assert resp.status_code == 200
    return resp.json()["token"]


@pytest.fixture()
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
