"""
Forwarding connection from the bridge to the printer server.

The relay holds a single authenticated IPC connection to the printer server
process. It is either connected or disconnected: print requests fast-fail
while disconnected and are relayed verbatim while connected. A background
thread re-establishes the connection and probes it with pings.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

from multiprocessing.connection import Client

logger = logging.getLogger(__name__)

NOT_CONNECTED_ERROR = "printer server not connected"
ACK_TIMEOUT_ERROR = "printer ack timeout"

INVALID_ACK_ERROR = "invalid printer ack"
REQUEST_FAILED_PREFIX = "printer request failed"

DISCONNECTED = "disconnected"
CONNECTED = "connected"


def is_relay_failure(ack: Dict[str, Any]) -> bool:
    """True if the ack was produced by the relay itself rather than the printer server."""
    error = str(ack.get("error") or "")
    return (error in (NOT_CONNECTED_ERROR, ACK_TIMEOUT_ERROR, INVALID_ACK_ERROR)
            or error.startswith(REQUEST_FAILED_PREFIX))


class PrinterRelay:
    """Two-state (disconnected/connected) relay to the printer server."""

    def __init__(
        self,
        address: Tuple[str, int],
        auth_key: bytes,
        reconnect_interval: float = 2.0,
        ack_timeout: float = 15.0,
    ) -> None:
        self.address = address
        self.auth_key = auth_key
        self.reconnect_interval = reconnect_interval
        self.ack_timeout = ack_timeout
        self._conn = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_error: Optional[str] = None
        self.connected_since: Optional[float] = None

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    @property
    def state(self) -> str:
        return CONNECTED if self._conn is not None else DISCONNECTED

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def start(self) -> None:
        """Connect in the background and keep the connection alive."""
        if self._thread:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="PrinterRelay")
        self._thread.start()
        logger.info(f"Printer relay started -> {self.address[0]}:{self.address[1]}")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.reconnect_interval + 1)
            self._thread = None
        with self._lock:
            self._close_locked()
        logger.info("Printer relay stopped")

    def connect(self) -> bool:
        """
        Try to open the connection once.

        Returns:
            bool: True if connected (or already connected)
        """
        with self._lock:
            if self._conn is not None:
                return True
            try:
                self._conn = Client(self.address, authkey=self.auth_key)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                if error != self._last_error:
                    logger.warning(f"Printer connect_error: {error}")
                    self._last_error = error
                self._conn = None
                return False

            self._last_error = None
            self.connected_since = time.time()
            logger.info(f"Printer connected -> {self.address[0]}:{self.address[1]}")
            return True

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if self.connected:
                self._ping()
            else:
                self.connect()
            self._stop_event.wait(self.reconnect_interval)

    def _ping(self) -> None:
        resp = self._request("ping", {})
        if not resp.get("ok") and self.connected:
            logger.warning(f"Printer ping failed: {resp.get('error')}")

    def _close_locked(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except Exception as exc:
            logger.debug(f"Printer connection close failed: {exc}")
        self._conn = None
        self.connected_since = None
        logger.info("Printer disconnected")

    # =========================================================================
    # FORWARDING
    # =========================================================================

    def forward(self, kind: str, payload: Any) -> Dict[str, Any]:
        """
        Relay a print request and return the printer server's ack unmodified.

        Fast-fails without sending when there is no live connection.

        Args:
            kind: Request kind ("print-order" or "print-receipt")
            payload: Ticket or receipt payload

        Returns:
            dict: {"ok": bool, "error": str (on failure)}
        """
        if not self.connected:
            return {"ok": False, "error": NOT_CONNECTED_ERROR}

        logger.info(f"Forwarding {kind} to printer server")
        return self._request(kind, payload if isinstance(payload, dict) else {})

    def _request(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            if self._conn is None:
                return {"ok": False, "error": NOT_CONNECTED_ERROR}

            try:
                self._conn.send({"action": action, "payload": payload})
                if not self._conn.poll(self.ack_timeout):
                    # A late ack would desynchronize the stream; start over
                    logger.error(f"No ack for {action} within {self.ack_timeout}s")
                    self._close_locked()
                    return {"ok": False, "error": ACK_TIMEOUT_ERROR}
                resp = self._conn.recv()
            except Exception as exc:
                logger.error(f"Printer request {action} failed: {exc}")
                self._close_locked()
                return {"ok": False, "error": f"{REQUEST_FAILED_PREFIX}: {exc}"}

        if not isinstance(resp, dict):
            return {"ok": False, "error": INVALID_ACK_ERROR}
        return resp

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "address": f"{self.address[0]}:{self.address[1]}",
            "connectedSince": self.connected_since,
            "lastError": self._last_error,
        }

    def __repr__(self) -> str:
        return f"<PrinterRelay {self.address[0]}:{self.address[1]} {self.state}>"
