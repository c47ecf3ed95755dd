"""
Authenticated IPC server between the bridge and the printer server.

Uses multiprocessing.connection over TCP with an auth key. Requests are
{"action": str, "payload": dict} dicts; every request gets exactly one
{"ok": bool, ...} dict back. Each accepted client is served on its own
thread; stop() closes the listener and every open client connection.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Dict, Any, Optional, Tuple

from multiprocessing.connection import Listener

logger = logging.getLogger(__name__)

Handler = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class IpcServer:
    """Request/ack server that dispatches dict requests to a handler."""

    def __init__(
        self,
        address: Tuple[str, int],
        auth_key: bytes,
        handler: Handler,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.address = address
        self.auth_key = auth_key
        self._handler = handler
        self._log = log or logger
        self._stop_event = threading.Event()
        self._listener: Optional[Listener] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._clients: Dict[int, Any] = {}
        self._clients_lock = threading.Lock()
        self._client_ids = itertools.count(1)

    @property
    def client_count(self) -> int:
        with self._clients_lock:
            return len(self._clients)

    def start(self) -> None:
        """Bind the listener and accept clients on a background thread."""
        if self._accept_thread:
            return
        self._listener = Listener(self.address, authkey=self.auth_key)
        # Port 0 binds an ephemeral port; report the real one
        self.address = self._listener.address
        self._accept_thread = threading.Thread(target=self._accept_loop, daemon=True, name="IPCAccept")
        self._accept_thread.start()
        self._log.info("IPC server listening on %s:%s", *self.address)

    def stop(self) -> None:
        """Close the listener and drop every connected client."""
        self._stop_event.set()
        if self._listener:
            try:
                self._listener.close()
            except OSError as exc:
                self._log.debug("IPC listener close failed: %s", exc)

        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for conn in clients:
            try:
                conn.close()
            except OSError:
                pass

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        """Block the calling thread until stop() is called."""
        self.start()
        while not self._stop_event.wait(poll_interval):
            pass

    def _accept_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                conn = self._listener.accept()
            except Exception as exc:
                if self._stop_event.is_set():
                    break
                # Failed auth handshakes land here; keep accepting
                self._log.warning("IPC accept failed: %s", exc)
                continue

            client_id = next(self._client_ids)
            with self._clients_lock:
                self._clients[client_id] = conn
            threading.Thread(
                target=self._serve_client,
                args=(client_id, conn),
                daemon=True,
                name=f"IPCClient-{client_id}",
            ).start()

    def _serve_client(self, client_id: int, conn) -> None:
        self._log.info("IPC client %s connected", client_id)
        try:
            while not self._stop_event.is_set():
                try:
                    request = conn.recv()
                except EOFError:
                    break
                except OSError as exc:
                    self._log.warning("IPC client %s recv failed: %s", client_id, exc)
                    break

                try:
                    conn.send(self._dispatch(request))
                except OSError as exc:
                    self._log.warning("IPC client %s send failed: %s", client_id, exc)
                    break
        finally:
            with self._clients_lock:
                self._clients.pop(client_id, None)
            try:
                conn.close()
            except OSError:
                pass
            self._log.info("IPC client %s disconnected", client_id)

    def _dispatch(self, request: Any) -> Dict[str, Any]:
        if not isinstance(request, dict):
            return {"ok": False, "error": "Invalid IPC message"}

        action = request.get("action")
        if not action:
            return {"ok": False, "error": "Missing action"}

        payload = request.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        try:
            return self._handler(action, payload)
        except Exception as exc:
            self._log.exception("IPC handler failed for %s", action)
            return {"ok": False, "error": str(exc)}
