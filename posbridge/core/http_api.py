"""
FastAPI application for the bridge: auth, POS state mutation API, ERP facade,
health, and the /ws state sync channel.

WebSocket frames are JSON objects {"event": str, "data": any, "ack"?: int}.
A client frame carrying "ack": n is answered with {"event": "ack", "ack": n,
"data": {...}} once handled.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..logger_module import asyncio_exception_handler
from ..version import SERVICE_NAME, VERSION
from .auth import AuthGate
from .broadcast import DEFAULT_SEND_TIMEOUT, BroadcastChannel, WebSocketSubscriber
from .config_manager import get_data_dir, get_erp_config, get_printer_server_address
from .errors import AuthError, BridgeError, DuplicateSaleError
from .pos_service import PosService
from .printer_relay import PrinterRelay, is_relay_failure
from .sale_guard import SaleGuard
from .state_store import PosStateStore, utc_now_iso

logger = logging.getLogger(__name__)

PRINT_ORDER = "print-order"
PRINT_RECEIPT = "print-receipt"
SNAPSHOT = "snapshot"
PRINT_STATUS_EVENT = "print-status"
ACK_EVENT = "ack"

WS_POLICY_VIOLATION = 1008


def configure_cors(app: FastAPI, origins) -> None:
    if isinstance(origins, str):
        origins = [o.strip() for o in origins.split(",")]
    origins = [o for o in (origins or []) if o] or ["*"]

    if "*" in origins:
        # Echo any origin so the session cookie still works from dev servers
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=".*",
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


async def _read_json(request: Request) -> Any:
    """Request body as parsed JSON, or None when empty/invalid."""
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.debug(f"Ignoring non-JSON body on {request.url.path}")
        return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def create_app(
    config: Dict[str, Any],
    store: Optional[PosStateStore] = None,
    relay: Optional[PrinterRelay] = None,
    erp=None,
    auth: Optional[AuthGate] = None,
    invoice_guard: Optional[SaleGuard] = None,
    receipt_guard: Optional[SaleGuard] = None,
) -> FastAPI:
    """
    Build the bridge application.

    Components not passed in are built from config. The printer relay is
    started and stopped with the application lifespan. Invoices and receipts
    are deduplicated independently: a sale is invoiced once and printed once.
    """
    if store is None:
        store = PosStateStore(get_data_dir(config), int(config.get('pos', {}).get('table_count', 16)),
                              config.get('pos', {}).get('state_file') or 'pos-state.json')
        store.load()

    if relay is None:
        address, auth_key = get_printer_server_address(config)
        relay_config = config.get('printer_relay', {})
        relay = PrinterRelay(
            address,
            auth_key,
            reconnect_interval=float(relay_config.get('reconnect_interval_seconds', 2)),
            ack_timeout=float(relay_config.get('ack_timeout_seconds', 15)),
        )

    if erp is None:
        from ..erp import create_erp
        erp = create_erp(config)

    if auth is None:
        auth = AuthGate.from_config(config)

    idem = config.get('idempotency', {})
    if invoice_guard is None:
        invoice_guard = SaleGuard(idem.get('max_recent_sales', 100), bool(idem.get('enabled', True)))
    if receipt_guard is None:
        receipt_guard = SaleGuard(idem.get('max_recent_sales', 100), bool(idem.get('enabled', True)))

    channel = BroadcastChannel(float(config.get('server', {}).get('ws_send_timeout_seconds', DEFAULT_SEND_TIMEOUT)))
    service = PosService(store, channel)
    erp_env = get_erp_config(config, 'business_central').get('environment') or 'Production'

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        asyncio.get_running_loop().set_exception_handler(asyncio_exception_handler)
        relay.start()
        try:
            yield
        finally:
            relay.stop()

    app = FastAPI(title="POS Bridge", version=VERSION, lifespan=lifespan)
    configure_cors(app, config.get('server', {}).get('cors_origins'))

    app.state.store = store
    app.state.channel = channel
    app.state.service = service
    app.state.relay = relay
    app.state.erp = erp
    app.state.auth = auth
    app.state.invoice_guard = invoice_guard
    app.state.receipt_guard = receipt_guard

    # =========================================================================
    # ERROR HANDLING
    # =========================================================================

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})

    def require_session(request: Request) -> Dict[str, Any]:
        return auth.verify(auth.read_token(request.headers, request.cookies))

    # =========================================================================
    # AUTH
    # =========================================================================

    @app.post("/auth/login")
    async def login(request: Request):
        body = _as_dict(await _read_json(request))
        user, token = auth.login(body.get("username"), body.get("password"))
        response = JSONResponse({"ok": True, "user": user, "token": token})
        response.set_cookie(auth.cookie_name, token, httponly=True, samesite="lax",
                            max_age=auth.token_ttl)
        return response

    @app.get("/auth/me")
    async def me(claims: Dict[str, Any] = Depends(require_session)):
        return {"ok": True, "user": AuthGate.claims_to_user(claims)}

    @app.post("/auth/logout")
    async def logout():
        response = JSONResponse({"ok": True})
        response.delete_cookie(auth.cookie_name)
        return response

    # =========================================================================
    # POS STATE
    # =========================================================================

    @app.get("/pos/state", dependencies=[Depends(require_session)])
    async def pos_state():
        return service.get_state()

    @app.post("/pos/snapshot", dependencies=[Depends(require_session)])
    async def pos_snapshot(request: Request):
        return await service.replace_snapshot(await _read_json(request))

    @app.post("/pos/ticket", dependencies=[Depends(require_session)])
    async def pos_create_ticket(request: Request):
        return await service.create_ticket(await _read_json(request))

    @app.post("/pos/ticket/{ticket_id}/status", dependencies=[Depends(require_session)])
    async def pos_ticket_status(ticket_id: str, request: Request):
        body = _as_dict(await _read_json(request))
        return await service.update_ticket_status(ticket_id, body.get("status"))

    @app.delete("/pos/ticket/{ticket_id}", dependencies=[Depends(require_session)])
    async def pos_delete_ticket(ticket_id: str):
        return await service.delete_ticket(ticket_id)

    @app.post("/pos/table/{table_id}", dependencies=[Depends(require_session)])
    async def pos_patch_table(table_id: str, request: Request):
        return await service.patch_table(table_id, await _read_json(request))

    # =========================================================================
    # ERP FACADE
    # =========================================================================

    @app.get("/bc/items")
    async def bc_items():
        return {"value": await run_in_threadpool(erp.get_items) or []}

    @app.get("/bc/menu")
    async def bc_menu():
        return await run_in_threadpool(erp.get_menu)

    @app.get("/bc/stock")
    async def bc_stock():
        return await run_in_threadpool(erp.get_stock)

    @app.post("/bc/invoice")
    async def bc_invoice(request: Request):
        body = _as_dict(await _read_json(request))
        sale_no = body.get("externalDocumentNumber")

        if not invoice_guard.begin(sale_no):
            logger.warning(f"Duplicate invoice rejected for sale {sale_no}")
            raise DuplicateSaleError()

        posted = False
        try:
            result = await run_in_threadpool(erp.post_invoice, body)
            posted = True
        finally:
            invoice_guard.finish(sale_no, posted)
        return result

    # =========================================================================
    # HEALTH
    # =========================================================================

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "service": SERVICE_NAME,
            "printerConnected": relay.connected,
            "time": utc_now_iso(),
            "tables": len(store.get_public_state()["tables"]),
            "env": erp_env,
        }

    # =========================================================================
    # STATE SYNC CHANNEL
    # =========================================================================

    async def send_ack(subscriber: WebSocketSubscriber, ack_id: Any, data: Dict[str, Any]) -> None:
        if ack_id is None:
            return
        try:
            await asyncio.wait_for(subscriber.send_frame({"event": ACK_EVENT, "ack": ack_id, "data": data}),
                                   channel.send_timeout)
        except Exception as e:
            logger.debug(f"Ack to {subscriber.subscriber_id} not delivered: {e}")

    async def handle_print(subscriber: WebSocketSubscriber, kind: str, payload: Any, ack_id: Any) -> None:
        payload = _as_dict(payload)
        sale_no = payload.get("saleNo") if kind == PRINT_RECEIPT else None

        if not receipt_guard.begin(sale_no):
            logger.warning(f"Duplicate receipt rejected for sale {sale_no}")
            await send_ack(subscriber, ack_id, DuplicateSaleError().to_dict())
            return

        printed = False
        try:
            result = await run_in_threadpool(relay.forward, kind, payload)
            printed = bool(result.get("ok"))
        finally:
            receipt_guard.finish(sale_no, printed)

        await send_ack(subscriber, ack_id, result)

        if is_relay_failure(result):
            return

        status: Dict[str, Any] = {"type": "order" if kind == PRINT_ORDER else "receipt"}
        if result.get("ok"):
            status["ok"] = True
            if kind == PRINT_ORDER:
                status["id"] = payload.get("id")
            else:
                status["saleNo"] = payload.get("saleNo")
        else:
            status["ok"] = False
            status["error"] = result.get("error")
        await channel.send_to(subscriber, PRINT_STATUS_EVENT, status)

    @app.websocket("/ws")
    async def pos_socket(websocket: WebSocket):
        try:
            claims = auth.verify(auth.read_token(websocket.headers, websocket.cookies, websocket.query_params))
        except AuthError:
            logger.warning("Socket rejected: no valid session")
            await websocket.close(code=WS_POLICY_VIOLATION)
            return

        await websocket.accept()
        subscriber = WebSocketSubscriber(websocket)
        channel.subscribe(subscriber)
        logger.info(f"Socket {subscriber.subscriber_id} opened by {claims.get('username')}")

        print_tasks: Set[asyncio.Task] = set()
        try:
            await service.send_initial_state(subscriber)
            while True:
                text = await websocket.receive_text()
                try:
                    frame = json.loads(text)
                except ValueError:
                    logger.warning(f"Socket {subscriber.subscriber_id}: dropping non-JSON frame")
                    continue
                if not isinstance(frame, dict):
                    continue

                event = frame.get("event")
                data = frame.get("data")
                ack_id = frame.get("ack")

                try:
                    if event == SNAPSHOT:
                        await send_ack(subscriber, ack_id, await service.replace_snapshot(data))
                    elif event in (PRINT_ORDER, PRINT_RECEIPT):
                        # Printer round trips must not block this socket's other frames
                        task = asyncio.create_task(handle_print(subscriber, event, data, ack_id))
                        print_tasks.add(task)
                        task.add_done_callback(print_tasks.discard)
                    else:
                        logger.debug(f"Socket {subscriber.subscriber_id}: unknown event {event!r}")
                        await send_ack(subscriber, ack_id, {"ok": False, "error": f"unknown event: {event}"})
                except Exception:
                    logger.exception(f"Socket {subscriber.subscriber_id}: handler for {event!r} failed")
        except WebSocketDisconnect:
            pass
        finally:
            channel.unsubscribe(subscriber)
            if print_tasks:
                # Nobody is left to ack; a relay call already in its thread runs to completion
                logger.info(f"Socket {subscriber.subscriber_id}: cancelling {len(print_tasks)} pending print(s)")
                pending = list(print_tasks)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

    return app
