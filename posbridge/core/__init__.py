"""
Core modules for POS Bridge.

This package contains the bridge's shared functionality:
- config_manager: Configuration loading and management
- state_store: Persisted tables/tickets state
- broadcast: Publish/subscribe fan-out of the state
- printer_relay: Forwarding connection to the printer server
- ipc: Authenticated IPC server used by the printer server
- sale_guard: Sale number deduplication
- auth: Session token issue/verify
- http_api: FastAPI application (HTTP + WebSocket)
"""

__all__ = [
    'config_manager',
    'state_store',
    'broadcast',
    'printer_relay',
    'ipc',
    'sale_guard',
    'auth',
    'http_api',
]
