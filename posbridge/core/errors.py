"""
Exception hierarchy for POS Bridge.

Raised by the store, auth gate and ERP facade; converted to
{"ok": False, "error": ...} responses at the HTTP boundary.
"""

from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base class for errors surfaced to POS clients."""

    status_code = 500
    reason = "internal error"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.reason
        super().__init__(self.reason)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.reason}


class AuthError(BridgeError):
    status_code = 401
    reason = "unauthorized"


class NotFoundError(BridgeError):
    status_code = 404
    reason = "not found"


class BadRequestError(BridgeError):
    status_code = 400
    reason = "bad request"

    def __init__(self, reason: Optional[str] = None, step: Optional[str] = None):
        super().__init__(reason)
        self.step = step

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.step:
            data["step"] = self.step
        return data


class DuplicateSaleError(BridgeError):
    status_code = 409
    reason = "duplicate sale"


class UpstreamError(BridgeError):
    """The ERP answered with an error or could not be reached."""

    status_code = 502
    reason = "upstream error"

    def __init__(self, text: str, step: Optional[str] = None, status: Optional[int] = None,
                 extra: Optional[Dict[str, Any]] = None):
        super().__init__(text)
        self.step = step
        self.status = status
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.step:
            data["step"] = self.step
        if self.status is not None:
            data["status"] = self.status
        data.update(self.extra)
        return data
