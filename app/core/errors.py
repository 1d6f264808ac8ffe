"""Domain errors raised by the ticketing services.

Each error knows the HTTP status it maps to; `app.main` renders them as
``{"detail": ..., "code": ..., **extra}``.
"""
from __future__ import annotations


class TicketingError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def as_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFound(TicketingError):
    status_code = 404
    code = "not_found"


class Conflict(TicketingError):
    status_code = 409
    code = "conflict"


class Forbidden(TicketingError):
    status_code = 403
    code = "forbidden"


class InvalidSignature(TicketingError):
    status_code = 400
    code = "invalid_signature"


class PreconditionFailed(TicketingError):
    status_code = 400
    code = "precondition_failed"


class Internal(TicketingError):
    status_code = 500
    code = "internal"


class InvalidTransition(Conflict):
    code = "invalid_transition"


class TicketSecretMissing(Internal):
    code = "secret_missing"


class QRRenderError(Internal):
    code = "qr_render_failed"
