"""
errors.py — Domain error hierarchy

Services raise these; app/main.py renders them as ErrorResponse bodies.
Each class carries the HTTP status and the generic, user-visible message.
The constructor argument is the internal detail — it is logged, never
returned to the client.

Business Rules:
- validation / not-found / authorization / conflict abort before any write
- external-service failures carry a category ("failed to sync order
  updates") so the caller sees what failed, not why
"""


class ProcurementError(Exception):
    status_code = 500
    public_message = "Unexpected error"

    def __init__(self, detail: str = "", *, public_message: str | None = None):
        self.detail = detail
        if public_message:
            self.public_message = public_message
        super().__init__(detail or self.public_message)


class ValidationFailed(ProcurementError):
    status_code = 400
    public_message = "Invalid request"


class AuthorizationDenied(ProcurementError):
    status_code = 403
    public_message = "Not permitted"


class NotFound(ProcurementError):
    status_code = 404
    public_message = "Not found"


class Conflict(ProcurementError):
    status_code = 409
    public_message = "Request conflicts with the current state"


class ExternalServiceError(ProcurementError):
    status_code = 502
    public_message = "External service failed"


class ExternalServiceTimeout(ExternalServiceError):
    status_code = 504
    public_message = "External service timed out"
