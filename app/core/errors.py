from typing import Any, Dict, Optional


class WardrobeError(Exception):
    """Base class for domain errors surfaced to API clients.

    ``code`` becomes the ``detail`` of the JSON error body, following the same
    snake_case convention routers use with ``HTTPException``.
    """

    status_code = 500
    default_code = "internal_error"

    def __init__(self, code: Optional[str] = None, *, extra: Optional[Dict[str, Any]] = None):
        self.code = code or self.default_code
        self.extra = extra or {}
        super().__init__(self.code)

    def to_body(self) -> Dict[str, Any]:
        return {"detail": self.code, **self.extra}


class ValidationError(WardrobeError):
    status_code = 422
    default_code = "invalid_request"


class NotFoundError(WardrobeError):
    status_code = 404
    default_code = "not_found"


class ConflictError(WardrobeError):
    status_code = 409
    default_code = "conflict"


class InvalidTransitionError(ConflictError):
    default_code = "invalid_transition"

    def __init__(self, action: str, status: str):
        super().__init__(f"cannot_{action}_from_{status}", extra={"action": action, "status": status})


class VersionConflictError(ConflictError):
    default_code = "version_conflict"
    retry_after_s = 1

    def __init__(self, item_id: str, attempts: int):
        super().__init__(extra={"item_id": item_id, "attempts": attempts, "retry": True})


class ExternalServiceError(WardrobeError):
    status_code = 502
    default_code = "external_service_failed"

    def __init__(self, service: str, reason: str = "error"):
        super().__init__(f"{service}_unavailable", extra={"reason": reason})
        self.service = service
        self.reason = reason


class PersistenceError(WardrobeError):
    status_code = 500
    default_code = "internal_error"
