from fastapi import Request, status
from fastapi.responses import JSONResponse


class AssessmentError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    reason = "error"

    def __init__(self, detail: str, reason: str | None = None):
        super().__init__(detail)
        self.detail = detail
        if reason:
            self.reason = reason


class NotFound(AssessmentError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = "not_found"


class Unauthorized(AssessmentError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = "forbidden"


class InvalidDefinition(AssessmentError):
    status_code = status.HTTP_400_BAD_REQUEST
    reason = "invalid_definition"


class PolicyViolation(AssessmentError):
    """Request is well formed but the assessment's rules refuse it.

    `reason` is a stable machine-readable code (``max_attempts_reached``,
    ``not_yet_open``...) so clients can render distinct messages.
    """

    status_code = status.HTTP_409_CONFLICT

    # access-type refusals read better as 403 than as a state conflict
    _FORBIDDEN_REASONS = {"not_published", "not_yet_open", "window_closed", "not_enrolled"}

    def __init__(self, detail: str, reason: str):
        super().__init__(detail, reason)
        if reason in self._FORBIDDEN_REASONS:
            self.status_code = status.HTTP_403_FORBIDDEN


class CollaboratorUnavailable(AssessmentError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    reason = "collaborator_unavailable"

    def __init__(self, detail: str, timeout: bool = False):
        super().__init__(detail)
        if timeout:
            self.status_code = status.HTTP_504_GATEWAY_TIMEOUT
            self.reason = "collaborator_timeout"


class GenerationFailed(AssessmentError):
    status_code = status.HTTP_502_BAD_GATEWAY
    reason = "generation_failed"

    def __init__(self, detail: str, rate_limited: bool = False):
        super().__init__(detail)
        if rate_limited:
            self.status_code = status.HTTP_429_TOO_MANY_REQUESTS
            self.reason = "rate_limited"


async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "reason": exc.reason},
    )
