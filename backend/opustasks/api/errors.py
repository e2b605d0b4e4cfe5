"""Mapping of domain and collaborator errors to HTTP responses."""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse

from opustasks.ai.exceptions import AIError, AIFeatureDisabledError, CollaboratorError
from opustasks.exceptions import ConflictError, CycleError, DomainError, NotFoundError, ValidationError

logger = structlog.get_logger()

DOMAIN_STATUS_CODES: dict[type[DomainError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CycleError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
}


def status_for(error: DomainError) -> int:
    for error_type, status_code in DOMAIN_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def domain_error_handler(request: Request, exc: DomainError) -> ORJSONResponse:
    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    return ORJSONResponse(status_code=status_for(exc), content=content)


async def ai_error_handler(request: Request, exc: AIError) -> ORJSONResponse:
    if isinstance(exc, AIFeatureDisabledError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        content = {"detail": exc.message, "code": exc.code}
    elif isinstance(exc, CollaboratorError):
        status_code = status.HTTP_502_BAD_GATEWAY
        content = {"detail": exc.message, "code": exc.code, "category": exc.category.value}
    else:
        logger.error("unhandled_ai_error", error=exc.message, path=request.url.path)
        status_code = status.HTTP_502_BAD_GATEWAY
        content = {"detail": exc.message, "code": exc.code}
    return ORJSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(AIError, ai_error_handler)
