"""Domain exceptions.

Every failure a mutation or read can produce is one of these. The API layer
maps them to HTTP responses in one place (``opustasks.api.errors``).
"""

from typing import Optional


class DomainError(Exception):
    """Base exception for domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(DomainError):
    """Entity is absent, or the caller may not read it.

    The two cases are deliberately indistinguishable: callers without read
    access get exactly the error a lookup of a random id would produce.
    """

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(
            message=f"{entity_type.capitalize()} not found",
            code="NOT_FOUND",
        )


class ValidationError(DomainError):
    """A field value is out of range or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message=message, code="VALIDATION_ERROR")


class CycleError(DomainError):
    """A predecessor or parent reference would close a cycle."""

    def __init__(self, message: str):
        super().__init__(message=message, code="CYCLE_ERROR")


class ConflictError(DomainError):
    """The requested transition is structurally invalid in the current state."""

    def __init__(self, message: str):
        super().__init__(message=message, code="CONFLICT")
