"""
Domain error taxonomy.

Services raise these; ``blogcore.main`` maps each class onto its HTTP
status and the ``{"success": false, "error": ...}`` envelope.  Routers
never build error responses themselves.
"""


class DomainError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """A required field is missing or malformed."""

    status_code = 400

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"'{field}' is required")
        self.field = field


class AuthenticationError(DomainError):
    status_code = 401

    def __init__(self, message: str = "Not authorized. Please log in.") -> None:
        super().__init__(message)


class AuthorizationError(DomainError):
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(DomainError):
    """Duplicate unique relation or a state transition that cannot apply."""

    status_code = 409


class StorageError(DomainError):
    """The object store rejected or failed an operation."""

    status_code = 502
