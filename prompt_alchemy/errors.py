"""Request-level errors raised before or around a turn. Each maps to an HTTP status."""


class AlchemyError(Exception):
    """Base class for errors surfaced to the caller with a stable code."""

    status_code = 500
    code = "server_error"


class InvalidRequestError(AlchemyError):
    status_code = 400
    code = "invalid_request"


class UnauthorizedError(AlchemyError):
    status_code = 401
    code = "unauthorized"


class SessionNotFoundError(AlchemyError):
    status_code = 404
    code = "not_found"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ConfigurationError(AlchemyError):
    """Missing model catalog or provider credentials."""

    status_code = 500
    code = "configuration_error"


class ArtifactInputError(InvalidRequestError):
    """Raised when artifact inputs fail type or required checks."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(errors[0] if errors else "Invalid artifact inputs")
