"""Proxy Errors - Typed failures that map to HTTP responses

Self-Explanatory: One exception class per failure the proxy can report to a caller.
How: Each class carries its status code and the only message the client ever sees.
The real cause goes to the server log, never into the response body.
"""


class ProxyError(Exception):
    """Base error for the secure data proxy."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.message
        super().__init__(self.message)


class ConfigurationError(ProxyError):
    """Required setting missing or unusable at startup."""


class AuthError(ProxyError):
    """Missing, malformed or rejected bearer token."""

    status_code = 401
    message = "Unauthorized"


class ForbiddenError(ProxyError):
    """Authenticated principal lacks the role the action needs."""

    status_code = 403
    message = "Forbidden"


class NotFoundError(ProxyError):
    status_code = 404
    message = "Not found"


class ValidationError(ProxyError):
    """Unknown action or malformed query parameters."""

    status_code = 400
    message = "Invalid request"


class UpstreamError(ProxyError):
    """Backing store or identity service failed; cause is logged only."""

    status_code = 500
    message = "Internal server error"
