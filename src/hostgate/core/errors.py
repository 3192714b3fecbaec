"""Error taxonomy shared by every component.

Each error carries the HTTP status it maps to, a human-readable message and,
where a tenant can fix the problem themselves, a troubleshooting list.
"""

from __future__ import annotations

from typing import Any


class HostgateError(Exception):
    """Base class for all expected failures."""

    status_code = 500
    error = "Internal error"

    def __init__(
        self,
        message: str,
        *,
        troubleshooting: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.troubleshooting = troubleshooting or []
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API response body."""
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.troubleshooting:
            body["troubleshooting"] = self.troubleshooting
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(HostgateError):
    """Malformed domain or payload."""

    status_code = 400
    error = "Validation error"

    def __init__(self, message: str, rules: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.rules = rules or []
        if self.rules:
            self.details.setdefault("rules", self.rules)


class InvalidDomain(ValidationError):
    """Hostname breaks the DNS grammar."""

    error = "Invalid domain format"


class DomainRejected(HostgateError):
    status_code = 400
    error = "Domain not allowed"


class BadRequest(HostgateError):
    status_code = 400
    error = "Bad request"


class Unauthorized(HostgateError):
    status_code = 401
    error = "Unauthorized"


class Forbidden(HostgateError):
    status_code = 403
    error = "Forbidden"


class NotFound(HostgateError):
    status_code = 404
    error = "Not found"


class Conflict(HostgateError):
    status_code = 409
    error = "Conflict"


class RateLimited(HostgateError):
    """Attempt budget exhausted; reset_in is whole seconds until a slot frees."""

    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, message: str, reset_in: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.reset_in = max(1, int(reset_in))
        self.details.setdefault("reset_in", self.reset_in)


class ExternalFailure(HostgateError):
    """An external command or service failed.

    The raw output is kept for operators; nothing depends on its shape.
    """

    status_code = 500
    error = "External operation failed"

    def __init__(
        self,
        message: str,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
        error_text: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.stdout = stdout
        self.stderr = stderr
        self.error_text = error_text
        for key, value in (("stdout", stdout), ("stderr", stderr), ("error", error_text)):
            if value:
                self.details.setdefault(key, value)


class ProxyReloadFailed(ExternalFailure):
    """Config was written and tested but the running proxy was not reloaded."""

    error = "Proxy reload failed"
    warning = "Config is on disk but not yet live. Manual Nginx reload may be required."

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.details.setdefault("warning", self.warning)
