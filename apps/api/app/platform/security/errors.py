from __future__ import annotations


class AuthorizationError(Exception):
    """Base error for identity, tenant and policy failures; carries the HTTP status to surface."""

    status_code = 403

    def __init__(self, message: str, *, reason: str = "forbidden") -> None:
        self.message = message
        self.reason = reason
        super().__init__(message)


class TenantHeaderMissingError(AuthorizationError):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("x-dealership-id header is required", reason="tenant_header_missing")
