from app.platform.security.context import AccessContext, Principal, TenantContext, TenantRole
from app.platform.security.errors import AuthorizationError, TenantHeaderMissingError
from app.platform.security.redaction import redact_json, redact_name, redact_text

__all__ = [
    "AccessContext",
    "AuthorizationError",
    "Principal",
    "TenantContext",
    "TenantHeaderMissingError",
    "TenantRole",
    "redact_json",
    "redact_name",
    "redact_text",
]
