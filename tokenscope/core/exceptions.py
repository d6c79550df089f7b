"""
core/exceptions.py
------------------
Typed error taxonomy for the authorization core.

Services raise these; routes translate them into HTTP responses.
Batch operations never raise them per item; they capture `code` and
`message` into a BatchItemError instead.

    ScopeError
    ├── NotFound
    │   ├── TokenNotFound
    │   ├── TenantNotFound
    │   ├── PrincipalNotFound
    │   ├── PrincipalNotInTenant
    │   ├── ServiceNotFound
    │   └── BatchNotFound
    ├── AlreadyExists
    │   └── AlreadyHasToken
    ├── Unauthorized
    └── InvalidConfiguration
"""

from typing import Any


class ScopeError(Exception):
    """Base class for expected, caller-facing failures."""

    code: str = "scope_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFound(ScopeError):
    code = "not_found"


class TokenNotFound(NotFound):
    """
    Raised for unknown, expired, revoked, suspended or IP-rejected tokens.
    The message is identical in every case so callers cannot tell them apart.
    """

    code = "token_not_found"

    def __init__(self) -> None:
        super().__init__("Invalid token")


class TenantNotFound(NotFound):
    code = "tenant_not_found"

    def __init__(self, tenant_id: int) -> None:
        super().__init__(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)


class PrincipalNotFound(NotFound):
    code = "principal_not_found"

    def __init__(self, principal_id: int) -> None:
        super().__init__(
            f"Principal '{principal_id}' not found", principal_id=principal_id
        )


class PrincipalNotInTenant(NotFound):
    code = "principal_not_in_tenant"

    def __init__(self, principal_id: int, tenant_id: int) -> None:
        super().__init__(
            f"Principal '{principal_id}' does not belong to tenant '{tenant_id}'",
            principal_id=principal_id,
            tenant_id=tenant_id,
        )


class ServiceNotFound(NotFound):
    code = "service_not_found"

    def __init__(self, service_id: int) -> None:
        super().__init__(f"Service '{service_id}' not found", service_id=service_id)


class BatchNotFound(NotFound):
    code = "batch_not_found"

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch '{batch_id}' not found", batch_id=batch_id)


class AlreadyExists(ScopeError):
    code = "already_exists"


class AlreadyHasToken(AlreadyExists):
    code = "already_has_token"

    def __init__(self, principal_id: int) -> None:
        super().__init__(
            f"Principal '{principal_id}' already has a token for this service",
            principal_id=principal_id,
        )


class Unauthorized(ScopeError):
    code = "unauthorized"


class InvalidConfiguration(ScopeError):
    code = "invalid_configuration"
