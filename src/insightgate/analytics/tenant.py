"""
Tenant Context - Who an intent is being run for.

Every data-touching operation needs a tenant. Providers hand the orchestrator
a TenantContext or raise TenantContextMissing; there is no unscoped fallback.

Over HTTP the tenant is never read from request headers. It is resolved from
the bearer token the authentication middleware verified, through the
`auth.tokens` mapping in settings.
"""

from contextvars import ContextVar
from typing import Literal, Optional, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request

from insightgate.analytics.validation import ValidationContext
from insightgate.config import settings
from insightgate.errors import TenantContextMissing

logger = structlog.get_logger(__name__)


class TenantContext(BaseModel):
    tenant_id: str
    user_id: Optional[str] = None
    role: Optional[Literal["admin", "member"]] = None
    model_config = ConfigDict(frozen=True)

    def validation_context(self) -> ValidationContext:
        return ValidationContext(
            tenant_id=self.tenant_id, user_id=self.user_id, role=self.role
        )


@runtime_checkable
class TenantContextProvider(Protocol):
    def get_tenant_context(self) -> TenantContext: ...


class StaticTenantContextProvider:
    """Fixed tenant, taken from the `tenant` settings section by default."""

    def __init__(self, context: Optional[TenantContext] = None):
        self._context = context

    def get_tenant_context(self) -> TenantContext:
        if self._context is not None:
            return self._context
        tenant = settings.instance().tenant
        if tenant is None or not tenant.tenant_id:
            raise TenantContextMissing("No tenant configured")
        return TenantContext(
            tenant_id=tenant.tenant_id, user_id=tenant.user_id, role=tenant.role
        )


_request_tenant: ContextVar[Optional[TenantContext]] = ContextVar(
    "request_tenant", default=None
)


class RequestTenantContextProvider:
    """Tenant of the authenticated request currently being served."""

    def get_tenant_context(self) -> TenantContext:
        if (ctx := _request_tenant.get()) is None:
            raise TenantContextMissing("Request is not authenticated for a tenant")
        return ctx


def tenant_for_token(token: Optional[str]) -> Optional[TenantContext]:
    """The tenant a bearer token is issued to, None for unknown tokens."""
    if not token:
        return None
    auth = settings.instance().auth
    if auth is None or (tenant := (auth.tokens or {}).get(token)) is None:
        return None
    if not tenant.tenant_id:
        return None
    return TenantContext(
        tenant_id=tenant.tenant_id, user_id=tenant.user_id, role=tenant.role
    )


def tenant_from_scope(scope) -> Optional[TenantContext]:
    """Tenant of an ASGI scope that went through the authentication middleware."""
    user = scope.get("user")
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    if (access_token := getattr(user, "access_token", None)) is None:
        return None
    return tenant_for_token(access_token.token)


def set_request_tenant(ctx: Optional[TenantContext]):
    return _request_tenant.set(ctx)


def reset_request_tenant(token):
    _request_tenant.reset(token)


class TenantAuthMiddleware(BaseHTTPMiddleware):
    """
    Binds the tenant of the verified bearer token to the request context.

    Must run after the authentication middleware has set `request.user`.
    Unauthenticated requests pass through unbound; the tools then fail at the
    tenant-context stage.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        if (ctx := tenant_from_scope(request.scope)) is None:
            logger.debug("request_without_tenant", path=request.url.path)

        token = set_request_tenant(ctx)
        try:
            return await call_next(request)
        finally:
            reset_request_tenant(token)
