"""
Tenant Resolution Middleware

Resolves the organization for every request from the tenant hint
(`?org=` / `X-Organization`, when enabled) and the Host header, and sets
request.state.organization_id / organization_slug / tenant_match for
downstream handlers. An unresolved request passes through with
organization_id = None; endpoints decide whether that is an error.

Custom domains are looked up in the database on every request. Other
workers and the operator CLI change the domain table, so no per-process
copy of a match is kept.
"""

import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings
from app.logging_config import organization_id_ctx
from app.services.tenant_resolver import (
    DatabaseTenantDirectory,
    normalize_host,
    resolve_tenant,
)

logger = logging.getLogger("membership.tenant")


def _tenant_hint(request: Request) -> Optional[str]:
    if not settings.TENANT_HINT_ENABLED:
        return None
    hint = request.query_params.get(settings.TENANT_HINT_QUERY_PARAM)
    if not hint:
        hint = request.headers.get(settings.TENANT_HINT_HEADER)
    return hint or None


def _session_factory(request: Request):
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        from app.db.session import SessionLocal
        factory = SessionLocal
    return factory


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        host = normalize_host(request.headers.get("host", ""))
        hint = _tenant_hint(request)

        request.state.organization_id = None
        request.state.organization_slug = None
        request.state.tenant_match = None

        db = _session_factory(request)()
        try:
            resolution = resolve_tenant(
                host,
                hint,
                DatabaseTenantDirectory(db),
                platform_domains=settings.platform_domains,
                reserved_subdomains=settings.reserved_subdomains,
                dev_hosts=settings.dev_hosts,
            )
        finally:
            db.close()

        if resolution:
            organization = resolution.organization
            request.state.organization_id = organization.id
            request.state.organization_slug = organization.slug
            request.state.tenant_match = resolution.matched_by.value
            organization_id_ctx.set(str(organization.id))
            logger.debug("Resolved %s → organization %s (%s)", host, organization.slug, resolution.matched_by.value)

        return await call_next(request)
