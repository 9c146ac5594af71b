"""
Tenant resolution

Precedence, first match wins:
  1. explicit hint (query parameter / header, derived at the boundary)
  2. verified custom domain equal to the host
  3. `<slug>.<platform-domain>` subdomain
  4. not found, the caller decides what that means

`resolve_tenant` only depends on its arguments and the directory it is
given; deriving the hint from the request is the middleware's job.
"""
import enum
import ipaddress
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from sqlalchemy.orm import Session

from app.crud import crud_domain, crud_organization
from app.models.organization import Organization

logger = logging.getLogger("membership.tenant")


class TenantMatch(str, enum.Enum):
    HINT = "hint"
    CUSTOM_DOMAIN = "custom_domain"
    SUBDOMAIN = "subdomain"


@dataclass
class TenantResolution:
    organization: Organization
    matched_by: TenantMatch
    host: str


class TenantDirectory(Protocol):
    def by_hint(self, hint: str) -> Optional[Organization]:
        ...

    def by_verified_domain(self, host: str) -> Optional[Organization]:
        ...

    def by_slug(self, slug: str) -> Optional[Organization]:
        ...


def normalize_host(host: Optional[str]) -> str:
    """Lowercase, drop the port and any trailing root dot."""
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal, never a tenant host
        return host.split("]")[0] + "]"
    host = host.split(":")[0]
    return host.rstrip(".")


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def extract_slug(
    host: str,
    platform_domains: Iterable[str],
    reserved_subdomains: Iterable[str] = (),
) -> Optional[str]:
    """Return `slug` for `slug.<platform-domain>`; nested labels don't match."""
    reserved = set(reserved_subdomains)
    for base in platform_domains:
        suffix = "." + base
        if not host.endswith(suffix):
            continue
        slug = host[: -len(suffix)]
        if not slug or "." in slug or slug in reserved:
            return None
        return slug
    return None


def resolve_tenant(
    host: Optional[str],
    hint: Optional[str],
    directory: TenantDirectory,
    *,
    platform_domains: Iterable[str] = (),
    reserved_subdomains: Iterable[str] = (),
    dev_hosts: Iterable[str] = (),
) -> Optional[TenantResolution]:
    host = normalize_host(host)
    hint = (hint or "").strip()

    if hint:
        # A hint that names nothing is a miss; it never falls through to the host
        organization = directory.by_hint(hint)
        if organization is None:
            return None
        return TenantResolution(organization, TenantMatch.HINT, host)

    if not host or host in set(dev_hosts) or is_ip_literal(host):
        return None

    organization = directory.by_verified_domain(host)
    if organization is not None:
        return TenantResolution(organization, TenantMatch.CUSTOM_DOMAIN, host)

    slug = extract_slug(host, platform_domains, reserved_subdomains)
    if slug:
        organization = directory.by_slug(slug)
        if organization is not None:
            return TenantResolution(organization, TenantMatch.SUBDOMAIN, host)

    return None


class DatabaseTenantDirectory:
    """Active organizations only; custom domains only once verified."""

    def __init__(self, db: Session):
        self.db = db

    def by_hint(self, hint: str) -> Optional[Organization]:
        try:
            organization_id = uuid.UUID(hint)
        except ValueError:
            return crud_organization.get_active_by_slug(self.db, hint.lower())
        return crud_organization.get_active(self.db, organization_id)

    def by_verified_domain(self, host: str) -> Optional[Organization]:
        record = crud_domain.get_verified_by_domain(self.db, host)
        if record is None:
            return None
        return crud_organization.get_active(self.db, record.organization_id)

    def by_slug(self, slug: str) -> Optional[Organization]:
        return crud_organization.get_active_by_slug(self.db, slug)
