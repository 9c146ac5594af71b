"""
Custom Domain Management API

Allows organization admins to:
  1. Add a custom domain and get the TXT verification record
  2. Verify DNS (checks `_verification.<domain>` for the token)
  3. Request a TLS certificate once verified
  4. List / inspect / delete domains and pick the primary one
  5. Troubleshoot DNS with a read-only snapshot

Enabling or disabling the proxy site outside that flow is a separate,
super-admin-only step (`/routing`).
"""
import logging
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api import deps
from app.config import settings
from app.crud import crud_domain
from app.exceptions import NotFound, PreconditionFailed, ProxyConfigError
from app.models.organization_domain import SslStatus
from app.models.profile import Profile
from app.schemas.domain import (
    CertificateIssueResult,
    DnsCheck,
    DomainCreate,
    DomainDetail,
    DomainInfo,
    DomainVerifyResult,
    RoutingStatus,
)
from app.services.certificates import CertificateProvisioner
from app.services.domain_names import canonicalize_domain, validate_domain
from app.services.domain_verification import DomainVerificationService, ensure_org_admin
from app.services.proxy_config import NginxSiteManager

router = APIRouter()
logger = logging.getLogger("membership.domains")


def _service(db: Session, resolver) -> DomainVerificationService:
    return DomainVerificationService(db, resolver)


# ── Endpoints ──

@router.get("", response_model=List[DomainInfo])
def list_domains(
    organization_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
) -> Any:
    """List an organization's custom domains, newest first."""
    return _service(db, None).list_domains(current_profile, organization_id)


@router.post("", response_model=DomainInfo, status_code=status.HTTP_201_CREATED)
def add_domain(
    body: DomainCreate,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
) -> Any:
    """Register a domain; the response carries the token to publish as TXT."""
    return _service(db, None).create_domain(current_profile, body.organization_id, body.domain)


@router.get("/{domain_id}", response_model=DomainDetail)
def get_domain(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
    proxy: NginxSiteManager = Depends(deps.get_proxy_manager),
) -> Any:
    service = _service(db, None)
    record = service.get_authorized(domain_id, current_profile)
    info = DomainInfo.model_validate(record).model_dump()
    return DomainDetail(
        **info,
        routing_state=proxy.site_state(record.domain).value,
        certificate_present=proxy.has_certificate(record.domain),
        verification_record_name=service.record_name(record.domain),
    )


@router.post("/{domain_id}/verify", response_model=DomainVerifyResult)
def verify_domain(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
    resolver=Depends(deps.get_dns_resolver),
    proxy: NginxSiteManager = Depends(deps.get_proxy_manager),
) -> Any:
    """Check the TXT record now. Not finding it yet is a normal answer, not an error."""
    result = _service(db, resolver).verify_domain(domain_id, current_profile)

    if result.verified and not result.already_verified:
        # The HTTP-only site has to be live before an ACME HTTP-01 challenge
        try:
            proxy.enable_domain(result.domain, tls=False)
        except ProxyConfigError as exc:
            logger.warning("Base site for %s not enabled: %s", result.domain, exc.output)
            result.message = f"{result.message}. Routing not yet enabled: {exc.message}"

    return DomainVerifyResult(
        domain=result.domain,
        verified=result.verified,
        message=result.message,
        found=result.found,
        expected=result.expected,
        already_verified=result.already_verified,
        dns_error=result.dns_error,
    )


@router.post("/{domain_id}/ssl", response_model=CertificateIssueResult)
def generate_ssl(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
    issuer=Depends(deps.get_certificate_issuer),
    proxy: NginxSiteManager = Depends(deps.get_proxy_manager),
) -> Any:
    """Issue (or refresh) the domain's certificate and switch its site to TLS."""
    if not settings.ACME_ENABLED:
        raise PreconditionFailed("Certificate issuance is disabled on this deployment")

    result = CertificateProvisioner(db, issuer, proxy).issue_certificate(domain_id, current_profile)
    body = CertificateIssueResult(
        success=result.success,
        domain=result.domain,
        message=result.message,
        ssl_status=result.ssl_status,
        details=result.details,
        routing_applied=result.routing_applied,
    )
    if not result.success:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=body.model_dump())
    return body


@router.post("/{domain_id}/primary", response_model=DomainInfo)
def set_primary_domain(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
) -> Any:
    return _service(db, None).set_primary(domain_id, current_profile)


@router.delete("/{domain_id}")
def delete_domain(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
) -> Any:
    """Delete the record. The nginx site and certificate are left for /routing."""
    domain = _service(db, None).delete_domain(domain_id, current_profile)
    return {"message": f"Domain {domain} removed", "domain": domain}


@router.post("/{domain_id}/routing", response_model=RoutingStatus)
def enable_routing(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_super_admin),
    proxy: NginxSiteManager = Depends(deps.get_proxy_manager),
) -> Any:
    record = crud_domain.get(db, domain_id)
    if not record:
        raise NotFound("Domain record not found")
    if not record.is_verified:
        raise PreconditionFailed("Only verified domains can be routed")

    tls = record.ssl_status == SslStatus.ISSUED.value
    proxy.enable_domain(record.domain, tls=tls)
    return RoutingStatus(
        domain=record.domain,
        routing_state=proxy.site_state(record.domain).value,
        tls=tls,
        message="Site enabled and nginx reloaded",
    )


@router.delete("/{domain_id}/routing", response_model=RoutingStatus)
def disable_routing(
    domain_id: UUID,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_super_admin),
    proxy: NginxSiteManager = Depends(deps.get_proxy_manager),
) -> Any:
    """Unlink the site; the certificate stays on disk."""
    record = crud_domain.get(db, domain_id)
    if not record:
        raise NotFound("Domain record not found")

    changed = proxy.disable_domain(record.domain)
    return RoutingStatus(
        domain=record.domain,
        routing_state=proxy.site_state(record.domain).value,
        message="Site disabled and nginx reloaded" if changed else "Site was not enabled",
    )


@router.get("/{domain}/dns-check", response_model=DnsCheck)
def dns_check(
    domain: str,
    organization_id: Optional[UUID] = None,
    db: Session = Depends(deps.get_db),
    current_profile: Profile = Depends(deps.get_current_profile),
    resolver=Depends(deps.get_dns_resolver),
) -> Any:
    """Read-only DNS snapshot. Pass organization_id to check before adding the domain."""
    if organization_id is not None:
        ensure_org_admin(current_profile, organization_id)
        validate_domain(domain)
    else:
        record = crud_domain.get_by_domain(db, canonicalize_domain(domain))
        if not record:
            raise NotFound("Domain record not found", {"domain": canonicalize_domain(domain)})
        ensure_org_admin(current_profile, record.organization_id)

    return _service(db, resolver).dns_check(domain)
