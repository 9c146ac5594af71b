"""
Custom domain verification

Lifecycle handled here:
  1. create_domain: canonicalize + validate, authorize, persist with a random token
  2. verify_domain: look up TXT `_verification.<domain>` and compare with the token
  3. set_primary / delete_domain / list_domains for the admin surface
  4. dns_check: read-only diagnostic snapshot (A, CNAME, challenge TXT)

An absent record is an expected outcome during DNS propagation, so
verify_domain always returns a VerificationResult rather than raising.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import settings
from app.crud import crud_domain, crud_organization
from app.exceptions import Conflict, DnsLookupError, NotAuthorized, NotFound, PreconditionFailed
from app.middleware.metrics import DOMAIN_VERIFICATIONS
from app.models.organization_domain import OrganizationDomain
from app.models.profile import Profile
from app.schemas.domain import DnsCheck, RecordLookup
from app.services.domain_names import canonicalize_domain, validate_domain, verification_record_name

logger = logging.getLogger("membership.domains")


@dataclass
class VerificationResult:
    domain: str
    verified: bool
    message: str
    found: List[str] = field(default_factory=list)
    expected: Optional[str] = None
    already_verified: bool = False
    dns_error: Optional[str] = None


def generate_verification_token() -> str:
    """64 hex chars, the same shape the database default used to produce."""
    return secrets.token_hex(32)


def token_in_records(token: str, records: Iterable[List[str]]) -> bool:
    """Exact match against any record, whole value or any single chunk."""
    for chunks in records:
        if "".join(chunks) == token or token in chunks:
            return True
    return False


def ensure_org_admin(actor: Optional[Profile], organization_id: UUID) -> None:
    if actor is None or not actor.administers(organization_id):
        raise NotAuthorized()


class DomainVerificationService:
    def __init__(
        self,
        db: Session,
        resolver,
        *,
        record_prefix: Optional[str] = None,
        platform_domains: Optional[Iterable[str]] = None,
        keep_status_on_transient: Optional[bool] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.record_prefix = record_prefix or settings.DOMAIN_VERIFICATION_PREFIX
        self.platform_domains = list(
            settings.platform_domains if platform_domains is None else platform_domains
        )
        self.keep_status_on_transient = (
            settings.DNS_TRANSIENT_ERRORS_KEEP_STATUS
            if keep_status_on_transient is None else keep_status_on_transient
        )

    # ── Lookup helpers ──

    def get_authorized(self, domain_id: UUID, actor: Optional[Profile]) -> OrganizationDomain:
        record = crud_domain.get(self.db, domain_id)
        if not record:
            raise NotFound("Domain record not found")
        ensure_org_admin(actor, record.organization_id)
        return record

    def record_name(self, domain: str) -> str:
        return verification_record_name(domain, self.record_prefix)

    # ── Operations ──

    def create_domain(self, actor: Optional[Profile], organization_id: UUID, raw_domain: str) -> OrganizationDomain:
        ensure_org_admin(actor, organization_id)
        domain = validate_domain(raw_domain, self.platform_domains)

        if not crud_organization.get(self.db, organization_id):
            raise NotFound("Organization not found")

        if crud_domain.get_by_domain(self.db, domain):
            raise Conflict("Domain is already registered", {"domain": domain})

        record = crud_domain.create(
            self.db,
            organization_id=organization_id,
            domain=domain,
            verification_token=generate_verification_token(),
        )
        logger.info("Custom domain added: %s for organization %s", domain, organization_id)
        return record

    def list_domains(self, actor: Optional[Profile], organization_id: UUID) -> List[OrganizationDomain]:
        ensure_org_admin(actor, organization_id)
        return crud_domain.get_multi_by_organization(self.db, organization_id)

    def verify_domain(self, domain_id: UUID, actor: Optional[Profile]) -> VerificationResult:
        record = self.get_authorized(domain_id, actor)

        domain = record.domain
        token = record.verification_token

        if record.is_verified:
            DOMAIN_VERIFICATIONS.labels(outcome="already_verified").inc()
            return VerificationResult(
                domain=domain,
                verified=True,
                message="Domain already verified",
                already_verified=True,
            )

        name = self.record_name(domain)
        try:
            records = self.resolver.txt_records(name)
        except DnsLookupError as exc:
            keep = exc.transient and self.keep_status_on_transient
            crud_domain.mark_verification_failed(self.db, record.id, keep_status=keep)
            DOMAIN_VERIFICATIONS.labels(outcome="dns_error").inc()
            logger.info("DNS verification failed for %s: %s", domain, exc.code)
            if exc.transient:
                message = f"DNS lookup for {name} failed ({exc.code}). Please try again shortly."
            else:
                message = "TXT record not found. Please add the verification record to your DNS."
            return VerificationResult(
                domain=domain,
                verified=False,
                message=message,
                expected=token,
                dns_error=exc.code,
            )

        found = ["".join(chunks) for chunks in records]
        if token_in_records(token, records):
            crud_domain.mark_verified(self.db, record.id)
            DOMAIN_VERIFICATIONS.labels(outcome="verified").inc()
            logger.info("Domain verified: %s", domain, extra={"domain": domain, "outcome": "verified"})
            return VerificationResult(
                domain=domain,
                verified=True,
                message="Domain ownership verified successfully",
                found=found,
            )

        crud_domain.mark_verification_failed(self.db, record.id)
        DOMAIN_VERIFICATIONS.labels(outcome="not_found").inc()
        logger.info(
            "Verification token not found for %s (%d TXT values)", domain, len(found),
            extra={"domain": domain, "outcome": "not_found"},
        )
        return VerificationResult(
            domain=domain,
            verified=False,
            message="Verification token not found in DNS TXT records",
            found=found,
            expected=token,
        )

    def set_primary(self, domain_id: UUID, actor: Optional[Profile]) -> OrganizationDomain:
        record = self.get_authorized(domain_id, actor)
        if not record.is_verified:
            raise PreconditionFailed("Only verified domains can be made primary")
        record = crud_domain.set_primary(self.db, db_obj=record)
        logger.info("Primary domain for organization %s is now %s", record.organization_id, record.domain)
        return record

    def delete_domain(self, domain_id: UUID, actor: Optional[Profile]) -> str:
        record = self.get_authorized(domain_id, actor)
        domain = record.domain
        crud_domain.remove(self.db, domain_id=record.id)
        logger.info("Custom domain deleted: %s (proxy config and certificate left in place)", domain)
        return domain

    def dns_check(self, raw_domain: str) -> DnsCheck:
        """Snapshot of what public DNS currently says. Never mutates state."""
        domain = canonicalize_domain(raw_domain)
        name = self.record_name(domain)

        a_lookup = self._lookup(self.resolver.a_records, domain)
        cname_lookup = self._lookup(self.resolver.cname_records, domain)
        try:
            txt = RecordLookup(values=["".join(chunks) for chunks in self.resolver.txt_records(name)])
        except DnsLookupError as exc:
            txt = RecordLookup(error=exc.code)

        return DnsCheck(
            domain=domain,
            timestamp=datetime.now(timezone.utc),
            a_records=a_lookup,
            cname_records=cname_lookup,
            verification_record_name=name,
            verification_record=txt,
        )

    @staticmethod
    def _lookup(fn, name: str) -> RecordLookup:
        try:
            return RecordLookup(values=fn(name))
        except DnsLookupError as exc:
            return RecordLookup(error=exc.code)
