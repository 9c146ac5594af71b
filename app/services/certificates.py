"""
TLS certificate provisioning through an external ACME client (certbot).

The client runs as a subprocess with an argument list, never a shell
string. Failures are recorded on the domain record and returned with the
client's diagnostic output; nothing is retried automatically.
"""
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import settings
from app.crud import crud_domain
from app.exceptions import NotFound, PreconditionFailed, ProxyConfigError
from app.middleware.metrics import CERTIFICATE_ISSUANCE
from app.models.organization_domain import SslStatus
from app.models.profile import Profile
from app.services.domain_verification import ensure_org_admin
from app.services.proxy_config import SiteState

logger = logging.getLogger("membership.certificates")


@dataclass
class IssuerOutcome:
    success: bool
    output: str = ""
    returncode: Optional[int] = None


class CertificateIssuer(Protocol):
    def issue(self, domain: str, *, renew: bool = False) -> IssuerOutcome:
        ...


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class CertbotIssuer:
    """certbot `certonly --webroot` against the challenge root nginx serves."""

    def __init__(
        self,
        client_path: str = "certbot",
        *,
        webroot: str = "/var/www/certbot",
        contact_email: str = "",
        staging: bool = False,
        timeout: int = 180,
        use_sudo: bool = False,
    ):
        self.client_path = client_path
        self.webroot = webroot
        self.contact_email = contact_email
        self.staging = staging
        self.timeout = timeout
        self.use_sudo = use_sudo

    @classmethod
    def from_settings(cls) -> "CertbotIssuer":
        return cls(
            settings.ACME_CLIENT_PATH,
            webroot=settings.ACME_WEBROOT,
            contact_email=settings.ACME_CONTACT_EMAIL,
            staging=settings.ACME_STAGING,
            timeout=settings.ACME_TIMEOUT_SECONDS,
            use_sudo=settings.ACME_USE_SUDO,
        )

    def build_command(self, domain: str, *, renew: bool = False) -> List[str]:
        argv = ["sudo", "-n"] if self.use_sudo else []
        argv += [
            self.client_path,
            "certonly",
            "--webroot",
            "-w", self.webroot,
            "-d", domain,
            "--non-interactive",
            "--agree-tos",
            "--email", self.contact_email or f"admin@{domain}",
        ]
        if self.staging:
            argv.append("--staging")
        argv.append("--force-renewal" if renew else "--keep-until-expiring")
        return argv

    def issue(self, domain: str, *, renew: bool = False) -> IssuerOutcome:
        argv = self.build_command(domain, renew=renew)
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            return IssuerOutcome(False, f"ACME client not found: {argv[0]}")
        except subprocess.TimeoutExpired as exc:
            partial = "\n".join(p for p in (_text(exc.stdout).strip(), _text(exc.stderr).strip()) if p)
            message = f"ACME client timed out after {self.timeout}s"
            return IssuerOutcome(False, f"{message}\n{partial}" if partial else message)

        output = "\n".join(p for p in (result.stdout.strip(), result.stderr.strip()) if p)
        return IssuerOutcome(result.returncode == 0, output, result.returncode)


@dataclass
class IssueResult:
    success: bool
    domain: str
    message: str
    ssl_status: str
    details: Optional[str] = None
    routing_applied: bool = False


class CertificateProvisioner:
    def __init__(self, db: Session, issuer: CertificateIssuer, proxy):
        self.db = db
        self.issuer = issuer
        self.proxy = proxy

    def issue_certificate(self, domain_id: UUID, actor: Optional[Profile]) -> IssueResult:
        record = crud_domain.get(self.db, domain_id)
        if not record:
            raise NotFound("Domain record not found")
        ensure_org_admin(actor, record.organization_id)

        # Checked before any ACME request: rate-limited, and DNS proof comes first
        if not record.is_verified:
            raise PreconditionFailed(
                "Domain must be verified before generating SSL certificate",
                {"verification_status": record.verification_status},
            )

        domain = record.domain
        renew = record.ssl_status == SslStatus.ISSUED.value

        # The HTTP-only site must be live to answer the HTTP-01 challenge
        if self.proxy.site_state(domain) != SiteState.ACTIVE:
            try:
                self.proxy.enable_domain(domain, tls=False)
            except ProxyConfigError as exc:
                diagnostic = f"{exc.message}\n{exc.output}".strip()
                crud_domain.mark_ssl_failed(self.db, record.id, diagnostic=diagnostic)
                CERTIFICATE_ISSUANCE.labels(outcome="failed").inc()
                return IssueResult(
                    success=False,
                    domain=domain,
                    message="Could not publish the HTTP site needed for the ACME challenge",
                    ssl_status=SslStatus.FAILED.value,
                    details=diagnostic,
                )

        logger.info("SSL certificate requested for %s (renew=%s)", domain, renew)
        outcome = self.issuer.issue(domain, renew=renew)

        if not outcome.success:
            diagnostic = outcome.output or f"ACME client exited with status {outcome.returncode}"
            crud_domain.mark_ssl_failed(self.db, record.id, diagnostic=diagnostic)
            CERTIFICATE_ISSUANCE.labels(outcome="failed").inc()
            logger.warning(
                "SSL certificate generation failed for %s: %s", domain, diagnostic,
                extra={"domain": domain, "outcome": "failed"},
            )
            return IssueResult(
                success=False,
                domain=domain,
                message="Failed to generate SSL certificate. Make sure the domain's DNS points to this server.",
                ssl_status=SslStatus.FAILED.value,
                details=diagnostic,
            )

        if not crud_domain.mark_ssl_issued(self.db, record.id):
            # Record deleted (or no longer verified) while the client ran
            CERTIFICATE_ISSUANCE.labels(outcome="failed").inc()
            return IssueResult(
                success=False,
                domain=domain,
                message="Domain record changed while the certificate was being issued",
                ssl_status=SslStatus.PENDING.value,
                details=outcome.output,
            )
        CERTIFICATE_ISSUANCE.labels(outcome="issued").inc()
        logger.info("SSL certificate issued for %s", domain, extra={"domain": domain, "outcome": "issued"})

        try:
            self.proxy.enable_domain(domain, tls=True)
        except ProxyConfigError as exc:
            return IssueResult(
                success=True,
                domain=domain,
                message="SSL certificate issued, but the HTTPS site could not be enabled",
                ssl_status=SslStatus.ISSUED.value,
                details=f"{exc.message}\n{exc.output}".strip(),
                routing_applied=False,
            )

        return IssueResult(
            success=True,
            domain=domain,
            message="SSL certificate generated and nginx reloaded",
            ssl_status=SslStatus.ISSUED.value,
            details=outcome.output or None,
            routing_applied=True,
        )
