"""Certificate issuance: preconditions, ACME client invocation and outcomes."""
import subprocess
from unittest.mock import patch

import pytest

from app.crud import crud_domain
from app.exceptions import NotAuthorized, PreconditionFailed, ProxyConfigError
from app.services.certificates import CertbotIssuer, CertificateProvisioner, IssuerOutcome
from app.services.proxy_config import SiteState
from tests.conftest import FakeIssuer


def _domain(db, org, name="example.org", verified=True):
    record = crud_domain.create(db, organization_id=org.id, domain=name, verification_token="tok")
    if verified:
        crud_domain.mark_verified(db, record.id)
    db.expire_all()
    return crud_domain.get(db, record.id)


def _reload(db, record):
    db.expire_all()
    return crud_domain.get(db, record.id)


# --- CertificateProvisioner ---

@pytest.mark.parametrize("mark_failed", [False, True])
def test_unverified_domain_never_reaches_acme_client(db, org_a, admin_a, issuer, proxy, mark_failed):
    record = _domain(db, org_a, verified=False)
    if mark_failed:
        crud_domain.mark_verification_failed(db, record.id)

    with pytest.raises(PreconditionFailed):
        CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_a)

    assert issuer.calls == []
    assert proxy.calls == []
    assert _reload(db, record).ssl_status == "pending"


def test_issue_requires_org_admin(db, org_a, admin_b, issuer, proxy):
    record = _domain(db, org_a)
    with pytest.raises(NotAuthorized):
        CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_b)
    assert issuer.calls == []


def test_issue_success(db, org_a, admin_a, issuer, proxy):
    record = _domain(db, org_a)

    result = CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_a)

    assert result.success is True
    assert result.ssl_status == "issued"
    assert result.routing_applied is True
    assert issuer.calls == [("example.org", False)]
    # Base HTTP site first (for the challenge), then the TLS variant
    assert proxy.calls == [("enable", "example.org", False), ("enable", "example.org", True)]
    record = _reload(db, record)
    assert record.ssl_status == "issued"
    assert record.ssl_issued_at is not None
    assert record.ssl_last_error is None


def test_base_site_already_active_is_not_rewritten(db, org_a, admin_a, issuer, proxy):
    record = _domain(db, org_a)
    proxy.states["example.org"] = SiteState.ACTIVE

    CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_a)

    assert proxy.calls == [("enable", "example.org", True)]


def test_issue_failure_keeps_diagnostic(db, org_a, admin_a, proxy):
    issuer = FakeIssuer(IssuerOutcome(False, "Challenge failed for domain example.org", 1))
    record = _domain(db, org_a)

    result = CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_a)

    assert result.success is False
    assert result.ssl_status == "failed"
    assert "Challenge failed" in result.details
    assert len(issuer.calls) == 1
    # No TLS site after a failed issuance
    assert ("enable", "example.org", True) not in proxy.calls
    record = _reload(db, record)
    assert record.ssl_status == "failed"
    assert "Challenge failed" in record.ssl_last_error


def test_failure_is_not_retried_automatically(db, org_a, admin_a, proxy):
    issuer = FakeIssuer(IssuerOutcome(False, "rate limited", 1))
    record = _domain(db, org_a)
    provisioner = CertificateProvisioner(db, issuer, proxy)

    provisioner.issue_certificate(record.id, admin_a)
    assert len(issuer.calls) == 1

    # Explicit retry by the admin
    issuer.outcome = IssuerOutcome(True, "ok", 0)
    assert provisioner.issue_certificate(record.id, admin_a).success is True
    assert len(issuer.calls) == 2
    assert _reload(db, record).ssl_last_error is None


def test_reissue_requests_renewal(db, org_a, admin_a, issuer, proxy):
    record = _domain(db, org_a)
    provisioner = CertificateProvisioner(db, issuer, proxy)
    provisioner.issue_certificate(record.id, admin_a)

    result = provisioner.issue_certificate(record.id, admin_a)

    assert result.success is True
    assert issuer.calls == [("example.org", False), ("example.org", True)]


def test_base_site_failure_skips_acme(db, org_a, admin_a, issuer, proxy):
    proxy.fail_enable = ProxyConfigError("nginx configuration test failed", "emerg: bad directive")
    record = _domain(db, org_a)

    result = CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_a)

    assert result.success is False
    assert "bad directive" in result.details
    assert issuer.calls == []
    assert _reload(db, record).ssl_status == "failed"


def test_tls_site_failure_still_reports_issued(db, org_a, admin_a, issuer, proxy):
    record = _domain(db, org_a)
    proxy.states["example.org"] = SiteState.ACTIVE
    proxy.fail_enable = ProxyConfigError("nginx reload failed", "reload: signal failed")

    result = CertificateProvisioner(db, issuer, proxy).issue_certificate(record.id, admin_a)

    assert result.success is True
    assert result.routing_applied is False
    assert "signal failed" in result.details
    assert _reload(db, record).ssl_status == "issued"


# --- CertbotIssuer ---

def test_certbot_command_is_an_argument_list():
    issuer = CertbotIssuer("certbot", webroot="/var/www/certbot", contact_email="ops@example.net")
    assert issuer.build_command("example.org") == [
        "certbot", "certonly", "--webroot",
        "-w", "/var/www/certbot",
        "-d", "example.org",
        "--non-interactive", "--agree-tos",
        "--email", "ops@example.net",
        "--keep-until-expiring",
    ]


def test_certbot_command_options():
    issuer = CertbotIssuer("/usr/bin/certbot", staging=True, use_sudo=True)
    argv = issuer.build_command("example.org", renew=True)
    assert argv[:3] == ["sudo", "-n", "/usr/bin/certbot"]
    assert argv[argv.index("--email") + 1] == "admin@example.org"
    assert "--staging" in argv
    assert argv[-1] == "--force-renewal"


def test_certbot_success():
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="Congratulations!\n", stderr="")
    with patch("app.services.certificates.subprocess.run", return_value=completed) as run:
        outcome = CertbotIssuer(timeout=42).issue("example.org")

    assert outcome.success is True
    assert outcome.output == "Congratulations!"
    args, kwargs = run.call_args
    assert isinstance(args[0], list)
    assert "example.org" in args[0]
    assert kwargs["timeout"] == 42
    assert "shell" not in kwargs


def test_certbot_failure_collects_output():
    completed = subprocess.CompletedProcess(
        args=[], returncode=1, stdout="Saving debug log", stderr="Some challenges have failed.",
    )
    with patch("app.services.certificates.subprocess.run", return_value=completed):
        outcome = CertbotIssuer().issue("example.org")

    assert outcome.success is False
    assert outcome.returncode == 1
    assert "Some challenges have failed." in outcome.output
    assert "Saving debug log" in outcome.output


def test_certbot_timeout_is_a_failure():
    with patch(
        "app.services.certificates.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="certbot", timeout=5, output=b"waiting"),
    ):
        outcome = CertbotIssuer(timeout=5).issue("example.org")

    assert outcome.success is False
    assert "timed out after 5s" in outcome.output
    assert "waiting" in outcome.output


def test_certbot_missing_binary_is_a_failure():
    with patch("app.services.certificates.subprocess.run", side_effect=FileNotFoundError()):
        outcome = CertbotIssuer("/opt/missing/certbot").issue("example.org")

    assert outcome.success is False
    assert "/opt/missing/certbot" in outcome.output
