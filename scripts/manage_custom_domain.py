#!/usr/bin/env python3
"""Operator CLI for custom domains on this host (nginx sites + certificates).

Runs the same services as the API with operator (super admin) rights.

Usage examples:
  python scripts/manage_custom_domain.py list
  python scripts/manage_custom_domain.py verify members.example.org
  python scripts/manage_custom_domain.py ssl members.example.org
  python scripts/manage_custom_domain.py enable members.example.org
  python scripts/manage_custom_domain.py disable members.example.org
"""

from __future__ import annotations

import argparse
import logging
import sys

from app.crud import crud_domain
from app.db.session import SessionLocal
from app.exceptions import DomainError
from app.logging_config import setup_logging
from app.models.organization_domain import SslStatus
from app.models.profile import Profile
from app.services.certificates import CertbotIssuer, CertificateProvisioner
from app.services.dns_lookup import DnsResolver
from app.services.domain_names import canonicalize_domain, validate_domain
from app.services.domain_verification import DomainVerificationService
from app.services.proxy_config import NginxSiteManager

logger = logging.getLogger("membership.cli")

# Not persisted; only used for authorization checks inside the services
OPERATOR = Profile(email="operator@localhost", role="super_admin")


def _record(db, domain: str):
    record = crud_domain.get_by_domain(db, canonicalize_domain(domain))
    if not record:
        print(f"No domain record for {domain}")
    return record


def cmd_list(args, db, proxy) -> int:
    sites = proxy.list_sites()
    if not sites:
        print("No custom domain sites configured")
        return 0
    for site in sites:
        record = crud_domain.get_by_domain(db, site["domain"])
        status = record.verification_status if record else "no record"
        print(
            f"{site['domain']:<40} "
            f"{'enabled' if site['enabled'] else 'disabled':<9} "
            f"{'cert' if site['certificate'] else 'no cert':<8} "
            f"{status}"
        )
    return 0


def cmd_enable(args, db, proxy) -> int:
    record = _record(db, args.domain)
    if not record:
        return 1
    if not record.is_verified:
        print(f"{record.domain} is not verified ({record.verification_status})")
        return 1
    tls = record.ssl_status == SslStatus.ISSUED.value
    proxy.enable_domain(record.domain, tls=tls)
    print(f"Enabled {proxy.site_name(record.domain)} ({'https' if tls else 'http only'})")
    return 0


def cmd_disable(args, db, proxy) -> int:
    domain = validate_domain(args.domain)
    if proxy.disable_domain(domain):
        print(f"Disabled {proxy.site_name(domain)}; certificate left in place")
    else:
        print(f"{proxy.site_name(domain)} was not enabled")
    return 0


def cmd_verify(args, db, proxy) -> int:
    record = _record(db, args.domain)
    if not record:
        return 1
    result = DomainVerificationService(db, DnsResolver.from_settings()).verify_domain(record.id, OPERATOR)
    print(result.message)
    if not result.verified:
        print(f"  expected: {result.expected}")
        print(f"  found:    {', '.join(result.found) or '-'}")
        return 1
    if not result.already_verified:
        proxy.enable_domain(result.domain, tls=False)
    return 0


def cmd_ssl(args, db, proxy) -> int:
    record = _record(db, args.domain)
    if not record:
        return 1
    result = CertificateProvisioner(db, CertbotIssuer.from_settings(), proxy).issue_certificate(
        record.id, OPERATOR
    )
    print(result.message)
    if result.details:
        print(result.details)
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage custom domain nginx sites and certificates")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="list generated sites").set_defaults(func=cmd_list)
    for name, func, help_text in (
        ("enable", cmd_enable, "render and enable the site (https once a certificate is issued)"),
        ("disable", cmd_disable, "unlink the site, keeping the certificate"),
        ("verify", cmd_verify, "check the DNS TXT verification record"),
        ("ssl", cmd_ssl, "request a certificate from the ACME client"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("domain")
        cmd.set_defaults(func=func)
    return parser


def main(argv=None) -> int:
    setup_logging(json_output=False, stream=sys.stderr)
    args = build_parser().parse_args(argv)
    proxy = NginxSiteManager.from_settings()
    db = SessionLocal()
    try:
        return args.func(args, db, proxy)
    except DomainError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        output = exc.details.get("output")
        if output:
            print(output, file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
