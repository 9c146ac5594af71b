"""Tenant resolution precedence and the database-backed directory."""
import pytest

from app.crud import crud_domain
from app.models.organization import Organization
from app.services.tenant_resolver import (
    DatabaseTenantDirectory,
    TenantMatch,
    extract_slug,
    normalize_host,
    resolve_tenant,
)

PLATFORM = ["m.ringing.org.uk", "member.ringing.org.uk"]
RESERVED = ["admin", "www"]
DEV_HOSTS = ["localhost", "127.0.0.1"]


class _Org:
    def __init__(self, slug):
        self.id = slug
        self.slug = slug


class _Directory:
    def __init__(self, hints=None, domains=None, slugs=None):
        self.hints = hints or {}
        self.domains = domains or {}
        self.slugs = slugs or {}

    def by_hint(self, hint):
        return self.hints.get(hint)

    def by_verified_domain(self, host):
        return self.domains.get(host)

    def by_slug(self, slug):
        return self.slugs.get(slug)


def _resolve(host, hint=None, directory=None):
    return resolve_tenant(
        host, hint, directory or _Directory(),
        platform_domains=PLATFORM, reserved_subdomains=RESERVED, dev_hosts=DEV_HOSTS,
    )


# --- Host parsing ---

@pytest.mark.parametrize("raw,expected", [
    ("Members.Example.ORG", "members.example.org"),
    ("members.example.org:8443", "members.example.org"),
    ("members.example.org.", "members.example.org"),
    ("", ""),
    (None, ""),
])
def test_normalize_host(raw, expected):
    assert normalize_host(raw) == expected


@pytest.mark.parametrize("host,slug", [
    ("alpha.m.ringing.org.uk", "alpha"),
    ("alpha.member.ringing.org.uk", "alpha"),
    ("m.ringing.org.uk", None),
    ("www.m.ringing.org.uk", None),
    ("admin.m.ringing.org.uk", None),
    ("a.b.m.ringing.org.uk", None),
    ("alpha.example.org", None),
])
def test_extract_slug(host, slug):
    assert extract_slug(host, PLATFORM, RESERVED) == slug


# --- Precedence ---

def test_custom_domain_beats_subdomain():
    alpha, bravo = _Org("alpha"), _Org("bravo")
    # A verified custom domain that also looks like a platform subdomain
    directory = _Directory(
        domains={"alpha.m.ringing.org.uk": bravo},
        slugs={"alpha": alpha},
    )
    result = _resolve("alpha.m.ringing.org.uk", directory=directory)
    assert result.organization is bravo
    assert result.matched_by == TenantMatch.CUSTOM_DOMAIN


@pytest.mark.parametrize("host", ["members.example.org", "alpha.m.ringing.org.uk"])
def test_hint_beats_host(host):
    alpha, bravo, charlie = _Org("alpha"), _Org("bravo"), _Org("charlie")
    directory = _Directory(
        hints={"charlie": charlie},
        domains={"members.example.org": bravo},
        slugs={"alpha": alpha},
    )
    result = _resolve(host, hint="charlie", directory=directory)
    assert result.organization is charlie
    assert result.matched_by == TenantMatch.HINT


def test_unknown_hint_does_not_fall_through():
    directory = _Directory(domains={"members.example.org": _Org("bravo")})
    assert _resolve("members.example.org", hint="nobody", directory=directory) is None


def test_subdomain_match():
    alpha = _Org("alpha")
    result = _resolve("Alpha.M.Ringing.org.uk:443", directory=_Directory(slugs={"alpha": alpha}))
    assert result.organization is alpha
    assert result.matched_by == TenantMatch.SUBDOMAIN
    assert result.host == "alpha.m.ringing.org.uk"


@pytest.mark.parametrize("host", ["localhost", "127.0.0.1", "10.0.0.7", "[::1]:8000"])
def test_dev_hosts_need_a_hint(host):
    alpha = _Org("alpha")
    directory = _Directory(hints={"alpha": alpha}, domains={host: alpha})
    assert _resolve(host, directory=directory) is None
    assert _resolve(host, hint="alpha", directory=directory).organization is alpha


def test_nothing_matches():
    assert _resolve("unknown.example.org") is None
    assert _resolve("www.m.ringing.org.uk", directory=_Directory(slugs={"www": _Org("www")})) is None


# --- DatabaseTenantDirectory ---

def test_only_verified_domains_route(db, org_a):
    record = crud_domain.create(db, organization_id=org_a.id, domain="members.example.org", verification_token="t")
    directory = DatabaseTenantDirectory(db)
    assert directory.by_verified_domain("members.example.org") is None

    crud_domain.mark_verification_failed(db, record.id)
    assert directory.by_verified_domain("members.example.org") is None

    crud_domain.mark_verified(db, record.id)
    assert directory.by_verified_domain("members.example.org").id == org_a.id


def test_hint_by_slug_or_id(db, org_a):
    directory = DatabaseTenantDirectory(db)
    assert directory.by_hint("alpha").id == org_a.id
    assert directory.by_hint("ALPHA").id == org_a.id
    assert directory.by_hint(str(org_a.id)).id == org_a.id
    assert directory.by_hint("missing") is None


def test_inactive_organization_is_not_resolved(db):
    org = Organization(slug="dormant", name="Dormant Society", is_active=False)
    db.add(org)
    db.commit()
    record = crud_domain.create(db, organization_id=org.id, domain="dormant.example.org", verification_token="t")
    crud_domain.mark_verified(db, record.id)

    directory = DatabaseTenantDirectory(db)
    assert directory.by_slug("dormant") is None
    assert directory.by_hint("dormant") is None
    assert directory.by_verified_domain("dormant.example.org") is None


def test_resolve_against_database(db, org_a, org_b):
    record = crud_domain.create(db, organization_id=org_b.id, domain="bravo.example.org", verification_token="t")
    crud_domain.mark_verified(db, record.id)
    directory = DatabaseTenantDirectory(db)

    by_domain = _resolve("bravo.example.org", directory=directory)
    by_slug = _resolve("alpha.m.ringing.org.uk", directory=directory)

    assert by_domain.organization.id == org_b.id
    assert by_slug.organization.id == org_a.id
