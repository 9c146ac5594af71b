"""Pytest configuration and fixtures."""
import os

# The app's default engine is never used by tests; keep it off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
from typing import Dict, List, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import sessionmaker

from app.core.security import create_access_token
from app.db.base_class import Base
from app.db.session import build_engine
from app.exceptions import DnsLookupError, ProxyConfigError
from app.models.organization import Organization
from app.models.profile import Profile
from app.services.certificates import IssuerOutcome
from app.services.proxy_config import SiteState

DOMAINS_URL = "/api/v1/domains"


# --- Collaborator fakes ---

class FakeResolver:
    """In-memory DNS. Values are record lists, or a DnsLookupError to raise."""

    def __init__(self):
        self.txt: Dict[str, object] = {}
        self.a: Dict[str, object] = {}
        self.cname: Dict[str, object] = {}
        self.queries: List[str] = []

    def _answer(self, table, name):
        self.queries.append(name)
        value = table.get(name)
        if isinstance(value, DnsLookupError):
            raise value
        if value is None:
            raise DnsLookupError("NXDOMAIN", f"{name} does not exist")
        return value

    def txt_records(self, name):
        return self._answer(self.txt, name)

    def a_records(self, name):
        return self._answer(self.a, name)

    def cname_records(self, name):
        return self._answer(self.cname, name)


class FakeIssuer:
    def __init__(self, outcome: Optional[IssuerOutcome] = None):
        self.outcome = outcome or IssuerOutcome(True, "Successfully received certificate.", 0)
        self.calls: List[tuple] = []

    def issue(self, domain, *, renew=False):
        self.calls.append((domain, renew))
        return self.outcome


class FakeProxy:
    def __init__(self):
        self.states: Dict[str, SiteState] = {}
        self.tls: Dict[str, bool] = {}
        self.certificates = set()
        self.calls: List[tuple] = []
        self.fail_enable: Optional[ProxyConfigError] = None

    def site_name(self, domain):
        return f"membership-system-{domain}"

    def site_state(self, domain):
        return self.states.get(domain, SiteState.ABSENT)

    def has_certificate(self, domain):
        return domain in self.certificates

    def enable_domain(self, domain, tls=False):
        self.calls.append(("enable", domain, tls))
        if self.fail_enable:
            raise self.fail_enable
        self.states[domain] = SiteState.ACTIVE
        self.tls[domain] = tls

    def disable_domain(self, domain):
        self.calls.append(("disable", domain))
        if self.states.get(domain) != SiteState.ACTIVE:
            return False
        self.states[domain] = SiteState.ABSENT
        return True

    def list_sites(self):
        return [
            {"domain": d, "enabled": s == SiteState.ACTIVE, "certificate": d in self.certificates}
            for d, s in sorted(self.states.items())
        ]


# --- Database ---

@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite per test, fresh tables every time."""
    import app.models  # noqa: F401

    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# --- Seed data ---

def _org(db, slug, name, is_active=True):
    org = Organization(id=uuid.uuid4(), slug=slug, name=name, is_active=is_active)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def _profile(db, org, role, email):
    profile = Profile(
        id=uuid.uuid4(),
        organization_id=org.id if org else None,
        email=email,
        role=role,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


@pytest.fixture
def org_a(db):
    return _org(db, "alpha", "Alpha Ringers")


@pytest.fixture
def org_b(db):
    return _org(db, "bravo", "Bravo Guild")


@pytest.fixture
def admin_a(db, org_a):
    return _profile(db, org_a, "admin", "admin@alpha.test")


@pytest.fixture
def admin_b(db, org_b):
    return _profile(db, org_b, "admin", "admin@bravo.test")


@pytest.fixture
def member_a(db, org_a):
    return _profile(db, org_a, "member", "member@alpha.test")


@pytest.fixture
def super_admin(db):
    return _profile(db, None, "super_admin", "root@platform.test")


def auth_headers(profile: Profile) -> dict:
    return {"Authorization": f"Bearer {create_access_token(profile.id)}"}


# --- Fakes ---

@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def issuer():
    return FakeIssuer()


@pytest.fixture
def proxy():
    return FakeProxy()


# --- HTTP client ---

@pytest.fixture
async def client(session_factory, resolver, issuer, proxy):
    """
    Async HTTP client against the app with:
      - get_db and the middleware session factory on the test database
      - DNS, ACME and nginx collaborators replaced by fakes
    """
    from app.main import app as fastapi_app
    from app.api import deps

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[deps.get_db] = _override_get_db
    fastapi_app.dependency_overrides[deps.get_dns_resolver] = lambda: resolver
    fastapi_app.dependency_overrides[deps.get_certificate_issuer] = lambda: issuer
    fastapi_app.dependency_overrides[deps.get_proxy_manager] = lambda: proxy

    previous_factory = fastapi_app.state.session_factory
    fastapi_app.state.session_factory = session_factory

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Teardown
    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.session_factory = previous_factory
