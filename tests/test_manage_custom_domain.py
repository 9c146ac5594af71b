"""Operator CLI subcommands against fakes."""
from types import SimpleNamespace

import pytest

from app.crud import crud_domain
from app.exceptions import InvalidInput
from app.services.certificates import IssuerOutcome
from scripts import manage_custom_domain as cli
from tests.conftest import FakeIssuer


def _args(*argv):
    return cli.build_parser().parse_args(list(argv))


def test_parser_dispatch():
    args = _args("ssl", "example.org")
    assert args.func is cli.cmd_ssl
    assert args.domain == "example.org"
    assert _args("list").func is cli.cmd_list


def test_list_sites(db, org_a, proxy, capsys):
    crud_domain.create(db, organization_id=org_a.id, domain="example.org", verification_token="t")
    proxy.enable_domain("example.org")

    assert cli.cmd_list(_args("list"), db, proxy) == 0

    out = capsys.readouterr().out
    assert "example.org" in out
    assert "enabled" in out
    assert "pending" in out


def test_enable_refuses_unverified(db, org_a, proxy):
    crud_domain.create(db, organization_id=org_a.id, domain="example.org", verification_token="t")
    assert cli.cmd_enable(_args("enable", "example.org"), db, proxy) == 1
    assert proxy.calls == []


def test_verify_then_ssl(db, org_a, resolver, proxy, monkeypatch, capsys):
    crud_domain.create(db, organization_id=org_a.id, domain="example.org", verification_token="tok")
    issuer = FakeIssuer(IssuerOutcome(True, "Congratulations!", 0))
    monkeypatch.setattr(cli, "DnsResolver", SimpleNamespace(from_settings=lambda: resolver))
    monkeypatch.setattr(cli, "CertbotIssuer", SimpleNamespace(from_settings=lambda: issuer))

    assert cli.cmd_verify(_args("verify", "Example.org"), db, proxy) == 1
    assert "expected: tok" in capsys.readouterr().out

    resolver.txt["_verification.example.org"] = [["tok"]]
    assert cli.cmd_verify(_args("verify", "example.org"), db, proxy) == 0
    assert proxy.calls == [("enable", "example.org", False)]

    assert cli.cmd_ssl(_args("ssl", "example.org"), db, proxy) == 0
    assert issuer.calls == [("example.org", False)]
    db.expire_all()
    assert crud_domain.get_by_domain(db, "example.org").ssl_status == "issued"


def test_disable(db, proxy, capsys):
    proxy.enable_domain("example.org")
    assert cli.cmd_disable(_args("disable", "example.org"), db, proxy) == 0
    assert "certificate left in place" in capsys.readouterr().out


def test_unknown_domain(db, proxy, capsys):
    assert cli.cmd_ssl(_args("ssl", "missing.example.org"), db, proxy) == 1
    assert "No domain record" in capsys.readouterr().out


def test_disable_rejects_path_like_domain(db, proxy):
    with pytest.raises(InvalidInput):
        cli.cmd_disable(_args("disable", "../../sites-available/default"), db, proxy)
    assert proxy.calls == []
