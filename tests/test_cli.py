"""Tests for Brandlink CLI."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from brandlink.cli import main
from brandlink.core.config import clear_config
from brandlink.domains import DNSVerifier, VerificationOutcome, VerificationReport

TARGET = "cname.brandlink.link"


@pytest.fixture(autouse=True)
def reset_config():
    clear_config()
    yield
    clear_config()


@pytest.fixture
def temp_storage():
    """Create a temporary storage file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        f.write("{}")
        path = Path(f.name)
    yield str(path)
    path.unlink(missing_ok=True)


@pytest.fixture
def run(temp_storage):
    runner = CliRunner()

    def invoke(*args, tenant="acme", input=None):
        return runner.invoke(
            main,
            ["domain", "--tenant", tenant, "--storage", temp_storage, *args],
            input=input,
        )

    return invoke


def dns_answer(outcome: VerificationOutcome, **kwargs):
    report = VerificationReport("links.example.com", outcome, "CNAME", TARGET, **kwargs)
    return patch.object(DNSVerifier, "check_record", new=AsyncMock(return_value=report))


def list_domains(run, tenant="acme"):
    result = run("list", "--json", tenant=tenant)
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestCLIBasics:
    """Basic CLI tests."""

    def test_main_with_help(self):
        """Test --help shows help message."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "branded custom domains" in result.output
        assert "domain" in result.output

    def test_version_command(self):
        """Test version command."""
        runner = CliRunner()
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "Version:" in result.output
        assert "Python:" in result.output

    def test_domain_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["domain", "--help"])

        assert result.exit_code == 0
        for command in ("add", "verify", "list", "set-default", "remove"):
            assert command in result.output


class TestDomainCommands:
    """Tests for the domain command group."""

    def test_add(self, run):
        result = run("add", "example.com", "--subdomain", "links")

        assert result.exit_code == 0, result.output
        assert "Domain registered successfully" in result.output
        assert "CNAME" in result.output
        assert TARGET in result.output

        domains = list_domains(run)
        assert [d["fullDomain"] for d in domains] == ["links.example.com"]
        assert domains[0]["status"] == "pending"
        assert domains[0]["verificationStatus"] == "unverified"

    def test_add_apex(self, run):
        result = run("add", "example.com")

        assert result.exit_code == 0, result.output
        assert "TXT" in result.output

    def test_add_invalid(self, run):
        result = run("add", "localhost")

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert list_domains(run) == []

    def test_add_duplicate(self, run):
        run("add", "example.com", "--subdomain", "links")
        result = run("add", "example.com", "--subdomain", "links")

        assert result.exit_code == 1
        assert "already registered" in result.output

    def test_list_empty(self, run):
        result = run("list")

        assert result.exit_code == 0
        assert "No domains registered" in result.output

    def test_list_is_tenant_scoped(self, run):
        run("add", "example.com", "--subdomain", "links")
        run("add", "globex.com", tenant="globex")

        assert [d["fullDomain"] for d in list_domains(run)] == ["links.example.com"]
        assert [d["fullDomain"] for d in list_domains(run, tenant="globex")] == ["globex.com"]

    def test_list_table(self, run):
        run("add", "example.com", "--subdomain", "links")
        result = run("list")

        assert result.exit_code == 0
        assert "links.example.com" in result.output

    def test_verify_success(self, run):
        run("add", "example.com", "--subdomain", "links")

        with dns_answer(VerificationOutcome.VERIFIED):
            result = run("verify", "links.example.com")

        assert result.exit_code == 0, result.output
        assert "Domain verified successfully" in result.output
        domain = list_domains(run)[0]
        assert domain["verificationStatus"] == "verified"
        assert domain["status"] == "pending"

    def test_verify_mismatch(self, run):
        run("add", "example.com", "--subdomain", "links")

        with dns_answer(VerificationOutcome.MISMATCH, found=["wrong.example.net"]):
            result = run("verify", "links.example.com")

        assert result.exit_code == 1
        assert "mismatch" in result.output
        assert list_domains(run)[0]["verificationStatus"] == "unverified"

    def test_verify_unknown(self, run):
        result = run("verify", "nope.example.com")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_status(self, run):
        run("add", "example.com", "--subdomain", "links")

        result = run("status", "links.example.com")

        assert result.exit_code == 0, result.output
        assert "pending_verification" in result.output
        assert "DNS Setup Required" in result.output

    def test_promote_and_set_default(self, run):
        run("add", "example.com", "--subdomain", "one")
        run("add", "example.com", "--subdomain", "two")
        with dns_answer(VerificationOutcome.VERIFIED):
            run("verify", "one.example.com")
            run("verify", "two.example.com")

        result = run("promote", "one.example.com")
        assert result.exit_code == 0, result.output
        assert "(default)" in result.output
        assert run("promote", "two.example.com").exit_code == 0

        result = run("set-default", "two.example.com")

        assert result.exit_code == 0, result.output
        defaults = {d["fullDomain"]: d["isDefault"] for d in list_domains(run)}
        assert defaults == {"one.example.com": False, "two.example.com": True}

    def test_promote_unverified(self, run):
        run("add", "example.com", "--subdomain", "links")

        result = run("promote", "links.example.com")

        assert result.exit_code == 1
        assert "must be verified" in result.output

    def test_set_default_not_active(self, run):
        run("add", "example.com", "--subdomain", "links")

        result = run("set-default", "links.example.com")

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_settings(self, run):
        run("add", "example.com", "--subdomain", "links")

        result = run("settings", "links.example.com", "--notes", "spring sale", "--redirect-type", "301")

        assert result.exit_code == 0, result.output
        domain = list_domains(run)[0]
        assert domain["notes"] == "spring sale"
        assert domain["redirectType"] == 301

    def test_remove_with_yes(self, run):
        run("add", "example.com", "--subdomain", "links")

        result = run("remove", "links.example.com", "--yes")

        assert result.exit_code == 0, result.output
        assert "Domain removed" in result.output
        assert list_domains(run) == []

    def test_remove_cancelled(self, run):
        run("add", "example.com", "--subdomain", "links")

        result = run("remove", "links.example.com", input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert len(list_domains(run)) == 1

    def test_remove_default(self, run):
        run("add", "example.com", "--subdomain", "links")
        with dns_answer(VerificationOutcome.VERIFIED):
            run("verify", "links.example.com")
        run("promote", "links.example.com")

        result = run("remove", "links.example.com", "--yes")

        assert result.exit_code == 1
        assert "default domain" in result.output
        assert len(list_domains(run)) == 1

    def test_sweep(self, run):
        run("add", "example.com", "--subdomain", "links")

        with dns_answer(VerificationOutcome.NOT_FOUND):
            result = run("sweep")

        assert result.exit_code == 0, result.output
        assert "not_found" in result.output


class TestConfigCommands:
    """Tests for the config command group."""

    def test_show_json(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert set(data) == {"domains", "api", "server"}

    def test_show_section(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--json", "--section", "domains"])

        assert result.exit_code == 0
        assert list(json.loads(result.output)) == ["domains"]

    def test_show_unknown_section(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--section", "bogus"])

        assert result.exit_code == 1
        assert "Unknown section" in result.output

    def test_show_from_file(self, tmp_path):
        path = tmp_path / "brandlink.yaml"
        path.write_text("domains:\n  cname_target: edge.example.net\n")

        runner = CliRunner()
        # --config exports BRANDLINK_CONFIG_FILE; env= restores it afterwards
        result = runner.invoke(
            main,
            ["--config", str(path), "config", "show", "--json"],
            env={"BRANDLINK_CONFIG_FILE": str(path)},
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["domains"]["cname_target"] == "edge.example.net"

    def test_export(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "export"])

        assert result.exit_code == 0
        assert "export BRANDLINK_CNAME_TARGET=" in result.output

    def test_validate(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "validate"])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
