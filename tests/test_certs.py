"""Tests for certificate management and certbot invocation."""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from hostgate.certs.certbot import CertbotClient
from hostgate.certs.manager import CertificateManager, CertificateOperation, CertPaths
from hostgate.core.config import CertbotConfig
from hostgate.core.process import CommandResult

from conftest import FakeCertificateClient, failed, ok, write_certificate

DOMAIN = "shop.mycompany.com"


@pytest.fixture
def manager(cert_client: FakeCertificateClient, tmp_path: Path) -> CertificateManager:
    return CertificateManager(cert_client, certs_root=tmp_path / "live")


class TestCertPaths:
    """Tests for certificate path layout."""

    def test_layout(self):
        paths = CertPaths.for_domain("/etc/letsencrypt/live", DOMAIN)

        assert paths.cert == f"/etc/letsencrypt/live/{DOMAIN}/cert.pem"
        assert paths.fullchain == f"/etc/letsencrypt/live/{DOMAIN}/fullchain.pem"
        assert paths.privkey == f"/etc/letsencrypt/live/{DOMAIN}/privkey.pem"
        assert paths.chain == f"/etc/letsencrypt/live/{DOMAIN}/chain.pem"


class TestGetInfo:
    """Tests for reading certificate metadata."""

    async def test_missing(self, manager):
        info = await manager.get_info(DOMAIN)

        assert not info.exists
        assert not info.valid
        assert info.error == "Certificate not found"

    async def test_valid(self, manager, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, 45.5)

        info = await manager.get_info(DOMAIN)

        assert info.exists
        assert info.valid
        assert info.days_until_expiry == 45
        assert "Test CA" in info.issuer

    async def test_expired(self, manager, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, -2.5)

        info = await manager.get_info(DOMAIN)

        assert info.exists
        assert not info.valid
        assert info.days_until_expiry == -3

    async def test_unreadable(self, manager, tmp_path):
        base = tmp_path / "live" / DOMAIN
        base.mkdir(parents=True)
        (base / "cert.pem").write_text("not a certificate")

        info = await manager.get_info(DOMAIN)

        assert info.exists
        assert not info.valid
        assert info.error.startswith("Failed to read certificate")


class TestRequest:
    """Tests for certificate issuance."""

    async def test_success(self, manager, cert_client):
        op = await manager.request(DOMAIN, "owner@example.org")

        assert op.success
        assert op.changed
        assert op.info.days_until_expiry >= 89
        assert cert_client.calls == [("request", DOMAIN)]

    async def test_client_failure(self, manager, cert_client):
        cert_client.request_result = failed(["certbot"], stderr="Challenge failed for domain")

        op = await manager.request(DOMAIN, "owner@example.org")

        assert not op.success
        assert "Challenge failed" in op.message
        assert op.stderr == "Challenge failed for domain"

    async def test_timeout(self, manager, cert_client):
        cert_client.request_result = CommandResult(
            argv=["certbot"], returncode=None, duration=120.0, timed_out=True
        )

        op = await manager.request(DOMAIN, "owner@example.org")

        assert not op.success
        assert "timed out" in op.error

    async def test_success_without_files(self, manager, cert_client):
        cert_client.write_on_request = False

        op = await manager.request(DOMAIN, "owner@example.org")

        assert not op.success
        assert "certificate file not found" in op.message


class TestRenew:
    """Tests for certificate renewal."""

    async def test_renewed(self, manager, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, 10)

        op = await manager.renew(DOMAIN)

        assert op.success
        assert op.changed
        assert op.info.days_until_expiry >= 89

    async def test_not_due(self, manager, cert_client, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, 60)
        cert_client.renew_output = "Certificate not yet due for renewal"

        op = await manager.renew(DOMAIN)

        assert op.success
        assert not op.changed
        assert "not yet due" in op.message

    async def test_unrecognized_output(self, manager, cert_client):
        cert_client.renew_output = "something else entirely"

        op = await manager.renew(DOMAIN)

        assert not op.success
        assert "status unclear" in op.message

    async def test_markers_on_stderr(self, manager, cert_client, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, 60)
        cert_client.renew_result = ok(["certbot"], stderr="Certificate is up to date")

        op = await manager.renew(DOMAIN)

        assert op.success

    async def test_failure(self, manager, cert_client):
        cert_client.renew_result = failed(["certbot"], stderr="rate limited")

        op = await manager.renew(DOMAIN)

        assert not op.success
        assert op.error == "rate limited"


class TestRevoke:
    """Tests for certificate deletion."""

    async def test_success(self, manager, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, 60)

        op = await manager.revoke(DOMAIN)

        assert op.success
        assert not (tmp_path / "live" / DOMAIN).exists()

    async def test_failure(self, manager, cert_client):
        cert_client.delete_result = failed(["certbot"], stderr="No certificate found")

        op = await manager.revoke(DOMAIN)

        assert not op.success
        assert "No certificate found" in op.message


class TestInventory:
    """Tests for client installation and certificate listing."""

    async def test_installed(self, manager, tmp_path):
        write_certificate(tmp_path / "live", DOMAIN, 60)

        inventory = await manager.inventory()

        assert inventory == {"installed": True, "version": "2.11.0", "certificates": [DOMAIN]}

    async def test_not_installed(self, manager):
        manager.client.version = AsyncMock(return_value=None)
        manager.client.list_certificates = AsyncMock()

        inventory = await manager.inventory()

        assert inventory == {"installed": False, "version": None, "certificates": []}
        manager.client.list_certificates.assert_not_awaited()


class TestCertbotClient:
    """Tests for certbot argument construction."""

    async def test_request_argv(self):
        client = CertbotClient(CertbotConfig(request_timeout=120.0))
        run = AsyncMock(return_value=ok(["certbot"]))

        with patch("hostgate.certs.certbot.run_command", run):
            await client.request(DOMAIN, "owner@example.org")

        argv = run.call_args.args[0]
        assert argv == [
            "certbot",
            "certonly",
            "--nginx",
            "-d",
            DOMAIN,
            "--non-interactive",
            "--agree-tos",
            "--email",
            "owner@example.org",
            "--no-eff-email",
        ]
        assert run.call_args.kwargs["timeout"] == 120.0

    async def test_sudo_prefix(self):
        client = CertbotClient(CertbotConfig(use_sudo=True))
        run = AsyncMock(return_value=ok(["certbot"]))

        with patch("hostgate.certs.certbot.run_command", run):
            await client.renew(DOMAIN)

        argv = run.call_args.args[0]
        assert argv[:3] == ["sudo", "certbot", "renew"]
        assert "--cert-name" in argv
        assert run.call_args.kwargs["timeout"] == 120.0

    async def test_delete_timeout(self):
        client = CertbotClient(CertbotConfig())
        run = AsyncMock(return_value=ok(["certbot"]))

        with patch("hostgate.certs.certbot.run_command", run):
            await client.delete(DOMAIN)

        assert run.call_args.args[0][:2] == ["certbot", "delete"]
        assert run.call_args.kwargs["timeout"] == 60.0

    async def test_list_certificates(self):
        output = (
            "Found the following certs:\n"
            "  Certificate Name: shop.mycompany.com\n"
            "    Domains: shop.mycompany.com\n"
            "  Certificate Name: store.other.org\n"
        )
        client = CertbotClient()

        with patch("hostgate.certs.certbot.run_command", AsyncMock(return_value=ok(["certbot"], stdout=output))):
            names = await client.list_certificates()

        assert names == ["shop.mycompany.com", "store.other.org"]

    async def test_version_from_stderr(self):
        client = CertbotClient()
        result = ok(["certbot"], stderr="certbot 1.21.0")

        with patch("hostgate.certs.certbot.run_command", AsyncMock(return_value=result)):
            assert await client.version() == "1.21.0"

    async def test_version_unavailable(self):
        client = CertbotClient()
        result = CommandResult(argv=["certbot"], returncode=None, error="Failed to start certbot")

        with patch("hostgate.certs.certbot.run_command", AsyncMock(return_value=result)):
            assert await client.version() is None


class TestResultShapes:
    """Result types carry only the fields callers read."""

    def test_command_result_fields(self):
        names = {f.name for f in fields(CommandResult)}
        assert names == {"argv", "returncode", "stdout", "stderr", "duration", "timed_out", "error"}

    def test_certificate_operation_fields(self):
        names = {f.name for f in fields(CertificateOperation)}
        assert names == {"success", "message", "changed", "info", "stdout", "stderr", "error"}
