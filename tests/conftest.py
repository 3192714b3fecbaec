"""Shared fixtures: in-process stand-ins for DNS, certbot and nginx."""

from __future__ import annotations

import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from hostgate.certs.certbot import CertificateClient
from hostgate.core.config import HostgateConfig
from hostgate.core.process import CommandResult
from hostgate.domains.verification import NoSuchRecordError, Resolver
from hostgate.lifecycle.factory import build_lifecycle
from hostgate.lifecycle.machine import DomainLifecycle
from hostgate.proxy.controller import ProxyController
from hostgate.security.ratelimit import MemoryAttemptLimiter, RateLimitConfig
from hostgate.tenants.models import TenantRecord
from hostgate.tenants.store import MemoryTenantStore

OWNER = "u-owner"
ADMIN = "u-admin"
STRANGER = "u-stranger"


def write_certificate(certs_root: Path, domain: str, days_valid: float) -> Path:
    """Write a self-signed certificate set expiring days_valid from now."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test CA")]))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=120))
        .not_valid_after(now + timedelta(days=days_valid))
        .sign(key, hashes.SHA256())
    )
    pem = cert.public_bytes(serialization.Encoding.PEM)
    base = certs_root / domain
    base.mkdir(parents=True, exist_ok=True)
    (base / "cert.pem").write_bytes(pem)
    (base / "fullchain.pem").write_bytes(pem)
    (base / "chain.pem").write_bytes(pem)
    (base / "privkey.pem").write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return base


def ok(argv: list[str], stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(argv=argv, returncode=0, stdout=stdout, stderr=stderr)


def failed(argv: list[str], stderr: str = "boom") -> CommandResult:
    return CommandResult(argv=argv, returncode=1, stderr=stderr)


class FakeResolver(Resolver):
    """Answers from in-memory record tables."""

    def __init__(self) -> None:
        self.cname: dict[str, list[str]] = {}
        self.txt: dict[str, list[list[str]]] = {}
        self.a: dict[str, list[str]] = {}
        self.error: Exception | None = None
        self.queries: list[tuple[str, str]] = []

    def publish(self, domain: str, target: str, txt_host: str, token: str) -> None:
        self.cname[domain] = [target]
        self.txt[txt_host] = [[token]]

    async def _answer(self, table: dict, name: str, qtype: str):
        self.queries.append((qtype, name))
        if self.error is not None:
            raise self.error
        if name not in table:
            raise NoSuchRecordError(f"No {qtype} record for {name}")
        return table[name]

    async def resolve_cname(self, name: str) -> list[str]:
        return await self._answer(self.cname, name, "CNAME")

    async def resolve_txt(self, name: str) -> list[list[str]]:
        return await self._answer(self.txt, name, "TXT")

    async def resolve_a(self, name: str) -> list[str]:
        return await self._answer(self.a, name, "A")


class FakeCertificateClient(CertificateClient):
    """Writes real certificate files into a temporary live directory."""

    def __init__(self, certs_root: Path) -> None:
        self.certs_root = certs_root
        self.request_result: CommandResult | None = None
        self.renew_output = "Congratulations, all renewals succeeded:\nSuccessfully renewed certificate"
        self.renew_result: CommandResult | None = None
        self.delete_result: CommandResult | None = None
        self.issue_days = 90.0
        self.write_on_request = True
        self.raise_on_request: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def request(self, domain: str, email: str) -> CommandResult:
        self.calls.append(("request", domain))
        if self.raise_on_request is not None:
            raise self.raise_on_request
        argv = ["certbot", "certonly", "-d", domain, "--email", email]
        if self.request_result is not None:
            return self.request_result
        if self.write_on_request:
            write_certificate(self.certs_root, domain, self.issue_days)
        return ok(argv, stdout="Successfully received certificate.")

    async def renew(self, domain: str) -> CommandResult:
        self.calls.append(("renew", domain))
        argv = ["certbot", "renew", "--cert-name", domain]
        if self.renew_result is not None:
            return self.renew_result
        if "Successfully renewed" in self.renew_output:
            write_certificate(self.certs_root, domain, self.issue_days)
        return ok(argv, stdout=self.renew_output)

    async def delete(self, domain: str) -> CommandResult:
        self.calls.append(("delete", domain))
        argv = ["certbot", "delete", "--cert-name", domain]
        if self.delete_result is not None:
            return self.delete_result
        shutil.rmtree(self.certs_root / domain, ignore_errors=True)
        return ok(argv, stdout=f"Deleted all files relating to certificate {domain}.")

    async def list_certificates(self) -> list[str]:
        return sorted(p.name for p in self.certs_root.iterdir()) if self.certs_root.exists() else []

    async def version(self) -> str | None:
        return "2.11.0"


class FakeProxyController(ProxyController):
    """Config test and reload with switchable outcomes."""

    def __init__(self) -> None:
        self.test_ok = True
        self.reload_ok = True
        self.tests = 0
        self.reloads = 0

    async def test(self) -> CommandResult:
        self.tests += 1
        argv = ["nginx", "-t"]
        if self.test_ok:
            return ok(argv, stderr="nginx: configuration file /etc/nginx/nginx.conf test is successful")
        return failed(argv, stderr="nginx: [emerg] unexpected \"}\"")

    async def reload(self) -> CommandResult:
        self.reloads += 1
        argv = ["systemctl", "reload", "nginx"]
        return ok(argv) if self.reload_ok else failed(argv, stderr="Job for nginx.service failed")


def make_tenant(
    tenant_id: str = "t-1",
    slug: str = "acme",
    owner_id: str = OWNER,
    plan: str = "ENTERPRISE",
    status: str = "ACTIVE",
) -> TenantRecord:
    return TenantRecord(
        tenant_id=tenant_id,
        slug=slug,
        owner_id=owner_id,
        contact_email=f"{slug}@example.org",
        subscription_plan=plan,
        subscription_status=status,
    )


@pytest.fixture
def config(tmp_path: Path) -> HostgateConfig:
    return HostgateConfig(
        platform={"domain": "shops.example.net"},
        certbot={"certs_root": str(tmp_path / "live")},
        proxy={
            "sites_available": str(tmp_path / "sites-available"),
            "sites_enabled": str(tmp_path / "sites-enabled"),
        },
        server={"admin_actor_ids": [ADMIN], "cron_secret": "cron-secret"},
        storage={"backend": "memory"},
    )


@pytest.fixture
def store() -> MemoryTenantStore:
    return MemoryTenantStore(
        [
            make_tenant(),
            make_tenant("t-2", slug="globex", owner_id="u-other"),
            make_tenant("t-free", slug="freebie", plan="FREE"),
        ]
    )


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def cert_client(tmp_path: Path) -> FakeCertificateClient:
    return FakeCertificateClient(tmp_path / "live")


@pytest.fixture
def proxy_controller() -> FakeProxyController:
    return FakeProxyController()


@pytest.fixture
def lifecycle(
    config: HostgateConfig,
    store: MemoryTenantStore,
    resolver: FakeResolver,
    cert_client: FakeCertificateClient,
    proxy_controller: FakeProxyController,
) -> DomainLifecycle:
    return build_lifecycle(
        config,
        store=store,
        resolver=resolver,
        certificate_client=cert_client,
        proxy_controller=proxy_controller,
        limiter=MemoryAttemptLimiter(RateLimitConfig(max_attempts=5, window_seconds=3600)),
        churn_limiter=MemoryAttemptLimiter(RateLimitConfig(max_attempts=20, window_seconds=86400)),
    )


def publish_for(resolver: FakeResolver, lifecycle: DomainLifecycle, domain: str, slug: str, token: str) -> None:
    """Publish correct CNAME and TXT records for a claimed domain."""
    resolver.publish(
        domain,
        lifecycle.verifier.expected_cname(slug) + ".",
        lifecycle.verifier.txt_host(domain),
        token,
    )


