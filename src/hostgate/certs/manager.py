"""Certificate lifecycle operations on top of a CertificateClient.

Certificate materials live at {certs_root}/{domain}/{cert,fullchain,privkey,chain}.pem.
Expiry is always read from the certificate itself, never from stored state.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from cryptography import x509

from hostgate.certs.certbot import CertificateClient
from hostgate.observability.metrics import CERTIFICATE_DAYS_LEFT

logger = structlog.get_logger()

NOT_DUE_MARKER = "Certificate not yet due for renewal"
RENEWED_MARKERS = ("Successfully renewed certificate", "Certificate is up to date")


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class CertPaths:
    """Filesystem locations of one domain's certificate materials."""

    cert: str
    fullchain: str
    privkey: str
    chain: str

    @classmethod
    def for_domain(cls, certs_root: str | Path, domain: str) -> CertPaths:
        base = Path(certs_root) / domain
        return cls(
            cert=str(base / "cert.pem"),
            fullchain=str(base / "fullchain.pem"),
            privkey=str(base / "privkey.pem"),
            chain=str(base / "chain.pem"),
        )


@dataclass
class CertificateInfo:
    """Metadata read from a certificate file."""

    domain: str
    exists: bool
    paths: CertPaths
    expires_at: datetime | None = None
    days_until_expiry: int | None = None
    issuer: str | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.exists and self.days_until_expiry is not None and self.days_until_expiry > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "exists": self.exists,
            "valid": self.valid,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "days_until_expiry": self.days_until_expiry,
            "issuer": self.issuer,
            "certificate_path": self.paths.cert,
            "fullchain_path": self.paths.fullchain,
            "error": self.error,
        }


@dataclass
class CertificateOperation:
    """Outcome of a request, renew or revoke."""

    success: bool
    message: str
    changed: bool = False
    info: CertificateInfo | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None


class CertificateManager:
    """Drives the certificate client and reads certificate metadata."""

    def __init__(
        self,
        client: CertificateClient,
        certs_root: str | Path = "/etc/letsencrypt/live",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client = client
        self.certs_root = Path(certs_root)
        self._clock = clock

    def cert_paths(self, domain: str) -> CertPaths:
        return CertPaths.for_domain(self.certs_root, domain)

    async def get_info(self, domain: str) -> CertificateInfo:
        """Read existence and expiry of a domain's certificate.

        A missing file is reported through exists=False; an unreadable one
        through error with exists=True.
        """
        paths = self.cert_paths(domain)
        cert_file = Path(paths.cert)

        if not await asyncio.to_thread(cert_file.exists):
            return CertificateInfo(
                domain=domain, exists=False, paths=paths, error="Certificate not found"
            )

        try:
            pem = await asyncio.to_thread(cert_file.read_bytes)
            cert = x509.load_pem_x509_certificate(pem)
        except (OSError, ValueError) as e:
            logger.warning("Certificate unreadable", domain=domain, error=str(e))
            return CertificateInfo(
                domain=domain,
                exists=True,
                paths=paths,
                error=f"Failed to read certificate: {e}",
            )

        expires_at = cert.not_valid_after_utc
        days = math.floor((expires_at - self._clock()).total_seconds() / 86400)
        CERTIFICATE_DAYS_LEFT.labels(domain=domain).set(days)
        return CertificateInfo(
            domain=domain,
            exists=True,
            paths=paths,
            expires_at=expires_at,
            days_until_expiry=days,
            issuer=cert.issuer.rfc4514_string(),
        )

    async def fullchain_exists(self, domain: str) -> bool:
        return await asyncio.to_thread(Path(self.cert_paths(domain).fullchain).exists)

    async def request(self, domain: str, email: str) -> CertificateOperation:
        """Issue a certificate and confirm it landed on disk."""
        result = await self.client.request(domain, email)
        if not result.ok:
            return CertificateOperation(
                success=False,
                message=f"Failed to request SSL certificate: {result.describe_failure()}",
                stdout=result.stdout,
                stderr=result.stderr,
                error=result.describe_failure(),
            )

        if not await self.fullchain_exists(domain):
            fullchain = self.cert_paths(domain).fullchain
            logger.error("Issued certificate missing on disk", domain=domain, path=fullchain)
            return CertificateOperation(
                success=False,
                message=(
                    "Certificate request appeared to succeed but certificate file "
                    f"not found at {fullchain}"
                ),
                stdout=result.stdout,
                stderr=result.stderr,
                error="Certificate file not found",
            )

        info = await self.get_info(domain)
        if not info.valid:
            return CertificateOperation(
                success=False,
                message=f"Issued certificate for {domain} could not be validated",
                info=info,
                stdout=result.stdout,
                stderr=result.stderr,
                error=info.error or "Certificate is not valid",
            )

        return CertificateOperation(
            success=True,
            changed=True,
            message=f"SSL certificate successfully issued for {domain}",
            info=info,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    async def renew(self, domain: str) -> CertificateOperation:
        """Renew a certificate; "not yet due" counts as success without change."""
        result = await self.client.renew(domain)
        if not result.ok:
            return CertificateOperation(
                success=False,
                message=f"Failed to renew SSL certificate: {result.describe_failure()}",
                stdout=result.stdout,
                stderr=result.stderr,
                error=result.describe_failure(),
            )

        output = result.output
        if NOT_DUE_MARKER in output:
            return CertificateOperation(
                success=True,
                changed=False,
                message=f"Certificate for {domain} is not yet due for renewal",
                info=await self.get_info(domain),
                stdout=result.stdout,
                stderr=result.stderr,
            )

        if any(marker in output for marker in RENEWED_MARKERS):
            return CertificateOperation(
                success=True,
                changed=True,
                message=f"SSL certificate successfully renewed for {domain}",
                info=await self.get_info(domain),
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return CertificateOperation(
            success=False,
            message=f"Certificate renewal status unclear for {domain}",
            stdout=result.stdout,
            stderr=result.stderr,
            error="Unrecognized certbot output",
        )

    async def revoke(self, domain: str) -> CertificateOperation:
        """Delete certificate materials. Callers treat failure as best-effort."""
        result = await self.client.delete(domain)
        if result.ok:
            return CertificateOperation(
                success=True,
                changed=True,
                message=f"SSL certificate successfully revoked for {domain}",
                stdout=result.stdout,
                stderr=result.stderr,
            )
        logger.warning("Certificate delete failed", domain=domain, error=result.describe_failure())
        return CertificateOperation(
            success=False,
            message=f"Failed to revoke SSL certificate: {result.describe_failure()}",
            stdout=result.stdout,
            stderr=result.stderr,
            error=result.describe_failure(),
        )

    async def check_installed(self) -> dict[str, Any]:
        version = await self.client.version()
        return {"installed": version is not None, "version": version}

    async def inventory(self) -> dict[str, Any]:
        """Client installation plus the certificate names it manages."""
        status = await self.check_installed()
        status["certificates"] = await self.client.list_certificates() if status["installed"] else []
        return status
