"""certbot invocation.

Every call shells out without a shell and returns the CommandResult; callers
decide what success means.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

import structlog

from hostgate.core.config import CertbotConfig
from hostgate.core.process import CommandResult, run_command

logger = structlog.get_logger()

CERT_NAME_RE = re.compile(r"Certificate Name: ([^\n]+)")
VERSION_RE = re.compile(r"certbot (\d+\.\d+\.\d+)")


class CertificateClient(ABC):
    """ACME-capable certificate client."""

    @abstractmethod
    async def request(self, domain: str, email: str) -> CommandResult:
        """Issue a certificate using the proxy-integrated HTTP-01 challenge."""

    @abstractmethod
    async def renew(self, domain: str) -> CommandResult: ...

    @abstractmethod
    async def delete(self, domain: str) -> CommandResult: ...

    @abstractmethod
    async def list_certificates(self) -> list[str]: ...

    @abstractmethod
    async def version(self) -> str | None:
        """Installed client version, or None when it cannot be run."""


class CertbotClient(CertificateClient):
    """Runs the certbot CLI."""

    def __init__(self, config: CertbotConfig | None = None) -> None:
        self.config = config or CertbotConfig()

    def _argv(self, *args: str) -> list[str]:
        base = ["sudo", self.config.binary] if self.config.use_sudo else [self.config.binary]
        return [*base, *args]

    async def request(self, domain: str, email: str) -> CommandResult:
        logger.info("Requesting certificate", domain=domain)
        return await run_command(
            self._argv(
                "certonly",
                "--nginx",
                "-d",
                domain,
                "--non-interactive",
                "--agree-tos",
                "--email",
                email,
                "--no-eff-email",
            ),
            timeout=self.config.request_timeout,
            tool="certbot",
        )

    async def renew(self, domain: str) -> CommandResult:
        logger.info("Renewing certificate", domain=domain)
        return await run_command(
            self._argv("renew", "--cert-name", domain, "--non-interactive"),
            timeout=self.config.renew_timeout,
            tool="certbot",
        )

    async def delete(self, domain: str) -> CommandResult:
        logger.info("Deleting certificate", domain=domain)
        return await run_command(
            self._argv("delete", "--cert-name", domain, "--non-interactive"),
            timeout=self.config.revoke_timeout,
            tool="certbot",
        )

    async def list_certificates(self) -> list[str]:
        result = await run_command(self._argv("certificates"), timeout=30.0, tool="certbot")
        if not result.ok:
            logger.warning("Could not list certificates", error=result.describe_failure())
            return []
        return [name.strip() for name in CERT_NAME_RE.findall(result.stdout)]

    async def version(self) -> str | None:
        result = await run_command([self.config.binary, "--version"], timeout=10.0, tool="certbot")
        if not result.ok:
            return None
        # Older releases print the version on stderr.
        match = VERSION_RE.search(result.output)
        return match.group(1) if match else result.output.strip()
