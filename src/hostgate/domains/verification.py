"""DNS verification for custom domain ownership.

This module verifies domain ownership by checking DNS records:
1. CNAME record: Routes traffic to the tenant's platform hostname
2. TXT record: Proves ownership with a verification token

Example DNS setup required by a tenant:
    # CNAME record (routes traffic)
    shop.mycompany.com  CNAME  mytenant.platform.example

    # TXT record (proves ownership)
    _platform-verification.shop.mycompany.com  TXT  "platform-verify-abc123..."

Verification performs no persistence and can be retried freely.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import aiodns
import structlog

logger = structlog.get_logger()


class DNSLookupError(Exception):
    """A DNS query failed for a reason other than the record being absent."""


class NoSuchRecordError(DNSLookupError):
    """The name exists without records of the type, or does not exist at all."""


class Resolver(ABC):
    """Minimal DNS resolver used by verification."""

    @abstractmethod
    async def resolve_cname(self, name: str) -> list[str]:
        """Return CNAME targets of name.

        Raises:
            NoSuchRecordError: No CNAME at name.
            DNSLookupError: Any other resolver failure.
        """

    @abstractmethod
    async def resolve_txt(self, name: str) -> list[list[str]]:
        """Return TXT records of name, each as its list of character-strings."""

    @abstractmethod
    async def resolve_a(self, name: str) -> list[str]:
        """Return IPv4 addresses of name."""


_NO_RECORD_CODES = frozenset(
    code
    for code in (
        getattr(aiodns.error, "ARES_ENODATA", None),
        getattr(aiodns.error, "ARES_ENOTFOUND", None),
    )
    if code is not None
)


def _as_text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class AioDNSResolver(Resolver):
    """Resolver backed by aiodns (c-ares)."""

    def __init__(
        self,
        nameservers: list[str] | None = None,
        timeout: float = 5.0,
        tries: int = 2,
    ) -> None:
        self.nameservers = nameservers or None
        self.timeout = timeout
        self.tries = tries
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create the resolver on the running event loop."""
        if self._resolver is None:
            self._resolver = aiodns.DNSResolver(
                nameservers=self.nameservers,
                timeout=self.timeout,
                tries=self.tries,
            )
        return self._resolver

    async def _query(self, name: str, qtype: str) -> Any:
        resolver = self._get_resolver()
        # c-ares retries internally; bound the whole exchange as well.
        overall = self.timeout * self.tries + 1
        try:
            return await asyncio.wait_for(resolver.query(name, qtype), timeout=overall)
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            text = e.args[1] if len(e.args) > 1 else str(e)
            if code in _NO_RECORD_CODES:
                raise NoSuchRecordError(f"No {qtype} record for {name}") from e
            raise DNSLookupError(f"{qtype} lookup for {name} failed: {text}") from e
        except TimeoutError as e:
            raise DNSLookupError(f"{qtype} lookup for {name} timed out") from e

    async def resolve_cname(self, name: str) -> list[str]:
        result = await self._query(name, "CNAME")
        items = result if isinstance(result, list) else [result]
        return [item.cname for item in items]

    async def resolve_txt(self, name: str) -> list[list[str]]:
        result = await self._query(name, "TXT")
        return [[_as_text(item.text)] for item in result]

    async def resolve_a(self, name: str) -> list[str]:
        result = await self._query(name, "A")
        return [item.host for item in result]


def _normalize_host(value: str) -> str:
    return value.strip().rstrip(".").lower()


@dataclass
class VerificationResult:
    """Result of a domain verification attempt."""

    domain: str
    expected_cname: str
    txt_host: str
    expected_txt: str
    cname_valid: bool = False
    cname_value: str | None = None
    cname_error: str | None = None
    txt_valid: bool = False
    txt_values: list[str] = field(default_factory=list)
    txt_error: str | None = None

    @property
    def overall_valid(self) -> bool:
        return self.cname_valid and self.txt_valid

    @property
    def errors(self) -> list[str]:
        return [e for e in (self.cname_error, self.txt_error) if e]

    @property
    def message(self) -> str:
        if self.overall_valid:
            return "DNS verification successful"
        return "Verification failed: " + ", ".join(self.errors)

    def troubleshooting(self) -> list[str]:
        """Tenant-facing hints for the records that failed."""
        tips: list[str] = []
        if not self.cname_valid:
            tips.append(f"Ensure CNAME record for {self.domain} points to {self.expected_cname}")
        if not self.txt_valid:
            tips.append(f"Ensure TXT record at {self.txt_host} contains: {self.expected_txt}")
        tips.append("DNS changes can take 5-10 minutes to propagate (up to 48 hours in rare cases)")
        tips.append("Use a public DNS checker (e.g. dnschecker.org) to confirm your records")
        return tips

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "overall_valid": self.overall_valid,
            "message": self.message,
            "cname": {
                "valid": self.cname_valid,
                "value": self.cname_value,
                "expected": self.expected_cname,
                "error": self.cname_error,
            },
            "txt": {
                "valid": self.txt_valid,
                "host": self.txt_host,
                "values": self.txt_values,
                "expected": self.expected_txt,
                "error": self.txt_error,
            },
        }


class DNSVerifier:
    """Verifies domain ownership via DNS records.

    Verification requires two DNS records:
    1. CNAME: domain -> {slug}.{platform_domain}
    2. TXT: {verification_label}.domain -> the tenant's token

    Both checks always run so callers can report each outcome.
    """

    def __init__(
        self,
        resolver: Resolver,
        platform_domain: str,
        verification_label: str = "_platform-verification",
    ) -> None:
        """Initialize DNS verifier.

        Args:
            resolver: DNS resolver to query.
            platform_domain: Apex the tenant CNAME target lives under.
            verification_label: Label prefix of the TXT record.
        """
        self.resolver = resolver
        self.platform_domain = platform_domain.lower()
        self.verification_label = verification_label

    def expected_cname(self, slug: str) -> str:
        return f"{slug}.{self.platform_domain}".lower()

    def txt_host(self, domain: str) -> str:
        return f"{self.verification_label}.{domain}"

    async def check_cname(self, domain: str, expected: str) -> tuple[bool, str | None, str | None]:
        """Check the CNAME record.

        Returns:
            Tuple of (is_valid, actual_target, error).
        """
        try:
            targets = [_normalize_host(t) for t in await self.resolver.resolve_cname(domain)]
        except NoSuchRecordError:
            try:
                addresses = await self.resolver.resolve_a(domain)
            except DNSLookupError:
                addresses = []
            if addresses:
                return (
                    False,
                    None,
                    f"Domain uses A record ({addresses[0]}). Please use CNAME instead.",
                )
            return False, None, "No CNAME record found"
        except DNSLookupError as e:
            return False, None, f"DNS lookup failed: {e}"

        if not targets:
            return False, None, "No CNAME record found"
        if expected in targets:
            return True, expected, None
        return False, targets[0], f"CNAME points to {targets[0]}, expected {expected}"

    async def check_txt(self, domain: str, token: str) -> tuple[bool, list[str], str | None]:
        """Check the ownership TXT record.

        Returns:
            Tuple of (is_valid, found_values, error).
        """
        host = self.txt_host(domain)
        try:
            records = await self.resolver.resolve_txt(host)
        except NoSuchRecordError:
            return False, [], f"TXT record not found at {host}"
        except DNSLookupError as e:
            return False, [], f"DNS lookup failed: {e}"

        values = [segment.strip() for record in records for segment in record]
        if token in values:
            return True, values, None
        if not values:
            return False, values, f"TXT record not found at {host}"
        return False, values, "TXT record does not match verification token"

    async def verify(self, domain: str, slug: str, token: str) -> VerificationResult:
        """Verify both records for a domain.

        Args:
            domain: The custom domain to verify.
            slug: Tenant slug the CNAME must target.
            token: Expected TXT value.

        Returns:
            VerificationResult with the outcome of both checks.
        """
        expected = self.expected_cname(slug)
        result = VerificationResult(
            domain=domain,
            expected_cname=expected,
            txt_host=self.txt_host(domain),
            expected_txt=token,
        )

        result.cname_valid, result.cname_value, result.cname_error = await self.check_cname(
            domain, expected
        )
        result.txt_valid, result.txt_values, result.txt_error = await self.check_txt(
            domain, token
        )

        logger.info(
            "DNS verification checked",
            domain=domain,
            cname_valid=result.cname_valid,
            txt_valid=result.txt_valid,
        )
        return result
