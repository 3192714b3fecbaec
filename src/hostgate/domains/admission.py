"""Admission checks for custom domain claims.

A claim passes, in order: ownership, plan entitlement, the attempt limiters,
hostname grammar, the denylist and the uniqueness check. Nothing is persisted
here; the lifecycle applies an AdmissionGrant to the tenant record.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import Any

import structlog

from hostgate.core.config import PlatformConfig
from hostgate.core.errors import (
    Conflict,
    DomainRejected,
    Forbidden,
    InvalidDomain,
    RateLimited,
)
from hostgate.observability.metrics import RATE_LIMIT_REJECTIONS
from hostgate.security.ratelimit import AttemptLimiter
from hostgate.tenants.access import Actor, Authorizer, BillingGate
from hostgate.tenants.models import TenantRecord
from hostgate.tenants.store import TenantStore

logger = structlog.get_logger()

HOSTNAME_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9][a-z0-9-]{0,61}[a-z0-9]$"
)
LABEL_CHARS_RE = re.compile(r"^[a-z0-9-]+$")
IPV4_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
LOCAL_TOKENS = ("localhost", ".local", "internal")
DNS_TTL = 3600


def normalize_domain(domain: str) -> str:
    """Lower-case, trim whitespace and a trailing root dot."""
    return domain.strip().lower().rstrip(".")


def hostname_violations(domain: str) -> list[str]:
    """Return the hostname grammar rules a (normalized) domain breaks."""
    problems: list[str] = []
    if not 3 <= len(domain) <= 253:
        problems.append("Domain must be between 3 and 253 characters")

    labels = domain.split(".")
    if len(labels) < 2:
        problems.append("Domain must contain at least two labels")

    for label in labels:
        if not 1 <= len(label) <= 63:
            problems.append(f"Label '{label}' must be 1-63 characters")
            continue
        if not LABEL_CHARS_RE.match(label):
            problems.append(f"Label '{label}' may only contain letters, digits and hyphens")
        if label.startswith("-") or label.endswith("-"):
            problems.append(f"Label '{label}' must not start or end with a hyphen")

    if len(labels) >= 2 and len(labels[-1]) < 2:
        problems.append("Top-level label must be at least 2 characters")

    if not problems and not HOSTNAME_RE.match(domain):
        problems.append("Invalid domain format")
    return problems


def denylist_reason(domain: str, platform_domain: str, blocked: list[str]) -> str | None:
    """Explain why a domain is on the denylist, or None if it is not.

    Matching is case-insensitive: exact entries, the platform domain and its
    subdomains, localhost/.local/internal substrings and bare IPv4 literals.
    """
    domain = domain.lower()
    platform = platform_domain.lower()

    if domain in {b.lower() for b in blocked}:
        return "Domain is on the blocked list"
    if domain == platform or domain.endswith(f".{platform}"):
        return "Platform domains cannot be used as custom domains"
    for token in LOCAL_TOKENS:
        if token in domain:
            return f"Loopback, local and internal names are not allowed ({token})"
    if IPV4_RE.match(domain):
        return "IP addresses cannot be used as custom domains"
    return None


def generate_verification_token(prefix: str, nbytes: int = 16) -> str:
    """Random hex token with a namespace prefix."""
    return f"{prefix}{secrets.token_hex(nbytes)}"


def cname_host(domain: str) -> str:
    """Record name the tenant enters at their registrar ("@" for an apex)."""
    parts = domain.split(".")
    return ".".join(parts[:-2]) if len(parts) > 2 else "@"


def build_dns_instructions(
    domain: str,
    slug: str,
    token: str,
    platform: PlatformConfig,
) -> dict[str, Any]:
    """DNS records a tenant has to publish, with step-by-step guidance."""
    target = f"{slug}.{platform.domain}"
    host = cname_host(domain)
    txt_host = f"{platform.verification_label}.{domain}"
    return {
        "cname": {"type": "CNAME", "host": host, "value": target, "ttl": DNS_TTL},
        "txt": {
            "type": "TXT",
            "host": txt_host,
            "name": platform.verification_label,
            "value": token,
            "ttl": DNS_TTL,
        },
        "steps": [
            "1. Log in to your domain registrar or DNS provider",
            f"2. Navigate to DNS settings for {domain}",
            "3. Add a CNAME record:",
            "   - Type: CNAME",
            f"   - Name/Host: {host}",
            f"   - Value/Target: {target}",
            f"   - TTL: {DNS_TTL} (or Auto)",
            "4. Add a TXT record for verification:",
            "   - Type: TXT",
            f"   - Name/Host: {platform.verification_label}",
            f"   - Value: {token}",
            f"   - TTL: {DNS_TTL} (or Auto)",
            "5. Save changes and wait 5-10 minutes for DNS propagation",
            "6. Run the DNS verification for your domain",
        ],
    }


NEXT_STEPS = [
    "Configure DNS records as instructed above",
    "Wait for DNS propagation (usually 5-10 minutes, can take up to 48 hours)",
    "Verify DNS from your domain settings",
    "Once verified, request an SSL certificate",
    "Your custom domain is live once the certificate and proxy config are in place",
]


@dataclass
class AdmissionGrant:
    """An admitted claim, ready to be applied to the tenant record."""

    domain: str
    token: str
    instructions: dict[str, Any] = field(default_factory=dict)


class AdmissionController:
    """Validates claims and guards attempt budgets."""

    def __init__(
        self,
        platform: PlatformConfig,
        store: TenantStore,
        authorizer: Authorizer,
        billing: BillingGate,
        limiter: AttemptLimiter,
        churn_limiter: AttemptLimiter | None = None,
    ) -> None:
        self.platform = platform
        self.store = store
        self.authorizer = authorizer
        self.billing = billing
        self.limiter = limiter
        self.churn_limiter = churn_limiter

    @staticmethod
    def attempt_key(tenant_id: str) -> str:
        return f"domain-attempts:{tenant_id}"

    @staticmethod
    def churn_key(actor_id: str) -> str:
        return f"domain-churn:{actor_id}"

    def authorize(self, actor: Actor, record: TenantRecord, allow_admin: bool = False) -> None:
        """Raise Forbidden unless the actor owns the tenant (or is an allowed admin)."""
        if self.authorizer.owns(actor, record):
            return
        if allow_admin and actor.is_admin:
            logger.info(
                "Admin override",
                actor_id=actor.actor_id,
                tenant_id=record.tenant_id,
            )
            return
        raise Forbidden("Not authorized to manage this tenant")

    async def check_entitlement(self, record: TenantRecord) -> None:
        entitlement = await self.billing.entitlement(record)
        if entitlement.allowed:
            return
        if entitlement.plan not in {p.upper() for p in self.platform.entitled_plans}:
            raise Forbidden(
                f"Custom domains are not available on the {entitlement.plan} plan",
                details={
                    "current_plan": entitlement.plan,
                    "required_plans": list(self.platform.entitled_plans),
                },
            )
        raise Forbidden(
            "Your subscription must be active to use a custom domain",
            details={"subscription_status": entitlement.status},
        )

    async def consume_attempt(self, tenant_id: str) -> None:
        """Count one claim/verify attempt against the tenant's budget."""
        result = await self.limiter.hit(self.attempt_key(tenant_id))
        if not result.allowed:
            RATE_LIMIT_REJECTIONS.labels(scope="tenant").inc()
            minutes = max(1, -(-int(result.reset_after) // 60))
            raise RateLimited(
                "Too many domain verification attempts. "
                f"Please try again in {minutes} minutes.",
                reset_in=int(result.reset_after) + 1,
            )

    async def _consume_churn(self, actor: Actor) -> None:
        if self.churn_limiter is None:
            return
        result = await self.churn_limiter.hit(self.churn_key(actor.actor_id))
        if not result.allowed:
            RATE_LIMIT_REJECTIONS.labels(scope="churn").inc()
            raise RateLimited(
                "Too many custom domain claims. Please try again later.",
                reset_in=int(result.reset_after) + 1,
            )

    async def reset_attempts(self, tenant_id: str) -> None:
        await self.limiter.reset(self.attempt_key(tenant_id))

    def validate(self, requested: str) -> str:
        """Normalize a hostname and apply the grammar and denylist checks."""
        domain = normalize_domain(requested)
        problems = hostname_violations(domain)
        if problems:
            raise InvalidDomain("Invalid domain format", rules=problems)

        reason = denylist_reason(
            domain,
            self.platform.domain,
            [*self.platform.blocked_domains, self.platform.domain],
        )
        if reason:
            raise DomainRejected(
                "This domain cannot be used as a custom domain",
                details={"reason": reason},
            )
        return domain

    async def admit_claim(
        self, record: TenantRecord, requested: str, actor: Actor
    ) -> AdmissionGrant:
        """Run every claim check and mint a verification token.

        Raises:
            Forbidden: Not the owner, or the plan does not include custom domains.
            RateLimited: Attempt budget exhausted.
            InvalidDomain: Hostname grammar broken.
            DomainRejected: Hostname is on the denylist.
            Conflict: Another tenant holds the hostname.
        """
        self.authorize(actor, record)
        await self.check_entitlement(record)
        await self.consume_attempt(record.tenant_id)
        await self._consume_churn(actor)

        domain = self.validate(requested)

        holder = await self.store.find_by_domain(domain, exclude_tenant_id=record.tenant_id)
        if holder is not None:
            raise Conflict(
                "This domain is already claimed by another store",
                details={"domain": domain},
            )

        token = generate_verification_token(self.platform.token_prefix, self.platform.token_bytes)
        return AdmissionGrant(
            domain=domain,
            token=token,
            instructions=build_dns_instructions(domain, record.slug, token, self.platform),
        )
