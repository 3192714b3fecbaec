"""Tenant domain record.

The record holds the custom-domain and certificate fields of a tenant plus a
few read-only fields owned by other subsystems (ownership, billing) that the
default collaborators read.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class DomainStatus(Enum):
    """Status of a claimed custom domain."""

    PENDING = "PENDING"
    VERIFYING = "VERIFYING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    ACTIVE = "ACTIVE"


class SSLStatus(Enum):
    """Status of the domain's TLS certificate."""

    PENDING = "PENDING"
    REQUESTING = "REQUESTING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class TenantRecord:
    """Custom domain state of one tenant."""

    tenant_id: str
    slug: str
    owner_id: str
    contact_email: str | None = None
    subscription_plan: str = "FREE"
    subscription_status: str = "ACTIVE"
    custom_domain: str | None = None
    custom_domain_verified: bool = False
    custom_domain_status: DomainStatus = DomainStatus.PENDING
    custom_domain_dns_record: str | None = None
    ssl_certificate_status: SSLStatus = SSLStatus.PENDING
    ssl_certificate_expiry: datetime | None = None
    ssl_last_checked_at: datetime | None = None
    ssl_last_renewal_failed: bool = False
    ssl_last_error: str | None = None

    def clone(self) -> TenantRecord:
        return copy.deepcopy(self)

    def reset_domain(self) -> None:
        """Return every domain and certificate field to its default."""
        self.custom_domain = None
        self.custom_domain_verified = False
        self.custom_domain_status = DomainStatus.PENDING
        self.custom_domain_dns_record = None
        self.ssl_certificate_status = SSLStatus.PENDING
        self.ssl_certificate_expiry = None
        self.ssl_last_checked_at = None
        self.ssl_last_renewal_failed = False
        self.ssl_last_error = None

    def invariant_violations(self) -> list[str]:
        """List broken record invariants; empty when the record is consistent."""
        problems: list[str] = []
        if self.custom_domain is None:
            if self.custom_domain_status is not DomainStatus.PENDING:
                problems.append("domain status must be PENDING without a domain")
            if self.ssl_certificate_status is not SSLStatus.PENDING:
                problems.append("ssl status must be PENDING without a domain")
            if self.custom_domain_dns_record is not None:
                problems.append("verification token must be cleared without a domain")
        if self.ssl_certificate_status is SSLStatus.ACTIVE and not self.custom_domain_verified:
            problems.append("ssl ACTIVE requires a verified domain")
        if (
            self.custom_domain_status is DomainStatus.ACTIVE
            and self.ssl_certificate_status is not SSLStatus.ACTIVE
        ):
            problems.append("domain ACTIVE requires ssl ACTIVE")
        return problems

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tenant_id": self.tenant_id,
            "slug": self.slug,
            "owner_id": self.owner_id,
            "contact_email": self.contact_email,
            "subscription_plan": self.subscription_plan,
            "subscription_status": self.subscription_status,
            "custom_domain": self.custom_domain,
            "custom_domain_verified": self.custom_domain_verified,
            "custom_domain_status": self.custom_domain_status.value,
            "custom_domain_dns_record": self.custom_domain_dns_record,
            "ssl_certificate_status": self.ssl_certificate_status.value,
            "ssl_certificate_expiry": _format_dt(self.ssl_certificate_expiry),
            "ssl_last_checked_at": _format_dt(self.ssl_last_checked_at),
            "ssl_last_renewal_failed": self.ssl_last_renewal_failed,
            "ssl_last_error": self.ssl_last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TenantRecord:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            tenant_id=data["tenant_id"],
            slug=data["slug"],
            owner_id=data["owner_id"],
            contact_email=data.get("contact_email"),
            subscription_plan=data.get("subscription_plan", "FREE"),
            subscription_status=data.get("subscription_status", "ACTIVE"),
            custom_domain=data.get("custom_domain"),
            custom_domain_verified=data.get("custom_domain_verified", False),
            custom_domain_status=DomainStatus(data.get("custom_domain_status", "PENDING")),
            custom_domain_dns_record=data.get("custom_domain_dns_record"),
            ssl_certificate_status=SSLStatus(data.get("ssl_certificate_status", "PENDING")),
            ssl_certificate_expiry=_parse_dt(data.get("ssl_certificate_expiry")),
            ssl_last_checked_at=_parse_dt(data.get("ssl_last_checked_at")),
            ssl_last_renewal_failed=data.get("ssl_last_renewal_failed", False),
            ssl_last_error=data.get("ssl_last_error"),
        )
