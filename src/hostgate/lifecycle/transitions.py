"""Legal status transitions for the domain and certificate fields.

Every status write in the project goes through set_domain_status(),
set_ssl_status() or reset(). Leaving SSL ACTIVE lowers an ACTIVE domain to
VERIFIED so that a live domain always has a live certificate.
"""

from __future__ import annotations

import structlog

from hostgate.core.errors import Conflict
from hostgate.observability.metrics import STATUS_TRANSITIONS
from hostgate.tenants.models import DomainStatus, SSLStatus, TenantRecord

logger = structlog.get_logger()

DOMAIN_TRANSITIONS: dict[DomainStatus, frozenset[DomainStatus]] = {
    DomainStatus.PENDING: frozenset({DomainStatus.VERIFYING, DomainStatus.VERIFIED}),
    DomainStatus.VERIFYING: frozenset(
        {DomainStatus.VERIFIED, DomainStatus.FAILED, DomainStatus.PENDING}
    ),
    DomainStatus.VERIFIED: frozenset({DomainStatus.VERIFYING, DomainStatus.ACTIVE}),
    DomainStatus.FAILED: frozenset({DomainStatus.VERIFYING, DomainStatus.VERIFIED}),
    DomainStatus.ACTIVE: frozenset({DomainStatus.VERIFIED}),
}

SSL_TRANSITIONS: dict[SSLStatus, frozenset[SSLStatus]] = {
    SSLStatus.PENDING: frozenset({SSLStatus.REQUESTING}),
    SSLStatus.REQUESTING: frozenset({SSLStatus.ACTIVE, SSLStatus.FAILED, SSLStatus.PENDING}),
    SSLStatus.ACTIVE: frozenset({SSLStatus.FAILED, SSLStatus.EXPIRED, SSLStatus.PENDING}),
    SSLStatus.FAILED: frozenset({SSLStatus.REQUESTING, SSLStatus.ACTIVE, SSLStatus.PENDING}),
    SSLStatus.EXPIRED: frozenset(
        {SSLStatus.REQUESTING, SSLStatus.ACTIVE, SSLStatus.FAILED, SSLStatus.PENDING}
    ),
}


class InvalidTransition(Conflict):
    error = "Invalid status transition"


def _log(record: TenantRecord, field: str, source: str, target: str) -> None:
    STATUS_TRANSITIONS.labels(field=field, source=source, target=target).inc()
    logger.info(
        "Status transition",
        tenant_id=record.tenant_id,
        domain=record.custom_domain,
        field=field,
        source=source,
        target=target,
    )


def set_domain_status(record: TenantRecord, target: DomainStatus) -> None:
    """Move the domain status, rejecting transitions outside the table."""
    source = record.custom_domain_status
    if source is target:
        return
    if target not in DOMAIN_TRANSITIONS[source]:
        raise InvalidTransition(
            f"Domain status cannot change from {source.value} to {target.value}"
        )
    if target is DomainStatus.ACTIVE and record.ssl_certificate_status is not SSLStatus.ACTIVE:
        raise InvalidTransition("Domain can only become ACTIVE with an ACTIVE certificate")
    record.custom_domain_status = target
    _log(record, "domain", source.value, target.value)


def set_ssl_status(record: TenantRecord, target: SSLStatus) -> None:
    """Move the certificate status, rejecting transitions outside the table."""
    source = record.ssl_certificate_status
    if source is target:
        return
    if target not in SSL_TRANSITIONS[source]:
        raise InvalidTransition(f"SSL status cannot change from {source.value} to {target.value}")
    if target is SSLStatus.ACTIVE and not record.custom_domain_verified:
        raise InvalidTransition("A certificate cannot be active for an unverified domain")
    record.ssl_certificate_status = target
    _log(record, "ssl", source.value, target.value)

    if source is SSLStatus.ACTIVE and record.custom_domain_status is DomainStatus.ACTIVE:
        set_domain_status(record, DomainStatus.VERIFIED)


def reset(record: TenantRecord) -> None:
    """Clear the domain and certificate fields; allowed from any state."""
    domain_source = record.custom_domain_status
    ssl_source = record.ssl_certificate_status
    record.reset_domain()
    if domain_source is not DomainStatus.PENDING:
        _log(record, "domain", domain_source.value, DomainStatus.PENDING.value)
    if ssl_source is not SSLStatus.PENDING:
        _log(record, "ssl", ssl_source.value, SSLStatus.PENDING.value)
