"""Custom domain admission and DNS verification."""

from hostgate.domains.admission import (
    AdmissionController,
    AdmissionGrant,
    build_dns_instructions,
    denylist_reason,
    generate_verification_token,
    hostname_violations,
    normalize_domain,
)
from hostgate.domains.verification import (
    AioDNSResolver,
    DNSLookupError,
    DNSVerifier,
    NoSuchRecordError,
    Resolver,
    VerificationResult,
)

__all__ = [
    "AdmissionController",
    "AdmissionGrant",
    "AioDNSResolver",
    "DNSLookupError",
    "DNSVerifier",
    "NoSuchRecordError",
    "Resolver",
    "VerificationResult",
    "build_dns_instructions",
    "denylist_reason",
    "generate_verification_token",
    "hostname_violations",
    "normalize_domain",
]
