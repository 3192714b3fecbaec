"""TLS certificate lifecycle."""

from hostgate.certs.certbot import CertbotClient, CertificateClient
from hostgate.certs.manager import (
    CertificateInfo,
    CertificateManager,
    CertificateOperation,
    CertPaths,
)

__all__ = [
    "CertPaths",
    "CertbotClient",
    "CertificateClient",
    "CertificateInfo",
    "CertificateManager",
    "CertificateOperation",
]
