"""Wire a DomainLifecycle from configuration."""

from __future__ import annotations

from hostgate.certs.certbot import CertbotClient, CertificateClient
from hostgate.certs.manager import CertificateManager
from hostgate.core.config import HostgateConfig
from hostgate.domains.admission import AdmissionController
from hostgate.domains.verification import AioDNSResolver, DNSVerifier, Resolver
from hostgate.lifecycle.machine import DomainLifecycle
from hostgate.proxy.controller import NginxController, ProxyController
from hostgate.proxy.sites import ProxySiteManager
from hostgate.security.ratelimit import AttemptLimiter, create_attempt_limiter
from hostgate.tenants.access import (
    Authorizer,
    BillingGate,
    RecordBillingGate,
    RecordOwnershipAuthorizer,
)
from hostgate.tenants.store import JSONTenantStore, MemoryTenantStore, TenantStore


def create_store(config: HostgateConfig) -> TenantStore:
    if config.storage.backend == "memory":
        return MemoryTenantStore()
    return JSONTenantStore(config.storage.path)


def build_lifecycle(
    config: HostgateConfig,
    *,
    store: TenantStore | None = None,
    resolver: Resolver | None = None,
    certificate_client: CertificateClient | None = None,
    proxy_controller: ProxyController | None = None,
    authorizer: Authorizer | None = None,
    billing: BillingGate | None = None,
    limiter: AttemptLimiter | None = None,
    churn_limiter: AttemptLimiter | None = None,
) -> DomainLifecycle:
    """Build the lifecycle with real collaborators unless substitutes are given."""
    store = store or create_store(config)
    admission = AdmissionController(
        platform=config.platform,
        store=store,
        authorizer=authorizer or RecordOwnershipAuthorizer(config.server.admin_actor_ids),
        billing=billing or RecordBillingGate(config.platform.entitled_plans),
        limiter=limiter or create_attempt_limiter(config.rate_limit),
        churn_limiter=churn_limiter or create_attempt_limiter(config.rate_limit, scope="churn"),
    )
    verifier = DNSVerifier(
        resolver
        or AioDNSResolver(
            nameservers=config.dns.nameservers,
            timeout=config.dns.timeout,
            tries=config.dns.tries,
        ),
        platform_domain=config.platform.domain,
        verification_label=config.platform.verification_label,
    )
    certificates = CertificateManager(
        certificate_client or CertbotClient(config.certbot),
        certs_root=config.certbot.certs_root,
    )
    sites = ProxySiteManager(
        proxy_controller or NginxController(config.proxy),
        sites_available=config.proxy.sites_available,
        sites_enabled=config.proxy.sites_enabled,
    )
    return DomainLifecycle(
        store=store,
        admission=admission,
        verifier=verifier,
        certificates=certificates,
        sites=sites,
        platform=config.platform,
        renewal_threshold_days=config.certbot.renewal_threshold_days,
        acme_webroot=config.proxy.acme_webroot,
        log_dir=config.proxy.log_dir,
    )
