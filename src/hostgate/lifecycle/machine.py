"""Domain and certificate lifecycle orchestration.

DomainLifecycle is the only writer of tenant domain state. It calls the
admission controller, the DNS verifier, the certificate manager and the proxy
site manager, which all return plain results, and persists the resulting
transitions.

No external call runs while a lock is held. A transient status (VERIFYING,
REQUESTING) is always resolved before an operation returns; if an unexpected
exception escapes an external call, the status is put back to PENDING.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from hostgate.certs.manager import CertificateInfo, CertificateManager, CertificateOperation
from hostgate.core.config import PlatformConfig
from hostgate.core.errors import (
    BadRequest,
    Conflict,
    ExternalFailure,
    NotFound,
    ProxyReloadFailed,
)
from hostgate.domains.admission import NEXT_STEPS, AdmissionController, build_dns_instructions
from hostgate.domains.verification import DNSVerifier
from hostgate.lifecycle.transitions import reset, set_domain_status, set_ssl_status
from hostgate.observability.metrics import DOMAIN_OPERATIONS
from hostgate.proxy.nginx import generate_config
from hostgate.proxy.sites import ProxySiteManager
from hostgate.tenants.access import Actor
from hostgate.tenants.models import DomainStatus, SSLStatus, TenantRecord
from hostgate.tenants.store import TenantStore

logger = structlog.get_logger()

SSL_TROUBLESHOOTING = [
    "Ensure the domain's CNAME still points at the platform and has propagated",
    "Port 80 must be reachable for the ACME HTTP-01 challenge",
    "The certificate authority rate-limits repeated failures; wait before retrying",
]


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class InvariantViolation(RuntimeError):
    """A write would leave a tenant record inconsistent."""


class DomainLifecycle:
    """Orchestrates claim, verification, certificates and proxy configs."""

    def __init__(
        self,
        store: TenantStore,
        admission: AdmissionController,
        verifier: DNSVerifier,
        certificates: CertificateManager,
        sites: ProxySiteManager,
        platform: PlatformConfig | None = None,
        *,
        renewal_threshold_days: int = 30,
        acme_webroot: str = "/var/www/certbot",
        log_dir: str = "/var/log/nginx",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.admission = admission
        self.verifier = verifier
        self.certificates = certificates
        self.sites = sites
        self.platform = platform or PlatformConfig()
        self.renewal_threshold_days = renewal_threshold_days
        self.acme_webroot = acme_webroot
        self.log_dir = log_dir
        self._clock = clock

    # -- helpers ---------------------------------------------------------

    async def _load(self, tenant_id: str) -> TenantRecord:
        record = await self.store.get(tenant_id)
        if record is None:
            raise NotFound("Tenant not found", details={"tenant_id": tenant_id})
        return record

    def _actor(self, actor_id: str) -> Actor:
        return self.admission.authorizer.resolve(actor_id)

    async def _load_authorized(
        self, tenant_id: str, actor_id: str, allow_admin: bool = False
    ) -> TenantRecord:
        record = await self._load(tenant_id)
        self.admission.authorize(self._actor(actor_id), record, allow_admin=allow_admin)
        return record

    @staticmethod
    def _require_domain(record: TenantRecord) -> str:
        if not record.custom_domain:
            raise BadRequest("No custom domain configured")
        return record.custom_domain

    async def _save(self, record: TenantRecord) -> None:
        problems = record.invariant_violations()
        if problems:
            raise InvariantViolation(
                f"Refusing to persist tenant {record.tenant_id}: {'; '.join(problems)}"
            )
        await self.store.save(record)

    async def _fresh(self, record: TenantRecord) -> TenantRecord:
        """Re-read a record after a slow external call.

        Raises:
            Conflict: The domain was removed or replaced in the meantime.
        """
        fresh = await self._load(record.tenant_id)
        if fresh.custom_domain != record.custom_domain:
            raise Conflict(
                "The custom domain changed while the operation was running",
                details={"expected": record.custom_domain, "current": fresh.custom_domain},
            )
        return fresh

    async def _revert_domain(self, record: TenantRecord) -> None:
        fresh = await self.store.get(record.tenant_id)
        if (
            fresh is not None
            and fresh.custom_domain == record.custom_domain
            and fresh.custom_domain_status is DomainStatus.VERIFYING
        ):
            set_domain_status(fresh, DomainStatus.PENDING)
            await self._save(fresh)

    async def _revert_ssl(self, record: TenantRecord) -> None:
        fresh = await self.store.get(record.tenant_id)
        if (
            fresh is not None
            and fresh.custom_domain == record.custom_domain
            and fresh.ssl_certificate_status is SSLStatus.REQUESTING
        ):
            set_ssl_status(fresh, SSLStatus.PENDING)
            await self._save(fresh)

    def _domain_view(self, record: TenantRecord) -> dict[str, Any]:
        return {
            "tenant_id": record.tenant_id,
            "slug": record.slug,
            "platform_url": f"{record.slug}.{self.platform.domain}",
            "custom_domain": record.custom_domain,
            "custom_domain_verified": record.custom_domain_verified,
            "custom_domain_status": record.custom_domain_status.value,
            "custom_domain_dns_record": record.custom_domain_dns_record,
            "ssl_certificate_status": record.ssl_certificate_status.value,
            "ssl_certificate_expiry": _iso(record.ssl_certificate_expiry),
            "ssl_last_checked_at": _iso(record.ssl_last_checked_at),
            "ssl_last_renewal_failed": record.ssl_last_renewal_failed,
            "ssl_last_error": record.ssl_last_error,
        }

    @staticmethod
    def _count(operation: str, outcome: str) -> None:
        DOMAIN_OPERATIONS.labels(operation=operation, outcome=outcome).inc()

    # -- domain ------------------------------------------------------------

    async def claim_domain(self, tenant_id: str, domain: str, actor_id: str) -> dict[str, Any]:
        """Claim a custom domain and issue its verification token."""
        record = await self._load(tenant_id)
        try:
            grant = await self.admission.admit_claim(record, domain, self._actor(actor_id))
        except Exception:
            self._count("claim", "rejected")
            raise

        previous = record.custom_domain
        reset(record)
        record.custom_domain = grant.domain
        record.custom_domain_dns_record = grant.token
        await self._save(record)

        cleanup: dict[str, Any] | None = None
        if previous and previous != grant.domain:
            # The old hostname must stop routing here once it is released.
            cleanup = await self._release_proxy(previous)

        self._count("claim", "success")
        logger.info(
            "Custom domain claimed",
            tenant_id=tenant_id,
            domain=grant.domain,
            previous_domain=previous,
        )
        response: dict[str, Any] = {
            "success": True,
            "message": "Custom domain added successfully",
            "domain": grant.domain,
            "status": record.custom_domain_status.value,
            "verification_token": grant.token,
            "dns_instructions": grant.instructions,
            "next_steps": NEXT_STEPS,
        }
        if cleanup is not None:
            response["previous_domain"] = previous
            response["previous_domain_cleanup"] = cleanup
        return response

    async def remove_domain(
        self, tenant_id: str, actor_id: str, teardown: bool = False
    ) -> dict[str, Any]:
        """Clear the tenant's custom domain.

        The domain's proxy config is always removed and the proxy reloaded, so
        the hostname stops routing to this tenant before anyone else can claim
        it. With teardown the certificate is also deleted, best-effort.
        """
        record = await self._load_authorized(tenant_id, actor_id)
        domain = self._require_domain(record)

        cleanup = await self._release_proxy(domain)
        if teardown and record.ssl_certificate_status is not SSLStatus.PENDING:
            op = await self._best_effort_revoke(domain)
            cleanup["certificate_revoked"] = op.success

        record = await self._fresh(record)
        reset(record)
        await self._save(record)
        await self.admission.reset_attempts(tenant_id)

        self._count("remove", "success")
        logger.info("Custom domain removed", tenant_id=tenant_id, domain=domain, **cleanup)
        return {
            "success": True,
            "message": "Custom domain removed successfully",
            "removed_domain": domain,
            "note": "Your store will continue to be accessible at your original subdomain",
            "cleanup": cleanup,
        }

    async def _release_proxy(self, domain: str) -> dict[str, Any]:
        """Remove a released domain's proxy config and reload."""
        cleanup: dict[str, Any] = {"proxy_removed": False}
        if not await self.sites.exists(domain):
            return cleanup

        removal = await self.sites.remove(domain)
        cleanup["proxy_removed"] = removal.removed
        if not removal.success:
            logger.warning("Proxy config removal test failed", domain=domain, error=removal.message)
            cleanup["warning"] = removal.message
            return cleanup

        reload = await self.sites.reload()
        cleanup["proxy_reloaded"] = reload.success
        if not reload.success:
            logger.warning("Proxy reload after removal failed", domain=domain, error=reload.message)
            cleanup["warning"] = ProxyReloadFailed.warning
        return cleanup

    async def get_domain(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        entitlement = await self.admission.billing.entitlement(record)
        view = self._domain_view(record)
        view["subscription_plan"] = entitlement.plan
        view["subscription_status"] = entitlement.status
        view["can_add_custom_domain"] = entitlement.allowed
        return view

    # -- verification --------------------------------------------------------

    async def verify_domain(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Check DNS for the claimed domain and persist VERIFIED or FAILED.

        A failed check is a normal result (success=False with troubleshooting),
        not an error.
        """
        record = await self._load_authorized(tenant_id, actor_id)
        domain = self._require_domain(record)

        if record.custom_domain_verified and record.custom_domain_status in (
            DomainStatus.VERIFIED,
            DomainStatus.ACTIVE,
        ):
            return {
                "success": True,
                "verified": True,
                "already_verified": True,
                "message": "Domain already verified",
                "domain": domain,
                "status": record.custom_domain_status.value,
            }

        token = record.custom_domain_dns_record
        if not token:
            raise BadRequest("Domain has no verification token; claim it again")

        await self.admission.consume_attempt(tenant_id)

        set_domain_status(record, DomainStatus.VERIFYING)
        await self._save(record)

        try:
            result = await self.verifier.verify(domain, record.slug, token)
        except Exception as e:
            logger.exception("DNS verification crashed", tenant_id=tenant_id, domain=domain)
            await self._revert_domain(record)
            self._count("verify", "error")
            raise ExternalFailure(
                "Failed to verify domain",
                error_text=str(e),
                troubleshooting=["Verification can be retried safely"],
            ) from e

        record = await self._fresh(record)
        if result.overall_valid:
            record.custom_domain_verified = True
            set_domain_status(record, DomainStatus.VERIFIED)
            await self._save(record)
            self._count("verify", "success")
            return {
                "success": True,
                "verified": True,
                "message": "Domain verified successfully",
                "domain": domain,
                "status": record.custom_domain_status.value,
                "verification": result.to_dict(),
                "next_steps": [
                    "Request an SSL certificate for the domain",
                    "Create the proxy config once the certificate is active",
                ],
            }

        set_domain_status(record, DomainStatus.FAILED)
        await self._save(record)
        self._count("verify", "failure")
        return {
            "success": False,
            "verified": False,
            "message": result.message,
            "domain": domain,
            "status": record.custom_domain_status.value,
            "verification": result.to_dict(),
            "troubleshooting": result.troubleshooting(),
        }

    async def get_verification_status(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Report verification state and expected records without querying DNS."""
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        if not record.custom_domain:
            return {"configured": False, "message": "No custom domain configured"}

        response: dict[str, Any] = {
            "configured": True,
            "domain": record.custom_domain,
            "verified": record.custom_domain_verified,
            "status": record.custom_domain_status.value,
            "expected_cname": self.verifier.expected_cname(record.slug),
            "expected_txt_host": self.verifier.txt_host(record.custom_domain),
            "expected_txt_value": record.custom_domain_dns_record,
        }
        if not record.custom_domain_verified and record.custom_domain_dns_record:
            response["dns_instructions"] = build_dns_instructions(
                record.custom_domain,
                record.slug,
                record.custom_domain_dns_record,
                self.platform,
            )
        return response

    # -- certificates ----------------------------------------------------------

    async def request_certificate(
        self, tenant_id: str, actor_id: str, email: str | None = None
    ) -> dict[str, Any]:
        """Issue a certificate for a verified domain."""
        record = await self._load_authorized(tenant_id, actor_id)
        domain = self._require_domain(record)

        if not record.custom_domain_verified or record.custom_domain_status not in (
            DomainStatus.VERIFIED,
            DomainStatus.ACTIVE,
        ):
            raise BadRequest(
                "Domain must be verified before requesting SSL certificate",
                details={"status": record.custom_domain_status.value},
            )
        if record.ssl_certificate_status is SSLStatus.ACTIVE:
            raise BadRequest("SSL certificate already active. Use renew instead.")

        set_ssl_status(record, SSLStatus.REQUESTING)
        record.ssl_last_checked_at = self._clock()
        await self._save(record)

        contact = email or record.contact_email or self.platform.default_contact_email
        try:
            op = await self.certificates.request(domain, contact)
        except Exception as e:
            logger.exception("Certificate request crashed", tenant_id=tenant_id, domain=domain)
            await self._revert_ssl(record)
            self._count("ssl_request", "error")
            raise ExternalFailure("Failed to request SSL certificate", error_text=str(e)) from e

        record = await self._fresh(record)
        record.ssl_last_checked_at = self._clock()

        if not op.success:
            set_ssl_status(record, SSLStatus.FAILED)
            record.ssl_last_error = op.error or op.message
            await self._save(record)
            self._count("ssl_request", "failure")
            raise ExternalFailure(
                op.message,
                stdout=op.stdout,
                stderr=op.stderr,
                error_text=op.error,
                troubleshooting=SSL_TROUBLESHOOTING,
            )

        info = op.info
        set_ssl_status(record, SSLStatus.ACTIVE)
        record.ssl_certificate_expiry = info.expires_at if info else None
        record.ssl_last_renewal_failed = False
        record.ssl_last_error = None
        set_domain_status(record, DomainStatus.ACTIVE)
        await self._save(record)

        self._count("ssl_request", "success")
        return {
            "success": True,
            "message": op.message,
            "domain": domain,
            "ssl_status": record.ssl_certificate_status.value,
            "domain_status": record.custom_domain_status.value,
            "expiry": _iso(record.ssl_certificate_expiry),
            "days_until_expiry": info.days_until_expiry if info else None,
            "next_steps": ["Create or update the proxy config to serve HTTPS"],
        }

    async def get_certificate_status(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Refresh certificate metadata from disk and report it.

        An ACTIVE certificate whose expiry has passed is moved to EXPIRED.
        """
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        domain = self._require_domain(record)

        info: CertificateInfo | None = None
        if record.ssl_certificate_status in (SSLStatus.ACTIVE, SSLStatus.EXPIRED):
            info = await self.certificates.get_info(domain)
            record = await self._fresh(record)
            record.ssl_last_checked_at = self._clock()
            if info.exists and info.expires_at:
                record.ssl_certificate_expiry = info.expires_at
                if (
                    record.ssl_certificate_status is SSLStatus.ACTIVE
                    and info.days_until_expiry is not None
                    and info.days_until_expiry <= 0
                ):
                    set_ssl_status(record, SSLStatus.EXPIRED)
            await self._save(record)

        return {
            "domain": domain,
            "ssl_status": record.ssl_certificate_status.value,
            "domain_status": record.custom_domain_status.value,
            "expiry": _iso(record.ssl_certificate_expiry),
            "last_checked_at": _iso(record.ssl_last_checked_at),
            "last_renewal_failed": record.ssl_last_renewal_failed,
            "last_error": record.ssl_last_error,
            "certificate": info.to_dict() if info else None,
        }

    def _apply_renewal_failure(
        self, record: TenantRecord, op: CertificateOperation, info: CertificateInfo
    ) -> None:
        record.ssl_last_renewal_failed = True
        record.ssl_last_error = op.error or op.message
        if not (record.ssl_certificate_status is SSLStatus.ACTIVE and info.valid):
            set_ssl_status(record, SSLStatus.FAILED)

    async def _renew(self, record: TenantRecord) -> tuple[TenantRecord, CertificateOperation]:
        domain = record.custom_domain or ""
        op = await self.certificates.renew(domain)
        info = op.info or await self.certificates.get_info(domain)
        record = await self._fresh(record)
        record.ssl_last_checked_at = self._clock()

        if op.success and info.valid:
            set_ssl_status(record, SSLStatus.ACTIVE)
            record.ssl_certificate_expiry = info.expires_at
            record.ssl_last_renewal_failed = False
            record.ssl_last_error = None
            # Same promotion as a fresh request; an EXPIRED or FAILED spell lowered it.
            if record.custom_domain_status is DomainStatus.VERIFIED:
                set_domain_status(record, DomainStatus.ACTIVE)
        else:
            if op.success:
                op = CertificateOperation(
                    success=False,
                    message=f"Certificate for {domain} is missing or expired after renewal",
                    stdout=op.stdout,
                    stderr=op.stderr,
                    error=info.error or "Certificate is not valid",
                )
            self._apply_renewal_failure(record, op, info)
        await self._save(record)
        return record, op

    async def renew_certificate(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Renew the certificate; "not yet due" is a success without change.

        A failed renewal of a certificate that is still valid keeps it ACTIVE
        and sets ssl_last_renewal_failed. A successful renewal makes a
        VERIFIED domain ACTIVE again, as a fresh request does.
        """
        record = await self._load_authorized(tenant_id, actor_id)
        domain = self._require_domain(record)

        if record.ssl_certificate_status is SSLStatus.PENDING:
            raise BadRequest("No SSL certificate to renew. Request one first.")
        if record.ssl_certificate_status is SSLStatus.REQUESTING:
            raise BadRequest("A certificate request is still in progress")

        try:
            record, op = await self._renew(record)
        except (Conflict, NotFound):
            raise
        except Exception as e:
            logger.exception("Certificate renewal crashed", tenant_id=tenant_id, domain=domain)
            self._count("ssl_renew", "error")
            raise ExternalFailure("Failed to renew SSL certificate", error_text=str(e)) from e

        if not op.success:
            self._count("ssl_renew", "failure")
            raise ExternalFailure(
                op.message,
                stdout=op.stdout,
                stderr=op.stderr,
                error_text=op.error,
                troubleshooting=SSL_TROUBLESHOOTING,
                details={
                    "ssl_status": record.ssl_certificate_status.value,
                    "certificate_still_valid": record.ssl_certificate_status is SSLStatus.ACTIVE,
                },
            )

        self._count("ssl_renew", "success")
        return {
            "success": True,
            "message": op.message,
            "changed": op.changed,
            "domain": domain,
            "ssl_status": record.ssl_certificate_status.value,
            "domain_status": record.custom_domain_status.value,
            "expiry": _iso(record.ssl_certificate_expiry),
            "days_until_expiry": op.info.days_until_expiry if op.info else None,
        }

    async def _best_effort_revoke(self, domain: str) -> CertificateOperation:
        try:
            return await self.certificates.revoke(domain)
        except Exception as e:
            logger.exception("Certificate delete crashed", domain=domain)
            return CertificateOperation(
                success=False,
                message=f"Failed to revoke SSL certificate: {e}",
                error=str(e),
            )

    async def revoke_certificate(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Delete the certificate and reset SSL state regardless of the outcome."""
        record = await self._load_authorized(tenant_id, actor_id)
        domain = self._require_domain(record)

        op = await self._best_effort_revoke(domain)

        record = await self._fresh(record)
        set_ssl_status(record, SSLStatus.PENDING)
        record.ssl_certificate_expiry = None
        record.ssl_last_checked_at = self._clock()
        record.ssl_last_renewal_failed = False
        record.ssl_last_error = None
        await self._save(record)

        self._count("ssl_revoke", "success" if op.success else "failure")
        response: dict[str, Any] = {
            "success": True,
            "message": "SSL certificate revoked",
            "domain": domain,
            "revoked": op.success,
            "ssl_status": record.ssl_certificate_status.value,
            "domain_status": record.custom_domain_status.value,
        }
        if not op.success:
            response["warning"] = op.message
        return response

    # -- proxy config ------------------------------------------------------------

    def render_proxy_config(self, record: TenantRecord, with_tls: bool | None = None) -> str:
        """Generate config text for a record without touching the filesystem."""
        domain = self._require_domain(record)
        if with_tls is None:
            with_tls = record.ssl_certificate_status is SSLStatus.ACTIVE
        return generate_config(
            domain,
            record.slug,
            self.platform.upstream_port,
            self.certificates.cert_paths(domain) if with_tls else None,
            generated_at=self._clock(),
            acme_webroot=self.acme_webroot,
            log_dir=self.log_dir,
        )

    async def preview_proxy_config(
        self, tenant_id: str, actor_id: str, with_tls: bool | None = None
    ) -> str:
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        return self.render_proxy_config(record, with_tls)

    async def _write_and_reload(self, domain: str, content: str) -> str:
        written = await self.sites.write(domain, content)
        if not written.success:
            raise ExternalFailure(
                written.message,
                stderr=written.stderr,
                error_text=written.error,
            )

        reload = await self.sites.reload()
        if not reload.success:
            raise ProxyReloadFailed(
                reload.message,
                stdout=reload.stdout,
                stderr=reload.stderr,
                details={"config_path": written.config_path, "stage": reload.stage},
            )
        return written.config_path

    async def create_proxy_config(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Write the initial config; with an active certificate the domain goes live."""
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        domain = self._require_domain(record)

        if not record.custom_domain_verified:
            raise BadRequest("Domain must be verified before creating proxy config")
        if await self.sites.exists(domain):
            raise Conflict("Nginx config already exists. Use update instead.")

        with_tls = record.ssl_certificate_status is SSLStatus.ACTIVE
        try:
            config_path = await self._write_and_reload(
                domain, self.render_proxy_config(record, with_tls)
            )
        except ExternalFailure:
            self._count("proxy_create", "failure")
            raise

        record = await self._fresh(record)
        if with_tls and record.ssl_certificate_status is SSLStatus.ACTIVE:
            set_domain_status(record, DomainStatus.ACTIVE)
            await self._save(record)

        self._count("proxy_create", "success")
        return {
            "success": True,
            "message": f"Nginx configuration created for {domain}",
            "domain": domain,
            "config_path": config_path,
            "ssl_enabled": with_tls,
            "domain_status": record.custom_domain_status.value,
        }

    async def update_proxy_config(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        """Rewrite an existing config with HTTPS once the certificate is active."""
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        domain = self._require_domain(record)

        if not await self.sites.exists(domain):
            raise NotFound("Nginx config not found. Create it first.")
        if record.ssl_certificate_status is not SSLStatus.ACTIVE:
            raise BadRequest("SSL certificate must be active to enable HTTPS")

        try:
            config_path = await self._write_and_reload(
                domain, self.render_proxy_config(record, with_tls=True)
            )
        except ExternalFailure:
            self._count("proxy_update", "failure")
            raise

        record = await self._fresh(record)
        if record.ssl_certificate_status is SSLStatus.ACTIVE:
            set_domain_status(record, DomainStatus.ACTIVE)
            await self._save(record)

        self._count("proxy_update", "success")
        return {
            "success": True,
            "message": f"Nginx configuration updated with SSL for {domain}",
            "domain": domain,
            "config_path": config_path,
            "ssl_enabled": True,
            "domain_status": record.custom_domain_status.value,
        }

    async def remove_proxy_config(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        domain = self._require_domain(record)

        removal = await self.sites.remove(domain)
        if not removal.success:
            self._count("proxy_remove", "failure")
            raise ExternalFailure(removal.message, stderr=removal.stderr)

        reload = await self.sites.reload()
        if not reload.success:
            self._count("proxy_remove", "failure")
            raise ProxyReloadFailed(reload.message, stdout=reload.stdout, stderr=reload.stderr)

        self._count("proxy_remove", "success")
        return {
            "success": True,
            "message": f"Nginx configuration removed for {domain}",
            "domain": domain,
            "removed": removal.removed,
        }

    async def get_proxy_config(self, tenant_id: str, actor_id: str) -> dict[str, Any]:
        record = await self._load_authorized(tenant_id, actor_id, allow_admin=True)
        domain = self._require_domain(record)
        exists = await self.sites.exists(domain)
        return {
            "domain": domain,
            "exists": exists,
            "config_path": str(self.sites.config_path(domain)) if exists else None,
            "domain_status": record.custom_domain_status.value,
            "ssl_status": record.ssl_certificate_status.value,
        }

    # -- sweeps --------------------------------------------------------------------

    async def sweep_pending_domains(self) -> dict[str, Any]:
        """Re-check DNS for every unverified domain.

        Valid records become VERIFIED; a record caught in VERIFYING with bad DNS
        becomes FAILED; PENDING and FAILED records with bad DNS are left as is.
        """
        candidates = await self.store.list_by_domain_status(
            DomainStatus.PENDING, DomainStatus.VERIFYING, DomainStatus.FAILED
        )
        summary: dict[str, Any] = {
            "total": len(candidates),
            "verified": 0,
            "failed": 0,
            "pending": 0,
            "errors": 0,
            "updated": 0,
            "results": [],
        }

        for record in candidates:
            domain = record.custom_domain or ""
            previous = record.custom_domain_status
            entry: dict[str, Any] = {
                "tenant_id": record.tenant_id,
                "domain": domain,
                "previous_status": previous.value,
            }
            try:
                if not record.custom_domain_dns_record:
                    raise BadRequest("Domain has no verification token")
                result = await self.verifier.verify(
                    domain, record.slug, record.custom_domain_dns_record
                )
                record = await self._fresh(record)
                if result.overall_valid:
                    record.custom_domain_verified = True
                    set_domain_status(record, DomainStatus.VERIFIED)
                    summary["verified"] += 1
                elif record.custom_domain_status is DomainStatus.VERIFYING:
                    set_domain_status(record, DomainStatus.FAILED)
                    summary["failed"] += 1
                else:
                    summary["pending"] += 1
                if record.custom_domain_status is not previous:
                    await self._save(record)
                    summary["updated"] += 1
                entry["status"] = record.custom_domain_status.value
                entry["message"] = result.message
            except Exception as e:
                logger.exception("DNS sweep failed for domain", domain=domain)
                summary["errors"] += 1
                entry["status"] = previous.value
                entry["error"] = str(e)
            summary["results"].append(entry)

        logger.info(
            "DNS sweep finished",
            total=summary["total"],
            verified=summary["verified"],
            updated=summary["updated"],
        )
        return summary

    async def sweep_certificate_renewals(self) -> dict[str, Any]:
        """Renew certificates close to expiry; reload the proxy once if any renewed."""
        candidates = await self.store.list_by_ssl_status(SSLStatus.ACTIVE, SSLStatus.EXPIRED)
        summary: dict[str, Any] = {
            "total": len(candidates),
            "renewed": 0,
            "valid": 0,
            "failed": 0,
            "proxy_reloaded": False,
            "results": [],
        }

        for record in candidates:
            domain = record.custom_domain or ""
            entry: dict[str, Any] = {"tenant_id": record.tenant_id, "domain": domain}
            try:
                info = await self.certificates.get_info(domain)
                if not info.exists:
                    record = await self._fresh(record)
                    set_ssl_status(record, SSLStatus.FAILED)
                    record.ssl_last_checked_at = self._clock()
                    record.ssl_last_error = info.error or "Certificate not found"
                    await self._save(record)
                    summary["failed"] += 1
                    entry["action"] = "missing"
                elif (
                    info.days_until_expiry is not None
                    and info.days_until_expiry >= self.renewal_threshold_days
                ):
                    record = await self._fresh(record)
                    record.ssl_last_checked_at = self._clock()
                    record.ssl_certificate_expiry = info.expires_at
                    await self._save(record)
                    summary["valid"] += 1
                    entry["action"] = "valid"
                    entry["days_until_expiry"] = info.days_until_expiry
                else:
                    record, op = await self._renew(record)
                    if op.success:
                        summary["renewed"] += 1
                        entry["action"] = "renewed"
                    else:
                        summary["failed"] += 1
                        entry["action"] = "renewal_failed"
                        entry["error"] = op.error or op.message
                entry["ssl_status"] = record.ssl_certificate_status.value
            except Exception as e:
                logger.exception("Renewal sweep failed for domain", domain=domain)
                summary["failed"] += 1
                entry["action"] = "error"
                entry["error"] = str(e)
            summary["results"].append(entry)

        if summary["renewed"]:
            reload = await self.sites.reload()
            summary["proxy_reloaded"] = reload.success
            if not reload.success:
                logger.error("Proxy reload after renewals failed", message=reload.message)

        logger.info(
            "Renewal sweep finished",
            total=summary["total"],
            renewed=summary["renewed"],
            failed=summary["failed"],
        )
        return summary
