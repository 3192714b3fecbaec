"""HTTP API for tenant domains, certificates and proxy configs.

Authentication is done by the gateway in front of this service; it forwards
the authenticated actor id in a trusted header (X-Actor-Id by default).
Sweep endpoints are called by a scheduler with a bearer secret.
"""

from __future__ import annotations

import secrets
from typing import Any

import structlog
from aiohttp import web

from hostgate.core.config import HostgateConfig
from hostgate.core.errors import (
    Forbidden,
    HostgateError,
    RateLimited,
    Unauthorized,
    ValidationError,
)
from hostgate.lifecycle.machine import DomainLifecycle
from hostgate.observability.metrics import generate_metrics, get_content_type

logger = structlog.get_logger()

LIFECYCLE_KEY = web.AppKey("lifecycle", DomainLifecycle)
CONFIG_KEY = web.AppKey("config", HostgateConfig)


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render HostgateError as JSON; anything unexpected becomes a plain 500."""
    try:
        return await handler(request)
    except HostgateError as e:
        headers = {"Retry-After": str(e.reset_in)} if isinstance(e, RateLimited) else None
        if e.status_code >= 500:
            logger.error("Request failed", path=request.path, error=e.message, details=e.details)
        return web.json_response(e.to_dict(), status=e.status_code, headers=headers)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error", path=request.path, method=request.method)
        return web.json_response(
            {"error": "Internal error", "message": "An unexpected error occurred"},
            status=500,
        )


class DomainAPIHandler:
    """Route handlers bound to one DomainLifecycle."""

    def __init__(self, lifecycle: DomainLifecycle, config: HostgateConfig) -> None:
        self.lifecycle = lifecycle
        self.config = config

    def register_routes(self, app: web.Application) -> None:
        """Register API routes on an aiohttp application."""
        base = "/api/tenants/{tenant_id}"
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/metrics", self.handle_metrics)

        app.router.add_post(f"{base}/domain", self.handle_claim)
        app.router.add_get(f"{base}/domain", self.handle_get_domain)
        app.router.add_delete(f"{base}/domain", self.handle_remove)

        app.router.add_post(f"{base}/domain/verify", self.handle_verify)
        app.router.add_get(f"{base}/domain/verify", self.handle_verification_status)

        app.router.add_post(f"{base}/ssl", self.handle_ssl_request)
        app.router.add_get(f"{base}/ssl", self.handle_ssl_status)
        app.router.add_put(f"{base}/ssl", self.handle_ssl_renew)
        app.router.add_delete(f"{base}/ssl", self.handle_ssl_revoke)

        app.router.add_post(f"{base}/proxy", self.handle_proxy_create)
        app.router.add_get(f"{base}/proxy", self.handle_proxy_status)
        app.router.add_put(f"{base}/proxy", self.handle_proxy_update)
        app.router.add_delete(f"{base}/proxy", self.handle_proxy_remove)

        app.router.add_post("/api/cron/check-domain-status", self.handle_sweep_dns)
        app.router.add_post("/api/cron/renew-ssl-certificates", self.handle_sweep_ssl)

    def _actor_id(self, request: web.Request) -> str:
        actor_id = request.headers.get(self.config.server.actor_header, "").strip()
        if not actor_id:
            raise Unauthorized("Authentication required")
        return actor_id

    def _check_cron(self, request: web.Request) -> None:
        secret = self.config.server.cron_secret
        auth = request.headers.get("Authorization", "")
        if not secret or not secrets.compare_digest(auth, f"Bearer {secret}"):
            raise Unauthorized("Invalid cron credentials")

    async def _json_body(self, request: web.Request) -> dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except ValueError as e:
            # Covers both malformed JSON and bytes that are not valid text.
            raise ValidationError("Invalid JSON body", rules=[str(e)]) from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def handle_metrics(self, request: web.Request) -> web.Response:
        actor = self.lifecycle.admission.authorizer.resolve(self._actor_id(request))
        if not actor.is_admin:
            raise Forbidden("Admin access required")
        response = web.Response(body=generate_metrics())
        response.headers["Content-Type"] = get_content_type()
        return response

    async def handle_claim(self, request: web.Request) -> web.Response:
        actor_id = self._actor_id(request)
        body = await self._json_body(request)
        domain = body.get("custom_domain") or body.get("domain")
        if not isinstance(domain, str) or not domain.strip():
            raise ValidationError("custom_domain is required", rules=["custom_domain is required"])
        result = await self.lifecycle.claim_domain(
            request.match_info["tenant_id"], domain, actor_id
        )
        return web.json_response(result, status=201)

    async def handle_get_domain(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.get_domain(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_remove(self, request: web.Request) -> web.Response:
        teardown = request.query.get("teardown", "").lower() in ("1", "true", "yes")
        result = await self.lifecycle.remove_domain(
            request.match_info["tenant_id"], self._actor_id(request), teardown=teardown
        )
        return web.json_response(result)

    async def handle_verify(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.verify_domain(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_verification_status(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.get_verification_status(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_ssl_request(self, request: web.Request) -> web.Response:
        actor_id = self._actor_id(request)
        body = await self._json_body(request)
        email = body.get("email")
        if email is not None and not isinstance(email, str):
            raise ValidationError("email must be a string")
        result = await self.lifecycle.request_certificate(
            request.match_info["tenant_id"], actor_id, email=email
        )
        return web.json_response(result)

    async def handle_ssl_status(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.get_certificate_status(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_ssl_renew(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.renew_certificate(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_ssl_revoke(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.revoke_certificate(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_proxy_create(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.create_proxy_config(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_proxy_status(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.get_proxy_config(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_proxy_update(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.update_proxy_config(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_proxy_remove(self, request: web.Request) -> web.Response:
        result = await self.lifecycle.remove_proxy_config(
            request.match_info["tenant_id"], self._actor_id(request)
        )
        return web.json_response(result)

    async def handle_sweep_dns(self, request: web.Request) -> web.Response:
        self._check_cron(request)
        summary = await self.lifecycle.sweep_pending_domains()
        return web.json_response({"success": True, "summary": summary})

    async def handle_sweep_ssl(self, request: web.Request) -> web.Response:
        self._check_cron(request)
        summary = await self.lifecycle.sweep_certificate_renewals()
        return web.json_response({"success": True, "summary": summary})


async def _close_limiters(app: web.Application) -> None:
    admission = app[LIFECYCLE_KEY].admission
    await admission.limiter.close()
    if admission.churn_limiter is not None:
        await admission.churn_limiter.close()


def create_app(lifecycle: DomainLifecycle, config: HostgateConfig) -> web.Application:
    """Build the aiohttp application."""
    app = web.Application(middlewares=[error_middleware])
    app[LIFECYCLE_KEY] = lifecycle
    app[CONFIG_KEY] = config
    DomainAPIHandler(lifecycle, config).register_routes(app)
    app.on_cleanup.append(_close_limiters)
    return app
