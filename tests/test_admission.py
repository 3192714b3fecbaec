"""Tests for domain admission checks."""

from __future__ import annotations

import pytest

from hostgate.core.config import PlatformConfig
from hostgate.core.errors import (
    Conflict,
    DomainRejected,
    Forbidden,
    InvalidDomain,
    RateLimited,
    ValidationError,
)
from hostgate.domains.admission import (
    AdmissionController,
    build_dns_instructions,
    cname_host,
    denylist_reason,
    generate_verification_token,
    hostname_violations,
    normalize_domain,
)
from hostgate.security.ratelimit import MemoryAttemptLimiter, RateLimitConfig
from hostgate.tenants.access import Actor, RecordBillingGate, RecordOwnershipAuthorizer
from hostgate.tenants.store import MemoryTenantStore

from conftest import ADMIN, OWNER, STRANGER, make_tenant


@pytest.fixture
def platform() -> PlatformConfig:
    return PlatformConfig(domain="shops.example.net")


@pytest.fixture
def admission(platform: PlatformConfig) -> AdmissionController:
    store = MemoryTenantStore([make_tenant(), make_tenant("t-2", slug="globex", owner_id="u-other")])
    return AdmissionController(
        platform=platform,
        store=store,
        authorizer=RecordOwnershipAuthorizer([ADMIN]),
        billing=RecordBillingGate(["ENTERPRISE"]),
        limiter=MemoryAttemptLimiter(RateLimitConfig(max_attempts=5)),
        churn_limiter=MemoryAttemptLimiter(RateLimitConfig(max_attempts=20)),
    )


class TestHostnameGrammar:
    """Tests for hostname validation helpers."""

    def test_normalize(self):
        assert normalize_domain("  Shop.MyCompany.COM. ") == "shop.mycompany.com"

    @pytest.mark.parametrize(
        "domain",
        ["shop.mycompany.com", "a.io", "my-shop.co.uk", "x1.y2.z3.example.org"],
    )
    def test_valid_domains(self, domain):
        assert hostname_violations(domain) == []

    @pytest.mark.parametrize(
        "domain",
        [
            "nodot",
            "ab",
            "-shop.example.com",
            "shop-.example.com",
            "shop..example.com",
            "shop.example.c",
            "sh_op.example.com",
            "a" * 64 + ".example.com",
        ],
    )
    def test_invalid_domains(self, domain):
        assert hostname_violations(domain)

    def test_too_long(self):
        domain = ".".join(["a" * 60] * 5) + ".com"
        problems = hostname_violations(domain)
        assert "Domain must be between 3 and 253 characters" in problems

    def test_violations_name_the_label(self):
        problems = hostname_violations("bad_label.example.com")
        assert any("bad_label" in p for p in problems)


class TestDenylist:
    """Tests for the denylist."""

    def test_exact_blocked(self):
        assert denylist_reason("example.com", "shops.example.net", ["example.com"])

    def test_blocked_is_case_insensitive(self):
        assert denylist_reason("EXAMPLE.com", "shops.example.net", ["Example.COM"])

    def test_platform_domain_and_subdomains(self):
        assert denylist_reason("shops.example.net", "shops.example.net", [])
        assert denylist_reason("acme.shops.example.net", "shops.example.net", [])

    def test_lookalike_is_not_platform_subdomain(self):
        assert denylist_reason("myshops.example.net", "shops.example.net", []) is None

    @pytest.mark.parametrize("domain", ["localhost.com", "shop.local", "internal.example.org"])
    def test_local_tokens(self, domain):
        assert denylist_reason(domain, "shops.example.net", []) is not None

    def test_ipv4(self):
        assert "IP" in denylist_reason("10.0.0.1", "shops.example.net", [])

    def test_allowed(self):
        assert denylist_reason("shop.mycompany.com", "shops.example.net", []) is None


class TestTokensAndInstructions:
    """Tests for verification tokens and DNS instructions."""

    def test_token_prefix_and_entropy(self):
        token = generate_verification_token("platform-verify-", 16)
        assert token.startswith("platform-verify-")
        assert len(token) == len("platform-verify-") + 32

    def test_tokens_are_unique(self):
        tokens = {generate_verification_token("p-", 16) for _ in range(50)}
        assert len(tokens) == 50

    def test_cname_host(self):
        assert cname_host("shop.mycompany.com") == "shop"
        assert cname_host("a.b.mycompany.com") == "a.b"
        assert cname_host("mycompany.com") == "@"

    def test_instructions(self, platform):
        instructions = build_dns_instructions("shop.mycompany.com", "acme", "tok", platform)

        assert instructions["cname"]["host"] == "shop"
        assert instructions["cname"]["value"] == "acme.shops.example.net"
        assert instructions["txt"]["host"] == "_platform-verification.shop.mycompany.com"
        assert instructions["txt"]["value"] == "tok"
        assert instructions["txt"]["ttl"] == 3600
        assert any("acme.shops.example.net" in step for step in instructions["steps"])


class TestAdmissionController:
    """Tests for AdmissionController.admit_claim."""

    async def test_admits_owner(self, admission):
        record = make_tenant()
        grant = await admission.admit_claim(record, " Shop.MyCompany.com ", Actor(OWNER))

        assert grant.domain == "shop.mycompany.com"
        assert grant.token.startswith("platform-verify-")
        assert grant.instructions["cname"]["value"] == "acme.shops.example.net"

    async def test_rejects_non_owner(self, admission):
        with pytest.raises(Forbidden):
            await admission.admit_claim(make_tenant(), "shop.mycompany.com", Actor(STRANGER))

    async def test_admin_cannot_claim_for_tenant(self, admission):
        with pytest.raises(Forbidden):
            await admission.admit_claim(
                make_tenant(), "shop.mycompany.com", Actor(ADMIN, is_admin=True)
            )

    async def test_rejects_plan(self, admission):
        record = make_tenant(plan="FREE")
        with pytest.raises(Forbidden) as exc_info:
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))
        assert exc_info.value.details["current_plan"] == "FREE"

    async def test_rejects_inactive_subscription(self, admission):
        record = make_tenant(status="PAST_DUE")
        with pytest.raises(Forbidden) as exc_info:
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))
        assert exc_info.value.details["subscription_status"] == "PAST_DUE"

    async def test_rejected_authorization_does_not_consume_attempts(self, admission):
        for _ in range(10):
            with pytest.raises(Forbidden):
                await admission.admit_claim(make_tenant(), "shop.mycompany.com", Actor(STRANGER))
        result = await admission.limiter.peek(admission.attempt_key("t-1"))
        assert result.remaining == 5

    async def test_invalid_format(self, admission):
        with pytest.raises(InvalidDomain) as exc_info:
            await admission.admit_claim(make_tenant(), "not a domain", Actor(OWNER))
        assert exc_info.value.rules
        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.error == "Invalid domain format"

    async def test_denylisted(self, admission):
        with pytest.raises(DomainRejected):
            await admission.admit_claim(make_tenant(), "acme.shops.example.net", Actor(OWNER))

    async def test_conflict_with_other_tenant(self, admission):
        other = make_tenant("t-2", slug="globex", owner_id="u-other")
        other.custom_domain = "shop.mycompany.com"
        await admission.store.save(other)

        with pytest.raises(Conflict):
            await admission.admit_claim(make_tenant(), "SHOP.mycompany.com", Actor(OWNER))

    async def test_reclaiming_own_domain_is_not_conflict(self, admission):
        record = make_tenant()
        record.custom_domain = "shop.mycompany.com"
        await admission.store.save(record)

        grant = await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))
        assert grant.domain == "shop.mycompany.com"

    async def test_rate_limit_after_five_attempts(self, admission):
        record = make_tenant()
        for _ in range(5):
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))

        with pytest.raises(RateLimited) as exc_info:
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))
        assert exc_info.value.reset_in >= 1
        assert "minutes" in exc_info.value.message

    async def test_invalid_domains_still_consume_attempts(self, admission):
        record = make_tenant()
        for _ in range(5):
            with pytest.raises(ValidationError):
                await admission.admit_claim(record, "bad domain", Actor(OWNER))

        with pytest.raises(RateLimited):
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))

    async def test_reset_attempts(self, admission):
        record = make_tenant()
        for _ in range(5):
            await admission.consume_attempt(record.tenant_id)
        await admission.reset_attempts(record.tenant_id)

        await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))

    async def test_churn_limit_is_per_actor(self, admission):
        admission.churn_limiter = MemoryAttemptLimiter(RateLimitConfig(max_attempts=3))
        record = make_tenant()
        for _ in range(3):
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))
            await admission.reset_attempts(record.tenant_id)

        with pytest.raises(RateLimited):
            await admission.admit_claim(record, "shop.mycompany.com", Actor(OWNER))
