"""Tests for DNS verification."""

from __future__ import annotations

from unittest.mock import MagicMock

import aiodns
import pytest

from hostgate.domains.verification import (
    AioDNSResolver,
    DNSLookupError,
    DNSVerifier,
    NoSuchRecordError,
    VerificationResult,
)

from conftest import FakeResolver

DOMAIN = "shop.mycompany.com"
TOKEN = "platform-verify-0123456789abcdef0123456789abcdef"


@pytest.fixture
def verifier(resolver: FakeResolver) -> DNSVerifier:
    return DNSVerifier(resolver, platform_domain="Shops.Example.NET")


class TestVerificationResult:
    """Tests for VerificationResult."""

    def test_overall_requires_both(self):
        result = VerificationResult(
            domain=DOMAIN, expected_cname="a", txt_host="b", expected_txt="c", cname_valid=True
        )
        assert not result.overall_valid

    def test_message_joins_errors(self):
        result = VerificationResult(
            domain=DOMAIN,
            expected_cname="a",
            txt_host="b",
            expected_txt="c",
            cname_error="No CNAME record found",
            txt_error="TXT record not found at b",
        )
        assert result.message == "Verification failed: No CNAME record found, TXT record not found at b"

    def test_success_message(self):
        result = VerificationResult(
            domain=DOMAIN,
            expected_cname="a",
            txt_host="b",
            expected_txt="c",
            cname_valid=True,
            txt_valid=True,
        )
        assert result.message == "DNS verification successful"
        assert result.to_dict()["overall_valid"] is True

    def test_troubleshooting_names_failed_records(self):
        result = VerificationResult(
            domain=DOMAIN,
            expected_cname="acme.shops.example.net",
            txt_host="_platform-verification." + DOMAIN,
            expected_txt=TOKEN,
            cname_valid=True,
        )
        tips = result.troubleshooting()
        assert not any("CNAME" in tip for tip in tips)
        assert any(TOKEN in tip for tip in tips)


class TestDNSVerifier:
    """Tests for DNSVerifier."""

    def test_expected_names(self, verifier):
        assert verifier.expected_cname("acme") == "acme.shops.example.net"
        assert verifier.txt_host(DOMAIN) == "_platform-verification.shop.mycompany.com"

    async def test_valid_records(self, verifier, resolver):
        resolver.publish(DOMAIN, "ACME.shops.example.net.", verifier.txt_host(DOMAIN), TOKEN)

        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert result.overall_valid
        assert result.cname_value == "acme.shops.example.net"
        assert result.errors == []

    async def test_wrong_cname_target(self, verifier, resolver):
        resolver.publish(DOMAIN, "other.shops.example.net", verifier.txt_host(DOMAIN), TOKEN)

        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert not result.cname_valid
        assert result.txt_valid
        assert result.cname_error == (
            "CNAME points to other.shops.example.net, expected acme.shops.example.net"
        )

    async def test_a_record_instead_of_cname(self, verifier, resolver):
        resolver.a[DOMAIN] = ["203.0.113.7"]
        resolver.txt[verifier.txt_host(DOMAIN)] = [[TOKEN]]

        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert not result.cname_valid
        assert "A record (203.0.113.7)" in result.cname_error

    async def test_no_records(self, verifier):
        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert result.cname_error == "No CNAME record found"
        assert result.txt_error == f"TXT record not found at {verifier.txt_host(DOMAIN)}"

    async def test_txt_segments_and_whitespace(self, verifier, resolver):
        resolver.cname[DOMAIN] = ["acme.shops.example.net"]
        resolver.txt[verifier.txt_host(DOMAIN)] = [["v=spf1 -all"], [f"  {TOKEN}  "]]

        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert result.txt_valid
        assert TOKEN in result.txt_values

    async def test_txt_mismatch(self, verifier, resolver):
        resolver.cname[DOMAIN] = ["acme.shops.example.net"]
        resolver.txt[verifier.txt_host(DOMAIN)] = [["platform-verify-stale"]]

        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert not result.txt_valid
        assert result.txt_error == "TXT record does not match verification token"

    async def test_resolver_failure_is_reported_not_raised(self, verifier, resolver):
        resolver.error = DNSLookupError("SERVFAIL")

        result = await verifier.verify(DOMAIN, "acme", TOKEN)

        assert not result.overall_valid
        assert result.cname_error.startswith("DNS lookup failed")
        assert result.txt_error.startswith("DNS lookup failed")

    async def test_both_checks_always_run(self, verifier, resolver):
        await verifier.verify(DOMAIN, "acme", TOKEN)

        qtypes = {qtype for qtype, _ in resolver.queries}
        assert {"CNAME", "TXT"} <= qtypes


class TestAioDNSResolver:
    """Tests for the aiodns-backed resolver with a mocked c-ares resolver."""

    async def test_cname(self):
        resolver = AioDNSResolver(timeout=1.0, tries=1)
        answer = MagicMock(cname="acme.shops.example.net")
        inner = MagicMock()

        async def query(name, qtype):
            return answer

        inner.query = query
        resolver._resolver = inner

        assert await resolver.resolve_cname(DOMAIN) == ["acme.shops.example.net"]

    async def test_txt_bytes_decoded(self):
        resolver = AioDNSResolver(timeout=1.0, tries=1)
        inner = MagicMock()

        async def query(name, qtype):
            return [MagicMock(text=TOKEN.encode())]

        inner.query = query
        resolver._resolver = inner

        assert await resolver.resolve_txt("_platform-verification." + DOMAIN) == [[TOKEN]]

    async def test_nodata_maps_to_no_such_record(self):
        resolver = AioDNSResolver(timeout=1.0, tries=1)
        inner = MagicMock()

        async def query(name, qtype):
            raise aiodns.error.DNSError(aiodns.error.ARES_ENODATA, "no data")

        inner.query = query
        resolver._resolver = inner

        with pytest.raises(NoSuchRecordError):
            await resolver.resolve_cname(DOMAIN)

    async def test_other_errors_map_to_lookup_error(self):
        resolver = AioDNSResolver(timeout=1.0, tries=1)
        inner = MagicMock()

        async def query(name, qtype):
            raise aiodns.error.DNSError(aiodns.error.ARES_ESERVFAIL, "server failure")

        inner.query = query
        resolver._resolver = inner

        with pytest.raises(DNSLookupError) as exc_info:
            await resolver.resolve_a(DOMAIN)
        assert not isinstance(exc_info.value, NoSuchRecordError)
