"""
Unit tests for the DNS-resolving SSRF guard.

Resolution goes through injected fake resolvers; no test touches DNS.
"""

import logging

import pytest

from conftest import PUBLIC_IP, make_resolver, make_settings
from models.errors import NoResolution, PrivateAddressBlocked, SsrfError
from utils.ssrf_guard import SsrfGuard, is_blocked_ip, parse_networks


DEFAULT_NETWORKS = parse_networks(make_settings().blocked_ip_ranges)


class TestIsBlockedIP:
    """Tests for is_blocked_ip function."""

    def test_private_ips_blocked(self):
        """RFC1918 private IPs should be blocked."""
        for ip in ("10.0.0.1", "10.255.255.255", "172.16.0.1", "172.31.255.255", "192.168.0.1"):
            assert is_blocked_ip(ip, DEFAULT_NETWORKS) is True

    def test_loopback_and_unspecified_blocked(self):
        for ip in ("127.0.0.1", "127.255.255.254", "0.0.0.0", "::1", "::"):
            assert is_blocked_ip(ip, DEFAULT_NETWORKS) is True

    def test_link_local_blocked(self):
        """Link-local addresses (cloud metadata) should be blocked."""
        assert is_blocked_ip("169.254.169.254", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("fe80::1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("fe80::1%eth0", DEFAULT_NETWORKS) is True

    def test_cgnat_multicast_and_unique_local_blocked(self):
        assert is_blocked_ip("100.64.0.1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("224.0.0.1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("fd12:3456::1", DEFAULT_NETWORKS) is True

    def test_ipv4_mapped_ipv6_checked_as_ipv4(self):
        assert is_blocked_ip("::ffff:10.0.0.1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("::ffff:127.0.0.1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("::ffff:8.8.8.8", DEFAULT_NETWORKS) is False

    def test_6to4_embedded_ipv4_checked(self):
        """2002:a00:5::1 carries 10.0.0.5."""
        assert is_blocked_ip("2002:a00:5::1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("2002:a9fe:a9fe::1", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("2002:5db8:d822::1", DEFAULT_NETWORKS) is False

    def test_teredo_client_ipv4_checked(self):
        """The Teredo client address is stored bit-inverted in the last 32 bits."""
        assert is_blocked_ip("2001:0:4136:e378:8000:63bf:f5ff:fffa", DEFAULT_NETWORKS) is True
        assert is_blocked_ip("2001:0:4136:e378:8000:63bf:f7f7:f7f7", DEFAULT_NETWORKS) is False

    def test_public_ips_not_blocked(self):
        """Public IPs should not be flagged."""
        for ip in ("8.8.8.8", "1.1.1.1", PUBLIC_IP, "2606:4700:4700::1111"):
            assert is_blocked_ip(ip, DEFAULT_NETWORKS) is False

    def test_unparseable_address_blocked(self):
        assert is_blocked_ip("not-an-ip", DEFAULT_NETWORKS) is True

    def test_custom_ranges(self):
        networks = parse_networks(["203.0.113.0/24"])
        assert is_blocked_ip("203.0.113.9", networks) is True
        assert is_blocked_ip("10.0.0.1", networks) is False


class TestSsrfGuardCheck:
    """Tests for SsrfGuard.check."""

    @pytest.mark.asyncio
    async def test_public_host_passes(self):
        guard = SsrfGuard(make_settings(), resolver=make_resolver({"example.com": [PUBLIC_IP]}))
        addresses = await guard.check("https://example.com/")
        assert addresses == [PUBLIC_IP]

    @pytest.mark.asyncio
    async def test_private_only_host_blocked(self):
        guard = SsrfGuard(make_settings(), resolver=make_resolver({"internal.example": ["10.0.0.5"]}))
        with pytest.raises(PrivateAddressBlocked):
            await guard.check("https://internal.example/")

    @pytest.mark.asyncio
    async def test_any_private_address_blocks_all(self):
        """A host with both public and private records is rejected."""
        resolver = make_resolver({"mixed.example": [PUBLIC_IP, "10.0.0.5"]})
        guard = SsrfGuard(make_settings(), resolver=resolver)
        with pytest.raises(PrivateAddressBlocked):
            await guard.check("https://mixed.example/")

    @pytest.mark.asyncio
    async def test_private_ipv6_record_blocked(self):
        resolver = make_resolver({"v6.example": ["2606:4700:4700::1111", "fd00::5"]})
        guard = SsrfGuard(make_settings(), resolver=resolver)
        with pytest.raises(PrivateAddressBlocked):
            await guard.check("https://v6.example/")

    @pytest.mark.asyncio
    async def test_ipv4_mapped_record_blocked(self):
        resolver = make_resolver({"mapped.example": ["::ffff:192.168.1.1"]})
        guard = SsrfGuard(make_settings(), resolver=resolver)
        with pytest.raises(PrivateAddressBlocked):
            await guard.check("http://mapped.example/")

    @pytest.mark.asyncio
    async def test_ip_literal_host_checked(self):
        resolver = make_resolver({"169.254.169.254": ["169.254.169.254"]})
        guard = SsrfGuard(make_settings(), resolver=resolver)
        with pytest.raises(SsrfError):
            await guard.check("http://169.254.169.254/latest/meta-data/")

    @pytest.mark.asyncio
    async def test_unresolvable_host(self):
        guard = SsrfGuard(make_settings(), resolver=make_resolver({}))
        with pytest.raises(NoResolution) as exc_info:
            await guard.check("https://does-not-exist.example/")
        assert exc_info.value.details["hostname"] == "does-not-exist.example"

    @pytest.mark.asyncio
    async def test_empty_resolution(self):
        guard = SsrfGuard(make_settings(), resolver=make_resolver({"empty.example": []}))
        with pytest.raises(NoResolution):
            await guard.check("https://empty.example/")

    @pytest.mark.asyncio
    async def test_resolver_receives_port(self):
        seen = []

        async def resolver(host, port):
            seen.append((host, port))
            return [PUBLIC_IP]

        guard = SsrfGuard(make_settings(), resolver=resolver)
        await guard.check("https://example.com/")
        await guard.check("http://example.com:8080/")
        assert seen == [("example.com", 443), ("example.com", 8080)]

    @pytest.mark.asyncio
    async def test_blocked_attempt_is_audited(self, caplog):
        guard = SsrfGuard(make_settings(), resolver=make_resolver({"internal.example": ["10.0.0.5"]}))
        with caplog.at_level(logging.WARNING, logger="audit"):
            with pytest.raises(PrivateAddressBlocked):
                await guard.check("https://internal.example/", client_identity="203.0.113.7")

        records = [r for r in caplog.records if r.name == "audit"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert "SSRF attempt blocked" in records[0].getMessage()
        context = records[0].audit_context
        assert context["resolved_ip"] == "10.0.0.5"
        assert context["hostname"] == "internal.example"
        assert context["client_identity"] == "203.0.113.7"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
