"""
Tests for the SSRF navigation validator.
"""
import socket

import pytest

from app.features.scan.services.security.navigation_validator import (
    NavigationValidator,
    is_blocked_address,
    is_blocked_hostname,
)


def resolver_for(table):
    def resolve(hostname):
        if hostname not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return table[hostname]
    return resolve


@pytest.fixture
def validator():
    return NavigationValidator(resolver=resolver_for({
        "www.acme-store.com": ["93.184.216.34"],
        "shop.acme-store.com": ["151.101.1.69", "2a04:4e42::645"],
        "intranet.acme-store.com": ["10.20.0.7"],
        "mixed.acme-store.com": ["93.184.216.34", "127.0.0.1"],
        "v6-internal.acme-store.com": ["::1"],
        "mapped.acme-store.com": ["::ffff:192.168.1.10"],
        "empty.acme-store.com": [],
    }))


class TestBlockedAddresses:

    @pytest.mark.parametrize("address", [
        "127.0.0.1",
        "127.8.9.10",
        "10.0.0.1",
        "172.16.4.2",
        "192.168.0.1",
        "169.254.169.254",
        "169.254.10.10",
        "0.0.0.0",
        "::1",
        "fe80::1",
        "fd00::1",
        "::ffff:127.0.0.1",
        "::ffff:10.1.2.3",
    ])
    def test_internal_addresses_are_blocked(self, address):
        assert is_blocked_address(address) is True

    @pytest.mark.parametrize("address", ["93.184.216.34", "8.8.8.8", "2606:4700:4700::1111"])
    def test_public_addresses_are_allowed(self, address):
        assert is_blocked_address(address) is False


class TestBlockedHostnames:

    @pytest.mark.parametrize("hostname", [
        "localhost",
        "LOCALHOST",
        "api.localhost",
        "printer.local",
        "db.internal",
        "metadata.google.internal",
        "site.test",
        "foo.example",
        "bar.invalid",
        "intranet",
        "127.0.0.1",
    ])
    def test_internal_names_are_blocked(self, hostname):
        assert is_blocked_hostname(hostname) is True

    @pytest.mark.parametrize("hostname", ["www.acme-store.com", "example.com", "93.184.216.34"])
    def test_public_names_pass_literal_check(self, hostname):
        assert is_blocked_hostname(hostname) is False


class TestValidate:

    def test_same_url_public_host_is_allowed(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "https://www.acme-store.com/")
        assert verdict.allowed is True

    def test_safe_redirect_is_allowed(self, validator):
        verdict = validator.validate("http://www.acme-store.com/", "https://shop.acme-store.com/cart")
        assert verdict.allowed is True
        assert verdict.host == "shop.acme-store.com"

    def test_redirect_to_metadata_endpoint_is_blocked(self, validator):
        verdict = validator.validate(
            "https://www.acme-store.com/go",
            "http://169.254.169.254/latest/meta-data/",
        )
        assert verdict.allowed is False
        assert verdict.address == "169.254.169.254"

    def test_redirect_to_localhost_is_blocked(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "http://localhost:8080/admin")
        assert verdict.allowed is False
        assert verdict.host == "localhost"

    def test_redirect_to_host_resolving_private_is_blocked(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "https://intranet.acme-store.com/")
        assert verdict.allowed is False
        assert verdict.address == "10.20.0.7"

    def test_any_private_address_blocks(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "https://mixed.acme-store.com/")
        assert verdict.allowed is False
        assert verdict.address == "127.0.0.1"

    @pytest.mark.parametrize("host", ["v6-internal.acme-store.com", "mapped.acme-store.com"])
    def test_ipv6_internal_resolution_is_blocked(self, validator, host):
        verdict = validator.validate("https://www.acme-store.com/", f"https://{host}/")
        assert verdict.allowed is False

    def test_ipv6_literal_loopback_is_blocked(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "http://[::1]:3000/")
        assert verdict.allowed is False

    def test_unresolvable_host_fails_closed(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "https://nowhere.acme-store.com/")
        assert verdict.allowed is False
        assert "resolve" in verdict.reason

    def test_host_without_addresses_fails_closed(self, validator):
        verdict = validator.validate("https://www.acme-store.com/", "https://empty.acme-store.com/")
        assert verdict.allowed is False

    @pytest.mark.parametrize("final_url", [
        "file:///etc/passwd",
        "chrome://settings",
        "data:text/html,hello",
        "ftp://www.acme-store.com/",
    ])
    def test_non_http_schemes_are_blocked(self, validator, final_url):
        assert validator.validate("https://www.acme-store.com/", final_url).allowed is False


class TestValidateTarget:

    def test_public_target_is_allowed(self, validator):
        assert validator.validate_target("https://www.acme-store.com/pricing").allowed is True

    def test_private_ip_target_is_blocked_without_dns(self):
        def resolver(hostname):
            raise AssertionError("IP literals must not be resolved")

        verdict = NavigationValidator(resolver=resolver).validate_target("http://192.168.1.1/")
        assert verdict.allowed is False

    def test_public_ip_target_is_allowed_without_dns(self):
        def resolver(hostname):
            raise AssertionError("IP literals must not be resolved")

        assert NavigationValidator(resolver=resolver).validate_target("http://93.184.216.34/").allowed is True
