"""
URL validation and normalization utilities.

This module provides deterministic URL validation to ensure:
1. Only configured schemes (http/https) and ports are allowed
2. Localhost names and literal IP hosts are rejected in production
3. URLs are normalized consistently so they can serve as cache identity

Validation reports failures as data: ``UrlValidator.validate`` returns
a ``(is_valid, normalized_or_original, error)`` tuple and never raises.
DNS-based SSRF checks live in utils/ssrf_guard.py.
"""

import hashlib
import ipaddress
import re
from typing import Optional, Tuple
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from config import Settings, settings as default_settings
from models.errors import (
    EmptyUrl,
    InvalidHost,
    LocalhostBlocked,
    PortNotAllowed,
    SchemeNotAllowed,
    UrlTooLong,
    ValidationError,
)


DEFAULT_PORTS = {"http": 80, "https": 443}

# Patterns that indicate localhost or internal hostnames
LOCALHOST_PATTERNS = [
    "localhost",
    "localhost.localdomain",
    "127.0.0.1",
    "::1",
    "0.0.0.0",
]

SCHEME_PREFIX = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
HOSTNAME_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
CACHE_KEY_PATTERN = re.compile(r"^[a-f0-9]{64}$")

ValidationResult = Tuple[bool, str, Optional[ValidationError]]


def is_ip_literal(hostname: str) -> bool:
    """Check if hostname is a literal IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        return False


def is_localhost(hostname: str) -> bool:
    """
    Check if hostname refers to localhost.

    Args:
        hostname: Hostname to check

    Returns:
        True if hostname is localhost variant
    """
    hostname_lower = hostname.lower().strip().rstrip(".")

    if hostname_lower in LOCALHOST_PATTERNS:
        return True

    # Check for localhost subdomains
    if hostname_lower.endswith(".localhost"):
        return True

    if is_ip_literal(hostname_lower):
        return ipaddress.ip_address(hostname_lower).is_loopback

    return False


def is_valid_hostname(hostname: str) -> bool:
    """
    Check hostname syntax (RFC 1123 labels, IDNA allowed, max 253 chars).

    Literal IP addresses are syntactically valid hosts.
    """
    if not hostname:
        return False
    if is_ip_literal(hostname):
        return True

    try:
        ascii_host = hostname.encode("idna").decode("ascii")
    except UnicodeError:
        return False

    ascii_host = ascii_host.rstrip(".")
    if not ascii_host or len(ascii_host) > 253:
        return False

    return all(HOSTNAME_LABEL.match(label) for label in ascii_host.split("."))


def normalize_url(parsed: SplitResult) -> str:
    """
    Normalize a parsed URL for consistent caching.

    Normalization rules:
    1. Lowercase scheme and hostname
    2. Remove default ports (80 for http, 443 for https)
    3. Default an empty path to "/"
    4. Keep query and fragment when present
    5. Drop any userinfo

    Args:
        parsed: SplitResult from urlsplit

    Returns:
        Normalized URL string
    """
    scheme = parsed.scheme.lower()
    hostname = parsed.hostname.lower() if parsed.hostname else ""

    port = parsed.port
    if port is not None and DEFAULT_PORTS.get(scheme) == port:
        port = None

    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = f"{host}:{port}" if port is not None else host

    return urlunsplit((
        scheme,
        netloc,
        parsed.path or "/",
        parsed.query,
        parsed.fragment,
    ))


def make_cache_key(normalized_url: str) -> str:
    """
    Create the cache key for a normalized URL.

    Args:
        normalized_url: Output of UrlValidator.validate

    Returns:
        SHA-256 hex digest (64 characters)
    """
    return hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()


def is_valid_cache_key(cache_key: str) -> bool:
    """Check that a cache key has the digest format produced by make_cache_key."""
    return bool(cache_key) and bool(CACHE_KEY_PATTERN.match(cache_key))


def extract_domain(url: str) -> Optional[str]:
    """
    Extract the domain from a URL.

    Args:
        url: URL string

    Returns:
        Domain string or None if extraction fails
    """
    try:
        parsed = urlsplit(url)
        return parsed.hostname.lower() if parsed.hostname else None
    except ValueError:
        return None


def resolve_relative_url(base_url: Optional[str], url: str) -> str:
    """Resolve ``url`` against ``base_url`` (returned unchanged without a base)."""
    if not base_url or not url:
        return url
    return urljoin(base_url, url)


class UrlValidator:
    """
    Syntactic and policy validation of user-supplied URLs.

    Checks, in order: presence, length, scheme, hostname syntax,
    localhost / literal IP hosts, and the port allow-list.

    Args:
        settings: Application settings (schemes, ports, max length, env)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.allowed_schemes = tuple(self.settings.allowed_schemes)
        self.allowed_ports = frozenset(self.settings.http_allow_ports)
        self.max_length = self.settings.max_url_length

    @property
    def allow_ip_hosts(self) -> bool:
        return self.settings.is_dev and self.settings.allow_ip_hosts_in_dev

    def validate(self, raw_url: Optional[str]) -> ValidationResult:
        """
        Validate and normalize a URL.

        Args:
            raw_url: URL string as supplied by the caller

        Returns:
            Tuple of (is_valid, normalized_url_or_original, error)
            If valid, returns (True, normalized_url, None)
            If invalid, returns (False, original_url, ValidationError)
        """
        if raw_url is None or not raw_url.strip():
            return False, raw_url or "", EmptyUrl("URL is required")

        url = raw_url.strip()

        if len(url) > self.max_length:
            return False, url, UrlTooLong(
                f"URL is too long (maximum {self.max_length} characters)",
                {"length": len(url)},
            )

        # Add protocol if missing
        if not SCHEME_PREFIX.match(url):
            url = f"http://{url}"

        try:
            parsed = urlsplit(url)
        except ValueError as e:
            return False, url, InvalidHost(f"Invalid URL format: {e}")

        scheme = parsed.scheme.lower()
        if scheme not in self.allowed_schemes:
            return False, url, SchemeNotAllowed(
                "Only HTTP and HTTPS URLs are allowed",
                {"scheme": scheme},
            )

        hostname = (parsed.hostname or "").lower()
        if not hostname:
            return False, url, InvalidHost("URL must have a valid hostname")

        if not is_valid_hostname(hostname):
            return False, url, InvalidHost(
                "Invalid hostname format",
                {"hostname": hostname},
            )

        if is_localhost(hostname) or is_ip_literal(hostname):
            if not self.allow_ip_hosts:
                return False, url, LocalhostBlocked(
                    "Localhost and IP addresses are not allowed",
                    {"hostname": hostname},
                )

        try:
            explicit_port = parsed.port
        except ValueError:
            return False, url, PortNotAllowed("Invalid port")

        port = explicit_port if explicit_port is not None else DEFAULT_PORTS[scheme]
        if port not in self.allowed_ports:
            return False, url, PortNotAllowed(
                f"Port {port} is not allowed",
                {"port": port},
            )

        return True, normalize_url(parsed), None

    def check_policy(self, url: str) -> Optional[ValidationError]:
        """
        Scheme and port policy only, for redirect targets.

        Address checks on redirect targets are the SSRF guard's job.
        """
        try:
            parsed = urlsplit(url)
            port = parsed.port
        except ValueError:
            return PortNotAllowed("Invalid port", {"url": url})

        scheme = parsed.scheme.lower()
        if scheme not in self.allowed_schemes:
            return SchemeNotAllowed(
                "Only HTTP and HTTPS URLs are allowed",
                {"scheme": scheme},
            )
        if not parsed.hostname:
            return InvalidHost("URL must have a valid hostname")

        port = port if port is not None else DEFAULT_PORTS[scheme]
        if port not in self.allowed_ports:
            return PortNotAllowed(f"Port {port} is not allowed", {"port": port})
        return None
