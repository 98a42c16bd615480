"""
Configuration management for Meta Tag Analyzer.

All environment variables are loaded here with their default values.
The settings object is built once at process start and handed to each
component through its constructor.
"""

import ipaddress
from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


# Loopback, RFC1918/RFC4193 private, link-local, CGNAT, multicast,
# unspecified and other reserved ranges
DEFAULT_BLOCKED_IP_RANGES = [
    "0.0.0.0/8",
    "10.0.0.0/8",
    "100.64.0.0/10",        # Carrier-grade NAT
    "127.0.0.0/8",
    "169.254.0.0/16",       # Link-local (cloud metadata lives here)
    "172.16.0.0/12",
    "192.0.0.0/24",
    "192.168.0.0/16",
    "198.18.0.0/15",
    "224.0.0.0/4",          # Multicast
    "240.0.0.0/4",
    "255.255.255.255/32",
    "::/128",
    "::1/128",
    "fc00::/7",             # IPv6 unique-local
    "fe80::/10",            # IPv6 link-local
    "ff00::/8",             # IPv6 multicast
    "64:ff9b::/96",         # NAT64
]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every key can be overridden with an environment variable of the same
    name (case-insensitive), e.g. ``RATE_LIMIT_PER_HOUR=60``. List values
    are given as JSON, e.g. ``HTTP_ALLOW_PORTS=[80,443,8080]``.
    """

    # Application settings
    app_name: str = "Meta Tag Analyzer"
    app_version: str = "1.0.0"
    app_env: str = "prod"  # dev | prod
    debug: bool = False

    # Outbound HTTP
    http_connect_timeout: float = 5.0
    http_timeout: float = 12.0
    http_max_redirects: int = 5
    http_max_bytes: int = 2_000_000
    http_user_agent: str = "MetaTagAnalyzer/1.0 (+https://github.com/meta-tag-analyzer)"
    http_allow_ports: List[int] = [80, 443]
    http_verify_ssl: bool = True

    # URL policy
    allowed_schemes: List[str] = ["http", "https"]
    max_url_length: int = 2048
    allow_ip_hosts_in_dev: bool = True

    # SSRF protection
    blocked_ip_ranges: List[str] = DEFAULT_BLOCKED_IP_RANGES

    # Fetch policy
    allowed_content_types: List[str] = ["text/html", "application/xhtml+xml", "text/plain"]

    # Cache settings
    cache_ttl_seconds: int = 21600  # 6 hours default
    cache_max_size: int = 1000
    cache_max_payload_bytes: int = 524288  # 512 KB raw payload cap

    # Rate limiting settings
    rate_limit_per_hour: int = 30
    rate_limit_window_seconds: int = 3600
    rate_limit_retention_hours: int = 24
    rate_limit_whitelist: List[str] = []

    # Storage
    storage_backend: str = "memory"  # memory | sqlite
    sqlite_path: str = "storage/analyzer.sqlite3"
    payload_dir: Optional[str] = None

    # Feature flags
    enable_cache: bool = True
    enable_rate_limiting: bool = True
    enable_analysis_history: bool = False
    enable_schema_detection: bool = True
    enable_word_count: bool = True
    enable_favicon_discovery: bool = True

    # Analysis
    max_headings_per_level: int = 3
    word_count_min_length: int = 3
    favicon_fallbacks: List[str] = ["/favicon.ico"]

    # Operations
    cleanup_interval_seconds: int = 900
    trust_forwarded_for: bool = False

    # CORS settings
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        frozen = True

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("dev", "prod"):
            raise ValueError("app_env must be 'dev' or 'prod'")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "sqlite"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("http_allow_ports")
    @classmethod
    def validate_ports(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("http_allow_ports must be a non-empty list")
        for port in v:
            if port < 1 or port > 65535:
                raise ValueError(f"Invalid port number: {port}")
        return v

    @field_validator("blocked_ip_ranges")
    @classmethod
    def validate_ranges(cls, v: List[str]) -> List[str]:
        for cidr in v:
            ipaddress.ip_network(cidr, strict=False)
        return v

    @field_validator("allowed_schemes", "allowed_content_types")
    @classmethod
    def lowercase_items(cls, v: List[str]) -> List[str]:
        return [item.strip().lower() for item in v]

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        if self.http_connect_timeout <= 0:
            raise ValueError("http_connect_timeout must be a positive number")
        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be a positive number")
        if self.http_timeout < self.http_connect_timeout:
            raise ValueError("http_timeout must be greater than or equal to http_connect_timeout")
        if self.http_max_bytes <= 0:
            raise ValueError("http_max_bytes must be a positive number")
        if self.http_max_redirects < 0:
            raise ValueError("http_max_redirects must not be negative")
        if self.rate_limit_per_hour <= 0:
            raise ValueError("rate_limit_per_hour must be a positive number")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be a positive number")
        return self

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


# Global settings instance
settings = Settings()


def get_feature_status(config: Optional[Settings] = None) -> dict:
    """
    Returns the state of the feature flags.
    Used by the health endpoint.
    """
    config = config or settings
    return {
        "cache": config.enable_cache,
        "rate_limiting": config.enable_rate_limiting,
        "analysis_history": config.enable_analysis_history,
        "schema_detection": config.enable_schema_detection,
        "word_count": config.enable_word_count,
        "favicon_discovery": config.enable_favicon_discovery,
    }
