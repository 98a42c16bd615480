"""
Error taxonomy for Meta Tag Analyzer.

Every error the analysis pipeline can report derives from AnalyzerError
and carries a machine-readable ``kind``, a ``category`` and the HTTP
status code it maps to at the API boundary.
"""

from typing import Any, Dict, Optional


class AnalyzerError(Exception):
    """Base class for all analyzer errors."""

    kind = "internal_error"
    category = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


# Validation errors (always user-correctable)

class ValidationError(AnalyzerError):
    kind = "validation_error"
    category = "validation"
    status_code = 400


class EmptyUrl(ValidationError):
    kind = "empty_url"


class UrlTooLong(ValidationError):
    kind = "url_too_long"


class SchemeNotAllowed(ValidationError):
    kind = "scheme_not_allowed"


class InvalidHost(ValidationError):
    kind = "invalid_host"


class LocalhostBlocked(ValidationError):
    kind = "localhost_blocked"


class PortNotAllowed(ValidationError):
    kind = "port_not_allowed"


class InvalidCacheKey(ValidationError):
    kind = "invalid_cache_key"


class InvalidExportRequest(ValidationError):
    kind = "invalid_export_request"


# SSRF rejections

class SsrfError(AnalyzerError):
    kind = "ssrf_error"
    category = "ssrf"
    status_code = 403


class NoResolution(SsrfError):
    kind = "no_resolution"


class PrivateAddressBlocked(SsrfError):
    kind = "private_address_blocked"


# Remote-side fetch problems

class FetchError(AnalyzerError):
    kind = "fetch_error"
    category = "fetch"
    status_code = 502


class FetchTimeout(FetchError):
    kind = "fetch_timeout"
    status_code = 504


class FetchNetworkError(FetchError):
    kind = "network_error"


class TooManyRedirects(FetchError):
    kind = "too_many_redirects"


class RedirectNotAllowed(FetchError):
    kind = "redirect_not_allowed"


class HttpStatusError(FetchError):
    kind = "http_status_error"


class UnsupportedContentType(FetchError):
    kind = "unsupported_content_type"
    status_code = 400


class ContentTooLarge(FetchError):
    kind = "content_too_large"
    status_code = 400


class EmptyContent(FetchError):
    kind = "empty_content"


class ExtractionError(AnalyzerError):
    kind = "extraction_error"
    category = "fetch"
    status_code = 502


class RateLimitError(AnalyzerError):
    kind = "rate_limit_exceeded"
    category = "rate_limit"
    status_code = 429

    def __init__(self, message: str, decision, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.decision = decision


class AnalysisNotFound(AnalyzerError):
    kind = "analysis_not_found"
    category = "validation"
    status_code = 404


class StorageError(AnalyzerError):
    kind = "storage_error"
    category = "storage"
    status_code = 500


class InternalError(AnalyzerError):
    kind = "internal_error"
    category = "internal"
    status_code = 500
