"""
Guarded page fetcher.

Fetches one page with:
- an SSRF check before every hop (initial request and each redirect)
- manual redirect following, capped at ``http_max_redirects``
- connect and total timeouts
- a streaming byte cap that aborts the transfer as soon as it is exceeded
- a content-type allow-list
- charset normalisation and removal of scripts/styles/comments
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

import httpx

from config import Settings, settings as default_settings
from models.errors import (
    AnalyzerError,
    ContentTooLarge,
    EmptyContent,
    FetchNetworkError,
    FetchTimeout,
    HttpStatusError,
    RedirectNotAllowed,
    TooManyRedirects,
    UnsupportedContentType,
)
from models.records import FetchEnvelope
from utils.html_normalize import decode_html, primary_mime_type, strip_active_content
from utils.ssrf_guard import SsrfGuard
from utils.url_validator import UrlValidator, resolve_relative_url

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class PageFetcher:
    """
    Outbound HTTP client for page analysis.

    Every outbound request of the application goes through ``fetch``.

    Args:
        settings: Application settings (timeouts, caps, allow-lists)
        ssrf_guard: SSRF checker; one is built from settings when omitted
        transport: httpx transport override, used by tests
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ssrf_guard: Optional[SsrfGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or default_settings
        self.ssrf_guard = ssrf_guard or SsrfGuard(self.settings)
        self.url_policy = UrlValidator(self.settings)
        self.transport = transport
        self.max_bytes = self.settings.http_max_bytes
        self.max_redirects = self.settings.http_max_redirects
        self.allowed_content_types = frozenset(self.settings.allowed_content_types)

    def _build_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            self.settings.http_timeout,
            connect=self.settings.http_connect_timeout,
        )
        kwargs = {
            "timeout": timeout,
            "follow_redirects": False,  # Redirects are followed manually
            "verify": self.settings.http_verify_ssl,
            "headers": {
                "User-Agent": self.settings.http_user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def fetch(self, url: str, client_identity: Optional[str] = None) -> FetchEnvelope:
        """
        Fetch a normalized URL.

        Args:
            url: Output of UrlValidator.validate
            client_identity: Requesting client, for SSRF audit events

        Returns:
            FetchEnvelope with decoded, minimised content

        Raises:
            SsrfError: If any hop targets a blocked address
            FetchError: On timeout, network, redirect, status, type or size failure
        """
        start_time = time.monotonic()
        try:
            envelope = await asyncio.wait_for(
                self._fetch(url, client_identity, start_time),
                timeout=self.settings.http_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Fetch timed out after {self.settings.http_timeout}s: {url}")
            raise FetchTimeout(
                "Request timed out",
                {"url": url, "timeout_seconds": self.settings.http_timeout},
            )
        except AnalyzerError as e:
            logger.warning(f"Fetch failed for {url}: {e.kind} - {e.message}")
            raise

        logger.info(
            f"Fetched {url} -> {envelope.final_url} "
            f"({envelope.http_status}, {envelope.content_length} bytes, "
            f"{envelope.redirect_count} redirects, {envelope.fetch_duration_ms}ms)"
        )
        return envelope

    async def _fetch(
        self,
        url: str,
        client_identity: Optional[str],
        start_time: float,
    ) -> FetchEnvelope:
        current_url = url
        redirect_count = 0

        async with self._build_client() as client:
            while True:
                # Re-checked on every hop: a redirect may point anywhere
                await self.ssrf_guard.check(current_url, client_identity)

                try:
                    async with client.stream("GET", current_url) as response:
                        if response.status_code in REDIRECT_STATUSES:
                            location = response.headers.get("Location")
                            if not location:
                                raise HttpStatusError(
                                    f"HTTP {response.status_code} without Location header",
                                    {"status_code": response.status_code},
                                )
                            next_url = resolve_relative_url(current_url, location)
                            redirect_count += 1
                            if redirect_count > self.max_redirects:
                                raise TooManyRedirects(
                                    f"Too many redirects (maximum {self.max_redirects})",
                                    {"url": next_url, "redirect_count": redirect_count},
                                )
                            policy_error = self.url_policy.check_policy(next_url)
                            if policy_error is not None:
                                raise RedirectNotAllowed(
                                    f"Redirect target rejected: {policy_error.message}",
                                    {"url": next_url, "reason": policy_error.kind},
                                )
                            logger.debug(f"Following redirect {redirect_count}: {current_url} -> {next_url}")
                            current_url = next_url
                            continue

                        status, content_type, body, headers = await self._read_response(response)
                except httpx.TimeoutException as e:
                    raise FetchTimeout("Request timed out", {"url": current_url}) from e
                except httpx.HTTPError as e:
                    raise FetchNetworkError(
                        f"Network error: {type(e).__name__}",
                        {"url": current_url},
                    ) from e

                break

        text, encoding = decode_html(body, content_type)
        content = strip_active_content(text)
        if not content.strip():
            raise EmptyContent("Empty response from server", {"url": current_url})

        return FetchEnvelope(
            content=content,
            final_url=current_url,
            http_status=status,
            content_type=content_type,
            content_length=len(body),
            fetch_duration_ms=int((time.monotonic() - start_time) * 1000),
            redirect_count=redirect_count,
            headers=headers,
            encoding=encoding,
        )

    async def _read_response(
        self,
        response: httpx.Response,
    ) -> Tuple[int, str, bytes, Dict[str, str]]:
        status = response.status_code
        # Redirect statuses are handled before this point
        if not 200 <= status < 400:
            raise HttpStatusError(f"HTTP {status}", {"status_code": status})

        content_type = response.headers.get("Content-Type", "")
        mime = primary_mime_type(content_type)
        # A missing Content-Type is treated as HTML
        if mime and mime not in self.allowed_content_types:
            raise UnsupportedContentType(
                f"Unsupported content type: {mime}",
                {"content_type": mime},
            )

        advertised = response.headers.get("Content-Length")
        if advertised and advertised.isdigit() and int(advertised) > self.max_bytes:
            raise ContentTooLarge(
                f"Content too large (maximum {self.max_bytes} bytes)",
                {"content_length": int(advertised), "max_bytes": self.max_bytes},
            )

        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > self.max_bytes:
                # Leaving the stream context closes the connection
                raise ContentTooLarge(
                    f"Content too large (maximum {self.max_bytes} bytes)",
                    {"received_bytes": received, "max_bytes": self.max_bytes},
                )
            chunks.append(chunk)

        return status, content_type, b"".join(chunks), dict(response.headers)
