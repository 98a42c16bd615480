"""Service layer.

Services depend on protocols, not on concrete storage backends:

    main (HTTP) -> RequestCoordinator -> CacheStore / RateLimiter -> repositories

``build_components`` wires one complete set of collaborators from a
Settings instance.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from adapters.page_fetcher import PageFetcher
from config import Settings, settings as default_settings
from extractors.metadata_extractor import MetadataExtractor
from repositories import Repositories, build_repositories
from utils.cache import CacheStore
from utils.clock import Clock, utc_now
from utils.rate_limiter import RateLimiter
from utils.ssrf_guard import Resolver, SsrfGuard
from utils.url_validator import UrlValidator

from .request_coordinator import (
    AnalysisFailure,
    AnalysisOptions,
    AnalysisOutcome,
    AnalysisResult,
    RequestCoordinator,
)


@dataclass
class Components:
    settings: Settings
    repositories: Repositories
    validator: UrlValidator
    ssrf_guard: SsrfGuard
    fetcher: PageFetcher
    extractor: MetadataExtractor
    cache: CacheStore
    rate_limiter: RateLimiter
    coordinator: RequestCoordinator

    def close(self) -> None:
        self.repositories.close()


def build_components(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    resolver: Optional[Resolver] = None,
    clock: Clock = utc_now,
    repositories: Optional[Repositories] = None,
) -> Components:
    """
    Build the analyzer's collaborators.

    Args:
        settings: Application settings (defaults to the process-wide instance)
        transport: httpx transport override for the page fetcher
        resolver: DNS resolver override for the SSRF guard
        clock: Time source for the cache, limiter and coordinator
        repositories: Storage backends (built from settings when omitted)

    Returns:
        Components container
    """
    settings = settings or default_settings
    repositories = repositories or build_repositories(settings)

    validator = UrlValidator(settings)
    ssrf_guard = SsrfGuard(settings, resolver=resolver)
    fetcher = PageFetcher(settings, ssrf_guard=ssrf_guard, transport=transport)
    extractor = MetadataExtractor(settings)
    cache = CacheStore(repositories.cache, repositories.payloads, settings=settings, clock=clock)
    rate_limiter = RateLimiter(repositories.requests, settings=settings, clock=clock)
    coordinator = RequestCoordinator(
        validator=validator,
        rate_limiter=rate_limiter,
        cache=cache,
        fetcher=fetcher,
        extractor=extractor,
        history=repositories.history,
        settings=settings,
        clock=clock,
    )
    return Components(
        settings=settings,
        repositories=repositories,
        validator=validator,
        ssrf_guard=ssrf_guard,
        fetcher=fetcher,
        extractor=extractor,
        cache=cache,
        rate_limiter=rate_limiter,
        coordinator=coordinator,
    )


__all__ = [
    "AnalysisFailure",
    "AnalysisOptions",
    "AnalysisOutcome",
    "AnalysisResult",
    "Components",
    "RequestCoordinator",
    "build_components",
]
