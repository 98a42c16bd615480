"""
Analysis request orchestration.

One request moves through:

    validating -> rate_limiting -> cache_lookup
        -> cache_hit
        |  fetching -> extracting -> cache_storing
    -> history_recording -> responding

A failure at any stage ends the request with an AnalysisFailure that
names the stage. Cache storing and history recording are best-effort
and never fail a request.

Storage calls run in worker threads; the event loop only awaits them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as SchemaValidationError

from config import Settings, settings as default_settings
from models.enums import AnalysisStage
from models.errors import (
    AnalysisNotFound,
    AnalyzerError,
    InternalError,
    RateLimitError,
    StorageError,
)
from models.records import CacheEntry, FetchEnvelope, HistoryRecord, RateDecision
from models.schemas import (
    AnalysisResponse,
    HttpInfo,
    PageMetadata,
    RateLimitStatus,
    ResponseMeta,
)
from adapters.page_fetcher import PageFetcher
from extractors.metadata_extractor import MetadataExtractor
from protocols import HistoryRepository
from utils.cache import CacheStore
from utils.clock import Clock, utc_now
from utils.rate_limiter import RateLimiter
from utils.url_validator import UrlValidator, make_cache_key

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOptions:
    bypass_cache: bool = False
    include_raw: bool = False


@dataclass
class AnalysisResult:
    """Successful analysis, ready to be rendered as an AnalysisResponse."""
    metadata: PageMetadata
    requested_url: str
    normalized_url: str
    final_url: str
    cache_key: str
    cache_hit: bool
    rate_decision: RateDecision
    processing_time_ms: int
    fetched_at: datetime
    timings: Dict[str, int] = field(default_factory=dict)
    http: Optional[HttpInfo] = None
    raw_html: Optional[str] = None

    def to_response(self, api_version: str, now: Optional[datetime] = None) -> AnalysisResponse:
        return AnalysisResponse(
            success=True,
            data=self.metadata,
            meta=ResponseMeta(
                url=self.normalized_url,
                requested_url=self.requested_url,
                final_url=self.final_url,
                cache_hit=self.cache_hit,
                cache_key=self.cache_key,
                processing_time_ms=self.processing_time_ms,
                timings=self.timings,
                fetched_at=self.fetched_at.isoformat(),
                api_version=api_version,
                http=self.http,
                rate_limit=RateLimitStatus.from_decision(self.rate_decision, now),
            ),
            raw_html=self.raw_html,
        )


@dataclass
class AnalysisFailure:
    """Terminal failure of an analysis request."""
    error: AnalyzerError
    stage: AnalysisStage
    rate_decision: Optional[RateDecision] = None

    @property
    def kind(self) -> str:
        return self.error.kind

    @property
    def status_code(self) -> int:
        return self.error.status_code


AnalysisOutcome = Union[AnalysisResult, AnalysisFailure]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class RequestCoordinator:
    """
    Runs one analysis request through validation, rate limiting,
    caching, fetching and extraction.

    Holds no request state of its own.

    Args:
        validator: URL validator
        rate_limiter: Per-client limiter
        cache: Response cache
        fetcher: Guarded page fetcher
        extractor: Metadata extractor
        history: Optional history store (used when history is enabled)
        settings: Application settings
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        validator: UrlValidator,
        rate_limiter: RateLimiter,
        cache: CacheStore,
        fetcher: PageFetcher,
        extractor: MetadataExtractor,
        history: Optional[HistoryRepository] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.fetcher = fetcher
        self.extractor = extractor
        self.history = history
        self.settings = settings or default_settings
        self.clock = clock

    async def analyze(
        self,
        raw_url: str,
        client_identity: str,
        options: Optional[AnalysisOptions] = None,
        user_agent: Optional[str] = None,
    ) -> AnalysisOutcome:
        """
        Analyze one URL for one client.

        Args:
            raw_url: URL as supplied by the caller
            client_identity: Client IP (or other identity) for rate limiting
            options: Cache bypass / raw HTML options
            user_agent: Caller's User-Agent, stored with the request record

        Returns:
            AnalysisResult on success, AnalysisFailure otherwise
        """
        options = options or AnalysisOptions()
        start_time = time.monotonic()
        timings: Dict[str, int] = {}
        stage = AnalysisStage.VALIDATING
        decision: Optional[RateDecision] = None

        try:
            # Validating
            step = time.monotonic()
            is_valid, normalized_url, url_error = self.validator.validate(raw_url)
            timings["validation_ms"] = _elapsed_ms(step)
            if not is_valid:
                logger.info(f"Rejected URL {raw_url!r}: {url_error.kind}")
                return AnalysisFailure(error=url_error, stage=stage)

            cache_key = make_cache_key(normalized_url)

            # RateLimiting
            stage = AnalysisStage.RATE_LIMITING
            step = time.monotonic()
            decision = await asyncio.to_thread(
                self.rate_limiter.check_and_record, client_identity, normalized_url, user_agent
            )
            timings["rate_limit_ms"] = _elapsed_ms(step)
            if not decision.allowed:
                return AnalysisFailure(
                    error=RateLimitError(
                        "Rate limit exceeded. Too many requests from your IP address.",
                        decision,
                        {"retry_after_seconds": decision.seconds_until_reset(self.clock())},
                    ),
                    stage=stage,
                    rate_decision=decision,
                )

            # CacheLookup
            if not options.bypass_cache:
                stage = AnalysisStage.CACHE_LOOKUP
                step = time.monotonic()
                entry = await asyncio.to_thread(self.cache.get, cache_key)
                cached = self._metadata_from_entry(entry) if entry else None
                timings["cache_lookup_ms"] = _elapsed_ms(step)

                if cached is not None:
                    stage = AnalysisStage.CACHE_HIT
                    logger.info(f"Serving cached analysis for {normalized_url} [client={client_identity}]")
                    result = AnalysisResult(
                        metadata=cached,
                        requested_url=raw_url,
                        normalized_url=normalized_url,
                        final_url=entry.final_url,
                        cache_key=cache_key,
                        cache_hit=True,
                        rate_decision=decision,
                        processing_time_ms=_elapsed_ms(start_time),
                        fetched_at=entry.created_at,
                        timings=timings,
                        http=HttpInfo(
                            status_code=entry.http_status,
                            content_type=entry.content_type,
                            content_length=entry.content_length,
                        ),
                        raw_html=entry.raw_payload if options.include_raw else None,
                    )
                    await asyncio.to_thread(self._record_history, client_identity, result)
                    return result

            # Fetching
            stage = AnalysisStage.FETCHING
            step = time.monotonic()
            envelope = await self.fetcher.fetch(normalized_url, client_identity)
            timings["fetch_ms"] = _elapsed_ms(step)

            # Extracting
            stage = AnalysisStage.EXTRACTING
            step = time.monotonic()
            metadata = self.extractor.extract(envelope.content, envelope.final_url)
            timings["extract_ms"] = _elapsed_ms(step)

            # CacheStoring
            stage = AnalysisStage.CACHE_STORING
            step = time.monotonic()
            await asyncio.to_thread(self._store, cache_key, normalized_url, metadata, envelope, options)
            timings["cache_store_ms"] = _elapsed_ms(step)

            result = AnalysisResult(
                metadata=metadata,
                requested_url=raw_url,
                normalized_url=normalized_url,
                final_url=envelope.final_url,
                cache_key=cache_key,
                cache_hit=False,
                rate_decision=decision,
                processing_time_ms=_elapsed_ms(start_time),
                fetched_at=self.clock(),
                timings=timings,
                http=HttpInfo(
                    status_code=envelope.http_status,
                    content_type=envelope.content_type,
                    content_length=envelope.content_length,
                    fetch_time_ms=envelope.fetch_duration_ms,
                    redirect_count=envelope.redirect_count,
                ),
                raw_html=envelope.content if options.include_raw else None,
            )

            # HistoryRecording
            await asyncio.to_thread(self._record_history, client_identity, result)

            logger.info(
                f"Analysis completed for {normalized_url} -> {envelope.final_url} "
                f"in {result.processing_time_ms}ms [client={client_identity}]"
            )
            return result

        except AnalyzerError as e:
            logger.warning(f"Analysis failed at {stage.value} for {raw_url!r}: {e.kind} - {e.message}")
            return AnalysisFailure(error=e, stage=stage, rate_decision=decision)
        except Exception as e:
            logger.exception(f"Unexpected error at {stage.value} for {raw_url!r}: {e}")
            return AnalysisFailure(
                error=InternalError(str(e) or type(e).__name__),
                stage=stage,
                rate_decision=decision,
            )

    def _metadata_from_entry(self, entry: CacheEntry) -> Optional[PageMetadata]:
        try:
            return PageMetadata.model_validate(entry.metadata)
        except SchemaValidationError as e:
            # Unreadable entries are treated as a miss and refreshed
            logger.warning(f"Discarding unreadable cache entry {entry.key}: {e}")
            return None

    def _store(
        self,
        cache_key: str,
        normalized_url: str,
        metadata: PageMetadata,
        envelope: FetchEnvelope,
        options: AnalysisOptions,
    ) -> None:
        stored = self.cache.put(
            cache_key,
            normalized_url,
            metadata.model_dump(mode="json"),
            raw_payload=envelope.content if options.include_raw else None,
            envelope=envelope,
        )
        if not stored:
            logger.warning(f"Analysis of {normalized_url} was not cached")

    def _record_history(self, client_identity: str, result: AnalysisResult) -> None:
        if not self.settings.enable_analysis_history or self.history is None:
            return
        record = HistoryRecord(
            client_identity=client_identity,
            url=result.normalized_url,
            final_url=result.final_url,
            http_status=result.http.status_code if result.http else None,
            title=result.metadata.meta.title,
            description=result.metadata.meta.description,
            og_title=result.metadata.open_graph.title,
            og_description=result.metadata.open_graph.description,
            cache_hit=result.cache_hit,
            duration_ms=result.processing_time_ms,
            created_at=self.clock(),
        )
        try:
            self.history.add(record)
        except StorageError as e:
            logger.warning(f"Failed to record analysis history for {result.normalized_url}: {e.message}")

    def load_cached(self, raw_url: str) -> Tuple[str, CacheEntry]:
        """
        Look up a previous analysis of a URL (used by export).

        Returns:
            Tuple of (normalized_url, cache_entry)

        Raises:
            ValidationError: If the URL is invalid
            AnalysisNotFound: If no valid cached analysis exists
        """
        is_valid, normalized_url, url_error = self.validator.validate(raw_url)
        if not is_valid:
            raise url_error

        entry = self.cache.get(make_cache_key(normalized_url))
        if entry is None:
            raise AnalysisNotFound(
                "No analysis data found for this URL. Please analyze the URL first.",
                {"url": normalized_url},
            )
        return normalized_url, entry

    def list_history(self, client_identity: str, limit: int = 20) -> List[HistoryRecord]:
        """
        Recent analyses of one client, newest first.

        Raises:
            StorageError: If the history store fails
        """
        if self.history is None:
            return []
        return self.history.list_for(client_identity, limit)
