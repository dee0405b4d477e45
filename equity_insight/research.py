"""
Report orchestrators.

Each public coroutine runs one request/response cycle:
credential check -> cache lookup -> prompt -> retried model call ->
JSON extraction -> report model -> cache store. Every failure leaves as
AnalysisError carrying a normalized ErrorDescriptor.
"""

import asyncio
import json
import logging
import time
from datetime import date
from typing import Any, Awaitable, Callable, List, Optional, Type, TypeVar

from pydantic import BaseModel

from equity_insight import retry
from equity_insight.cache import (
    IPO_LIST_STORAGE_KEY,
    MARKET_STORAGE_KEY,
    CacheService,
    ScreenerState,
    is_fresh,
)
from equity_insight.config import Settings
from equity_insight.entities import (
    AnalysisRequest,
    ChatRequest,
    IPODetailRequest,
    IPOListRequest,
    MarketOverviewRequest,
    ReportKind,
    RequestDescriptor,
    ScreenerRequest,
)
from equity_insight.errors import (
    AnalysisError,
    EmptyResponseError,
    invalid_request_error,
    missing_credentials_error,
    normalize_error,
)
from equity_insight.extract import extract_json
from equity_insight.gemini_client import ModelClient
from equity_insight.models import (
    AnalysisReport,
    IPOItem,
    IPOList,
    IPOReport,
    MarketBrief,
    ScreenerMatch,
    ScreenerResult,
)
from equity_insight.prompts import (
    PromptSpec,
    build_analysis_prompt,
    build_chat_prompt,
    build_ipo_list_prompt,
    build_ipo_report_prompt,
    build_market_prompt,
    build_screener_prompt,
)
from equity_insight.sequencing import SequenceTracker


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

MARKET_SLOT = MARKET_STORAGE_KEY
IPO_LIST_SLOT = IPO_LIST_STORAGE_KEY
SCREENER_SLOT = "screener"

NO_CONTEXT = "No specific data loaded."
LITE_FALLBACK = "I'm processing that..."
DETAILED_FALLBACK = "I couldn't generate a detailed response."


def serialize_context(context: Any, limit: int = 10000) -> str:
    """
    Turn the current view's data into prompt context.

    Strings pass through, pydantic models and lists of them are dumped to
    JSON; the result is truncated to limit characters.
    """
    if context is None or context == "" or context == [] or context == {}:
        return NO_CONTEXT
    if isinstance(context, str):
        text = context
    else:
        text = json.dumps(_to_jsonable(context), default=str)
    return text[:limit]


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    return value


class ResearchService:
    """
    Caller-facing API: one coroutine per report kind.

    Holds no per-request state; everything shared lives in the injected
    CacheService. Concurrent calls are independent and the last completed
    cache write wins.

    Representation Invariants:
    - _cache is the single CacheService of this application instance
    - _sequences only hands out increasing numbers
    """

    def __init__(
        self,
        client: ModelClient,
        cache: CacheService,
        settings: Settings,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._settings = settings
        self._clock = clock
        self._sleep = sleep
        self._sequences = SequenceTracker()

    @property
    def cache(self) -> CacheService:
        return self._cache

    # -------------------------------------------------------------------------
    # Pipeline steps
    # -------------------------------------------------------------------------

    def _require_credentials(self) -> None:
        if not self._settings.has_credentials:
            raise AnalysisError(missing_credentials_error())

    async def _call_model(self, spec: PromptSpec) -> str:
        """Retry-wrapped model call returning the raw text (possibly empty)."""
        retry_settings = self._settings.retry
        return await retry.execute(
            lambda: self._client.generate_content(
                spec.prompt,
                use_search=spec.use_search,
                temperature=spec.temperature,
                response_schema=spec.schema,
            ),
            max_attempts=retry_settings.max_attempts,
            base_delay=retry_settings.base_delay,
            rate_limit_delay=retry_settings.rate_limit_delay,
            sleep=self._sleep,
        )

    async def _fetch_report(
        self,
        spec: PromptSpec,
        request: RequestDescriptor,
        model: Type[M],
        subject: Optional[str] = None,
    ) -> M:
        text = await self._call_model(spec)
        if not text.strip():
            raise EmptyResponseError()
        payload = extract_json(text, request.kind, subject=subject)
        return model.model_validate(payload)

    def _fail(self, kind: ReportKind, error: Exception) -> AnalysisError:
        """Single exit point for failures: normalize, log once, wrap."""
        if isinstance(error, AnalysisError):
            return error
        descriptor = normalize_error(error)
        logger.error(
            "%s request failed: %s (%s)", kind.value, descriptor.title, descriptor.details,
        )
        return AnalysisError(descriptor)

    # -------------------------------------------------------------------------
    # Orchestrators
    # -------------------------------------------------------------------------

    async def generate_analysis(self, request: AnalysisRequest) -> AnalysisReport:
        """
        Deep-dive trade plan for one ticker. Never cached.

        Raises:
            AnalysisError: For any failure, including unknown tickers
                ("Ticker Not Found", not retryable)
        """
        self._require_credentials()
        try:
            return await self._fetch_report(
                build_analysis_prompt(request),
                request,
                AnalysisReport,
                subject=request.ticker,
            )
        except Exception as e:
            raise self._fail(request.kind, e) from e

    async def get_market_overview(self, force_refresh: bool = False) -> MarketBrief:
        """Live market brief, cached (and persisted) for the market TTL."""
        self._require_credentials()
        request = MarketOverviewRequest()

        entry = self._cache.market.get(MARKET_SLOT)
        if not force_refresh and is_fresh(entry, self._settings.cache.market_ttl, self._clock()):
            logger.debug("Serving market data from cache")
            return entry.payload

        try:
            brief = await self._fetch_report(
                build_market_prompt(), request, MarketBrief,
            )
        except Exception as e:
            raise self._fail(request.kind, e) from e

        self._cache.market.put(MARKET_SLOT, brief)
        return brief

    async def screen_stocks(self, query: str, force_refresh: bool = False) -> List[ScreenerMatch]:
        """
        Stocks matching free-text criteria, cached per normalized query.

        The query is remembered exactly as typed for get_screener_state().
        When searches overlap, only the most recently issued one updates the
        remembered query.
        """
        self._require_credentials()
        try:
            request = ScreenerRequest(query)
        except ValueError as e:
            raise AnalysisError(invalid_request_error(str(e))) from e

        sequence = self._sequences.issue()
        entry = self._cache.screener.get(request.cache_key)
        if not force_refresh and is_fresh(entry, self._settings.cache.screener_ttl, self._clock()):
            logger.debug("Serving screener data from cache for query: '%s' (key: '%s')", query, request.cache_key)
            self._remember_query(sequence, query)
            return entry.payload

        try:
            result = await self._fetch_report(
                build_screener_prompt(request), request, ScreenerResult, subject=query,
            )
        except Exception as e:
            raise self._fail(request.kind, e) from e

        matches = list(result.matches)
        self._cache.screener.put(request.cache_key, matches)
        self._remember_query(sequence, query)
        return matches

    def _remember_query(self, sequence: int, query: str) -> None:
        if self._sequences.accept(SCREENER_SLOT, sequence):
            self._cache.remember_screener_query(query)
        else:
            logger.debug("Discarding stale screener result for query: '%s'", query)

    def get_screener_state(self) -> Optional[ScreenerState]:
        """Last-served screener query (as typed) and its matches, for UI restoration."""
        return self._cache.screener_state()

    async def fetch_ipo_list(self, force_refresh: bool = False) -> List[IPOItem]:
        """Open, upcoming and recently listed IPOs, cached (and persisted) for the IPO TTL."""
        self._require_credentials()
        request = IPOListRequest()

        entry = self._cache.ipo_list.get(IPO_LIST_SLOT)
        if not force_refresh and is_fresh(entry, self._settings.cache.ipo_ttl, self._clock()):
            logger.debug("Serving IPO list from cache")
            return entry.payload

        try:
            result = await self._fetch_report(
                build_ipo_list_prompt(date.fromtimestamp(self._clock())),
                request,
                IPOList,
            )
        except Exception as e:
            raise self._fail(request.kind, e) from e

        items = list(result.ipos)
        self._cache.ipo_list.put(IPO_LIST_SLOT, items)
        return items

    async def generate_ipo_report(self, name: str) -> IPOReport:
        """Due-diligence report for one IPO. Never cached."""
        self._require_credentials()
        try:
            request = IPODetailRequest(name)
        except ValueError as e:
            raise AnalysisError(invalid_request_error(str(e))) from e

        try:
            return await self._fetch_report(
                build_ipo_report_prompt(request), request, IPOReport, subject=request.name,
            )
        except Exception as e:
            raise self._fail(request.kind, e) from e

    async def chat_lite(self, message: str, context: Any = None) -> str:
        """Fast one-or-two sentence answer from context only (no search)."""
        return await self._chat(message, context, detailed=False)

    async def chat_detailed(self, message: str, context: Any = None) -> str:
        """Slower, search-grounded answer."""
        return await self._chat(message, context, detailed=True)

    async def _chat(self, message: str, context: Any, detailed: bool) -> str:
        self._require_credentials()
        try:
            request = ChatRequest(
                message=message,
                context=serialize_context(context, self._settings.chat_context_limit),
                detailed=detailed,
            )
        except ValueError as e:
            raise AnalysisError(invalid_request_error(str(e))) from e

        try:
            text = await self._call_model(build_chat_prompt(request))
        except Exception as e:
            raise self._fail(request.kind, e) from e
        if text.strip():
            return text
        return DETAILED_FALLBACK if detailed else LITE_FALLBACK
