"""Request descriptors: one immutable request type per report kind."""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class ReportKind(str, Enum):
    ANALYSIS = "analysis"
    MARKET_OVERVIEW = "market_overview"
    SCREENER = "screener"
    IPO_LIST = "ipo_list"
    IPO_DETAIL = "ipo_detail"
    CHAT_LITE = "chat_lite"
    CHAT_DETAILED = "chat_detailed"


EXCHANGES = ("NSE", "BSE")
HORIZONS = ("intraday", "swing", "positional", "long-term")


def normalize_key(value: str) -> str:
    """
    Normalize a free-text request identity into a cache key.

    Trims surrounding whitespace and case-folds, so " aapl " and "AAPL"
    share one key. Idempotent: normalize_key(normalize_key(q)) == normalize_key(q).
    """
    return value.strip().casefold()


@dataclass(frozen=True)
class AnalysisRequest:
    """
    Parameters for a single-stock trade plan.

    Representation Invariants:
    - ticker is uppercase and non-empty
    - exchange is one of EXCHANGES
    - horizon is one of HORIZONS
    - lookback is a positive number of days
    """

    ticker: str
    exchange: str = "NSE"
    horizon: str = "swing"
    lookback: int = 180

    def __post_init__(self) -> None:
        """Validate and normalize fields; frozen, so assign via object.__setattr__."""
        ticker = (self.ticker or "").strip().upper()
        if not ticker:
            raise ValueError("Ticker cannot be empty")
        object.__setattr__(self, "ticker", ticker)

        exchange = (self.exchange or "").strip().upper()
        if exchange not in EXCHANGES:
            raise ValueError(f"Exchange must be one of {', '.join(EXCHANGES)}, got: {self.exchange}")
        object.__setattr__(self, "exchange", exchange)

        horizon = (self.horizon or "").strip().lower()
        if horizon not in HORIZONS:
            raise ValueError(f"Horizon must be one of {', '.join(HORIZONS)}, got: {self.horizon}")
        object.__setattr__(self, "horizon", horizon)

        if int(self.lookback) <= 0:
            raise ValueError(f"Lookback must be a positive number of days, got: {self.lookback}")
        object.__setattr__(self, "lookback", int(self.lookback))

    @property
    def kind(self) -> ReportKind:
        return ReportKind.ANALYSIS


@dataclass(frozen=True)
class MarketOverviewRequest:
    @property
    def kind(self) -> ReportKind:
        return ReportKind.MARKET_OVERVIEW


@dataclass(frozen=True)
class IPOListRequest:
    @property
    def kind(self) -> ReportKind:
        return ReportKind.IPO_LIST


@dataclass(frozen=True)
class ScreenerRequest:
    """
    Free-text screening criteria.

    The query is kept exactly as typed; cache_key is its normalized form.
    """

    query: str

    def __post_init__(self) -> None:
        if not self.query or not self.query.strip():
            raise ValueError("Screener query cannot be empty")

    @property
    def kind(self) -> ReportKind:
        return ReportKind.SCREENER

    @property
    def cache_key(self) -> str:
        return normalize_key(self.query)


@dataclass(frozen=True)
class IPODetailRequest:
    name: str

    def __post_init__(self) -> None:
        name = (self.name or "").strip()
        if not name:
            raise ValueError("IPO name cannot be empty")
        object.__setattr__(self, "name", name)

    @property
    def kind(self) -> ReportKind:
        return ReportKind.IPO_DETAIL


@dataclass(frozen=True)
class ChatRequest:
    """
    A chat question plus the serialized data of the view it was asked from.

    detailed selects the slower, search-enabled model call.
    """

    message: str
    context: str
    detailed: bool = False

    def __post_init__(self) -> None:
        if not self.message or not self.message.strip():
            raise ValueError("Chat message cannot be empty")

    @property
    def kind(self) -> ReportKind:
        return ReportKind.CHAT_DETAILED if self.detailed else ReportKind.CHAT_LITE


RequestDescriptor = Union[
    AnalysisRequest,
    MarketOverviewRequest,
    ScreenerRequest,
    IPOListRequest,
    IPODetailRequest,
    ChatRequest,
]
