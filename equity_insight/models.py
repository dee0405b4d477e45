"""
Structured report models.

Model output is only loosely bound by the schema sent with the prompt, so
these models coerce rather than reject: numbers and strings convert into
each other, nulls become empty lists, and unknown fields are kept. A
payload that cannot be coerced at all raises pydantic.ValidationError.
"""

import json
import re
from typing import Annotated, Any, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, default=str)


_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _as_number(value: Any) -> Optional[float]:
    """Accept 2450, "2450.5", "₹2,450" or "Est. 61%"; anything else becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER.search(value.replace(",", ""))
        return float(match.group(0)) if match else None
    return None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_mapping(value: Any) -> Any:
    return {} if value is None else value


Text = Annotated[Optional[str], BeforeValidator(_as_text)]
Number = Annotated[Optional[float], BeforeValidator(_as_number)]
Metric = Union[float, str, None]  # number or annotated string such as "24.1 (Est.)"
TextList = Annotated[List[Text], BeforeValidator(_as_list)]


class ReportModel(BaseModel):
    """Frozen, lenient base for everything parsed from model output."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)


# =============================================================================
# Analysis report
# =============================================================================

class QuantMetrics(ReportModel):
    current_price: Number = None
    pe_ratio: Metric = None
    pb_ratio: Metric = None
    rsi_14: Number = None
    macd: Text = None
    ma_50: Number = None
    ma_200: Number = None
    ma_crossover: Optional[bool] = None
    vwap: Metric = None
    atr_14: Metric = None
    roe: Text = None
    debt_equity: Text = None


class TradePlan(ReportModel):
    action: Text = None  # BUY / SELL / HOLD
    entry_zone: Text = None
    stop_loss: Text = None
    targets: TextList = Field(default_factory=list)
    rationale: Text = None

    @field_validator("action")
    @classmethod
    def normalize_action(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class Scenario(ReportModel):
    probability: Text = None
    target_price: Text = None
    description: Text = None


class Scenarios(ReportModel):
    base: Optional[Scenario] = None
    bull: Optional[Scenario] = None
    bear: Optional[Scenario] = None


class Evidence(ReportModel):
    """
    One cited data point.

    type says which trade plan element the evidence supports:
    entry, stop, target, or general (thesis/macro).
    """

    claim: Text = None
    data: Text = None
    source: Text = None
    confidence: Number = None
    type: Text = "general"

    @field_validator("type")
    @classmethod
    def normalize_type(cls, v: Optional[str]) -> str:
        return v.strip().lower() if v else "general"


class ReasoningStep(ReportModel):
    """One step of the reasoning trace; category is data, logic, projection or risk."""

    description: Text = None
    category: Text = None
    is_speculative: bool = False

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v

    @field_validator("is_speculative", mode="before")
    @classmethod
    def default_speculative(cls, v: Any) -> Any:
        return False if v is None else v


class ChartPoint(ReportModel):
    date: Text = None
    price: Number = None


class AnalysisReport(ReportModel):
    ticker: Text = None
    timestamp_ist: Text = None
    thesis: Text = None
    quant_metrics: Annotated[QuantMetrics, BeforeValidator(_as_mapping)] = Field(default_factory=QuantMetrics)
    trade_plan: Annotated[TradePlan, BeforeValidator(_as_mapping)] = Field(default_factory=TradePlan)
    scenarios: Annotated[Scenarios, BeforeValidator(_as_mapping)] = Field(default_factory=Scenarios)
    risk_factors: TextList = Field(default_factory=list)
    evidence_list: Annotated[List[Evidence], BeforeValidator(_as_list)] = Field(default_factory=list)
    reasoning_trace: Annotated[List[ReasoningStep], BeforeValidator(_as_list)] = Field(default_factory=list)
    alternative_paths: TextList = Field(default_factory=list)
    confidence_score: Number = None
    chart_data_points: Annotated[List[ChartPoint], BeforeValidator(_as_list)] = Field(default_factory=list)

    def evidence_for(self, element: str) -> List[Evidence]:
        """Evidence items supporting one trade plan element (entry, stop, target, general)."""
        return [e for e in self.evidence_list if e.type == element]

    @property
    def speculative_steps(self) -> List[ReasoningStep]:
        return [s for s in self.reasoning_trace if s.is_speculative]


# =============================================================================
# Market overview
# =============================================================================

class MarketIndex(ReportModel):
    name: Text = None
    value: Text = None
    change: Text = None
    percent_change: Text = Field(default=None, alias="percentChange")
    trend: Text = None


class StockMover(ReportModel):
    ticker: Text = None
    price: Text = None
    change: Text = None


class SectorStat(ReportModel):
    sector: Text = None
    performance: Text = None
    trend: Text = None


class MarketNews(ReportModel):
    title: Text = None
    source: Text = None
    time: Text = None
    sentiment: Text = None


class CorporateAction(ReportModel):
    company: Text = None
    type: Text = None
    details: Text = None
    ex_date: Text = None
    impact: Text = None


class FlowData(ReportModel):
    fii_net: Text = None
    dii_net: Text = None
    date: Text = None


class MarketBrief(ReportModel):
    timestamp_ist: Text = None
    market_sentiment: Text = None
    sentiment_score: Number = None
    indices: Annotated[List[MarketIndex], BeforeValidator(_as_list)] = Field(default_factory=list)
    top_gainers: Annotated[List[StockMover], BeforeValidator(_as_list)] = Field(default_factory=list)
    top_losers: Annotated[List[StockMover], BeforeValidator(_as_list)] = Field(default_factory=list)
    sector_performance: Annotated[List[SectorStat], BeforeValidator(_as_list)] = Field(default_factory=list)
    latest_news: Annotated[List[MarketNews], BeforeValidator(_as_list)] = Field(default_factory=list)
    corporate_actions: Annotated[List[CorporateAction], BeforeValidator(_as_list)] = Field(default_factory=list)
    fii_dii: Annotated[FlowData, BeforeValidator(_as_mapping)] = Field(default_factory=FlowData)


# =============================================================================
# Screener
# =============================================================================

class ScreenerMatch(ReportModel):
    ticker: Text = None
    name: Text = None
    sector: Text = None
    price: Text = None
    change: Text = None
    market_cap: Text = None
    pe_ratio: Text = None
    match_reason: Text = None


class ScreenerResult(ReportModel):
    matches: Annotated[List[ScreenerMatch], BeforeValidator(_as_list)] = Field(default_factory=list)


# =============================================================================
# IPO
# =============================================================================

class IPOItem(ReportModel):
    name: Text = None
    symbol: Text = None
    status: Text = None  # Open / Upcoming / Closed / Listed
    type: Text = None  # Mainboard / SME
    open_date: Text = Field(default=None, alias="openDate")
    close_date: Text = Field(default=None, alias="closeDate")
    price_band: Text = Field(default=None, alias="priceBand")
    issue_size: Text = Field(default=None, alias="issueSize")
    listing_date: Text = Field(default=None, alias="listingDate")
    gmp: Text = None
    gmp_percent: Text = Field(default=None, alias="gmpPercent")


class IPOList(ReportModel):
    ipos: Annotated[List[IPOItem], BeforeValidator(_as_list)] = Field(default_factory=list)


class IPODates(ReportModel):
    open: Text = None
    close: Text = None
    allotment: Text = None
    listing: Text = None


class ShareHolding(ReportModel):
    pre_issue: Text = None
    post_issue: Text = None


class IPODetails(ReportModel):
    price_band: Text = None
    lot_size: Text = None
    min_investment: Text = None
    issue_size: Text = None
    dates: Annotated[IPODates, BeforeValidator(_as_mapping)] = Field(default_factory=IPODates)
    share_holding: Annotated[ShareHolding, BeforeValidator(_as_mapping)] = Field(default_factory=ShareHolding)


class Subscription(ReportModel):
    qib: Text = None
    nii: Text = None
    retail: Text = None
    total: Text = None
    as_of: Text = None


class IPOSentiment(ReportModel):
    gmp: Text = None
    gmp_trend: Text = None  # Rising / Falling / Stable
    est_listing_price: Text = None
    listing_gain_pct: Text = None


class IPOAnalysis(ReportModel):
    business_model: Text = None
    financial_strengths: TextList = Field(default_factory=list)
    risk_factors: TextList = Field(default_factory=list)
    verdict: Text = None  # Apply / Avoid / May Apply / Long Term
    verdict_rationale: Text = None


class IPOReport(ReportModel):
    company_name: Text = None
    sector: Text = None
    summary: Text = None
    details: Annotated[IPODetails, BeforeValidator(_as_mapping)] = Field(default_factory=IPODetails)
    subscription: Annotated[Subscription, BeforeValidator(_as_mapping)] = Field(default_factory=Subscription)
    market_sentiment: Annotated[IPOSentiment, BeforeValidator(_as_mapping)] = Field(default_factory=IPOSentiment)
    analysis: Annotated[IPOAnalysis, BeforeValidator(_as_mapping)] = Field(default_factory=IPOAnalysis)
