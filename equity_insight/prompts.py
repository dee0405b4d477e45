"""
Prompt and output-schema builders, one per report kind.

Every builder is a pure function of its inputs. Schemas use the Gemini
schema dialect ("OBJECT", "STRING", ...) and are embedded in the prompt;
they describe what we ask for, not what we are guaranteed to get back.
"""

import json
from dataclasses import dataclass
from datetime import date
from typing import Optional

from equity_insight.entities import AnalysisRequest, ChatRequest, IPODetailRequest, ScreenerRequest


@dataclass(frozen=True)
class PromptSpec:
    """Everything needed for one model call."""
    prompt: str
    schema: Optional[dict]
    use_search: bool
    temperature: float


JSON_DIRECTIVE = "Return the result STRICTLY as a raw JSON object. Do not use Markdown formatting."

EVIDENCE_TYPES = ["entry", "stop", "target", "general"]
REASONING_CATEGORIES = ["data", "logic", "projection", "risk"]
SPECULATIVE_THRESHOLD = 70  # percent confidence


def _string(description: Optional[str] = None, enum: Optional[list] = None) -> dict:
    schema: dict = {"type": "STRING"}
    if enum:
        schema["enum"] = enum
    if description:
        schema["description"] = description
    return schema


def _number(description: Optional[str] = None) -> dict:
    schema: dict = {"type": "NUMBER"}
    if description:
        schema["description"] = description
    return schema


def _object(properties: dict, required: Optional[list] = None, description: Optional[str] = None) -> dict:
    schema: dict = {"type": "OBJECT", "properties": properties}
    if required:
        schema["required"] = required
    if description:
        schema["description"] = description
    return schema


def _array(items: dict, description: Optional[str] = None) -> dict:
    schema: dict = {"type": "ARRAY", "items": items}
    if description:
        schema["description"] = description
    return schema


def _render_schema(schema: dict) -> str:
    return json.dumps(schema, indent=2)


# =============================================================================
# Schemas
# =============================================================================

_SCENARIO = _object({
    "probability": _string(),
    "target_price": _string(),
    "description": _string(),
})

ANALYSIS_SCHEMA = _object(
    {
        "ticker": _string(),
        "timestamp_ist": _string("Current timestamp in IST"),
        "thesis": _string("A quick 2-line thesis summary."),
        "quant_metrics": _object(
            {
                "current_price": _number(),
                "pe_ratio": _string(),
                "pb_ratio": _string(),
                "rsi_14": _number(),
                "macd": _string(),
                "ma_50": _number(),
                "ma_200": _number(),
                "ma_crossover": {"type": "BOOLEAN"},
                "vwap": _string(),
                "atr_14": _string(),
                "roe": _string(),
                "debt_equity": _string(),
            },
            required=["current_price", "rsi_14", "ma_50", "ma_200"],
        ),
        "trade_plan": _object(
            {
                "action": _string(enum=["BUY", "SELL", "HOLD"]),
                "entry_zone": _string(),
                "stop_loss": _string(),
                "targets": _array(_string()),
                "rationale": _string(),
            },
            required=["action", "entry_zone", "stop_loss", "targets"],
        ),
        "scenarios": _object(
            {"base": _SCENARIO, "bull": _SCENARIO, "bear": _SCENARIO},
            required=["base", "bull", "bear"],
        ),
        "risk_factors": _array(_string()),
        "evidence_list": _array(_object(
            {
                "claim": _string(),
                "data": _string(),
                "source": _string(),
                "confidence": _number("Confidence percentage (0-100)"),
                "type": _string(
                    "Categorize evidence based on which trade plan element it justifies.",
                    enum=EVIDENCE_TYPES,
                ),
            },
            required=["claim", "data", "source", "confidence", "type"],
        )),
        "reasoning_trace": _array(
            _object(
                {
                    "description": _string(),
                    "category": _string(
                        "Type of reasoning step: data observation, logical inference, "
                        "future projection, or risk identification.",
                        enum=REASONING_CATEGORIES,
                    ),
                    "is_speculative": {
                        "type": "BOOLEAN",
                        "description": (
                            f"Set to true if this step involves low confidence (<{SPECULATIVE_THRESHOLD}%) "
                            "or uncertain future assumptions."
                        ),
                    },
                },
                required=["description", "category", "is_speculative"],
            ),
            description="Structured step-by-step reasoning used to arrive at the thesis.",
        ),
        "alternative_paths": _array(_string(), description="Alternative reasoning paths considered."),
        "confidence_score": _number("Overall confidence score 0-100"),
        "chart_data_points": _array(
            _object({"date": _string(), "price": _number()}),
            description="Generate 20 simulated data points representing the recent price trend for visualization.",
        ),
    },
    required=[
        "ticker", "thesis", "quant_metrics", "trade_plan", "scenarios",
        "evidence_list", "reasoning_trace", "risk_factors",
    ],
)

_TREND = _string(enum=["up", "down", "neutral"])
_MOVER = _object({"ticker": _string(), "price": _string(), "change": _string()})

MARKET_SCHEMA = _object(
    {
        "timestamp_ist": _string(),
        "market_sentiment": _string("Bullish, Bearish, or Neutral"),
        "sentiment_score": _number("0 (Fear) to 100 (Greed)"),
        "indices": _array(_object({
            "name": _string(),
            "value": _string(),
            "change": _string(),
            "percentChange": _string(),
            "trend": _TREND,
        })),
        "top_gainers": _array(_MOVER),
        "top_losers": _array(_MOVER),
        "sector_performance": _array(_object({
            "sector": _string(),
            "performance": _string(),
            "trend": _TREND,
        })),
        "latest_news": _array(_object({
            "title": _string(),
            "source": _string(),
            "time": _string(),
            "sentiment": _string(enum=["positive", "negative", "neutral"]),
        })),
        "corporate_actions": _array(_object({
            "company": _string(),
            "type": _string(enum=["Dividend", "Buyback", "Split", "Bonus", "Rights", "AGM"]),
            "details": _string(),
            "ex_date": _string(),
            "impact": _string(enum=["Positive", "Negative", "Neutral"]),
        })),
        "fii_dii": _object({"fii_net": _string(), "dii_net": _string(), "date": _string()}),
    },
    required=[
        "market_sentiment", "indices", "top_gainers", "top_losers",
        "sector_performance", "latest_news", "fii_dii", "corporate_actions",
    ],
)

SCREENER_SCHEMA = _object(
    {
        "matches": _array(_object({
            "ticker": _string(),
            "name": _string(),
            "sector": _string(),
            "price": _string(),
            "change": _string("Percentage change today"),
            "market_cap": _string(),
            "pe_ratio": _string(),
            "match_reason": _string("Short explanation why this stock matches criteria"),
        })),
    },
    required=["matches"],
)

IPO_LIST_SCHEMA = _object(
    {
        "ipos": _array(_object({
            "name": _string(),
            "symbol": _string(),
            "status": _string(enum=["Open", "Upcoming", "Closed", "Listed"]),
            "type": _string(enum=["Mainboard", "SME"]),
            "openDate": _string(),
            "closeDate": _string(),
            "priceBand": _string(),
            "issueSize": _string(),
            "listingDate": _string(),
            "gmp": _string(),
            "gmpPercent": _string(),
        })),
    },
    required=["ipos"],
)

IPO_REPORT_SCHEMA = _object(
    {
        "company_name": _string(),
        "sector": _string(),
        "summary": _string(),
        "details": _object({
            "price_band": _string(),
            "lot_size": _string(),
            "min_investment": _string(),
            "issue_size": _string(),
            "dates": _object({
                "open": _string(),
                "close": _string(),
                "allotment": _string(),
                "listing": _string(),
            }),
            "share_holding": _object({"pre_issue": _string(), "post_issue": _string()}),
        }),
        "subscription": _object({
            "qib": _string(),
            "nii": _string(),
            "retail": _string(),
            "total": _string(),
            "as_of": _string(),
        }),
        "market_sentiment": _object({
            "gmp": _string(),
            "gmp_trend": _string(enum=["Rising", "Falling", "Stable"]),
            "est_listing_price": _string(),
            "listing_gain_pct": _string(),
        }),
        "analysis": _object({
            "business_model": _string(),
            "financial_strengths": _array(_string()),
            "risk_factors": _array(_string()),
            "verdict": _string(enum=["Apply", "Avoid", "May Apply", "Long Term"]),
            "verdict_rationale": _string(),
        }),
    },
    required=["company_name", "sector", "summary", "details", "subscription", "market_sentiment", "analysis"],
)


# =============================================================================
# Builders
# =============================================================================

def build_analysis_prompt(request: AnalysisRequest) -> PromptSpec:
    """Deep-dive trade plan for one ticker."""
    prompt = f"""
Act as a professional Indian-equity research analyst.
Perform a deep dive analysis for {request.ticker} on {request.exchange} with a '{request.horizon}' horizon.
Lookback period: {request.lookback} days.

REQUIRED DATA TO FETCH & ANALYZE (Use Google Search):
1. Fundamentals: P/E, P/B, Debt/Equity, ROE (Last available data).
2. Technicals: Current Price, SMA 50, SMA 200, RSI(14), MACD, VWAP.
3. Flows: Recent FII/DII sentiment or flow news.
4. Macro: RBI Repo rate context, INR/USD trend, Brent Crude levels.
5. Corporate Events/News: Recent announcements, earnings dates.

ANALYSIS REQUIREMENTS:
- Evidence-first reasoning. Cite sources.
- Produce a structured trade plan.
- Evaluate 3 scenarios (Base, Bull, Bear).
- Provide a structured reasoning trace (Chain of Thought) that categorizes each step (e.g., is it a data observation or a projection?).
- **CRITICAL**: In the 'evidence_list', explicitly categorize each item as 'entry' (supports entry zone), 'stop' (supports stop loss), 'target' (supports price targets), or 'general' (thesis/macro).
- **CRITICAL**: In 'reasoning_trace', tag each step with a 'category' of 'data', 'logic', 'projection' or 'risk', and mark steps as 'is_speculative': true if the confidence is <{SPECULATIVE_THRESHOLD}%.

Use real-time data from Google Search to fill in the metrics.
If specific exact numbers aren't found, estimate based on latest available reports and explicitly state "Est." in the data field.

OUTPUT FORMAT:
{JSON_DIRECTIVE}
Follow this schema exactly:
{_render_schema(ANALYSIS_SCHEMA)}
"""
    return PromptSpec(prompt=prompt, schema=ANALYSIS_SCHEMA, use_search=True, temperature=0.2)


def build_market_prompt() -> PromptSpec:
    """Live overview of the Indian market (NSE/BSE)."""
    prompt = f"""
Fetch the latest live market data for the Indian Stock Market (NSE/BSE).
1. INDICES: Get current values, changes, and % change for NIFTY 50, SENSEX, and BANK NIFTY.
2. MOVERS: Identify top 3 Gainers and top 3 Losers from NIFTY 50 today.
3. SECTORS: summarize performance of key sectors (IT, Bank, Auto, Pharma, Metal).
4. NEWS: Top 4 latest market-moving news headlines.
5. FII/DII: Latest available provisional net flow data.
6. SENTIMENT: Analyze overall market mood.
7. CORPORATE ACTIONS: List 4 upcoming major corporate actions (Dividends, Splits, Buybacks) with ex-dates within the next 14 days. Include details like amount or ratio.

OUTPUT FORMAT:
{JSON_DIRECTIVE}
Adhere to this schema:
{_render_schema(MARKET_SCHEMA)}
"""
    return PromptSpec(prompt=prompt, schema=MARKET_SCHEMA, use_search=True, temperature=0.1)


def build_screener_prompt(request: ScreenerRequest) -> PromptSpec:
    """Criteria-driven candidate search; the query is passed through as typed."""
    prompt = f"""
Act as a Smart Stock Screener for Indian Equities (NSE).
USER CRITERIA: "{request.query.strip()}"

Task:
1. Identify 5-8 stocks that best match the user's criteria.
2. Use Google Search to find their *latest* real-time price, today's % change, and key metrics.
3. Ensure data is accurate and up-to-date.

OUTPUT FORMAT:
{JSON_DIRECTIVE}
Adhere to this schema:
{_render_schema(SCREENER_SCHEMA)}
"""
    return PromptSpec(prompt=prompt, schema=SCREENER_SCHEMA, use_search=True, temperature=0.2)


def build_ipo_list_prompt(today: date) -> PromptSpec:
    """Current Mainboard and SME IPO calendar as of `today`."""
    prompt = f"""
Find the latest Mainboard and SME IPOs in India for {today.strftime("%a %b %d %Y")}.

Task:
1. Identify IPOs that are currently 'Open', 'Upcoming' (next 7 days), or 'Recently Listed' (last 14 days).
2. Fetch their Price Band, Dates, Issue Size.
3. Identify if the IPO is 'Mainboard' or 'SME' category.
4. **Important**: Search for the latest 'Grey Market Premium' (GMP) for each.

OUTPUT FORMAT:
{JSON_DIRECTIVE}
Adhere to this schema:
{_render_schema(IPO_LIST_SCHEMA)}
"""
    return PromptSpec(prompt=prompt, schema=IPO_LIST_SCHEMA, use_search=True, temperature=0.1)


def build_ipo_report_prompt(request: IPODetailRequest) -> PromptSpec:
    """Due diligence for one IPO."""
    prompt = f"""
Act as a professional IPO Analyst.
Perform a detailed Due Diligence report for the IPO: "{request.name}".

Task:
1. Fetch official RHP details: Dates, Price, Lot Size, Issue Structure.
2. Analyze Subscription Status (QIB, NII, Retail) if open/closed.
3. Find the latest GMP and calculate estimated listing gain.
4. Analyze Financials (Revenue/Profit growth) and Business Model.
5. Provide a clear Verdict (Apply/Avoid).

OUTPUT FORMAT:
{JSON_DIRECTIVE}
Adhere to this schema:
{_render_schema(IPO_REPORT_SCHEMA)}
"""
    return PromptSpec(prompt=prompt, schema=IPO_REPORT_SCHEMA, use_search=True, temperature=0.2)


def build_chat_prompt(request: ChatRequest) -> PromptSpec:
    """
    Chat answer grounded in the current view's data.

    The lite variant is tuned for speed and never searches; the detailed
    variant may use Google Search and should cite what it finds.
    """
    if not request.detailed:
        prompt = f"""
You are an AI financial assistant in an app called "EquityInsight Pro".

CURRENT CONTEXT:
{request.context}

USER QUERY: "{request.message}"

INSTRUCTIONS:
- You are the "Lite" model. Your goal is SPEED.
- Provide a concise, 1-2 sentence answer based *strictly* on the provided context or general knowledge.
- Do NOT perform any searches (you can't).
- If the user asks about specific data in the context, summarize it quickly.
"""
        return PromptSpec(prompt=prompt, schema=None, use_search=False, temperature=0.3)

    prompt = f"""
You are an AI financial analyst in "EquityInsight Pro".

CURRENT VIEW DATA (Context):
{request.context}

USER QUERY: "{request.message}"

INSTRUCTIONS:
- Provide a detailed, helpful response.
- Use the provided context data as your primary source.
- If the user asks for external information (news, definitions, broader trends), use Google Search to find the latest info.
- Cite sources if you use Search.
- Be friendly but professional.
"""
    return PromptSpec(prompt=prompt, schema=None, use_search=True, temperature=0.3)
