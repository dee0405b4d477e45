"""
FastAPI application exposing the research service.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import logging
import re
import time

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
import uvicorn

from equity_insight import __version__
from equity_insight.cache import CacheService
from equity_insight.chat import ChatSession
from equity_insight.config import Settings, load_settings
from equity_insight.entities import EXCHANGES, HORIZONS, AnalysisRequest
from equity_insight.errors import AnalysisError, invalid_request_error
from equity_insight.gemini_client import GeminiClient
from equity_insight.research import ResearchService
from equity_insight.scheduler import MarketRefresher

# =============================================================================
# Configuration
# =============================================================================

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("equity_insight.api")

# Rate limiting (in-memory simple implementation)
RATE_LIMIT_REQUESTS = 10
RATE_LIMIT_WINDOW = 60  # seconds
rate_limit_store: Dict[str, List[float]] = {}

# NSE/BSE symbols: letters, digits and a few separators (M&M, BAJAJ-AUTO)
TICKER_PATTERN = re.compile(r'^[A-Z0-9&.\-]{1,20}$')


# =============================================================================
# Helpers
# =============================================================================

def check_rate_limit(client_ip: str) -> bool:
    """
    Check if client has exceeded rate limit.
    Returns True if request is allowed, False if rate limited.
    """
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW

    # Clean old entries
    if client_ip in rate_limit_store:
        rate_limit_store[client_ip] = [
            ts for ts in rate_limit_store[client_ip] if ts > window_start
        ]
    else:
        rate_limit_store[client_ip] = []

    if len(rate_limit_store[client_ip]) >= RATE_LIMIT_REQUESTS:
        return False

    rate_limit_store[client_ip].append(now)
    return True


def enforce_rate_limit(req: Request) -> None:
    """Dependency for endpoints that may reach the model."""
    client_ip = req.client.host if req.client else "unknown"
    if not check_rate_limit(client_ip):
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please wait before making another request."
        )


def get_service(req: Request) -> ResearchService:
    return req.app.state.service


def get_chat(req: Request) -> ChatSession:
    return req.app.state.chat


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    return value


# =============================================================================
# Models
# =============================================================================

class AnalyzeBody(BaseModel):
    """Request model for analyze endpoint with input validation."""
    ticker: str
    exchange: str = "NSE"
    horizon: str = "swing"
    lookback: int = 180

    @field_validator('ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        """Validate and sanitize ticker symbol."""
        ticker = v.strip().upper()
        if not TICKER_PATTERN.match(ticker):
            raise ValueError("Ticker must be 1-20 characters (A-Z, 0-9, '&', '-', '.')")
        return ticker

    @field_validator('exchange')
    @classmethod
    def validate_exchange(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in EXCHANGES:
            raise ValueError(f"Exchange must be one of {', '.join(EXCHANGES)}")
        return v

    @field_validator('horizon')
    @classmethod
    def validate_horizon(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in HORIZONS:
            raise ValueError(f"Horizon must be one of {', '.join(HORIZONS)}")
        return v

    @field_validator('lookback')
    @classmethod
    def validate_lookback(cls, v: int) -> int:
        if v <= 0 or v > 3650:
            raise ValueError("Lookback must be between 1 and 3650 days")
        return v


class ScreenerBody(BaseModel):
    query: str
    refresh: bool = False


class IPOReportBody(BaseModel):
    name: str


class ChatBody(BaseModel):
    message: str
    context: Optional[Any] = None


class ViewBody(BaseModel):
    view: str


# =============================================================================
# App Initialization
# =============================================================================

def create_app(
    service: Optional[ResearchService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    The CacheService and ResearchService are created once here (or injected,
    e.g. by tests) and shared by every request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or load_settings()
        research = service
        if research is None:
            if not app_settings.has_credentials:
                logger.warning("API_KEY is not set; report endpoints will return 'Missing API Key'")
            research = ResearchService(
                client=GeminiClient(app_settings.api_key, app_settings.model_name),
                cache=CacheService.create(app_settings),
                settings=app_settings,
            )
        app.state.service = research
        app.state.chat = ChatSession(research)

        refresher = None
        if app_settings.market_auto_refresh:
            refresher = MarketRefresher(research, interval=app_settings.market_refresh_interval)
            refresher.start()
        app.state.refresher = refresher

        yield

        if refresher is not None:
            await refresher.stop()

    app = FastAPI(
        title="EquityInsight API",
        version=__version__,
        description="AI-generated trade plans, market briefs, screeners and IPO due diligence",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware - restrict origins in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)

        # OWASP recommended security headers
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store, max-age=0"

        return response

    @app.exception_handler(AnalysisError)
    async def analysis_error_handler(request: Request, exc: AnalysisError):
        """Structured errors go out as their descriptor; retryable ones as 503."""
        status_code = 503 if exc.descriptor.is_retryable else 422
        return JSONResponse(status_code=status_code, content={"error": exc.descriptor.to_dict()})

    # =========================================================================
    # Endpoints
    # =========================================================================

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": "EquityInsight API", "version": __version__}

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post("/api/analyze", dependencies=[Depends(enforce_rate_limit)])
    async def analyze(body: AnalyzeBody, research: ResearchService = Depends(get_service)):
        """Trade plan, scenarios and reasoning trace for one ticker."""
        try:
            request = AnalysisRequest(
                ticker=body.ticker,
                exchange=body.exchange,
                horizon=body.horizon,
                lookback=body.lookback,
            )
        except ValueError as e:
            raise AnalysisError(invalid_request_error(str(e))) from e
        report = await research.generate_analysis(request)
        return _dump(report)

    @app.get("/api/market", dependencies=[Depends(enforce_rate_limit)])
    async def market(
        refresh: bool = Query(False),
        research: ResearchService = Depends(get_service),
    ):
        """Market brief; served from cache unless refresh is set or the cache expired."""
        return _dump(await research.get_market_overview(force_refresh=refresh))

    @app.post("/api/screener", dependencies=[Depends(enforce_rate_limit)])
    async def screener(body: ScreenerBody, research: ResearchService = Depends(get_service)):
        matches = await research.screen_stocks(body.query, force_refresh=body.refresh)
        return {"query": body.query, "matches": _dump(matches)}

    @app.get("/api/screener/state")
    async def screener_state(research: ResearchService = Depends(get_service)):
        """Last-served screener query and matches, for restoring the screener view."""
        state = research.get_screener_state()
        if state is None:
            return {"query": None, "matches": []}
        return {"query": state.query, "matches": _dump(state.data)}

    @app.get("/api/ipos", dependencies=[Depends(enforce_rate_limit)])
    async def ipos(
        refresh: bool = Query(False),
        research: ResearchService = Depends(get_service),
    ):
        return {"ipos": _dump(await research.fetch_ipo_list(force_refresh=refresh))}

    @app.post("/api/ipos/report", dependencies=[Depends(enforce_rate_limit)])
    async def ipo_report(body: IPOReportBody, research: ResearchService = Depends(get_service)):
        return _dump(await research.generate_ipo_report(body.name))

    @app.post("/api/chat", dependencies=[Depends(enforce_rate_limit)])
    async def chat(body: ChatBody, session: ChatSession = Depends(get_chat)):
        """
        Fast answer now; the detailed answer replaces it in the transcript
        (GET /api/chat/messages) once it arrives.
        """
        reply = await session.send(body.message, body.context)
        if reply is None:
            raise HTTPException(status_code=400, detail="Message cannot be empty")
        return reply.to_dict()

    @app.get("/api/chat/messages")
    async def chat_messages(session: ChatSession = Depends(get_chat)):
        return {
            "messages": [m.to_dict() for m in session.messages],
            "pending": session.pending,
        }

    @app.post("/api/chat/view")
    async def chat_view(body: ViewBody, session: ChatSession = Depends(get_chat)):
        return session.switch_view(body.view).to_dict()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
