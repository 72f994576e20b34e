"""
StockSim - Simulated Stock Market
A continuously ticking price generator drives a tradable instrument universe;
users buy and sell against those prices through a ledger-backed wallet and
portfolio, with every order held in a cancellable cooling-off window.
"""
import json
import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from config import get_settings
from database import SessionLocal, init_db
from routers import (
    auth_router,
    stocks_router,
    orders_router,
    wallet_router,
    portfolio_router,
    market_router,
    admin_router
)
from routers.auth import limiter
from services.exceptions import TradingError
from services.market_gate import check_market
from services.price_engine import PriceGenerator
from services.trade_queue import DeferredTradeQueue, make_settler

settings = get_settings()

# Attributes passed through ``extra=`` that the JSON formatter lifts into the record
LOG_CONTEXT_FIELDS = ("request_id", "user_id", "intent_id", "instrument_id")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""
    def format(self, record):
        log = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in LOG_CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log[name] = str(value)
        if record.exc_info and record.exc_info[0]:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log)


def setup_logging(level=logging.INFO):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # Quiet noisy libraries
    for noisy in ("uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


logger = logging.getLogger("stocksim")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: tables, trade queue, price engine. Shutdown in reverse."""
    setup_logging(logging.DEBUG if settings.debug else logging.INFO)
    init_db()
    logger.info("Database initialized")

    queue = DeferredTradeQueue(make_settler(SessionLocal))
    engine = PriceGenerator(SessionLocal)
    app.state.trade_queue = queue
    app.state.price_engine = engine
    if settings.price_engine_enabled:
        engine.start()
    else:
        logger.warning("Price engine disabled; prices will not move")
    logger.info("StockSim API ready (order delay %ss)", queue.delay_seconds)

    yield

    await engine.stop()
    await queue.shutdown()
    logger.info("StockSim API stopped")


OPENAPI_TAGS = [
    {"name": "authentication", "description": "Registration, login and JWT tokens"},
    {"name": "stocks", "description": "Instrument universe with live prices and daily statistics"},
    {"name": "orders", "description": "Submit, inspect and cancel orders during the cooling-off window; trade history"},
    {"name": "wallet", "description": "Cash balance, deposits and withdrawals"},
    {"name": "portfolio", "description": "Holdings and portfolio value"},
    {"name": "market", "description": "Market availability"},
    {"name": "admin", "description": "Operator settings and price history seeding"},
    {"name": "ops", "description": "Health checks"},
]

app = FastAPI(
    title="StockSim API",
    description=(
        "# StockSim\n\n"
        "- Live prices from a background stochastic price generator\n"
        "- Market hours, weekends, holidays and operator overrides\n"
        "- Orders held for a cancellable cooling-off window, then settled atomically\n"
        "- Ledger-backed wallet and portfolio"
    ),
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(TradingError)
async def trading_error_handler(request: Request, exc: TradingError):
    """Trading failures render as {"error": kind, "detail": reason}."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


for router in (
    auth_router,
    stocks_router,
    orders_router,
    wallet_router,
    portfolio_router,
    market_router,
    admin_router,
):
    app.include_router(router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag each request with an id and log method, path, status and duration."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    start = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    if request.url.path != "/health":
        logger.info(
            "%s %s %d %.0fms",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - start) * 1000,
            extra={"request_id": request_id},
        )
    return response


@app.get("/", tags=["ops"])
async def root():
    return {
        "name": "StockSim API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", tags=["ops"])
async def health_check(request: Request):
    """Readiness check: database, market gate, price engine and order queue."""
    checks = {"api": "ok"}
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
        checks["market"] = check_market(db).status
    except Exception:
        logger.exception("Health check database query failed")
        checks["database"] = "error"
    finally:
        db.close()

    engine = getattr(request.app.state, "price_engine", None)
    checks["price_engine"] = "running" if engine and engine.is_running else "stopped"
    queue = getattr(request.app.state, "trade_queue", None)
    checks["pending_orders"] = len(queue) if queue is not None else 0
    overall = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": overall, "service": "stocksim-api", "checks": checks}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
