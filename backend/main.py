import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import get_settings
from backend.database import Base, engine, SessionLocal
from backend.app.bank_integration.errors import ConfigurationError
from backend.app.bank_integration.service import get_provider
from backend.app.bank_integration.scheduler import sync_forever
from backend.app.routes import auth, banking, accounts, transactions, budgets, goals, net_worth, analytics

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    try:
        get_provider()
    except ConfigurationError as e:
        if settings.is_production:
            raise
        logger.warning(f"Bank aggregator not configured, banking endpoints will return 503: {e}")

    sync_task = None
    if settings.is_production:
        logger.info(f"Starting scheduled bank sync every {settings.sync_interval_hours} hours")
        sync_task = asyncio.create_task(sync_forever(SessionLocal))

    yield

    if sync_task:
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="FinancePal API",
    description="Personal finance tracking with open banking sync",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api")
app.include_router(banking.router, prefix="/api")
app.include_router(accounts.router, prefix="/api")
app.include_router(transactions.router, prefix="/api")
app.include_router(budgets.router, prefix="/api")
app.include_router(goals.router, prefix="/api")
app.include_router(net_worth.router, prefix="/api")
app.include_router(analytics.router, prefix="/api")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Bank aggregator configuration error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Banking is not configured on this server"}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


@app.get("/api/health")
def health_check():
    return {"status": "healthy"}
