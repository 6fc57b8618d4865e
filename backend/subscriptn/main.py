import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from subscriptn.config import get_settings
from subscriptn.database import init_db
from subscriptn.logger import setup_logging
from subscriptn.routers.auth import router as auth_router
from subscriptn.routers.servers import router as servers_router
from subscriptn.routers.shops import router as shops_router
from subscriptn.routers.subscriptions import router as subscriptions_router, user_router
from subscriptn.routers.webhooks import router as webhooks_router
from subscriptn.routers.payments import router as payments_router
from subscriptn.routers.health import router as health_router
from subscriptn.tasks.scheduler import start_scheduler, stop_scheduler

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize logging, database and scheduler on startup."""
    setup_logging()
    logger.info("Starting up... Initializing database")
    init_db()
    logger.info("Starting background scheduler...")
    start_scheduler()
    yield
    logger.info("Shutting down...")
    stop_scheduler()


app = FastAPI(
    title="SubscriptN API",
    description="Lightning subscriptions for BTCPay shops and infrastructure providers",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are a 400, not FastAPI's default 422."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid request data", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include routers
app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(servers_router, prefix=settings.api_prefix)
app.include_router(shops_router, prefix=settings.api_prefix)
app.include_router(subscriptions_router, prefix=settings.api_prefix)
app.include_router(user_router, prefix=settings.api_prefix)
app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(payments_router, prefix=settings.api_prefix)
app.include_router(health_router, prefix=settings.api_prefix)


@app.get("/")
def root():
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0"
    }
