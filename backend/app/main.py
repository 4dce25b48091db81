import logging
import sys
from contextlib import asynccontextmanager

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1 import auth, content, users
from app.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
from app.core import background
from app.core.errors import register_exception_handlers
from app.core.rate_limit import RateLimiter
from app.core.tokens import TokenService
from app.db.session import async_session_maker, db_health_check, engine, init_db
from app.services.cache import CacheClient
from app.services.event_log import EventLog
from app.services.session_store import SessionStore
from app.services.users import UserRepository
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI, cache: CacheClient, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    """Wire the process-wide clients into every component. The only place components are built."""
    event_log = EventLog(session_factory, timeout=settings.store_timeout_seconds)
    app.state.cache = cache
    app.state.tokens = TokenService(cache)
    app.state.sessions = SessionStore(cache)
    app.state.users = UserRepository(session_factory, timeout=settings.store_timeout_seconds)
    app.state.event_log = event_log
    app.state.rate_limiter = RateLimiter(event_log)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_jwt_config()
    cache = CacheClient.from_url(settings.redis_url, socket_timeout=settings.redis_socket_timeout_seconds)
    await cache.connect()
    await init_db()
    configure_services(app, cache, async_session_maker)
    logger.info("Startup complete (env=%s)", settings.app_env)
    yield
    await background.drain(settings.background_drain_timeout_seconds)
    await cache.disconnect()
    await engine.dispose()


limiter = Limiter(key_func=get_remote_address, default_limits=[settings.ip_rate_limit])

app = FastAPI(
    title="CulturaFlow API",
    description="Mobile learning backend: authentication, sessions and caches",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1024)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        path = request.url.path
        # Credentials and profile data must never land in a device cache
        if "auth" in path or "user" in path:
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)
app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(content.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
async def health(request: Request):
    db_ok = await db_health_check()
    cache = getattr(request.app.state, "cache", None)
    cache_ok = cache is not None and await cache.health_check()
    status_code = 200 if db_ok and cache_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ok" if status_code == 200 else "degraded",
            "environment": settings.app_env,
            "services": {
                "database": "healthy" if db_ok else "unhealthy",
                "redis": "healthy" if cache_ok else "unhealthy",
            },
        },
    )
