import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from learning_planner.api.v1 import auth

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("learning_planner").setLevel(logging.DEBUG)
from learning_planner.config import settings
from learning_planner.core.errors import AuthError, InvalidConfiguration
from learning_planner.core.rate_limit import limiter
from learning_planner.db.session import init_db
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_token_cleanup():
    """Delete refresh tokens that expired more than the retention window ago."""
    from learning_planner.api.deps import build_auth_service
    from learning_planner.db.session import async_session_maker

    async with async_session_maker() as session:
        deleted = await build_auth_service(session).purge_expired()
        await session.commit()
    logger.info("Scheduled refresh token cleanup: %s rows deleted", deleted)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_auth_config()
    await init_db()
    scheduler.add_job(
        scheduled_token_cleanup,
        "interval",
        hours=max(1, settings.token_cleanup_interval_hours),
        id="refresh_token_cleanup",
        replace_existing=True,
    )
    scheduler.start()
    yield
    scheduler.shutdown()


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def config_error_handler(request: Request, exc: InvalidConfiguration) -> JSONResponse:
    logger.error("Auth configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app = FastAPI(
    title="Learning Planner API",
    description="Learning session planner backend: authentication and refresh token rotation",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(AuthError, auth_error_handler)
app.add_exception_handler(InvalidConfiguration, config_error_handler)
app.add_middleware(SlowAPIMiddleware)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(_SECURITY_HEADERS)
    if settings.enable_hsts:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Credentialed requests carry the refresh cookie, so only listed origins are allowed.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)
app.include_router(auth.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
