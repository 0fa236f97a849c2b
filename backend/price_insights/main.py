"""Application entry point for the Price Insights API service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from price_insights.api.routes.filters import router as filters_router
from price_insights.api.routes.pre_aggregations import router as pre_aggregations_router
from price_insights.api.routes.queries import router as queries_router
from price_insights.core.config import settings
from price_insights.core.logging import setup_logging
from price_insights.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from price_insights.core.rate_limit import init_rate_limiter
from price_insights.services.analytics_client import close_analytics_client

setup_logging()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)

init_rate_limiter(app)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.on_event("shutdown")
async def shutdown_event():
    """Close the analytics client connection on shutdown."""
    await close_analytics_client()


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    """Simple liveness probe that load balancers and monitors can call."""

    return {"status": "ok"}


app.include_router(queries_router, prefix="/api")
app.include_router(pre_aggregations_router, prefix="/api")
app.include_router(filters_router, prefix="/api")
