import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from translate_gateway import __version__
from translate_gateway.api.v1.router import api_v1_router
from translate_gateway.core.config import settings, validate_settings_for_production
from translate_gateway.core.logging import setup_logging
from translate_gateway.core.metrics import PrometheusMiddleware, metrics_response
from translate_gateway.gateway.errors import Aborted
from translate_gateway.gateway.gateway import TranslationGateway

# Configure logging before anything else
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    app.state.gateway = TranslationGateway(settings.translator)
    provider = settings.translator.provider
    logger.info(
        "Starting translation gateway %s (provider=%s, endpoint=%s)",
        __version__,
        provider.type.value,
        provider.endpoint or "demo",
    )

    yield

    # Shutdown
    app.state.gateway.close()
    logger.info("Translation gateway shut down")


app = FastAPI(
    title="Translation Gateway",
    description="Rate-limited, retrying, batched translation dispatch with result caching",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


# Log unhandled exceptions with their traceback
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


@app.exception_handler(Aborted)
async def _aborted_handler(request: Request, exc: Aborted):
    return JSONResponse(status_code=409, content={"detail": str(exc) or "Cancelled"})


app.add_middleware(PrometheusMiddleware)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    gateway: TranslationGateway = request.app.state.gateway
    return {
        "status": "ok",
        "provider": gateway.provider.name,
        "demo_mode": bool(getattr(gateway.provider, "demo_mode", False)),
        "scheduler_closed": gateway.scheduler.closed,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
