"""Secure Data Proxy - FastAPI app

Sits between the dashboard and Supabase: checks who is asking, checks what they
may see, and returns call data with identifiers masked, transcripts encrypted and
recording URLs replaced by proxy tokens.

Run with: uvicorn dataproxy.main:create_app --factory
Required env: SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_SERVICE_ROLE_KEY, DATA_ENCRYPTION_KEY
"""

import logging
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from dataproxy.config import ProxySettings
from dataproxy.errors import ProxyError
from dataproxy.integrations.supabase_client import SupabaseIdentity, SupabaseStore
from dataproxy.proxy.actions import ProxyAction
from dataproxy.proxy.router import CORS_HEADERS, router as proxy_router
from dataproxy.security.encryption import FieldCipher
from dataproxy.utils.health_check import HealthChecker
from dataproxy.utils.metrics import get_metrics_text, record_request

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(format="%(message)s", level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class PreflightCORSMiddleware(CORSMiddleware):
    """CORSMiddleware that answers accepted browser preflights with 204 and no body"""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=204, headers=headers)


def _action_label(request: Request) -> str:
    action = ProxyAction.parse(request.query_params.get("action"))
    return action.value if action else "invalid"


# ============================================================================
# ERROR HANDLERS
# ============================================================================

async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """Render typed proxy errors as {"error": message}"""
    record_request(_action_label(request), exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=CORS_HEADERS)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=CORS_HEADERS)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=exc)
    record_request(_action_label(request), 500)
    return JSONResponse(status_code=500, content={"error": "Internal server error"}, headers=CORS_HEADERS)


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    settings: Optional[ProxySettings] = None,
    store=None,
    identity=None,
    cipher: Optional[FieldCipher] = None,
) -> FastAPI:
    """Build the app; missing secrets stop it here, not on the first request

    Args:
        settings: Defaults to ProxySettings.from_env()
        store: Backing store client, defaults to SupabaseStore
        identity: Token verifier, defaults to SupabaseIdentity
        cipher: Field cipher, defaults to one built from DATA_ENCRYPTION_KEY
    """
    settings = settings or ProxySettings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Secure Data Proxy",
        description="Role-gated, masked and encrypted access to call data",
        version="1.0.0",
    )

    app.state.settings = settings
    app.state.cipher = cipher or FieldCipher.from_settings(settings)
    app.state.store = store or SupabaseStore(settings)
    app.state.identity = identity or SupabaseIdentity(settings)
    app.state.health = HealthChecker(app.state.identity, app.state.cipher)

    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(proxy_router, tags=["Secure Data Proxy"])

    @app.get("/health/live")
    async def health_live():
        """Kubernetes liveness probe"""
        return await app.state.health.liveness_check()

    @app.get("/health/ready")
    async def health_ready():
        """Kubernetes readiness probe"""
        return await app.state.health.readiness_check()

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus metrics endpoint"""
        return get_metrics_text()

    logger.info("Secure data proxy ready", role_table=settings.role_table)
    return app


if __name__ == "__main__":
    uvicorn.run("dataproxy.main:create_app", factory=True, host="0.0.0.0", port=8000)
