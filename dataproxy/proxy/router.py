"""Proxy Router - The single secure-data-proxy endpoint

Endpoints:
- OPTIONS /secure-data-proxy: bare OPTIONS; browser preflights are answered by the CORS layer
- GET|POST /secure-data-proxy?action=<action>: gated, masked view of call data

Flow: gate (token -> role) -> action lookup -> role check -> handler.
Nothing is fetched before the gate has finished.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response

from dataproxy.errors import ProxyError, UpstreamError, ValidationError
from dataproxy.governance.auth import Principal, authorize, get_principal
from dataproxy.proxy.actions import ProxyAction
from dataproxy.proxy.handlers import HANDLERS, ProxyContext, ProxyParams
from dataproxy.utils.metrics import record_request

router = APIRouter()
logger = structlog.get_logger()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


@router.options("/secure-data-proxy")
async def preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@router.api_route("/secure-data-proxy", methods=["GET", "POST"])
async def secure_data_proxy(
    request: Request,
    action: Optional[str] = Query(None),
    engineer_id: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None),
    call_id: Optional[str] = Query(None),
    principal: Principal = Depends(get_principal),
):
    """Serve one masked/encrypted view of call data

    Returns:
        JSON array or object; sensitive fields are masked, encrypted or proxied

    Raises:
        ValidationError (400) for a missing or unknown action
        ForbiddenError (403) when the role may not run the action
        UpstreamError (500) for any store failure
    """
    proxy_action = ProxyAction.parse(action)
    if proxy_action is None:
        logger.warning("Invalid action requested", user_id=principal.user_id)
        raise ValidationError("Invalid action")

    authorize(proxy_action, principal)

    state = request.app.state
    ctx = ProxyContext(
        principal=principal,
        params=ProxyParams(
            engineer_id=engineer_id,
            client_id=client_id,
            start_date=start_date,
            status=status,
            assigned_to=assigned_to,
            call_id=call_id,
        ),
        store=state.store,
        cipher=state.cipher,
    )

    try:
        result = await HANDLERS[proxy_action](ctx)
    except ProxyError:
        raise
    except Exception as e:
        logger.error("Proxy handler error", action=proxy_action.value, error=str(e), exc_info=True)
        raise UpstreamError() from e

    record_request(proxy_action.value, 200)
    return result
