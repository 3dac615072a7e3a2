"""Governance Auth - Access-control gate for the data proxy

Self-Explanatory: Bearer-token check, role lookup, per-action authorization.
Why: Nothing may touch call data before the caller is known and allowed.
How: FastAPI dependencies; Supabase Auth verifies the token, the role table gives the role.
Roles: 'admin' (everything), 'engineer' (own demo calls), 'client' and others (shared views).

Gate, one pass per request:
    no/malformed header -> 401 Unauthorized
    token rejected      -> 401 Invalid token
    no role row         -> authenticated, no elevated role
    role not allowed    -> 403 Forbidden
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Header, Request

from dataproxy.errors import AuthError, ForbiddenError
from dataproxy.integrations.supabase_client import eq
from dataproxy.proxy.actions import ProxyAction
from dataproxy.utils.metrics import gate_rejections_total

logger = structlog.get_logger()

ADMIN = "admin"
ENGINEER = "engineer"

# Allowed roles per action; None means any authenticated principal
ALLOWED_ROLES = {
    ProxyAction.DEMO_CALLS: None,  # engineers are self-scoped
    ProxyAction.ADMIN_DEMO_CALLS: [ADMIN],
    ProxyAction.CALLS: None,
    ProxyAction.CALL_DETAIL: None,
    ProxyAction.ACTIVE_CALLS: [ADMIN],
    ProxyAction.TODAY_STATS: [ADMIN],
    ProxyAction.TASKS: None,
}


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def get_bearer_token(authorization: str = Header(None)) -> str:
    """Pull the token out of 'Authorization: Bearer <token>'

    Raises:
        AuthError (401) if the header is missing or not a bearer credential
    """
    if not authorization:
        gate_rejections_total.labels(reason="missing_token").inc()
        logger.warning("Missing auth header")
        raise AuthError("Unauthorized")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        gate_rejections_total.labels(reason="missing_token").inc()
        logger.warning("Malformed auth header")
        raise AuthError("Unauthorized")
    return parts[1]


async def resolve_role(store, role_table: str, user_id: str) -> Optional[str]:
    """Look up the caller's role

    No row, or more than one row, means no elevated role.
    """
    rows = await store.select(
        role_table,
        columns="role",
        filters=[eq("user_id", user_id)],
        order_by=None,
        limit=2,
    )
    if not rows:
        return None
    if len(rows) > 1:
        logger.warning("Ambiguous role records, granting no role", user_id=user_id, table=role_table)
        return None
    return rows[0].get("role")


async def get_principal(request: Request, token: str = Depends(get_bearer_token)) -> Principal:
    """Verify the token and resolve the caller's role

    Returns:
        Principal for this request only; nothing is cached
    """
    state = request.app.state
    try:
        user_id = await state.identity.verify_token(token)
    except AuthError:
        gate_rejections_total.labels(reason="invalid_token").inc()
        logger.warning("Token rejected by identity service")
        raise

    role = await resolve_role(state.store, state.settings.role_table, user_id)
    logger.info("User authenticated", user_id=user_id, role=role)
    return Principal(user_id=user_id, role=role)


def authorize(action: ProxyAction, principal: Principal) -> None:
    """Raise ForbiddenError unless the principal's role may run the action"""
    required_roles = ALLOWED_ROLES[action]
    if required_roles is not None and principal.role not in required_roles:
        gate_rejections_total.labels(reason="forbidden").inc()
        logger.warning("Role denied", user_role=principal.role, required=required_roles, action=action.value)
        raise ForbiddenError()


def scope_engineer(principal: Principal, requested_engineer_id: Optional[str]) -> Optional[str]:
    """Engineer id to filter demo calls by

    Engineers always see only their own rows; asking for someone else's is forbidden.
    Other roles filter only when they ask to.
    """
    if principal.role != ENGINEER:
        return requested_engineer_id

    if requested_engineer_id and requested_engineer_id != principal.user_id:
        gate_rejections_total.labels(reason="forbidden").inc()
        logger.warning("Engineer requested another engineer's calls", user_id=principal.user_id)
        raise ForbiddenError()
    return principal.user_id
