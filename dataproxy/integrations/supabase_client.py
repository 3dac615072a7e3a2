"""Supabase Integration Client - Identity checks and read-only row fetches

Self-Explanatory: The two outbound services the proxy talks to.
Why: Tokens are verified by Supabase Auth; call data lives behind PostgREST.
How: REST over httpx, one short-lived AsyncClient per call so nothing is shared
between requests.

Endpoints used:
- GET /auth/v1/user: resolve a bearer token to its user id
- GET /auth/v1/health: readiness probe
- GET /rest/v1/<table>: filtered, ordered selects (service-role key)

The store only ever reads. Writes belong to the webhook and the dashboard.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
import structlog

from dataproxy.config import ProxySettings
from dataproxy.errors import AuthError, UpstreamError
from dataproxy.utils.metrics import upstream_duration_seconds

logger = structlog.get_logger()

# Supabase Auth answers these for bad, expired or revoked tokens
REJECTED_TOKEN_STATUSES = {400, 401, 403, 404}


@dataclass(frozen=True)
class Filter:
    """One PostgREST filter: column=<op>.<value>"""
    column: str
    op: str  # eq, gte, in
    value: Any

    def to_param(self) -> str:
        if self.op == "in":
            return "in.(" + ",".join(_quote(v) for v in self.value) + ")"
        return f"{self.op}.{self.value}"


def _quote(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


class SupabaseIdentity:
    """Client for Supabase Auth token verification"""

    def __init__(self, settings: ProxySettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.supabase_url
        self.anon_key = settings.supabase_anon_key
        self.timeout = settings.upstream_timeout_seconds
        self.transport = transport

    async def verify_token(self, token: str) -> str:
        """Resolve a bearer token to the user id it was issued for

        Args:
            token: Raw bearer token from the request

        Returns:
            Supabase user id

        Raises:
            AuthError if Supabase rejects the token
            UpstreamError if Supabase Auth cannot be reached
        """
        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers={
                        "apikey": str(self.anon_key),
                        "Authorization": f"Bearer {token}",
                    },
                )
        except httpx.HTTPError as e:
            logger.error("Identity service unreachable", error=str(e))
            raise UpstreamError() from e
        finally:
            upstream_duration_seconds.labels(target="auth").observe(time.time() - start)

        if response.status_code in REJECTED_TOKEN_STATUSES:
            raise AuthError("Invalid token")
        if response.status_code != 200:
            logger.error("Identity service error", status=response.status_code)
            raise UpstreamError()

        try:
            user = response.json()
        except ValueError as e:
            logger.error("Identity service returned unreadable body")
            raise UpstreamError() from e

        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            raise AuthError("Invalid token")
        return user_id

    async def ping(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/health",
                    headers={"apikey": str(self.anon_key)},
                )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Identity health probe failed", error=str(e))
            return False


class SupabaseStore:
    """Read-only PostgREST client using the service-role key"""

    def __init__(self, settings: ProxySettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.rest_url = f"{settings.supabase_url}/rest/v1"
        self.service_key = settings.supabase_service_role_key
        self.timeout = settings.upstream_timeout_seconds
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        key = str(self.service_key)
        return {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Accept": "application/json",
        }

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch rows from a table

        Args:
            table: Table name
            columns: PostgREST select list
            filters: Filters, ANDed together
            order_by: Sort column, or None for store order
            descending: Sort direction
            limit: Max rows

        Returns:
            List of row dicts

        Raises:
            UpstreamError on transport failure, non-2xx status, or a non-list body
        """
        params = [("select", " ".join(columns.split()))]
        params.extend((f.column, f.to_param()) for f in filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.rest_url}/{table}",
                    params=params,
                    headers=self._headers(),
                )
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Store query failed", table=table, status=e.response.status_code)
            raise UpstreamError() from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Store unreachable", table=table, error=str(e))
            raise UpstreamError() from e
        finally:
            upstream_duration_seconds.labels(target=table).observe(time.time() - start)

        if not isinstance(rows, list):
            logger.error("Store returned unexpected body", table=table)
            raise UpstreamError()

        logger.debug("Store query", table=table, rows=len(rows))
        return rows
