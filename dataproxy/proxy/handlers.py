"""Proxy Handlers - One coroutine per action

Self-Explanatory: Fetch rows, fetch what they join to, protect every row, shape the response.
Why: This is the only path call data takes to the dashboard.
How: Primary select -> one bulk IN select per joined table (run together) -> per-row
protection in a fixed order -> joined display fields attached last.

Row protection order:
1. identifier masking
2. phone masking
3. transcript / summary encryption
4. metadata sanitization
5. media URL proxying
6. joined display fields

Handlers only read. Aggregates are computed over status and numeric columns only.
"""

import asyncio
import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

from dataproxy.errors import NotFoundError, ValidationError
from dataproxy.governance.auth import Principal, scope_engineer
from dataproxy.governance.masking import mask_identifier, mask_phone, mask_prompt, proxy_media_url
from dataproxy.governance.sanitizer import MetadataSanitizer
from dataproxy.integrations.supabase_client import eq, gte, in_
from dataproxy.proxy.actions import ProxyAction
from dataproxy.security.encryption import EncryptedPayload, FieldCipher

logger = structlog.get_logger()

ACTIVE_STATUSES = ("initiated", "in_progress")
DEFAULT_AGENT_NAME = "Agent"

DEMO_CALL_COLUMNS = """
    id, task_id, agent_id, engineer_id, phone_number, status,
    duration_seconds, started_at, ended_at, created_at, updated_at,
    external_call_id, recording_url, uploaded_audio_url, transcript
"""

CALL_COLUMNS = """
    id, agent_id, client_id, lead_id, status, connected,
    duration_seconds, started_at, ended_at, created_at,
    sentiment, summary, transcript, recording_url,
    external_call_id, metadata
"""


@dataclass(frozen=True)
class RowPolicy:
    """Which columns of a row get which protection"""
    identifiers: Sequence[str] = ()
    prompts: Sequence[str] = ()
    phones: Sequence[str] = ()
    encrypted: Sequence[str] = ()
    sanitize_metadata: bool = False
    media: Sequence[str] = ()


DEMO_CALL_POLICY = RowPolicy(
    identifiers=("external_call_id",),
    phones=("phone_number",),
    encrypted=("transcript",),
    media=("recording_url", "uploaded_audio_url"),
)

CALL_POLICY = RowPolicy(
    identifiers=("lead_id", "external_call_id"),
    encrypted=("transcript", "summary"),
    sanitize_metadata=True,
    media=("recording_url",),
)

AGENT_POLICY = RowPolicy(
    identifiers=("external_agent_id",),
    prompts=("current_system_prompt", "original_system_prompt"),
)


@dataclass
class ProxyParams:
    engineer_id: Optional[str] = None
    client_id: Optional[str] = None
    start_date: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Optional[str] = None
    call_id: Optional[str] = None


@dataclass
class ProxyContext:
    """Everything one request's handler needs; built per request"""
    principal: Principal
    params: ProxyParams
    store: Any
    cipher: FieldCipher
    sanitizer: MetadataSanitizer = field(init=False)

    def __post_init__(self):
        self.sanitizer = MetadataSanitizer(self.cipher)


# ============================================================================
# ROW PROTECTION
# ============================================================================


def seal(cipher: FieldCipher, value: Any):
    """Encrypt a column value; empty values become the NO_DATA marker"""
    if value is not None and not isinstance(value, str):
        value = json.dumps(value, default=str)
    sealed = cipher.encrypt(value)
    if isinstance(sealed, EncryptedPayload):
        return sealed.model_dump()
    return sealed


def protect_row(row: Dict[str, Any], policy: RowPolicy, cipher: FieldCipher,
                sanitizer: Optional[MetadataSanitizer] = None) -> Dict[str, Any]:
    """Return a protected copy of one row; the input is left untouched"""
    protected = dict(row)

    for column in policy.identifiers:
        if column in protected:
            protected[column] = mask_identifier(protected[column])
    for column in policy.prompts:
        if column in protected:
            protected[column] = mask_prompt(protected[column])
    for column in policy.phones:
        if column in protected:
            protected[column] = mask_phone(protected[column])
    for column in policy.encrypted:
        if column in protected:
            protected[column] = seal(cipher, protected[column])
    if policy.sanitize_metadata and "metadata" in protected:
        protected["metadata"] = sanitizer.sanitize(protected["metadata"])
    for column in policy.media:
        if column in protected:
            protected[column] = proxy_media_url(protected[column], protected.get("id"))

    return protected


# ============================================================================
# JOIN HELPERS
# ============================================================================


def distinct_ids(rows: Iterable[Dict[str, Any]], column: str) -> List[Any]:
    return list(dict.fromkeys(row[column] for row in rows if row.get(column) is not None))


async def fetch_by_ids(store, table: str, columns: str, ids: List[Any]) -> Dict[Any, Dict[str, Any]]:
    """One bulk select keyed by id; skipped when there is nothing to join"""
    if not ids:
        return {}
    rows = await store.select(table, columns=columns, filters=[in_("id", ids)], order_by=None)
    return {row["id"]: row for row in rows}


async def fetch_agent_names(store, rows: List[Dict[str, Any]]) -> Dict[Any, Dict[str, Any]]:
    return await fetch_by_ids(store, "aitel_agents", "id, agent_name", distinct_ids(rows, "agent_id"))


def attach_agent_name(row: Dict[str, Any], agent_id: Any, agents: Dict[Any, Dict[str, Any]]) -> Dict[str, Any]:
    agent = agents.get(agent_id) or {}
    row["agent"] = {"name": agent.get("agent_name") or DEFAULT_AGENT_NAME}
    return row


async def gather_joins(*fetches):
    """Run join fetches together; every fetch settles before the first failure is raised"""
    results = await asyncio.gather(*fetches, return_exceptions=True)
    for outcome in results:
        if isinstance(outcome, BaseException):
            raise outcome
    return results


def _protect_calls(ctx: ProxyContext, calls: List[Dict[str, Any]],
                   agents: Dict[Any, Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        attach_agent_name(protect_row(call, CALL_POLICY, ctx.cipher, ctx.sanitizer), call.get("agent_id"), agents)
        for call in calls
    ]


# ============================================================================
# ACTION HANDLERS
# ============================================================================


async def list_demo_calls(ctx: ProxyContext) -> List[Dict[str, Any]]:
    filters = []
    engineer_id = scope_engineer(ctx.principal, ctx.params.engineer_id)
    if engineer_id:
        filters.append(eq("engineer_id", engineer_id))

    demo_calls = await ctx.store.select("demo_calls", columns=DEMO_CALL_COLUMNS, filters=filters)

    tasks, agents = await gather_joins(
        fetch_by_ids(ctx.store, "tasks", "id, title, selected_demo_call_id, assigned_to",
                     distinct_ids(demo_calls, "task_id")),
        fetch_agent_names(ctx.store, demo_calls),
    )

    result = []
    for call in demo_calls:
        protected = protect_row(call, DEMO_CALL_POLICY, ctx.cipher)
        protected["tasks"] = tasks.get(call.get("task_id"))
        protected["aitel_agents"] = agents.get(call.get("agent_id"))
        result.append(protected)

    logger.info("Demo calls served", count=len(result), user_id=ctx.principal.user_id, scoped=bool(engineer_id))
    return result


async def list_admin_demo_calls(ctx: ProxyContext) -> List[Dict[str, Any]]:
    demo_calls = await ctx.store.select("demo_calls")
    return [protect_row(call, DEMO_CALL_POLICY, ctx.cipher) for call in demo_calls]


def _parse_start_date(value: str) -> str:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid start_date")
    return value


async def list_calls(ctx: ProxyContext) -> List[Dict[str, Any]]:
    params = ctx.params
    filters = []
    if params.start_date:
        filters.append(gte("created_at", _parse_start_date(params.start_date)))
    if params.client_id:
        filters.append(eq("client_id", params.client_id))
    if params.status and params.status != "all":
        filters.append(eq("status", params.status))

    calls = await ctx.store.select("calls", columns=CALL_COLUMNS, filters=filters)
    agents = await fetch_agent_names(ctx.store, calls)

    logger.info("Calls served", count=len(calls), user_id=ctx.principal.user_id)
    return _protect_calls(ctx, calls, agents)


async def get_call_detail(ctx: ProxyContext) -> Dict[str, Any]:
    if not ctx.params.call_id:
        raise ValidationError("Missing call_id")

    calls = await ctx.store.select(
        "calls", columns=CALL_COLUMNS, filters=[eq("id", ctx.params.call_id)], order_by=None, limit=1
    )
    if not calls:
        logger.info("Call not found", call_id=ctx.params.call_id, user_id=ctx.principal.user_id)
        raise NotFoundError()

    agents = await fetch_agent_names(ctx.store, calls)
    return _protect_calls(ctx, calls, agents)[0]


async def list_active_calls(ctx: ProxyContext) -> List[Dict[str, Any]]:
    calls = await ctx.store.select("calls", filters=[in_("status", ACTIVE_STATUSES)])
    agents = await fetch_agent_names(ctx.store, calls)
    return _protect_calls(ctx, calls, agents)


def _percent(part: int, total: int) -> int:
    # Half rounds up, matching the dashboard's Math.round
    return int(math.floor(part * 100 / total + 0.5)) if total else 0


def summarize_calls(calls: List[Dict[str, Any]]) -> Dict[str, int]:
    """Scalar stats over status, connected and duration_seconds only"""
    total = len(calls)
    completed = sum(1 for c in calls if c.get("status") == "completed")
    connected = sum(1 for c in calls if c.get("connected"))
    failed = sum(1 for c in calls if c.get("status") == "failed")
    in_progress = sum(1 for c in calls if c.get("status") in ACTIVE_STATUSES)
    total_duration = sum(c.get("duration_seconds") or 0 for c in calls)

    return {
        "total": total,
        "completed": completed,
        "connected": connected,
        "failed": failed,
        "inProgress": in_progress,
        "connectionRate": _percent(connected, total),
        "avgDuration": int(math.floor(total_duration / total + 0.5)) if total else 0,
    }


async def today_stats(ctx: ProxyContext) -> Dict[str, int]:
    midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    calls = await ctx.store.select(
        "calls",
        columns="status, connected, duration_seconds",
        filters=[gte("created_at", midnight.isoformat())],
        order_by=None,
    )
    return summarize_calls(calls)


async def list_tasks(ctx: ProxyContext) -> List[Dict[str, Any]]:
    filters = []
    if ctx.params.assigned_to:
        filters.append(eq("assigned_to", ctx.params.assigned_to))
    if ctx.params.status:
        filters.append(eq("status", ctx.params.status))

    tasks = await ctx.store.select("tasks", filters=filters)
    agents = await fetch_by_ids(
        ctx.store,
        "aitel_agents",
        "id, agent_name, external_agent_id, current_system_prompt, original_system_prompt",
        distinct_ids(tasks, "aitel_agent_id"),
    )

    result = []
    for task in tasks:
        agent = agents.get(task.get("aitel_agent_id"))
        protected = dict(task)
        protected["aitel_agents"] = protect_row(agent, AGENT_POLICY, ctx.cipher) if agent else None
        result.append(protected)
    return result


HANDLERS = {
    ProxyAction.DEMO_CALLS: list_demo_calls,
    ProxyAction.ADMIN_DEMO_CALLS: list_admin_demo_calls,
    ProxyAction.CALLS: list_calls,
    ProxyAction.CALL_DETAIL: get_call_detail,
    ProxyAction.ACTIVE_CALLS: list_active_calls,
    ProxyAction.TODAY_STATS: today_stats,
    ProxyAction.TASKS: list_tasks,
}
