"""Proxy actions - the closed set of views the proxy can serve"""
from enum import Enum
from typing import Optional


class ProxyAction(str, Enum):
    DEMO_CALLS = "demo_calls"
    ADMIN_DEMO_CALLS = "admin_demo_calls"
    CALLS = "calls"
    CALL_DETAIL = "call_detail"
    ACTIVE_CALLS = "active_calls"
    TODAY_STATS = "today_stats"
    TASKS = "tasks"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ProxyAction"]:
        """Map a query-string value to an action, or None if unknown"""
        try:
            return cls(value)
        except ValueError:
            return None
