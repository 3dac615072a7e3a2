"""Masking - One-way display transforms for identifiers and contact fields

Self-Explanatory: Pure functions that turn a sensitive value into something safe to show.
Why: Phone numbers, provider ids, prompts and storage URLs must not reach the browser.
How: Fixed-shape masks; nothing here can be reversed, and every function accepts None.
"""
from typing import Optional

PHONE_MASK = "****"
IDENTIFIER_MASK = "********"
IDENTIFIER_PREFIX_LENGTH = 8
PROMPT_PLACEHOLDER = "[System prompt configured]"


def mask_phone(phone: Optional[str]) -> str:
    """Keep the last 4 digits, star the rest

    Numbers of 4 characters or fewer get the fixed mask so nothing is revealed.
    """
    if not phone or len(phone) <= 4:
        return PHONE_MASK
    return "*" * (len(phone) - 4) + phone[-4:]


def mask_identifier(value: Optional[str]) -> str:
    if not value:
        return IDENTIFIER_MASK
    return str(value)[:IDENTIFIER_PREFIX_LENGTH] + "..."


def mask_prompt(prompt: Optional[str]) -> Optional[str]:
    # Prompts are proprietary; never reveal any part of one.
    if not prompt:
        return None
    return PROMPT_PLACEHOLDER


def proxy_media_url(url: Optional[str], record_id: str, kind: str = "recording") -> Optional[str]:
    """Replace a storage URL with an opaque token bound to the record

    The media resolver exchanges the token for the real file after its own auth check.
    """
    if not url:
        return None
    return f"proxy:{kind}:{record_id}"
