"""Metadata Sanitizer - Allow-list projection of provider call metadata

Self-Explanatory: Keeps the handful of metadata keys the dashboard needs, drops the rest.
Why: Call metadata is free-form JSON from the voice provider and can carry anything.
How: Fail-closed allow-list; extracted_data is kept only as an encrypted envelope.
"""
import json
from typing import Any, Dict, Mapping, Optional

import structlog

from dataproxy.security.encryption import FieldCipher

logger = structlog.get_logger()

# Copied only when the value is truthy
TRUTHY_KEYS = ("source", "lead_name", "campaign_id", "aitel_status", "error_message")

# Copied whenever the key is present, so False / 0 survive
PRESENT_KEYS = ("is_retry", "retry_attempt", "answered_by_voicemail")

ENCRYPTED_KEY = "extracted_data"


class MetadataSanitizer:
    def __init__(self, cipher: FieldCipher):
        self.cipher = cipher

    def sanitize(self, metadata: Any) -> Optional[Dict[str, Any]]:
        """Project metadata onto the allow-list

        Args:
            metadata: Parsed JSON from the calls.metadata column

        Returns:
            None for None input, otherwise a new dict holding only allowed keys
        """
        if metadata is None:
            return None
        if not isinstance(metadata, Mapping):
            logger.debug("Dropping non-object metadata", kind=type(metadata).__name__)
            return {}

        sanitized: Dict[str, Any] = {}
        for key in TRUTHY_KEYS:
            if metadata.get(key):
                sanitized[key] = metadata[key]
        for key in PRESENT_KEYS:
            if key in metadata:
                sanitized[key] = metadata[key]

        extracted = metadata.get(ENCRYPTED_KEY)
        if extracted:
            if not isinstance(extracted, str):
                extracted = json.dumps(extracted, default=str)
            sanitized[ENCRYPTED_KEY] = self.cipher.encrypt(extracted).model_dump()

        return sanitized
