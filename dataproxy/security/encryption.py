"""Field Encryption - AES-256-GCM envelopes for sensitive text

Self-Explanatory: Turns a transcript, summary or extracted-data blob into a
self-describing envelope that can sit inside a JSON response, and back.
Why: Call content must never leave the proxy as readable text.
How: AESGCM from cryptography with one process-wide 256-bit key.

Envelope layout (all values base64 text):
    {"algorithm": "AES-256-GCM", "iv": <12 bytes>, "tag": <16 bytes>, "ciphertext": <n bytes>}

Security Model:
1. Fresh random 96-bit nonce per encrypt call, never derived from content
2. 128-bit authentication tag kept apart from the ciphertext
3. Any change to ciphertext, iv or tag fails decryption (DecryptionError)
4. No key, no cipher: construction fails instead of falling back to a default key
"""

import base64
import binascii
import os
from typing import Any, Mapping, Union

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from dataproxy.errors import ConfigurationError
from dataproxy.utils.metrics import cipher_operations_total

logger = structlog.get_logger()

ALGORITHM = "AES-256-GCM"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16

# Returned instead of an envelope for empty input
NO_DATA = "[no data]"
DECRYPTION_FAILED_PLACEHOLDER = "[Unable to decrypt]"


class EncryptionConfigError(ConfigurationError):
    """Encryption key missing or not a 256-bit key."""


class DecryptionError(Exception):
    """Envelope is malformed, tampered with, or was sealed under another key."""


class EncryptedPayload(BaseModel):
    """Self-describing AES-GCM envelope"""
    algorithm: str
    iv: str
    tag: str
    ciphertext: str


def parse_key(encoded: str) -> bytes:
    """Decode a base64 or hex key and check it is 256 bits

    Raises:
        EncryptionConfigError if empty or not 32 bytes in either encoding
    """
    encoded = (encoded or "").strip()
    if not encoded:
        raise EncryptionConfigError("DATA_ENCRYPTION_KEY is not set")

    try:
        key = base64.b64decode(encoded, validate=True)
        if len(key) == KEY_BYTES:
            return key
    except binascii.Error:
        pass

    try:
        key = bytes.fromhex(encoded)
        if len(key) == KEY_BYTES:
            return key
    except ValueError:
        pass

    raise EncryptionConfigError("DATA_ENCRYPTION_KEY must be a 256-bit key in base64 or hex")


def generate_key() -> str:
    """New random 256-bit key, base64 encoded"""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("utf-8")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def _unb64(value: str, field: str) -> bytes:
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError(f"Envelope field '{field}' is not valid base64")
    # canonical encoding only
    if _b64(decoded) != value:
        raise DecryptionError(f"Envelope field '{field}' is not canonical base64")
    return decoded


class FieldCipher:
    """Authenticated encryption for individual text fields"""

    def __init__(self, key: bytes):
        if not key or len(key) != KEY_BYTES:
            raise EncryptionConfigError("Encryption key must be exactly 32 bytes")
        self._aesgcm = AESGCM(key)
        logger.info("Field cipher initialized", algorithm=ALGORITHM)

    @classmethod
    def from_settings(cls, settings) -> "FieldCipher":
        return cls(parse_key(str(settings.data_encryption_key)))

    def __repr__(self) -> str:
        return f"FieldCipher(algorithm={ALGORITHM!r})"

    def encrypt(self, plaintext: str) -> Union[EncryptedPayload, str]:
        """Seal plaintext into an envelope

        Args:
            plaintext: Text to protect

        Returns:
            EncryptedPayload, or NO_DATA when plaintext is None or empty
        """
        if not plaintext:
            return NO_DATA

        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        cipher_operations_total.labels(operation="encrypt", result="ok").inc()

        return EncryptedPayload(
            algorithm=ALGORITHM,
            iv=_b64(nonce),
            tag=_b64(sealed[-TAG_BYTES:]),
            ciphertext=_b64(sealed[:-TAG_BYTES]),
        )

    def decrypt(self, payload: Union[EncryptedPayload, Mapping[str, Any], str]) -> str:
        """Open an envelope produced by encrypt()

        Args:
            payload: EncryptedPayload, its dict form, or NO_DATA

        Returns:
            The original plaintext ("" for NO_DATA)

        Raises:
            DecryptionError on any malformed, tampered or foreign envelope
        """
        if payload == NO_DATA:
            return ""

        try:
            envelope = self._open(payload)
        except DecryptionError:
            cipher_operations_total.labels(operation="decrypt", result="failed").inc()
            raise
        cipher_operations_total.labels(operation="decrypt", result="ok").inc()
        return envelope

    def decrypt_or_placeholder(self, payload: Union[EncryptedPayload, Mapping[str, Any], str]) -> str:
        """Like decrypt(), but a bad envelope becomes a display placeholder"""
        try:
            return self.decrypt(payload)
        except DecryptionError as e:
            logger.warning("Envelope could not be decrypted", reason=str(e))
            return DECRYPTION_FAILED_PLACEHOLDER

    def _open(self, payload: Union[EncryptedPayload, Mapping[str, Any]]) -> str:
        if not isinstance(payload, EncryptedPayload):
            try:
                payload = EncryptedPayload.model_validate(payload)
            except PydanticValidationError:
                raise DecryptionError("Envelope is missing required fields")

        if payload.algorithm != ALGORITHM:
            raise DecryptionError(f"Unsupported algorithm: {payload.algorithm}")

        nonce = _unb64(payload.iv, "iv")
        tag = _unb64(payload.tag, "tag")
        ciphertext = _unb64(payload.ciphertext, "ciphertext")
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionError("Envelope iv or tag has the wrong length")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted bytes are not UTF-8 text")
