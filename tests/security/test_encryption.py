"""Unit Tests for Field Encryption - round trip, tamper detection, key handling

Run: pytest tests/security/
"""
import base64

import pytest

from dataproxy.security.encryption import (
    ALGORITHM,
    DECRYPTION_FAILED_PLACEHOLDER,
    NO_DATA,
    DecryptionError,
    EncryptedPayload,
    EncryptionConfigError,
    FieldCipher,
    generate_key,
    parse_key,
)


def _flip_bit(encoded: str, index: int = 0) -> str:
    raw = bytearray(base64.b64decode(encoded))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


@pytest.mark.parametrize("text", ["hello", "ünïcødé transcript ☎", "x" * 10000, "{\"budget\": 5000000}"])
def test_round_trip(cipher, text):
    assert cipher.decrypt(cipher.encrypt(text)) == text


def test_envelope_shape(cipher):
    payload = cipher.encrypt("hello")
    assert isinstance(payload, EncryptedPayload)
    assert payload.algorithm == ALGORITHM
    assert len(base64.b64decode(payload.iv)) == 12
    assert len(base64.b64decode(payload.tag)) == 16
    assert "hello" not in payload.model_dump_json()


def test_nonce_is_fresh_per_call(cipher):
    first = cipher.encrypt("same text")
    second = cipher.encrypt("same text")
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


def test_decrypt_accepts_dict_form(cipher):
    assert cipher.decrypt(cipher.encrypt("hello").model_dump()) == "hello"


@pytest.mark.parametrize("value", [None, ""])
def test_empty_input_returns_no_data_marker(cipher, value):
    assert cipher.encrypt(value) == NO_DATA
    assert cipher.decrypt(NO_DATA) == ""


@pytest.mark.parametrize("field", ["ciphertext", "iv", "tag"])
def test_bit_flip_is_detected(cipher, field):
    envelope = cipher.encrypt("sensitive transcript").model_dump()
    envelope[field] = _flip_bit(envelope[field])

    with pytest.raises(DecryptionError):
        cipher.decrypt(envelope)


B64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"


def test_padding_bit_change_is_detected(cipher):
    envelope = cipher.encrypt("sensitive transcript").model_dump()
    tag = envelope["tag"]
    assert tag.endswith("==")
    # the last data character of a 16-byte value carries 4 unused bits
    last = tag[-3]
    altered = tag[:-3] + B64_ALPHABET[B64_ALPHABET.index(last) ^ 0x01] + "=="
    assert base64.b64decode(altered) == base64.b64decode(tag)
    envelope["tag"] = altered

    with pytest.raises(DecryptionError):
        cipher.decrypt(envelope)


def test_wrong_key_fails_closed(cipher):
    envelope = cipher.encrypt("hello")
    other = FieldCipher(bytes(32))
    with pytest.raises(DecryptionError):
        other.decrypt(envelope)


@pytest.mark.parametrize("envelope", [
    {"iv": "AAAA", "tag": "AAAA", "ciphertext": "AAAA"},
    {"algorithm": ALGORITHM, "tag": "AAAA", "ciphertext": "AAAA"},
    {"algorithm": ALGORITHM, "iv": "not base64!", "tag": "AAAA", "ciphertext": "AAAA"},
    {"algorithm": "AES-128-CBC", "iv": "AAAA", "tag": "AAAA", "ciphertext": "AAAA"},
    None,
    "plain string",
])
def test_malformed_envelope_raises(cipher, envelope):
    with pytest.raises(DecryptionError):
        cipher.decrypt(envelope)


def test_short_iv_rejected(cipher):
    envelope = cipher.encrypt("hello").model_dump()
    envelope["iv"] = base64.b64encode(b"short").decode()
    with pytest.raises(DecryptionError):
        cipher.decrypt(envelope)


def test_decrypt_or_placeholder(cipher):
    envelope = cipher.encrypt("hello").model_dump()
    envelope["tag"] = _flip_bit(envelope["tag"])
    assert cipher.decrypt_or_placeholder(envelope) == DECRYPTION_FAILED_PLACEHOLDER
    assert cipher.decrypt_or_placeholder(cipher.encrypt("ok")) == "ok"


def test_parse_key_accepts_base64_and_hex():
    raw = bytes(range(32))
    assert parse_key(base64.b64encode(raw).decode()) == raw
    assert parse_key(raw.hex()) == raw
    assert len(parse_key(generate_key())) == 32


@pytest.mark.parametrize("value", ["", "   ", None, "c2hvcnQ=", "ab" * 16])
def test_parse_key_rejects_missing_or_short(value):
    with pytest.raises(EncryptionConfigError):
        parse_key(value)


def test_cipher_refuses_bad_key():
    with pytest.raises(EncryptionConfigError):
        FieldCipher(b"")
    with pytest.raises(EncryptionConfigError):
        FieldCipher(b"too short")


def test_repr_hides_key(cipher):
    assert bytes(range(32)).hex() not in repr(cipher)
