"""
Webhook Payload Codec

Transport decoding, JSON parsing and canonical re-serialization shared by
the ingress endpoint and the persistence consumer.
"""
import base64
import binascii
import json
from typing import Any, Optional

from webhook_relay.core.exceptions import DecodeError, MalformedPayloadError

BASE64 = "base64"
IDENTITY = "identity"


def _reject_constant(name: str) -> Any:
    # json accepts NaN/Infinity by default; they are not valid JSON
    raise ValueError(f"Invalid JSON constant: {name}")


def _b64decode(raw: bytes) -> bytes:
    """Strict base64 in either alphabet, line breaks and missing padding tolerated."""
    compact = b"".join(raw.split())
    compact += b"=" * (-len(compact) % 4)
    return base64.b64decode(compact, altchars=b"-_", validate=True)


def _is_json(raw: bytes) -> bool:
    try:
        parse_payload(raw)
    except MalformedPayloadError:
        return False
    return True


def decode_transport(raw: bytes, encoding: Optional[str] = None) -> str:
    """
    Undo the transport encoding of a webhook body.

    Args:
        raw: Request body bytes
        encoding: "base64", "identity", or None to auto-detect. Auto-detection
            keeps any body that already parses as JSON. Otherwise the body is
            unwrapped when it is strictly valid base64 (standard or URL-safe
            alphabet) and the decoded bytes are UTF-8. Base64 text never parses
            as JSON itself, so the two readings cannot collide.

    Returns:
        Decoded text

    Raises:
        DecodeError: Invalid base64, invalid UTF-8, or unknown encoding name
    """
    mode = (encoding or "").strip().lower() or None

    if mode == BASE64:
        try:
            raw = _b64decode(raw)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid base64 body: {e}") from e
    elif mode is None:
        if raw.strip() and not _is_json(raw):
            try:
                decoded = _b64decode(raw)
                decoded.decode("utf-8")
                raw = decoded
            except (binascii.Error, ValueError):
                pass
    elif mode != IDENTITY:
        raise DecodeError(f"Unsupported body encoding: {encoding}")

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Body is not valid UTF-8: {e}") from e


def parse_payload(text: str | bytes) -> Any:
    """
    Parse a JSON document.

    Raises:
        MalformedPayloadError: Empty input, invalid JSON, or nesting too deep
            for the parser
    """
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except (ValueError, TypeError) as e:
        raise MalformedPayloadError(f"Body is not valid JSON: {e}") from e
    except RecursionError as e:
        raise MalformedPayloadError("Body is nested too deeply") from e


def canonicalize(document: Any) -> str:
    """Compact JSON serialization preserving key order and non-ASCII text."""
    try:
        return json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    except RecursionError as e:
        raise MalformedPayloadError("Document is nested too deeply") from e


def decode_webhook_body(raw: bytes, encoding: Optional[str] = None) -> str:
    """
    Full ingress decode: transport → JSON → canonical body.

    Returns:
        Canonical JSON text to publish
    """
    return canonicalize(parse_payload(decode_transport(raw, encoding)))
