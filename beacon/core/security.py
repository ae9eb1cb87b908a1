"""HMAC signing of outbound notification bodies."""

import hashlib
import hmac
import json

SIGNATURE_HEADER = "X-Webhook-Signature"


def serialize_body(body: dict) -> bytes:
    """Serialize a payload exactly once; the same bytes are signed and sent."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(secret: str, body: bytes) -> str:
    """Return the signature header value: ``sha256=<hex digest>``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Constant-time check of a received signature header."""
    return hmac.compare_digest(sign_payload(secret, body), signature or "")
