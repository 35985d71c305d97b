from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional, Tuple

TOKEN_VERSION = 1


class TokenError(ValueError):
    """Malformed, forged or expired access token."""


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(secret: str, payload_b64: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256).digest()
    return _b64url(digest)


def password_matches(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(str(candidate or "").encode("utf-8"), str(expected or "").encode("utf-8"))


def issue_token(secret: str, ttl_s: int, now: Optional[int] = None) -> Tuple[str, int]:
    """Return (token, exp). Token is base64url(payload) + '.' + base64url(HMAC-SHA256)."""
    if not secret:
        raise ValueError("ACCESS_TOKEN_SECRET missing in env")
    now = int(time.time()) if now is None else int(now)
    exp = now + int(ttl_s)
    payload = json.dumps({"v": TOKEN_VERSION, "iat": now, "exp": exp}, separators=(",", ":"))
    payload_b64 = _b64url(payload.encode("utf-8"))
    return f"{payload_b64}.{_sign(secret, payload_b64)}", exp


def verify_token(token: str, secret: str, now: Optional[int] = None) -> Dict[str, Any]:
    if not secret:
        raise ValueError("ACCESS_TOKEN_SECRET missing in env")
    parts = (token or "").strip().split(".")
    if len(parts) != 2 or not all(parts):
        raise TokenError("Malformed access token")
    payload_b64, sig = parts
    try:
        expected = _sign(secret, payload_b64)
    except UnicodeEncodeError as e:
        raise TokenError("Malformed access token") from e
    if not hmac.compare_digest(expected.encode("ascii"), sig.encode("utf-8")):
        raise TokenError("Invalid access token signature")
    try:
        payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise TokenError("Malformed access token") from e
    if not isinstance(payload, dict) or payload.get("v") != TOKEN_VERSION:
        raise TokenError("Unsupported access token version")
    now = int(time.time()) if now is None else int(now)
    exp = payload.get("exp")
    if not isinstance(exp, int) or exp <= now:
        raise TokenError("Access token expired")
    return payload
