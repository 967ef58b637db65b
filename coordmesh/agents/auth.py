"""HMAC token signing and verification between the engine and remote agents.

Every agent HTTP call carries a mesh_token. The token is an HMAC-SHA256
signature over a timestamp and an audience (the agent id or "engine"),
so a token minted for one agent cannot be replayed against another.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

logger = logging.getLogger(__name__)

# Tokens are valid for 60 seconds to account for clock skew.
TOKEN_TTL_S = 60


def _signature(secret: str, ts: str, audience: str) -> str:
    message = f"{ts}:{audience}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def sign_mesh_token(secret: str, audience: str, timestamp_ms: int | None = None) -> str:
    """Create an HMAC-SHA256 mesh token.

    Format: ``{timestamp_ms}.{hex_signature}``
    """
    ts = str(timestamp_ms or int(time.time() * 1000))
    return f"{ts}.{_signature(secret, ts, audience)}"


def verify_mesh_token(token: str, secret: str, audience: str) -> bool:
    """Verify a mesh token for `audience`.

    Returns True if the signature is valid AND the timestamp is within TTL.
    """
    try:
        ts_str, sig = token.split(".", 1)
        ts = int(ts_str)
    except (AttributeError, ValueError):
        logger.debug("Malformed mesh token")
        return False

    now = int(time.time() * 1000)
    if abs(now - ts) > TOKEN_TTL_S * 1000:
        logger.debug("Mesh token expired: age=%dms", abs(now - ts))
        return False

    return hmac.compare_digest(sig, _signature(secret, ts_str, audience))
