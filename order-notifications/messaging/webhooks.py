"""Cloud API webhook helpers: subscription handshake, signatures, status callbacks."""

import hashlib
import hmac
from typing import Any, Dict, List, Optional


def verify_subscription(mode: Optional[str], token: Optional[str], expected_token: str) -> bool:
    """True for a ``hub.mode=subscribe`` handshake carrying the configured token."""
    if not expected_token or not token:
        return False
    return mode == "subscribe" and hmac.compare_digest(token, expected_token)


def verify_signature(payload: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Check an ``X-Hub-Signature-256`` (or legacy ``sha1=``) header against the body."""
    if not app_secret or not signature:
        return False
    algorithm, _, digest = signature.partition("=")
    if not digest:
        algorithm, digest = "sha256", signature
    if algorithm not in ("sha256", "sha1"):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), payload, getattr(hashlib, algorithm)).hexdigest()
    return hmac.compare_digest(expected, digest.lower())


def extract_statuses(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Pull message delivery statuses (sent/delivered/read/failed) out of a callback."""
    if not isinstance(body, dict) or body.get("object") != "whatsapp_business_account":
        return []
    statuses = []
    for entry in body.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for status in value.get("statuses") or []:
                statuses.append({
                    "id": status.get("id"),
                    "status": status.get("status"),
                    "recipient_id": status.get("recipient_id"),
                    "timestamp": status.get("timestamp"),
                    "errors": status.get("errors") or [],
                })
    return statuses
