"""
Response helpers shared by the ASGI and WSGI middleware.
"""

from __future__ import annotations

import json
from typing import Any

from ..models import Decision, VerificationOutcome

DECISION_HEADER = "X-Inbox-Auth"

# Decision header value for client-to-server routes outside open mode
DISABLED = "disabled"

_BODIES = {
    Decision.REJECT_MISSING_SIGNATURE: "Missing http signature",
    Decision.REJECT_INVALID_SIGNATURE: "Invalid http signature",
    Decision.TOLERATE_TOMBSTONE: "",
    Decision.INTERNAL_ERROR: "",
}

INVALID_BODY = "Invalid activity body"

# Decision header value for bodies that are not a JSON activity
INVALID_BODY_DECISION = "invalid-body"

# Characters left unescaped when re-quoting a decoded path
PATH_SAFE = "/:@!$&'()*+,;="


def parse_activity(raw: bytes) -> dict[str, Any] | None:
    """Decode a JSON activity, or None if the body is not a JSON object."""
    try:
        activity = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return activity if isinstance(activity, dict) else None


def response_text(outcome: VerificationOutcome) -> str:
    """Body sent for outcomes that stop the request."""
    return _BODIES[outcome.decision]
