"""
Inbox signature authentication for ActivityPub servers.

Verify HTTP Signatures on server-to-server deliveries before the activity is
trusted.
"""

from .authenticator import SignatureAuthenticator, classify_failure, no_signature_decision
from .config import EnvironmentGate, Settings
from .errors import (
    ActorGoneError,
    InboxAuthError,
    InvalidKeyError,
    ResolutionError,
    SignatureHeaderError,
)
from .httpsig import parse_request, verify_signature
from .models import (
    Actor,
    AuthState,
    Decision,
    InboundRequest,
    NoSignatureDecision,
    PublicKey,
    SignatureHeader,
    VerificationOutcome,
)
from .resolver import HttpActorResolver, InMemoryActorStore, actor_from_activity
from .middleware.wsgi import InboxAuthWSGIMiddleware

__version__ = "0.1.0"

__all__ = [
    "Actor",
    "ActorGoneError",
    "AuthState",
    "Decision",
    "EnvironmentGate",
    "HttpActorResolver",
    "InMemoryActorStore",
    "InboundRequest",
    "InboxAuthError",
    "InboxAuthWSGIMiddleware",
    "InvalidKeyError",
    "NoSignatureDecision",
    "PublicKey",
    "ResolutionError",
    "Settings",
    "SignatureAuthenticator",
    "SignatureHeader",
    "SignatureHeaderError",
    "VerificationOutcome",
    "actor_from_activity",
    "classify_failure",
    "no_signature_decision",
    "parse_request",
    "verify_signature",
]

# ASGI middleware - optional, requires starlette
try:
    from .middleware.asgi import InboxAuthASGIMiddleware
    __all__.append("InboxAuthASGIMiddleware")
except ImportError:
    pass
