"""
ASGI middleware for inbox authentication (FastAPI/Starlette).
"""

from typing import Any, Callable, Iterable
from urllib.parse import quote

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from ..authenticator import SignatureAuthenticator
from ..config import DeploymentGate
from ..models import AuthState, InboundRequest
from .responses import (
    DECISION_HEADER,
    DISABLED,
    INVALID_BODY,
    INVALID_BODY_DECISION,
    PATH_SAFE,
    parse_activity,
    response_text,
)


def _full_path(request: Request) -> str:
    """Request target as sent on the wire, before percent-decoding."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(request.url.path, safe=PATH_SAFE)
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


class InboxAuthASGIMiddleware(BaseHTTPMiddleware):
    """
    ASGI middleware authenticating server-to-server deliveries.

    Attaches authentication state to `request.state.inbox_auth` with:
    - signed: bool - whether request had signature headers
    - outcome: VerificationOutcome - the authentication outcome

    Args:
        app: ASGI application
        authenticator: SignatureAuthenticator for inbox POSTs
        gate: Deployment gate for client-to-server paths
            (default: the authenticator's gate)
        inbox_paths: Paths whose POSTs are authenticated (default: every POST)
        client_paths: Client-to-server paths, answered with 405 outside open mode

    Example (FastAPI):
        >>> from fastapi import FastAPI, Request
        >>> from inbox_auth import InboxAuthASGIMiddleware, SignatureAuthenticator, Settings
        >>>
        >>> app = FastAPI()
        >>> app.add_middleware(
        ...     InboxAuthASGIMiddleware,
        ...     authenticator=SignatureAuthenticator.from_settings(Settings.from_env()),
        ...     inbox_paths=["/inbox"],
        ... )
        >>>
        >>> @app.post("/inbox")
        >>> async def inbox(request: Request):
        ...     signer = request.state.inbox_auth.outcome.signer
        ...     return {"from": signer.id if signer else None}
    """

    def __init__(
        self,
        app: Any,
        authenticator: SignatureAuthenticator,
        gate: DeploymentGate | None = None,
        inbox_paths: Iterable[str] | None = None,
        client_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.authenticator = authenticator
        self.gate = gate or authenticator.gate
        self.inbox_paths = frozenset(inbox_paths) if inbox_paths is not None else None
        self.client_paths = frozenset(client_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        path = request.url.path

        # Client-to-server delivery is not supported yet outside open mode
        if path in self.client_paths and not self.gate.is_open_mode():
            return Response(status_code=405, headers={DECISION_HEADER: DISABLED})

        if request.method != "POST" or (
            self.inbox_paths is not None and path not in self.inbox_paths
        ):
            return await call_next(request)

        activity = parse_activity(await request.body())
        if activity is None:
            return PlainTextResponse(
                INVALID_BODY,
                status_code=400,
                headers={DECISION_HEADER: INVALID_BODY_DECISION},
            )

        inbound = InboundRequest.create(
            method=request.method,
            path=_full_path(request),
            headers=dict(request.headers.items()),
            body=activity,
        )
        outcome = await self.authenticator.authenticate(inbound)
        request.state.inbox_auth = AuthState(signed=inbound.is_signed, outcome=outcome)

        if not outcome.proceed:
            return PlainTextResponse(
                response_text(outcome),
                status_code=outcome.status_code,
                headers={DECISION_HEADER: outcome.decision.value},
            )

        response = await call_next(request)
        response.headers[DECISION_HEADER] = outcome.decision.value
        return response
