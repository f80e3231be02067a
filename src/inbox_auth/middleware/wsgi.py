"""
WSGI middleware for inbox authentication (Flask).
"""

from __future__ import annotations

from http import HTTPStatus
from io import BytesIO
from typing import Any, Callable, Iterable
from urllib.parse import quote

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

ENVIRON_KEY = "inbox_auth.state"


def _extract_headers(environ: dict[str, Any]) -> dict[str, str]:
    """Extract HTTP headers from WSGI environ."""
    headers: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            # HTTP_CONTENT_DIGEST -> content-digest
            header_name = key[5:].replace("_", "-").lower()
            headers[header_name] = value
        elif key == "CONTENT_TYPE":
            headers["content-type"] = value
        elif key == "CONTENT_LENGTH":
            headers["content-length"] = value
    return headers


def _build_path(environ: dict[str, Any]) -> str:
    """
    Build the request target (path and query) from WSGI environ.

    Servers that expose the undecoded target (`RAW_URI` under gunicorn,
    `REQUEST_URI` under werkzeug and mod_wsgi) are trusted as-is. Otherwise
    the decoded PATH_INFO is quoted again.
    """
    for key in ("RAW_URI", "REQUEST_URI"):
        target = environ.get(key)
        if target and target.startswith("/"):
            return target

    # PEP 3333: PATH_INFO holds the raw bytes decoded as latin-1
    decoded = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "/")
    path = quote(decoded.encode("latin-1"), safe=PATH_SAFE)
    query = environ.get("QUERY_STRING", "")
    return f"{path}?{query}" if query else path


def _read_body(environ: dict[str, Any]) -> bytes:
    """Read the request body and reset the input stream for downstream apps."""
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    if length <= 0 or "wsgi.input" not in environ:
        return b""
    body = environ["wsgi.input"].read(length)
    environ["wsgi.input"] = BytesIO(body)
    return body


class InboxAuthWSGIMiddleware:
    """
    WSGI middleware authenticating server-to-server deliveries.

    Attaches authentication state to `environ["inbox_auth.state"]` with:
    - signed: bool - whether request had signature headers
    - outcome: VerificationOutcome - the authentication outcome

    Args:
        app: WSGI application
        authenticator: SignatureAuthenticator for inbox POSTs
        gate: Deployment gate for client-to-server paths
            (default: the authenticator's gate)
        inbox_paths: Paths whose POSTs are authenticated (default: every POST)
        client_paths: Client-to-server paths, answered with 405 outside open mode

    Example (Flask):
        >>> from flask import Flask, request
        >>> from inbox_auth import SignatureAuthenticator, Settings
        >>> from inbox_auth.middleware.wsgi import InboxAuthWSGIMiddleware
        >>>
        >>> app = Flask(__name__)
        >>> app.wsgi_app = InboxAuthWSGIMiddleware(
        ...     app.wsgi_app,
        ...     SignatureAuthenticator.from_settings(Settings.from_env()),
        ...     inbox_paths=["/inbox"],
        ... )
        >>>
        >>> @app.post("/inbox")
        >>> def inbox():
        ...     state = request.environ["inbox_auth.state"]
        ...     return {"from": state.outcome.signer.id}
    """

    def __init__(
        self,
        app: Callable[..., Iterable[bytes]],
        authenticator: SignatureAuthenticator,
        gate: DeploymentGate | None = None,
        inbox_paths: Iterable[str] | None = None,
        client_paths: Iterable[str] = (),
    ):
        self.app = app
        self.authenticator = authenticator
        self.gate = gate or authenticator.gate
        self.inbox_paths = frozenset(inbox_paths) if inbox_paths is not None else None
        self.client_paths = frozenset(client_paths)

    def __call__(
        self,
        environ: dict[str, Any],
        start_response: Callable[..., Any],
    ) -> Iterable[bytes]:
        path = environ.get("PATH_INFO", "/")
        method = environ.get("REQUEST_METHOD", "GET")

        # Client-to-server delivery is not supported yet outside open mode
        if path in self.client_paths and not self.gate.is_open_mode():
            return self._respond(start_response, 405, "", DISABLED)

        if method != "POST" or (
            self.inbox_paths is not None and path not in self.inbox_paths
        ):
            return self.app(environ, start_response)

        activity = parse_activity(_read_body(environ))
        if activity is None:
            return self._respond(start_response, 400, INVALID_BODY, INVALID_BODY_DECISION)

        inbound = InboundRequest.create(
            method=method,
            path=_build_path(environ),
            headers=_extract_headers(environ),
            body=activity,
        )
        outcome = self.authenticator.authenticate_sync(inbound)
        environ[ENVIRON_KEY] = AuthState(signed=inbound.is_signed, outcome=outcome)

        if not outcome.proceed:
            return self._respond(
                start_response,
                outcome.status_code,
                response_text(outcome),
                outcome.decision.value,
            )

        def custom_start_response(
            status: str,
            response_headers: list[tuple[str, str]],
            exc_info: Any = None,
        ) -> Any:
            response_headers.append((DECISION_HEADER, outcome.decision.value))
            return start_response(status, response_headers, exc_info)

        return self.app(environ, custom_start_response)

    def _respond(
        self,
        start_response: Callable[..., Any],
        status_code: int,
        text: str,
        decision: str | None = None,
    ) -> Iterable[bytes]:
        body = text.encode("utf-8")
        headers = [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("Content-Length", str(len(body))),
        ]
        if decision is not None:
            headers.append((DECISION_HEADER, decision))
        start_response(f"{status_code} {HTTPStatus(status_code).phrase}", headers)
        return [body]
