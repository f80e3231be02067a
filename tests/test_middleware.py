"""Tests for ASGI and WSGI middleware."""

import json
from io import BytesIO

import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from inbox_auth import ActorGoneError, ResolutionError, SignatureAuthenticator
from inbox_auth.middleware.asgi import InboxAuthASGIMiddleware
from inbox_auth.middleware.wsgi import InboxAuthWSGIMiddleware

from conftest import ALICE, ALICE_KEY, BOB_GONE, FakeResolver, StaticGate, sign_headers

CREATE = {"type": "Create", "actor": ALICE}
DELETE_BOB = {"type": "Delete", "actor": BOB_GONE}


# Test ASGI app
async def inbox_endpoint(request):
    state = getattr(request.state, "inbox_auth", None)
    body = await request.json()
    signer = state.outcome.signer if state else None
    return JSONResponse({
        "signed": state.signed if state else False,
        "decision": state.outcome.decision.value if state else None,
        "signer": signer.id if signer else None,
        "type": body.get("type"),
    })


async def outbox_endpoint(request):
    return JSONResponse({"ok": True})


def create_asgi_app(resolver, open_mode: bool = False):
    """Create test ASGI app with middleware."""
    app = Starlette(routes=[
        Route("/inbox", inbox_endpoint, methods=["GET", "POST"]),
        Route("/outbox", outbox_endpoint, methods=["GET", "POST"]),
    ])
    app.add_middleware(
        InboxAuthASGIMiddleware,
        authenticator=SignatureAuthenticator(resolver, StaticGate(open_mode)),
        inbox_paths=["/inbox"],
        client_paths=["/outbox"],
    )
    return app


class TestASGIMiddleware:
    """Tests for InboxAuthASGIMiddleware."""

    def test_unsigned_keyless_actor(self, keyless_alice):
        """Unsigned delivery from a keyless actor reaches the handler."""
        client = TestClient(create_asgi_app(FakeResolver(actors={ALICE: keyless_alice})))

        response = client.post("/inbox", json=CREATE)

        assert response.status_code == 200
        data = response.json()
        assert data["signed"] is False
        assert data["decision"] == "allow"
        assert data["type"] == "Create"
        assert response.headers["X-Inbox-Auth"] == "allow"

    def test_unsigned_keyed_actor(self, alice):
        """Unsigned delivery from a keyed actor returns 400."""
        client = TestClient(create_asgi_app(FakeResolver(actors={ALICE: alice})))

        response = client.post("/inbox", json=CREATE)

        assert response.status_code == 400
        assert response.text == "Missing http signature"
        assert response.headers["X-Inbox-Auth"] == "reject-missing-signature"

    def test_signed_valid(self, rsa_key, alice):
        """Valid signature reaches the handler with the signer attached."""
        client = TestClient(create_asgi_app(FakeResolver(actors={ALICE_KEY: alice})))
        headers = sign_headers(rsa_key, ALICE_KEY, "POST", "/inbox", {"host": "testserver"})

        response = client.post("/inbox", json=CREATE, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["signed"] is True
        assert data["signer"] == ALICE

    def test_signed_invalid(self, other_rsa_key, alice):
        """Invalid signature returns 400."""
        client = TestClient(create_asgi_app(FakeResolver(actors={ALICE_KEY: alice})))
        headers = sign_headers(other_rsa_key, ALICE_KEY, "POST", "/inbox", {"host": "testserver"})

        response = client.post("/inbox", json=CREATE, headers=headers)

        assert response.status_code == 400
        assert response.text == "Invalid http signature"

    def test_gone_delete(self):
        """Delete from a gone actor is acknowledged without reaching the handler."""
        resolver = FakeResolver(errors={BOB_GONE: ActorGoneError("410 Gone")})
        client = TestClient(create_asgi_app(resolver))

        response = client.post("/inbox", json=DELETE_BOB)

        assert response.status_code == 200
        assert response.text == ""
        assert response.headers["X-Inbox-Auth"] == "tolerate-tombstone"

    def test_resolution_error(self):
        """Other resolution failures return 500."""
        resolver = FakeResolver(errors={ALICE: ResolutionError("timeout")})
        client = TestClient(create_asgi_app(resolver))

        response = client.post("/inbox", json=CREATE)

        assert response.status_code == 500

    def test_invalid_body(self, keyless_alice):
        client = TestClient(create_asgi_app(FakeResolver(actors={ALICE: keyless_alice})))

        response = client.post("/inbox", content=b"not json")

        assert response.status_code == 400
        assert response.text == "Invalid activity body"
        assert response.headers["X-Inbox-Auth"] == "invalid-body"

    @pytest.mark.parametrize("target", [
        "/users/a%20b/inbox",
        "/users/a%20b/inbox?page=%2F1",
    ])
    def test_request_target_uses_raw_path(self, rsa_key, alice, target):
        """Signatures cover the percent-encoded target, not the decoded path."""
        app = Starlette(routes=[Route("/users/{name}/inbox", inbox_endpoint, methods=["POST"])])
        app.add_middleware(
            InboxAuthASGIMiddleware,
            authenticator=SignatureAuthenticator(FakeResolver(actors={ALICE_KEY: alice}), StaticGate(False)),
        )
        client = TestClient(app)

        headers = sign_headers(rsa_key, ALICE_KEY, "POST", target, {"host": "testserver"})
        response = client.post(target, json=CREATE, headers=headers)

        assert response.status_code == 200
        assert response.json()["signer"] == ALICE

        decoded = sign_headers(rsa_key, ALICE_KEY, "POST", "/users/a b/inbox", {"host": "testserver"})
        response = client.post(target, json=CREATE, headers=decoded)

        assert response.status_code == 400

    def test_get_passes_through(self):
        """Only POSTs are authenticated."""
        resolver = FakeResolver()
        client = TestClient(create_asgi_app(resolver))

        response = client.request("GET", "/inbox", content=json.dumps(CREATE))

        assert response.status_code == 200
        assert response.json()["decision"] is None
        assert resolver.calls == []

    def test_client_path_disabled(self):
        """Client-to-server paths answer 405 outside open mode."""
        client = TestClient(create_asgi_app(FakeResolver()))

        response = client.post("/outbox", json=CREATE)

        assert response.status_code == 405
        assert response.headers["X-Inbox-Auth"] == "disabled"

    def test_client_path_open_mode(self):
        """Client-to-server paths are served in open mode."""
        client = TestClient(create_asgi_app(FakeResolver(), open_mode=True))

        response = client.post("/outbox", json=CREATE)

        assert response.status_code == 200
        assert response.json() == {"ok": True}


# Test WSGI app
def wsgi_app_handler(environ, start_response):
    """Simple WSGI app for testing."""
    state = environ.get("inbox_auth.state")
    length = int(environ.get("CONTENT_LENGTH") or 0)
    activity = json.loads(environ["wsgi.input"].read(length) or b"{}")

    signer = state.outcome.signer if state else None
    body = json.dumps({
        "signed": state.signed if state else False,
        "signer": signer.id if signer else None,
        "type": activity.get("type"),
    }).encode()

    start_response("200 OK", [
        ("Content-Type", "application/json"),
        ("Content-Length", str(len(body))),
    ])
    return [body]


def create_wsgi_app(resolver, open_mode: bool = False):
    """Create test WSGI app with middleware."""
    return InboxAuthWSGIMiddleware(
        wsgi_app_handler,
        SignatureAuthenticator(resolver, StaticGate(open_mode)),
        inbox_paths=["/inbox"],
        client_paths=["/outbox"],
    )


def make_environ(path: str, activity: dict, headers: dict | None = None, method: str = "POST"):
    """Simulate a WSGI environ."""
    body = json.dumps(activity).encode()
    environ = {
        "REQUEST_METHOD": method,
        "PATH_INFO": path,
        "SERVER_NAME": "localhost",
        "wsgi.url_scheme": "http",
        "CONTENT_TYPE": "application/activity+json",
        "CONTENT_LENGTH": str(len(body)),
        "wsgi.input": BytesIO(body),
    }
    for name, value in (headers or {}).items():
        environ["HTTP_" + name.upper().replace("-", "_")] = value
    return environ


def call(app, environ):
    responses = []

    def start_response(status, headers, exc_info=None):
        responses.append((status, dict(headers)))

    body = b"".join(app(environ, start_response))
    return responses[0][0], responses[0][1], body


class TestWSGIMiddleware:
    """Tests for InboxAuthWSGIMiddleware."""

    def test_unsigned_keyless_actor(self, keyless_alice):
        """Unsigned delivery from a keyless actor passes through."""
        app = create_wsgi_app(FakeResolver(actors={ALICE: keyless_alice}))

        status, headers, body = call(app, make_environ("/inbox", CREATE))

        assert status == "200 OK"
        assert headers["X-Inbox-Auth"] == "allow"
        data = json.loads(body)
        assert data["signed"] is False
        assert data["type"] == "Create"

    def test_unsigned_keyed_actor(self, alice):
        """Unsigned delivery from a keyed actor returns 400."""
        app = create_wsgi_app(FakeResolver(actors={ALICE: alice}))

        status, headers, body = call(app, make_environ("/inbox", CREATE))

        assert status == "400 Bad Request"
        assert body == b"Missing http signature"
        assert headers["X-Inbox-Auth"] == "reject-missing-signature"

    def test_unsigned_keyed_actor_open_mode(self, alice):
        app = create_wsgi_app(FakeResolver(actors={ALICE: alice}), open_mode=True)

        status, _, _ = call(app, make_environ("/inbox", CREATE))

        assert status == "200 OK"

    def test_signed_valid(self, rsa_key, alice):
        """Valid signature sets environ state."""
        app = create_wsgi_app(FakeResolver(actors={ALICE_KEY: alice}))
        headers = sign_headers(rsa_key, ALICE_KEY, "POST", "/inbox", {"host": "b.example"})

        status, response_headers, body = call(app, make_environ("/inbox", CREATE, headers))

        assert status == "200 OK"
        assert response_headers["X-Inbox-Auth"] == "allow"
        data = json.loads(body)
        assert data["signed"] is True
        assert data["signer"] == ALICE

    def test_signed_invalid(self, other_rsa_key, alice):
        app = create_wsgi_app(FakeResolver(actors={ALICE_KEY: alice}))
        headers = sign_headers(other_rsa_key, ALICE_KEY, "POST", "/inbox", {"host": "b.example"})

        status, _, body = call(app, make_environ("/inbox", CREATE, headers))

        assert status == "400 Bad Request"
        assert body == b"Invalid http signature"

    def test_gone_delete(self):
        resolver = FakeResolver(errors={BOB_GONE: ActorGoneError("410 Gone")})

        status, headers, body = call(create_wsgi_app(resolver), make_environ("/inbox", DELETE_BOB))

        assert status == "200 OK"
        assert body == b""
        assert headers["X-Inbox-Auth"] == "tolerate-tombstone"

    def test_resolution_error(self):
        resolver = FakeResolver(errors={ALICE: ResolutionError("timeout")})

        status, _, _ = call(create_wsgi_app(resolver), make_environ("/inbox", CREATE))

        assert status == "500 Internal Server Error"

    def test_invalid_body(self, keyless_alice):
        app = create_wsgi_app(FakeResolver(actors={ALICE: keyless_alice}))
        environ = make_environ("/inbox", {})
        environ["wsgi.input"] = BytesIO(b"not json")
        environ["CONTENT_LENGTH"] = "8"

        status, headers, body = call(app, environ)

        assert status == "400 Bad Request"
        assert body == b"Invalid activity body"
        assert headers["X-Inbox-Auth"] == "invalid-body"

    @pytest.mark.parametrize("server_keys", [
        {"REQUEST_URI": "/users/a%20b/inbox?page=%2F1"},
        {"RAW_URI": "/users/a%20b/inbox?page=%2F1"},
        {},
    ])
    def test_request_target_uses_raw_path(self, rsa_key, alice, server_keys):
        """Signatures cover the percent-encoded target, not the decoded PATH_INFO."""
        app = InboxAuthWSGIMiddleware(
            wsgi_app_handler,
            SignatureAuthenticator(FakeResolver(actors={ALICE_KEY: alice}), StaticGate(False)),
        )
        target = "/users/a%20b/inbox?page=%2F1"
        headers = sign_headers(rsa_key, ALICE_KEY, "POST", target, {"host": "b.example"})
        environ = make_environ("/users/a b/inbox", CREATE, headers)
        environ["QUERY_STRING"] = "page=%2F1"
        environ.update(server_keys)

        status, response_headers, body = call(app, environ)

        assert status == "200 OK"
        assert response_headers["X-Inbox-Auth"] == "allow"
        assert json.loads(body)["signer"] == ALICE

    def test_client_path_disabled(self):
        status, headers, _ = call(create_wsgi_app(FakeResolver()), make_environ("/outbox", CREATE))

        assert status == "405 Method Not Allowed"
        assert headers["X-Inbox-Auth"] == "disabled"

    @pytest.mark.parametrize("path,method", [("/other", "POST"), ("/inbox", "GET")])
    def test_not_authenticated(self, path, method):
        """Requests outside inbox POSTs pass through untouched."""
        resolver = FakeResolver()

        status, headers, _ = call(create_wsgi_app(resolver), make_environ(path, CREATE, method=method))

        assert status == "200 OK"
        assert "X-Inbox-Auth" not in headers
        assert resolver.calls == []
