"""
Flask demo inbox with HTTP Signature authentication.

Usage:
    # Install dependencies
    pip install -e ".[flask]"

    # Run the server
    flask --app examples.flask_demo run --port 8010

    # Or directly
    python examples/flask_demo.py

Test with curl:
    curl -X POST http://localhost:8010/inbox \
        -H 'Content-Type: application/activity+json' \
        -d '{"type": "Create", "actor": {"id": "https://a.example/users/alice"}}'

Environment variables:
    INBOX_AUTH_ENV - "development" enables open mode (default: production)
    INBOX_AUTH_TIMEOUT - Actor fetch timeout in seconds (default: 5.0)
    INBOX_AUTH_CLOCK_SKEW - Allowed signature clock skew in seconds (default: 300)
"""

import logging

from flask import Flask, g, request, jsonify

# Import from installed package
from inbox_auth import InMemoryActorStore, Settings, SignatureAuthenticator
from inbox_auth.middleware import InboxAuthWSGIMiddleware

logging.basicConfig(level=logging.INFO)

# Configuration from environment
SETTINGS = Settings.from_env()

app = Flask(__name__)

# Wrap with inbox authentication middleware
app.wsgi_app = InboxAuthWSGIMiddleware(
    app.wsgi_app,
    SignatureAuthenticator.from_settings(SETTINGS, store=InMemoryActorStore()),
    inbox_paths=["/inbox"],
    client_paths=["/outbox"],
)


@app.before_request
def extract_auth_state():
    """Extract authentication state from environ and attach to Flask g object."""
    g.inbox_auth = request.environ.get("inbox_auth.state")


@app.route("/")
def root():
    """Service info endpoint."""
    return jsonify({
        "service": "Inbox Auth Flask Demo",
        "environment": SETTINGS.environment,
        "endpoints": {
            "/inbox": "Server-to-server deliveries (signature checked)",
            "/outbox": "Client-to-server (development only)",
        },
    })


@app.post("/inbox")
def inbox():
    """Accept an authenticated delivery."""
    activity = request.get_json(force=True)
    signer = g.inbox_auth.outcome.signer

    return jsonify({
        "accepted": activity.get("type"),
        "signed": g.inbox_auth.signed,
        "signer": signer.id if signer else None,
    })


@app.post("/outbox")
def outbox():
    """Client-to-server endpoint, reachable in development only."""
    activity = request.get_json(force=True)
    return jsonify({"queued": activity.get("type")})


@app.route("/health")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8010, debug=True)
