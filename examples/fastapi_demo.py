"""
FastAPI demo inbox with HTTP Signature authentication.

Usage:
    # Install dependencies
    pip install -e ".[fastapi]"

    # Run the server
    uvicorn examples.fastapi_demo:app --port 8009 --reload

    # Or directly
    python examples/fastapi_demo.py

Test with curl:
    # Unsigned delivery from an actor without a key (accepted)
    curl -X POST http://localhost:8009/inbox \
        -H 'Content-Type: application/activity+json' \
        -d '{"type": "Create", "actor": {"id": "https://a.example/users/alice"}}'

    # Client-to-server route (405 unless INBOX_AUTH_ENV=development)
    curl -X POST http://localhost:8009/outbox -d '{}'

Environment variables:
    INBOX_AUTH_ENV - "development" enables open mode (default: production)
    INBOX_AUTH_TIMEOUT - Actor fetch timeout in seconds (default: 5.0)
    INBOX_AUTH_CLOCK_SKEW - Allowed signature clock skew in seconds (default: 300)
"""

import logging

from fastapi import FastAPI, Request

# Import from installed package
from inbox_auth import (
    InboxAuthASGIMiddleware,
    InMemoryActorStore,
    Settings,
    SignatureAuthenticator,
)

logging.basicConfig(level=logging.INFO)

# Configuration from environment
SETTINGS = Settings.from_env()

app = FastAPI(
    title="Inbox Auth Demo",
    description="Demo ActivityPub inbox with HTTP Signature authentication",
    version="0.1.0",
)

# Add inbox authentication middleware
app.add_middleware(
    InboxAuthASGIMiddleware,
    authenticator=SignatureAuthenticator.from_settings(SETTINGS, store=InMemoryActorStore()),
    inbox_paths=["/inbox"],
    client_paths=["/outbox"],
)


@app.get("/")
async def root():
    """Service info endpoint."""
    return {
        "service": "Inbox Auth Demo",
        "environment": SETTINGS.environment,
        "endpoints": {
            "/inbox": "Server-to-server deliveries (signature checked)",
            "/outbox": "Client-to-server (development only)",
        },
    }


@app.post("/inbox")
async def inbox(request: Request):
    """Accept an authenticated delivery."""
    state = request.state.inbox_auth
    activity = await request.json()
    signer = state.outcome.signer

    return {
        "accepted": activity.get("type"),
        "signed": state.signed,
        "signer": signer.id if signer else None,
    }


@app.post("/outbox")
async def outbox(request: Request):
    """Client-to-server endpoint, reachable in development only."""
    activity = await request.json()
    return {"queued": activity.get("type")}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8009)
