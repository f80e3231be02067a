"""Shared fixtures: keys, signed requests and in-memory collaborators."""

import base64
from email.utils import formatdate

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from inbox_auth import Actor, InboundRequest, PublicKey

ALICE = "https://a.example/users/alice"
ALICE_KEY = "https://a.example/users/alice#main-key"
BOB_GONE = "https://gone.example/users/bob"


def public_pem(private_key) -> str:
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def sign_headers(
    private_key,
    key_id: str,
    method: str,
    path: str,
    headers: dict,
    signed=("(request-target)", "host", "date"),
    algorithm: str = "rsa-sha256",
) -> dict:
    """Return `headers` plus a Signature header over `signed`."""
    headers = {k.lower(): v for k, v in headers.items()}
    headers.setdefault("date", formatdate(usegmt=True))
    lines = []
    for name in signed:
        if name == "(request-target)":
            lines.append(f"(request-target): {method.lower()} {path}")
        else:
            lines.append(f"{name}: {headers[name]}")
    data = "\n".join(lines).encode()

    if isinstance(private_key, rsa.RSAPrivateKey):
        digest = hashes.SHA512() if algorithm == "rsa-sha512" else hashes.SHA256()
        raw = private_key.sign(data, padding.PKCS1v15(), digest)
    else:
        raw = private_key.sign(data)

    headers["signature"] = (
        f'keyId="{key_id}",algorithm="{algorithm}",'
        f'headers="{" ".join(signed)}",'
        f'signature="{base64.b64encode(raw).decode()}"'
    )
    return headers


def signed_request(private_key, body: dict, key_id: str = ALICE_KEY, **kwargs) -> InboundRequest:
    headers = sign_headers(private_key, key_id, "POST", "/inbox", {"host": "b.example"}, **kwargs)
    return InboundRequest.create("POST", "/inbox", headers, body)


class FakeResolver:
    """Resolver serving actors and errors from dicts, recording every call."""

    def __init__(self, actors=None, errors=None):
        self.actors = actors or {}
        self.errors = errors or {}
        self.calls = []

    async def resolve(self, ref, store=None):
        return self.resolve_sync(ref, store)

    def resolve_sync(self, ref, store=None):
        self.calls.append((ref, store))
        key = ref if isinstance(ref, str) else ref["id"]
        if key in self.errors:
            raise self.errors[key]
        return self.actors[key]


class StaticGate:
    def __init__(self, open_mode: bool):
        self.open_mode = open_mode

    def is_open_mode(self) -> bool:
        return self.open_mode


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ed_key():
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture
def alice(rsa_key):
    """Alice publishes an RSA key."""
    return Actor(
        id=ALICE,
        public_keys=(PublicKey(id=ALICE_KEY, owner=ALICE, public_key_pem=public_pem(rsa_key)),),
    )


@pytest.fixture
def keyless_alice():
    """Alice as a legacy actor without a key."""
    return Actor(id=ALICE)
