"""
Data models for inbox signature authentication.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class InboundRequest:
    """
    An inbound server-to-server delivery under evaluation.

    Attributes:
        method: HTTP method (normally POST)
        path: Request path including the query string
        headers: Request headers with lowercase names
        body: Parsed activity document
    """
    method: str
    path: str
    headers: Mapping[str, str]
    body: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: Mapping[str, Any] | None = None,
    ) -> InboundRequest:
        """Build a request, normalizing header names to lowercase."""
        normalized = {k.lower(): v for k, v in headers.items()}
        return cls(method=method.upper(), path=path, headers=normalized, body=body or {})

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def activity_type(self) -> str | None:
        return self.body.get("type")

    @property
    def is_signed(self) -> bool:
        """True when an `authorization` or `signature` header is present."""
        return bool(self.header("authorization") or self.header("signature"))


@dataclass(frozen=True)
class SignatureHeader:
    """
    Parsed HTTP signature.

    Attributes:
        key_id: URL of the signer's public key
        algorithm: Signature algorithm name (lowercase)
        headers: Signed header names, in signing order
        signature: Decoded signature bytes
        signing_string: Canonical string rebuilt from the request
        created: `(created)` parameter (Unix epoch), if any
        expires: `(expires)` parameter (Unix epoch), if any
    """
    key_id: str
    algorithm: str
    headers: tuple[str, ...]
    signature: bytes
    signing_string: str
    created: int | None = None
    expires: int | None = None


@dataclass(frozen=True)
class PublicKey:
    id: str
    owner: str
    public_key_pem: str


@dataclass(frozen=True)
class Actor:
    """
    A resolved federated identity.

    An actor without a public key has never published a signing key and
    is not held to a signing requirement.
    """
    id: str
    public_keys: tuple[PublicKey, ...] = ()
    document: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def public_key(self) -> PublicKey | None:
        """The first published key, or None."""
        return self.public_keys[0] if self.public_keys else None

    def key(self, key_id: str) -> PublicKey | None:
        """The published key with id `key_id`, or None."""
        for key in self.public_keys:
            if key.id == key_id:
                return key
        return None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Actor:
        """
        Build an actor from an ActivityPub actor document or a bare key document.

        Key documents (`{"id", "owner", "publicKeyPem"}`) resolve to their owner.
        Every key of a `publicKey` list is kept.
        """
        if "publicKeyPem" in document and "owner" in document:
            key = PublicKey(
                id=document.get("id", ""),
                owner=document["owner"],
                public_key_pem=document["publicKeyPem"],
            )
            return cls(id=key.owner, public_keys=(key,), document=document)

        actor_id = document.get("id")
        if not isinstance(actor_id, str):
            raise ValueError("Actor document has no id")

        key_data = document.get("publicKey")
        if not isinstance(key_data, list):
            key_data = [key_data]

        public_keys = tuple(
            PublicKey(
                id=entry.get("id", ""),
                owner=entry.get("owner", actor_id),
                public_key_pem=entry["publicKeyPem"],
            )
            for entry in key_data
            if isinstance(entry, Mapping) and entry.get("publicKeyPem")
        )

        return cls(id=actor_id, public_keys=public_keys, document=document)


class Decision(str, enum.Enum):
    ALLOW = "allow"
    REJECT_MISSING_SIGNATURE = "reject-missing-signature"
    REJECT_INVALID_SIGNATURE = "reject-invalid-signature"
    TOLERATE_TOMBSTONE = "tolerate-tombstone"
    INTERNAL_ERROR = "internal-error"


_STATUS_CODES = {
    Decision.ALLOW: 200,
    Decision.REJECT_MISSING_SIGNATURE: 400,
    Decision.REJECT_INVALID_SIGNATURE: 400,
    Decision.TOLERATE_TOMBSTONE: 200,
    Decision.INTERNAL_ERROR: 500,
}


class NoSignatureDecision(str, enum.Enum):
    """What to do with an unsigned delivery once its actor is resolved."""
    EXEMPT = "exempt"
    REQUIRE_SIGNATURE = "require-signature"


@dataclass(frozen=True)
class VerificationOutcome:
    """
    Result of one authentication attempt.

    Attributes:
        decision: What happens to the request
        reason: Human readable reason for rejections and errors
        signer: Resolved actor, for downstream handlers
        key_id: Key id from the signature header, if one was parsed
    """
    decision: Decision
    reason: str | None = None
    signer: Actor | None = None
    key_id: str | None = None

    @property
    def proceed(self) -> bool:
        """Whether the request continues to the handler."""
        return self.decision is Decision.ALLOW

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.decision]


@dataclass
class AuthState:
    """
    Authentication state attached to requests.

    Attributes:
        signed: Whether the request had signature headers
        outcome: Authentication outcome
    """
    signed: bool
    outcome: VerificationOutcome
