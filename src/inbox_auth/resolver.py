"""
Actor resolution for signature verification.

Fetches remote actor documents over HTTP and caches them in an actor store.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Union
from urllib.parse import urlsplit

import httpx

from .errors import ActorGoneError, ResolutionError
from .models import Actor

ACTIVITY_ACCEPT = (
    'application/activity+json, '
    'application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
)

# A string identifier or an embedded document
ActorRef = Union[str, Mapping[str, Any]]


class ActorStore(Protocol):
    def get(self, id: str) -> Actor | None: ...

    def put(self, actor: Actor) -> None: ...


class ActorResolver(Protocol):
    """Resolves actor references and key ids into actors."""

    async def resolve(self, ref: ActorRef, store: ActorStore | None = None) -> Actor: ...

    def resolve_sync(self, ref: ActorRef, store: ActorStore | None = None) -> Actor: ...


class InMemoryActorStore:
    """
    Actor store backed by a dict.

    Actors are indexed by actor id and by key id so that a signature's keyId
    finds the cached actor without a fetch.
    """

    def __init__(self) -> None:
        self._actors: dict[str, Actor] = {}

    def get(self, id: str) -> Actor | None:
        return self._actors.get(id)

    def put(self, actor: Actor) -> None:
        self._actors[actor.id] = actor
        for key in actor.public_keys:
            if key.id:
                self._actors[key.id] = actor

    def __len__(self) -> int:
        return len({actor.id for actor in self._actors.values()})


def actor_from_activity(activity: Mapping[str, Any]) -> ActorRef:
    """
    Return the actor reference of an activity.

    Examples:
        >>> actor_from_activity({"type": "Create", "actor": "https://a.example/users/alice"})
        'https://a.example/users/alice'
        >>> actor_from_activity({"actor": ["https://a.example/users/alice"]})
        'https://a.example/users/alice'

    Raises:
        ResolutionError: If the activity names no actor
    """
    actor = activity.get("actor")
    if isinstance(actor, list):
        actor = actor[0] if actor else None
    if isinstance(actor, str) and actor:
        return actor
    if isinstance(actor, Mapping):
        return actor
    raise ResolutionError("Activity has no actor")


def _strip_fragment(url: str) -> str:
    return url.split("#", 1)[0]


def _origin(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


def check_provenance(ref: str, document: Mapping[str, Any], actor: Actor) -> None:
    """
    Check that a fetched document only speaks for its own URL.

    The document id must be the fetched URL, and every key it publishes (and
    the owner of a bare key document) must live on the same origin.

    Raises:
        ResolutionError: If the document claims ids it was not fetched from
    """
    if _strip_fragment(str(document.get("id", ""))) != _strip_fragment(ref):
        raise ResolutionError(f"Document id {document.get('id')!r} does not match {ref}")

    origin = _origin(ref)
    if _origin(actor.id) != origin:
        raise ResolutionError(f"Actor {actor.id} is not on the origin of {ref}")
    for key in actor.public_keys:
        if _origin(key.id) != origin or _origin(key.owner) != origin:
            raise ResolutionError(f"Key {key.id} is not on the origin of {ref}")


class HttpActorResolver:
    """
    Resolver that fetches actors from their origin servers.

    Args:
        timeout_s: Request timeout in seconds. Default: 5.0
        store: Actor store used when no store is passed to `resolve`
        headers: Extra request headers (e.g. a User-Agent)

    Example:
        >>> resolver = HttpActorResolver(store=InMemoryActorStore())
        >>> actor = await resolver.resolve("https://a.example/users/alice#main-key")
        >>> actor.public_key.public_key_pem
    """

    def __init__(
        self,
        timeout_s: float = 5.0,
        store: ActorStore | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        self.timeout_s = timeout_s
        self.store = store
        self.headers = {"Accept": ACTIVITY_ACCEPT, **(headers or {})}

    async def resolve(self, ref: ActorRef, store: ActorStore | None = None) -> Actor:
        """
        Resolve an actor asynchronously.

        Args:
            ref: Actor id, key id or embedded actor document
            store: Actor store to read and populate (default: the resolver's)

        Returns:
            The resolved actor

        Raises:
            ActorGoneError: If the origin server answers 410 Gone
            ResolutionError: On any other failure
        """
        embedded, ref = self._from_embedded(ref)
        if embedded is not None:
            return embedded

        store = store if store is not None else self.store
        cached = self._cached(ref, store)
        if cached is not None:
            return cached

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                response = await client.get(_strip_fragment(ref), headers=self.headers)
        except httpx.HTTPError as e:
            raise ResolutionError(f"Failed to fetch {ref}: {e}") from e

        return self._parse_response(ref, response, store)

    def resolve_sync(self, ref: ActorRef, store: ActorStore | None = None) -> Actor:
        """
        Resolve an actor synchronously.

        See `resolve` for arguments and errors.
        """
        embedded, ref = self._from_embedded(ref)
        if embedded is not None:
            return embedded

        store = store if store is not None else self.store
        cached = self._cached(ref, store)
        if cached is not None:
            return cached

        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.get(_strip_fragment(ref), headers=self.headers)
        except httpx.HTTPError as e:
            raise ResolutionError(f"Failed to fetch {ref}: {e}") from e

        return self._parse_response(ref, response, store)

    def _from_embedded(self, ref: ActorRef) -> tuple[Actor | None, str]:
        """
        Use an embedded document as-is when it carries a key.

        A keyless embedded document is resolved by its id instead, so an
        activity cannot hide the key its actor publishes.
        """
        if isinstance(ref, str):
            return None, ref
        try:
            actor = Actor.from_document(ref)
        except ValueError as e:
            raise ResolutionError(str(e)) from e
        if actor.public_keys:
            return actor, actor.id
        return None, actor.id

    def _cached(self, ref: str, store: ActorStore | None) -> Actor | None:
        if store is None:
            return None
        return store.get(ref) or store.get(_strip_fragment(ref))

    def _parse_response(
        self,
        ref: str,
        response: httpx.Response,
        store: ActorStore | None,
    ) -> Actor:
        """Turn the origin server's response into an Actor."""
        if response.status_code == 410:
            raise ActorGoneError(f"410 Gone: {ref}")

        if response.status_code >= 400:
            raise ResolutionError(
                f"{response.status_code} fetching {ref}",
                status_code=response.status_code,
            )

        try:
            document = response.json()
        except ValueError as e:
            raise ResolutionError(f"Invalid JSON from {ref}") from e

        if not isinstance(document, dict):
            raise ResolutionError(f"Unexpected document from {ref}")

        try:
            actor = Actor.from_document(document)
        except ValueError as e:
            raise ResolutionError(f"{e}: {ref}") from e

        check_provenance(ref, document, actor)

        if store is not None:
            store.put(actor)
        return actor
