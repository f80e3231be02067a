"""
Inbound delivery authentication.

Decides, for each server-to-server delivery, whether the claimed sender is
who they say they are:

- unsigned deliveries are accepted from actors that publish no key (legacy
  senders that do not implement HTTP Signatures)
- signed deliveries are verified against the signer's resolved key
- a Delete whose actor is already gone cannot be verified and is tolerated
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from .config import DeploymentGate, Settings
from .errors import ResolutionError
from .httpsig import parse_request, verify_signature
from .models import (
    Actor,
    Decision,
    InboundRequest,
    NoSignatureDecision,
    SignatureHeader,
    VerificationOutcome,
)
from .resolver import ActorResolver, ActorStore, HttpActorResolver, actor_from_activity

Parser = Callable[[InboundRequest], SignatureHeader]
Verifier = Callable[[SignatureHeader, str], bool]

logger = logging.getLogger(__name__)


def no_signature_decision(actor: Actor, open_mode: bool) -> NoSignatureDecision:
    """
    Decide whether an unsigned delivery from `actor` needs a signature.

    Actors that never published a key cannot be held to a signing
    requirement. The open mode exemption is a development-only bypass for
    local testing and must not be enabled in production.
    """
    if actor.public_key is None or open_mode:
        return NoSignatureDecision.EXEMPT
    return NoSignatureDecision.REQUIRE_SIGNATURE


def classify_failure(
    request: InboundRequest,
    error: Exception,
    log: logging.Logger = logger,
) -> VerificationOutcome:
    """
    Map a parsing or resolution failure to an outcome.

    A Delete whose actor answers 410 Gone is tolerated: the key can no longer
    be fetched, and there is nothing left to delete.
    """
    if (
        request.activity_type == "Delete"
        and isinstance(error, ResolutionError)
        and error.gone
    ):
        log.info("Tolerating unverifiable Delete from gone actor: %s", error)
        return VerificationOutcome(Decision.TOLERATE_TOMBSTONE, reason=str(error))

    log.error(
        "error during signature verification: %s",
        error,
        extra={"activity": dict(request.body)},
    )
    return VerificationOutcome(Decision.INTERNAL_ERROR, reason=str(error))


class SignatureAuthenticator:
    """
    Authenticates inbound deliveries.

    Args:
        resolver: Resolves actor references and key ids
        gate: Deployment gate deciding open mode
        parser: Parses the request's signature header
        verifier: Checks a parsed signature against a PEM public key
        store: Persistent actor store passed to the resolver when resolving signers
        logger: Logger for rejections and errors

    Example:
        >>> authenticator = SignatureAuthenticator.from_settings(Settings.from_env())
        >>> outcome = await authenticator.authenticate(request)
        >>> if outcome.proceed:
        ...     handle(request.body, signer=outcome.signer)
    """

    def __init__(
        self,
        resolver: ActorResolver,
        gate: DeploymentGate,
        *,
        parser: Parser = parse_request,
        verifier: Verifier = verify_signature,
        store: ActorStore | None = None,
        logger: logging.Logger | None = None,
    ):
        self.resolver = resolver
        self.gate = gate
        self.parser = parser
        self.verifier = verifier
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ActorStore | None = None,
        logger: logging.Logger | None = None,
    ) -> SignatureAuthenticator:
        """Build an authenticator with the default HTTP resolver."""
        return cls(
            HttpActorResolver(timeout_s=settings.timeout_s, store=store),
            settings.gate(),
            parser=functools.partial(parse_request, clock_skew=settings.clock_skew),
            store=store,
            logger=logger,
        )

    async def authenticate(self, request: InboundRequest) -> VerificationOutcome:
        """
        Authenticate one delivery.

        Never raises: every failure is classified into an outcome.
        """
        try:
            if not request.is_signed:
                actor = await self.resolver.resolve(actor_from_activity(request.body))
                return self._unsigned_outcome(actor)

            header = self.parser(request)
            signer = await self.resolver.resolve(header.key_id, self.store)
            return self._signed_outcome(header, signer)
        except Exception as e:
            return classify_failure(request, e, self.logger)

    def authenticate_sync(self, request: InboundRequest) -> VerificationOutcome:
        """Authenticate one delivery, resolving actors synchronously."""
        try:
            if not request.is_signed:
                actor = self.resolver.resolve_sync(actor_from_activity(request.body))
                return self._unsigned_outcome(actor)

            header = self.parser(request)
            signer = self.resolver.resolve_sync(header.key_id, self.store)
            return self._signed_outcome(header, signer)
        except Exception as e:
            return classify_failure(request, e, self.logger)

    def _unsigned_outcome(self, actor: Actor) -> VerificationOutcome:
        decision = no_signature_decision(actor, self.gate.is_open_mode())
        if decision is NoSignatureDecision.REQUIRE_SIGNATURE:
            self.logger.warning("Missing http signature from %s", actor.id)
            return VerificationOutcome(
                Decision.REJECT_MISSING_SIGNATURE,
                reason="Missing http signature",
            )
        return VerificationOutcome(Decision.ALLOW, signer=actor)

    def _signed_outcome(self, header: SignatureHeader, signer: Actor) -> VerificationOutcome:
        key = signer.key(header.key_id)
        if key is None:
            self.logger.warning("Signer %s publishes no key %s", signer.id, header.key_id)
            return VerificationOutcome(
                Decision.REJECT_INVALID_SIGNATURE,
                reason="Invalid http signature",
                key_id=header.key_id,
            )

        if not self.verifier(header, key.public_key_pem):
            self.logger.warning("signature validation failure %s", header.key_id)
            return VerificationOutcome(
                Decision.REJECT_INVALID_SIGNATURE,
                reason="Invalid http signature",
                key_id=header.key_id,
            )

        return VerificationOutcome(Decision.ALLOW, signer=signer, key_id=header.key_id)
