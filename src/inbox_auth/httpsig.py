"""
HTTP Signatures (draft-cavage) parsing and verification.

This is the signature scheme ActivityPub servers use for server-to-server
delivery:

    Signature: keyId="https://a.example/users/alice#main-key",
               algorithm="rsa-sha256",
               headers="(request-target) host date digest",
               signature="base64..."
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from email.utils import parsedate_to_datetime

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from .errors import InvalidKeyError, SignatureHeaderError
from .models import InboundRequest, SignatureHeader

SUPPORTED_ALGORITHMS = frozenset({
    "hs2019",
    "rsa-sha256",
    "rsa-sha512",
    "ed25519",
})

DEFAULT_ALGORITHM = "hs2019"
DEFAULT_CLOCK_SKEW = 300

# keyId="value" or created=1699900000
_PARAM_RE = re.compile(r'([A-Za-z]+)=(?:"([^"]*)"|(\d+))')


def parse_signature_params(value: str) -> dict[str, str]:
    """
    Parse the parameters of a Signature header value.

    Accepts both the bare `Signature` header value and an `Authorization`
    value using the `Signature` scheme.

    Examples:
        >>> parse_signature_params('keyId="k",signature="c2ln"')
        {'keyId': 'k', 'signature': 'c2ln'}
        >>> parse_signature_params('Signature keyId="k",created=123')
        {'keyId': 'k', 'created': '123'}
    """
    value = value.strip()
    if value[:10].lower() == "signature ":
        value = value[10:]

    params: dict[str, str] = {}
    for match in _PARAM_RE.finditer(value):
        name, quoted, number = match.groups()
        params[name] = quoted if quoted is not None else number
    return params


def build_signing_string(
    request: InboundRequest,
    headers: list[str] | tuple[str, ...],
    created: int | None = None,
    expires: int | None = None,
) -> str:
    """
    Rebuild the canonical string the sender signed.

    Raises:
        SignatureHeaderError: If a covered header is absent from the request
    """
    lines = []
    for name in headers:
        if name == "(request-target)":
            lines.append(f"(request-target): {request.method.lower()} {request.path}")
        elif name == "(created)":
            if created is None:
                raise SignatureHeaderError("(created) is signed but has no value")
            lines.append(f"(created): {created}")
        elif name == "(expires)":
            if expires is None:
                raise SignatureHeaderError("(expires) is signed but has no value")
            lines.append(f"(expires): {expires}")
        else:
            value = request.header(name)
            if value is None:
                raise SignatureHeaderError(f"Signed header '{name}' is missing from the request")
            lines.append(f"{name}: {value.strip()}")
    return "\n".join(lines)


def _int_param(params: dict[str, str], name: str) -> int | None:
    if name not in params:
        return None
    try:
        return int(params[name])
    except ValueError as e:
        raise SignatureHeaderError(f"Invalid {name} parameter") from e


def _check_clock_skew(
    request: InboundRequest,
    headers: list[str],
    created: int | None,
    expires: int | None,
    clock_skew: int,
    now: float,
) -> None:
    if "date" in headers:
        try:
            sent = parsedate_to_datetime(request.header("date") or "").timestamp()
        except (TypeError, ValueError) as e:
            raise SignatureHeaderError("Invalid date header") from e
        if abs(now - sent) > clock_skew:
            raise SignatureHeaderError(f"Clock skew of {abs(now - sent):.0f}s exceeds {clock_skew}s")

    if created is not None and created > now + clock_skew:
        raise SignatureHeaderError("Signature was created in the future")
    if expires is not None and expires < now:
        raise SignatureHeaderError("Signature has expired")


def parse_request(
    request: InboundRequest,
    clock_skew: int = DEFAULT_CLOCK_SKEW,
    now: float | None = None,
) -> SignatureHeader:
    """
    Parse the signature of an inbound request.

    Args:
        request: The inbound request
        clock_skew: Allowed difference in seconds between the signed date and now
        now: Current Unix time, for tests

    Returns:
        SignatureHeader with the decoded signature and rebuilt signing string

    Raises:
        SignatureHeaderError: If the signature is absent, malformed, uses an
            unsupported algorithm or falls outside the clock skew
    """
    value = request.header("signature")
    if not value:
        value = request.header("authorization")
        if not value:
            raise SignatureHeaderError("No signature header present")
        if value[:10].lower() != "signature ":
            raise SignatureHeaderError("Authorization header does not use the Signature scheme")

    params = parse_signature_params(value)

    key_id = params.get("keyId")
    if not key_id:
        raise SignatureHeaderError("Missing keyId parameter")
    if not params.get("signature"):
        raise SignatureHeaderError("Missing signature parameter")

    algorithm = params.get("algorithm", DEFAULT_ALGORITHM).lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise SignatureHeaderError(f"Unsupported algorithm '{algorithm}'")

    headers = params.get("headers", "date").lower().split()
    if not headers:
        raise SignatureHeaderError("Empty headers parameter")

    created = _int_param(params, "created")
    expires = _int_param(params, "expires")

    try:
        signature = base64.b64decode(params["signature"], validate=True)
    except (binascii.Error, ValueError) as e:
        raise SignatureHeaderError("Signature is not valid base64") from e

    _check_clock_skew(
        request,
        headers,
        created,
        expires,
        clock_skew,
        time.time() if now is None else now,
    )

    return SignatureHeader(
        key_id=key_id,
        algorithm=algorithm,
        headers=tuple(headers),
        signature=signature,
        signing_string=build_signing_string(request, headers, created, expires),
        created=created,
        expires=expires,
    )


def verify_signature(header: SignatureHeader, public_key_pem: str) -> bool:
    """
    Verify a parsed signature against a PEM encoded public key.

    Returns:
        True if the signature matches, False otherwise (including a key type
        that does not match the declared algorithm)

    Raises:
        InvalidKeyError: If the PEM cannot be loaded
    """
    try:
        public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError(f"Cannot load public key: {e}") from e

    data = header.signing_string.encode("utf-8")

    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            if header.algorithm == "ed25519":
                return False
            digest = hashes.SHA512() if header.algorithm == "rsa-sha512" else hashes.SHA256()
            public_key.verify(header.signature, data, padding.PKCS1v15(), digest)
            return True

        if isinstance(public_key, ed25519.Ed25519PublicKey):
            if header.algorithm not in ("ed25519", "hs2019"):
                return False
            public_key.verify(header.signature, data)
            return True
    except InvalidSignature:
        return False

    return False
