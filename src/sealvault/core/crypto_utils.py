"""
Identity and secret helpers for the envelope registry.

Identities are secp256k1 keys. An identity's address is ``SV`` followed by
the first 40 hex characters of SHA-256 over the 64-byte uncompressed public
key. Signatures are 64-byte ``r || s`` hex strings in low-S form.

Claim secrets are committed to as SHA-256 digests; the registry only ever
compares commitments.
"""

from __future__ import annotations

import hashlib
import hmac

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

ADDRESS_PREFIX = "SV"
ADDRESS_DIGEST_CHARS = 40

SECP256K1 = ec.SECP256K1()
SECP256K1_ORDER = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
_HALF_ORDER = SECP256K1_ORDER // 2
_SCALAR_BYTES = 32


def _encode_point(public_key: ec.EllipticCurvePublicKey) -> str:
    point = public_key.public_numbers()
    return (point.x.to_bytes(_SCALAR_BYTES, "big") + point.y.to_bytes(_SCALAR_BYTES, "big")).hex()


def _decode_point(public_hex: str) -> ec.EllipticCurvePublicKey:
    raw = bytes.fromhex(public_hex)
    if len(raw) != 2 * _SCALAR_BYTES:
        raise ValueError("Public key must be 64 bytes of uncompressed x || y.")
    return ec.EllipticCurvePublicKey.from_encoded_point(SECP256K1, b"\x04" + raw)


def _signing_key(private_hex: str) -> ec.EllipticCurvePrivateKey:
    scalar = int(private_hex, 16) % SECP256K1_ORDER
    return ec.derive_private_key(scalar or 1, SECP256K1)


def generate_secp256k1_keypair_hex() -> tuple[str, str]:
    """Return a fresh ``(private_hex, public_hex)`` pair."""
    private_key = ec.generate_private_key(SECP256K1)
    scalar = private_key.private_numbers().private_value
    return scalar.to_bytes(_SCALAR_BYTES, "big").hex(), _encode_point(private_key.public_key())


def derive_public_key_hex(private_hex: str) -> str:
    return _encode_point(_signing_key(private_hex).public_key())


def public_key_to_address(public_hex: str) -> str:
    digest = hashlib.sha256(bytes.fromhex(public_hex)).hexdigest()
    return ADDRESS_PREFIX + digest[:ADDRESS_DIGEST_CHARS]


def sign_message_hex(private_hex: str, message: bytes) -> str:
    """Sign ``message`` and return the low-S ``r || s`` signature as hex."""
    der = _signing_key(private_hex).sign(message, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    if s > _HALF_ORDER:
        s = SECP256K1_ORDER - s
    return (r.to_bytes(_SCALAR_BYTES, "big") + s.to_bytes(_SCALAR_BYTES, "big")).hex()


def verify_signature_hex(public_hex: str, message: bytes, signature_hex: str) -> bool:
    """
    Check a ``r || s`` signature over ``message``.

    Malformed keys or signatures and high-S (malleable) signatures are
    rejected rather than raised.
    """
    try:
        public_key = _decode_point(public_hex)
        raw = bytes.fromhex(signature_hex)
    except ValueError:
        return False
    if len(raw) != 2 * _SCALAR_BYTES:
        return False

    r = int.from_bytes(raw[:_SCALAR_BYTES], "big")
    s = int.from_bytes(raw[_SCALAR_BYTES:], "big")
    if not (1 <= r < SECP256K1_ORDER and 1 <= s <= _HALF_ORDER):
        return False

    try:
        public_key.verify(encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


def hash_secret(preimage: bytes | str) -> bytes:
    """SHA-256 commitment stored on an envelope for a claim secret."""
    if isinstance(preimage, str):
        preimage = preimage.encode("utf-8")
    return hashlib.sha256(preimage).digest()


def secrets_match(provided: bytes, expected: bytes) -> bool:
    """Constant-time comparison of two opaque secret values."""
    return hmac.compare_digest(bytes(provided), bytes(expected))
