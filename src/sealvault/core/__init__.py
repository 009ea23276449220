"""
SealVault core engine.

This package provides the envelope registry and its collaborators:
- EnvelopeRegistry: create, claim, revoke, refund and query envelopes
- Vesting evaluator: basis points unlocked by a slice schedule
- Stores: in-memory and JSON file key/value stores with atomic batches
- Authorizers: trusted-caller and ECDSA signature based
"""

from .auth import Authorizer, SignatureAuthorizer, SignedCall, TrustedCallerAuthorizer
from .config import RegistryConfig
from .exceptions import (
    AlreadyInitialized,
    AlreadyRevoked,
    DuplicateEnvelope,
    EnvelopeError,
    FullyClaimed,
    InvalidAmount,
    InvalidSecret,
    Locked,
    NoExpirySet,
    NotFound,
    NotInitialized,
    NotYetExpired,
    Revoked,
    StorageError,
    Unauthorized,
)
from .models import Envelope, VestSlice
from .registry import EnvelopeRegistry
from .storage import InMemoryStore, JsonFileStore, KeyValueStore
from .vesting import vested_amount, vested_fraction

__all__ = [
    # Registry
    "EnvelopeRegistry",
    "RegistryConfig",
    "Envelope",
    "VestSlice",
    "vested_fraction",
    "vested_amount",
    # Stores
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    # Authorization
    "Authorizer",
    "TrustedCallerAuthorizer",
    "SignatureAuthorizer",
    "SignedCall",
    # Errors
    "EnvelopeError",
    "AlreadyInitialized",
    "NotInitialized",
    "Unauthorized",
    "InvalidAmount",
    "DuplicateEnvelope",
    "NotFound",
    "Revoked",
    "InvalidSecret",
    "Locked",
    "AlreadyRevoked",
    "FullyClaimed",
    "NoExpirySet",
    "NotYetExpired",
    "StorageError",
]
