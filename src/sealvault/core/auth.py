"""
Caller authorization for registry operations.

The registry never inspects callers itself. It asks an injected
``Authorizer`` whether the current caller may act as a given principal
(the owner or an envelope's beneficiary) and aborts with ``Unauthorized``
otherwise.

Two authorizers are provided:
- ``TrustedCallerAuthorizer``: the host has already authenticated the caller
  and passes its identity string.
- ``SignatureAuthorizer``: the caller proves control of the principal's key
  with an ECDSA signature over the operation, with replay protection.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .config import KEY_NONCES
from .crypto_utils import (
    derive_public_key_hex,
    public_key_to_address,
    sign_message_hex,
    verify_signature_hex,
)
from .exceptions import Unauthorized
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


def call_message(operation: str, subject: str, nonce: int, timestamp: int) -> str:
    """Canonical text a caller signs to authorize one registry operation."""
    return f"sealvault:{operation}:{subject}:{nonce}:{timestamp}"


@dataclass
class SignedCall:
    """Signed proof that the holder of ``public_key`` requested ``operation`` on ``subject``."""

    address: str
    public_key: str
    operation: str
    subject: str
    nonce: int
    timestamp: int
    signature: str

    @property
    def message(self) -> str:
        return call_message(self.operation, self.subject, self.nonce, self.timestamp)

    def message_hash(self) -> bytes:
        return hashlib.sha256(self.message.encode()).digest()

    @classmethod
    def sign(
        cls,
        private_hex: str,
        operation: str,
        subject: str,
        nonce: int,
        timestamp: int,
    ) -> "SignedCall":
        public_hex = derive_public_key_hex(private_hex)
        message = call_message(operation, subject, nonce, timestamp)
        signature = sign_message_hex(private_hex, hashlib.sha256(message.encode()).digest())
        return cls(
            address=public_key_to_address(public_hex),
            public_key=public_hex,
            operation=operation,
            subject=subject,
            nonce=nonce,
            timestamp=timestamp,
            signature=signature,
        )


class Authorizer(ABC):
    """Answers whether ``caller`` carries valid authority for ``principal``."""

    @abstractmethod
    def is_authorized(
        self,
        caller: Any,
        principal: str,
        *,
        operation: str,
        subject: str,
        now: int,
    ) -> bool:
        ...

    def attach(self, store: KeyValueStore) -> None:
        """Called by the registry with its store; stateless authorizers ignore it."""

    def require_auth(
        self,
        caller: Any,
        principal: str,
        *,
        operation: str,
        subject: str = "",
        now: int = 0,
    ) -> None:
        """Raise ``Unauthorized`` unless ``caller`` may act as ``principal``."""
        if not self.is_authorized(
            caller, principal, operation=operation, subject=subject, now=now
        ):
            raise Unauthorized(
                f"Caller is not authorized to {operation} as {principal[:12]}",
                details={"operation": operation, "principal": principal, "subject": subject},
            )


class TrustedCallerAuthorizer(Authorizer):
    """Caller is an identity string already authenticated by the host."""

    def is_authorized(self, caller, principal, *, operation, subject, now) -> bool:
        # Identity strings only; SignedCall credentials need SignatureAuthorizer
        authorized = isinstance(caller, str) and caller == principal
        if not authorized:
            logger.warning(
                "Access denied: caller mismatch",
                extra={
                    "event": "access_control.caller_mismatch",
                    "operation": operation,
                    "principal": principal[:12],
                },
            )
        return authorized


@dataclass
class SignatureAuthorizer(Authorizer):
    """
    Signature-based authorization with replay protection.

    A ``SignedCall`` is accepted for ``principal`` only if its address is the
    one derived from its public key and equals ``principal``, it names the
    operation and subject being executed, its timestamp is within
    ``max_age_seconds`` of the registry clock, its nonce is unused, and the
    signature verifies.

    Once attached to a registry, used nonces live in the registry's store
    under ``NONCE`` and are written inside the operation's batch: a nonce is
    consumed only if the operation commits, and replay protection survives
    restarts. A detached authorizer tracks nonces in ``used_nonces`` for the
    life of the process and consumes them as soon as a call is authorized.
    Nonces older than the timestamp window are pruned, since their calls
    are rejected as stale anyway.
    """

    max_age_seconds: int = 300
    used_nonces: Dict[str, Dict[int, int]] = field(default_factory=dict)
    store: Optional[KeyValueStore] = None

    def attach(self, store: KeyValueStore) -> None:
        self.store = store

    def is_authorized(self, caller, principal, *, operation, subject, now) -> bool:
        if not isinstance(caller, SignedCall):
            return self._deny("access_control.unsigned_call", operation, principal)

        try:
            derived = public_key_to_address(caller.public_key)
        except ValueError:
            return self._deny("access_control.malformed_public_key", operation, principal)
        if derived != caller.address or caller.address != principal:
            return self._deny("access_control.address_mismatch", operation, principal)

        if caller.operation != operation or caller.subject != subject:
            return self._deny("access_control.operation_mismatch", operation, principal)

        age = abs(now - caller.timestamp)
        if age > self.max_age_seconds:
            return self._deny(
                "access_control.stale_request", operation, principal, age_seconds=age
            )

        seen = self._load_nonces(caller.address)
        if caller.nonce in seen:
            return self._deny(
                "access_control.replay_attack", operation, principal, nonce=caller.nonce
            )

        if not verify_signature_hex(caller.public_key, caller.message_hash(), caller.signature):
            return self._deny("access_control.invalid_signature", operation, principal)

        seen[caller.nonce] = caller.timestamp
        self._save_nonces(caller.address, seen, now)
        logger.info(
            "Access granted",
            extra={
                "event": "access_control.access_granted",
                "operation": operation,
                "address": caller.address[:12],
                "nonce": caller.nonce,
            },
        )
        return True

    def _load_nonces(self, address: str) -> Dict[int, int]:
        if self.store is None:
            return dict(self.used_nonces.get(address, {}))
        recorded = self.store.get(KEY_NONCES, {}).get(address, {})
        return {int(nonce): timestamp for nonce, timestamp in recorded.items()}

    def _save_nonces(self, address: str, nonces: Dict[int, int], now: int) -> None:
        live = {
            nonce: timestamp
            for nonce, timestamp in nonces.items()
            if now - timestamp <= self.max_age_seconds
        }
        pruned = len(nonces) - len(live)
        if pruned:
            logger.debug(
                "Pruned expired nonces",
                extra={"event": "access_control.nonce_cleanup", "cleared_nonces": pruned},
            )

        if self.store is None:
            self.used_nonces[address] = live
            return
        # JSON object keys are strings
        recorded = self.store.get(KEY_NONCES, {})
        recorded[address] = {str(nonce): timestamp for nonce, timestamp in live.items()}
        self.store.set(KEY_NONCES, recorded)

    @staticmethod
    def _deny(event: str, operation: str, principal: str, **fields: Any) -> bool:
        logger.warning(
            "Access denied",
            extra={"event": event, "operation": operation, "principal": principal[:12], **fields},
        )
        return False
