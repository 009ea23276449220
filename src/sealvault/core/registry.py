"""
Envelope registry: time-locked, secret-gated, vesting fund release.

The registry tracks envelopes of value owed to beneficiaries. A beneficiary
can claim the vested share of an envelope once it presents the committed
secret and the unlock time has passed. The owner creates envelopes, revokes
unclaimed remainders and reclaims expired envelopes.

The registry only accounts for amounts owed. The values returned by
``claim`` and ``refund_owner`` must be transferred by the caller.

Every public operation runs under a lock inside ``store.atomic()``, so a
failed call leaves the store exactly as it found it.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator

from . import metrics
from .auth import Authorizer, TrustedCallerAuthorizer
from .config import (
    KEY_ENVELOPES,
    KEY_GUARDIANS,
    KEY_OWNER,
    KEY_RECOVERY_DELAY,
    KEY_RECOVERY_THRESHOLD,
    RegistryConfig,
)
from .crypto_utils import secrets_match
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
)
from .models import I128_MAX, Envelope, VestSlice, build_schedule, coerce_bytes32
from .storage import InMemoryStore, KeyValueStore
from .vesting import vested_amount, vested_fraction

logger = logging.getLogger(__name__)


class EnvelopeRegistry:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        authorizer: Authorizer | None = None,
        time_provider: Callable[[], int] | None = None,
    ):
        self.store = store if store is not None else InMemoryStore()
        self.authorizer = authorizer or TrustedCallerAuthorizer()
        self.authorizer.attach(self.store)
        self._time_provider = time_provider or (lambda: int(time.time()))
        self._lock = threading.RLock()
        logger.info(
            "EnvelopeRegistry initialized with deterministic time provider: %s",
            bool(time_provider),
        )

    # ==================== Internals ====================

    def _current_time(self) -> int:
        timestamp = self._time_provider()
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return an integer timestamp") from exc

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        with self._lock, self.store.atomic():
            try:
                yield
            except EnvelopeError as exc:
                metrics.record_rejection(name, exc)
                logger.warning(
                    "Registry %s rejected: %s",
                    name,
                    exc.message,
                    extra={"event": f"envelope.{name}_rejected", "error_type": type(exc).__name__},
                )
                raise

    def _envelopes(self) -> dict[str, dict[str, Any]]:
        return self.store.get(KEY_ENVELOPES) or {}

    def _load(self, envelopes: dict[str, dict[str, Any]], key: str) -> Envelope:
        record = envelopes.get(key)
        if record is None:
            raise NotFound(f"Envelope {key[:16]} not found", details={"envelope_id": key})
        return Envelope.from_dict(record)

    def _save(self, envelopes: dict[str, dict[str, Any]], key: str, envelope: Envelope) -> None:
        envelopes[key] = envelope.to_dict()
        self.store.set(KEY_ENVELOPES, envelopes)

    def _require_owner(self, caller: Any, operation: str, subject: str, now: int) -> str:
        owner = self.store.get(KEY_OWNER)
        if owner is None:
            raise NotInitialized("Registry owner not set; call initialize first")
        self.authorizer.require_auth(
            caller, owner, operation=operation, subject=subject, now=now
        )
        return owner

    # ==================== Bootstrap & accessors ====================

    def initialize(self, config: RegistryConfig) -> None:
        """
        One-time bootstrap of owner identity and recovery configuration.

        Raises:
            AlreadyInitialized: If an owner is already stored
        """
        with self._operation("initialize"):
            if self.store.has(KEY_OWNER):
                raise AlreadyInitialized("Registry already initialized")
            self.store.set(KEY_OWNER, config.owner)
            self.store.set(KEY_GUARDIANS, list(config.guardians))
            self.store.set(KEY_RECOVERY_THRESHOLD, config.recovery_threshold)
            self.store.set(KEY_RECOVERY_DELAY, config.recovery_delay)
            self.store.set(KEY_ENVELOPES, {})
        logger.info(
            "Registry initialized for owner %s",
            config.owner[:12],
            extra={"event": "registry.initialized", "guardians": len(config.guardians)},
        )

    @property
    def is_initialized(self) -> bool:
        with self._lock:
            return self.store.has(KEY_OWNER)

    @property
    def owner(self) -> str:
        with self._lock:
            owner = self.store.get(KEY_OWNER)
        if owner is None:
            raise NotInitialized("Registry owner not set; call initialize first")
        return owner

    def recovery_config(self) -> RegistryConfig:
        """Stored bootstrap configuration, returned as persisted."""
        with self._lock, self.store.atomic():
            return RegistryConfig(
                owner=self.owner,
                guardians=tuple(self.store.get(KEY_GUARDIANS, [])),
                recovery_threshold=self.store.get(KEY_RECOVERY_THRESHOLD, 0),
                recovery_delay=self.store.get(KEY_RECOVERY_DELAY, 0),
            )

    # ==================== Owner operations ====================

    def create_envelope(
        self,
        caller: Any,
        envelope_id: bytes | str,
        beneficiary: str,
        amount: int,
        secret_hash: bytes | str,
        unlock_ts: int | None = None,
        vesting: Iterable[VestSlice | tuple[int, int]] = (),
        expiry_ts: int | None = None,
    ) -> None:
        """
        Commit ``amount`` to ``beneficiary`` under a new identifier.

        The vesting schedule is stored as given; its ordering and basis point
        total are not validated.

        Raises:
            Unauthorized: If the caller is not the owner
            InvalidAmount: If amount is not a positive signed 128-bit integer
            DuplicateEnvelope: If the identifier already exists
        """
        key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        with self._operation("create_envelope"):
            self._require_owner(caller, "create_envelope", key, self._current_time())

            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidAmount("Amount must be > 0", details={"amount": amount})
            if amount > I128_MAX:
                raise InvalidAmount("Amount exceeds the signed 128-bit range", details={"amount": amount})

            envelopes = self._envelopes()
            if key in envelopes:
                raise DuplicateEnvelope(f"Envelope {key[:16]} already exists", details={"envelope_id": key})

            envelope = Envelope(
                beneficiary=beneficiary,
                amount=amount,
                secret_hash=secret_hash,
                unlock_ts=unlock_ts,
                vesting=build_schedule(vesting),
                expiry_ts=expiry_ts,
            )
            self._save(envelopes, key, envelope)

        metrics.record_creation(amount)
        logger.info(
            "Envelope %s created for %s",
            key[:16],
            beneficiary[:12],
            extra={
                "event": "envelope.created",
                "amount": amount,
                "slices": len(envelope.vesting),
                "unlock_ts": unlock_ts,
                "expiry_ts": expiry_ts,
            },
        )

    def revoke_envelope(self, caller: Any, envelope_id: bytes | str) -> None:
        """
        Stop all further claims on an envelope.

        ``claimed`` is left untouched: any vested but unclaimed amount is
        forfeited and is not returned to either party.

        Raises:
            Unauthorized, NotFound, AlreadyRevoked, FullyClaimed
        """
        key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        with self._operation("revoke_envelope"):
            self._require_owner(caller, "revoke_envelope", key, self._current_time())
            envelopes = self._envelopes()
            envelope = self._load(envelopes, key)

            if envelope.revoked:
                raise AlreadyRevoked(f"Envelope {key[:16]} already revoked")
            if envelope.claimed >= envelope.amount:
                raise FullyClaimed(f"Envelope {key[:16]} already fully claimed")

            self._save(envelopes, key, envelope.copy(revoked=True))

        metrics.record_revocation()
        logger.info(
            "Envelope %s revoked",
            key[:16],
            extra={"event": "envelope.revoked", "unclaimed": envelope.unclaimed},
        )

    def refund_owner(self, caller: Any, envelope_id: bytes | str) -> int:
        """
        Close an expired envelope and return its unclaimed remainder.

        Returns:
            Amount the caller must return to the owner; 0 if nothing is left

        Raises:
            Unauthorized, NotFound, NoExpirySet, NotYetExpired, AlreadyRevoked
        """
        key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        with self._operation("refund_owner"):
            now = self._current_time()
            self._require_owner(caller, "refund_owner", key, now)
            envelopes = self._envelopes()
            envelope = self._load(envelopes, key)

            if envelope.expiry_ts is None:
                raise NoExpirySet(f"Envelope {key[:16]} has no expiry set")
            if now < envelope.expiry_ts:
                raise NotYetExpired(
                    f"Envelope {key[:16]} expires at {envelope.expiry_ts}",
                    details={"expiry_ts": envelope.expiry_ts, "now": now},
                )
            if envelope.revoked:
                raise AlreadyRevoked(f"Envelope {key[:16]} already revoked")

            unclaimed = envelope.amount - envelope.claimed
            if unclaimed <= 0:
                logger.info(
                    "Nothing to refund for envelope %s",
                    key[:16],
                    extra={"event": "envelope.refund_noop"},
                )
                return 0

            self._save(envelopes, key, envelope.copy(revoked=True, claimed=envelope.amount))

        metrics.record_refund(unclaimed)
        logger.info(
            "Refunded %d from envelope %s",
            unclaimed,
            key[:16],
            extra={"event": "envelope.refunded", "amount": unclaimed},
        )
        return unclaimed

    # ==================== Beneficiary operations ====================

    def claim(self, caller: Any, envelope_id: bytes | str, provided_secret: bytes | str) -> int:
        """
        Release the currently vested, not yet claimed share of an envelope.

        Returns:
            Amount the caller must transfer to the beneficiary. 0 when nothing
            new has vested, in which case no state changes.

        Raises:
            NotFound, Unauthorized, Revoked, InvalidSecret, Locked
        """
        key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        with self._operation("claim"):
            now = self._current_time()
            envelopes = self._envelopes()
            envelope = self._load(envelopes, key)

            self.authorizer.require_auth(
                caller, envelope.beneficiary, operation="claim", subject=key, now=now
            )
            if envelope.revoked:
                raise Revoked(f"Envelope {key[:16]} revoked")
            if not _secret_matches(provided_secret, envelope.secret_hash):
                raise InvalidSecret("Invalid secret")
            if envelope.unlock_ts is not None and now < envelope.unlock_ts:
                raise Locked(
                    f"Envelope {key[:16]} locked until {envelope.unlock_ts}",
                    details={"unlock_ts": envelope.unlock_ts, "now": now},
                )

            vested = vested_amount(envelope.amount, vested_fraction(envelope.vesting, now))
            if vested <= envelope.claimed:
                metrics.record_claim(0)
                logger.debug(
                    "No newly vested amount for envelope %s",
                    key[:16],
                    extra={"event": "envelope.claim_noop", "claimed": envelope.claimed},
                )
                return 0

            delta = vested - envelope.claimed
            self._save(envelopes, key, envelope.copy(claimed=vested))

        metrics.record_claim(delta)
        logger.info(
            "Claimed %d from envelope %s",
            delta,
            key[:16],
            extra={"event": "envelope.claimed", "claimed_total": vested, "amount": envelope.amount},
        )
        return delta

    # ==================== Queries ====================

    def get_envelope(self, envelope_id: bytes | str) -> Envelope:
        """Return a detached copy of the envelope; no authorization required."""
        key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        with self._lock:
            return self._load(self._envelopes(), key)

    def claimable(self, envelope_id: bytes | str) -> int:
        """Amount a valid claim would release right now; 0 if revoked or locked."""
        with self._lock:
            envelope = self.get_envelope(envelope_id)
            now = self._current_time()
        if envelope.revoked:
            return 0
        if envelope.unlock_ts is not None and now < envelope.unlock_ts:
            return 0
        vested = vested_amount(envelope.amount, vested_fraction(envelope.vesting, now))
        return max(0, vested - envelope.claimed)

    def envelope_ids(self) -> list[bytes]:
        with self._lock:
            return [bytes.fromhex(key) for key in self._envelopes()]


def _secret_matches(provided: bytes | str, expected: bytes) -> bool:
    try:
        provided_bytes = coerce_bytes32(provided, "Secret")
    except ValueError:
        return False
    return secrets_match(provided_bytes, expected)
