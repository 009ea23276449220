"""
Envelope and vesting slice records.

Records are plain dataclasses with JSON-friendly ``to_dict``/``from_dict``
helpers so any key/value store can persist them. Byte fields are encoded as
lowercase hex.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable

I64_MIN = -(2**63)
I64_MAX = 2**63 - 1
U32_MAX = 2**32 - 1
I128_MIN = -(2**127)
I128_MAX = 2**127 - 1

ID_LENGTH = 32
HASH_LENGTH = 32


def _require_int(value: Any, name: str, low: int, high: int) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer.")
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}.")
    return value


def _optional_timestamp(value: Any, name: str) -> int | None:
    if value is None:
        return None
    return _require_int(value, name, I64_MIN, I64_MAX)


def coerce_bytes32(value: bytes | bytearray | str, name: str = "value") -> bytes:
    """Normalize a 32-byte value given as bytes or hex (optionally 0x-prefixed)."""
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            value = bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"{name} must be valid hex.") from exc
    if not isinstance(value, (bytes, bytearray)):
        raise ValueError(f"{name} must be bytes or a hex string.")
    if len(value) != ID_LENGTH:
        raise ValueError(f"{name} must be exactly {ID_LENGTH} bytes.")
    return bytes(value)


@dataclass(frozen=True)
class VestSlice:
    """By time ``ts``, an additional ``bp`` basis points of the amount unlock."""

    ts: int
    bp: int

    def __post_init__(self) -> None:
        _require_int(self.ts, "Vesting slice timestamp", I64_MIN, I64_MAX)
        _require_int(self.bp, "Vesting slice basis points", 0, U32_MAX)

    def to_dict(self) -> dict[str, int]:
        return {"ts": self.ts, "bp": self.bp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VestSlice":
        return cls(ts=data["ts"], bp=data["bp"])


@dataclass
class Envelope:
    """
    A single escrow record committing ``amount`` to ``beneficiary``.

    ``claimed`` only grows through claims and is forced to ``amount`` by a
    refund. ``revoked`` is terminal.
    """

    beneficiary: str
    amount: int
    secret_hash: bytes
    unlock_ts: int | None = None
    vesting: tuple[VestSlice, ...] = field(default_factory=tuple)
    claimed: int = 0
    expiry_ts: int | None = None
    revoked: bool = False

    def __post_init__(self) -> None:
        if not self.beneficiary:
            raise ValueError("Beneficiary cannot be empty.")
        self.secret_hash = coerce_bytes32(self.secret_hash, "Secret hash")
        self.unlock_ts = _optional_timestamp(self.unlock_ts, "Unlock timestamp")
        self.expiry_ts = _optional_timestamp(self.expiry_ts, "Expiry timestamp")
        self.vesting = tuple(self.vesting)
        for vest_slice in self.vesting:
            if not isinstance(vest_slice, VestSlice):
                raise ValueError("Vesting entries must be VestSlice instances.")

    @property
    def unclaimed(self) -> int:
        return self.amount - self.claimed

    def copy(self, **changes: Any) -> "Envelope":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "beneficiary": self.beneficiary,
            "amount": self.amount,
            "secret_hash": self.secret_hash.hex(),
            "unlock_ts": self.unlock_ts,
            "vesting": [s.to_dict() for s in self.vesting],
            "claimed": self.claimed,
            "expiry_ts": self.expiry_ts,
            "revoked": self.revoked,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Envelope":
        return cls(
            beneficiary=data["beneficiary"],
            amount=data["amount"],
            secret_hash=data["secret_hash"],
            unlock_ts=data.get("unlock_ts"),
            vesting=tuple(VestSlice.from_dict(s) for s in data.get("vesting", [])),
            claimed=data.get("claimed", 0),
            expiry_ts=data.get("expiry_ts"),
            revoked=bool(data.get("revoked", False)),
        )


def build_schedule(slices: Iterable[VestSlice | tuple[int, int] | dict[str, int]]) -> tuple[VestSlice, ...]:
    """Accept slices as VestSlice, ``(ts, bp)`` pairs or ``{"ts", "bp"}`` dicts."""
    schedule = []
    for item in slices:
        if isinstance(item, VestSlice):
            schedule.append(item)
        elif isinstance(item, dict):
            schedule.append(VestSlice.from_dict(item))
        else:
            ts, bp = item
            schedule.append(VestSlice(ts=ts, bp=bp))
    return tuple(schedule)
