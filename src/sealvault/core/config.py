"""
Bootstrap configuration for an envelope registry.

The owner identity gates envelope creation, revocation and refunds. The
guardian list and recovery parameters are persisted alongside it but carry
no behaviour in the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Store keys
KEY_OWNER = "OWNER"
KEY_ENVELOPES = "ENVS"
KEY_GUARDIANS = "GUARD"
KEY_RECOVERY_THRESHOLD = "R_TH"
KEY_RECOVERY_DELAY = "R_DL"
KEY_NONCES = "NONCE"


@dataclass(frozen=True)
class RegistryConfig:
    owner: str
    guardians: tuple[str, ...] = field(default_factory=tuple)
    recovery_threshold: int = 0
    recovery_delay: int = 0

    def __post_init__(self) -> None:
        if not self.owner:
            raise ValueError("Owner cannot be empty.")
        object.__setattr__(self, "guardians", tuple(self.guardians))
        for name in ("recovery_threshold", "recovery_delay"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "guardians": list(self.guardians),
            "recovery_threshold": self.recovery_threshold,
            "recovery_delay": self.recovery_delay,
        }
