"""Shared constants and helpers for SealVault tests."""

OWNER = "SVowner"
BENEFICIARY = "SVbeneficiary"
STRANGER = "SVstranger"
START_TIME = 1_700_000_000


class ManualClock:
    """Deterministic time provider for registry tests."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def envelope_id(n: int) -> bytes:
    return n.to_bytes(32, "big")
