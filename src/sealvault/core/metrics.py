"""
Envelope registry instrumentation.

Prometheus counters tracking envelope lifecycle events and the amounts the
registry authorizes for payout. Helpers are safe to call from every
registry path.
"""

from __future__ import annotations

from prometheus_client import Counter

envelopes_created_counter = Counter(
    "sealvault_envelopes_created_total", "Total envelopes created"
)

envelope_value_committed_counter = Counter(
    "sealvault_envelope_value_committed_total", "Total value committed to new envelopes"
)

claim_payout_counter = Counter(
    "sealvault_claim_payout_total", "Total value released to beneficiaries by claims"
)

claim_events = Counter(
    "sealvault_claim_events_total", "Claim calls by outcome", ["outcome"]
)

revocations_counter = Counter(
    "sealvault_revocations_total", "Total envelopes revoked by the owner"
)

refund_payout_counter = Counter(
    "sealvault_refund_payout_total", "Total unclaimed value returned to the owner"
)

rejected_operations = Counter(
    "sealvault_rejected_operations_total",
    "Registry calls aborted with an error",
    ["operation", "error"],
)


def record_creation(amount: int) -> None:
    envelopes_created_counter.inc()
    envelope_value_committed_counter.inc(amount)


def record_claim(delta: int) -> None:
    """Count a successful claim; zero deltas are idempotent no-ops."""
    if delta <= 0:
        claim_events.labels(outcome="noop").inc()
        return
    claim_events.labels(outcome="paid").inc()
    claim_payout_counter.inc(delta)


def record_revocation() -> None:
    revocations_counter.inc()


def record_refund(amount: int) -> None:
    if amount <= 0:
        return
    refund_payout_counter.inc(amount)


def record_rejection(operation: str, exc: Exception) -> None:
    rejected_operations.labels(operation=operation, error=type(exc).__name__).inc()
