"""
SealVault - Time-Locked Envelope Registry

Tracks envelopes of value owed to beneficiaries, releasable once the
committed secret is presented, the unlock time has passed and the vesting
schedule has accrued.

Main Components:
- core.registry: EnvelopeRegistry state machine
- core.vesting: basis point vesting evaluator
- core.storage / core.auth: injected store and caller authorization
- cli: command-line interface
"""

__version__ = "0.1.0"
__author__ = "SealVault Development Team"

from sealvault.core import EnvelopeRegistry, RegistryConfig

__all__ = ["EnvelopeRegistry", "RegistryConfig", "__version__"]
