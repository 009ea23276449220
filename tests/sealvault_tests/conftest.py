import pytest

from sealvault.core.config import RegistryConfig
from sealvault.core.crypto_utils import hash_secret
from sealvault.core.registry import EnvelopeRegistry
from sealvault.core.storage import InMemoryStore

from tests.sealvault_tests.helpers import BENEFICIARY, OWNER, ManualClock, envelope_id


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def secret_hash():
    return hash_secret("open sesame")


@pytest.fixture
def registry(store, clock):
    """Registry bootstrapped with OWNER and two inert guardians."""
    reg = EnvelopeRegistry(store=store, time_provider=clock)
    reg.initialize(
        RegistryConfig(
            owner=OWNER,
            guardians=("SVguardian1", "SVguardian2"),
            recovery_threshold=2,
            recovery_delay=86400,
        )
    )
    return reg


@pytest.fixture
def make_envelope(registry, secret_hash):
    """Create an envelope owned by OWNER for BENEFICIARY and return its ID."""
    counter = {"next": 1}

    def _make(amount=1000, unlock_ts=None, vesting=(), expiry_ts=None, beneficiary=BENEFICIARY):
        env_id = envelope_id(counter["next"])
        counter["next"] += 1
        registry.create_envelope(
            OWNER,
            env_id,
            beneficiary=beneficiary,
            amount=amount,
            secret_hash=secret_hash,
            unlock_ts=unlock_ts,
            vesting=vesting,
            expiry_ts=expiry_ts,
        )
        return env_id

    return _make
