"""
Shared pytest fixtures for the FarmFlow test suite.
"""

import pytest

from farmflow_core.assets import TokenLedger
from farmflow_core.crypto_utils import address_from_label
from farmflow_core.emission import EmissionState
from farmflow_core.staking_ledger import CUSTODY_ADDRESS, StakingLedger

REWARD_PER_BLOCK = 1_000_000
STARTING_STAKE = 1_000_000


@pytest.fixture
def owner():
    return address_from_label("test/owner")


@pytest.fixture
def dev():
    return address_from_label("test/dev")


@pytest.fixture
def community():
    return address_from_label("test/community")


@pytest.fixture
def alice():
    return address_from_label("test/alice")


@pytest.fixture
def bob():
    return address_from_label("test/bob")


@pytest.fixture
def reward_token():
    """Reward asset mintable by the ledger's custody account."""
    return TokenLedger("FARM", minters={CUSTODY_ADDRESS})


def _funded_stake_token(asset_id, holders):
    token = TokenLedger(asset_id)
    for holder in holders:
        token.credit(holder, STARTING_STAKE)
        token.approve(holder, CUSTODY_ADDRESS, 10 ** 30)
    return token


@pytest.fixture
def stake_token(alice, bob):
    """Stake asset with Alice and Bob funded and custody approved."""
    return _funded_stake_token("LP-A", [alice, bob])


@pytest.fixture
def second_stake_token(alice, bob):
    return _funded_stake_token("LP-B", [alice, bob])


@pytest.fixture
def emission(dev, community):
    return EmissionState(
        reward_per_block=REWARD_PER_BLOCK,
        dev_address=dev,
        community_address=community,
    )


@pytest.fixture
def ledger(reward_token, owner, emission):
    """Ledger with no pools and invariant checking on."""
    return StakingLedger(reward_token, owner, emission, check_invariants=True)


@pytest.fixture
def farm(ledger, owner, stake_token):
    """Ledger with a single pool (pid 0, weight 100) registered at block 0."""
    ledger.add_pool(owner, stake_token, 100, block=0)
    return ledger
