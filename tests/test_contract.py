"""
Main contract tests.

Scenario flow mirrors a deployment: deploy, dispatch, roll up, update num,
wire the reward token and move tokens around.
"""

import pytest

from zkreduce.zkapp.contract import MainContract
from zkreduce.zkapp.hardening import (
    InvariantViolation,
    SignatureMismatchError,
    StaleCheckpointError,
    UnauthorizedTransitionError,
)
from zkreduce.zkapp.hashchain import INITIAL, Action, advance
from zkreduce.zkapp.ledger import NATIVE_TOKEN
from zkreduce.zkapp.recursion import ProofComposer
from zkreduce.zkapp.reducer import CLAMPED
from zkreduce.zkapp.reward import RewardToken

DEPLOYER = "deployer"
VETERAN_STAKE = 3_000_000_000


@pytest.fixture
def zkapp(network):
    contract = MainContract("zk-main", network)
    contract.deploy(DEPLOYER)
    return contract


@pytest.fixture
def zkapp_v2(network):
    contract = MainContract("zk-main-v2", network, policy=CLAMPED)
    contract.deploy(DEPLOYER)
    return contract


@pytest.fixture
def reward(network, program):
    token = RewardToken("zk-reward", program, network.tokens, secret=1111)
    network.register(token.address, token)
    return token


class TestDeploy:

    def test_initial_state(self, zkapp, network):
        assert zkapp.num == 1
        assert zkapp.counter == 0
        assert zkapp.actions_hash == INITIAL
        assert zkapp.deployer == DEPLOYER
        assert zkapp.account.read("block_height") == network.block_height

    def test_emits_deployed_by(self, zkapp):
        events = zkapp.fetch_events("DeployedBy")
        assert len(events) == 1
        assert events[0].deployer == DEPLOYER

    def test_second_init_rejected(self, zkapp):
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.deploy("someone-else")
        assert zkapp.deployer == DEPLOYER

    def test_undeployed_contract_refuses_transitions(self, network):
        contract = MainContract("zk-fresh", network)
        with pytest.raises(UnauthorizedTransitionError):
            contract.increment_counter()
        with pytest.raises(UnauthorizedTransitionError):
            contract.rollup()


class TestCounter:

    def test_three_increments_then_rollup(self, zkapp):
        before = zkapp.checkpoint()
        for _ in range(3):
            zkapp.increment_counter()
        assert zkapp.counter == 0

        after = zkapp.rollup()

        expected = before.chain_pointer
        for _ in range(3):
            expected = advance(expected, Action(1))
        assert zkapp.counter == before.state_value + 3
        assert after.chain_pointer == expected
        assert zkapp.actions_hash == expected

    def test_increment_by_2(self, zkapp):
        zkapp.increment_counter()
        zkapp.increment_counter_by_2()
        zkapp.rollup()
        assert zkapp.counter == 3

    def test_dispatch_events(self, zkapp):
        zkapp.increment_counter()
        zkapp.rollup()
        assert len(zkapp.fetch_events("ActionDispatched")) == 1
        assert zkapp.fetch_events("CheckpointAdvanced")[0].state_value == 1

    def test_stale_rollup(self, zkapp):
        stale = zkapp.checkpoint()
        zkapp.increment_counter()
        zkapp.rollup()
        zkapp.increment_counter()
        with pytest.raises(StaleCheckpointError):
            zkapp.rollup(stale)
        assert zkapp.counter == 1
        assert zkapp.rollup_with_retry().state_value == 2

    def test_clamped_contract(self, zkapp_v2):
        zkapp_v2.decrease_counter()
        zkapp_v2.decrease_counter()
        zkapp_v2.increment_counter()
        zkapp_v2.rollup()
        assert zkapp_v2.counter == 1

        zkapp_v2.increment_counter()
        zkapp_v2.decrease_counter()
        zkapp_v2.decrease_counter()
        zkapp_v2.decrease_counter()
        zkapp_v2.rollup()
        assert zkapp_v2.counter == 0

    def test_policy_specific_methods(self, zkapp, zkapp_v2):
        with pytest.raises(InvariantViolation):
            zkapp.decrease_counter()
        with pytest.raises(InvariantViolation):
            zkapp_v2.increment_counter_by_2()


class TestNumUpdates:

    def test_veteran_update(self, zkapp, network):
        network.create_account("vet", VETERAN_STAKE)
        assert zkapp.veteran_update("vet") == 3
        assert zkapp.fetch_events("UpdatedNum")[-1].num == 3

    def test_veteran_needs_stake(self, zkapp, network):
        network.create_account("poor", VETERAN_STAKE - 1)
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.veteran_update("poor")
        assert zkapp.num == 1

    def test_veteran_needs_self_delegation(self, zkapp, network):
        network.create_account("vet", VETERAN_STAKE)
        network.set_delegate("vet", "pool")
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.veteran_update("vet")

    def test_regular_update(self, zkapp, network):
        network.set_delegate("user", "pool")
        assert zkapp.regular_update("user") == 2

    def test_regular_update_rejects_self_delegation(self, zkapp):
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.regular_update("user")
        assert zkapp.num == 1


class TestTokens:

    def test_set_reward_token_admin_only(self, zkapp):
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.set_reward_token("intruder", "zk-reward")
        zkapp.set_reward_token(DEPLOYER, "zk-reward")
        assert zkapp.account.read("reward_token_addr") == "zk-reward"

    def test_mint_new_tokens(self, zkapp, reward):
        zkapp.set_reward_token(DEPLOYER, "zk-reward")
        zkapp.mint_new_tokens("sender", "sender")
        assert zkapp.token_balance("sender") == 10000
        assert reward.balance_of("sender") == 100

    def test_mint_requires_reward_token(self, zkapp):
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.mint_new_tokens("sender", "sender")
        assert zkapp.token_balance("sender") == 0

    def test_mint_with_unregistered_reward_token(self, zkapp):
        zkapp.set_reward_token(DEPLOYER, "zk-nowhere")
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.mint_new_tokens("sender", "sender")

    def test_mint_is_all_or_nothing(self, zkapp, network, program):
        other = RewardToken("zk-other", program, network.tokens, secret=2222)
        network.register(other.address, other)
        zkapp.set_reward_token(DEPLOYER, "zk-other")
        with pytest.raises(SignatureMismatchError):
            zkapp.mint_new_tokens("sender", "receiver")
        assert zkapp.token_balance("receiver") == 0
        assert other.balance_of("sender") == 0

    def test_reward_token_must_share_ledger(self, zkapp, network, program):
        detached = RewardToken("zk-detached", program, secret=1111)
        network.register(detached.address, detached)
        zkapp.set_reward_token(DEPLOYER, "zk-detached")
        with pytest.raises(InvariantViolation):
            zkapp.mint_new_tokens("sender", "sender")
        assert zkapp.token_balance("sender") == 0
        assert detached.balance_of("sender") == 0

    def test_send_and_burn(self, zkapp, reward):
        zkapp.set_reward_token(DEPLOYER, "zk-reward")
        zkapp.mint_new_tokens("sender", "sender")

        zkapp.send_tokens("sender", "receiver", 10)
        zkapp.burn_tokens("sender", "sender", 5)
        assert zkapp.token_balance("receiver") == 10
        assert zkapp.token_balance("sender") == 9985

    def test_cannot_burn_others_tokens(self, zkapp, reward):
        zkapp.set_reward_token(DEPLOYER, "zk-reward")
        zkapp.mint_new_tokens("sender", "sender")
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.burn_tokens("mallory", "sender", 5)
        assert zkapp.token_balance("sender") == 10000

    def test_send_more_than_balance(self, zkapp):
        with pytest.raises(InvariantViolation):
            zkapp.send_tokens("sender", "receiver", 1)

    def test_new_payout(self, zkapp, network):
        network.create_account("zk-main", 1000)
        assert zkapp.new_payout("newcomer") == 500
        assert network.tokens.balance_of("newcomer", NATIVE_TOKEN) == 500
        assert network.tokens.balance_of("zk-main", NATIVE_TOKEN) == 500

    def test_payout_only_to_new_accounts(self, zkapp, network):
        network.create_account("zk-main", 1000)
        network.create_account("old-timer", 1)
        with pytest.raises(UnauthorizedTransitionError):
            zkapp.new_payout("old-timer")


class TestRewardScenario:

    def test_recursive_proof_reward(self, zkapp, reward, program, alice_key, alice):
        zkapp.set_reward_token(DEPLOYER, "zk-reward")
        merged = ProofComposer(program).compose(alice_key, 1111, 8).merged
        before = reward.balance_of(alice)
        reward.reward_recursive_proof(alice, merged)
        assert reward.balance_of(alice) == before + 88888888
