"""Tests for swap detection and proportional mirror sizing."""

import pytest

from strategy_service.config import Settings
from strategy_service.engine.mirror import (
    DetectedSwap,
    MirrorPolicy,
    account_keys,
    compute_mirror_amount,
    detect_swap,
)
from strategy_service.utils.constants import SOL_MINT, USDC_MINT

OWNER = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
OTHER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def _tb(owner, mint, raw, decimals=6, index=1):
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(raw), "decimals": decimals},
    }


def _tx(pre_lamports, post_lamports, pre_tokens=(), post_tokens=(), keys=None, loaded=None, err=None):
    return {
        "transaction": {"message": {"accountKeys": keys if keys is not None else [{"pubkey": OWNER, "signer": True}]}},
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": [pre_lamports],
            "postBalances": [post_lamports],
            "preTokenBalances": list(pre_tokens),
            "postTokenBalances": list(post_tokens),
            "loadedAddresses": loaded or {"writable": [], "readonly": []},
        },
    }


def _swap(input_is_native=False, their_amount=50.0, their_pre=100.0):
    return DetectedSwap(
        input_mint=SOL_MINT if input_is_native else USDC_MINT,
        output_mint=BONK,
        their_amount=their_amount,
        their_pre_balance=their_pre,
        input_decimals=9 if input_is_native else 6,
        output_decimals=5,
        input_is_native=input_is_native,
        output_is_native=False,
    )


# ---------------------------------------------------------------------------
# 1. detect_swap
# ---------------------------------------------------------------------------

class TestDetectSwap:
    def test_token_to_token(self):
        tx = _tx(
            5_000_000_000, 4_999_995_000,
            pre_tokens=[_tb(OWNER, USDC_MINT, 1_000_000_000), _tb(OWNER, BONK, 0, decimals=5, index=2)],
            post_tokens=[_tb(OWNER, USDC_MINT, 500_000_000), _tb(OWNER, BONK, 12_345_00000, decimals=5, index=2)],
        )
        swap = detect_swap(tx, OWNER)
        assert swap.input_mint == USDC_MINT
        assert swap.output_mint == BONK
        assert swap.their_amount == pytest.approx(500.0)
        assert swap.their_pre_balance == pytest.approx(1000.0)
        assert swap.pct_of_their_balance == pytest.approx(50.0)
        assert not swap.input_is_native

    def test_native_input(self):
        tx = _tx(
            10_000_000_000, 8_000_000_000,
            post_tokens=[_tb(OWNER, BONK, 1_000_00000, decimals=5)],
        )
        swap = detect_swap(tx, OWNER)
        assert swap.input_mint == SOL_MINT
        assert swap.input_is_native
        assert swap.pct_of_their_balance == pytest.approx(20.0)
        assert swap.output_mint == BONK

    def test_native_output(self):
        tx = _tx(
            1_000_000_000, 3_000_000_000,
            pre_tokens=[_tb(OWNER, USDC_MINT, 300_000_000)],
            post_tokens=[_tb(OWNER, USDC_MINT, 0)],
        )
        swap = detect_swap(tx, OWNER)
        assert swap.input_mint == USDC_MINT
        assert swap.output_mint == SOL_MINT
        assert swap.output_is_native
        assert swap.pct_of_their_balance == pytest.approx(100.0)

    def test_wrapped_sol_decrease_is_not_token_input(self):
        tx = _tx(
            10_000_000_000, 9_000_000_000,
            pre_tokens=[_tb(OWNER, SOL_MINT, 1_000_000_000, decimals=9)],
            post_tokens=[_tb(OWNER, SOL_MINT, 0, decimals=9), _tb(OWNER, BONK, 500, decimals=5, index=2)],
        )
        swap = detect_swap(tx, OWNER)
        assert swap.input_mint == SOL_MINT
        assert swap.input_is_native

    def test_other_owners_balances_ignored(self):
        tx = _tx(
            1_000_000_000, 999_995_000,
            pre_tokens=[_tb(OTHER, USDC_MINT, 1_000_000)],
            post_tokens=[_tb(OTHER, USDC_MINT, 0), _tb(OTHER, BONK, 10, decimals=5, index=2)],
        )
        assert detect_swap(tx, OWNER) is None

    def test_receive_only_has_no_input(self):
        tx = _tx(1_000_000_000, 999_995_000, post_tokens=[_tb(OWNER, BONK, 10_000, decimals=5)])
        assert detect_swap(tx, OWNER) is None

    def test_no_output_aborts(self):
        tx = _tx(
            1_000_000_000, 999_995_000,
            pre_tokens=[_tb(OWNER, USDC_MINT, 1_000_000)],
            post_tokens=[_tb(OWNER, USDC_MINT, 0)],
        )
        assert detect_swap(tx, OWNER) is None

    def test_failed_or_missing_transaction(self):
        assert detect_swap(None, OWNER) is None
        assert detect_swap({"transaction": {}, "meta": None}, OWNER) is None
        tx = _tx(10_000_000_000, 8_000_000_000, post_tokens=[_tb(OWNER, BONK, 1, decimals=5)], err={"InstructionError": []})
        assert detect_swap(tx, OWNER) is None

    def test_owner_in_loaded_addresses(self):
        tx = _tx(
            10_000_000_000, 5_000_000_000,
            post_tokens=[_tb(OWNER, BONK, 1_000, decimals=5)],
            keys=[],
            loaded={"writable": [OWNER], "readonly": []},
        )
        swap = detect_swap(tx, OWNER)
        assert swap.input_is_native
        assert swap.pct_of_their_balance == pytest.approx(50.0)

    def test_account_keys_accepts_plain_strings(self):
        tx = {"transaction": {"message": {"accountKeys": [OWNER, OTHER]}}, "meta": {}}
        assert account_keys(tx) == [OWNER, OTHER]


# ---------------------------------------------------------------------------
# 2. compute_mirror_amount
# ---------------------------------------------------------------------------

class TestComputeMirrorAmount:
    policy = MirrorPolicy()

    def test_dust_rule_sells_entire_token_balance(self):
        sizing = compute_mirror_amount(_swap(their_amount=99, their_pre=100), 37.5, 50, self.policy, 1.0)
        assert sizing.should_mirror
        assert sizing.sell_entire_balance
        assert sizing.amount == 37.5

    def test_dust_rule_on_native_input_keeps_fee_reserve(self):
        sizing = compute_mirror_amount(_swap(True, their_amount=9.9, their_pre=10), 2.0, 10, self.policy)
        assert sizing.sell_entire_balance
        assert sizing.amount == pytest.approx(2.0 - self.policy.native_fee_reserve)

    def test_native_balance_within_fee_reserve_skips(self):
        sizing = compute_mirror_amount(_swap(True, their_amount=9.9, their_pre=10), 0.00001, 10, self.policy)
        assert not sizing.should_mirror
        assert "fees" in sizing.skip_reason

    def test_native_floor_needs_spendable_balance(self):
        sizing = compute_mirror_amount(_swap(True, their_amount=1, their_pre=100), 0.005, 10, self.policy)
        assert not sizing.should_mirror
        assert "minimum" in sizing.skip_reason

    def test_native_scales_by_job_and_their_pct(self):
        sizing = compute_mirror_amount(_swap(True, their_amount=2, their_pre=10), 10.0, 50, self.policy)
        assert sizing.amount == pytest.approx(1.0)
        assert not sizing.sell_entire_balance

    def test_token_scales_by_their_pct_only(self):
        sizing = compute_mirror_amount(_swap(their_amount=25, their_pre=100), 80.0, 10, self.policy, 1.0)
        assert sizing.amount == pytest.approx(20.0)

    def test_below_floor_rounds_up_when_covered(self):
        sizing = compute_mirror_amount(_swap(their_amount=5, their_pre=100), 1.0, 100, self.policy, 1.0)
        assert sizing.should_mirror
        assert sizing.amount == pytest.approx(0.1)

    def test_below_floor_aborts_when_not_covered(self):
        sizing = compute_mirror_amount(_swap(their_amount=5, their_pre=100), 0.05, 100, self.policy, 1.0)
        assert not sizing.should_mirror
        assert "minimum" in sizing.skip_reason

    def test_native_floor(self):
        sizing = compute_mirror_amount(_swap(True, their_amount=1, their_pre=100), 1.0, 10, self.policy)
        assert sizing.amount == pytest.approx(0.005)

    def test_token_input_requires_sol_reserve(self):
        sizing = compute_mirror_amount(_swap(), 100.0, 100, self.policy, our_native_balance=0.001)
        assert not sizing.should_mirror
        assert "fees" in sizing.skip_reason

    def test_zero_balance_skips(self):
        sizing = compute_mirror_amount(_swap(), 0.0, 100, self.policy, 1.0)
        assert not sizing.should_mirror

    def test_custom_policy_threshold(self):
        policy = MirrorPolicy(dust_threshold_pct=40)
        sizing = compute_mirror_amount(_swap(their_amount=50, their_pre=100), 10.0, 100, policy, 1.0)
        assert sizing.sell_entire_balance


def test_policy_from_settings():
    settings = Settings(
        database_url="sqlite://",
        dust_threshold_pct=95.0,
        min_native_amount=0.01,
        min_token_amount=1.0,
        min_native_reserve=0.003,
        fee_reserve_lamports=50_000,
    )
    policy = MirrorPolicy.from_settings(settings)
    assert policy == MirrorPolicy(
        dust_threshold_pct=95.0,
        min_native_amount=0.01,
        min_token_amount=1.0,
        min_native_reserve=0.003,
        native_fee_reserve=0.00005,
    )
