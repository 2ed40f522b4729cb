"""Tests for payout failure classification."""

import pytest

from earnings.services.failure_classifier import (
    FINAL_REASONS,
    SYSTEM_RECOVERABLE_REASONS,
    USER_ACTIONABLE_REASONS,
    classify,
    describe,
    is_recognized,
    is_user_actionable,
)
from earnings.state_machines import FailureReason


class TestClassify:
    @pytest.mark.parametrize(
        "reason",
        [
            "account_closed",
            "invalid_account_number",
            FailureReason.MISSING_STRIPE_ACCOUNT,
            FailureReason.PAYOUTS_DISABLED,
            FailureReason.ACCOUNT_RESTRICTED,
        ],
    )
    def test_user_actionable(self, reason):
        result = classify(reason)

        assert result.requires_user_action is True
        assert result.system_recoverable is False

    @pytest.mark.parametrize(
        "reason",
        [
            FailureReason.BALANCE_INSUFFICIENT,
            FailureReason.COULD_NOT_PROCESS,
            FailureReason.UNKNOWN_TRANSFER_ERROR,
            FailureReason.PAYOUT_INITIATION_FAILED,
        ],
    )
    def test_system_recoverable(self, reason):
        result = classify(reason)

        assert result.system_recoverable is True
        assert result.requires_user_action is False

    @pytest.mark.parametrize(
        "reason", [FailureReason.INSUFFICIENT_FUNDS, FailureReason.WORKER_NOT_FOUND]
    )
    def test_final(self, reason):
        assert classify(reason) == (False, False)
        assert is_recognized(reason) is True

    @pytest.mark.parametrize("reason", ["some_new_stripe_code", "", None])
    def test_unknown_reason_is_final_and_unrecognized(self, reason):
        assert classify(reason) == (False, False)
        assert is_recognized(reason) is False

    def test_reason_sets_are_disjoint(self):
        assert not USER_ACTIONABLE_REASONS & SYSTEM_RECOVERABLE_REASONS
        assert not USER_ACTIONABLE_REASONS & FINAL_REASONS
        assert not SYSTEM_RECOVERABLE_REASONS & FINAL_REASONS


class TestHelpers:
    def test_is_user_actionable(self):
        assert is_user_actionable("account_frozen") is True
        assert is_user_actionable(FailureReason.COULD_NOT_PROCESS) is False

    def test_describe_known_reason(self):
        assert "closed" in describe("account_closed")

    def test_describe_falls_back_to_generic_message(self):
        assert describe("some_new_stripe_code") == describe(None)
