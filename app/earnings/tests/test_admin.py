"""Tests for the payout admin."""

from unittest.mock import patch

import pytest
from django.contrib import admin, messages
from django.test import RequestFactory

from earnings.models import WorkerPayout
from earnings.state_machines import PayoutStatus


@pytest.fixture
def payout_admin():
    return admin.site._registry[WorkerPayout]


@pytest.fixture
def request_():
    return RequestFactory().post("/admin/earnings/workerpayout/")


@pytest.mark.django_db
class TestWorkerPayoutAdmin:
    def test_payouts_are_read_only(self, payout_admin, request_, pending_payout):
        readonly = payout_admin.get_readonly_fields(request_, pending_payout)

        assert "status" in readonly
        assert "amount_cents" in readonly
        assert payout_admin.has_add_permission(request_) is False
        assert payout_admin.has_delete_permission(request_, pending_payout) is False

    def test_amount_display(self, payout_admin, pending_payout):
        assert payout_admin.amount_display(pending_payout) == "$125.00"

    def test_requeue_action(
        self, payout_admin, request_, actionable_failed_payout, paid_payout
    ):
        queryset = WorkerPayout.objects.filter(
            pk__in=[actionable_failed_payout.pk, paid_payout.pk]
        )

        with patch.object(payout_admin, "message_user") as message_user:
            payout_admin.requeue_failed_payouts(request_, queryset)

        actionable_failed_payout.refresh_from_db()
        paid_payout.refresh_from_db()
        assert actionable_failed_payout.status == PayoutStatus.PENDING
        assert actionable_failed_payout.retry_count == 0
        assert paid_payout.status == PayoutStatus.PAID

        warning_call, summary_call = message_user.call_args_list
        assert warning_call.kwargs["level"] == messages.WARNING
        assert summary_call.args[1] == "Re-queued 1 payout(s)."
