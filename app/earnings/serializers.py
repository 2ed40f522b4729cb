"""
DRF serializers for the earnings app.

Workers only ever see a payout's status and, when they must act, a
human-readable explanation with a link to their Stripe Express dashboard.
Internal reason codes and Stripe ids are not exposed.

Usage:
    serializer = WorkerPayoutSerializer(payouts, many=True)
    data = serializer.data
"""

from __future__ import annotations

from django.conf import settings
from rest_framework import serializers

from earnings.models import WorkerPayout
from earnings.services.failure_classifier import describe, is_user_actionable
from earnings.state_machines import PayoutStatus


class WorkerPayoutSerializer(serializers.ModelSerializer):
    """
    Worker-facing payout representation.

    Fields:
        id: Payout ID
        status: pending, processing, paid or failed
        amount_cents / amount_display: Amount in cents and as "$125.00"
        period_start / period_end: Pay period dates
        action_required: The worker must fix their payout account
        failure_message: What went wrong (only when action is required)
        action_url: Where to fix it (only when action is required)
    """

    amount_display = serializers.SerializerMethodField()
    action_required = serializers.SerializerMethodField()
    failure_message = serializers.SerializerMethodField()
    action_url = serializers.SerializerMethodField()

    class Meta:
        model = WorkerPayout
        fields = [
            "id",
            "status",
            "amount_cents",
            "amount_display",
            "period_start",
            "period_end",
            "action_required",
            "failure_message",
            "action_url",
            "last_attempt_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def _requires_action(self, obj: WorkerPayout) -> bool:
        return obj.status == PayoutStatus.FAILED and is_user_actionable(
            obj.last_failure_reason
        )

    def get_amount_display(self, obj: WorkerPayout) -> str:
        return f"${obj.amount_cents / 100:,.2f}"

    def get_action_required(self, obj: WorkerPayout) -> bool:
        return self._requires_action(obj)

    def get_failure_message(self, obj: WorkerPayout) -> str | None:
        if not self._requires_action(obj):
            return None
        return describe(obj.last_failure_reason)

    def get_action_url(self, obj: WorkerPayout) -> str | None:
        if not self._requires_action(obj):
            return None
        return settings.STRIPE_EXPRESS_DASHBOARD_URL
