"""
Earnings admin configuration.

Payouts are read-only in the admin: state changes go through the payout
service so that every write is version-checked. Operators can re-queue
failed payouts with an admin action.
"""

from django.contrib import admin, messages

from earnings.exceptions import InvalidPayoutTransitionError
from earnings.models import WebhookEvent, WorkerPayout
from earnings.services.payout_service import PayoutService

__all__ = [
    "WorkerPayoutAdmin",
    "WebhookEventAdmin",
]


@admin.register(WorkerPayout)
class WorkerPayoutAdmin(admin.ModelAdmin):
    """
    Admin configuration for WorkerPayout.

    Provides visibility into payout status, failures and retries.
    """

    list_display = [
        "id",
        "worker",
        "period_start",
        "amount_display",
        "status",
        "last_failure_reason",
        "retry_count",
        "next_attempt_at",
        "created_at",
    ]
    list_filter = ["status", "last_failure_reason", "period_start"]
    search_fields = [
        "id",
        "stripe_transfer_id",
        "stripe_payout_id",
        "worker__email",
        "worker__stripe_connect_account_id",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_failed_payouts"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "worker", "status", "period_start", "period_end"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount_cents", "work_item_ids"),
            },
        ),
        (
            "Stripe Details",
            {
                "fields": ("stripe_transfer_id", "stripe_payout_id"),
            },
        ),
        (
            "Attempts",
            {
                "fields": (
                    "last_failure_reason",
                    "retry_count",
                    "last_attempt_at",
                    "next_attempt_at",
                ),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at", "version"),
            },
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.display(description="Amount")
    def amount_display(self, obj):
        return f"${obj.amount_cents / 100:,.2f}"

    @admin.action(description="Re-queue selected failed payouts")
    def requeue_failed_payouts(self, request, queryset):
        requeued = 0
        for payout in queryset:
            try:
                PayoutService.requeue_payout(payout.id, reset_retries=True)
            except InvalidPayoutTransitionError as e:
                self.message_user(request, str(e), level=messages.WARNING)
                continue
            requeued += 1
        self.message_user(request, f"Re-queued {requeued} payout(s).")


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "stripe_account_id",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type", "stripe_account_id"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "stripe_account_id",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "stripe_event_id", "event_type", "stripe_account_id", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )
