"""
Workforce admin configuration.
"""

from django.contrib import admin

from workforce.models import Worker, WorkItem


@admin.register(Worker)
class WorkerAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "first_name",
        "last_name",
        "email",
        "stripe_connect_account_id",
        "account_status",
        "setup_progress",
    ]
    list_filter = ["account_status", "setup_progress"]
    search_fields = ["id", "email", "stripe_connect_account_id"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(WorkItem)
class WorkItemAdmin(admin.ModelAdmin):
    list_display = ["id", "worker", "status", "effective_pay_cents", "completed_at"]
    list_filter = ["status"]
    search_fields = ["id", "worker__email"]
    readonly_fields = ["id", "created_at", "updated_at"]
