"""
Reconciliation of Stripe webhook events with the payout store.

Every verified event is mapped to an EventCategory and handed to the one
handler registered for it. Handlers only apply guarded transitions, so a
redelivered, reordered or stale event leaves the store unchanged.

Handlers:
    payout.paid / payout.failed   Finalize the payout this instance created
    account.updated               Re-queue account-related failures once payouts are enabled
    capability.updated            Same for the transfers capability; warn the
                                  worker when it is deactivated
    transfer.reversed             Log for manual follow-up
    balance.available             Start balance recovery
    anything else                 Acknowledge and ignore

Usage:
    from django.apps import apps

    reconciler = apps.get_app_config("earnings").reconciler
    result = reconciler.dispatch(webhook_event.payload)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Callable

from django.conf import settings

from core.services import ServiceResult
from earnings import notifications
from earnings.exceptions import StripeError
from earnings.models import WorkerPayout
from earnings.services.payout_service import PayoutService
from earnings.services.recovery import BalanceRecoveryCoordinator
from earnings.state_machines import (
    TRANSFERS_CAPABILITY,
    EventCategory,
    FailureReason,
    MetadataKey,
)
from workforce.models import Worker

if TYPE_CHECKING:
    from earnings.webhooks.secrets import WebhookSecrets


logger = logging.getLogger(__name__)

Handler = Callable[["WebhookReconciler", dict], ServiceResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event categories to handler functions
WEBHOOK_HANDLERS: dict[EventCategory, Handler] = {}


def register_handler(category: EventCategory) -> Callable[[Handler], Handler]:
    """
    Decorator to register the handler for an event category.

    Usage:
        @register_handler(EventCategory.PAYOUT_PAID)
        def handle_payout_paid(reconciler, event) -> ServiceResult:
            ...
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[category] = func
        logger.debug(f"Registered webhook handler for {category.value}")
        return func

    return decorator


def _ignored(reason: str, **data: Any) -> ServiceResult:
    return ServiceResult.success({"ignored": True, "reason": reason, **data})


def _event_object(event: dict) -> dict:
    return (event.get("data") or {}).get("object") or {}


# =============================================================================
# Reconciler
# =============================================================================


class WebhookReconciler:
    """
    Applies Stripe webhook events to payouts.

    Args:
        secrets: Signing secrets used by the webhook view
        instance_tag: generated_by value this deployment writes into
            Stripe metadata; events carrying another tag belong to
            another deployment sharing the Stripe account
        service: Payout service class
        coordinator: Balance recovery coordinator class
    """

    def __init__(
        self,
        secrets: WebhookSecrets,
        instance_tag: str | None = None,
        service: type[PayoutService] = PayoutService,
        coordinator: type[BalanceRecoveryCoordinator] = BalanceRecoveryCoordinator,
    ) -> None:
        self.secrets = secrets
        self.instance_tag = instance_tag or settings.PAYOUT_INSTANCE_TAG
        self.service = service
        self.coordinator = coordinator

    def dispatch(self, event: dict) -> ServiceResult:
        """
        Route an event payload to its category handler.

        Returns:
            ServiceResult from the handler; ignored events are successes
        """
        category = EventCategory.from_event_type(event.get("type"))
        handler = WEBHOOK_HANDLERS.get(category, handle_unknown)

        logger.info(
            f"Dispatching {event.get('type')} to handler",
            extra={"event_id": event.get("id"), "category": category.value},
        )
        return handler(self, event)

    # =========================================================================
    # Payout tracing
    # =========================================================================

    def resolve_payout(self, event: dict) -> tuple[WorkerPayout | None, str | None, str]:
        """
        Find the payout a payout.* event refers to.

        Metadata written by this service sits on the Stripe payout. Payouts
        created before that metadata existed are traced through their
        balance transaction to the source transfer instead.

        Returns:
            (payout, transfer_id, reason). payout is None when the event is
            not ours or cannot be traced; reason says why.
        """
        stripe_payout = _event_object(event)
        metadata = stripe_payout.get("metadata") or {}
        transfer_id = None

        if MetadataKey.GENERATED_BY not in metadata:
            metadata, transfer_id = self._trace_source_transfer(
                stripe_payout, event.get("account")
            )
            if metadata is None:
                return None, None, "source transfer could not be traced"

        generated_by = metadata.get(MetadataKey.GENERATED_BY)
        if generated_by != self.instance_tag:
            return None, None, f"generated by another instance: {generated_by or 'not set'}"

        raw_id = metadata.get(MetadataKey.PAYOUT_ID)
        try:
            payout_id = uuid.UUID(str(raw_id))
        except ValueError:
            return None, None, f"invalid payout_id in metadata: {raw_id}"

        payout = WorkerPayout.objects.get_by_id(payout_id)
        if payout is None:
            return None, None, f"no payout record {payout_id}"
        return payout, transfer_id, ""

    def _trace_source_transfer(
        self, stripe_payout: dict, stripe_account: str | None
    ) -> tuple[dict | None, str | None]:
        balance_transaction = stripe_payout.get("balance_transaction")

        if isinstance(balance_transaction, dict):
            source = balance_transaction.get("source")
            if isinstance(source, dict):
                return source.get("metadata") or {}, source.get("id")
            balance_transaction = balance_transaction.get("id")

        if not balance_transaction:
            logger.warning(
                "Payout event without balance_transaction, cannot trace source",
                extra={"stripe_payout_id": stripe_payout.get("id")},
            )
            return None, None

        adapter = self.service.get_stripe_adapter()
        try:
            txn = adapter.retrieve_balance_transaction(
                balance_transaction, stripe_account=stripe_account
            )
        except StripeError:
            logger.warning(
                "Could not retrieve balance transaction for payout event",
                extra={
                    "stripe_payout_id": stripe_payout.get("id"),
                    "balance_transaction_id": balance_transaction,
                },
                exc_info=True,
            )
            return None, None

        if not txn.source_id:
            return None, None
        return txn.source_metadata, txn.source_id

    def worker_for_account(self, event: dict, account_id: str | None = None) -> Worker | None:
        return Worker.objects.get_by_stripe_account(account_id or event.get("account") or "")


# =============================================================================
# Payout Handlers
# =============================================================================


@register_handler(EventCategory.PAYOUT_PAID)
def handle_payout_paid(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    """Stripe confirmed the money reached the bank: PROCESSING -> PAID."""
    payout, _, reason = reconciler.resolve_payout(event)
    if payout is None:
        logger.info(
            f"Ignoring payout.paid: {reason}",
            extra={"event_id": event.get("id")},
        )
        return _ignored(reason)

    updated = reconciler.service.mark_paid(payout.id)
    return ServiceResult.success(
        {"payout_id": str(payout.id), "applied": updated is not None}
    )


@register_handler(EventCategory.PAYOUT_FAILED)
def handle_payout_failed(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    """The bank payout failed: record the failure code and schedule what's next."""
    payout, transfer_id, reason = reconciler.resolve_payout(event)
    if payout is None:
        logger.info(
            f"Ignoring payout.failed: {reason}",
            extra={"event_id": event.get("id")},
        )
        return _ignored(reason)

    failure_code = _event_object(event).get("failure_code") or FailureReason.COULD_NOT_PROCESS
    updated = reconciler.service.handle_failure(
        payout.id, failure_code, transfer_id=transfer_id
    )
    return ServiceResult.success(
        {
            "payout_id": str(payout.id),
            "reason": failure_code,
            "applied": updated is not None,
        }
    )


# =============================================================================
# Account Handlers
# =============================================================================


@register_handler(EventCategory.ACCOUNT_UPDATED)
def handle_account_updated(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    """Payouts were enabled on an account: retry what waited on the worker."""
    account = _event_object(event)
    if not account.get("payouts_enabled"):
        return _ignored("payouts not enabled")

    worker = reconciler.worker_for_account(event, account.get("id"))
    if worker is None:
        return _ignored("no worker for account", account_id=account.get("id"))

    requeued = reconciler.service.requeue_actionable_failures(worker.id)
    return ServiceResult.success({"worker_id": str(worker.id), "requeued": requeued})


@register_handler(EventCategory.CAPABILITY_UPDATED)
def handle_capability_updated(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    """
    The transfers capability changed.

    active: retry what waited on the worker. inactive: tell an onboarded,
    active worker that payouts are blocked; no payout changes.
    """
    capability = _event_object(event)
    if capability.get("id") != TRANSFERS_CAPABILITY:
        return _ignored("not the transfers capability", capability=capability.get("id"))

    worker = reconciler.worker_for_account(event, capability.get("account"))
    if worker is None:
        return _ignored("no worker for account", account_id=capability.get("account"))

    status = capability.get("status")
    if status == "active":
        requeued = reconciler.service.requeue_actionable_failures(worker.id)
        return ServiceResult.success({"worker_id": str(worker.id), "requeued": requeued})

    if status == "inactive":
        if not (worker.is_active and worker.is_onboarded):
            return _ignored("worker not active or not onboarded", worker_id=str(worker.id))
        notifications.notify_action_required(worker.id, FailureReason.PAYOUTS_DISABLED)
        return ServiceResult.success({"worker_id": str(worker.id), "notified": True})

    return _ignored(f"capability status {status}")


# =============================================================================
# Platform Handlers
# =============================================================================


@register_handler(EventCategory.TRANSFER_REVERSED)
def handle_transfer_reversed(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    """Reversals need a person; nothing is compensated automatically."""
    transfer = _event_object(event)
    metadata = transfer.get("metadata") or {}
    generated_by = metadata.get(MetadataKey.GENERATED_BY)
    if generated_by != reconciler.instance_tag:
        return _ignored(f"generated by another instance: {generated_by or 'not set'}")

    logger.warning(
        "Transfer reversed, manual intervention required",
        extra={
            "event_id": event.get("id"),
            "stripe_transfer_id": transfer.get("id"),
            "payout_id": metadata.get(MetadataKey.PAYOUT_ID),
            "amount_reversed": transfer.get("amount_reversed"),
        },
    )
    return ServiceResult.success(
        {"stripe_transfer_id": transfer.get("id"), "manual_intervention": True}
    )


@register_handler(EventCategory.BALANCE_AVAILABLE)
def handle_balance_available(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    scheduled = reconciler.coordinator.handle_balance_available()
    return ServiceResult.success({"recovery_scheduled": scheduled})


@register_handler(EventCategory.UNKNOWN)
def handle_unknown(reconciler: WebhookReconciler, event: dict) -> ServiceResult:
    return _ignored("unhandled event type", event_type=event.get("type"))
