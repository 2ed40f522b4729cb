"""
Payout notifications: worker action-required and finance platform-issue emails.

Callers in the payout flow only queue a Celery task; rendering and SMTP
happen in the worker. Failures are logged and never raised back into the
payout flow, since a payout write that already succeeded must not be
undone by an email problem.

Usage:
    from earnings import notifications

    notifications.notify_action_required(worker.id, "account_closed", payout.id)
    notifications.notify_platform_issue(payout.id, "insufficient_funds")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from earnings.services.failure_classifier import describe

if TYPE_CHECKING:
    from uuid import UUID

logger = logging.getLogger(__name__)


ACTION_REQUIRED = "action_required"
PLATFORM_ISSUE = "platform_issue"

ACTION_REQUIRED_SUBJECT = "Action required to receive your payout"
PLATFORM_ISSUE_SUBJECT = "Payout issue needs attention: {reason}"


# =============================================================================
# Queueing (called from the payout flow)
# =============================================================================


def notify_action_required(
    worker_id: UUID | str, reason: str, payout_id: UUID | str | None = None
) -> None:
    """Queue an email asking the worker to fix their payout account."""
    _queue(
        ACTION_REQUIRED,
        reason=reason,
        worker_id=str(worker_id),
        payout_id=str(payout_id) if payout_id else None,
    )


def notify_platform_issue(payout_id: UUID | str, reason: str) -> None:
    """Queue an email telling finance a payout needs manual attention."""
    _queue(PLATFORM_ISSUE, reason=reason, payout_id=str(payout_id))


def _queue(kind: str, **kwargs) -> None:
    # Import here to avoid circular imports (tasks -> services -> notifications)
    from earnings.tasks import send_payout_notification

    try:
        send_payout_notification.delay(kind, **kwargs)
    except Exception:
        logger.exception(
            "Failed to queue payout notification",
            extra={"kind": kind, **kwargs},
        )


# =============================================================================
# Delivery (called from the Celery task)
# =============================================================================


def send_action_required_email(
    worker_id: str, reason: str, payout_id: str | None = None
) -> bool:
    """
    Email the worker what went wrong and where to fix it.

    Returns:
        True if an email was sent
    """
    from workforce.models import Worker

    worker = Worker.objects.filter(pk=worker_id).first()
    if worker is None or not worker.email:
        logger.warning(
            "No email address for action-required notification",
            extra={"worker_id": worker_id, "payout_id": payout_id, "reason": reason},
        )
        return False

    context = {
        "worker": worker,
        "reason": reason,
        "message": describe(reason),
        "dashboard_url": settings.STRIPE_EXPRESS_DASHBOARD_URL,
        "app_name": settings.APP_NAME,
    }
    _send(
        to=[worker.email],
        subject=ACTION_REQUIRED_SUBJECT,
        template_name="earnings/email/action_required",
        context=context,
    )
    logger.info(
        "Action-required email sent",
        extra={"worker_id": worker_id, "payout_id": payout_id, "reason": reason},
    )
    return True


def send_platform_issue_email(payout_id: str, reason: str) -> bool:
    """
    Email finance about a payout that will not complete on its own.

    Returns:
        True if an email was sent
    """
    from earnings.models import WorkerPayout

    if not settings.PAYOUT_FINANCE_EMAIL:
        logger.warning(
            "PAYOUT_FINANCE_EMAIL not configured, platform issue not emailed",
            extra={"payout_id": payout_id, "reason": reason},
        )
        return False

    payout = WorkerPayout.objects.select_related("worker").filter(pk=payout_id).first()
    context = {
        "payout": payout,
        "payout_id": payout_id,
        "reason": reason,
        "amount": f"{payout.amount_cents / 100:.2f}" if payout else None,
        "finance_name": settings.PAYOUT_FINANCE_NAME,
        "app_name": settings.APP_NAME,
    }
    _send(
        to=[settings.PAYOUT_FINANCE_EMAIL],
        subject=PLATFORM_ISSUE_SUBJECT.format(reason=reason),
        template_name="earnings/email/platform_issue",
        context=context,
    )
    logger.info(
        "Platform-issue email sent",
        extra={"payout_id": payout_id, "reason": reason},
    )
    return True


def _send(to: list[str], subject: str, template_name: str, context: dict) -> None:
    text_content = render_to_string(f"{template_name}.txt", context)
    html_content = render_to_string(f"{template_name}.html", context)

    email = EmailMultiAlternatives(
        subject=subject,
        body=text_content,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=to,
    )
    email.attach_alternative(html_content, "text/html")
    email.send(fail_silently=False)
