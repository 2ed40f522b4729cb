"""
Core views providing infrastructure endpoints.

This module contains views that are not part of the payout domain but are
needed to run the service, such as health checks.
"""

import logging

from django.apps import apps
from django.db import connection
from django.http import JsonResponse
from django_redis import get_redis_connection

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and container orchestration.

    Components:
        database: PostgreSQL reachable (required)
        redis: Redis reachable; Celery and the balance recovery lock use it
            (required)
        webhooks: At least one Stripe webhook signing secret is loaded
            (reported only, a deployment without webhooks still serves
            the payout API)

    HTTP Status Codes:
        200: All required components operational
        503: Database or Redis unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "redis": "connected",
            "webhooks": "configured"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "webhooks": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"

    try:
        get_redis_connection("default").ping()
        health_status["redis"] = "connected"
    except Exception:
        logger.warning("Health check: redis unreachable", exc_info=True)
        health_status["redis"] = "disconnected"
        health_status["status"] = "unhealthy"

    secrets = apps.get_app_config("earnings").webhook_secrets
    health_status["webhooks"] = "configured" if secrets and secrets.all() else "missing"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JsonResponse(health_status, status=status_code)
