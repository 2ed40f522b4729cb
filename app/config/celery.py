"""
Celery configuration for the earnings payout service.

Celery runs the payout batches and every piece of work that must not block
a web request:
- Periodic aggregation and processing of payouts (via django-celery-beat)
- Asynchronous processing of verified Stripe webhook events
- The detached balance-recovery loop
- Fire-and-forget payout notification emails

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
