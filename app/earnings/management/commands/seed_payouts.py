"""
Create a PENDING payout by hand.

Used to seed payouts outside the weekly aggregation (support cases,
preview environments). Seeding is idempotent per worker and period.

Usage:
    python manage.py seed_payouts --worker <uuid> --period-start 2026-03-02 --amount-cents 12500
"""

from datetime import date, timedelta

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError

from earnings.models import WorkerPayout
from workforce.models import Worker


class Command(BaseCommand):
    help = "Create a PENDING payout for a worker and pay period"

    def add_arguments(self, parser):
        parser.add_argument("--worker", required=True, help="Worker UUID")
        parser.add_argument(
            "--period-start",
            required=True,
            type=date.fromisoformat,
            help="First day of the pay period (YYYY-MM-DD)",
        )
        parser.add_argument(
            "--amount-cents", required=True, type=int, help="Payout amount in cents"
        )

    def handle(self, *args, **options):
        try:
            worker = Worker.objects.get(id=options["worker"])
        except (Worker.DoesNotExist, ValueError) as e:
            raise CommandError(f"Worker {options['worker']} not found") from e

        amount_cents = options["amount_cents"]
        if amount_cents <= 0:
            raise CommandError("--amount-cents must be positive")

        period_start = options["period_start"]
        period_days = 1 if settings.PAYOUT_USE_SHORT_PAY_PERIOD else 7

        try:
            payout, created = WorkerPayout.objects.create_if_absent(
                worker_id=worker.id,
                period_start=period_start,
                period_end=period_start + timedelta(days=period_days - 1),
                amount_cents=amount_cents,
            )
        except IntegrityError as e:
            raise CommandError(f"Could not create payout: {e}") from e

        if created:
            self.stdout.write(self.style.SUCCESS(f"Created payout {payout.id}"))
        else:
            self.stdout.write(
                self.style.WARNING(
                    f"Payout {payout.id} already exists for this period ({payout.status})"
                )
            )
