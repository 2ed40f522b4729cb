"""
Pay period arithmetic in the business timezone.

A pay period is a week starting Monday at PAYOUT_PERIOD_START_HOUR local
time (04:00 America/New_York by default). Work completed at 03:59 on a
Monday still belongs to the previous week.

With PAYOUT_USE_SHORT_PAY_PERIOD enabled (test environments) a period is a
single calendar day instead, so payouts can be exercised daily.

Usage:
    from earnings.periods import previous_pay_period

    period = previous_pay_period()
    totals = WorkItem.objects.totals_by_worker(period.window_start, period.window_end)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone


@dataclass(frozen=True)
class PayPeriod:
    """
    A closed pay period.

    Attributes:
        start_date: First day of the period (stored as WorkerPayout.period_start)
        end_date: Last day of the period, inclusive
        window_start: Aware datetime, inclusive lower bound for completed_at
        window_end: Aware datetime, exclusive upper bound for completed_at
    """

    start_date: date
    end_date: date
    window_start: datetime
    window_end: datetime


def business_timezone() -> ZoneInfo:
    return ZoneInfo(settings.PAYOUT_BUSINESS_TIMEZONE)


def pay_period_start_for(moment: datetime) -> date:
    """Monday that starts the weekly pay period containing `moment`."""
    local = moment.astimezone(business_timezone())
    shifted = local - timedelta(hours=settings.PAYOUT_PERIOD_START_HOUR)
    day = shifted.date()
    return day - timedelta(days=day.weekday())


def previous_pay_period(now: datetime | None = None) -> PayPeriod:
    """
    The most recent pay period that has fully closed at `now`.

    Weekly mode: [previous Monday 04:00, this Monday 04:00) business time.
    Short mode: [yesterday 00:00, today 00:00) business time.
    """
    now = now or timezone.now()
    tz = business_timezone()

    if settings.PAYOUT_USE_SHORT_PAY_PERIOD:
        today = now.astimezone(tz).date()
        yesterday = today - timedelta(days=1)
        return PayPeriod(
            start_date=yesterday,
            end_date=yesterday,
            window_start=datetime.combine(yesterday, time.min, tzinfo=tz),
            window_end=datetime.combine(today, time.min, tzinfo=tz),
        )

    start_hour = time(hour=settings.PAYOUT_PERIOD_START_HOUR)
    current_start = pay_period_start_for(now)
    start_date = current_start - timedelta(days=7)

    return PayPeriod(
        start_date=start_date,
        end_date=start_date + timedelta(days=6),
        window_start=datetime.combine(start_date, start_hour, tzinfo=tz),
        window_end=datetime.combine(current_start, start_hour, tzinfo=tz),
    )
