"""
Factory Boy factories for workforce test data.

Usage:
    from workforce.tests.factories import WorkerFactory, WorkItemFactory

    worker = WorkerFactory()
    unlinked = WorkerFactory(stripe_connect_account_id=None)
    WorkItemFactory(worker=worker, effective_pay_cents=2500, completed_at=moment)
"""

import factory
from django.utils import timezone

from workforce.models import (
    SetupProgress,
    Worker,
    WorkerAccountStatus,
    WorkItem,
    WorkItemStatus,
)


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"worker{n}")
    email = factory.Sequence(lambda n: f"worker{n}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class WorkerFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating onboarded, active workers with a linked
    Stripe Connect account.
    """

    class Meta:
        model = Worker

    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")
    email = factory.Sequence(lambda n: f"worker-{n}@example.com")
    stripe_connect_account_id = factory.Sequence(lambda n: f"acct_test{n:08d}")
    account_status = WorkerAccountStatus.ACTIVE
    setup_progress = SetupProgress.DONE


class WorkItemFactory(factory.django.DjangoModelFactory):
    """Factory for completed work items."""

    class Meta:
        model = WorkItem

    worker = factory.SubFactory(WorkerFactory)
    status = WorkItemStatus.COMPLETED
    effective_pay_cents = 2500
    completed_at = factory.LazyFunction(timezone.now)
