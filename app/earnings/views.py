"""
DRF views for the earnings app.

Endpoints:
    GET /api/v1/earnings/payouts/ - The authenticated worker's payouts

The Stripe webhook endpoint lives in earnings.webhooks.views.
"""

from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework.generics import ListAPIView
from rest_framework.permissions import IsAuthenticated

from earnings.models import WorkerPayout
from earnings.serializers import WorkerPayoutSerializer
from workforce.models import Worker


class WorkerPayoutListView(ListAPIView):
    """
    List the authenticated worker's payouts, newest first.

    GET /api/v1/earnings/payouts/

    Users without a worker profile get an empty list.
    """

    serializer_class = WorkerPayoutSerializer
    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List my payouts",
        description=(
            "Payouts of the authenticated worker. Failed payouts that need the "
            "worker to fix their payout account carry action_required, a "
            "failure_message and an action_url."
        ),
        responses={200: WorkerPayoutSerializer(many=True)},
        tags=["Earnings"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        worker = Worker.objects.filter(user=self.request.user).first()
        if worker is None:
            return WorkerPayout.objects.none()
        return WorkerPayout.objects.filter(worker=worker).order_by("-period_start")
