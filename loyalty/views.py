# loyalty/views.py
from django.shortcuts import get_object_or_404

from rest_framework import permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from common.api_mixins import ServiceErrorMixin
from common.permissions import HasCustomerProfile, IsStaffOrAdminRole, customer_for_user
from customers.models import Customer
from .serializers import (
    AdjustPointsSerializer,
    LoyaltyDashboardSerializer,
    LoyaltyTierInputSerializer,
    LoyaltyTierSerializer,
    LoyaltyTransactionSerializer,
    ReconciliationReportSerializer,
)
from .services import (
    adjust_points,
    get_loyalty_dashboard,
    get_or_create_account,
    get_tiers,
    get_transaction_history,
    rebuild_account_from_ledger,
    replace_tiers,
)


def _int_param(request, name, default):
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        return None


class LoyaltyDashboardView(ServiceErrorMixin, APIView):
    """
    GET /api/v1/loyalty/dashboard
    """

    permission_classes = [permissions.IsAuthenticated, HasCustomerProfile]

    def get(self, request):
        data = get_loyalty_dashboard(customer_for_user(request.user))
        return Response(LoyaltyDashboardSerializer(data).data)


class LoyaltyHistoryView(ServiceErrorMixin, APIView):
    """
    GET /api/v1/loyalty/history?page=1&limit=20
    """

    permission_classes = [permissions.IsAuthenticated, HasCustomerProfile]

    def get(self, request):
        page = _int_param(request, "page", 1)
        limit = _int_param(request, "limit", 20)
        if page is None or limit is None:
            return Response({"detail": "page and limit must be integers"}, status=400)

        history = get_transaction_history(customer_for_user(request.user), page=page, limit=limit)
        history["results"] = LoyaltyTransactionSerializer(history["results"], many=True).data
        return Response(history)


class AdjustPointsView(ServiceErrorMixin, APIView):
    """
    POST /api/v1/loyalty/admin/adjust
    {"customer_id": 1, "type": "manual_add", "points": 50, "description": "..."}
    """

    permission_classes = [permissions.IsAuthenticated, IsStaffOrAdminRole]

    def post(self, request):
        ser = AdjustPointsSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        customer = get_object_or_404(Customer, pk=data["customer_id"])
        new_balance = adjust_points(customer, data["type"], data["points"], data["description"])
        return Response({"customer_id": customer.id, "new_balance": new_balance})


class LoyaltyTiersView(ServiceErrorMixin, APIView):
    """
    GET /api/v1/loyalty/admin/tiers
    PUT /api/v1/loyalty/admin/tiers   (replaces the whole table)
    """

    permission_classes = [permissions.IsAuthenticated, IsStaffOrAdminRole]

    def get(self, request):
        return Response(LoyaltyTierSerializer(get_tiers(), many=True).data)

    def put(self, request):
        ser = LoyaltyTierInputSerializer(data=request.data, many=True)
        ser.is_valid(raise_exception=True)
        tiers = replace_tiers([dict(item) for item in ser.validated_data])
        return Response(LoyaltyTierSerializer(tiers, many=True).data)


class ReconcileAccountView(ServiceErrorMixin, APIView):
    """
    GET /api/v1/loyalty/admin/accounts/<customer_id>/reconcile?repair=1

    Reports drift between the ledger and the cached totals; `repair=1`
    writes the rebuilt values back.
    """

    permission_classes = [permissions.IsAuthenticated, IsStaffOrAdminRole]

    def get(self, request, customer_id):
        customer = get_object_or_404(Customer, pk=customer_id)
        account = get_or_create_account(customer)
        repair = request.query_params.get("repair") in ("1", "true", "yes")
        report = rebuild_account_from_ledger(account, commit=repair)
        return Response(ReconciliationReportSerializer(report).data)
