# loyalty/urls.py

from django.urls import path

from .views import (
    AdjustPointsView,
    LoyaltyDashboardView,
    LoyaltyHistoryView,
    LoyaltyTiersView,
    ReconcileAccountView,
)

app_name = "loyalty"

urlpatterns = [
    path("dashboard", LoyaltyDashboardView.as_view(), name="dashboard"),
    path("history", LoyaltyHistoryView.as_view(), name="history"),
    path("admin/adjust", AdjustPointsView.as_view(), name="admin-adjust"),
    path("admin/tiers", LoyaltyTiersView.as_view(), name="admin-tiers"),
    path("admin/accounts/<int:customer_id>/reconcile", ReconcileAccountView.as_view(), name="admin-reconcile"),
]
