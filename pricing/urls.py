# pricing/urls.py
from django.urls import path

from .views import PersonalPriceListCreateView, PersonalPriceDetailView, ResolvePriceView

app_name = "pricing"

urlpatterns = [
    path("personal-prices", PersonalPriceListCreateView.as_view(), name="personal-price-list"),
    path("personal-prices/<int:pk>", PersonalPriceDetailView.as_view(), name="personal-price-detail"),
    path("resolve", ResolvePriceView.as_view(), name="resolve"),
]
