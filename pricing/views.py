# pricing/views.py
from rest_framework import generics, permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from catalog.services import get_product
from common.api_mixins import ServiceErrorMixin
from common.permissions import IsStaffOrAdminRole, customer_for_user
from .models import PersonalPrice
from .serializers import PersonalPriceSerializer, ResolvedPriceSerializer
from .services import context_for_customer, resolve_price


class PersonalPriceListCreateView(generics.ListCreateAPIView):
    """
    GET  /api/v1/pricing/personal-prices?customer=&product=&category=&page=1&page_size=25
    POST /api/v1/pricing/personal-prices
    """

    permission_classes = [permissions.IsAuthenticated, IsStaffOrAdminRole]
    serializer_class = PersonalPriceSerializer

    def get_queryset(self):
        qs = PersonalPrice.objects.select_related("customer", "product", "category")
        params = self.request.query_params
        for field in ("customer", "product", "category"):
            value = params.get(field)
            if value and value.isdigit():
                qs = qs.filter(**{f"{field}_id": int(value)})
        return qs.order_by("-created_at", "-id")

    def list(self, request, *args, **kwargs):
        qs = self.get_queryset()

        try:
            page_size = int(request.query_params.get("page_size") or 25)
            page = int(request.query_params.get("page") or 1)
        except ValueError:
            return Response({"detail": "page and page_size must be integers"}, status=400)
        page_size = max(1, min(page_size, 100))
        page = max(1, page)

        total = qs.count()
        start = (page - 1) * page_size
        rows = qs[start:start + page_size]
        serializer = self.get_serializer(rows, many=True)
        return Response({"count": total, "results": serializer.data})

    def perform_create(self, serializer):
        serializer.save(created_by=self.request.user)


class PersonalPriceDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET|PATCH|DELETE /api/v1/pricing/personal-prices/<id>
    """

    permission_classes = [permissions.IsAuthenticated, IsStaffOrAdminRole]
    serializer_class = PersonalPriceSerializer
    queryset = PersonalPrice.objects.select_related("customer", "product", "category")
    http_method_names = ["get", "patch", "delete", "head", "options"]


class ResolvePriceView(ServiceErrorMixin, APIView):
    """
    GET /api/v1/pricing/resolve?product_id=<id>
    The caller's effective unit price; guests get the retail price.
    """

    permission_classes = [permissions.AllowAny]

    def get(self, request):
        raw = request.query_params.get("product_id") or ""
        if not raw.isdigit():
            return Response({"detail": "product_id is required"}, status=400)
        product = get_product(int(raw))
        if product is None:
            return Response({"detail": "Product not found"}, status=404)

        ctx = context_for_customer(customer_for_user(request.user))
        found = resolve_price(ctx, product)
        data = ResolvedPriceSerializer({
            "product_id": product.id,
            "unit_price": found.unit_price,
            "source": found.source,
            "client_type": ctx.effective_client_type,
        }).data
        return Response(data)
