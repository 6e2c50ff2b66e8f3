# orders/views.py
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from common.api_mixins import ServiceErrorMixin
from common.permissions import customer_for_user
from .models import Order
from .serializers import OrderCreateSerializer, OrderListSerializer
from .services import create_order

IDEMPOTENCY_HEADER = "X-Idempotency-Key"


class OrderListCreateView(ServiceErrorMixin, APIView):
    """
    GET  /api/v1/orders/?page=1&page_size=20   (authenticated customer's orders)
    POST /api/v1/orders/                       (customers and guests)
         Header: X-Idempotency-Key: <opaque client key>
         Body: { items: [{ product_id, quantity }], loyalty_points_to_spend?,
                 contact_name?, contact_phone?, contact_email?, comment? }
    """

    permission_classes = [permissions.AllowAny]

    def get(self, request):
        customer = customer_for_user(request.user)
        if customer is None:
            return Response({"detail": "Authentication credentials were not provided."}, status=401)

        try:
            page_size = int(request.query_params.get("page_size") or 20)
            page = int(request.query_params.get("page") or 1)
        except ValueError:
            return Response({"detail": "page and page_size must be integers"}, status=400)
        page_size = max(1, min(page_size, 100))
        page = max(1, page)

        qs = Order.objects.filter(customer=customer).prefetch_related("items").order_by("-created_at", "-id")
        total = qs.count()
        start = (page - 1) * page_size
        rows = qs[start:start + page_size]
        return Response({
            "count": total,
            "results": OrderListSerializer(rows, many=True).data,
        })

    def post(self, request):
        customer = customer_for_user(request.user)
        ser = OrderCreateSerializer(data=request.data, context={"is_guest": customer is None})
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        result = create_order(
            customer,
            [(line["product_id"], line["quantity"]) for line in data["items"]],
            points_to_spend=data["loyalty_points_to_spend"],
            idempotency_key=request.headers.get(IDEMPOTENCY_HEADER),
            contact={
                "contact_name": data["contact_name"],
                "contact_phone": data["contact_phone"],
                "contact_email": data["contact_email"],
                "comment": data["comment"],
            },
        )
        response = Response(result.body, status=result.status or status.HTTP_201_CREATED)
        if result.replayed:
            response["Idempotent-Replayed"] = "true"
        return response
