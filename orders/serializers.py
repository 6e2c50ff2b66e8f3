# orders/serializers.py

from rest_framework import serializers

from .models import Order, OrderItem


class CartLineSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class OrderCreateSerializer(serializers.Serializer):
    items = CartLineSerializer(many=True, allow_empty=False)
    loyalty_points_to_spend = serializers.IntegerField(min_value=0, required=False, default=0)
    contact_name = serializers.CharField(max_length=160, required=False, allow_blank=True, default="")
    contact_phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    contact_email = serializers.EmailField(required=False, allow_blank=True, default="")
    comment = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        # guests have no profile to contact them through
        if self.context.get("is_guest"):
            errors = {}
            if len(attrs["contact_name"].strip()) < 2:
                errors["contact_name"] = "At least 2 characters"
            if len(attrs["contact_phone"].strip()) < 10:
                errors["contact_phone"] = "Enter a valid phone number"
            if not attrs["contact_email"]:
                errors["contact_email"] = "This field is required."
            if errors:
                raise serializers.ValidationError(errors)
        return attrs


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ["product", "product_code", "product_name", "unit_price", "quantity", "subtotal", "is_promo"]


class OrderListSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "order_number", "created_at", "status", "client_type",
            "total_amount", "items_count", "loyalty_points_spent", "items",
        ]
