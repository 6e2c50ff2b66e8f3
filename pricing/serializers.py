# pricing/serializers.py

from rest_framework import serializers

from .models import PersonalPrice


class PersonalPriceSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.full_name", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True, default=None)
    category_name = serializers.CharField(source="category.name", read_only=True, default=None)
    discount_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100,
        required=False, allow_null=True,
    )
    fixed_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0,
        required=False, allow_null=True,
    )

    class Meta:
        model = PersonalPrice
        fields = [
            "id",
            "customer",
            "customer_name",
            "product",
            "product_name",
            "category",
            "category_name",
            "discount_percent",
            "fixed_price",
            "valid_from",
            "valid_until",
            "created_by",
            "created_at",
        ]
        read_only_fields = ["created_by", "created_at"]

    def get_fields(self):
        fields = super().get_fields()
        # scope is fixed once the row exists
        if isinstance(self.instance, PersonalPrice):
            for name in ("customer", "product", "category"):
                fields[name].read_only = True
        return fields

    def validate(self, attrs):
        def current(name):
            if name in attrs:
                return attrs[name]
            return getattr(self.instance, name, None) if self.instance else None

        if not (current("product") or current("category")):
            raise serializers.ValidationError({"product": "product or category is required"})
        if current("discount_percent") is None and current("fixed_price") is None:
            raise serializers.ValidationError({"discount_percent": "discount_percent or fixed_price is required"})
        valid_from, valid_until = current("valid_from"), current("valid_until")
        if valid_from and valid_until and valid_from > valid_until:
            raise serializers.ValidationError({"valid_until": "valid_until must not be before valid_from"})
        return attrs


class ResolvedPriceSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=True)
    source = serializers.CharField()
    client_type = serializers.CharField()
