# loyalty/serializers.py

from rest_framework import serializers

from .models import LoyaltyTier, LoyaltyTransaction


class LoyaltyTierSerializer(serializers.ModelSerializer):
    class Meta:
        model = LoyaltyTier
        fields = ["name", "min_spend", "points_multiplier", "discount_percent", "sort_order"]


class LoyaltyTierInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=64)
    min_spend = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    points_multiplier = serializers.DecimalField(max_digits=6, decimal_places=2, min_value=0, required=False)
    discount_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False,
    )
    sort_order = serializers.IntegerField(min_value=0, required=False)


class LoyaltyTransactionSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True, default=None)

    class Meta:
        model = LoyaltyTransaction
        fields = [
            "id",
            "type",
            "points",
            "balance_after",
            "spend_amount",
            "description",
            "order",
            "order_number",
            "created_at",
        ]


class LoyaltyDashboardSerializer(serializers.Serializer):
    points_balance = serializers.IntegerField()
    total_lifetime_spend = serializers.DecimalField(max_digits=14, decimal_places=2)
    current_tier = serializers.CharField(allow_null=True)
    next_tier = LoyaltyTierSerializer(allow_null=True)
    recent_entries = LoyaltyTransactionSerializer(many=True)


class AdjustPointsSerializer(serializers.Serializer):
    customer_id = serializers.IntegerField()
    type = serializers.ChoiceField(choices=[
        LoyaltyTransaction.MANUAL_ADD,
        LoyaltyTransaction.MANUAL_DEDUCT,
    ])
    points = serializers.IntegerField(min_value=1)
    description = serializers.CharField(max_length=500)


class ReconciliationReportSerializer(serializers.Serializer):
    account_id = serializers.IntegerField()
    customer_id = serializers.IntegerField()
    entries = serializers.IntegerField()
    balance_before = serializers.IntegerField()
    balance_after = serializers.IntegerField()
    lifetime_spend_before = serializers.DecimalField(max_digits=14, decimal_places=2)
    lifetime_spend_after = serializers.DecimalField(max_digits=14, decimal_places=2)
    tier_before = serializers.CharField(allow_null=True)
    tier_after = serializers.CharField(allow_null=True)
    drifted = serializers.BooleanField()
