from django.contrib import admin

from .models import Referral


@admin.register(Referral)
class ReferralAdmin(admin.ModelAdmin):
    list_display = ("id", "referrer", "referred", "referral_code", "status", "bonus_points", "created_at", "converted_at")
    list_filter = ("status", "created_at")
    search_fields = ("referral_code", "referrer__full_name", "referred__full_name")
    raw_id_fields = ("referrer", "referred")
