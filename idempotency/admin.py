from django.contrib import admin

from .models import IdempotencyRecord


@admin.register(IdempotencyRecord)
class IdempotencyRecordAdmin(admin.ModelAdmin):
    list_display = ["key", "status", "response_status", "created_at", "completed_at"]
    list_filter = ["status", "created_at"]
    search_fields = ["key"]
    readonly_fields = [
        "key", "status", "request_hash", "response_body",
        "response_status", "created_at", "completed_at",
    ]

    def has_add_permission(self, request):    return False
    def has_change_permission(self, request, obj=None): return False
