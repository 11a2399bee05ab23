from django.contrib import admin

from .models import Hospital


@admin.register(Hospital)
class HospitalAdmin(admin.ModelAdmin):
    list_display = ("name", "facility_type", "city", "phone", "is_active", "created_at")
    list_filter = ("facility_type", "is_active", "city")
    search_fields = ("name", "address", "city", "phone")
    ordering = ("name",)
