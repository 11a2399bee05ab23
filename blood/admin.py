from django import forms
from django.contrib import admin, messages
from django.utils import timezone

from .exceptions import EmergencyRequestError
from .models import ACTIVE_STATUSES, FULFILLED, MAX_UNITS, MIN_UNITS, EmergencyRequest
from .repository import EmergencyRequestRepository
from .session import RequestSession

# moved only by the repository (cancel / fulfil / matching), never by hand
LIFECYCLE_FIELDS = (
    "status",
    "matched_donors_count",
    "fulfilled_units",
    "fulfilled_at",
    "cancellation_reason",
)


class EmergencyRequestAdminForm(forms.ModelForm):
    class Meta:
        model = EmergencyRequest
        fields = "__all__"

    def clean_units_needed(self):
        units = self.cleaned_data.get("units_needed")
        if units is None:
            return units
        if not MIN_UNITS <= units <= MAX_UNITS:
            raise forms.ValidationError(f"Enter between {MIN_UNITS} and {MAX_UNITS} units.")
        delivered = self.instance.fulfilled_units if self.instance.pk else 0
        if units < delivered:
            raise forms.ValidationError(f"{delivered} units were already delivered.")
        return units


@admin.register(EmergencyRequest)
class EmergencyRequestAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "patient_name",
        "blood_type",
        "units_needed",
        "fulfilled_units",
        "urgency",
        "priority_score",
        "status",
        "hospital_name",
        "is_verified",
        "expires_at",
        "created_at",
        "requester",
    )
    list_filter = (
        "status",
        "urgency",
        "blood_type",
        "blood_component",
        "is_verified",
        "created_at",
    )
    search_fields = (
        "patient_name",
        "contact_name",
        "contact_phone",
        "hospital_name",
        "hospital_address",
        "requester__username",
        "requester__email",
    )
    ordering = ("-priority_score", "-created_at")
    form = EmergencyRequestAdminForm
    autocomplete_fields = ("requester", "hospital")
    readonly_fields = ("priority_score",) + LIFECYCLE_FIELDS + ("created_at", "updated_at")

    fieldsets = (
        ("Patient / Need", {
            "fields": ("patient_name", "patient_age", "patient_gender", "blood_type", "units_needed", "blood_component")
        }),
        ("Urgency", {
            "fields": ("urgency", "priority_score", "needed_by", "expires_at")
        }),
        ("Location / Hospital", {
            "fields": ("hospital", "hospital_name", "hospital_address", "latitude", "longitude")
        }),
        ("Contact", {
            "fields": ("contact_name", "contact_phone", "contact_relation")
        }),
        ("Request State", {
            "fields": (
                "status",
                "matched_donors_count",
                "fulfilled_units",
                "fulfilled_at",
                "cancellation_reason",
                "is_verified",
            )
        }),
        ("Meta", {
            "fields": ("requester", "created_at", "updated_at")
        }),
    )

    actions = ["cancel_requests", "mark_verified"]

    def get_readonly_fields(self, request, obj=None):
        fields = super().get_readonly_fields(request, obj)
        if obj is not None and obj.current_status not in ACTIVE_STATUSES:
            # closed requests stay as they ended; only verification can change
            return tuple(f.name for f in obj._meta.fields if f.name != "is_verified")
        return fields

    def save_model(self, request, obj, form, change):
        now = timezone.now()
        if change:
            stored = EmergencyRequest.objects.filter(pk=obj.pk).values(*LIFECYCLE_FIELDS).first()
            if stored is not None:
                for name, value in stored.items():
                    setattr(obj, name, value)
            if obj.status in ACTIVE_STATUSES and obj.units_needed <= obj.fulfilled_units:
                obj.status = FULFILLED
                obj.fulfilled_at = now
        obj.updated_at = now
        super().save_model(request, obj, form, change)

    def cancel_requests(self, request, queryset):
        repo = EmergencyRequestRepository(RequestSession.open(request.user))
        cancelled = 0
        for req in queryset:
            try:
                repo.cancel(req.pk, reason=f"Cancelled by {request.user.get_username()}")
                cancelled += 1
            except EmergencyRequestError as e:
                self.message_user(request, f"{req.patient_name}: {e.message}", level=messages.WARNING)
        self.message_user(request, f"Cancelled {cancelled} request(s).")

    cancel_requests.short_description = "Cancel selected requests"

    def mark_verified(self, request, queryset):
        updated = 0
        for req in queryset.filter(is_verified=False):
            req.is_verified = True
            req.updated_at = timezone.now()
            req.save(update_fields=["is_verified", "updated_at"])
            updated += 1
        self.message_user(request, f"Verified {updated} request(s).")

    mark_verified.short_description = "Mark selected requests as verified"
