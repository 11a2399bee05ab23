from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import CustomUser, DonorProfile

class DonorProfileInline(admin.StackedInline):
    model = DonorProfile
    can_delete = False
    verbose_name_plural = 'Donor Profile'

class CustomUserAdmin(UserAdmin):
    inlines = (DonorProfileInline,)

    list_display = ('username', 'full_name', 'email', 'role', 'is_donor', 'is_staff')
    list_filter = ('role', 'is_donor', 'is_staff')
    search_fields = ('username', 'full_name', 'email', 'phone_number')

    fieldsets = UserAdmin.fieldsets + (
        ('Jiwandan', {'fields': ('full_name', 'phone_number', 'role', 'is_donor')}),
    )

admin.site.register(CustomUser, CustomUserAdmin)


@admin.register(DonorProfile)
class DonorProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "blood_type", "is_available", "city", "last_donation_at")
    list_filter = ("blood_type", "is_available", "city")
    search_fields = ("user__username", "user__full_name", "city")
    autocomplete_fields = ("user",)
