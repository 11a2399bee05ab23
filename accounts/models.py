from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models

BLOOD_TYPES = [
    ('A+', 'A+'), ('A-', 'A-'),
    ('B+', 'B+'), ('B-', 'B-'),
    ('AB+', 'AB+'), ('AB-', 'AB-'),
    ('O+', 'O+'), ('O-', 'O-'),
]


class CustomUser(AbstractUser):
    """
    Platform user. Anyone can raise an emergency request;
    donors additionally carry a DonorProfile.
    """
    ROLE = [
        ("USER", "User"),
        ("VOLUNTEER", "Volunteer"),
        ("MODERATOR", "Moderator"),
        ("ADMIN", "Admin"),
    ]

    full_name = models.CharField(max_length=150, blank=True)
    phone_number = models.CharField(max_length=20, blank=True)
    role = models.CharField(max_length=10, choices=ROLE, default="USER")
    is_donor = models.BooleanField(default=False)

    def __str__(self):
        return self.username

    @property
    def display_name(self):
        return (self.full_name or self.get_full_name() or self.username or "").strip()


class DonorProfile(models.Model):
    """
    Matching data for a donor: blood type, availability and last known position.
    """
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='donor_profile')

    blood_type = models.CharField(max_length=3, choices=BLOOD_TYPES)
    is_available = models.BooleanField(default=True)

    city = models.CharField(max_length=100, blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    last_donation_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user.username} ({self.blood_type})"
