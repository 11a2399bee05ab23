from django.db import models


class Hospital(models.Model):
    """
    Hospital / blood bank directory entry. Hospital-sourced emergency
    requests copy their name, address and coordinates from here.
    """
    TYPE = [
        ("HOSPITAL", "Hospital"),
        ("BLOOD_BANK", "Blood Bank"),
        ("RED_CROSS", "Red Cross"),
    ]

    name = models.CharField(max_length=200)
    facility_type = models.CharField(max_length=20, choices=TYPE, default="HOSPITAL")

    address = models.CharField(max_length=255)
    city = models.CharField(max_length=100, blank=True, db_index=True)
    phone = models.CharField(max_length=30, blank=True)

    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.get_facility_type_display()})"
