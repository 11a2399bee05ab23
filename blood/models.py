import uuid
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from accounts.models import BLOOD_TYPES

# -------- Status / urgency vocabulary --------
PENDING = "pending"
MATCHING = "matching"
DONORS_FOUND = "donors_found"
PARTIALLY_FULFILLED = "partially_fulfilled"
FULFILLED = "fulfilled"
CANCELLED = "cancelled"
EXPIRED = "expired"

STATUS_CHOICES = [
    (PENDING, "Pending"),
    (MATCHING, "Matching"),
    (DONORS_FOUND, "Donors found"),
    (PARTIALLY_FULFILLED, "Partially fulfilled"),
    (FULFILLED, "Fulfilled"),
    (CANCELLED, "Cancelled"),
    (EXPIRED, "Expired"),
]

ACTIVE_STATUSES = (PENDING, MATCHING, DONORS_FOUND, PARTIALLY_FULFILLED)
TERMINAL_STATUSES = (FULFILLED, CANCELLED, EXPIRED)

# forward-only progression; cancelled and expired sit outside it
STATUS_RANK = {
    PENDING: 0,
    MATCHING: 1,
    DONORS_FOUND: 2,
    PARTIALLY_FULFILLED: 3,
    FULFILLED: 4,
}

URGENCY_CHOICES = [
    ("normal", "Normal"),
    ("urgent", "Urgent"),
    ("critical", "Critical"),
    ("life_threatening", "Life threatening"),
]

PRIORITY_SCORES = {
    "normal": 25,
    "urgent": 50,
    "critical": 75,
    "life_threatening": 100,
}

BLOOD_COMPONENTS = [
    ("whole_blood", "Whole blood"),
    ("red_cells", "Red cells"),
    ("platelets", "Platelets"),
    ("plasma", "Plasma"),
    ("cryo", "Cryoprecipitate"),
]

GENDERS = [
    ("male", "Male"),
    ("female", "Female"),
    ("other", "Other"),
]

MIN_UNITS = 1
MAX_UNITS = 10


def priority_for(urgency: str) -> int:
    return PRIORITY_SCORES[urgency]


def default_expiry():
    hours = int(getattr(settings, "JIWANDAN_REQUEST_TTL_HOURS", 72))
    return timezone.now() + timedelta(hours=hours)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def statuses_before(status: str):
    """Stored statuses a request may still move forward from to reach `status`."""
    rank = STATUS_RANK[status]
    return tuple(s for s, r in STATUS_RANK.items() if r < rank)


def effective_status(status: str, expires_at, now=None) -> str:
    """
    Expiry is evaluated lazily by readers: an open request past its deadline
    reads as expired, the stored status is left alone.
    """
    if is_terminal(status):
        return status
    now = now or timezone.now()
    if expires_at is not None and expires_at <= now:
        return EXPIRED
    return status


class EmergencyRequest(models.Model):
    """
    Emergency blood request. Either hospital-sourced (hospital set, name/address
    copied from the directory) or free-text (hospital empty).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="emergency_requests",
    )

    # Patient / need
    patient_name = models.CharField(max_length=120)
    patient_age = models.PositiveSmallIntegerField(null=True, blank=True)
    patient_gender = models.CharField(max_length=10, choices=GENDERS, null=True, blank=True)
    blood_type = models.CharField(max_length=3, choices=BLOOD_TYPES, db_index=True)
    units_needed = models.PositiveSmallIntegerField(default=1)
    blood_component = models.CharField(max_length=20, choices=BLOOD_COMPONENTS, default="whole_blood")

    urgency = models.CharField(max_length=20, choices=URGENCY_CHOICES, default="normal", db_index=True)
    priority_score = models.PositiveSmallIntegerField(default=25, editable=False)

    # Location
    hospital = models.ForeignKey(
        "hospitals.Hospital",
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="emergency_requests",
    )
    hospital_name = models.CharField(max_length=200)
    hospital_address = models.CharField(max_length=255)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    # Contact
    contact_name = models.CharField(max_length=120)
    contact_phone = models.CharField(max_length=30)
    contact_relation = models.CharField(max_length=50)

    # Lifecycle
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    matched_donors_count = models.PositiveIntegerField(default=0)
    fulfilled_units = models.PositiveSmallIntegerField(default=0)
    cancellation_reason = models.CharField(max_length=255, blank=True)

    is_verified = models.BooleanField(default=False)

    needed_by = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(default=default_expiry)
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "emergency_requests"
        ordering = ["-priority_score", "-created_at"]
        indexes = [
            models.Index(fields=["status", "-priority_score", "-created_at"], name="emreq_status_priority_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(units_needed__gte=MIN_UNITS) & Q(units_needed__lte=MAX_UNITS),
                name="emreq_units_needed_range",
            ),
            models.CheckConstraint(
                condition=Q(fulfilled_units__lte=F("units_needed")),
                name="emreq_fulfilled_within_needed",
            ),
        ]

    def __str__(self):
        return f"Need {self.units_needed} x {self.blood_type} for {self.patient_name} at {self.hospital_name}"

    def save(self, *args, **kwargs):
        self.priority_score = priority_for(self.urgency)
        if self.hospital_id is not None:
            self.apply_hospital(self.hospital)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            update_fields = set(update_fields) | {"priority_score"}
            if self.hospital_id is not None:
                update_fields |= {"hospital_name", "hospital_address", "latitude", "longitude"}
            kwargs["update_fields"] = update_fields
        super().save(*args, **kwargs)

    def apply_hospital(self, hospital):
        self.hospital_name = hospital.name
        self.hospital_address = hospital.address
        if hospital.latitude is not None and hospital.longitude is not None:
            self.latitude = hospital.latitude
            self.longitude = hospital.longitude

    @property
    def current_status(self):
        return effective_status(self.status, self.expires_at)
