import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import blood.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("hospitals", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="EmergencyRequest",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("patient_name", models.CharField(max_length=120)),
                ("patient_age", models.PositiveSmallIntegerField(blank=True, null=True)),
                (
                    "patient_gender",
                    models.CharField(
                        blank=True,
                        choices=[("male", "Male"), ("female", "Female"), ("other", "Other")],
                        max_length=10,
                        null=True,
                    ),
                ),
                (
                    "blood_type",
                    models.CharField(
                        choices=[
                            ("A+", "A+"), ("A-", "A-"), ("B+", "B+"), ("B-", "B-"),
                            ("AB+", "AB+"), ("AB-", "AB-"), ("O+", "O+"), ("O-", "O-"),
                        ],
                        db_index=True,
                        max_length=3,
                    ),
                ),
                ("units_needed", models.PositiveSmallIntegerField(default=1)),
                (
                    "blood_component",
                    models.CharField(
                        choices=[
                            ("whole_blood", "Whole blood"),
                            ("red_cells", "Red cells"),
                            ("platelets", "Platelets"),
                            ("plasma", "Plasma"),
                            ("cryo", "Cryoprecipitate"),
                        ],
                        default="whole_blood",
                        max_length=20,
                    ),
                ),
                (
                    "urgency",
                    models.CharField(
                        choices=[
                            ("normal", "Normal"),
                            ("urgent", "Urgent"),
                            ("critical", "Critical"),
                            ("life_threatening", "Life threatening"),
                        ],
                        db_index=True,
                        default="normal",
                        max_length=20,
                    ),
                ),
                ("priority_score", models.PositiveSmallIntegerField(default=25, editable=False)),
                ("hospital_name", models.CharField(max_length=200)),
                ("hospital_address", models.CharField(max_length=255)),
                ("latitude", models.FloatField(blank=True, null=True)),
                ("longitude", models.FloatField(blank=True, null=True)),
                ("contact_name", models.CharField(max_length=120)),
                ("contact_phone", models.CharField(max_length=30)),
                ("contact_relation", models.CharField(max_length=50)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("matching", "Matching"),
                            ("donors_found", "Donors found"),
                            ("partially_fulfilled", "Partially fulfilled"),
                            ("fulfilled", "Fulfilled"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("matched_donors_count", models.PositiveIntegerField(default=0)),
                ("fulfilled_units", models.PositiveSmallIntegerField(default=0)),
                ("cancellation_reason", models.CharField(blank=True, max_length=255)),
                ("is_verified", models.BooleanField(default=False)),
                ("needed_by", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(default=blood.models.default_expiry)),
                ("fulfilled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "hospital",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="emergency_requests",
                        to="hospitals.hospital",
                    ),
                ),
                (
                    "requester",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="emergency_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "emergency_requests",
                "ordering": ["-priority_score", "-created_at"],
                "indexes": [
                    models.Index(fields=["status", "-priority_score", "-created_at"], name="emreq_status_priority_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("units_needed__gte", 1), ("units_needed__lte", 10)),
                        name="emreq_units_needed_range",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("fulfilled_units__lte", models.F("units_needed"))),
                        name="emreq_fulfilled_within_needed",
                    ),
                ],
            },
        ),
    ]
