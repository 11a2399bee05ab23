"""
Translation between backend rows, client records and the camelCase wire shape.

Backend rows come from ``EmergencyRequest.objects.values(*ROW_FIELDS)`` and are
snake_case with the requester join flattened to ``requester__full_name`` /
``requester__email``. Everything above the repository works on
``EmergencyRequestRecord``; everything leaving the process (JSON endpoints,
websocket pushes) goes through ``record_to_json``.
"""
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from .models import effective_status

ROW_FIELDS = (
    "id",
    "requester_id",
    "requester__full_name",
    "requester__email",
    "patient_name",
    "patient_age",
    "patient_gender",
    "blood_type",
    "units_needed",
    "blood_component",
    "urgency",
    "priority_score",
    "hospital_id",
    "hospital_name",
    "hospital_address",
    "latitude",
    "longitude",
    "contact_name",
    "contact_phone",
    "contact_relation",
    "status",
    "matched_donors_count",
    "fulfilled_units",
    "cancellation_reason",
    "is_verified",
    "needed_by",
    "expires_at",
    "fulfilled_at",
    "created_at",
    "updated_at",
)


@dataclass(frozen=True)
class EmergencyRequestRecord:
    id: str
    requester_id: Optional[str]
    requester_name: Optional[str]
    requester_email: Optional[str]

    patient_name: str
    patient_age: Optional[int]
    patient_gender: Optional[str]
    blood_type: str
    units_needed: int
    blood_component: str

    urgency: str
    priority_score: int

    hospital_id: Optional[str]
    hospital_name: str
    hospital_address: str
    latitude: Optional[float]
    longitude: Optional[float]

    contact_name: str
    contact_phone: str
    contact_relation: str

    status: str
    matched_donors_count: int
    fulfilled_units: int
    cancellation_reason: str
    is_verified: bool

    needed_by: Optional[datetime]
    expires_at: datetime
    fulfilled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @property
    def current_status(self) -> str:
        return effective_status(self.status, self.expires_at)

    @property
    def is_hospital_sourced(self) -> bool:
        return self.hospital_id is not None


def _str_or_none(value):
    return None if value is None else str(value)


def transform_row(row: dict) -> EmergencyRequestRecord:
    """
    Total mapping from a backend row to a record. No validation here;
    absent join columns and nullable fields come out as None.
    """
    return EmergencyRequestRecord(
        id=str(row["id"]),
        requester_id=_str_or_none(row.get("requester_id")),
        requester_name=row.get("requester__full_name") or None,
        requester_email=row.get("requester__email") or None,
        patient_name=row.get("patient_name") or "",
        patient_age=row.get("patient_age"),
        patient_gender=row.get("patient_gender") or None,
        blood_type=row.get("blood_type") or "",
        units_needed=row.get("units_needed") or 0,
        blood_component=row.get("blood_component") or "whole_blood",
        urgency=row.get("urgency") or "normal",
        priority_score=row.get("priority_score") or 0,
        hospital_id=_str_or_none(row.get("hospital_id")),
        hospital_name=row.get("hospital_name") or "",
        hospital_address=row.get("hospital_address") or "",
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        contact_name=row.get("contact_name") or "",
        contact_phone=row.get("contact_phone") or "",
        contact_relation=row.get("contact_relation") or "",
        status=row.get("status") or "pending",
        matched_donors_count=row.get("matched_donors_count") or 0,
        fulfilled_units=row.get("fulfilled_units") or 0,
        cancellation_reason=row.get("cancellation_reason") or "",
        is_verified=bool(row.get("is_verified")),
        needed_by=row.get("needed_by"),
        expires_at=row.get("expires_at"),
        fulfilled_at=row.get("fulfilled_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


# ---------- wire (camelCase) ----------
def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _wire_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def record_to_json(record: EmergencyRequestRecord) -> dict:
    data = {to_camel(k): _wire_value(v) for k, v in asdict(record).items()}
    # what readers should display; the stored status stays in "status"
    data["currentStatus"] = record.current_status
    return data


def payload_to_input(payload: dict) -> dict:
    """camelCase client payload -> snake_case repository input."""
    return {to_snake(key): value for key, value in (payload or {}).items()}
