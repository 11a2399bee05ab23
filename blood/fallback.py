"""
In-memory sample data served when the live database is unreachable or empty.

Nothing here is persisted: every write in fallback mode changes this
process's list and is gone after a restart.
"""
import threading
from datetime import timedelta

from django.utils import timezone

from .transform import EmergencyRequestRecord


def _seed(now):
    h = timedelta(hours=1)
    return [
        EmergencyRequestRecord(
            id="mock-req-1",
            requester_id="user-1",
            requester_name="Ram Prasad",
            requester_email="ram@example.com",
            patient_name="Sita Devi",
            patient_age=45,
            patient_gender="female",
            blood_type="O-",
            units_needed=3,
            blood_component="whole_blood",
            urgency="critical",
            priority_score=75,
            hospital_id=None,
            hospital_name="Bir Hospital",
            hospital_address="Mahaboudha, Kathmandu",
            latitude=27.7051,
            longitude=85.3153,
            contact_name="Ram Prasad",
            contact_phone="+977-980-1234567",
            contact_relation="Husband",
            status="matching",
            matched_donors_count=2,
            fulfilled_units=0,
            cancellation_reason="",
            is_verified=True,
            needed_by=now + 12 * h,
            expires_at=now + 48 * h,
            fulfilled_at=None,
            created_at=now - 2 * h,
            updated_at=now,
        ),
        EmergencyRequestRecord(
            id="mock-req-2",
            requester_id="user-2",
            requester_name="Hari Sharma",
            requester_email="hari@example.com",
            patient_name="Gita Sharma",
            patient_age=32,
            patient_gender="female",
            blood_type="A+",
            units_needed=2,
            blood_component="whole_blood",
            urgency="urgent",
            priority_score=50,
            hospital_id=None,
            hospital_name="Grande Hospital",
            hospital_address="Dhapasi, Kathmandu",
            latitude=27.7469,
            longitude=85.3244,
            contact_name="Hari Sharma",
            contact_phone="+977-980-2345678",
            contact_relation="Father",
            status="pending",
            matched_donors_count=0,
            fulfilled_units=0,
            cancellation_reason="",
            is_verified=False,
            needed_by=now + 24 * h,
            expires_at=now + 72 * h,
            fulfilled_at=None,
            created_at=now - h / 2,
            updated_at=now,
        ),
        EmergencyRequestRecord(
            id="mock-req-3",
            requester_id="user-3",
            requester_name="Shyam Thapa",
            requester_email="shyam@example.com",
            patient_name="Krishna Thapa",
            patient_age=58,
            patient_gender="male",
            blood_type="B+",
            units_needed=4,
            blood_component="platelets",
            urgency="life_threatening",
            priority_score=100,
            hospital_id=None,
            hospital_name="Norvic Hospital",
            hospital_address="Thapathali, Kathmandu",
            latitude=27.6947,
            longitude=85.3209,
            contact_name="Shyam Thapa",
            contact_phone="+977-980-3456789",
            contact_relation="Son",
            status="donors_found",
            matched_donors_count=5,
            fulfilled_units=2,
            cancellation_reason="",
            is_verified=True,
            needed_by=now + 6 * h,
            expires_at=now + 24 * h,
            fulfilled_at=None,
            created_at=now - 4 * h,
            updated_at=now,
        ),
        EmergencyRequestRecord(
            id="mock-req-4",
            requester_id="user-4",
            requester_name="Maya Gurung",
            requester_email="maya@example.com",
            patient_name="Bishnu Gurung",
            patient_age=8,
            patient_gender="male",
            blood_type="AB+",
            units_needed=2,
            blood_component="plasma",
            urgency="normal",
            priority_score=25,
            hospital_id=None,
            hospital_name="Kanti Children's Hospital",
            hospital_address="Maharajgunj, Kathmandu",
            latitude=27.7339,
            longitude=85.3306,
            contact_name="Maya Gurung",
            contact_phone="+977-980-4567890",
            contact_relation="Mother",
            status="partially_fulfilled",
            matched_donors_count=1,
            fulfilled_units=1,
            cancellation_reason="",
            is_verified=False,
            needed_by=None,
            expires_at=now + 60 * h,
            fulfilled_at=None,
            created_at=now - 6 * h,
            updated_at=now,
        ),
        EmergencyRequestRecord(
            id="mock-req-5",
            requester_id="user-1",
            requester_name="Ram Prasad",
            requester_email="ram@example.com",
            patient_name="Laxmi Prasad",
            patient_age=70,
            patient_gender="female",
            blood_type="O+",
            units_needed=2,
            blood_component="red_cells",
            urgency="urgent",
            priority_score=50,
            hospital_id=None,
            hospital_name="Patan Hospital",
            hospital_address="Lagankhel, Lalitpur",
            latitude=27.6681,
            longitude=85.3206,
            contact_name="Ram Prasad",
            contact_phone="+977-980-1234567",
            contact_relation="Son",
            status="fulfilled",
            matched_donors_count=3,
            fulfilled_units=2,
            cancellation_reason="",
            is_verified=True,
            needed_by=None,
            expires_at=now + 12 * h,
            fulfilled_at=now - 3 * h,
            created_at=now - 30 * h,
            updated_at=now - 3 * h,
        ),
        EmergencyRequestRecord(
            id="mock-req-6",
            requester_id="user-5",
            requester_name=None,
            requester_email=None,
            patient_name="Anonymous patient",
            patient_age=None,
            patient_gender=None,
            blood_type="O-",
            units_needed=1,
            blood_component="whole_blood",
            urgency="critical",
            priority_score=75,
            hospital_id=None,
            hospital_name="Bhaktapur Hospital",
            hospital_address="Dudhpati, Bhaktapur",
            latitude=27.6722,
            longitude=85.4203,
            contact_name="Sunita Shrestha",
            contact_phone="+977-980-5678901",
            contact_relation="Neighbour",
            status="cancelled",
            matched_donors_count=0,
            fulfilled_units=0,
            cancellation_reason="Arranged through the hospital blood bank",
            is_verified=False,
            needed_by=None,
            expires_at=now + 20 * h,
            fulfilled_at=None,
            created_at=now - 10 * h,
            updated_at=now - 9 * h,
        ),
    ]


def _sort_key(record):
    return (-record.priority_score, -record.created_at.timestamp())


class FallbackStore:
    def __init__(self, records=None):
        self._lock = threading.Lock()
        self._records = list(records) if records is not None else _seed(timezone.now())

    def __len__(self):
        return len(self._records)

    def all(self):
        with self._lock:
            return list(self._records)

    def query(self, filters):
        with self._lock:
            rows = [r for r in self._records if filters.matches(r)]
        rows.sort(key=_sort_key)
        return rows[:filters.limit]

    def get(self, request_id):
        with self._lock:
            for r in self._records:
                if r.id == request_id:
                    return r
        return None

    def add(self, record):
        with self._lock:
            self._records.insert(0, record)
        return record

    def replace(self, record):
        with self._lock:
            for i, r in enumerate(self._records):
                if r.id == record.id:
                    self._records[i] = record
                    return record
        return None


_default = None
_default_lock = threading.Lock()


def default_store() -> FallbackStore:
    """Process-wide store shared by every repository that isn't given one."""
    global _default
    with _default_lock:
        if _default is None:
            _default = FallbackStore()
        return _default


def reset_default_store():
    global _default
    with _default_lock:
        _default = None
