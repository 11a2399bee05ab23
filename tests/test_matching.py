from io import StringIO

import pytest
from django.core.management import call_command

from accounts.models import DonorProfile
from blood.matching import compatible_blood_types, find_matching_donors, haversine_km
from blood.models import EmergencyRequest
from blood.transform import transform_row


def test_compatible_types_for_universal_recipient():
    types = compatible_blood_types("AB+")
    assert len(types) == 8
    assert [t["donorBloodType"] for t in types if t["isExactMatch"]] == ["AB+"]


def test_compatible_types_for_universal_donor_type():
    assert compatible_blood_types("O-") == [{"donorBloodType": "O-", "isExactMatch": True}]
    assert compatible_blood_types("Z+") == []


def test_haversine_kathmandu_to_lalitpur():
    assert 3 < haversine_km(27.7051, 85.3153, 27.6681, 85.3206) < 5


@pytest.fixture
def donor(django_user_model):
    def _donor(username, blood_type, lat=None, lon=None, available=True):
        user = django_user_model.objects.create_user(username=username, password="pw-donor-1", is_donor=True)
        return DonorProfile.objects.create(
            user=user, blood_type=blood_type, latitude=lat, longitude=lon, is_available=available,
        )
    return _donor


@pytest.mark.django_db
def test_find_matching_donors_by_type_and_radius(donor):
    near = donor("near", "O-", 27.706, 85.316)
    donor("far", "O-", 28.2, 83.98)
    donor("wrong_type", "A+", 27.706, 85.316)
    donor("away", "O-", 27.706, 85.316, available=False)
    record = transform_row({"id": "r1", "blood_type": "O-", "latitude": 27.7051, "longitude": 85.3153})

    profiles, distances = find_matching_donors(record, radius_km=10)
    assert profiles == [near]
    assert distances[near.user_id] < 1

    everyone, no_distances = find_matching_donors(record)
    assert len(everyone) == 2
    assert no_distances == {}


@pytest.mark.django_db
def test_match_command_moves_requests_to_donors_found(donor, make_request):
    donor("giver", "O+")
    req = make_request(blood_type="A+")
    lonely = make_request(blood_type="AB-")
    out = StringIO()

    call_command("match_emergency_requests", stdout=out, stderr=StringIO())

    req.refresh_from_db()
    lonely.refresh_from_db()
    assert req.status == "donors_found"
    assert req.matched_donors_count == 1
    assert lonely.status == "matching"
    assert "Donors found: 1, still matching: 1" in out.getvalue()


@pytest.mark.django_db
def test_match_command_without_live_requests():
    out = StringIO()
    call_command("match_emergency_requests", stdout=out)
    assert "No open requests" in out.getvalue()
    assert not EmergencyRequest.objects.exists()
