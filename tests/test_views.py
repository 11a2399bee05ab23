import json

import pytest
from django.urls import reverse

pytestmark = pytest.mark.django_db


@pytest.fixture
def payload():
    return {
        "patientName": "Sita Devi",
        "bloodType": "O-",
        "unitsNeeded": 3,
        "urgency": "critical",
        "hospitalName": "Bir Hospital",
        "hospitalAddress": "Mahaboudha, Kathmandu",
        "contactName": "Ram Prasad",
        "contactPhone": "+977-980-1234567",
        "contactRelation": "Husband",
    }


def post_json(client, url, data):
    return client.post(url, data=json.dumps(data), content_type="application/json")


def test_feed_falls_back_to_sample_data_on_empty_database(client):
    resp = client.get(reverse("emergency_request_list"))
    body = resp.json()

    assert resp.status_code == 200
    assert body["mode"] == "fallback"
    assert body["error"] is None
    assert [r["id"] for r in body["requests"]] == ["mock-req-3", "mock-req-1", "mock-req-2", "mock-req-4"]
    assert body["requests"][0]["priorityScore"] == 100
    assert body["userRequests"] == []


def test_feed_filters_from_query_string(client):
    resp = client.get(reverse("emergency_request_list"), {"status": ["pending", "matching"], "blood_type": "O-"})
    assert [r["id"] for r in resp.json()["requests"]] == ["mock-req-1"]


def test_create_requires_sign_in(client, payload):
    resp = post_json(client, reverse("emergency_request_create"), payload)
    assert resp.status_code == 401


def test_create_stores_live_request(client, requester, payload):
    client.force_login(requester)
    resp = post_json(client, reverse("emergency_request_create"), payload)
    body = resp.json()

    assert resp.status_code == 201
    assert body["mode"] == "live"
    assert body["request"]["patientName"] == "Sita Devi"
    assert body["request"]["priorityScore"] == 75
    assert body["request"]["requesterId"] == str(requester.pk)

    feed = client.get(reverse("emergency_request_list")).json()
    assert feed["mode"] == "live"
    assert feed["userRequests"] == [body["request"]["id"]]


def test_create_reports_field_errors(client, requester, payload):
    client.force_login(requester)
    payload["unitsNeeded"] = 0
    resp = post_json(client, reverse("emergency_request_create"), payload)

    assert resp.status_code == 400
    assert "units_needed" in resp.json()["errors"]


def test_invalid_json_body(client, requester):
    client.force_login(requester)
    resp = client.post(reverse("emergency_request_create"), data="{not json", content_type="application/json")
    assert resp.status_code == 400


def test_only_staff_record_fulfilment(client, requester, volunteer, make_request):
    obj = make_request(requester=requester)
    url = reverse("emergency_request_fulfill", args=[obj.pk])

    client.force_login(requester)
    assert post_json(client, url, {"units": 1}).status_code == 403

    client.force_login(volunteer)
    resp = post_json(client, url, {"units": 1})
    assert resp.status_code == 200
    assert resp.json()["request"]["fulfilledUnits"] == 1
    assert resp.json()["request"]["status"] == "partially_fulfilled"


def test_requester_cancels_then_fulfilment_conflicts(client, requester, volunteer, make_request):
    obj = make_request(requester=requester)

    client.force_login(requester)
    resp = post_json(client, reverse("emergency_request_cancel", args=[obj.pk]), {"reason": "Found a donor"})
    assert resp.status_code == 200
    assert resp.json()["request"]["currentStatus"] == "cancelled"

    client.force_login(volunteer)
    resp = post_json(client, reverse("emergency_request_fulfill", args=[obj.pk]), {"units": 1})
    assert resp.status_code == 409


def test_other_users_cannot_edit(client, django_user_model, requester, make_request):
    obj = make_request(requester=requester)
    stranger = django_user_model.objects.create_user(username="stranger", password="pw-str-123")

    client.force_login(stranger)
    resp = post_json(client, reverse("emergency_request_update", args=[obj.pk]), {"urgency": "normal"})
    assert resp.status_code == 403


def test_update_rejects_blank_required_field(client, requester, make_request):
    obj = make_request(requester=requester)
    client.force_login(requester)

    resp = post_json(client, reverse("emergency_request_update", args=[obj.pk]), {"patientName": ""})
    assert resp.status_code == 400
    assert "patient_name" in resp.json()["errors"]


def test_sample_request_is_fulfilled_in_fallback_store(client, volunteer):
    client.force_login(volunteer)
    resp = post_json(client, reverse("emergency_request_fulfill", args=["mock-req-1"]), {"units": 3})
    body = resp.json()

    assert resp.status_code == 200
    assert body["mode"] == "fallback"
    assert body["request"]["status"] == "fulfilled"


def test_unknown_request_is_404(client, volunteer):
    client.force_login(volunteer)
    resp = post_json(client, reverse("emergency_request_cancel", args=["mock-req-404"]), {})
    assert resp.status_code == 404


def test_matches_lists_compatible_donor_types(client):
    resp = client.get(reverse("emergency_request_matches", args=["mock-req-1"]))
    body = resp.json()

    assert resp.status_code == 200
    assert body["compatibleBloodTypes"] == [{"donorBloodType": "O-", "isExactMatch": True}]
    assert body["donorsCount"] == 0
