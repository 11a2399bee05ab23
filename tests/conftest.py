from datetime import timedelta

import pytest
from django.utils import timezone

from blood.fallback import FallbackStore, reset_default_store
from blood.models import EmergencyRequest


@pytest.fixture(autouse=True)
def _fast_backend(settings):
    settings.JIWANDAN_FETCH_RETRIES = 0
    settings.JIWANDAN_FETCH_BACKOFF_SECONDS = 0
    settings.CHANNEL_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}


@pytest.fixture(autouse=True)
def _fresh_default_store():
    reset_default_store()
    yield
    reset_default_store()


@pytest.fixture
def store():
    return FallbackStore()


@pytest.fixture
def requester(django_user_model):
    return django_user_model.objects.create_user(
        username="ram",
        password="pw-ram-123",
        email="ram@example.com",
        full_name="Ram Prasad",
    )


@pytest.fixture
def volunteer(django_user_model):
    return django_user_model.objects.create_user(
        username="volunteer",
        password="pw-vol-123",
        email="vol@example.com",
        role="VOLUNTEER",
    )


@pytest.fixture
def request_input():
    return {
        "patient_name": "Sita Devi",
        "patient_age": 45,
        "patient_gender": "female",
        "blood_type": "O-",
        "units_needed": 3,
        "urgency": "critical",
        "hospital_name": "Bir Hospital",
        "hospital_address": "Mahaboudha, Kathmandu",
        "contact_name": "Ram Prasad",
        "contact_phone": "+977-980-1234567",
        "contact_relation": "Husband",
    }


@pytest.fixture
def make_request(request_input):
    def _make(**overrides):
        data = {k: v for k, v in request_input.items()}
        data.setdefault("expires_at", timezone.now() + timedelta(hours=48))
        data.update(overrides)
        return EmergencyRequest.objects.create(**data)
    return _make
