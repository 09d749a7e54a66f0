# pytest services/emergency/tests/test_emergency_api.py -q
# pytest services/emergency/tests/test_emergency_api.py -k test_trigger_completes_and_notifies_contacts -q

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from common import storage
from libs.supabase_client import SupabaseConfigError
from models.emergency import EmergencyRecord
from models.user_models import UserProfile
from services.emergency.cloud import CloudService
from services.emergency.main import _optional_storage, app, get_cloud_service, get_notifier
from services.emergency.notifier import Notifier, SmsChannel, SmsDeliveryError
from services.user_management.settings_store import AppSettings, EmergencyContact, user_settings_key

USER_ID = "user-1"


class FakeSmsChannel(SmsChannel):
    def __init__(self):
        self.sent = []
        self.failing_phones = set()

    async def send(self, to_phone, message):
        if to_phone in self.failing_phones:
            raise SmsDeliveryError("carrier rejected")
        self.sent.append((to_phone, message))
        return f"SM{len(self.sent)}"


def _seed_settings(user_id=USER_ID, **fields):
    contacts = [
        EmergencyContact(id="c1", name="Mom", phone="+15550000001", relationship="Mother"),
        EmergencyContact(id="c2", name="Sam", phone="+15550000002", relationship="Friend"),
    ]
    settings = AppSettings(emergency_contacts=contacts, **fields)
    storage.device_storage[user_settings_key(user_id)] = settings.to_blob()


@pytest.fixture()
def sms():
    return FakeSmsChannel()


@pytest.fixture()
def client(fake_db, object_storage, sms, jwt_secret):
    fake_db.rows[(UserProfile, USER_ID)] = UserProfile(
        user_id=USER_ID, full_name="Jane Doe", phone_number="5551234567"
    )
    app.dependency_overrides[get_cloud_service] = lambda: CloudService(fake_db, storage=object_storage)
    app.dependency_overrides[get_notifier] = lambda: Notifier(sms)
    yield TestClient(app)
    app.dependency_overrides.clear()


# ----------------------------
# Auth
# ----------------------------
def test_trigger_requires_bearer_token(client):
    r = client.post("/v1/emergency/trigger", json={})
    assert r.status_code in (401, 403)


def test_expired_token_is_rejected(client, auth_headers):
    r = client.get("/v1/emergency/status", headers=auth_headers(USER_ID, expires_in=-60))
    assert r.status_code == 401
    assert r.json()["detail"] == "Token expired"


def test_wrong_audience_is_rejected(client, auth_headers):
    r = client.get("/v1/emergency/status", headers=auth_headers(USER_ID, audience="anon"))
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid audience"


# ----------------------------
# Trigger / status / cancel
# ----------------------------
def test_status_is_idle_before_any_trigger(client, auth_headers):
    r = client.get("/v1/emergency/status", headers=auth_headers(USER_ID))

    assert r.status_code == 200
    assert r.json() == {
        "state": "idle",
        "progress": 0,
        "is_active": False,
        "event": None,
        "error": None,
        "alert": None,
    }


def test_trigger_completes_and_notifies_contacts(client, auth_headers, fake_db, sms):
    _seed_settings()

    r = client.post(
        "/v1/emergency/trigger",
        json={"location": {"latitude": 53.3498, "longitude": -6.2603}},
        headers=auth_headers(USER_ID),
    )

    assert r.status_code == 200
    body = r.json()
    assert body["accepted"] is True
    assert body["state"] == "completed"
    assert body["progress"] == 100
    assert body["event"]["status"] == "completed"
    assert body["event"]["contacts_notified"] == ["c1", "c2"]

    (record,) = fake_db.all(EmergencyRecord)
    assert record.id == body["event"]["id"]
    assert record.status == "completed"
    assert record.user_name == "Jane Doe"
    assert record.location == {"latitude": 53.3498, "longitude": -6.2603}
    assert all(c["notified"] for c in record.emergency_contacts)

    assert [to for to, _ in sms.sent] == ["+15550000001", "+15550000002"]
    assert "Jane Doe may need immediate assistance." in sms.sent[0][1]
    assert "https://maps.google.com/?q=53.3498,-6.2603" in sms.sent[0][1]


def test_second_trigger_while_active_is_ignored(client, auth_headers, fake_db):
    _seed_settings()
    headers = auth_headers(USER_ID)

    client.post("/v1/emergency/trigger", json={}, headers=headers)
    r = client.post("/v1/emergency/trigger", json={}, headers=headers)

    assert r.status_code == 200
    assert r.json()["accepted"] is False
    assert len(fake_db.all(EmergencyRecord)) == 1


def test_location_services_off_skips_location(client, auth_headers, fake_db):
    _seed_settings(location_services=False)

    client.post(
        "/v1/emergency/trigger",
        json={"location": {"latitude": 1.0, "longitude": 2.0}},
        headers=auth_headers(USER_ID),
    )

    (record,) = fake_db.all(EmergencyRecord)
    assert record.location is None


def test_trigger_without_location_still_completes(client, auth_headers, sms):
    _seed_settings()

    r = client.post("/v1/emergency/trigger", headers=auth_headers(USER_ID))

    assert r.json()["state"] == "completed"
    assert "Location: Location unavailable" in sms.sent[0][1]


def test_partial_sms_failure_is_recorded_per_contact(client, auth_headers, fake_db, sms):
    _seed_settings()
    sms.failing_phones.add("+15550000002")

    r = client.post("/v1/emergency/trigger", json={}, headers=auth_headers(USER_ID))

    assert r.json()["state"] == "completed"
    (record,) = fake_db.all(EmergencyRecord)
    assert [c["notified"] for c in record.emergency_contacts] == [True, False]


def test_database_failure_surfaces_alert(client, auth_headers, fake_db):
    _seed_settings()
    fake_db.commit_raises = OperationalError("INSERT", {}, Exception("db down"))

    r = client.post("/v1/emergency/trigger", json={}, headers=auth_headers(USER_ID))

    body = r.json()
    assert body["state"] == "failed"
    assert body["is_active"] is False
    assert body["alert"]["title"] == "Emergency Error"
    assert body["error"] == "Failed to create emergency record"
    assert fake_db.all(EmergencyRecord) == []


def test_cancel_after_completion_then_nothing_to_cancel(client, auth_headers):
    _seed_settings()
    headers = auth_headers(USER_ID)
    client.post("/v1/emergency/trigger", json={}, headers=headers)

    r = client.post("/v1/emergency/cancel", headers=headers)
    assert r.status_code == 200
    assert r.json()["state"] == "idle"

    r = client.post("/v1/emergency/cancel", headers=headers)
    assert r.status_code == 409


def test_status_reflects_last_trigger(client, auth_headers):
    _seed_settings()
    headers = auth_headers(USER_ID)
    client.post("/v1/emergency/trigger", json={}, headers=headers)

    r = client.get("/v1/emergency/status", headers=headers)

    assert r.json()["state"] == "completed"
    assert r.json()["is_active"] is True


def test_sequencers_are_per_user(client, auth_headers):
    _seed_settings()
    client.post("/v1/emergency/trigger", json={}, headers=auth_headers(USER_ID))

    r = client.get("/v1/emergency/status", headers=auth_headers("someone-else"))

    assert r.json()["state"] == "idle"


# ----------------------------
# Recording upload
# ----------------------------
def test_upload_recording_attaches_url(client, auth_headers, fake_db, object_storage):
    _seed_settings()
    headers = auth_headers(USER_ID)
    record_id = client.post("/v1/emergency/trigger", json={}, headers=headers).json()["event"]["id"]

    r = client.post(
        f"/v1/emergency/{record_id}/recording",
        content=b"\x00\x00\x00\x18ftypmp42",
        headers={**headers, "Content-Type": "video/mp4"},
    )

    assert r.status_code == 200
    file_url = r.json()["file_url"]
    assert file_url.startswith("https://project.supabase.co/storage/v1/object/public/recordings/user-1/")
    assert object_storage.uploads[0]["data"] == b"\x00\x00\x00\x18ftypmp42"
    assert fake_db.all(EmergencyRecord)[0].file_url == file_url

    status = client.get("/v1/emergency/status", headers=headers).json()
    assert status["event"]["media_files"] == [file_url]


def test_upload_to_someone_elses_record_is_not_found(client, auth_headers, fake_db):
    fake_db.rows[(EmergencyRecord, "rec-x")] = EmergencyRecord(
        id="rec-x", user_id="other-user", timestamp=datetime.now(timezone.utc), status="active"
    )

    r = client.post(
        "/v1/emergency/rec-x/recording",
        content=b"data",
        headers={**auth_headers(USER_ID), "Content-Type": "video/mp4"},
    )

    assert r.status_code == 404


def test_upload_rejects_empty_and_wrong_type(client, auth_headers):
    headers = auth_headers(USER_ID)

    r = client.post("/v1/emergency/r1/recording", content=b"", headers={**headers, "Content-Type": "video/mp4"})
    assert r.status_code == 400

    r = client.post("/v1/emergency/r1/recording", content=b"x", headers={**headers, "Content-Type": "image/png"})
    assert r.status_code == 415


# ----------------------------
# History
# ----------------------------
def test_records_are_listed_newest_first(client, auth_headers, fake_db):
    _seed_settings()
    headers = auth_headers(USER_ID)
    client.post("/v1/emergency/trigger", json={}, headers=headers)

    r = client.get("/v1/emergency/records", headers=headers)

    assert r.status_code == 200
    body = r.json()
    assert body["user_id"] == USER_ID
    assert len(body["records"]) == 1
    assert body["records"][0]["status"] == "completed"
    assert body["records"][0]["emergency_contacts"][0]["name"] == "Mom"


def test_metrics_count_triggers(client, auth_headers):
    _seed_settings()
    client.post("/v1/emergency/trigger", json={}, headers=auth_headers(USER_ID))

    r = client.get("/metrics")

    assert r.status_code == 200
    assert 'emergency_triggers_total{outcome="completed"}' in r.text


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "service": "emergency"}


# ----------------------------
# Storage wiring
# ----------------------------
def test_storage_is_scoped_to_the_caller_token(mocker):
    built = mocker.patch("services.emergency.main.SupabaseStorage")

    assert _optional_storage("user-token") is built.return_value
    assert built.call_args.kwargs["access_token"] == "user-token"


def test_missing_storage_configuration_disables_uploads(mocker, caplog):
    mocker.patch(
        "services.emergency.main.SupabaseStorage",
        side_effect=SupabaseConfigError("Missing Supabase configuration"),
    )

    assert _optional_storage("user-token") is None
    assert "Object storage unavailable" in caplog.text
