# pytest libs/tests/test_service_index.py -q

from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def test_index_lists_every_service():
    r = client.get("/services")

    assert r.status_code == 200
    assert r.json() == {
        "services": {
            "user_management": "http://127.0.0.1:20000/docs",
            "sms_relay": "http://127.0.0.1:20001/docs",
            "emergency": "http://127.0.0.1:20006/docs",
        }
    }


def test_index_has_no_metrics_endpoint():
    assert client.get("/metrics").status_code == 404
    assert client.get("/health").json() == {"status": "ok", "service": "service_index"}
