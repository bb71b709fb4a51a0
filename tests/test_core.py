import pytest
from datetime import datetime, timedelta, timezone
from qrtrack import db
from qrtrack.models import QRCode

SECRET = {"X-Job-Secret": "s3cret"}

def create(client, **body):
    body.setdefault("company_name", "Acme")
    r = client.post("/api/qrs", json=body)
    assert r.status_code == 201, r.json
    return r.json

def scan(client, qr_id, **headers):
    return client.get(f"/api/scan?qr_id={qr_id}&json=1", headers=headers)

def shift_row(app, qr_id, **values):
    with app.app_context():
        row = db.session.get(QRCode, qr_id)
        for k, v in values.items():
            setattr(row, k, v)
        db.session.commit()

def test_create_fixed_and_scan(client):
    qr = create(client, extra_fields={"location": "Gate 1"})
    assert qr["status"] == "active" and qr["expiry_mode"] == "fixed"
    assert qr["expires_at"] is not None
    assert qr["attributes"] == {"location": "Gate 1"}
    assert qr["scan_url"].endswith(f"/api/scan?qr_id={qr['qr_id']}")
    assert qr["data_url"].startswith("data:image/png;base64,")

    r = scan(client, qr["qr_id"], **{"User-Agent": "pytest-agent"})
    assert r.status_code == 200 and r.json["success"]
    assert r.json["scan_count"] == 1 and r.json["first_scan_started"] is False
    assert r.json["scan"]["user_agent"] == "pytest-agent"
    assert r.json["expires_at"] == qr["expires_at"]

def test_create_requires_subject(client):
    r = client.post("/api/qrs", json={"attributes": {"location": "x"}})
    assert r.status_code == 400 and r.json["error"] == "subject_name required"
    r = client.post("/api/qrs", json={"subject_name": "Acme", "attributes": ["not", "a", "map"]})
    assert r.status_code == 400

def test_deferred_countdown_starts_on_first_scan(client):
    qr = create(client, subject_name="Deferred Co", expiry_mode="deferred", expire_hours=1)
    assert qr["expires_at"] is None
    first = scan(client, qr["qr_id"]).json
    assert first["first_scan_started"] is True and first["expires_at"] is not None
    second = scan(client, qr["qr_id"]).json
    assert second["first_scan_started"] is False
    assert second["expires_at"] == first["expires_at"] and second["scan_count"] == 2

    r = client.get(f"/api/qrs/{qr['qr_id']}")
    assert r.json["scan_count"] == 2 and len(r.json["scans"]) == 2

def test_scan_missing_or_unknown(client):
    r = client.get("/api/scan?json=1")
    assert r.status_code == 400
    r = client.get("/api/scan?qr_id=nope")
    assert r.status_code == 404 and b"QR not found" in r.data
    r = client.get("/api/qrs/nope")
    assert r.status_code == 404

def test_scan_html_response(client):
    qr = create(client, company_name="Tom & Jerry Ltd")
    r = client.get(f"/api/scan?qr_id={qr['qr_id']}")
    assert r.status_code == 200
    assert b"Scan recorded for Tom &amp; Jerry Ltd" in r.data

def test_scan_post_body(client):
    qr = create(client)
    r = client.post("/api/scan", json={"qr_id": qr["qr_id"]}, headers={"Accept": "application/json"})
    assert r.status_code == 200 and r.json["scan_count"] == 1

def test_expired_code_rejects_scan(app, client):
    qr = create(client)
    shift_row(app, qr["qr_id"], expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    r = scan(client, qr["qr_id"])
    assert r.status_code == 200
    assert r.json["success"] is False and r.json["message"] == "QR expired"
    assert client.get(f"/api/qrs/{qr['qr_id']}").json["scan_count"] == 0
    assert client.get(f"/api/qrs/{qr['qr_id']}").json["status"] == "expired"

def test_scan_list_newest_first(client):
    qr = create(client)
    scan(client, qr["qr_id"], **{"User-Agent": "first"})
    scan(client, qr["qr_id"], **{"User-Agent": "second"})
    r = client.get(f"/api/scan?qr_id={qr['qr_id']}&list=1")
    assert [s["user_agent"] for s in r.json["scans"]] == ["second", "first"]

def test_list_qrs(client):
    a = create(client, company_name="A")
    b = create(client, company_name="B")
    rows = client.get("/api/qrs").json["rows"]
    assert {r["qr_id"] for r in rows} == {a["qr_id"], b["qr_id"]}
    assert len(client.get("/api/qrs?limit=1").json["rows"]) == 1

def test_qr_image(client):
    qr = create(client)
    r = client.get(f"/api/qrs/{qr['qr_id']}/qr.png")
    assert r.status_code == 200 and r.mimetype == "image/png"
    assert r.data.startswith(b"\x89PNG")
    assert client.get("/api/qrs/nope/qr.png").status_code == 404

@pytest.mark.parametrize("headers", [{}, {"X-Job-Secret": "wrong"}])
def test_run_check_requires_secret(client, headers):
    r = client.post("/api/run-check", headers=headers)
    assert r.status_code == 401

def test_run_check_disabled_without_configured_secret(app, client):
    app.config["JOB_SECRET"] = ""
    assert client.post("/api/run-check", headers={"X-Job-Secret": ""}).status_code == 401

def test_run_check_flags_stale_codes(app, client):
    stale = create(client, company_name="Stale", expire_hours=48)
    fresh = create(client, company_name="Fresh")
    shift_row(app, stale["qr_id"], created_at=datetime.now(timezone.utc) - timedelta(hours=4))

    r = client.post("/api/run-check", headers=SECRET)
    assert r.status_code == 200
    assert r.json == {"success": True, "checked": 2, "flagged": 1, "errors": []}
    assert client.get(f"/api/qrs/{stale['qr_id']}").json["status"] == "flagged"
    assert client.get(f"/api/qrs/{fresh['qr_id']}").json["status"] == "active"

    r = client.post("/api/run-check", headers=SECRET)
    assert r.json["checked"] == 1 and r.json["flagged"] == 0

def test_healthz(client):
    assert client.get("/healthz").json == {"ok": True}

@pytest.mark.parametrize("mode", ["fixed", "deferred"])
def test_create_rejects_out_of_range_hours(client, mode):
    r = client.post("/api/qrs", json={"company_name": "Huge", "expiry_mode": mode, "expire_hours": 1e8})
    assert r.status_code == 400 and "expire_duration_hours" in r.json["error"]
    r = client.post("/api/qrs", json={"company_name": "Huge", "expiry_mode": mode, "flag_threshold_hours": 1e11})
    assert r.status_code == 400
    assert client.get("/api/qrs").json["rows"] == []

def test_json_keys_keep_insertion_order(client):
    qr = create(client)
    r = client.get(f"/api/qrs/{qr['qr_id']}")
    assert list(r.json)[:3] == ["success", "qr_id", "subject_name"]
