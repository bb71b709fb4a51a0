from flask import Blueprint, request, jsonify, current_app, send_file
from markupsafe import escape
from io import BytesIO
import hmac
from . import db
from .errors import ValidationError, NotFoundError, StoreError
from .lifecycle import LifecycleEngine
from .store import SqlRecordStore
from .sweep import Sweep
from .qr_utils import make_qr_data_url, make_qr_png

api = Blueprint("api", __name__)

def get_store():
    return SqlRecordStore(db.session)

def get_engine():
    cfg = current_app.config
    return LifecycleEngine(
        expiry_mode=cfg["QR_EXPIRY_MODE"],
        expire_hours=cfg["QR_EXPIRE_HOURS"],
        flag_threshold_hours=cfg["QR_FLAG_THRESHOLD_HOURS"],
    )

def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

def scan_url_for(qr_id):
    base = (current_app.config.get("BASE_URL") or request.host_url).rstrip("/")
    return f"{base}/api/scan?qr_id={qr_id}"

def record_json(record, engine, with_scans=False):
    data = record.to_dict(with_scans=with_scans)
    data["status"] = engine.status_of(record).value
    return data

def server_error(what, e):
    current_app.logger.error("%s error: %s", what, e)
    return jsonify({"success": False, "error": "server error"}), 500

@api.post("/qrs")
def create_qr():
    data = json_body()
    engine = get_engine()
    attributes = data.get("attributes", data.get("extra_fields"))
    try:
        record = engine.create(
            data.get("subject_name") or data.get("company_name"),
            attributes,
            expire_duration_hours=data.get("expire_hours"),
            flag_threshold_hours=data.get("flag_threshold_hours"),
            expiry_mode=data.get("expiry_mode"),
        )
        get_store().put(record)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except StoreError as e:
        return server_error("create qr", e)

    scan_url = scan_url_for(record.id)
    resp = {"success": True}
    resp.update(record_json(record, engine))
    resp["scan_url"] = scan_url
    resp["data_url"] = make_qr_data_url(scan_url)
    return jsonify(resp), 201

@api.get("/qrs")
def list_qrs():
    limit = request.args.get("limit", type=int)
    engine = get_engine()
    try:
        records = get_store().get_all(limit=limit)
    except StoreError as e:
        return server_error("list qrs", e)
    return jsonify({"success": True, "rows": [record_json(r, engine) for r in records]})

@api.get("/qrs/<qr_id>")
def get_qr(qr_id):
    engine = get_engine()
    try:
        record = get_store().get_by_id(qr_id)
    except NotFoundError:
        return jsonify({"success": False, "error": "QR not found"}), 404
    except StoreError as e:
        return server_error("get qr", e)
    resp = {"success": True}
    resp.update(record_json(record, engine, with_scans=True))
    resp["scan_url"] = scan_url_for(record.id)
    return jsonify(resp)

@api.get("/qrs/<qr_id>/qr.png")
def qr_image(qr_id):
    try:
        get_store().get_by_id(qr_id)
    except NotFoundError:
        return jsonify({"success": False, "error": "QR not found"}), 404
    except StoreError as e:
        return server_error("qr image", e)
    png = make_qr_png(scan_url_for(qr_id))
    return send_file(
        BytesIO(png),
        mimetype="image/png",
        as_attachment=request.args.get("download") == "1",
        download_name=f"qr_{qr_id}.png",
    )

@api.route("/scan", methods=["GET", "POST"])
def scan():
    body = json_body()
    accept = request.headers.get("Accept") or ""
    want_json = request.args.get("json") == "1" or "application/json" in accept
    qr_id = (request.args.get("qr_id") or body.get("qr_id") or "").strip()

    def reply(payload, html, status=200):
        if want_json:
            return jsonify(payload), status
        return html, status

    if not qr_id:
        return reply({"success": False, "error": "qr_id required"}, "<h2>No qr_id provided</h2>", 400)

    store = get_store()
    engine = get_engine()
    try:
        # ?list=1 shows the history without recording a scan
        if request.method == "GET" and request.args.get("list") == "1":
            record = store.get_by_id(qr_id)
            return jsonify({"success": True, "scans": [s.to_dict() for s in reversed(record.scans)]})

        user_agent = request.headers.get("User-Agent") or body.get("user_agent") or ""
        source = request.headers.get("X-Forwarded-For") or request.remote_addr or body.get("source_address") or ""
        record, outcome = engine.scan(store, qr_id, user_agent=user_agent, source_address=source)
    except NotFoundError:
        return reply({"success": False, "error": "QR not found"}, "<h2>QR not found</h2>", 404)
    except StoreError as e:
        current_app.logger.error("scan error: %s", e)
        return reply({"success": False, "error": "server error"}, "<h2>Server error</h2>", 500)

    if outcome.expired:
        resp = {"success": False, "message": "QR expired"}
        resp.update(outcome.to_dict())
        return reply(resp, "<h2>QR expired</h2>")

    last = record.scans[-1]
    resp = {"success": True, "scan": last.to_dict(), "status": engine.status_of(record).value}
    resp.update(outcome.to_dict())
    html = f"<h2>Scan recorded for {escape(record.subject_name)}</h2><p>Time: {last.time.isoformat()}</p>"
    return reply(resp, html)

@api.post("/run-check")
def run_check():
    secret = current_app.config.get("JOB_SECRET") or ""
    given = request.headers.get("X-Job-Secret") or ""
    if not secret or not hmac.compare_digest(given.encode(), secret.encode()):
        return jsonify({"success": False, "error": "unauthorized"}), 401

    try:
        result = Sweep(get_store(), get_engine()).run()
    except StoreError as e:
        return server_error("run-check", e)
    if result.errors:
        current_app.logger.error("run-check: %d records could not be flagged", len(result.errors))
    return jsonify(result.to_dict())
