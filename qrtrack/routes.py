from flask import Blueprint, jsonify

bp = Blueprint("main", __name__)

# Small health check
@bp.get("/healthz")
def healthz():
    return jsonify({"ok": True})
