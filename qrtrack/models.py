from . import db
from sqlalchemy import func


class QRCode(db.Model):
    __tablename__ = "qr_codes"
    id = db.Column(db.String(32), primary_key=True)
    subject_name = db.Column(db.String(255), nullable=False)
    attributes = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=func.now(), index=True)
    expiry_mode = db.Column(db.String(16), nullable=False, default="fixed")
    expire_duration_hours = db.Column(db.Float, nullable=False, default=12)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)  # null until first scan in deferred mode
    flag_threshold_hours = db.Column(db.Float, nullable=True)
    flagged = db.Column(db.Boolean, nullable=False, default=False, index=True)

    scans = db.relationship(
        "Scan", backref="qr", lazy="selectin", order_by="Scan.id", cascade="all, delete-orphan"
    )


class Scan(db.Model):
    __tablename__ = "qr_scans"
    id = db.Column(db.Integer, primary_key=True)
    qr_id = db.Column(db.String(32), db.ForeignKey("qr_codes.id"), nullable=False, index=True)
    time = db.Column(db.DateTime(timezone=True), nullable=False)
    user_agent = db.Column(db.String(512), default="")
    source_address = db.Column(db.String(255), default="")
