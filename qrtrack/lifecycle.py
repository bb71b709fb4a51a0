"""Lifecycle rules for issued QR codes.

A code is created either with a fixed deadline (``ExpiryMode.FIXED``) or with
a countdown that only starts on its first scan (``ExpiryMode.DEFERRED``).
Every accepted scan is appended to the record's history; scans past the
deadline are rejected.  Independently of expiry, a record that has not been
scanned for ``flag_threshold_hours`` becomes *flagged* and stays flagged.

Records are immutable values.  ``LifecycleEngine.create`` and
``LifecycleEngine.record_scan`` only compute new values; ``LifecycleEngine.scan``
is the one operation that writes, and it does so through a record store's
atomic ``append_scan``.
"""

import enum
import math
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from collections.abc import Mapping
from typing import Callable, Optional, Tuple

from .errors import ExpiredError, ValidationError

DEFAULT_EXPIRE_HOURS = 12
DEFAULT_FLAG_THRESHOLD_HOURS = 3
# ten years; keeps every deadline computed from "now" inside datetime range
MAX_HOURS = 24 * 365 * 10

_SCALARS = (str, int, float, bool, type(None))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_qr_id() -> str:
    """Return a fresh 16 character id carrying 64 random bits."""

    return secrets.token_hex(8)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ExpiryMode(str, enum.Enum):
    FIXED = "fixed"
    DEFERRED = "deferred"

    @classmethod
    def parse(cls, value) -> "ExpiryMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"expiry_mode must be one of: {', '.join(m.value for m in cls)}"
            ) from None


class Status(str, enum.Enum):
    ACTIVE = "active"
    FLAGGED = "flagged"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ScanEvent:
    time: datetime
    user_agent: str = ""
    source_address: str = ""

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "user_agent": self.user_agent,
            "source_address": self.source_address,
        }


@dataclass(frozen=True)
class QRRecord:
    id: str
    subject_name: str
    attributes: dict
    created_at: datetime
    expiry_mode: ExpiryMode
    expire_duration_hours: float
    flag_threshold_hours: float
    expires_at: Optional[datetime] = None
    flagged: bool = False
    scans: Tuple[ScanEvent, ...] = ()

    @property
    def scan_count(self) -> int:
        return len(self.scans)

    @property
    def last_activity(self) -> datetime:
        return self.scans[-1].time if self.scans else self.created_at

    def to_dict(self, with_scans: bool = False) -> dict:
        data = {
            "qr_id": self.id,
            "subject_name": self.subject_name,
            "attributes": dict(self.attributes),
            "created_at": self.created_at.isoformat(),
            "expiry_mode": self.expiry_mode.value,
            "expire_duration_hours": self.expire_duration_hours,
            "expires_at": _iso(self.expires_at),
            "flag_threshold_hours": self.flag_threshold_hours,
            "flagged": self.flagged,
            "scan_count": self.scan_count,
            "last_scan_at": _iso(self.scans[-1].time) if self.scans else None,
        }
        if with_scans:
            data["scans"] = [s.to_dict() for s in self.scans]
        return data


@dataclass(frozen=True)
class ScanOutcome:
    expired: bool
    first_scan_started: bool
    scan_count: int
    expires_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "expired": self.expired,
            "first_scan_started": self.first_scan_started,
            "scan_count": self.scan_count,
            "expires_at": _iso(self.expires_at),
        }


def _hours(value, default: float, name: str) -> float:
    """Coerce a duration in hours; missing or non-positive values fall back to ``default``."""

    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number") from None
    if math.isnan(hours) or hours <= 0:
        return default
    if hours > MAX_HOURS:
        raise ValidationError(f"{name} must be at most {MAX_HOURS} hours")
    return hours


def _clean_attributes(attributes) -> dict:
    if attributes is None:
        return {}
    if not isinstance(attributes, Mapping):
        raise ValidationError("attributes must be an object")
    for key, value in attributes.items():
        if not isinstance(key, str):
            raise ValidationError("attribute names must be strings")
        if not isinstance(value, _SCALARS):
            raise ValidationError(f"attribute {key!r} must be a scalar value")
    return dict(attributes)


class LifecycleEngine:
    """State transition rules for QR records.

    ``clock`` is any zero-argument callable returning an aware datetime.
    ``expiry_mode``, ``expire_hours`` and ``flag_threshold_hours`` are the
    defaults applied by :meth:`create` when the caller leaves them out.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        expiry_mode=ExpiryMode.FIXED,
        expire_hours: float = DEFAULT_EXPIRE_HOURS,
        flag_threshold_hours: float = DEFAULT_FLAG_THRESHOLD_HOURS,
    ):
        self.clock = clock
        self.expiry_mode = ExpiryMode.parse(expiry_mode)
        self.expire_hours = _hours(expire_hours, DEFAULT_EXPIRE_HOURS, "expire_hours")
        self.flag_threshold_hours = _hours(
            flag_threshold_hours, DEFAULT_FLAG_THRESHOLD_HOURS, "flag_threshold_hours"
        )

    def create(
        self,
        subject_name,
        attributes=None,
        expire_duration_hours=None,
        flag_threshold_hours=None,
        expiry_mode=None,
    ) -> QRRecord:
        if not isinstance(subject_name, str) or not subject_name.strip():
            raise ValidationError("subject_name required")
        mode = self.expiry_mode if expiry_mode in (None, "") else ExpiryMode.parse(expiry_mode)
        duration = _hours(expire_duration_hours, self.expire_hours, "expire_duration_hours")
        threshold = _hours(flag_threshold_hours, self.flag_threshold_hours, "flag_threshold_hours")
        created_at = self.clock()
        expires_at = None
        if mode is ExpiryMode.FIXED:
            expires_at = created_at + timedelta(hours=duration)
        return QRRecord(
            id=new_qr_id(),
            subject_name=subject_name.strip(),
            attributes=_clean_attributes(attributes),
            created_at=created_at,
            expiry_mode=mode,
            expire_duration_hours=duration,
            flag_threshold_hours=threshold,
            expires_at=expires_at,
        )

    def record_scan(
        self, record: QRRecord, scan_time: datetime, user_agent: str = "", source_address: str = ""
    ) -> Tuple[QRRecord, ScanOutcome]:
        """Apply one scan to ``record`` and return the new value with its outcome.

        An expired record comes back unchanged.  A record whose countdown has
        not started yet gets ``expires_at`` set from ``scan_time``.
        """

        if record.expires_at is not None and scan_time > record.expires_at:
            return record, ScanOutcome(
                expired=True,
                first_scan_started=False,
                scan_count=record.scan_count,
                expires_at=record.expires_at,
            )
        started = record.expires_at is None
        expires_at = record.expires_at
        if started:
            expires_at = scan_time + timedelta(hours=record.expire_duration_hours)
        event = ScanEvent(scan_time, user_agent or "", source_address or "")
        updated = replace(record, expires_at=expires_at, scans=record.scans + (event,))
        return updated, ScanOutcome(
            expired=False,
            first_scan_started=started,
            scan_count=updated.scan_count,
            expires_at=expires_at,
        )

    def status_of(self, record: QRRecord, now: Optional[datetime] = None) -> Status:
        now = now or self.clock()
        if record.expires_at is not None and now > record.expires_at:
            return Status.EXPIRED
        if record.flagged:
            return Status.FLAGGED
        return Status.ACTIVE

    def is_stale(self, record: QRRecord, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        # records written before the threshold existed carry 0/None
        threshold = record.flag_threshold_hours or DEFAULT_FLAG_THRESHOLD_HOURS
        return now - record.last_activity > timedelta(hours=threshold)

    def scan(
        self,
        store,
        qr_id: str,
        scan_time: Optional[datetime] = None,
        user_agent: str = "",
        source_address: str = "",
    ) -> Tuple[QRRecord, ScanOutcome]:
        """Record a scan of ``qr_id`` in ``store``.

        Raises ``NotFoundError`` for unknown ids.  The deadline and the new
        event are written together by ``store.append_scan``, so the outcome
        reports what the store applied rather than what this call predicted.
        """

        scan_time = scan_time or self.clock()
        record = store.get_by_id(qr_id)
        updated, outcome = self.record_scan(record, scan_time, user_agent, source_address)
        if outcome.expired:
            return record, outcome
        pending = outcome.expires_at if outcome.first_scan_started else None
        try:
            stored, started = store.append_scan(qr_id, updated.scans[-1], expires_at=pending)
        except ExpiredError as exc:
            current = store.get_by_id(qr_id)
            return current, ScanOutcome(
                expired=True,
                first_scan_started=False,
                scan_count=current.scan_count,
                expires_at=exc.expires_at,
            )
        return stored, ScanOutcome(
            expired=False,
            first_scan_started=started,
            scan_count=stored.scan_count,
            expires_at=stored.expires_at,
        )
