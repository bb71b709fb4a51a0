"""Record stores for QR records.

Two implementations share one contract:

- ``get_by_id(qr_id)`` returns a ``QRRecord`` or raises ``NotFoundError``.
- ``get_all(limit=None)`` returns records newest first.
- ``get_unflagged()`` returns every record with ``flagged`` false.
- ``put(record)`` upserts one record.  It never clears a deadline that is
  already set, never resets ``flagged`` and never rewrites the scan history
  of an existing record.
- ``append_scan(qr_id, event, expires_at=None)`` appends ``event`` and, if
  the record has no deadline yet, sets it to ``expires_at``.  Both happen as
  one atomic step.  Returns ``(record, started)`` where ``started`` tells
  whether this call set the deadline.  Raises ``ExpiredError`` without
  writing anything if ``event.time`` is past the effective deadline.

``MemoryRecordStore`` keeps records in a dict behind a lock.
``SqlRecordStore`` works on a SQLAlchemy session (``db.session`` inside a
Flask app) and wraps database failures in ``StoreError``.
"""

import threading
from dataclasses import replace
from datetime import timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from .errors import ExpiredError, NotFoundError, StoreError
from .lifecycle import ExpiryMode, QRRecord, ScanEvent
from .models import QRCode, Scan


def _merge(current, record):
    if current is None:
        return record
    return replace(
        record,
        expires_at=current.expires_at or record.expires_at,
        flagged=current.flagged or record.flagged,
        scans=current.scans,
    )


class MemoryRecordStore:
    def __init__(self, records=()):
        self._records = {}
        self._lock = threading.Lock()
        for record in records:
            self.put(record)

    def get_by_id(self, qr_id):
        with self._lock:
            record = self._records.get(qr_id)
        if record is None:
            raise NotFoundError(qr_id)
        return record

    def get_all(self, limit=None):
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit and limit > 0 else records

    def get_unflagged(self):
        with self._lock:
            return [r for r in self._records.values() if not r.flagged]

    def put(self, record):
        with self._lock:
            self._records[record.id] = _merge(self._records.get(record.id), record)

    def append_scan(self, qr_id, event, expires_at=None):
        with self._lock:
            record = self._records.get(qr_id)
            if record is None:
                raise NotFoundError(qr_id)
            started = record.expires_at is None and expires_at is not None
            deadline = expires_at if started else record.expires_at
            if deadline is not None and event.time > deadline:
                raise ExpiredError(qr_id, deadline)
            record = replace(record, expires_at=deadline, scans=record.scans + (event,))
            self._records[qr_id] = record
        return record, started


def _as_utc(value):
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_record(row: QRCode) -> QRRecord:
    return QRRecord(
        id=row.id,
        subject_name=row.subject_name,
        attributes=dict(row.attributes or {}),
        created_at=_as_utc(row.created_at),
        expiry_mode=ExpiryMode.parse(row.expiry_mode),
        expire_duration_hours=row.expire_duration_hours,
        flag_threshold_hours=row.flag_threshold_hours,
        expires_at=_as_utc(row.expires_at),
        flagged=bool(row.flagged),
        scans=tuple(
            ScanEvent(_as_utc(s.time), s.user_agent or "", s.source_address or "") for s in row.scans
        ),
    )


class SqlRecordStore:
    def __init__(self, session):
        self.session = session

    def _fail(self, action, exc):
        self.session.rollback()
        return StoreError(f"{action} failed: {exc}")

    def get_by_id(self, qr_id):
        try:
            row = self.session.get(QRCode, qr_id)
        except SQLAlchemyError as e:
            raise self._fail("get_by_id", e) from e
        if row is None:
            raise NotFoundError(qr_id)
        return to_record(row)

    def get_all(self, limit=None):
        q = select(QRCode).order_by(QRCode.created_at.desc())
        if limit and limit > 0:
            q = q.limit(limit)
        try:
            return [to_record(row) for row in self.session.scalars(q)]
        except SQLAlchemyError as e:
            raise self._fail("get_all", e) from e

    def get_unflagged(self):
        q = select(QRCode).where(QRCode.flagged.is_(False))
        try:
            return [to_record(row) for row in self.session.scalars(q)]
        except SQLAlchemyError as e:
            raise self._fail("get_unflagged", e) from e

    def put(self, record):
        try:
            row = self.session.get(QRCode, record.id, with_for_update=True)
            if row is None:
                row = QRCode(
                    id=record.id, subject_name=record.subject_name, created_at=record.created_at, flagged=False
                )
                row.scans = [
                    Scan(time=s.time, user_agent=s.user_agent, source_address=s.source_address)
                    for s in record.scans
                ]
                self.session.add(row)
            row.attributes = dict(record.attributes)
            row.expiry_mode = record.expiry_mode.value
            row.expire_duration_hours = record.expire_duration_hours
            row.flag_threshold_hours = record.flag_threshold_hours
            if row.expires_at is None:
                row.expires_at = record.expires_at
            row.flagged = bool(row.flagged) or record.flagged
            self.session.commit()
        except SQLAlchemyError as e:
            raise self._fail("put", e) from e

    def append_scan(self, qr_id, event, expires_at=None):
        try:
            started = False
            if expires_at is not None:
                # set-if-unset; only one concurrent first scan can match
                result = self.session.execute(
                    update(QRCode)
                    .where(QRCode.id == qr_id, QRCode.expires_at.is_(None))
                    .values(expires_at=expires_at)
                    .execution_options(synchronize_session=False)
                )
                started = result.rowcount == 1
            row = self.session.get(QRCode, qr_id, populate_existing=True)
            if row is None:
                self.session.rollback()
                raise NotFoundError(qr_id)
            deadline = _as_utc(row.expires_at)
            if deadline is not None and event.time > deadline:
                self.session.rollback()
                raise ExpiredError(qr_id, deadline)
            row.scans.append(
                Scan(time=event.time, user_agent=event.user_agent, source_address=event.source_address)
            )
            self.session.commit()
            return to_record(row), started
        except SQLAlchemyError as e:
            raise self._fail("append_scan", e) from e
