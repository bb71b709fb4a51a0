import pytest
from datetime import datetime, timedelta, timezone
from qrtrack import create_app, db
from qrtrack.lifecycle import LifecycleEngine
from qrtrack.store import MemoryRecordStore, SqlRecordStore


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()

@pytest.fixture()
def engine(clock):
    return LifecycleEngine(clock=clock)

@pytest.fixture()
def store():
    return MemoryRecordStore()

@pytest.fixture()
def app():
    app = create_app(testing=True)
    app.config["JOB_SECRET"] = "s3cret"
    with app.app_context():
        db.create_all()
    return app

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture()
def sql_store(app):
    with app.app_context():
        yield SqlRecordStore(db.session)
