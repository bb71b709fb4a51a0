import sys
from qrtrack import create_app, db
from qrtrack.lifecycle import LifecycleEngine
from qrtrack.store import SqlRecordStore

app = create_app()

with app.app_context():
    if "--reset" in sys.argv:
        db.drop_all()
    db.create_all()

    # Sample codes, one per expiry mode
    if "--sample" in sys.argv:
        engine = LifecycleEngine(expiry_mode=app.config["QR_EXPIRY_MODE"])
        store = SqlRecordStore(db.session)
        samples = [
            ("Banswara Garments", {"location": "Gate 1", "purpose": "delivery"}, "fixed"),
            ("Demo Logistics", {"location": "Dock B", "contact": "ops@example.com"}, "deferred"),
        ]
        for name, attributes, mode in samples:
            record = engine.create(name, attributes, expiry_mode=mode)
            store.put(record)
            print(record.id, name, mode)

    print("Database initialized.")
