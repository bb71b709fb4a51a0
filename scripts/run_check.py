"""Trigger the staleness sweep on a running server.

Meant for a cron-style schedule, e.g. every 15 minutes::

    */15 * * * * QRTRACK_URL=https://qr.example.com JOB_SECRET=... python scripts/run_check.py

Exits non-zero when the server rejects the call or reports failed records.
"""

import os, sys, requests

BASE = os.environ.get("QRTRACK_URL", "http://127.0.0.1:5000").rstrip("/")
SECRET = os.environ.get("JOB_SECRET", "")

def main():
    if not SECRET:
        print("JOB_SECRET not set", file=sys.stderr)
        return 2
    r = requests.post(f"{BASE}/api/run-check", headers={"X-Job-Secret": SECRET}, timeout=60)
    print(r.status_code, r.json())
    if r.status_code != 200 or not r.json().get("success"):
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
