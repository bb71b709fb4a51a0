import os, sys, time, random, threading, requests

BASE = os.environ.get("QRTRACK_URL", "http://127.0.0.1:5000").rstrip("/")

AGENTS = ["Mozilla/5.0 (iPhone)", "Mozilla/5.0 (Linux; Android 14)", "curl/8.5"]

def scan_loop(qr_id):
    for _ in range(3):
        r = requests.get(f"{BASE}/api/scan", params={"qr_id": qr_id, "json": "1"}, headers={"User-Agent": random.choice(AGENTS)})
        print(qr_id, r.status_code, r.json())
        time.sleep(random.uniform(0.3, 1.2))

mode = sys.argv[1] if len(sys.argv) > 1 else "deferred"
r = requests.post(f"{BASE}/api/qrs", json={"subject_name": "Simulated Co", "expiry_mode": mode, "attributes": {"purpose": "load test"}})
qr_id = r.json()["qr_id"]
print("created", qr_id, r.json()["expires_at"])

# concurrent first scans must start the countdown exactly once
threads = [threading.Thread(target=scan_loop, args=(qr_id,)) for _ in range(5)]
[t.start() for t in threads]
[t.join() for t in threads]
