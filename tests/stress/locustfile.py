"""
passvault Load Testing with Locust

Many counter terminals scanning the same small pool of passes: every pass
must be redeemed at most once, and the losers must get a clean 409.

Prepare (from backend/):
    python -m flask locations create --slug downtown --name Downtown
    python -m flask locations set-pin 1 --role staff --pin 1111
    python -m flask locations set-pin 1 --role admin --pin 9999
    python -m flask certificates issue --owner-id load-1 --final-price-cents 6000 --retail-value-cents 10000 --location-id 1

Run with:
    PASSVAULT_CERT_NUMBERS=VLT-...,VLT-... locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 20 --spawn-rate 5 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for redeem
- Error rate < 1% (ALREADY_REDEEMED / CONFLICT answers are expected, not errors)
- No pass redeemed more than once
"""

import os
import time
import random
from typing import Optional, Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

LOCATION_ID = int(os.environ.get("PASSVAULT_LOCATION_ID", "1"))
STAFF_PIN = os.environ.get("PASSVAULT_STAFF_PIN", "1111")
ADMIN_PIN = os.environ.get("PASSVAULT_ADMIN_PIN", "9999")
CERT_NUMBERS = [n.strip() for n in os.environ.get("PASSVAULT_CERT_NUMBERS", "").split(",") if n.strip()]

# Answers that mean "someone else got there first", not a failure
LOST_RACE_KINDS = {"ALREADY_REDEEMED", "CONFLICT"}


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}
        self.redemptions: Dict[str, int] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def record_redemption(self, certificate_number: str):
        self.redemptions[certificate_number] = self.redemptions.get(certificate_number, 0) + 1

    def double_redemptions(self) -> List[str]:
        return [number for number, count in self.redemptions.items() if count > 1]

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class PassVaultUser(HttpUser):
    """
    Base terminal that signs in with a location PIN on start.
    """
    wait_time = between(0.2, 1)
    abstract = True

    role = "staff"
    pin = STAFF_PIN
    token: Optional[str] = None

    def on_start(self):
        """Login when user starts."""
        self.login()

    def login(self):
        response = self.client.post(
            "/api/auth/pin",
            json={"location_id": LOCATION_ID, "role": self.role, "pin": self.pin},
            name="auth/pin"
        )
        if response.status_code == 200:
            self.token = response.json().get("token")

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


class CounterUser(PassVaultUser):
    """
    Counter terminal racing other terminals for the same passes.
    """
    weight = 4
    sequence = 0

    @task(5)
    def redeem(self):
        if not CERT_NUMBERS:
            return
        number = random.choice(CERT_NUMBERS)
        start = time.time()
        response = self.client.post(
            "/api/redeem",
            json={"token": number, "pos_transaction_id": f"LOAD-{random.getrandbits(32):08x}"},
            headers=self.get_headers(),
            name="redeem"
        )
        body = response.json() if response.headers.get("Content-Type", "").startswith("application/json") else {}
        ok = response.status_code == 200 or body.get("error_kind") in LOST_RACE_KINDS
        metrics.record("redeem", (time.time() - start) * 1000, ok)
        if response.status_code == 200:
            metrics.record_redemption(number)

    @task(3)
    def preview(self):
        if not CERT_NUMBERS:
            return
        start = time.time()
        response = self.client.post(
            "/api/redeem/preview",
            json={"token": random.choice(CERT_NUMBERS)},
            headers=self.get_headers(),
            name="redeem/preview"
        )
        metrics.record("redeem/preview", (time.time() - start) * 1000, response.status_code in (200, 409, 410))

    @task(2)
    def staff_queue(self):
        start = time.time()
        response = self.client.get("/api/certificates/queue", headers=self.get_headers(), name="certificates/queue")
        metrics.record("certificates/queue", (time.time() - start) * 1000, response.status_code == 200)

    @task(2)
    def poll_changes(self):
        start = time.time()
        response = self.client.get(
            "/api/changes",
            params={"since": self.sequence},
            headers=self.get_headers(),
            name="changes/poll"
        )
        ok = response.status_code == 200
        if ok:
            self.sequence = response.json().get("last_sequence", self.sequence)
        metrics.record("changes/poll", (time.time() - start) * 1000, ok)

    @task(1)
    def health_check(self):
        start = time.time()
        response = self.client.get("/health", name="system/health")
        metrics.record("system/health", (time.time() - start) * 1000, response.status_code == 200)


class AdminUser(PassVaultUser):
    """
    Admin watching the drops board and the returns report.
    """
    weight = 1
    role = "admin"
    pin = ADMIN_PIN

    @task(3)
    def drops_board(self):
        start = time.time()
        response = self.client.get("/api/admin/drops", headers=self.get_headers(), name="admin/drops")
        metrics.record("admin/drops", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def cancelled_claims(self):
        start = time.time()
        response = self.client.get("/api/admin/cancelled-claims", headers=self.get_headers(), name="admin/cancelled-claims")
        metrics.record("admin/cancelled-claims", (time.time() - start) * 1000, response.status_code == 200)


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 1000 if name == "redeem" else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    doubles = metrics.double_redemptions()
    if doubles:
        all_pass = False
        print(f"\n[FAIL] Redeemed more than once: {', '.join(sorted(doubles))}")

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some checks failed")
        print("  - Reads: P95 < 500ms, Error rate < 1%")
        print("  - Redeem: P95 < 1000ms, Error rate < 1%, at most one success per pass")

    print("=" * 80)
