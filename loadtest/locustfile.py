"""
Load Testing Suite for the Storefront API.

Targets:
- Catalog browsing at 100+ RPS
- p95 latency < 200ms
- Error rate < 1% (stock and empty-cart rejections count as expected)
- Spike tests on the cart

Usage:
    locust -f loadtest/locustfile.py --host=http://localhost:8000

    # Headless mode for CI/CD
    locust -f loadtest/locustfile.py --host=http://localhost:8000 \
           --headless -u 100 -r 10 --run-time 5m

Run the server with SEED_DEMO_CATALOG=true so there are products to buy.
"""

import random
import string
import uuid
from locust import HttpUser, task, between, events


def random_email():
    """Generate random email."""
    return f"reader_{uuid.uuid4().hex[:8]}@test.com"


def random_string(length=8):
    """Generate random string."""
    return ''.join(random.choices(string.ascii_lowercase, k=length))


class StorefrontUser(HttpUser):
    """Simulated customer: browse, fill the cart and sometimes check out."""

    wait_time = between(0.1, 0.5)

    def on_start(self):
        """Setup: Register and login a customer."""
        self.token = None
        self.product_ids = []
        self.order_ids = []

        email = random_email()
        password = "TestPass123!"

        self.client.post("/api/v1/auth/register", json={
            "email": email,
            "password": password,
            "name": f"Reader {random_string()}"
        })

        response = self.client.post("/api/v1/auth/login", data={
            "username": email,
            "password": password
        })
        if response.status_code == 200:
            self.token = response.json().get("access_token")

        response = self.client.get("/api/v1/products")
        if response.status_code == 200:
            self.product_ids = [p["id"] for p in response.json()["items"]]

    @property
    def auth_headers(self):
        """Get authorization headers."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    @task(10)
    def browse_products(self):
        """Browse product pages (high frequency)."""
        self.client.get(
            f"/api/v1/products?page={random.randint(1, 3)}",
            name="/api/v1/products?page=[n]"
        )

    @task(5)
    def view_product(self):
        """View single product."""
        if not self.product_ids:
            return
        self.client.get(
            f"/api/v1/products/{random.choice(self.product_ids)}",
            name="/api/v1/products/[id]"
        )

    @task(3)
    def view_home(self):
        self.client.get("/api/v1/home")

    @task(4)
    def add_to_cart(self):
        """Add a random product to the cart."""
        if not self.token or not self.product_ids:
            return

        with self.client.post(
            "/api/v1/cart/items",
            json={"product_id": random.choice(self.product_ids), "quantity": random.randint(1, 2)},
            headers=self.auth_headers,
            catch_response=True
        ) as response:
            if response.status_code == 200:
                response.success()
            else:
                response.failure(f"Add to cart failed: {response.status_code}")

    @task(2)
    def view_cart_summary(self):
        if not self.token:
            return
        self.client.get("/api/v1/cart/summary", headers=self.auth_headers)

    @task(1)
    def checkout(self):
        """Place the current cart."""
        if not self.token:
            return

        with self.client.post(
            "/api/v1/cart/checkout",
            headers=self.auth_headers,
            catch_response=True
        ) as response:
            if response.status_code == 200:
                self.order_ids.append(response.json()["order"]["id"])
                response.success()
            elif response.status_code == 400:
                # Empty cart or insufficient stock is expected
                response.success()
            else:
                response.failure(f"Checkout failed: {response.status_code}")

    @task(2)
    def get_order_history(self):
        """Get the customer's order history."""
        if not self.token:
            return
        self.client.get("/api/v1/orders/mine", headers=self.auth_headers)

    @task(1)
    def get_order(self):
        """Open one of the placed orders."""
        if not self.order_ids or not self.token:
            return
        self.client.get(
            f"/api/v1/orders/{random.choice(self.order_ids)}",
            headers=self.auth_headers,
            name="/api/v1/orders/[id]"
        )


class HighThroughputUser(HttpUser):
    """Anonymous traffic for high-throughput testing (100+ RPS)."""

    wait_time = between(0.01, 0.05)

    @task(10)
    def health_check(self):
        self.client.get("/health")

    @task(5)
    def browse_products(self):
        self.client.get("/api/v1/products")

    @task(3)
    def view_home(self):
        self.client.get("/api/v1/home")


class SpikeTestUser(HttpUser):
    """Burst of cart additions from a single customer."""

    wait_time = between(0, 0.01)

    def on_start(self):
        email = random_email()
        self.client.post("/api/v1/auth/register", json={
            "email": email, "password": "TestPass123!", "name": "Spike"
        })
        response = self.client.post("/api/v1/auth/login", data={
            "username": email, "password": "TestPass123!"
        })
        self.headers = {"Authorization": f"Bearer {response.json().get('access_token')}"}

    @task
    def add_burst(self):
        self.client.post(
            "/api/v1/cart/items",
            json={"product_id": random.randint(1, 5), "quantity": 1},
            headers=self.headers
        )


# =============================================================================
# CUSTOM METRICS REPORTING
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Generate test report on completion."""
    stats = environment.stats

    print("\n" + "=" * 70)
    print("LOAD TEST RESULTS")
    print("=" * 70)

    print(f"\nTotal Requests: {stats.total.num_requests}")
    print(f"Failed Requests: {stats.total.num_failures}")
    print(f"Error Rate: {(stats.total.num_failures / max(stats.total.num_requests, 1)) * 100:.2f}%")

    print(f"\nRequests/sec: {stats.total.total_rps:.2f}")
    print(f"Avg Response Time: {stats.total.avg_response_time:.2f}ms")
    print(f"p95 Response Time: {stats.total.get_response_time_percentile(0.95):.2f}ms")
    print(f"p99 Response Time: {stats.total.get_response_time_percentile(0.99):.2f}ms")

    print("\n" + "=" * 70)
    print("PER-ENDPOINT BREAKDOWN")
    print("=" * 70)

    for (name, method), entry in sorted(stats.entries.items()):
        if entry.num_requests > 0:
            print(f"\n{method} {name}:")
            print(f"  Requests: {entry.num_requests}")
            print(f"  Failures: {entry.num_failures}")
            print(f"  p95: {entry.get_response_time_percentile(0.95):.2f}ms")
