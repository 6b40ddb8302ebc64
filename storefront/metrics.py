"""
Prometheus Metrics for the Storefront.

Covers:
1. HTTP request latency (p50, p95, p99)
2. Error rate per endpoint
3. In-flight requests
4. Cart operations and checkout outcomes
5. Order status transitions
6. Low-stock products
"""

import time
import functools
from typing import Callable
from prometheus_client import Counter, Histogram, Gauge, Info


# =============================================================================
# HTTP REQUEST METRICS
# =============================================================================

# Buckets chosen to capture p50 (~50ms), p95 (~200ms), p99 (~500ms)
HTTP_REQUEST_LATENCY = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['service', 'endpoint', 'method', 'status_code'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.15, 0.2, 0.3, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0]
)

HTTP_REQUEST_TOTAL = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['service', 'endpoint', 'method', 'status_code']
)

HTTP_IN_FLIGHT_REQUESTS = Gauge(
    'http_in_flight_requests',
    'Number of HTTP requests currently being processed',
    ['service']
)

HTTP_ERRORS_TOTAL = Counter(
    'http_errors_total',
    'Total HTTP errors (4xx and 5xx)',
    ['service', 'endpoint', 'error_type']  # error_type: client_error, server_error
)


# =============================================================================
# CART / ORDER METRICS
# =============================================================================

CART_OPERATIONS_TOTAL = Counter(
    'cart_operations_total',
    'Cart mutations by operation and outcome',
    ['operation', 'outcome']  # operation: add, update, remove
)

CHECKOUT_TOTAL = Counter(
    'checkout_total',
    'Checkout attempts by outcome',
    ['outcome']  # placed, empty_cart, insufficient_stock
)

ORDER_STATE_TRANSITIONS_TOTAL = Counter(
    'order_state_transitions_total',
    'Order state transitions',
    ['from_state', 'to_state']
)

ORDER_STATUS_REJECTIONS_TOTAL = Counter(
    'order_status_rejections_total',
    'Admin status updates rejected',
    ['reason']
)


# =============================================================================
# INVENTORY / DASHBOARD METRICS
# =============================================================================

LOW_STOCK_PRODUCTS = Gauge(
    'inventory_low_stock_products',
    'Products below the low-stock threshold at the last dashboard read'
)

DASHBOARD_QUERY_SECONDS = Histogram(
    'dashboard_query_seconds',
    'Time to compute the admin dashboard',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


# =============================================================================
# SERVICE INFO
# =============================================================================

SERVICE_INFO = Info(
    'service',
    'Service information'
)


# =============================================================================
# INSTRUMENTATION DECORATORS
# =============================================================================

def track_duration(histogram: Histogram):
    """Decorator observing the wall time of an async call."""
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                histogram.observe(time.time() - start_time)
        return wrapper
    return decorator


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def record_cart_operation(operation: str, outcome: str):
    CART_OPERATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()


def record_checkout(outcome: str):
    CHECKOUT_TOTAL.labels(outcome=outcome).inc()


def record_order_transition(from_state: str, to_state: str):
    ORDER_STATE_TRANSITIONS_TOTAL.labels(from_state=from_state, to_state=to_state).inc()


def record_status_rejection(reason: str):
    ORDER_STATUS_REJECTIONS_TOTAL.labels(reason=reason).inc()


def set_service_info(service: str, version: str, environment: str):
    """Set service information."""
    SERVICE_INFO.info({
        'service': service,
        'version': version,
        'environment': environment
    })
