"""
Prometheus metrics: HTTP instrumentation plus store counters (checkout, shipping, reconciliation).

/metrics is unauthenticated; expose it only to the monitoring network.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, CONTENT_TYPE_LATEST,
    generate_latest, multiprocess,
)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = bool(os.environ.get('PROMETHEUS_MULTIPROC_DIR'))

if MULTIPROCESS_MODE:
    _scrape_registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(_scrape_registry)
    _metric_registry = None
else:
    _scrape_registry = REGISTRY
    _metric_registry = REGISTRY

http_requests_total = Counter(
    'http_requests_total', 'Total HTTP requests',
    ['method', 'endpoint', 'http_status'], registry=_metric_registry,
)
http_request_duration_seconds = Histogram(
    'http_request_duration_seconds', 'HTTP request latency in seconds',
    ['method', 'endpoint'], registry=_metric_registry,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
http_requests_in_flight = Gauge(
    'http_requests_in_flight', 'HTTP requests being processed', registry=_metric_registry,
)

orders_created_total = Counter(
    'orders_created_total', 'Orders created by checkout', registry=_metric_registry,
)
checkout_failures_total = Counter(
    'checkout_failures_total', 'Checkout attempts that did not return a payment link',
    ['reason'], registry=_metric_registry,
)
shipping_fallback_total = Counter(
    'shipping_fallback_total', 'Shipping quotes degraded to store pickup', registry=_metric_registry,
)
stock_reconciled_orders_total = Counter(
    'stock_reconciled_orders_total', 'Unpaid orders whose reserved stock was restored',
    registry=_metric_registry,
)


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status (the SSE stream is left out)."""

    @app.before_request
    def _start_timer():
        if request.endpoint == 'admin_orders.events':
            return
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def _record(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response
        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        except ValueError as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        finally:
            http_requests_in_flight.dec()
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus scrape endpoint."""
    return Response(generate_latest(_scrape_registry), mimetype=CONTENT_TYPE_LATEST)
