"""
Prometheus metrics blueprint for observability.

Exposes /metrics with HTTP request metrics and the order counters
incremented by the order service.
This endpoint should be restricted to internal network or monitoring systems only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_metric_registry = registry if not MULTIPROCESS_MODE else None

# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_metric_registry
)

# Order Metrics
orders_created_total = Counter(
    'orders_created_total',
    'Orders successfully placed from a cart',
    registry=_metric_registry
)

orders_cancelled_total = Counter(
    'orders_cancelled_total',
    'Orders cancelled with stock restored',
    registry=_metric_registry
)

order_stock_rejections_total = Counter(
    'order_stock_rejections_total',
    'Order placements rejected by the stock check',
    ['reason'],
    registry=_metric_registry
)

order_conflict_retries_total = Counter(
    'order_conflict_retries_total',
    'Order transactions retried after a concurrent write conflict',
    registry=_metric_registry
)

# Payment Metrics
payment_events_total = Counter(
    'payment_events_total',
    'Payment records created, confirmed, failed or refunded',
    ['event'],
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """
    Setup before_request and after_request hooks for automatic metrics collection.
    
    Called from the app factory after app creation.
    """
    
    @app.before_request
    def before_request_metrics():
        g._prometheus_metrics_start_time = time.time()
        http_requests_in_flight.inc()
    
    @app.after_request
    def after_request_metrics(response):
        try:
            if hasattr(g, '_prometheus_metrics_start_time'):
                duration = time.time() - g._prometheus_metrics_start_time
                
                # Endpoint name, e.g. 'orders.create_order'
                endpoint = request.endpoint or 'unknown'
                method = request.method
                
                http_request_duration_seconds.labels(
                    method=method,
                    endpoint=endpoint
                ).observe(duration)
                
                http_requests_total.labels(
                    method=method,
                    endpoint=endpoint,
                    http_status=response.status_code
                ).inc()
                
                http_requests_in_flight.dec()
        except Exception as e:
            # Don't break request flow if metrics fail
            app.logger.warning(f"Failed to record metrics: {e}")
        
        return response


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.
    
    Not authenticated: restrict it by network/firewall rules in production.
    """
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
