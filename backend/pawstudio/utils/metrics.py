"""
Prometheus metrics definitions.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram, Gauge

# HTTP request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Generation metrics
generations_in_progress = Gauge(
    'generations_in_progress',
    'Number of generations currently running'
)

generations_total = Counter(
    'generations_total',
    'Total generation requests by outcome',
    ['status']
)

generation_duration_seconds = Histogram(
    'generation_duration_seconds',
    'End-to-end generation duration in seconds',
    ['status'],
    buckets=[1.0, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0, 90.0, 120.0]
)

# External provider metrics
provider_requests_total = Counter(
    'provider_requests_total',
    'Total external provider requests',
    ['provider', 'operation']
)

provider_failures_total = Counter(
    'provider_failures_total',
    'Total external provider failures',
    ['provider', 'operation']
)

provider_latency_seconds = Histogram(
    'provider_latency_seconds',
    'External provider request latency in seconds',
    ['provider', 'operation'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

# Credit metrics
credits_debited_total = Counter(
    'credits_debited_total',
    'Total credits spent on generations'
)

credits_granted_total = Counter(
    'credits_granted_total',
    'Total credits granted',
    ['source']
)
