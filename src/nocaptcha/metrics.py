"""
Prometheus metrics definitions.

Shared by the registry (loading, lock contention, inference) and the
HTTP layer (requests).
"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# HTTP
# ============================================================================

REQUEST_COUNT = Counter(
    'nocaptcha_requests_total',
    'Total number of requests',
    ['endpoint', 'status']
)

REQUEST_DURATION = Histogram(
    'nocaptcha_request_duration_seconds',
    'Request duration in seconds',
    ['endpoint'],
    buckets=[.001, .0025, .005, .01, .025, .05, .1, .25, .5, 1.0, 2.5, 5.0]
)

# ============================================================================
# Registry
# ============================================================================

PREDICTION_COUNT = Counter(
    'nocaptcha_predictions_total',
    'Total number of predictions',
    ['challenge', 'status']
)

INFERENCE_DURATION = Histogram(
    'nocaptcha_inference_duration_seconds',
    'Engine run time in seconds',
    ['challenge'],
    buckets=[.001, .0025, .005, .01, .025, .05, .1, .25, .5, 1.0]
)

LOCK_WAIT_DURATION = Histogram(
    'nocaptcha_engine_lock_wait_seconds',
    'Time spent waiting for a challenge engine lock',
    ['challenge'],
    buckets=[.0001, .001, .005, .01, .05, .1, .5, 1.0, 5.0]
)

MODEL_LOAD_TIME = Histogram(
    'nocaptcha_model_load_time_seconds',
    'Model loading time in seconds',
    ['challenge', 'format']
)

MODELS_LOADED = Gauge(
    'nocaptcha_models_loaded',
    'Number of challenge models held by the registry'
)
