# tannery/monitoring.py
"""
Logging, Prometheus counters and optional Sentry for the back office service.

All modules log through `logger`; metric helpers are safe to call from any
code path.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import functools
import logging
import os
import time
from typing import Callable, Tuple

import sentry_sdk
from prometheus_client import (
    Counter, Histogram,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "tannery", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
            handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "tannery_http_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "tannery_http_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

REQUESTS_CREATED = Counter(
    "tannery_requests_created_total",
    "Quote/sample requests created",
    ["kind"],
)

STATUS_TRANSITIONS = Counter(
    "tannery_status_transitions_total",
    "Lifecycle status transitions",
    ["kind", "from_status", "to_status"],
)

SIDE_EFFECTS = Counter(
    "tannery_side_effects_total",
    "Fire-and-forget side effects by outcome",
    ["effect", "outcome"],
)

REQUEST_NUMBER_COLLISIONS = Counter(
    "tannery_request_number_collisions_total",
    "Generated request numbers that already existed",
    ["kind", "stage"],
)


# --- Helper wrappers: a broken metric must never fail a request
def _guarded(fn: Callable) -> Callable:
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.debug("Metric update failed", extra={"metric": fn.__name__}, exc_info=True)
            return None
    return wrapper


@_guarded
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()


@_guarded
def inc_created(kind: str):
    REQUESTS_CREATED.labels(kind=kind).inc()


@_guarded
def inc_transition(kind: str, from_status: str, to_status: str):
    STATUS_TRANSITIONS.labels(kind=kind, from_status=from_status, to_status=to_status).inc()


@_guarded
def inc_side_effect(effect: str, outcome: str):
    SIDE_EFFECTS.labels(effect=effect, outcome=outcome).inc()


@_guarded
def inc_collision(kind: str, stage: str):
    """stage is "lookup" (found by the pre-insert check) or "insert" (unique index)."""
    REQUEST_NUMBER_COLLISIONS.labels(kind=kind, stage=stage).inc()


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Scrape body and content type for GET /metrics."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
