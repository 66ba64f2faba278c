"""
Prometheus metrics for the agenda API.

Besides plain HTTP request metrics this tracks how long occurrence
generation takes and which outcome each reconciliation operation produced.
"""
import logging
import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0

REQUEST_COUNT = Counter(
    'lesson_agenda_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status']
)

REQUEST_DURATION = Histogram(
    'lesson_agenda_request_duration_seconds',
    'Request duration in seconds',
    ['method', 'endpoint']
)

OCCURRENCE_GENERATION_DURATION = Histogram(
    'lesson_agenda_generation_duration_seconds',
    'Time spent generating occurrences for one agenda window'
)

OCCURRENCES_GENERATED = Counter(
    'lesson_agenda_occurrences_generated_total',
    'Occurrences emitted by the generator',
    ['kind']  # agreement, deviation
)

RECONCILIATION_OUTCOMES = Counter(
    'lesson_agenda_reconciliation_total',
    'Deviation reconciliation operations by outcome',
    ['operation', 'outcome']
)


def record_outcome(operation: str, outcome: str) -> None:
    RECONCILIATION_OUTCOMES.labels(operation=operation, outcome=outcome).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and observes their duration per endpoint."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            duration = time.time() - start_time
            REQUEST_COUNT.labels(method=request.method, endpoint=request.url.path, status=status).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=request.url.path).observe(duration)
            if duration > SLOW_REQUEST_SECONDS:
                logger.warning(
                    "Slow request: %s %s took %.2fs (status=%s)",
                    request.method,
                    request.url.path,
                    duration,
                    status,
                )


def get_metrics():
    """Get Prometheus metrics in text format."""
    return generate_latest()
