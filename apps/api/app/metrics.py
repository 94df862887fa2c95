from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

subscription_operations_total = Counter(
    "subscription_operations_total",
    "Total subscription service operations by outcome",
    ["operation", "outcome"],
)

subscription_overlap_conflicts_total = Counter(
    "subscription_overlap_conflicts_total",
    "Total writes rejected because of an overlapping subscription period",
    ["operation"],
)

subscription_total_cost_months = Histogram(
    "subscription_total_cost_months",
    "Width in months of requested total-cost windows",
    buckets=(1, 3, 6, 12, 24, 60, 120),
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_subscription_operation(operation: str, outcome: str) -> None:
    subscription_operations_total.labels(operation=operation, outcome=outcome).inc()


def observe_overlap_conflict(operation: str) -> None:
    subscription_overlap_conflicts_total.labels(operation=operation).inc()


def observe_total_cost_window(months: int) -> None:
    if months > 0:
        subscription_total_cost_months.observe(months)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
