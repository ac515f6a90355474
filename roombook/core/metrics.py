from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

BOOKING_OPERATIONS = Counter(
    "booking_operations_total",
    "Booking engine operations by outcome",
    ["operation", "outcome"],
)

GOOGLE_SYNC_RUNS = Counter(
    "google_sync_runs_total",
    "Google Calendar room sync runs by outcome",
    ["outcome"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
