from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

DOMAIN_OPERATIONS = Counter(
    "hostgate_domain_operations_total",
    "Domain, certificate and proxy operations",
    ["operation", "outcome"],  # outcome: success/failure/rejected
)

STATUS_TRANSITIONS = Counter(
    "hostgate_status_transitions_total",
    "Persisted status transitions",
    ["field", "source", "target"],  # field: domain/ssl
)

RATE_LIMIT_REJECTIONS = Counter(
    "hostgate_rate_limit_rejections_total",
    "Attempts rejected by a limiter",
    ["scope"],  # scope: tenant/churn
)

COMMAND_RESULTS = Counter(
    "hostgate_external_commands_total",
    "External command invocations",
    ["tool", "outcome"],
)

COMMAND_DURATION = Histogram(
    "hostgate_external_command_duration_seconds",
    "External command latency",
    ["tool"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

CERTIFICATE_DAYS_LEFT = Gauge(
    "hostgate_certificate_days_until_expiry",
    "Days until certificate expiry as last observed",
    ["domain"],
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
