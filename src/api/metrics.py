from prometheus_client import Counter, Histogram, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUESTS_TOTAL = get_or_create_metric(
    "talk2task_requests_total",
    "Total requests",
    Counter,
    labelnames=["endpoint", "status"],
)

REQUEST_LATENCY_SECONDS = get_or_create_metric(
    "talk2task_request_latency_seconds",
    "Request latency",
    Histogram,
    labelnames=["endpoint"],
)

TASKS_CREATED_TOTAL = get_or_create_metric(
    "talk2task_tasks_created_total",
    "Tasks created",
    Counter,
    labelnames=["source"],
)

EXTRACTION_FALLBACKS_TOTAL = get_or_create_metric(
    "talk2task_extraction_fallbacks_total",
    "Tasks synthesized locally because the model output was unusable",
    Counter,
)

DISPATCH_TOTAL = get_or_create_metric(
    "talk2task_dispatch_total",
    "Integration dispatch outcomes",
    Counter,
    labelnames=["platform", "status"],
)
