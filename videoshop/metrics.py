"""Prometheus metrics for the VideoShop automation backend."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("videoshop", "VideoShop application info")
app_info.info({"version": "0.1.0", "name": "videoshop"})

# Discovery metrics
discussion_fetches_total = Counter(
    "discussion_fetches_total",
    "Total number of channel fetches from the discussion platform",
    ["channel", "status"],
)

candidates_classified_total = Counter(
    "candidates_classified_total",
    "Posts run through the product classifier",
    ["result"],
)

# Supplier metrics
supplier_requests_total = Counter(
    "supplier_requests_total",
    "Supplier API calls",
    ["supplier", "operation", "status"],
)

supplier_cooldown_skips_total = Counter(
    "supplier_cooldown_skips_total",
    "Supplier calls skipped because the cooldown window was still open",
    ["supplier"],
)

supplier_request_duration_seconds = Histogram(
    "supplier_request_duration_seconds",
    "Time spent in supplier API calls",
    ["supplier", "operation"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Video metrics
video_cache_lookups_total = Counter(
    "video_cache_lookups_total",
    "Video resolver cache lookups",
    ["result"],
)

video_quota_used = Gauge(
    "video_quota_used_units",
    "Estimated video API quota units spent today",
)

# Pipeline metrics
pipeline_runs_total = Counter(
    "pipeline_runs_total",
    "Total number of pipeline runs",
    ["status"],
)

pipeline_run_duration_seconds = Histogram(
    "pipeline_run_duration_seconds",
    "Pipeline run wall time",
    buckets=[10, 30, 60, 120, 300, 600, 1200, 3600],
)

products_saved_total = Counter(
    "products_saved_total",
    "Products persisted by the pipeline",
    ["action"],
)

alerts_sent_total = Counter(
    "subscription_alerts_sent_total",
    "Subscription alerts dispatched",
    ["type", "status"],
)

# Fulfillment metrics
fulfillment_attempts_total = Counter(
    "fulfillment_attempts_total",
    "Per-item supplier dispatch attempts",
    ["supplier", "status"],
)

orders_by_fulfillment_status = Gauge(
    "orders_by_fulfillment_status",
    "Orders observed per fulfillment status at last computation",
    ["status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
