"""
Prometheus metrics for the guild synchronizer.

Metrics exposed:
- Provider request counters and latency histograms (per source)
- Sync tier run counters, durations and running gauges
- Members processed / failed per tier
- Dropped (overlapping) triggers
- Notification counters
- Scheduler status gauge
"""
from prometheus_client import Counter, Gauge, Histogram

# Provider Metrics
provider_requests_total = Counter(
    "guild_sync_provider_requests_total",
    "Total requests sent to external providers",
    ["source"]
)

provider_request_failures_total = Counter(
    "guild_sync_provider_request_failures_total",
    "Total failed provider requests",
    ["source", "error_type"]
)

provider_request_duration_seconds = Histogram(
    "guild_sync_provider_request_duration_seconds",
    "Provider request latency in seconds",
    ["source"]
)

rate_limiter_wait_seconds = Histogram(
    "guild_sync_rate_limiter_wait_seconds",
    "Time spent waiting for a rate limiter grant",
    ["source"]
)

auth_token_refresh_total = Counter(
    "guild_sync_auth_token_refresh_total",
    "Total OAuth token refreshes"
)

# Sync Tier Metrics
sync_runs_total = Counter(
    "guild_sync_runs_total",
    "Total sync runs by tier and final status",
    ["tier", "status"]
)

sync_runs_dropped_total = Counter(
    "guild_sync_runs_dropped_total",
    "Triggers dropped because the same tier was already running",
    ["tier"]
)

sync_run_duration_seconds = Histogram(
    "guild_sync_run_duration_seconds",
    "Sync run duration in seconds",
    ["tier"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600)
)

sync_tier_running = Gauge(
    "guild_sync_tier_running",
    "Whether a sync tier is currently running (1=running, 0=idle)",
    ["tier"]
)

members_processed_total = Counter(
    "guild_sync_members_processed_total",
    "Members processed by tier",
    ["tier"]
)

members_failed_total = Counter(
    "guild_sync_members_failed_total",
    "Members that failed processing by tier and error category",
    ["tier", "error_type"]
)

roster_size = Gauge(
    "guild_sync_roster_size",
    "Number of members in the last successful roster discovery"
)

# Notification Metrics
notifications_sent_total = Counter(
    "guild_sync_notifications_sent_total",
    "Notifications sent",
    ["kind"]
)

notifications_throttled_total = Counter(
    "guild_sync_notifications_throttled_total",
    "Notifications suppressed by the error budget",
    ["kind"]
)

# Scheduler Metrics
scheduler_running = Gauge(
    "guild_sync_scheduler_running",
    "Whether the sync scheduler is running (1=running, 0=stopped)"
)

scheduler_jobs_total = Gauge(
    "guild_sync_scheduler_jobs_total",
    "Total number of scheduled jobs"
)


def update_scheduler_metrics():
    """Refresh scheduler gauges from the global scheduler instance."""
    from guild_sync.core.scheduler import get_scheduler

    scheduler = get_scheduler()
    if scheduler and scheduler.running and scheduler.scheduler:
        scheduler_running.set(1)
        scheduler_jobs_total.set(len(scheduler.scheduler.get_jobs()))
    else:
        scheduler_running.set(0)
        scheduler_jobs_total.set(0)


def record_provider_request(source: str, duration_seconds: float):
    """Record a completed provider request."""
    provider_requests_total.labels(source=source).inc()
    provider_request_duration_seconds.labels(source=source).observe(duration_seconds)


def record_provider_failure(source: str, error_type: str = "unknown"):
    """Record a failed provider request."""
    provider_request_failures_total.labels(source=source, error_type=error_type).inc()


def record_member_failure(tier: str, error_type: str = "unknown"):
    members_failed_total.labels(tier=tier, error_type=error_type).inc()


def record_sync_run(tier: str, status: str, duration_seconds: float):
    """Record a finished sync run."""
    sync_runs_total.labels(tier=tier, status=status).inc()
    sync_run_duration_seconds.labels(tier=tier).observe(duration_seconds)
