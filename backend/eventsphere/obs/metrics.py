"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary

REQUEST_COUNTER = Counter(
	"eventsphere_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"eventsphere_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

UPLOAD_GATE_STAGE_TOTAL = Counter(
	"eventsphere_upload_gate_stage_total",
	"Upload gate stage outcomes",
	["stage", "result"],
)

UPLOAD_GATE_STAGE_SECONDS = Histogram(
	"eventsphere_upload_gate_stage_seconds",
	"Upload gate stage latency in seconds",
	["stage"],
	buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 30.0, 60.0),
)

UPLOADS_STORED_TOTAL = Counter(
	"eventsphere_uploads_stored_total",
	"Uploads that passed the gate and were stored",
)

VIRUS_SCANS_TOTAL = Counter(
	"eventsphere_virus_scans_total",
	"Virus scans by outcome",
	["result"],
)

VIRUS_SCAN_LATENCY_SECONDS = Histogram(
	"eventsphere_virus_scan_latency_seconds",
	"Virus scan latency in seconds",
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 15.0, 60.0),
)

QUOTA_FAIL_OPEN_TOTAL = Counter(
	"eventsphere_upload_quota_fail_open_total",
	"Uploads allowed because the quota store was unavailable",
)

JOBS_ENQUEUED_TOTAL = Counter(
	"eventsphere_jobs_enqueued_total",
	"Jobs added to the queue",
	["type"],
)

JOBS_PROCESSED_TOTAL = Counter(
	"eventsphere_jobs_processed_total",
	"Jobs processed by outcome",
	["type", "result"],
)

JOB_DURATION_SECONDS = Histogram(
	"eventsphere_job_duration_seconds",
	"Job handler duration in seconds",
	["type"],
	buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 120.0),
)

FANOUT_RECIPIENTS = Summary(
	"eventsphere_notification_fanout_recipients",
	"Recipients per fan-out job",
)

REDIS_UP = Gauge("eventsphere_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("eventsphere_redis_latency_seconds", "Redis ping latency (seconds)")

BACKGROUND_RUNS = Counter(
	"eventsphere_background_runs_total",
	"Scheduled background sweeps",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"eventsphere_background_duration_seconds",
	"Scheduled background sweep duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def record_job(job_type: str, result: str, *, duration_seconds: float | None = None) -> None:
	JOBS_PROCESSED_TOTAL.labels(type=job_type, result=result).inc()
	if duration_seconds is not None:
		JOB_DURATION_SECONDS.labels(type=job_type).observe(duration_seconds)


def record_background_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)
