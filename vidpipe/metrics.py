from __future__ import annotations

import os

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, multiprocess

from .config import parse_bool

METRICS_ENABLED = parse_bool(os.environ.get("VIDPIPE_METRICS_ENABLED", "true"))
PROMETHEUS_MULTIPROC_DIR = (os.environ.get("PROMETHEUS_MULTIPROC_DIR") or "").strip()
PROMETHEUS_MULTIPROC_ENABLED = bool(PROMETHEUS_MULTIPROC_DIR)

if METRICS_ENABLED:
    REQUEST_LATENCY = Histogram(
        "vidpipe_http_request_duration_seconds",
        "HTTP request latency",
        ["method", "endpoint"],
    )
    REQUEST_COUNT = Counter(
        "vidpipe_http_requests_total",
        "Total HTTP requests",
        ["method", "endpoint", "status"],
    )
    REQUEST_IN_FLIGHT = Gauge(
        "vidpipe_http_requests_in_flight",
        "In-flight HTTP requests",
    )
    CHUNKS_STORED = Counter(
        "vidpipe_chunks_stored_total",
        "Upload chunks written to the chunk store",
    )
    CHUNK_BYTES = Counter(
        "vidpipe_chunk_bytes_total",
        "Bytes received as upload chunks",
    )
    UPLOADS_COMPLETED = Counter(
        "vidpipe_uploads_completed_total",
        "Upload sessions handed to assembly",
    )
    ASSEMBLY_COUNT = Counter(
        "vidpipe_assembly_total",
        "Assembly attempts",
        ["status"],
    )
    ASSEMBLY_LATENCY = Histogram(
        "vidpipe_assembly_duration_seconds",
        "Assembly duration",
    )
    VIDEO_TRANSCODE_COUNT = Counter(
        "vidpipe_video_transcode_total",
        "Total rendition transcode attempts",
        ["quality", "status"],
    )
    VIDEO_TRANSCODE_LATENCY = Histogram(
        "vidpipe_video_transcode_duration_seconds",
        "Rendition transcode duration",
        ["quality"],
    )
    THUMBNAIL_COUNT = Counter(
        "vidpipe_thumbnail_total",
        "Total thumbnail generation attempts",
        ["status"],
    )
    JOBS_RUNNING = Gauge(
        "vidpipe_jobs_running",
        "Units of work currently running in this process",
    )
    VIDEOS_BY_STATUS = Gauge(
        "vidpipe_videos",
        "Stored videos by lifecycle status",
        ["status"],
        multiprocess_mode="livemax",
    )
else:
    REQUEST_LATENCY = None
    REQUEST_COUNT = None
    REQUEST_IN_FLIGHT = None
    CHUNKS_STORED = None
    CHUNK_BYTES = None
    UPLOADS_COMPLETED = None
    ASSEMBLY_COUNT = None
    ASSEMBLY_LATENCY = None
    VIDEO_TRANSCODE_COUNT = None
    VIDEO_TRANSCODE_LATENCY = None
    THUMBNAIL_COUNT = None
    JOBS_RUNNING = None
    VIDEOS_BY_STATUS = None


def _get_metrics_registry() -> CollectorRegistry:
    if PROMETHEUS_MULTIPROC_ENABLED:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return registry
    return REGISTRY
