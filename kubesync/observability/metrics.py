"""Prometheus metrics for kubesync."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Informer metrics
informer_events_total = Counter(
    "kubesync_informer_events_total",
    "Resource events emitted by the informer pool",
    ["resource_type", "event_type"],
)

informer_errors_total = Counter(
    "kubesync_informer_errors_total",
    "Watch session errors recorded by the informer pool",
    ["resource_type"],
)

informer_reconnects_total = Counter(
    "kubesync_informer_reconnects_total",
    "Reconnection attempts scheduled after a disconnect or failed start",
    ["resource_type"],
)

informer_backoff_seconds = Histogram(
    "kubesync_informer_backoff_seconds",
    "Back-off delay applied before a reconnection attempt",
    ["resource_type"],
    buckets=(0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 60.0),
)

informers_active = Gauge(
    "kubesync_informers_active",
    "Number of informers currently registered in the pool",
)

informer_cached_resources = Gauge(
    "kubesync_informer_cached_resources",
    "Resources held in informer caches",
    ["context", "resource_type"],
)

# Delta metrics
deltas_total = Counter(
    "kubesync_deltas_total",
    "Resource deltas produced by delta calculators",
    ["resource_type", "delta_type"],
)

delta_updates_suppressed_total = Counter(
    "kubesync_delta_updates_suppressed_total",
    "MODIFIED events dropped because the sanitized resource was unchanged",
    ["resource_type"],
)

delta_batches_total = Counter(
    "kubesync_delta_batches_total",
    "Delta batches flushed",
    ["resource_type", "trigger"],
)

delta_batch_size = Histogram(
    "kubesync_delta_batch_size",
    "Number of deltas per flushed batch",
    buckets=(1, 2, 5, 10, 25, 50, 75, 100, 250, 500),
)

# Push metrics
push_batches_total = Counter(
    "kubesync_push_batches_total",
    "Delta batches delivered to the push sink",
    ["resource_type"],
)

push_failures_total = Counter(
    "kubesync_push_failures_total",
    "Push sink send failures",
    ["resource_type"],
)

push_skipped_total = Counter(
    "kubesync_push_skipped_total",
    "Delta batches not delivered because no live sink was set or the kind is not watched",
    ["reason"],
)
