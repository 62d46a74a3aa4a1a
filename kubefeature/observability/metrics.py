"""Prometheus metrics for the reconcile pipeline.

All collectors live in the default registry so the REST app can expose
them with ``prometheus_client.generate_latest()``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

reconcile_total = Counter(
    "kubefeature_reconcile_total",
    "Reconcile calls by feature kind and outcome.",
    ["feature", "outcome"],
)

reconcile_duration_seconds = Histogram(
    "kubefeature_reconcile_duration_seconds",
    "Wall-clock duration of a single reconcile call.",
    ["feature"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

deploy_total = Counter(
    "kubefeature_deploy_total",
    "Deploy calls issued to feature drivers.",
    ["feature"],
)

gc_deletions_total = Counter(
    "kubefeature_gc_deletions_total",
    "Stale resource deletions attempted by the garbage collector.",
    ["feature", "result"],
)

config_ref_missing_total = Counter(
    "kubefeature_config_ref_missing_total",
    "Config source refs skipped because they could not be resolved.",
    ["feature"],
)

managed_resources = Gauge(
    "kubefeature_managed_resources",
    "Resources currently tracked in the ledger, last written value per feature.",
    ["feature"],
)
