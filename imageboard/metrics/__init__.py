"""Metrics package: label-indexed registry, per-process snapshots, and cross-worker aggregation."""

from .aggregator import Aggregator
from .application import ApplicationMetrics
from .counters import ActivityCounters
from .exceptions import (
    InvalidLabels,
    MetricsError,
    PeerUnreachable,
    SchemaConflict,
    StoreQueryFailure,
    TypeMismatch,
    UnknownMetric,
)
from .exposition import CONTENT_TYPE, MetricSetCollector, render_text
from .peers import PeerHandle, PeerRegistry
from .process import ProcessMetrics, SnapshotProvider
from .registry import LabelSet, MergePolicy, Metric, MetricKind, MetricSet, Sample

__all__ = [
    "ActivityCounters",
    "Aggregator",
    "ApplicationMetrics",
    "CONTENT_TYPE",
    "InvalidLabels",
    "LabelSet",
    "MergePolicy",
    "Metric",
    "MetricKind",
    "MetricSet",
    "MetricSetCollector",
    "MetricsError",
    "PeerHandle",
    "PeerRegistry",
    "PeerUnreachable",
    "ProcessMetrics",
    "Sample",
    "SchemaConflict",
    "SnapshotProvider",
    "StoreQueryFailure",
    "TypeMismatch",
    "UnknownMetric",
    "render_text",
]
