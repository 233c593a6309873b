"""Text exposition format for metric sets, as scraped by Prometheus-compatible monitors."""

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from .registry import MetricKind, MetricSet

CONTENT_TYPE = CONTENT_TYPE_LATEST


class MetricSetCollector:
    """Exposes one MetricSet to a prometheus_client registry.

    Families are yielded in registration order and samples in series order,
    so an unchanged set always renders to the same bytes.
    """

    def __init__(self, metric_set: MetricSet):
        self.metric_set = metric_set

    def collect(self):
        for metric in self.metric_set:
            if metric.kind is MetricKind.COUNTER:
                # CounterMetricFamily drops a trailing _total; samples carry it again.
                family = CounterMetricFamily(metric.name, metric.help)
                sample_name = f"{family.name}_total"
            else:
                family = GaugeMetricFamily(metric.name, metric.help)
                sample_name = family.name
            for labels, value in metric.series():
                family.add_sample(sample_name, labels.as_dict(), value)
            yield family


def render_text(metric_set: MetricSet) -> str:
    """Render every metric with its HELP and TYPE lines followed by one line per series."""
    registry = CollectorRegistry(auto_describe=False)
    registry.register(MetricSetCollector(metric_set))
    return generate_latest(registry).decode("utf-8")
