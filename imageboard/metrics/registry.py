"""Thread-safe, label-indexed metrics registry shared by request and background threads."""

from __future__ import annotations

import decimal
import enum
import numbers
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Tuple, Union

from .exceptions import InvalidLabels, SchemaConflict, TypeMismatch, UnknownMetric

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

Number = Union[int, float]


class MetricKind(str, enum.Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


class MergePolicy(str, enum.Enum):
    """How two values recorded under the same label set combine when sets are merged.

    Every policy is associative and commutative, so a fold over any number of
    peer snapshots gives the same result regardless of arrival order.
    """

    SUM = "sum"
    MAX = "max"
    MIN = "min"

    def combine(self, left: Number, right: Number) -> Number:
        if self is MergePolicy.MAX:
            return max(left, right)
        if self is MergePolicy.MIN:
            return min(left, right)
        return left + right


def _label_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True)
class LabelSet:
    """Immutable, order-insensitive set of label key/value pairs identifying one series."""

    pairs: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def of(cls, labels: Union["LabelSet", Mapping[str, Any], None] = None) -> "LabelSet":
        if isinstance(labels, LabelSet):
            return labels
        if not labels:
            return _EMPTY_LABELS
        pairs = []
        for key, value in labels.items():
            if not isinstance(key, str) or not _LABEL_NAME_RE.match(key):
                raise InvalidLabels(f"Invalid label name: {key!r}")
            pairs.append((key, _label_value(value)))
        return cls(tuple(sorted(pairs)))

    def keys(self) -> Tuple[str, ...]:
        return tuple(key for key, _ in self.pairs)

    def as_dict(self) -> Dict[str, str]:
        return dict(self.pairs)

    def merged(self, labels: Union["LabelSet", Mapping[str, Any], None]) -> "LabelSet":
        """Return a new label set with ``labels`` layered over this one."""
        extra = LabelSet.of(labels)
        if not self.pairs:
            return extra
        if not extra.pairs:
            return self
        combined = dict(self.pairs)
        combined.update(extra.pairs)
        return LabelSet(tuple(sorted(combined.items())))

    def __bool__(self) -> bool:
        return bool(self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)


_EMPTY_LABELS = LabelSet()


def _coerce_value(name: str, value: Any) -> Number:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        return float(value)
    if isinstance(value, decimal.Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return float(value)
    raise TypeMismatch(f"Metric {name} expects a numeric value, got {type(value).__name__}")


class Sample(NamedTuple):
    name: str
    labels: LabelSet
    value: Number
    help: str
    kind: MetricKind


class Metric:
    """A named measurement holding one value per label set."""

    def __init__(
        self,
        name: str,
        kind: Union[MetricKind, str],
        help: str,
        label_names: Optional[Iterable[str]] = None,
        default_labels: Union[LabelSet, Mapping[str, Any], None] = None,
        merge_policy: Union[MergePolicy, str] = MergePolicy.SUM,
    ):
        if not isinstance(name, str) or not _METRIC_NAME_RE.match(name):
            raise ValueError(f"Invalid metric name: {name!r}")
        try:
            self.kind = MetricKind(kind)
            self.merge_policy = MergePolicy(merge_policy)
        except ValueError as exc:
            raise SchemaConflict(f"Metric {name}: {exc}") from exc
        if self.kind is MetricKind.COUNTER and self.merge_policy is not MergePolicy.SUM:
            raise SchemaConflict(f"Counter {name} must merge by sum, not {self.merge_policy.value}")

        self.name = name
        self.help = help
        self.default_labels = LabelSet.of(default_labels)
        self.label_names: Optional[Tuple[str, ...]] = None
        if label_names is not None:
            declared = set(label_names) | set(self.default_labels.keys())
            for label_name in declared:
                if not _LABEL_NAME_RE.match(label_name):
                    raise InvalidLabels(f"Invalid label name {label_name!r} for metric {name}")
            self.label_names = tuple(sorted(declared))

        self._lock = threading.Lock()
        self._series: Dict[LabelSet, Number] = {}

    def same_definition(self, other: "Metric") -> bool:
        return (
            self.kind is other.kind
            and self.help == other.help
            and self.label_names == other.label_names
            and self.merge_policy is other.merge_policy
        )

    def labels_for(self, labels: Union[LabelSet, Mapping[str, Any], None]) -> LabelSet:
        """Apply default labels and check the result against the declared label names."""
        label_set = self.default_labels.merged(labels)
        if self.label_names is not None and label_set.keys() != self.label_names:
            raise InvalidLabels(
                f"Metric {self.name} expects labels {list(self.label_names)}, "
                f"got {list(label_set.keys())}"
            )
        return label_set

    def prepare(self, labels, value) -> Optional[Tuple[LabelSet, Number]]:
        """Validate a write without applying it. Returns None for an absent value."""
        label_set = self.labels_for(labels)
        if value is None:
            return None
        return label_set, _coerce_value(self.name, value)

    def store(self, label_set: LabelSet, value: Number) -> None:
        with self._lock:
            self._series[label_set] = value

    def set(self, labels, value) -> None:
        prepared = self.prepare(labels, value)
        if prepared is not None:
            self.store(*prepared)

    def value(self, labels=None) -> Optional[Number]:
        label_set = self.labels_for(labels)
        with self._lock:
            return self._series.get(label_set)

    def series(self) -> List[Tuple[LabelSet, Number]]:
        with self._lock:
            return list(self._series.items())

    def copy(self) -> "Metric":
        clone = Metric(
            self.name,
            self.kind,
            self.help,
            label_names=self.label_names,
            default_labels=self.default_labels,
            merge_policy=self.merge_policy,
        )
        with self._lock:
            clone._series = dict(self._series)
        return clone

    def merged_with(self, other: "Metric") -> "Metric":
        if not self.same_definition(other):
            raise SchemaConflict(
                f"Cannot merge metric {self.name}: "
                f"{self.kind.value} {self.help!r} vs {other.kind.value} {other.help!r}"
            )
        defaults = self.default_labels if self.default_labels == other.default_labels else None
        result = Metric(
            self.name,
            self.kind,
            self.help,
            label_names=self.label_names,
            default_labels=defaults,
            merge_policy=self.merge_policy,
        )
        series = dict(self.series())
        for label_set, value in other.series():
            if label_set in series:
                series[label_set] = self.merge_policy.combine(series[label_set], value)
            else:
                series[label_set] = value
        result._series = series
        return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._series)

    def __eq__(self, other):
        if not isinstance(other, Metric):
            return NotImplemented
        return (
            self.name == other.name
            and self.same_definition(other)
            and dict(self.series()) == dict(other.series())
        )

    __hash__ = None

    def __repr__(self):
        return f"<Metric {self.name} {self.kind.value} series={len(self)}>"


SchemaEntry = Union[Tuple[Any, str], Tuple[Any, str, Mapping[str, Any]]]


class MetricSet:
    """Registry owning a mapping of metric name to Metric, kept in registration order.

    The set lock guards only the definition map; each metric guards its own
    series, so concurrent writers to different metrics never contend.
    """

    def __init__(
        self,
        schema: Optional[Mapping[str, SchemaEntry]] = None,
        default_labels: Union[LabelSet, Mapping[str, Any], None] = None,
    ):
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()
        if schema:
            self.register_many(schema, default_labels=default_labels)

    def register(
        self,
        name: str,
        kind: Union[MetricKind, str],
        help: str,
        labels: Optional[Iterable[str]] = None,
        default_labels: Union[LabelSet, Mapping[str, Any], None] = None,
        merge_policy: Union[MergePolicy, str] = MergePolicy.SUM,
    ) -> Metric:
        """Add a metric definition, or return the existing identical one.

        Raises:
            SchemaConflict: If ``name`` is already registered with a different definition.
        """
        candidate = Metric(
            name,
            kind,
            help,
            label_names=labels,
            default_labels=default_labels,
            merge_policy=merge_policy,
        )
        with self._lock:
            existing = self._metrics.get(name)
            if existing is None:
                self._metrics[name] = candidate
                return candidate
        if not existing.same_definition(candidate):
            raise SchemaConflict(
                f"Metric {name} is already registered as {existing.kind.value} "
                f"{existing.help!r}; cannot redefine as {candidate.kind.value} {candidate.help!r}"
            )
        return existing

    def register_many(
        self,
        schema: Mapping[str, SchemaEntry],
        default_labels: Union[LabelSet, Mapping[str, Any], None] = None,
    ) -> None:
        """Register every ``name: (kind, help[, options])`` entry of a declarative schema."""
        for name, entry in schema.items():
            kind, help_text = entry[0], entry[1]
            options = dict(entry[2]) if len(entry) > 2 else {}
            options.setdefault("default_labels", default_labels)
            self.register(name, kind, help_text, **options)

    def get(self, name: str) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            raise UnknownMetric(f"Unknown metric: {name}")
        return metric

    __getitem__ = get

    def set(self, name: str, labels=None, value=None, kind: Union[MetricKind, str, None] = None) -> None:
        """Replace the value recorded for one label set of a registered metric.

        Counters are not incremented here; callers copy in an already-monotonic
        reading. A ``None`` value leaves the series absent.
        """
        metric = self.get(name)
        if kind is not None and MetricKind(kind) is not metric.kind:
            raise TypeMismatch(
                f"Metric {name} is a {metric.kind.value}, not a {MetricKind(kind).value}"
            )
        metric.set(labels, value)

    def set_many(self, values: Mapping[str, Any], labels=None) -> None:
        """Set several metrics sharing one label set. Nothing is written unless every entry is valid."""
        prepared = []
        for name, value in values.items():
            metric = self.get(name)
            prepared.append((metric, metric.prepare(labels, value)))
        for metric, write in prepared:
            if write is not None:
                metric.store(*write)

    def value(self, name: str, labels=None) -> Optional[Number]:
        return self.get(name).value(labels)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._metrics)

    def copy(self) -> "MetricSet":
        """Return an independent snapshot; later writes to this set do not affect it."""
        result = MetricSet()
        for metric in self:
            result._metrics[metric.name] = metric.copy()
        return result

    def merge(self, other: "MetricSet") -> "MetricSet":
        """Return a new set combining both inputs.

        Series sharing a label set combine via the metric's merge policy (a sum
        unless declared otherwise); all other series are carried over unchanged.
        """
        result = self.copy()
        for metric in other:
            mine = result._metrics.get(metric.name)
            if mine is None:
                result._metrics[metric.name] = metric.copy()
            else:
                result._metrics[metric.name] = mine.merged_with(metric)
        return result

    def render(self) -> List[Sample]:
        samples = []
        for metric in self:
            for label_set, value in metric.series():
                samples.append(Sample(metric.name, label_set, value, metric.help, metric.kind))
        return samples

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": [
                {
                    "name": metric.name,
                    "kind": metric.kind.value,
                    "help": metric.help,
                    "labels": list(metric.label_names) if metric.label_names is not None else None,
                    "merge_policy": metric.merge_policy.value,
                    "series": [
                        {"labels": label_set.as_dict(), "value": value}
                        for label_set, value in metric.series()
                    ],
                }
                for metric in self
            ]
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MetricSet":
        """Rebuild a set from :meth:`to_dict` output. Raises ValueError on malformed input."""
        result = cls()
        try:
            for entry in data["metrics"]:
                metric = result.register(
                    entry["name"],
                    entry["kind"],
                    entry["help"],
                    labels=entry.get("labels"),
                    merge_policy=entry.get("merge_policy", MergePolicy.SUM),
                )
                for point in entry["series"]:
                    metric.set(point["labels"], point["value"])
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Malformed metric set payload: {exc!r}") from exc
        return result

    def __iter__(self) -> Iterator[Metric]:
        with self._lock:
            metrics = list(self._metrics.values())
        return iter(metrics)

    def __contains__(self, name) -> bool:
        return name in self._metrics

    def __len__(self) -> int:
        return len(self._metrics)

    def __eq__(self, other):
        if not isinstance(other, MetricSet):
            return NotImplemented
        mine = {metric.name: metric for metric in self}
        theirs = {metric.name: metric for metric in other}
        return mine == theirs

    __hash__ = None

    def __repr__(self):
        return f"<MetricSet metrics={len(self)}>"
