"""Metrics that carry the time of the observation they represent.

Cloudflare analytics arrive minutes after the traffic they describe, so the
samples we expose are stamped with the bucket time rather than scrape time.
Prometheus rejects samples that are too far in the past, so points whose last
observation is older than ``max_age`` are left out of a collection.
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from .helpers import utcnow

COUNTER = "counter"
GAUGE = "gauge"

LabelValues = Union[Mapping[str, str], Sequence[str]]


class Sample(NamedTuple):
    name: str
    labels: Dict[str, str]
    value: float
    timestamp: datetime


class TimestampedMetric:
    """One label set of a :class:`TimestampedMetricVec`."""

    def __init__(self, metric_type: str, labelvalues: Tuple[str, ...], lock: threading.Lock):
        self.metric_type = metric_type
        self.labelvalues = labelvalues
        self.value = 0.0
        self.timestamp: Optional[datetime] = None
        self._lock = lock

    def add(self, value: float, observed_at: datetime) -> None:
        if self.metric_type == COUNTER and value < 0:
            raise ValueError("counters can only be incremented by non-negative amounts")
        with self._lock:
            self.value += value
            self.timestamp = observed_at

    def set(self, value: float, observed_at: datetime) -> None:
        with self._lock:
            self.value = float(value)
            self.timestamp = observed_at


class TimestampedMetricVec:
    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        metric_type: str = COUNTER,
    ):
        if metric_type not in (COUNTER, GAUGE):
            raise ValueError(f"unsupported metric type {metric_type!r}")
        if metric_type == COUNTER and name.endswith("_total"):
            name = name[: -len("_total")]
        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self.metric_type = metric_type
        self._lock = threading.Lock()
        self._metrics: Dict[Tuple[str, ...], TimestampedMetric] = {}

    def _labelvalues(self, labels: LabelValues) -> Tuple[str, ...]:
        if isinstance(labels, Mapping):
            if set(labels) != set(self.labelnames):
                raise ValueError(
                    f"{self.name}: expected labels {self.labelnames}, got {tuple(labels)}"
                )
            return tuple(str(labels[name]) for name in self.labelnames)
        values = tuple(str(value) for value in labels)
        if len(values) != len(self.labelnames):
            raise ValueError(
                f"{self.name}: expected {len(self.labelnames)} label values, got {len(values)}"
            )
        return values

    def labels(self, *labelvalues: str, **labelkwargs: str) -> TimestampedMetric:
        if labelvalues and labelkwargs:
            raise ValueError("can't pass both positional and keyword label values")
        key = self._labelvalues(labelkwargs if labelkwargs else labelvalues)
        with self._lock:
            metric = self._metrics.get(key)
            if metric is None:
                metric = TimestampedMetric(self.metric_type, key, self._lock)
                self._metrics[key] = metric
        return metric

    def add(self, labels: LabelValues, value: float, observed_at: datetime) -> None:
        self.labels(*self._labelvalues(labels)).add(value, observed_at)

    def set(self, labels: LabelValues, value: float, observed_at: datetime) -> None:
        self.labels(*self._labelvalues(labels)).set(value, observed_at)

    def points(self) -> List[Tuple[Tuple[str, ...], float, Optional[datetime]]]:
        with self._lock:
            return [
                (metric.labelvalues, metric.value, metric.timestamp)
                for metric in self._metrics.values()
            ]

    def family(self) -> Metric:
        if self.metric_type == COUNTER:
            return CounterMetricFamily(self.name, self.documentation, labels=self.labelnames)
        return GaugeMetricFamily(self.name, self.documentation, labels=self.labelnames)


class TimestampedMetricStore:
    """Holds every timestamped vector and exposes them as one collector.

    Register the store on a ``CollectorRegistry``; pass ``lock`` to make
    collection wait for an in-flight scrape pass.
    """

    def __init__(
        self,
        max_age: timedelta = timedelta(minutes=15),
        lock: Optional[threading.Lock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.max_age = max_age
        self.clock = clock
        self._pass_lock = lock
        self._vecs: Dict[str, TimestampedMetricVec] = {}

    def _register(self, vec: TimestampedMetricVec) -> TimestampedMetricVec:
        if vec.name in self._vecs:
            raise ValueError(f"duplicate timestamped metric {vec.name}")
        self._vecs[vec.name] = vec
        return vec

    def counter(self, name: str, documentation: str, labelnames: Sequence[str] = ()) -> TimestampedMetricVec:
        return self._register(TimestampedMetricVec(name, documentation, labelnames, COUNTER))

    def gauge(self, name: str, documentation: str, labelnames: Sequence[str] = ()) -> TimestampedMetricVec:
        return self._register(TimestampedMetricVec(name, documentation, labelnames, GAUGE))

    def get(self, name: str) -> TimestampedMetricVec:
        if name.endswith("_total") and name not in self._vecs:
            name = name[: -len("_total")]
        return self._vecs[name]

    def samples(self) -> Iterator[Sample]:
        now = self.clock()
        cutoff = now - self.max_age
        for vec in list(self._vecs.values()):
            for labelvalues, value, timestamp in vec.points():
                # Never-set points are stamped "now" instead of the epoch.
                if timestamp is None:
                    timestamp = now
                if timestamp < cutoff:
                    continue
                yield Sample(vec.name, dict(zip(vec.labelnames, labelvalues)), value, timestamp)

    def _families(self) -> List[Metric]:
        families = {name: vec.family() for name, vec in self._vecs.items()}
        for sample in self.samples():
            vec = self._vecs[sample.name]
            families[sample.name].add_metric(
                [sample.labels[name] for name in vec.labelnames],
                sample.value,
                timestamp=sample.timestamp.timestamp(),
            )
        return list(families.values())

    def collect(self) -> Iterator[Metric]:
        if self._pass_lock is None:
            return iter(self._families())
        with self._pass_lock:
            return iter(self._families())

    def describe(self) -> Iterator[Metric]:
        return iter([vec.family() for vec in self._vecs.values()])
