"""In-process metrics for the scheduler and the transports."""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Generic, Protocol, TypeVar

DEFAULT_BUCKETS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class Collector(Protocol):
    """Anything that can be registered with a :class:`Registry`."""

    name: str


class Counter:
    """A monotonically increasing value."""

    def __init__(self, name: str = "", help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._lock = threading.Lock()
        self._value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increase the counter by ``amount``, which must not be negative."""
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        with self._lock:
            self._value += amount

    def value(self) -> float:
        """Return the current value."""
        with self._lock:
            return self._value


class Gauge:
    """A value that can go up and down."""

    def __init__(self, name: str = "", help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._lock = threading.Lock()
        self._value = 0.0

    def set(self, value: float) -> None:
        """Set the gauge to ``value``."""
        with self._lock:
            self._value = float(value)

    def value(self) -> float:
        """Return the current value."""
        with self._lock:
            return self._value


class Histogram:
    """Counts observations in cumulative buckets."""

    def __init__(
        self,
        name: str = "",
        help_text: str = "",
        buckets: Iterable[float] = DEFAULT_BUCKETS,
    ) -> None:
        bounds = [float(bound) for bound in buckets]
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in strictly increasing order")
        if not bounds or bounds[-1] != math.inf:
            bounds.append(math.inf)
        self.name = name
        self.help_text = help_text
        self._bounds = tuple(bounds)
        self._lock = threading.Lock()
        self._counts = [0] * len(bounds)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        """Record one observation."""
        with self._lock:
            for position, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[position] += 1
                    break
            self._sum += value
            self._count += 1

    def bucket_counts(self) -> dict[float, int]:
        """Return the cumulative count of observations for each upper bound."""
        with self._lock:
            result: dict[float, int] = {}
            running = 0
            for bound, count in zip(self._bounds, self._counts):
                running += count
                result[bound] = running
            return result

    @property
    def count(self) -> int:
        """Total number of observations."""
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        """Sum of all observed values."""
        with self._lock:
            return self._sum


M = TypeVar("M")


class LabeledMetric(Generic[M]):
    """A family of metrics distinguished by label values."""

    def __init__(
        self,
        name: str,
        help_text: str,
        label_names: Sequence[str],
        factory: Callable[[], M],
    ) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._factory = factory
        self._lock = threading.Lock()
        self._children: dict[tuple[str, ...], M] = {}

    def labels(self, *args: str) -> M:
        """Return the child metric for the given label values, creating it on first use."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"expected {len(self.label_names)} label values for {self.name!r}, got {len(args)}"
            )
        key = tuple(args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._factory()
                self._children[key] = child
            return child


class Registry:
    """Holds a set of uniquely named collectors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._collectors: dict[str, Collector] = {}

    def register(self, metric: Collector) -> None:
        """Register ``metric``; a second collector with the same name is rejected."""
        with self._lock:
            if metric.name in self._collectors:
                raise ValueError(f"a collector named {metric.name!r} is already registered")
            self._collectors[metric.name] = metric

    def collectors(self) -> tuple[Collector, ...]:
        """Return the registered collectors in registration order."""
        with self._lock:
            return tuple(self._collectors.values())


def _counter_family(name: str, help_text: str, label: str) -> LabeledMetric[Counter]:
    return LabeledMetric(name, help_text, (label,), Counter)


# Scheduler metrics. Operations: direct_ping, indirect_ping, end_of_protocol_period, request_list.
OPERATIONS_TOTAL = _counter_family(
    "membership_scheduler_operations_total",
    "Total number of scheduler operations executed.",
    "operation",
)
OPERATION_ERRORS_TOTAL = _counter_family(
    "membership_scheduler_operation_errors_total",
    "Total number of scheduler operation errors.",
    "operation",
)
OPERATION_DURATION_SECONDS: LabeledMetric[Histogram] = LabeledMetric(
    "membership_scheduler_operation_duration_seconds",
    "Duration of scheduler operations in seconds.",
    ("operation",),
    Histogram,
)
EXPECTED_RTT_SECONDS = Gauge(
    "membership_scheduler_expected_rtt_seconds",
    "Current expected round-trip time in seconds.",
)

# Transport metrics.
TRANSMIT_BYTES = _counter_family(
    "membership_list_transport_transmit_bytes_total",
    "Total number of bytes transmitted.",
    "transport",
)
TRANSMIT_ERRORS = _counter_family(
    "membership_list_transport_transmit_errors_total",
    "Total number of errors during transmit.",
    "transport",
)
RECEIVE_BYTES = _counter_family(
    "membership_list_transport_receive_bytes_total",
    "Total number of bytes received.",
    "transport",
)
RECEIVE_ERRORS = _counter_family(
    "membership_list_transport_receive_errors_total",
    "Total number of errors during receive.",
    "transport",
)
ENCRYPTIONS = _counter_family(
    "membership_list_transport_encryptions_total",
    "Total number of encryption operations performed.",
    "transport",
)
DECRYPTIONS = _counter_family(
    "membership_list_transport_decryptions_total",
    "Total number of decryption operations performed.",
    "transport",
)

_SCHEDULER_METRICS: tuple[Collector, ...] = (
    OPERATIONS_TOTAL,
    OPERATION_ERRORS_TOTAL,
    OPERATION_DURATION_SECONDS,
    EXPECTED_RTT_SECONDS,
)
_TRANSPORT_METRICS: tuple[Collector, ...] = (
    TRANSMIT_BYTES,
    TRANSMIT_ERRORS,
    RECEIVE_BYTES,
    RECEIVE_ERRORS,
    ENCRYPTIONS,
    DECRYPTIONS,
)


def register_scheduler_metrics(registry: Registry) -> None:
    """Register all scheduler metrics with ``registry``."""
    for metric in _SCHEDULER_METRICS:
        registry.register(metric)


def register_transport_metrics(registry: Registry) -> None:
    """Register all transport metrics with ``registry``."""
    for metric in _TRANSPORT_METRICS:
        registry.register(metric)