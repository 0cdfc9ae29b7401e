"""Tracking of network round trip times for adjusting protocol timeouts."""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import timedelta

_ZERO = timedelta(0)


@dataclass(frozen=True)
class TrackerConfig:
    """Configuration of a :class:`Tracker`."""

    count: int = 100
    """Number of observed round trip times kept in memory."""
    percentile: float = 0.99
    """Position in the sorted observations used as the new value, 0.0 to 1.0."""
    alpha: float = 0.3
    """Smoothing factor applied to a newly calculated value, 0.0 to 1.0."""
    # The minimum accounts for scheduling inconsistencies.
    minimum: timedelta = timedelta(milliseconds=5)
    default: timedelta = timedelta(milliseconds=100)
    # A full protocol period of one second needs three round trips, so stay below a third.
    maximum: timedelta = timedelta(milliseconds=300)


DEFAULT_TRACKER_CONFIG = TrackerConfig()


def _clamp(value, low, high):
    return max(low, min(value, high))


class Tracker:
    """Tracks round trip times and derives a smoothed percentile value from them.

    Safe for concurrent use from several threads.
    """

    def __init__(
        self,
        *,
        count: int | None = None,
        percentile: float | None = None,
        alpha: float | None = None,
        default: timedelta | None = None,
        minimum: timedelta | None = None,
        maximum: timedelta | None = None,
    ) -> None:
        base = DEFAULT_TRACKER_CONFIG
        count = base.count if count is None else max(1, count)
        percentile = base.percentile if percentile is None else _clamp(percentile, 0.0, 1.0)
        alpha = base.alpha if alpha is None else _clamp(alpha, 0.0, 1.0)
        default = base.default if default is None else max(_ZERO, default)
        minimum = base.minimum if minimum is None else max(_ZERO, minimum)
        maximum = base.maximum if maximum is None else max(_ZERO, maximum)

        if maximum < minimum:
            minimum = maximum
        if default < minimum:
            default = minimum
        if maximum < default:
            default = maximum

        self._config = TrackerConfig(
            count=count,
            percentile=percentile,
            alpha=alpha,
            minimum=minimum,
            default=default,
            maximum=maximum,
        )
        self._lock = threading.Lock()
        # Pre-filled with the default so the buffer is always full.
        self._observed: deque[timedelta] = deque([default] * count, maxlen=count)
        self._calculated = default

    @property
    def config(self) -> TrackerConfig:
        """The effective configuration of this tracker."""
        return self._config

    def reset(self) -> None:
        """Restore the state of a newly created tracker."""
        with self._lock:
            self._observed.extend([self._config.default] * self._config.count)
            self._calculated = self._config.default

    def add_observed(self, round_trip_time: timedelta) -> None:
        """Record an observed round trip time, replacing the oldest one."""
        with self._lock:
            self._observed.append(round_trip_time)

    def update_calculated(self) -> None:
        """Recalculate the round trip time from the percentile and smoothing factor."""
        with self._lock:
            ordered = sorted(self._observed)
            index = math.floor((len(ordered) - 1) * self._config.percentile)
            newest = ordered[index]
            alpha = self._config.alpha
            smoothed = newest * alpha + self._calculated * (1.0 - alpha)
            self._calculated = _clamp(smoothed, self._config.minimum, self._config.maximum)

    @property
    def calculated(self) -> timedelta:
        """The current calculated round trip time."""
        with self._lock:
            return self._calculated