"""Timed driving of the membership protocol: pings, protocol period ends and list requests."""

from __future__ import annotations

import abc
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta

from swimlist.metrics import (
    EXPECTED_RTT_SECONDS,
    OPERATION_DURATION_SECONDS,
    OPERATION_ERRORS_TOTAL,
    OPERATIONS_TOTAL,
)
from swimlist.roundtriptime import Tracker


def _default_logger() -> logging.Logger:
    return logging.getLogger("swimlist.scheduler")


@dataclass(frozen=True)
class SchedulerConfig:
    """Configuration of a :class:`Scheduler`."""

    logger: logging.Logger = field(default_factory=_default_logger)
    # A full cycle of direct ping and indirect pings; must be at least three round trips.
    protocol_period: timedelta = timedelta(seconds=1)
    # Longest single sleep; bounds how long a shutdown may be delayed.
    max_sleep_duration: timedelta = timedelta(milliseconds=100)
    # Interval in which a full member list is requested from a random member.
    list_request_interval: timedelta = timedelta(minutes=1)
    round_trip_time_tracker: Tracker | None = None


DEFAULT_SCHEDULER_CONFIG = SchedulerConfig()


class Target(abc.ABC):
    """The membership algorithm as driven by the scheduler."""

    @abc.abstractmethod
    def direct_ping(self) -> None:
        """Start a protocol period with a direct ping."""

    @abc.abstractmethod
    def indirect_ping(self) -> None:
        """Send indirect pings for members that did not answer in time."""

    @abc.abstractmethod
    def end_of_protocol_period(self) -> None:
        """Declare suspects and faulty members at the end of the period."""

    @abc.abstractmethod
    def request_list(self) -> None:
        """Fetch the full member list from a random member."""


class Scheduler:
    """Runs the protocol period and list request tasks in background threads.

    Call :meth:`startup` once and :meth:`shutdown` once after it; create a new
    scheduler to restart.
    """

    def __init__(
        self,
        target: Target,
        *,
        round_trip_time_tracker: Tracker | None = None,
        logger: logging.Logger | None = None,
        protocol_period: timedelta | None = None,
        max_sleep_duration: timedelta | None = None,
        list_request_interval: timedelta | None = None,
    ) -> None:
        if round_trip_time_tracker is None:
            raise ValueError("you must provide a round trip time tracker")
        base = DEFAULT_SCHEDULER_CONFIG
        self._config = SchedulerConfig(
            logger=base.logger if logger is None else logger,
            protocol_period=base.protocol_period if protocol_period is None else protocol_period,
            max_sleep_duration=(
                base.max_sleep_duration if max_sleep_duration is None else max_sleep_duration
            ),
            list_request_interval=(
                base.list_request_interval if list_request_interval is None else list_request_interval
            ),
            round_trip_time_tracker=round_trip_time_tracker,
        )
        self._tracker = round_trip_time_tracker
        self._logger = self._config.logger
        self._target = target
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._started = False

    @property
    def config(self) -> SchedulerConfig:
        """The effective configuration of this scheduler."""
        return self._config

    def startup(self) -> None:
        """Start the background tasks driving the target."""
        if self._started:
            raise RuntimeError("scheduler has already been started")
        if self._config.list_request_interval <= timedelta(0):
            raise ValueError("list request interval must be positive")
        self._logger.info("Scheduler startup")
        self._started = True
        self._threads = [
            threading.Thread(target=self._protocol_period_task, name="swim-protocol-period", daemon=True),
            threading.Thread(target=self._request_list_task, name="swim-request-list", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def shutdown(self) -> None:
        """Stop the background tasks and wait until they have finished."""
        if not self._started:
            raise RuntimeError("scheduler has not been started")
        self._logger.info("Scheduler shutdown")
        self._stop.set()
        for thread in self._threads:
            thread.join()

    def __enter__(self) -> Scheduler:
        self.startup()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _protocol_period_task(self) -> None:
        self._logger.info("Protocol period background task started")
        try:
            self._run_protocol_periods()
        finally:
            self._logger.info("Protocol period background task finished")

    def _run_protocol_periods(self) -> None:
        period = self._config.protocol_period
        last_expected = timedelta(0)
        while True:
            start = time.monotonic()
            self._measure("direct_ping", self._target.direct_ping, "Scheduled direct ping.")

            # Always use the current value, but only log when it moved by more than 10%.
            current_expected = self._tracker.calculated
            EXPECTED_RTT_SECONDS.set(current_expected.total_seconds())
            if abs(current_expected - last_expected) > last_expected / 10:
                self._logger.info(
                    "Direct ping timeout adjusted: was %s, is %s", last_expected, current_expected
                )
                last_expected = current_expected

            if not self._wait_for(current_expected):
                return
            self._measure("indirect_ping", self._target.indirect_ping, "Scheduled indirect ping.")

            if not self._wait_for(period - current_expected):
                return
            self._measure("end_of_protocol_period", self._end_of_period, "End of protocol period.")

            elapsed = timedelta(seconds=time.monotonic() - start)
            if elapsed > period * 11 / 10:
                self._logger.warning(
                    "The protocol period was more than 10%% longer than expected. "
                    "This is a strong indication that the system is overloaded. "
                    "Members declared as suspect or faulty by this member are probably false positives. "
                    "want-duration=%s got-duration=%s",
                    period,
                    elapsed,
                )

    def _end_of_period(self) -> None:
        self._tracker.update_calculated()
        self._target.end_of_protocol_period()

    def _wait_for(self, timeout: timedelta) -> bool:
        """Sleep for ``timeout``; return False as soon as a shutdown is in progress."""
        if self._stop.is_set():
            return False
        deadline = time.monotonic() + timeout.total_seconds()
        max_sleep = self._config.max_sleep_duration.total_seconds()
        while (remaining := deadline - time.monotonic()) > 0:
            if self._stop.wait(min(remaining, max_sleep)):
                return False
        return True

    def _request_list_task(self) -> None:
        self._logger.info("Member list request background task started")
        try:
            # Request the list right away to know all members as soon as possible.
            self._measure("request_list", self._target.request_list, "Startup list request.")
            interval = self._config.list_request_interval.total_seconds()
            next_tick = time.monotonic() + interval
            while not self._stop.wait(max(0.0, next_tick - time.monotonic())):
                self._measure("request_list", self._target.request_list, "Scheduled list request.")
                next_tick += interval
                now = time.monotonic()
                if next_tick <= now:
                    # Drop ticks that were missed while the request was running.
                    next_tick = now + interval
        finally:
            self._logger.info("Member list request background task finished")

    def _measure(self, operation: str, action: Callable[[], None], message: str) -> None:
        start = time.perf_counter()
        try:
            action()
        except Exception:
            self._logger.exception(message)
            OPERATION_ERRORS_TOTAL.labels(operation).inc()
        OPERATION_DURATION_SECONDS.labels(operation).observe(time.perf_counter() - start)
        OPERATIONS_TOTAL.labels(operation).inc()