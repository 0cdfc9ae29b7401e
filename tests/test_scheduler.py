import threading
import time
from datetime import timedelta

import pytest

from swimlist.metrics import (
    EXPECTED_RTT_SECONDS,
    OPERATION_ERRORS_TOTAL,
    OPERATIONS_TOTAL,
)
from swimlist.roundtriptime import Tracker
from swimlist.scheduler import DEFAULT_SCHEDULER_CONFIG, Scheduler, Target

RTT = timedelta(milliseconds=100)
PERIOD = timedelta(milliseconds=200)
TOLERANCE = 0.04


class RecordingTarget(Target):
    def __init__(self, fail_direct_ping=False):
        self.direct_ping_times = []
        self.indirect_ping_times = []
        self.end_of_protocol_period_times = []
        self.request_list_times = []
        self.fail_direct_ping = fail_direct_ping
        self._lock = threading.Lock()

    def _record(self, times):
        with self._lock:
            times.append(time.monotonic())

    def direct_ping(self):
        self._record(self.direct_ping_times)
        if self.fail_direct_ping:
            raise RuntimeError("direct ping failed")

    def indirect_ping(self):
        self._record(self.indirect_ping_times)

    def end_of_protocol_period(self):
        self._record(self.end_of_protocol_period_times)

    def request_list(self):
        self._record(self.request_list_times)


def fixed_tracker(rtt=RTT):
    return Tracker(default=rtt, minimum=rtt, maximum=rtt)


def make_scheduler(target, **kwargs):
    kwargs.setdefault("protocol_period", PERIOD)
    return Scheduler(target, round_trip_time_tracker=fixed_tracker(), **kwargs)


def test_requires_round_trip_time_tracker():
    with pytest.raises(ValueError):
        Scheduler(RecordingTarget())


def test_config_defaults_and_overrides():
    tracker = fixed_tracker()
    scheduler = Scheduler(RecordingTarget(), round_trip_time_tracker=tracker, protocol_period=PERIOD)
    assert scheduler.config.protocol_period == PERIOD
    assert scheduler.config.max_sleep_duration == DEFAULT_SCHEDULER_CONFIG.max_sleep_duration
    assert scheduler.config.list_request_interval == timedelta(minutes=1)
    assert scheduler.config.round_trip_time_tracker is tracker
    assert DEFAULT_SCHEDULER_CONFIG.protocol_period == timedelta(seconds=1)
    assert DEFAULT_SCHEDULER_CONFIG.max_sleep_duration == timedelta(milliseconds=100)


def test_schedules_correctly():
    target = RecordingTarget()
    scheduler = make_scheduler(target)
    scheduler.startup()
    time.sleep(5 * PERIOD.total_seconds() + 0.05)
    scheduler.shutdown()

    assert len(target.direct_ping_times) == 6
    assert len(target.indirect_ping_times) == 5
    assert len(target.end_of_protocol_period_times) == 5
    assert len(target.request_list_times) == 1

    for index in range(len(target.direct_ping_times) - 1):
        direct = target.direct_ping_times[index]
        assert abs(target.indirect_ping_times[index] - direct - RTT.total_seconds()) < TOLERANCE
        assert abs(target.end_of_protocol_period_times[index] - direct - PERIOD.total_seconds()) < TOLERANCE
        assert abs(target.direct_ping_times[index + 1] - direct - PERIOD.total_seconds()) < TOLERANCE


def test_shutdown_during_indirect_ping_wait():
    target = RecordingTarget()
    scheduler = make_scheduler(target)
    scheduler.startup()
    time.sleep(RTT.total_seconds() - 0.05)
    scheduler.shutdown()

    assert len(target.direct_ping_times) == 1
    assert target.indirect_ping_times == []


def test_shutdown_during_end_of_period_wait():
    target = RecordingTarget()
    scheduler = make_scheduler(target)
    scheduler.startup()
    time.sleep(PERIOD.total_seconds() - 0.05)
    scheduler.shutdown()

    assert len(target.direct_ping_times) == 1
    assert len(target.indirect_ping_times) == 1
    assert target.end_of_protocol_period_times == []


def test_periodic_list_requests():
    target = RecordingTarget()
    scheduler = make_scheduler(target, list_request_interval=timedelta(milliseconds=100))
    scheduler.startup()
    time.sleep(0.35)
    scheduler.shutdown()

    assert len(target.request_list_times) == 4


def test_errors_are_counted_and_scheduling_continues():
    errors_before = OPERATION_ERRORS_TOTAL.labels("direct_ping").value()
    target = RecordingTarget(fail_direct_ping=True)
    scheduler = make_scheduler(target)
    scheduler.startup()
    time.sleep(RTT.total_seconds() + 0.05)
    scheduler.shutdown()

    assert OPERATION_ERRORS_TOTAL.labels("direct_ping").value() == errors_before + 1
    assert len(target.indirect_ping_times) == 1


def test_operations_and_expected_rtt_metrics():
    ops_before = OPERATIONS_TOTAL.labels("direct_ping").value()
    lists_before = OPERATIONS_TOTAL.labels("request_list").value()
    target = RecordingTarget()
    with make_scheduler(target):
        time.sleep(0.05)

    assert OPERATIONS_TOTAL.labels("direct_ping").value() == ops_before + 1
    assert OPERATIONS_TOTAL.labels("request_list").value() == lists_before + 1
    assert EXPECTED_RTT_SECONDS.value() == pytest.approx(RTT.total_seconds())


def test_shutdown_before_startup_raises():
    scheduler = make_scheduler(RecordingTarget())
    with pytest.raises(RuntimeError):
        scheduler.shutdown()


def test_double_startup_raises():
    scheduler = make_scheduler(RecordingTarget())
    scheduler.startup()
    try:
        with pytest.raises(RuntimeError):
            scheduler.startup()
    finally:
        scheduler.shutdown()


def test_non_positive_list_request_interval_rejected():
    scheduler = make_scheduler(RecordingTarget(), list_request_interval=timedelta(0))
    with pytest.raises(ValueError):
        scheduler.startup()