"""Helpers for SWIM protocol parameters, cluster size iteration and incarnation numbers."""

from __future__ import annotations

import math
import sys
from collections.abc import Iterator, MutableSequence
from datetime import timedelta
from typing import TypeVar

T = TypeVar("T")

_INCARNATION_MASK = 0xFFFF
_INCARNATION_HALF_SPACE = 1 << 15
_MAX_MEMBER_COUNT_LIMIT = sys.maxsize >> 1


def cluster_sizes(min_member_count: int, linear_cutoff: int, max_member_count: int) -> Iterator[int]:
    """Yield cluster sizes: linear up to ``linear_cutoff``, then doubling, always ending with the maximum.

    The arguments are validated immediately, before iteration starts.
    """
    if min_member_count < 1:
        raise ValueError("the min member count needs to be a positive integer")
    if linear_cutoff < min_member_count:
        raise ValueError("the linear cutoff needs to be equal or bigger than the min member count")
    if max_member_count < linear_cutoff:
        raise ValueError("the max member count needs to be equal or bigger than the linear cutoff")
    if max_member_count > _MAX_MEMBER_COUNT_LIMIT:
        raise ValueError("the max member count exceeds the maximum limit")
    return _cluster_sizes(min_member_count, linear_cutoff, max_member_count)


def _cluster_sizes(min_member_count: int, linear_cutoff: int, max_member_count: int) -> Iterator[int]:
    last_yielded = 0
    member_count = min_member_count
    while member_count <= max_member_count:
        yield member_count
        last_yielded = member_count
        if member_count < linear_cutoff:
            member_count += 1
        else:
            member_count *= 2

    # Doubling may overshoot the maximum; make sure it is yielded anyway.
    if last_yielded < max_member_count:
        yield max_member_count


def swap_delete(items: MutableSequence[T], index: int) -> T:
    """Remove the element at ``index`` by moving the last element into its place.

    The order of the remaining elements changes, but no elements are shifted.
    Returns the removed element.
    """
    if not 0 <= index < len(items):
        raise IndexError("swap_delete index out of range")
    removed = items[index]
    last = items.pop()
    if index < len(items):
        items[index] = last
    return removed


def ping_target_probability(member_count: int, member_reliability: float) -> float:
    """Probability of a member being chosen as ping target in a protocol period (SWIM 3.1)."""
    return 1.0 - math.pow(1.0 - 1.0 / member_count * member_reliability, member_count - 1.0)


def ping_target_probability_limes(member_reliability: float) -> float:
    """Ping target probability as the number of members approaches infinity (SWIM 3.1)."""
    return 1.0 - math.exp(-member_reliability)


def failure_detection_duration(
    protocol_period: timedelta, member_count: int, member_reliability: float
) -> timedelta:
    """Expected time between the failure of a member and its detection (SWIM 3.1)."""
    return protocol_period / ping_target_probability(member_count, member_reliability)


def failure_detection_duration_limes(protocol_period: timedelta, member_reliability: float) -> timedelta:
    """Expected failure detection time as the number of members approaches infinity (SWIM 3.1)."""
    return protocol_period / ping_target_probability_limes(member_reliability)


def failure_detection_false_positive_probability(
    network_reliability: float, member_reliability: float
) -> float:
    """Probability of a false positive failure detection (SWIM 3.1)."""
    exp_reliability = math.exp(member_reliability)
    return (
        member_reliability
        * (1.0 - network_reliability**2.0)
        * (1.0 - member_reliability * network_reliability**4.0)
        * exp_reliability
        / (exp_reliability - 1.0)
    )


def dissemination_periods(safety_factor: float, member_count: int) -> float:
    """Number of protocol periods needed to spread information to all members."""
    # One is added to the member count as in the SWIM paper's performance evaluation.
    return safety_factor * math.log(member_count + 1)


def suspicion_timeout(protocol_period: timedelta, safety_factor: float, member_count: int) -> timedelta:
    """Time a suspect member has before it is declared faulty."""
    return protocol_period * dissemination_periods(safety_factor, member_count)


def incarnation_less_than(lhs: int, rhs: int) -> bool:
    """Report whether 16-bit incarnation ``lhs`` precedes ``rhs``, accounting for wraparound."""
    diff = (rhs - lhs) & _INCARNATION_MASK
    return 0 < diff < _INCARNATION_HALF_SPACE


def incarnation_max(lhs: int, rhs: int) -> int:
    """Return the later of two 16-bit incarnation numbers, accounting for wraparound."""
    return rhs if incarnation_less_than(lhs, rhs) else lhs