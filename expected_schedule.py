# -*- coding: utf-8 -*-
########################
# expected_schedule.py
########################
# Purpose:
# - Own the authored expected-event sequence for one lesson, sorted by timestamp.
# - Track which expected indices have been consumed (matched or declared missed).
# - Provide the candidate search used by TimingJudge.
#
# Design notes:
# - No Qt usage. Pure matching logic.
# - Sort is stable and keyed on timestamp only, so equal timestamps keep their authored order.
#   NaN timestamps sort last and can never be matched.
# - Consumed indices only grow between resets. There is no way to un-consume a single index.
# - Not thread safe. ScoreEngine confines every call to its worker thread.
#
########################
# Interfaces:
# Public classes:
# - class ExpectedSchedule
#   - __init__(events: Iterable[ExpectedEvent] = ())
#   - events() -> list[ExpectedEvent]
#   - total_count() -> int
#   - consumed_count() -> int
#   - is_consumed(index: int) -> bool
#   - reset() -> None
#   - mark_consumed(index: int) -> None
#   - find_best_unconsumed(*, note_number: int, timestamp: float, max_window_seconds: float)
#       -> Optional[tuple[int, ExpectedEvent]]
#   - unconsumed() -> list[tuple[int, ExpectedEvent]]
#
# Inputs:
# - ExpectedEvent sequence and (note_number, timestamp) queries.
#
# Outputs:
# - Candidate (index, ExpectedEvent) pairs for TimingJudge.
#
########################

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Set, Tuple

import scoring_models


def _timestamp_sort_key(event: scoring_models.ExpectedEvent) -> Tuple[bool, float]:
    # NaN compares false against everything and would leave the rest unsorted. Park it at the end.
    timestamp = float(event.timestamp)
    is_nan = math.isnan(timestamp)
    return is_nan, 0.0 if is_nan else timestamp


class ExpectedSchedule:
    def __init__(self, events: Iterable[scoring_models.ExpectedEvent] = ()) -> None:
        self._events: List[scoring_models.ExpectedEvent] = sorted(events, key=_timestamp_sort_key)
        self._consumed: Set[int] = set()

    def events(self) -> List[scoring_models.ExpectedEvent]:
        return list(self._events)

    def total_count(self) -> int:
        return len(self._events)

    def consumed_count(self) -> int:
        return len(self._consumed)

    def is_consumed(self, index: int) -> bool:
        return int(index) in self._consumed

    def reset(self) -> None:
        self._consumed.clear()

    def mark_consumed(self, index: int) -> None:
        index_value = int(index)
        if index_value < 0 or index_value >= len(self._events):
            raise IndexError(f"expected event index out of range: {index_value}")
        self._consumed.add(index_value)

    def find_best_unconsumed(
        self,
        *,
        note_number: int,
        timestamp: float,
        max_window_seconds: float,
    ) -> Optional[Tuple[int, scoring_models.ExpectedEvent]]:
        target_note = int(note_number)
        target_time = float(timestamp)
        window = float(max_window_seconds)

        best_index: Optional[int] = None
        best_abs_delta = 0.0

        for index, expected in enumerate(self._events):
            if index in self._consumed:
                continue
            if int(expected.note_number) != target_note:
                continue

            abs_delta = abs(target_time - float(expected.timestamp))
            # NaN never passes this comparison, so a NaN timestamp finds no candidate.
            if not abs_delta <= window:
                continue

            # Strict comparison: on a tie the earlier event found first stays.
            if best_index is None or abs_delta < best_abs_delta:
                best_index = index
                best_abs_delta = abs_delta

        if best_index is None:
            return None
        return best_index, self._events[best_index]

    def unconsumed(self) -> List[Tuple[int, scoring_models.ExpectedEvent]]:
        return [(index, expected) for index, expected in enumerate(self._events) if index not in self._consumed]


def _run_unit_tests() -> None:
    events = [
        scoring_models.ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38),
        scoring_models.ExpectedEvent(timestamp=0.5, lane_id="KICK", note_number=36),
        scoring_models.ExpectedEvent(timestamp=1.1, lane_id="SNARE", note_number=38),
    ]
    schedule = ExpectedSchedule(events)

    ordered = [(event.timestamp, event.note_number) for event in schedule.events()]
    assert ordered == [(0.5, 36), (1.0, 38), (1.1, 38)]

    # Equidistant from 1.0 and 1.1: the earlier one wins.
    match = schedule.find_best_unconsumed(note_number=38, timestamp=1.05, max_window_seconds=0.1)
    assert match is not None
    assert match[0] == 1

    schedule.mark_consumed(1)
    match = schedule.find_best_unconsumed(note_number=38, timestamp=1.05, max_window_seconds=0.1)
    assert match is not None
    assert match[0] == 2

    assert schedule.find_best_unconsumed(note_number=42, timestamp=1.0, max_window_seconds=0.1) is None
    assert [index for index, _event in schedule.unconsumed()] == [0, 2]

    schedule.reset()
    assert schedule.consumed_count() == 0


if __name__ == "__main__":
    _run_unit_tests()
    print("expected_schedule.py: ok")
