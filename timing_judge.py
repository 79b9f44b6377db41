# -*- coding: utf-8 -*-
########################
# timing_judge.py
########################
# Purpose:
# - Hit classification and scoring for one practice session.
# - Matches InputEvent to the closest unconsumed ExpectedEvent within the miss threshold.
# - Keeps streak and per-classification counters and the ordered MatchOutcome log.
# - Computes running and final scores.
#
# Design notes:
# - No Qt usage. No threads. Pure gameplay logic.
# - ScoreEngine owns the only TimingJudge and calls it from a single worker thread.
# - ExpectedSchedule owns the consumed-index set; TimingJudge marks indices through that boundary.
# - Extra hits are recorded in the outcome log with a placeholder ExpectedEvent.
#
########################
# Interfaces:
# Public functions:
# - classify_delta(profile: ScoringProfile, delta_seconds: float) -> Classification
# - streak_multiplier(profile: ScoringProfile, streak: int) -> float
# - extra_penalty_multiplier(profile: ScoringProfile, extra_count: int) -> float
# - compute_final_score(*, contribution_sum, expected_count, extra_count, max_streak, profile) -> float
# - star_rating_for(score: float) -> int
#
# Public dataclasses:
# - ScoreState(current_streak, max_streak, perfect_count, early_count, late_count, miss_count, extra_count)
#   - apply_classification(classification: Classification) -> None
#
# Public classes:
# - class TimingJudge
#   - __init__(schedule: ExpectedSchedule, profile: ScoringProfile)
#   - schedule() -> ExpectedSchedule
#   - profile() -> ScoringProfile
#   - set_profile(profile) -> None
#   - replace_schedule(schedule) -> None
#   - score_state() -> ScoreState
#   - outcomes() -> list[MatchOutcome]
#   - reset() -> None
#   - evaluate_input(input_event, timestamp) -> MatchOutcome
#   - preview(input_event, timestamp) -> Classification
#   - close_out_unmatched() -> list[MatchOutcome]
#   - running_score() -> float
#   - build_result(completion_time) -> ScoreResult
#
# Inputs:
# - InputEvent and the timestamp at which it was observed (seconds, same clock as ExpectedEvent).
#
# Outputs:
# - MatchOutcome objects and ScoreResult summaries.
#
########################

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import expected_schedule
import scoring_models
from scoring_models import Classification


STREAK_BONUS_THRESHOLD = 4


def classify_delta(profile: scoring_models.ScoringProfile, delta_seconds: float) -> Classification:
    delta = float(delta_seconds)
    abs_delta = abs(delta)
    perfect = float(profile.perfect_window)

    if abs_delta <= perfect:
        return Classification.PERFECT
    if delta < -perfect and abs_delta <= float(profile.early_window):
        return Classification.EARLY
    if delta > perfect and abs_delta <= float(profile.late_window):
        return Classification.LATE
    return Classification.MISS


def streak_multiplier(profile: scoring_models.ScoringProfile, streak: int) -> float:
    if int(streak) >= STREAK_BONUS_THRESHOLD:
        return 1.0 + float(profile.streak_bonus)
    return 1.0


def extra_penalty_multiplier(profile: scoring_models.ScoringProfile, extra_count: int) -> float:
    return max(0.0, 1.0 - float(extra_count) * float(profile.extra_penalty))


def _clamp_score(value: float) -> float:
    # min/max would pass NaN through; keep the result inside [0, 100] regardless.
    if not value >= 0.0:
        return 0.0
    if value > 100.0:
        return 100.0
    return float(value)


def compute_final_score(
    *,
    contribution_sum: float,
    expected_count: int,
    extra_count: int,
    max_streak: int,
    profile: scoring_models.ScoringProfile,
) -> float:
    if int(expected_count) <= 0:
        base_score = 0.0
    else:
        base_score = float(contribution_sum) / float(expected_count) * 100.0

    streak_bonus_points = float(max_streak) * float(profile.streak_bonus) * 100.0
    return _clamp_score(base_score * extra_penalty_multiplier(profile, extra_count) + streak_bonus_points)


def star_rating_for(score: float) -> int:
    value = float(score)
    if value >= 90.0:
        return 3
    if value >= 75.0:
        return 2
    if value >= 50.0:
        return 1
    return 0


@dataclass
class ScoreState:
    current_streak: int = 0
    max_streak: int = 0
    perfect_count: int = 0
    early_count: int = 0
    late_count: int = 0
    miss_count: int = 0
    extra_count: int = 0

    def apply_classification(self, classification: Classification) -> None:
        if classification is Classification.PERFECT:
            self.perfect_count += 1
            self.current_streak += 1
            if self.current_streak > self.max_streak:
                self.max_streak = self.current_streak
            return

        if classification is Classification.EARLY:
            self.early_count += 1
        elif classification is Classification.LATE:
            self.late_count += 1
        elif classification is Classification.MISS:
            self.miss_count += 1
        elif classification is Classification.EXTRA:
            self.extra_count += 1
        self.current_streak = 0


class TimingJudge:
    def __init__(
        self,
        schedule: Optional[expected_schedule.ExpectedSchedule] = None,
        profile: Optional[scoring_models.ScoringProfile] = None,
    ) -> None:
        self._schedule = schedule if schedule is not None else expected_schedule.ExpectedSchedule()
        self._profile = profile if profile is not None else scoring_models.ScoringProfile.default_profile()
        self._score_state = ScoreState()
        self._outcomes: List[scoring_models.MatchOutcome] = []

    def schedule(self) -> expected_schedule.ExpectedSchedule:
        return self._schedule

    def profile(self) -> scoring_models.ScoringProfile:
        return self._profile

    def set_profile(self, profile: scoring_models.ScoringProfile) -> None:
        self._profile = profile

    def replace_schedule(self, schedule: expected_schedule.ExpectedSchedule) -> None:
        self._schedule = schedule
        self.reset()

    def score_state(self) -> ScoreState:
        return self._score_state

    def outcomes(self) -> List[scoring_models.MatchOutcome]:
        return list(self._outcomes)

    def reset(self) -> None:
        self._schedule.reset()
        self._score_state = ScoreState()
        self._outcomes.clear()

    def _find_candidate(self, note_number: int, timestamp: float):
        return self._schedule.find_best_unconsumed(
            note_number=int(note_number),
            timestamp=float(timestamp),
            max_window_seconds=float(self._profile.miss_threshold),
        )

    def evaluate_input(self, input_event: scoring_models.InputEvent, timestamp: float) -> scoring_models.MatchOutcome:
        observed_at = float(timestamp)
        candidate = self._find_candidate(int(input_event.note_number), observed_at)

        if candidate is None:
            self._score_state.apply_classification(Classification.EXTRA)
            placeholder = scoring_models.ExpectedEvent(
                timestamp=observed_at,
                lane_id=scoring_models.EXTRA_LANE_ID,
                note_number=int(input_event.note_number),
                velocity=int(input_event.velocity),
                duration=None,
            )
            outcome = scoring_models.MatchOutcome(
                expected_event=placeholder,
                input_event=input_event,
                classification=Classification.EXTRA,
                score_contribution=0.0,
                observed_at=observed_at,
            )
            self._outcomes.append(outcome)
            return outcome

        index, expected = candidate
        self._schedule.mark_consumed(index)

        delta = observed_at - float(expected.timestamp)
        classification = classify_delta(self._profile, delta)
        self._score_state.apply_classification(classification)

        contribution = classification.score_multiplier * streak_multiplier(
            self._profile, self._score_state.current_streak
        )
        outcome = scoring_models.MatchOutcome(
            expected_event=expected,
            input_event=input_event,
            classification=classification,
            score_contribution=float(contribution),
            observed_at=observed_at,
        )
        self._outcomes.append(outcome)
        return outcome

    def preview(self, input_event: scoring_models.InputEvent, timestamp: float) -> Classification:
        candidate = self._find_candidate(int(input_event.note_number), float(timestamp))
        if candidate is None:
            return Classification.EXTRA
        _index, expected = candidate
        return classify_delta(self._profile, float(timestamp) - float(expected.timestamp))

    def close_out_unmatched(self) -> List[scoring_models.MatchOutcome]:
        misses: List[scoring_models.MatchOutcome] = []
        for index, expected in self._schedule.unconsumed():
            self._schedule.mark_consumed(index)
            self._score_state.apply_classification(Classification.MISS)
            outcome = scoring_models.MatchOutcome(
                expected_event=expected,
                input_event=None,
                classification=Classification.MISS,
                score_contribution=0.0,
                observed_at=float(expected.timestamp),
            )
            self._outcomes.append(outcome)
            misses.append(outcome)
        return misses

    def running_score(self) -> float:
        processed_count = len(self._outcomes)
        if processed_count == 0:
            return 0.0
        # Mean over processed outcomes (extras included), not over the whole lesson.
        return compute_final_score(
            contribution_sum=sum(outcome.score_contribution for outcome in self._outcomes),
            expected_count=processed_count,
            extra_count=self._score_state.extra_count,
            max_streak=self._score_state.max_streak,
            profile=self._profile,
        )

    def build_result(self, completion_time: float) -> scoring_models.ScoreResult:
        state = self._score_state
        final_score = compute_final_score(
            contribution_sum=sum(outcome.score_contribution for outcome in self._outcomes),
            expected_count=self._schedule.total_count(),
            extra_count=state.extra_count,
            max_streak=state.max_streak,
            profile=self._profile,
        )
        return scoring_models.ScoreResult(
            total_score=final_score,
            star_rating=star_rating_for(final_score),
            is_platinum=final_score >= 100.0,
            is_black_star=False,
            outcomes=tuple(self._outcomes),
            current_streak=state.current_streak,
            max_streak=state.max_streak,
            perfect_count=state.perfect_count,
            early_count=state.early_count,
            late_count=state.late_count,
            miss_count=state.miss_count,
            extra_count=state.extra_count,
            completion_time=float(completion_time),
        )


def _run_unit_tests() -> None:
    profile = scoring_models.ScoringProfile.default_profile()
    assert classify_delta(profile, 0.015) is Classification.PERFECT
    assert classify_delta(profile, -0.035) is Classification.EARLY
    assert classify_delta(profile, 0.035) is Classification.LATE
    assert classify_delta(profile, 0.08) is Classification.MISS

    schedule = expected_schedule.ExpectedSchedule(
        [scoring_models.ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38)]
    )
    judge = TimingJudge(schedule, profile)

    hit = judge.evaluate_input(scoring_models.InputEvent(timestamp=1.015, note_number=38), 1.015)
    assert hit.classification is Classification.PERFECT
    assert hit.score_contribution == 1.0
    assert judge.score_state().current_streak == 1

    stray = judge.evaluate_input(scoring_models.InputEvent(timestamp=1.0, note_number=42), 1.0)
    assert stray.classification is Classification.EXTRA
    assert judge.score_state().current_streak == 0

    assert judge.close_out_unmatched() == []
    result = judge.build_result(completion_time=2.0)
    assert result.perfect_count == 1
    assert result.extra_count == 1
    assert abs(result.total_score - 96.0) < 1e-9

    judge.reset()
    misses = judge.close_out_unmatched()
    assert len(misses) == 1
    assert judge.build_result(completion_time=0.0).total_score == 0.0


if __name__ == "__main__":
    _run_unit_tests()
    print("timing_judge.py: ok")
