# -*- coding: utf-8 -*-
########################
# scoring_models.py
########################
# Purpose:
# - Core data models for the timing evaluation pipeline.
# - Defines expected events, live input events, match outcomes, scoring profile and score summaries.
#
# Design notes:
# - Keep these models stable. Prefer extending with new optional fields rather than breaking changes.
# - No Qt usage. These are plain frozen dataclasses.
# - Times are seconds (float). Windows in ScoringProfile are seconds, not milliseconds.
#
########################
# Interfaces:
# Public enums:
# - class Classification(enum.Enum): PERFECT | EARLY | LATE | MISS | EXTRA
#   - display_name -> str
#   - score_multiplier -> float
#
# Public dataclasses:
# - ExpectedEvent(timestamp: float, lane_id: str, note_number: int, velocity: Optional[int], duration: Optional[float])
# - InputEvent(timestamp: float, note_number: int, velocity: int, channel: int)
# - MatchOutcome(expected_event, input_event, classification, score_contribution, observed_at)
# - ScoringProfile(perfect_window, early_window, late_window, miss_threshold,
#                  extra_penalty, grade_penalty_multiplier, streak_bonus)
#   - default_profile() -> ScoringProfile
# - ScoreResult(total_score, star_rating, is_platinum, is_black_star, outcomes, current_streak, max_streak,
#               perfect_count, early_count, late_count, miss_count, extra_count, completion_time)
#   - to_dict() -> dict
# - EngineSnapshot(is_scoring, current_score, current_streak, max_streak, realtime_feedback,
#                  last_outcome, processed_count)
#
# Inputs/Outputs:
# - These types are exchanged between ExpectedSchedule, TimingJudge, ScoreEngine, FeedbackBridge
#   and the replay tool.
#
########################

from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import Any, Dict, Optional, Tuple


EXTRA_LANE_ID = "extra"


class Classification(enum.Enum):
    PERFECT = "perfect"
    EARLY = "early"
    LATE = "late"
    MISS = "miss"
    EXTRA = "extra"

    @property
    def display_name(self) -> str:
        return str(self.value).capitalize()

    @property
    def score_multiplier(self) -> float:
        return float(_SCORE_MULTIPLIERS[self])


_SCORE_MULTIPLIERS: Dict[Classification, float] = {
    Classification.PERFECT: 1.0,
    Classification.EARLY: 0.8,
    Classification.LATE: 0.8,
    Classification.MISS: 0.0,
    Classification.EXTRA: 0.0,
}


@dataclass(frozen=True)
class ExpectedEvent:
    timestamp: float
    lane_id: str
    note_number: int
    velocity: Optional[int] = None
    duration: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": float(self.timestamp),
            "lane_id": str(self.lane_id),
            "note_number": int(self.note_number),
            "velocity": None if self.velocity is None else int(self.velocity),
            "duration": None if self.duration is None else float(self.duration),
        }


@dataclass(frozen=True)
class InputEvent:
    timestamp: float
    note_number: int
    velocity: int = 100
    channel: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": float(self.timestamp),
            "note_number": int(self.note_number),
            "velocity": int(self.velocity),
            "channel": int(self.channel),
        }


@dataclass(frozen=True)
class MatchOutcome:
    expected_event: ExpectedEvent
    input_event: Optional[InputEvent]
    classification: Classification
    score_contribution: float
    observed_at: float

    @property
    def is_extra(self) -> bool:
        return self.classification is Classification.EXTRA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected_event": self.expected_event.to_dict(),
            "input_event": None if self.input_event is None else self.input_event.to_dict(),
            "classification": self.classification.value,
            "score_contribution": float(self.score_contribution),
            "observed_at": float(self.observed_at),
        }


@dataclass(frozen=True)
class ScoringProfile:
    perfect_window: float = 0.020
    early_window: float = 0.050
    late_window: float = 0.050
    miss_threshold: float = 0.100
    extra_penalty: float = 0.05
    # Not used by the score math. Kept so stored profiles keep their shape.
    grade_penalty_multiplier: float = 1.0
    streak_bonus: float = 0.01

    @classmethod
    def default_profile(cls) -> "ScoringProfile":
        return cls()


@dataclass(frozen=True)
class ScoreResult:
    total_score: float
    star_rating: int
    is_platinum: bool
    is_black_star: bool
    outcomes: Tuple[MatchOutcome, ...]
    current_streak: int
    max_streak: int
    perfect_count: int
    early_count: int
    late_count: int
    miss_count: int
    extra_count: int
    completion_time: float

    @property
    def judged_count(self) -> int:
        """Expected events accounted for, extras excluded."""
        return int(self.perfect_count + self.early_count + self.late_count + self.miss_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": float(self.total_score),
            "star_rating": int(self.star_rating),
            "is_platinum": bool(self.is_platinum),
            "is_black_star": bool(self.is_black_star),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "current_streak": int(self.current_streak),
            "max_streak": int(self.max_streak),
            "perfect_count": int(self.perfect_count),
            "early_count": int(self.early_count),
            "late_count": int(self.late_count),
            "miss_count": int(self.miss_count),
            "extra_count": int(self.extra_count),
            "completion_time": float(self.completion_time),
        }


@dataclass(frozen=True)
class EngineSnapshot:
    is_scoring: bool = False
    current_score: float = 0.0
    current_streak: int = 0
    max_streak: int = 0
    realtime_feedback: Optional[Classification] = None
    last_outcome: Optional[MatchOutcome] = None
    processed_count: int = 0


def _run_unit_tests() -> None:
    assert Classification.PERFECT.display_name == "Perfect"
    assert Classification.EXTRA.display_name == "Extra"
    assert Classification.EARLY.score_multiplier == 0.8
    assert Classification.MISS.score_multiplier == 0.0

    profile = ScoringProfile.default_profile()
    assert abs(profile.perfect_window - 0.020) < 1e-12
    assert abs(profile.miss_threshold - 0.100) < 1e-12

    expected = ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38)
    outcome = MatchOutcome(
        expected_event=expected,
        input_event=InputEvent(timestamp=1.01, note_number=38),
        classification=Classification.PERFECT,
        score_contribution=1.0,
        observed_at=1.01,
    )
    payload = outcome.to_dict()
    assert payload["classification"] == "perfect"
    assert payload["expected_event"]["lane_id"] == "SNARE"
    assert payload["input_event"]["channel"] == 0


if __name__ == "__main__":
    _run_unit_tests()
    print("scoring_models.py: ok")
