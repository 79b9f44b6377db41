"""
Pytest configuration and fixtures for the drum timing engine tests.
"""

import sys
from pathlib import Path

import pytest

# Modules live at the repository root.
sys.path.insert(0, str(Path(__file__).parent.parent))

from scoring_models import ExpectedEvent, InputEvent, ScoringProfile  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=0.0):
        self.now = float(now)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += float(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def default_profile():
    return ScoringProfile.default_profile()


@pytest.fixture
def single_snare():
    """One snare hit at t=1.0s."""
    return [ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38)]


@pytest.fixture
def make_hit():
    def _make(timestamp, note_number=38, velocity=100, channel=9):
        return InputEvent(timestamp=timestamp, note_number=note_number, velocity=velocity, channel=channel)

    return _make
