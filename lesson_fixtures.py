# lesson_fixtures.py
from __future__ import annotations

from typing import List, Sequence, Tuple

from scoring_models import ExpectedEvent, InputEvent

# General MIDI percussion notes.
KICK = ("KICK", 36)
SNARE = ("SNARE", 38)
HI_HAT = ("HI HAT", 42)


def build_practice_pattern(*, difficulty: str) -> List[ExpectedEvent]:
    normalized_difficulty = (difficulty or "easy").strip().lower() or "easy"

    if normalized_difficulty == "hard":
        step_interval_seconds = 0.25
        total_steps = 32
    elif normalized_difficulty == "medium":
        step_interval_seconds = 0.375
        total_steps = 24
    else:
        normalized_difficulty = "easy"
        step_interval_seconds = 0.5
        total_steps = 16

    lead_in_seconds = 2.0

    # Backbeat groove: kick on 1 and 3, snare on 2 and 4, hi-hat fills the gaps.
    voice_pattern: Sequence[Tuple[str, int]] = [
        KICK, HI_HAT, SNARE, HI_HAT,
        KICK, KICK, SNARE, HI_HAT,
    ]

    events: List[ExpectedEvent] = []
    for step_index in range(total_steps):
        lane_id, note_number = voice_pattern[step_index % len(voice_pattern)]
        events.append(
            ExpectedEvent(
                timestamp=lead_in_seconds + step_index * step_interval_seconds,
                lane_id=lane_id,
                note_number=note_number,
                velocity=100,
                duration=step_interval_seconds,
            )
        )

    events.sort(key=lambda event: event.timestamp)
    return events


def perfect_inputs_for(events: Sequence[ExpectedEvent], *, offset_seconds: float = 0.0) -> List[InputEvent]:
    return [
        InputEvent(
            timestamp=float(event.timestamp) + float(offset_seconds),
            note_number=int(event.note_number),
            velocity=int(event.velocity) if event.velocity is not None else 100,
            channel=9,
        )
        for event in events
    ]
