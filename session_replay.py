"""
session_replay.py

Replay a recorded practice session through ScoreEngine and print the ScoreResult.

Used to reproduce scoring reports offline. The replay clock is pinned to session
time, so the same file always produces the same JSON output.

Session file format (UTF-8 JSON)
{
  "expected": [
    {"timestamp": 1.0, "lane_id": "SNARE", "note_number": 38, "velocity": 100, "duration": 0.25}
  ],
  "inputs": [
    {"timestamp": 1.015, "note_number": 38, "velocity": 96, "channel": 9}
  ],
  "profile": {"perfect_window": 0.02, "miss_threshold": 0.1}
}

"profile" is optional and may name any subset of ScoringProfile fields (seconds).

Usage
  python session_replay.py recording.json
  python session_replay.py --demo medium --offset-ms 30
"""

from __future__ import annotations

import argparse
import dataclasses
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import lesson_fixtures
import score_engine
import scoring_models


logger = logging.getLogger("drumpad.session_replay")


class SessionFileError(ValueError):
    pass


@dataclass(frozen=True)
class SessionRecording:
    expected: List[scoring_models.ExpectedEvent]
    inputs: List[scoring_models.InputEvent]
    profile: scoring_models.ScoringProfile


class _ReplayClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return float(self.now)


def _optional_number(value: Any, field_name: str, cast):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SessionFileError(f"{field_name} must be a number, got: {value!r}")
    return cast(value)


def _parse_expected(item: Any, index: int) -> scoring_models.ExpectedEvent:
    if not isinstance(item, dict):
        raise SessionFileError(f"expected[{index}] must be an object")
    try:
        return scoring_models.ExpectedEvent(
            timestamp=float(item["timestamp"]),
            lane_id=str(item.get("lane_id") or ""),
            note_number=int(item["note_number"]),
            velocity=_optional_number(item.get("velocity"), f"expected[{index}].velocity", int),
            duration=_optional_number(item.get("duration"), f"expected[{index}].duration", float),
        )
    except SessionFileError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionFileError(f"Invalid expected[{index}]: {exc}") from exc


def _parse_input(item: Any, index: int) -> scoring_models.InputEvent:
    if not isinstance(item, dict):
        raise SessionFileError(f"inputs[{index}] must be an object")
    try:
        return scoring_models.InputEvent(
            timestamp=float(item["timestamp"]),
            note_number=int(item["note_number"]),
            velocity=int(item.get("velocity", 100)),
            channel=int(item.get("channel", 0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionFileError(f"Invalid inputs[{index}]: {exc}") from exc


def _parse_profile(payload: Any) -> scoring_models.ScoringProfile:
    if payload is None:
        return scoring_models.ScoringProfile.default_profile()
    if not isinstance(payload, dict):
        raise SessionFileError("profile must be an object")

    known_fields = {field.name for field in dataclasses.fields(scoring_models.ScoringProfile)}
    unknown_fields = sorted(set(payload.keys()) - known_fields)
    if unknown_fields:
        raise SessionFileError(f"Unknown profile fields: {', '.join(unknown_fields)}")

    values: Dict[str, float] = {}
    for key, value in payload.items():
        if value is None:
            raise SessionFileError(f"profile.{key} must be a number, got: null")
        values[key] = _optional_number(value, f"profile.{key}", float)
    return scoring_models.ScoringProfile(**values)


def parse_session(payload: Dict[str, Any]) -> SessionRecording:
    if not isinstance(payload, dict):
        raise SessionFileError("Session root must be a JSON object")

    expected_items = payload.get("expected", [])
    input_items = payload.get("inputs", [])
    if not isinstance(expected_items, list) or not isinstance(input_items, list):
        raise SessionFileError("expected and inputs must be arrays")

    return SessionRecording(
        expected=[_parse_expected(item, index) for index, item in enumerate(expected_items)],
        inputs=[_parse_input(item, index) for index, item in enumerate(input_items)],
        profile=_parse_profile(payload.get("profile")),
    )


def load_session(session_path: Path) -> SessionRecording:
    try:
        raw_text = Path(session_path).read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise SessionFileError(f"Session file is not valid UTF-8: {session_path}") from exc

    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise SessionFileError(f"Session file is not valid JSON: {session_path}. Error: {exc}") from exc

    try:
        return parse_session(payload)
    except SessionFileError as exc:
        raise SessionFileError(f"{session_path}: {exc}") from exc


def replay_session(
    expected: Sequence[scoring_models.ExpectedEvent],
    inputs: Sequence[scoring_models.InputEvent],
    profile: Optional[scoring_models.ScoringProfile] = None,
) -> scoring_models.ScoreResult:
    clock = _ReplayClock()
    with score_engine.ScoreEngine(profile, clock=clock, name="session-replay") as engine:
        engine.set_expected_events(expected)
        engine.start()
        for input_event in inputs:
            engine.process_input(input_event, input_event.timestamp)
        engine.drain()

        # Session length: the later of the last strike and the last expected event.
        end_times = [float(event.timestamp) for event in expected] + [float(event.timestamp) for event in inputs]
        clock.now = max(end_times) if end_times else 0.0
        engine.stop()
        result = engine.calculate_score()

    logger.info("Replayed %d inputs against %d expected events", len(inputs), len(expected))
    return result


def result_to_json(result: scoring_models.ScoreResult) -> str:
    return json.dumps(result.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay a recorded drum practice session.")
    parser.add_argument("session_path", nargs="?", help="Session JSON file.")
    parser.add_argument("--demo", metavar="DIFFICULTY", help="Replay a built-in practice pattern (easy, medium, hard).")
    parser.add_argument("--offset-ms", type=float, default=0.0, help="Timing offset applied to demo strikes.")
    parser.add_argument("--verbose", action="store_true", help="Log every classification.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_argument_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        if args.demo:
            expected = lesson_fixtures.build_practice_pattern(difficulty=args.demo)
            inputs = lesson_fixtures.perfect_inputs_for(expected, offset_seconds=float(args.offset_ms) / 1000.0)
            result = replay_session(expected, inputs)
        elif args.session_path:
            recording = load_session(Path(args.session_path))
            result = replay_session(recording.expected, recording.inputs, recording.profile)
        else:
            raise SessionFileError("Provide a session file or --demo")
    except (OSError, SessionFileError) as exception:
        print(json.dumps({"ok": False, "error": str(exception)}, ensure_ascii=False, indent=2))
        return 2

    print(result_to_json(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
