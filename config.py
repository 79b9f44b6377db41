"""
config.py

Typed configuration loading and validation for the drum timing engine.

Design goals
- Load at most one UTF-8 JSON config file
- Validate with pydantic (defaults included)
- Support environment variable overrides
- No other I/O beyond reading the config file (no directory creation)

Timing windows are written in milliseconds in the file and converted to
seconds when building a ScoringProfile. Window ordering is checked here;
ScoreEngine itself accepts any profile it is given.

Config file location
- If DRUMPAD_CONFIG_PATH is set, that file is used.
- Otherwise these paths are searched in order and the first one that exists is used:
  1) ./drumpad_config.json (current working directory)
  2) <user config dir>/DrumPad/DrumPad/drumpad_config.json
- If none exists, defaults apply.

Example config file (drumpad_config.json)
{
  "scoring": {
    "perfect_window_ms": 20,
    "early_window_ms": 50,
    "late_window_ms": 50,
    "miss_threshold_ms": 100,
    "extra_penalty": 0.05,
    "streak_bonus": 0.01
  },
  "feedback": {
    "hold_ms": 500
  }
}
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from platformdirs import user_config_dir
from pydantic import BaseModel, Field, ValidationError, model_validator

import scoring_models


class ScoringConfig(BaseModel):
    perfect_window_ms: float = Field(default=20.0, ge=0.0, description="Half width of the Perfect band.")
    early_window_ms: float = Field(default=50.0, ge=0.0, description="Earliest accepted hit before the target.")
    late_window_ms: float = Field(default=50.0, ge=0.0, description="Latest accepted hit after the target.")
    miss_threshold_ms: float = Field(default=100.0, ge=0.0, description="Farthest a hit may be from a target and still match it.")
    extra_penalty: float = Field(default=0.05, ge=0.0, description="Score fraction removed per extra hit.")
    grade_penalty_multiplier: float = Field(default=1.0, description="Kept for stored profiles. Not used by scoring.")
    streak_bonus: float = Field(default=0.01, ge=0.0, description="Bonus fraction per streak point.")

    @model_validator(mode="after")
    def validate_window_order(self) -> "ScoringConfig":
        widest = max(self.perfect_window_ms, self.early_window_ms, self.late_window_ms)
        if self.miss_threshold_ms < widest:
            raise ValueError("miss_threshold_ms must be >= perfect, early and late windows")
        return self

    def to_scoring_profile(self) -> scoring_models.ScoringProfile:
        return scoring_models.ScoringProfile(
            perfect_window=float(self.perfect_window_ms) / 1000.0,
            early_window=float(self.early_window_ms) / 1000.0,
            late_window=float(self.late_window_ms) / 1000.0,
            miss_threshold=float(self.miss_threshold_ms) / 1000.0,
            extra_penalty=float(self.extra_penalty),
            grade_penalty_multiplier=float(self.grade_penalty_multiplier),
            streak_bonus=float(self.streak_bonus),
        )


class FeedbackConfig(BaseModel):
    hold_ms: int = Field(default=500, ge=0, description="How long realtime feedback stays visible.")

    @property
    def hold_seconds(self) -> float:
        return float(self.hold_ms) / 1000.0


class AppConfig(BaseModel):
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)


def _default_config_candidates() -> List[Path]:
    config_directory = Path(user_config_dir("DrumPad", "DrumPad"))
    return [
        Path.cwd() / "drumpad_config.json",
        config_directory / "drumpad_config.json",
    ]


def _resolve_config_path() -> Optional[Path]:
    explicit_path_text = os.environ.get("DRUMPAD_CONFIG_PATH", "").strip()
    if explicit_path_text:
        return Path(explicit_path_text)

    for candidate_path in _default_config_candidates():
        if candidate_path.exists():
            return candidate_path
    return None


def _read_json_file_utf8(config_path: Path) -> Dict[str, Any]:
    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError as exception:
        raise OSError(f"Failed to read config file: {config_path}. Error: {exception}") from exception

    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as exception:
        raise ValueError(f"Config file is not valid JSON: {config_path}. Error: {exception}") from exception

    if not isinstance(parsed, dict):
        raise ValueError(f"Config file root must be a JSON object: {config_path}")

    return parsed


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Environment overrides are optional and win over the file.

    Override variables:
    - DRUMPAD_PERFECT_WINDOW_MS
    - DRUMPAD_EARLY_WINDOW_MS
    - DRUMPAD_LATE_WINDOW_MS
    - DRUMPAD_MISS_THRESHOLD_MS
    - DRUMPAD_EXTRA_PENALTY
    - DRUMPAD_STREAK_BONUS
    - DRUMPAD_FEEDBACK_HOLD_MS
    """
    def ensure_nested(config_root: Dict[str, Any], section_name: str) -> Dict[str, Any]:
        section = config_root.get(section_name)
        if isinstance(section, dict):
            section = dict(section)
        else:
            section = {}
        config_root[section_name] = section
        return section

    updated_config = dict(config_dict)
    scoring_section = ensure_nested(updated_config, "scoring")
    feedback_section = ensure_nested(updated_config, "feedback")

    def override_float(env_name: str, target_dict: Dict[str, Any], key_name: str) -> None:
        value_text = os.environ.get(env_name, "").strip()
        if not value_text:
            return
        try:
            target_dict[key_name] = float(value_text)
        except ValueError:
            return

    def override_int(env_name: str, target_dict: Dict[str, Any], key_name: str) -> None:
        value_text = os.environ.get(env_name, "").strip()
        if not value_text:
            return
        try:
            target_dict[key_name] = int(value_text)
        except ValueError:
            return

    override_float("DRUMPAD_PERFECT_WINDOW_MS", scoring_section, "perfect_window_ms")
    override_float("DRUMPAD_EARLY_WINDOW_MS", scoring_section, "early_window_ms")
    override_float("DRUMPAD_LATE_WINDOW_MS", scoring_section, "late_window_ms")
    override_float("DRUMPAD_MISS_THRESHOLD_MS", scoring_section, "miss_threshold_ms")
    override_float("DRUMPAD_EXTRA_PENALTY", scoring_section, "extra_penalty")
    override_float("DRUMPAD_STREAK_BONUS", scoring_section, "streak_bonus")

    override_int("DRUMPAD_FEEDBACK_HOLD_MS", feedback_section, "hold_ms")

    return updated_config


def load_config(config_path: Optional[Path] = None) -> Tuple[AppConfig, Optional[Path]]:
    resolved_path = config_path if config_path is not None else _resolve_config_path()
    json_dict: Dict[str, Any] = {}
    if resolved_path is not None:
        json_dict = _read_json_file_utf8(Path(resolved_path))
    json_dict = _apply_environment_overrides(json_dict)

    try:
        config = AppConfig.model_validate(json_dict)
    except ValidationError as exception:
        source_text = str(resolved_path) if resolved_path is not None else "defaults"
        raise ValueError(f"Config validation failed for {source_text}:\n{exception}") from exception

    return config, resolved_path


@lru_cache(maxsize=1)
def get_config() -> Tuple[AppConfig, Optional[Path]]:
    return load_config()


def main() -> int:
    try:
        config, resolved_path = load_config()
    except Exception as exception:
        error_payload = {"ok": False, "error": str(exception)}
        print(json.dumps(error_payload, ensure_ascii=False, indent=2))
        return 2

    output_payload = {
        "ok": True,
        "config_path": str(resolved_path) if resolved_path is not None else None,
        "config": config.model_dump(),
    }
    print(json.dumps(output_payload, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
