# -*- coding: utf-8 -*-
########################
# score_engine.py
########################
# Purpose:
# - Real-time scoring engine for a drum practice session.
# - Accepts live InputEvents from any thread and evaluates them against the lesson's ExpectedEvents.
# - Publishes EngineSnapshot updates for presentation and produces the final ScoreResult.
#
# Design notes:
# - One worker thread owns the TimingJudge. Every mutation and every scoring read is a command on a
#   FIFO queue, so inputs are evaluated strictly in arrival order.
# - process_input, set_expected_events and set_scoring_profile are fire-and-forget.
# - calculate_score, reset_score, get_timing_feedback and drain wait for their command to run, which means
#   every command queued before them has already run.
# - start/stop flip the scoring flag on the caller thread. stop only blocks future input; queued work still runs.
# - Realtime feedback is advisory. It expires feedback_hold_seconds after it was set and never affects
#   the outcome log.
# - Time source is injected as a callable returning seconds (time.monotonic by default).
#
########################
# Interfaces:
# Public exceptions:
# - class EngineClosedError(RuntimeError)
#
# Public classes:
# - class ScoreEngine
#   - __init__(profile: Optional[ScoringProfile] = None, *, clock: Callable[[], float] = time.monotonic,
#              feedback_hold_seconds: float = 0.5, name: str = "score-engine")
#   - from_config(app_config: Optional[AppConfig] = None, **kwargs) -> ScoreEngine
#   - is_scoring -> bool
#   - feedback_hold_seconds -> float
#   - set_expected_events(events: Iterable[ExpectedEvent]) -> None
#   - set_scoring_profile(profile: ScoringProfile) -> None
#   - start() -> None
#   - stop() -> None
#   - process_input(input_event: InputEvent, timestamp: Optional[float] = None) -> bool
#   - calculate_score() -> ScoreResult
#   - reset_score() -> None
#   - get_timing_feedback(input_event: InputEvent) -> Classification
#   - drain() -> None
#   - snapshot() -> EngineSnapshot
#   - realtime_feedback() -> Optional[Classification]
#   - add_listener(callback: Callable[[EngineSnapshot], None]) -> None
#   - remove_listener(callback) -> None
#   - shutdown(timeout: Optional[float] = None) -> None
#
# Inputs:
# - ExpectedEvent sequence from the lesson loader, InputEvents from the MIDI / pad detection layer.
#
# Outputs:
# - ScoreResult for the results screen and the history store.
# - EngineSnapshot to listeners (called on the worker thread) and to pollers via snapshot().
#
########################

from __future__ import annotations

from concurrent.futures import Future
import dataclasses
from dataclasses import dataclass
import logging
import queue
import threading
import time
import weakref
from typing import Any, Callable, Iterable, List, Optional

import config
import expected_schedule
import scoring_models
import timing_judge
from scoring_models import Classification


logger = logging.getLogger("drumpad.score_engine")

SnapshotListener = Callable[[scoring_models.EngineSnapshot], None]


class EngineClosedError(RuntimeError):
    pass


@dataclass
class _Command:
    name: str
    action: Callable[[], Any]
    future: Optional[Future] = None


_SHUTDOWN = object()


class ScoreEngine:
    """
    Serial evaluation pipeline around TimingJudge.

    Usage::

        engine = ScoreEngine()
        engine.set_expected_events(lesson_events)
        engine.start()

        # From the input thread, once per detected strike:
        engine.process_input(input_event, timestamp)

        # End of lesson:
        engine.stop()
        result = engine.calculate_score()
    """

    def __init__(
        self,
        profile: Optional[scoring_models.ScoringProfile] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        feedback_hold_seconds: float = 0.5,
        name: str = "score-engine",
    ) -> None:
        self._clock = clock
        self._feedback_hold_seconds = float(feedback_hold_seconds)
        self._judge = timing_judge.TimingJudge(profile=profile)

        self._queue: "queue.Queue[object]" = queue.Queue()
        self._state_lock = threading.Lock()
        self._is_scoring = False
        self._is_closed = False

        # Worker-owned session timing.
        self._start_time = float(self._clock())
        self._stop_time: Optional[float] = None

        # Published state, guarded by _state_lock.
        self._snapshot = scoring_models.EngineSnapshot()
        self._feedback_set_at = 0.0
        self._listeners: List[SnapshotListener] = []

        # Worker holds only the queue. The finalizer stops it once the engine is collected.
        self._worker = threading.Thread(target=_run_worker, args=(self._queue,), name=str(name), daemon=True)
        self._finalizer = weakref.finalize(self, self._queue.put, _SHUTDOWN)
        self._worker.start()

    @classmethod
    def from_config(cls, app_config: Optional["config.AppConfig"] = None, **kwargs: Any) -> "ScoreEngine":
        if app_config is None:
            app_config, _config_path = config.get_config()
        return cls(
            app_config.scoring.to_scoring_profile(),
            feedback_hold_seconds=app_config.feedback.hold_seconds,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def is_scoring(self) -> bool:
        with self._state_lock:
            return bool(self._is_scoring)

    @property
    def feedback_hold_seconds(self) -> float:
        return self._feedback_hold_seconds

    def set_expected_events(self, events: Iterable[scoring_models.ExpectedEvent]) -> None:
        event_list = list(events)
        loaded_at = float(self._clock())

        def apply() -> None:
            self._judge.replace_schedule(expected_schedule.ExpectedSchedule(event_list))
            self._start_time = loaded_at
            self._stop_time = None
            logger.info("Loaded %d expected events", len(event_list))
            self._publish(last_outcome=None, clear_feedback=True)

        self._submit("set_expected_events", apply)

    def set_scoring_profile(self, profile: scoring_models.ScoringProfile) -> None:
        def apply() -> None:
            self._judge.set_profile(profile)
            logger.debug("Scoring profile replaced: %s", profile)

        self._submit("set_scoring_profile", apply)

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def start(self) -> None:
        started_at = float(self._clock())

        def apply() -> None:
            self._start_time = started_at
            self._stop_time = None
            self._judge.reset()
            logger.info("Scoring started (%d expected events)", self._judge.schedule().total_count())
            self._publish(last_outcome=None, clear_feedback=True)

        with self._state_lock:
            self._ensure_open()
            self._queue.put(_Command(name="start", action=apply))
            self._is_scoring = True

    def stop(self) -> None:
        stopped_at = float(self._clock())

        def apply() -> None:
            self._stop_time = stopped_at
            logger.info("Scoring stopped after %.3fs", stopped_at - self._start_time)
            self._publish(last_outcome=None)

        with self._state_lock:
            self._is_scoring = False
            if self._is_closed:
                return
            self._queue.put(_Command(name="stop", action=apply))

    def process_input(self, input_event: scoring_models.InputEvent, timestamp: Optional[float] = None) -> bool:
        """
        Queue one strike for evaluation.

        Returns False when the engine is not scoring and the input was ignored.
        """
        observed_at = float(input_event.timestamp if timestamp is None else timestamp)

        def apply() -> None:
            outcome = self._judge.evaluate_input(input_event, observed_at)
            logger.debug(
                "note=%d t=%.4f -> %s (%.3f)",
                int(input_event.note_number),
                observed_at,
                outcome.classification.value,
                outcome.score_contribution,
            )
            self._publish(last_outcome=outcome, feedback=outcome.classification)

        with self._state_lock:
            if not self._is_scoring or self._is_closed:
                return False
            self._queue.put(_Command(name="process_input", action=apply))
        return True

    # ------------------------------------------------------------------
    # Synchronization points
    # ------------------------------------------------------------------

    def calculate_score(self) -> scoring_models.ScoreResult:
        def apply() -> scoring_models.ScoreResult:
            misses = self._judge.close_out_unmatched()
            end_time = self._stop_time if self._stop_time is not None else float(self._clock())
            result = self._judge.build_result(completion_time=end_time - self._start_time)
            if misses:
                self._publish(last_outcome=None)
            logger.info(
                "Score %.2f (%d stars): perfect=%d early=%d late=%d miss=%d extra=%d max_streak=%d",
                result.total_score,
                result.star_rating,
                result.perfect_count,
                result.early_count,
                result.late_count,
                result.miss_count,
                result.extra_count,
                result.max_streak,
            )
            return result

        return self._submit("calculate_score", apply, wait=True)

    def reset_score(self) -> None:
        def apply() -> None:
            self._judge.reset()
            self._start_time = float(self._clock())
            self._stop_time = None
            self._publish(last_outcome=None, clear_feedback=True)

        self._submit("reset_score", apply, wait=True)

    def get_timing_feedback(self, input_event: scoring_models.InputEvent) -> Classification:
        def apply() -> Classification:
            return self._judge.preview(input_event, float(input_event.timestamp))

        return self._submit("get_timing_feedback", apply, wait=True)

    def drain(self) -> None:
        """Block until every command queued before this call has run."""
        self._submit("drain", lambda: None, wait=True)

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------

    def realtime_feedback(self) -> Optional[Classification]:
        with self._state_lock:
            feedback = self._snapshot.realtime_feedback
            set_at = self._feedback_set_at
        if feedback is None:
            return None
        if float(self._clock()) - set_at >= self._feedback_hold_seconds:
            return None
        return feedback

    def snapshot(self) -> scoring_models.EngineSnapshot:
        with self._state_lock:
            current = self._snapshot
            is_scoring = self._is_scoring
        return dataclasses.replace(current, is_scoring=is_scoring, realtime_feedback=self.realtime_feedback())

    def add_listener(self, callback: SnapshotListener) -> None:
        with self._state_lock:
            if callback not in self._listeners:
                self._listeners.append(callback)

    def remove_listener(self, callback: SnapshotListener) -> None:
        with self._state_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, timeout: Optional[float] = None) -> None:
        with self._state_lock:
            if self._is_closed:
                return
            self._is_closed = True
            self._is_scoring = False
            self._finalizer()
        if threading.current_thread() is not self._worker:
            self._worker.join(timeout)

    def __enter__(self) -> "ScoreEngine":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._is_closed:
            raise EngineClosedError("ScoreEngine has been shut down")

    def _submit(self, name: str, action: Callable[[], Any], *, wait: bool = False) -> Any:
        if wait and threading.current_thread() is self._worker:
            # Called from a listener on the worker thread. Queueing would deadlock.
            return action()

        future: Optional[Future] = Future() if wait else None
        with self._state_lock:
            self._ensure_open()
            self._queue.put(_Command(name=name, action=action, future=future))

        if future is None:
            return None
        return future.result()

    def _publish(
        self,
        *,
        last_outcome: Optional[scoring_models.MatchOutcome],
        feedback: Optional[Classification] = None,
        clear_feedback: bool = False,
    ) -> None:
        state = self._judge.score_state()
        running_score = self._judge.running_score()
        processed_count = len(self._judge.outcomes())

        with self._state_lock:
            previous = self._snapshot
            if last_outcome is None and not clear_feedback:
                last_outcome = previous.last_outcome
            if feedback is not None:
                realtime_feedback: Optional[Classification] = feedback
                self._feedback_set_at = float(self._clock())
            elif clear_feedback:
                realtime_feedback = None
            else:
                realtime_feedback = previous.realtime_feedback

            self._snapshot = scoring_models.EngineSnapshot(
                is_scoring=self._is_scoring,
                current_score=running_score,
                current_streak=state.current_streak,
                max_streak=state.max_streak,
                realtime_feedback=realtime_feedback,
                last_outcome=last_outcome,
                processed_count=processed_count,
            )
            snapshot = self._snapshot
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Score engine listener %r failed", listener)


def _run_worker(work_queue: "queue.Queue[object]") -> None:
    while True:
        item = work_queue.get()
        try:
            if item is _SHUTDOWN:
                logger.debug("Score engine worker exiting")
                return
            _execute_command(item)
        finally:
            # Commands close over their engine. Drop it before blocking on the next get.
            item = None
            work_queue.task_done()


def _execute_command(command: _Command) -> None:
    future = command.future
    if future is not None and not future.set_running_or_notify_cancel():
        return
    try:
        result = command.action()
    except Exception as exception:
        if future is None:
            logger.exception("Score engine command %r failed", command.name)
        else:
            future.set_exception(exception)
        return
    if future is not None:
        future.set_result(result)


def _run_unit_tests() -> None:
    with ScoreEngine(clock=lambda: 0.0) as engine:
        engine.set_expected_events([scoring_models.ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38)])

        ignored = engine.process_input(scoring_models.InputEvent(timestamp=1.0, note_number=38))
        assert ignored is False

        engine.start()
        accepted = engine.process_input(scoring_models.InputEvent(timestamp=1.035, note_number=38))
        assert accepted is True
        engine.stop()

        result = engine.calculate_score()
        assert result.late_count == 1
        assert abs(result.total_score - 80.0) < 1e-9
        assert result.star_rating == 2
        assert engine.calculate_score() == result

        engine.reset_score()
        assert engine.snapshot().processed_count == 0


if __name__ == "__main__":
    _run_unit_tests()
    print("score_engine.py: ok")
