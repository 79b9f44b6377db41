# -*- coding: utf-8 -*-
########################
# feedback_bridge.py
########################
# Purpose:
# - UI-only adapter that turns ScoreEngine snapshots into Qt signals.
# - Shows the latest hit classification for a short time, then clears it.
#
# Design notes:
# - Scoring logic must not depend on FeedbackBridge. ScoreEngine is the scoring source of truth.
# - ScoreEngine calls listeners on its worker thread. The bridge re-posts through an internal signal,
#   so public signals are always emitted on the thread that owns the bridge.
# - Feedback clearing is best effort. A newer hit restarts the hold period.
# - hold_ms defaults to the engine's feedback hold, so one config value drives both.
#
########################
# Interfaces:
# Public classes:
# - class FeedbackBridge(PyQt6.QtCore.QObject)
#   - Signals:
#     - snapshotUpdated(EngineSnapshot)
#     - feedbackChanged(Classification)
#     - feedbackCleared()
#   - Methods:
#     - current_feedback() -> Optional[Classification]
#     - last_snapshot() -> Optional[EngineSnapshot]
#     - hold_ms() -> int
#     - detach() -> None
#
# Inputs:
# - EngineSnapshot callbacks from ScoreEngine.
#
# Outputs:
# - Qt signals for the lesson player view.
#
########################

from __future__ import annotations

from typing import Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

import score_engine
import scoring_models


class FeedbackBridge(QObject):
    snapshotUpdated = pyqtSignal(object)
    feedbackChanged = pyqtSignal(object)
    feedbackCleared = pyqtSignal()

    # Internal hop from the engine worker thread to the bridge thread.
    _snapshotPosted = pyqtSignal(object)

    def __init__(
        self,
        engine: score_engine.ScoreEngine,
        hold_ms: Optional[int] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._engine = engine
        if hold_ms is None:
            hold_ms = int(round(engine.feedback_hold_seconds * 1000.0))
        self._hold_ms = int(max(0, hold_ms))
        self._current_feedback: Optional[scoring_models.Classification] = None
        self._last_snapshot: Optional[scoring_models.EngineSnapshot] = None
        self._feedback_token = 0
        self._is_attached = True

        self._snapshotPosted.connect(self._on_snapshot_posted)
        self._engine.add_listener(self._post_snapshot)

    def current_feedback(self) -> Optional[scoring_models.Classification]:
        return self._current_feedback

    def last_snapshot(self) -> Optional[scoring_models.EngineSnapshot]:
        return self._last_snapshot

    def hold_ms(self) -> int:
        return int(self._hold_ms)

    def detach(self) -> None:
        if not self._is_attached:
            return
        self._engine.remove_listener(self._post_snapshot)
        self._is_attached = False

    def _post_snapshot(self, snapshot: scoring_models.EngineSnapshot) -> None:
        self._snapshotPosted.emit(snapshot)

    def _on_snapshot_posted(self, snapshot: scoring_models.EngineSnapshot) -> None:
        previous = self._last_snapshot
        self._last_snapshot = snapshot
        self.snapshotUpdated.emit(snapshot)

        feedback = snapshot.realtime_feedback
        if feedback is None:
            self._clear_feedback()
            return

        is_new_hit = previous is None or snapshot.last_outcome is not previous.last_outcome
        if not is_new_hit:
            return

        self._current_feedback = feedback
        self._feedback_token += 1
        token = self._feedback_token
        self.feedbackChanged.emit(feedback)
        QTimer.singleShot(self._hold_ms, lambda: self._expire_feedback(token))

    def _expire_feedback(self, token: int) -> None:
        if int(token) != self._feedback_token:
            return
        self._clear_feedback()

    def _clear_feedback(self) -> None:
        if self._current_feedback is None:
            return
        self._current_feedback = None
        self.feedbackCleared.emit()
