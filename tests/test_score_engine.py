"""
Tests for the ScoreEngine serial pipeline: session control, ordering,
synchronization points and the end-to-end scoring properties.
"""

import gc
import json
import logging
import math
import random
import threading
import time
import weakref

import pytest

import lesson_fixtures
from score_engine import EngineClosedError, ScoreEngine
from scoring_models import Classification, ExpectedEvent, InputEvent, ScoringProfile


@pytest.fixture
def engine(clock):
    score_engine = ScoreEngine(clock=clock)
    yield score_engine
    score_engine.shutdown(timeout=5.0)


def _run_session(engine, expected, hits, profile=None):
    if profile is not None:
        engine.set_scoring_profile(profile)
    engine.set_expected_events(expected)
    engine.start()
    for hit in hits:
        engine.process_input(hit, hit.timestamp)
    engine.stop()
    return engine.calculate_score()


def _random_hits(rng, count, notes=(36, 38, 42), span=10.0):
    return [
        InputEvent(timestamp=rng.uniform(0.0, span), note_number=rng.choice(notes), velocity=rng.randint(1, 127))
        for _ in range(count)
    ]


class TestExampleScenarios:
    def test_perfect_hit_scores_full_marks(self, engine, single_snare, make_hit):
        result = _run_session(engine, single_snare, [make_hit(1.015)])
        assert result.outcomes[0].classification is Classification.PERFECT
        assert result.outcomes[0].score_contribution == 1.0
        assert result.max_streak == 1
        assert result.total_score == 100.0
        assert result.star_rating == 3
        assert result.is_platinum is True

    def test_late_hit_scores_eighty(self, engine, single_snare, make_hit):
        result = _run_session(engine, single_snare, [make_hit(1.035)])
        assert result.outcomes[0].classification is Classification.LATE
        assert result.total_score == pytest.approx(80.0)
        assert result.star_rating == 2
        assert result.is_platinum is False

    def test_no_input_is_a_synthesized_miss(self, engine, single_snare):
        result = _run_session(engine, single_snare, [])
        assert result.miss_count == 1
        assert result.outcomes[0].input_event is None
        assert result.total_score == 0.0
        assert result.star_rating == 0

    def test_far_input_is_extra_and_target_is_missed(self, engine, single_snare, make_hit):
        result = _run_session(engine, single_snare, [make_hit(5.0)])
        classifications = [outcome.classification for outcome in result.outcomes]
        assert classifications == [Classification.EXTRA, Classification.MISS]
        assert result.extra_count == 1
        assert result.miss_count == 1
        assert result.total_score == 0.0


class TestProperties:
    @pytest.mark.parametrize("seed", [1, 7, 42, 2024])
    def test_conservation(self, engine, seed):
        rng = random.Random(seed)
        expected = lesson_fixtures.build_practice_pattern(difficulty="hard")
        hits = _random_hits(rng, 60)
        result = _run_session(engine, expected, hits)
        assert result.perfect_count + result.early_count + result.late_count + result.miss_count == len(expected)
        non_extra = [outcome for outcome in result.outcomes if outcome.classification is not Classification.EXTRA]
        assert len(non_extra) == len(expected)
        assert len({id(outcome.expected_event) for outcome in non_extra}) == len(expected)

    def test_determinism(self, clock):
        rng = random.Random(99)
        expected = lesson_fixtures.build_practice_pattern(difficulty="medium")
        hits = lesson_fixtures.perfect_inputs_for(expected, offset_seconds=0.03) + _random_hits(rng, 20)

        payloads = []
        for _ in range(2):
            with ScoreEngine(clock=clock) as engine:
                result = _run_session(engine, expected, hits)
            payloads.append(json.dumps(result.to_dict(), sort_keys=True))
        assert payloads[0] == payloads[1]

    def test_idempotent_finalize(self, engine, clock, single_snare, make_hit):
        engine.set_expected_events(single_snare + [ExpectedEvent(timestamp=2.0, lane_id="KICK", note_number=36)])
        engine.start()
        engine.process_input(make_hit(1.0))
        clock.advance(3.0)
        engine.stop()
        first = engine.calculate_score()
        clock.advance(10.0)
        second = engine.calculate_score()
        assert first == second
        assert first.completion_time == 3.0

    def test_streak_reset_law(self, engine):
        expected = [ExpectedEvent(timestamp=float(t), lane_id="SNARE", note_number=38) for t in range(1, 6)]
        offsets = [0.0, 0.0, 0.035, 0.0, 0.0]
        seen = []
        engine.add_listener(lambda snapshot: seen.append(snapshot) if snapshot.last_outcome is not None else None)

        engine.set_expected_events(expected)
        engine.start()
        for event, offset in zip(expected, offsets):
            engine.process_input(InputEvent(timestamp=event.timestamp + offset, note_number=38))
        engine.drain()

        assert [snapshot.current_streak for snapshot in seen] == [1, 2, 0, 1, 2]
        max_streaks = [snapshot.max_streak for snapshot in seen]
        assert max_streaks == sorted(max_streaks)
        assert max_streaks[-1] == 2

    def test_score_bounds_with_many_extras_on_empty_sequence(self, engine, make_hit):
        result = _run_session(engine, [], [make_hit(float(i)) for i in range(50)])
        assert result.extra_count == 50
        assert result.total_score == 0.0
        assert result.star_rating == 0

    @pytest.mark.parametrize("seed", range(5))
    def test_score_bounds_with_random_profiles(self, engine, seed):
        rng = random.Random(seed)
        profile = ScoringProfile(
            perfect_window=rng.uniform(0.0, 0.2),
            early_window=rng.uniform(0.0, 0.2),
            late_window=rng.uniform(0.0, 0.2),
            miss_threshold=rng.uniform(0.0, 0.3),
            extra_penalty=rng.uniform(0.0, 2.0),
            streak_bonus=rng.uniform(0.0, 1.0),
        )
        expected = lesson_fixtures.build_practice_pattern(difficulty="easy")
        hits = lesson_fixtures.perfect_inputs_for(expected) + _random_hits(rng, 30)
        result = _run_session(engine, expected, hits, profile=profile)
        assert 0.0 <= result.total_score <= 100.0

    def test_long_perfect_streak_is_capped(self, engine):
        expected = lesson_fixtures.build_practice_pattern(difficulty="easy")
        result = _run_session(engine, expected, lesson_fixtures.perfect_inputs_for(expected))
        assert result.perfect_count == len(expected)
        assert result.max_streak == len(expected)
        assert result.total_score == 100.0
        assert result.is_platinum is True


class TestSessionControl:
    def test_input_ignored_before_start(self, engine, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        assert engine.process_input(make_hit(1.0)) is False
        assert engine.is_scoring is False
        result = engine.calculate_score()
        assert result.perfect_count == 0
        assert result.miss_count == 1

    def test_input_ignored_after_stop(self, engine, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.stop()
        assert engine.process_input(make_hit(1.0)) is False
        assert engine.calculate_score().miss_count == 1

    def test_start_clears_previous_session(self, engine, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.0))
        engine.start()
        engine.stop()
        result = engine.calculate_score()
        assert result.perfect_count == 0
        assert result.miss_count == 1

    def test_timestamp_defaults_to_event_timestamp(self, engine, single_snare):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(InputEvent(timestamp=1.0, note_number=38))
        assert engine.calculate_score().perfect_count == 1

    def test_explicit_timestamp_is_used(self, engine, single_snare):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(InputEvent(timestamp=0.0, note_number=38), 1.035)
        result = engine.calculate_score()
        assert result.late_count == 1
        assert result.outcomes[0].observed_at == 1.035

    def test_reset_score_keeps_events_and_profile(self, engine, clock, single_snare, make_hit):
        engine.set_scoring_profile(ScoringProfile(perfect_window=0.05))
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.035))
        engine.drain()
        clock.advance(5.0)
        engine.reset_score()

        snapshot = engine.snapshot()
        assert snapshot.processed_count == 0
        assert snapshot.current_streak == 0
        assert snapshot.realtime_feedback is None

        engine.process_input(make_hit(1.035))
        clock.advance(1.0)
        engine.stop()
        result = engine.calculate_score()
        assert result.perfect_count == 1
        assert len(result.outcomes) == 1
        assert result.completion_time == 1.0

    def test_set_expected_events_sorts_and_resets(self, engine, make_hit):
        engine.set_expected_events([ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38)])
        engine.start()
        engine.process_input(make_hit(1.0))
        engine.set_expected_events(
            [
                ExpectedEvent(timestamp=2.0, lane_id="SNARE", note_number=38),
                ExpectedEvent(timestamp=1.0, lane_id="KICK", note_number=36),
            ]
        )
        engine.stop()
        result = engine.calculate_score()
        assert [outcome.expected_event.timestamp for outcome in result.outcomes] == [1.0, 2.0]
        assert result.miss_count == 2
        assert result.perfect_count == 0

    def test_set_expected_events_restarts_session_clock(self, engine, clock, single_snare):
        clock.advance(100.0)
        engine.set_expected_events(single_snare)
        clock.advance(1.0)
        result = engine.calculate_score()
        assert result.completion_time == 1.0

    def test_set_expected_events_clears_stop_time(self, engine, clock, single_snare):
        engine.set_expected_events(single_snare)
        engine.start()
        clock.advance(2.0)
        engine.stop()
        engine.set_expected_events(single_snare)
        clock.advance(3.0)
        result = engine.calculate_score()
        assert result.completion_time == 3.0

    def test_engine_is_reusable_after_finalize(self, engine, single_snare, make_hit):
        _run_session(engine, single_snare, [make_hit(5.0)])
        engine.reset_score()
        engine.start()
        engine.process_input(make_hit(1.0))
        engine.stop()
        result = engine.calculate_score()
        assert result.perfect_count == 1
        assert result.extra_count == 0


class TestOrdering:
    def test_outcomes_follow_arrival_order(self, engine):
        expected = lesson_fixtures.build_practice_pattern(difficulty="hard")
        hits = lesson_fixtures.perfect_inputs_for(expected)
        result = _run_session(engine, expected, hits)
        assert [outcome.input_event for outcome in result.outcomes] == hits

    def test_calculate_score_drains_pending_inputs(self, engine):
        expected = [ExpectedEvent(timestamp=float(i), lane_id="SNARE", note_number=38) for i in range(300)]
        engine.set_expected_events(expected)
        engine.start()
        for event in expected:
            engine.process_input(InputEvent(timestamp=event.timestamp, note_number=38))
        result = engine.calculate_score()
        assert result.perfect_count == 300
        assert result.miss_count == 0

    def test_multiple_producers_keep_per_producer_order(self, engine):
        notes = [36, 38, 42, 46]
        expected = [
            ExpectedEvent(timestamp=float(step), lane_id=str(note), note_number=note)
            for step in range(50)
            for note in notes
        ]
        engine.set_expected_events(expected)
        engine.start()

        barrier = threading.Barrier(len(notes))

        def produce(note):
            barrier.wait()
            for step in range(50):
                engine.process_input(InputEvent(timestamp=float(step), note_number=note))

        threads = [threading.Thread(target=produce, args=(note,)) for note in notes]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        engine.stop()
        result = engine.calculate_score()
        assert result.perfect_count == len(expected)
        for note in notes:
            times = [outcome.observed_at for outcome in result.outcomes if outcome.expected_event.note_number == note]
            assert times == [float(step) for step in range(50)]

    def test_profile_change_applies_to_later_inputs_only(self, engine, make_hit):
        engine.set_expected_events(
            [
                ExpectedEvent(timestamp=1.0, lane_id="SNARE", note_number=38),
                ExpectedEvent(timestamp=2.0, lane_id="SNARE", note_number=38),
            ]
        )
        engine.start()
        engine.process_input(make_hit(1.035))
        engine.set_scoring_profile(ScoringProfile(perfect_window=0.05))
        engine.process_input(make_hit(2.035))
        result = engine.calculate_score()
        assert [outcome.classification for outcome in result.outcomes] == [Classification.LATE, Classification.PERFECT]


class TestFeedback:
    def test_get_timing_feedback_is_read_only(self, engine, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        assert engine.get_timing_feedback(make_hit(1.0)) is Classification.PERFECT
        assert engine.get_timing_feedback(make_hit(0.965)) is Classification.EARLY
        assert engine.get_timing_feedback(make_hit(1.035)) is Classification.LATE
        assert engine.get_timing_feedback(make_hit(1.075)) is Classification.MISS
        assert engine.get_timing_feedback(make_hit(3.0)) is Classification.EXTRA
        assert engine.snapshot().processed_count == 0

    def test_get_timing_feedback_sees_consumed_events(self, engine, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.0))
        assert engine.get_timing_feedback(make_hit(1.0)) is Classification.EXTRA

    def test_realtime_feedback_expires(self, engine, clock, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.0))
        engine.drain()
        assert engine.realtime_feedback() is Classification.PERFECT
        assert engine.snapshot().realtime_feedback is Classification.PERFECT

        clock.advance(0.6)
        assert engine.realtime_feedback() is None
        assert engine.snapshot().realtime_feedback is None
        # Authoritative log is untouched.
        assert engine.calculate_score().perfect_count == 1

    def test_snapshot_tracks_running_score(self, engine, single_snare, make_hit):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.035))
        engine.drain()
        snapshot = engine.snapshot()
        assert snapshot.is_scoring is True
        assert snapshot.current_score == pytest.approx(80.0)
        assert snapshot.processed_count == 1
        assert snapshot.last_outcome.classification is Classification.LATE

    def test_listener_errors_do_not_break_scoring(self, engine, single_snare, make_hit, caplog):
        received = []

        def broken_listener(snapshot):
            raise RuntimeError("listener failure")

        engine.add_listener(broken_listener)
        engine.add_listener(received.append)
        engine.set_expected_events(single_snare)
        engine.start()
        with caplog.at_level(logging.ERROR, logger="drumpad.score_engine"):
            engine.process_input(make_hit(1.0))
            result = engine.calculate_score()

        assert result.perfect_count == 1
        assert received
        assert any("listener" in record.getMessage() for record in caplog.records)

    def test_removed_listener_is_not_called(self, engine, single_snare, make_hit):
        received = []
        engine.add_listener(received.append)
        engine.remove_listener(received.append)
        engine.set_expected_events(single_snare)
        engine.drain()
        assert received == []

    def test_listener_may_query_engine(self, engine, single_snare, make_hit):
        previews = []

        def listener(snapshot):
            if snapshot.last_outcome is not None:
                previews.append(engine.get_timing_feedback(make_hit(1.0)))

        engine.add_listener(listener)
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.0))
        engine.drain()
        assert previews == [Classification.EXTRA]


class TestDegenerateInputs:
    def test_nan_timestamp_is_extra(self, engine, single_snare):
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(InputEvent(timestamp=math.nan, note_number=38))
        result = engine.calculate_score()
        assert result.extra_count == 1
        assert result.miss_count == 1
        assert result.total_score == 0.0

    def test_negative_timestamps_are_matched(self, engine):
        engine.set_expected_events([ExpectedEvent(timestamp=0.0, lane_id="KICK", note_number=36)])
        engine.start()
        engine.process_input(InputEvent(timestamp=-0.035, note_number=36))
        assert engine.calculate_score().early_count == 1

    def test_empty_session(self, engine):
        result = _run_session(engine, [], [])
        assert result.total_score == 0.0
        assert result.outcomes == ()
        assert result.star_rating == 0


class TestShutdown:
    def test_commands_after_shutdown_raise(self, clock, make_hit):
        engine = ScoreEngine(clock=clock)
        engine.shutdown(timeout=5.0)
        assert engine.process_input(make_hit(1.0)) is False
        with pytest.raises(EngineClosedError):
            engine.calculate_score()
        with pytest.raises(EngineClosedError):
            engine.start()
        engine.stop()
        engine.shutdown()

    def test_context_manager_finishes_queued_work(self, clock, single_snare, make_hit):
        received = []
        with ScoreEngine(clock=clock) as engine:
            engine.add_listener(received.append)
            engine.set_expected_events(single_snare)
            engine.start()
            engine.process_input(make_hit(1.0))
        assert any(snapshot.last_outcome is not None for snapshot in received)

    def test_dropped_engine_is_collected_and_worker_exits(self, clock, single_snare, make_hit):
        engine = ScoreEngine(clock=clock, name="dropped-engine")
        engine.set_expected_events(single_snare)
        engine.start()
        engine.process_input(make_hit(1.0))
        engine.drain()

        worker = engine._worker
        engine_ref = weakref.ref(engine)
        del engine

        deadline = time.monotonic() + 5.0
        while engine_ref() is not None and time.monotonic() < deadline:
            gc.collect()
            time.sleep(0.01)
        assert engine_ref() is None

        worker.join(timeout=5.0)
        assert not worker.is_alive()
        assert "dropped-engine" not in [thread.name for thread in threading.enumerate()]

    def test_shutdown_twice_is_harmless(self, clock):
        engine = ScoreEngine(clock=clock)
        worker = engine._worker
        engine.shutdown(timeout=5.0)
        engine.shutdown(timeout=5.0)
        assert not worker.is_alive()
