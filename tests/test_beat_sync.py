import pytest

from romatype.controllers import BeatSyncEngine
from romatype.domain.enums import BeatPhase, BeatSyncConfig, GameMode, KeyCommand, KeyResult, OutcomeKind, PlayerState
from romatype.domain.errors import DataUnavailableError
from romatype.domain.models import LyricLine, LyricTrack
from romatype.services.clock import VideoClockSource

BASE_EPOCH = 1_700_000_000_000

LINES = [
    LyricLine(display_text="し", canonical_romaji="shi", start_ms=5000, end_ms=8000),
    LyricLine(display_text="つ", canonical_romaji="tsu", start_ms=9000, end_ms=11000),
    LyricLine(display_text="ふじ", canonical_romaji="fuji", start_ms=11000, end_ms=14000),
]


def _engine(player, scheduler, records=None, **cfg) -> BeatSyncEngine:
    clock = VideoClockSource(player, time_fn=lambda: player.elapsed)
    return BeatSyncEngine(
        clock,
        config=BeatSyncConfig(**cfg),
        scheduler=scheduler,
        records=records,
        wall_time_fn=lambda: BASE_EPOCH + scheduler.now_ms,
    )


def _playing(engine, lines=LINES) -> BeatSyncEngine:
    assert engine.load_lines(lines, title="test")
    engine.on_player_state(PlayerState.PLAYING)
    assert engine.phase is BeatPhase.WAITING
    return engine


def _at(engine, player, seconds):
    player.play_to(seconds)
    return engine.poll()


class TrackSource:
    def __init__(self, track=None, error=None):
        self.track = track
        self.error = error
        self.calls = []

    def fetch_track(self, video_id):
        self.calls.append(video_id)
        if self.error is not None:
            raise self.error
        return self.track


# ------------------------------
# Pre-roll and line tracking
# ------------------------------

def test_countdown_then_first_line(player, scheduler, one_line):
    engine = _playing(_engine(player, scheduler), one_line)
    _at(engine, player, 4.2)
    assert engine.phase is BeatPhase.COUNTDOWN
    assert engine.countdown_ms == 800
    _at(engine, player, 5.0)
    assert engine.phase is BeatPhase.ACTIVE
    assert engine.line_index == 0
    assert engine.countdown_ms is None


def test_waiting_until_pre_roll_window(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 1.0)
    assert engine.phase is BeatPhase.WAITING
    assert engine.countdown_ms is None


def test_line_index_never_decreases_while_time_moves_forward(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    seen = []
    for tenth in range(40, 140, 3):
        _at(engine, player, tenth / 10.0)
        if engine.line_index is not None:
            seen.append(engine.line_index)
    assert seen == sorted(seen)
    assert seen[0] == 0 and seen[-1] == 2


def test_backward_seek_recomputes_from_the_start(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 9.5)
    assert engine.line_index == 1
    _at(engine, player, 5.5)
    assert engine.clock.seek_count == 1
    assert engine.line_index == 0
    _at(engine, player, 2.5)
    assert engine.phase is BeatPhase.COUNTDOWN
    assert engine.line_index is None


FIVE = [
    LyricLine(display_text="し", canonical_romaji="shi", start_ms=5000, end_ms=6000),
    LyricLine(display_text="つ", canonical_romaji="tsu", start_ms=6000, end_ms=8000),
    LyricLine(display_text="ふ", canonical_romaji="fu", start_ms=8000, end_ms=10000),
    LyricLine(display_text="じ", canonical_romaji="ji", start_ms=10000, end_ms=12000),
    LyricLine(display_text="ち", canonical_romaji="chi", start_ms=12000, end_ms=15000),
]


def test_forward_scrub_does_not_count_jumped_lines_as_missed(player, scheduler):
    engine = _playing(_engine(player, scheduler, max_missed_lines=3), FIVE)
    outcomes = []
    engine.outcome_ready.connect(outcomes.append)
    _at(engine, player, 5.1)
    assert engine.line_index == 0
    # Dragged forward on the player itself: position moves, wall time does not.
    player.position = 14.0
    engine.poll()
    assert engine.clock.seek_count == 1
    assert engine.phase is BeatPhase.ACTIVE
    assert engine.line_index == 4
    assert outcomes == []
    assert engine.missed_lines == 0


def test_unsolved_line_is_reported_as_missed(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    outcomes = []
    engine.outcome_ready.connect(outcomes.append)
    _at(engine, player, 6.0)
    engine.type_char("s")
    _at(engine, player, 9.2)
    assert [o.kind for o in outcomes] == [OutcomeKind.TIMED_OUT]
    assert outcomes[0].line_index == 0
    assert outcomes[0].typed_chars == 1
    assert engine.stats.timed_out_count == 1
    assert engine.line_index == 1


def test_line_progress(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.5)
    assert engine.line_progress() == pytest.approx(0.5)


# ------------------------------
# Input
# ------------------------------

def test_early_solve_locks_until_the_line_ends(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.0)
    assert engine.type_text("si") is KeyResult.COMPLETED
    assert engine.is_locked
    assert engine.type_char("x") is KeyResult.IGNORED
    _at(engine, player, 7.9)
    assert engine.line_index == 0
    _at(engine, player, 8.5)
    assert engine.line_index == 1
    # Intermission: the next line is current but its window is closed.
    assert engine.type_char("t") is KeyResult.IGNORED
    _at(engine, player, 9.0)
    assert engine.type_char("t") is KeyResult.ACCEPTED
    assert engine.stats.solved_count == 1
    assert engine.stats.timed_out_count == 0


def test_invalid_keystroke_counts_a_mistake(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.0)
    engine.type_char("s")
    assert engine.type_char("k") is KeyResult.REJECTED
    assert engine.input == "s"
    assert engine.mistakes == 1


def test_input_is_sanitised(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.0)
    assert engine.type_text("s1") is KeyResult.ACCEPTED
    assert engine.input == "s"


# ------------------------------
# Skips
# ------------------------------

def test_skip_line_holds_against_the_clock(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    outcomes = []
    engine.outcome_ready.connect(outcomes.append)
    _at(engine, player, 6.0)
    engine.skip_line()
    assert outcomes[-1].kind is OutcomeKind.SKIPPED
    assert engine.line_index == 1
    _at(engine, player, 6.5)
    assert engine.line_index == 1
    assert engine.stats.timed_out_count == 0


def test_skip_line_with_seek_then_seek_back(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 9.5)
    engine.skip_line(seek_to_next_start=True)
    assert player.seeks == [11.0]
    assert engine.line_index == 2
    _at(engine, player, 11.5)
    assert engine.line_index == 2
    _at(engine, player, 3.0)
    assert engine.phase is BeatPhase.COUNTDOWN
    assert engine.line_index is None


def test_skipping_the_last_line_clears(player, scheduler, one_line, records):
    engine = _playing(_engine(player, scheduler, records=records), one_line)
    _at(engine, player, 6.0)
    assert engine.handle_key(KeyCommand.ESCAPE)
    assert engine.phase is BeatPhase.CLEARED
    assert len(records.records) == 1


def test_skip_countdown_seeks_to_first_line(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 3.0)
    assert engine.handle_key(KeyCommand.SPACE)
    assert player.seeks == [5.0]
    assert engine.countdown_ms is None
    engine.poll()
    assert engine.phase is BeatPhase.ACTIVE


INTRO = [LyricLine(display_text="し", canonical_romaji="shi", start_ms=20_000, end_ms=23_000)]


def test_skip_intro_is_refused_close_to_the_countdown(player, scheduler):
    engine = _playing(_engine(player, scheduler), INTRO)
    _at(engine, player, 16.9)
    assert engine.phase is BeatPhase.WAITING
    assert engine.skip_intro() is False
    assert player.seeks == []


def test_skip_intro_seeks_to_the_pre_roll(player, scheduler):
    engine = _playing(_engine(player, scheduler), INTRO)
    _at(engine, player, 16.0)
    assert engine.skip_intro() is True
    assert player.seeks == [17.0]
    engine.poll()
    assert engine.phase is BeatPhase.COUNTDOWN
    assert engine.countdown_ms == 3000


def test_skip_intro_waits_for_the_player(player, scheduler):
    engine = _engine(player, scheduler)
    engine.load_lines(INTRO)
    assert engine.start()
    assert engine.phase is BeatPhase.WAITING
    assert engine.skip_intro() is True
    assert player.seeks == [] and player.plays == 0
    engine.on_player_state(PlayerState.UNSTARTED)
    # The skip took the place of the queued play, and still starts playback.
    assert player.seeks == [17.0]
    assert player.plays == 1
    assert not engine.clock.has_pending_intent


def test_skip_countdown_before_ready_still_plays(player, scheduler, one_line):
    engine = _engine(player, scheduler)
    engine.load_lines(one_line)
    engine.start()
    player.position = 3.0
    engine.poll()
    assert engine.phase is BeatPhase.COUNTDOWN
    assert engine.skip_countdown()
    engine.on_player_state(PlayerState.UNSTARTED)
    assert player.seeks == [5.0]
    assert player.plays == 1


# ------------------------------
# Player readiness / lifecycle
# ------------------------------

def test_start_defers_play_until_ready(player, scheduler):
    engine = _engine(player, scheduler)
    engine.load_lines(LINES)
    assert engine.handle_key(KeyCommand.SPACE)
    assert engine.phase is BeatPhase.WAITING
    assert player.plays == 0
    assert engine.clock.has_pending_intent
    engine.on_player_state(PlayerState.UNSTARTED)
    assert player.plays == 1
    assert engine.poller.is_running()


def test_calibration_offset_applies_on_next_poll(player, scheduler, one_line):
    engine = _playing(_engine(player, scheduler), one_line)
    _at(engine, player, 4.2)
    assert engine.countdown_ms == 800
    engine.set_calibration_offset(500)
    assert engine.countdown_ms == 800
    engine.poll()
    assert engine.countdown_ms == 300
    engine.skip_countdown()
    assert player.seeks == [4.5]


def test_solving_every_line_clears_and_records(player, scheduler, one_line, records):
    engine = _playing(_engine(player, scheduler, records=records), one_line)
    finished = []
    engine.session_finished.connect(finished.append)
    _at(engine, player, 6.0)
    engine.type_text("shi")
    _at(engine, player, 8.0)
    assert engine.phase is BeatPhase.CLEARED
    assert not engine.poller.is_running()
    record = finished[0]
    assert records.records == [record]
    assert record.mode is GameMode.BEAT_SYNC
    assert record.solved == 1
    assert record.points == 160


def test_player_end_clears(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.0)
    engine.on_player_state(PlayerState.ENDED)
    assert engine.phase is BeatPhase.CLEARED


def test_missed_line_limit_is_fatal(player, scheduler, records):
    engine = _playing(_engine(player, scheduler, records=records, max_missed_lines=1))
    _at(engine, player, 6.0)
    _at(engine, player, 8.5)
    assert engine.phase is BeatPhase.DEAD
    assert engine.missed_lines == 1
    assert records.records[0].timed_out == 1
    assert not engine.poller.is_running()


def test_reset_twice_equals_reset_once(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.0)
    engine.type_char("s")
    engine.reset()
    snapshot = (engine.phase, engine.line_index, engine.input, engine.stats, engine.countdown_ms, engine.poller.is_running())
    engine.reset()
    assert (engine.phase, engine.line_index, engine.input, engine.stats, engine.countdown_ms, engine.poller.is_running()) == snapshot
    assert snapshot[0] is BeatPhase.READY


def test_hard_reset_rewinds_the_video(player, scheduler):
    engine = _playing(_engine(player, scheduler))
    _at(engine, player, 6.0)
    assert engine.handle_key(KeyCommand.HARD_RESET)
    assert engine.phase is BeatPhase.READY
    assert player.pauses == 1
    assert player.seeks == [0.0]


# ------------------------------
# Track loading
# ------------------------------

def test_invalid_video_id_never_reaches_the_source(player, scheduler):
    engine = _engine(player, scheduler)
    source = TrackSource(track=LyricTrack(title="t", lines=tuple(LINES)))
    assert engine.load_track("bad id!", source) is False
    assert source.calls == []
    assert "Invalid video id" in engine.last_error
    assert engine.phase is BeatPhase.IDLE
    assert player.seeks == [] and player.plays == 0


def test_load_track_success(player, scheduler):
    engine = _engine(player, scheduler)
    source = TrackSource(track=LyricTrack(title="song", lines=tuple(LINES)))
    assert engine.load_track("dQw4w9WgXcQ", source)
    assert source.calls == ["dQw4w9WgXcQ"]
    assert engine.phase is BeatPhase.READY
    assert engine.video_id == "dQw4w9WgXcQ"
    assert engine.track.title == "song"


def test_load_track_failure_leaves_idle_with_error(player, scheduler):
    engine = _engine(player, scheduler)
    source = TrackSource(error=DataUnavailableError("no captions"))
    assert engine.load_track("dQw4w9WgXcQ", source) is False
    assert engine.phase is BeatPhase.IDLE
    assert engine.last_error == "no captions"
    assert engine.start() is False


def test_load_lines_drops_invalid_lines(player, scheduler):
    engine = _engine(player, scheduler)
    bad = LyricLine(display_text="x", canonical_romaji="x", start_ms=10, end_ms=10)
    assert engine.load_lines([LINES[1], bad, LINES[0]])
    assert [ln.start_ms for ln in engine.lines] == [5000, 9000]
    assert engine.load_lines([bad]) is False
    assert engine.phase is BeatPhase.IDLE
