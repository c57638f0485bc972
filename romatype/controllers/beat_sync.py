from __future__ import annotations

"""Beat-sync: typing windows taken from a playing video's caption lines.

    idle -> loading -> ready -> waiting -> countdown -> active -> (cleared | dead)

The video clock is the only time source. Every poll reads it once and derives
everything else from that reading:

  - the current line is the first line whose ``end_ms`` is still ahead,
    scanned from the start of the track, so seeking backwards just works;
  - the pre-roll countdown is the distance to the first line's start;
  - a line that closes without being settled is reported as timed out.

A line is *settled* once it has an outcome (solved, skipped or missed). Input
on a settled line is locked, which also covers the early-solve case: the line
stays current until the clock crosses its end.

``skip_line`` may advance past what the clock says. That skip holds until the
next explicit seek.
"""

import logging
from typing import Callable, Optional, Sequence

from PyQt6.QtCore import QObject, pyqtSignal

from romatype.domain.enums import BeatPhase, BeatSyncConfig, GameMode, KeyCommand, KeyResult, OutcomeKind, PlayerState
from romatype.domain.errors import DataUnavailableError, InvalidVideoIdError
from romatype.domain.models import LyricLine, LyricTrack, RoundOutcome, SessionRecord, SessionStats
from romatype.domain.romaji_matcher import RomajiMatcher, sanitize_input
from romatype.domain.scoring import ScoreKeeper, ScoringRule, progress_ratio
from romatype.services.clock import VideoClockSource, epoch_ms
from romatype.services.prompt_source import is_valid_video_id
from romatype.services.records_store import RecordsStore
from romatype.services.timers import PollDriver, QtScheduler, Scheduler

logger = logging.getLogger(__name__)

_RUNNING = (BeatPhase.WAITING, BeatPhase.COUNTDOWN, BeatPhase.ACTIVE)


class BeatSyncEngine(QObject):
    phase_changed = pyqtSignal(object)  # BeatPhase
    line_changed = pyqtSignal(object)  # int | None
    countdown_changed = pyqtSignal(object)  # ms until the first line, or None
    input_changed = pyqtSignal(str)
    mistake_made = pyqtSignal(int)
    outcome_ready = pyqtSignal(object)  # RoundOutcome
    stats_changed = pyqtSignal(object)  # SessionStats
    track_loaded = pyqtSignal(object)  # LyricTrack
    load_failed = pyqtSignal(str)
    session_finished = pyqtSignal(object)  # SessionRecord
    calibration_changed = pyqtSignal(int)  # ms

    def __init__(
        self,
        clock: VideoClockSource,
        *,
        config: Optional[BeatSyncConfig] = None,
        scheduler: Optional[Scheduler] = None,
        matcher: Optional[RomajiMatcher] = None,
        records: Optional[RecordsStore] = None,
        wall_time_fn: Callable[[], int] = epoch_ms,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._clock = clock
        self._config = (config or BeatSyncConfig()).normalised()
        self._scheduler: Scheduler = scheduler if scheduler is not None else QtScheduler(self)
        self._matcher = matcher or RomajiMatcher()
        self._records = records
        self._wall_time_fn = wall_time_fn
        self._keeper = ScoreKeeper(ScoringRule.for_difficulty(self._config.difficulty))
        self._poller = PollDriver(
            self._scheduler,
            self.poll,
            (self._config.primary_poll_ms, self._config.fallback_poll_ms),
        )

        self._phase = BeatPhase.IDLE
        self._track: Optional[LyricTrack] = None
        self._video_id = ""
        self._last_error: Optional[str] = None

        self._index: Optional[int] = None
        self._input = ""
        self._mistakes = 0
        self._countdown_ms: Optional[int] = None
        self._settled: dict[int, OutcomeKind] = {}
        self._skip_floor = 0
        self._seen_seeks = clock.seek_count
        self._adjusted = 0
        self._missed = 0

        self._stats = SessionStats()
        self._started_at: Optional[int] = None
        self._last_record: Optional[SessionRecord] = None

    # ----------------------------
    # Read-only state
    # ----------------------------

    @property
    def phase(self) -> BeatPhase:
        return self._phase

    @property
    def clock(self) -> VideoClockSource:
        return self._clock

    @property
    def config(self) -> BeatSyncConfig:
        return self._config

    @property
    def track(self) -> Optional[LyricTrack]:
        return self._track

    @property
    def lines(self) -> tuple[LyricLine, ...]:
        return self._track.lines if self._track is not None else ()

    @property
    def video_id(self) -> str:
        return self._video_id

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def line_index(self) -> Optional[int]:
        return self._index

    @property
    def current_line(self) -> Optional[LyricLine]:
        if self._index is None or self._index >= len(self.lines):
            return None
        return self.lines[self._index]

    @property
    def input(self) -> str:
        return self._input

    @property
    def mistakes(self) -> int:
        return self._mistakes

    @property
    def countdown_ms(self) -> Optional[int]:
        return self._countdown_ms

    @property
    def is_locked(self) -> bool:
        """True when the current line already has an outcome."""
        return self._index is not None and self._index in self._settled

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def missed_lines(self) -> int:
        return self._missed

    @property
    def last_record(self) -> Optional[SessionRecord]:
        return self._last_record

    @property
    def poller(self) -> PollDriver:
        return self._poller

    def adjusted_time(self) -> int:
        # The calibration offset is already part of the video clock's reading.
        return self._clock.now()

    def current_line_index(self, adjusted_ms: int) -> Optional[int]:
        for i, line in enumerate(self.lines):
            if adjusted_ms < line.end_ms:
                return i
        return None

    def line_progress(self) -> float:
        """Elapsed fraction of the current line's window, 0..1."""
        line = self.current_line
        if line is None or self._phase is not BeatPhase.ACTIVE:
            return 0.0
        return progress_ratio(self._adjusted - line.start_ms, line.span_ms)

    def highlight(self):
        line = self.current_line
        if line is None:
            return None
        return self._matcher.highlight_split(self._input, line.canonical_romaji)

    # ----------------------------
    # Track loading
    # ----------------------------

    def load_track(self, video_id: str, source) -> bool:
        """Fetch caption lines for ``video_id``. Invalid ids never reach the source."""
        vid = (video_id or "").strip()
        if not is_valid_video_id(vid):
            # Rejected outright: the loaded track (if any) and the player are untouched.
            message = str(InvalidVideoIdError(vid))
            logger.warning("%s", message)
            self._last_error = message
            self.load_failed.emit(message)
            return False

        self.reset()
        self._set_phase(BeatPhase.LOADING)
        try:
            track = source.fetch_track(vid)
        except (InvalidVideoIdError, DataUnavailableError) as e:
            return self._fail_load(str(e))
        self._video_id = vid
        return self.load_lines(track.lines, title=track.title)

    def load_lines(self, lines: Sequence[LyricLine], *, title: str = "") -> bool:
        valid = sorted((ln for ln in lines if ln.end_ms > ln.start_ms), key=lambda ln: (ln.start_ms, ln.end_ms))
        if len(valid) != len(lines):
            logger.warning("Dropped %d invalid lines", len(lines) - len(valid))
        if not valid:
            return self._fail_load("Track has no usable lines")

        self.reset()
        self._track = LyricTrack(title=title, lines=tuple(valid))
        self._last_error = None
        self._set_phase(BeatPhase.READY)
        logger.info("Loaded %d lines%s", len(valid), f" for {title!r}" if title else "")
        self.track_loaded.emit(self._track)
        return True

    def _fail_load(self, message: str) -> bool:
        logger.warning("Beat-sync track unavailable: %s", message)
        self._poller.stop()
        self._track = None
        self._last_error = message
        self._set_phase(BeatPhase.IDLE)
        self.load_failed.emit(message)
        return False

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def start(self) -> bool:
        """Begin (or restart) the loaded track and start playback."""
        if self._track is None:
            logger.warning("Cannot start beat-sync: no track loaded")
            return False
        if self._phase in _RUNNING:
            return False
        rewind = self._phase in (BeatPhase.CLEARED, BeatPhase.DEAD)
        if rewind:
            self.reset()
        self._enter_waiting()
        self._clock.run_when_ready(lambda: self._begin_playback(rewind), "play")
        return True

    def _begin_playback(self, rewind: bool) -> None:
        if rewind:
            self._clock.seek(0.0)
            self._seen_seeks = self._clock.seek_count
        self._clock.play()

    def on_player_state(self, state: PlayerState) -> None:
        self._clock.on_state_change(state)
        if state is PlayerState.PLAYING and self._phase is BeatPhase.READY:
            self._enter_waiting()
        elif state is PlayerState.ENDED and self._phase in _RUNNING:
            self._settle_closed_lines(self.adjusted_time(), len(self.lines))
            if self._phase in _RUNNING:
                self._finish(BeatPhase.CLEARED)

    def reset(self, *, rewind: bool = False) -> None:
        """Drop all round and session state. Calling it twice is the same as once."""
        self._poller.stop()
        self._clock.cancel_pending()
        self._index = None
        self._input = ""
        self._mistakes = 0
        self._settled = {}
        self._skip_floor = 0
        self._seen_seeks = self._clock.seek_count
        self._missed = 0
        self._started_at = None
        self._set_countdown(None)
        if self._stats != SessionStats():
            self._stats = SessionStats()
            self.stats_changed.emit(self._stats)
        if rewind and self._clock.is_ready:
            self._clock.pause()
            self._clock.seek(0.0)
            self._seen_seeks = self._clock.seek_count
        self._set_phase(BeatPhase.READY if self._track is not None else BeatPhase.IDLE)

    def set_calibration_offset(self, offset_ms: int) -> None:
        self._clock.set_calibration_offset(offset_ms)
        logger.debug("Calibration offset set to %dms", self._clock.calibration_offset_ms)
        self.calibration_changed.emit(self._clock.calibration_offset_ms)

    def _enter_waiting(self) -> None:
        self._started_at = int(self._wall_time_fn())
        self._seen_seeks = self._clock.seek_count
        self._set_phase(BeatPhase.WAITING)
        self._poller.start()

    def _finish(self, phase: BeatPhase) -> SessionRecord:
        self._poller.stop()
        self._set_countdown(None)
        ended_at = int(self._wall_time_fn())
        record = self._keeper.make_record(
            self._stats,
            mode=GameMode.BEAT_SYNC,
            difficulty=self._config.difficulty,
            started_at=self._started_at if self._started_at is not None else ended_at,
            ended_at=ended_at,
        )
        self._last_record = record
        if self._records is not None:
            self._records.append(record)
        logger.info("Beat-sync %s: %d solved, %d missed, %d points", phase.value, record.solved, record.timed_out, record.points)
        self._set_phase(phase)
        self.session_finished.emit(record)
        return record

    # ----------------------------
    # Clock poll
    # ----------------------------

    def poll(self) -> Optional[RoundOutcome]:
        """Re-derive phase and line from one clock reading. Safe to call any time."""
        if self._phase not in _RUNNING or not self.lines:
            return None

        lines = self.lines
        adjusted = self.adjusted_time()
        self._adjusted = adjusted
        seeked = self._consume_seek()

        first_start = lines[0].start_ms
        if adjusted < first_start and self._skip_floor == 0:
            self._set_index(None)
            remaining = first_start - adjusted
            if remaining <= self._config.pre_roll_ms:
                self._set_phase(BeatPhase.COUNTDOWN)
                self._set_countdown(remaining)
            else:
                self._set_phase(BeatPhase.WAITING)
                self._set_countdown(None)
            return None

        self._set_countdown(None)
        scanned = self.current_line_index(adjusted)
        target = len(lines) if scanned is None else max(scanned, self._skip_floor)

        outcome = None
        if not seeked:
            outcome = self._settle_closed_lines(adjusted, target)
            if self._phase is BeatPhase.DEAD:
                return outcome

        if target >= len(lines):
            self._finish(BeatPhase.CLEARED)
            return outcome

        self._set_phase(BeatPhase.ACTIVE)
        self._set_index(target)
        return outcome

    def _consume_seek(self) -> bool:
        count = self._clock.seek_count
        if count == self._seen_seeks:
            return False
        self._seen_seeks = count
        self._skip_floor = 0
        return True

    def _settle_closed_lines(self, adjusted: int, upto: int) -> Optional[RoundOutcome]:
        """Report lines before ``upto`` whose window has closed without an outcome."""
        start = self._index if self._index is not None else 0
        outcome = None
        for i in range(start, min(upto, len(self.lines))):
            line = self.lines[i]
            if i in self._settled or line.end_ms > adjusted:
                continue
            mistakes = self._mistakes if i == self._index else 0
            typed = len(self._input) if i == self._index else 0
            outcome = self._emit_outcome(i, OutcomeKind.TIMED_OUT, line.span_ms, mistakes, typed)
            self._missed += 1
            limit = self._config.max_missed_lines
            if limit is not None and self._missed >= limit:
                logger.info("Missed %d lines; game over", self._missed)
                self._finish(BeatPhase.DEAD)
                break
        return outcome

    # ----------------------------
    # Input
    # ----------------------------

    def type_text(self, text: str) -> KeyResult:
        line = self.current_line
        if self._phase is not BeatPhase.ACTIVE or line is None or self.is_locked:
            return KeyResult.IGNORED
        if self._adjusted < line.start_ms:
            # Intermission: the next line is shown but its window is not open.
            return KeyResult.IGNORED

        new = sanitize_input(text)
        if new == self._input:
            return KeyResult.IGNORED

        if len(new) < len(self._input):
            self._input = new
            self.input_changed.emit(new)
            return KeyResult.ACCEPTED

        if not self._matcher.is_prefix_valid(new, line.canonical_romaji):
            self._mistakes += 1
            self.mistake_made.emit(self._mistakes)
            return KeyResult.REJECTED

        self._input = new
        self.input_changed.emit(new)
        if self._matcher.is_complete(new, line.canonical_romaji):
            elapsed = max(0, self._adjusted - line.start_ms)
            self._emit_outcome(self._index, OutcomeKind.SOLVED, elapsed, self._mistakes, len(new))
            return KeyResult.COMPLETED
        return KeyResult.ACCEPTED

    def type_char(self, ch: str) -> KeyResult:
        return self.type_text(self._input + (ch or ""))

    def backspace(self) -> KeyResult:
        if not self._input:
            return KeyResult.IGNORED
        return self.type_text(self._input[:-1])

    def _emit_outcome(self, index: int, kind: OutcomeKind, elapsed_ms: int, mistakes: int, typed: int) -> RoundOutcome:
        self._settled[index] = kind
        outcome = RoundOutcome(
            kind=kind,
            elapsed_ms=max(0, int(elapsed_ms)),
            mistakes=mistakes,
            typed_chars=typed,
            line_index=index,
        )
        self._stats = self._keeper.apply(self._stats, outcome)
        logger.debug("Line %d: %s", index, kind.value)
        self.outcome_ready.emit(outcome)
        self.stats_changed.emit(self._stats)
        return outcome

    # ----------------------------
    # Skips
    # ----------------------------

    def skip_intro(self) -> bool:
        """Jump to just before the pre-roll countdown of the first line."""
        if self._phase is not BeatPhase.WAITING or not self.lines:
            return False
        first_start = self.lines[0].start_ms
        if first_start - self._adjusted <= self._config.pre_roll_ms + self._config.intro_skip_guard_ms:
            return False
        target_ms = first_start - self._config.pre_roll_ms - self._clock.calibration_offset_ms
        self._clock.run_when_ready(lambda: self._seek_and_play(target_ms), "skip_intro")
        return True

    def skip_countdown(self) -> bool:
        if self._phase is not BeatPhase.COUNTDOWN or not self.lines:
            return False
        target_ms = self.lines[0].start_ms - self._clock.calibration_offset_ms
        self._clock.run_when_ready(lambda: self._seek_and_play(target_ms), "skip_countdown")
        self._set_countdown(None)
        return True

    def _seek_and_play(self, target_ms: int) -> None:
        # A deferred skip replaces the queued play, so it has to start playback itself.
        self._clock.seek(max(0, target_ms) / 1000.0)
        self._clock.play()

    def skip_line(self, seek_to_next_start: bool = False) -> Optional[RoundOutcome]:
        """Give up on the current line and move to the next one."""
        if self._phase is not BeatPhase.ACTIVE or self._index is None:
            return None
        index = self._index
        outcome = None
        if index not in self._settled:
            outcome = self._emit_outcome(index, OutcomeKind.SKIPPED, max(0, self._adjusted - self.lines[index].start_ms), self._mistakes, len(self._input))

        nxt = index + 1
        if nxt >= len(self.lines):
            self._finish(BeatPhase.CLEARED)
            return outcome

        if seek_to_next_start:
            target_ms = self.lines[nxt].start_ms - self._clock.calibration_offset_ms
            self._clock.seek(max(0, target_ms) / 1000.0)
            self._seen_seeks = self._clock.seek_count
            self._adjusted = self.lines[nxt].start_ms
        self._skip_floor = nxt
        self._set_index(nxt)
        return outcome

    def handle_key(self, command: KeyCommand) -> bool:
        if command is KeyCommand.HARD_RESET:
            self.reset(rewind=True)
            return True
        if command is KeyCommand.ESCAPE:
            if self._phase is not BeatPhase.ACTIVE:
                return False
            self.skip_line()
            return True
        if command is KeyCommand.SPACE:
            if self._phase in (BeatPhase.READY, BeatPhase.CLEARED, BeatPhase.DEAD):
                return self.start()
            if self._phase is BeatPhase.WAITING:
                return self.skip_intro()
            if self._phase is BeatPhase.COUNTDOWN:
                return self.skip_countdown()
            return False
        return False

    # ----------------------------
    # Helpers
    # ----------------------------

    def _set_phase(self, phase: BeatPhase) -> None:
        if self._phase is phase:
            return
        self._phase = phase
        self.phase_changed.emit(phase)

    def _set_index(self, index: Optional[int]) -> None:
        if self._index == index:
            return
        self._index = index
        self._input = ""
        self._mistakes = 0
        self.line_changed.emit(index)
        self.input_changed.emit("")

    def _set_countdown(self, value: Optional[int]) -> None:
        if self._countdown_ms == value:
            return
        self._countdown_ms = value
        self.countdown_changed.emit(value)


__all__ = ["BeatSyncEngine"]
