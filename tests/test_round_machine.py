import pytest

from romatype.controllers import RoundMachine
from romatype.domain.enums import KeyCommand, KeyResult, OutcomeKind, RoundPhase, RoundTiming
from romatype.domain.models import Prompt

SHI = Prompt(id=7, display_text="し", canonical_romaji="shi")
KONNICHIWA = Prompt(id=8, display_text="こんにちは", canonical_romaji="konnichiwa")


@pytest.fixture
def machine(clock, scheduler):
    return RoundMachine(clock=clock, scheduler=scheduler, timing=RoundTiming(round_limit_ms=5000))


@pytest.fixture
def outcomes(machine):
    seen = []
    machine.outcome_ready.connect(seen.append)
    return seen


def _activate(machine, scheduler, prompt=SHI):
    assert machine.start(prompt)
    scheduler.advance(3000)
    assert machine.phase is RoundPhase.ACTIVE


def test_countdown_ticks_then_active(machine, scheduler):
    ticks = []
    machine.countdown_changed.connect(ticks.append)
    assert machine.start(SHI)
    assert machine.phase is RoundPhase.COUNTDOWN
    assert machine.countdown == 3
    scheduler.advance(1000)
    assert machine.countdown == 2
    scheduler.advance(2000)
    assert machine.phase is RoundPhase.ACTIVE
    assert machine.countdown is None
    assert ticks == [3, 2, 1, None]
    assert machine.state.started_at_clock_time == 3000


def test_reveal_window_precedes_active(clock, scheduler):
    m = RoundMachine(clock=clock, scheduler=scheduler, timing=RoundTiming(reveal_ms=1500))
    m.start(SHI)
    scheduler.advance(3000)
    assert m.phase is RoundPhase.REVEALING
    assert m.type_char("s") is KeyResult.IGNORED
    scheduler.advance(1500)
    assert m.phase is RoundPhase.ACTIVE
    assert m.state.started_at_clock_time == 4500


def test_no_input_before_active(machine):
    machine.start(SHI)
    assert machine.type_char("s") is KeyResult.IGNORED
    assert machine.input == ""


def test_invalid_keystroke_is_blocked_and_counted(machine, scheduler, outcomes):
    _activate(machine, scheduler, KONNICHIWA)
    for ch in "konnichi":
        assert machine.type_char(ch) is KeyResult.ACCEPTED
    assert machine.type_char("h") is KeyResult.REJECTED
    assert machine.input == "konnichi"
    assert machine.mistakes == 1
    assert machine.type_char("w") is KeyResult.ACCEPTED
    assert machine.type_char("a") is KeyResult.COMPLETED

    assert len(outcomes) == 1
    assert outcomes[0].kind is OutcomeKind.SOLVED
    assert outcomes[0].mistakes == 1
    assert outcomes[0].prompt_id == KONNICHIWA.id
    assert machine.phase is RoundPhase.IDLE


def test_variant_spelling_completes(machine, scheduler, outcomes):
    _activate(machine, scheduler)
    scheduler.advance(1200)
    assert machine.type_text("si") is KeyResult.COMPLETED
    assert outcomes[0].solved
    assert outcomes[0].elapsed_ms == 1200


def test_deletion_is_always_accepted(machine, scheduler):
    _activate(machine, scheduler)
    machine.type_char("s")
    machine.type_char("h")
    assert machine.backspace() is KeyResult.ACCEPTED
    assert machine.input == "s"
    assert machine.mistakes == 0


def test_poll_times_out_after_round_limit(machine, scheduler, outcomes):
    _activate(machine, scheduler)
    machine.type_char("s")
    scheduler.advance(4999)
    assert machine.poll() is None
    scheduler.advance(1)
    outcome = machine.poll()
    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert outcome.elapsed_ms == 5000
    assert outcomes == [outcome]
    assert machine.phase is RoundPhase.IDLE


def test_completion_beats_timeout_in_the_same_poll(machine, scheduler, clock):
    _activate(machine, scheduler)
    machine.state.input = "shi"
    clock.shift_ms = 60_000
    outcome = machine.poll()
    assert outcome.kind is OutcomeKind.SOLVED


def test_submit_only_resolves_complete_input(machine, scheduler):
    _activate(machine, scheduler)
    machine.type_char("s")
    assert machine.handle_key(KeyCommand.ENTER) is False
    assert machine.phase is RoundPhase.ACTIVE


def test_skip_emits_skipped_and_returns_to_idle(machine, scheduler, outcomes):
    _activate(machine, scheduler)
    assert machine.handle_key(KeyCommand.ESCAPE) is True
    assert outcomes[0].kind is OutcomeKind.SKIPPED
    assert machine.phase is RoundPhase.IDLE


def test_start_is_ignored_while_a_round_runs(machine, scheduler):
    _activate(machine, scheduler)
    assert machine.start(KONNICHIWA) is False
    assert machine.prompt is SHI


def test_reset_twice_equals_reset_once(machine, scheduler):
    machine.start(SHI)
    scheduler.advance(1000)
    machine.reset()
    snapshot = (machine.phase, machine.countdown, machine.state, machine.input, len(scheduler.active()))
    machine.reset()
    assert (machine.phase, machine.countdown, machine.state, machine.input, len(scheduler.active())) == snapshot
    assert snapshot[0] is RoundPhase.IDLE
    assert snapshot[-1] == 0
    scheduler.advance(5000)
    assert machine.phase is RoundPhase.IDLE


def test_stale_countdown_never_reaches_the_next_round(machine, scheduler):
    machine.start(SHI)
    scheduler.advance(500)
    machine.reset()
    machine.start(KONNICHIWA)
    scheduler.advance(2500)  # the first countdown would have finished here
    assert machine.phase is RoundPhase.COUNTDOWN
    scheduler.advance(500)
    assert machine.phase is RoundPhase.ACTIVE
    assert machine.prompt is KONNICHIWA


def test_hard_reset_key(machine, scheduler):
    _activate(machine, scheduler)
    assert machine.handle_key(KeyCommand.HARD_RESET)
    assert machine.phase is RoundPhase.IDLE
    assert machine.type_char("s") is KeyResult.IGNORED
