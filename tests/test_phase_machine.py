from datetime import datetime, timezone

import pytest

from models.focus import FocusPreferences, Phase
from services.phase_machine import PhaseStateMachine

USER = "user-1"
NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def make_machine(**prefs) -> PhaseStateMachine:
    return PhaseStateMachine(FocusPreferences(user_id=USER, **prefs))


def tick_n(machine: PhaseStateMachine, n: int):
    outcomes = [machine.on_tick(1) for _ in range(n)]
    return outcomes


def test_start_work_enters_work_phase():
    machine = make_machine()
    assert machine.start_work() is True

    state = machine.state
    assert state.phase == Phase.WORK
    assert state.remaining_seconds == 25 * 60
    assert state.phase_total_seconds == 25 * 60
    assert state.unflushed_seconds == 0
    assert state.is_paused is False


def test_start_work_ignored_outside_idle():
    machine = make_machine()
    machine.start_work()
    tick_n(machine, 10)

    assert machine.start_work() is False
    assert machine.state.remaining_seconds == 25 * 60 - 10
    assert machine.state.unflushed_seconds == 10


def test_invalid_transitions_are_noops():
    machine = make_machine()
    assert machine.pause() is False
    assert machine.resume() is False
    assert machine.save_and_end() is None
    assert machine.on_tick(1).changed is False
    assert machine.state.phase == Phase.IDLE

    machine.start_work()
    assert machine.resume() is False
    assert machine.pause() is True
    assert machine.pause() is False


def test_pause_resume_scenario():
    """Ticks while paused are ignored; resume continues from the exact second."""
    machine = make_machine()
    machine.start_work()
    tick_n(machine, 500)
    assert machine.state.remaining_seconds == 1000

    machine.pause()
    outcomes = tick_n(machine, 10)
    assert not any(o.changed for o in outcomes)
    assert machine.state.remaining_seconds == 1000
    assert machine.state.unflushed_seconds == 500

    machine.resume()
    machine.on_tick(1)
    assert machine.state.remaining_seconds == 999


def test_decrement_matches_unpaused_tick_count():
    machine = make_machine()
    machine.start_work()
    unpaused = 0
    for chunk, paused in [(30, False), (20, True), (45, False), (5, True), (7, False)]:
        if paused:
            machine.pause()
        else:
            machine.resume()
            unpaused += chunk
        tick_n(machine, chunk)

    assert machine.state.remaining_seconds == 25 * 60 - unpaused
    assert machine.state.unflushed_seconds == unpaused


def test_full_work_block_advances_to_short_break():
    machine = make_machine(work_minutes=25, short_break_minutes=5, long_break_minutes=15,
                           long_break_interval_cycles=4)
    machine.start_work()
    outcomes = tick_n(machine, 1500)

    last = outcomes[-1]
    assert last.ended_work
    assert last.advanced_to == Phase.SHORT_BREAK
    assert machine.state.phase == Phase.SHORT_BREAK
    assert machine.state.remaining_seconds == 5 * 60
    assert machine.state.completed_work_cycles == 1
    # Break phases never hold work seconds
    assert machine.state.unflushed_seconds == 0
    assert machine.pending_seconds == 1500


def test_long_break_every_interval():
    machine = make_machine(work_minutes=1, short_break_minutes=1, long_break_minutes=2,
                           long_break_interval_cycles=3)
    machine.start_work()
    breaks = []
    for _ in range(6):
        tick_n(machine, 60)
        breaks.append(machine.state.phase)
        machine.acknowledge_flush(machine.pending_seconds, NOW)
        tick_n(machine, machine.state.remaining_seconds)
        assert machine.state.phase == Phase.WORK

    assert breaks == [
        Phase.SHORT_BREAK,
        Phase.SHORT_BREAK,
        Phase.LONG_BREAK,
        Phase.SHORT_BREAK,
        Phase.SHORT_BREAK,
        Phase.LONG_BREAK,
    ]
    assert machine.state.completed_work_cycles == 6


def test_break_does_not_accrue_work_time():
    machine = make_machine(work_minutes=1, short_break_minutes=1)
    machine.start_work()
    tick_n(machine, 60)
    machine.acknowledge_flush(60, NOW)

    tick_n(machine, 30)
    assert machine.state.phase == Phase.SHORT_BREAK
    assert machine.state.unflushed_seconds == 0


@pytest.mark.parametrize("end", ["reset", "save_and_end"])
def test_reset_and_save_and_end_keep_cycle_count(end):
    machine = make_machine(work_minutes=1)
    machine.start_work()
    tick_n(machine, 60)
    machine.acknowledge_flush(60, NOW)
    tick_n(machine, 5 * 60)
    tick_n(machine, 40)
    assert machine.state.completed_work_cycles == 1

    closing = getattr(machine, end)()

    assert closing == 40
    state = machine.state
    assert state.phase == Phase.IDLE
    assert state.remaining_seconds == 0
    assert state.unflushed_seconds == 0
    assert state.carried_seconds == 0
    assert state.is_paused is False
    assert state.completed_work_cycles == 1


def test_reset_while_paused():
    machine = make_machine()
    machine.start_work()
    tick_n(machine, 10)
    machine.pause()

    assert machine.reset() == 10
    assert machine.state.is_paused is False
    assert machine.state.phase == Phase.IDLE


def test_unflushed_only_drops_by_acknowledged_seconds():
    machine = make_machine()
    machine.start_work()
    previous = 0
    for _ in range(150):
        machine.on_tick(1)
        assert machine.state.unflushed_seconds >= previous
        previous = machine.state.unflushed_seconds

    machine.acknowledge_flush(120, NOW)
    assert machine.state.unflushed_seconds == 30
    assert machine.state.last_sync == NOW


def test_unacknowledged_time_is_restored_in_next_work_block():
    machine = make_machine(work_minutes=1, short_break_minutes=1)
    machine.start_work()
    tick_n(machine, 60)
    assert machine.state.carried_seconds == 60

    tick_n(machine, 60)
    assert machine.state.phase == Phase.WORK
    assert machine.state.unflushed_seconds == 60
    assert machine.state.carried_seconds == 0


def test_acknowledge_takes_carried_seconds_first():
    machine = make_machine(work_minutes=1, short_break_minutes=1)
    machine.start_work()
    tick_n(machine, 60)
    tick_n(machine, 60)  # back in work with 60 restored
    tick_n(machine, 20)
    assert machine.state.unflushed_seconds == 80

    machine.acknowledge_flush(60, NOW)
    assert machine.state.unflushed_seconds == 20


def test_coarse_tick_never_overshoots():
    machine = make_machine(work_minutes=1)
    machine.start_work()
    tick_n(machine, 55)

    outcome = machine.on_tick(10)

    assert outcome.ended_work
    assert machine.pending_seconds == 60


def test_break_override_read_at_break_entry():
    machine = make_machine(work_minutes=1, short_break_minutes=5)
    machine.start_work()
    machine.set_break_override(short_minutes=2, long_minutes=None)
    tick_n(machine, 60)
    assert machine.state.phase == Phase.SHORT_BREAK
    assert machine.state.phase_total_seconds == 120

    # Changing the override mid-break leaves the running break alone
    machine.set_break_override(short_minutes=3, long_minutes=None)
    assert machine.state.remaining_seconds == 120

    machine.reset()
    machine.start_work()
    tick_n(machine, 60)
    assert machine.state.phase_total_seconds == 5 * 60


def test_break_override_validation():
    machine = make_machine()
    with pytest.raises(ValueError):
        machine.set_break_override(short_minutes=0, long_minutes=None)
    with pytest.raises(ValueError):
        machine.set_break_override(short_minutes=None, long_minutes=-5)


def test_new_preferences_apply_from_next_phase():
    machine = make_machine(work_minutes=25)
    machine.start_work()
    tick_n(machine, 10)

    machine.set_preferences(FocusPreferences(user_id=USER, work_minutes=10))
    assert machine.state.remaining_seconds == 25 * 60 - 10
    assert machine.state.phase_total_seconds == 25 * 60

    machine.reset()
    machine.start_work()
    assert machine.state.remaining_seconds == 10 * 60


def test_invalid_preferences_rejected():
    with pytest.raises(ValueError):
        PhaseStateMachine(FocusPreferences(user_id=USER, long_break_interval_cycles=0))
