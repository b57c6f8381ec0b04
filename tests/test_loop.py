from datetime import timedelta
from unittest.mock import Mock

import pytest

from qthrottle.decision import DecisionEngine
from qthrottle.errors import TransientApiError
from qthrottle.loop import ControlLoop, LoopState
from qthrottle.reconcile import OutcomeKind, Reconciler
from qthrottle.retry import RetryPolicy
from qthrottle.sampler import Sampler
from qthrottle.schedule import ThrottleProfile, ThrottleRule
from qthrottle.session import SessionManager, SessionState

from conftest import FakeClock, RecordingWait, at


class SteppingClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def wall():
    return SteppingClock(at(23))


@pytest.fixture
def make_loop(api, wall, night_profile):
    def factory(resync_interval=0, min_dwell=0, attempts=3, profile=None, signal_source=None):
        sessions = SessionManager(api)
        tick_clock = FakeClock()
        loop = ControlLoop(
            sampler=Sampler(signal_source, clock=wall),
            engine=DecisionEngine(min_dwell),
            reconciler=Reconciler(api, sessions, RetryPolicy(max_attempts=attempts), wait_fn=RecordingWait()),
            sessions=sessions,
            profile=profile or night_profile,
            interval=0.01,
            resync_interval=resync_interval,
            clock=tick_clock,
        )
        loop.tick_clock = tick_clock
        return loop
    return factory


def test_night_scenario(api, wall, make_loop):
    api.upload, api.download = 500 * 1024, 500 * 1024
    loop = make_loop()

    outcome = loop.tick()
    assert outcome.kind is OutcomeKind.APPLIED
    assert (api.upload, api.download) == (100 * 1024, 200 * 1024)

    wall.advance(minutes=5)
    # unchanged decision and converged: nothing to do
    assert loop.tick() is None
    assert api.count("set_limits") == 1

    # a fresh reconcile at 23:05 sees the converged remote
    assert loop.reconciler.reconcile(loop.decision.targets).kind is OutcomeKind.ALREADY_CONVERGED


def test_deferred_outcome_is_retried_next_tick(api, wall, make_loop):
    api.upload = 1
    api.fail["get_limits"].extend([TransientApiError("Unavailable")] * 3)
    loop = make_loop()

    assert loop.tick().is_deferred
    assert loop.stats.consecutive_deferred == 1

    wall.advance(seconds=5)
    outcome = loop.tick()
    assert outcome.kind is OutcomeKind.APPLIED
    assert loop.stats.consecutive_deferred == 0
    assert loop.stats.deferred == 1
    assert loop.stats.applied == 1


def test_decision_change_triggers_reconcile(api, wall, make_loop):
    loop = make_loop()
    loop.tick()
    wall.advance(hours=7)  # 06:00, back to the default
    outcome = loop.tick()
    assert outcome.kind is OutcomeKind.APPLIED
    assert (api.upload, api.download) == (0, 0)


def test_resync_interval_forces_periodic_reconcile(api, make_loop):
    loop = make_loop(resync_interval=300)
    loop.tick()
    assert loop.tick() is None

    api.upload = 42  # changed behind our back
    loop.tick_clock.advance(300)
    assert loop.tick().kind is OutcomeKind.APPLIED
    assert api.upload == 100 * 1024


def test_reload_swaps_profile_on_next_tick(api, make_loop):
    loop = make_loop()
    loop.tick()
    loop.reload(ThrottleProfile(default=ThrottleRule("default", upload_kib=7, download_kib=7)))
    assert loop.profile.rules  # still the old profile until the next tick
    outcome = loop.tick()
    assert outcome.kind is OutcomeKind.APPLIED
    assert api.upload == 7 * 1024
    assert loop.decision.rule_name == "default"


def test_tick_exceptions_do_not_stop_the_loop(api, make_loop):
    loop = make_loop()
    loop.sampler = Mock()
    loop.sampler.sample.side_effect = [RuntimeError("boom"), RuntimeError("boom again")]

    real_tick = loop.tick
    calls = []

    def tick():
        calls.append(1)
        if len(calls) >= 3:
            loop._stop.set()
            return None
        return real_tick()

    loop.tick = tick
    loop.run()
    assert len(calls) == 3
    assert loop.stats.errors == 2
    assert loop.state is LoopState.STOPPED


def test_start_and_stop_lifecycle(api, make_loop):
    loop = make_loop()
    assert loop.state is LoopState.IDLE
    loop.start()
    loop.stop(timeout=5)
    assert loop.state is LoopState.STOPPED
    assert loop.sessions.state is SessionState.LOGGED_OUT


def test_no_reconcile_after_stop_requested(api, make_loop):
    api.upload = 1
    loop = make_loop()
    loop._stop.set()
    assert loop.tick() is None
    assert api.calls == []


def test_run_twice_is_rejected(make_loop):
    loop = make_loop()
    loop.stop()
    loop.run()
    with pytest.raises(RuntimeError):
        loop.run()


def test_unexpected_reconcile_error_is_retried_next_tick(api, wall, make_loop):
    loop = make_loop()
    assert loop.tick().kind is OutcomeKind.APPLIED

    wall.advance(hours=7)  # 06:00, back to the default
    api.fail["get_limits"].append(RuntimeError("boom"))
    with pytest.raises(RuntimeError):
        loop.tick()
    assert loop.last_outcome is None

    outcome = loop.tick()
    assert outcome.kind is OutcomeKind.APPLIED
    assert (api.upload, api.download) == (0, 0)
