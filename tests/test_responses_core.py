"""Tests for the response capture: arming, first-input-wins and evaluation."""

from __future__ import annotations

import asyncio

import pytest

from mathometer.clock import TrialClock
from mathometer.responses import (
    NO_RESPONSE,
    NO_RT,
    InputChannel,
    InputEvent,
    InputHub,
    ResponseArbiter,
    ResponseCapture,
    Side,
    mapping_string,
    pointer_to_side,
    true_response_side,
    truth_label,
)
from tests.fakes import FakeClock, FakeStage


def test_true_response_side_and_labels() -> None:
    assert true_response_side(1) is Side.RIGHT
    assert true_response_side(2) is Side.LEFT
    with pytest.raises(ValueError):
        true_response_side(0)
    assert truth_label(Side.RIGHT, 1) == "True"
    assert truth_label(Side.LEFT, 1) == "False"
    assert truth_label(Side.LEFT, 2) == "True"
    assert truth_label(None, 2) == NO_RESPONSE
    assert mapping_string(1).startswith("True=right")
    assert mapping_string(2).startswith("True=left")


def test_pointer_halves() -> None:
    assert pointer_to_side(0.1) is Side.LEFT
    assert pointer_to_side(0.5) is Side.RIGHT
    assert pointer_to_side(0.99) is Side.RIGHT
    assert pointer_to_side(1.5) is None
    assert pointer_to_side(None) is None


def test_events_ignored_when_not_armed() -> None:
    hub = InputHub()
    assert not hub.armed
    assert hub.dispatch([InputEvent.keypress("b", 1.0)]) is False


def test_earliest_event_in_batch_wins_and_rest_are_ignored() -> None:
    hub = InputHub(left_key="y", right_key="b")
    capture = ResponseCapture()
    with hub.session(capture):
        assert hub.armed
        latched = hub.dispatch(
            [
                InputEvent.keypress("b", 2.30),
                InputEvent.tap(0.2, 2.10),
                InputEvent.keypress("y", 2.50),
            ]
        )
    assert latched
    assert not hub.armed
    assert capture.side is Side.LEFT
    assert capture.channel is InputChannel.POINTER
    assert capture.t == pytest.approx(2.10)
    assert capture.ignored == 2


def test_unmapped_keys_do_not_latch() -> None:
    hub = InputHub(left_key="y", right_key="b")
    capture = ResponseCapture()
    with hub.session(capture):
        assert hub.dispatch([InputEvent.keypress("space", 1.0)]) is False
        assert hub.dispatch([InputEvent.keypress("B", 1.2)]) is True
    assert capture.side is Side.RIGHT
    assert capture.ignored == 0


def test_session_disarms_on_exception() -> None:
    hub = InputHub()
    with pytest.raises(RuntimeError, match="boom"):
        with hub.session(ResponseCapture()):
            raise RuntimeError("boom")
    assert not hub.armed


def test_session_cannot_be_nested() -> None:
    hub = InputHub()
    with hub.session(ResponseCapture()):
        with pytest.raises(RuntimeError):
            with hub.session(ResponseCapture()):
                pass
        assert hub.armed
    assert not hub.armed


def _arbiter(window_s: float = 4.0) -> tuple[FakeClock, FakeStage, TrialClock, ResponseArbiter]:
    clock = FakeClock(t=50.0)
    hub = InputHub()
    stage = FakeStage(clock=clock, inputs=hub)
    tc = TrialClock(clock=clock, frames=stage)
    return clock, stage, tc, ResponseArbiter(hub=hub, trial_clock=tc, stage=stage, window_s=window_s)


def test_collect_keypress() -> None:
    clock, stage, tc, arbiter = _arbiter()
    t0 = tc.set_anchor()
    stage.window_script = [[(1.25, "b"), (2.0, "y")]]
    opened = []
    outcome = asyncio.run(arbiter.collect(true_side=1, on_open=opened.append))

    assert len(opened) == 1
    assert outcome.got_response
    assert outcome.side is Side.RIGHT
    assert outcome.label == "True"
    assert outcome.channel is InputChannel.KEYBOARD
    assert outcome.latency == pytest.approx(1.25)
    assert outcome.rt == pytest.approx(opened[0].raw_s + 1.25 - t0)
    assert not stage.inputs.armed


def test_collect_timeout_gives_no_response() -> None:
    clock, stage, tc, arbiter = _arbiter(window_s=2.0)
    tc.set_anchor()
    stage.window_script = [[(2.5, "b")]]
    outcome = asyncio.run(arbiter.collect(true_side=2))
    assert not outcome.got_response
    assert outcome.label == NO_RESPONSE
    assert outcome.rt == NO_RT
    assert outcome.latency == NO_RT
    assert outcome.side is None


def test_collect_without_anchor_keeps_side_but_no_rt() -> None:
    clock, stage, tc, arbiter = _arbiter()
    stage.window_script = [[(0.5, 0.9)]]
    outcome = asyncio.run(arbiter.collect(true_side=2))
    assert outcome.got_response
    assert outcome.label == "False"
    assert outcome.rt == NO_RT
    assert outcome.latency == pytest.approx(0.5)


def test_window_must_be_positive() -> None:
    clock = FakeClock()
    hub = InputHub()
    stage = FakeStage(clock=clock, inputs=hub)
    with pytest.raises(ValueError):
        ResponseArbiter(hub=hub, trial_clock=TrialClock(clock=clock, frames=stage), stage=stage, window_s=0.0)
