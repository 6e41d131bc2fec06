"""Tests for how PygameStage turns pygame events into response input."""

from __future__ import annotations

import asyncio
import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import pygame
import pytest

from mathometer.app import PygameStage
from mathometer.responses import InputChannel, InputHub, ResponseCapture, Side
from tests.fakes import FakeClock


@pytest.fixture
def stage_and_hub(tmp_path):
    pygame.init()
    pygame.display.set_mode((960, 540))
    hub = InputHub()
    stage = PygameStage(
        clock=FakeClock(t=5.0),
        inputs=hub,
        media_root=tmp_path,
        font=pygame.font.Font(None, 36),
    )
    try:
        yield stage, hub
    finally:
        pygame.quit()


def _click(button: int, x: int) -> pygame.event.Event:
    return pygame.event.Event(pygame.MOUSEBUTTONDOWN, {"button": button, "pos": (x, 270), "touch": False})


def test_wheel_scroll_is_not_a_tap(stage_and_hub) -> None:
    stage, hub = stage_and_hub
    capture = ResponseCapture()
    with hub.session(capture):
        for button in (4, 5):
            stage.handle_event(_click(button, 100))
        stage.flush_inputs()
    assert capture.side is None


def test_left_click_is_a_tap(stage_and_hub) -> None:
    stage, hub = stage_and_hub
    capture = ResponseCapture()
    with hub.session(capture):
        stage.handle_event(_click(4, 100))
        stage.handle_event(_click(1, 800))
        stage.flush_inputs()
    assert capture.side is Side.RIGHT
    assert capture.channel is InputChannel.POINTER


def test_key_press_maps_to_side(stage_and_hub) -> None:
    stage, hub = stage_and_hub
    capture = ResponseCapture()
    with hub.session(capture):
        stage.handle_event(pygame.event.Event(pygame.KEYDOWN, {"key": pygame.K_y, "unicode": "y"}))
        stage.flush_inputs()
    assert capture.side is Side.LEFT
    assert capture.channel is InputChannel.KEYBOARD


def test_wheel_scroll_does_not_pass_a_gate(stage_and_hub) -> None:
    stage, _ = stage_and_hub

    async def main() -> None:
        gate = asyncio.create_task(stage.show_end())
        await asyncio.sleep(0)
        assert stage.waiting_at_gate

        stage.handle_event(_click(5, 100))
        await asyncio.sleep(0)
        assert not gate.done()

        stage.handle_event(_click(1, 100))
        await asyncio.wait_for(gate, timeout=1.0)

    asyncio.run(main())
    assert not stage.waiting_at_gate
