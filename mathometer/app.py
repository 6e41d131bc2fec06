"""Pygame UI shell for MathOMeter.

Screens: subject entry -> (already-completed message | session).
The session itself (run order, trials, timing, records) lives in the core
modules; PygameStage is the adapter they drive: it shows scenes, plays
audio through pygame.mixer, resolves frame waits after each display flip and
feeds keyboard/touch input into the InputHub.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import pygame

from .clock import Clock, RealClock
from .config import AppSettings, ExperimentConfig
from .content import ConfigurationError, load_content
from .logs import configure_logging
from .persistence import ProgressStore, subject_str
from .planning import RunPlan, build_session_plan
from .recorder import ArtifactWriter, RunRecorder
from .responses import InputEvent, InputHub
from .session import SessionRunner, build_session_runner
from .stage import MediaError, Scene, SceneKind

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (10, 10, 14)
FG = (235, 235, 245)
DIM = (150, 150, 165)
PANEL = (40, 42, 56)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def top(self) -> Screen | None:
        return self._screens[-1] if self._screens else None

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def remove(self, screen: Screen) -> None:
        if len(self._screens) > 1 and screen in self._screens[1:]:
            self._screens.remove(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _blit_lines(
    surface: pygame.Surface,
    font: pygame.font.Font,
    text: str,
    *,
    color: tuple[int, int, int] = FG,
    center_y: int | None = None,
) -> None:
    lines = text.split("\n")
    line_h = font.get_linesize()
    w, h = surface.get_size()
    y = (h // 2 if center_y is None else center_y) - (line_h * len(lines)) // 2
    for line in lines:
        img = font.render(line, True, color)
        surface.blit(img, (w // 2 - img.get_width() // 2, y))
        y += line_h


def _init_mixer() -> bool:
    try:
        if pygame.mixer.get_init() is None:
            pygame.mixer.init()
    except pygame.error as exc:
        logger.warning("audio output unavailable: %s", exc)
        return False
    return True


class PygameStage:
    """Stage adapter: scenes, audio, frame timing and operator gates on top of pygame."""

    def __init__(
        self,
        *,
        clock: Clock,
        inputs: InputHub,
        media_root: Path,
        font: pygame.font.Font,
    ) -> None:
        self._clock = clock
        self._inputs = inputs
        self._media_root = media_root
        self._font = font
        self._big_font = pygame.font.Font(None, 120)
        self._small_font = pygame.font.Font(None, 22)

        self._scene = Scene.blank()
        self._frame_waiters: list[asyncio.Future[float]] = []
        self._gate: asyncio.Future[None] | None = None
        self._pending: list[InputEvent] = []
        self._sounds: dict[str, pygame.mixer.Sound] = {}
        self._audio_available = _init_mixer()

    @property
    def scene(self) -> Scene:
        return self._scene

    @property
    def waiting_at_gate(self) -> bool:
        return self._gate is not None and not self._gate.done()

    def show(self, scene: Scene) -> None:
        self._scene = scene

    async def next_frame(self) -> float:
        fut: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        self._frame_waiters.append(fut)
        return await fut

    def frame_presented(self, t: float) -> None:
        waiters, self._frame_waiters = self._frame_waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(t)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, float(seconds)))

    def preload(self, refs: tuple[str, ...]) -> None:
        for ref in refs:
            if not ref.endswith(".wav"):
                continue
            try:
                self._sound(ref)
            except MediaError as exc:
                logger.warning("preload failed: %s", exc)

    async def play_audio(self, ref: str) -> None:
        sound = self._sound(ref)
        channel = sound.play()
        if channel is None:
            raise MediaError(f"no free audio channel for {ref}")
        try:
            while channel.get_busy():
                await self.next_frame()
        except asyncio.CancelledError:
            channel.stop()
            raise

    async def play_audio_with_video(self, audio_ref: str, video_ref: str) -> None:
        # Video keeps looping after the audio ends; the audio decides completion.
        self.show(Scene.video(video_ref, loop=True))
        await self.play_audio(audio_ref)

    async def confirm_run(self, plan: RunPlan, *, subject_id: int) -> None:
        await self._wait_gate(
            f"Subject: {subject_str(subject_id)}\n"
            f"You are about to start: Run {plan.run_index}\n"
            f"(original run: {plan.run_number})\n\n"
            "Tap the screen (or press a key) to continue"
        )

    async def wait_ready(self, plan: RunPlan) -> None:
        await self._wait_gate("Tap the screen when you are ready\n(or press a key)")

    async def show_end(self) -> None:
        await self._wait_gate("End.\n\nTap the screen (or press a key) to close")

    def cancel_gate(self) -> None:
        if self._gate is not None and not self._gate.done():
            self._gate.cancel()

    async def _wait_gate(self, text: str) -> None:
        self.show(Scene.message(text))
        gate: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._gate = gate
        try:
            await gate
        finally:
            self._gate = None
            self._pending.clear()

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            raw = InputEvent.keypress(pygame.key.name(event.key), self._clock.now())
        elif event.type == pygame.MOUSEBUTTONDOWN:
            # Touch also arrives as FINGERDOWN; skip the synthesized mouse copy.
            if getattr(event, "touch", False):
                return
            # Wheel scrolls (buttons 4 and 5) and other buttons are not taps.
            if event.button != pygame.BUTTON_LEFT:
                return
            width = max(1, pygame.display.get_surface().get_width())
            raw = InputEvent.tap(event.pos[0] / width, self._clock.now())
        elif event.type == pygame.FINGERDOWN:
            raw = InputEvent.tap(event.x, self._clock.now())
        else:
            return

        gate = self._gate
        if gate is not None:
            if not gate.done():
                gate.set_result(None)
            return
        self._pending.append(raw)

    def flush_inputs(self) -> None:
        batch, self._pending = self._pending, []
        if batch:
            self._inputs.dispatch(batch)

    def stop_audio(self) -> None:
        if self._audio_available and pygame.mixer.get_init() is not None:
            pygame.mixer.stop()

    def render(self, surface: pygame.Surface, *, label: str = "") -> None:
        surface.fill(BG)
        scene = self._scene
        w, h = surface.get_size()
        if scene.kind is SceneKind.FIXATION:
            _blit_lines(surface, self._big_font, scene.text or "+")
        elif scene.kind is SceneKind.VIDEO:
            panel = pygame.Rect(0, 0, int(w * 0.6), int(h * 0.6))
            panel.center = (w // 2, h // 2)
            pygame.draw.rect(surface, PANEL, panel, border_radius=12)
            name = (scene.media or "").rsplit("/", 1)[-1]
            _blit_lines(surface, self._font, name, color=DIM)
        elif scene.kind is SceneKind.MESSAGE:
            _blit_lines(surface, self._font, scene.text)
        if label:
            img = self._small_font.render(label, True, DIM)
            surface.blit(img, (12, h - img.get_height() - 10))

    def _sound(self, ref: str) -> pygame.mixer.Sound:
        cached = self._sounds.get(ref)
        if cached is not None:
            return cached
        if not self._audio_available:
            raise MediaError(f"audio output unavailable, cannot play {ref}")
        path = self._media_root / ref
        if not path.is_file():
            raise MediaError(f"audio asset not found: {path}")
        try:
            sound = pygame.mixer.Sound(str(path))
        except pygame.error as exc:
            raise MediaError(f"cannot load {path}: {exc}") from exc
        self._sounds[ref] = sound
        return sound


class SubjectEntryScreen:
    def __init__(self, app: App, *, on_submit: Callable[[int], None]) -> None:
        self._app = app
        self._on_submit = on_submit
        self._text = ""
        self._error = ""

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_ESCAPE:
            self._app.quit()
            return
        if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            raw = self._text.strip()
            if not raw.isdigit() or int(raw) < 1:
                self._error = "Please enter a valid subject number (1, 2, 3, ...)."
                return
            self._error = ""
            self._text = ""
            self._on_submit(int(raw))
            return
        if event.key == pygame.K_BACKSPACE:
            self._text = self._text[:-1]
            return
        ch = getattr(event, "unicode", "")
        if ch.isdigit() and len(self._text) < 4:
            self._text += ch

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        h = surface.get_height()
        _blit_lines(surface, self._app.font, "MathOMeter", center_y=h // 4)
        _blit_lines(surface, self._app.font, "Subject number (e.g. 01, 02, 12...)", color=DIM, center_y=h // 2 - 40)
        _blit_lines(surface, self._app.font, f"[ {self._text} ]", center_y=h // 2 + 10)
        _blit_lines(surface, self._app.font, "Press ENTER to continue", color=DIM, center_y=h // 2 + 70)
        if self._error:
            _blit_lines(surface, self._app.font, self._error, color=(230, 120, 120), center_y=h - 60)


class MessageScreen:
    def __init__(self, app: App, text: str, *, clock: Clock, auto_close_s: float | None = None) -> None:
        self._app = app
        self._text = text
        self._clock = clock
        self._close_at = None if auto_close_s is None else clock.now() + auto_close_s

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type in (pygame.KEYDOWN, pygame.MOUSEBUTTONDOWN, pygame.FINGERDOWN):
            self._app.remove(self)

    def render(self, surface: pygame.Surface) -> None:
        if self._close_at is not None and self._clock.now() >= self._close_at:
            self._app.remove(self)
        surface.fill(BG)
        _blit_lines(surface, self._app.font, self._text)


class SessionScreen:
    def __init__(self, app: App, *, runner: SessionRunner, stage: PygameStage) -> None:
        self._app = app
        self._runner = runner
        self._stage = stage

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
            logger.warning("operator requested stop")
            self._runner.request_stop()
            self._stage.cancel_gate()
            return
        self._stage.handle_event(event)

    def render(self, surface: pygame.Surface) -> None:
        self._stage.render(surface, label=self._runner.snapshot().debug_label)


class SessionLauncher:
    """Turns a subject number into a running session (or an explanatory message)."""

    def __init__(
        self,
        *,
        app: App,
        stage: PygameStage,
        inputs: InputHub,
        clock: Clock,
        settings: AppSettings,
        config: ExperimentConfig,
    ) -> None:
        self._app = app
        self._stage = stage
        self._inputs = inputs
        self._clock = clock
        self._settings = settings
        self._config = config
        self._store = ProgressStore(settings.db_path, total_runs=config.total_runs)
        self._recorder = RunRecorder(
            store=self._store,
            writer=ArtifactWriter(settings.output_dir),
            config=config,
        )
        self._tasks: set[asyncio.Task[object]] = set()

    @property
    def active(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self, subject_id: int) -> None:
        if self.active:
            return
        subj = subject_str(subject_id)

        existing = self._store.load(subject_id)
        if existing is not None and existing.is_complete():
            logger.info("subject %s already completed all runs", subj)
            self._message(f"Subject {subj} has already completed all runs.", auto_close_s=2.0)
            return

        try:
            sentences, associations = load_content(self._settings.content_dir)
            plan = build_session_plan(
                subject_id=subject_id,
                sentences=sentences,
                associations=associations,
                store=self._store,
                seed=_new_seed(),
                config=self._config,
            )
        except ConfigurationError as exc:
            logger.error("cannot build a plan for subject %s: %s", subj, exc)
            self._message(f"Configuration error:\n{exc}")
            return

        try:
            if self._config.params_snapshot_at_start:
                self._recorder.write_params_snapshot(plan)
        except OSError as exc:
            self._message(f"Cannot write to {self._settings.output_dir}:\n{exc}")
            return

        remaining = plan.remaining_runs()
        if remaining:
            self._stage.preload(remaining[0].trials[0].media_refs())

        runner = build_session_runner(
            plan=plan,
            config=self._config,
            stage=self._stage,
            inputs=self._inputs,
            clock=self._clock,
            recorder=self._recorder,
        )
        screen = SessionScreen(self._app, runner=runner, stage=self._stage)
        self._app.push(screen)

        task = asyncio.get_running_loop().create_task(runner.run())
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, screen))

    async def shutdown(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _finished(self, task: asyncio.Task[object], screen: SessionScreen) -> None:
        self._tasks.discard(task)
        self._stage.stop_audio()
        self._stage.show(Scene.blank())
        self._app.remove(screen)
        if task.cancelled():
            logger.warning("session cancelled; any partial run was discarded")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("session failed", exc_info=exc)
            self._message(f"The session stopped with an error:\n{exc}")

    def _message(self, text: str, *, auto_close_s: float | None = None) -> None:
        self._app.push(MessageScreen(self._app, text, clock=self._clock, auto_close_s=auto_close_s))


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


async def _main_loop(
    *,
    app: App,
    stage: PygameStage,
    launcher: SessionLauncher,
    clock: Clock,
    max_frames: int | None,
    event_injector: Callable[[int], None] | None,
) -> None:
    frame_s = 1.0 / TARGET_FPS
    frame = 0
    try:
        while app.running:
            started = clock.now()
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)
            stage.flush_inputs()

            app.render()
            pygame.display.flip()
            stage.frame_presented(clock.now())

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            await asyncio.sleep(max(0.0, frame_s - (clock.now() - started)))
    finally:
        await launcher.shutdown()


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    settings: AppSettings | None = None,
    config: ExperimentConfig | None = None,
) -> int:
    settings = settings or AppSettings.from_env()
    config = config or ExperimentConfig()
    configure_logging(level=settings.log_level, log_path=settings.log_path)

    pygame.init()
    pygame.display.set_caption("MathOMeter")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    font = pygame.font.Font(None, 36)

    app = App(surface=surface, font=font)
    clock = RealClock()
    inputs = InputHub(left_key=config.left_key, right_key=config.right_key)
    stage = PygameStage(clock=clock, inputs=inputs, media_root=settings.media_dir, font=font)
    launcher = SessionLauncher(
        app=app,
        stage=stage,
        inputs=inputs,
        clock=clock,
        settings=settings,
        config=config,
    )
    app.push(SubjectEntryScreen(app, on_submit=launcher.start))

    try:
        asyncio.run(
            _main_loop(
                app=app,
                stage=stage,
                launcher=launcher,
                clock=clock,
                max_frames=max_frames,
                event_injector=event_injector,
            )
        )
    finally:
        stage.stop_audio()
        pygame.quit()

    return 0
