"""
frame_driver.py

Advances the active timestep on a fixed cadence and asks for a redraw.

`tick` is one scheduled frame: when data is loaded and the driver is not
paused it moves ``current_timestep`` to the next step (wrapping at the end)
and redraws. `notify` applies an interactive change (pointer, depth toggle,
depth scale) and redraws straight away without touching the timestep.

`run` is the asyncio loop that calls `tick`; `start` schedules it as a task
and `stop` cancels it. Window toolkits with their own render loop call `tick`
themselves instead.
"""
from typing import Callable, Optional
import asyncio
import logging

from meshcast.config import RENDER
from meshcast.mesh.field_encoder import MeshDescriptor
from meshcast.render.layer import ViewState

logger = logging.getLogger(__name__)


class FrameDriver:
    def __init__(self, view: ViewState, redraw: Callable[[ViewState], None],
                 interval: float = RENDER['frame_interval']):
        self.view = view
        self.redraw = redraw
        self.interval = float(interval)
        self.descriptor: Optional[MeshDescriptor] = None
        self.paused = False
        self.frames = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def loaded(self) -> bool:
        return self.descriptor is not None and self.descriptor.time_step_count > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def load(self, descriptor: MeshDescriptor) -> None:
        self.descriptor = descriptor
        if self.view.current_timestep >= max(descriptor.time_step_count, 1):
            self.view.current_timestep = 0

    def tick(self) -> bool:
        """One scheduled frame; returns True if a redraw was issued."""
        if not self.loaded or self.paused:
            return False
        self.view.current_timestep = (self.view.current_timestep + 1) % self.descriptor.time_step_count
        self.frames += 1
        self.redraw(self.view)
        return True

    def notify(self, **changes) -> None:
        """Apply view changes (e.g. ``pointer_x=...``) and redraw immediately."""
        for name, value in changes.items():
            if name == 'current_timestep' or not hasattr(self.view, name):
                raise AttributeError(f'{name!r} is not an interactive view setting')
            setattr(self.view, name, value)
        if self.loaded:
            self.redraw(self.view)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def toggle_pause(self) -> bool:
        self.paused = not self.paused
        return self.paused

    async def run(self) -> None:
        logger.debug('Frame loop started (interval %.3fs)', self.interval)
        try:
            while True:
                self.tick()
                await asyncio.sleep(self.interval)
        finally:
            logger.debug('Frame loop stopped after %d frames', self.frames)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
