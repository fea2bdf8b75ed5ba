"""Interactive OpenGL window for the animated scalar mesh.

Uses moderngl-window (pygame2 backend). The window's render loop drives the
`FrameDriver` cadence; pointer movement and key presses go through
`FrameDriver.notify` so they redraw without advancing the timestep.

Controls:
    SPACE   pause / resume the animation
    D       toggle depth exaggeration
    = / -   increase / decrease depth scale
    . / ,   increase / decrease color band step
    M       switch between single-field and split view
    wheel   zoom, drag to pan, ESC to quit
"""
import logging

import moderngl
import moderngl_window as mglw

from meshcast.config import RENDER
from meshcast.render.frame_driver import FrameDriver
from meshcast.render.layer import ShaderCompileError, ViewState
from meshcast.render.scene import MeshScene
from meshcast.render.viewport import Viewport

logger = logging.getLogger(__name__)

STEP_FACTOR = 1.25


class MeshViewer(mglw.WindowConfig):
    """OpenGL window for the scalar mesh layer."""

    gl_version = (3, 3)
    title = "meshcast"
    window_size = RENDER['window_size']
    aspect_ratio = None
    resizable = True
    viewer_context = None  # set by run_viewer before the window opens

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        ctx = self.viewer_context or {}
        self.scene: MeshScene = ctx['scene']
        self.view = ViewState(pointer_x=self.wnd.buffer_width / 2.0,
                              depth_scale=ctx.get('depth_scale', RENDER['depth_scale']))
        self.viewport = Viewport.fit(self.scene.data.vertices, *self.wnd.buffer_size,
                                     pitch_deg=ctx.get('pitch_deg', RENDER['pitch_deg']))
        self.driver = FrameDriver(self.view, self._redraw, ctx.get('interval', RENDER['frame_interval']))
        self._elapsed = 0.0
        self.fps_counter = 0
        self.fps_timer = 0.0

        try:
            self.scene.attach(self.ctx)
        except ShaderCompileError:
            logger.exception('Mesh layer failed to compile; window will stay empty')
        self.driver.load(self.scene.data.descriptor)

    def _redraw(self, view: ViewState) -> None:
        self.scene.redraw(view, self.viewport)

    def on_render(self, time, frametime):
        """Render frame (required by moderngl-window)."""
        self.ctx.clear(*RENDER['clear_color'], depth=1.0)
        self.ctx.enable(moderngl.DEPTH_TEST)

        self._elapsed += frametime
        advanced = False
        if self._elapsed >= self.driver.interval:
            self._elapsed = 0.0
            advanced = self.driver.tick()
        if not advanced:
            self._redraw(self.view)

        self.fps_counter += 1
        self.fps_timer += frametime
        if self.fps_timer > 1.0:
            fps = self.fps_counter / self.fps_timer
            state = 'paused' if self.driver.paused else 'playing'
            self.wnd.title = (f"meshcast - t={self.view.current_timestep}/"
                              f"{self.scene.data.descriptor.time_step_count} {state} "
                              f"mode={self.scene.mode} FPS={fps:.1f}")
            self.fps_counter = 0
            self.fps_timer = 0.0

    def key_event(self, key, action, modifiers):
        """Handle keyboard events."""
        if action != self.wnd.keys.ACTION_PRESS:
            return
        keys = self.wnd.keys
        if key == keys.SPACE:
            self.driver.toggle_pause()
        elif key == keys.D:
            self.driver.notify(show_depth=not self.view.show_depth)
        elif key == keys.EQUAL:
            self.driver.notify(depth_scale=self.view.depth_scale * STEP_FACTOR)
        elif key == keys.MINUS:
            self.driver.notify(depth_scale=self.view.depth_scale / STEP_FACTOR)
        elif key in (keys.PERIOD, keys.COMMA):
            bands = self.scene.bands
            step = bands[1].value - bands[0].value
            self.scene.set_color_step(step * STEP_FACTOR if key == keys.PERIOD else step / STEP_FACTOR)
            self.driver.notify()
        elif key == keys.M:
            self.scene.toggle_mode()
            self.driver.notify()
        elif key == keys.ESCAPE:
            self.wnd.close()

    def mouse_position_event(self, x, y, dx, dy):
        self.driver.notify(pointer_x=x * self.wnd.pixel_ratio)

    def mouse_scroll_event(self, x_offset, y_offset):
        """Handle mouse scroll for zoom."""
        self.viewport.zoom_by(1.1 if y_offset > 0 else 0.9)

    def mouse_drag_event(self, x, y, dx, dy):
        """Handle mouse drag for panning."""
        self.viewport.pan_pixels(dx, dy)

    def resize(self, width, height):
        self.viewport.resize(*self.wnd.buffer_size)


def run_viewer(scene: MeshScene, pitch_deg: float = RENDER['pitch_deg'],
               interval: float = RENDER['frame_interval'], size=RENDER['window_size'],
               depth_scale: float = RENDER['depth_scale']) -> None:
    MeshViewer.viewer_context = {'scene': scene, 'pitch_deg': pitch_deg, 'interval': interval,
                                 'depth_scale': depth_scale}
    mglw.run_window_config(
        MeshViewer,
        args=(
            '--window', 'pygame2',
            '--size', f'{size[0]}x{size[1]}',
        )
    )
