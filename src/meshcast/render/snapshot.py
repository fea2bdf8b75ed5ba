"""
snapshot.py

Render one timestep offscreen (standalone moderngl context) and save it as a
PNG with Pillow. Useful on headless machines and for eyeballing encodings.
"""
from typing import Optional
import logging

import moderngl
from PIL import Image, ImageDraw

from meshcast.config import RENDER
from meshcast.render.color_mapper import ColorBands, legend_strip
from meshcast.render.layer import ViewState
from meshcast.render.scene import MeshScene
from meshcast.render.viewport import Viewport

logger = logging.getLogger(__name__)

LEGEND_HEIGHT = 14
LEGEND_TEXT = (255, 255, 255, 255)


def add_legend(image: Image.Image, bands: ColorBands, margin: int = 12,
               width: Optional[int] = None) -> Image.Image:
    """Paste a band ramp with its end values into the bottom-left corner of ``image``."""
    width = int(width) if width is not None else max(64, image.width // 4)
    x, y = margin, image.height - margin - LEGEND_HEIGHT
    strip = Image.fromarray(legend_strip(bands, width=width, height=LEGEND_HEIGHT))

    draw = ImageDraw.Draw(image)
    draw.rectangle((x - 1, y - 1, x + width, y + LEGEND_HEIGHT), outline=LEGEND_TEXT)
    image.paste(strip, (x, y))
    lo, hi = f'{bands.values[0]:g}', f'{bands.values[-1]:g}'
    draw.text((x, y - LEGEND_HEIGHT), lo, fill=LEGEND_TEXT)
    draw.text((x + width - draw.textlength(hi), y - LEGEND_HEIGHT), hi, fill=LEGEND_TEXT)
    return image


def render_snapshot(scene: MeshScene, out_path: str, timestep: int = 0,
                    size=RENDER['window_size'], view: Optional[ViewState] = None,
                    pitch_deg: float = 0.0, legend: bool = False) -> str:
    width, height = int(size[0]), int(size[1])
    view = view if view is not None else ViewState(pointer_x=width / 2.0)
    view.current_timestep = timestep
    viewport = Viewport.fit(scene.data.vertices, width, height, pitch_deg=pitch_deg)

    ctx = moderngl.create_standalone_context()
    try:
        fbo = ctx.simple_framebuffer((width, height), components=4)
        fbo.use()
        ctx.enable(moderngl.DEPTH_TEST)
        fbo.clear(*RENDER['clear_color'], 1.0, depth=1.0)
        scene.attach(ctx, timestep)
        if not scene.redraw(view, viewport):
            raise RuntimeError('mesh layer did not draw; see log for details')
        raw = fbo.read(components=4)
        image = Image.frombytes('RGBA', (width, height), raw).transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        if legend:
            add_legend(image, scene.bands)
        image.save(out_path)
    finally:
        if scene.layer is not None:
            scene.layer.dispose()
            scene.layer = None
        ctx.release()
    logger.info('Wrote timestep %d snapshot to %s', timestep, out_path)
    return out_path
