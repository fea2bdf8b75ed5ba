"""
color_mapper.py

Piecewise-linear scalar -> RGBA mapping.

The GPU evaluates this per pixel (see `shaders.value_to_color_glsl`); the
numpy functions here are the same rules on the CPU, used for legends,
snapshots checks and tests:

- the missing-data sentinel maps to a fixed neutral gray;
- values at or below the first threshold take the first color;
- otherwise the first band pair with ``value <= v[i+1]`` is interpolated;
  values past the last threshold extrapolate along the final pair.
"""
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple
import re

import numpy as np

from meshcast.config import ENCODING, RENDER

SENTINEL = np.float32(ENCODING['sentinel'])
NEUTRAL = np.asarray(ENCODING['neutral_color'], dtype=np.float32)
WHITE = np.ones(4, dtype=np.float32)

_RGBA = re.compile(r'^\s*rgba?\(\s*([^)]*)\)\s*$')

Color = Tuple[float, float, float, float]


def parse_rgba(text: str) -> Color:
    """'rgba(r, g, b, a)' with 0..255 channels -> normalised (r, g, b, a).

    Alpha is quantised to 1/255 the way the browser stores it.
    """
    m = _RGBA.match(text)
    if not m:
        raise ValueError(f'not an rgba() color: {text!r}')
    parts = [p.strip() for p in m.group(1).split(',')]
    if len(parts) not in (3, 4):
        raise ValueError(f'expected 3 or 4 channels in {text!r}')
    r, g, b = (int(p) / 255.0 for p in parts[:3])
    a = round(float(parts[3]) * 255) / 255.0 if len(parts) == 4 else 1.0
    return (r, g, b, a)


@dataclass(frozen=True)
class ColorBand:
    value: float
    color: Color


class ColorBands:
    """Ordered, immutable band list with strictly increasing thresholds.

    Equality is by value so that a rebuilt but identical list is not treated
    as a change.
    """

    def __init__(self, bands: Iterable[ColorBand]):
        bands = tuple(ColorBand(float(b.value), tuple(float(c) for c in b.color)) for b in bands)
        if len(bands) < 2:
            raise ValueError('at least two color bands are required')
        for b in bands:
            if len(b.color) != 4:
                raise ValueError(f'band color must be RGBA, got {b.color}')
        values = [b.value for b in bands]
        if any(hi <= lo for lo, hi in zip(values, values[1:])):
            raise ValueError(f'band thresholds must be strictly increasing: {values}')
        self._bands = bands

    @classmethod
    def from_css(cls, pairs: Iterable[Tuple[float, str]]) -> 'ColorBands':
        return cls(ColorBand(value, parse_rgba(color)) for value, color in pairs)

    def __len__(self):
        return len(self._bands)

    def __iter__(self):
        return iter(self._bands)

    def __getitem__(self, i):
        return self._bands[i]

    def __eq__(self, other):
        return isinstance(other, ColorBands) and self._bands == other._bands

    def __hash__(self):
        return hash(self._bands)

    def __repr__(self):
        return f'ColorBands({[(b.value, b.color) for b in self._bands]})'

    @property
    def values(self) -> np.ndarray:
        return np.asarray([b.value for b in self._bands], dtype=np.float32)

    @property
    def colors(self) -> np.ndarray:
        return np.asarray([b.color for b in self._bands], dtype=np.float32)

    def with_step(self, step: float) -> 'ColorBands':
        """Same colors, thresholds regenerated as 0, step, 2*step, ..."""
        if step <= 0:
            raise ValueError(f'color step must be positive, got {step}')
        return ColorBands(ColorBand(i * float(step), b.color) for i, b in enumerate(self._bands))

    def uniforms(self) -> dict:
        """Flattened ``colorBands[i].value`` / ``colorBands[i].color`` uniforms."""
        out = {}
        for i, b in enumerate(self._bands):
            out[f'colorBands[{i}].value'] = b.value
            out[f'colorBands[{i}].color'] = b.color
        return out


def value_to_color(values, bands: ColorBands) -> np.ndarray:
    """Vectorised CPU version of the shader's ``valueToColor``; returns (..., 4)."""
    v = np.asarray(values, dtype=np.float32)
    thresholds = bands.values
    colors = bands.colors
    n = thresholds.shape[0]

    # first i with v <= t[i+1]; values past the end use the last pair
    i = np.searchsorted(thresholds, v, side='left') - 1
    i = np.clip(i, 0, n - 2)
    lo, hi = thresholds[i], thresholds[i + 1]
    t = ((v - lo) / (hi - lo))[..., None]
    out = colors[i] * (1.0 - t) + colors[i + 1] * t

    out = np.where((v <= thresholds[0])[..., None], colors[0], out)
    out = np.where((v == SENTINEL)[..., None], NEUTRAL, out)
    return out.astype(np.float32)


def split_view_color(frag_x, pointer_x: float, color_a, color_b,
                     line_width: float = RENDER['line_width']) -> np.ndarray:
    """Split-view compositing: white divider at the pointer, A to the left, B to the right."""
    x = np.asarray(frag_x, dtype=np.float32)[..., None]
    a = np.asarray(color_a, dtype=np.float32)
    b = np.asarray(color_b, dtype=np.float32)
    on_line = (x >= pointer_x - line_width) & (x <= pointer_x + line_width)
    out = np.where(x < pointer_x, a, b)
    return np.where(on_line, WHITE, out).astype(np.float32)


def legend_strip(bands: ColorBands, width: int = 256, height: int = 16,
                 value_range: Sequence[float] = None) -> np.ndarray:
    """(height, width, 4) uint8 color ramp across ``value_range`` (default: band span)."""
    lo, hi = value_range if value_range is not None else (bands.values[0], bands.values[-1])
    ramp = value_to_color(np.linspace(lo, hi, width, dtype=np.float32), bands)
    rgba = np.clip(np.round(ramp * 255.0), 0, 255).astype(np.uint8)
    return np.broadcast_to(rgba[None, :, :], (height, width, 4)).copy()
