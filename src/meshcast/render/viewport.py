"""
viewport.py

Camera for the mesh layer. Positions are projected on the GPU into a web
mercator "common space" 512 units wide (`mercator` below is the same formula
as the shader's ``project_position``); this module builds the orthographic
projection that maps that space to clip space, with zoom, pan and pitch.
"""
from typing import Tuple
import math

import numpy as np

from meshcast.config import RENDER

TILE_SIZE = 512.0
EARTH_CIRCUMFERENCE = 40075016.686
MAX_LATITUDE = 85.051129


def mercator(lon, lat) -> Tuple[np.ndarray, np.ndarray]:
    lon = np.asarray(lon, dtype=np.float64)
    lat = np.clip(np.asarray(lat, dtype=np.float64), -MAX_LATITUDE, MAX_LATITUDE)
    x = (lon + 180.0) / 360.0 * TILE_SIZE
    y = (np.pi + np.log(np.tan(np.pi * 0.25 + np.radians(lat) * 0.5))) / (2.0 * np.pi) * TILE_SIZE
    return x, y


def units_per_meter(latitude: float) -> float:
    return TILE_SIZE / (EARTH_CIRCUMFERENCE * math.cos(math.radians(latitude)))


class Viewport:
    """Orthographic view of a rectangle of common space."""

    def __init__(self, center_lon: float, center_lat: float, extent: float,
                 width: int = RENDER['window_size'][0], height: int = RENDER['window_size'][1],
                 pitch_deg: float = RENDER['pitch_deg']):
        self.center_lon = float(center_lon)
        self.center_lat = float(center_lat)
        cx, cy = mercator(center_lon, center_lat)
        self.origin = (float(cx), float(cy), 0.0)
        self.extent = float(extent)        # half width in common units at zoom 1
        self.width = int(width)
        self.height = int(height)
        self.pitch_deg = float(pitch_deg)
        self.zoom = 1.0
        self.pan_x = 0.0
        self.pan_y = 0.0

    @classmethod
    def fit(cls, positions: np.ndarray, width: int = RENDER['window_size'][0],
            height: int = RENDER['window_size'][1], pitch_deg: float = RENDER['pitch_deg'],
            margin: float = 1.1) -> 'Viewport':
        """Viewport centred on a flat (lon, lat, z) vertex buffer."""
        xyz = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        if xyz.shape[0] == 0:
            return cls(0.0, 0.0, TILE_SIZE / 2.0, width, height, pitch_deg)
        lon_min, lat_min = xyz[:, 0].min(), xyz[:, 1].min()
        lon_max, lat_max = xyz[:, 0].max(), xyz[:, 1].max()
        x0, y0 = mercator(lon_min, lat_min)
        x1, y1 = mercator(lon_max, lat_max)
        aspect = height / float(width)
        half = max((x1 - x0) / 2.0, (y1 - y0) / 2.0 / aspect, 1e-9) * margin
        return cls((lon_min + lon_max) / 2.0, (lat_min + lat_max) / 2.0, half, width, height, pitch_deg)

    @property
    def units_per_meter(self) -> float:
        return units_per_meter(self.center_lat)

    def resize(self, width: int, height: int) -> None:
        self.width, self.height = int(width), int(height)

    def zoom_by(self, factor: float) -> None:
        self.zoom = float(np.clip(self.zoom * factor, 0.1, 50.0))

    def pan_pixels(self, dx: float, dy: float) -> None:
        half_w = self.extent / self.zoom
        half_h = half_w * self.height / float(self.width)
        self.pan_x -= dx / self.width * 2.0 * half_w
        self.pan_y += dy / self.height * 2.0 * half_h

    def projection_matrix(self) -> np.ndarray:
        """Column-major float32 matrix, ready for ``program['projection'].write``."""
        half_w = self.extent / self.zoom
        half_h = half_w * self.height / float(self.width)
        depth = 4.0 * max(half_w, half_h)

        translate = np.eye(4)
        translate[0, 3] = -self.pan_x
        translate[1, 3] = -self.pan_y

        p = math.radians(self.pitch_deg)
        tilt = np.eye(4)
        tilt[1, 1], tilt[1, 2] = math.cos(p), -math.sin(p)
        tilt[2, 1], tilt[2, 2] = math.sin(p), math.cos(p)

        ortho = np.diag([1.0 / half_w, 1.0 / half_h, -1.0 / depth, 1.0])
        m = ortho @ tilt @ translate
        return np.ascontiguousarray(m.T, dtype='f4')

    def uniforms(self) -> dict:
        return {
            'projection': self.projection_matrix(),
            'origin': self.origin,
            'unitsPerMeter': self.units_per_meter,
        }
