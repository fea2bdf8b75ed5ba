"""
field_encoder.py

Per-timestep scalar values aligned with the triangle vertex buffer.

Each element carries one value per timestep. Deleted values are replaced by
the sentinel, quads repeat their value for both derived triangles (via the
same `tessellate` pass used for the vertices) and all timesteps are
concatenated timestep-major. `compress_timestep` then limits the values to a
fixed number of significant digits so the gzip stage compresses better.
"""
from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np

from meshcast.config import ENCODING
from meshcast.io.mesh_source import MeshSource
from meshcast.mesh.extractor import tessellate

logger = logging.getLogger(__name__)

SENTINEL = np.float32(ENCODING['sentinel'])
VERTICES_PER_TRIANGLE = 3


@dataclass(frozen=True)
class MeshDescriptor:
    """What a consumer needs to slice the field buffer per timestep."""
    time_step_count: int
    triangle_count: int

    def to_json(self) -> dict:
        return {'timeStepCount': self.time_step_count, 'triangleCount': self.triangle_count}

    @classmethod
    def from_json(cls, payload: dict) -> 'MeshDescriptor':
        return cls(time_step_count=int(payload['timeStepCount']),
                   triangle_count=int(payload['triangleCount']))


@dataclass
class ScalarFieldSeries:
    """Per-triangle values, shape (time_step_count, triangle_count), float32."""
    values: np.ndarray

    @property
    def time_step_count(self) -> int:
        return int(self.values.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.values.shape[1])

    @property
    def descriptor(self) -> MeshDescriptor:
        return MeshDescriptor(self.time_step_count, self.triangle_count)

    def flat(self) -> np.ndarray:
        """Wire order: timestep-major, one value per triangle."""
        return np.ascontiguousarray(self.values, dtype=np.float32).ravel()

    def expanded(self) -> np.ndarray:
        """One copy per triangle vertex; length ``T_steps * 3 * triangles``."""
        return expand_to_vertices(self.flat())

    def timestep_slice(self, timestep: int) -> np.ndarray:
        return expand_to_vertices(self.values[timestep])

    @classmethod
    def from_flat(cls, flat: np.ndarray, descriptor: MeshDescriptor) -> 'ScalarFieldSeries':
        flat = np.asarray(flat, dtype=np.float32)
        expected = descriptor.time_step_count * descriptor.triangle_count
        if flat.shape[0] != expected:
            raise ValueError(f'field buffer has {flat.shape[0]} values, descriptor expects {expected}')
        return cls(flat.reshape(descriptor.time_step_count, descriptor.triangle_count))


def expand_to_vertices(per_triangle: np.ndarray) -> np.ndarray:
    return np.repeat(np.asarray(per_triangle, dtype=np.float32), VERTICES_PER_TRIANGLE)


def round_significant(values, digits: int = ENCODING['significant_digits']) -> np.ndarray:
    """Round to ``digits`` significant digits; zero and the sentinel pass through.

    ``scale = 10 ** (floor(log10(|v|)) + 1)`` and ``v' = scale * round(v / scale, digits)``.
    Values whose scale is zero or non-finite (subnormals, inf, nan) are left as is.
    """
    v = np.asarray(values, dtype=np.float32)
    out = v.copy()
    mask = (v != 0) & (v != SENTINEL) & np.isfinite(v)
    if not np.any(mask):
        return out
    vm = v[mask].astype(np.float64)
    with np.errstate(divide='ignore', over='ignore', invalid='ignore'):
        scale = np.power(10.0, np.floor(np.log10(np.abs(vm))) + 1.0)
        ok = np.isfinite(scale) & (scale != 0)
        rounded = vm.copy()
        rounded[ok] = scale[ok] * np.round(vm[ok] / scale[ok], digits)
    out[mask] = rounded.astype(np.float32)
    return out


def compress_timestep(values: np.ndarray, significant_digits: int = ENCODING['significant_digits']) -> np.ndarray:
    """Lossy significant-digit compression applied to a whole series."""
    return round_significant(values, significant_digits)


def describe(source: MeshSource, item_number: int = 1) -> MeshDescriptor:
    return MeshDescriptor(time_step_count=source.time_step_count(item_number),
                          triangle_count=source.triangle_count)


def encode_field(source: MeshSource, item_number: int = 1, time_step_count: Optional[int] = None,
                 significant_digits: Optional[int] = ENCODING['significant_digits']) -> ScalarFieldSeries:
    """Per-triangle values of ``item_number`` for the first ``time_step_count`` steps.

    ``significant_digits=None`` skips the lossy compression.
    """
    available = source.time_step_count(item_number)
    steps = available if time_step_count is None else int(time_step_count)
    if not 0 <= steps <= available:
        raise ValueError(f'time_step_count {steps} outside 0..{available}')

    _, owner = tessellate(source.element_table)
    out = np.empty((steps, owner.shape[0]), dtype=np.float32)
    delete = np.float32(source.delete_value)
    for t in range(steps):
        per_element = np.asarray(source.read_item_timestep(item_number, t), dtype=np.float32)
        if np.isnan(delete):
            missing = np.isnan(per_element)
        else:
            missing = per_element == delete
        per_element = np.where(missing, SENTINEL, per_element)
        out[t] = per_element[owner]

    if significant_digits is not None:
        out = compress_timestep(out, significant_digits)
    logger.info('Encoded item %d: %d timesteps x %d triangles', item_number, steps, owner.shape[0])
    return ScalarFieldSeries(out)
