"""
extractor.py

Turns a mesh source into a flat, non-indexed triangle vertex buffer.

Public functions:
- `tessellate(element_table)` -> (corners, owner): triangle corner node ids and
  the element each triangle came from. Both the vertex buffer and the field
  encoder derive their ordering from this single pass.
- `node_index(node_ids, wanted)` -> positions of ``wanted`` ids in ``node_ids``
- `reproject(x, y, src_crs, dst_crs)` -> (x', y')
- `extract_vertices(source, target_crs)` -> float32 array of length 9 * T

Quads (0, 1, 2, 3) become triangles (0, 1, 2) and (0, 2, 3), i.e. they are
split along the diagonal between the first and third node.
"""
from typing import Tuple
import logging

import numpy as np
from pyproj import Transformer
from pyproj.exceptions import CRSError, ProjError

from meshcast.config import ENCODING
from meshcast.io.mesh_source import MeshSource, MeshSourceError, PAD

logger = logging.getLogger(__name__)

FIRST_TRIANGLE = (0, 1, 2)
SECOND_TRIANGLE = (0, 2, 3)


class ReprojectionError(RuntimeError):
    """Raised when coordinates cannot be transformed to the target CRS."""


def tessellate(element_table: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split elements into triangles in emission order.

    Returns ``corners`` (T, 3) node ids and ``owner`` (T,) element indices.
    Element ``i`` contributes its triangles consecutively, the quad's extra
    triangle directly after its first one.
    """
    table = np.asarray(element_table)
    n = table.shape[0]
    is_quad = table[:, 3] != PAD
    counts = 1 + is_quad.astype(np.int64)
    owner = np.repeat(np.arange(n, dtype=np.int64), counts)
    starts = np.cumsum(counts) - counts
    second = (np.arange(owner.shape[0]) - np.repeat(starts, counts)) == 1

    rows = table[owner]
    corners = np.where(second[:, None],
                       rows[:, list(SECOND_TRIANGLE)],
                       rows[:, list(FIRST_TRIANGLE)])
    return corners, owner


def node_index(node_ids: np.ndarray, wanted: np.ndarray) -> np.ndarray:
    """Map node ids to array positions; unknown ids raise `MeshSourceError`."""
    node_ids = np.asarray(node_ids)
    wanted = np.asarray(wanted)
    if node_ids.size == 0:
        if wanted.size:
            raise MeshSourceError('element table references nodes but the mesh has none')
        return np.zeros(wanted.shape, dtype=np.int64)
    order = np.argsort(node_ids, kind='stable')
    sorted_ids = node_ids[order]
    pos = np.searchsorted(sorted_ids, wanted)
    pos = np.clip(pos, 0, sorted_ids.shape[0] - 1)
    found = sorted_ids[pos] == wanted
    if not np.all(found):
        missing = np.unique(wanted[~found])
        raise MeshSourceError(
            f'{missing.size} node id(s) referenced by elements are missing, e.g. {missing[:5].tolist()}')
    return order[pos]


def reproject(x, y, src_crs: str, dst_crs: str = ENCODING['target_crs']) -> Tuple[np.ndarray, np.ndarray]:
    """Transform x/y from ``src_crs`` to ``dst_crs`` (lon/lat order for geographic)."""
    try:
        transformer = Transformer.from_crs(src_crs, dst_crs, always_xy=True)
        xs, ys = transformer.transform(np.asarray(x, dtype=np.float64),
                                       np.asarray(y, dtype=np.float64),
                                       errcheck=True)
    except (CRSError, ProjError) as e:
        raise ReprojectionError(f'cannot transform {src_crs!r} -> {dst_crs!r}: {e}') from e
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise ReprojectionError(f'degenerate transform {src_crs!r} -> {dst_crs!r}: non-finite coordinates')
    return xs, ys


def extract_vertices(source: MeshSource, target_crs: str = ENCODING['target_crs']) -> np.ndarray:
    """Flat float32 (x, y, z) buffer, three vertices per triangle.

    Only nodes referenced by elements are reprojected, each once. Elevation is
    carried through unprojected.
    """
    corners, _ = tessellate(source.element_table)
    idx = node_index(source.node_ids, corners.ravel())
    used, inverse = np.unique(idx, return_inverse=True)

    lon, lat = reproject(source.x[used], source.y[used], source.projection, target_crs)
    xyz = np.empty((idx.shape[0], 3), dtype=np.float32)
    xyz[:, 0] = lon[inverse]
    xyz[:, 1] = lat[inverse]
    xyz[:, 2] = source.z[idx]

    logger.info('Extracted %d triangles (%d elements, %d quads) from %s',
                corners.shape[0], source.element_count, source.quad_count,
                source.path or '<memory>')
    return xyz.ravel()
