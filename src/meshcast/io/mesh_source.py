"""HDF5 mesh source IO.

A mesh source holds the node coordinates of an unstructured triangle/quad mesh,
its projection, the element connectivity table and one or more result items
(per-element scalar values per timestep). Files are opened, fully read and
closed inside `read_mesh_source`; the returned `MeshSource` is immutable input
for the encoders.

Layout::

    /Geometry                    attrs: Projection
    /Geometry/Nodes/Ids          (N,) int
    /Geometry/Nodes/X, Y, Z      (N,) float
    /Geometry/Elements/Table     (E, 4) int, triangles padded with -1
    /                            attrs: DeleteValueFloat
    /Results/Items/<name>        (T, E) float, attrs: ItemNumber (1-based)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple
import logging

import h5py
import numpy as np

from meshcast.config import ENCODING

logger = logging.getLogger(__name__)

NODES_GROUP = 'Geometry/Nodes'
ELEMENT_TABLE = 'Geometry/Elements/Table'
ITEMS_GROUP = 'Results/Items'
PAD = -1


class MeshSourceError(ValueError):
    """Raised for missing, unreadable or malformed mesh sources."""


class ItemNotFoundError(KeyError):
    """Raised when a result item number is not present in the source."""


@dataclass
class MeshSource:
    """Immutable in-memory mesh source.

    ``element_table`` is an (E, 4) int array; 3-node elements carry ``-1`` in
    the last column. ``item_data`` maps the 1-based item number to a
    (timesteps, E) float32 array.
    """
    node_ids: np.ndarray
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    projection: str
    element_table: np.ndarray
    delete_value: float = ENCODING['default_delete_value']
    items: Dict[int, str] = field(default_factory=dict)
    item_data: Dict[int, np.ndarray] = field(default_factory=dict)
    path: Optional[str] = None

    @property
    def node_count(self) -> int:
        return int(self.node_ids.shape[0])

    @property
    def element_count(self) -> int:
        return int(self.element_table.shape[0])

    @property
    def quad_mask(self) -> np.ndarray:
        return self.element_table[:, 3] != PAD

    @property
    def quad_count(self) -> int:
        return int(np.count_nonzero(self.quad_mask))

    @property
    def triangle_count(self) -> int:
        """Triangles after splitting each quad in two."""
        return self.element_count + self.quad_count

    def time_step_count(self, item_number: int = 1) -> int:
        return int(self._item(item_number).shape[0])

    def read_item_timestep(self, item_number: int, timestep: int) -> np.ndarray:
        """Per-element values of ``item_number`` at ``timestep`` (float32)."""
        data = self._item(item_number)
        if not 0 <= timestep < data.shape[0]:
            raise IndexError(f'timestep {timestep} out of range 0..{data.shape[0] - 1}')
        return data[timestep]

    def _item(self, item_number: int) -> np.ndarray:
        try:
            return self.item_data[item_number]
        except KeyError:
            raise ItemNotFoundError(f'item {item_number} not present in mesh source {self.path or "<memory>"}') from None

    def validate(self) -> 'MeshSource':
        n = self.node_count
        for name in ('x', 'y', 'z'):
            if getattr(self, name).shape != (n,):
                raise MeshSourceError(f'node coordinate {name.upper()} has shape {getattr(self, name).shape}, expected ({n},)')
        table = self.element_table
        if table.ndim != 2 or table.shape[1] != 4:
            raise MeshSourceError(f'element table must be (E, 4), got {table.shape}')
        if np.any(table[:, :3] == PAD):
            raise MeshSourceError('element table contains elements with fewer than 3 nodes')
        for number, data in self.item_data.items():
            if data.ndim != 2 or data.shape[1] != self.element_count:
                raise MeshSourceError(
                    f'item {number} has shape {data.shape}, expected (timesteps, {self.element_count})')
        return self


def pad_element_table(elements: Iterable[Sequence[int]]) -> np.ndarray:
    """Pack a ragged sequence of 3/4-node elements into an (E, 4) array."""
    rows = []
    for i, elem in enumerate(elements):
        elem = [int(v) for v in elem]
        if len(elem) == 3:
            elem.append(PAD)
        elif len(elem) != 4:
            raise MeshSourceError(f'element {i} has {len(elem)} nodes; only triangles and quads are supported')
        rows.append(elem)
    if not rows:
        return np.zeros((0, 4), dtype=np.int64)
    return np.asarray(rows, dtype=np.int64)


def read_mesh_source(path, item_numbers: Optional[Sequence[int]] = None) -> MeshSource:
    """Read a mesh source file.

    ``item_numbers`` limits which result items are loaded; ``None`` loads all.
    """
    path = str(path)
    if not Path(path).is_file():
        raise MeshSourceError(f'mesh source not found: {path}')
    try:
        with h5py.File(path, 'r') as hdf:
            if NODES_GROUP not in hdf or ELEMENT_TABLE not in hdf:
                raise MeshSourceError(f'{path}: missing {NODES_GROUP} or {ELEMENT_TABLE}')
            nodes = hdf[NODES_GROUP]
            node_ids = np.asarray(nodes['Ids'][:], dtype=np.int64)
            x = np.asarray(nodes['X'][:], dtype=np.float64)
            y = np.asarray(nodes['Y'][:], dtype=np.float64)
            z = np.asarray(nodes['Z'][:], dtype=np.float32)
            table = np.asarray(hdf[ELEMENT_TABLE][:], dtype=np.int64)
            projection = _as_str(hdf['Geometry'].attrs.get('Projection', ''))
            delete_value = float(hdf.attrs.get('DeleteValueFloat', ENCODING['default_delete_value']))

            items, item_data = {}, {}
            if ITEMS_GROUP in hdf:
                for name, ds in hdf[ITEMS_GROUP].items():
                    number = int(ds.attrs.get('ItemNumber', len(items) + 1))
                    items[number] = name
                    if item_numbers is None or number in item_numbers:
                        item_data[number] = np.asarray(ds[:], dtype=np.float32)
    except MeshSourceError:
        raise
    except (OSError, KeyError) as e:
        raise MeshSourceError(f'unreadable mesh source {path}: {e}') from e

    if not projection:
        raise MeshSourceError(f'{path}: Geometry has no Projection attribute')

    source = MeshSource(node_ids=node_ids, x=x, y=y, z=z, projection=projection,
                        element_table=table, delete_value=delete_value,
                        items=items, item_data=item_data, path=path)
    logger.debug('Loaded mesh source %s: %d nodes, %d elements (%d quads), items=%s',
                 path, source.node_count, source.element_count, source.quad_count, items)
    return source.validate()


def read_mesh_shape(path, item_number: int = 1) -> Tuple[int, int]:
    """``(time_step_count, triangle_count)`` of ``item_number`` without loading values.

    Only the quad column of the element table and the item's dataset shape are read.
    """
    path = str(path)
    if not Path(path).is_file():
        raise MeshSourceError(f'mesh source not found: {path}')
    try:
        with h5py.File(path, 'r') as hdf:
            if ELEMENT_TABLE not in hdf:
                raise MeshSourceError(f'{path}: missing {ELEMENT_TABLE}')
            table = hdf[ELEMENT_TABLE]
            if len(table.shape) != 2 or table.shape[1] != 4:
                raise MeshSourceError(f'element table must be (E, 4), got {table.shape}')
            elements = int(table.shape[0])
            quads = int(np.count_nonzero(table[:, 3] != PAD)) if elements else 0
            dataset = None
            if ITEMS_GROUP in hdf:
                for position, ds in enumerate(hdf[ITEMS_GROUP].values(), start=1):
                    if int(ds.attrs.get('ItemNumber', position)) == item_number:
                        dataset = ds
                        break
            if dataset is None:
                raise ItemNotFoundError(f'item {item_number} not present in mesh source {path}')
            steps = int(dataset.shape[0])
    except (MeshSourceError, ItemNotFoundError):
        raise
    except (OSError, KeyError) as e:
        raise MeshSourceError(f'unreadable mesh source {path}: {e}') from e
    return steps, elements + quads


def write_mesh_source(path, source: MeshSource) -> str:
    """Write ``source`` using the layout documented in this module."""
    source.validate()
    path = str(path)
    with h5py.File(path, 'w') as hdf:
        hdf.attrs['DeleteValueFloat'] = float(source.delete_value)
        geom = hdf.require_group('Geometry')
        geom.attrs['Projection'] = source.projection
        nodes = hdf.require_group(NODES_GROUP)
        nodes.create_dataset('Ids', data=source.node_ids)
        nodes.create_dataset('X', data=source.x)
        nodes.create_dataset('Y', data=source.y)
        nodes.create_dataset('Z', data=source.z)
        hdf.create_dataset(ELEMENT_TABLE, data=source.element_table)
        items = hdf.require_group(ITEMS_GROUP)
        for number, data in sorted(source.item_data.items()):
            name = source.items.get(number, f'Item {number}')
            ds = items.create_dataset(name, data=data, compression='gzip')
            ds.attrs['ItemNumber'] = number
    return path


def make_demo_source(nx: int = 40, ny: int = 24, time_steps: int = 48,
                     origin=(1755000.0, 5915000.0), spacing: float = 500.0,
                     projection: str = 'EPSG:2193') -> MeshSource:
    """Synthetic mixed triangle/quad mesh with a travelling wave field.

    Cells on a checkerboard are kept as quads, the others are split into two
    triangles. Item 1 is a concentration-like wave in 0..2 with the first
    column of elements marked as deleted; item 2 is the water depth.
    """
    ii, jj = np.meshgrid(np.arange(nx), np.arange(ny), indexing='ij')
    node_ids = np.arange(1, nx * ny + 1, dtype=np.int64)
    x = origin[0] + ii.ravel() * spacing
    y = origin[1] + jj.ravel() * spacing
    z = (-5.0 - 40.0 * ii.ravel() / max(nx - 1, 1)
         + 3.0 * np.sin(jj.ravel() / 3.0)).astype(np.float32)

    def nid(i, j):
        return int(i * ny + j + 1)

    elements, centers = [], []
    for i in range(nx - 1):
        for j in range(ny - 1):
            a, b, c, d = nid(i, j), nid(i + 1, j), nid(i + 1, j + 1), nid(i, j + 1)
            cx = i + 0.5
            if (i + j) % 2 == 0:
                elements.append((a, b, c, d))
                centers.append(cx)
            else:
                elements.append((a, b, c))
                elements.append((a, c, d))
                centers.extend([cx, cx])
    table = pad_element_table(elements)
    centers = np.asarray(centers)

    delete_value = ENCODING['default_delete_value']
    t = np.arange(time_steps)[:, None]
    wave = 1.0 + np.sin(centers[None, :] / 4.0 - t * (2.0 * np.pi / max(time_steps, 1)))
    wave = wave.astype(np.float32)
    wave[:, centers < 1.0] = delete_value
    depth = np.repeat((-z[table[:, 0] - 1])[None, :], time_steps, axis=0).astype(np.float32)

    return MeshSource(node_ids=node_ids, x=x, y=y, z=z, projection=projection,
                      element_table=table, delete_value=delete_value,
                      items={1: 'Concentration', 2: 'Water Depth'},
                      item_data={1: wave, 2: depth}).validate()


def _as_str(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return str(value)
