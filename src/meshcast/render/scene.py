"""
scene.py

Glue between decoded mesh data, the view state and the GPU layer.

`MeshScene` turns the current timestep into layer props (a new value
generation only when the timestep actually changes), owns the color bands
and the mode, and exposes `redraw` as the frame driver callback.
"""
from typing import Optional
import logging

from meshcast.config import ENCODING
from meshcast.io.mesh_source import read_mesh_source
from meshcast.mesh.extractor import extract_vertices
from meshcast.mesh.field_encoder import encode_field
from meshcast.render import shaders
from meshcast.render.color_mapper import ColorBands
from meshcast.render.layer import LayerProps, ScalarMeshLayer, VersionedBuffer, ViewState
from meshcast.render.viewport import Viewport
from meshcast.service.client import MeshData

logger = logging.getLogger(__name__)


class MeshScene:
    def __init__(self, data: MeshData, bands: ColorBands, mode: str = shaders.SINGLE,
                 layer_id: str = 'mesh-layer'):
        self.data = data
        self.bands = bands
        self.mode = mode
        self.layer_id = layer_id
        self.vertices = VersionedBuffer.wrap(data.vertices)
        self.layer: Optional[ScalarMeshLayer] = None
        self._values: Optional[VersionedBuffer] = None
        self._values_timestep: Optional[int] = None

    def values_for(self, timestep: int) -> VersionedBuffer:
        if self._values is None or self._values_timestep != timestep:
            self._values = VersionedBuffer.wrap(self.data.timestep_values(timestep))
            self._values_timestep = timestep
        return self._values

    def props_for(self, timestep: int) -> LayerProps:
        return LayerProps(id=self.layer_id, vertices=self.vertices,
                          values=self.values_for(timestep), color_bands=self.bands,
                          mode=self.mode)

    def attach(self, ctx, timestep: int = 0) -> ScalarMeshLayer:
        if self.layer is not None:
            self.layer.dispose()
        self.layer = ScalarMeshLayer(ctx, self.props_for(timestep))
        self.layer.bind_attributes()
        return self.layer

    def set_color_step(self, step: float) -> None:
        self.bands = self.bands.with_step(step)

    def toggle_mode(self) -> str:
        self.mode = shaders.SPLIT if self.mode == shaders.SINGLE else shaders.SINGLE
        return self.mode

    def redraw(self, view: ViewState, viewport: Viewport) -> bool:
        if self.layer is None:
            return False
        self.layer.update(self.props_for(view.current_timestep))
        return self.layer.draw(view, viewport)


def local_mesh_data(source_path: str, item_number: int = 1,
                    target_crs: str = ENCODING['target_crs'],
                    significant_digits: Optional[int] = ENCODING['significant_digits']) -> MeshData:
    """Encode a mesh source in-process, without the HTTP service."""
    source = read_mesh_source(source_path, item_numbers=[item_number])
    field = encode_field(source, item_number, significant_digits=significant_digits)
    return MeshData(descriptor=field.descriptor, vertices=extract_vertices(source, target_crs), field=field)
