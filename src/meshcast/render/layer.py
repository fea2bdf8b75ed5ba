"""
layer.py

GPU layer that draws the scalar field mesh with moderngl.

The layer owns one program, a position buffer, a value buffer and the vertex
array tying them together. It renders non-indexed triangles, three vertices
per triangle, for the value slice it was last given.

Change detection is explicit: every `VersionedBuffer` carries a generation
number and the layer remembers which generation each GPU buffer holds, so it
re-uploads only what changed. The program is rebuilt when the number of color
bands or the mode changes, because both are compiled into the shader text.

States: ``UNINITIALIZED -> READY`` on the first successful bind,
``READY -> READY`` on updates, ``READY -> DISPOSED`` on `dispose`.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol
import itertools
import logging

import moderngl
import numpy as np

from meshcast.config import RENDER
from meshcast.render import shaders
from meshcast.render.color_mapper import ColorBands
from meshcast.render.viewport import Viewport

logger = logging.getLogger(__name__)

_generations = itertools.count(1)


class ShaderCompileError(RuntimeError):
    """The layer's program failed to compile or link."""


class LayerStateError(RuntimeError):
    """Operation not allowed in the layer's current state."""


class LayerState(Enum):
    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    DISPOSED = 'disposed'


@dataclass(frozen=True)
class VersionedBuffer:
    """A float32 array tagged with a process-wide, monotonically increasing generation."""
    data: np.ndarray
    generation: int

    @classmethod
    def wrap(cls, array) -> 'VersionedBuffer':
        return cls(np.ascontiguousarray(array, dtype='f4'), next(_generations))

    def __len__(self):
        return int(self.data.shape[0])


@dataclass
class ViewState:
    """Interactive state handed to every draw."""
    current_timestep: int = 0
    show_depth: bool = RENDER['show_depth']
    depth_scale: float = RENDER['depth_scale']
    pointer_x: float = 0.0


@dataclass
class LayerProps:
    id: str
    vertices: VersionedBuffer
    values: Optional[VersionedBuffer]
    color_bands: ColorBands
    mode: str = shaders.SINGLE
    pickable: bool = False

    @property
    def vertex_count(self) -> int:
        return len(self.vertices) // 3

    def validate(self) -> 'LayerProps':
        if self.mode not in shaders.MODES:
            raise ValueError(f'unknown layer mode {self.mode!r}')
        n = len(self.vertices)
        if n % 9:
            raise ValueError(f'vertex buffer length {n} is not a multiple of 9 (three xyz vertices per triangle)')
        if self.mode == shaders.SINGLE and self.values is None:
            raise ValueError('single-field mode needs a value buffer')
        if self.values is not None and len(self.values) != self.vertex_count:
            raise ValueError(f'value buffer has {len(self.values)} entries, expected one per vertex ({self.vertex_count})')
        return self


class MeshLayer(Protocol):
    def bind_attributes(self, props: LayerProps) -> None: ...

    def compute_uniforms(self, view: ViewState, viewport: Viewport) -> dict: ...

    def draw(self, view: ViewState, viewport: Viewport, picking: bool = False) -> bool: ...


class ScalarMeshLayer:
    """The single concrete `MeshLayer`: positions + one scalar per vertex."""

    def __init__(self, ctx, props: LayerProps):
        self.ctx = ctx
        self.props = props.validate()
        self.state = LayerState.UNINITIALIZED
        self.program = None
        self.position_vbo = None
        self.value_vbo = None
        self.vao = None
        self._bound = {}
        self._warned_no_program = False

    @property
    def vertex_count(self) -> int:
        return self.props.vertex_count

    @property
    def pickable(self) -> bool:
        # data overlay only; never takes part in hit testing
        return False

    def update(self, props: LayerProps) -> None:
        if self.state is LayerState.DISPOSED:
            raise LayerStateError(f'layer {self.props.id!r} is disposed')
        self.props = props.validate()
        self.bind_attributes(props)

    def bind_attributes(self, props: Optional[LayerProps] = None) -> None:
        if self.state is LayerState.DISPOSED:
            raise LayerStateError(f'layer {self.props.id!r} is disposed')
        props = props if props is not None else self.props
        rebuild_vao = False

        program_key = (len(props.color_bands), props.mode)
        if self.program is None or self._bound.get('program') != program_key:
            self._release('vao', 'program')
            self._bound.pop('program', None)
            self.program = self._compile(props)
            self._bound['program'] = program_key
            rebuild_vao = True

        if self._bound.get('positions') != props.vertices.generation:
            rebuild_vao |= self._upload('position_vbo', props.vertices)
            self._bound['positions'] = props.vertices.generation

        wants_values = props.mode == shaders.SINGLE
        if wants_values and self._bound.get('values') != props.values.generation:
            rebuild_vao |= self._upload('value_vbo', props.values)
            self._bound['values'] = props.values.generation
        elif not wants_values and self.value_vbo is not None:
            self._release('value_vbo')
            self._bound.pop('values', None)
            rebuild_vao = True

        if rebuild_vao or self.vao is None:
            self._release('vao')
            content = [(self.position_vbo, '3f', 'positions')]
            if wants_values:
                content.append((self.value_vbo, '1f', 'dfs_values'))
            self.vao = self.ctx.vertex_array(self.program, content)

        if self.state is LayerState.UNINITIALIZED:
            logger.debug('Layer %s ready: %d vertices, mode=%s', props.id, props.vertex_count, props.mode)
        self.state = LayerState.READY

    def compute_uniforms(self, view: ViewState, viewport: Viewport) -> dict:
        uniforms = {
            'screenWidth': float(viewport.width),
            'mouseX': float(view.pointer_x),
            'showDepth': bool(view.show_depth),
            'depthScale': float(view.depth_scale),
        }
        uniforms.update(self.props.color_bands.uniforms())
        uniforms.update(viewport.uniforms())
        return uniforms

    def draw(self, view: ViewState, viewport: Viewport, picking: bool = False) -> bool:
        """Issue one draw call; returns False when nothing was drawn."""
        if picking and not self.pickable:
            return False
        if self.state is not LayerState.READY or self.program is None or self.vao is None:
            if not self._warned_no_program:
                logger.warning('Layer %s has no program (state=%s); skipping draw', self.props.id, self.state.value)
                self._warned_no_program = True
            return False
        self._set_uniforms(self.compute_uniforms(view, viewport))
        self.vao.render(mode=moderngl.TRIANGLES, vertices=self.vertex_count)
        return True

    def context_lost(self) -> None:
        """Forget GPU handles that died with the context; the next bind recreates them."""
        self.program = self.position_vbo = self.value_vbo = self.vao = None
        self._bound.clear()

    def context_restored(self, ctx) -> None:
        self.ctx = ctx
        self.context_lost()
        self.bind_attributes()

    def dispose(self) -> None:
        if self.state is LayerState.DISPOSED:
            return
        self._release('vao', 'value_vbo', 'position_vbo', 'program')
        self._bound.clear()
        self.state = LayerState.DISPOSED

    def _compile(self, props: LayerProps):
        vs = shaders.vertex_shader(props.mode)
        fs = shaders.fragment_shader(len(props.color_bands), props.mode)
        try:
            program = self.ctx.program(vertex_shader=vs, fragment_shader=fs)
        except moderngl.Error as e:
            logger.error('Layer %s: shader compile/link failed: %s', props.id, e)
            raise ShaderCompileError(str(e)) from e
        self._warned_no_program = False
        return program

    def _upload(self, attr: str, buf: VersionedBuffer) -> bool:
        """Write ``buf`` into the GPU buffer ``attr``; True if a new buffer was created."""
        data = buf.data.tobytes()
        current = getattr(self, attr)
        if current is not None and current.size == len(data):
            current.write(data)
            return False
        self._release(attr)
        setattr(self, attr, self.ctx.buffer(data))
        return True

    def _set_uniforms(self, uniforms: dict) -> None:
        for name, value in uniforms.items():
            member = self.program.get(name, None)
            if member is None:
                # optimised out by the compiler, e.g. mouseX in single mode
                continue
            if isinstance(value, np.ndarray):
                member.write(value.tobytes())
            else:
                member.value = value

    def _release(self, *attrs: str) -> None:
        for attr in attrs:
            obj = getattr(self, attr)
            if obj is not None:
                obj.release()
                setattr(self, attr, None)
