import numpy as np

from meshcast.config import ANIMATION_BANDS
from meshcast.render import shaders
from meshcast.render.color_mapper import ColorBands
from meshcast.render.layer import ViewState
from meshcast.render.scene import MeshScene, local_mesh_data
from meshcast.render.viewport import Viewport


def test_local_mesh_data(mesh_h5):
    data = local_mesh_data(mesh_h5, 1)
    assert data.descriptor.triangle_count == 3
    assert data.descriptor.time_step_count == 3
    assert data.vertices.shape == (27,)
    assert data.timestep_values(0).shape == (9,)


def test_scene_redraw_tracks_timestep(mesh_h5, fake_gl):
    data = local_mesh_data(mesh_h5, 1)
    scene = MeshScene(data, ColorBands.from_css(ANIMATION_BANDS))
    ctx = fake_gl()
    layer = scene.attach(ctx)
    viewport = Viewport.fit(data.vertices, 320, 240)

    view = ViewState()
    assert scene.redraw(view, viewport)
    gen0 = layer.props.values.generation
    # same timestep: values are not re-wrapped, so nothing is re-uploaded
    scene.redraw(view, viewport)
    assert layer.props.values.generation == gen0

    view.current_timestep = 2
    scene.redraw(view, viewport)
    assert layer.props.values.generation > gen0
    np.testing.assert_array_equal(layer.props.values.data, data.timestep_values(2))
    assert ctx.buffers[1].writes == 1


def test_scene_mode_and_step(mesh_h5, fake_gl):
    scene = MeshScene(local_mesh_data(mesh_h5, 1), ColorBands.from_css(ANIMATION_BANDS))
    ctx = fake_gl()
    scene.attach(ctx)
    viewport = Viewport.fit(scene.data.vertices, 320, 240)

    assert scene.toggle_mode() == shaders.SPLIT
    scene.set_color_step(0.5)
    assert scene.redraw(ViewState(), viewport)
    assert scene.bands.values[1] == 0.5
    assert len(ctx.programs) == 2


def test_redraw_without_layer(mesh_h5):
    scene = MeshScene(local_mesh_data(mesh_h5, 1), ColorBands.from_css(ANIMATION_BANDS))
    assert scene.redraw(ViewState(), Viewport(0.0, 0.0, 1.0)) is False
