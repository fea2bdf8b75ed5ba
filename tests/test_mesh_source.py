import h5py
import numpy as np
import pytest

from meshcast.io.mesh_source import (ItemNotFoundError, MeshSourceError, make_demo_source,
                                     pad_element_table, read_mesh_shape, read_mesh_source,
                                     write_mesh_source)


def test_read_synthetic_source(mesh_h5):
    src = read_mesh_source(mesh_h5)
    assert src.node_count == 5
    assert src.element_count == 2
    assert src.quad_count == 1
    assert src.triangle_count == 3
    assert src.projection == 'EPSG:2193'
    assert src.items == {1: 'Concentration', 2: 'Water Depth'}
    assert src.time_step_count(1) == 3
    assert src.read_item_timestep(2, 0).shape == (2,)


def test_item_filter_loads_only_requested(mesh_h5):
    src = read_mesh_source(mesh_h5, item_numbers=[2])
    assert set(src.item_data) == {2}
    # names are still listed for every item
    assert set(src.items) == {1, 2}
    with pytest.raises(ItemNotFoundError):
        src.time_step_count(1)

    geometry_only = read_mesh_source(mesh_h5, item_numbers=[])
    assert geometry_only.item_data == {}
    assert geometry_only.triangle_count == 3


def test_read_mesh_shape_matches_full_read(mesh_h5):
    src = read_mesh_source(mesh_h5)
    for item in (1, 2):
        assert read_mesh_shape(mesh_h5, item) == (src.time_step_count(item), src.triangle_count)


def test_read_mesh_shape_leaves_values_on_disk(mesh_h5, monkeypatch):
    # only the element table's quad column is read
    read = []
    real_getitem = h5py.Dataset.__getitem__

    def recording_getitem(self, key):
        read.append((self.name, key))
        return real_getitem(self, key)

    monkeypatch.setattr(h5py.Dataset, '__getitem__', recording_getitem)
    assert read_mesh_shape(mesh_h5, 1) == (3, 3)
    assert [name for name, _ in read] == ['/Geometry/Elements/Table']


def test_read_mesh_shape_errors(mesh_h5, tmp_path):
    with pytest.raises(ItemNotFoundError):
        read_mesh_shape(mesh_h5, 9)
    with pytest.raises(MeshSourceError, match='not found'):
        read_mesh_shape(tmp_path / 'missing.h5')


def test_timestep_out_of_range(mesh_h5):
    src = read_mesh_source(mesh_h5)
    with pytest.raises(IndexError):
        src.read_item_timestep(1, 3)


def test_missing_file_raises(tmp_path):
    with pytest.raises(MeshSourceError):
        read_mesh_source(tmp_path / 'nope.h5')


def test_not_hdf5_raises(tmp_path):
    p = tmp_path / 'garbage.h5'
    p.write_bytes(b'not an hdf5 file at all')
    with pytest.raises(MeshSourceError):
        read_mesh_source(p)


def test_missing_projection_raises(mesh_h5):
    with h5py.File(mesh_h5, 'a') as hdf:
        del hdf['Geometry'].attrs['Projection']
    with pytest.raises(MeshSourceError, match='Projection'):
        read_mesh_source(mesh_h5)


def test_item_with_wrong_element_count_raises(mesh_h5):
    with h5py.File(mesh_h5, 'a') as hdf:
        del hdf['Results/Items/Water Depth']
        ds = hdf['Results/Items'].create_dataset('Water Depth', data=np.zeros((3, 5), dtype=np.float32))
        ds.attrs['ItemNumber'] = 2
    with pytest.raises(MeshSourceError):
        read_mesh_source(mesh_h5)


def test_pad_element_table():
    table = pad_element_table([(1, 2, 3), (1, 2, 3, 4)])
    assert table.tolist() == [[1, 2, 3, -1], [1, 2, 3, 4]]
    assert pad_element_table([]).shape == (0, 4)
    with pytest.raises(MeshSourceError):
        pad_element_table([(1, 2, 3, 4, 5)])


def test_demo_source_write_read(tmp_path):
    demo = make_demo_source(nx=6, ny=5, time_steps=4)
    path = write_mesh_source(tmp_path / 'demo.h5', demo)
    src = read_mesh_source(path)

    assert src.node_count == 30
    assert src.triangle_count == demo.triangle_count
    # every cell is either one quad or two triangles
    assert src.triangle_count == 2 * 5 * 4
    assert 0 < src.quad_count < src.element_count
    np.testing.assert_array_equal(src.element_table, demo.element_table)
    np.testing.assert_allclose(src.item_data[1], demo.item_data[1])
    assert src.delete_value == pytest.approx(demo.delete_value)
