import pytest

from meshcast.render import shaders


def test_single_mode_sources():
    vs = shaders.vertex_shader(shaders.SINGLE)
    fs = shaders.fragment_shader(8, shaders.SINGLE)
    assert vs.startswith('#version 330')
    assert 'in float dfs_values;' in vs
    assert 'center.z = dfs_value * depthScale;' in vs
    assert 'uniform ColorBand colorBands[8];' in fs
    assert 'i < 7;' in fs
    assert 'mouseX' not in fs


def test_split_mode_sources():
    vs = shaders.vertex_shader(shaders.SPLIT)
    fs = shaders.fragment_shader(3, shaders.SPLIT, line_width=2.0)
    assert 'dfs_values' not in vs
    assert 'dfs_value_a = positions.z;' in vs
    assert 'center.z = center.z * depthScale;' in vs
    assert 'clamp(mouseX, 0.0, screenWidth)' in fs
    assert 'const float lineWidth = 2.0;' in fs


def test_sentinel_and_neutral_constants():
    fs = shaders.fragment_shader(2)
    assert 'const float missingValue = -999.9;' in fs
    assert 'vec4(0.5, 0.5, 0.5, 1.0)' in fs


def test_rejects_bad_input():
    with pytest.raises(ValueError):
        shaders.fragment_shader(1)
    with pytest.raises(ValueError):
        shaders.vertex_shader('stereo')
    with pytest.raises(ValueError):
        shaders.fragment_shader(4, 'stereo')
