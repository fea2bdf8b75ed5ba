import asyncio
import gzip

import aiohttp
import numpy as np
import pytest
from aiohttp import web
from aiohttp import test_utils

from meshcast.io.mesh_source import read_mesh_source
from meshcast.mesh import codec
from meshcast.mesh.codec import DecodeError
from meshcast.mesh.extractor import extract_vertices
from meshcast.mesh.field_encoder import encode_field
from meshcast.service.client import FetchError, load_mesh_data
from meshcast.service.server import SERVICE_KEY, create_app

PREFIX = '/api/Dfsu'


async def _serve(app, scenario):
    async with test_utils.TestServer(app) as server:
        return await scenario(server, str(server.make_url(PREFIX)))


def run(app, scenario):
    return asyncio.run(_serve(app, scenario))


async def _raw_get(url, **params):
    async with aiohttp.ClientSession(auto_decompress=False) as session:
        async with session.get(url, params=params) as resp:
            return resp.status, dict(resp.headers), await resp.read()


def test_vertices_endpoint(mesh_h5):
    async def scenario(server, base):
        return await _raw_get(f'{base}/vertices-buffer')

    status, headers, body = run(create_app(mesh_h5), scenario)
    assert status == 200
    assert headers['Content-Type'] == 'application/octet-stream'
    assert headers['Content-Encoding'] == 'gzip'
    assert 'vertices-buffer.bin' in headers['Content-Disposition']
    expected = extract_vertices(read_mesh_source(mesh_h5, item_numbers=[]))
    np.testing.assert_array_equal(np.frombuffer(gzip.decompress(body), dtype='<f4'), expected)


def test_timestep_endpoint(mesh_h5):
    async def scenario(server, base):
        return await _raw_get(f'{base}/timestep-buffer', itemNumber=2)

    status, headers, body = run(create_app(mesh_h5), scenario)
    assert status == 200
    assert 'timestep-buffer-2-all.bin' in headers['Content-Disposition']
    values = codec.decode_floats(body)
    expected = encode_field(read_mesh_source(mesh_h5), 2).flat()
    np.testing.assert_array_equal(values, expected)


def test_dfs_info(mesh_h5):
    async def scenario(server, base):
        async with aiohttp.ClientSession() as session:
            async with session.get(f'{base}/dfs-info', params={'itemNumber': 1}) as resp:
                return resp.status, await resp.json()

    status, payload = run(create_app(mesh_h5), scenario)
    assert status == 200
    assert payload == {'timeStepCount': 3, 'triangleCount': 3}


@pytest.mark.parametrize('endpoint', ['timestep-buffer', 'dfs-info'])
@pytest.mark.parametrize('item, expected', [('abc', 400), ('0', 400), ('9', 404)])
def test_item_number_errors(mesh_h5, endpoint, item, expected):
    async def scenario(server, base):
        return await _raw_get(f'{base}/{endpoint}', itemNumber=item)

    status, _, _ = run(create_app(mesh_h5), scenario)
    assert status == expected


def test_unreadable_source_is_500(tmp_path):
    async def scenario(server, base):
        return await _raw_get(f'{base}/vertices-buffer')

    status, _, body = run(create_app(str(tmp_path / 'missing.h5')), scenario)
    assert status == 500
    assert b'not found' in body


def test_concurrent_requests_share_one_encoding(mesh_h5):
    app = create_app(mesh_h5, worker_threads=4)

    async def scenario(server, base):
        return await asyncio.gather(*[_raw_get(f'{base}/timestep-buffer', itemNumber=1) for _ in range(6)])

    results = run(app, scenario)
    assert {status for status, _, _ in results} == {200}
    assert len({body for _, _, body in results}) == 1
    assert len(app[SERVICE_KEY].cache) == 1


def test_load_mesh_data(mesh_h5):
    async def scenario(server, base):
        return await load_mesh_data(base, item_number=1)

    data = run(create_app(mesh_h5), scenario)
    assert data.descriptor.triangle_count == 3
    assert data.vertices.shape == (27,)
    assert data.field.values.shape == (3, 3)
    assert data.timestep_values(1)[6] == pytest.approx(-999.9)


def test_load_unknown_item_fails_fast(mesh_h5):
    async def scenario(server, base):
        return await load_mesh_data(base, item_number=9, retries=5, backoff=5.0)

    with pytest.raises(FetchError, match='404'):
        run(create_app(mesh_h5), scenario)


def _stub_app(vertices_body, info=None, flaky=0, info_body=None, info_type='application/json',
              field_delay=0.0):
    """Service stand-in returning canned payloads.

    The first ``flaky`` info calls answer 503. ``info_body`` replaces the JSON
    descriptor with raw bytes; ``field_delay`` stalls the timestep response.
    """
    calls = {'info': 0}
    info = info if info is not None else {'timeStepCount': 1, 'triangleCount': 1}

    async def dfs_info(request):
        calls['info'] += 1
        if calls['info'] <= flaky:
            return web.Response(status=503, text='warming up')
        if info_body is not None:
            return web.Response(body=info_body, content_type=info_type)
        return web.json_response(info)

    async def vertices(request):
        return web.Response(body=vertices_body, headers=codec.wire_headers('vertices-buffer.bin'))

    async def timesteps(request):
        await asyncio.sleep(field_delay)
        return web.Response(body=codec.encode_floats([0.5]), headers=codec.wire_headers('timestep-buffer-1-all.bin'))

    app = web.Application()
    app.add_routes([
        web.get(f'{PREFIX}/dfs-info', dfs_info),
        web.get(f'{PREFIX}/vertices-buffer', vertices),
        web.get(f'{PREFIX}/timestep-buffer', timesteps),
    ])
    return app, calls


def test_corrupt_payload_is_decode_error():
    app, _ = _stub_app(b'\x1f\x8b not really gzip')

    async def scenario(server, base):
        return await load_mesh_data(base, retries=1)

    with pytest.raises(DecodeError):
        run(app, scenario)


def test_size_mismatch_is_decode_error():
    app, _ = _stub_app(codec.encode_floats(np.zeros(18)))

    async def scenario(server, base):
        return await load_mesh_data(base, retries=1)

    with pytest.raises(DecodeError, match='expected 9'):
        run(app, scenario)


def test_server_errors_are_retried():
    app, calls = _stub_app(codec.encode_floats(np.zeros(9)), flaky=2)

    async def scenario(server, base):
        return await load_mesh_data(base, retries=3, backoff=0.01)

    data = run(app, scenario)
    assert calls['info'] == 3
    assert data.timestep_values(0).tolist() == [0.5, 0.5, 0.5]


def test_unreachable_service():
    async def scenario():
        return await load_mesh_data('http://127.0.0.1:1/api/Dfsu', retries=2, backoff=0.01, timeout=2.0)

    with pytest.raises(FetchError, match='after 2 attempts'):
        asyncio.run(scenario())


def test_truncated_descriptor_is_decode_error():
    app, calls = _stub_app(codec.encode_floats(np.zeros(9)), info_body=b'{"timeStepCount": 1,')

    async def scenario(server, base):
        return await load_mesh_data(base, retries=3, backoff=0.01)

    with pytest.raises(DecodeError, match='malformed descriptor'):
        run(app, scenario)
    assert calls['info'] == 1


def test_descriptor_content_type_is_not_checked():
    app, calls = _stub_app(codec.encode_floats(np.zeros(9)),
                           info_body=b'{"timeStepCount": 1, "triangleCount": 1}', info_type='text/plain')

    async def scenario(server, base):
        return await load_mesh_data(base, retries=3, backoff=0.01)

    data = run(app, scenario)
    assert calls['info'] == 1
    assert data.descriptor.triangle_count == 1


def test_failed_fetch_cancels_the_other():
    app, _ = _stub_app(b'\x1f\x8b not really gzip', field_delay=0.5)

    async def scenario(server, base):
        with pytest.raises(DecodeError):
            await load_mesh_data(base, retries=1)
        return [t for t in asyncio.all_tasks()
                if getattr(t.get_coro(), '__qualname__', '') == 'fetch_field']

    assert run(app, scenario) == []
