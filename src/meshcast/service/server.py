"""
server.py

aiohttp service exposing the encoded mesh buffers.

Routes (under ``SERVER['route_prefix']``):
- ``GET vertices-buffer``                 gzip float32 triangle vertex positions
- ``GET timestep-buffer?itemNumber=N``    gzip float32 per-triangle values, all timesteps
- ``GET dfs-info?itemNumber=N``           ``{"timeStepCount": int, "triangleCount": int}``

Encoding runs on a thread pool so the event loop stays responsive; the shared
`MeshCache` guarantees one computation per key even when the first requests
arrive together.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Optional
import asyncio
import gc
import logging

from aiohttp import web

from meshcast.config import ENCODING, SERVER
from meshcast.io.mesh_source import ItemNotFoundError, MeshSourceError, read_mesh_shape, read_mesh_source
from meshcast.mesh import codec
from meshcast.mesh.cache import MeshCache
from meshcast.mesh.extractor import ReprojectionError, extract_vertices
from meshcast.mesh.field_encoder import MeshDescriptor, encode_field
from meshcast.utils import safe_log_exception

logger = logging.getLogger(__name__)


class MeshService:
    """Produces (and caches) the three payloads for one mesh source."""

    def __init__(self, source_path: str, cache: Optional[MeshCache] = None,
                 target_crs: str = ENCODING['target_crs'],
                 significant_digits: Optional[int] = ENCODING['significant_digits']):
        self.source_path = str(source_path)
        self.cache = cache if cache is not None else MeshCache()
        self.target_crs = target_crs
        self.significant_digits = significant_digits

    def vertices_payload(self) -> bytes:
        key = ('vertices', self.source_path, self.target_crs)
        return self.cache.get_or_compute(key, self._produce_vertices)

    def timestep_payload(self, item_number: int) -> bytes:
        key = ('timesteps', self.source_path, item_number, self.significant_digits)
        return self.cache.get_or_compute(key, lambda: self._produce_timesteps(item_number))

    def descriptor(self, item_number: int) -> MeshDescriptor:
        key = ('info', self.source_path, item_number)
        return self.cache.get_or_compute(key, lambda: self._produce_descriptor(item_number))

    def _produce_vertices(self) -> bytes:
        source = read_mesh_source(self.source_path, item_numbers=[])
        payload = codec.encode_floats(extract_vertices(source, self.target_crs))
        del source
        gc.collect()
        return payload

    def _produce_timesteps(self, item_number: int) -> bytes:
        source = read_mesh_source(self.source_path, item_numbers=[item_number])
        series = encode_field(source, item_number, significant_digits=self.significant_digits)
        payload = codec.encode_floats(series.flat())
        del source, series
        gc.collect()
        return payload

    def _produce_descriptor(self, item_number: int) -> MeshDescriptor:
        steps, triangles = read_mesh_shape(self.source_path, item_number)
        return MeshDescriptor(time_step_count=steps, triangle_count=triangles)


SERVICE_KEY = web.AppKey('mesh_service', MeshService)
EXECUTOR_KEY = web.AppKey('executor', ThreadPoolExecutor)


def _item_number(request: web.Request) -> int:
    raw = request.query.get('itemNumber', str(SERVER['default_item']))
    try:
        item = int(raw)
    except ValueError:
        raise web.HTTPBadRequest(text=f'itemNumber must be an integer, got {raw!r}')
    if item < 1:
        raise web.HTTPBadRequest(text=f'itemNumber must be >= 1, got {item}')
    return item


async def _in_worker(request: web.Request, fn, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(request.app[EXECUTOR_KEY], fn, *args)


async def vertices_buffer(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _in_worker(request, service.vertices_payload)
    return web.Response(body=body, headers=codec.wire_headers('vertices-buffer.bin'))


async def timestep_buffer(request: web.Request) -> web.Response:
    item = _item_number(request)
    service = request.app[SERVICE_KEY]
    body = await _in_worker(request, service.timestep_payload, item)
    return web.Response(body=body, headers=codec.wire_headers(f'timestep-buffer-{item}-all.bin'))


async def dfs_info(request: web.Request) -> web.Response:
    item = _item_number(request)
    service = request.app[SERVICE_KEY]
    descriptor = await _in_worker(request, service.descriptor, item)
    return web.json_response(descriptor.to_json())


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ItemNotFoundError as e:
        return web.json_response({'error': str(e.args[0] if e.args else e)}, status=404)
    except (MeshSourceError, ReprojectionError) as e:
        safe_log_exception('Mesh encoding failed', e, path=request.path_qs)
        return web.json_response({'error': str(e)}, status=500)


async def _shutdown_executor(app: web.Application) -> None:
    app[EXECUTOR_KEY].shutdown(wait=False)


def create_app(source_path: str = SERVER['source_path'], service: Optional[MeshService] = None,
               route_prefix: str = SERVER['route_prefix'],
               worker_threads: int = SERVER['worker_threads']) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service if service is not None else MeshService(source_path)
    app[EXECUTOR_KEY] = ThreadPoolExecutor(max_workers=worker_threads, thread_name_prefix='meshcast')
    prefix = route_prefix.rstrip('/')
    app.add_routes([
        web.get(f'{prefix}/vertices-buffer', vertices_buffer),
        web.get(f'{prefix}/timestep-buffer', timestep_buffer),
        web.get(f'{prefix}/dfs-info', dfs_info),
    ])
    app.on_cleanup.append(_shutdown_executor)
    return app


def run_server(source_path: str = SERVER['source_path'], host: str = SERVER['host'],
               port: int = SERVER['port'], **kwargs) -> None:
    app = create_app(source_path, **kwargs)
    logger.info('Serving %s on http://%s:%d%s', source_path, host, port, SERVER['route_prefix'])
    web.run_app(app, host=host, port=port, print=None)
