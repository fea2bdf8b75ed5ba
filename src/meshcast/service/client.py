"""
client.py

Fetches the descriptor, vertex buffer and field buffer from a running service
and decodes them into arrays the render layer can consume.

The descriptor is fetched first; the two binary buffers then load
concurrently. Transport failures (connection errors, timeouts, HTTP errors)
are retried a bounded number of times and surface as `FetchError`. Payloads
that arrive but cannot be decoded, or whose sizes disagree with the
descriptor, surface as `DecodeError` and are not retried.
"""
from dataclasses import dataclass
from typing import Optional
import asyncio
import json
import logging

import aiohttp
import numpy as np

from meshcast.config import CLIENT
from meshcast.mesh import codec
from meshcast.mesh.codec import DecodeError, LoadError
from meshcast.mesh.field_encoder import MeshDescriptor, ScalarFieldSeries

logger = logging.getLogger(__name__)


class FetchError(LoadError):
    """The service could not be reached or answered with an error status."""


@dataclass
class MeshData:
    """Client-owned decoded copies of the three payloads."""
    descriptor: MeshDescriptor
    vertices: np.ndarray
    field: ScalarFieldSeries

    def timestep_values(self, timestep: int) -> np.ndarray:
        """Per-vertex values for ``timestep`` (length ``3 * triangle_count``)."""
        return self.field.timestep_slice(timestep)


async def _get(session: aiohttp.ClientSession, url: str, params: Optional[dict],
               retries: int, backoff: float) -> bytes:
    delay = backoff
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            async with session.get(url, params=params) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    # 4xx is final
                    if resp.status < 500:
                        raise FetchError(f'GET {url} -> {resp.status}: {text}')
                    raise aiohttp.ClientResponseError(resp.request_info, resp.history,
                                                      status=resp.status, message=text)
                return await resp.read()
        except FetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            last_error = e
            logger.warning('GET %s failed (attempt %d/%d): %s', url, attempt, retries, e)
            if attempt < retries:
                await asyncio.sleep(delay)
                delay *= 2
    raise FetchError(f'GET {url} failed after {retries} attempts: {last_error}') from last_error


async def fetch_descriptor(session, base_url: str, item_number: int = 1,
                           retries: int = CLIENT['retries'],
                           backoff: float = CLIENT['retry_backoff']) -> MeshDescriptor:
    body = await _get(session, f'{base_url}/dfs-info', {'itemNumber': item_number}, retries, backoff)
    # a body that will not parse is a decode failure, not retried
    try:
        return MeshDescriptor.from_json(json.loads(body))
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f'malformed descriptor {body[:200]!r}') from e


async def fetch_vertices(session, base_url: str, retries: int = CLIENT['retries'],
                         backoff: float = CLIENT['retry_backoff']) -> np.ndarray:
    body = await _get(session, f'{base_url}/vertices-buffer', None, retries, backoff)
    return codec.decode_floats(body)


async def fetch_field(session, base_url: str, item_number: int = 1,
                      retries: int = CLIENT['retries'],
                      backoff: float = CLIENT['retry_backoff']) -> np.ndarray:
    body = await _get(session, f'{base_url}/timestep-buffer', {'itemNumber': item_number},
                      retries, backoff)
    return codec.decode_floats(body)


async def load_mesh_data(base_url: str = CLIENT['base_url'], item_number: int = 1,
                         retries: int = CLIENT['retries'], backoff: float = CLIENT['retry_backoff'],
                         timeout: float = CLIENT['timeout']) -> MeshData:
    """Fetch and decode everything needed for the first render."""
    base_url = base_url.rstrip('/')
    # the codec decompresses; a bad gzip stream must surface as DecodeError
    async with aiohttp.ClientSession(auto_decompress=False,
                                     timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        descriptor = await fetch_descriptor(session, base_url, item_number, retries, backoff)
        tasks = [
            asyncio.ensure_future(fetch_vertices(session, base_url, retries, backoff)),
            asyncio.ensure_future(fetch_field(session, base_url, item_number, retries, backoff)),
        ]
        try:
            vertices, flat = await asyncio.gather(*tasks)
        except BaseException:
            # one fetch failed; the other must not outlive the session
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    expected_vertices = 9 * descriptor.triangle_count
    if vertices.shape[0] != expected_vertices:
        raise DecodeError(f'vertex buffer has {vertices.shape[0]} floats, expected {expected_vertices}')
    try:
        field = ScalarFieldSeries.from_flat(flat, descriptor)
    except ValueError as e:
        raise DecodeError(str(e)) from e
    logger.info('Loaded %d triangles x %d timesteps from %s',
                descriptor.triangle_count, descriptor.time_step_count, base_url)
    return MeshData(descriptor=descriptor, vertices=vertices, field=field)
