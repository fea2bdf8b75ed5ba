"""
codec.py

Wire format shared by the service and the client: a flat little-endian
float32 array, gzip compressed, with no header. Counts travel separately in
the mesh descriptor.
"""
import gzip
import zlib

import numpy as np

from meshcast.config import ENCODING

CONTENT_TYPE = 'application/octet-stream'
CONTENT_ENCODING = 'gzip'
WIRE_DTYPE = np.dtype('<f4')


class LoadError(RuntimeError):
    """Base class for client-side buffer loading failures."""


class DecodeError(LoadError):
    """Payload arrived but is malformed, truncated or the wrong size."""


def encode(raw: bytes, level: int = ENCODING['gzip_level']) -> bytes:
    return gzip.compress(bytes(raw), compresslevel=level)


def decode(payload: bytes) -> bytes:
    try:
        return gzip.decompress(payload)
    except (OSError, EOFError, zlib.error) as e:
        # gzip.BadGzipFile subclasses OSError
        raise DecodeError(f'cannot decompress {len(payload)} byte payload: {e}') from e


def pack_floats(values) -> bytes:
    return np.ascontiguousarray(values, dtype=WIRE_DTYPE).tobytes()


def unpack_floats(raw: bytes) -> np.ndarray:
    if len(raw) % WIRE_DTYPE.itemsize:
        raise DecodeError(f'payload length {len(raw)} is not a multiple of {WIRE_DTYPE.itemsize}')
    return np.frombuffer(raw, dtype=WIRE_DTYPE).astype(np.float32)


def encode_floats(values) -> bytes:
    return encode(pack_floats(values))


def decode_floats(payload: bytes) -> np.ndarray:
    return unpack_floats(decode(payload))


def wire_headers(filename: str) -> dict:
    return {
        'Content-Type': CONTENT_TYPE,
        'Content-Encoding': CONTENT_ENCODING,
        'Content-Disposition': f'attachment; filename="{filename}"',
    }
