# -*- coding: utf-8 -*-

"""
meshcast/config.py

This module centralizes the configuration parameters for the mesh streaming
service and the GPU scalar-field layer. Keeping the encoding constants, the
transport settings and the render defaults in one place keeps the server, the
client and the viewer consistent with each other.

Contents:
---------
1. SERVER:
   - Where the service listens, which mesh source it serves, and how many worker
     threads may run encodings concurrently.

2. ENCODING:
   - Target geographic reference for reprojection.
   - Significant digits kept by the lossy timestep compression. Lower values
     shrink the gzip payload further; 2 is enough for colour-banded display.
   - The missing-data sentinel and the neutral colour it renders with.

3. CLIENT:
   - Base URL of the service and the bounded retry policy for buffer fetches.

4. RENDER:
   - Split-view divider width, depth exaggeration defaults, animation cadence,
     window size and camera pitch.

5. COLOR BANDS:
   - ANIMATION_BANDS: concentration style palette (0 .. 2).
   - BATHYMETRY_BANDS: elevation style palette (-50 .. 5).
   Each entry is (threshold, 'rgba(r, g, b, a)').

6. PALETTES:
   - Named palettes selectable from the CLI, each with the depth scale that
     suits its value range. Elevations in metres need a far larger factor than
     concentrations.

Usage:
------
    from meshcast.config import ENCODING, RENDER

CLI flags in meshcast.cli override these values at start-up.
"""

# ───────────────────────────────────────────────────────────────────────────────
# 1) SERVICE
# ───────────────────────────────────────────────────────────────────────────────
SERVER = {
    'host': '127.0.0.1',
    'port': 7119,
    'source_path': './Data/mesh_source.h5',   # HDF5 mesh source served by default
    'route_prefix': '/api/Dfsu',
    'worker_threads': 4,                      # encodings running concurrently
    'default_item': 1,                        # itemNumber when the query omits it
}

# ───────────────────────────────────────────────────────────────────────────────
# 2) ENCODING
# ───────────────────────────────────────────────────────────────────────────────
ENCODING = {
    'target_crs': 'EPSG:4326',
    'significant_digits': 2,
    'sentinel': -999.9,
    'default_delete_value': 1e-35,
    'neutral_color': (0.5, 0.5, 0.5, 1.0),
    'gzip_level': 9,
}

# ───────────────────────────────────────────────────────────────────────────────
# 3) CLIENT
# ───────────────────────────────────────────────────────────────────────────────
CLIENT = {
    'base_url': 'http://127.0.0.1:7119/api/Dfsu',
    'retries': 3,
    'retry_backoff': 0.5,     # seconds, doubled after each failed attempt
    'timeout': 60.0,          # seconds per request
}

# ───────────────────────────────────────────────────────────────────────────────
# 4) RENDERING
# ───────────────────────────────────────────────────────────────────────────────
RENDER = {
    'line_width': 2.0,          # split-view divider half width (px)
    'show_depth': False,
    'depth_scale': 0.03,
    'frame_interval': 1.0 / 30.0,
    'window_size': (1280, 720),
    'pitch_deg': 30.0,
    'clear_color': (0.1, 0.1, 0.15),
}

# ───────────────────────────────────────────────────────────────────────────────
# 5) COLOR BANDS
# ───────────────────────────────────────────────────────────────────────────────
ANIMATION_BANDS = [
    (0.0, 'rgba(  0,  65, 101, 1)'),
    (0.1, 'rgba( 39, 116,  92, 1)'),
    (0.25, 'rgba( 77, 167,  85, 1)'),
    (0.5, 'rgba(131, 188,  78, 1)'),
    (1.0, 'rgba(191, 199,  72, 1)'),
    (1.25, 'rgba(226, 190,  70, 1)'),
    (1.5, 'rgba(229, 158,  73, 1)'),
    (2.0, 'rgba(220, 127,  78, 1)'),
]

BATHYMETRY_BANDS = [
    (-50.0, 'rgba(  0,  65, 101, 1)'),
    (-35.0, 'rgba( 39, 116,  92, 1)'),
    (-20.0, 'rgba( 77, 167,  85, 1)'),
    (-15.0, 'rgba(131, 188,  78, 1)'),
    (-10.0, 'rgba(191, 199,  72, 1)'),
    (-5.0, 'rgba(226, 190,  70, 1)'),
    (-1.0, 'rgba(229, 158,  73, 1)'),
    (5.0, 'rgba(220, 127,  78, 1)'),
]

# ───────────────────────────────────────────────────────────────────────────────
# 6) PALETTES
# ───────────────────────────────────────────────────────────────────────────────
PALETTES = {
    'animation': {'bands': ANIMATION_BANDS, 'depth_scale': RENDER['depth_scale']},
    'bathymetry': {'bands': BATHYMETRY_BANDS, 'depth_scale': 50.0},
}
