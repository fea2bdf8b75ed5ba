"""Command line entry point.

    meshcast demo -o Data/mesh_source.h5        write a synthetic mesh source
    meshcast serve -s Data/mesh_source.h5       run the buffer service
    meshcast view --url http://host:7119/api/Dfsu
    meshcast view --source Data/mesh_source.h5  encode in-process, no service
    meshcast snapshot --source ... -o frame.png -t 10
    meshcast snapshot --source ... --palette bathymetry --mode split --depth --legend
"""
import argparse
import asyncio
import logging
import os
import sys

from meshcast.config import CLIENT, ENCODING, PALETTES, RENDER, SERVER
from meshcast.io.mesh_source import MeshSourceError, make_demo_source, write_mesh_source
from meshcast.mesh.codec import LoadError
from meshcast.mesh.extractor import ReprojectionError
from meshcast.render import shaders
from meshcast.render.color_mapper import ColorBands
from meshcast.render.layer import ViewState
from meshcast.utils import configure_logging

logger = logging.getLogger(__name__)


def _add_data_args(parser):
    src = parser.add_mutually_exclusive_group()
    src.add_argument('--url', type=str, default=None,
                     help=f"service base URL (default {CLIENT['base_url']})")
    src.add_argument('--source', '-s', type=str, default=None,
                     help='read and encode a local HDF5 mesh source instead of calling the service')
    parser.add_argument('--item', '-i', type=int, default=SERVER['default_item'], help='1-based result item number')
    parser.add_argument('--palette', choices=sorted(PALETTES), default='animation')
    parser.add_argument('--color-step', type=float, default=None,
                        help='respace the palette thresholds to 0, step, 2*step, ...')
    parser.add_argument('--mode', choices=shaders.MODES, default=shaders.SINGLE)
    parser.add_argument('--pitch', type=float, default=None, help='camera pitch in degrees')
    parser.add_argument('--depth-scale', type=float, default=None,
                        help='elevation exaggeration per unit value (default depends on --palette)')


def depth_scale(args) -> float:
    if args.depth_scale is not None:
        return args.depth_scale
    return PALETTES[args.palette]['depth_scale']


def _load_scene(args):
    # render imports pull in moderngl; keep them out of `serve` and `demo`
    from meshcast.render.scene import MeshScene, local_mesh_data
    from meshcast.service.client import load_mesh_data

    if args.source:
        data = local_mesh_data(args.source, args.item)
    else:
        data = asyncio.run(load_mesh_data(args.url or CLIENT['base_url'], args.item))
    bands = ColorBands.from_css(PALETTES[args.palette]['bands'])
    if args.color_step:
        bands = bands.with_step(args.color_step)
    return MeshScene(data, bands, mode=args.mode)


def cmd_demo(args) -> int:
    source = make_demo_source(nx=args.nx, ny=args.ny, time_steps=args.timesteps)
    out_dir = os.path.dirname(args.out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    write_mesh_source(args.out, source)
    print(f'Wrote {source.triangle_count} triangles x {args.timesteps} timesteps to {args.out}')
    return 0


def cmd_serve(args) -> int:
    from meshcast.service.server import run_server

    run_server(args.source, host=args.host, port=args.port, worker_threads=args.workers)
    return 0


def cmd_view(args) -> int:
    from meshcast.render.viewer import run_viewer

    scene = _load_scene(args)
    pitch = RENDER['pitch_deg'] if args.pitch is None else args.pitch
    run_viewer(scene, pitch_deg=pitch, interval=args.interval, depth_scale=depth_scale(args))
    return 0


def cmd_snapshot(args) -> int:
    from meshcast.render.snapshot import render_snapshot

    scene = _load_scene(args)
    width, height = (int(v) for v in args.size.lower().split('x'))
    view = ViewState(show_depth=args.depth, depth_scale=depth_scale(args), pointer_x=width / 2.0)
    render_snapshot(scene, args.out, timestep=args.timestep, size=(width, height), view=view,
                    pitch_deg=args.pitch or 0.0, legend=args.legend)
    print('Saved', args.out)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='meshcast',
                                     description='Serve and render animated scalar fields on unstructured meshes')
    parser.add_argument('--verbose', '-v', action='store_true', help='debug logging')
    parser.add_argument('--log-file', type=str, default=None)
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('demo', help='write a synthetic mesh source')
    p.add_argument('--out', '-o', type=str, default=SERVER['source_path'])
    p.add_argument('--nx', type=int, default=40)
    p.add_argument('--ny', type=int, default=24)
    p.add_argument('--timesteps', '-t', type=int, default=48)
    p.set_defaults(func=cmd_demo)

    p = sub.add_parser('serve', help='run the buffer service')
    p.add_argument('--source', '-s', type=str, default=SERVER['source_path'])
    p.add_argument('--host', type=str, default=SERVER['host'])
    p.add_argument('--port', type=int, default=SERVER['port'])
    p.add_argument('--workers', type=int, default=SERVER['worker_threads'])
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser('view', help='open the interactive viewer')
    _add_data_args(p)
    p.add_argument('--interval', type=float, default=RENDER['frame_interval'], help='seconds per timestep')
    p.set_defaults(func=cmd_view)

    p = sub.add_parser('snapshot', help='render one timestep to a PNG offscreen')
    _add_data_args(p)
    p.add_argument('--out', '-o', type=str, default='meshcast_snapshot.png')
    p.add_argument('--timestep', '-t', type=int, default=0)
    p.add_argument('--size', type=str, default='{}x{}'.format(*RENDER['window_size']))
    p.add_argument('--depth', action='store_true', help='exaggerate elevation by value')
    p.add_argument('--legend', action='store_true', help='draw the palette ramp in the bottom-left corner')
    p.set_defaults(func=cmd_snapshot)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    logger.debug('Target CRS %s, %s significant digits', ENCODING['target_crs'], ENCODING['significant_digits'])
    try:
        return args.func(args)
    except (MeshSourceError, ReprojectionError, LoadError) as e:
        logger.error('%s: %s', type(e).__name__, e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
