"""
cli.py
Turn a photo + depth map into a displaced mesh or a stack of parallax layers.

Usage:
    # Smooth displaced mesh, exported as GLB
    depth-relief photo.jpg --depth photo_depth.png --export --output ./out/

    # Parallax layers (PNG cutouts + metadata JSON)
    depth-relief photo.jpg --depth photo_depth.png --mode parallax --layers 8 --output ./out/

    # Estimate depth automatically (requires the [depth] extra)
    depth-relief photo.jpg --mode smooth --export
"""

import argparse
import sys
import traceback
from pathlib import Path
from typing import List, Optional

from .config import DEFAULT_DISPLACEMENT_SCALE, DEFAULT_LAYER_COUNT, DEPTH_MODEL, SynthesisParams
from .errors import ReliefError
from .export_glb import export_filename, export_scene_glb, write_artifact
from .generate_depth_map import DepthEstimator
from .generate_layers import layers_to_scene, save_layers, visualize_layers
from .pipeline import PARALLAX, SMOOTH, ReliefPipeline
from .pixel_buffers import extract_buffer_pair


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depth-relief",
        description="Generate 3D relief meshes and parallax layers from an image and its depth map",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Displaced mesh with GLB export
  depth-relief photo.jpg --depth photo_depth.png --scale 2.0 --export

  # Parallax layers with a debug overview sheet
  depth-relief photo.jpg --depth photo_depth.png --mode parallax --layers 6 --debug

  # Depth estimated with Depth Anything V2
  depth-relief photo.jpg --export

Modes:
  smooth     One dense grid displaced along its normal by depth (exportable)
  parallax   Flat RGBA cutout planes, one per depth bin
"""
    )

    parser.add_argument("input", help="Input color image")

    parser.add_argument(
        "--depth", "-d",
        help="Depth map path (estimated from the input if omitted)"
    )

    parser.add_argument(
        "--mode", "-m",
        choices=[SMOOTH, PARALLAX],
        default=SMOOTH,
        help="Synthesis mode (default: smooth)"
    )

    parser.add_argument(
        "--scale", "-s",
        type=float, default=DEFAULT_DISPLACEMENT_SCALE,
        help=f"Displacement scale, >= 0 (default: {DEFAULT_DISPLACEMENT_SCALE})"
    )

    parser.add_argument(
        "--layers", "-l",
        type=int, default=DEFAULT_LAYER_COUNT,
        help=f"Number of depth layers in parallax mode, >= 2 (default: {DEFAULT_LAYER_COUNT})"
    )

    parser.add_argument(
        "--output", "-o",
        default=".",
        help="Output directory (default: current directory)"
    )

    parser.add_argument(
        "--export",
        action="store_true",
        help="Write a .glb asset"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Write a layer overview PNG (parallax mode)"
    )

    parser.add_argument(
        "--model",
        default=DEPTH_MODEL,
        help=f"Depth model used when --depth is omitted (default: {DEPTH_MODEL})"
    )

    return parser


def run(args: argparse.Namespace) -> int:
    params = SynthesisParams(displacement_scale=args.scale, layer_count=args.layers)

    print(f"\n{'='*60}")
    print(f"DEPTH RELIEF ({args.mode})")
    print(f"  Image: {args.input}")
    print(f"  Depth: {args.depth or 'auto-generated'}")
    print(f"{'='*60}\n")

    estimator = None if args.depth else DepthEstimator(model=args.model)
    try:
        pipeline = ReliefPipeline()
        depth = args.depth
        if depth is None:
            depth = estimator.estimate(args.input)

        result = pipeline.synthesize(args.input, depth, mode=args.mode, params=params)
        output_dir = Path(args.output)

        if args.mode == SMOOTH:
            stats = result.to_dict()
            print(f"\n  Segments: {stats['segments']}")
            print(f"  Vertices: {stats['vertex_count']:,}")
            print(f"  Faces: {stats['face_count']:,}")
            if args.export:
                pipeline.save_export(str(output_dir))
        else:
            base_name = Path(args.input).stem
            save_layers(result, str(output_dir), base_name)
            if args.debug:
                visualize_layers(result, extract_buffer_pair(args.input, depth), str(output_dir))
            if args.export:
                data = export_scene_glb(layers_to_scene(result))
                write_artifact(data, str(output_dir), export_filename().replace(".glb", "-layers.glb"))
    finally:
        if estimator is not None:
            estimator.close()

    print(f"\n{'='*60}")
    print("✓ COMPLETE")
    print(f"{'='*60}\n")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return run(args)
    except ReliefError as e:
        print(f"\n✗ Error: {e}")
        return 1
    except Exception as e:
        print(f"\n✗ Error: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
