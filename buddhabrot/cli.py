from __future__ import annotations

import argparse
import os
import subprocess
from typing import Any, Dict, Optional

from tqdm import tqdm

from buddhabrot.config import load_config, normalise_config
from buddhabrot.controller import JobStatus, RenderJobController
from buddhabrot.errors import ExportFailure, InvalidParameters
from buddhabrot.params import ColorScheme, get_presets
from buddhabrot.util.logging_setup import (
    configure_root_logging,
    create_log_queue,
    get_logger,
    parse_level,
    start_queue_listener,
)
from buddhabrot.util.manifest import build_manifest, write_manifest

# CLI flag -> RenderParameters field
_PARAM_FLAGS = {
    "iterations": "iterations",
    "samples": "samples",
    "zoom": "zoom",
    "center_x": "center_x",
    "center_y": "center_y",
    "color_scheme": "color_scheme",
}
_CONFIG_FLAGS = ("preset", "width", "height", "seed", "batch_size", "workers", "output", "manifest")


def _git_commit() -> Optional[str]:
    try:
        r = subprocess.run(["git", "rev-parse", "HEAD"], capture_output=True, text=True, check=True)
        return r.stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def _quality(text: str) -> float:
    value = float(text)
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError(f"quality must be within [0, 1], got {text}")
    return value


def _scale(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"scale must be a positive integer, got {text}")
    return value


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="buddhabrot", description="Buddhabrot trajectory density renderer.")
    p.add_argument("--config", type=str, default=None, help="Path to config JSON. If omitted, built-in defaults are used.")
    p.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level.")
    p.add_argument("--log-file", type=str, default="render.log", help="Log file path (rotating). Set empty to disable file logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("render", help="Render one image and write it to --output.")
    r.add_argument("--preset", type=str, default=None, choices=[preset.name for preset in get_presets()], help="Start from a named preset.")
    r.add_argument("--width", type=int, default=None, help="Image width in pixels.")
    r.add_argument("--height", type=int, default=None, help="Image height in pixels.")
    r.add_argument("--iterations", type=int, default=None, help="Maximum iterations per trajectory.")
    r.add_argument("--samples", type=int, default=None, help="Total number of sample points.")
    r.add_argument("--zoom", type=float, default=None, help="Zoom factor (visible span is 4/zoom).")
    r.add_argument("--center-x", type=float, default=None, help="Real part of the view centre.")
    r.add_argument("--center-y", type=float, default=None, help="Imaginary part of the view centre.")
    r.add_argument("--color-scheme", type=str, default=None, choices=[s.value for s in ColorScheme], help="Color scheme.")
    r.add_argument("--seed", type=int, default=None, help="Random seed for reproducible renders.")
    r.add_argument("--batch-size", type=int, default=None, help="Samples per batch between progress reports.")
    r.add_argument("--workers", type=int, default=None, help="Worker processes for upscaled exports.")
    r.add_argument("--format", type=str, default="raster", choices=["raster", "vector"], help="Export format.")
    r.add_argument("--image-format", type=str, default="PNG", help="Pillow container for raster output (PNG, JPEG, WEBP, ...).")
    r.add_argument("--quality", type=_quality, default=0.95, help="Export quality in [0, 1].")
    r.add_argument("--scale", type=_scale, default=1, help="Re-render at this multiple of the resolution for raster export.")
    r.add_argument("--output", type=str, default=None, help="Output file (defaults to config.output).")
    r.add_argument("--manifest", type=str, default=None, help="Run manifest path (defaults to config.manifest).")
    r.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")

    sub.add_parser("presets", help="List the built-in presets.")
    return p


def _apply_overrides(cfg: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    out = dict(cfg)
    for key in _CONFIG_FLAGS:
        value = getattr(args, key, None)
        if value is not None:
            out[key] = value
    params = dict(out.get("parameters") or {})
    for flag, field in _PARAM_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            params[field] = value
    if params:
        out["parameters"] = params
    return out


def _output_path(cfg: Dict[str, Any], args: argparse.Namespace) -> str:
    path = args.output or cfg["output"]
    if args.format == "vector" and not args.output:
        path = os.path.splitext(path)[0] + ".svg"
    return path


def _list_presets() -> int:
    for preset in get_presets():
        p = preset.parameters
        print(f"{preset.name:<10} iterations={p.iterations} samples={p.samples} zoom={p.zoom} "
              f"center=({p.center_x}, {p.center_y}) scheme={p.color_scheme.value}")
    return 0


def _render(cfg: Dict[str, Any], args: argparse.Namespace, queue, log_level: int) -> int:
    logger = get_logger()
    if args.format == "vector" and args.scale != 1:
        raise InvalidParameters("--scale only applies to raster output.")
    with RenderJobController.from_config(cfg, log_queue=queue, log_level=log_level) as controller:
        total = controller.parameters.samples
        with tqdm(total=total, unit="sample", unit_scale=True, disable=args.no_progress) as bar:
            def on_progress(progress: float, max_density: float) -> None:
                bar.update(int(round(progress * total)) - bar.n)
                bar.set_postfix(max_density=f"{max_density:.0f}")

            handle = controller.render(on_progress=on_progress)
            try:
                handle.wait()
            except KeyboardInterrupt:
                controller.cancel()
                handle.wait()
                logger.warning("Render cancelled by user at progress=%.3f", handle.progress)
                return 130

        if handle.status is not JobStatus.COMPLETE:
            logger.error("Render %s: %s", handle.status.value, handle.job.error)
            return 1

        metrics = controller.get_performance_metrics()
        logger.info("Render finished in %.2fs (%.0f samples/s, %s bytes)",
                    metrics.elapsed_seconds, metrics.samples_per_second, metrics.memory_bytes)

        data = controller.export_image(args.format, args.quality, image_format=args.image_format, scale=args.scale)
        path = _output_path(cfg, args)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.info("Image written: %s (%s bytes)", path, len(data))

        if cfg["manifest"]:
            manifest = build_manifest(
                config=cfg,
                parameters=controller.parameters.to_dict(),
                metrics=metrics.to_dict(),
                export={"format": args.format, "image_format": args.image_format, "quality": args.quality,
                        "scale": args.scale, "path": path, "bytes": len(data)},
                git_commit=_git_commit(),
            )
            write_manifest(cfg["manifest"], manifest)
            logger.info("Run manifest written: %s", cfg["manifest"])
    return 0


def main(argv: Optional[list] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    log_level = parse_level(args.log_level)
    log_file = args.log_file if args.log_file and args.log_file.strip() else None
    listener_logger = configure_root_logging(level=log_level, console=True, log_file=log_file)

    queue = create_log_queue()
    listener = start_queue_listener(queue, listener_logger)

    logger = get_logger()

    try:
        if args.cmd == "presets":
            return _list_presets()

        cfg = normalise_config(_apply_overrides(load_config(args.config), args))
        if args.cmd == "render":
            return _render(cfg, args, queue, log_level)

        raise RuntimeError("Unknown command.")
    except InvalidParameters as e:
        logger.error("Invalid parameters: %s", e)
        return 2
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    except ExportFailure as e:
        logger.error("Export failed: %s", e)
        return 1
    finally:
        listener.stop()


if __name__ == "__main__":
    raise SystemExit(main())
