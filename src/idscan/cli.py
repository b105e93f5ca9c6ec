# src/idscan/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from queue import Queue
from typing import List, Optional

from tqdm import tqdm

from .config import ScanConfig
from .extract import extract_id
from .logger import configure_worker_logging, setup_logging
from .models import ErrorKind, ScanResult

__all__ = ["scan_files", "capture_once", "main"]

logger = logging.getLogger("idscan")

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".webp")


# -------------------------------
# Helpers
# -------------------------------

def _config_from_args(args: argparse.Namespace) -> ScanConfig:
    cfg_dict = {
        "data_dir": getattr(args, "data_dir", None),
        "cache_dir": getattr(args, "cache_dir", None),
        "bundled_tessdata_dir": getattr(args, "tessdata_source", None),
        "device_index": getattr(args, "device", None),
        "capture_timeout": getattr(args, "timeout", None),
        "keep_captures": getattr(args, "keep_captures", None),
        "tesseract_cmd": getattr(args, "tesseract_cmd", None),
        "psm": getattr(args, "psm", None),
    }
    cfg_dict = {k: v for k, v in cfg_dict.items() if v is not None}
    return ScanConfig.from_dict(cfg_dict)


def _build_pipeline(config: ScanConfig, camera=None):
    # local imports keep `idscan extract` usable without tesseract/opencv set up
    from .ocr_backends.tesseract_backend import TesseractOCREngine
    from .pipeline import CapturePipeline

    engine = TesseractOCREngine.from_config(config)
    return CapturePipeline(config, engine, camera=camera)


def _collect_images(paths: List[Path]) -> List[Path]:
    out: List[Path] = []
    for p in paths:
        if p.is_dir():
            out.extend(sorted(f for f in p.rglob("*") if f.suffix.lower() in IMAGE_SUFFIXES))
        else:
            out.append(p)
    return out


# -------------------------------
# Commands
# -------------------------------

def scan_files(config: ScanConfig, paths: List[Path], output_path: Optional[Path] = None) -> List[ScanResult]:
    """OCR existing image files one by one, optionally appending JSONL records."""
    images = _collect_images(paths)
    logger.info("Scanning %d image(s)", len(images))
    results: List[ScanResult] = []

    outfile = None
    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        outfile = open(output_path, "a", encoding="utf-8")
    try:
        with _build_pipeline(config) as pipeline:
            for image_path in tqdm(images, desc="Scanning", disable=len(images) < 2):
                result = pipeline.process_file(image_path)
                results.append(result)
                if outfile:
                    outfile.write(json.dumps(result.to_dict(), ensure_ascii=False) + "\n")
    finally:
        if outfile:
            outfile.close()
    return results


def capture_once(config: ScanConfig, warmup: float = 1.0) -> ScanResult:
    """Open the camera, take one picture and run it through the pipeline."""
    from .camera import CameraSession
    from .exceptions import CameraBindError, PermissionDeniedError
    from .utils import require_camera_permission

    try:
        require_camera_permission(config.device_index)
    except PermissionDeniedError as e:
        logger.error("%s", e)
        return ScanResult.failed(ErrorKind.PERMISSION_DENIED, str(e))

    with CameraSession(
        device_index=config.device_index,
        jpeg_quality=config.jpeg_quality,
        first_frame_timeout=config.capture_timeout,
    ) as camera:
        try:
            camera.start().result(timeout=config.capture_timeout)
        except CameraBindError as e:
            return ScanResult.failed(ErrorKind.CAMERA_BIND, str(e))
        except FutureTimeoutError:
            return ScanResult.failed(ErrorKind.CAMERA_BIND, "camera did not bind in time")
        # let exposure settle before the still
        if warmup > 0:
            time.sleep(warmup)
        with _build_pipeline(config, camera=camera) as pipeline:
            return pipeline.run_once()


def _print_result(result: ScanResult) -> int:
    if result.ok:
        print(result.output)
        return 0
    print(result.message, file=sys.stderr)
    return 1


# -------------------------------
# CLI parsing
# -------------------------------

def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--data-dir", type=Path, help="Persistent directory for staged OCR language data")
    p.add_argument("--tessdata-source", type=Path, help="Directory holding the bundled *.traineddata files")
    p.add_argument("--tesseract-cmd", type=str, help="Path to the tesseract binary")
    p.add_argument("--psm", type=int, help="Tesseract page segmentation mode")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="idscan, capture a document and read its ID number")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file")
    subparsers = parser.add_subparsers(dest="command")

    cp = subparsers.add_parser("capture", help="Take one picture with the camera and OCR it")
    _add_common_options(cp)
    cp.add_argument("-d", "--device", type=int, help="Camera device index (default 0)")
    cp.add_argument("--cache-dir", type=Path, help="Directory for captured frames")
    cp.add_argument("--timeout", type=float, help="Seconds to wait for the camera (default 10)")
    cp.add_argument("--keep-captures", action="store_true", default=None, help="Keep the captured JPEG")
    cp.add_argument("--warmup", type=float, default=1.0, help="Seconds of preview before capturing")

    sp = subparsers.add_parser("scan", help="OCR existing image files or directories")
    _add_common_options(sp)
    sp.add_argument("paths", nargs="+", type=Path, help="Image files or directories")
    sp.add_argument("-o", "--output-path", type=Path, help="Append one JSONL record per image here")

    ep = subparsers.add_parser("extract", help="Find the ID number in text (reads stdin without TEXT)")
    ep.add_argument("text", nargs="?", help="Text to search")

    return parser.parse_args(argv)


# -------------------------------
# Entry points
# -------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    if args.command is None:
        print("Usage:\n  idscan capture [--device 0]\n  idscan scan <image>...\n  idscan extract [TEXT]")
        return 2

    if args.command == "extract":
        text = args.text if args.text is not None else sys.stdin.read()
        id_number = extract_id(text)
        if id_number is None:
            return 1
        print(id_number)
        return 0

    log_queue: Queue = Queue(-1)
    listener = setup_logging(
        log_queue,
        level=logging.DEBUG if args.verbose else logging.WARNING,
        file_path=args.log_file,
        file_level=logging.DEBUG,
    )
    configure_worker_logging(log_queue)
    listener.start()

    try:
        try:
            config = _config_from_args(args)
        except ValueError as e:
            raise SystemExit(f"Invalid configuration: {e}")

        if args.command == "capture":
            return _print_result(capture_once(config, warmup=args.warmup))

        if args.command == "scan":
            results = scan_files(config, args.paths, args.output_path)
            codes = []
            for r in results:
                if len(results) > 1:
                    print(f"== {r.source_path}")
                codes.append(_print_result(r))
            return max(codes, default=0)
    finally:
        listener.stop()

    return 2


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
