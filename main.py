"""
main.py — single entry point.

Plays the part of the app layer around the detection core: loads a frame,
taps it, shows the result and appends it to the scan history.

  tapscan detect photo.jpg --tap 540 960 --view-size 1080 1920
  tapscan history --period week
  tapscan stats --period month

Ctrl-C cancels the request in flight and exits quietly.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import config

# Log file lives in the same data/ directory as the history database so that a
# single volume mount captures both.
_data_dir = Path(os.getenv("DATA_DIR", "data"))
_data_dir.mkdir(parents=True, exist_ok=True)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(str(_data_dir / "tapscan.log"), encoding="utf-8"),
        ],
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_detector():
    """Wire backends from config: the remote one only when a key is configured."""
    from backends.local_backend import LocalBackend
    from detector import HybridDetector

    local = LocalBackend(confidence_floor=config.LOCAL_CONFIDENCE_FLOOR)
    remote = None
    if config.credential_configured(config.GOOGLE_CLOUD_VISION_API_KEY):
        from backends.remote_backend import RemoteBackend
        remote = RemoteBackend(
            api_key=config.GOOGLE_CLOUD_VISION_API_KEY,
            timeout=config.REMOTE_TIMEOUT_SECONDS,
            include_text_and_logo=config.INCLUDE_TEXT_AND_LOGO,
        )
    return HybridDetector(local=local, remote=remote)


# ── Output ────────────────────────────────────────────────────────────────────

def format_result(result, show_confidence: bool = True) -> str:
    kind = "🛒 Product" if result.is_product else "🌿 Object"
    head = f"{kind}: {result.main_label}"
    if show_confidence:
        head += f" ({round(result.confidence * 100)}%)"
    lines = [head]
    if result.secondary_labels:
        lines.append("Also: " + ", ".join(result.secondary_labels))
    for link in result.shopping_links:
        lines.append(f"  [{link.source}] {link.title}\n    {link.url}")
    return "\n".join(lines)


def format_stats(stats: dict, period: str) -> str:
    lines = [
        f"Scans ({period}): {stats['total_scans']}",
        f"Products found: {stats['product_scans']}",
        f"Average confidence: {stats['average_confidence']}%",
        f"Unique objects: {stats['unique_objects']}",
    ]
    if stats["top_objects"]:
        lines.append("Top objects:")
        lines += [f"  {name} × {count}" for name, count in stats["top_objects"]]
    return "\n".join(lines)


# ── Commands ──────────────────────────────────────────────────────────────────

async def run_detect(args: argparse.Namespace) -> int:
    import history
    from backends.base import CancelToken
    from errors import DetectionError, user_message
    from frame import Frame
    from region import Point, Size

    zoom = min(max(args.zoom, config.MIN_ZOOM), config.MAX_ZOOM) if args.zoom is not None else None
    cfg = config.detector_config(
        prefer_remote=args.prefer_remote,
        zoom_factor=zoom,
        auto_zoom_enabled=False if args.no_zoom else None,
    )

    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
        handles_sigint = True
    except (NotImplementedError, RuntimeError, ValueError):
        handles_sigint = False    # Windows loops, or not the main thread

    detector = build_detector()
    try:
        frame = Frame.from_file(args.image)
        view = Size(*args.view_size) if args.view_size else frame.size
        tap = Point(*args.tap) if args.tap else Point(view.width / 2, view.height / 2)
        result = await detector.detect(frame, tap, view, cfg, cancel)
    except DetectionError as exc:
        message = user_message(exc)
        if message is None:
            return 130
        logger.info("Detection failed: %s", exc)
        print(f"❌ {message}")
        return 1
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    print(format_result(result, show_confidence=not args.hide_confidence))

    if config.SAVE_HISTORY and not args.no_history:
        await history.init_db()
        await history.append_scan(history.record_from_result(result))
    return 0


async def run_history(args: argparse.Namespace) -> int:
    import history
    await history.init_db()
    scans = await history.get_scans(since=history.since_for(args.period), limit=args.limit)
    if not scans:
        print("No scans yet. Start scanning objects to build your history.")
        return 0
    for scan in scans:
        marker = "🟣" if scan.is_product else "🔵"
        when = scan.scanned_at.astimezone().strftime("%Y-%m-%d %H:%M")
        print(f"{marker} {when}  {scan.object_name} ({round(scan.confidence * 100)}%)")
    return 0


async def run_stats(args: argparse.Namespace) -> int:
    import history
    await history.init_db()
    stats = await history.get_stats(since=history.since_for(args.period))
    print(format_stats(stats, args.period))
    return 0


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tapscan", description="Identify the object under a tap.")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="identify the object at a point of an image")
    detect.add_argument("image", type=Path)
    detect.add_argument("--tap", nargs=2, type=float, metavar=("X", "Y"),
                        help="tap point in view coordinates (default: centre)")
    detect.add_argument("--view-size", nargs=2, type=_positive_float, metavar=("W", "H"),
                        help="size of the view the tap was made in (default: image size)")
    detect.add_argument("--zoom", type=float, default=None,
                        help=f"crop zoom factor, {config.MIN_ZOOM}–{config.MAX_ZOOM}")
    detect.add_argument("--no-zoom", action="store_true", help="send the whole frame")
    remote = detect.add_mutually_exclusive_group()
    remote.add_argument("--prefer-remote", dest="prefer_remote", action="store_true", default=None)
    remote.add_argument("--local-only", dest="prefer_remote", action="store_false", default=None)
    detect.add_argument("--no-history", action="store_true", help="do not save this scan")
    detect.add_argument("--hide-confidence", action="store_true")
    detect.set_defaults(handler=run_detect)

    hist = sub.add_parser("history", help="list saved scans")
    hist.add_argument("--period", choices=("today", "week", "month", "all"), default="all")
    hist.add_argument("--limit", type=int, default=20)
    hist.set_defaults(handler=run_history)

    stats = sub.add_parser("stats", help="scan analytics")
    stats.add_argument("--period", choices=("today", "week", "month", "all"), default="all")
    stats.set_defaults(handler=run_stats)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        return asyncio.run(args.handler(args))
    except Exception as exc:
        logger.exception("Fatal error: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
