"""Command line driver for the capture -> analyze -> persist pipeline.

Usage:
  python -m receipt_capture.cli scan path/to/receipt.jpg --owner <owner-id>
  python -m receipt_capture.cli camera --owner <owner-id> [--facing user] [--width 1920 --height 1080]

The outcome is printed as JSON.  Exit codes: 0 saved, 1 failed or
partially saved, 2 nothing to do (validation), 130 interrupted.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from receipt_capture.core.config import settings
from receipt_capture.core.database import init_db
from receipt_capture.core.observability import init_sentry
from receipt_capture.models.enums import CameraFacing, OutcomeKind
from receipt_capture.models.schemas import IngestionOutcome
from receipt_capture.services.ingestion_service import IngestionCoordinator

logger = logging.getLogger("receipt_capture.cli")

EXIT_CODES = {
    OutcomeKind.SAVED: 0,
    OutcomeKind.PARTIAL: 1,
    OutcomeKind.FAILED: 1,
    OutcomeKind.BUSY: 1,
    OutcomeKind.VALIDATION: 2,
    OutcomeKind.PENDING: 2,
}


async def run_scan(coordinator: IngestionCoordinator, path: Path) -> IngestionOutcome:
    outcome = coordinator.select_file(path)
    if outcome.kind != OutcomeKind.PENDING:
        return outcome
    return await coordinator.analyze()


async def run_camera(
    coordinator: IngestionCoordinator,
    facing: CameraFacing,
    resolution: tuple[int, int],
    warmup: float,
) -> IngestionOutcome:
    async with coordinator:
        outcome = await coordinator.open_camera(facing, resolution)
        if outcome.kind != OutcomeKind.PENDING:
            return outcome
        outcome = await coordinator.capture_photo(timeout=warmup)
        if outcome.kind != OutcomeKind.PENDING:
            return outcome
        return await coordinator.analyze()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="receipt-capture", description="Capture, analyze and save a receipt")
    sub = ap.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Analyze and save an image file")
    scan.add_argument("path", type=Path)
    scan.add_argument("--owner", required=True, help="Owner id the receipt is saved under")

    cam = sub.add_parser("camera", help="Take a photo with the camera, then analyze and save it")
    cam.add_argument("--owner", required=True, help="Owner id the receipt is saved under")
    cam.add_argument("--facing", choices=[f.value for f in CameraFacing], default=CameraFacing.ENVIRONMENT.value)
    cam.add_argument("--width", type=int, default=settings.CAMERA_WIDTH)
    cam.add_argument("--height", type=int, default=settings.CAMERA_HEIGHT)
    cam.add_argument("--warmup", type=float, default=2.0, help="Seconds to wait for the first frame")
    return ap


async def _main(args: argparse.Namespace) -> IngestionOutcome:
    await init_db()
    coordinator = IngestionCoordinator(args.owner)
    if args.command == "scan":
        return await run_scan(coordinator, args.path)
    return await run_camera(coordinator, CameraFacing(args.facing), (args.width, args.height), args.warmup)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    init_sentry("cli")
    if args.command == "scan" and not args.path.is_file():
        print(f"No such file: {args.path}", file=sys.stderr)
        return 2
    try:
        outcome = asyncio.run(_main(args))
    except KeyboardInterrupt:
        # run_camera's context manager has already released the device
        print("Cancelled", file=sys.stderr)
        return 130
    print(json.dumps(outcome.model_dump(mode="json"), indent=2))
    return EXIT_CODES[outcome.kind]


if __name__ == "__main__":
    raise SystemExit(main())
