"""Redact faces in local image files.

Reads images from files or directories, runs the redaction pipeline and
writes ``processed_<name>`` files and/or a zip archive::

    face-redactor photos/ extra.jpg --output out_dir --zip processed.zip

The script does not interact with Azure storage.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .archive import archive_entries, build_zip
from .batch import BatchRunner
from .detector import DetrDetector
from .errors import ConfigurationError
from .pipeline import RedactionPipeline
from .redaction_types import AnonymizeMode, ItemOutcome
from .settings import RedactionSettings, parse_labels, settings_from_env

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tif", ".tiff"}

NOTICE = (
    "Note: face detection can miss faces. "
    "Check every output before sharing it."
)


def collect_inputs(paths: Sequence[str]) -> List[Path]:
    """Expand directories into their image files; keep explicit files as given."""
    found: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            found.extend(
                p
                for p in sorted(path.iterdir())
                if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
            )
        else:
            found.append(path)
    return found


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Blur or pixelate faces and downscale photos for archiving"
    )
    parser.add_argument("inputs", nargs="+", help="Image files or directories")
    parser.add_argument("--output", help="Directory to save processed images")
    parser.add_argument("--zip", dest="zip_path", help="Write all results to this zip")
    parser.add_argument(
        "--mode", choices=[m.value for m in AnonymizeMode], help="Anonymization policy"
    )
    parser.add_argument("--block-size", type=int, help="Pixelation block edge in pixels")
    parser.add_argument("--blur-radius", type=float, help="Blur standard deviation")
    parser.add_argument(
        "--face-fraction", type=float, help="Top share of each person box to redact"
    )
    parser.add_argument("--target-ppi", type=float, help="Output density")
    parser.add_argument("--source-ppi", type=float, help="Assumed input density")
    parser.add_argument("--threshold", type=float, help="Detection score threshold")
    parser.add_argument("--labels", help="Comma-separated accepted label patterns")
    parser.add_argument("--quality", type=float, help="Output quality in (0, 1]")
    parser.add_argument("--format", choices=["jpeg", "png"], help="Output format")
    parser.add_argument("--model", help="Hugging Face detection model id")
    parser.add_argument("--workers", type=int, help="Parallel workers")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def settings_from_args(
    args: argparse.Namespace, base: Optional[RedactionSettings] = None
) -> RedactionSettings:
    overrides: Dict[str, object] = {
        "pixel_block_size": args.block_size,
        "blur_radius": args.blur_radius,
        "face_fraction": args.face_fraction,
        "target_ppi": args.target_ppi,
        "source_ppi": args.source_ppi,
        "detection_threshold": args.threshold,
        "output_quality": args.quality,
        "output_format": args.format,
        "detector_model_id": args.model,
        "max_workers": args.workers,
    }
    if args.mode:
        overrides["anonymize_mode"] = AnonymizeMode(args.mode)
    if args.labels:
        overrides["accepted_labels"] = parse_labels(args.labels)
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return replace(base or settings_from_env(), **overrides).validate()


def _print_outcome(outcome: ItemOutcome) -> None:
    if outcome.result is not None:
        result = outcome.result
        print(
            f"[ok] {outcome.source_name}: {result.faces_detected} region(s) redacted, "
            f"{result.width}x{result.height}"
        )
    elif outcome.failure is not None:
        failure = outcome.failure
        print(
            f"[failed] {outcome.source_name}: {failure.kind} during "
            f"{failure.stage.value}: {failure.message}"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.output and not args.zip_path:
        parser.error("provide --output, --zip, or both")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = settings_from_args(args)
    except ConfigurationError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        return 2

    files: List[Tuple[str, bytes]] = []
    unreadable = 0
    for path in collect_inputs(args.inputs):
        try:
            files.append((path.name, path.read_bytes()))
        except OSError as exc:
            print(f"[failed] {path}: cannot read file: {exc}")
            unreadable += 1

    if not files:
        print("No input images found.")
        return 1

    detector = DetrDetector(
        settings.detector_model_id, threshold=settings.detection_threshold
    )
    runner = BatchRunner(RedactionPipeline(detector, settings))
    try:
        batch = runner.run(files, on_outcome=_print_outcome)
    except KeyboardInterrupt:
        runner.cancel()
        print("Cancelled.")
        return 130

    entries = archive_entries(batch.results)
    if args.output:
        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)
        for name, data in entries.items():
            out_path = output_dir / name
            out_path.write_bytes(data)
            print(f"Saved {out_path}")
    if args.zip_path and entries:
        zip_path = Path(args.zip_path)
        zip_path.write_bytes(build_zip(entries))
        print(f"Saved {len(entries)} image(s) to {zip_path}")

    print(f"{batch.succeeded} processed, {batch.failed + unreadable} failed.")
    print(NOTICE)
    return 1 if batch.failed or unreadable else 0


if __name__ == "__main__":
    sys.exit(main())
