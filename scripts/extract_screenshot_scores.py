from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from scoreshot.image_preparation import ImageLimits, ImageValidationError, prepare_image  # noqa: E402
from scoreshot.score_extraction import ScreenshotScoreService  # noqa: E402
from scoreshot.score_models import RawUpload  # noqa: E402
from scoreshot.score_normalization import ScoreParseError  # noqa: E402
from scoreshot.vision_providers import VisionProviderError  # noqa: E402


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract Wingspan scores from an end-of-game screenshot for review.",
    )
    parser.add_argument("--image", type=Path, required=True, help="Path to the screenshot (PNG or JPEG).")
    parser.add_argument(
        "--media-type",
        default=None,
        help="Declared media type. Guessed from the file extension when omitted.",
    )
    parser.add_argument(
        "--prepare-only",
        action="store_true",
        help="Validate and resize the image without calling the vision service.",
    )
    parser.add_argument("--output", type=Path, default=None, help="Write the JSON result to this path.")
    parser.add_argument("--verbose", action="store_true", help="Log pipeline progress to stderr.")
    return parser


def main() -> int:
    args = _parser().parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.image.exists():
        raise SystemExit(f"Image not found: {args.image}")

    media_type = args.media_type or mimetypes.guess_type(args.image.name)[0] or ""
    upload = RawUpload(
        content=args.image.read_bytes(),
        media_type=media_type,
        filename=args.image.name,
    )
    limits = ImageLimits.from_env()

    try:
        if args.prepare_only:
            prepared = prepare_image(upload, limits)
            summary = {
                "original_bytes": upload.size,
                "prepared_bytes": prepared.size,
                "max_raw_bytes": limits.max_raw_bytes,
                "media_type": prepared.media_type,
                "resized": prepared.resized,
                "dimensions": [prepared.width, prepared.height] if prepared.resized else None,
            }
        else:
            result = ScreenshotScoreService(limits=limits).extract(upload)
            summary = result.to_dict()
            summary["metadata"] = result.metadata
    except (ImageValidationError, VisionProviderError, ScoreParseError) as exc:
        raise SystemExit(f"{exc.__class__.__name__}: {exc}")

    rendered = json.dumps(summary, indent=2)
    if args.output is not None:
        args.output.write_text(rendered, encoding="utf-8")
    print(rendered)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
