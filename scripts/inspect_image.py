#!/usr/bin/env python3
"""
Image Header Inspector
Prints the header metrics of a local image and the aspect ratio it resolves to.

Usage:
    python scripts/inspect_image.py photo.jpg
    python scripts/inspect_image.py photo.jpg --ratio 16:9
    python scripts/inspect_image.py photo.webp --catalog 1:1 3:4 4:3 9:16 16:9
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceswap_api.core.config import settings
from faceswap_api.schemas.image import AspectRatioCatalog, ImageRef
from faceswap_api.services.aspect_ratio import AspectRatioResolver
from faceswap_api.services.image_inspector import inspect_image


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger("inspect_image")


def main():
    parser = argparse.ArgumentParser(description="Inspect image headers and resolve an aspect ratio")
    parser.add_argument("path", help="Path to a JPEG, PNG or WebP file")
    parser.add_argument("--ratio", default="original", help="Requested ratio (W:H or 'original')")
    parser.add_argument(
        "--catalog",
        nargs="+",
        default=None,
        help="Supported ratios (default: ASPECT_RATIOS setting)"
    )
    parser.add_argument("--default", default=None, help="Fallback ratio (default: first catalog entry or setting)")

    args = parser.parse_args()

    with open(args.path, "rb") as f:
        data = f.read()

    ratios = args.catalog or list(settings.ASPECT_RATIOS)
    default = args.default or (settings.DEFAULT_ASPECT_RATIO if settings.DEFAULT_ASPECT_RATIO in ratios else ratios[0])
    catalog = AspectRatioCatalog(ratios=ratios, default=default)

    metrics = inspect_image(data)
    if metrics is None:
        logger.warning(f"Unrecognized or corrupt image header: {args.path}")
        print("format:      unknown")
    else:
        print(f"format:      {metrics.format}")
        print(f"size:        {metrics.width}x{metrics.height}")
        print(f"raw size:    {metrics.raw_width}x{metrics.raw_height}")
        print(f"orientation: {metrics.orientation} (rotated={metrics.rotated})")

    ratio = asyncio.run(AspectRatioResolver().resolve(args.ratio, ImageRef(data=data), catalog))
    print(f"ratio:       {ratio}")
    return 0 if metrics is not None else 1


if __name__ == "__main__":
    sys.exit(main())
