#!/usr/bin/env python3
"""CLI for adding reviewed frames to the reference gallery under a species label."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from feedercam.errors import ModelLoadError
from feedercam.io_utils import setup_logging
from feedercam.recognition.embed_onnx import OnnxEmbedder
from feedercam.recognition.gallery import ReferenceGallery, add_reference_images, load_gallery, save_gallery


LOGGER = logging.getLogger("scripts.add_reference")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add images to the reference gallery")
    parser.add_argument("label", type=str, help="Species label for the images")
    parser.add_argument("images", type=Path, nargs="+", help="Image files to add")
    parser.add_argument(
        "--gallery-parquet",
        type=Path,
        default=Path("data/gallery.parquet"),
        help="Gallery parquet to update (created when missing)",
    )
    parser.add_argument("--model", type=str, required=True, help="Path to the ONNX image-embedding model")
    parser.add_argument("--providers", type=str, nargs="*", default=None)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    label = args.label.strip()
    if not label:
        raise SystemExit("Label must be non-empty")

    try:
        embedder = OnnxEmbedder(model_path=args.model, providers=args.providers)
    except ModelLoadError as exc:
        LOGGER.error("Embedding model unavailable; gallery unchanged: %s", exc)
        return 2

    gallery = load_gallery(args.gallery_parquet) if args.gallery_parquet.exists() else ReferenceGallery()
    added = add_reference_images(gallery, label, args.images, embedder)
    if not added:
        LOGGER.warning("No readable images given; gallery unchanged")
        return 1
    save_gallery(gallery, args.gallery_parquet)
    LOGGER.info("Added %d reference(s) for %s; gallery now has %d entries", len(added), label, len(gallery))
    return 0


if __name__ == "__main__":
    sys.exit(main())
