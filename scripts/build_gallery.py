#!/usr/bin/env python3
"""CLI for building the species reference gallery from labelled images."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from feedercam.errors import ModelLoadError
from feedercam.io_utils import ensure_dir, load_yaml, setup_logging
from feedercam.pipeline.runner import PipelineConfig
from feedercam.recognition.embed_onnx import OnnxEmbedder
from feedercam.recognition.gallery import build_gallery


LOGGER = logging.getLogger("scripts.gallery")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build reference gallery embeddings")
    parser.add_argument(
        "--reference-dir",
        type=Path,
        default=Path("data/reference"),
        help="Directory containing labelled reference images (per-species subdirectories)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data"),
        help="Directory where gallery artifacts will be written",
    )
    parser.add_argument(
        "--model",
        type=str,
        required=True,
        help="Path to the ONNX image-embedding model",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="Execution providers for ONNXRuntime (e.g. CUDAExecutionProvider)",
    )
    parser.add_argument(
        "--pipeline-config",
        type=Path,
        default=Path("configs/pipeline.yaml"),
        help="Pipeline configuration YAML (index build parameters)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    pipeline_cfg = load_yaml(args.pipeline_config) if args.pipeline_config.exists() else {}
    config = PipelineConfig.from_dict(pipeline_cfg)
    try:
        embedder = OnnxEmbedder(model_path=args.model, providers=args.providers)
    except ModelLoadError as exc:
        LOGGER.error("Embedding model unavailable; gallery not built: %s", exc)
        return 2
    ensure_dir(args.output_dir)

    gallery, parquet_path = build_gallery(
        reference_dir=args.reference_dir,
        output_dir=args.output_dir,
        embedder=embedder,
        params=config.index,
    )

    LOGGER.info(
        "Gallery built: parquet=%s species=%s entries=%d",
        parquet_path,
        gallery.labels,
        len(gallery),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
