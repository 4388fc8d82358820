#!/usr/bin/env python3
"""CLI for scanning a camera-trap folder: presence detection + open-set species ID."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from feedercam.attribution.aggregate import dump_results_json, export_csv
from feedercam.errors import EmptyGallery, ModelLoadError
from feedercam.io_utils import FolderSource, ensure_dir, load_yaml, setup_logging
from feedercam.pipeline.runner import PipelineConfig, ScanRunner
from feedercam.recognition.embed_onnx import EmbeddingExtractor, OnnxEmbedder
from feedercam.recognition.gallery import ReferenceGallery, load_gallery


LOGGER = logging.getLogger("scripts.scan_folder")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect animals and identify species in a folder of frames")
    parser.add_argument("folder", type=Path, help="Folder containing jpg/jpeg/png frames")
    parser.add_argument(
        "--pipeline-config",
        type=Path,
        default=Path("configs/pipeline.yaml"),
        help="Pipeline configuration YAML",
    )
    parser.add_argument(
        "--gallery-parquet",
        type=Path,
        default=Path("data/gallery.parquet"),
        help="Reference gallery parquet (see build_gallery.py)",
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
        help="ONNX execution providers (overrides platform defaults)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data/outputs"),
        help="Directory for <folder>-results.csv and <folder>-results.json",
    )
    parser.add_argument("--recursive", action="store_true", default=None, help="Scan subfolders too")
    parser.add_argument("--workers", type=int, default=None, help="Override worker pool size")
    parser.add_argument("--embed-timeout", type=float, default=None, help="Per-frame embedding timeout (s)")
    parser.add_argument(
        "--presence-backend",
        choices=("background", "heuristic"),
        default=None,
        help="Presence detector backend",
    )
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace, pipeline_cfg: Dict[str, Any]) -> PipelineConfig:
    """CLI flags override YAML values, which override built-in defaults."""
    merged = dict(pipeline_cfg)
    overrides = {
        "recursive": args.recursive,
        "workers": args.workers,
        "embed_timeout_s": args.embed_timeout,
        "presence_backend": args.presence_backend,
    }
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return PipelineConfig.from_dict(merged)


def _load_gallery(path: Path, config: PipelineConfig) -> ReferenceGallery:
    if not path.exists():
        LOGGER.warning("Gallery %s not found; every present frame will be Unknown", path)
        return ReferenceGallery(dim=config.embedding_dim, params=config.index)
    gallery = load_gallery(path, params=config.index)
    try:
        gallery.require_entries()
    except EmptyGallery as exc:
        LOGGER.warning("%s; every present frame will be Unknown", exc)
    return gallery


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    pipeline_cfg = load_yaml(args.pipeline_config) if args.pipeline_config.exists() else {}
    config = resolve_config(args, pipeline_cfg)
    LOGGER.info(
        "Runtime config: backend=%s k=%.2f t_min=%.2f delta_min=%.2f workers=%d",
        config.presence_backend,
        config.outlier_k,
        config.t_min,
        config.delta_min,
        config.workers,
    )

    try:
        embedder = OnnxEmbedder(model_path=args.model, providers=args.providers)
    except ModelLoadError as exc:
        LOGGER.error("Embedding model unavailable; aborting scan: %s", exc)
        return 2

    gallery = _load_gallery(args.gallery_parquet, config)
    source = FolderSource(args.folder, recursive=config.recursive)

    with EmbeddingExtractor(
        embedder,
        dim=config.embedding_dim,
        timeout_s=config.embed_timeout_s,
        max_workers=config.workers,
    ) as extractor:
        runner = ScanRunner(config, gallery, extractor)
        with tqdm(total=len(source), desc="hash", unit="frame") as bar:
            stage = {"name": "hash"}

            def _progress(name: str, count: int) -> None:
                if name != stage["name"]:
                    stage["name"] = name
                    bar.reset(total=None)
                    bar.set_description(name)
                bar.update(count)

            try:
                result = runner.run(source, progress=_progress)
            except ModelLoadError as exc:
                LOGGER.error("Embedding model unusable with this gallery; aborting scan: %s", exc)
                return 2

    if result.no_images:
        LOGGER.warning("No images found in %s; CSV export skipped", args.folder)
        return 1

    ensure_dir(args.output_dir)
    stem = args.folder.resolve().name or "scan"
    csv_path = export_csv(result.results, args.output_dir / f"{stem}-results.csv")
    json_path = dump_results_json(result.results, args.output_dir / f"{stem}-results.json")
    LOGGER.info("Summary: %s", result.summary)
    LOGGER.info("Wrote %s and %s", csv_path, json_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
