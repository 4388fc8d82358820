"""I/O helpers shared across CLI entrypoints and pipeline modules."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List

import cv2
import numpy as np
import yaml

from feedercam.errors import DecodeError
from feedercam.types import Frame

LOGGER = logging.getLogger("feedercam.io")

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png"}


def ensure_dir(path: Path) -> Path:
    """Create directory (and parents) if it does not exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    LOGGER.debug("Loaded YAML config %s -> keys=%s", path, list(data.keys()))
    return data


def dump_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON to disk (with dataclass support)."""
    def _default(obj: Any) -> Any:
        if is_dataclass(obj):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        if isinstance(obj, np.generic):
            return obj.item()
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    with path.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=indent, default=_default)
    LOGGER.debug("Wrote JSON file %s", path)


def load_json(path: Path) -> Any:
    """Read JSON from disk."""
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure application logging if not already configured."""
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def list_images(directory: Path, recursive: bool = False) -> List[Path]:
    """Return image paths sorted in lexicographic order."""
    if not directory.exists():
        return []
    candidates = directory.rglob("*") if recursive else directory.iterdir()
    return sorted(
        p for p in candidates if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
    )


def decode_image(path: Path) -> np.ndarray:
    """Decode an image file into a BGR array, raising DecodeError when unreadable."""
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise DecodeError(f"Unable to decode image: {path}")
    return image


class FolderSource:
    """Restartable, lazily-decoding frame sequence over one folder."""

    def __init__(self, directory: Path, recursive: bool = False) -> None:
        self.directory = Path(directory)
        self.recursive = recursive
        if not self.directory.exists():
            raise FileNotFoundError(f"Path does not exist: {self.directory}")
        if not self.directory.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {self.directory}")
        self.paths = list_images(self.directory, recursive=recursive)
        LOGGER.info(
            "Found %d images under %s (recursive=%s)",
            len(self.paths),
            self.directory,
            recursive,
        )

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[Frame]:
        for path in self.paths:
            yield Frame(frame_id=str(path), path=path)

