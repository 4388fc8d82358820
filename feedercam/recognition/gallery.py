"""Reference gallery: labelled embeddings plus their nearest-neighbour index."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from feedercam.errors import DecodeError, EmptyGallery
from feedercam.io_utils import IMAGE_SUFFIXES, decode_image, dump_json, ensure_dir
from feedercam.recognition.index import IndexParams, NearestNeighborIndex
from feedercam.types import GalleryEntry, Match, l2_normalize

LOGGER = logging.getLogger("feedercam.recognition.gallery")


@dataclass(frozen=True)
class _Snapshot:
    entries: Tuple[GalleryEntry, ...]
    index: Optional[NearestNeighborIndex]


class ReferenceGallery:
    """Thread-safe registry of reference embeddings.

    Writers copy the current index, insert into the copy and publish a new
    snapshot with a single assignment. Readers grab the snapshot once and never
    block, so a query can never see an entry the index does not reflect.
    """

    def __init__(self, dim: Optional[int] = None, params: Optional[IndexParams] = None) -> None:
        self.params = params or IndexParams()
        self._dim = dim
        self._write_lock = threading.Lock()
        index = NearestNeighborIndex(dim, self.params) if dim else None
        self._snapshot = _Snapshot(entries=(), index=index)

    def __len__(self) -> int:
        return len(self._snapshot.entries)

    @property
    def dim(self) -> Optional[int]:
        return self._dim

    @property
    def labels(self) -> List[str]:
        return sorted({entry.label for entry in self._snapshot.entries})

    def entries(self) -> Tuple[GalleryEntry, ...]:
        return self._snapshot.entries

    def require_entries(self) -> None:
        if not self._snapshot.entries:
            raise EmptyGallery("Reference gallery has no entries")

    def add(self, label: str, embedding: np.ndarray, provenance: str = "manual") -> GalleryEntry:
        return self.add_many([(label, embedding)], provenance=provenance)[0]

    def add_many(
        self,
        pairs: Iterable[Tuple[str, np.ndarray]],
        provenance: str = "import",
    ) -> List[GalleryEntry]:
        return self.add_entries((label, embedding, provenance) for label, embedding in pairs)

    def add_entries(self, rows: Iterable[Tuple[str, np.ndarray, str]]) -> List[GalleryEntry]:
        """Insert (label, embedding, provenance) rows as one published update."""
        prepared = [(str(label), self._as_vector(embedding), str(provenance)) for label, embedding, provenance in rows]
        if not prepared:
            return []
        with self._write_lock:
            current = self._snapshot
            dim = self._dim if self._dim is not None else prepared[0][1].shape[0]
            for label, vec, _ in prepared:
                if not label:
                    raise ValueError("Gallery label must be non-empty")
                if vec.shape[0] != dim:
                    raise ValueError(f"Expected embedding dim {dim}, got {vec.shape[0]}")
            self._dim = dim
            index = current.index.copy() if current.index is not None else NearestNeighborIndex(dim, self.params)
            added: List[GalleryEntry] = []
            for label, vec, provenance in prepared:
                entry_id = index.add(vec)
                added.append(GalleryEntry(entry_id=entry_id, label=label, embedding=vec, provenance=provenance))
            self._snapshot = _Snapshot(entries=current.entries + tuple(added), index=index)
        LOGGER.info(
            "Gallery add: %d entries (%s); total=%d",
            len(added),
            ", ".join(sorted({entry.provenance for entry in added})),
            len(self._snapshot.entries),
        )
        return added

    def query(self, embedding: np.ndarray, k: int) -> List[Match]:
        return self._query(self._snapshot, self._as_vector(embedding), k)

    def top_species(self, embedding: np.ndarray, n: int = 2, k: int = 10) -> List[Match]:
        """Best match per distinct species, best first.

        The search starts at the ``k`` nearest entries and doubles until ``n``
        species are found or every entry has been ranked, so a species with many
        close references cannot hide the runner-up.
        """
        snapshot = self._snapshot
        vec = self._as_vector(embedding)
        total = len(snapshot.entries)
        k = max(k, n, 1)
        while True:
            best: Dict[str, Match] = {}
            for match in self._query(snapshot, vec, min(k, total)):
                best.setdefault(match.label, match)
            if len(best) >= n or k >= total:
                return list(best.values())[:n]
            k *= 2

    @staticmethod
    def _query(snapshot: _Snapshot, vec: np.ndarray, k: int) -> List[Match]:
        if not snapshot.entries or snapshot.index is None:
            return []
        return [
            Match(label=snapshot.entries[node].label, similarity=sim, entry_id=node)
            for node, sim in snapshot.index.query(vec, k)
        ]

    @staticmethod
    def _as_vector(embedding: np.ndarray) -> np.ndarray:
        vec = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if vec.size == 0 or not np.all(np.isfinite(vec)):
            raise ValueError("Embedding must be a non-empty finite vector")
        return l2_normalize(vec).astype(np.float32)


def save_gallery(gallery: ReferenceGallery, parquet_path: Path) -> Path:
    """Persist one row per gallery entry."""
    rows = [
        {
            "label": entry.label,
            "provenance": entry.provenance,
            "embedding": entry.embedding.astype(np.float32).tolist(),
        }
        for entry in gallery.entries()
    ]
    ensure_dir(parquet_path.parent)
    pd.DataFrame(rows, columns=["label", "provenance", "embedding"]).to_parquet(parquet_path, index=False)
    LOGGER.info("Saved gallery with %d entries to %s", len(rows), parquet_path)
    return parquet_path


def load_gallery(parquet_path: Path, params: Optional[IndexParams] = None) -> ReferenceGallery:
    df = pd.read_parquet(parquet_path)
    gallery = ReferenceGallery(params=params)
    provenance = df["provenance"] if "provenance" in df else pd.Series(["import"] * len(df))
    gallery.add_entries(
        (label, _normalize_embedding(raw), str(prov))
        for label, raw, prov in zip(df["label"], df["embedding"], provenance)
    )
    LOGGER.info("Loaded gallery: %d entries, species=%s", len(gallery), gallery.labels)
    return gallery


def _normalize_embedding(raw) -> np.ndarray:
    """Convert parquet-loaded embedding column into a 1D float32 vector."""
    if isinstance(raw, np.ndarray) and raw.dtype != object:
        return raw.astype(np.float32).reshape(-1)
    parts = [np.asarray(part, dtype=np.float32).ravel() for part in raw]
    return np.concatenate(parts) if parts else np.empty((0,), dtype=np.float32)


def iter_reference_images(reference_dir: Path) -> Iterable[Tuple[str, Path]]:
    """Yield (species, image path) for a ``<species>/<image>`` tree."""
    for label_dir in sorted(p for p in reference_dir.iterdir() if p.is_dir() and not p.name.startswith(".")):
        for img_path in sorted(p for p in label_dir.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES):
            yield label_dir.name, img_path


def build_gallery(
    reference_dir: Path,
    output_dir: Path,
    embedder,
    params: Optional[IndexParams] = None,
) -> Tuple[ReferenceGallery, Path]:
    """Embed every reference image and write gallery parquet, meta JSON and samples CSV."""
    ensure_dir(output_dir)
    pairs: List[Tuple[str, np.ndarray]] = []
    samples_rows: List[Dict] = []
    for label, img_path in iter_reference_images(reference_dir):
        try:
            image = decode_image(img_path)
        except DecodeError as exc:
            LOGGER.warning("Skipping reference image: %s", exc)
            continue
        embedding = np.asarray(embedder.embed(image), dtype=np.float32).reshape(-1)
        pairs.append((label, embedding))
        samples_rows.append(
            {
                "label": label,
                "path": str(img_path),
                "embedding_norm": float(np.linalg.norm(embedding)),
            }
        )

    if not pairs:
        raise RuntimeError(f"No reference images found under {reference_dir}")

    gallery = ReferenceGallery(params=params)
    gallery.add_many(pairs, provenance="reference")

    parquet_path = save_gallery(gallery, output_dir / "gallery.parquet")
    pd.DataFrame(samples_rows).to_csv(output_dir / "gallery_samples.csv", index=False)
    counts = pd.Series([label for label, _ in pairs]).value_counts().sort_index()
    metadata = {
        "labels": counts.index.tolist(),
        "counts": {label: int(count) for label, count in counts.items()},
        "num_labels": int(len(counts)),
        "embedding_dim": gallery.dim,
    }
    dump_json(output_dir / "gallery_meta.json", metadata)

    LOGGER.info("Gallery built: %d entries across %d species", len(gallery), len(counts))
    return gallery, parquet_path


def add_reference_images(
    gallery: ReferenceGallery,
    label: str,
    image_paths: Iterable[Path],
    embedder,
    provenance: str = "manual",
) -> List[GalleryEntry]:
    """Embed reviewed frames and add them to the gallery under ``label``."""
    pairs: List[Tuple[str, np.ndarray]] = []
    for path in image_paths:
        try:
            image = decode_image(path)
        except DecodeError as exc:
            LOGGER.warning("Skipping reference image: %s", exc)
            continue
        pairs.append((label, np.asarray(embedder.embed(image), dtype=np.float32)))
    return gallery.add_many(pairs, provenance=provenance)
