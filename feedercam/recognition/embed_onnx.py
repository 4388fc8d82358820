"""Image embedding capability (ONNX Runtime) and the timeout-bounded extractor."""

from __future__ import annotations

import logging
import os
import platform
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from feedercam.errors import EmbeddingUnavailable, ModelLoadError
from feedercam.types import l2_normalize

LOGGER = logging.getLogger("feedercam.recognition.embed")

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


def _default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers based on platform."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


class OnnxEmbedder:
    """Runs an image-embedding ONNX model (e.g. an exported ViT/DINO backbone)."""

    def __init__(
        self,
        model_path: str,
        providers: Optional[Sequence[str]] = None,
        input_size: int = 224,
    ) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            import onnxruntime as ort
        except ImportError as exc:  # pragma: no cover - import guard
            raise ModelLoadError(
                "onnxruntime is required for OnnxEmbedder. "
                "Install it via `pip install onnxruntime`."
            ) from exc

        resolved = Path(model_path).expanduser()
        if not resolved.exists():
            raise ModelLoadError(f"Embedding model not found: {resolved}")
        provider_list = tuple(providers) if providers else _default_providers()
        available = set(ort.get_available_providers())
        provider_list = tuple(p for p in provider_list if p in available) or ("CPUExecutionProvider",)
        LOGGER.info("Loading embedding model %s providers=%s", resolved, provider_list)
        try:
            self.session = ort.InferenceSession(str(resolved), providers=list(provider_list))
        except Exception as exc:
            raise ModelLoadError(f"Unable to load embedding model {resolved}: {exc}") from exc
        self.input_name = self.session.get_inputs()[0].name
        self.input_size = input_size
        self.providers = provider_list
        output_shape = self.session.get_outputs()[0].shape
        last = output_shape[-1] if output_shape else None
        self.dim: Optional[int] = last if isinstance(last, int) else None

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        resized = cv2.resize(rgb, (self.input_size, self.input_size), interpolation=cv2.INTER_AREA)
        arr = (resized.astype(np.float32) / 255.0 - IMAGENET_MEAN) / IMAGENET_STD
        return arr.transpose(2, 0, 1)[None, ...]

    def embed(self, image: np.ndarray) -> np.ndarray:
        """Compute an L2-normalized embedding for a BGR frame."""
        outputs = self.session.run(None, {self.input_name: self.preprocess(image)})
        return l2_normalize(np.asarray(outputs[0], dtype=np.float32).reshape(-1))


class EmbeddingExtractor:
    """Adapter around an injected ``embed(pixels)`` capability.

    Every call runs on the extractor's own executor so it can be bounded by
    ``timeout_s``. Timeouts, capability errors and malformed vectors all surface
    as ``EmbeddingUnavailable``. A timed-out call keeps running in the background
    but its result is discarded.
    """

    def __init__(
        self,
        embedder,
        dim: Optional[int] = None,
        timeout_s: Optional[float] = 30.0,
        max_workers: int = 2,
    ) -> None:
        self.embedder = embedder
        self.dim = dim if dim is not None else getattr(embedder, "dim", None)
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="embed")

    def extract(self, pixels: np.ndarray) -> np.ndarray:
        future = self._executor.submit(self.embedder.embed, pixels)
        try:
            raw = future.result(timeout=self.timeout_s)
        except FutureTimeout as exc:
            future.cancel()
            raise EmbeddingUnavailable(f"Embedding timed out after {self.timeout_s}s") from exc
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding capability failed: {exc}") from exc

        vec = np.asarray(raw, dtype=np.float32).reshape(-1)
        if vec.size == 0 or not np.all(np.isfinite(vec)):
            raise EmbeddingUnavailable("Embedding capability returned an empty or non-finite vector")
        if self.dim is not None and vec.shape[0] != self.dim:
            raise EmbeddingUnavailable(f"Expected embedding dim {self.dim}, got {vec.shape[0]}")
        if np.linalg.norm(vec) < 1e-6:
            raise EmbeddingUnavailable("Embedding capability returned a zero vector")
        return l2_normalize(vec)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "EmbeddingExtractor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
