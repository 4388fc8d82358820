import threading

import numpy as np
import pytest

from feedercam.errors import EmbeddingUnavailable, ModelLoadError
from feedercam.recognition.embed_onnx import EmbeddingExtractor, OnnxEmbedder


class _FixedEmbedder:
    dim = 4

    def __init__(self, vector):
        self.vector = vector

    def embed(self, pixels):
        return self.vector


class _SlowEmbedder:
    def __init__(self):
        self.release = threading.Event()

    def embed(self, pixels):
        self.release.wait(timeout=5.0)
        return np.ones(4, dtype=np.float32)


class _BrokenEmbedder:
    def embed(self, pixels):
        raise RuntimeError("session crashed")


def _pixels():
    return np.zeros((8, 8, 3), dtype=np.uint8)


def test_extract_normalizes_output():
    with EmbeddingExtractor(_FixedEmbedder(np.array([3.0, 4.0, 0.0, 0.0]))) as extractor:
        vec = extractor.extract(_pixels())
    assert np.linalg.norm(vec) == pytest.approx(1.0)
    assert vec[0] == pytest.approx(0.6)


def test_timeout_surfaces_as_unavailable():
    slow = _SlowEmbedder()
    extractor = EmbeddingExtractor(slow, timeout_s=0.05)
    try:
        with pytest.raises(EmbeddingUnavailable):
            extractor.extract(_pixels())
    finally:
        slow.release.set()
        extractor.close()


def test_capability_error_surfaces_as_unavailable():
    with EmbeddingExtractor(_BrokenEmbedder()) as extractor:
        with pytest.raises(EmbeddingUnavailable, match="session crashed"):
            extractor.extract(_pixels())


def test_dimension_mismatch_is_unavailable():
    embedder = _FixedEmbedder(np.ones(5, dtype=np.float32))
    with EmbeddingExtractor(embedder) as extractor:
        assert extractor.dim == 4
        with pytest.raises(EmbeddingUnavailable):
            extractor.extract(_pixels())


@pytest.mark.parametrize("vector", [np.zeros(4), np.array([1.0, np.nan, 0.0, 0.0]), np.array([])])
def test_unusable_vectors_are_unavailable(vector):
    with EmbeddingExtractor(_FixedEmbedder(vector)) as extractor:
        with pytest.raises(EmbeddingUnavailable):
            extractor.extract(_pixels())


def test_missing_model_is_fatal(tmp_path):
    with pytest.raises(ModelLoadError):
        OnnxEmbedder(model_path=str(tmp_path / "missing.onnx"))
