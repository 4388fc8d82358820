from pathlib import Path

import numpy as np
import pytest

from feedercam.recognition.gallery import ReferenceGallery, save_gallery
from feedercam.recognition.index import IndexParams
from scripts import add_reference, build_gallery, evaluate_index, scan_folder


def test_cli_flags_override_yaml():
    args = scan_folder.parse_args(["frames", "--model", "m.onnx", "--workers", "8", "--recursive"])
    config = scan_folder.resolve_config(args, {"workers": 2, "recursive": False, "t_min": 0.7})
    assert config.workers == 8
    assert config.recursive is True
    assert config.t_min == pytest.approx(0.7)


def test_unset_flags_keep_yaml_values():
    args = scan_folder.parse_args(["frames", "--model", "m.onnx"])
    config = scan_folder.resolve_config(args, {"embed_timeout_s": 12.0, "presence_backend": "heuristic"})
    assert config.embed_timeout_s == pytest.approx(12.0)
    assert config.presence_backend == "heuristic"
    assert config.recursive is False


def test_missing_model_aborts_scan(tmp_path: Path):
    frames_dir = tmp_path / "frames"
    frames_dir.mkdir()
    exit_code = scan_folder.main(
        [
            str(frames_dir),
            "--model",
            str(tmp_path / "missing.onnx"),
            "--pipeline-config",
            str(tmp_path / "absent.yaml"),
            "--output-dir",
            str(tmp_path / "out"),
        ]
    )
    assert exit_code == 2
    assert not (tmp_path / "out").exists()


def test_missing_model_leaves_gallery_untouched(tmp_path: Path):
    parquet = tmp_path / "gallery.parquet"
    exit_code = add_reference.main(
        ["Robin", str(tmp_path / "robin.jpg"), "--model", str(tmp_path / "missing.onnx"), "--gallery-parquet", str(parquet)]
    )
    assert exit_code == 2
    assert not parquet.exists()


def test_missing_model_aborts_gallery_build(tmp_path: Path):
    out = tmp_path / "data"
    exit_code = build_gallery.main(
        [
            "--model",
            str(tmp_path / "missing.onnx"),
            "--reference-dir",
            str(tmp_path / "ref"),
            "--output-dir",
            str(out),
            "--pipeline-config",
            str(tmp_path / "absent.yaml"),
        ]
    )
    assert exit_code == 2
    assert not out.exists()


class _WideModel:
    dim = 8

    def __init__(self, model_path, providers=None):
        self.model_path = model_path

    def embed(self, image):
        return np.ones(self.dim, dtype=np.float32)


def test_model_gallery_dimension_mismatch_aborts_scan(tmp_path: Path, monkeypatch):
    frames_dir = tmp_path / "frames"
    frames_dir.mkdir()
    gallery = ReferenceGallery()
    gallery.add("Wren", np.array([1.0, 0.0]))
    parquet = save_gallery(gallery, tmp_path / "gallery.parquet")
    monkeypatch.setattr(scan_folder, "OnnxEmbedder", _WideModel)

    exit_code = scan_folder.main(
        [
            str(frames_dir),
            "--model",
            "wide.onnx",
            "--gallery-parquet",
            str(parquet),
            "--pipeline-config",
            str(tmp_path / "absent.yaml"),
            "--output-dir",
            str(tmp_path / "out"),
        ]
    )
    assert exit_code == 2
    assert not (tmp_path / "out").exists()


def test_missing_gallery_starts_empty(tmp_path: Path):
    args = scan_folder.parse_args(["frames", "--model", "m.onnx"])
    config = scan_folder.resolve_config(args, {"embedding_dim": 8})
    gallery = scan_folder._load_gallery(tmp_path / "none.parquet", config)
    assert len(gallery) == 0
    assert gallery.dim == 8


def test_existing_gallery_is_loaded(tmp_path: Path):
    gallery = ReferenceGallery()
    gallery.add("Wren", np.array([1.0, 0.0]))
    path = save_gallery(gallery, tmp_path / "gallery.parquet")
    args = scan_folder.parse_args(["frames", "--model", "m.onnx"])
    loaded = scan_folder._load_gallery(path, scan_folder.resolve_config(args, {}))
    assert loaded.labels == ["Wren"]


def test_gallery_cli_args():
    args = build_gallery.parse_args(["--model", "m.onnx", "--reference-dir", "ref"])
    assert args.reference_dir == Path("ref")
    assert args.output_dir == Path("data")

    args = add_reference.parse_args(["Robin", "a.jpg", "b.png", "--model", "m.onnx"])
    assert args.label == "Robin"
    assert args.images == [Path("a.jpg"), Path("b.png")]


def test_measure_recall_on_random_vectors():
    rng = np.random.default_rng(11)
    vectors = rng.normal(size=(300, 16)).astype(np.float32)
    queries = vectors[:30] + rng.normal(scale=0.01, size=(30, 16)).astype(np.float32)
    recall = evaluate_index.measure_recall(vectors, queries, k=5, params=IndexParams())
    assert 0.85 <= recall <= 1.0


def test_evaluate_index_writes_report(tmp_path: Path):
    report = tmp_path / "recall.json"
    evaluate_index.main(["--num-vectors", "200", "--dim", "8", "--num-queries", "20", "--output", str(report)])
    assert report.exists()
