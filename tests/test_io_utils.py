from pathlib import Path

import cv2
import numpy as np
import pytest

from feedercam.errors import DecodeError
from feedercam.io_utils import FolderSource, decode_image, list_images, load_yaml
from feedercam.types import Frame


def _write(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(path), np.zeros((4, 4, 3), dtype=np.uint8))


def test_list_images_filters_and_sorts(tmp_path: Path):
    _write(tmp_path / "b.png")
    _write(tmp_path / "a.jpg")
    _write(tmp_path / "C.JPEG")
    (tmp_path / "notes.txt").write_text("x", encoding="utf-8")
    _write(tmp_path / "sub" / "deep.png")

    names = [p.name for p in list_images(tmp_path)]
    assert names == ["C.JPEG", "a.jpg", "b.png"]
    recursive = [p.relative_to(tmp_path).as_posix() for p in list_images(tmp_path, recursive=True)]
    assert "sub/deep.png" in recursive
    assert len(recursive) == 4


def test_folder_source_is_restartable(tmp_path: Path):
    _write(tmp_path / "1.png")
    _write(tmp_path / "2.png")
    source = FolderSource(tmp_path)
    first = [frame.frame_id for frame in source]
    second = [frame.frame_id for frame in source]
    assert first == second
    assert len(source) == 2


def test_folder_source_rejects_missing_or_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        FolderSource(tmp_path / "missing")
    target = tmp_path / "file.png"
    _write(target)
    with pytest.raises(NotADirectoryError):
        FolderSource(target)


def test_decode_errors(tmp_path: Path):
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"\x00\x01")
    with pytest.raises(DecodeError):
        decode_image(broken)
    with pytest.raises(DecodeError):
        Frame(frame_id="x", path=broken).load()
    with pytest.raises(DecodeError):
        Frame(frame_id="y").load()


def test_load_yaml_empty_file(tmp_path: Path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_yaml(path) == {}
