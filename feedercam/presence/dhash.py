"""Perceptual difference hash (dHash) fingerprints for frames."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import cv2
import imagehash
import numpy as np
from PIL import Image

from feedercam.errors import DecodeError
from feedercam.types import Fingerprint

HASH_SIZE = 8
HASH_BITS = HASH_SIZE * HASH_SIZE


def to_gray(pixels: Optional[np.ndarray]) -> np.ndarray:
    """Reduce a decoded BGR/BGRA/grayscale buffer to a single uint8 channel."""
    if pixels is None:
        raise DecodeError("No pixel buffer")
    arr = np.asarray(pixels)
    if arr.size == 0:
        raise DecodeError("Empty pixel buffer")
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 2:
        return arr
    if arr.ndim == 3 and arr.shape[2] == 1:
        return arr[:, :, 0]
    if arr.ndim == 3 and arr.shape[2] == 3:
        return cv2.cvtColor(arr, cv2.COLOR_BGR2GRAY)
    if arr.ndim == 3 and arr.shape[2] == 4:
        return cv2.cvtColor(arr, cv2.COLOR_BGRA2GRAY)
    raise DecodeError(f"Unsupported pixel buffer shape {arr.shape}")


def pack_bits(bits: np.ndarray) -> Fingerprint:
    """Pack a boolean grid row-major into an int, bit i = flat index i."""
    value = 0
    for idx, bit in enumerate(np.asarray(bits, dtype=bool).ravel()):
        if bit:
            value |= 1 << idx
    return value


def fingerprint_bits(fingerprints: Iterable[Fingerprint]) -> np.ndarray:
    """Expand fingerprints into an (n, 64) bool matrix, column i = bit i."""
    values = list(fingerprints)
    out = np.zeros((len(values), HASH_BITS), dtype=bool)
    for row, value in enumerate(values):
        for idx in range(HASH_BITS):
            out[row, idx] = (value >> idx) & 1
    return out


class PerceptualHasher:
    """Computes 64-bit horizontal-gradient fingerprints.

    The frame is reduced to grayscale, shrunk to a 9x8 grid and each of the 64
    adjacent-pixel comparisons becomes one bit. Identical pixels always give the
    identical fingerprint.
    """

    def __init__(self, hash_size: int = HASH_SIZE) -> None:
        if hash_size != HASH_SIZE:
            raise ValueError("Only 64-bit fingerprints (hash_size=8) are supported")
        self.hash_size = hash_size

    def fingerprint(self, pixels: np.ndarray) -> Fingerprint:
        gray = to_gray(pixels)
        digest = imagehash.dhash(Image.fromarray(gray), hash_size=self.hash_size)
        return pack_bits(digest.hash)

    def fingerprint_file(self, path: Path) -> Fingerprint:
        gray = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if gray is None:
            raise DecodeError(f"Unable to decode image: {path}")
        return self.fingerprint(gray)
