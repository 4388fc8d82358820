"""Shared pytest fixtures for synthetic camera-trap scenes."""

from __future__ import annotations

import numpy as np
import pytest

BLOCK = 10
LEVELS = (30, 90, 160, 225)


def _block_scene(seed: int) -> np.ndarray:
    # 9x8 flat blocks, horizontally adjacent blocks always differ
    rng = np.random.default_rng(seed)
    grid = np.zeros((8, 9), dtype=np.uint8)
    for row in range(8):
        prev = None
        for col in range(9):
            choices = [v for v in LEVELS if v != prev]
            prev = choices[int(rng.integers(len(choices)))]
            grid[row, col] = prev
    return np.kron(grid, np.ones((BLOCK, BLOCK), dtype=np.uint8))


@pytest.fixture
def day_scene() -> np.ndarray:
    return _block_scene(seed=7)


@pytest.fixture
def night_scene(day_scene: np.ndarray) -> np.ndarray:
    return 255 - day_scene


@pytest.fixture
def animal_scene(day_scene: np.ndarray) -> np.ndarray:
    """Day scene with a central region inverted, flipping every gradient inside it."""
    out = day_scene.copy()
    region = (slice(2 * BLOCK, 6 * BLOCK), slice(2 * BLOCK, 8 * BLOCK))
    out[region] = 255 - out[region]
    return out
