import numpy as np
import pytest

from GA import ImageEvolutionTask
from render import PillowRenderer


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def target(rng):
    return rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8)


@pytest.fixture
def task(target):
    return ImageEvolutionTask(target, n_triangles=10, opacity=0.5, renderer=PillowRenderer())
