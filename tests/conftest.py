"""
Shared fixtures for the pytilegram tests.
"""

import matplotlib
matplotlib.use('Agg')

import pytest

from pytilegram import (
    Dataset,
    GridGeometry,
    MetricsBinding,
    Region,
    TileGrid,
    IterationState,
)


def square_grid(cols, rows, ownership=None):
    """Fully materialised square grid of cols x rows unit tiles."""
    geometry = GridGeometry('square', tile_size=1.)
    coords = [(i, j) for j in range(rows) for i in range(cols)]
    return TileGrid(geometry, coords, ownership)


@pytest.fixture
def two_by_two():
    return square_grid(2, 2)


@pytest.fixture
def two_region_dataset():
    """Regions A (100) and B (300) at opposite corners of a 2x2 grid."""
    return Dataset([
        Region('A', 'Alpha', 100, (0., 0.)),
        Region('B', 'Beta', 300, (1., 1.)),
    ], 'population', 'test')


@pytest.fixture
def metrics_100(two_region_dataset):
    return MetricsBinding(metric_per_tile=100, sum_metrics=two_region_dataset.sum_metrics)


@pytest.fixture
def enclosed():
    """
    Region A owns the centre of a 3x3 grid and wants two tiles; region B
    owns the ring around it and is already at its target.
    """
    ownership = {(i, j): 'B' for i in range(3) for j in range(3)}
    ownership[(1, 1)] = 'A'
    grid = square_grid(3, 3, ownership)
    dataset = Dataset([
        Region('A', 'Alpha', 200, (1., 1.)),
        Region('B', 'Beta', 800, (1., 1.)),
    ])
    metrics = MetricsBinding(metric_per_tile=100, sum_metrics=1000)
    return grid, dataset, metrics


@pytest.fixture
def state():
    return IterationState(grace_steps=5)
