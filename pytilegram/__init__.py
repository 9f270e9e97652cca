"""
pytilegram - Tools for generating tilegrams.

This package provides classes for turning regions with a metric (e.g.
population) into tile grid cartograms, where every region is a contiguous
cluster of equal-sized square or hexagonal tiles whose count is
proportional to its metric.
"""

from .errors import TilegramError, GridConflict, ImportFormatError, InvalidMetric
from .grid_geometry import GridGeometry, SQUARE, HEXAGON
from .tile_grid import Tile, TileGrid
from .dataset import Region, Dataset, geometries_from_geo_df
from .metrics import MetricsBinding
from .tile_cartogram import (
    TileCartogram,
    IterationState,
    IterationStatus,
    RegionState,
    iterate,
    CARTOGRAM_COMPUTE_FPS,
)
from .topo_json import (
    to_topo_json,
    from_topo_json,
    build_dataset_from_tiles,
    to_svg,
    to_geo_df,
)
from .tools import polygon_patch

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "TileCartogram",
    "TileGrid",
    "Tile",
    "GridGeometry",
    "MetricsBinding",
    "Region",
    "Dataset",
    # Computation
    "iterate",
    "IterationState",
    "IterationStatus",
    "RegionState",
    "CARTOGRAM_COMPUTE_FPS",
    "SQUARE",
    "HEXAGON",
    # Import / export
    "to_topo_json",
    "from_topo_json",
    "build_dataset_from_tiles",
    "to_svg",
    "to_geo_df",
    "geometries_from_geo_df",
    # Utility functions
    "polygon_patch",
    # Errors
    "TilegramError",
    "GridConflict",
    "ImportFormatError",
    "InvalidMetric",
]
