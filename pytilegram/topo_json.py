"""
Import and export of tilegrams.

The portable format is a TopoJSON topology whose ``tiles`` object is a
GeometryCollection with one Polygon per tile. A tile's owner is stored in
its ``id`` property (absent for unowned tiles) and the metric per tile in
``tilegramValue``. Top-level properties record the grid geometry, so
that an exported document imports back onto exactly the same grid:

.. code:: python

    {
        'type': 'Topology',
        'arcs': [[[0.5, -0.28], [0.0, 0.57], ...], ...],
        'objects': {
            'tiles': {
                'type': 'GeometryCollection',
                'geometries': [
                    {
                        'type': 'Polygon',
                        'arcs': [[0]],
                        'properties': {'id': '06', 'tilegramValue': 54000},
                    },
                    ...
                ],
            },
        },
        'properties': {
            'tilegramMetricPerTile': 54000,
            'tilegramGridMode': 'hexagon',
            'tilegramTileSpacing': 1.0,
            'tilegramOrigin': [0.0, 0.0],
            'tilegramTileSize': {'width': 1.0, 'height': 1.1547},
        },
    }

Documents written by other tools may be quantized (``transform`` with
delta-encoded arcs) and may lack the geometry properties; the geometry
is then inferred from the tile polygons.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping
from xml.sax.saxutils import quoteattr

import numpy as np
import matplotlib as mpl
import geopandas as gpd
from shapely.geometry import Polygon

from pytilegram.errors import ImportFormatError, InvalidMetric
from pytilegram.grid_geometry import GridGeometry, SQUARE, HEXAGON
from pytilegram.dataset import Dataset, Region
from pytilegram.metrics import MetricsBinding

logger = logging.getLogger(__name__)

TILES_OBJECT = 'tiles'

# an imported tile centre must lie this close (in tile sizes) to a grid centre
_ALIGNMENT_TOLERANCE = 0.25


def to_topo_json(grid, metric_per_tile) -> dict[str, Any]:
    """
    Serialize all tiles of a grid, owned and unowned.

    Parameters
    ----------
    grid : TileGrid
        Grid to export; its geometry provides the tile polygons.
    metric_per_tile : float
        Metric per tile the tilegram was computed with.

    Returns
    -------
    dict
        JSON-serializable TopoJSON topology.
    """
    geometry = grid.geometry
    arcs = []
    geometries = []
    for coord in sorted(grid.coords):
        poly = geometry.tile_polygon(coord)
        arcs.append([[float(x), float(y)] for x, y in poly.exterior.coords])
        properties = {'tilegramValue': metric_per_tile}
        owner = grid.owner_of(coord)
        if owner is not None:
            properties['id'] = owner
        geometries.append({
            'type': 'Polygon',
            'arcs': [[len(arcs) - 1]],
            'properties': properties,
        })

    xmin, ymin, xmax, ymax = Polygon(arcs[0]).bounds if arcs else (0., 0., 0., 0.)

    return {
        'type': 'Topology',
        'arcs': arcs,
        'objects': {
            TILES_OBJECT: {
                'type': 'GeometryCollection',
                'geometries': geometries,
            },
        },
        'properties': {
            'tilegramMetricPerTile': metric_per_tile,
            'tilegramGridMode': geometry.mode,
            'tilegramTileSpacing': geometry.tile_size,
            'tilegramOrigin': list(geometry.origin),
            'tilegramTileSize': {'width': xmax - xmin, 'height': ymax - ymin},
        },
    }


def _decode_arcs(doc):
    """Absolute arc coordinates, undoing TopoJSON quantization."""
    arcs = doc.get('arcs')
    if not isinstance(arcs, list):
        raise ImportFormatError("topology has no 'arcs' list")

    transform = doc.get('transform')
    decoded = []
    try:
        if transform is None:
            for arc in arcs:
                decoded.append(np.array(arc, dtype=float).reshape(-1, 2))
        else:
            scale = np.array(transform['scale'], dtype=float)
            translate = np.array(transform['translate'], dtype=float)
            for arc in arcs:
                positions = np.cumsum(np.array(arc, dtype=float).reshape(-1, 2), axis=0)
                decoded.append(positions * scale + translate)
    except (KeyError, TypeError, ValueError) as e:
        raise ImportFormatError(f"malformed arcs: {e}") from e
    return decoded


def _ring(arcs, indices):
    """Join the arcs of one ring; negative index ~i means arc i reversed."""
    points = []
    for index in indices:
        if not isinstance(index, int):
            raise ImportFormatError(f"arc index must be an integer, got {index!r}")
        try:
            arc = arcs[index] if index >= 0 else arcs[~index][::-1]
        except IndexError:
            raise ImportFormatError(f"arc index {index} out of range") from None
        points.extend(arc[1:] if points else arc)
    return np.array(points)


def _tile_polygons(doc):
    """Yield (polygon, properties) for every geometry of the tiles object."""
    try:
        geometries = doc['objects'][TILES_OBJECT]['geometries']
    except (KeyError, TypeError):
        objects = doc.get('objects') if isinstance(doc.get('objects'), dict) else {}
        if len(objects) != 1:
            raise ImportFormatError(f"topology has no '{TILES_OBJECT}' object") from None
        # documents from other tools name the single object after the geography
        only = next(iter(objects.values()))
        geometries = only.get('geometries') if isinstance(only, dict) else None
    if not isinstance(geometries, list):
        raise ImportFormatError("tiles object has no 'geometries' list")

    arcs = _decode_arcs(doc)
    for geom in geometries:
        if not isinstance(geom, dict):
            raise ImportFormatError(f"malformed geometry {geom!r}")
        rings = geom.get('arcs')
        if geom.get('type') == 'MultiPolygon' and isinstance(rings, list) and len(rings) == 1:
            rings = rings[0]
        elif geom.get('type') != 'Polygon':
            raise ImportFormatError(f"tiles must be single polygons, got {geom.get('type')!r}")
        if not isinstance(rings, list) or not rings:
            raise ImportFormatError("tile polygon without rings")
        if not isinstance(rings[0], list):
            raise ImportFormatError(f"ring must be a list of arc indices, got {rings[0]!r}")

        properties = geom.get('properties')
        if properties is None:
            properties = {}
        elif not isinstance(properties, Mapping):
            raise ImportFormatError(f"tile properties must be an object, got {properties!r}")

        ring = _ring(arcs, rings[0])
        if len(ring) < 4:
            raise ImportFormatError("tile polygon has fewer than three corners")
        polygon = Polygon(ring)
        if not polygon.area > 0:
            raise ImportFormatError("tile polygon has no area")
        yield polygon, properties


def _infer_geometry(polygon):
    """Guess the grid geometry from one tile outline."""
    corners = len(polygon.exterior.coords) - 1
    area = polygon.area
    c = polygon.centroid
    if corners == 4:
        mode, tile_size = SQUARE, math.sqrt(area)
    elif corners == 6:
        circumradius = math.sqrt(2. * area / (3. * math.sqrt(3.)))
        mode, tile_size = HEXAGON, math.sqrt(3.) * circumradius
    else:
        raise ImportFormatError(f"cannot infer a grid from a tile with {corners} corners")
    logger.warning("tilegram has no grid properties, inferred %s grid with tile size %g",
                   mode, tile_size)
    return GridGeometry(mode, tile_size, (c.x, c.y))


def from_topo_json(doc: Mapping, known_region_ids: Iterable | None = None):
    """
    Read a tilegram document.

    Parameters
    ----------
    doc : dict
        Parsed TopoJSON document, e.g. from ``json.load``.
    known_region_ids : iterable, optional
        If given, every tile owner must be one of these ids.

    Returns
    -------
    geometry : GridGeometry
        Geometry of the grid the tiles were placed on.
    ownership : dict
        Owner (or None) for every tile coordinate in the document.
    metric_per_tile : float

    Raises
    ------
    ImportFormatError
        If the document is malformed, lists a tile position twice, or
        references an unknown region id.
    """
    if not isinstance(doc, Mapping) or doc.get('type') != 'Topology':
        raise ImportFormatError("document is not a TopoJSON topology")

    tiles = list(_tile_polygons(doc))
    if not tiles:
        raise ImportFormatError("tilegram contains no tiles")

    properties = doc.get('properties')
    if properties is None:
        properties = {}
    elif not isinstance(properties, Mapping):
        raise ImportFormatError(f"topology properties must be an object, got {properties!r}")
    metric_per_tile = properties.get('tilegramMetricPerTile',
                                     tiles[0][1].get('tilegramValue'))
    if metric_per_tile is None:
        raise ImportFormatError("tilegram has no metric per tile")
    try:
        metric_per_tile = MetricsBinding.check_metric_per_tile(metric_per_tile)
    except InvalidMetric as e:
        raise ImportFormatError(str(e)) from e

    if 'tilegramGridMode' in properties and 'tilegramTileSpacing' in properties:
        try:
            geometry = GridGeometry(properties['tilegramGridMode'],
                                    properties['tilegramTileSpacing'],
                                    properties.get('tilegramOrigin', (0., 0.)))
        except (TypeError, ValueError, IndexError) as e:
            raise ImportFormatError(f"invalid grid properties: {e}") from e
    else:
        geometry = _infer_geometry(tiles[0][0])

    if known_region_ids is not None:
        known_region_ids = set(known_region_ids)

    ownership = {}
    for polygon, props in tiles:
        c = polygon.centroid
        coord = geometry.nearest_coord(c.x, c.y)
        if geometry.distance(coord, (c.x, c.y)) > _ALIGNMENT_TOLERANCE * geometry.tile_size:
            raise ImportFormatError(f"tile at ({c.x:g}, {c.y:g}) is not aligned with the grid")
        if coord in ownership:
            raise ImportFormatError(f"duplicate tile at grid coordinate {coord}")
        owner = props.get('id')
        if owner is not None and (isinstance(owner, bool) or not isinstance(owner, (str, int))):
            raise ImportFormatError(f"tile at {coord} has an invalid region id {owner!r}")
        if owner is not None and known_region_ids is not None and owner not in known_region_ids:
            raise ImportFormatError(f"tile at {coord} references unknown region {owner!r}")
        ownership[coord] = owner

    logger.info("read tilegram with %d tiles, %d owned",
                len(ownership), sum(o is not None for o in ownership.values()))
    return geometry, ownership, metric_per_tile


def build_dataset_from_tiles(ownership: Mapping,
                             geometry,
                             metric_per_tile,
                             names: Mapping | None = None,
                             metric_name='metric',
                             geography=None) -> Dataset:
    """
    Reconstruct a dataset from imported tile ownership.

    Each owner becomes a region whose metric is its tile count times
    ``metric_per_tile`` and whose centroid is the mean of its tile
    positions, so that the imported tilegram is already converged.
    """
    coords_by_owner = {}
    for coord, owner in ownership.items():
        if owner is not None:
            coords_by_owner.setdefault(owner, []).append(coord)

    names = names or {}
    regions = []
    for owner in sorted(coords_by_owner, key=str):
        coords = coords_by_owner[owner]
        cx, cy = geometry.positions(coords).mean(axis=0)
        regions.append(Region(owner,
                              names.get(owner, owner),
                              len(coords) * metric_per_tile,
                              (cx, cy)))
    return Dataset(regions, metric_name, geography)


def region_colors(region_ids, cmap='tab20') -> dict:
    """Hex color per region id, cycling through a matplotlib colormap."""
    colormap = mpl.colormaps[cmap] if isinstance(cmap, str) else cmap
    n = getattr(colormap, 'N', 256)
    return {rid: mpl.colors.to_hex(colormap(i % n)) for i, rid in enumerate(region_ids)}


def to_svg(grid, colors: Mapping | None = None, scale=10., stroke='#ffffff') -> str:
    """
    Render the owned tiles of a grid as an SVG document.

    Parameters
    ----------
    grid : TileGrid
    colors : mapping, optional
        Fill color per region id. Defaults to the 'tab20' colormap.
    scale : float, optional
        SVG units per plane unit (default: 10).
    stroke : str, optional
        Tile outline color (default: white).

    Returns
    -------
    str
    """
    geometry = grid.geometry
    owned = [t for t in sorted(grid, key=lambda t: t.coord) if t.owner is not None]
    if colors is None:
        colors = region_colors(grid.region_ids)

    if owned:
        xmin, ymin, xmax, ymax = geometry.extent([t.coord for t in owned])
    else:
        xmin = ymin = xmax = ymax = 0.
    width = (xmax - xmin) * scale
    height = (ymax - ymin) * scale

    lines = [
        '<?xml version="1.0" encoding="utf-8"?>',
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width:.2f}" height="{height:.2f}" '
        f'viewBox="0 0 {width:.2f} {height:.2f}">',
        '<g>',
    ]
    for tile in owned:
        poly = geometry.tile_polygon(tile.coord)
        # svg y axis points down
        points = ' '.join(f'{(x - xmin) * scale:.2f},{(ymax - y) * scale:.2f}'
                          for x, y in list(poly.exterior.coords)[:-1])
        fill = colors.get(tile.owner, '#cccccc')
        lines.append(f'<polygon data-region={quoteattr(str(tile.owner))} points="{points}" '
                     f'fill="{fill}" stroke="{stroke}" stroke-width="0.5"/>')
    lines.append('</g>')
    lines.append('</svg>')
    return '\n'.join(lines)


def to_geo_df(grid, crs=None) -> gpd.GeoDataFrame:
    """
    Tiles as a GeoDataFrame with columns ``i``, ``j``, ``region_id`` and
    the tile polygon as geometry.
    """
    geometry = grid.geometry
    tiles = sorted(grid, key=lambda t: t.coord)
    return gpd.GeoDataFrame(
        {
            'i': [t.coord[0] for t in tiles],
            'j': [t.coord[1] for t in tiles],
            'region_id': [t.owner for t in tiles],
        },
        geometry=[geometry.tile_polygon(t.coord) for t in tiles],
        crs=crs,
    )
