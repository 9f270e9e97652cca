"""
Coordinate math for square and hexagonal tile grids.

This module provides the GridGeometry class, which maps between integer
tile coordinates and positions in the plane of the region centroids, and
between that plane and a display viewport.

Square grids use ``(col, row)`` coordinates with four neighbours per tile.
Hexagonal grids use pointy-top axial coordinates ``(q, r)`` with six
neighbours per tile. In both modes ``tile_size`` is the distance between
the centres of two neighbouring tiles.
"""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np
from numpy.typing import NDArray
from shapely.geometry import Polygon

SQUARE = 'square'
HEXAGON = 'hexagon'
MODES = (SQUARE, HEXAGON)

_SQRT3 = math.sqrt(3.)

_NEIGHBOR_OFFSETS = {
    SQUARE: ((1, 0), (0, 1), (-1, 0), (0, -1)),
    HEXAGON: ((1, 0), (1, -1), (0, -1), (-1, 0), (-1, 1), (0, 1)),
}


class GridGeometry:
    """
    Geometry of a uniform tile grid.

    Parameters
    ----------
    mode : str, optional
        'square' or 'hexagon' (default: 'hexagon'). Fixed for the lifetime
        of the geometry.
    tile_size : float, optional
        Distance between the centres of neighbouring tiles (default: 1.0).
    origin : tuple of float, optional
        Plane position of the tile at coordinate (0, 0) (default: (0, 0)).

    Attributes
    ----------
    viewport_scale : float
        Factor from plane units to viewport units, set by resize().
    viewport_offset : tuple of float
        Viewport position of the plane origin, set by resize().

    Examples
    --------
    >>> geom = GridGeometry('square', tile_size=2.)
    >>> geom.position((1, 3))
    (2.0, 6.0)
    >>> geom.nearest_coord(2.9, 5.1)
    (1, 3)
    """

    def __init__(self, mode=HEXAGON, tile_size=1., origin=(0., 0.)):
        if mode not in MODES:
            raise ValueError(f"Unknown grid mode {mode!r}, expected one of {MODES}")
        if not tile_size > 0:
            raise ValueError("tile_size must be positive")

        self._mode = mode
        self.tile_size = float(tile_size)
        self.origin = (float(origin[0]), float(origin[1]))

        self.viewport_scale = 1.
        self.viewport_offset = (0., 0.)

    @classmethod
    def for_bounds(cls,
                   bounds,
                   n_tiles_x=40,
                   mode=HEXAGON,
                   margin_ratio=0.1):
        """
        Size a geometry so that ``n_tiles_x`` tiles span a bounding box.

        Parameters
        ----------
        bounds : tuple of float
            (xmin, ymin, xmax, ymax), e.g. ``shape.bounds`` of a geography.
        n_tiles_x : int, optional
            Number of tiles across the padded width (default: 40).
        mode : str, optional
            Grid mode (default: 'hexagon').
        margin_ratio : float, optional
            Margin around the bounds as fraction of their larger extent
            (default: 0.1).

        Returns
        -------
        geometry : GridGeometry
        grid_bounds : tuple of float
            The padded bounds the grid should cover.
        """
        xmin, ymin, xmax, ymax = bounds
        width = xmax - xmin
        height = ymax - ymin
        if width <= 0 and height <= 0:
            raise ValueError("bounds must have a positive extent")

        margin = max(width, height) * margin_ratio
        xmin, xmax = xmin - margin, xmax + margin
        ymin, ymax = ymin - margin, ymax + margin

        tile_size = (xmax - xmin) / int(n_tiles_x)
        origin = (xmin + tile_size / 2., ymin + tile_size / 2.)
        return cls(mode, tile_size, origin), (xmin, ymin, xmax, ymax)

    @property
    def mode(self):
        return self._mode

    @property
    def neighbor_offsets(self):
        return _NEIGHBOR_OFFSETS[self._mode]

    @property
    def circumradius(self):
        """Distance from a tile centre to its corners."""
        if self._mode == SQUARE:
            return self.tile_size / math.sqrt(2.)
        return self.tile_size / _SQRT3

    def neighbors(self, coord):
        """All coordinates adjacent to ``coord``, whether materialised or not."""
        i, j = coord
        return tuple((i + di, j + dj) for di, dj in self.neighbor_offsets)

    def position(self, coord) -> tuple[float, float]:
        """Plane position of the centre of the tile at ``coord``."""
        i, j = coord
        x0, y0 = self.origin
        s = self.tile_size
        if self._mode == SQUARE:
            return (x0 + s * i, y0 + s * j)
        return (x0 + s * (i + j / 2.), y0 + s * _SQRT3 / 2. * j)

    def positions(self, coords: Iterable) -> NDArray[np.floating]:
        """Plane positions of many tiles as an array of shape (n, 2)."""
        c = np.array(list(coords), dtype=float).reshape(-1, 2)
        s = self.tile_size
        if self._mode == SQUARE:
            x = s * c[:, 0]
            y = s * c[:, 1]
        else:
            x = s * (c[:, 0] + c[:, 1] / 2.)
            y = s * _SQRT3 / 2. * c[:, 1]
        return np.column_stack([x + self.origin[0], y + self.origin[1]])

    def nearest_coord(self, x, y, viewport=False):
        """
        Coordinate of the tile whose centre is nearest to a point.

        Parameters
        ----------
        x, y : float
            Point position.
        viewport : bool, optional
            If True, the point is given in viewport units (default: False).
        """
        if viewport:
            x, y = self.from_viewport(x, y)

        u = (x - self.origin[0]) / self.tile_size
        v = (y - self.origin[1]) / self.tile_size

        if self._mode == SQUARE:
            return (int(round(u)), int(round(v)))

        # cube rounding of fractional axial coordinates
        r = v * 2. / _SQRT3
        q = u - r / 2.
        cq, cr, cs = q, r, -q - r
        rq, rr, rs = round(cq), round(cr), round(cs)
        dq, dr, ds = abs(rq - cq), abs(rr - cr), abs(rs - cs)
        if dq > dr and dq > ds:
            rq = -rr - rs
        elif dr > ds:
            rr = -rq - rs
        return (int(rq), int(rr))

    def distance(self, coord, point):
        """Plane distance between a tile centre and a point."""
        x, y = self.position(coord)
        return math.hypot(x - point[0], y - point[1])

    def tile_polygon(self, coord, viewport=False) -> Polygon:
        """Outline of the tile at ``coord`` as a shapely Polygon."""
        cx, cy = self.position(coord)
        if self._mode == SQUARE:
            h = self.tile_size / 2.
            corners = [(cx - h, cy - h), (cx + h, cy - h), (cx + h, cy + h), (cx - h, cy + h)]
        else:
            R = self.circumradius
            corners = [(cx + R * math.cos(math.radians(a)),
                        cy + R * math.sin(math.radians(a))) for a in range(30, 360, 60)]
        if viewport:
            corners = [self.to_viewport(x, y) for x, y in corners]
        return Polygon(corners)

    def coords_covering(self, bounds):
        """
        All coordinates whose tile centre lies inside a bounding box.

        Parameters
        ----------
        bounds : tuple of float
            (xmin, ymin, xmax, ymax) in plane units.

        Returns
        -------
        list of tuple
            Coordinates in row-major order.
        """
        xmin, ymin, xmax, ymax = bounds
        x0, y0 = self.origin
        s = self.tile_size
        eps = 1e-9

        if self._mode == SQUARE:
            cols = range(math.ceil((xmin - x0) / s - eps), math.floor((xmax - x0) / s + eps) + 1)
            rows = range(math.ceil((ymin - y0) / s - eps), math.floor((ymax - y0) / s + eps) + 1)
            return [(i, j) for j in rows for i in cols]

        h = s * _SQRT3 / 2.
        coords = []
        for r in range(math.ceil((ymin - y0) / h - eps), math.floor((ymax - y0) / h + eps) + 1):
            qmin = math.ceil((xmin - x0) / s - r / 2. - eps)
            qmax = math.floor((xmax - x0) / s - r / 2. + eps)
            coords.extend((q, r) for q in range(qmin, qmax + 1))
        return coords

    def extent(self, coords):
        """
        Bounds (xmin, ymin, xmax, ymax) of the tile outlines at ``coords``.
        """
        pos = self.positions(coords)
        if len(pos) == 0:
            raise ValueError("cannot compute the extent of an empty grid")
        if self._mode == SQUARE:
            hx = hy = self.tile_size / 2.
        else:
            hx, hy = self.tile_size / 2., self.circumradius
        return (pos[:, 0].min() - hx, pos[:, 1].min() - hy,
                pos[:, 0].max() + hx, pos[:, 1].max() + hy)

    def resize(self, width, height, coords, margin_ratio=0.):
        """
        Fit the tiles at ``coords`` into a viewport of the given size.

        Recomputes ``viewport_scale`` and ``viewport_offset`` so that the
        grid's extent is centred in the viewport, with tile proportions
        preserved. Plane positions are not affected.

        Parameters
        ----------
        width, height : float
            Viewport dimensions.
        coords : iterable of tuple
            Tiles that have to be visible.
        margin_ratio : float, optional
            Empty margin on each side as fraction of the viewport
            (default: 0).
        """
        if width <= 0 or height <= 0:
            raise ValueError("viewport dimensions must be positive")

        xmin, ymin, xmax, ymax = self.extent(coords)
        usable_w = width * (1. - 2. * margin_ratio)
        usable_h = height * (1. - 2. * margin_ratio)
        scale = min(usable_w / (xmax - xmin), usable_h / (ymax - ymin))

        self.viewport_scale = scale
        self.viewport_offset = (
            width / 2. - scale * (xmin + xmax) / 2.,
            height / 2. - scale * (ymin + ymax) / 2.,
        )
        return self.viewport_scale, self.viewport_offset

    def to_viewport(self, x, y):
        return (x * self.viewport_scale + self.viewport_offset[0],
                y * self.viewport_scale + self.viewport_offset[1])

    def from_viewport(self, x, y):
        return ((x - self.viewport_offset[0]) / self.viewport_scale,
                (y - self.viewport_offset[1]) / self.viewport_scale)

    def viewport_position(self, coord):
        return self.to_viewport(*self.position(coord))

    def __eq__(self, other):
        if not isinstance(other, GridGeometry):
            return NotImplemented
        return (self._mode == other._mode
                and math.isclose(self.tile_size, other.tile_size, rel_tol=1e-9)
                and all(math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)
                        for a, b in zip(self.origin, other.origin)))

    def __hash__(self):
        return hash(self._mode)

    def __repr__(self):
        return (f"GridGeometry(mode={self._mode!r}, tile_size={self.tile_size!r}, "
                f"origin={self.origin!r})")
