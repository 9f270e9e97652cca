"""
Tests for the square and hexagonal grid coordinate math.

Run with: pytest tests/test_grid_geometry.py -v
"""

import math

import pytest

from pytilegram import GridGeometry, TileGrid


COORDS = [(i, j) for i in range(-4, 5) for j in range(-4, 5)]


@pytest.mark.parametrize('mode', ['square', 'hexagon'])
class TestGridGeometry:
    """Coordinate conversions that must hold in both tiling modes."""

    def test_nearest_coord_inverts_position(self, mode):
        """The tile nearest to a tile centre is that tile."""
        geom = GridGeometry(mode, tile_size=2.5, origin=(10., -3.))
        for coord in COORDS:
            x, y = geom.position(coord)
            assert geom.nearest_coord(x, y) == coord

    def test_nearest_coord_tolerates_offsets(self, mode):
        """Points slightly off a centre still map to that tile."""
        geom = GridGeometry(mode, tile_size=1.)
        for coord in COORDS:
            x, y = geom.position(coord)
            assert geom.nearest_coord(x + 0.2, y - 0.2) == coord

    def test_neighbors_are_one_tile_size_apart(self, mode):
        """All neighbours lie at the tile spacing."""
        geom = GridGeometry(mode, tile_size=3.)
        expected = 4 if mode == 'square' else 6
        for coord in COORDS:
            neighbors = geom.neighbors(coord)
            assert len(set(neighbors)) == expected
            for nb in neighbors:
                assert geom.distance(nb, geom.position(coord)) == pytest.approx(3.)

    def test_adjacency_is_symmetric(self, mode):
        """b is a neighbour of a iff a is a neighbour of b."""
        geom = GridGeometry(mode)
        grid = TileGrid(geom, COORDS)
        for a in grid.coords:
            for b in grid.coords:
                assert (b in grid.neighbors_of(a)) == (a in grid.neighbors_of(b))

    def test_positions_match_position(self, mode):
        geom = GridGeometry(mode, tile_size=1.7, origin=(1., 2.))
        pos = geom.positions(COORDS)
        for coord, (x, y) in zip(COORDS, pos):
            assert (x, y) == pytest.approx(geom.position(coord))

    def test_tile_polygons_tessellate(self, mode):
        """Neighbouring tiles touch without overlapping."""
        geom = GridGeometry(mode, tile_size=1.)
        a = geom.tile_polygon((0, 0))
        for nb in geom.neighbors((0, 0)):
            b = geom.tile_polygon(nb)
            assert a.intersection(b).area == pytest.approx(0., abs=1e-9)
            assert a.distance(b) == pytest.approx(0., abs=1e-9)

    def test_tile_area(self, mode):
        geom = GridGeometry(mode, tile_size=2.)
        area = geom.tile_polygon((3, 1)).area
        if mode == 'square':
            assert area == pytest.approx(4.)
        else:
            # hexagon with inradius 1
            assert area == pytest.approx(2. * math.sqrt(3.))

    def test_coords_covering_stays_inside_bounds(self, mode):
        geom = GridGeometry(mode, tile_size=1., origin=(0.3, 0.1))
        bounds = (-2., -1., 5., 4.)
        coords = geom.coords_covering(bounds)
        assert len(coords) == len(set(coords)) > 0
        for x, y in geom.positions(coords):
            assert bounds[0] <= x <= bounds[2]
            assert bounds[1] <= y <= bounds[3]

    def test_resize_fits_viewport(self, mode):
        """After resize the grid extent fills the viewport in one dimension."""
        geom = GridGeometry(mode, tile_size=1.)
        coords = [(i, j) for i in range(10) for j in range(4)]
        geom.resize(300., 200., coords)

        xmin, ymin, xmax, ymax = geom.extent(coords)
        vx0, vy0 = geom.to_viewport(xmin, ymin)
        vx1, vy1 = geom.to_viewport(xmax, ymax)
        assert vx0 >= -1e-9 and vy0 >= -1e-9
        assert vx1 <= 300. + 1e-9 and vy1 <= 200. + 1e-9
        assert (vx1 - vx0 == pytest.approx(300.)) or (vy1 - vy0 == pytest.approx(200.))
        # centred
        assert (vx0 + vx1) / 2. == pytest.approx(150.)
        assert (vy0 + vy1) / 2. == pytest.approx(100.)

    def test_resize_keeps_plane_positions(self, mode):
        geom = GridGeometry(mode, tile_size=1.)
        before = geom.position((2, 3))
        geom.resize(640., 480., COORDS)
        assert geom.position((2, 3)) == before
        vx, vy = geom.viewport_position((2, 3))
        assert geom.nearest_coord(vx, vy, viewport=True) == (2, 3)


class TestGridGeometryConstruction:

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            GridGeometry('triangle')

    def test_non_positive_tile_size(self):
        with pytest.raises(ValueError):
            GridGeometry('square', tile_size=0.)

    def test_square_coords_covering(self):
        geom = GridGeometry('square', tile_size=1.)
        assert sorted(geom.coords_covering((0., 0., 2., 1.))) == \
            [(0, 0), (0, 1), (1, 0), (1, 1), (2, 0), (2, 1)]

    def test_for_bounds(self):
        geom, bounds = GridGeometry.for_bounds((0., 0., 10., 5.), n_tiles_x=12, margin_ratio=0.1)
        assert bounds == pytest.approx((-1., -1., 11., 6.))
        assert geom.tile_size == pytest.approx(1.)
        assert geom.origin == pytest.approx((-0.5, -0.5))

    def test_equality(self):
        assert GridGeometry('hexagon', 1., (0., 0.)) == GridGeometry('hexagon', 1., (0., 0.))
        assert GridGeometry('hexagon', 1.) != GridGeometry('square', 1.)
        assert GridGeometry('square', 1.) != GridGeometry('square', 2.)

    def test_equal_geometries_hash_equal(self):
        a = GridGeometry('hexagon', 0.1 * 3)
        b = GridGeometry('hexagon', 0.3)
        assert a.tile_size != b.tile_size
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1
