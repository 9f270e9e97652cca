"""
Tests for tilegram import and export.

Run with: pytest tests/test_topo_json.py -v
"""

import copy
import json
import logging

import pytest

from pytilegram import (
    Dataset,
    GridGeometry,
    ImportFormatError,
    Region,
    TileCartogram,
    build_dataset_from_tiles,
    from_topo_json,
    to_geo_df,
    to_svg,
    to_topo_json,
)

from conftest import square_grid


@pytest.fixture
def converged(two_by_two, two_region_dataset, metrics_100):
    carto = TileCartogram(two_region_dataset, two_by_two, metrics_100)
    assert carto.compute().converged
    return carto


@pytest.fixture
def hex_carto():
    dataset = Dataset([
        Region('06', 'California', 390, (0., 0.)),
        Region('41', 'Oregon', 40, (0., 6.)),
        Region('32', 'Nevada', 30, (5., 2.)),
    ])
    carto = TileCartogram.from_centroids(dataset, mode='hexagon', n_tiles_x=16, tile_budget=46)
    carto.compute()
    return carto


def reimport(doc):
    return from_topo_json(json.loads(json.dumps(doc)))


class TestRoundTrip:

    def test_square_round_trip(self, converged):
        doc = converged.to_topo_json()
        geometry, ownership, metric_per_tile = reimport(doc)
        assert ownership == converged.grid.ownership()
        assert metric_per_tile == 100.
        assert geometry == converged.geometry

    def test_hexagon_round_trip(self, hex_carto):
        doc = hex_carto.to_topo_json()
        geometry, ownership, metric_per_tile = reimport(doc)
        assert ownership == hex_carto.grid.ownership()
        assert metric_per_tile == pytest.approx(hex_carto.metrics.metric_per_tile)
        assert geometry.mode == 'hexagon'

    def test_unowned_tiles_are_untagged(self, two_by_two):
        two_by_two.claim((0, 0), 'A')
        doc = to_topo_json(two_by_two, 5)
        props = [g['properties'] for g in doc['objects']['tiles']['geometries']]
        assert sum('id' in p for p in props) == 1
        assert all(p['tilegramValue'] == 5 for p in props)
        assert doc['properties']['tilegramMetricPerTile'] == 5
        _, ownership, _ = reimport(doc)
        assert ownership == {(0, 0): 'A', (1, 0): None, (0, 1): None, (1, 1): None}

    def test_inferred_geometry(self, converged, caplog):
        doc = converged.to_topo_json()
        del doc['properties']
        with caplog.at_level(logging.WARNING, logger='pytilegram.topo_json'):
            geometry, ownership, metric_per_tile = reimport(doc)
        assert 'inferred' in caplog.text
        assert geometry.mode == 'square'
        assert geometry.tile_size == pytest.approx(1.)
        assert ownership == converged.grid.ownership()
        assert metric_per_tile == 100.

    def test_inferred_hexagon_geometry(self, hex_carto):
        doc = hex_carto.to_topo_json()
        del doc['properties']
        geometry, ownership, _ = reimport(doc)
        assert geometry.mode == 'hexagon'
        assert geometry.tile_size == pytest.approx(hex_carto.geometry.tile_size)
        first = min(hex_carto.grid.coords)
        shifted = {(i - first[0], j - first[1]): owner
                   for (i, j), owner in hex_carto.grid.ownership().items()}
        assert ownership == shifted

    def test_quantized_document(self):
        doc = {
            'type': 'Topology',
            'transform': {'scale': [0.5, 0.5], 'translate': [-0.5, -0.5]},
            'arcs': [
                [[0, 0], [2, 0], [0, 2], [-2, 0], [0, -2]],
                [[2, 0], [2, 0], [0, 2], [-2, 0], [0, -2]],
            ],
            'objects': {
                'states': {
                    'type': 'GeometryCollection',
                    'geometries': [
                        {'type': 'Polygon', 'arcs': [[0]], 'properties': {'id': 'A', 'tilegramValue': 10}},
                        {'type': 'Polygon', 'arcs': [[~1]], 'properties': {'id': 'B', 'tilegramValue': 10}},
                    ],
                },
            },
        }
        geometry, ownership, metric_per_tile = from_topo_json(doc)
        assert ownership == {(0, 0): 'A', (1, 0): 'B'}
        assert metric_per_tile == 10.
        assert geometry.tile_size == pytest.approx(1.)


class TestMalformed:

    @pytest.mark.parametrize('mutate', [
        lambda doc: doc['objects']['tiles']['geometries'][0].update(properties=['A']),
        lambda doc: doc.update(properties=[1, 2]),
        lambda doc: doc['objects']['tiles']['geometries'][0].update(arcs={'ring': [0]}),
        lambda doc: doc['objects']['tiles']['geometries'][0].update(arcs=[0]),
        lambda doc: doc['objects']['tiles']['geometries'][0]['properties'].update(id=['A']),
        lambda doc: doc['objects']['tiles']['geometries'][0]['properties'].update(id={'A': 1}),
        lambda doc: doc['arcs'].__setitem__(0, [[0., 0.]] * 5),
    ], ids=['tile-properties-list', 'topology-properties-list', 'arcs-dict',
            'ring-int', 'owner-list', 'owner-dict', 'zero-area'])
    def test_wrongly_typed_members(self, converged, mutate):
        doc = converged.to_topo_json()
        mutate(doc)
        with pytest.raises(ImportFormatError):
            from_topo_json(doc, known_region_ids=['A', 'B'])
        with pytest.raises(ImportFormatError):
            converged.import_topo_json(doc)

    def test_numeric_owner_is_accepted(self, converged):
        doc = converged.to_topo_json()
        doc['objects']['tiles']['geometries'][0]['properties']['id'] = 6
        _, ownership, _ = from_topo_json(doc)
        assert ownership[(0, 0)] == 6

    def test_not_a_topology(self):
        with pytest.raises(ImportFormatError):
            from_topo_json({'type': 'FeatureCollection'})

    def test_duplicate_tile(self, converged):
        doc = converged.to_topo_json()
        geometries = doc['objects']['tiles']['geometries']
        geometries.append(copy.deepcopy(geometries[0]))
        with pytest.raises(ImportFormatError, match='duplicate'):
            from_topo_json(doc)

    def test_unknown_region(self, converged):
        doc = converged.to_topo_json()
        with pytest.raises(ImportFormatError, match='unknown region'):
            from_topo_json(doc, known_region_ids={'A'})
        from_topo_json(doc, known_region_ids={'A', 'B'})

    def test_missing_metric_per_tile(self, converged):
        doc = converged.to_topo_json()
        del doc['properties']['tilegramMetricPerTile']
        for geom in doc['objects']['tiles']['geometries']:
            del geom['properties']['tilegramValue']
        with pytest.raises(ImportFormatError):
            from_topo_json(doc)

    def test_bad_arc_index(self, converged):
        doc = converged.to_topo_json()
        doc['objects']['tiles']['geometries'][0]['arcs'] = [[99]]
        with pytest.raises(ImportFormatError):
            from_topo_json(doc)

    def test_misaligned_tile(self, converged):
        doc = converged.to_topo_json()
        doc['arcs'][0] = [[x + 0.4, y] for x, y in doc['arcs'][0]]
        with pytest.raises(ImportFormatError, match='aligned'):
            from_topo_json(doc)

    def test_failed_import_leaves_cartogram_untouched(self, converged):
        doc = converged.to_topo_json()
        geometries = doc['objects']['tiles']['geometries']
        geometries.append(copy.deepcopy(geometries[0]))

        grid = converged.grid
        before = grid.ownership()
        with pytest.raises(ImportFormatError):
            converged.import_topo_json(doc)
        assert converged.grid is grid
        assert grid.ownership() == before
        assert converged.metrics.metric_per_tile == 100.


class TestImportIntoCartogram:

    def test_same_grid_is_reused(self, converged):
        doc = converged.to_topo_json()
        for geom in doc['objects']['tiles']['geometries']:
            geom['properties'].pop('id', None)
        doc['objects']['tiles']['geometries'][0]['properties']['id'] = 'Z'
        doc['properties']['tilegramMetricPerTile'] = 7

        grid = converged.grid
        converged.import_topo_json(doc)
        assert converged.grid is grid
        assert grid.owned_counts() == {'Z': 1}
        assert converged.metrics.metric_per_tile == 7.
        assert converged.dataset.ids == ['Z']
        assert not grid.has_unsaved_edits()

    def test_different_grid_is_rebuilt(self, converged, two_region_dataset, metrics_100):
        carto = TileCartogram(two_region_dataset, square_grid(3, 3), metrics_100)
        old_grid = carto.grid
        carto.import_topo_json(converged.to_topo_json())
        assert carto.grid is not old_grid
        assert len(carto.grid) == 4
        assert carto.grid.ownership() == converged.grid.ownership()

    def test_imported_tilegram_is_converged(self, converged):
        carto = TileCartogram.from_topo_json(converged.to_topo_json(), names={'A': 'Alpha'})
        assert carto.dataset.region('A').name == 'Alpha'
        assert carto.dataset.region('B').metric == 300.
        assert carto.iterate().converged
        assert carto.grid.ownership() == converged.grid.ownership()


class TestOtherExports:

    def test_build_dataset_from_tiles(self):
        geometry = GridGeometry('square')
        ownership = {(0, 0): 'A', (2, 0): 'A', (1, 0): None, (5, 5): 'B'}
        dataset = build_dataset_from_tiles(ownership, geometry, 25.)
        assert dataset.ids == ['A', 'B']
        assert dataset.region('A').metric == 50.
        assert dataset.region('A').centroid == pytest.approx((1., 0.))

    def test_svg(self, converged):
        svg = to_svg(converged.grid, colors={'A': '#ff0000'})
        assert svg.startswith('<?xml')
        assert svg.count('<polygon') == 4
        assert svg.count('fill="#ff0000"') == 1
        assert 'data-region="B"' in svg

    def test_svg_of_method(self, converged):
        assert converged.to_svg().count('<polygon') == 4

    def test_geo_df(self, converged):
        gdf = to_geo_df(converged.grid)
        assert len(gdf) == 4
        assert sorted(gdf['region_id'].to_list()) == ['A', 'B', 'B', 'B']
        assert gdf.geometry.area.sum() == pytest.approx(4.)

        named = converged.to_geo_df()
        assert set(named['name']) == {'Alpha', 'Beta'}
