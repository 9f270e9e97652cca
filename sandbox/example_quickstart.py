#!/usr/bin/env python
"""
Quick Start Example - Basic TileCartogram

Three adjacent rectangular regions whose populations differ by a factor
of ten each are turned into a hexagonal tilegram, exported and re-imported.
"""

import json
import logging

import matplotlib.pyplot as plt
from shapely.geometry import Polygon
from pytilegram import Dataset, Region, TileCartogram

logging.basicConfig(level=logging.INFO)

geometries = {
    'A': Polygon([(0, 0), (1, 0), (1, 1), (0, 1)]),
    'B': Polygon([(1, 0), (2, 0), (2, 1), (1, 1)]),
    'C': Polygon([(2, 0), (3, 0), (3, 1), (2, 1)]),
}
population = {'A': 2., 'B': 20., 'C': 200.}

dataset = Dataset(
    [Region(rid, rid, population[rid], (g.centroid.x, g.centroid.y)) for rid, g in geometries.items()],
    metric_name='population',
)

# Create and compute tilegram
carto = TileCartogram.from_geometries(
    dataset,
    geometries,
    mode='hexagon',
    n_tiles_x=30,
    margin_ratio=0.5,
    tile_budget=111,
)
status = carto.compute(verbose=True)
print(status)

# Halve the metric per tile; the next run starts from the current tiles
carto.update_metrics(metric_per_tile=carto.metrics.metric_per_tile / 2.)
carto.compute(verbose=True)

# Round trip through the exchange format
doc = json.loads(json.dumps(carto.to_topo_json()))
loaded = TileCartogram.from_topo_json(doc)
assert loaded.grid.ownership() == carto.grid.ownership()

# Plot result
fig, ax = carto.plot(show_unowned=True, show_centroids=True)
ax.set_title('Tilegram: Tiles Proportional to Population', fontsize=12)
fig.tight_layout()

# Save figure
output_path = 'img/example_quickstart.png'
fig.savefig(output_path, dpi=150, bbox_inches='tight', facecolor='white')
print(f"Saved: {output_path}")

plt.show()
