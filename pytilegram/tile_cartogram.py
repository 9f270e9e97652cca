"""
Tile-based cartogram computation.

This module provides the iterative allocation that turns a seeded tile
grid into a tilegram, and the TileCartogram class that bundles a dataset,
its grid and the metrics binding.

Every call of iterate() performs one bounded step: each region whose
tile count differs from its target claims or releases a single tile.
Regions grow by claiming the unowned tile next to their cluster that is
closest to their centroid, and shrink by releasing the tile farthest from
their centroid whose removal keeps the cluster connected. An external
driver (a UI timer, or TileCartogram.compute()) calls iterate() until it
reports convergence.
"""

from __future__ import annotations

import enum
import logging

import numpy as np
import matplotlib as mpl
import matplotlib.pyplot as pl
from matplotlib.path import Path
from shapely.geometry import MultiPolygon
from shapely.ops import unary_union
from scipy.spatial import cKDTree
import progressbar

from pytilegram.errors import GridConflict
from pytilegram.grid_geometry import GridGeometry, HEXAGON
from pytilegram.tile_grid import TileGrid
from pytilegram.metrics import MetricsBinding, DEFAULT_TILE_BUDGET
from pytilegram.dataset import Dataset, geometries_from_geo_df
from pytilegram.tools import polygon_patch, coarse_grain_geometries, id_sort_key
from pytilegram import topo_json

logger = logging.getLogger(__name__)

# rate at which an interactive driver is expected to call iterate()
CARTOGRAM_COMPUTE_FPS = 60.0

# consecutive steps without a legal move before a region is given up on
DEFAULT_GRACE_STEPS = 30


class RegionState(enum.Enum):
    GROWING = 'growing'
    SHRINKING = 'shrinking'
    STABLE = 'stable'
    UNSATISFIABLE = 'unsatisfiable'


def region_state(owned, target):
    if owned < target:
        return RegionState.GROWING
    if owned > target:
        return RegionState.SHRINKING
    return RegionState.STABLE


class IterationState:
    """
    What the computation remembers between two calls of iterate().

    Parameters
    ----------
    grace_steps : int, optional
        Number of consecutive blocked steps after which a region is
        reported as unsatisfiable (default: 30).
    """

    def __init__(self, grace_steps=DEFAULT_GRACE_STEPS):
        if grace_steps < 1:
            raise ValueError("grace_steps must be at least 1")
        self.grace_steps = int(grace_steps)
        self.step = 0
        self.blocked_steps = {}
        self.unsatisfiable = set()
        self.metrics_generation = None

    def reset(self):
        """Forget blocked counters, e.g. after targets changed."""
        self.blocked_steps = {}
        self.unsatisfiable = set()

    def __repr__(self):
        return (f"IterationState(step={self.step}, blocked={self.blocked_steps!r}, "
                f"unsatisfiable={sorted(self.unsatisfiable, key=str)!r})")


class IterationStatus:
    """
    Result of one iterate() call.

    Truthy while the driver should keep calling iterate().

    Attributes
    ----------
    converged : bool
        Every region is stable or unsatisfiable.
    changed : bool
        At least one tile was claimed or released in this step.
    region_states : dict
        RegionState per region id, after the step.
    step : int
        Number of steps performed so far with the same IterationState.
    """

    def __init__(self, converged, changed, region_states, step):
        self.converged = converged
        self.changed = changed
        self.region_states = region_states
        self.step = step

    @property
    def active(self):
        return not self.converged

    @property
    def unsatisfiable(self):
        return sorted((rid for rid, s in self.region_states.items()
                       if s is RegionState.UNSATISFIABLE), key=str)

    def __bool__(self):
        return self.active

    def __repr__(self):
        return (f"IterationStatus(step={self.step}, converged={self.converged}, "
                f"changed={self.changed}, unsatisfiable={self.unsatisfiable!r})")


def _by_distance(geometry, coords, centroid, farthest=False):
    """
    ``coords`` ordered by distance to ``centroid``.

    Nearest first, or farthest first. Equal distances are ordered by
    lowest coordinate.
    """
    coords = sorted(coords)
    pos = geometry.positions(coords)
    d = np.hypot(pos[:, 0] - centroid[0], pos[:, 1] - centroid[1]) / geometry.tile_size
    d = np.round(d, 9)
    if farthest:
        d = -d
    order = np.argsort(d, kind='stable')
    return [coords[i] for i in order]


def _grow(grid, region):
    if grid.owned_count(region.id) == 0:
        # nothing to grow from yet, start next to the centroid
        candidates = grid.unowned_coords()
    else:
        candidates = grid.unowned_neighbors_of_region(region.id)
    if not candidates:
        return False

    for coord in _by_distance(grid.geometry, candidates, region.centroid):
        try:
            grid.claim(coord, region.id, edit=False)
        except GridConflict:
            continue
        return True
    return False


def _shrink(grid, region):
    candidates = [t.coord for t in grid.interior_removable_tiles_of(region.id)]
    for coord in _by_distance(grid.geometry, candidates, region.centroid, farthest=True):
        try:
            grid.release(coord, edit=False)
        except GridConflict:
            continue
        return True
    return False


def iterate(grid, dataset, metrics, state=None) -> IterationStatus:
    """
    Perform one step of the tile allocation.

    Parameters
    ----------
    grid : TileGrid
        Grid to mutate. Owned counts are read from it on every call, so
        manual edits between calls are respected.
    dataset : Dataset
        Regions to allocate tiles for, processed in order of their id.
    metrics : MetricsBinding
        Source of the target tile counts.
    state : IterationState, optional
        Blocked-step counters carried between calls. A fresh state is
        used if omitted, which disables the unsatisfiability check.

    Returns
    -------
    IterationStatus
    """
    if state is None:
        state = IterationState()
    if state.metrics_generation != metrics.generation:
        if state.metrics_generation is not None:
            logger.info("targets changed, resuming from current ownership")
        state.reset()
        state.metrics_generation = metrics.generation

    state.step += 1
    changed = False
    regions = sorted(dataset, key=lambda r: id_sort_key(r.id))

    for region in regions:
        target = metrics.target_tile_count(region)
        current = region_state(grid.owned_count(region.id), target)

        if current is RegionState.STABLE:
            state.blocked_steps.pop(region.id, None)
            continue

        if current is RegionState.GROWING:
            moved = _grow(grid, region)
        else:
            moved = _shrink(grid, region)

        if moved:
            changed = True
            state.blocked_steps.pop(region.id, None)
            if region.id in state.unsatisfiable:
                logger.info("region %r can move again", region.id)
                state.unsatisfiable.discard(region.id)
            continue

        blocked = state.blocked_steps.get(region.id, 0) + 1
        state.blocked_steps[region.id] = blocked
        if blocked >= state.grace_steps and region.id not in state.unsatisfiable:
            state.unsatisfiable.add(region.id)
            logger.info("region %r is unsatisfiable: owns %d tiles, target %d, no legal move for %d steps",
                        region.id, grid.owned_count(region.id), target, blocked)

    region_states = {}
    for region in regions:
        s = region_state(grid.owned_count(region.id), metrics.target_tile_count(region))
        if s is not RegionState.STABLE and region.id in state.unsatisfiable:
            s = RegionState.UNSATISFIABLE
        region_states[region.id] = s

    converged = all(s in (RegionState.STABLE, RegionState.UNSATISFIABLE)
                    for s in region_states.values())
    if converged and changed:
        logger.info("tilegram converged after %d steps", state.step)

    return IterationStatus(converged, changed, region_states, state.step)


class TileCartogram:
    """
    Create tilegrams: maps in which every region is a cluster of tiles.

    The number of tiles of a region is proportional to its metric, and its
    cluster stays contiguous and close to the region's centroid.

    Parameters
    ----------
    dataset : Dataset
        Regions and their metric values.
    grid : TileGrid
        Tile grid of the geography, possibly already seeded.
    metrics : MetricsBinding, optional
        Metric per tile. If None, it is chosen so that the dataset needs
        about ``tile_budget`` tiles.
    tile_budget : int, optional
        Approximate number of tiles, used if ``metrics`` is None
        (default: 500).
    grace_steps : int, optional
        Blocked steps before a region is reported unsatisfiable
        (default: 30).

    Attributes
    ----------
    status : IterationStatus or None
        Result of the latest iterate() call.

    Examples
    --------
    >>> gdf = gpd.read_file("states.geojson")
    >>> carto = TileCartogram.from_geo_df(gdf, 'fips', 'population', tile_budget=600)
    >>> carto.compute(verbose=True)
    >>> fig, ax = carto.plot()
    >>> json.dump(carto.to_topo_json(), open('tiles.topo.json', 'w'))
    """

    def __init__(self,
                 dataset,
                 grid,
                 metrics=None,
                 tile_budget=DEFAULT_TILE_BUDGET,
                 grace_steps=DEFAULT_GRACE_STEPS):
        self.dataset = dataset
        self.grid = grid
        if metrics is None:
            metrics = MetricsBinding.for_dataset(dataset, tile_budget)
        else:
            metrics.sum_metrics = dataset.sum_metrics
        self.metrics = metrics
        self.state = IterationState(grace_steps)
        self.status = None

    @property
    def geometry(self) -> GridGeometry:
        return self.grid.geometry

    @classmethod
    def from_geometries(cls,
                        dataset,
                        geometries,
                        mode=HEXAGON,
                        n_tiles_x=40,
                        margin_ratio=0.1,
                        threshold_for_polygon_coarse_graining=None,
                        **kwargs):
        """
        Grid covering a set of region outlines, seeded from the outlines.

        Parameters
        ----------
        dataset : Dataset
        geometries : dict
            Polygon or MultiPolygon outline per region id.
        mode : str, optional
            'square' or 'hexagon' (default: 'hexagon').
        n_tiles_x : int, optional
            Tiles across the padded width of the geography (default: 40).
        margin_ratio : float, optional
            Margin around the geography (default: 0.1).
        threshold_for_polygon_coarse_graining : float, optional
            If set, simplify outlines with the Visvalingam-Whyatt algorithm
            before seeding.
        **kwargs
            Passed on to TileCartogram().
        """
        whole_shape = unary_union(list(geometries.values()))
        geometry, bounds = GridGeometry.for_bounds(whole_shape.bounds,
                                                   n_tiles_x=n_tiles_x,
                                                   mode=mode,
                                                   margin_ratio=margin_ratio)
        carto = cls(dataset, TileGrid.covering(geometry, bounds), **kwargs)
        carto.seed_from_geometries(geometries, threshold_for_polygon_coarse_graining)
        return carto

    @classmethod
    def from_geo_df(cls,
                    geo_df,
                    id_column,
                    metric_column,
                    name_column=None,
                    geography=None,
                    **kwargs):
        """Tilegram of the regions of a GeoDataFrame, see from_geometries()."""
        dataset = Dataset.from_geo_df(geo_df, id_column, metric_column, name_column, geography)
        return cls.from_geometries(dataset, geometries_from_geo_df(geo_df, id_column), **kwargs)

    @classmethod
    def from_centroids(cls,
                       dataset,
                       mode=HEXAGON,
                       n_tiles_x=40,
                       margin_ratio=0.2,
                       **kwargs):
        """Grid covering the region centroids, seeded with one tile per region."""
        c = np.array([r.centroid for r in dataset], dtype=float).reshape(-1, 2)
        if len(c) == 0:
            raise ValueError("dataset has no regions")
        bounds = (c[:, 0].min(), c[:, 1].min(), c[:, 0].max(), c[:, 1].max())
        if bounds[0] == bounds[2] and bounds[1] == bounds[3]:
            bounds = (bounds[0] - 1., bounds[1] - 1., bounds[2] + 1., bounds[3] + 1.)
        geometry, grid_bounds = GridGeometry.for_bounds(bounds,
                                                        n_tiles_x=n_tiles_x,
                                                        mode=mode,
                                                        margin_ratio=margin_ratio)
        carto = cls(dataset, TileGrid.covering(geometry, grid_bounds), **kwargs)
        carto.seed_from_centroids()
        return carto

    @classmethod
    def from_topo_json(cls,
                       doc,
                       known_region_ids=None,
                       names=None,
                       geography=None,
                       **kwargs):
        """
        Load an exported tilegram.

        The dataset is rebuilt from the tiles, so the loaded tilegram is
        already converged.
        """
        geometry, ownership, metric_per_tile = topo_json.from_topo_json(doc, known_region_ids)
        dataset = topo_json.build_dataset_from_tiles(ownership, geometry, metric_per_tile,
                                                     names=names, geography=geography)
        grid = TileGrid(geometry, ownership, ownership)
        return cls(dataset, grid, MetricsBinding(metric_per_tile), **kwargs)

    # ------------------------------------------------------------------
    # seeding

    def seed_from_geometries(self, geometries, threshold_for_polygon_coarse_graining=None):
        """
        Give every tile to the region whose outline contains its centre.

        Uses matplotlib.path.contains_points for a vectorized test of all
        tile centres. Where a region ends up in several pieces, only the
        largest piece is kept so that every cluster starts connected.
        Regions too small to cover a tile centre start empty and are
        seeded by the first iterate() call.

        Parameters
        ----------
        geometries : dict
            Polygon or MultiPolygon outline per region id. Regions missing
            from the dataset are ignored.
        threshold_for_polygon_coarse_graining : float, optional
            If set, simplify outlines before testing.
        """
        ids = [r.id for r in self.dataset if r.id in geometries]
        shapes = [geometries[rid] for rid in ids]
        if threshold_for_polygon_coarse_graining is not None:
            shapes = coarse_grain_geometries(shapes, threshold_for_polygon_coarse_graining)

        coords = sorted(self.grid.coords)
        points = self.geometry.positions(coords)
        assigned = np.zeros(len(coords), dtype=bool)
        ownership = {}

        for rid, shape in zip(ids, shapes):
            parts = shape.geoms if isinstance(shape, MultiPolygon) else [shape]
            inside = np.zeros(len(coords), dtype=bool)
            for part in parts:
                inside |= Path(np.array(part.exterior.coords)).contains_points(points)
            inside &= ~assigned
            assigned |= inside
            for i in np.nonzero(inside)[0]:
                ownership[coords[i]] = rid

        self.grid.replace_ownership(ownership)

        for rid in ids:
            for piece in self.grid.components_of(rid)[1:]:
                for coord in piece:
                    self.grid.release(coord, edit=False)

        self.state = IterationState(self.state.grace_steps)
        logger.info("seeded %d of %d tiles from %d region outlines",
                    sum(self.grid.owned_counts().values()), len(self.grid), len(ids))

    def seed_from_centroids(self):
        """
        Clear the grid and give every region the free tile nearest its centroid.

        Regions with larger metric choose first.
        """
        self.grid.replace_ownership({})
        coords = sorted(self.grid.coords)
        if not coords:
            return
        tree = cKDTree(self.geometry.positions(coords))

        for region in sorted(self.dataset, key=lambda r: (-r.metric, id_sort_key(r.id))):
            if region.metric == 0:
                continue
            k = min(8, len(coords))
            while True:
                _, indices = tree.query(region.centroid, k=k)
                free = [coords[i] for i in np.atleast_1d(indices)
                        if self.grid.owner_of(coords[i]) is None]
                if free or k == len(coords):
                    break
                k = min(2 * k, len(coords))
            if not free:
                logger.warning("no free tile left to seed region %r", region.id)
                continue
            self.grid.claim(free[0], region.id, edit=False)

        self.state = IterationState(self.state.grace_steps)

    # ------------------------------------------------------------------
    # computation

    @property
    def target_counts(self):
        return self.metrics.target_counts(self.dataset)

    def iterate(self) -> IterationStatus:
        """One step of the allocation, see the module function iterate()."""
        self.status = iterate(self.grid, self.dataset, self.metrics, self.state)
        return self.status

    def compute(self, max_steps=100000, verbose=False) -> IterationStatus:
        """
        Call iterate() until the tilegram converges.

        Parameters
        ----------
        max_steps : int, optional
            Upper bound on the number of steps (default: 100000).
        verbose : bool, optional
            Show progress bar (default: False).

        Returns
        -------
        IterationStatus
            Status of the last step.
        """
        targets = self.target_counts
        if verbose:
            bar = progressbar.ProgressBar(
                        max_value=max(1, sum(abs(targets[rid] - self.grid.owned_count(rid))
                                             for rid in targets)),
                        widgets=[
                            progressbar.SimpleProgress(), " ",
                            progressbar.ETA(), " allocating tiles ...",
                        ]
                )

        for _ in range(max_steps):
            status = self.iterate()
            if verbose:
                remaining = sum(abs(targets[rid] - self.grid.owned_count(rid)) for rid in targets)
                bar.update(max(0, min(bar.max_value, bar.max_value - remaining)))
            if status.converged:
                break
        else:
            logger.warning("tilegram did not converge within %d steps", max_steps)

        if verbose:
            bar.finish()
            if status.unsatisfiable:
                print("unsatisfiable regions:", ", ".join(map(str, status.unsatisfiable)))

        return status

    def update_metrics(self, metric_per_tile=None, sum_metrics=None):
        """
        Change the resolution; the next iterate() resumes from current ownership.
        """
        if metric_per_tile is not None:
            self.metrics.metric_per_tile = metric_per_tile
        if sum_metrics is not None:
            self.metrics.sum_metrics = sum_metrics

    def set_dataset(self, dataset):
        """Replace the dataset wholesale, keeping the grid as warm start."""
        self.dataset = dataset
        self.metrics.sum_metrics = dataset.sum_metrics
        self.state = IterationState(self.state.grace_steps)
        self.status = None

    # ------------------------------------------------------------------
    # import / export

    def import_topo_json(self, doc, known_region_ids=None, names=None):
        """
        Replace the tilegram by an imported one.

        The grid is reused if the document covers exactly the same tiles on
        the same geometry, otherwise a new grid is built. Nothing changes
        if the document is malformed.

        The dataset is rebuilt from the region tags of the tiles: every tag
        becomes a region whose metric is its tile count times the imported
        metric per tile, so the current dataset is replaced, not matched.
        Tags are only checked against known regions if
        ``known_region_ids`` is given.

        Parameters
        ----------
        doc : dict
            Parsed TopoJSON document.
        known_region_ids : iterable, optional
            Reject tiles tagged with any other region id.
        names : dict, optional
            Display name per region id for the rebuilt dataset.

        Raises
        ------
        ImportFormatError
        """
        geometry, ownership, metric_per_tile = topo_json.from_topo_json(doc, known_region_ids)
        dataset = topo_json.build_dataset_from_tiles(ownership, geometry, metric_per_tile,
                                                     names=names,
                                                     metric_name=self.dataset.metric_name,
                                                     geography=self.dataset.geography)

        if geometry == self.geometry and set(ownership) == set(self.grid.coords):
            self.grid.replace_ownership(ownership)
        else:
            logger.info("imported tilegram does not match the current grid, rebuilding it")
            self.grid = TileGrid(geometry, ownership, ownership)

        self.dataset = dataset
        self.metrics.sum_metrics = dataset.sum_metrics
        self.metrics.metric_per_tile = metric_per_tile
        self.state = IterationState(self.state.grace_steps)
        self.status = None

    def to_topo_json(self):
        return topo_json.to_topo_json(self.grid, self.metrics.metric_per_tile)

    def to_svg(self, colors=None, **kwargs):
        return topo_json.to_svg(self.grid, colors, **kwargs)

    def to_geo_df(self, crs=None):
        gdf = topo_json.to_geo_df(self.grid, crs)
        names = {r.id: r.name for r in self.dataset}
        gdf['name'] = [names.get(rid) for rid in gdf['region_id']]
        return gdf

    # ------------------------------------------------------------------
    # plotting

    def plot(self,
             ax=None,
             region_colors=None,
             cmap='tab20',
             bg_color='w',
             edge_colors='w',
             show_unowned=False,
             unowned_color=[0.9, 0.9, 0.9],
             show_centroids=False,
             centroid_color='k'):
        """
        Plot the tilegram.

        Parameters
        ----------
        ax : matplotlib.axes.Axes, optional
            Axes to plot on. If None, creates new figure.
        region_colors : dict, optional
            Face color per region id. Defaults to colors from ``cmap``.
        cmap : str, optional
            Colormap used for the default colors (default: 'tab20').
        bg_color : color-like, optional
            Background color (default: 'w').
        edge_colors : color-like, optional
            Tile edge color (default: 'w').
        show_unowned : bool, optional
            Draw unowned tiles as well (default: False).
        unowned_color : color-like, optional
            Face color of unowned tiles.
        show_centroids : bool, optional
            Mark region centroids (default: False).
        centroid_color : color-like, optional
            Color of the centroid markers.

        Returns
        -------
        fig, ax : matplotlib Figure and Axes
            Only if ax was None; otherwise returns just ax.
        """
        generate_figure = ax is None

        if generate_figure:
            fig, ax = pl.subplots(1, 1)

        if region_colors is None:
            region_colors = topo_json.region_colors([r.id for r in self.dataset], cmap)

        ax.set_facecolor(bg_color)
        ax.set_aspect('equal')

        drawn = []
        for tile in self.grid:
            if tile.owner is None:
                if not show_unowned:
                    continue
                fc = unowned_color
            else:
                fc = region_colors.get(tile.owner, unowned_color)
            patch = polygon_patch(self.geometry.tile_polygon(tile.coord),
                                  facecolor=fc,
                                  edgecolor=edge_colors,
                                  lw=0.5,
                                  )
            ax.add_patch(patch)
            drawn.append(tile.coord)

        if show_centroids:
            c = np.array([r.centroid for r in self.dataset]).reshape(-1, 2)
            ax.plot(c[:, 0], c[:, 1], 'o', markersize=2, mew=0, mfc=mpl.colors.to_rgba(centroid_color))

        if drawn:
            xmin, ymin, xmax, ymax = self.geometry.extent(drawn)
            ax.set_xlim(xmin, xmax)
            ax.set_ylim(ymin, ymax)

        if generate_figure:
            return fig, ax
        else:
            return ax

    def __repr__(self):
        return f"TileCartogram({self.dataset!r}, {self.grid!r}, {self.metrics!r})"
