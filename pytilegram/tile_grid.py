"""
The tile grid: which region owns which tile.

This module provides the Tile record and the TileGrid class. A TileGrid is
an arena of tiles indexed by coordinate with a second index from region
id to owned coordinates. Ownership only changes through claim() and
release(), which are used both by the cartogram computation and by manual
editing.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from pytilegram.errors import GridConflict
from pytilegram.tools import connected_components

logger = logging.getLogger(__name__)


class Tile:
    """
    One grid cell.

    Attributes
    ----------
    coord : tuple of int
        Grid coordinate, unique within a grid.
    owner : hashable or None
        Id of the owning region, None if the tile is unowned.
    version : int
        Incremented on every ownership change of this tile.
    """

    __slots__ = ('coord', 'owner', 'version')

    def __init__(self, coord, owner=None, version=0):
        self.coord = coord
        self.owner = owner
        self.version = version

    def __repr__(self):
        return f"Tile(coord={self.coord!r}, owner={self.owner!r}, version={self.version})"


class TileGrid:
    """
    Tiles of one geography and the ownership relation on them.

    The set of tile coordinates and the adjacency between them are fixed
    when the grid is created; only ownership changes afterwards. The grid
    may be sparse, i.e. neighbouring coordinates need not be part of it.

    Parameters
    ----------
    geometry : GridGeometry
        Provides the adjacency relation of the tiles.
    coords : iterable of tuple
        Coordinates of the tiles in the grid.
    ownership : mapping, optional
        Initial owner per coordinate. Becomes the edit baseline.

    Examples
    --------
    >>> grid = TileGrid(GridGeometry('square'), [(0, 0), (1, 0)])
    >>> grid.claim((0, 0), 'A')
    >>> [t.coord for t in grid.tiles_owned_by('A')]
    [(0, 0)]
    """

    def __init__(self, geometry, coords, ownership=None):
        self.geometry = geometry
        self._tiles = {}
        for coord in coords:
            coord = (int(coord[0]), int(coord[1]))
            if coord in self._tiles:
                raise ValueError(f"duplicate tile coordinate {coord}")
            self._tiles[coord] = Tile(coord)

        self._neighbors = {
            coord: tuple(nb for nb in geometry.neighbors(coord))
            for coord in self._tiles
        }
        self._owned = {}
        self._baseline = {}
        self._edited = set()
        self._change_callbacks = []

        if ownership:
            self.replace_ownership(ownership)

    @classmethod
    def covering(cls, geometry, bounds):
        """Grid with one tile for every coordinate centred inside ``bounds``."""
        return cls(geometry, geometry.coords_covering(bounds))

    def __len__(self):
        return len(self._tiles)

    def __contains__(self, coord):
        return coord in self._tiles

    def __iter__(self):
        return iter(self._tiles.values())

    @property
    def tiles(self) -> list[Tile]:
        return list(self._tiles.values())

    @property
    def coords(self):
        return list(self._tiles)

    def tile(self, coord) -> Tile:
        try:
            return self._tiles[coord]
        except KeyError:
            raise GridConflict(coord, "no such tile in grid") from None

    def owner_of(self, coord):
        return self.tile(coord).owner

    @property
    def region_ids(self):
        """Ids of all regions that own at least one tile."""
        return sorted(self._owned, key=str)

    def owned_count(self, region_id) -> int:
        return len(self._owned.get(region_id, ()))

    def tiles_owned_by(self, region_id) -> set[Tile]:
        return {self._tiles[c] for c in self._owned.get(region_id, ())}

    def coords_owned_by(self, region_id) -> set:
        return set(self._owned.get(region_id, ()))

    def unowned_coords(self) -> list:
        return [c for c, t in self._tiles.items() if t.owner is None]

    def neighbors_of(self, coord):
        """
        The fixed neighbourhood of a tile.

        Returns all coordinates adjacent to ``coord`` under the grid's
        tiling, including coordinates that are not materialised in this
        (possibly sparse) grid.
        """
        try:
            return self._neighbors[coord]
        except KeyError:
            return self.geometry.neighbors(coord)

    def present_neighbors_of(self, coord):
        return tuple(nb for nb in self.neighbors_of(coord) if nb in self._tiles)

    # ------------------------------------------------------------------
    # mutation

    def claim(self, coord, region_id, edit=True):
        """
        Give an unowned tile to a region.

        Parameters
        ----------
        coord : tuple of int
            Tile to claim.
        region_id : hashable
            New owner, must not be None.
        edit : bool, optional
            True for manual edits (default). The computation passes False,
            which moves the edit baseline along with the change.

        Raises
        ------
        GridConflict
            If the tile does not exist or is already owned. Nothing is
            changed in that case.
        """
        if region_id is None:
            raise ValueError("region_id must not be None, use release() instead")
        tile = self.tile(coord)
        if tile.owner is not None:
            raise GridConflict(coord, f"tile already owned by {tile.owner!r}")

        tile.owner = region_id
        tile.version += 1
        self._owned.setdefault(region_id, set()).add(coord)
        self._track(coord, edit)
        logger.debug("tile %s claimed by %r", coord, region_id)
        self._notify()

    def release(self, coord, edit=True):
        """
        Make an owned tile unowned.

        Raises
        ------
        GridConflict
            If the tile does not exist or is already unowned.
        """
        tile = self.tile(coord)
        if tile.owner is None:
            raise GridConflict(coord, "tile is not owned")

        owner = tile.owner
        owned = self._owned[owner]
        owned.discard(coord)
        if not owned:
            del self._owned[owner]
        tile.owner = None
        tile.version += 1
        self._track(coord, edit)
        logger.debug("tile %s released by %r", coord, owner)
        self._notify()

    def replace_ownership(self, ownership: Mapping, edit=False):
        """
        Set the owner of every tile at once.

        Tiles missing from ``ownership`` become unowned. The mapping is
        validated before anything changes.

        Raises
        ------
        GridConflict
            If ``ownership`` names a coordinate that is not in the grid.
        """
        for coord in ownership:
            if coord not in self._tiles:
                raise GridConflict(coord, "no such tile in grid")

        self._owned = {}
        for coord, tile in self._tiles.items():
            owner = ownership.get(coord)
            if owner != tile.owner:
                tile.owner = owner
                tile.version += 1
            if owner is not None:
                self._owned.setdefault(owner, set()).add(coord)

        if edit:
            self._edited = {c for c, t in self._tiles.items()
                            if t.owner != self._baseline.get(c)}
        else:
            self.mark_baseline()
        self._notify()

    def _track(self, coord, edit):
        owner = self._tiles[coord].owner
        if not edit:
            self._baseline[coord] = owner
            self._edited.discard(coord)
        elif owner == self._baseline.get(coord):
            self._edited.discard(coord)
        else:
            self._edited.add(coord)

    # ------------------------------------------------------------------
    # editing interface

    def mark_baseline(self):
        """Record current ownership as the last imported/computed state."""
        self._baseline = {c: t.owner for c, t in self._tiles.items()}
        self._edited = set()

    def has_unsaved_edits(self) -> bool:
        """True if manual edits made ownership differ from the baseline."""
        return bool(self._edited)

    def edited_coords(self):
        return sorted(self._edited)

    def reset_edits(self):
        """Accept the current ownership as baseline; ownership is unchanged."""
        self.mark_baseline()

    def on_change(self, callback: Callable[['TileGrid'], None]):
        """Register a callback invoked after every ownership change."""
        self._change_callbacks.append(callback)

    def _notify(self):
        for callback in self._change_callbacks:
            callback(self)

    # ------------------------------------------------------------------
    # cluster queries

    def boundary_tiles_of(self, region_id) -> set[Tile]:
        """
        Tiles of a region with at least one neighbour it does not own.

        Neighbours outside the grid count as not owned.
        """
        boundary = set()
        for coord in self._owned.get(region_id, ()):
            for nb in self.neighbors_of(coord):
                nb_tile = self._tiles.get(nb)
                if nb_tile is None or nb_tile.owner != region_id:
                    boundary.add(self._tiles[coord])
                    break
        return boundary

    def unowned_neighbors_of_region(self, region_id) -> set:
        """Unowned grid coordinates adjacent to the region's cluster."""
        candidates = set()
        for tile in self.boundary_tiles_of(region_id):
            for nb in self.neighbors_of(tile.coord):
                nb_tile = self._tiles.get(nb)
                if nb_tile is not None and nb_tile.owner is None:
                    candidates.add(nb)
        return candidates

    def interior_removable_tiles_of(self, region_id) -> set[Tile]:
        """
        Tiles of a region that can be released without splitting it.

        A tile is removable if the region's remaining tiles are still
        connected once it is gone. A region's last tile is removable.
        """
        owned = self._owned.get(region_id, set())
        removable = set()
        for coord in owned:
            rest = owned - {coord}
            if len(connected_components(rest, self.neighbors_of)) <= 1:
                removable.add(self._tiles[coord])
        return removable

    def components_of(self, region_id) -> list[set]:
        """Connected components of a region's tiles, largest first."""
        return connected_components(self._owned.get(region_id, ()), self.neighbors_of)

    def is_connected(self, region_id) -> bool:
        return len(self.components_of(region_id)) <= 1

    def ownership(self) -> dict:
        """Snapshot mapping every tile coordinate to its owner (or None)."""
        return {c: t.owner for c, t in self._tiles.items()}

    def owned_counts(self) -> dict:
        return {region_id: len(coords) for region_id, coords in self._owned.items()}

    def __repr__(self):
        return f"TileGrid({len(self._tiles)} tiles, {len(self._owned)} regions, {self.geometry!r})"
