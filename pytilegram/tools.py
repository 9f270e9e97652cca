"""
Utility functions shared by the tilegram modules.

This module provides helper functions for:
- Converting shapely geometries to matplotlib patches
- Rounding metric ratios to whole tile counts
- Flood-fill connectivity over tile coordinates
- Simplifying region boundaries before they are rasterised onto tiles
"""

from __future__ import annotations

import math
from collections import deque
from typing import Any, Callable, Hashable, Iterable, Mapping, Union

from matplotlib.path import Path
from matplotlib.patches import PathPatch
from shapely.geometry import Polygon, MultiPolygon
import visvalingamwyatt as vw


def polygon_patch(
    polygon: Union[Polygon, MultiPolygon],
    **kwargs: Any
) -> PathPatch:
    """
    Create a matplotlib PathPatch from a shapely Polygon or MultiPolygon.

    Parameters
    ----------
    polygon : shapely.geometry.Polygon or shapely.geometry.MultiPolygon
        The geometry to convert, typically a single tile.
    **kwargs : dict
        Additional keyword arguments passed to matplotlib.patches.PathPatch
        (e.g., facecolor, edgecolor, alpha, linewidth).

    Returns
    -------
    matplotlib.patches.PathPatch

    Raises
    ------
    TypeError
        If polygon is not a Polygon or MultiPolygon.
    """
    def ring_codes(n):
        codes = [Path.LINETO] * n
        codes[0] = Path.MOVETO
        codes[-1] = Path.CLOSEPOLY
        return codes

    def rings_of(poly):
        yield list(poly.exterior.coords)
        for interior in poly.interiors:
            yield list(interior.coords)

    if isinstance(polygon, MultiPolygon):
        parts = list(polygon.geoms)
    elif isinstance(polygon, Polygon):
        parts = [polygon]
    else:
        raise TypeError(f"Expected Polygon or MultiPolygon, got {type(polygon)}")

    vertices = []
    codes = []
    for part in parts:
        for ring in rings_of(part):
            vertices.extend(ring)
            codes.extend(ring_codes(len(ring)))

    return PathPatch(Path(vertices, codes), **kwargs)


def round_half_away(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero.

    Python's built-in ``round`` rounds halves to even, which would turn a
    metric ratio of 2.5 into 2 tiles.

    >>> round_half_away(2.5), round_half_away(-2.5), round_half_away(2.4)
    (3, -3, 2)
    """
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def id_sort_key(region_id):
    """
    Sort key for region ids that may mix numbers and strings.

    Numbers come first in numeric order, then everything else by its
    string form.
    """
    if isinstance(region_id, (int, float)):
        return (0, region_id, '')
    return (1, 0, str(region_id))


def largest_remainder(
    quotas: Mapping[Hashable, float],
    total: int,
    minimum: Mapping[Hashable, int] | None = None,
) -> dict[Hashable, int]:
    """
    Apportion ``total`` whole units proportionally to ``quotas``.

    Every key first receives ``floor(quota)`` (but at least its entry in
    ``minimum``); the units still missing are handed out in order of
    decreasing fractional remainder. If the minimums alone exceed
    ``total``, units are taken back from the keys with the largest
    allocations that stay above their minimum.

    Parameters
    ----------
    quotas : mapping
        Fractional share per key, e.g. ``metric / metric_per_tile``.
    total : int
        Number of units to hand out.
    minimum : mapping, optional
        Lower bound per key.

    Returns
    -------
    dict
        Whole-unit allocation per key. Ties are resolved by key order.
    """
    minimum = minimum or {}
    keys = sorted(quotas, key=id_sort_key)
    counts = {k: max(int(math.floor(quotas[k])), minimum.get(k, 0)) for k in keys}
    missing = total - sum(counts.values())

    if missing > 0:
        by_remainder = sorted(keys, key=lambda k: (-(quotas[k] - math.floor(quotas[k])), id_sort_key(k)))
        for i in range(missing):
            if not by_remainder:
                break
            counts[by_remainder[i % len(by_remainder)]] += 1
    elif missing < 0:
        while missing < 0:
            reducible = [k for k in keys if counts[k] > minimum.get(k, 0)]
            if not reducible:
                break
            k = max(reducible, key=lambda k: (counts[k] - quotas[k], counts[k]))
            counts[k] -= 1
            missing += 1

    return counts


def connected_components(
    nodes: Iterable[Hashable],
    neighbors: Callable[[Hashable], Iterable[Hashable]],
) -> list[set]:
    """
    Split ``nodes`` into connected components by breadth-first flood fill.

    Only edges between members of ``nodes`` are followed. Components are
    returned largest first.
    """
    remaining = set(nodes)
    components = []
    while remaining:
        start = remaining.pop()
        component = {start}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for nb in neighbors(node):
                if nb in remaining:
                    remaining.discard(nb)
                    component.add(nb)
                    queue.append(nb)
        components.append(component)
    components.sort(key=lambda c: (-len(c), min(c)))
    return components


def is_connected(
    nodes: Iterable[Hashable],
    neighbors: Callable[[Hashable], Iterable[Hashable]],
) -> bool:
    """True if ``nodes`` form at most one connected component."""
    return len(connected_components(nodes, neighbors)) <= 1


def coarse_grain_geometries(geometries: list, th: float) -> list:
    """
    Simplify region outlines using the Visvalingam-Whyatt algorithm.

    Rasterising detailed coastlines onto a coarse tile grid gains nothing,
    so outlines may be simplified before seeding.

    Parameters
    ----------
    geometries : list of shapely.geometry.Polygon or MultiPolygon
        Region outlines.
    th : float
        Simplification threshold. Higher values = more simplification.

    Returns
    -------
    list
        Simplified geometries, in the same order. Holes are dropped.
    """
    def simplify(poly):
        coo = poly.exterior.coords.xy
        new_coo = vw.Simplifier(list(zip(*coo))).simplify(threshold=th)
        if len(new_coo) < 4:
            return poly
        return Polygon(new_coo)

    simplified = []
    for geom in geometries:
        if isinstance(geom, MultiPolygon):
            simplified.append(MultiPolygon([simplify(p) for p in geom.geoms]))
        else:
            simplified.append(simplify(geom))
    return simplified
