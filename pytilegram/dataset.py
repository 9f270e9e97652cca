"""
Regions and datasets.

A Dataset is the immutable, ordered collection of regions of one geography
together with the name of the metric they carry. Datasets are built from
tabular data (a custom ``id,metric`` upload) or from a GeoDataFrame that
also provides region outlines and centroids.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

import pandas as pd
import geopandas as gpd
from shapely.geometry import Polygon, MultiPolygon

from pytilegram.errors import InvalidMetric


def check_metric(value, region_id=None) -> float:
    """Return ``value`` as float, raising InvalidMetric if negative or NaN."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidMetric(f"metric of region {region_id!r} is not a number: {value!r}") from None
    if math.isnan(value) or value < 0:
        raise InvalidMetric(f"metric of region {region_id!r} must be non-negative, got {value}")
    return value


class Region:
    """
    A geographic unit.

    Parameters
    ----------
    id : hashable
        Stable identifier, e.g. a FIPS code.
    name : str
        Display name.
    metric : float
        Non-negative metric value, e.g. population.
    centroid : tuple of float
        Geographic centroid in the plane of the tile grid.
    """

    __slots__ = ('_id', '_name', '_metric', '_centroid')

    def __init__(self, id, name, metric, centroid):
        self._id = id
        self._name = str(name)
        self._metric = check_metric(metric, id)
        self._centroid = (float(centroid[0]), float(centroid[1]))

    id = property(lambda self: self._id)
    name = property(lambda self: self._name)
    metric = property(lambda self: self._metric)
    centroid = property(lambda self: self._centroid)

    def __eq__(self, other):
        if not isinstance(other, Region):
            return NotImplemented
        return (self._id, self._name, self._metric, self._centroid) == \
               (other._id, other._name, other._metric, other._centroid)

    def __hash__(self):
        return hash((self._id, self._metric))

    def __repr__(self):
        return f"Region(id={self._id!r}, name={self._name!r}, metric={self._metric!r}, centroid={self._centroid!r})"


class Dataset:
    """
    Ordered regions of one geography carrying one metric.

    Parameters
    ----------
    regions : iterable of Region
        Regions in display order. Ids must be unique.
    metric_name : str, optional
        Name of the metric, e.g. 'Population 2016'.
    geography : str, optional
        Identifier of the geography, e.g. 'United States'.

    Examples
    --------
    >>> ds = Dataset([Region('A', 'Alpha', 100, (0, 0)),
    ...               Region('B', 'Beta', 300, (2, 0))], 'population')
    >>> ds.sum_metrics
    400.0
    """

    def __init__(self, regions, metric_name='metric', geography=None):
        self._regions = tuple(regions)
        self._by_id = {}
        for region in self._regions:
            if not isinstance(region, Region):
                raise TypeError(f"Expected Region, got {type(region)}")
            if region.id in self._by_id:
                raise ValueError(f"duplicate region id {region.id!r}")
            self._by_id[region.id] = region
        self.metric_name = metric_name
        self.geography = geography

    @property
    def regions(self):
        return self._regions

    @property
    def ids(self):
        return [r.id for r in self._regions]

    @property
    def sum_metrics(self) -> float:
        return float(sum(r.metric for r in self._regions))

    def region(self, region_id) -> Region:
        return self._by_id[region_id]

    def __contains__(self, region_id):
        return region_id in self._by_id

    def __iter__(self):
        return iter(self._regions)

    def __len__(self):
        return len(self._regions)

    def __repr__(self):
        return (f"Dataset({len(self._regions)} regions, metric_name={self.metric_name!r}, "
                f"geography={self.geography!r})")

    @classmethod
    def from_records(cls,
                     records,
                     metric_name='metric',
                     geography=None):
        """
        Build a dataset from ``(id, name, metric, (x, y))`` tuples.
        """
        return cls([Region(*rec) for rec in records], metric_name, geography)

    @classmethod
    def from_csv(cls,
                 path_or_buffer,
                 centroids: Mapping[Any, tuple[float, float]],
                 names: Mapping[Any, str] | None = None,
                 metric_name='metric',
                 geography=None):
        """
        Parse ``id,metric`` tabular data into a dataset.

        A leading header row is detected and skipped. Region ids are read
        as strings, so that codes like '01' keep their leading zeros.

        Parameters
        ----------
        path_or_buffer : str or file-like
            CSV source, anything ``pandas.read_csv`` accepts.
        centroids : mapping
            Centroid per region id, from the geography the data belongs to.
        names : mapping, optional
            Display name per region id. Defaults to the id.
        metric_name : str, optional
            Name of the metric (default: 'metric').
        geography : str, optional
            Geography identifier.

        Raises
        ------
        ValueError
            For ids unknown to ``centroids``, duplicates, or unparsable rows.
        InvalidMetric
            For negative metric values.
        """
        df = pd.read_csv(path_or_buffer,
                         header=None,
                         names=['id', 'metric'],
                         usecols=[0, 1],
                         dtype=str,
                         skipinitialspace=True,
                         skip_blank_lines=True)
        values = pd.to_numeric(df['metric'], errors='coerce')
        if len(df) and math.isnan(values.iloc[0]):
            df = df.iloc[1:]
            values = values.iloc[1:]

        bad = df['id'][values.isna()].to_list()
        if bad:
            raise ValueError(f"rows without a numeric metric: {bad}")

        names = names or {}
        regions = []
        unknown = []
        for region_id, metric in zip(df['id'].str.strip().to_list(), values.to_list()):
            if region_id not in centroids:
                unknown.append(region_id)
                continue
            regions.append(Region(region_id, names.get(region_id, region_id), metric, centroids[region_id]))
        if unknown:
            raise ValueError(f"unknown region ids for geography {geography!r}: {unknown}")

        return cls(regions, metric_name, geography)

    @classmethod
    def from_geo_df(cls,
                    geo_df: gpd.GeoDataFrame,
                    id_column: str,
                    metric_column: str,
                    name_column: str | None = None,
                    geography=None):
        """
        Build a dataset from a GeoDataFrame of region outlines.

        Centroids are the shapely centroids of the row geometries, in the
        GeoDataFrame's coordinate system.

        Examples
        --------
        >>> gdf = gpd.read_file("states.geojson")
        >>> ds = Dataset.from_geo_df(gdf, 'fips', 'population', 'name')
        """
        regions = []
        for _, row in geo_df.iterrows():
            geom = row[geo_df.geometry.name]
            c = geom.centroid
            name = row[name_column] if name_column is not None else row[id_column]
            regions.append(Region(row[id_column], name, row[metric_column], (c.x, c.y)))
        return cls(regions, metric_column, geography)


def geometries_from_geo_df(geo_df: gpd.GeoDataFrame, id_column: str) -> dict:
    """
    Map region ids to their Polygon or MultiPolygon outlines.

    Rows with other geometry types are skipped.
    """
    geometries = {}
    for region_id, geom in zip(geo_df[id_column].to_list(), geo_df.geometry.to_list()):
        if isinstance(geom, (Polygon, MultiPolygon)):
            geometries[region_id] = geom
    return geometries
