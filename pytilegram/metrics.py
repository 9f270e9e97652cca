"""
Conversion of region metrics into target tile counts.
"""

from __future__ import annotations

import logging
import math

from pytilegram.errors import InvalidMetric
from pytilegram.dataset import check_metric
from pytilegram.tools import round_half_away, largest_remainder

logger = logging.getLogger(__name__)

DEFAULT_TILE_BUDGET = 500


class MetricsBinding:
    """
    How much metric one tile represents.

    Parameters
    ----------
    metric_per_tile : float, optional
        Amount of metric one tile stands for (default: 1.0). Must be
        positive.
    sum_metrics : float, optional
        Sum of all region metrics of the active dataset (default: 0.0).

    Attributes
    ----------
    generation : int
        Incremented whenever either value changes. The computation uses it
        to notice that targets have to be recomputed.

    Examples
    --------
    >>> metrics = MetricsBinding(metric_per_tile=100)
    >>> metrics.target_tile_count(Region('A', 'A', 250, (0, 0)))
    3
    """

    def __init__(self, metric_per_tile=1., sum_metrics=0.):
        self._metric_per_tile = self.check_metric_per_tile(metric_per_tile)
        self._sum_metrics = check_metric(sum_metrics, 'sum_metrics')
        self.generation = 0
        self._targets = {}

    @classmethod
    def for_dataset(cls, dataset, tile_budget=DEFAULT_TILE_BUDGET):
        """
        Binding under which ``dataset`` needs about ``tile_budget`` tiles.
        """
        sum_metrics = dataset.sum_metrics
        if tile_budget <= 0:
            raise ValueError("tile_budget must be positive")
        if sum_metrics <= 0:
            raise InvalidMetric("dataset has no positive metric values")
        return cls(sum_metrics / tile_budget, sum_metrics)

    @staticmethod
    def check_metric_per_tile(value):
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise InvalidMetric(f"metric_per_tile is not a number: {value!r}") from None
        if not math.isfinite(value) or value <= 0:
            raise InvalidMetric(f"metric_per_tile must be positive and finite, got {value}")
        return value

    @property
    def metric_per_tile(self) -> float:
        return self._metric_per_tile

    @metric_per_tile.setter
    def metric_per_tile(self, value):
        self.set_metric_per_tile(value)

    @property
    def sum_metrics(self) -> float:
        return self._sum_metrics

    @sum_metrics.setter
    def sum_metrics(self, value):
        self.set_sum_metrics(value)

    def set_metric_per_tile(self, value):
        value = self.check_metric_per_tile(value)
        if value != self._metric_per_tile:
            logger.info("metric per tile changed from %g to %g", self._metric_per_tile, value)
            self._metric_per_tile = value
            self._invalidate()

    def set_sum_metrics(self, value):
        value = check_metric(value, 'sum_metrics')
        if value != self._sum_metrics:
            self._sum_metrics = value
            self._invalidate()

    def _invalidate(self):
        self._targets = {}
        self.generation += 1

    @property
    def tile_budget(self) -> float:
        """Approximate number of tiles all regions together should own."""
        return self._sum_metrics / self._metric_per_tile

    def target_tile_count(self, region) -> int:
        """
        Number of tiles ``region`` should own.

        ``metric / metric_per_tile`` rounded half away from zero, but at
        least one tile for any positive metric.

        Raises
        ------
        InvalidMetric
            If the region's metric is negative.
        """
        metric = check_metric(region.metric, region.id)
        key = (region.id, metric)
        if key not in self._targets:
            if metric == 0:
                target = 0
            else:
                target = max(1, round_half_away(metric / self._metric_per_tile))
            self._targets[key] = target
        return self._targets[key]

    def target_counts(self, dataset, tile_budget=None) -> dict:
        """
        Target tile count of every region in ``dataset``.

        Parameters
        ----------
        dataset : Dataset
        tile_budget : int, optional
            If given, targets are apportioned with the largest-remainder
            method so that they sum to exactly this number (as long as the
            one-tile minimum of positive regions allows it). Otherwise each
            region is rounded on its own and the sum may drift.

        Returns
        -------
        dict
            Region id to target count.
        """
        if tile_budget is None:
            return {region.id: self.target_tile_count(region) for region in dataset}

        quotas = {}
        minimum = {}
        for region in dataset:
            metric = check_metric(region.metric, region.id)
            quotas[region.id] = metric / self._metric_per_tile
            minimum[region.id] = 1 if metric > 0 else 0
        return largest_remainder(quotas, int(tile_budget), minimum)

    def __repr__(self):
        return (f"MetricsBinding(metric_per_tile={self._metric_per_tile!r}, "
                f"sum_metrics={self._sum_metrics!r})")
