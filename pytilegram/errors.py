"""
Exceptions raised by pytilegram.
"""


class TilegramError(Exception):
    """Base class for all pytilegram errors."""


class GridConflict(TilegramError):
    """
    A tile ownership change was illegal and has not been applied.

    Raised when claiming a tile that is already owned, releasing a tile
    that is unowned, or addressing a coordinate that is not part of the
    grid. Callers should try a different tile rather than retry.
    """

    def __init__(self, coord, message):
        self.coord = coord
        super().__init__(f"{message} (tile {coord})")


class ImportFormatError(TilegramError, ValueError):
    """A serialized tilegram could not be imported."""


class InvalidMetric(TilegramError, ValueError):
    """A metric value or metric-per-tile setting is out of range."""
