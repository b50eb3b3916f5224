"""Stand-alone grid landscape and floral resource map.

GridLandscape divides a rectangle into square polygons; each polygon is
nesting habitat or not.  PollenMap holds per-cell pollen and nectar
quantity/quality on a finer grid and is the only landscape state that
foraging females mutate during a day.

Concurrency:
  - Polygon geometry is immutable after construction.
  - Pollen depletion is serialized per cell through a striped lock array
    (cell index modulo the stripe count), so two females exploiting the
    same cell never lose an update.
  - ``regrow()`` runs single-threaded before any individual steps.

Grid indexing follows (ix, iy) with ix along x, matching
``np.add.at(grid, (cx, cy), ...)`` binning used by the density grid.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Tuple

import numpy as np

from osmia_abm.config import LandscapeSection

logger = logging.getLogger(__name__)

# Flowering season profile: relative floral capacity by day of year
_FLOWERING_PEAK_DOY = 130     # ~10 May
_FLOWERING_WIDTH = 45.0       # days (Gaussian SD)
_FLOWERING_FLOOR = 0.05


def flowering_profile(day_of_year: int) -> float:
    """Relative floral resource capacity [floor, 1] for a day of year."""
    z = (day_of_year - _FLOWERING_PEAK_DOY) / _FLOWERING_WIDTH
    return _FLOWERING_FLOOR + (1.0 - _FLOWERING_FLOOR) * float(np.exp(-0.5 * z * z))


# ═══════════════════════════════════════════════════════════════════════
# POLYGON GRID
# ═══════════════════════════════════════════════════════════════════════

class GridLandscape:
    """Rectangular landscape of square polygons."""

    def __init__(self, section: LandscapeSection, rng: np.random.Generator):
        self.width = section.width
        self.height = section.height
        self.polygon_size = section.polygon_size
        self.nx = max(1, int(np.ceil(self.width / self.polygon_size)))
        self.ny = max(1, int(np.ceil(self.height / self.polygon_size)))
        self.is_nesting = rng.random((self.nx, self.ny)) < section.nesting_fraction
        if not self.is_nesting.any():
            logger.warning(
                "landscape has no nesting polygons (nesting_fraction=%.3f)",
                section.nesting_fraction,
            )

    @property
    def n_polygons(self) -> int:
        return self.nx * self.ny

    def contains(self, x: float, y: float) -> bool:
        return 0.0 <= x < self.width and 0.0 <= y < self.height

    def clip(self, x: float, y: float) -> Tuple[float, float]:
        """Clamp a point into the landscape."""
        x = min(max(x, 0.0), np.nextafter(self.width, 0.0))
        y = min(max(y, 0.0), np.nextafter(self.height, 0.0))
        return x, y

    def polygon_at(self, x: float, y: float) -> int:
        """Polygon id containing (x, y), or -1 outside the landscape."""
        if not self.contains(x, y):
            return -1
        ix = min(int(x / self.polygon_size), self.nx - 1)
        iy = min(int(y / self.polygon_size), self.ny - 1)
        return ix * self.ny + iy

    def polygon_origin(self, polygon_id: int) -> Tuple[float, float]:
        ix, iy = divmod(polygon_id, self.ny)
        return ix * self.polygon_size, iy * self.polygon_size

    def random_location_in_polygon(self, polygon_id: int,
                                   rng: np.random.Generator) -> Tuple[float, float]:
        x0, y0 = self.polygon_origin(polygon_id)
        x1 = min(x0 + self.polygon_size, self.width)
        y1 = min(y0 + self.polygon_size, self.height)
        return self.clip(rng.uniform(x0, x1), rng.uniform(y0, y1))

    def nesting_polygons(self) -> List[int]:
        ix, iy = np.nonzero(self.is_nesting)
        return [int(i) * self.ny + int(j) for i, j in zip(ix, iy)]


# ═══════════════════════════════════════════════════════════════════════
# POLLEN MAP
# ═══════════════════════════════════════════════════════════════════════

class PollenMap:
    """Per-cell pollen and nectar resources with daily regrowth.

    Arrays have shape (nx, ny): ``pollen`` (current quantity, mg score
    units), ``pollen_quality``, ``nectar`` and ``nectar_quality``.
    ``capacity`` is the peak-season pollen quantity of each cell.
    """

    def __init__(self, section: LandscapeSection, rng: np.random.Generator,
                 width: float, height: float):
        self.cell_size = section.pollen_cell_size
        self.width = width
        self.height = height
        self.nx = max(1, int(np.ceil(width / self.cell_size)))
        self.ny = max(1, int(np.ceil(height / self.cell_size)))
        shape = (self.nx, self.ny)
        self.capacity = rng.uniform(section.pollen_quantity_min,
                                    section.pollen_quantity_max, shape)
        self.pollen_quality = rng.uniform(section.pollen_quality_min,
                                          section.pollen_quality_max, shape)
        self.nectar = rng.uniform(section.nectar_quantity_min,
                                  section.nectar_quantity_max, shape)
        self.nectar_quality = rng.uniform(section.pollen_quality_min,
                                          section.pollen_quality_max, shape)
        self.pollen = self.capacity.copy()
        self.regrowth = section.pollen_regrowth
        self._locks = [threading.Lock() for _ in range(section.lock_stripes)]

    def cell_of(self, x: float, y: float) -> Tuple[int, int]:
        ix = min(max(int(x / self.cell_size), 0), self.nx - 1)
        iy = min(max(int(y / self.cell_size), 0), self.ny - 1)
        return ix, iy

    def _lock_for(self, ix: int, iy: int) -> threading.Lock:
        return self._locks[(ix * self.ny + iy) % len(self._locks)]

    def supply(self, x: float, y: float) -> Tuple[float, float, float, float]:
        """(pollen quantity, pollen quality, nectar quantity, nectar quality)."""
        ix, iy = self.cell_of(x, y)
        return (float(self.pollen[ix, iy]), float(self.pollen_quality[ix, iy]),
                float(self.nectar[ix, iy]), float(self.nectar_quality[ix, iy]))

    def pollen_at(self, x: float, y: float) -> float:
        ix, iy = self.cell_of(x, y)
        return float(self.pollen[ix, iy])

    def deplete(self, x: float, y: float, amount: float) -> float:
        """Remove up to ``amount`` pollen from the cell at (x, y).

        Returns the amount actually removed (never more than remains).
        """
        if amount <= 0.0:
            return 0.0
        ix, iy = self.cell_of(x, y)
        with self._lock_for(ix, iy):
            available = self.pollen[ix, iy]
            taken = amount if amount < available else available
            self.pollen[ix, iy] = available - taken
        return float(taken)

    def regrow(self, day_of_year: int) -> None:
        """Move every cell a fixed fraction toward its seasonal capacity."""
        target = self.capacity * flowering_profile(day_of_year)
        self.pollen += self.regrowth * (target - self.pollen)
        np.maximum(self.pollen, 0.0, out=self.pollen)

    def total_pollen(self) -> float:
        return float(self.pollen.sum())
