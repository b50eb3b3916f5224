"""Cell parasitism: open-time risk model and mechanistic parasitoid grid.

Two interchangeable ways of deciding a closed cell's ParasitoidType:

  Simple (default):
    P(parasitised) = days_open × rate
    type = BOMBYLID with probability ``bombylid_probability`` else
           CLEPTOPARASITE

  Mechanistic (``parasitism.mechanistic: true``):
    per species s, P_s = 1 − exp(−a_s × N_s(x, y) × days_open)
    species are tested in order; the first success is assigned.
    N_s is a per-cell density that suffers monthly mortality, disperses
    to the 8 neighbouring cells each day (reflecting borders, mass
    conserving) and is replenished by parasitised cocoons at emergence.

At most one parasitoid type is ever assigned to a cell.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from osmia_abm.config import ParasitismSection
from osmia_abm.types import ParasitoidType

logger = logging.getLogger(__name__)

_NEIGHBOURS = [(-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1)]

SPECIES = (ParasitoidType.BOMBYLID, ParasitoidType.CLEPTOPARASITE)


def calc_parasitised(days_open: int, section: ParasitismSection,
                     rng: np.random.Generator) -> ParasitoidType:
    """Open-time parasitism risk for one completed cell."""
    risk = days_open * section.prob_per_day_open
    if rng.random() >= risk:
        return ParasitoidType.UNPARASITISED
    if rng.random() < section.bombylid_probability:
        return ParasitoidType.BOMBYLID
    return ParasitoidType.CLEPTOPARASITE


def _disperse(grid: np.ndarray, fraction: float) -> np.ndarray:
    """Move ``fraction`` of each cell equally to its 8 neighbours.

    Shares that would leave the grid are reflected back to their source
    cell, so the total is conserved exactly.
    """
    nx, ny = grid.shape
    share = grid * (fraction / len(_NEIGHBOURS))
    result = grid - grid * fraction
    for dx, dy in _NEIGHBOURS:
        sx = slice(max(0, -dx), nx - max(0, dx))
        sy = slice(max(0, -dy), ny - max(0, dy))
        tx = slice(max(0, dx), nx - max(0, -dx))
        ty = slice(max(0, dy), ny - max(0, -dy))
        result[tx, ty] += share[sx, sy]
        bounced = share.copy()
        bounced[sx, sy] = 0.0
        result += bounced
    return result


class ParasitoidGrid:
    """Per-species parasitoid densities on a square grid."""

    def __init__(self, section: ParasitismSection, width: float, height: float,
                 rng: np.random.Generator):
        n_species = len(section.attack_rates)
        if n_species != len(SPECIES):
            raise ValueError(
                f"mechanistic parasitism models {len(SPECIES)} species, "
                f"got {n_species} attack rates"
            )
        self.cell_size = section.cell_size
        self.nx = max(1, int(np.ceil(width / self.cell_size)))
        self.ny = max(1, int(np.ceil(height / self.cell_size)))
        self.attack_rates = np.asarray(section.attack_rates, dtype=np.float64)
        self.dispersal = np.asarray(section.dispersal, dtype=np.float64)
        self.monthly_mortality = np.asarray(
            section.monthly_mortality, dtype=np.float64).reshape(n_species, 12)

        hl = section.start_high_low
        self.density = np.empty((n_species, self.nx, self.ny))
        for s in range(n_species):
            high, low = hl[2 * s], hl[2 * s + 1]
            self.density[s] = rng.uniform(low, high, size=(self.nx, self.ny))
        self._lock = threading.Lock()

    def cell_of(self, x: float, y: float):
        ix = min(max(int(x / self.cell_size), 0), self.nx - 1)
        iy = min(max(int(y / self.cell_size), 0), self.ny - 1)
        return ix, iy

    def density_at(self, x: float, y: float) -> np.ndarray:
        """Density of each species in the cell containing (x, y)."""
        ix, iy = self.cell_of(x, y)
        return self.density[:, ix, iy].copy()

    def totals(self) -> np.ndarray:
        return self.density.sum(axis=(1, 2))

    def daily_update(self, month: int) -> None:
        """Mortality then dispersal; run single-threaded before stepping."""
        for s in range(self.density.shape[0]):
            self.density[s] *= 1.0 - self.monthly_mortality[s, month % 12]
            if self.dispersal[s] > 0.0:
                self.density[s] = _disperse(self.density[s], self.dispersal[s])

    def add_parasitoid(self, kind: ParasitoidType, x: float, y: float) -> None:
        """One parasitoid of ``kind`` emerges from a cocoon at (x, y)."""
        if kind == ParasitoidType.UNPARASITISED:
            return
        ix, iy = self.cell_of(x, y)
        with self._lock:
            self.density[SPECIES.index(kind), ix, iy] += 1.0

    def attack_probabilities(self, days_open: int, x: float, y: float) -> np.ndarray:
        return 1.0 - np.exp(-self.attack_rates * self.density_at(x, y) * days_open)

    def attack(self, days_open: int, x: float, y: float,
               rng: np.random.Generator) -> ParasitoidType:
        """Resolve parasitism of a cell open for ``days_open`` days."""
        for kind, p in zip(SPECIES, self.attack_probabilities(days_open, x, y)):
            if rng.random() < p:
                return kind
        return ParasitoidType.UNPARASITISED
