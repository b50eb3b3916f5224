"""Forage search and patch exploitation for provisioning females.

Search: scan a precomputed offset mask outward from the nest (nearest
first) and take the first pollen-map cell whose pollen and nectar meet
this month's quantity/quality thresholds.

Exploitation, once a patch is held:

  base      = patch pollen / pollen of a fully stocked patch
  available = base × competition
  potential = available × efficiency(age) × hours
  competition = clamp(1 − removal_const × local female density, 0, 1)
  harvest   = min(potential, remaining need, pollen left)   [score units]
  mg        = harvest × pollen_score_to_mg

Give-up (patch dropped, re-search next call) when, after harvesting,
either the remaining pollen is below ``giveup_threshold`` × its level at
selection, or today's uncapped yield (mg) is below ``giveup_return``.

Female density comes from a coarse grid (1 km cells, females per
hectare) rebuilt single-threaded at the start of every day.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional, Tuple

import numpy as np

from osmia_abm.config import ForageSection
from osmia_abm.types import ForageState

if TYPE_CHECKING:
    from osmia_abm.landscape import GridLandscape, PollenMap
    from osmia_abm.params import ParameterTable
    from osmia_abm.types import Individual


# ═══════════════════════════════════════════════════════════════════════
# SEARCH MASKS
# ═══════════════════════════════════════════════════════════════════════

def build_ring_mask(steps: int, directions: int, max_distance: float) -> np.ndarray:
    """Offsets on ``steps`` distance rings × ``directions`` headings.

    Ring i lies at i × max_distance / (steps − 1); ring 0 is the nest
    itself and appears once.  Returns shape (n, 2), nearest first.
    """
    step = max_distance / (steps - 1)
    angles = 2.0 * np.pi * np.arange(directions) / directions
    offsets = [(0.0, 0.0)]
    for i in range(1, steps):
        r = i * step
        offsets.extend((r * np.cos(a), r * np.sin(a)) for a in angles)
    return np.asarray(offsets)


def build_detailed_mask(step: float, max_distance: float) -> np.ndarray:
    """Every grid offset within ``max_distance``, sorted by distance."""
    n = int(max_distance // step)
    coords = np.arange(-n, n + 1) * step
    gx, gy = np.meshgrid(coords, coords, indexing='ij')
    pts = np.column_stack([gx.ravel(), gy.ravel()])
    d = np.hypot(pts[:, 0], pts[:, 1])
    keep = d <= max_distance
    pts, d = pts[keep], d[keep]
    return pts[np.argsort(d, kind='stable')]


def build_forage_mask(section: ForageSection) -> np.ndarray:
    if section.mask_type == 'detailed':
        return build_detailed_mask(section.detailed_mask_step, section.detailed_mask_max)
    return build_ring_mask(section.forage_steps, section.forage_directions,
                           section.typical_homing_distance)


# ═══════════════════════════════════════════════════════════════════════
# FEMALE DENSITY GRID
# ═══════════════════════════════════════════════════════════════════════

class DensityGrid:
    """Active females per hectare on a coarse grid.

    Rebuilt from scratch each day before stepping; read-only while
    individuals step, so no locking is needed.
    """

    def __init__(self, width: float, height: float, cell_size: float = 1000.0):
        self.cell_size = cell_size
        self.nx = max(1, int(np.ceil(width / cell_size)))
        self.ny = max(1, int(np.ceil(height / cell_size)))
        self.grid = np.zeros((self.nx, self.ny), dtype=np.float64)
        self._cell_ha = cell_size * cell_size / 10_000.0

    def build(self, positions: Iterable[Tuple[float, float]]) -> None:
        self.grid[:] = 0.0
        pts = np.asarray(list(positions), dtype=np.float64).reshape(-1, 2)
        if len(pts) == 0:
            return
        cx = np.clip((pts[:, 0] / self.cell_size).astype(int), 0, self.nx - 1)
        cy = np.clip((pts[:, 1] / self.cell_size).astype(int), 0, self.ny - 1)
        np.add.at(self.grid, (cx, cy), 1.0)

    def count_at(self, x: float, y: float) -> float:
        ix = min(max(int(x / self.cell_size), 0), self.nx - 1)
        iy = min(max(int(y / self.cell_size), 0), self.ny - 1)
        return float(self.grid[ix, iy])

    def density_at(self, x: float, y: float) -> float:
        """Females per hectare in the cell containing (x, y)."""
        return self.count_at(x, y) / self._cell_ha


def competition_factor(density: float, removal_const: float) -> float:
    """Share of a patch's pollen left after competing females, in [0, 1]."""
    return min(max(1.0 - density * removal_const, 0.0), 1.0)


def potential_yield(base: float, density: float, efficiency: float, hours: float,
                    section: ForageSection) -> float:
    """Today's yield in score units before the need and depletion caps.

    ``base`` is the patch's pollen relative to a fully stocked patch;
    competing females reduce it before the age efficiency applies.
    """
    available = (base * competition_factor(density, section.density_removal_const)
                 * section.competition_scaler)
    return available * efficiency * hours


# ═══════════════════════════════════════════════════════════════════════
# SEARCH & EXPLOITATION
# ═══════════════════════════════════════════════════════════════════════

def cell_acceptable(supply: Tuple[float, float, float, float],
                    thresholds: np.ndarray) -> bool:
    """Pollen and nectar quantity/quality all meet the month's thresholds."""
    pollen_q, pollen_qual, nectar_q, nectar_qual = supply
    return (pollen_q >= thresholds[0] and pollen_qual >= thresholds[1]
            and nectar_q >= thresholds[2] and nectar_qual >= thresholds[3])


def search_patch(x0: float, y0: float, mask: np.ndarray, pollen_map: 'PollenMap',
                 landscape: 'GridLandscape',
                 thresholds: np.ndarray) -> Optional[Tuple[float, float]]:
    """First acceptable location along the mask, or None."""
    for dx, dy in mask:
        x, y = x0 + dx, y0 + dy
        if not landscape.contains(x, y):
            continue
        if cell_acceptable(pollen_map.supply(x, y), thresholds):
            return x, y
    return None


def exploit_patch(state: ForageState, potential: float, need: float,
                  pollen_map: 'PollenMap', section: ForageSection) -> float:
    """Harvest from the held patch and apply the give-up rules.

    Args:
        state: The female's forage state (``has_location`` must be True).
        potential: Today's potential yield in score units.
        need: Remaining provision need in score units.

    Returns:
        Harvested pollen in mg.
    """
    available = pollen_map.pollen_at(state.x, state.y)
    uncapped = min(potential, available)
    taken = pollen_map.deplete(state.x, state.y, min(uncapped, need))
    remaining = pollen_map.pollen_at(state.x, state.y)

    if (remaining < section.pollen_giveup_threshold * state.initial_pollen
            or uncapped * section.pollen_score_to_mg < section.pollen_giveup_return):
        state.has_location = False
    return taken * section.pollen_score_to_mg


def forage_day(ind: 'Individual', hours: float, need_mg: float, month: int,
               params: 'ParameterTable', host) -> float:
    """Forage for ``hours`` toward a cell still needing ``need_mg``.

    ``host`` supplies ``landscape``, ``pollen_map``, ``density_grid`` and
    ``forage_mask``.  Returns the mg of pollen gained today.
    """
    if hours <= 0 or need_mg <= 0:
        return 0.0
    section = params.config.forage
    fdata = ind.female
    state = fdata.forage
    x0, y0 = (ind.nest.x, ind.nest.y) if ind.nest is not None else (ind.x, ind.y)

    if not state.has_location:
        found = search_patch(x0, y0, host.forage_mask, host.pollen_map,
                             host.landscape, params.thresholds_for_month(month))
        if found is None:
            return 0.0
        state.x, state.y = found
        state.initial_pollen = host.pollen_map.pollen_at(*found)
        state.has_location = True

    efficiency = min(params.forage_efficiency_at(fdata.emerge_age),
                     section.max_pollen_per_hour)
    base = (host.pollen_map.pollen_at(state.x, state.y)
            / params.config.landscape.pollen_quantity_max)
    density = host.density_grid.density_at(state.x, state.y)
    potential = potential_yield(base, density, efficiency, hours, section)
    need = need_mg / section.pollen_score_to_mg
    return exploit_patch(state, potential, need, host.pollen_map, section)
