"""Nests and per-polygon nesting capacity.

A Nest is a linear sequence of cells (one offspring each) built by a
provisioning female.  It outlives her and is released back to its
habitat polygon once sealed and empty.

Locking discipline:
  - Every mutating Nest operation takes the nest's own lock; callers
    never lock a nest themselves.
  - Nest creation and release take the owning polygon's lock, so
    ``current_nest_count <= max_nests`` holds under parallel stepping.

Cell slots are never reused: a dead or emerged occupant leaves ``None``
behind, so ``cell_count()`` always equals the number of eggs ever laid.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

import numpy as np

from osmia_abm.types import ModelInvariantError

if TYPE_CHECKING:
    from osmia_abm.config import LandscapeSection
    from osmia_abm.landscape import GridLandscape
    from osmia_abm.types import Individual

logger = logging.getLogger(__name__)


class Nest:
    """One nest cavity: ordered cells, open/sealed lifecycle."""

    def __init__(self, nest_id: int, x: float, y: float, polygon: 'HabitatPolygon',
                 microsite_delay: int = 0):
        self.nest_id = nest_id
        self.x = x
        self.y = y
        self.polygon = polygon
        self.microsite_delay = microsite_delay
        self._cells: List[Optional['Individual']] = []
        self._open = True
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (f"Nest(id={self.nest_id}, cells={len(self._cells)}, "
                f"occupied={self.occupied_count()}, open={self._open})")

    @property
    def is_open(self) -> bool:
        return self._open

    def add_cell(self, occupant: 'Individual') -> int:
        """Append a new cell holding ``occupant``; returns its index.

        Raises:
            ModelInvariantError: If the nest is already sealed.
        """
        with self._lock:
            if not self._open:
                raise ModelInvariantError(
                    f"cell added to sealed nest {self.nest_id}"
                )
            self._cells.append(occupant)
            return len(self._cells) - 1

    def _index_of(self, occupant: 'Individual') -> int:
        for i, cell in enumerate(self._cells):
            if cell is occupant:
                return i
        raise ModelInvariantError(
            f"{occupant!r} is not an occupant of nest {self.nest_id}"
        )

    def replace_occupant(self, old: 'Individual', new: 'Individual') -> None:
        """Swap the occupant of an existing cell (metamorphosis)."""
        with self._lock:
            self._cells[self._index_of(old)] = new

    def remove_cell(self, occupant: 'Individual') -> None:
        """Deactivate the occupant's cell permanently (death or emergence)."""
        with self._lock:
            self._cells[self._index_of(occupant)] = None

    def seal(self) -> None:
        """Irreversibly close the nest to further cells."""
        with self._lock:
            self._open = False

    def cell_count(self) -> int:
        """Number of cells ever provisioned in this nest."""
        return len(self._cells)

    def occupied_count(self) -> int:
        with self._lock:
            return sum(1 for c in self._cells if c is not None)

    def occupants(self) -> List['Individual']:
        with self._lock:
            return [c for c in self._cells if c is not None]

    def is_empty(self) -> bool:
        """Sealed with no remaining occupants: ready for release."""
        return not self._open and self.occupied_count() == 0


class HabitatPolygon:
    """Nesting capacity tracker for one habitat polygon.

    Invariant: ``current_nest_count <= max_nests``; nests are only added
    or removed while holding ``lock``.
    """

    def __init__(self, polygon_id: int, nest_probability: float, max_nests: int):
        self.polygon_id = polygon_id
        self.nest_probability = nest_probability
        self.max_nests = max_nests
        self.nests: List[Nest] = []
        self.lock = threading.Lock()

    @property
    def current_nest_count(self) -> int:
        return len(self.nests)

    def has_capacity(self) -> bool:
        return self.current_nest_count < self.max_nests


class NestManager:
    """Creates nests in habitat polygons and releases empty ones."""

    def __init__(self, polygons: Dict[int, HabitatPolygon],
                 microsite_delay_range: tuple = (0, 0)):
        self.polygons = polygons
        self.microsite_delay_range = microsite_delay_range
        self._ids = itertools.count()
        self._id_lock = threading.Lock()
        self.nests_created = 0
        self.nests_released = 0

    @classmethod
    def from_landscape(cls, landscape: 'GridLandscape',
                       section: 'LandscapeSection') -> 'NestManager':
        polygons = {
            pid: HabitatPolygon(pid, section.nest_probability,
                                section.max_nests_per_polygon)
            for pid in landscape.nesting_polygons()
        }
        logger.debug("nest manager: %d nesting polygons", len(polygons))
        return cls(polygons, (section.microsite_delay_min, section.microsite_delay_max))

    def is_nesting_polygon(self, polygon_id: int) -> bool:
        return polygon_id in self.polygons

    def _next_id(self) -> int:
        with self._id_lock:
            self.nests_created += 1
            return next(self._ids)

    def try_create_nest(self, polygon_id: int, x: float, y: float,
                        rng: np.random.Generator,
                        force: bool = False) -> Optional[Nest]:
        """Attempt to claim a cavity at (x, y) in a polygon.

        Succeeds when the polygon is nesting habitat with spare capacity
        and a uniform draw falls below its nest probability (``force``
        skips the draw, used for seeding).  Returns the new open Nest or
        None.
        """
        polygon = self.polygons.get(polygon_id)
        if polygon is None:
            return None
        with polygon.lock:
            if not polygon.has_capacity():
                return None
            if not force and rng.random() >= polygon.nest_probability:
                return None
            lo, hi = self.microsite_delay_range
            delay = int(rng.integers(lo, hi + 1))
            nest = Nest(self._next_id(), x, y, polygon, delay)
            polygon.nests.append(nest)
        return nest

    def release_nest(self, nest: Nest) -> None:
        """Return a nest's capacity to its polygon.

        Raises:
            ModelInvariantError: If the nest is unknown to its polygon.
        """
        polygon = nest.polygon
        with polygon.lock:
            for i, n in enumerate(polygon.nests):
                if n is nest:
                    del polygon.nests[i]
                    break
            else:
                raise ModelInvariantError(
                    f"nest {nest.nest_id} not registered in polygon {polygon.polygon_id}"
                )
        self.nests_released += 1

    def release_empty_nests(self) -> int:
        """Release every sealed, empty nest. Returns the number released."""
        released = 0
        for polygon in self.polygons.values():
            for nest in [n for n in polygon.nests if n.is_empty()]:
                self.release_nest(nest)
                released += 1
        return released

    def all_nests(self) -> List[Nest]:
        return [n for p in self.polygons.values() for n in p.nests]

    def nest_count(self) -> int:
        return sum(p.current_nest_count for p in self.polygons.values())
