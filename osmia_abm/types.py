"""Core data types for Osmia-ABM.

This module is the single home of:
  - Stage, ParasitoidType, FemaleState, DeathCause enumerations
  - Individual: one bee at one life stage (tagged variant over Stage)
  - FemaleData / ForageState: payload carried only by active females
  - DailyContext: read-only per-day scalars published by the scheduler
  - ModelInvariantError: fatal model-corruption signal

Every metamorphosis builds a NEW Individual of the successor stage with the
shared fields copied forward; the predecessor is deactivated.  Biological
death is never an exception, only ``alive=False`` with a DeathCause.

References:
  - Ziółkowska et al. (2025) life-stage definitions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from osmia_abm.nest import Nest


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Stage(IntEnum):
    """Life stages of Osmia bicornis.

    EGG → LARVA → PREPUPA → PUPA → IN_COCOON → FEMALE (males discarded
    at emergence).  EGG/LARVA/PUPA develop by degree-days, PREPUPA by
    elapsed days, IN_COCOON by the three-phase overwintering model.
    """
    EGG       = 0
    LARVA     = 1
    PREPUPA   = 2
    PUPA      = 3
    IN_COCOON = 4   # overwintering adult inside its cocoon
    FEMALE    = 5   # active, free-flying adult female


N_STAGES = len(Stage)

STAGE_NAMES = ['egg', 'larva', 'prepupa', 'pupa', 'in_cocoon', 'female']

# Successor of each immature stage at metamorphosis
NEXT_STAGE = {
    Stage.EGG: Stage.LARVA,
    Stage.LARVA: Stage.PREPUPA,
    Stage.PREPUPA: Stage.PUPA,
    Stage.PUPA: Stage.IN_COCOON,
    Stage.IN_COCOON: Stage.FEMALE,
}


class ParasitoidType(IntEnum):
    """Parasitism status of a cell, fixed when the cell is closed."""
    UNPARASITISED  = 0
    BOMBYLID       = 1   # bee flies (Bombyliidae)
    CLEPTOPARASITE = 2   # cuckoo bees / cleptoparasitic flies


class FemaleState(IntEnum):
    """Reproductive states of an active female."""
    MATURING       = 0   # prenesting period after emergence
    NEST_SEARCHING = 1   # local cavity search, bounded attempts per day
    DISPERSING     = 2   # long-distance move after failed search
    PROVISIONING   = 3   # nest open, stocking the current cell
    DONE           = 4   # reproduction finished, living out lifespan
    DYING          = 5


class DeathCause(IntEnum):
    """Cause of death tracking for demographic output."""
    ALIVE             = 0   # not dead (default; also metamorphosed/discarded)
    BACKGROUND        = 1   # daily stage-specific mortality
    WINTER            = 2   # winter mortality test at emergence readiness
    LATE_EMERGENCE    = 3   # still in cocoon at the June cutoff
    PARASITISED       = 4   # parasitised cocoon reached emergence
    LIFESPAN          = 5   # adult female reached maximum age
    DISPERSAL_FAILURE = 6   # exhausted nest search / dispersal attempts


# ═══════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════

class ModelInvariantError(RuntimeError):
    """Raised when the model reaches a state that should be impossible.

    Examples: an unknown female state, a cell added to a sealed nest, an
    individual stepped by the wrong stage handler.  Never caught inside
    the model; the run aborts rather than produce corrupted output.
    """


# ═══════════════════════════════════════════════════════════════════════
# DAILY CONTEXT
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DailyContext:
    """Day-level scalars, written once by the scheduler before stepping."""
    day: int = 0                    # simulation day (0-based)
    day_of_year: int = 0            # 0 = 1 Jan
    month: int = 0                  # 0 = January
    year: int = 0
    temperature: float = 10.0       # daily mean (°C)
    forage_hours: int = 0           # hours of flight weather today
    prepupal_rate: float = 1.0      # prepupal day increment for today
    prewinter_ended: bool = True
    march_reached: bool = False


# ═══════════════════════════════════════════════════════════════════════
# INDIVIDUAL
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ForageState:
    """A female's current forage patch (``has_location`` gates re-search)."""
    has_location: bool = False
    x: float = 0.0
    y: float = 0.0
    initial_pollen: float = 0.0


@dataclass
class FemaleData:
    """State carried only by active females."""
    state: FemaleState = FemaleState.MATURING
    emerge_age: int = 0
    eggs_to_lay: int = 0                 # remaining lifetime egg load
    eggs_this_nest: int = 0              # cells still planned for the current nest
    nests_built: int = 0
    dispersals: int = 0
    cell_plan: List[Tuple[bool, float]] = field(default_factory=list)  # (is_female, target mg)
    current_provision: float = 0.0
    cell_open_days: int = 0
    cells_today: int = 0
    eggs_laid: int = 0
    forage: ForageState = field(default_factory=ForageState)


@dataclass(eq=False)
class Individual:
    """One bee at one life stage.

    ``development`` is degree-days for EGG/LARVA/PUPA, elapsed (rate
    weighted) days for PREPUPA and winter degree-days for IN_COCOON; it
    never decreases within a stage.  ``mass`` is provision mass (mg)
    until emergence, adult mass afterwards.
    """
    uid: int
    stage: Stage
    age: int = 0
    development: float = 0.0
    mass: float = 0.0
    is_female: bool = True
    parasitism: ParasitoidType = ParasitoidType.UNPARASITISED
    nest: Optional['Nest'] = None
    x: float = 0.0
    y: float = 0.0
    alive: bool = True
    death_cause: DeathCause = DeathCause.ALIVE
    # Stage-specific
    prepupa_target: float = 0.0
    prewinter_dd: float = 0.0
    emergence_counter: Optional[int] = None
    female: Optional[FemaleData] = None

    def __repr__(self) -> str:
        return (f"Individual(uid={self.uid}, stage={self.stage.name}, "
                f"age={self.age}, mass={self.mass:.1f}, alive={self.alive})")
