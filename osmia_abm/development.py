"""Development clock: degree-day and time-based accumulation.

Stateless helpers shared by every immature stage.  Callers own the
accumulator; nothing here mutates an Individual.

  - EGG, LARVA, PUPA: degree-days above a stage threshold
  - PREPUPA: elapsed days weighted by a temperature-indexed rate table,
    against a per-individual target drawn once at stage entry

References:
  - Ziółkowska et al. (2025) §development; Radmacher & Strohm (2011)
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


def accumulate_degree_days(temperature: float, threshold: float) -> float:
    """Degree-day increment for one day: max(0, T - threshold)."""
    dd = temperature - threshold
    return dd if dd > 0.0 else 0.0


def has_reached_target(accumulator: float, target: float) -> bool:
    """True once the accumulator strictly exceeds the target."""
    return accumulator > target


def days_to_complete(temperature: float, threshold: float, total_dd: float) -> int:
    """Number of constant-temperature days until ``total_dd`` is exceeded.

    Returns -1 when development never completes (T <= threshold).
    """
    dd = accumulate_degree_days(temperature, threshold)
    if dd <= 0.0:
        return -1
    return int(np.floor(total_dd / dd)) + 1


def draw_prepupa_target(base_days: float, spread: float,
                        rng: np.random.Generator) -> float:
    """Individual prepupal duration: base × (1 + U(-spread, +spread))."""
    return base_days * (1.0 + rng.uniform(-spread, spread))


def prepupal_rate(rates: Sequence[float], temperature: float) -> float:
    """Look up today's prepupal development increment.

    The table is indexed by rounded daily mean temperature; temperatures
    outside the table are clipped to its ends.
    """
    idx = int(round(temperature))
    idx = min(max(idx, 0), len(rates) - 1)
    return float(rates[idx])
