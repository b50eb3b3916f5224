"""Population and phenology figures for Osmia-ABM runs.

Every function:
  - takes a SimulationResult
  - returns a matplotlib Figure
  - saves a PNG when ``save_path`` is given
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np

from osmia_abm.types import STAGE_NAMES
from osmia_abm.viz.style import (
    ACCENT_COLORS,
    DEATH_COLORS,
    STAGE_COLORS,
    TEXT_COLOR,
    dark_figure,
    save_figure,
    themed_legend,
)

if TYPE_CHECKING:
    from osmia_abm.model import SimulationResult

_MONTH_TICKS = [0, 31, 59, 90, 120, 151, 181, 212, 243, 273, 304, 334]
_MONTH_LABELS = ['J', 'F', 'M', 'A', 'M', 'J', 'J', 'A', 'S', 'O', 'N', 'D']


# ═══════════════════════════════════════════════════════════════════════
# 1. STAGE TRAJECTORIES
# ═══════════════════════════════════════════════════════════════════════

def plot_stage_trajectories(
    result: 'SimulationResult',
    stages: Optional[Sequence[str]] = None,
    log_scale: bool = False,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Daily live count of each life stage across the run.

    Args:
        result: SimulationResult with ``stage_counts``.
        stages: Subset of stage names to draw (default: all).
        log_scale: Use a symlog y axis (stages differ by orders of magnitude).
        save_path: Optional path to save the figure.
    """
    fig, ax = dark_figure()
    days = np.arange(result.n_days)
    names = list(stages) if stages is not None else STAGE_NAMES
    for name in names:
        idx = STAGE_NAMES.index(name)
        ax.plot(days, result.stage_counts[:, idx], color=STAGE_COLORS[name],
                linewidth=1.8, label=name.replace('_', ' '))
    if log_scale:
        ax.set_yscale('symlog', linthresh=10)
    ax.set_xlabel('Simulation day', fontsize=12)
    ax.set_ylabel('Individuals', fontsize=12)
    ax.set_title('Life-stage trajectories', fontsize=14, fontweight='bold')
    ax.set_xlim(0, max(1, result.n_days - 1))
    themed_legend(ax, fontsize=9, ncol=3)

    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 2. EMERGENCE & EGG-LAYING PHENOLOGY
# ═══════════════════════════════════════════════════════════════════════

def plot_emergence_phenology(
    result: 'SimulationResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Female emergences and eggs laid per day of year, pooled over years."""
    doy = result.day_of_year()
    emerg = np.bincount(doy, weights=result.female_emergences, minlength=365)
    eggs = np.bincount(doy, weights=result.eggs_laid, minlength=365)
    fem_eggs = np.bincount(doy, weights=result.female_eggs_laid, minlength=365)

    fig, axes = dark_figure(2, 1, sharex=True)
    axes[0].bar(np.arange(365), emerg, color=STAGE_COLORS['female'], width=1.0)
    axes[0].set_ylabel('Females emerged', fontsize=11)
    axes[0].set_title('Emergence and egg-laying phenology', fontsize=14,
                      fontweight='bold')

    axes[1].fill_between(np.arange(365), eggs, color=ACCENT_COLORS[2], alpha=0.5,
                         label='all eggs')
    axes[1].plot(np.arange(365), fem_eggs, color=ACCENT_COLORS[0], linewidth=1.5,
                 label='female eggs')
    axes[1].set_ylabel('Eggs laid', fontsize=11)
    axes[1].set_xticks(_MONTH_TICKS)
    axes[1].set_xticklabels(_MONTH_LABELS)
    axes[1].set_xlim(0, 364)
    themed_legend(axes[1], fontsize=9)

    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 3. WEATHER FORCING
# ═══════════════════════════════════════════════════════════════════════

def plot_weather(
    result: 'SimulationResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Daily mean temperature, foraging hours and the pre-wintering flag."""
    days = np.arange(result.n_days)
    fig, axes = dark_figure(2, 1, sharex=True)

    axes[0].plot(days, result.temperature, color=ACCENT_COLORS[0], linewidth=1.0)
    pw = result.prewinter_ended.astype(bool)
    axes[0].fill_between(days, result.temperature.min(), result.temperature.max(),
                         where=~pw, color=ACCENT_COLORS[2], alpha=0.12,
                         label='pre-wintering')
    axes[0].set_ylabel('Mean temperature (°C)', fontsize=11)
    axes[0].set_title('Weather forcing', fontsize=14, fontweight='bold')
    themed_legend(axes[0], fontsize=9)

    axes[1].bar(days, result.forage_hours, color=ACCENT_COLORS[1], width=1.0)
    axes[1].set_ylabel('Foraging hours', fontsize=11)
    axes[1].set_xlabel('Simulation day', fontsize=12)

    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 4. CAUSES OF DEATH
# ═══════════════════════════════════════════════════════════════════════

def plot_deaths_by_cause(
    result: 'SimulationResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Horizontal bars of total deaths per cause over the run."""
    fig, ax = dark_figure(figsize=(9, 4.5))
    causes = sorted(result.deaths_by_cause, key=result.deaths_by_cause.get)
    counts = [result.deaths_by_cause[c] for c in causes]
    colors = [DEATH_COLORS.get(c, ACCENT_COLORS[5]) for c in causes]
    ax.barh([c.replace('_', ' ') for c in causes], counts, color=colors)
    for i, n in enumerate(counts):
        ax.text(n, i, f' {n}', va='center', color=TEXT_COLOR, fontsize=9)
    ax.set_xlabel('Deaths', fontsize=12)
    ax.set_title('Deaths by cause', fontsize=14, fontweight='bold')

    if save_path:
        save_figure(fig, save_path)
    return fig
