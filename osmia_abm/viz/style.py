"""Dark theme styling for Osmia-ABM figures.

Shared colours per life stage and death cause, plus helpers that create
themed figures and save them with a matching background.
"""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import numpy as np

# ═══════════════════════════════════════════════════════════════════════
# COLOR PALETTE
# ═══════════════════════════════════════════════════════════════════════

DARK_BG = '#1a1a2e'
DARK_PANEL = '#16213e'
TEXT_COLOR = '#e0e0e0'
GRID_COLOR = '#2a2a4a'

ACCENT_COLORS = [
    '#e94560',  # crimson
    '#48c9b0',  # teal
    '#f39c12',  # amber
    '#3498db',  # sky blue
    '#2ecc71',  # green
    '#9b59b6',  # violet
]

STAGE_COLORS = {
    'egg':       '#f1c40f',
    'larva':     '#f39c12',
    'prepupa':   '#e67e22',
    'pupa':      '#3498db',
    'in_cocoon': '#9b59b6',
    'female':    '#e94560',
}

DEATH_COLORS = {
    'background':        '#95a5a6',
    'winter':            '#3498db',
    'late_emergence':    '#f39c12',
    'parasitised':       '#2ecc71',
    'lifespan':          '#8e44ad',
    'dispersal_failure': '#e74c3c',
}


# ═══════════════════════════════════════════════════════════════════════
# THEME HELPERS
# ═══════════════════════════════════════════════════════════════════════

def apply_dark_theme(fig=None, ax=None):
    """Apply the dark theme to a Figure and/or Axes."""
    if fig is not None:
        fig.patch.set_facecolor(DARK_BG)
    if ax is not None:
        ax.set_facecolor(DARK_PANEL)
        ax.tick_params(colors=TEXT_COLOR)
        for label in (ax.xaxis.label, ax.yaxis.label, ax.title):
            label.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        ax.grid(True, color=GRID_COLOR, alpha=0.3, linewidth=0.5)


def dark_figure(nrows=1, ncols=1, figsize=None, **kwargs):
    """Themed (fig, axes); axes is an ndarray when nrows × ncols > 1."""
    if figsize is None:
        figsize = (11, 5) if nrows * ncols == 1 else (12, 3.5 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    apply_dark_theme(fig=fig)
    for a in np.atleast_1d(axes).flat:
        apply_dark_theme(ax=a)
    return fig, axes


def themed_legend(ax, **kwargs):
    return ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
                     labelcolor=TEXT_COLOR, **kwargs)


def save_figure(fig, save_path, dpi=150):
    """Save with tight layout on the dark background, then close."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)
