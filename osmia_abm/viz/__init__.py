"""Osmia-ABM visualization library.

Modules:
  - style: Dark theme colours and helpers
  - population: Stage trajectories, phenology, weather, causes of death
"""

from osmia_abm.viz.style import (  # noqa: F401
    ACCENT_COLORS,
    DEATH_COLORS,
    STAGE_COLORS,
    apply_dark_theme,
    dark_figure,
    save_figure,
)

from osmia_abm.viz.population import (  # noqa: F401
    plot_deaths_by_cause,
    plot_emergence_phenology,
    plot_stage_trajectories,
    plot_weather,
)
