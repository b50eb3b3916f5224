"""Osmia-ABM: individual-based population model of the red mason bee.

A daily-step, spatially explicit model of *Osmia bicornis* coupling:
  - Degree-day development of eggs, larvae and pupae
  - Time-based prepupal development with weak temperature sensitivity
  - Three-phase overwintering (prewintering, winter, spring emergence counter)
  - Female nest search, patch foraging with give-up rules, sex allocation
  - Cell parasitism (time-open risk or a mechanistic parasitoid grid)

References:
  - Ziółkowska et al. (2025) formal model of Osmia bicornis in ALMaSS
  - Seidelmann (2006), Seidelmann et al. (2010) provisioning and sex ratios
"""

__version__ = "0.1.0"
