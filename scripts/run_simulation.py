#!/usr/bin/env python3
"""Run the Osmia bicornis population model from YAML configuration.

Merges a base config with optional scenario/climate overrides, runs one
or more seeds and writes a JSON summary (plus figures on request) per
seed into the output directory.

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py --scenario configs/scenarios/warm_climate.yaml
    python scripts/run_simulation.py --seeds 1 2 3 --years 5 --plots
    python scripts/run_simulation.py --set simulation.parallel_workers=4

References:
    - osmia_abm/config.py: load_config, SimulationConfig
    - osmia_abm/model.py: run_simulation, SimulationResult
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from osmia_abm.config import load_config
from osmia_abm.model import SimulationResult, run_simulation

logger = logging.getLogger("osmia_abm.run")


def parse_overrides(items: Optional[List[str]]) -> Dict:
    """Turn ``section.key=value`` strings into a nested override dict.

    Values are parsed as YAML scalars, so ``true``, ``4`` and ``[1, 2]``
    keep their types.
    """
    overrides: Dict = {}
    for item in items or []:
        key, sep, raw = item.partition('=')
        if not sep or '.' not in key:
            raise ValueError(f"override must look like section.key=value, got '{item}'")
        section, field_name = key.split('.', 1)
        overrides.setdefault(section, {})[field_name] = yaml.safe_load(raw)
    return overrides


def write_outputs(result: SimulationResult, out_dir: Path, tag: str,
                  plots: bool) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    summary_path = out_dir / f"{tag}.json"
    with open(summary_path, 'w') as f:
        json.dump(result.to_dict(), f, indent=2, default=str)

    if plots:
        from osmia_abm.viz import (
            plot_deaths_by_cause,
            plot_emergence_phenology,
            plot_stage_trajectories,
            plot_weather,
        )
        plot_stage_trajectories(result, log_scale=True,
                                save_path=str(out_dir / f"{tag}_stages.png"))
        plot_emergence_phenology(result, save_path=str(out_dir / f"{tag}_phenology.png"))
        plot_weather(result, save_path=str(out_dir / f"{tag}_weather.png"))
        if result.deaths_by_cause:
            plot_deaths_by_cause(result, save_path=str(out_dir / f"{tag}_deaths.png"))
    return summary_path


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def main():
    parser = argparse.ArgumentParser(
        description="Run the Osmia bicornis agent-based population model.",
        epilog="Example: python scripts/run_simulation.py --seeds 1 2 --plots",
    )
    parser.add_argument(
        "--config", type=str, default=str(PROJECT_ROOT / "configs" / "default.yaml"),
        help="Base config YAML (default: configs/default.yaml)",
    )
    parser.add_argument("--scenario", type=str, default=None,
                        help="Scenario override YAML")
    parser.add_argument("--climate", type=str, default=None,
                        help="Climate override YAML")
    parser.add_argument("--set", dest="overrides", action="append", metavar="S.K=V",
                        help="Extra override, e.g. simulation.start_number=1000")
    parser.add_argument("--seeds", type=int, nargs="+", default=None,
                        help="Seeds to run (default: the configured seed)")
    parser.add_argument("--years", type=int, default=None,
                        help="Override simulation.n_years")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Override output.output_dir")
    parser.add_argument("--plots", action="store_true", help="Save PNG figures")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for INFO, -vv for DEBUG logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=[logging.WARNING, logging.INFO, logging.DEBUG][min(args.verbose, 2)],
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    overrides = parse_overrides(args.overrides)
    if args.years is not None:
        overrides.setdefault('simulation', {})['n_years'] = args.years

    base = load_config(args.config, args.scenario, args.climate, overrides or None)
    seeds = args.seeds if args.seeds else [base.simulation.seed]
    out_dir = Path(args.output_dir or base.output.output_dir)

    print("=" * 60)
    print("Osmia-ABM population run")
    print("=" * 60)
    for seed in seeds:
        seed_overrides = dict(overrides)
        seed_overrides['simulation'] = dict(overrides.get('simulation', {}), seed=seed)
        config = load_config(args.config, args.scenario, args.climate, seed_overrides)
        result = run_simulation(config)
        path = write_outputs(result, out_dir, f"seed_{seed}", args.plots)
        final = result.final_stage_counts
        print(f"  seed {seed}: {result.total_eggs} eggs, "
              f"females/year {result.annual_female_emergences}, "
              f"final {final}  ({result.wall_time_s:.1f} s)")
        print(f"    saved: {path}")

    print("\nDone.")


if __name__ == "__main__":
    main()
