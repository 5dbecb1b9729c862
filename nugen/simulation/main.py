"""Command line interface for the nugen event generator."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np

from ..config import GeneratorConfigError, build_environment, load_config
from .detector import default_geometry
from .geometry_io import load_geometry
from .helper import GeneratorHelper
from .physics import ToyEventSource
from .records import FluxRecord, GeneratorTruthRecord, TruthRecord
from .transport import BoxGeometryEngine


@dataclass
class RunSummary:
    events: int
    attempts: int
    spills: int
    total_exposure: float


def event_summary(index: int, truth: TruthRecord, flux: FluxRecord) -> dict:
    neutrino = truth.neutrino
    nu_position = neutrino.nu.position
    return {
        "event": index,
        "nu_pdg": neutrino.nu.pdg,
        "nu_energy": neutrino.nu.momentum.energy,
        "lepton_pdg": neutrino.lepton.pdg,
        "ccnc": neutrino.ccnc,
        "mode": neutrino.mode,
        "interaction_type": neutrino.interaction_type,
        "target": neutrino.target,
        "W": neutrino.w,
        "x": neutrino.x,
        "y": neutrino.y,
        "Q2": neutrino.q2,
        "vertex_cm": [nu_position.x, nu_position.y, nu_position.z],
        "time_ns": nu_position.t,
        "n_particles": len(truth.particles),
        "gen2vtx": flux.gen2vtx,
    }


def run_generation(
    helper: GeneratorHelper, n_events: int, *, output: Optional[Path] = None, max_attempts: int = 1000
) -> RunSummary:
    """Sample ``n_events`` interactions, checking for spill completion after each."""
    records: List[dict] = []
    attempts = 0
    spills = 0
    for index in range(n_events):
        truth, flux, gtruth = TruthRecord(), FluxRecord(), GeneratorTruthRecord()
        for _ in range(max_attempts):
            attempts += 1
            if helper.sample(truth, flux, gtruth):
                break
        else:
            print(f"No interaction after {max_attempts} attempts, stopping.", file=sys.stderr)
            break
        summary = event_summary(index, truth, flux)
        records.append(summary)
        print(
            f"Event {index}: nu {summary['nu_pdg']} E={summary['nu_energy']:.3f} GeV -> "
            f"lepton {summary['lepton_pdg']} | mode={summary['mode']} ccnc={summary['ccnc']} | "
            f"Q2={summary['Q2']:.3f} W={summary['W']:.3f}"
        )
        if helper.stop():
            spills += 1
    if output is not None:
        with open(output, "w", encoding="utf-8") as stream:
            for summary in records:
                stream.write(json.dumps(summary) + "\n")
    return RunSummary(events=len(records), attempts=attempts, spills=spills, total_exposure=helper.total_exposure)


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate neutrino interactions in a detector geometry")
    parser.add_argument("--config", type=str, default=None, help="Generator YAML configuration (default: bundled demo)")
    parser.add_argument("--geometry-file", type=str, default=None, help="External detector geometry (GDML/ROOT/JSON)")
    parser.add_argument("--geometry-format", type=str, choices=["gdml", "json", "root"], default=None, help="Explicit geometry format override")
    parser.add_argument("--geometry-tree", type=str, default=None, help="ROOT tree containing volume definitions")
    parser.add_argument("--events", type=int, default=10, help="Number of events to generate")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (overrides the configuration)")
    parser.add_argument("--output", type=str, default=None, help="Write one JSON summary per event to this path")
    parser.add_argument("--output-dir", type=str, default=".", help="Directory for the max path-length table")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="Increase logging verbosity")
    return parser.parse_args(argv)


def run_cli(argv: Optional[Iterable[str]] = None) -> None:
    args = parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.events <= 0:
        print("Error: --events must be positive.", file=sys.stderr)
        raise SystemExit(2)
    try:
        config = load_config(Path(args.config) if args.config else None)
    except (OSError, GeneratorConfigError) as exc:
        print(f"Could not load configuration: {exc}", file=sys.stderr)
        raise SystemExit(2)
    if args.seed is not None:
        config.random_seed = args.seed

    if args.geometry_file:
        try:
            geometry = load_geometry(args.geometry_file, fmt=args.geometry_format, tree=args.geometry_tree)
        except Exception as exc:
            print(f"Could not load geometry: {exc}", file=sys.stderr)
            raise SystemExit(2)
    else:
        geometry = default_geometry()

    try:
        environment = build_environment(config)
        rng = np.random.default_rng(environment.seed)
        engine = BoxGeometryEngine(geometry, rng=rng, root_file=args.geometry_file)
        helper = GeneratorHelper(config, engine, ToyEventSource(rng), environment)
        helper.initialize()
    except GeneratorConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        raise SystemExit(2)

    output = Path(args.output) if args.output else None
    try:
        summary = run_generation(helper, args.events, output=output)
    except KeyboardInterrupt:
        print("Generation interrupted by user.")
        return
    finally:
        helper.close(Path(args.output_dir))

    print("-" * 60)
    print(f"Generated {summary.events} events in {summary.attempts} attempts")
    print(f"Completed spills: {summary.spills} | total exposure: {summary.total_exposure:g}")
    print(f"Detector mass (incl. surroundings): {helper.total_mass:g} kg")
    if output is not None:
        print(f"Event summaries written to {output}")


if __name__ == "__main__":
    run_cli(sys.argv[1:])
