"""Entry point for generating events with the bundled reference collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import numpy as np

from nugen.config import GeneratorConfig, build_environment, load_config
from nugen.simulation.detector import default_geometry
from nugen.simulation.helper import GeneratorHelper
from nugen.simulation.main import run_cli as run_generator
from nugen.simulation.physics import ToyEventSource
from nugen.simulation.records import FluxRecord, GeneratorTruthRecord, TruthRecord
from nugen.simulation.transport import BoxGeometryEngine


def build_helper(config: Optional[GeneratorConfig] = None, seed: Optional[int] = None) -> GeneratorHelper:
    config = config or load_config()
    if seed is not None:
        config.random_seed = seed
    environment = build_environment(config, environ={})
    rng = np.random.default_rng(environment.seed)
    engine = BoxGeometryEngine(default_geometry(), rng=rng)
    helper = GeneratorHelper(config, engine, ToyEventSource(rng), environment)
    helper.initialize()
    return helper


def generate_events(n_events: int, config_path: Optional[Path] = None, seed: Optional[int] = None) -> List[TruthRecord]:
    helper = build_helper(load_config(config_path), seed)
    events: List[TruthRecord] = []
    attempts = 0
    while len(events) < n_events:
        attempts += 1
        if attempts > 1000 * n_events:
            raise RuntimeError(f"only {len(events)} of {n_events} events after {attempts - 1} attempts")
        truth = TruthRecord()
        if helper.sample(truth, FluxRecord(), GeneratorTruthRecord()):
            events.append(truth)
            helper.stop()
    return events


if __name__ == "__main__":
    run_generator()
