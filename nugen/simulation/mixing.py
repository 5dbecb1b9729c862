"""Flavour mixing applied on top of a flux sampler."""

from __future__ import annotations

import logging
import math
import re
from typing import Dict, List, Optional, Type

import numpy as np

from .physics import FourVector

logger = logging.getLogger(__name__)

# pdg 0 stands for a sterile neutrino, i.e. the neutrino is lost
FINAL_PDGS = (0, 12, 14, 16, -12, -14, -16)


class FlavorMixer:
    """Probability of a neutrino changing flavour between decay and interaction."""

    def config(self, text: str) -> None:
        pass

    def probability(self, pdg_init: int, pdg_final: int, energy: float, distance: float) -> float:
        return 1.0 if pdg_init == pdg_final else 0.0

    def print_config(self) -> None:
        logger.info("%s: no configuration", type(self).__name__)


class FlavorMap(FlavorMixer):
    """Fixed, energy independent transitions.

    ``map 12:14`` changes nue into numu, ``swap 12:14`` exchanges them and
    ``fixedfrac {12:0.2,0.3,0.5}`` splits nue into nue, numu and nutau
    fractions (a fourth leading value gives the sterile fraction).
    """

    def __init__(self) -> None:
        self.transitions: Dict[int, Dict[int, float]] = {}

    def config(self, text: str) -> None:
        tokens = text.split(None, 1)
        keyword = tokens[0].lower() if tokens else ""
        body = tokens[1] if len(tokens) > 1 else ""
        if keyword in ("map", "swap"):
            for pdg_from, pdg_to in re.findall(r"(-?\d+)\s*:\s*(-?\d+)", body):
                self._set_fixed(int(pdg_from), int(pdg_to))
                if keyword == "swap":
                    self._set_fixed(int(pdg_to), int(pdg_from))
        elif keyword == "fixedfrac":
            for pdg_from, values in re.findall(r"\{\s*(-?\d+)\s*:([^}]*)\}", body):
                fracs = [float(value) for value in re.split(r"[\s,]+", values.strip()) if value]
                if len(fracs) == 3:
                    fracs = [0.0] + fracs
                if len(fracs) != 4:
                    raise ValueError(f"fixedfrac for {pdg_from} needs 3 or 4 fractions, got {len(fracs)}")
                sign = 1 if int(pdg_from) > 0 else -1
                total = sum(fracs) or 1.0
                self.transitions[int(pdg_from)] = {
                    pdg * sign: frac / total for pdg, frac in zip((0, 12, 14, 16), fracs)
                }
        else:
            raise ValueError(f"unknown flavour map keyword {keyword!r}")

    def _set_fixed(self, pdg_from: int, pdg_to: int) -> None:
        self.transitions[pdg_from] = {pdg_to: 1.0}

    def probability(self, pdg_init: int, pdg_final: int, energy: float, distance: float) -> float:
        if pdg_init not in self.transitions:
            return super().probability(pdg_init, pdg_final, energy, distance)
        return self.transitions[pdg_init].get(pdg_final, 0.0)

    def print_config(self) -> None:
        for pdg_from, targets in sorted(self.transitions.items()):
            logger.info("flavour map %d -> %s", pdg_from, targets)


class TwoFlavorOscillation(FlavorMixer):
    """Vacuum two-flavour oscillation: ``<dm2 eV^2> <sin^2 2theta> [from to]``."""

    def __init__(self) -> None:
        self.dm2 = 2.4e-3
        self.sin2_2theta = 1.0
        self.pdg_from = 14
        self.pdg_to = 16

    def config(self, text: str) -> None:
        values = text.split()
        if len(values) >= 2:
            self.dm2 = float(values[0])
            self.sin2_2theta = float(values[1])
        if len(values) >= 4:
            self.pdg_from, self.pdg_to = int(values[2]), int(values[3])

    def oscillation(self, energy: float, distance: float) -> float:
        if energy <= 0:
            return 0.0
        # distance in metres, 1.267 expects km / GeV
        return self.sin2_2theta * math.sin(1.267 * self.dm2 * (distance / 1000.0) / energy) ** 2

    def probability(self, pdg_init: int, pdg_final: int, energy: float, distance: float) -> float:
        sign = 1 if pdg_init > 0 else -1
        if abs(pdg_init) != self.pdg_from:
            return super().probability(pdg_init, pdg_final, energy, distance)
        p_osc = self.oscillation(energy, distance)
        if pdg_final == self.pdg_to * sign:
            return p_osc
        if pdg_final == pdg_init:
            return 1.0 - p_osc
        return 0.0

    def print_config(self) -> None:
        logger.info(
            "two flavour oscillation %d -> %d: dm2=%g eV^2 sin^2(2theta)=%g",
            self.pdg_from,
            self.pdg_to,
            self.dm2,
            self.sin2_2theta,
        )


FLAVOR_MIXERS: Dict[str, Type[FlavorMixer]] = {
    "TwoFlavorOscillation": TwoFlavorOscillation,
}


def available_flavor_mixers() -> List[str]:
    return sorted(FLAVOR_MIXERS)


class FluxBlender:
    """Wraps a flux sampler and re-draws the flavour of each neutrino through a mixer.

    The wrapped sampler is only read from; the mixed flavour lives on the
    blender.
    """

    def __init__(self) -> None:
        self.flux_generator = None
        self.mixer: Optional[FlavorMixer] = None
        self.baseline = 0.0
        self.rng = np.random.default_rng()
        self.pdg_code = 0
        self._pdg_original = 0
        self._travel_distance = 0.0
        self._probabilities: Dict[int, float] = {}

    def adopt_flux_generator(self, flux_generator) -> None:
        self.flux_generator = flux_generator
        self.rng = getattr(flux_generator, "rng", self.rng)

    def adopt_flavor_mixer(self, mixer: Optional[FlavorMixer]) -> None:
        self.mixer = mixer

    def set_baseline_dist(self, baseline: float) -> None:
        self.baseline = float(baseline)

    @property
    def weight(self) -> float:
        return self.flux_generator.weight

    @property
    def momentum(self) -> FourVector:
        return self.flux_generator.momentum

    @property
    def position(self) -> FourVector:
        return self.flux_generator.position

    @property
    def max_energy(self) -> float:
        return self.flux_generator.max_energy

    @property
    def flux_particles(self) -> List[int]:
        if self.mixer is None:
            return self.flux_generator.flux_particles
        return [pdg for pdg in FINAL_PDGS if pdg != 0]

    def end_of_file(self) -> bool:
        return self.flux_generator.end_of_file()

    def decay_distance(self) -> float:
        return self.flux_generator.decay_distance()

    def travel_distance(self) -> float:
        """Distance from the neutrino's decay to its ray origin, else the baseline."""
        return self._travel_distance

    def generate_next(self, max_tries: int = 10000) -> bool:
        for _ in range(max_tries):
            if not self.flux_generator.generate_next():
                return False
            self._pdg_original = self.flux_generator.pdg_code
            distance = self.flux_generator.decay_distance()
            self._travel_distance = distance if distance >= 0 else self.baseline
            if self.mixer is None:
                self.pdg_code = self._pdg_original
                return True
            pdg = self._choose_flavor(self.momentum.energy)
            if pdg != 0:
                self.pdg_code = pdg
                return True
            if self.flux_generator.end_of_file():
                return False
        logger.warning("every neutrino in %d draws mixed into a sterile state", max_tries)
        return False

    def _choose_flavor(self, energy: float) -> int:
        sign = 1 if self._pdg_original > 0 else -1
        candidates = [0] + [pdg * sign for pdg in (12, 14, 16)]
        probabilities = np.array(
            [self.mixer.probability(self._pdg_original, pdg, energy, self._travel_distance) for pdg in candidates]
        )
        self._probabilities = dict(zip(candidates, probabilities))
        total = probabilities.sum()
        if total <= 0:
            return self._pdg_original
        return int(candidates[self.rng.choice(len(candidates), p=probabilities / total)])

    def print_state(self) -> None:
        logger.info(
            "flux blender: pdg %d -> %d, E=%g GeV, travel distance %g m, probabilities %s",
            self._pdg_original,
            self.pdg_code,
            self.momentum.energy,
            self._travel_distance,
            self._probabilities,
        )

    def print_config(self) -> None:
        logger.info(
            "flux blender: baseline %g m, mixer %s, flux %s",
            self.baseline,
            type(self.mixer).__name__ if self.mixer else None,
            type(self.flux_generator).__name__,
        )


__all__ = [
    "FINAL_PDGS",
    "FLAVOR_MIXERS",
    "FlavorMap",
    "FlavorMixer",
    "FluxBlender",
    "TwoFlavorOscillation",
    "available_flavor_mixers",
]
