"""Flux specification and construction of the matching flux sampler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import GeneratorConfig, GeneratorConfigError
from .flux_drivers import (
    BartolAtmoFlux,
    CylindricalHistogramFlux,
    FlukaAtmo3DFlux,
    FluxHistogram,
    MonoEnergeticFlux,
    NuMINtupleFlux,
    SimpleNtupleFlux,
    read_histograms,
)
from .mixing import FLAVOR_MIXERS, FlavorMap, FlavorMixer, FluxBlender, available_flavor_mixers

logger = logging.getLogger(__name__)

FLAVOR_NAMES: Dict[int, str] = {
    12: "nue",
    -12: "nuebar",
    14: "numu",
    -14: "numubar",
    16: "nutau",
    -16: "nutaubar",
}

_FLUX_TYPE_ALIASES = {
    "simple-ntuple": "simple_flux",
    "simple_ntuple": "simple_flux",
}


class FluxType(Enum):
    MONO = "mono"
    NTUPLE = "ntuple"
    SIMPLE_FLUX = "simple_flux"
    HISTOGRAM = "histogram"
    ATMO_FLUKA = "atmo_FLUKA"
    ATMO_BARTOL = "atmo_BARTOL"

    @classmethod
    def parse(cls, text: str) -> "FluxType":
        name = _FLUX_TYPE_ALIASES.get(text.strip(), text.strip())
        try:
            return cls(name)
        except ValueError as exc:
            known = ", ".join(member.value for member in cls)
            raise GeneratorConfigError(f"unknown flux type {text!r} (known: {known})") from exc

    @property
    def is_atmospheric(self) -> bool:
        return self in (FluxType.ATMO_FLUKA, FluxType.ATMO_BARTOL)

    @property
    def is_ntuple(self) -> bool:
        return self in (FluxType.NTUPLE, FluxType.SIMPLE_FLUX)


@dataclass(frozen=True)
class MonoParams:
    energy: float
    direction: Tuple[float, float, float]
    origin: Tuple[float, float, float]


@dataclass(frozen=True)
class NtupleParams:
    detector_location: str
    upstream_z: Optional[float] = None


@dataclass(frozen=True)
class HistogramParams:
    direction: Tuple[float, float, float]
    center: Tuple[float, float, float]
    radius: float


@dataclass(frozen=True)
class AtmoParams:
    emin: float
    emax: float
    rl: float
    rt: float


FluxParams = Union[MonoParams, NtupleParams, HistogramParams, AtmoParams]


@dataclass(frozen=True)
class FluxSpec:
    """Which flux to sample, for which flavours, from which files."""

    flux_type: FluxType
    flavors: Tuple[int, ...]
    files: Tuple[str, ...]
    params: FluxParams

    @classmethod
    def from_config(cls, config: GeneratorConfig, files: Sequence[str]) -> "FluxSpec":
        flux_type = FluxType.parse(config.flux_type)
        flavors = tuple(sorted(set(config.gen_flavors)))
        unique_files = tuple(dict.fromkeys(files))
        if flux_type is FluxType.MONO:
            params: FluxParams = MonoParams(config.mono_energy, config.beam_direction, config.beam_center)
        elif flux_type.is_ntuple:
            upstream = config.flux_upstream_z if abs(config.flux_upstream_z) < 1.0e30 else None
            params = NtupleParams(config.detector_location, upstream)
        elif flux_type is FluxType.HISTOGRAM:
            params = HistogramParams(config.beam_direction, config.beam_center, config.beam_radius)
        else:
            params = AtmoParams(config.atmo_emin, config.atmo_emax, config.atmo_rl, config.atmo_rt)
        return cls(flux_type=flux_type, flavors=flavors, files=unique_files, params=params)


def load_flux_histograms(filename: str, flavors: Sequence[int]) -> Dict[int, FluxHistogram]:
    """Read one energy spectrum per flavour, keyed by the flavour name in the file."""
    unknown = [pdg for pdg in flavors if pdg not in FLAVOR_NAMES]
    if unknown:
        raise GeneratorConfigError(f"no flux histogram name for flavours {unknown}")
    by_name = read_histograms(filename, [FLAVOR_NAMES[pdg] for pdg in flavors])
    return {pdg: by_name[FLAVOR_NAMES[pdg]] for pdg in flavors}


class FluxDriverFactory:
    """Builds the flux sampler for a :class:`FluxSpec`, optionally behind a :class:`FluxBlender`.

    Settings that make generation impossible are rejected when the factory
    is created.
    """

    def __init__(
        self,
        spec: FluxSpec,
        *,
        events_per_spill: float = 0.0,
        mixer_config: str = "none",
        mixer_baseline: float = 0.0,
        debug_flags: int = 0,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.spec = spec
        self.mixer_config = mixer_config
        self.mixer_baseline = mixer_baseline
        self.debug_flags = debug_flags
        self.rng = rng or np.random.default_rng()
        self.events_per_spill = events_per_spill
        self.histograms: Dict[int, FluxHistogram] = {}
        self.generator_driver = None
        self.driver = None
        self.blender: Optional[FluxBlender] = None
        self._validate()

        flavor_list = " ".join(str(pdg) for pdg in spec.flavors)
        if spec.flux_type is FluxType.MONO:
            self.events_per_spill = 1
            logger.info(
                "generating monoenergetic (%g GeV) neutrinos with the following flavors: %s",
                spec.params.energy,
                flavor_list,
            )
        else:
            logger.info("generating flux with the following flavors: %s and these files:", flavor_list)
            for name in spec.files:
                logger.info("\t%s", name)

    def _validate(self) -> None:
        spec = self.spec
        if spec.flux_type is not FluxType.MONO and not spec.files:
            raise GeneratorConfigError(f"no flux files resolved for flux type {spec.flux_type.value}")
        if spec.flux_type in (FluxType.MONO, FluxType.HISTOGRAM) and not spec.flavors:
            raise GeneratorConfigError(f"no neutrino flavors requested for flux type {spec.flux_type.value}")
        if spec.flux_type.is_atmospheric:
            if len(spec.flavors) != len(spec.files):
                raise GeneratorConfigError(
                    f"the number of generated neutrino flavors ({len(spec.flavors)}) "
                    f"doesn't correspond to the number of files ({len(spec.files)})"
                )
            if self.events_per_spill != 1:
                raise GeneratorConfigError("for atmospheric neutrino generation events_per_spill needs to be 1")
            logger.info("the energy range is between %g GeV and %g GeV", spec.params.emin, spec.params.emax)
            logger.info("generation surface of (%g, %g)", spec.params.rl, spec.params.rt)

    @property
    def total_hist_flux(self) -> float:
        return sum(histogram.integral() for histogram in self.histograms.values())

    def build(self):
        """Create the sampler and, when mixing is configured, the blender around it."""
        builders = {
            FluxType.MONO: self._build_mono,
            FluxType.NTUPLE: self._build_ntuple,
            FluxType.SIMPLE_FLUX: self._build_ntuple,
            FluxType.HISTOGRAM: self._build_histogram,
            FluxType.ATMO_FLUKA: self._build_atmo,
            FluxType.ATMO_BARTOL: self._build_atmo,
        }
        self.generator_driver = builders[self.spec.flux_type]()
        self.driver = self._wrap_mixer(self.generator_driver)
        return self.driver

    def _build_mono(self):
        params = self.spec.params
        weight = 1.0 / len(self.spec.flavors)
        driver = MonoEnergeticFlux(params.energy, {pdg: weight for pdg in self.spec.flavors}, rng=self.rng)
        driver.set_direction_cos(*params.direction)
        driver.set_ray_origin(*params.origin)
        return driver

    def _build_ntuple(self):
        params = self.spec.params
        driver_cls = NuMINtupleFlux if self.spec.flux_type is FluxType.NTUPLE else SimpleNtupleFlux
        driver = driver_cls(rng=self.rng)
        driver.load_beam_sim_data(self.spec.files[0], params.detector_location)
        driver.set_flux_particles(self.spec.flavors)
        if params.upstream_z is not None:
            driver.set_upstream_z(params.upstream_z)
        return driver

    def _build_histogram(self):
        params = self.spec.params
        logger.info(
            "setting beam direction and center at %s (%s) with radius %g",
            params.direction,
            params.center,
            params.radius,
        )
        self.histograms = load_flux_histograms(self.spec.files[0], self.spec.flavors)
        logger.info("total histogram flux over desired flavors = %g", self.total_hist_flux)
        driver = CylindricalHistogramFlux(rng=self.rng)
        for pdg in self.spec.flavors:
            driver.add_energy_spectrum(pdg, self.histograms[pdg])
        driver.set_nu_direction(params.direction)
        driver.set_beam_spot(params.center)
        driver.set_transverse_radius(params.radius)
        return driver

    def _build_atmo(self):
        params = self.spec.params
        driver_cls = FlukaAtmo3DFlux if self.spec.flux_type is FluxType.ATMO_FLUKA else BartolAtmoFlux
        driver = driver_cls(rng=self.rng)
        driver.force_min_energy(params.emin)
        driver.force_max_energy(params.emax)
        for pdg, filename in zip(self.spec.flavors, self.spec.files):
            logger.info("flavor: %d flux file: %s", pdg, filename)
            driver.set_flux_file(pdg, filename)
        driver.load_flux_data()
        driver.set_radii(params.rl, params.rt)
        return driver

    def _make_mixer(self, config: str) -> Tuple[Optional[FlavorMixer], str]:
        keyword = config.split(None, 1)[0]
        if keyword in ("map", "swap", "fixedfrac"):
            return FlavorMap(), config
        if keyword in FLAVOR_MIXERS:
            return FLAVOR_MIXERS[keyword](), config[len(keyword):].strip()
        logger.warning("known flavor mixers: %s", ", ".join(available_flavor_mixers()))
        return None, config

    def _wrap_mixer(self, driver):
        config = self.mixer_config.strip()
        if not config or config.split(None, 1)[0] == "none":
            return driver

        mixer, mixer_args = self._make_mixer(config)
        if mixer is not None:
            mixer.config(mixer_args)
        else:
            logger.warning(
                "mixer_config keyword was \"%s\" but that did not map to a class; "
                "FluxBlender in use, but no mixer",
                config.split(None, 1)[0],
            )

        blender = FluxBlender()
        blender.set_baseline_dist(self.mixer_baseline)
        blender.adopt_flux_generator(driver)
        blender.adopt_flavor_mixer(mixer)
        self.blender = blender
        if self.debug_flags & 0x01:
            if mixer is not None:
                mixer.print_config()
            blender.print_config()
        return blender


__all__ = [
    "AtmoParams",
    "FLAVOR_NAMES",
    "FluxDriverFactory",
    "FluxSpec",
    "FluxType",
    "HistogramParams",
    "MonoParams",
    "NtupleParams",
    "load_flux_histograms",
]
