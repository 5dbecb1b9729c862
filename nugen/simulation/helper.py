"""The generator helper: initialize, sample and stop event generation."""

from __future__ import annotations

import logging
from enum import IntFlag
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from ..config import GeneratorConfig, GeneratorEnvironment, build_environment, resolve_flux_files
from .flux import FluxDriverFactory, FluxSpec, FluxType
from .flux_drivers import FluxHistogram
from .geometry import GeometryAdapter, GeometryEngine
from .physics import EventSource, InteractionRecord
from .records import FluxRecord, GeneratorTruthRecord, TruthRecord
from .reporting import MAX_PATH_FILENAME, MaxPathInfo, write_max_path_lengths
from .spill import SpillAccountant, SpillState
from .translator import EventTranslator

logger = logging.getLogger(__name__)


class DebugFlags(IntFlag):
    MIXER_CONFIG = 0x01
    BLENDER_STATE = 0x02
    VERTEX = 0x04


class GeneratorHelper:
    """Drives an event source with a configured flux and detector geometry.

    Construction resolves the flux files and rejects impossible settings;
    :meth:`initialize` builds the geometry binding and the flux sampler.
    Each :meth:`sample` asks the event source for one interaction and fills
    the output records, and :meth:`stop` reports whether the current spill
    is complete.
    """

    def __init__(
        self,
        config: GeneratorConfig,
        engine: GeometryEngine,
        event_source: EventSource,
        environment: Optional[GeneratorEnvironment] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.event_source = event_source
        self.environment = environment or build_environment(config, environ={})
        self.debug_flags = DebugFlags(config.debug_flags & 0x07)
        self.rng = np.random.default_rng(self.environment.seed)

        files, n_files = resolve_flux_files(self.environment.search_path, config.flux_files)
        self.flux_spec = FluxSpec.from_config(config, files)
        self.flux_type = self.flux_spec.flux_type
        if self.flux_type is not FluxType.MONO:
            logger.info("%d flux files resolved from %d entries", n_files, len(config.flux_files))
        self.factory = FluxDriverFactory(
            self.flux_spec,
            events_per_spill=config.events_per_spill,
            mixer_config=config.mixer_config,
            mixer_baseline=config.mixer_baseline,
            debug_flags=int(self.debug_flags),
            rng=self.rng,
        )
        self.events_per_spill = self.factory.events_per_spill

        self.adapter = GeometryAdapter(engine, config.top_volume, config.fiducial_cut, config.surrounding_mass)
        self.spill = SpillAccountant(
            self.flux_type,
            self.events_per_spill,
            config.pot_per_spill,
            atmo_rt=config.atmo_rt,
            rng=self.rng,
        )
        self.translator: Optional[EventTranslator] = None
        self.flux_driver = None
        self.record: Optional[InteractionRecord] = None
        self.max_path_info: Optional[MaxPathInfo] = None
        self._initialized = False

    def initialize(self) -> None:
        self.adapter.initialize()
        self.flux_driver = self.factory.build()

        scan = self.adapter.configure_scan(self.config.geom_scan, self.flux_driver, self.environment.xml_path)
        if scan.write:
            self.max_path_info = MaxPathInfo(
                flux_type=self.flux_type.value,
                beam_name=self.config.beam_name,
                flux_files=list(self.flux_spec.files),
                detector_location=self.config.detector_location,
                root_file=str(getattr(self.engine, "root_file", "")),
                world_volume=self.adapter.world_volume,
                top_volume=self.adapter.top_volume,
                fiducial_cut=self.config.fiducial_cut,
                geom_scan=scan.text,
            )

        # flux scan draws stay in the sampler counters, so they count towards
        # used POTs and n_flux_neutrinos of the first spill
        self.event_source.configure(self.flux_driver, self.engine)

        self.translator = EventTranslator(
            self.flux_type,
            global_time_offset=self.config.global_time_offset,
            random_time_offset=self.config.random_time_offset,
            histograms=self.factory.histograms,
            debug_flags=int(self.debug_flags),
            rng=self.rng,
        )
        self.spill.begin(self.adapter.total_mass, self.factory.total_hist_flux)
        self._initialized = True

    def sample(self, truth: TruthRecord, flux: FluxRecord, gtruth: GeneratorTruthRecord) -> bool:
        """Generate one interaction; ``False`` when the event source produced none."""
        if not self._initialized:
            raise RuntimeError("GeneratorHelper.initialize() must be called before sample()")

        self.engine.set_top_volume(self.adapter.top_volume)
        try:
            self.record = None
            self.record = self.event_source.generate_event()

            generator = self.factory.generator_driver
            if self.flux_type.is_ntuple:
                self.spill.update_exposure(generator.used_pots(), self.event_source.glob_prob_scale)

            viable = self.translator.translate(
                self.record, truth, flux, gtruth, generator, self.factory.blender
            )
            if viable and self.spill.counts_events():
                self.spill.count_event()
            return viable
        finally:
            self.engine.set_top_volume(self.adapter.world_volume)

    def stop(self) -> bool:
        """``True`` once the current spill is complete; counters then start over."""
        n_flux = None
        if self.flux_type.is_atmospheric:
            n_flux = self.factory.generator_driver.n_flux_neutrinos
        return self.spill.stop(n_flux)

    @property
    def total_exposure(self) -> float:
        return self.spill.state.total_exposure

    @property
    def spill_state(self) -> SpillState:
        return self.spill.state

    @property
    def detector_location(self) -> str:
        return self.config.detector_location

    @property
    def total_mass(self) -> float:
        return self.adapter.total_mass

    @property
    def flux_histograms(self) -> Dict[int, FluxHistogram]:
        return self.factory.histograms

    def total_hist_flux(self) -> float:
        if self.flux_type in (FluxType.NTUPLE, FluxType.MONO, FluxType.SIMPLE_FLUX):
            return -999.0
        return self.factory.total_hist_flux

    def close(self, output_dir: Optional[Path] = None) -> Optional[Path]:
        """Write the max path-length table when requested and log the exposure summary."""
        written = None
        if self.max_path_info is not None:
            output = Path(output_dir or ".") / MAX_PATH_FILENAME
            self.engine.set_top_volume(self.adapter.top_volume)
            try:
                path_lengths = self.engine.max_path_lengths
            finally:
                self.engine.set_top_volume(self.adapter.world_volume)
            written = write_max_path_lengths(path_lengths, output, self.max_path_info)
            logger.info("max path lengths written to %s", written)

        logger.info("total exposure %g", self.total_exposure)
        if self.flux_type.is_ntuple and self.factory.generator_driver is not None:
            prob_scale = self.event_source.glob_prob_scale
            raw_pots = self.factory.generator_driver.used_pots()
            logger.info("global probability scale %g", prob_scale)
            logger.info("raw POTs %g, corrected POTs %g", raw_pots, raw_pots / max(prob_scale, 1.0e-100))
            self.factory.generator_driver.print_config()
        return written


__all__ = ["DebugFlags", "GeneratorHelper"]
