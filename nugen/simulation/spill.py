"""Per-spill exposure and event accounting."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from .flux import FluxType

logger = logging.getLogger(__name__)

PROTON_MASS_KG = 1.67262158e-27


class SpillPhase(Enum):
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"


@dataclass
class SpillState:
    """Counters for the spill in progress and the whole run."""

    spill_events: int = 0
    spill_exposure: float = 0.0
    total_exposure: float = 0.0
    histogram_target: int = 0
    phase: SpillPhase = SpillPhase.ACCUMULATING


class SpillAccountant:
    """Decides when a spill is complete and keeps the exposure totals.

    ``events_per_spill`` greater than zero makes every flux type count
    events; otherwise ntuple fluxes fill a spill with ``pot_per_spill`` POTs
    and histogram fluxes with a Poisson number of events whose mean follows
    from the target mass and the total histogram flux.
    """

    def __init__(
        self,
        flux_type: FluxType,
        events_per_spill: float,
        pot_per_spill: float,
        *,
        atmo_rt: float = 0.0,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.flux_type = flux_type
        self.events_per_spill = events_per_spill
        self.pot_per_spill = pot_per_spill
        self.atmo_rt = atmo_rt
        self.rng = rng or np.random.default_rng()
        self.state = SpillState()
        self.xsec_mass_pot = 0.0
        self.total_hist_flux = 0.0

    @property
    def histogram_mean(self) -> float:
        """Expected events per spill for a histogram flux."""
        if self.flux_type is not FluxType.HISTOGRAM:
            return 0.0
        return self.xsec_mass_pot * self.total_hist_flux

    def begin(self, total_mass: float, total_hist_flux: float) -> None:
        """Fix the Poisson mean for histogram spills; ``total_mass`` in kg."""
        self.xsec_mass_pot = 1.0e-38 * 1.0e-20 * self.pot_per_spill * total_mass / PROTON_MASS_KG
        self.total_hist_flux = total_hist_flux
        self.state = SpillState()
        if self.flux_type is FluxType.HISTOGRAM and self.events_per_spill < 0.01:
            self.state.histogram_target = int(self.rng.poisson(self.histogram_mean))
            logger.info(
                "expect %g events per spill, this spill has %d",
                self.histogram_mean,
                self.state.histogram_target,
            )

    def update_exposure(self, used_pots: float, glob_prob_scale: float) -> None:
        """Set the spill exposure from the POTs a flux ntuple has consumed."""
        if glob_prob_scale <= 0:
            return
        exposure = used_pots / glob_prob_scale - self.state.total_exposure
        self.state.spill_exposure = max(exposure, 0.0)

    def count_event(self) -> None:
        self.state.spill_events += 1

    def counts_events(self) -> bool:
        """Whether a viable sample adds to the spill's event count."""
        if self.flux_type in (FluxType.MONO, FluxType.HISTOGRAM):
            return True
        return self.events_per_spill > 0

    def _spill_complete(self) -> bool:
        state = self.state
        if self.events_per_spill > 0:
            return state.spill_events >= self.events_per_spill
        if self.flux_type.is_ntuple:
            return state.spill_exposure >= self.pot_per_spill
        if self.flux_type is FluxType.HISTOGRAM:
            if state.spill_events < state.histogram_target:
                return False
            state.spill_exposure = self.pot_per_spill
            return True
        return True

    def stop(self, n_flux_neutrinos: Optional[int] = None) -> bool:
        """Return ``True`` when the current spill is complete, then start a new one."""
        if not self._spill_complete():
            return False

        state = self.state
        state.phase = SpillPhase.COMPLETE
        if self.flux_type.is_atmospheric:
            if self.atmo_rt <= 0:
                raise ValueError("atmospheric exposure needs a positive generation radius")
            # seconds of exposure: neutrinos per m^2 scaled to per cm^2
            state.total_exposure = 1.0e4 * (n_flux_neutrinos or 0) / (math.pi * self.atmo_rt ** 2)
        else:
            state.total_exposure += state.spill_exposure

        state.spill_events = 0
        state.spill_exposure = 0.0
        state.histogram_target = int(self.rng.poisson(self.histogram_mean))
        state.phase = SpillPhase.ACCUMULATING
        return True


__all__ = ["PROTON_MASS_KG", "SpillAccountant", "SpillPhase", "SpillState"]
