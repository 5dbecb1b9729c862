"""Conversion of generated interactions into truth, flux and generator records."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np

from .flux import FluxType
from .flux_drivers import FluxHistogram
from .physics import NUCLEON_MASS, FourVector, InteractionRecord, kinematic_invariants
from .records import (
    NUANCE_OFFSET,
    NUMI_FIELDS,
    CurrentType,
    FluxKind,
    FluxRecord,
    GeneratorTruthRecord,
    InteractionMode,
    MCParticle,
    Origin,
    TruthRecord,
)

logger = logging.getLogger(__name__)

_FLUX_GEN_ORDER = (12, -12, 14, -14, 16, -16)
_SIMPLE_NUMI_FIELDS = ("run", "evtno", "tpx", "tpy", "tpz", "tptype", "vx", "vy", "vz", "ndecay", "ppmedium")


def _interaction_mode(process) -> InteractionMode:
    if process.is_deep_inelastic:
        return InteractionMode.DIS
    if process.is_resonant:
        return InteractionMode.RES
    if process.is_coherent:
        return InteractionMode.COH
    return InteractionMode.QE


class EventTranslator:
    """Fills the output records for one generated interaction.

    Particle positions in the generated record are in fermi around the
    struck nucleus; final and initial state particles are moved to the
    vertex in detector coordinates (cm) and shifted in time by the spill
    time (ns). The vertex itself is in metres.
    """

    def __init__(
        self,
        flux_type: FluxType,
        *,
        global_time_offset: float = 1.0e4,
        random_time_offset: float = 1.0e4,
        histograms: Optional[Dict[int, FluxHistogram]] = None,
        debug_flags: int = 0,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.flux_type = flux_type
        self.global_time_offset = global_time_offset
        self.random_time_offset = random_time_offset
        self.histograms = histograms or {}
        self.debug_flags = debug_flags
        self.rng = rng or np.random.default_rng()

    def spill_time(self) -> float:
        return self.global_time_offset + self.rng.uniform() * self.random_time_offset

    def translate(
        self,
        record: Optional[InteractionRecord],
        truth: TruthRecord,
        flux: FluxRecord,
        gtruth: GeneratorTruthRecord,
        flux_driver,
        blender=None,
    ) -> bool:
        """Fill ``truth``, ``flux`` and ``gtruth``; return ``False`` when there is no interaction.

        Ntuple provenance is written to ``flux`` before the record is checked,
        so ``flux`` may be updated even when this returns ``False``.
        """
        if self.flux_type is FluxType.NTUPLE:
            self.pack_numi_flux(flux_driver, flux)
        elif self.flux_type is FluxType.SIMPLE_FLUX:
            self.pack_simple_flux(flux_driver, flux)

        if record is None:
            return False

        self.pack_mc_truth(record, truth)
        self.pack_generator_truth(record, gtruth)

        if self.flux_type is FluxType.HISTOGRAM:
            flux.flux_type = FluxKind.HIST_PLUS_FOCUS
            energy = record.probe().momentum.energy
            flux.set_flux_gen(*(self._histogram_flux(pdg, energy) for pdg in _FLUX_GEN_ORDER))
        elif self.flux_type.is_atmospheric:
            flux.flux_type = FluxKind.HIST_PLUS_FOCUS

        self.pack_flux_geometry(record, flux, flux_driver, blender)
        return True

    def _histogram_flux(self, pdg: int, energy: float) -> float:
        histogram = self.histograms.get(pdg)
        if histogram is None:
            return 0.0
        return histogram.bin_content(histogram.find_bin(energy))

    def pack_numi_flux(self, flux_driver, flux: FluxRecord) -> None:
        flux.reset()
        flux.flux_type = FluxKind.NTUPLE
        entry = flux_driver.pass_through
        for name in NUMI_FIELDS:
            if name in entry:
                setattr(flux, name, entry[name])
        flux.dk2gen = flux_driver.decay_distance()

    def pack_simple_flux(self, flux_driver, flux: FluxRecord) -> None:
        flux.reset()
        flux.flux_type = FluxKind.SIMPLE_FLUX
        entry = flux_driver.current_entry
        flux.ntype = int(entry.get("pdg", flux.ntype))
        flux.nimpwt = entry.get("wgt", flux.nimpwt)
        numi = flux_driver.current_numi
        if numi is not None:
            for name in _SIMPLE_NUMI_FIELDS:
                if name in numi:
                    setattr(flux, name, numi[name])
        flux.dk2gen = flux_driver.decay_distance()

    def pack_mc_truth(self, record: InteractionRecord, truth: TruthRecord) -> None:
        truth.reset()
        truth.origin = Origin.BEAM_NEUTRINO
        vertex = record.vertex
        spill_time = self.spill_time()

        for index, part in enumerate(record):
            particle = MCParticle(
                track_id=-(index + 1),
                pdg=part.pdg,
                process="primary",
                mother=part.first_mother,
                mass=part.mass,
                status=part.status,
            )
            pos = part.position
            particle.gvtx = pos.as_tuple()
            if part.status in (0, 1):
                position = FourVector(
                    100.0 * (pos.x * 1.0e-15 + vertex.x),
                    100.0 * (pos.y * 1.0e-15 + vertex.y),
                    100.0 * (pos.z * 1.0e-15 + vertex.z),
                    pos.t + spill_time,
                )
            else:
                position = FourVector(*pos.as_tuple())
            particle.add_trajectory_point(position, FourVector(*part.momentum.as_tuple()))
            if part.polarization_is_set:
                particle.polarization = part.polarization
            particle.rescatter = part.rescatter_code
            truth.add(particle)

        interaction = record.summary()
        process = interaction.process
        target = interaction.initial_state.target
        hit_nucleon = record.hit_nucleon()
        W, x, y, Q2 = kinematic_invariants(
            record.probe().momentum,
            record.final_state_primary_lepton().momentum,
            hit_nucleon is not None,
            NUCLEON_MASS,
        )
        truth.set_neutrino(
            int(CurrentType.NC if process.is_weak_nc else CurrentType.CC),
            int(_interaction_mode(process)),
            NUANCE_OFFSET + record.nuance_code,
            target.pdg,
            target.hit_nucleon_pdg,
            target.hit_quark_pdg,
            W,
            x,
            y,
            Q2,
        )

    def pack_generator_truth(self, record: InteractionRecord, gtruth: GeneratorTruthRecord) -> None:
        gtruth.reset()
        interaction = record.summary()
        process = interaction.process
        tag = interaction.exclusive_tag
        kinematics = interaction.kinematics
        initial_state = interaction.initial_state
        target = initial_state.target

        gtruth.gint = process.interaction_type_id
        gtruth.gscatter = process.scattering_type_id
        gtruth.weight = record.weight
        gtruth.probability = record.probability
        gtruth.xsec = record.xsec
        gtruth.diff_xsec = record.diff_xsec
        gtruth.vertex = FourVector(*record.vertex.as_tuple())

        gtruth.num_pi_plus = tag.n_pi_plus
        gtruth.num_pi_minus = tag.n_pi_minus
        gtruth.num_pi0 = tag.n_pi0
        gtruth.num_proton = tag.n_protons
        gtruth.num_neutron = tag.n_neutrons
        gtruth.is_charm = tag.is_charm
        gtruth.res_num = tag.resonance

        gtruth.gQ2 = kinematics.Q2
        gtruth.gq2 = kinematics.q2
        gtruth.gW = kinematics.W
        if kinematics.t is not None:
            gtruth.gT = kinematics.t
        gtruth.gX = kinematics.x
        gtruth.gY = kinematics.y
        gtruth.fs_had_syst_p4 = FourVector(*kinematics.hadronic_system_p4.as_tuple())

        gtruth.is_sea_quark = target.hit_sea_quark
        gtruth.hit_nuc_p4 = FourVector(*target.hit_nucleon_p4.as_tuple())
        gtruth.tgt_z = target.z
        gtruth.tgt_a = target.a
        gtruth.tgt_pdg = target.pdg
        gtruth.probe_pdg = initial_state.probe_pdg
        gtruth.probe_p4 = FourVector(*initial_state.probe_p4.as_tuple())

    def pack_flux_geometry(self, record: InteractionRecord, flux: FluxRecord, flux_driver, blender=None) -> None:
        """Where the flux ray started and how far it travelled to the vertex, in metres."""
        ray = flux_driver.position
        vertex = record.vertex
        flux.genx, flux.geny, flux.genz = ray.x, ray.y, ray.z
        flux.gen2vtx = float(np.linalg.norm(ray.vect() - vertex.vect()))

        if blender is not None:
            flux.dk2gen = blender.travel_distance()
            if self.debug_flags & 0x02:
                blender.print_state()

        if self.debug_flags & 0x04:
            logger.info(
                "vertex (%g, %g, %g) m, ray origin (%g, %g, %g) m, distance %g m",
                vertex.x,
                vertex.y,
                vertex.z,
                ray.x,
                ray.y,
                ray.z,
                flux.gen2vtx,
            )


__all__ = ["EventTranslator"]
