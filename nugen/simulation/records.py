"""Experiment-facing output records filled for every generated event."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import List, Optional, Tuple

from .physics import FourVector

NUANCE_OFFSET = 1000
NEUTRINO_PDGS = frozenset({12, -12, 14, -14, 16, -16})
UNSET = -9999


class CurrentType(IntEnum):
    CC = 0
    NC = 1


class InteractionMode(IntEnum):
    QE = 0
    RES = 1
    DIS = 2
    COH = 3


class Origin(IntEnum):
    UNKNOWN = 0
    BEAM_NEUTRINO = 1


class FluxKind(IntEnum):
    UNKNOWN = 0
    HIST_PLUS_FOCUS = 1
    NTUPLE = 2
    SIMPLE_FLUX = 3


@dataclass
class TrajectoryPoint:
    position: FourVector
    momentum: FourVector


@dataclass
class MCParticle:
    """A particle in detector units: positions in cm, times in ns, momenta in GeV."""

    track_id: int
    pdg: int
    process: str
    mother: int
    mass: float
    status: int
    trajectory: List[TrajectoryPoint] = field(default_factory=list)
    polarization: Optional[Tuple[float, float, float]] = None
    gvtx: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    rescatter: int = -1

    def add_trajectory_point(self, position: FourVector, momentum: FourVector) -> None:
        self.trajectory.append(TrajectoryPoint(position, momentum))

    @property
    def position(self) -> FourVector:
        return self.trajectory[0].position

    @property
    def momentum(self) -> FourVector:
        return self.trajectory[0].momentum


@dataclass
class MCNeutrino:
    nu: MCParticle
    lepton: MCParticle
    ccnc: int
    mode: int
    interaction_type: int
    target: int
    hit_nucleon: int
    hit_quark: int
    w: float
    x: float
    y: float
    q2: float


@dataclass
class TruthRecord:
    origin: Origin = Origin.UNKNOWN
    particles: List[MCParticle] = field(default_factory=list)
    neutrino: Optional[MCNeutrino] = None

    def add(self, particle: MCParticle) -> None:
        self.particles.append(particle)

    def reset(self) -> None:
        self.origin = Origin.UNKNOWN
        self.particles = []
        self.neutrino = None

    def set_neutrino(
        self,
        ccnc: int,
        mode: int,
        interaction_type: int,
        target: int,
        hit_nucleon: int,
        hit_quark: int,
        w: float,
        x: float,
        y: float,
        q2: float,
    ) -> None:
        """Attach the neutrino summary; the incoming neutrino and outgoing lepton are looked up."""
        nu_index = next(
            (index for index, p in enumerate(self.particles) if p.status == 0 and p.pdg in NEUTRINO_PDGS), None
        )
        if nu_index is None:
            raise ValueError("truth record has no incoming neutrino")
        lepton = next(
            (p for p in self.particles if p.status == 1 and p.mother == nu_index),
            self.particles[nu_index],
        )
        self.neutrino = MCNeutrino(
            nu=self.particles[nu_index],
            lepton=lepton,
            ccnc=ccnc,
            mode=mode,
            interaction_type=interaction_type,
            target=target,
            hit_nucleon=hit_nucleon,
            hit_quark=hit_quark,
            w=w,
            x=x,
            y=y,
            q2=q2,
        )


@dataclass
class FluxRecord:
    """Flux provenance of the neutrino that produced the event.

    Field names follow the beam-simulation ntuple variables they are copied
    from; unset numbers are ``-9999``.
    """

    flux_type: FluxKind = FluxKind.UNKNOWN
    run: int = UNSET
    evtno: int = UNSET
    ndxdz: float = UNSET
    ndydz: float = UNSET
    npz: float = UNSET
    nenergy: float = UNSET
    ndxdznea: float = UNSET
    ndydznea: float = UNSET
    nenergyn: float = UNSET
    nwtnear: float = UNSET
    ndxdzfar: float = UNSET
    ndydzfar: float = UNSET
    nenergyf: float = UNSET
    nwtfar: float = UNSET
    norig: int = UNSET
    ndecay: int = UNSET
    ntype: int = UNSET
    vx: float = UNSET
    vy: float = UNSET
    vz: float = UNSET
    pdpx: float = UNSET
    pdpy: float = UNSET
    pdpz: float = UNSET
    ppdxdz: float = UNSET
    ppdydz: float = UNSET
    pppz: float = UNSET
    ppenergy: float = UNSET
    ppmedium: int = UNSET
    ptype: int = UNSET
    ppvx: float = UNSET
    ppvy: float = UNSET
    ppvz: float = UNSET
    muparpx: float = UNSET
    muparpy: float = UNSET
    muparpz: float = UNSET
    mupare: float = UNSET
    necm: float = UNSET
    nimpwt: float = UNSET
    xpoint: float = UNSET
    ypoint: float = UNSET
    zpoint: float = UNSET
    tvx: float = UNSET
    tvy: float = UNSET
    tvz: float = UNSET
    tpx: float = UNSET
    tpy: float = UNSET
    tpz: float = UNSET
    tptype: int = UNSET
    tgen: int = UNSET
    tgptype: int = UNSET
    tgppx: float = UNSET
    tgppy: float = UNSET
    tgppz: float = UNSET
    tprivx: float = UNSET
    tprivy: float = UNSET
    tprivz: float = UNSET
    beamx: float = UNSET
    beamy: float = UNSET
    beamz: float = UNSET
    beampx: float = UNSET
    beampy: float = UNSET
    beampz: float = UNSET
    dk2gen: float = UNSET
    genx: float = UNSET
    geny: float = UNSET
    genz: float = UNSET
    gen2vtx: float = UNSET
    flux_gen: Tuple[float, float, float, float, float, float] = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    def reset(self) -> None:
        for item in fields(self):
            setattr(self, item.name, item.default)

    def set_flux_gen(self, nue: float, nuebar: float, numu: float, numubar: float, nutau: float, nutaubar: float) -> None:
        self.flux_gen = (nue, nuebar, numu, numubar, nutau, nutaubar)


NUMI_FIELDS: Tuple[str, ...] = tuple(
    item.name
    for item in fields(FluxRecord)
    if item.name not in {"flux_type", "dk2gen", "genx", "geny", "genz", "gen2vtx", "flux_gen"}
)


@dataclass
class GeneratorTruthRecord:
    """Generator-internal information needed to reweight an event later."""

    gint: int = -1
    gscatter: int = -1
    weight: float = 0.0
    probability: float = 0.0
    xsec: float = 0.0
    diff_xsec: float = 0.0
    vertex: FourVector = field(default_factory=FourVector)
    num_pi_plus: int = -1
    num_pi_minus: int = -1
    num_pi0: int = -1
    num_proton: int = -1
    num_neutron: int = -1
    is_charm: bool = False
    res_num: int = -1
    gQ2: float = 0.0
    gq2: float = 0.0
    gW: float = 0.0
    gT: float = 0.0
    gX: float = 0.0
    gY: float = 0.0
    fs_had_syst_p4: FourVector = field(default_factory=FourVector)
    is_sea_quark: bool = False
    hit_nuc_p4: FourVector = field(default_factory=FourVector)
    tgt_z: int = 0
    tgt_a: int = 0
    tgt_pdg: int = 0
    probe_pdg: int = -1
    probe_p4: FourVector = field(default_factory=FourVector)

    def reset(self) -> None:
        fresh = GeneratorTruthRecord()
        for item in fields(self):
            setattr(self, item.name, getattr(fresh, item.name))


__all__ = [
    "CurrentType",
    "FluxKind",
    "FluxRecord",
    "GeneratorTruthRecord",
    "InteractionMode",
    "MCNeutrino",
    "MCParticle",
    "NUANCE_OFFSET",
    "NUMI_FIELDS",
    "Origin",
    "TrajectoryPoint",
    "TruthRecord",
]
