"""Generated interaction records and a toy quasi-elastic event source."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

NUCLEON_MASS = 0.93891865  # GeV, mean of proton and neutron
PROTON_MASS = 0.93827208
NEUTRON_MASS = 0.93956542
AVOGADRO = 6.02214076e23

LEPTON_MASSES: Dict[int, float] = {
    11: 0.000510999,
    13: 0.105658,
    15: 1.77686,
    12: 0.0,
    14: 0.0,
    16: 0.0,
}


@dataclass
class FourVector:
    """``(x, y, z, t)``; for momenta ``t`` holds the energy."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    t: float = 0.0

    @property
    def px(self) -> float:
        return self.x

    @property
    def py(self) -> float:
        return self.y

    @property
    def pz(self) -> float:
        return self.z

    @property
    def energy(self) -> float:
        return self.t

    def vect(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    def m2(self) -> float:
        return self.t * self.t - (self.x * self.x + self.y * self.y + self.z * self.z)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.z, self.t)

    def __add__(self, other: "FourVector") -> "FourVector":
        return FourVector(self.x + other.x, self.y + other.y, self.z + other.z, self.t + other.t)

    def __sub__(self, other: "FourVector") -> "FourVector":
        return FourVector(self.x - other.x, self.y - other.y, self.z - other.z, self.t - other.t)

    @classmethod
    def from_momentum(cls, momentum: Sequence[float], energy: float) -> "FourVector":
        px, py, pz = (float(value) for value in momentum)
        return cls(px, py, pz, float(energy))


@dataclass
class GeneratedParticle:
    """One entry of a generated event record.

    Momenta are in GeV; positions are in fermi relative to the struck
    nucleus, times in the generator's own units.
    """

    pdg: int
    status: int
    first_mother: int
    mass: float
    momentum: FourVector
    position: FourVector = field(default_factory=FourVector)
    rescatter_code: int = -1
    polarization: Optional[Tuple[float, float, float]] = None

    @property
    def polarization_is_set(self) -> bool:
        return self.polarization is not None


@dataclass
class ProcessInfo:
    interaction_type_id: int = 0
    scattering_type_id: int = 0
    is_weak_nc: bool = False
    is_deep_inelastic: bool = False
    is_resonant: bool = False
    is_coherent: bool = False


@dataclass
class ExclusiveTag:
    n_pi_plus: int = 0
    n_pi_minus: int = 0
    n_pi0: int = 0
    n_protons: int = 0
    n_neutrons: int = 0
    is_charm: bool = False
    resonance: int = -1


@dataclass
class Kinematics:
    """The generator's own (selected) kinematic variables; ``t`` is ``None`` unless selected."""

    Q2: float = 0.0
    q2: float = 0.0
    W: float = 0.0
    x: float = 0.0
    y: float = 0.0
    t: Optional[float] = None
    hadronic_system_p4: FourVector = field(default_factory=FourVector)


@dataclass
class Target:
    pdg: int
    z: int
    a: int
    hit_nucleon_pdg: int = 0
    hit_quark_pdg: int = 0
    hit_sea_quark: bool = False
    hit_nucleon_p4: FourVector = field(default_factory=FourVector)


@dataclass
class InitialState:
    probe_pdg: int
    probe_p4: FourVector
    target: Target


@dataclass
class Interaction:
    process: ProcessInfo
    initial_state: InitialState
    kinematics: Kinematics = field(default_factory=Kinematics)
    exclusive_tag: ExclusiveTag = field(default_factory=ExclusiveTag)


@dataclass
class InteractionRecord:
    """A generated event: particles plus the interaction summary.

    ``vertex`` is in the master frame, positions in metres.
    """

    particles: List[GeneratedParticle]
    interaction: Interaction
    vertex: FourVector
    nuance_code: int = 0
    weight: float = 1.0
    probability: float = 0.0
    xsec: float = 0.0
    diff_xsec: float = 0.0
    primary_lepton_index: int = -1
    hit_nucleon_index: int = -1

    def __iter__(self) -> Iterator[GeneratedParticle]:
        return iter(self.particles)

    def __len__(self) -> int:
        return len(self.particles)

    def summary(self) -> Interaction:
        return self.interaction

    def probe(self) -> GeneratedParticle:
        return self.particles[0]

    def final_state_primary_lepton(self) -> GeneratedParticle:
        return self.particles[self.primary_lepton_index]

    def hit_nucleon(self) -> Optional[GeneratedParticle]:
        if self.hit_nucleon_index < 0:
            return None
        return self.particles[self.hit_nucleon_index]


class EventSource(Protocol):
    """Event generation engine driven by the generator helper."""

    @property
    def glob_prob_scale(self) -> float: ...

    def configure(self, flux_driver, geometry_engine) -> None: ...

    def generate_event(self) -> Optional[InteractionRecord]: ...


def kinematic_invariants(
    probe_p4: FourVector, lepton_p4: FourVector, has_hit_nucleon: bool, nucleon_mass: float = NUCLEON_MASS
) -> Tuple[float, float, float, float]:
    """Return ``(W, x, y, Q2)`` from the lepton four-momenta.

    Without a struck nucleon ``W``, ``x`` and ``y`` are ``-1`` and so is ``Q2``.
    """
    if not has_hit_nucleon:
        return -1.0, -1.0, -1.0, -1.0
    q = probe_p4 - lepton_p4
    Q2 = -q.m2()
    nu = q.energy
    x = 0.5 * Q2 / (nucleon_mass * nu) if nu != 0 else -1.0
    y = nu / probe_p4.energy if probe_p4.energy != 0 else -1.0
    W2 = nucleon_mass * nucleon_mass + 2.0 * nucleon_mass * nu - Q2
    W = math.sqrt(W2) if W2 >= 0 else -1.0
    return W, x, y, Q2


def nucleus_z_a(pdg: int) -> Tuple[int, int]:
    if pdg == 2212:
        return 1, 1
    if pdg == 2112:
        return 0, 1
    return (pdg // 10000) % 1000, (pdg // 10) % 1000


def _basis(direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    w = direction / np.linalg.norm(direction)
    helper = np.array([1.0, 0.0, 0.0]) if abs(w[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(helper, w)
    u /= np.linalg.norm(u)
    return u, np.cross(w, u), w


class ToyEventSource:
    """Free-nucleon quasi-elastic toy used to drive the helper end to end.

    Each call draws flux neutrinos until one interacts inside the top volume
    (and passes the engine's volume selector), with an interaction
    probability proportional to its density-weighted path length and energy.
    It is not a physics model.
    """

    xsec_per_gev = 1.0e-38  # cm^2 per nucleon per GeV

    def __init__(self, rng: Optional[np.random.Generator] = None, *, max_attempts: int = 10000) -> None:
        self.rng = rng or np.random.default_rng()
        self.max_attempts = max_attempts
        self.flux_driver = None
        self.geometry = None
        self._glob_prob_scale = 0.0

    @property
    def glob_prob_scale(self) -> float:
        """Largest interaction probability of any flux ray, used to normalise POTs."""
        return self._glob_prob_scale

    def configure(self, flux_driver, geometry_engine) -> None:
        self.flux_driver = flux_driver
        self.geometry = geometry_engine
        max_path_lengths = geometry_engine.max_path_lengths
        emax = max(float(flux_driver.max_energy), 1e-6)
        self._glob_prob_scale = self._probability(max_path_lengths, emax)
        logger.info("global probability scale %g (max energy %g GeV)", self._glob_prob_scale, emax)

    def _probability(self, path_lengths: Dict[int, float], energy: float) -> float:
        # g/cm^2 times nucleons per gram
        return sum(path_lengths.values()) * AVOGADRO * self.xsec_per_gev * energy

    def generate_event(self) -> Optional[InteractionRecord]:
        if self.flux_driver is None or self.geometry is None:
            raise RuntimeError("ToyEventSource.configure() must be called before generate_event()")
        for _ in range(self.max_attempts):
            if self.flux_driver.end_of_file():
                logger.warning("flux driver reached the end of its input")
                return None
            if not self.flux_driver.generate_next():
                continue
            record = self._try_interaction()
            if record is not None:
                return record
        logger.warning("no interaction after %d flux neutrinos", self.max_attempts)
        return None

    def _try_interaction(self) -> Optional[InteractionRecord]:
        position = self.flux_driver.position
        momentum = self.flux_driver.momentum
        energy = momentum.energy
        direction = momentum.vect()
        if energy <= 0 or not np.any(direction):
            return None
        direction = direction / np.linalg.norm(direction)
        interval = self.geometry.trace_top_volume(position.vect(), direction)
        if interval is None:
            return None

        enter, exit_ = interval
        origin_cm = position.vect() * self.geometry.length_scale
        volumes = list(self.geometry.geometry.descendants(self.geometry.top_volume))
        max_density = max(volume.density for volume in volumes)

        # density-weighted vertex along the ray, then accept by path length
        point = None
        volume = None
        for _ in range(100):
            t = self.rng.uniform(enter, exit_)
            candidate = origin_cm + t * direction
            volume = self.geometry.volume_at(candidate)
            if self.rng.uniform() * max_density <= volume.density:
                point = candidate
                break
        if point is None:
            return None

        selector = self.geometry.volume_selector
        if selector is not None:
            point_top = self.geometry.master_to_top().master_to_top(point)
            if not selector.contains(point_top, energy):
                return None

        probability = self._probability(self.geometry.ray_path_lengths(position.vect(), direction), energy)
        if self._glob_prob_scale <= 0 or self.rng.uniform() * self._glob_prob_scale > probability:
            return None

        vertex_m = point / self.geometry.length_scale
        return self._quasi_elastic(
            int(self.flux_driver.pdg_code), energy, direction, volume.target_pdg, vertex_m, probability
        )

    def _quasi_elastic(
        self, nu_pdg: int, energy: float, direction: np.ndarray, target_pdg: int, vertex_m: np.ndarray, probability: float
    ) -> InteractionRecord:
        z, a = nucleus_z_a(target_pdg)
        sign = 1 if nu_pdg > 0 else -1
        hit_pdg = 2112 if sign > 0 else 2212
        lepton_pdg = nu_pdg - sign
        lepton_mass = LEPTON_MASSES.get(abs(lepton_pdg), 0.0)
        M = NUCLEON_MASS
        s = M * M + 2.0 * M * energy
        is_nc = s <= (lepton_mass + M) ** 2
        if is_nc:
            # below the charged-lepton threshold: elastic neutral current
            lepton_pdg, lepton_mass, recoil_pdg = nu_pdg, 0.0, hit_pdg
        else:
            recoil_pdg = 2212 if sign > 0 else 2112

        sqrt_s = math.sqrt(s)
        p_star = math.sqrt(max((s - (lepton_mass + M) ** 2) * (s - (lepton_mass - M) ** 2), 0.0)) / (2.0 * sqrt_s)
        cos_theta = self.rng.uniform(-1.0, 1.0)
        sin_theta = math.sqrt(max(1.0 - cos_theta * cos_theta, 0.0))
        phi = self.rng.uniform(0.0, 2.0 * math.pi)
        e_star = math.sqrt(p_star * p_star + lepton_mass * lepton_mass)

        beta = energy / (energy + M)
        gamma = 1.0 / math.sqrt(1.0 - beta * beta)
        pl_par = gamma * (p_star * cos_theta + beta * e_star)
        el = gamma * (e_star + beta * p_star * cos_theta)
        u, v, w = _basis(direction)
        lepton_p = p_star * sin_theta * (math.cos(phi) * u + math.sin(phi) * v) + pl_par * w

        probe_p4 = FourVector.from_momentum(energy * w, energy)
        lepton_p4 = FourVector.from_momentum(lepton_p, el)
        hit_p4 = FourVector(0.0, 0.0, 0.0, M)
        recoil_p4 = probe_p4 + hit_p4 - lepton_p4
        target_mass = a * 0.931494 if a > 1 else M
        target_p4 = FourVector(0.0, 0.0, 0.0, target_mass)
        remnant_p4 = FourVector(0.0, 0.0, 0.0, target_mass - M)

        radius = 1.2 * max(a, 1) ** (1.0 / 3.0)
        nucleon_pos = FourVector(*(self.rng.uniform(-1.0, 1.0, size=3) * radius / math.sqrt(3.0)), 0.0)

        particles = [
            GeneratedParticle(nu_pdg, 0, -1, 0.0, probe_p4),
            GeneratedParticle(target_pdg, 0, -1, target_mass, target_p4),
            GeneratedParticle(hit_pdg, 11, 1, M, hit_p4, position=nucleon_pos),
            GeneratedParticle(lepton_pdg, 1, 0, lepton_mass, lepton_p4),
            GeneratedParticle(recoil_pdg, 1, 2, M, recoil_p4, position=nucleon_pos, rescatter_code=1),
            GeneratedParticle(target_pdg - 10 if a > 1 else 0, 15, 1, target_mass - M, remnant_p4),
        ]

        q = probe_p4 - lepton_p4
        Q2 = -q.m2()
        nu = q.energy
        kinematics = Kinematics(
            Q2=Q2,
            q2=-Q2,
            W=M,
            x=0.5 * Q2 / (M * nu) if nu > 0 else 0.0,
            y=nu / energy,
            hadronic_system_p4=recoil_p4,
        )
        tag = ExclusiveTag(
            n_protons=1 if recoil_pdg == 2212 else 0,
            n_neutrons=1 if recoil_pdg == 2112 else 0,
        )
        target = Target(
            pdg=target_pdg, z=z, a=a, hit_nucleon_pdg=hit_pdg, hit_nucleon_p4=hit_p4
        )
        process = ProcessInfo(interaction_type_id=3 if is_nc else 2, scattering_type_id=1, is_weak_nc=is_nc)
        interaction = Interaction(
            process=process,
            initial_state=InitialState(probe_pdg=nu_pdg, probe_p4=probe_p4, target=target),
            kinematics=kinematics,
            exclusive_tag=tag,
        )
        xsec = self.xsec_per_gev * energy
        return InteractionRecord(
            particles=particles,
            interaction=interaction,
            vertex=FourVector(float(vertex_m[0]), float(vertex_m[1]), float(vertex_m[2]), 0.0),
            nuance_code=2 if is_nc else 1,
            weight=1.0,
            probability=probability,
            xsec=xsec,
            diff_xsec=xsec / (4.0 * math.pi),
            primary_lepton_index=3,
            hit_nucleon_index=2,
        )


__all__ = [
    "EventSource",
    "ExclusiveTag",
    "FourVector",
    "GeneratedParticle",
    "InitialState",
    "Interaction",
    "InteractionRecord",
    "Kinematics",
    "NUCLEON_MASS",
    "ProcessInfo",
    "Target",
    "ToyEventSource",
    "kinematic_invariants",
    "nucleus_z_a",
]
