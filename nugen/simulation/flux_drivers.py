"""Neutrino flux samplers.

Every sampler follows the :class:`FluxDriver` protocol: :meth:`generate_next`
draws one neutrino and leaves its flavour, weight, four-momentum (GeV) and
ray position (metres, master frame) on the driver until the next draw.
"""

from __future__ import annotations

import glob
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np

from .physics import FourVector

logger = logging.getLogger(__name__)

# GEANT3 neutrino codes used by older beam-simulation ntuples
_GEANT_TO_PDG: Dict[int, int] = {56: 14, 55: -14, 53: 12, 52: -12}


class FluxDriver(Protocol):
    pdg_code: int
    weight: float
    momentum: FourVector
    position: FourVector

    @property
    def max_energy(self) -> float: ...

    @property
    def flux_particles(self) -> List[int]: ...

    def generate_next(self) -> bool: ...

    def end_of_file(self) -> bool: ...

    def decay_distance(self) -> float: ...

    def print_config(self) -> None: ...


@dataclass
class FluxHistogram:
    """A 1-D energy spectrum: ``contents[i]`` covers ``[edges[i], edges[i+1])``."""

    contents: np.ndarray
    edges: np.ndarray
    name: str = ""

    def __post_init__(self) -> None:
        self.contents = np.asarray(self.contents, dtype=float)
        self.edges = np.asarray(self.edges, dtype=float)
        if self.edges.shape != (self.contents.size + 1,):
            raise ValueError(f"histogram {self.name!r} needs len(edges) == len(contents) + 1")

    def integral(self) -> float:
        return float(self.contents.sum())

    def find_bin(self, value: float) -> int:
        """Index of the bin holding ``value``, ``-1`` when outside the axis."""
        if value < self.edges[0] or value >= self.edges[-1]:
            return -1
        return int(np.searchsorted(self.edges, value, side="right") - 1)

    def bin_content(self, index: int) -> float:
        if index < 0 or index >= self.contents.size:
            return 0.0
        return float(self.contents[index])

    @property
    def max_energy(self) -> float:
        filled = np.nonzero(self.contents > 0)[0]
        return float(self.edges[filled[-1] + 1]) if filled.size else float(self.edges[-1])

    def sample(self, rng: np.random.Generator) -> float:
        total = self.contents.sum()
        if total <= 0:
            raise ValueError(f"cannot sample empty histogram {self.name!r}")
        index = rng.choice(self.contents.size, p=self.contents / total)
        return float(rng.uniform(self.edges[index], self.edges[index + 1]))


def _unit_vector(values: Sequence[float]) -> np.ndarray:
    vector = np.asarray(values, dtype=float)
    norm = np.linalg.norm(vector)
    if norm == 0:
        raise ValueError("direction vector must not be zero")
    return vector / norm


def _transverse_offset(direction: np.ndarray, radius: float, rng: np.random.Generator) -> np.ndarray:
    """Uniform point on a disk of ``radius`` perpendicular to ``direction``."""
    helper = np.array([1.0, 0.0, 0.0]) if abs(direction[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(helper, direction)
    u /= np.linalg.norm(u)
    v = np.cross(direction, u)
    r = radius * math.sqrt(rng.uniform())
    phi = rng.uniform(0.0, 2.0 * math.pi)
    return r * (math.cos(phi) * u + math.sin(phi) * v)


class BaseFluxDriver:
    """State shared by all samplers."""

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        self.rng = rng or np.random.default_rng()
        self.pdg_code = 0
        self.weight = 0.0
        self.momentum = FourVector()
        self.position = FourVector()
        self._flux_particles: List[int] = []
        self.n_generated = 0

    @property
    def flux_particles(self) -> List[int]:
        return list(self._flux_particles)

    def set_flux_particles(self, pdgs: Iterable[int]) -> None:
        self._flux_particles = sorted(set(int(pdg) for pdg in pdgs))

    @property
    def max_energy(self) -> float:
        raise NotImplementedError

    def generate_next(self) -> bool:
        raise NotImplementedError

    def end_of_file(self) -> bool:
        return False

    def decay_distance(self) -> float:
        return -1.0

    def _set_ray(self, pdg: int, energy: float, direction: np.ndarray, origin: np.ndarray, weight: float = 1.0) -> None:
        self.pdg_code = int(pdg)
        self.weight = float(weight)
        self.momentum = FourVector.from_momentum(energy * direction, energy)
        self.position = FourVector(float(origin[0]), float(origin[1]), float(origin[2]), 0.0)
        self.n_generated += 1

    def print_config(self) -> None:
        logger.info(
            "%s: flavours %s, max energy %g GeV, %d neutrinos drawn",
            type(self).__name__,
            self._flux_particles,
            self.max_energy,
            self.n_generated,
        )


class MonoEnergeticFlux(BaseFluxDriver):
    """Fixed energy along a fixed ray, flavour drawn from a weight map."""

    def __init__(self, energy: float, pdg_weights: Mapping[int, float], rng: Optional[np.random.Generator] = None) -> None:
        super().__init__(rng)
        if not pdg_weights:
            raise ValueError("mono-energetic flux needs at least one flavour")
        self.energy = float(energy)
        self.pdg_weights = {int(pdg): float(weight) for pdg, weight in pdg_weights.items()}
        self.set_flux_particles(self.pdg_weights)
        self.direction = np.array([0.0, 0.0, 1.0])
        self.origin = np.zeros(3)

    def set_direction_cos(self, dx: float, dy: float, dz: float) -> None:
        self.direction = _unit_vector((dx, dy, dz))

    def set_ray_origin(self, x: float, y: float, z: float) -> None:
        self.origin = np.array([x, y, z], dtype=float)

    @property
    def max_energy(self) -> float:
        return self.energy

    def generate_next(self) -> bool:
        pdgs = list(self.pdg_weights)
        weights = np.array([self.pdg_weights[pdg] for pdg in pdgs])
        pdg = pdgs[self.rng.choice(len(pdgs), p=weights / weights.sum())]
        self._set_ray(pdg, self.energy, self.direction, self.origin)
        return True


class CylindricalHistogramFlux(BaseFluxDriver):
    """Energy spectra per flavour with rays spread uniformly over a beam cylinder."""

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        super().__init__(rng)
        self.spectra: Dict[int, FluxHistogram] = {}
        self.direction = np.array([0.0, 0.0, 1.0])
        self.beam_spot = np.zeros(3)
        self.transverse_radius = 0.0

    def add_energy_spectrum(self, pdg: int, histogram: FluxHistogram) -> None:
        self.spectra[int(pdg)] = histogram
        self.set_flux_particles(self.spectra)

    def set_nu_direction(self, direction: Sequence[float]) -> None:
        self.direction = _unit_vector(direction)

    def set_beam_spot(self, center: Sequence[float]) -> None:
        self.beam_spot = np.asarray(center, dtype=float)

    def set_transverse_radius(self, radius: float) -> None:
        self.transverse_radius = float(radius)

    @property
    def max_energy(self) -> float:
        return max((spectrum.max_energy for spectrum in self.spectra.values()), default=0.0)

    def generate_next(self) -> bool:
        if not self.spectra:
            return False
        pdgs = list(self.spectra)
        integrals = np.array([self.spectra[pdg].integral() for pdg in pdgs])
        if integrals.sum() <= 0:
            return False
        pdg = pdgs[self.rng.choice(len(pdgs), p=integrals / integrals.sum())]
        energy = self.spectra[pdg].sample(self.rng)
        origin = self.beam_spot
        if self.transverse_radius > 0:
            origin = origin + _transverse_offset(self.direction, self.transverse_radius, self.rng)
        self._set_ray(pdg, energy, self.direction, origin)
        return True


def _expand_files(pattern: str) -> List[str]:
    matches = sorted(glob.glob(pattern))
    return matches or [pattern]


def _read_trees(pattern: str, tree_names: Sequence[str], required: str) -> Dict[str, Dict[str, np.ndarray]]:
    try:
        import uproot  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("The 'uproot' package is required to read flux ntuples") from exc

    chunks: Dict[str, List[Dict[str, np.ndarray]]] = {name: [] for name in tree_names}
    for filename in _expand_files(pattern):
        with uproot.open(filename) as handle:  # type: ignore[attr-defined]
            if required not in handle:
                raise KeyError(f"flux file {filename} does not contain a '{required}' tree")
            for name in tree_names:
                if name in handle:
                    chunks[name].append(handle[name].arrays(library="np"))
    merged: Dict[str, Dict[str, np.ndarray]] = {}
    for name, parts in chunks.items():
        if parts:
            merged[name] = {key: np.concatenate([part[key] for part in parts]) for key in parts[0]}
    return merged


class _NtupleFlux(BaseFluxDriver):
    """Cycles through ntuple entries, accepting each in proportion to its weight."""

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        super().__init__(rng)
        self.upstream_z: Optional[float] = None
        self.n_cycles = 0
        self._n_entries = 0
        self._entry = -1
        self._entries_read = 0
        self._cycles_done = 0
        self._file_pots = 0.0
        self._max_weight = 0.0
        self._max_energy = 0.0
        self._end = False
        self._decay_distance = -1.0
        self.source = ""

    def set_upstream_z(self, z: float) -> None:
        """Move every ray origin back along its direction to this z (metres)."""
        self.upstream_z = float(z)

    def set_num_of_cycles(self, n_cycles: int) -> None:
        self.n_cycles = int(n_cycles)

    @property
    def max_energy(self) -> float:
        return self._max_energy

    def used_pots(self) -> float:
        """POTs represented by the entries read so far."""
        if self._n_entries == 0:
            return 0.0
        return self._file_pots * self._entries_read / self._n_entries

    def end_of_file(self) -> bool:
        return self._end

    def decay_distance(self) -> float:
        return self._decay_distance

    def _start(self, n_entries: int, weights: np.ndarray, energies: np.ndarray, file_pots: float) -> None:
        self._n_entries = int(n_entries)
        self._max_weight = float(weights.max()) if n_entries else 0.0
        self._max_energy = float(energies.max()) if n_entries else 0.0
        self._file_pots = float(file_pots)
        self._entry = int(self.rng.integers(n_entries)) - 1 if n_entries else -1
        self._entries_read = 0
        self._cycles_done = 0
        self._end = n_entries == 0

    def _next_entry(self) -> Optional[int]:
        if self._end:
            return None
        self._entry += 1
        if self._entry >= self._n_entries:
            self._entry = 0
            self._cycles_done += 1
            if self.n_cycles > 0 and self._cycles_done >= self.n_cycles:
                self._end = True
                return None
        self._entries_read += 1
        return self._entry

    def _move_upstream(self, origin: np.ndarray, direction: np.ndarray) -> np.ndarray:
        if self.upstream_z is None or direction[2] == 0:
            return origin
        return origin + direction * (self.upstream_z - origin[2]) / direction[2]

    def _draw(self, entry_weight, entry_pdg, accept_entry) -> bool:
        for _ in range(max(self._n_entries, 1) * 10):
            index = self._next_entry()
            if index is None:
                return False
            pdg = entry_pdg(index)
            if self._flux_particles and pdg not in self._flux_particles:
                continue
            weight = entry_weight(index)
            if self._max_weight > 0 and self.rng.uniform() * self._max_weight > weight:
                continue
            accept_entry(index, pdg)
            return True
        return False


class NuMINtupleFlux(_NtupleFlux):
    """Sampler for beam-simulation ``h10`` ntuples with near and far detector columns.

    The detector location picks the column set: labels containing ``far``
    use the far-detector energies, slopes and weights.
    """

    tree_name = "h10"

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        super().__init__(rng)
        self.detector_location = ""
        self.arrays: Dict[str, np.ndarray] = {}
        self.pass_through: Dict[str, float] = {}
        self._suffix = ("nenergyn", "ndxdznea", "ndydznea", "nwtnear")

    def load_beam_sim_data(self, filename: str, detector_location: str) -> None:
        trees = _read_trees(filename, [self.tree_name], self.tree_name)
        self.source = filename
        self.load_arrays(trees[self.tree_name], detector_location)

    def load_arrays(self, arrays: Mapping[str, np.ndarray], detector_location: str) -> None:
        self.arrays = {key.lower(): np.asarray(value) for key, value in arrays.items()}
        self.detector_location = detector_location
        if "far" in detector_location.lower():
            self._suffix = ("nenergyf", "ndxdzfar", "ndydzfar", "nwtfar")
        else:
            self._suffix = ("nenergyn", "ndxdznea", "ndydznea", "nwtnear")
        missing = [name for name in ("ntype", "nimpwt", *self._suffix) if name not in self.arrays]
        if missing:
            raise KeyError(f"flux ntuple is missing branches: {', '.join(missing)}")
        n_entries = len(self.arrays["ntype"])
        weights = self.arrays["nimpwt"] * self.arrays[self._suffix[3]]
        file_pots = float(self.arrays["evtno"].max()) if "evtno" in self.arrays and n_entries else 0.0
        self._start(n_entries, weights, self.arrays[self._suffix[0]], file_pots)
        logger.info("loaded %d entries (%g POTs) for %s", n_entries, file_pots, detector_location)

    def _pdg(self, index: int) -> int:
        code = int(self.arrays["ntype"][index])
        return _GEANT_TO_PDG.get(code, code)

    def _weight(self, index: int) -> float:
        return float(self.arrays["nimpwt"][index] * self.arrays[self._suffix[3]][index])

    def _accept(self, index: int, pdg: int) -> None:
        energy_key, dxdz_key, dydz_key, _ = self._suffix
        self.pass_through = {key: values[index].item() for key, values in self.arrays.items()}
        self.pass_through["ntype"] = pdg
        direction = _unit_vector((self.arrays[dxdz_key][index], self.arrays[dydz_key][index], 1.0))
        origin = np.array(
            [self.pass_through.get(axis, 0.0) for axis in ("xpoint", "ypoint", "zpoint")], dtype=float
        ) / 100.0
        origin = self._move_upstream(origin, direction)
        decay = np.array([self.pass_through.get(axis, 0.0) for axis in ("vx", "vy", "vz")], dtype=float) / 100.0
        self._decay_distance = float(np.linalg.norm(origin - decay))
        self._set_ray(pdg, float(self.arrays[energy_key][index]), direction, origin)

    def generate_next(self) -> bool:
        return self._draw(self._weight, self._pdg, self._accept)


class SimpleNtupleFlux(_NtupleFlux):
    """Sampler for simplified flux ntuples (``flux`` entries with optional ``numi`` and ``meta`` trees)."""

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        super().__init__(rng)
        self.detector_location = ""
        self.entries: Dict[str, np.ndarray] = {}
        self.numi: Dict[str, np.ndarray] = {}
        self.current_entry: Dict[str, float] = {}
        self.current_numi: Optional[Dict[str, float]] = None

    def load_beam_sim_data(self, filename: str, detector_location: str) -> None:
        trees = _read_trees(filename, ["flux", "numi", "meta"], "flux")
        self.source = filename
        pots = float(np.sum(trees["meta"]["protons"])) if "meta" in trees and "protons" in trees["meta"] else 0.0
        self.load_arrays(trees["flux"], detector_location, numi=trees.get("numi"), pots=pots)

    def load_arrays(
        self,
        entries: Mapping[str, np.ndarray],
        detector_location: str,
        *,
        numi: Optional[Mapping[str, np.ndarray]] = None,
        pots: float = 0.0,
    ) -> None:
        self.entries = {key: np.asarray(value) for key, value in entries.items()}
        self.numi = {key: np.asarray(value) for key, value in (numi or {}).items()}
        self.detector_location = detector_location
        missing = [name for name in ("pdg", "wgt", "vtxx", "vtxy", "vtxz", "px", "py", "pz", "E") if name not in self.entries]
        if missing:
            raise KeyError(f"simple flux ntuple is missing branches: {', '.join(missing)}")
        n_entries = len(self.entries["pdg"])
        self._start(n_entries, self.entries["wgt"], self.entries["E"], pots)
        logger.info("loaded %d simple flux entries (%g POTs) for %s", n_entries, pots, detector_location)

    def _pdg(self, index: int) -> int:
        return int(self.entries["pdg"][index])

    def _weight(self, index: int) -> float:
        return float(self.entries["wgt"][index])

    def _accept(self, index: int, pdg: int) -> None:
        self.current_entry = {key: values[index].item() for key, values in self.entries.items()}
        if self.numi and index < len(next(iter(self.numi.values()))):
            self.current_numi = {key: values[index].item() for key, values in self.numi.items()}
        else:
            self.current_numi = None
        entry = self.current_entry
        direction = _unit_vector((entry["px"], entry["py"], entry["pz"]))
        origin = self._move_upstream(np.array([entry["vtxx"], entry["vtxy"], entry["vtxz"]], dtype=float), direction)
        self._decay_distance = float(entry.get("dist", -1.0))
        self._set_ray(pdg, float(entry["E"]), direction, origin)

    def generate_next(self) -> bool:
        return self._draw(self._weight, self._pdg, self._accept)


class AtmosphericFlux(BaseFluxDriver):
    """Tabulated atmospheric fluxes in energy and zenith angle.

    Rays start on a disk of radius ``rt`` (metres) whose centre lies a
    distance ``rl`` up-stream of the detector centre, facing the neutrino
    direction. ``+z`` points up.
    """

    #: column order (energy, cos zenith, flux) in the table files
    columns: Tuple[int, int, int] = (0, 1, 2)

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        super().__init__(rng)
        self.flux_files: Dict[int, str] = {}
        self.tables: Dict[int, np.ndarray] = {}
        self.emin = 0.0
        self.emax = math.inf
        self.rl = 0.0
        self.rt = 0.0
        self._cells: Optional[np.ndarray] = None
        self._cell_pdgs: Optional[np.ndarray] = None
        self._cell_probabilities: Optional[np.ndarray] = None

    def set_flux_file(self, pdg: int, filename: str) -> None:
        self.flux_files[int(pdg)] = filename

    def force_min_energy(self, emin: float) -> None:
        self.emin = float(emin)

    def force_max_energy(self, emax: float) -> None:
        self.emax = float(emax)

    def set_radii(self, rl: float, rt: float) -> None:
        self.rl = float(rl)
        self.rt = float(rt)

    def read_table(self, filename: str) -> np.ndarray:
        """Return rows of ``(energy, cos_zenith, flux)``."""
        data = np.atleast_2d(np.loadtxt(filename, comments="#"))
        energy, cosz, flux = self.columns
        return np.column_stack([data[:, energy], data[:, cosz], data[:, flux]])

    def load_flux_data(self) -> None:
        for pdg, filename in self.flux_files.items():
            self.add_table(pdg, self.read_table(filename))
            logger.info("flavour %d: loaded %d flux bins from %s", pdg, len(self.tables[pdg]), filename)

    def add_table(self, pdg: int, table: np.ndarray) -> None:
        self.tables[int(pdg)] = np.asarray(table, dtype=float)
        self.set_flux_particles(self.tables)
        self._cells = None

    def _build_cells(self) -> None:
        cells, pdgs, weights = [], [], []
        for pdg, table in self.tables.items():
            energies = np.unique(table[:, 0])
            widths = np.gradient(energies) if energies.size > 1 else np.ones(1)
            width_of = dict(zip(energies, widths))
            for energy, cosz, flux in table:
                if energy < self.emin or energy > self.emax or flux <= 0:
                    continue
                cells.append((energy, cosz))
                pdgs.append(pdg)
                weights.append(flux * width_of[energy])
        if not cells:
            raise ValueError("atmospheric flux tables have no bins inside the energy range")
        self._cells = np.asarray(cells, dtype=float)
        self._cell_pdgs = np.asarray(pdgs, dtype=int)
        weights = np.asarray(weights, dtype=float)
        self._cell_probabilities = weights / weights.sum()

    @property
    def max_energy(self) -> float:
        energies = [table[:, 0].max() for table in self.tables.values() if len(table)]
        return min(self.emax, max(energies)) if energies else 0.0

    @property
    def n_flux_neutrinos(self) -> int:
        return self.n_generated

    def generate_next(self) -> bool:
        if self._cells is None:
            self._build_cells()
        index = self.rng.choice(len(self._cells), p=self._cell_probabilities)
        energy, cosz = self._cells[index]
        cosz = float(np.clip(cosz, -1.0, 1.0))
        sinz = math.sqrt(1.0 - cosz * cosz)
        phi = self.rng.uniform(0.0, 2.0 * math.pi)
        # neutrinos arriving from zenith angle theta travel downwards
        direction = -np.array([sinz * math.cos(phi), sinz * math.sin(phi), cosz])
        origin = -self.rl * direction
        if self.rt > 0:
            origin = origin + _transverse_offset(direction, self.rt, self.rng)
        self._set_ray(int(self._cell_pdgs[index]), float(energy), direction, origin)
        return True


class FlukaAtmo3DFlux(AtmosphericFlux):
    """FLUKA 3-D tables: ``cos_zenith energy flux`` per line."""

    columns = (1, 0, 2)


class BartolAtmoFlux(AtmosphericFlux):
    """BARTOL tables: ``energy cos_zenith flux`` per line, ``#`` header lines."""

    columns = (0, 1, 2)


def read_histograms(filename: Path | str, names: Sequence[str]) -> Dict[str, FluxHistogram]:
    """Read 1-D histograms ``names`` from a ROOT file."""
    try:
        import uproot  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("The 'uproot' package is required to read flux histograms") from exc

    histograms: Dict[str, FluxHistogram] = {}
    with uproot.open(filename) as handle:  # type: ignore[attr-defined]
        for name in names:
            if name not in handle:
                raise KeyError(f"flux file {filename} has no histogram '{name}'")
            contents, edges = handle[name].to_numpy()
            histograms[name] = FluxHistogram(contents=contents, edges=edges, name=name)
    return histograms


__all__ = [
    "AtmosphericFlux",
    "BartolAtmoFlux",
    "BaseFluxDriver",
    "CylindricalHistogramFlux",
    "FlukaAtmo3DFlux",
    "FluxDriver",
    "FluxHistogram",
    "MonoEnergeticFlux",
    "NuMINtupleFlux",
    "SimpleNtupleFlux",
    "read_histograms",
]
