"""Box-volume geometry engine with slab ray intersection and path-length scans."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from .detector import DetectorGeometry, DetectorVolume, FrameTransform

logger = logging.getLogger(__name__)


def ray_box_intervals(
    origins: np.ndarray, directions: np.ndarray, lower: np.ndarray, upper: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Entry and exit parameters of rays against an axis-aligned box.

    ``origins`` and ``directions`` have shape ``(N, 3)``. Rays that miss the box
    get ``t_enter > t_exit``.
    """
    origins = np.atleast_2d(np.asarray(origins, dtype=float))
    directions = np.atleast_2d(np.asarray(directions, dtype=float))
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)

    parallel = directions == 0.0
    safe = np.where(parallel, 1.0, directions)
    t1 = (lower - origins) / safe
    t2 = (upper - origins) / safe
    t_near = np.minimum(t1, t2)
    t_far = np.maximum(t1, t2)

    inside_slab = (origins >= lower) & (origins <= upper)
    t_near = np.where(parallel, np.where(inside_slab, -np.inf, np.inf), t_near)
    t_far = np.where(parallel, np.where(inside_slab, np.inf, -np.inf), t_far)
    return t_near.max(axis=1), t_far.min(axis=1)


def ray_box_path_lengths(
    origins: np.ndarray, directions: np.ndarray, lower: np.ndarray, upper: np.ndarray
) -> np.ndarray:
    """Forward (``t >= 0``) length of each ray inside the box, in units of ``t``."""
    t_enter, t_exit = ray_box_intervals(origins, directions, lower, upper)
    return np.clip(t_exit - np.maximum(t_enter, 0.0), 0.0, None)


def _unit(directions: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(directions, axis=1, keepdims=True)
    return directions / np.where(norms > 0, norms, 1.0)


class BoxGeometryEngine:
    """Geometry engine for detectors built from nested axis-aligned boxes.

    Positions handed over by flux samplers are in metres; the engine works
    in centimetres, hence :attr:`length_scale`.
    """

    length_scale = 100.0

    def __init__(
        self,
        geometry: DetectorGeometry,
        *,
        rng: Optional[np.random.Generator] = None,
        root_file: Optional[str] = None,
    ) -> None:
        self.geometry = geometry
        self.rng = rng or np.random.default_rng()
        self.root_file = root_file or geometry.source
        self._top_volume = geometry.world.name
        self._selector = None
        self._scanner_flux = None
        self._loaded_path_lengths: Optional[Dict[int, float]] = None
        self._computed_path_lengths: Dict[str, Dict[int, float]] = {}
        self.scanner_n_points = 200
        self.scanner_n_rays = 200
        self.scanner_n_particles = 10000
        self.max_pl_safety_factor = 1.1

    @property
    def world_volume_name(self) -> str:
        return self.geometry.world.name

    @property
    def top_volume(self) -> str:
        return self._top_volume

    def set_top_volume(self, name: str) -> None:
        self.geometry.get_volume(name)
        self._top_volume = name

    def total_mass(self, name: Optional[str] = None) -> float:
        return self.geometry.mass(name or self._top_volume)

    def det_length(self) -> float:
        """Length of the top volume along the beam (z) axis, in cm."""
        return 2.0 * self.geometry.get_volume(self._top_volume).half_lengths[2]

    def master_to_top(self) -> FrameTransform:
        center = self.geometry.get_volume(self._top_volume).center
        return FrameTransform(translation=tuple(-c for c in center))

    def adopt_volume_selector(self, selector) -> None:
        self._selector = selector

    @property
    def volume_selector(self):
        return self._selector

    def set_scanner_flux(self, flux_driver) -> None:
        self._scanner_flux = flux_driver

    def use_max_path_lengths(self, path_lengths: Dict[int, float]) -> None:
        self._loaded_path_lengths = dict(path_lengths)

    @property
    def max_path_lengths(self) -> Dict[int, float]:
        if self._loaded_path_lengths is not None:
            return self._loaded_path_lengths
        if self._top_volume not in self._computed_path_lengths:
            self._computed_path_lengths[self._top_volume] = self.compute_max_path_lengths()
        return self._computed_path_lengths[self._top_volume]

    def compute_max_path_lengths(self) -> Dict[int, float]:
        """Scan the top volume and return the largest density-weighted length per target.

        Values are in g/cm^2, keyed by target PDG code, and include the
        safety factor.
        """
        if self._scanner_flux is not None:
            origins, directions = self._flux_rays()
            method = f"flux ({self.scanner_n_particles} particles)"
        else:
            origins, directions = self._box_rays()
            method = f"box ({self.scanner_n_points} points, {self.scanner_n_rays} rays)"
        logger.info("computing max path lengths of %s using %s", self._top_volume, method)

        lengths = self._density_weighted_lengths(origins, directions)
        result = {pdg: float(values.max()) * self.max_pl_safety_factor for pdg, values in lengths.items()}
        for pdg, value in sorted(result.items()):
            logger.debug("max path length %d: %g g/cm^2", pdg, value)
        return result

    def trace_top_volume(self, origin_m, direction) -> Optional[Tuple[float, float]]:
        """Forward interval, in cm from ``origin_m``, where the ray is inside the top volume."""
        top = self.geometry.get_volume(self._top_volume)
        origin = np.asarray(origin_m, dtype=float) * self.length_scale
        unit = _unit(np.atleast_2d(np.asarray(direction, dtype=float)))
        t_enter, t_exit = ray_box_intervals(origin[np.newaxis, :], unit, top.lower, top.upper)
        enter = max(float(t_enter[0]), 0.0)
        exit_ = float(t_exit[0])
        if exit_ <= enter:
            return None
        return enter, exit_

    def ray_path_lengths(self, origin_m, direction) -> Dict[int, float]:
        """Density-weighted length (g/cm^2) per target of one ray through the top volume."""
        origin = np.asarray(origin_m, dtype=float)[np.newaxis, :] * self.length_scale
        unit = _unit(np.atleast_2d(np.asarray(direction, dtype=float)))
        return {pdg: float(values[0]) for pdg, values in self._density_weighted_lengths(origin, unit).items()}

    def volume_at(self, point_cm) -> DetectorVolume:
        """Innermost volume below the top volume containing ``point_cm``."""
        point = np.asarray(point_cm, dtype=float)
        found = self.geometry.get_volume(self._top_volume)
        for volume in self.geometry.descendants(self._top_volume):
            if np.all(point >= volume.lower) and np.all(point <= volume.upper):
                found = volume
        return found

    def _density_weighted_lengths(self, origins: np.ndarray, directions: np.ndarray) -> Dict[int, np.ndarray]:
        lengths: Dict[int, np.ndarray] = {}
        for volume in self.geometry.descendants(self._top_volume):
            own = ray_box_path_lengths(origins, directions, volume.lower, volume.upper)
            for child in self.geometry.children(volume.name):
                own = own - ray_box_path_lengths(origins, directions, child.lower, child.upper)
            weighted = np.clip(own, 0.0, None) * volume.density
            if volume.target_pdg in lengths:
                lengths[volume.target_pdg] = lengths[volume.target_pdg] + weighted
            else:
                lengths[volume.target_pdg] = weighted
        return lengths

    def _box_rays(self) -> Tuple[np.ndarray, np.ndarray]:
        top = self.geometry.get_volume(self._top_volume)
        lower, upper = top.lower, top.upper
        n_points, n_rays = self.scanner_n_points, self.scanner_n_rays
        faces = []
        for axis in range(3):
            for bound in (lower[axis], upper[axis]):
                points = self.rng.uniform(lower, upper, size=(n_points, 3))
                points[:, axis] = bound
                faces.append(points)
        points = np.repeat(np.concatenate(faces), n_rays, axis=0)
        directions = _unit(self.rng.normal(size=(len(points), 3)))
        return points, directions

    def _flux_rays(self) -> Tuple[np.ndarray, np.ndarray]:
        origins = []
        directions = []
        for _ in range(self.scanner_n_particles):
            if not self._scanner_flux.generate_next():
                continue
            position = self._scanner_flux.position
            momentum = self._scanner_flux.momentum
            origins.append([position.x, position.y, position.z])
            directions.append([momentum.px, momentum.py, momentum.pz])
        if not origins:
            raise RuntimeError("flux scanner did not produce any neutrino rays")
        origins_cm = np.asarray(origins, dtype=float) * self.length_scale
        return origins_cm, _unit(np.asarray(directions, dtype=float))


__all__ = ["BoxGeometryEngine", "ray_box_intervals", "ray_box_path_lengths"]
