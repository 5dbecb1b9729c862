"""Binding between the generator and a detector geometry engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Protocol, Sequence

from ..config import GeneratorConfigError, find_file
from .detector import FrameTransform
from .fiducial import FiducialSelector, FiducialSpec, build_selector, parse_fiducial_cut
from .reporting import load_max_path_lengths

logger = logging.getLogger(__name__)


class GeometryEngine(Protocol):
    """What the generator needs from a detector geometry engine."""

    root_file: str
    scanner_n_points: int
    scanner_n_rays: int
    scanner_n_particles: int
    max_pl_safety_factor: float

    @property
    def world_volume_name(self) -> str: ...

    @property
    def top_volume(self) -> str: ...

    def set_top_volume(self, name: str) -> None: ...

    def total_mass(self, name: Optional[str] = None) -> float: ...

    def det_length(self) -> float: ...

    def master_to_top(self) -> FrameTransform: ...

    def adopt_volume_selector(self, selector) -> None: ...

    def set_scanner_flux(self, flux_driver) -> None: ...

    def use_max_path_lengths(self, path_lengths: Dict[int, float]) -> None: ...

    @property
    def max_path_lengths(self) -> Dict[int, float]: ...


class ScanMethod(Enum):
    DEFAULT = "default"
    FILE = "file"
    BOX = "box"
    FLUX = "flux"


@dataclass(frozen=True)
class GeomScanSpec:
    """Parsed max path-length scan setting.

    Counts of ``0`` mean "use the engine default"; a ``safety_factor`` of
    ``0`` leaves the engine's factor alone.
    """

    method: ScanMethod
    text: str = "default"
    path: Optional[str] = None
    n_points: int = 0
    n_rays: int = 0
    n_particles: int = 0
    safety_factor: float = 0.0
    write: bool = False


def parse_geom_scan(text: Optional[str]) -> GeomScanSpec:
    """Parse ``default``, ``file:<path>``, ``box <np> <nr> [sf] [write]`` or ``flux <np> [sf] [write]``.

    Raises :class:`GeneratorConfigError` for an unknown method or a file
    method without a path.
    """

    raw = (text or "default").strip()
    lowered = raw.lower()
    if not lowered or "default" in lowered:
        return GeomScanSpec(ScanMethod.DEFAULT, text=raw or "default")

    tokens = raw.split()
    method = tokens[0].lower()
    if "file" in method:
        _, _, path = tokens[0].partition(":")
        if not path and len(tokens) > 1:
            path = tokens[1]
        if not path:
            raise GeneratorConfigError(f"geometry scan {raw!r} does not name a max path-length file")
        return GeomScanSpec(ScanMethod.FILE, text=raw, path=path)

    try:
        vals = [float(token) for token in tokens[1:]]
    except ValueError as exc:
        raise GeneratorConfigError(f"geometry scan {raw!r} has non-numeric values") from exc
    nvals = len(vals)
    vals += [0.0] * max(0, 4 - nvals)

    if "box" in method:
        return GeomScanSpec(
            ScanMethod.BOX,
            text=raw,
            n_points=int(vals[0]),
            n_rays=int(vals[1]),
            safety_factor=vals[2] if nvals >= 3 else 0.0,
            write=nvals >= 4 and vals[3] != 0,
        )
    if "flux" in method:
        return GeomScanSpec(
            ScanMethod.FLUX,
            text=raw,
            n_particles=int(vals[0]),
            safety_factor=vals[1] if nvals >= 2 else 0.0,
            write=nvals >= 3 and vals[2] != 0,
        )
    raise GeneratorConfigError(f"geometry scan unknown method: {raw!r}")


class GeometryAdapter:
    """Sets up top volume, fiducial selection, mass and path-length scanning on an engine."""

    def __init__(
        self,
        engine: GeometryEngine,
        top_volume: str,
        fiducial_cut: str = "none",
        surrounding_mass: float = 0.0,
    ) -> None:
        self.engine = engine
        self.top_volume = top_volume
        self.fiducial_cut = fiducial_cut
        self.surrounding_mass = surrounding_mass
        self.world_volume = engine.world_volume_name
        self.fiducial: Optional[FiducialSpec] = None
        self.selector: Optional[FiducialSelector] = None
        self.detector_mass = 0.0
        self.detector_length = 0.0
        self.scan: GeomScanSpec = GeomScanSpec(ScanMethod.DEFAULT)

    def initialize(self) -> None:
        self.world_volume = self.engine.world_volume_name
        self.engine.set_top_volume(self.top_volume)

        self.fiducial = parse_fiducial_cut(self.fiducial_cut)
        if self.fiducial is not None:
            logger.info("fiducial cut: %s", self.fiducial.text)
            if self.fiducial.is_rockbox:
                # the rock box surrounds the detector, so generate in the whole world
                self.top_volume = self.world_volume
                self.engine.set_top_volume(self.top_volume)
            self.selector = build_selector(self.fiducial, self.engine.master_to_top())
            if self.selector is not None:
                self.engine.adopt_volume_selector(self.selector)

        self.detector_length = self.engine.det_length()
        self.detector_mass = self.engine.total_mass(self.top_volume)
        logger.info(
            "top volume %s: mass %.6g kg, length %.6g cm", self.top_volume, self.detector_mass, self.detector_length
        )

    @property
    def total_mass(self) -> float:
        """Detector mass plus the configured surrounding mass, in kg."""
        return self.detector_mass + self.surrounding_mass

    def configure_scan(self, text: Optional[str], flux_driver=None, xml_path: Sequence[str] = ()) -> GeomScanSpec:
        """Apply a geometry scan setting to the engine and return the parsed form."""
        scan = parse_geom_scan(text)
        self.scan = scan
        if scan.method is ScanMethod.DEFAULT:
            return scan

        if scan.method is ScanMethod.FILE:
            fullname = find_file(xml_path, scan.path)
            if fullname is None:
                raise GeneratorConfigError(f"can't find max path-length file {scan.path!r}")
            logger.info("getting max path lengths from \"%s\"", fullname)
            self.engine.use_max_path_lengths(load_max_path_lengths(fullname))
            return scan

        if scan.method is ScanMethod.BOX:
            n_points = scan.n_points if scan.n_points > 10 else self.engine.scanner_n_points
            n_rays = scan.n_rays if scan.n_rays > 10 else self.engine.scanner_n_rays
            logger.info("scan using box %d points, %d rays", n_points, n_rays)
            self.engine.scanner_n_points = n_points
            self.engine.scanner_n_rays = n_rays
        else:
            n_particles = scan.n_particles if scan.n_particles > 10 else self.engine.scanner_n_particles
            logger.info("scan using flux %d particles", n_particles)
            self.engine.set_scanner_flux(flux_driver)
            self.engine.scanner_n_particles = n_particles

        if scan.safety_factor > 0:
            logger.info("setting safety factor to %g", scan.safety_factor)
            self.engine.max_pl_safety_factor = scan.safety_factor
        return scan


__all__ = ["GeomScanSpec", "GeometryAdapter", "GeometryEngine", "ScanMethod", "parse_geom_scan"]
