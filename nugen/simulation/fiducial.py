"""Fiducial volume cuts described by a compact shape string.

The accepted form is ``[0][m]<shape>:<v1,v2,...>``:

* a leading ``0`` reverses the cut, i.e. the shape is excluded
* a leading ``m`` means the values are given in the master frame and have to
  be transformed to the top-volume frame
* ``<shape>`` is one of ``zcyl``, ``box``, ``zpoly``, ``sphere`` or ``rockbox``

Values may be separated by spaces, commas, semicolons, parentheses, braces or
brackets. Examples::

    0mbox:0,0,0.25,1,1,8.75          exclude a master-frame box
    mzpoly:6,(2,-1),1.75,0,{0.25,8.75}
    zcyl:(3,4),5.5,-2,10
    rockbox:(-1000,-1000,-500),(1000,1000,1500),1,800,4.25e-3,1.05
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import GeneratorConfigError
from .detector import FrameTransform

logger = logging.getLogger(__name__)

_VALUE_SEPARATORS = re.compile(r"[\s,;(){}\[\]]+")


class ShapeKind(Enum):
    ZCYL = "zcyl"
    BOX = "box"
    ZPOLY = "zpoly"
    SPHERE = "sphere"
    ROCKBOX = "rockbox"


MIN_VALUES: Dict[ShapeKind, int] = {
    ShapeKind.ZCYL: 5,
    ShapeKind.BOX: 6,
    ShapeKind.ZPOLY: 7,
    ShapeKind.SPHERE: 4,
    ShapeKind.ROCKBOX: 6,
}


@dataclass(frozen=True)
class ZCylinder:
    x0: float
    y0: float
    radius: float
    zmin: float
    zmax: float

    def contains(self, point: np.ndarray) -> bool:
        x, y, z = point
        return (x - self.x0) ** 2 + (y - self.y0) ** 2 <= self.radius**2 and self.zmin <= z <= self.zmax


@dataclass(frozen=True)
class Box:
    lower: Tuple[float, float, float]
    upper: Tuple[float, float, float]

    def contains(self, point: np.ndarray) -> bool:
        return bool(np.all(point >= np.asarray(self.lower)) and np.all(point <= np.asarray(self.upper)))


@dataclass(frozen=True)
class ZPolygon:
    """Regular polygon in x-y, extruded along z.

    ``phi`` (degrees) rotates the polygon; with ``phi == 0`` the first face
    is the y-z plane at ``+r_in`` from the centre.
    """

    nfaces: int
    x0: float
    y0: float
    r_in: float
    phi: float
    zmin: float
    zmax: float

    def contains(self, point: np.ndarray) -> bool:
        x, y, z = point
        if not self.zmin <= z <= self.zmax:
            return False
        dx, dy = x - self.x0, y - self.y0
        base = math.radians(self.phi)
        for face in range(self.nfaces):
            angle = base + 2.0 * math.pi * face / self.nfaces
            if dx * math.cos(angle) + dy * math.sin(angle) > self.r_in:
                return False
        return True


@dataclass(frozen=True)
class Sphere:
    x0: float
    y0: float
    z0: float
    radius: float

    def contains(self, point: np.ndarray) -> bool:
        x, y, z = point
        return (x - self.x0) ** 2 + (y - self.y0) ** 2 + (z - self.z0) ** 2 <= self.radius**2


@dataclass(frozen=True)
class RockBox:
    """Minimal box grown by a wall that depends on the neutrino energy.

    The wall is the larger of ``wall_min`` and the range ``energy / dedx`` of
    a lepton carrying the full energy. ``dedx`` is stored already divided by
    the fudge factor.
    """

    inner: Box
    rock_only: bool = True
    wall_min: float = 800.0
    dedx: float = 2.5 * 1.7e-3 / 1.05
    fudge: float = 1.05

    def wall(self, energy: float = 0.0) -> float:
        return max(self.wall_min, energy / self.dedx if self.dedx > 0 else 0.0)

    def contains(self, point: np.ndarray, energy: float = 0.0) -> bool:
        wall = self.wall(energy)
        lower = np.asarray(self.inner.lower) - wall
        upper = np.asarray(self.inner.upper) + wall
        if not (np.all(point >= lower) and np.all(point <= upper)):
            return False
        return not (self.rock_only and self.inner.contains(point))


Shape = Union[ZCylinder, Box, ZPolygon, Sphere, RockBox]


@dataclass(frozen=True)
class FiducialSpec:
    """Parsed fiducial cut: which shape, its values and how to apply it."""

    kind: ShapeKind
    shape: Shape
    reverse: bool = False
    master: bool = False
    n_values: int = 0
    text: str = ""

    @property
    def is_rockbox(self) -> bool:
        return self.kind is ShapeKind.ROCKBOX

    def validation_error(self) -> Optional[str]:
        """Describe why no selector should be built, or ``None`` if the cut is usable."""
        minimum = MIN_VALUES[self.kind]
        if self.n_values < minimum:
            return f"{self.kind.value} needs {minimum} values, not {self.n_values} fidcut=\"{self.text}\""
        if self.kind is ShapeKind.ZPOLY and self.shape.nfaces < 3:
            return f"zpoly needs nfaces>=3, not {self.shape.nfaces} fidcut=\"{self.text}\""
        return None


def _parse_values(text: str) -> List[float]:
    try:
        return [float(token) for token in _VALUE_SEPARATORS.split(text) if token]
    except ValueError as exc:
        raise GeneratorConfigError(f"fiducial cut values are not numeric: {text!r}") from exc


def _split_flags(stype: str) -> Tuple[bool, bool, str]:
    prefix = re.match(r"[0m]*", stype).group(0)
    return "0" in prefix, "m" in prefix, stype[len(prefix):]


def _build_shape(kind: ShapeKind, vals: Sequence[float], n_values: int) -> Shape:
    if kind is ShapeKind.ZCYL:
        return ZCylinder(*vals[:5])
    if kind is ShapeKind.BOX:
        # upper corner takes y and z from the same value
        return Box(lower=(vals[0], vals[1], vals[2]), upper=(vals[4], vals[5], vals[5]))
    if kind is ShapeKind.ZPOLY:
        return ZPolygon(int(vals[0]), *vals[1:7])
    if kind is ShapeKind.SPHERE:
        return Sphere(*vals[:4])
    inner = Box(lower=(vals[0], vals[1], vals[2]), upper=(vals[3], vals[4], vals[5]))
    rock_only = bool(vals[6]) if n_values >= 7 else True
    wall_min = vals[7] if n_values >= 8 else 800.0
    dedx = vals[8] if n_values >= 9 else 2.5 * 1.7e-3
    fudge = vals[9] if n_values >= 10 else 1.05
    return RockBox(inner=inner, rock_only=rock_only, wall_min=wall_min, dedx=dedx / fudge, fudge=fudge)


def parse_fiducial_cut(text: Optional[str]) -> Optional[FiducialSpec]:
    """Parse a fiducial cut string.

    Returns ``None`` for an empty string or ``none``. Raises
    :class:`GeneratorConfigError` when the ``:`` separator is missing or the
    shape is unknown.
    """

    fidcut = (text or "").strip().lower()
    if fidcut in ("", "none"):
        return None

    parts = fidcut.split(":")
    if len(parts) != 2:
        raise GeneratorConfigError(
            f"fiducial cut {fidcut!r} has no ':' separating type from values, nsplit={len(parts)}"
        )
    stype, valstr = parts
    if "rock" in stype:
        # rockbox values are always master-frame coordinates
        reverse, master, kind = False, True, ShapeKind.ROCKBOX
    else:
        reverse, master, name = _split_flags(stype)
        try:
            kind = ShapeKind(name)
        except ValueError as exc:
            raise GeneratorConfigError(f"unknown fiducial shape {stype!r}") from exc

    vals = _parse_values(valstr)
    n_values = len(vals)
    padded = vals + [0.0] * max(0, 7 - n_values)
    shape = _build_shape(kind, padded, n_values)
    return FiducialSpec(kind=kind, shape=shape, reverse=reverse, master=master, n_values=n_values, text=fidcut)


class FiducialSelector:
    """Accepts or rejects top-volume points according to a :class:`FiducialSpec`."""

    def __init__(self, spec: FiducialSpec, transform: Optional[FrameTransform] = None) -> None:
        self.spec = spec
        self.transform = transform if spec.master else None

    def contains(self, point_top, energy: float = 0.0) -> bool:
        point = np.asarray(point_top, dtype=float)
        if self.transform is not None:
            point = self.transform.top_to_master(point)
        if self.spec.is_rockbox:
            inside = self.spec.shape.contains(point, energy)
        else:
            inside = self.spec.shape.contains(point)
        return bool(inside) != self.spec.reverse

    def __repr__(self) -> str:
        return f"FiducialSelector({self.spec.text!r})"


def build_selector(spec: Optional[FiducialSpec], transform: Optional[FrameTransform] = None) -> Optional[FiducialSelector]:
    """Create the selector for ``spec``; log and return ``None`` if its values are unusable."""
    if spec is None:
        return None
    problem = spec.validation_error()
    if problem is not None:
        logger.error("%s", problem)
        return None
    if spec.master and not spec.is_rockbox:
        logger.info("convert fiducial volume from master to topvol coords")
    if spec.reverse:
        logger.info("reverse sense of fiducial volume cut")
    return FiducialSelector(spec, transform)


__all__ = [
    "Box",
    "FiducialSelector",
    "FiducialSpec",
    "MIN_VALUES",
    "RockBox",
    "ShapeKind",
    "Sphere",
    "ZCylinder",
    "ZPolygon",
    "build_selector",
    "parse_fiducial_cut",
]
