"""Detector geometry definitions for the nugen generator.

Lengths are in centimetres and densities in g/cm^3, matching the units the
geometry engine works in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


@dataclass
class DetectorVolume:
    """An axis-aligned box volume placed inside its parent."""

    name: str
    center: Tuple[float, float, float]
    half_lengths: Tuple[float, float, float]
    material: str
    density: float
    target_pdg: int
    parent: Optional[str] = None

    @property
    def lower(self) -> np.ndarray:
        return np.asarray(self.center, dtype=float) - np.asarray(self.half_lengths, dtype=float)

    @property
    def upper(self) -> np.ndarray:
        return np.asarray(self.center, dtype=float) + np.asarray(self.half_lengths, dtype=float)

    @property
    def box_volume(self) -> float:
        hx, hy, hz = self.half_lengths
        return 8.0 * hx * hy * hz


@dataclass(frozen=True)
class FrameTransform:
    """Affine master -> top-volume transform, ``p_top = R @ p_master + t``."""

    translation: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Tuple[Tuple[float, float, float], ...] = (
        (1.0, 0.0, 0.0),
        (0.0, 1.0, 0.0),
        (0.0, 0.0, 1.0),
    )

    def master_to_top(self, point: Sequence[float]) -> np.ndarray:
        return np.asarray(self.rotation) @ np.asarray(point, dtype=float) + np.asarray(self.translation)

    def top_to_master(self, point: Sequence[float]) -> np.ndarray:
        return np.asarray(self.rotation).T @ (np.asarray(point, dtype=float) - np.asarray(self.translation))


@dataclass
class DetectorGeometry:
    """A world volume holding a tree of box-shaped daughter volumes."""

    volumes: List[DetectorVolume] = field(default_factory=list)
    source: str = "<builtin>"

    @property
    def world(self) -> DetectorVolume:
        for volume in self.volumes:
            if volume.parent is None:
                return volume
        raise KeyError("Detector geometry has no world volume")

    def get_volume(self, name: str) -> DetectorVolume:
        for volume in self.volumes:
            if volume.name == name:
                return volume
        raise KeyError(f"Unknown detector volume: {name}")

    def children(self, name: str) -> List[DetectorVolume]:
        return [volume for volume in self.volumes if volume.parent == name]

    def descendants(self, name: str) -> Iterable[DetectorVolume]:
        """Yield ``name`` and every volume below it, parents first."""
        pending = [self.get_volume(name)]
        while pending:
            volume = pending.pop(0)
            yield volume
            pending.extend(self.children(volume.name))

    def exclusive_volume(self, name: str) -> float:
        """Box volume of ``name`` minus the boxes of its direct daughters."""
        volume = self.get_volume(name)
        return volume.box_volume - sum(child.box_volume for child in self.children(name))

    def mass(self, name: str) -> float:
        """Mass in kg of ``name`` including all of its daughters."""
        return sum(
            volume.density * self.exclusive_volume(volume.name) for volume in self.descendants(name)
        ) / 1000.0


def default_geometry() -> DetectorGeometry:
    """Create a small rock / enclosure / liquid-argon detector."""

    geometry = DetectorGeometry(
        volumes=[
            DetectorVolume(
                name="volWorld",
                center=(0.0, 0.0, 0.0),
                half_lengths=(1000.0, 1000.0, 2000.0),
                material="Rock",
                density=2.5,
                target_pdg=1000080160,
            ),
            DetectorVolume(
                name="volDetEnclosure",
                center=(0.0, 0.0, 0.0),
                half_lengths=(300.0, 300.0, 600.0),
                material="Air",
                density=0.001205,
                target_pdg=1000070140,
                parent="volWorld",
            ),
            DetectorVolume(
                name="volTPC",
                center=(0.0, 0.0, 0.0),
                half_lengths=(200.0, 200.0, 500.0),
                material="LAr",
                density=1.396,
                target_pdg=1000180400,
                parent="volDetEnclosure",
            ),
        ]
    )
    return geometry
