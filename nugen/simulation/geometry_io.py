"""Utilities for importing detector geometries from external descriptions."""

from __future__ import annotations

import json
import math
import warnings
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .detector import DetectorGeometry, DetectorVolume


_GDML_UNIT_SCALES: Dict[str, float] = {
    "mm": 0.1,
    "cm": 1.0,
    "m": 100.0,
}

_DENSITY_UNIT_SCALES: Dict[str, float] = {
    "g/cm3": 1.0,
    "kg/m3": 1e-3,
    "mg/cm3": 1e-3,
}

_MATERIAL_TARGETS: Dict[str, int] = {
    "LAr": 1000180400,
    "Argon": 1000180400,
    "Rock": 1000080160,
    "Air": 1000070140,
    "Steel": 1000260560,
    "Water": 1000080160,
    "Scintillator": 1000060120,
}


def nucleus_pdg(z: int, a: int) -> int:
    """PDG ion code ``10LZZZAAAI`` for a ground-state nucleus."""
    return 1000000000 + z * 10000 + a * 10


def load_geometry(path: Path | str, *, fmt: Optional[str] = None, tree: Optional[str] = None) -> DetectorGeometry:
    """Load a :class:`DetectorGeometry` from a GDML/ROOT/JSON file."""

    file_path = Path(path)
    if fmt is None:
        fmt = file_path.suffix.lstrip(".")
    fmt = (fmt or "").lower()
    if fmt == "gdml":
        geometry = _load_geometry_from_gdml(file_path)
    elif fmt in {"json", "geom.json"}:
        geometry = _load_geometry_from_json(file_path)
    elif fmt in {"root", "geometry", "geo"}:
        geometry = _load_geometry_from_root(file_path, tree=tree)
    else:
        raise ValueError(f"Unsupported geometry format '{fmt}'. Supported formats: gdml, json, root")
    geometry.source = str(file_path)
    return geometry


def _load_geometry_from_json(path: Path) -> DetectorGeometry:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        volumes_data = data.get("volumes")
    else:
        volumes_data = data
    if not isinstance(volumes_data, Iterable):
        raise ValueError("JSON geometry must define an iterable of volumes")
    volumes = []
    for entry in volumes_data:
        material = entry.get("material", "Unknown")
        target = entry.get("target_pdg") or _MATERIAL_TARGETS.get(material, nucleus_pdg(1, 1))
        volumes.append(
            DetectorVolume(
                name=entry["name"],
                center=_triplet(entry.get("center", (0.0, 0.0, 0.0))),
                half_lengths=_triplet(entry["half_lengths"]),
                material=material,
                density=float(entry.get("density", 1.0)),
                target_pdg=int(target),
                parent=entry.get("parent"),
            )
        )
    return _checked(DetectorGeometry(volumes=volumes))


def _load_geometry_from_gdml(path: Path) -> DetectorGeometry:
    tree = ET.parse(path)
    root = tree.getroot()
    namespace = ""
    if root.tag.startswith("{"):
        namespace = root.tag.split("}")[0].strip("{")

    def _tag(name: str) -> str:
        return f"{{{namespace}}}{name}" if namespace else name

    materials: Dict[str, Tuple[float, int]] = {}
    for material in root.findall(f".//{_tag('material')}"):
        name = material.attrib.get("name", "")
        density_el = material.find(_tag("D"))
        density = 1.0
        if density_el is not None:
            scale = _DENSITY_UNIT_SCALES.get(density_el.attrib.get("unit", "g/cm3"), 1.0)
            density = float(density_el.attrib.get("value", "1")) * scale
        atom = material.find(_tag("atom"))
        if "Z" in material.attrib and atom is not None:
            target = nucleus_pdg(int(float(material.attrib["Z"])), int(round(float(atom.attrib["value"]))))
        else:
            target = _MATERIAL_TARGETS.get(name, nucleus_pdg(1, 1))
        materials[name] = (density, target)

    solids: Dict[str, Tuple[float, float, float]] = {}
    for box in root.findall(f".//{_tag('box')}"):
        scale = _GDML_UNIT_SCALES.get(box.attrib.get("lunit", "mm"), 1.0)
        try:
            solids[box.attrib["name"]] = (
                0.5 * float(box.attrib["x"]) * scale,
                0.5 * float(box.attrib["y"]) * scale,
                0.5 * float(box.attrib["z"]) * scale,
            )
        except KeyError:
            continue

    logical: Dict[str, Tuple[str, str, List[Tuple[str, Tuple[float, float, float]]]]] = {}
    for volume in root.findall(f".//{_tag('volume')}"):
        solid_ref = volume.find(_tag("solidref"))
        material_ref = volume.find(_tag("materialref"))
        if solid_ref is None:
            continue
        placements = []
        for physvol in volume.findall(_tag("physvol")):
            volume_ref = physvol.find(_tag("volumeref"))
            if volume_ref is None:
                continue
            position = physvol.find(_tag("position"))
            offset = (0.0, 0.0, 0.0)
            if position is not None:
                scale = _GDML_UNIT_SCALES.get(position.attrib.get("unit", "mm"), 1.0)
                offset = tuple(float(position.attrib.get(axis, "0")) * scale for axis in ("x", "y", "z"))
            placements.append((volume_ref.attrib["ref"], offset))
        material = material_ref.attrib.get("ref", "Unknown") if material_ref is not None else "Unknown"
        logical[volume.attrib["name"]] = (solid_ref.attrib.get("ref", ""), material, placements)

    world_el = root.find(f".//{_tag('world')}")
    if world_el is None or world_el.attrib.get("ref") not in logical:
        raise ValueError("GDML geometry does not declare a world volume")

    volumes: List[DetectorVolume] = []
    pending = [(world_el.attrib["ref"], None, (0.0, 0.0, 0.0))]
    while pending:
        name, parent, center = pending.pop(0)
        solid_name, material, placements = logical[name]
        half_lengths = solids.get(solid_name)
        if half_lengths is None:
            warnings.warn(f"Skipping volume '{name}' without a <box> solid", RuntimeWarning, stacklevel=2)
            continue
        density, target = materials.get(material, (1.0, _MATERIAL_TARGETS.get(material, nucleus_pdg(1, 1))))
        volumes.append(
            DetectorVolume(
                name=name,
                center=center,
                half_lengths=half_lengths,
                material=material,
                density=density,
                target_pdg=target,
                parent=parent,
            )
        )
        for child, offset in placements:
            if child in logical:
                pending.append((child, name, tuple(c + o for c, o in zip(center, offset))))
    return _checked(DetectorGeometry(volumes=volumes))


def _load_geometry_from_root(path: Path, *, tree: Optional[str] = None) -> DetectorGeometry:
    try:
        import uproot  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("The 'uproot' package is required to load ROOT geometries") from exc

    tree_name = tree or "detector_volumes"
    with uproot.open(path) as handle:  # type: ignore[attr-defined]
        if tree_name not in handle:
            raise KeyError(
                f"ROOT file does not contain a '{tree_name}' tree. "
                "Provide --geometry-tree to select the correct dataset."
            )
        arrays = handle[tree_name].arrays(library="np")
    required = {"name", "cx", "cy", "cz", "hx", "hy", "hz", "material", "density", "parent"}
    missing = required.difference(arrays)
    if missing:
        raise KeyError(f"ROOT geometry is missing required branches: {', '.join(sorted(missing))}")
    volumes = []
    for index in range(len(arrays["name"])):
        name = str(arrays["name"][index])
        half_lengths = tuple(float(arrays[key][index]) for key in ("hx", "hy", "hz"))
        if not all(math.isfinite(value) and value > 0 for value in half_lengths):
            warnings.warn(
                f"Skipping volume '{name}' due to non-finite or empty extent",
                RuntimeWarning,
                stacklevel=2,
            )
            continue
        material = str(arrays["material"][index])
        parent = str(arrays["parent"][index]) or None
        if "target_pdg" in arrays:
            target = int(arrays["target_pdg"][index])
        else:
            target = _MATERIAL_TARGETS.get(material, nucleus_pdg(1, 1))
        volumes.append(
            DetectorVolume(
                name=name,
                center=tuple(float(arrays[key][index]) for key in ("cx", "cy", "cz")),
                half_lengths=half_lengths,
                material=material,
                density=float(arrays["density"][index]),
                target_pdg=target,
                parent=parent,
            )
        )
    return _checked(DetectorGeometry(volumes=volumes))


def _triplet(values) -> Tuple[float, float, float]:
    x, y, z = (float(value) for value in values)
    return (x, y, z)


def _checked(geometry: DetectorGeometry) -> DetectorGeometry:
    if not geometry.volumes:
        raise ValueError("Geometry did not yield any box volumes")
    roots = [volume for volume in geometry.volumes if volume.parent is None]
    if len(roots) != 1:
        raise ValueError(f"Geometry must have exactly one world volume, found {len(roots)}")
    return geometry


__all__ = ["load_geometry", "nucleus_pdg"]
