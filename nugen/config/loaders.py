"""Generator configuration loading utilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


class GeneratorConfigError(ValueError):
    """Raised for misconfiguration that makes event generation impossible."""


@dataclass
class GeneratorConfig:
    """Options recognised by :class:`~nugen.simulation.helper.GeneratorHelper`."""

    flux_type: str
    beam_name: str
    top_volume: str
    detector_location: str
    flux_files: List[str] = field(default_factory=list)
    gen_flavors: List[int] = field(default_factory=list)
    beam_center: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    beam_direction: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    beam_radius: float = 3.0
    flux_upstream_z: float = -2.0e30
    events_per_spill: float = 0.0
    pot_per_spill: float = 5.0e13
    mono_energy: float = 2.0
    surrounding_mass: float = 0.0
    global_time_offset: float = 1.0e4
    random_time_offset: float = 1.0e4
    atmo_emin: float = 0.1
    atmo_emax: float = 10.0
    atmo_rl: float = 20.0
    atmo_rt: float = 20.0
    environment: Dict[str, str] = field(default_factory=dict)
    random_seed: Optional[int] = None
    mixer_config: str = "none"
    mixer_baseline: float = 0.0
    fiducial_cut: str = "none"
    geom_scan: str = "default"
    debug_flags: int = 0
    search_path: List[str] = field(default_factory=list)


_DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")

_REQUIRED_KEYS = ("flux_type", "beam_name", "top_volume", "detector_location")


def _load_yaml_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    path = config_path or _DEFAULT_CONFIG_PATH
    with open(path, "r", encoding="utf-8") as stream:
        return yaml.safe_load(stream) or {}


def _vector(value: Any, name: str) -> Tuple[float, float, float]:
    try:
        x, y, z = (float(component) for component in value)
    except (TypeError, ValueError) as exc:
        raise GeneratorConfigError(f"'{name}' must be a sequence of three numbers, got {value!r}") from exc
    return (x, y, z)


def _environment(value: Any) -> Dict[str, str]:
    # accepts either a mapping or the flat [name, value, name, value, ...] form
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(key): str(item) for key, item in value.items()}
    items = list(value)
    if len(items) % 2:
        raise GeneratorConfigError("'environment' list must hold name/value pairs")
    return {str(items[i]): str(items[i + 1]) for i in range(0, len(items), 2)}


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def parse_config(raw_config: Dict[str, Any]) -> GeneratorConfig:
    """Build a :class:`GeneratorConfig` from a parsed YAML mapping."""

    cfg = raw_config.get("generator", raw_config)
    if not isinstance(cfg, dict):
        raise GeneratorConfigError("generator configuration must be a mapping")
    missing = [key for key in _REQUIRED_KEYS if key not in cfg]
    if missing:
        raise GeneratorConfigError(f"generator configuration is missing: {', '.join(missing)}")
    seed = cfg.get("random_seed")
    return GeneratorConfig(
        flux_type=str(cfg["flux_type"]),
        beam_name=str(cfg["beam_name"]),
        top_volume=str(cfg["top_volume"]),
        detector_location=str(cfg["detector_location"]),
        flux_files=_string_list(cfg.get("flux_files")),
        gen_flavors=[int(pdg) for pdg in cfg.get("gen_flavors", [])],
        beam_center=_vector(cfg.get("beam_center", (0.0, 0.0, 0.0)), "beam_center"),
        beam_direction=_vector(cfg.get("beam_direction", (0.0, 0.0, 1.0)), "beam_direction"),
        beam_radius=float(cfg.get("beam_radius", 3.0)),
        flux_upstream_z=float(cfg.get("flux_upstream_z", -2.0e30)),
        events_per_spill=float(cfg.get("events_per_spill", 0.0)),
        pot_per_spill=float(cfg.get("pot_per_spill", 5.0e13)),
        mono_energy=float(cfg.get("mono_energy", 2.0)),
        surrounding_mass=float(cfg.get("surrounding_mass", 0.0)),
        global_time_offset=float(cfg.get("global_time_offset", 1.0e4)),
        random_time_offset=float(cfg.get("random_time_offset", 1.0e4)),
        atmo_emin=float(cfg.get("atmo_emin", 0.1)),
        atmo_emax=float(cfg.get("atmo_emax", 10.0)),
        atmo_rl=float(cfg.get("rl", cfg.get("atmo_rl", 20.0))),
        atmo_rt=float(cfg.get("rt", cfg.get("atmo_rt", 20.0))),
        environment=_environment(cfg.get("environment")),
        random_seed=None if seed is None else int(seed),
        mixer_config=str(cfg.get("mixer_config", "none")),
        mixer_baseline=float(cfg.get("mixer_baseline", 0.0)),
        fiducial_cut=str(cfg.get("fiducial_cut", "none")),
        geom_scan=str(cfg.get("geom_scan", "default")),
        debug_flags=int(cfg.get("debug_flags", 0)),
        search_path=_string_list(cfg.get("search_path")),
    )


def load_config(config_path: Optional[Path] = None) -> GeneratorConfig:
    raw_config = _load_yaml_config(config_path)
    return parse_config(raw_config)
