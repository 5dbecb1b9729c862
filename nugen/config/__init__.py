"""Configuration loading utilities for the nugen generator."""

from .environment import GeneratorEnvironment, build_environment
from .loaders import GeneratorConfig, GeneratorConfigError, load_config, parse_config
from .search_path import find_file, find_flux_path, resolve_flux_files, split_path

__all__ = [
    "GeneratorConfig",
    "GeneratorConfigError",
    "GeneratorEnvironment",
    "build_environment",
    "find_file",
    "find_flux_path",
    "load_config",
    "parse_config",
    "resolve_flux_files",
    "split_path",
]
