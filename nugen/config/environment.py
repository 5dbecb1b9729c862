"""Explicit settings handed to the event-generation engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from .loaders import GeneratorConfig, GeneratorConfigError
from .search_path import find_file, split_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratorEnvironment:
    """Seed and search paths used by the generator and its collaborators.

    Nothing here is written into the process environment; collaborators that
    need a value receive this object.
    """

    seed: int
    xml_path: Tuple[str, ...] = ()
    search_path: Tuple[str, ...] = ()
    spline_file: Optional[str] = None
    variables: Dict[str, str] = field(default_factory=dict)


def _default_seed() -> int:
    return int(np.random.SeedSequence().entropy % (2**31 - 1))


def build_environment(
    config: GeneratorConfig, environ: Optional[Mapping[str, str]] = None
) -> GeneratorEnvironment:
    """Combine configured settings with an environment mapping.

    ``environ`` defaults to ``os.environ``; pass an explicit mapping to keep the
    result independent of the calling process.
    """

    environ = os.environ if environ is None else environ
    variables = dict(config.environment)

    if config.random_seed is not None:
        seed = config.random_seed
    elif environ.get("GSEED"):
        seed = int(environ["GSEED"], 0)
    else:
        seed = _default_seed()
    variables["GSEED"] = str(seed)

    xml_parts = split_path(variables.get("GXMLPATH"))
    xml_parts += split_path(environ.get("GXMLPATH"))
    xml_parts += split_path(environ.get("FW_SEARCH_PATH"))
    xml_path = tuple(xml_parts)
    variables["GXMLPATH"] = ":".join(xml_path)

    spline_file = None
    if "GSPLOAD" in variables:
        logger.debug("GSPLOAD as originally set: %s", variables["GSPLOAD"])
        spline_file = find_file(xml_path, variables["GSPLOAD"])
        if spline_file is None:
            logger.error(
                "could not resolve full path for spline file GSPLOAD \"%s\" using: %s",
                variables["GSPLOAD"],
                variables["GXMLPATH"],
            )
            raise GeneratorConfigError(f"can't find GSPLOAD file {variables['GSPLOAD']!r}")
        variables["GSPLOAD"] = spline_file

    search_path = tuple(config.search_path) or tuple(split_path(environ.get("FW_SEARCH_PATH")))

    for name, value in variables.items():
        logger.info("setting generator environment %s to \"%s\"", name, value)

    return GeneratorEnvironment(
        seed=seed,
        xml_path=xml_path,
        search_path=search_path,
        spline_file=spline_file,
        variables=variables,
    )


__all__ = ["GeneratorEnvironment", "build_environment"]
