"""Max path-length tables and the provenance block written alongside them."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping

logger = logging.getLogger(__name__)

MAX_PATH_FILENAME = "maxpathlength.xml"


@dataclass
class MaxPathInfo:
    """Setup a max path-length table was computed for."""

    flux_type: str
    beam_name: str
    flux_files: List[str] = field(default_factory=list)
    detector_location: str = ""
    root_file: str = ""
    world_volume: str = ""
    top_volume: str = ""
    fiducial_cut: str = ""
    geom_scan: str = ""

    def render(self) -> str:
        lines = [
            "",
            f"   FluxType:     {self.flux_type}",
            f"   BeamName:     {self.beam_name}",
            "   FluxFiles:    " + "".join(f"\n         {name}" for name in self.flux_files),
            f"   DetLocation:  {self.detector_location}",
            f"   ROOTFile:     {self.root_file}",
            f"   WorldVolume:  {self.world_volume}",
            f"   TopVolume:    {self.top_volume}",
            f"   FiducialCut:  {self.fiducial_cut}",
            f"   GeomScan:     {self.geom_scan}",
        ]
        return "\n".join(lines) + "\n"


def write_max_path_lengths(
    path_lengths: Mapping[int, float], output_path: Path | str, info: MaxPathInfo | None = None
) -> Path:
    """Save ``path_lengths`` as ``<path_length_list>`` XML, optionally with a provenance comment."""
    output = Path(output_path)
    root = ET.Element("path_length_list")
    for pdg, length in sorted(path_lengths.items()):
        entry = ET.SubElement(root, "path_length")
        ET.SubElement(entry, "pdg").text = f" {pdg} "
        ET.SubElement(entry, "pl").text = f" {length:.6g} "
    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    text = '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"
    if info is not None:
        text += "\n<!-- this file is only relevant for a setup compatible with:\n" + info.render() + "\n-->\n"
    output.write_text(text, encoding="utf-8")
    logger.info("saved max path lengths as \"%s\"", output)
    return output


def load_max_path_lengths(path: Path | str) -> Dict[int, float]:
    """Read a table written by :func:`write_max_path_lengths`."""
    tree = ET.parse(path)
    table: Dict[int, float] = {}
    for entry in tree.getroot().iter("path_length"):
        pdg = entry.findtext("pdg")
        length = entry.findtext("pl")
        if pdg is None or length is None:
            raise ValueError(f"malformed <path_length> entry in {path}")
        table[int(pdg.strip())] = float(length.strip())
    return table


__all__ = ["MAX_PATH_FILENAME", "MaxPathInfo", "load_max_path_lengths", "write_max_path_lengths"]
