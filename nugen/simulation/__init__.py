"""Neutrino event generation: geometry binding, flux sampling, spill accounting and output records."""

from .detector import DetectorGeometry, DetectorVolume, FrameTransform, default_geometry
from .fiducial import FiducialSelector, FiducialSpec, ShapeKind, parse_fiducial_cut
from .flux import FluxDriverFactory, FluxSpec, FluxType
from .geometry import GeometryAdapter, GeomScanSpec, ScanMethod, parse_geom_scan
from .geometry_io import load_geometry
from .helper import DebugFlags, GeneratorHelper
from .main import run_cli
from .mixing import FlavorMap, FluxBlender, TwoFlavorOscillation
from .physics import InteractionRecord, ToyEventSource, kinematic_invariants
from .records import FluxRecord, GeneratorTruthRecord, MCParticle, TruthRecord
from .reporting import MaxPathInfo, load_max_path_lengths, write_max_path_lengths
from .spill import SpillAccountant, SpillState
from .translator import EventTranslator
from .transport import BoxGeometryEngine

__all__ = [
    "BoxGeometryEngine",
    "DebugFlags",
    "DetectorGeometry",
    "DetectorVolume",
    "EventTranslator",
    "FiducialSelector",
    "FiducialSpec",
    "FlavorMap",
    "FluxBlender",
    "FluxDriverFactory",
    "FluxRecord",
    "FluxSpec",
    "FluxType",
    "FrameTransform",
    "GeneratorHelper",
    "GeneratorTruthRecord",
    "GeomScanSpec",
    "GeometryAdapter",
    "InteractionRecord",
    "MCParticle",
    "MaxPathInfo",
    "ScanMethod",
    "ShapeKind",
    "SpillAccountant",
    "SpillState",
    "ToyEventSource",
    "TruthRecord",
    "TwoFlavorOscillation",
    "default_geometry",
    "kinematic_invariants",
    "load_geometry",
    "load_max_path_lengths",
    "parse_fiducial_cut",
    "parse_geom_scan",
    "run_cli",
    "write_max_path_lengths",
]
