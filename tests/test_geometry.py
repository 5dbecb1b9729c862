"""Tests for the geometry binding, path-length scans and geometry loading."""

from __future__ import annotations

import json

import pytest

np = pytest.importorskip("numpy")

from nugen.config import GeneratorConfigError
from nugen.simulation.detector import default_geometry
from nugen.simulation.geometry import GeometryAdapter, ScanMethod, parse_geom_scan
from nugen.simulation.geometry_io import load_geometry
from nugen.simulation.reporting import MaxPathInfo, load_max_path_lengths, write_max_path_lengths
from nugen.simulation.transport import BoxGeometryEngine, ray_box_path_lengths


def _engine(seed: int = 7) -> BoxGeometryEngine:
    return BoxGeometryEngine(default_geometry(), rng=np.random.default_rng(seed))


def test_parse_geom_scan_variants():
    assert parse_geom_scan(None).method is ScanMethod.DEFAULT
    assert parse_geom_scan("Default").method is ScanMethod.DEFAULT

    scan = parse_geom_scan("file:maxpl.xml")
    assert scan.method is ScanMethod.FILE and scan.path == "maxpl.xml"
    assert parse_geom_scan("file Max/PL.xml").path == "Max/PL.xml"

    box = parse_geom_scan("box 500 20")
    assert (box.n_points, box.n_rays, box.safety_factor, box.write) == (500, 20, 0.0, False)
    box = parse_geom_scan("box 5 5 1.3 1")
    assert box.safety_factor == pytest.approx(1.3) and box.write

    flux = parse_geom_scan("flux 20000 1.2")
    assert flux.method is ScanMethod.FLUX
    assert flux.n_particles == 20000 and flux.safety_factor == pytest.approx(1.2) and not flux.write


def test_parse_geom_scan_errors():
    with pytest.raises(GeneratorConfigError):
        parse_geom_scan("file")
    with pytest.raises(GeneratorConfigError):
        parse_geom_scan("sweep 10 10")
    with pytest.raises(GeneratorConfigError):
        parse_geom_scan("box many rays")


def test_adapter_initialize_sets_top_volume_mass_and_length():
    engine = _engine()
    adapter = GeometryAdapter(engine, "volDetEnclosure", "none", surrounding_mass=1000.0)
    adapter.initialize()
    assert engine.top_volume == "volDetEnclosure"
    assert adapter.world_volume == "volWorld"
    assert adapter.detector_length == pytest.approx(1200.0)
    lar = 1.396 * 400 * 400 * 1000 / 1000.0
    air = 0.001205 * (600 * 600 * 1200 - 400 * 400 * 1000) / 1000.0
    assert adapter.detector_mass == pytest.approx(lar + air)
    assert adapter.total_mass == pytest.approx(lar + air + 1000.0)
    assert engine.volume_selector is None


def test_adapter_attaches_fiducial_selector():
    engine = _engine()
    adapter = GeometryAdapter(engine, "volDetEnclosure", "zcyl:0,0,150,-400,400")
    adapter.initialize()
    assert engine.volume_selector is adapter.selector
    assert adapter.selector.contains((0.0, 0.0, 0.0))
    assert not adapter.selector.contains((0.0, 0.0, 450.0))


def test_rockbox_moves_top_volume_to_world():
    engine = _engine()
    adapter = GeometryAdapter(engine, "volDetEnclosure", "rockbox:(-300,-300,-600),(300,300,600),1,100")
    adapter.initialize()
    assert adapter.top_volume == "volWorld"
    assert engine.top_volume == "volWorld"


def test_configure_scan_box_keeps_engine_defaults_for_small_values():
    engine = _engine()
    adapter = GeometryAdapter(engine, "volTPC")
    adapter.initialize()
    adapter.configure_scan("box 5 50 1.5")
    assert engine.scanner_n_points == 200
    assert engine.scanner_n_rays == 50
    assert engine.max_pl_safety_factor == pytest.approx(1.5)


def test_configure_scan_reads_table_from_xml_path(tmp_path):
    write_max_path_lengths({1000180400: 1234.5}, tmp_path / "maxpl.xml")
    engine = _engine()
    adapter = GeometryAdapter(engine, "volTPC")
    adapter.initialize()
    adapter.configure_scan("file:maxpl.xml", xml_path=[str(tmp_path / "missing"), str(tmp_path)])
    assert engine.max_path_lengths == {1000180400: pytest.approx(1234.5)}

    with pytest.raises(GeneratorConfigError):
        adapter.configure_scan("file:nothere.xml", xml_path=[str(tmp_path)])


def test_ray_box_path_lengths_forward_only():
    origins = np.array([[0.0, 0.0, -10.0], [0.0, 0.0, 0.0], [5.0, 0.0, -10.0], [0.0, 0.0, 10.0]])
    directions = np.array([[0.0, 0.0, 1.0]] * 4)
    lengths = ray_box_path_lengths(origins, directions, np.array([-1.0, -1.0, -1.0]), np.array([1.0, 1.0, 1.0]))
    assert lengths.tolist() == pytest.approx([2.0, 1.0, 0.0, 0.0])


def test_box_scan_bounds_path_lengths():
    engine = _engine()
    engine.set_top_volume("volTPC")
    engine.scanner_n_points = 20
    engine.scanner_n_rays = 20
    table = engine.max_path_lengths
    assert set(table) == {1000180400}
    diagonal = np.sqrt(400.0**2 + 400.0**2 + 1000.0**2)
    assert 0 < table[1000180400] <= diagonal * 1.396 * 1.1 + 1e-6
    assert engine.max_path_lengths is table


def test_ray_path_lengths_through_nested_volumes():
    engine = _engine()
    engine.set_top_volume("volDetEnclosure")
    lengths = engine.ray_path_lengths((0.0, 0.0, -6.0), (0.0, 0.0, 1.0))
    assert lengths[1000180400] == pytest.approx(1000.0 * 1.396)
    assert lengths[1000070140] == pytest.approx(200.0 * 0.001205)
    assert engine.trace_top_volume((0.0, 0.0, -10.0), (0.0, 0.0, 1.0)) == pytest.approx((400.0, 1600.0))
    assert engine.trace_top_volume((0.0, 0.0, -10.0), (1.0, 0.0, 0.0)) is None


def test_max_path_length_file_round_trip_with_provenance(tmp_path):
    info = MaxPathInfo(
        flux_type="mono",
        beam_name="demo",
        flux_files=["a.root", "b.root"],
        detector_location="near",
        world_volume="volWorld",
        top_volume="volTPC",
        fiducial_cut="none",
        geom_scan="box 20 20 1.1 1",
    )
    output = write_max_path_lengths({1000180400: 1500.25, 1000070140: 2.5}, tmp_path / "maxpathlength.xml", info)
    text = output.read_text(encoding="utf-8")
    assert "<path_length_list>" in text
    assert "<!-- this file is only relevant for a setup compatible with:" in text
    assert "TopVolume:    volTPC" in text
    assert load_max_path_lengths(output) == {1000180400: pytest.approx(1500.25), 1000070140: pytest.approx(2.5)}


def test_geometry_loader_json(tmp_path):
    path = tmp_path / "detector.json"
    path.write_text(
        json.dumps(
            {
                "volumes": [
                    {"name": "volWorld", "half_lengths": [100, 100, 100], "material": "Rock", "density": 2.5},
                    {
                        "name": "volTPC",
                        "half_lengths": [10, 10, 20],
                        "center": [0, 0, 5],
                        "material": "LAr",
                        "density": 1.4,
                        "parent": "volWorld",
                    },
                ]
            }
        ),
        encoding="utf-8",
    )
    geometry = load_geometry(path)
    assert geometry.world.name == "volWorld"
    tpc = geometry.get_volume("volTPC")
    assert tpc.target_pdg == 1000180400
    assert tpc.center == (0.0, 0.0, 5.0)


def test_geometry_loader_gdml(tmp_path):
    gdml = tmp_path / "detector.gdml"
    gdml.write_text(
        """<?xml version='1.0'?>
<gdml>
  <materials>
    <material name='LAr' Z='18'>
      <D value='1.39'/>
      <atom value='39.95'/>
    </material>
  </materials>
  <solids>
    <box name='WorldBox' x='20000' y='20000' z='40000' lunit='mm'/>
    <box name='TPCBox' x='4000' y='4000' z='10000' lunit='mm'/>
  </solids>
  <structure>
    <volume name='volTPC'>
      <materialref ref='LAr'/>
      <solidref ref='TPCBox'/>
    </volume>
    <volume name='volWorld'>
      <materialref ref='Rock'/>
      <solidref ref='WorldBox'/>
      <physvol>
        <volumeref ref='volTPC'/>
        <position name='tpcpos' x='0' y='0' z='100' unit='cm'/>
      </physvol>
    </volume>
  </structure>
  <setup name='Default' version='1.0'>
    <world ref='volWorld'/>
  </setup>
</gdml>
""",
        encoding="utf-8",
    )
    geometry = load_geometry(gdml, fmt="gdml")
    assert len(geometry.volumes) == 2
    tpc = geometry.get_volume("volTPC")
    assert tpc.half_lengths == pytest.approx((200.0, 200.0, 500.0))
    assert tpc.center == pytest.approx((0.0, 0.0, 100.0))
    assert tpc.density == pytest.approx(1.39)
    assert tpc.target_pdg == 1000180400
    assert tpc.parent == "volWorld"


def test_max_path_length_file_declares_the_encoding_it_is_written_in(tmp_path):
    info = MaxPathInfo(flux_type="ntuple", beam_name="booster", flux_files=["/data/flüx_β.root"])
    output = write_max_path_lengths({1000180400: 12.5}, tmp_path / "maxpathlength.xml", info)
    raw = output.read_bytes()
    assert raw.startswith(b'<?xml version="1.0" encoding="UTF-8"?>')
    assert "/data/flüx_β.root".encode("utf-8") in raw
    assert load_max_path_lengths(output) == {1000180400: pytest.approx(12.5)}
