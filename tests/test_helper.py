"""End-to-end tests for the generator helper with the reference collaborators."""

from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")
pytest.importorskip("yaml")

from nugen.config import GeneratorConfigError, build_environment, parse_config
from nugen.simulation.detector import default_geometry
from nugen.simulation.helper import GeneratorHelper
from nugen.simulation.main import run_generation
from nugen.simulation.physics import ToyEventSource
from nugen.simulation.records import FluxRecord, GeneratorTruthRecord, TruthRecord
from nugen.simulation.reporting import load_max_path_lengths
from nugen.simulation.transport import BoxGeometryEngine


def _config(**overrides):
    raw = {
        "flux_type": "mono",
        "beam_name": "demo",
        "top_volume": "volDetEnclosure",
        "detector_location": "near",
        "gen_flavors": [12, 14],
        "mono_energy": 2.0,
        "beam_center": [0.0, 0.0, -6.0],
        "beam_direction": [0.0, 0.0, 1.0],
        "geom_scan": "box 20 20",
        "random_seed": 1234,
    }
    raw.update(overrides)
    return parse_config({"generator": raw})


def _helper(config, event_source=None) -> GeneratorHelper:
    environment = build_environment(config, {})
    engine = BoxGeometryEngine(default_geometry(), rng=np.random.default_rng(environment.seed))
    source = event_source or ToyEventSource(np.random.default_rng(environment.seed))
    return GeneratorHelper(config, engine, source, environment)


def _sample_viable(helper, attempts=50):
    truth, flux, gtruth = TruthRecord(), FluxRecord(), GeneratorTruthRecord()
    for _ in range(attempts):
        if helper.sample(truth, flux, gtruth):
            return truth, flux, gtruth
    raise AssertionError("no viable interaction")


class _NoInteractions:
    glob_prob_scale = 1.0

    def configure(self, flux_driver, geometry_engine) -> None:
        self.flux_driver = flux_driver

    def generate_event(self):
        self.flux_driver.generate_next()
        return None


def test_mono_end_to_end():
    helper = _helper(_config())
    helper.initialize()
    assert helper.events_per_spill == 1
    assert helper.total_hist_flux() == -999.0

    for _ in range(5):
        truth, flux, gtruth = _sample_viable(helper)
        assert helper.engine.top_volume == "volWorld"
        neutrino = truth.neutrino
        assert neutrino.nu.pdg in (12, 14)
        assert neutrino.nu.momentum.energy == pytest.approx(2.0)
        vertex = neutrino.nu.position
        assert -600.0 <= vertex.z <= 600.0
        assert abs(vertex.x) < 1e-6 and abs(vertex.y) < 1e-6
        assert neutrino.interaction_type in (1001, 1002)
        assert flux.genz == pytest.approx(-6.0)
        assert flux.gen2vtx == pytest.approx(vertex.z / 100.0 + 6.0)
        assert gtruth.probe_pdg == neutrino.nu.pdg
        assert helper.stop()
    assert helper.spill_state.spill_events == 0


def test_fiducial_cut_restricts_vertices():
    helper = _helper(_config(fiducial_cut="zcyl:0,0,150,-100,100"))
    helper.initialize()
    for _ in range(5):
        truth, _, _ = _sample_viable(helper)
        assert -100.0 <= truth.neutrino.nu.position.z <= 100.0


def test_failed_sample_does_not_count():
    helper = _helper(_config(), event_source=_NoInteractions())
    helper.initialize()
    truth, flux, gtruth = TruthRecord(), FluxRecord(), GeneratorTruthRecord()
    assert not helper.sample(truth, flux, gtruth)
    assert truth.neutrino is None
    assert helper.spill_state.spill_events == 0
    assert not helper.stop()
    assert helper.engine.top_volume == "volWorld"


def test_sample_requires_initialize():
    helper = _helper(_config())
    with pytest.raises(RuntimeError):
        helper.sample(TruthRecord(), FluxRecord(), GeneratorTruthRecord())


def test_close_writes_max_path_lengths(tmp_path):
    helper = _helper(_config(geom_scan="box 20 20 1.2 1"))
    helper.initialize()
    _sample_viable(helper)
    written = helper.close(tmp_path)
    assert written == tmp_path / "maxpathlength.xml"
    text = written.read_text(encoding="utf-8")
    assert "GeomScan:     box 20 20 1.2 1" in text
    assert "TopVolume:    volDetEnclosure" in text
    table = load_max_path_lengths(written)
    assert set(table) == {1000180400, 1000070140}


def test_close_without_write_flag_writes_nothing(tmp_path):
    helper = _helper(_config())
    helper.initialize()
    assert helper.close(tmp_path) is None
    assert not (tmp_path / "maxpathlength.xml").exists()


def test_setup_errors_raise_at_construction():
    with pytest.raises(GeneratorConfigError):
        _helper(_config(flux_type="ntuple", flux_files=["missing_*.root"]))
    with pytest.raises(GeneratorConfigError):
        _helper(_config(flux_type="laser"))
    with pytest.raises(GeneratorConfigError):
        _helper(_config(fiducial_cut="zcyl 0 0 1")).initialize()


def test_run_generation_writes_json_lines(tmp_path):
    helper = _helper(_config())
    helper.initialize()
    output = tmp_path / "events.jsonl"
    summary = run_generation(helper, 3, output=output)
    assert summary.events == 3
    assert summary.spills == 3
    lines = output.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert '"nu_pdg"' in lines[0]


def test_flux_scan_draws_stay_in_sampler_counters():
    helper = _helper(_config(geom_scan="flux 25"))
    helper.initialize()
    assert helper.factory.generator_driver.n_generated >= 25
    before = helper.factory.generator_driver.n_generated
    _sample_viable(helper)
    assert helper.factory.generator_driver.n_generated > before
