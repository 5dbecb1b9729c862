"""Tests for flux specification, the sampler factory and the samplers themselves."""

from __future__ import annotations

import logging

import pytest

np = pytest.importorskip("numpy")

from nugen.config import GeneratorConfigError, parse_config
from nugen.simulation import flux as flux_module
from nugen.simulation.flux import FluxDriverFactory, FluxSpec, FluxType, MonoParams
from nugen.simulation.flux_drivers import (
    BartolAtmoFlux,
    CylindricalHistogramFlux,
    FluxHistogram,
    MonoEnergeticFlux,
    NuMINtupleFlux,
    SimpleNtupleFlux,
)
from nugen.simulation.mixing import FlavorMap, FluxBlender


def _config(**overrides):
    raw = {
        "flux_type": "mono",
        "beam_name": "test",
        "top_volume": "volTPC",
        "detector_location": "near",
        "gen_flavors": [14, 12, 14],
    }
    raw.update(overrides)
    return parse_config({"generator": raw})


def _factory(files=(), **overrides):
    events_per_spill = overrides.pop("events_per_spill", 0)
    mixer = overrides.pop("mixer_config", "none")
    config = _config(**overrides)
    spec = FluxSpec.from_config(config, list(files))
    return FluxDriverFactory(
        spec, events_per_spill=events_per_spill, mixer_config=mixer, rng=np.random.default_rng(3)
    )


def test_flux_type_parse_and_alias():
    assert FluxType.parse("simple-ntuple") is FluxType.SIMPLE_FLUX
    assert FluxType.parse(" atmo_BARTOL ") is FluxType.ATMO_BARTOL
    assert FluxType.ATMO_FLUKA.is_atmospheric
    assert FluxType.NTUPLE.is_ntuple and not FluxType.HISTOGRAM.is_ntuple
    with pytest.raises(GeneratorConfigError):
        FluxType.parse("cosmic")


def test_flux_spec_sorts_flavors_and_dedupes_files():
    spec = FluxSpec.from_config(_config(), ["b.root", "a.root", "b.root"])
    assert spec.flavors == (12, 14)
    assert spec.files == ("b.root", "a.root")
    assert isinstance(spec.params, MonoParams)
    assert spec.params.energy == pytest.approx(2.0)


def test_ntuple_upstream_override_only_when_finite():
    spec = FluxSpec.from_config(_config(flux_type="ntuple"), ["f.root"])
    assert spec.params.upstream_z is None
    spec = FluxSpec.from_config(_config(flux_type="ntuple", flux_upstream_z=-100.0), ["f.root"])
    assert spec.params.upstream_z == pytest.approx(-100.0)


def test_mono_forces_one_event_per_spill_and_builds_sampler():
    factory = _factory(events_per_spill=7, mono_energy=3.5, beam_direction=[0, 1, 0])
    assert factory.events_per_spill == 1
    driver = factory.build()
    assert isinstance(driver, MonoEnergeticFlux)
    assert factory.blender is None
    assert driver.generate_next()
    assert driver.pdg_code in (12, 14)
    assert driver.momentum.energy == pytest.approx(3.5)
    assert driver.momentum.vect() == pytest.approx([0.0, 3.5, 0.0])


def test_pot_driven_types_need_files():
    for flux_type in ("ntuple", "simple_flux", "histogram"):
        with pytest.raises(GeneratorConfigError):
            _factory(flux_type=flux_type)


def test_atmospheric_checks_are_fatal_at_construction():
    with pytest.raises(GeneratorConfigError):
        _factory(["only_one.dat"], flux_type="atmo_BARTOL", events_per_spill=1)
    with pytest.raises(GeneratorConfigError):
        _factory(["nue.dat", "numu.dat"], flux_type="atmo_BARTOL", events_per_spill=0)
    factory = _factory(["nue.dat", "numu.dat"], flux_type="atmo_BARTOL", events_per_spill=1)
    assert factory.spec.params.rt == pytest.approx(20.0)


def test_atmospheric_sampler_reads_one_table_per_flavor(tmp_path):
    nue = tmp_path / "nue.dat"
    numu = tmp_path / "numu.dat"
    nue.write_text("# E cosz flux\n1.0 0.5 10.0\n2.0 0.5 5.0\n50.0 0.5 1.0\n", encoding="utf-8")
    numu.write_text("# E cosz flux\n1.0 -0.5 20.0\n2.0 -0.5 10.0\n", encoding="utf-8")
    factory = _factory(
        [str(nue), str(numu)], flux_type="atmo_BARTOL", events_per_spill=1, atmo_emin=0.5, atmo_emax=10.0
    )
    driver = factory.build()
    assert isinstance(driver, BartolAtmoFlux)
    assert driver.flux_files == {12: str(nue), 14: str(numu)}
    for _ in range(20):
        assert driver.generate_next()
        assert 0.5 <= driver.momentum.energy <= 10.0
        assert driver.pdg_code in (12, 14)
    assert driver.n_flux_neutrinos == 20
    assert driver.max_energy == pytest.approx(10.0)


def test_histogram_factory_uses_flavor_keyed_spectra(monkeypatch):
    requested = []

    def fake_read(filename, names):
        requested.append((filename, list(names)))
        return {
            name: FluxHistogram(np.array([1.0, 3.0]), np.array([0.0, 1.0, 2.0]), name)
            for name in names
        }

    monkeypatch.setattr(flux_module, "read_histograms", fake_read)
    factory = _factory(["beam.root"], flux_type="histogram", gen_flavors=[-14, 14], beam_radius=2.0)
    driver = factory.build()
    assert requested == [("beam.root", ["numubar", "numu"])]
    assert isinstance(driver, CylindricalHistogramFlux)
    assert factory.total_hist_flux == pytest.approx(8.0)
    assert set(factory.histograms) == {-14, 14}
    assert driver.generate_next()
    offset = np.hypot(driver.position.x, driver.position.y)
    assert offset <= 2.0


def test_mixer_configuration_wraps_sampler():
    factory = _factory(mixer_config="swap 12:14")
    driver = factory.build()
    assert isinstance(driver, FluxBlender)
    assert isinstance(driver.mixer, FlavorMap)
    assert driver.flux_generator is factory.generator_driver
    assert driver.generate_next()
    original = factory.generator_driver.pdg_code
    assert driver.pdg_code == {12: 14, 14: 12}[original]


def test_unknown_mixer_keyword_warns_and_runs_unmixed(caplog):
    factory = _factory(mixer_config="bogus 1 2 3")
    with caplog.at_level(logging.WARNING):
        driver = factory.build()
    assert isinstance(driver, FluxBlender)
    assert driver.mixer is None
    assert "known flavor mixers" in caplog.text
    assert driver.generate_next()
    assert driver.pdg_code == factory.generator_driver.pdg_code


def _numi_arrays(n=4):
    return {
        "ntype": np.array([56, 55, 53, 56]),
        "Nimpwt": np.ones(n),
        "nenergyn": np.array([1.0, 2.0, 3.0, 4.0]),
        "ndxdznea": np.zeros(n),
        "ndydznea": np.zeros(n),
        "nwtnear": np.ones(n),
        "nenergyf": np.array([10.0, 20.0, 30.0, 40.0]),
        "ndxdzfar": np.zeros(n),
        "ndydzfar": np.zeros(n),
        "nwtfar": np.ones(n),
        "evtno": np.array([100, 200, 300, 400]),
        "vx": np.zeros(n),
        "vy": np.zeros(n),
        "vz": np.full(n, 100.0),
        "xpoint": np.zeros(n),
        "ypoint": np.zeros(n),
        "zpoint": np.full(n, 50000.0),
    }


def test_numi_ntuple_selects_detector_columns_and_flavors():
    near = NuMINtupleFlux(rng=np.random.default_rng(1))
    near.load_arrays(_numi_arrays(), "NearDet")
    near.set_flux_particles([14])
    seen = set()
    for _ in range(10):
        assert near.generate_next()
        assert near.pdg_code == 14
        seen.add(near.momentum.energy)
        assert near.pass_through["ntype"] == 14
        assert near.decay_distance() == pytest.approx(499.0)
    assert seen <= {1.0, 4.0}
    assert near.used_pots() > 0

    far = NuMINtupleFlux(rng=np.random.default_rng(1))
    far.load_arrays(_numi_arrays(), "FarDet")
    assert far.max_energy == pytest.approx(40.0)


def test_simple_ntuple_keeps_current_entry_and_pots():
    entries = {
        "pdg": np.array([14, -14]),
        "wgt": np.array([1.0, 1.0]),
        "vtxx": np.zeros(2),
        "vtxy": np.zeros(2),
        "vtxz": np.array([-5.0, -5.0]),
        "px": np.zeros(2),
        "py": np.zeros(2),
        "pz": np.array([1.0, 2.0]),
        "E": np.array([1.0, 2.0]),
        "dist": np.array([600.0, 700.0]),
    }
    numi = {"run": np.array([7, 7]), "evtno": np.array([1, 2]), "tptype": np.array([211, -211])}
    driver = SimpleNtupleFlux(rng=np.random.default_rng(5))
    driver.load_arrays(entries, "near", numi=numi, pots=1000.0)
    driver.set_upstream_z(-10.0)
    assert driver.generate_next()
    assert driver.current_entry["pdg"] == driver.pdg_code
    assert driver.current_numi["run"] == 7
    assert driver.position.z == pytest.approx(-10.0)
    assert driver.decay_distance() in (600.0, 700.0)
    # equal weights: the first entry read is accepted, half of the file's POTs
    assert driver.used_pots() == pytest.approx(500.0)


def test_mono_and_histogram_need_flavors():
    with pytest.raises(GeneratorConfigError, match="flavors"):
        _factory(gen_flavors=[])
    with pytest.raises(GeneratorConfigError, match="flavors"):
        _factory(["beam.root"], flux_type="histogram", gen_flavors=[])
