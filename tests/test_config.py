"""Tests for configuration loading, the generator environment and file search."""

from __future__ import annotations

import pytest

pytest.importorskip("yaml")
pytest.importorskip("numpy")

from nugen.config import (
    GeneratorConfigError,
    build_environment,
    find_file,
    find_flux_path,
    load_config,
    parse_config,
    resolve_flux_files,
    split_path,
)

_MINIMAL = {"flux_type": "mono", "beam_name": "b", "top_volume": "volTPC", "detector_location": "near"}


def test_bundled_config_loads():
    config = load_config()
    assert config.flux_type == "mono"
    assert config.top_volume == "volDetEnclosure"
    assert config.beam_center == (0.0, 0.0, -6.0)
    assert config.fiducial_cut.startswith("zcyl")


def test_defaults_and_yaml_file(tmp_path):
    path = tmp_path / "gen.yaml"
    path.write_text(
        "generator:\n"
        "  flux_type: histogram\n"
        "  beam_name: booster\n"
        "  top_volume: volTPC\n"
        "  detector_location: near\n"
        "  flux_files: beam.root\n"
        "  environment: [GSEED, '0x1f', GXMLPATH, /opt/xml]\n"
        "  rt: 35\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.flux_files == ["beam.root"]
    assert config.environment == {"GSEED": "0x1f", "GXMLPATH": "/opt/xml"}
    assert config.atmo_rt == 35.0
    assert config.pot_per_spill == 5.0e13
    assert config.beam_radius == 3.0
    assert config.flux_upstream_z == -2.0e30
    assert config.mixer_config == "none"
    assert config.geom_scan == "default"


def test_missing_required_keys():
    with pytest.raises(GeneratorConfigError, match="detector_location"):
        parse_config({"generator": {"flux_type": "mono", "beam_name": "b", "top_volume": "t"}})
    with pytest.raises(GeneratorConfigError):
        parse_config({"generator": dict(_MINIMAL, beam_center=[1, 2])})


def test_seed_priority():
    config = parse_config({"generator": dict(_MINIMAL, random_seed=5)})
    assert build_environment(config, {"GSEED": "99"}).seed == 5

    config = parse_config({"generator": _MINIMAL})
    environment = build_environment(config, {"GSEED": "0x10"})
    assert environment.seed == 16
    assert environment.variables["GSEED"] == "16"
    assert build_environment(config, {}).seed >= 0


def test_xml_path_and_spline_resolution(tmp_path):
    (tmp_path / "splines.xml").write_text("<splines/>", encoding="utf-8")
    config = parse_config(
        {"generator": dict(_MINIMAL, environment={"GXMLPATH": "/nowhere", "GSPLOAD": "splines.xml"})}
    )
    environment = build_environment(config, {"FW_SEARCH_PATH": f"{tmp_path}:/also/nowhere"})
    assert environment.xml_path == ("/nowhere", str(tmp_path), "/also/nowhere")
    assert environment.spline_file == str(tmp_path / "splines.xml")
    assert environment.search_path == (str(tmp_path), "/also/nowhere")

    with pytest.raises(GeneratorConfigError):
        build_environment(config, {})


def test_split_path_and_find_file(tmp_path):
    assert split_path("a::b:") == ["a", "b"]
    assert split_path(None) == []
    (tmp_path / "flux.root").write_text("", encoding="utf-8")
    assert find_file(["/nowhere", str(tmp_path)], "flux.root") == str(tmp_path / "flux.root")
    assert find_file([str(tmp_path)], str(tmp_path / "flux.root")) == str(tmp_path / "flux.root")
    assert find_file([str(tmp_path)], "other.root") is None


def test_find_flux_path_prefers_directory_with_most_matches(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    for index in range(2):
        (first / f"gsimple_{index}.root").write_text("", encoding="utf-8")
    for index in range(3):
        (second / f"gsimple_{index}.root").write_text("", encoding="utf-8")
    (second / "notes.txt").write_text("", encoding="utf-8")

    pathmax, total = find_flux_path([str(first), str(second), "/nowhere"], "gsimple_*.root")
    assert pathmax == f"{second}/gsimple_*.root"
    assert total == 5

    (first / "gsimple_2.root").write_text("", encoding="utf-8")
    pathmax, total = find_flux_path([str(first), str(second)], "gsimple_*.root")
    assert pathmax == f"{first}/gsimple_*.root"
    assert total == 6


def test_resolve_flux_files(tmp_path):
    for name in ("b.root", "a.root"):
        (tmp_path / name).write_text("", encoding="utf-8")
    files, count = resolve_flux_files([str(tmp_path)], ["b.root", "a.root", "b.root", "missing.root"])
    assert files == [str(tmp_path / "a.root"), str(tmp_path / "b.root")]
    assert count == 2

    files, count = resolve_flux_files([str(tmp_path)], ["*.root"])
    assert files == [f"{tmp_path}/*.root"]
    assert count == 2


def test_unknown_keys_are_not_kept():
    config = parse_config({"generator": dict(_MINIMAL, world_volume="volOther")})
    assert not hasattr(config, "world_volume")
