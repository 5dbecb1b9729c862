"""Tests for flavour mixing and the flux blender."""

from __future__ import annotations

import logging

import pytest

np = pytest.importorskip("numpy")

from nugen.simulation.flux_drivers import MonoEnergeticFlux
from nugen.simulation.mixing import FlavorMap, FluxBlender, TwoFlavorOscillation, available_flavor_mixers


def test_flavor_map_map_and_swap():
    mapping = FlavorMap()
    mapping.config("map 12:14")
    assert mapping.probability(12, 14, 1.0, 100.0) == 1.0
    assert mapping.probability(12, 12, 1.0, 100.0) == 0.0
    assert mapping.probability(14, 14, 1.0, 100.0) == 1.0

    swap = FlavorMap()
    swap.config("swap 12:14 -12:-14")
    assert swap.probability(14, 12, 1.0, 0.0) == 1.0
    assert swap.probability(-12, -14, 1.0, 0.0) == 1.0


def test_flavor_map_fixed_fractions():
    mapping = FlavorMap()
    mapping.config("fixedfrac {14:0.2,0.3,0.5} {-12:0.1,0.1,0.4,0.4}")
    assert mapping.probability(14, 12, 1.0, 0.0) == pytest.approx(0.2)
    assert mapping.probability(14, 16, 1.0, 0.0) == pytest.approx(0.5)
    assert mapping.probability(14, 0, 1.0, 0.0) == pytest.approx(0.0)
    assert mapping.probability(-12, 0, 1.0, 0.0) == pytest.approx(0.1)
    assert mapping.probability(-12, -16, 1.0, 0.0) == pytest.approx(0.4)


def test_two_flavor_oscillation():
    osc = TwoFlavorOscillation()
    osc.config("2.4e-3 1.0 14 16")
    energy, distance = 1.0, 500000.0
    p = osc.probability(14, 16, energy, distance)
    assert 0.0 <= p <= 1.0
    assert osc.probability(14, 14, energy, distance) == pytest.approx(1.0 - p)
    assert osc.probability(12, 12, energy, distance) == 1.0
    assert "TwoFlavorOscillation" in available_flavor_mixers()


def _blender(mixer, baseline=735000.0):
    flux = MonoEnergeticFlux(2.0, {14: 1.0}, rng=np.random.default_rng(11))
    blender = FluxBlender()
    blender.set_baseline_dist(baseline)
    blender.adopt_flux_generator(flux)
    blender.adopt_flavor_mixer(mixer)
    return blender, flux


def test_blender_uses_baseline_without_decay_distance():
    mapping = FlavorMap()
    mapping.config("map 14:16")
    blender, flux = _blender(mapping)
    assert blender.generate_next()
    assert blender.pdg_code == 16
    assert flux.pdg_code == 14
    assert blender.travel_distance() == pytest.approx(735000.0)
    assert blender.momentum is flux.momentum
    assert sorted(blender.flux_particles) == [-16, -14, -12, 12, 14, 16]


def test_blender_gives_up_on_sterile_flux(caplog):
    mapping = FlavorMap()
    mapping.config("fixedfrac {14:1,0,0,0}")
    blender, _ = _blender(mapping)
    with caplog.at_level(logging.WARNING):
        assert not blender.generate_next(max_tries=5)
    assert "sterile" in caplog.text
