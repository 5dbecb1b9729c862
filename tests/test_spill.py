"""Tests for spill accounting."""

from __future__ import annotations

import math

import pytest

np = pytest.importorskip("numpy")

from nugen.simulation.flux import FluxType
from nugen.simulation.spill import PROTON_MASS_KG, SpillAccountant


def _accountant(flux_type, events_per_spill=0.0, pot_per_spill=100.0, **kwargs):
    accountant = SpillAccountant(
        flux_type, events_per_spill, pot_per_spill, rng=np.random.default_rng(2), **kwargs
    )
    accountant.begin(total_mass=1000.0, total_hist_flux=0.0)
    return accountant


def test_events_per_spill_cadence():
    accountant = _accountant(FluxType.HISTOGRAM, events_per_spill=3)
    results = []
    for _ in range(6):
        accountant.count_event()
        results.append(accountant.stop())
    assert results == [False, False, True, False, False, True]
    assert accountant.state.spill_events == 0


def test_mono_completes_every_event():
    accountant = _accountant(FluxType.MONO, events_per_spill=1)
    assert accountant.counts_events()
    assert not accountant.stop()
    accountant.count_event()
    assert accountant.stop()


def test_pot_cadence_and_lifetime_exposure():
    accountant = _accountant(FluxType.NTUPLE, pot_per_spill=100.0)
    assert not accountant.counts_events()

    accountant.update_exposure(used_pots=50.0, glob_prob_scale=1.0)
    assert not accountant.stop()
    accountant.update_exposure(used_pots=150.0, glob_prob_scale=1.0)
    assert accountant.stop()
    assert accountant.state.total_exposure == pytest.approx(150.0)
    assert accountant.state.spill_exposure == 0.0

    accountant.update_exposure(used_pots=200.0, glob_prob_scale=1.0)
    assert accountant.state.spill_exposure == pytest.approx(50.0)
    assert not accountant.stop()
    accountant.update_exposure(used_pots=500.0, glob_prob_scale=2.0)
    assert accountant.stop()
    assert accountant.state.total_exposure == pytest.approx(250.0)


def test_exposure_is_never_negative():
    accountant = _accountant(FluxType.SIMPLE_FLUX)
    accountant.update_exposure(used_pots=300.0, glob_prob_scale=1.0)
    assert accountant.stop()
    accountant.update_exposure(used_pots=10.0, glob_prob_scale=1.0)
    assert accountant.state.spill_exposure == 0.0


def test_histogram_poisson_target():
    accountant = SpillAccountant(FluxType.HISTOGRAM, 0.0, 1.0e13, rng=np.random.default_rng(4))
    mass = 1.0e18
    accountant.begin(total_mass=mass, total_hist_flux=10.0)
    expected = 1.0e-38 * 1.0e-20 * 1.0e13 * mass / PROTON_MASS_KG * 10.0
    assert accountant.histogram_mean == pytest.approx(expected)

    for _ in range(3):
        target = accountant.state.histogram_target
        assert target >= 0
        for _ in range(target):
            assert not accountant.stop()
            accountant.count_event()
        before = accountant.state.total_exposure
        assert accountant.stop()
        assert accountant.state.total_exposure == pytest.approx(before + 1.0e13)


def test_atmospheric_exposure_replaces_total():
    accountant = _accountant(FluxType.ATMO_FLUKA, events_per_spill=1, atmo_rt=20.0)
    accountant.count_event()
    assert accountant.stop(n_flux_neutrinos=100)
    first = accountant.state.total_exposure
    assert first == pytest.approx(1.0e4 * 100 / (math.pi * 400.0))
    accountant.count_event()
    assert accountant.stop(n_flux_neutrinos=300)
    assert accountant.state.total_exposure == pytest.approx(3.0 * first)


def test_non_histogram_types_draw_zero_target():
    accountant = _accountant(FluxType.NTUPLE)
    assert accountant.state.histogram_target == 0
    accountant.update_exposure(used_pots=1.0e6, glob_prob_scale=1.0)
    assert accountant.stop()
    assert accountant.state.histogram_target == 0
