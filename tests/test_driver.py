"""
End-to-end tests of the chain driver.

These run real chains on small uniform samples and check that the sampled
rates recover the injected ones.
"""

from __future__ import annotations

import json

import hist
import numpy as np
import pytest

import sxmc.driver
from sxmc.config import FitConfig
from sxmc.driver import ChainDriver, ChainResult, run_fit
from sxmc.histogram import EvalHist
from sxmc.kernels import TensorKernel, ThreadPoolKernel
from sxmc.likelihood import NLL, PENALTY
from sxmc.parameters import ParameterSpace
from sxmc.signals import Signal


@pytest.fixture
def flat(energy, make_signal):
    """1000 uniform events on [0, 10), evaluated at themselves."""
    samples = np.random.default_rng(10).uniform(0.0, 10.0, 1000)
    return make_signal("flat", samples, 1000.0, energy)


def test_single_signal(flat):
    """The rate of a single flat signal converges to the event count."""
    space = ParameterSpace([flat])
    driver = ChainDriver(500, seed=1, progress=False)

    result = driver.run(NLL([flat], space))

    assert isinstance(result, ChainResult)
    assert result.nsteps == 500
    assert result.names == ("flat",)
    assert result.buffer.column("flat")[-100:].mean() == pytest.approx(1000.0, rel=0.1)
    assert 0.1 < result.acceptance_rate < 0.9


def test_deterministic(flat):
    space = ParameterSpace([flat])
    first = ChainDriver(50, seed=3, progress=False).run(NLL([flat], space))
    second = ChainDriver(50, seed=3, progress=False).run(NLL([flat], space))
    np.testing.assert_array_equal(first.buffer.rows, second.buffer.rows)


def test_two_signals(energy, make_signal):
    """
    Disjoint signals are each pinned by their own events.

    The 90% interval of each rate excludes the other rate within 5 sigma.
    """
    rates = {"low": 100.0, "high": 200.0}
    rng = np.random.default_rng(11)
    low = make_signal("low", rng.uniform(0.0, 5.0, 2000), rates["low"], energy)
    high = make_signal("high", rng.uniform(5.0, 10.0, 2000), rates["high"], energy)
    space = ParameterSpace([low, high])

    with ThreadPoolKernel(2) as kernel:
        driver = ChainDriver(200, seed=2, kernel=kernel, progress=False)
        results = driver.run_experiments([low, high], space, 2)

    assert [result.experiment for result in results] == [0, 1]
    for result in results:
        assert len(result.buffer) == 200
        assert set(result.counts) == {"low", "high"}
        tail = result.buffer.after_burnin(0.1)
        for k, (name, other) in enumerate([("low", "high"), ("high", "low")]):
            count = result.counts[name]
            assert tail[:, k].mean() == pytest.approx(count, abs=2 * np.sqrt(count))

            lower, upper = np.quantile(tail[:, k], [0.05, 0.95])
            excluded_low = rates[other] - 5 * np.sqrt(rates[other])
            excluded_high = rates[other] + 5 * np.sqrt(rates[other])
            assert upper < excluded_low or lower > excluded_high


def test_tensor_backend(flat):
    space = ParameterSpace([flat])
    driver = ChainDriver(20, seed=4, kernel=TensorKernel(), progress=False)
    result = driver.run(NLL([flat], space, kernel=driver.kernel))
    assert result.nsteps == 20


@pytest.fixture
def fit_config(tmp_path):
    """Single flat signal with one shift systematic, loaded from disk."""
    rng = np.random.default_rng(12)
    np.save(tmp_path / "flat.npy", np.column_stack([rng.uniform(0.0, 10.0, 500)]))
    config = {
        "experiment": {"live_time": 1.0},
        "pdfs": {
            "fields": ["energy"],
            "observables": {
                "energy": {"field": "energy", "bins": 10, "min": 0.0, "max": 10.0}
            },
            "systematics": {
                "shift": {
                    "type": "shift",
                    "observable_field": "energy",
                    "sigma": 0.05,
                    "jump": 0.01,
                }
            },
        },
        "fit": {
            "experiments": 2,
            "steps": 30,
            "observables": ["energy"],
            "systematics": ["shift"],
            "signals": ["flat"],
        },
        "signals": {"flat": {"rate": 300.0, "files": ["flat.npy"]}},
    }
    path = tmp_path / "fit.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return FitConfig.load(path)


def test_run_fit(fit_config):
    """A configuration on disk runs every fake experiment."""
    results = run_fit(fit_config, progress=False)

    assert len(results) == 2
    assert results[0].names == ("flat", "shift")
    assert all(result.nsteps == 30 for result in results)


def test_run_fit_closes_own_kernel(fit_config, monkeypatch):
    """The kernel built from the configuration is released afterwards."""
    created = ThreadPoolKernel(2)
    monkeypatch.setattr(sxmc.driver, "get_kernel", lambda *args, **kwargs: created)

    run_fit(fit_config, progress=False)

    assert created._pool is None


def test_run_fit_keeps_given_kernel(fit_config):
    """A kernel passed in stays usable for the caller."""
    with ThreadPoolKernel(2) as kernel:
        run_fit(fit_config, kernel=kernel, progress=False)
        assert kernel._pool is not None
        assert kernel.launch(4, lambda lane: lane.stop - lane.start) == [2, 2]


def test_large_range_observables():
    """
    Observables in small units do not let the rates leave the physical region.

    A faint signal sits next to 2e5 background events binned in millimetres.
    """
    rng = np.random.default_rng(13)
    axes = [hist.axis.Regular(20, 0.0, 1e4), hist.axis.Regular(20, 0.0, 6e3)]
    background_samples = np.column_stack(
        [rng.uniform(0.0, 1e4, 200_000), rng.uniform(0.0, 6e3, 200_000)]
    )
    signal_samples = np.column_stack(
        [rng.uniform(0.0, 1e3, 5000), rng.uniform(0.0, 600.0, 5000)]
    )
    background = Signal(
        "background", 2e5, EvalHist(background_samples, axes, [0, 1])
    )
    signal = Signal("signal", 5.0, EvalHist(signal_samples, axes, [0, 1]))
    for component in (background, signal):
        component.histogram.set_eval_points(background_samples)
    space = ParameterSpace([background, signal])
    nll = NLL([background, signal], space)

    assert nll(space.initial()) < PENALTY

    result = ChainDriver(200, seed=5, progress=False).run(nll)

    assert result.buffer.column("signal").min() >= 0.0
    assert not np.any(result.buffer.nll == PENALTY)
