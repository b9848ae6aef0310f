#!/usr/bin/env python3
"""
Example usage of sxmc with the different kernel back-ends.

This script demonstrates:
1. Building two signals from in-memory toy samples
2. Evaluating the NLL on CPU lanes
3. Evaluating the NLL through compiled pytensor modes (FAST_RUN, JAX)
4. Running a short chain and summarising it
"""

import time
from contextlib import contextmanager

import numpy as np

import sxmc
import sxmc.logging
from sxmc.config import Observable
from sxmc.kernels import TensorKernel, ThreadPoolKernel


@contextmanager
def time_block(label):
    start = time.perf_counter()
    yield
    end = time.perf_counter()
    print(f"{label}: {end - start:.4f} seconds")


def make_signals(kernel):
    rng = np.random.default_rng(0)
    energy = Observable(name="energy", field="energy", bins=50, min=0.0, max=10.0)
    tables = {
        "signal": rng.normal(5.0, 0.5, (20_000, 1)),
        "background": rng.uniform(0.0, 10.0, (50_000, 1)),
    }
    nexpected = {"signal": 50.0, "background": 1000.0}
    signals = [
        sxmc.Signal(
            name,
            nexpected[name],
            sxmc.EvalHist(table, [energy.to_hist()], [0], kernel=kernel),
        )
        for name, table in tables.items()
    ]
    data = np.concatenate(
        [
            tables["signal"][rng.integers(0, 20_000, 50)],
            tables["background"][rng.integers(0, 50_000, 1000)],
        ]
    )
    for signal in signals:
        signal.histogram.set_eval_points(data)
    return signals


def main():
    """Main example function comparing back-ends."""
    sxmc.logging.setup("INFO")
    print("=== sxmc Example: Kernel back-ends ===\n")

    with ThreadPoolKernel(4) as cpu:
        with time_block("Building signals"):
            signals = make_signals(cpu)
        space = sxmc.ParameterSpace(signals)
        pars = space.initial()

        # Example 1: CPU lanes
        print("1. CPU lanes")
        print("=" * 40)
        nll_cpu = sxmc.NLL(signals, space, kernel=cpu)
        with time_block("First CPU evaluation (fills the histograms)"):
            result_cpu = nll_cpu(pars)
        with time_block("Cached CPU evaluation"):
            nll_cpu(pars)
        print(f"NLL: {result_cpu}\n")

        # Example 2: compiled reductions
        print("2. Compiled reductions")
        print("=" * 40)
        for mode in ("FAST_RUN", "JAX"):
            try:
                nll_tensor = sxmc.NLL(signals, space, kernel=TensorKernel(mode))
                with time_block(f"First {mode} evaluation (includes compilation)"):
                    result = nll_tensor(pars)
                with time_block(f"Cached {mode} evaluation"):
                    nll_tensor(pars)
                print(f"{mode} NLL: {result} (difference {abs(result - result_cpu):.2e})")
            except ImportError as e:
                print(f"{mode} mode not available: {e}")
        print()

        # Example 3: a short chain
        print("3. Short chain")
        print("=" * 40)
        driver = sxmc.ChainDriver(2000, seed=1, kernel=cpu)
        with time_block("Sampling 2000 steps"):
            result = driver.run(nll_cpu)
        chain = result.buffer.after_burnin(0.2)
        for name, values in zip(result.names, chain[:, :-1].T):
            print(f"{name}: {values.mean():.1f} +/- {values.std():.1f}")
        print(f"Acceptance rate: {result.acceptance_rate:.2f}")


if __name__ == "__main__":
    main()
