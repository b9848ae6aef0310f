from __future__ import annotations

import pathlib

# shutil is nicer, but doesn't work: https://bugs.python.org/issue20849
from functools import partial
from shutil import copytree as _copytree

import numpy as np
import pytest

from sxmc.config import Observable
from sxmc.histogram import EvalHist
from sxmc.kernels import ThreadPoolKernel
from sxmc.signals import Signal

copytree = partial(_copytree, dirs_exist_ok=True)


def pytest_addoption(parser):
    """Add command line options for test categories."""
    parser.addoption(
        "--runslow", action="store_true", default=False, help="run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on command line options."""
    # Skip slow tests unless --runslow option is given
    if not config.getoption("--runslow"):
        skip_slow = pytest.mark.skip(reason="need --runslow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def datadir(tmp_path, request):
    """
    Fixture responsible for searching a folder with the same name of test
    module and, if available, moving all contents to a temporary directory so
    tests can use them freely.
    """
    # this gets the module name (e.g. /path/to/sxmc/tests/test_config.py)
    # and then gets the directory by removing the suffix (e.g. /path/to/sxmc/tests/test_config)
    test_dir = pathlib.Path(request.module.__file__).with_suffix("")

    if test_dir.is_dir():
        copytree(test_dir, str(tmp_path))

    return tmp_path


@pytest.fixture
def energy():
    """Observable on [0, 10) with 10 unit bins."""
    return Observable(name="energy", field="e", bins=10, min=0.0, max=10.0)


@pytest.fixture(params=[1, 3], ids=["lanes1", "lanes3"])
def kernel(request):
    """CPU kernel with one or several lanes."""
    with ThreadPoolKernel(request.param) as kernel:
        yield kernel


def _make_signal(name, samples, nexpected, observable, kernel=None, **kwargs):
    table = np.asarray(samples, dtype=np.float64).reshape(len(samples), -1)
    histogram = EvalHist(table, [observable.to_hist()], [0], kernel=kernel)
    return Signal(name, nexpected, histogram, **kwargs)


@pytest.fixture
def make_signal():
    """Factory for single-observable signals binned on column 0 of their samples."""
    return _make_signal

